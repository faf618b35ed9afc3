from __future__ import annotations

import math
from typing import Any, Optional

from ..config.runtime_config import OrdersCfg
from .client import ZohoClient
from .errors import RemoteApiError

STOCK_FIELDS = ("available_stock", "actual_available_stock", "stock_on_hand", "quantity_on_hand")


def _num(value: Any) -> Optional[float]:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def normalize_item(raw: dict[str, Any]) -> dict[str, Any]:
    """Fixed item shape; inventory fields are None when Zoho does not track them."""
    available = next((raw[k] for k in STOCK_FIELDS if raw.get(k) is not None), None)
    return {
        "item_id": str(raw.get("item_id") or raw.get("id") or ""),
        "name": raw.get("name") or raw.get("item_name") or "",
        "sku": raw.get("sku") or raw.get("product_code") or "",
        "unit": raw.get("unit"),
        "rate": _num(raw.get("rate") if raw.get("rate") is not None else raw.get("selling_price")) or 0.0,
        "purchase_rate": _num(raw.get("purchase_rate")),
        "track_inventory": bool(raw.get("track_inventory")),
        "can_be_purchased": bool(raw.get("can_be_purchased")),
        "available_stock": _num(available),
        "preferred_vendor_id": raw.get("preferred_vendor_id") or None,
        "vendor_id": raw.get("vendor_id") or None,
    }


def _page_context(data: dict[str, Any], page: int, per_page: int) -> dict[str, Any]:
    return data.get("page_context") or {"page": page, "per_page": per_page, "has_more_page": False}


class InventoryQueries:
    """Read-only pass-throughs over items, contacts and sales orders."""

    def __init__(self, client: ZohoClient, orders_cfg: Optional[OrdersCfg] = None):
        self.client = client
        self.orders_cfg = orders_cfg or OrdersCfg()

    async def _get_one(self, path: str, key: str) -> Optional[dict[str, Any]]:
        try:
            data = await self.client.get(path)
        except RemoteApiError as e:
            if e.status == 404:
                return None
            raise
        return data.get(key) or None

    async def healthcheck(self) -> dict[str, Any]:
        data = await self.client.get("/organizations")
        orgs = data.get("organizations") or []
        org = orgs[0] if orgs else {}
        return {"id": org.get("organization_id"), "name": org.get("name")}

    async def search_items(self, q: str, page: int = 1, per_page: int = 50) -> dict[str, Any]:
        data = await self.client.get("/items", {"search_text": q, "page": page, "per_page": per_page})
        return {"items": data.get("items") or [], "page_context": _page_context(data, page, per_page)}

    async def get_item_raw(self, item_id: str) -> Optional[dict[str, Any]]:
        return await self._get_one(f"/items/{item_id}", "item")

    async def get_item(self, item_id: str) -> Optional[dict[str, Any]]:
        raw = await self.get_item_raw(item_id)
        return normalize_item(raw) if raw else None

    async def search_contacts(self, q: str, page: int = 1, per_page: int = 20) -> dict[str, Any]:
        data = await self.client.get("/contacts", {"search_text": q, "page": page, "per_page": per_page})
        return {"contacts": data.get("contacts") or [], "page_context": _page_context(data, page, per_page)}

    async def get_contact(self, contact_id: str) -> Optional[dict[str, Any]]:
        return await self._get_one(f"/contacts/{contact_id}", "contact")

    def order_number_for(self, q: str) -> Optional[str]:
        """``"24"`` -> ``"SO-00024"``; None unless the query is purely numeric."""
        q = q.strip()
        if not q.isdigit():
            return None
        return f"{self.orders_cfg.number_prefix}{q.zfill(self.orders_cfg.number_padding)}"

    async def list_sales_orders(
        self,
        page: int = 1,
        per_page: int = 25,
        q: str = "",
        sort_column: str = "date",
        sort_order: str = "D",
    ) -> dict[str, Any]:
        q = (q or "").strip()
        query: dict[str, Any] = {
            "page": page,
            "per_page": per_page,
            "sort_column": sort_column,
            "sort_order": sort_order,
        }
        if q:
            query["search_text"] = q
            number = self.order_number_for(q)
            if number:
                query["salesorder_number"] = number

        data = await self.client.get("/salesorders", query)
        return {
            "salesorders": data.get("salesorders") or [],
            "filters": {
                "page": page,
                "per_page": per_page,
                "sort_column": sort_column,
                "sort_order": sort_order,
                "q": q,
            },
            "page_context": _page_context(data, page, per_page),
        }

    async def find_sales_order_by_reference(self, reference_number: str) -> Optional[dict[str, Any]]:
        data = await self.client.get(
            "/salesorders", {"reference_number": reference_number, "page": 1, "per_page": 1}
        )
        for order in data.get("salesorders") or []:
            if order.get("reference_number") == reference_number:
                return order
        return None

    async def get_sales_order(self, salesorder_id: str) -> Optional[dict[str, Any]]:
        return await self._get_one(f"/salesorders/{salesorder_id}", "salesorder")
