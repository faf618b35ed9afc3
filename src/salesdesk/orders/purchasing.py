from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from ..config.runtime_config import PurchasingCfg
from ..zoho.client import ZohoClient
from ..zoho.errors import PurchaseOrderRowError
from ..zoho.queries import InventoryQueries
from .schema import CreatedPurchaseOrder, FanoutReport, PlanRow, SkippedRow

logger = logging.getLogger(__name__)


@dataclass
class BucketLine:
    item_id: str
    quantity: float
    rate: Optional[float] = None

    def to_line_item(self) -> dict[str, Any]:
        row: dict[str, Any] = {"item_id": self.item_id, "quantity": float(self.quantity)}
        if self.rate is not None:
            row["rate"] = float(self.rate)
        return row


@dataclass
class VendorBucket:
    vendor_id: str
    lines: dict[str, BucketLine] = field(default_factory=dict)

    def add(self, item_id: str, quantity: float, rate: Optional[float]) -> None:
        line = self.lines.get(item_id)
        if line is None:
            self.lines[item_id] = BucketLine(item_id, quantity, rate)
            return
        line.quantity += quantity
        if line.rate is None:
            line.rate = rate


def purchase_rate(item: dict[str, Any]) -> Optional[float]:
    for key in ("purchase_rate", "rate"):
        try:
            return float(item[key])
        except (KeyError, TypeError, ValueError):
            continue
    return None


class PurchasePlanner:
    """
    Turns a purchase plan into one Zoho purchase order per vendor.

    Every vendor bucket succeeds or fails on its own; failures end up in
    ``skipped`` and never raise.
    """

    def __init__(
        self,
        client: ZohoClient,
        cfg: Optional[PurchasingCfg] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.client = client
        self.queries = InventoryQueries(client)
        self.cfg = cfg or PurchasingCfg()
        self.clock = clock

    def build_payload(self, bucket: VendorBucket, order_id: Optional[str] = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "vendor_id": bucket.vendor_id,
            "line_items": [line.to_line_item() for line in bucket.lines.values()],
        }
        if order_id:
            stamp = self.clock().strftime("%Y%m%d%H%M%S")
            payload["reference_number"] = self.cfg.reference_template.format(order_id=order_id, stamp=stamp)
            payload["notes"] = self.cfg.notes_template.format(order_id=order_id)
        return payload

    async def _bucketize(self, plan: Iterable[PlanRow], skipped: list[PurchaseOrderRowError]) -> dict[str, VendorBucket]:
        items: dict[str, dict[str, Any]] = {}
        buckets: dict[str, VendorBucket] = {}

        for row in plan:
            if not row.item_id or row.quantity <= 0:
                skipped.append(PurchaseOrderRowError(row.item_id or None, row.quantity, "bad_row"))
                continue

            if row.item_id not in items:
                try:
                    item = await self.queries.get_item_raw(row.item_id)
                except Exception as e:
                    logger.warning(f"Item lookup failed for {row.item_id} while building purchase plan: {e}")
                    item = None
                if not item:
                    skipped.append(PurchaseOrderRowError(row.item_id, row.quantity, "get_item_failed"))
                    continue
                items[row.item_id] = item
            item = items[row.item_id]

            vendor_id = item.get("preferred_vendor_id") or item.get("vendor_id")
            if not vendor_id:
                skipped.append(PurchaseOrderRowError(row.item_id, row.quantity, "no_preferred_vendor"))
                continue

            vendor_id = str(vendor_id)
            bucket = buckets.setdefault(vendor_id, VendorBucket(vendor_id))
            bucket.add(row.item_id, row.quantity, purchase_rate(item))
        return buckets

    async def create_from_plan(self, plan: Iterable[PlanRow], order_id: Optional[str] = None) -> FanoutReport:
        skipped: list[PurchaseOrderRowError] = []
        created: list[CreatedPurchaseOrder] = []

        buckets = await self._bucketize(plan, skipped)
        if not buckets:
            logger.info("Purchase plan contained no vendor-bound lines; nothing to create")

        for vendor_id, bucket in buckets.items():
            payload = self.build_payload(bucket, order_id)
            try:
                data = await self.client.post("/purchaseorders", payload)
            except Exception as e:
                # buckets fail independently; created POs stay reported
                logger.error(f"Purchase order for vendor {vendor_id} failed: {e}")
                for line in bucket.lines.values():
                    skipped.append(PurchaseOrderRowError(line.item_id, line.quantity, "po_create_failed", str(e)))
                continue

            po = data.get("purchaseorder") or {}
            created.append(
                CreatedPurchaseOrder(
                    purchaseorder_id=po.get("purchaseorder_id"),
                    purchaseorder_number=po.get("purchaseorder_number"),
                    vendor_id=vendor_id,
                    lines=payload["line_items"],
                )
            )
            logger.info(f"Purchase order {po.get('purchaseorder_number')} created for vendor {vendor_id}")

        return FanoutReport(
            created=created,
            skipped=[SkippedRow(item_id=e.item_id, quantity=e.quantity, reason=e.reason) for e in skipped],
        )
