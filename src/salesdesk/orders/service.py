from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Any, Callable, Optional

from ..config.runtime_config import RuntimeConfig, load_runtime_config
from ..zoho.client import ZohoClient
from ..zoho.contacts import ContactResolver
from ..zoho.errors import (
    CustomerBindingMismatchError,
    OrderCreationAmbiguousError,
    OrderCreationError,
    RemoteApiError,
    indicates_created,
)
from ..zoho.queries import InventoryQueries
from .purchasing import PurchasePlanner
from .schema import FanoutReport, OrderDraft, OrderResult

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Sales Order successfully created in Zoho Inventory."


def new_reference(prefix: str = "SO", now: Optional[datetime] = None) -> str:
    """Idempotency token for one submission: ``SO-20250101120000-1a2b3c4d``."""
    now = now or datetime.now()
    return f"{prefix}-{now.strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(4)}"


class OrderService:
    """
    Creates a sales order exactly once.

    Flow: resolve contact, post the order under a fresh reference number,
    recover the order by reference if Zoho claims success through an error,
    verify the order is bound to the resolved contact, then optionally fan
    out purchase orders. Only the fan-out is allowed to fail partially.
    """

    def __init__(
        self,
        client: ZohoClient,
        cfg: Optional[RuntimeConfig] = None,
        contacts: Optional[ContactResolver] = None,
        purchasing: Optional[PurchasePlanner] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.client = client
        self.cfg = cfg or load_runtime_config()
        self.contacts = contacts or ContactResolver(client, self.cfg.contacts)
        self.queries = InventoryQueries(client, self.cfg.orders)
        self.purchasing = purchasing or PurchasePlanner(client, self.cfg.purchasing, clock=clock)
        self.clock = clock

    def build_body(self, customer_id: str, reference: str, draft: OrderDraft) -> dict[str, Any]:
        return {
            "customer_id": customer_id,
            "reference_number": reference,
            "date": self.clock().date().isoformat(),
            "line_items": [line.to_line_item() for line in draft.lines],
            "notes": self.cfg.orders.notes,
        }

    async def submit(self, body: dict[str, Any]) -> dict[str, Any]:
        """Post the order; returns the Zoho sales order object."""
        reference = body["reference_number"]
        if self.cfg.orders.verify_contact:
            # contact must exist in this organization before we bind an order to it
            await self.client.get(f"/contacts/{body['customer_id']}")

        try:
            data = await self.client.post("/salesorders", body)
        except RemoteApiError as e:
            if not indicates_created(e.message):
                raise OrderCreationError(e.user_message, cause=e) from e
            logger.warning(f"Sales order post returned HTTP {e.status} but reports creation; looking up {reference}")
            found = await self.queries.find_sales_order_by_reference(reference)
            if not found:
                raise OrderCreationAmbiguousError(reference) from e
            logger.warning(f"Recovered sales order {found.get('salesorder_id')} by reference {reference}")
            return found

        so = data.get("salesorder")
        if not so:
            raise OrderCreationError("Zoho returned an empty sales order in a successful response.")
        return so

    async def create_order(self, draft: OrderDraft) -> OrderResult:
        contact_id = await self.contacts.ensure(draft.customer)

        reference = new_reference(self.cfg.orders.reference_prefix, self.clock())
        body = self.build_body(contact_id, reference, draft)
        so = await self.submit(body)

        got_customer = str(so.get("customer_id") or "")
        logger.info(f"Sales order customer check: sent={contact_id} got={got_customer}")
        if got_customer != contact_id:
            logger.error(
                f"Sales order {so.get('salesorder_id')} bound to {got_customer!r}, expected {contact_id!r}"
            )
            raise CustomerBindingMismatchError(contact_id, got_customer, so.get("salesorder_id"))

        result = OrderResult(
            order_id=so.get("salesorder_id"),
            order_number=so.get("salesorder_number"),
            customer_id=got_customer,
            reference_number=so.get("reference_number") or reference,
            message=SUCCESS_MESSAGE,
        )
        logger.info(f"Sales order {result.order_number} ({result.order_id}) created, reference {result.reference_number}")

        if draft.create_purchase_orders and draft.purchase_plan:
            result.purchase_orders = await self._fan_out(draft, result.order_id)
        return result

    async def _fan_out(self, draft: OrderDraft, order_id: Optional[str]) -> FanoutReport:
        try:
            return await self.purchasing.create_from_plan(draft.purchase_plan, order_id=order_id)
        except Exception as e:
            # the sales order is committed; purchase orders are best effort
            logger.exception(f"Purchase order fan-out aborted for sales order {order_id}: {e}")
            return FanoutReport(
                skipped=[
                    {"item_id": row.item_id or None, "quantity": row.quantity, "reason": "po_create_failed"}
                    for row in draft.purchase_plan
                ]
            )
