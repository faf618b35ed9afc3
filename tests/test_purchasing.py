import asyncio
from datetime import datetime

import httpx

from salesdesk.orders.purchasing import PurchasePlanner, VendorBucket, purchase_rate
from salesdesk.orders.schema import PlanRow
from salesdesk.zoho.errors import CredentialError

OK = {"code": 0}


def _item(item_id, vendor=None, purchase_rate=None, preferred=True):
    item = {"item_id": item_id, "name": item_id}
    if vendor:
        item["preferred_vendor_id" if preferred else "vendor_id"] = vendor
    if purchase_rate is not None:
        item["purchase_rate"] = purchase_rate
    return (200, {**OK, "item": item})


def _planner(zoho):
    return PurchasePlanner(zoho.client(), clock=lambda: datetime(2025, 3, 4, 9, 0, 0))


def _plan(*rows):
    return [PlanRow(item_id=i, quantity=q) for i, q in rows]


class ExpiringTokens:
    """Hands out a token until `broken` is set, then fails like a rate-limited refresh."""

    def __init__(self):
        self.broken = False

    async def get_token(self):
        if self.broken:
            raise CredentialError("Rate limited on token refresh. Please retry in a few minutes.")
        return "tok"

    def invalidate(self):
        pass


def test_failing_vendor_is_isolated(zoho):
    zoho.on("GET", "/items/A", _item("A", "V-OK", 2.5))
    zoho.on("GET", "/items/B", _item("B", "V-BAD"))
    zoho.on("GET", "/items/C", _item("C", "V-BAD"))

    def purchase_orders(request):
        if zoho.body(request)["vendor_id"] == "V-BAD":
            return httpx.Response(400, json={"code": 1, "message": "Vendor is inactive"})
        return httpx.Response(201, json={**OK, "purchaseorder": {
            "purchaseorder_id": "PO1", "purchaseorder_number": "PO-00001"}})

    zoho.on("POST", "/purchaseorders", purchase_orders)

    report = asyncio.run(_planner(zoho).create_from_plan(_plan(("A", 1), ("B", 2), ("C", 3))))

    assert [po.vendor_id for po in report.created] == ["V-OK"]
    assert report.created[0].lines == [{"item_id": "A", "quantity": 1.0, "rate": 2.5}]
    assert sorted((s.item_id, s.quantity, s.reason) for s in report.skipped) == [
        ("B", 2.0, "po_create_failed"),
        ("C", 3.0, "po_create_failed"),
    ]



def test_token_failure_after_first_vendor_keeps_created_purchase_order(zoho):
    zoho.tokens = ExpiringTokens()
    zoho.on("GET", "/items/A", _item("A", "V1"))
    zoho.on("GET", "/items/B", _item("B", "V2"))

    def purchase_orders(request):
        zoho.tokens.broken = True
        return httpx.Response(201, json={**OK, "purchaseorder": {"purchaseorder_id": "PO1"}})

    zoho.on("POST", "/purchaseorders", purchase_orders)

    report = asyncio.run(_planner(zoho).create_from_plan(_plan(("A", 1), ("B", 2))))

    assert len(zoho.calls("POST", "/purchaseorders")) == 1
    assert [(po.purchaseorder_id, po.vendor_id) for po in report.created] == [("PO1", "V1")]
    assert [(s.item_id, s.reason) for s in report.skipped] == [("B", "po_create_failed")]


def test_item_lookup_failure_of_any_kind_is_get_item_failed(zoho):
    zoho.tokens = ExpiringTokens()

    def item_a(request):
        zoho.tokens.broken = True
        return httpx.Response(200, json={**OK, "item": {"item_id": "A", "preferred_vendor_id": "V1"}})

    zoho.on("GET", "/items/A", item_a)
    zoho.on("GET", "/items/B", _item("B", "V2"))

    report = asyncio.run(_planner(zoho).create_from_plan(_plan(("A", 1), ("B", 2))))

    assert report.created == []
    assert [(s.item_id, s.reason) for s in report.skipped] == [
        ("B", "get_item_failed"),
        ("A", "po_create_failed"),
    ]

def test_rows_are_classified_before_bucketing(zoho):
    zoho.on("GET", "/items/NOVENDOR", _item("NOVENDOR"))
    zoho.on("GET", "/items/BROKEN", (500, {"message": "boom"}))

    report = asyncio.run(_planner(zoho).create_from_plan(_plan(
        ("", 2), ("X", 0), ("NOVENDOR", 1), ("BROKEN", 1), ("MISSING", 4))))

    assert report.created == []
    assert [(s.item_id, s.reason) for s in report.skipped] == [
        (None, "bad_row"),
        ("X", "bad_row"),
        ("NOVENDOR", "no_preferred_vendor"),
        ("BROKEN", "get_item_failed"),
        ("MISSING", "get_item_failed"),
    ]
    assert zoho.calls("POST", "/purchaseorders") == []


def test_same_vendor_rows_are_merged_and_items_fetched_once(zoho):
    zoho.on("GET", "/items/A", _item("A", "V1"))
    zoho.on("GET", "/items/B", _item("B", "V1", preferred=False, purchase_rate=4))
    zoho.on("POST", "/purchaseorders", (201, {**OK, "purchaseorder": {"purchaseorder_id": "PO9"}}))

    report = asyncio.run(_planner(zoho).create_from_plan(_plan(("A", 1), ("B", 2), ("A", 5))))

    assert len(zoho.calls("GET", "/items/A")) == 1
    assert len(zoho.calls("POST", "/purchaseorders")) == 1
    body = zoho.body(zoho.calls("POST", "/purchaseorders")[0])
    assert body == {
        "vendor_id": "V1",
        "line_items": [
            {"item_id": "A", "quantity": 6.0},
            {"item_id": "B", "quantity": 2.0, "rate": 4.0},
        ],
    }
    assert report.skipped == []


def test_order_id_links_purchase_order_back(zoho):
    zoho.on("GET", "/items/A", _item("A", "V1"))
    zoho.on("POST", "/purchaseorders", (201, {**OK, "purchaseorder": {"purchaseorder_id": "PO1"}}))

    asyncio.run(_planner(zoho).create_from_plan(_plan(("A", 1)), order_id="SO42"))

    body = zoho.body(zoho.calls("POST", "/purchaseorders")[0])
    assert body["reference_number"] == "SO:SO42 / 20250304090000"
    assert body["notes"] == "Auto-created from Sales Order SO42"


def test_empty_plan_creates_nothing(zoho):
    report = asyncio.run(_planner(zoho).create_from_plan([]))

    assert report.created == [] and report.skipped == []
    assert zoho.requests == []


def test_bucket_keeps_first_known_rate():
    bucket = VendorBucket("V1")
    bucket.add("A", 1, None)
    bucket.add("A", 2, 3.0)
    bucket.add("A", 1, 9.0)
    assert bucket.lines["A"].quantity == 4
    assert bucket.lines["A"].rate == 3.0


def test_purchase_rate_prefers_purchase_rate():
    assert purchase_rate({"purchase_rate": "7.5", "rate": 10}) == 7.5
    assert purchase_rate({"rate": 10}) == 10.0
    assert purchase_rate({"purchase_rate": None}) is None
