import pytest

from pydantic import ValidationError as PydanticValidationError

from salesdesk.orders.schema import Customer, OrderLine, PlanRow, parse_draft
from salesdesk.zoho.errors import ValidationError


def _body(**overrides):
    body = {
        "customer": {"name": " Jane Doe ", "email": "jane@example.com", "phone": ""},
        "items": [{"item_id": "I1", "name": "Cable", "sku": "C-1", "qty": "2", "rate": 3}],
    }
    body.update(overrides)
    return body


def test_spa_payload_is_normalized():
    draft = parse_draft(_body(createPurchaseOrders=True, purchasePlan=[{"item_id": "I1", "quantity": 1}]))

    assert draft.customer.name == "Jane Doe"
    assert draft.customer.phone is None
    assert draft.lines[0].qty == 2.0
    assert draft.lines[0].tax == 0.0
    assert draft.create_purchase_orders is True
    assert draft.purchase_plan == [PlanRow(item_id="I1", quantity=1)]


def test_legacy_zoho_item_id_is_accepted():
    line = OrderLine.model_validate({"zoho_item_id": "I9", "name": "x", "qty": 1, "rate": 0})
    assert line.item_id == "I9"


@pytest.mark.parametrize(
    "overrides, fragment",
    [
        ({"items": []}, "at least 1 item"),
        ({"items": [{"item_id": "", "name": "Cable", "qty": 1, "rate": 1}]}, "item_id"),
        ({"items": [{"name": "Cable", "qty": 1, "rate": 1}]}, "item_id"),
        ({"items": [{"item_id": "I1", "name": "Cable", "qty": 0, "rate": 1}]}, "qty"),
        ({"items": [{"item_id": "I1", "name": "Cable", "qty": 1, "rate": -1}]}, "rate"),
        ({"items": [{"item_id": "I1", "name": "Cable", "qty": 1, "rate": 1, "tax": -5}]}, "tax"),
        ({"customer": {"name": "Jane", "email": "not-an-email"}}, "email"),
        ({"customer": {"name": "", "email": "jane@example.com"}}, "customer.name"),
        ({"customer": {"name": "Jane"}}, "customer.email"),
    ],
)
def test_invalid_drafts_are_rejected_at_the_boundary(overrides, fragment):
    with pytest.raises(ValidationError) as exc:
        parse_draft(_body(**overrides))
    assert fragment in exc.value.user_message


def test_non_object_body_is_rejected():
    with pytest.raises(ValidationError):
        parse_draft(["not", "a", "dict"])


@pytest.mark.parametrize(
    "email",
    ["jane@example..com", "jane@.example.com", "jane,doe@example.com\u200b", "jane@example"],
)
def test_malformed_customer_emails_are_rejected(email):
    with pytest.raises(PydanticValidationError):
        Customer(name="Jane", email=email)


def test_customer_email_is_trimmed_and_blank_means_none():
    assert Customer(name="Jane", email="  jane@example.com ").email == "jane@example.com"
    assert Customer(name="Jane", email="   ").email is None
