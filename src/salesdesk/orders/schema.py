from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from ..zoho.errors import ValidationError

SkipReason = Literal["bad_row", "get_item_failed", "no_preferred_vendor", "po_create_failed"]


def _strip(v: Any) -> Any:
    return v.strip() if isinstance(v, str) else v


class Customer(BaseModel):
    name: str = Field(default="", max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return _strip(v) or ""

    @field_validator("email", "phone", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        v = _strip(v)
        return v or None

    def has_identity(self) -> bool:
        return bool(self.name or self.email)


class OrderLine(BaseModel):
    item_id: str = Field(validation_alias=AliasChoices("item_id", "zoho_item_id"))
    name: str = Field(max_length=255)
    sku: Optional[str] = Field(default=None, max_length=255)
    qty: float = Field(gt=0)
    rate: float = Field(ge=0)
    tax: float = Field(default=0.0, ge=0)

    @field_validator("item_id", "name", mode="before")
    @classmethod
    def _required_text(cls, v):
        if isinstance(v, int):
            v = str(v)
        v = _strip(v) if v is not None else ""
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("tax", mode="before")
    @classmethod
    def _tax_default(cls, v):
        return 0.0 if v is None else v

    def to_line_item(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "quantity": float(self.qty),
            "rate": float(self.rate),
            "tax_percentage": float(self.tax),
        }


class PlanRow(BaseModel):
    """One purchase-plan row; structural only, fan-out decides what is usable."""

    item_id: str = ""
    quantity: float = 0.0

    @field_validator("item_id", mode="before")
    @classmethod
    def _item_id(cls, v):
        return _strip("" if v is None else str(v))

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, v):
        return 0.0 if v is None or v == "" else v


class OrderDraft(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer: Customer
    lines: List[OrderLine] = Field(validation_alias=AliasChoices("lines", "items"), min_length=1)
    create_purchase_orders: bool = Field(
        default=False, validation_alias=AliasChoices("create_purchase_orders", "createPurchaseOrders")
    )
    purchase_plan: List[PlanRow] = Field(
        default_factory=list, validation_alias=AliasChoices("purchase_plan", "purchasePlan")
    )

    @field_validator("purchase_plan", mode="before")
    @classmethod
    def _plan_default(cls, v):
        return [] if v is None else v

    @model_validator(mode="after")
    def _customer_for_order(self):
        if not self.customer.name:
            raise ValueError("customer.name is required")
        if not self.customer.email:
            raise ValueError("customer.email is required")
        return self


def _describe(errors: list[dict[str, Any]]) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        msg = str(err.get("msg", "invalid")).removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def parse_draft(payload: Any) -> OrderDraft:
    """Normalize an inbound order body into an ``OrderDraft`` or raise ``ValidationError``."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    try:
        return OrderDraft.model_validate(payload)
    except PydanticValidationError as e:
        errors = e.errors(include_url=False, include_context=False)
        raise ValidationError(f"Invalid sales order: {_describe(errors)}", errors=errors) from e


class CreatedPurchaseOrder(BaseModel):
    purchaseorder_id: Optional[str] = None
    purchaseorder_number: Optional[str] = None
    vendor_id: str
    lines: List[dict[str, Any]] = Field(default_factory=list)


class SkippedRow(BaseModel):
    item_id: Optional[str] = None
    quantity: float
    reason: SkipReason


class FanoutReport(BaseModel):
    created: List[CreatedPurchaseOrder] = Field(default_factory=list)
    skipped: List[SkippedRow] = Field(default_factory=list)


class OrderResult(BaseModel):
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    customer_id: str
    reference_number: str
    message: str
    purchase_orders: Optional[FanoutReport] = None
