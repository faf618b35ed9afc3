"""Error taxonomy shared by the Zoho adapter and the order workflow.

Every exception carries a ``user_message`` that is safe to show to the
person filling in the order form: no stack traces, no internal ids.
"""

from __future__ import annotations

from typing import Any, Optional

TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})

# Zoho sometimes answers a successful write with an error status whose
# message still says the record was stored. Known phrasings:
#   contacts:     "The contact has been added."
#   sales orders: "Sales Order has been created."
# Workaround, not a contract: keep every match in ``indicates_created``.
_CREATED_MARKERS = ("has been created", "has been added")


def indicates_created(message: Optional[str]) -> bool:
    """True when an error message reports that the write went through anyway."""
    text = (message or "").lower()
    return any(marker in text for marker in _CREATED_MARKERS)


class SalesDeskError(Exception):
    """Base class for all expected failures."""

    default_message = "Request failed."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        return self.message


class ValidationError(SalesDeskError):
    """Bad input shape or values. Never retried."""

    default_message = "Invalid request."

    def __init__(self, message: Optional[str] = None, errors: Optional[list[dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class CredentialError(SalesDeskError):
    default_message = "Could not obtain a Zoho access token."


class RemoteApiError(SalesDeskError):
    """Non-2xx response, transport failure, or a non-zero ``code`` in a 2xx body."""

    default_message = "Zoho API error."

    def __init__(
        self,
        status: Optional[int],
        message: Optional[str] = None,
        code: Optional[int] = None,
        timed_out: bool = False,
    ):
        super().__init__(message)
        self.status = status
        self.code = code
        self.timed_out = timed_out

    @property
    def transient(self) -> bool:
        if self.status is None:
            return True
        return self.status in TRANSIENT_STATUSES

    @property
    def user_message(self) -> str:
        return f"Zoho API error: {self.message}"

    def __repr__(self) -> str:
        return f"RemoteApiError(status={self.status!r}, code={self.code!r}, message={self.message!r})"


class ContactResolutionError(SalesDeskError):
    default_message = "Failed to obtain contact_id after contact creation."


class OrderCreationError(SalesDeskError):
    default_message = "Sales Order could not be created."

    def __init__(self, message: Optional[str] = None, cause: Optional[RemoteApiError] = None):
        super().__init__(message)
        self.cause = cause


class OrderCreationAmbiguousError(OrderCreationError):
    """Zoho said the order was created but it cannot be found by reference."""

    code = "order_ambiguous"
    default_message = (
        "Zoho reported the Sales Order as created but it could not be found. "
        "Check Zoho Inventory before submitting again."
    )

    def __init__(self, reference_number: str, message: Optional[str] = None):
        super().__init__(message)
        self.reference_number = reference_number


class CustomerBindingMismatchError(OrderCreationError):
    code = "customer_mismatch"

    def __init__(self, expected_customer_id: str, actual_customer_id: str, order_id: Optional[str] = None):
        super().__init__(
            "Sales Order was created with a different customer than the one resolved. "
            "Likely a non-exact name match picked another contact."
        )
        self.expected_customer_id = expected_customer_id
        self.actual_customer_id = actual_customer_id
        self.order_id = order_id


class PurchaseOrderRowError(SalesDeskError):
    """Per-row fan-out failure. Collected into the report, never raised to callers."""

    default_message = "Purchase order row skipped."

    def __init__(self, item_id: Optional[str], quantity: float, reason: str, message: Optional[str] = None):
        super().__init__(message or reason)
        self.item_id = item_id
        self.quantity = quantity
        self.reason = reason
