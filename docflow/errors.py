"""
Error taxonomy. Every failure the engine raises derives from DocflowError;
idempotency hits (AlreadyProcessed) are raised too but callers treat them as success.
"""


class DocflowError(Exception):
    """Base class for engine errors."""


class OrderNotFound(DocflowError):
    pass


class InvoiceNotFound(DocflowError):
    pass


class DelegateNotFound(DocflowError):
    pass


class DuplicateDelegate(DocflowError):
    """An available delegate already covers this (city, service)."""


class InvalidTransition(DocflowError):
    """Raised when the current status or the actor does not permit the transition. Nothing is written."""
    def __init__(self, current_status: str | None = None, attempted: str | None = None, reason: str = ""):
        self.current_status = current_status
        self.attempted = attempted
        self.reason = reason
        super().__init__(reason or f"cannot move from {current_status} to {attempted}")


class AlreadyProcessed(DocflowError):
    """Invoice was already paid. Carries the order created the first time."""
    def __init__(self, invoice_id: str, order_id: str | None):
        self.invoice_id = invoice_id
        self.order_id = order_id
        super().__init__(f"invoice {invoice_id} already processed (order {order_id})")


class ValidationFailed(DocflowError):
    """User input problem; the caller can retry with corrected input."""


class MissingDeliveryInfo(ValidationFailed):
    pass


class MissingShipmentProof(ValidationFailed):
    pass


class MissingShippingCompany(ValidationFailed):
    pass


class DeliveryCodeMismatch(ValidationFailed):
    pass


class DataIntegrityWarning(UserWarning):
    """Used as the category for directory consistency warnings."""
