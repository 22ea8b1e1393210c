"""Domain errors raised by the orders engine.

Each error carries the HTTP status the API layer answers with; the handlers
in ``app/main.py`` turn them into ``{"detail": ...}`` responses.
"""

from typing import Optional


class OrderEngineError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class CheckoutValidationError(OrderEngineError):
    """Bad checkout input. Nothing was written."""

    status_code = 400

    def __init__(self, detail: str, field: Optional[str] = None):
        super().__init__(detail)
        self.field = field


class InvalidTransition(OrderEngineError):
    status_code = 409

    def __init__(self, field: str, current: str, target: str, reason: str = ""):
        detail = f"Cannot move {field} from '{current}' to '{target}'"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail)
        self.field = field
        self.current = current
        self.target = target


class ConcurrentModification(OrderEngineError):
    """The order changed after it was read. Re-read and retry."""

    status_code = 409


class InsufficientStock(OrderEngineError):
    status_code = 409

    def __init__(self, sku_code: str, requested: int, available: Optional[int] = None):
        detail = f"Insufficient stock for {sku_code}: requested {requested}"
        if available is not None:
            detail = f"{detail}, available {available}"
        super().__init__(detail)
        self.sku_code = sku_code
        self.requested = requested
        self.available = available


class OrderNotFound(OrderEngineError):
    status_code = 404


class RefundNotFound(OrderEngineError):
    status_code = 404


class RefundNotAllowed(OrderEngineError):
    status_code = 409


class PaymentProcessorError(OrderEngineError):
    """The processor rejected a request or could not be reached."""

    status_code = 502
