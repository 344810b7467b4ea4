from typing import Any, Optional


class PaymentError(Exception):
    """Base class for everything the purchase flow raises on purpose."""


class ValidationError(PaymentError):
    """Malformed caller input. Raised before any side effect happens."""

    status_code = 400


class GameNotFound(ValidationError):
    status_code = 404


class AlreadyOwned(ValidationError):
    status_code = 409


class OrderInProgress(ValidationError):
    status_code = 409

    def __init__(self, message: str, order_id: str):
        super().__init__(message)
        self.order_id = order_id


class TransactionNotFound(ValidationError):
    status_code = 404


class GatewayError(PaymentError):
    """The gateway call failed or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is None:
            return base
        return f"{base} (status={self.status_code})"


class PersistenceConflict(PaymentError):
    """A write that would break a store invariant. The write is not applied."""


class DuplicateOrderError(PersistenceConflict):
    pass


class TerminalStateConflict(PersistenceConflict):
    def __init__(self, order_id: str, current: str, requested: str):
        super().__init__(
            f"order {order_id} is already {current}, refusing to set {requested}"
        )
        self.order_id = order_id
        self.current = current
        self.requested = requested


class CallbackError(PaymentError):
    """Inbound gateway notification that must be answered with an HTTP error."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code
