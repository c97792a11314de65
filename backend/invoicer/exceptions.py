"""
Error taxonomy for invoice operations.

Services raise these; the API routers translate them into HTTP responses.
Every lifecycle operation either applies completely or raises one of these
with the store left untouched.
"""


class InvoicerError(Exception):
    """Base class for all application errors."""


class ValidationFailed(InvoicerError):
    """Input rejected before any storage write was attempted."""


class NotFound(InvoicerError):
    """A referenced record does not exist."""

    def __init__(self, entity: str, key: object) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key} not found.")


class InvalidTransition(InvoicerError):
    """The requested status change is not allowed from the current status."""

    def __init__(self, action: str, status: str) -> None:
        self.action = action
        self.status = status
        super().__init__(f"Cannot {action} an invoice with status '{status}'.")


class StorageFailure(InvoicerError):
    """A transaction aborted and was rolled back; the caller may retry."""
