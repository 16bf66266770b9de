"""Business-rule failures raised by the service layer."""


class StoreError(Exception):
    """Base exception for this application."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(StoreError):
    """A referenced user, category, product or order does not exist."""


class Conflict(StoreError):
    """A uniqueness rule (email, category name, product name) was violated."""


class InsufficientStock(StoreError):
    """Not enough units on hand to fulfil the order."""

    def __init__(self, available: int):
        self.available = available
        super().__init__(f"Insufficient stock. Available: {available}")


class InvalidTransition(StoreError):
    """The requested status change is not allowed."""


class PermissionDenied(StoreError):
    """Role or ownership check failed."""


class InvalidQuantity(StoreError):
    """Ordered quantity below one."""
