"""
Typed failures raised by the ledger, transfer engine and request workflow.

Each error carries the HTTP status the hosting layer should answer with, so
routers never need to translate them by hand.
"""

from uuid import UUID


class InventoryError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def code(self) -> str:
        return type(self).__name__


# Validation (rejected before any mutation)

class ValidationFailed(InventoryError):
    pass


class InvalidQuantity(ValidationFailed):
    def __init__(self, quantity):
        super().__init__(f"quantity must be a positive integer, got {quantity!r}")
        self.quantity = quantity


class InvalidTransfer(ValidationFailed):
    pass


# Resources

class NotFound(InventoryError):
    status_code = 404


class StockItemNotFound(NotFound):
    def __init__(self, stock_item_id: UUID):
        super().__init__(f"Stock item {stock_item_id} not found")
        self.stock_item_id = stock_item_id


class UserNotFound(NotFound):
    def __init__(self, user_id: UUID):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class RequestNotFound(NotFound):
    def __init__(self, request_id: UUID):
        super().__init__(f"Request {request_id} not found")
        self.request_id = request_id


# Business rules

class InsufficientCentralStock(InventoryError):
    def __init__(self, stock_item_id: UUID, available: int, requested: int):
        super().__init__(
            f"Not enough central stock for item {stock_item_id}. Available={available} requested={requested}"
        )
        self.stock_item_id = stock_item_id
        self.available = available
        self.requested = requested


class InsufficientUserStock(InventoryError):
    def __init__(self, stock_item_id: UUID, user_id: UUID, held: int, requested: int):
        super().__init__(
            f"User {user_id} holds {held} of item {stock_item_id}, requested {requested}"
        )
        self.stock_item_id = stock_item_id
        self.user_id = user_id
        self.held = held
        self.requested = requested


class InvalidTransition(InventoryError):
    def __init__(self, request_id: UUID, status: str, action: str):
        super().__init__(f"Cannot {action} request {request_id} in status '{status}'")
        self.request_id = request_id
        self.status = status
        self.action = action


class TransferConflict(InventoryError):
    status_code = 409


# Authorization

class Forbidden(InventoryError):
    status_code = 403
