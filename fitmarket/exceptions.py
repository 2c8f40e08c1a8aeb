"""Error taxonomy for the catalog, order and membership services."""

from typing import Any, Optional


class FitMarketError(Exception):
    """Base exception for all business-rule and store errors."""

    kind = "error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(FitMarketError):
    """Raised when input is malformed or a business precondition is not met."""

    kind = "validation_error"


class EmptyOrderError(ValidationError):
    """Raised when an order is submitted without items."""

    kind = "empty_order"

    def __init__(self):
        super().__init__("Order must contain at least one item")


class NotFoundError(FitMarketError):
    """Raised when a referenced record does not exist."""

    kind = "not_found"

    def __init__(self, resource: str, resource_id: Any):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"{resource} with ID {resource_id} not found",
            {"resource": resource, "id": resource_id},
        )


class ProductNotFoundError(NotFoundError):
    """Raised when the requested product doesn't exist."""

    kind = "product_not_found"

    def __init__(self, product_id: Any):
        super().__init__("Product", product_id)


class InsufficientStockError(FitMarketError):
    """Raised when there's not enough stock to fulfill a request."""

    kind = "insufficient_stock"

    def __init__(self, product_id: Any, available: int, requested: int, name: Optional[str] = None):
        self.available = available
        self.requested = requested
        label = name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, Requested: {requested}",
            {
                "product_id": product_id,
                "available": available,
                "requested": requested,
                "shortfall": max(requested - available, 0),
            },
        )


class InvalidTransitionError(FitMarketError):
    """Raised when an order status change is not allowed from the current status."""

    kind = "invalid_transition"

    def __init__(self, current: str, requested: str, allowed: list[str]):
        self.current = current
        self.requested = requested
        self.allowed = allowed
        super().__init__(
            f"Cannot change status from {current} to {requested}",
            {"current": current, "requested": requested, "allowed": allowed},
        )


class ForbiddenError(FitMarketError):
    """Raised when the caller lacks ownership or role for an operation."""

    kind = "forbidden"

    def __init__(self, message: str = "You are not allowed to perform this action"):
        super().__init__(message)


class PlanFullError(FitMarketError):
    """Raised when a workout plan has no free capacity."""

    kind = "plan_full"

    def __init__(self, plan_id: Any, max_members: int, active_members: int):
        super().__init__(
            f"Workout plan {plan_id} is full ({active_members}/{max_members} members)",
            {
                "plan_id": plan_id,
                "max_members": max_members,
                "active_members": active_members,
                "shortfall": active_members - max_members + 1,
            },
        )


class StoreFailureError(FitMarketError):
    """Raised when the persistence layer fails unexpectedly."""

    kind = "store_failure"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Failed to {operation}")
