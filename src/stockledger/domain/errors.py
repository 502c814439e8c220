from __future__ import annotations


class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class InvalidUnitError(ValidationError):
    pass


class InvalidQuantityError(ValidationError):
    pass


class InvalidConfigurationError(ValidationError):
    pass


class InvalidMovementTypeError(ValidationError):
    pass


class InvalidThresholdError(ValidationError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(AppError):
    def __init__(self, product_id: int, available: int, requested: int):
        super().__init__(
            f"Not enough stock for product {product_id}. Available: {available}, requested: {requested}"
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class ContentionError(AppError):
    """Stock update could not be serialized in time. Safe to retry."""

    retryable = True
