from .models import (
    Product,
    StockMovement,
    MovementRequest,
    MovementOutcome,
    MovementFilter,
    MovementSummary,
    AlertThresholds,
    AlertCondition,
    StockBreakdown,
)
from .errors import (
    AppError,
    ValidationError,
    InvalidUnitError,
    InvalidQuantityError,
    InvalidConfigurationError,
    InvalidMovementTypeError,
    InvalidThresholdError,
    NotFoundError,
    InsufficientStockError,
    ContentionError,
)

__all__ = [
    "Product",
    "StockMovement",
    "MovementRequest",
    "MovementOutcome",
    "MovementFilter",
    "MovementSummary",
    "AlertThresholds",
    "AlertCondition",
    "StockBreakdown",
    "AppError",
    "ValidationError",
    "InvalidUnitError",
    "InvalidQuantityError",
    "InvalidConfigurationError",
    "InvalidMovementTypeError",
    "InvalidThresholdError",
    "NotFoundError",
    "InsufficientStockError",
    "ContentionError",
]
