from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Union

from stockledger.domain.errors import AppError

UNIT_PIECE = "piece"
UNIT_SHEET = "sheet"
UNIT_BOX = "box"
UNITS = (UNIT_PIECE, UNIT_SHEET, UNIT_BOX)

# Movement types grouped by the sign they apply to the balance.
INBOUND_TYPES = frozenset({"stock_in", "purchase", "return"})
OUTBOUND_TYPES = frozenset({"stock_out", "sale", "damage", "expired", "transfer"})
MOVEMENT_TYPES = (
    "stock_in",
    "stock_out",
    "sale",
    "purchase",
    "adjustment",
    "return",
    "damage",
    "expired",
    "transfer",
)

SEVERITY_CRITICAL = "critical"
SEVERITY_WARNING = "warning"
SEVERITY_INFO = "info"
SEVERITY_RANK = {SEVERITY_CRITICAL: 0, SEVERITY_WARNING: 1, SEVERITY_INFO: 2}

ALERT_TYPES = ("out_of_stock", "low_stock", "reorder_needed", "expiring_soon", "expired")


@dataclass(frozen=True)
class Product:
    id: int
    sku: str
    name: str
    pieces_per_sheet: int
    sheets_per_box: int
    stock_quantity: int
    reorder_level: int
    min_stock_level: int
    expiry_date: Optional[date] = None
    active: int = 1

    @property
    def pieces_per_box(self) -> int:
        return self.pieces_per_sheet * self.sheets_per_box


@dataclass(frozen=True)
class StockMovement:
    id: int
    product_id: int
    movement_type: str
    quantity_change: int
    quantity_before: int
    quantity_after: int
    unit_used_by_caller: str
    quantity_in_unit: float
    reason: Optional[str]
    reference_number: Optional[str]
    actor_id: Optional[str]
    created_at: str


@dataclass(frozen=True)
class MovementRequest:
    product_id: int
    movement_type: str
    quantity: Union[int, float]
    unit: str = UNIT_PIECE
    reason: Optional[str] = None
    reference_number: Optional[str] = None
    actor_id: Optional[str] = None


@dataclass(frozen=True)
class MovementOutcome:
    request: Optional[MovementRequest]
    movement: Optional[StockMovement] = None
    error: Optional[AppError] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.movement is not None


@dataclass(frozen=True)
class MovementFilter:
    product_id: Optional[int] = None
    movement_type: Optional[str] = None
    date_from: Optional[Union[date, datetime]] = None
    date_to: Optional[Union[date, datetime]] = None


@dataclass(frozen=True)
class MovementSummary:
    count: int
    total_quantity: int


@dataclass(frozen=True)
class AlertThresholds:
    expiry_warning_days: int = 30
    enabled: bool = True


@dataclass(frozen=True)
class AlertCondition:
    type: str
    severity: str
    product_id: int
    message: str
    computed_at: datetime = field(compare=False)


@dataclass(frozen=True)
class StockBreakdown:
    boxes: int
    sheets: int
    pieces: int
