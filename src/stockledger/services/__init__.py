from .stock_ledger import StockLedger
from .alert_evaluator import AlertService
from .movement_query import MovementQueryService
from .inventory_service import InventoryService
from .excel_service import ExcelService
from .operations_service import OperationsService

__all__ = [
    "StockLedger",
    "AlertService",
    "MovementQueryService",
    "InventoryService",
    "ExcelService",
    "OperationsService",
]
