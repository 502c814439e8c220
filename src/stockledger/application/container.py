from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from stockledger.config import EngineSettings
from stockledger.domain.models import AlertThresholds
from stockledger.repositories.sqlite_repo import SqliteRepository
from stockledger.services.alert_evaluator import AlertService
from stockledger.services.excel_service import ExcelService
from stockledger.services.inventory_service import InventoryService
from stockledger.services.movement_query import MovementQueryService
from stockledger.services.operations_service import OperationsService
from stockledger.services.stock_ledger import StockLedger


@dataclass(frozen=True)
class AppContainer:
    settings: EngineSettings
    repo: SqliteRepository
    ledger: StockLedger
    inventory: InventoryService
    movements: MovementQueryService
    alerts: AlertService
    excel: ExcelService
    operations: OperationsService


def build_container(db_path: Path | str, settings: EngineSettings | None = None) -> AppContainer:
    settings = settings or EngineSettings()

    repo = SqliteRepository(db_path, busy_timeout=settings.busy_timeout_seconds)
    repo.init_db()
    repo.ensure_alert_settings(settings.expiry_warning_days)

    ledger = StockLedger(repo, settings)
    inventory = InventoryService(repo, ledger)
    movements = MovementQueryService(repo)
    alerts = AlertService(repo, default_thresholds=AlertThresholds(expiry_warning_days=settings.expiry_warning_days))
    excel = ExcelService(repo, ledger, inventory)
    operations = OperationsService(repo)

    return AppContainer(
        settings=settings,
        repo=repo,
        ledger=ledger,
        inventory=inventory,
        movements=movements,
        alerts=alerts,
        excel=excel,
        operations=operations,
    )
