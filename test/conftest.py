import sys
from datetime import datetime, timedelta
from pathlib import Path
from types import SimpleNamespace

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


class SteppingClock:
    """Returns `start`, then advances by `step` on every call."""

    def __init__(self, start: datetime = datetime(2025, 3, 1, 9, 0, 0), step: timedelta = timedelta(minutes=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current = now + self.step
        return now


def build_services(tmp_path: Path, name: str = "ledger.db", clock=None, settings=None, **ledger_kwargs):
    from stockledger.config import EngineSettings
    from stockledger.repositories.sqlite_repo import SqliteRepository
    from stockledger.services.inventory_service import InventoryService
    from stockledger.services.movement_query import MovementQueryService
    from stockledger.services.stock_ledger import StockLedger

    settings = settings or EngineSettings()
    repo = SqliteRepository(tmp_path / name, busy_timeout=settings.busy_timeout_seconds)
    repo.init_db()
    ledger = StockLedger(repo, settings, clock=clock, **ledger_kwargs)
    return SimpleNamespace(
        repo=repo,
        ledger=ledger,
        inventory=InventoryService(repo, ledger),
        movements=MovementQueryService(repo),
    )


def add_tablets(inventory, stock: int = 0, sku: str = "PARA-500", **kwargs):
    """10 pieces per sheet, 5 sheets per box."""
    return inventory.add_product(
        sku,
        kwargs.pop("name", "Paracetamol 500mg"),
        pieces_per_sheet=10,
        sheets_per_box=5,
        initial_stock=stock,
        **kwargs,
    )
