import sqlite3
from pathlib import Path

import pytest
from conftest import add_tablets, build_services

from stockledger.config import EngineSettings
from stockledger.domain.errors import ContentionError
from stockledger.repositories.unit_of_work import SqliteUnitOfWork
from stockledger.services.stock_ledger import StockLedger


class FailingInsertUnitOfWork(SqliteUnitOfWork):
    def insert_movement(self, **kwargs):
        raise RuntimeError("boom")


class StaleBalanceUnitOfWork(SqliteUnitOfWork):
    def compare_and_set_stock(self, product_id, expected, new_quantity):
        return False


def test_balance_rolls_back_when_movement_insert_fails(tmp_path: Path):
    s = build_services(tmp_path)
    product = add_tablets(s.inventory, stock=100)
    ledger = StockLedger(s.repo, uow_factory=lambda: FailingInsertUnitOfWork(s.repo))

    with pytest.raises(RuntimeError):
        ledger.apply(product.id, "sale", 1, unit="box")

    assert s.inventory.get_product(product.id).stock_quantity == 100
    assert len(s.movements.list()) == 1


def test_lost_compare_and_set_is_retried_then_gives_up(tmp_path: Path):
    s = build_services(tmp_path)
    product = add_tablets(s.inventory, stock=100)
    sleeps = []
    settings = EngineSettings(max_retries=3, retry_backoff_seconds=0.01)
    ledger = StockLedger(
        s.repo,
        settings,
        uow_factory=lambda: StaleBalanceUnitOfWork(s.repo),
        sleep=sleeps.append,
    )

    with pytest.raises(ContentionError) as exc:
        ledger.apply(product.id, "sale", 1)

    assert exc.value.retryable
    assert len(sleeps) == 3
    assert sleeps == sorted(sleeps)
    assert s.inventory.get_product(product.id).stock_quantity == 100
    assert len(s.movements.list()) == 1


def test_retry_succeeds_after_transient_contention(tmp_path: Path):
    s = build_services(tmp_path)
    product = add_tablets(s.inventory, stock=100)
    attempts = []

    def flaky_uow():
        attempts.append(1)
        if len(attempts) < 3:
            return StaleBalanceUnitOfWork(s.repo)
        return SqliteUnitOfWork(s.repo)

    ledger = StockLedger(s.repo, uow_factory=flaky_uow, sleep=lambda _: None)
    movement = ledger.apply(product.id, "sale", 1, unit="sheet")

    assert len(attempts) == 3
    assert movement.quantity_after == 90


def test_lock_timeout_raises_contention(tmp_path: Path):
    s = build_services(tmp_path, settings=EngineSettings(lock_timeout_seconds=0.05))
    product = add_tablets(s.inventory, stock=100)

    lock = s.ledger._locks.get(product.id)
    lock.acquire()
    try:
        with pytest.raises(ContentionError):
            s.ledger.apply(product.id, "sale", 1)
    finally:
        lock.release()

    assert s.ledger.apply(product.id, "sale", 1).quantity_after == 99


def test_held_database_write_lock_surfaces_as_contention(tmp_path: Path):
    settings = EngineSettings(busy_timeout_seconds=0.05, max_retries=2, retry_backoff_seconds=0.01)
    sleeps = []
    s = build_services(tmp_path, settings=settings, sleep=sleeps.append)
    product = add_tablets(s.inventory, stock=100)

    other = sqlite3.connect(tmp_path / "ledger.db")
    other.execute("BEGIN IMMEDIATE")
    try:
        with pytest.raises(ContentionError) as exc:
            s.ledger.apply(product.id, "sale", 1)
    finally:
        other.rollback()
        other.close()

    assert exc.value.retryable
    assert "database is locked" in str(exc.value)
    assert len(sleeps) == settings.max_retries
    assert s.inventory.get_product(product.id).stock_quantity == 100
    assert len(s.movements.list()) == 1

    assert s.ledger.apply(product.id, "sale", 1).quantity_after == 99
