from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional, Protocol

from stockledger.domain.errors import ContentionError
from stockledger.domain.models import Product, StockMovement
from stockledger.repositories.sqlite_repo import MOVEMENT_COLUMNS, PRODUCT_COLUMNS, movement_from_row, product_from_row


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def get_product(self, product_id: int) -> Optional[Product]: ...
    def insert_product(self, product: Product) -> int: ...
    def compare_and_set_stock(self, product_id: int, expected: int, new_quantity: int) -> bool: ...
    def insert_movement(
        self,
        product_id: int,
        movement_type: str,
        quantity_change: int,
        quantity_before: int,
        quantity_after: int,
        unit_used_by_caller: str,
        quantity_in_unit: float,
        reason: Optional[str],
        reference_number: Optional[str],
        actor_id: Optional[str],
        created_at: str,
    ) -> StockMovement: ...


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


@contextmanager
def _contention_on_lock() -> Iterator[None]:
    try:
        yield
    except sqlite3.OperationalError as e:
        if _is_lock_error(e):
            raise ContentionError(f"Database busy: {e}") from e
        raise


class SqliteUnitOfWork:
    """Write session for one stock movement.

    Opens its own connection and takes the SQLite write lock up front
    (BEGIN IMMEDIATE), so the balance read inside the session cannot go stale
    before the update. Commits on a clean exit and rolls back on any exception.
    SQLite lock timeouts surface as ContentionError.
    """

    def __init__(self, repo):
        self.repo = repo
        self.conn: Optional[sqlite3.Connection] = None

    def __enter__(self) -> "SqliteUnitOfWork":
        conn = self.repo._conn()
        try:
            with _contention_on_lock():
                conn.execute("BEGIN IMMEDIATE")
        except Exception:
            conn.close()
            raise
        self.conn = conn
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        conn, self.conn = self.conn, None
        if conn is None:
            return None
        try:
            if exc_type is None:
                with _contention_on_lock():
                    conn.commit()
            else:
                conn.rollback()
        finally:
            conn.close()
        return None

    def _cursor(self) -> sqlite3.Cursor:
        if self.conn is None:
            raise RuntimeError("Unit of work is not active.")
        return self.conn.cursor()

    def get_product(self, product_id: int) -> Optional[Product]:
        cur = self._cursor()
        with _contention_on_lock():
            cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE active=1 AND id=?", (int(product_id),))
            r = cur.fetchone()
        return product_from_row(r) if r else None

    def insert_product(self, product: Product) -> int:
        """Insert a new product with a zero balance. Stock only arrives through movements."""
        cur = self._cursor()
        with _contention_on_lock():
            cur.execute(
                """
                INSERT INTO products (sku, name, pieces_per_sheet, sheets_per_box, reorder_level, min_stock_level, expiry_date)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    product.sku,
                    product.name,
                    int(product.pieces_per_sheet),
                    int(product.sheets_per_box),
                    int(product.reorder_level),
                    int(product.min_stock_level),
                    product.expiry_date.isoformat() if product.expiry_date else None,
                ),
            )
        return int(cur.lastrowid)

    def compare_and_set_stock(self, product_id: int, expected: int, new_quantity: int) -> bool:
        cur = self._cursor()
        with _contention_on_lock():
            cur.execute(
                "UPDATE products SET stock_quantity=? WHERE id=? AND active=1 AND stock_quantity=?",
                (int(new_quantity), int(product_id), int(expected)),
            )
        return cur.rowcount == 1

    def insert_movement(
        self,
        product_id: int,
        movement_type: str,
        quantity_change: int,
        quantity_before: int,
        quantity_after: int,
        unit_used_by_caller: str,
        quantity_in_unit: float,
        reason: Optional[str],
        reference_number: Optional[str],
        actor_id: Optional[str],
        created_at: str,
    ) -> StockMovement:
        cur = self._cursor()
        with _contention_on_lock():
            cur.execute(
                """
                INSERT INTO stock_movements (
                    product_id, movement_type, quantity_change, quantity_before, quantity_after,
                    unit_used_by_caller, quantity_in_unit, reason, reference_number, actor_id, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(product_id),
                    movement_type,
                    int(quantity_change),
                    int(quantity_before),
                    int(quantity_after),
                    unit_used_by_caller,
                    float(quantity_in_unit),
                    reason,
                    reference_number,
                    actor_id,
                    created_at,
                ),
            )
            movement_id = int(cur.lastrowid)
            cur.execute(f"SELECT {MOVEMENT_COLUMNS} FROM stock_movements WHERE id=?", (movement_id,))
            row = cur.fetchone()
        return movement_from_row(row)
