from __future__ import annotations

import sqlite3
import shutil
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Optional, Union

from stockledger.domain.models import (
    MOVEMENT_TYPES,
    UNITS,
    AlertThresholds,
    MovementFilter,
    MovementSummary,
    Product,
    StockMovement,
)

PRODUCT_COLUMNS = (
    "id, sku, name, pieces_per_sheet, sheets_per_box, stock_quantity, "
    "reorder_level, min_stock_level, expiry_date, active"
)
MOVEMENT_COLUMNS = (
    "id, product_id, movement_type, quantity_change, quantity_before, quantity_after, "
    "unit_used_by_caller, quantity_in_unit, reason, reference_number, actor_id, created_at"
)


def _sql_in(values) -> str:
    return ", ".join(f"'{v}'" for v in values)


def product_from_row(r) -> Product:
    return Product(
        id=int(r[0]),
        sku=str(r[1]),
        name=str(r[2]),
        pieces_per_sheet=int(r[3]),
        sheets_per_box=int(r[4]),
        stock_quantity=int(r[5]),
        reorder_level=int(r[6]),
        min_stock_level=int(r[7]),
        expiry_date=date.fromisoformat(r[8]) if r[8] else None,
        active=int(r[9]),
    )


def movement_from_row(r) -> StockMovement:
    return StockMovement(
        id=int(r[0]),
        product_id=int(r[1]),
        movement_type=str(r[2]),
        quantity_change=int(r[3]),
        quantity_before=int(r[4]),
        quantity_after=int(r[5]),
        unit_used_by_caller=str(r[6]),
        quantity_in_unit=float(r[7]),
        reason=r[8],
        reference_number=r[9],
        actor_id=r[10],
        created_at=str(r[11]),
    )


def _ts(value: Union[date, datetime]) -> str:
    if isinstance(value, datetime):
        return value.replace(microsecond=0).isoformat(sep=" ")
    return datetime.combine(value, time.min).isoformat(sep=" ")


def movement_where(flt: Optional[MovementFilter]) -> tuple[str, list]:
    """WHERE clause for a movement filter. date_to is exclusive; a plain date covers that whole day."""
    clauses: list[str] = []
    params: list = []
    if flt is None:
        return "", params
    if flt.product_id is not None:
        clauses.append("product_id = ?")
        params.append(int(flt.product_id))
    if flt.movement_type is not None:
        clauses.append("movement_type = ?")
        params.append(flt.movement_type)
    if flt.date_from is not None:
        clauses.append("created_at >= ?")
        params.append(_ts(flt.date_from))
    if flt.date_to is not None:
        end = flt.date_to
        if not isinstance(end, datetime):
            end = end + timedelta(days=1)
        clauses.append("created_at < ?")
        params.append(_ts(end))
    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


class SqliteRepository:
    def __init__(self, db_path: Path | str, busy_timeout: float = 5.0):
        self.db_path = str(db_path)
        self.busy_timeout = float(busy_timeout)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def unit_of_work(self):
        from stockledger.repositories.unit_of_work import SqliteUnitOfWork

        return SqliteUnitOfWork(self)

    def init_db(self) -> None:
        self.run_migrations()
        conn = self._conn()
        try:
            conn.execute("PRAGMA journal_mode = WAL;")
        finally:
            conn.close()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_products_and_ledger),
                (2, self._migration_v2_alert_settings),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def schema_version(self) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
        version = int(cur.fetchone()[0])
        conn.close()
        return version

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_products_and_ledger(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sku TEXT UNIQUE NOT NULL,
                name TEXT NOT NULL,
                pieces_per_sheet INTEGER NOT NULL DEFAULT 1 CHECK(pieces_per_sheet >= 1),
                sheets_per_box INTEGER NOT NULL DEFAULT 1 CHECK(sheets_per_box >= 1),
                stock_quantity INTEGER NOT NULL DEFAULT 0 CHECK(stock_quantity >= 0),
                reorder_level INTEGER NOT NULL DEFAULT 0 CHECK(reorder_level >= 0),
                min_stock_level INTEGER NOT NULL DEFAULT 0 CHECK(min_stock_level >= 0),
                expiry_date TEXT,
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1)),
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        cur.execute(
            f"""
            CREATE TABLE IF NOT EXISTS stock_movements (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id INTEGER NOT NULL,
                movement_type TEXT NOT NULL CHECK(movement_type IN ({_sql_in(MOVEMENT_TYPES)})),
                quantity_change INTEGER NOT NULL CHECK(quantity_change <> 0),
                quantity_before INTEGER NOT NULL CHECK(quantity_before >= 0),
                quantity_after INTEGER NOT NULL CHECK(quantity_after >= 0),
                unit_used_by_caller TEXT NOT NULL CHECK(unit_used_by_caller IN ({_sql_in(UNITS)})),
                quantity_in_unit REAL NOT NULL CHECK(quantity_in_unit <> 0),
                reason TEXT,
                reference_number TEXT,
                actor_id TEXT,
                created_at TEXT NOT NULL,
                CHECK(quantity_after = quantity_before + quantity_change),
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_movements_product ON stock_movements(product_id, id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_movements_type ON stock_movements(movement_type)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_movements_created_at ON stock_movements(created_at)")

        # Ledger rows are append-only; corrections are new compensating movements.
        cur.execute(
            """
            CREATE TRIGGER IF NOT EXISTS stock_movements_no_update
            BEFORE UPDATE ON stock_movements
            BEGIN
                SELECT RAISE(ABORT, 'stock_movements is append-only');
            END
            """
        )
        cur.execute(
            """
            CREATE TRIGGER IF NOT EXISTS stock_movements_no_delete
            BEFORE DELETE ON stock_movements
            BEGIN
                SELECT RAISE(ABORT, 'stock_movements is append-only');
            END
            """
        )

    def _migration_v2_alert_settings(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS alert_settings (
                id INTEGER PRIMARY KEY CHECK(id = 1),
                expiry_warning_days INTEGER NOT NULL CHECK(expiry_warning_days >= 0),
                enabled INTEGER NOT NULL DEFAULT 1 CHECK(enabled IN (0,1)),
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

    # ---------- Products ----------
    def list_products(self) -> list[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE active = 1 ORDER BY name")
        rows = cur.fetchall()
        conn.close()
        return [product_from_row(r) for r in rows]

    def get_product_by_id(self, product_id: int) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE active=1 AND id=?", (int(product_id),))
        r = cur.fetchone()
        conn.close()
        return product_from_row(r) if r else None

    def get_product_by_sku(self, sku: str) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE active=1 AND sku=?", (sku,))
        r = cur.fetchone()
        conn.close()
        return product_from_row(r) if r else None

    def update_product_thresholds(self, product_id: int, reorder_level: int, min_stock_level: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE products SET reorder_level=?, min_stock_level=? WHERE id=? AND active=1",
            (int(reorder_level), int(min_stock_level), int(product_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def update_product_expiry(self, product_id: int, expiry_date: Optional[date]) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE products SET expiry_date=? WHERE id=? AND active=1",
            (expiry_date.isoformat() if expiry_date else None, int(product_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def deactivate_product(self, product_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("UPDATE products SET active=0 WHERE id=? AND active=1", (int(product_id),))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    # ---------- Movements ----------
    def list_movements(
        self,
        flt: Optional[MovementFilter] = None,
        limit: int = 100,
        before_id: Optional[int] = None,
    ) -> list[StockMovement]:
        where, params = movement_where(flt)
        if before_id is not None:
            where = f"{where} AND id < ?" if where else "WHERE id < ?"
            params.append(int(before_id))
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {MOVEMENT_COLUMNS} FROM stock_movements {where} ORDER BY id DESC LIMIT ?",
            (*params, int(limit)),
        )
        rows = cur.fetchall()
        conn.close()
        return [movement_from_row(r) for r in rows]

    def summarize_movements(self, flt: Optional[MovementFilter] = None) -> dict[str, MovementSummary]:
        where, params = movement_where(flt)
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT movement_type, COUNT(*), COALESCE(SUM(ABS(quantity_change)), 0)
            FROM stock_movements
            {where}
            GROUP BY movement_type
            ORDER BY movement_type
            """,
            params,
        )
        rows = cur.fetchall()
        conn.close()
        return {str(r[0]): MovementSummary(count=int(r[1]), total_quantity=int(r[2])) for r in rows}

    def movement_chain(self, product_id: int) -> list[StockMovement]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {MOVEMENT_COLUMNS} FROM stock_movements WHERE product_id=? ORDER BY id ASC",
            (int(product_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [movement_from_row(r) for r in rows]

    def ledger_totals(self) -> list[tuple[int, str, int, int]]:
        """(product_id, sku, stock_quantity, sum of quantity_change) for every product."""
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT p.id, p.sku, p.stock_quantity, COALESCE(SUM(m.quantity_change), 0)
            FROM products p
            LEFT JOIN stock_movements m ON m.product_id = p.id
            GROUP BY p.id
            ORDER BY p.id
            """
        )
        rows = cur.fetchall()
        conn.close()
        return [(int(r[0]), str(r[1]), int(r[2]), int(r[3])) for r in rows]

    # ---------- Alert settings ----------
    def ensure_alert_settings(self, expiry_warning_days: int) -> None:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "INSERT OR IGNORE INTO alert_settings (id, expiry_warning_days, enabled) VALUES (1, ?, 1)",
            (int(expiry_warning_days),),
        )
        conn.commit()
        conn.close()

    def get_alert_settings(self) -> Optional[AlertThresholds]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT expiry_warning_days, enabled FROM alert_settings WHERE id = 1")
        row = cur.fetchone()
        conn.close()
        if not row:
            return None
        return AlertThresholds(expiry_warning_days=int(row[0]), enabled=bool(row[1]))

    def save_alert_settings(self, thresholds: AlertThresholds) -> None:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO alert_settings (id, expiry_warning_days, enabled, updated_at)
            VALUES (1, ?, ?, datetime('now'))
            ON CONFLICT(id) DO UPDATE SET
                expiry_warning_days=excluded.expiry_warning_days,
                enabled=excluded.enabled,
                updated_at=excluded.updated_at
            """,
            (int(thresholds.expiry_warning_days), 1 if thresholds.enabled else 0),
        )
        conn.commit()
        conn.close()

    # ---------- Maintenance ----------
    def integrity_check(self) -> str:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("PRAGMA integrity_check")
        row = cur.fetchone()
        conn.close()
        return str(row[0]) if row else "unknown"
