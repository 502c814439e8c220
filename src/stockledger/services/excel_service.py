from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Union

from openpyxl import load_workbook

from stockledger.domain.errors import AppError, InvalidQuantityError, NotFoundError, ValidationError
from stockledger.domain.models import UNIT_PIECE, MovementFilter, MovementRequest, Product, StockMovement

log = logging.getLogger(__name__)

MOVEMENT_HEADERS = ["sku", "movement_type", "quantity"]
PRODUCT_HEADERS = ["sku", "name", "pieces_per_sheet", "sheets_per_box", "reorder_level", "min_stock_level"]


@dataclass(frozen=True)
class ImportRow:
    row: int
    product: Optional[Product] = None
    movement: Optional[StockMovement] = None
    error: Optional[AppError] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class ImportReport:
    rows: list[ImportRow] = field(default_factory=list)

    @property
    def applied(self) -> int:
        return sum(1 for r in self.rows if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.rows if not r.success)

    def errors_by_row(self) -> dict[int, str]:
        return {r.row: str(r.error) for r in self.rows if r.error is not None}


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _number(value, label: str, error=ValidationError) -> Union[int, float]:
    if _blank(value):
        raise error(f"{label} is empty.")
    if isinstance(value, bool):
        raise error(f"{label} must be a number.")
    if isinstance(value, (int, float)):
        return value
    try:
        n = float(str(value).strip())
    except ValueError as e:
        raise error(f"{label} must be a number. Received: {value!r}") from e
    return int(n) if n.is_integer() else n


def _whole(value, label: str) -> int:
    n = _number(value, label)
    if isinstance(n, float) and not n.is_integer():
        raise ValidationError(f"{label} must be a whole number. Received: {value!r}")
    return int(n)


def _text(value) -> Optional[str]:
    return None if _blank(value) else str(value).strip()


def _expiry(value) -> Optional[date]:
    if _blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as e:
        raise ValidationError(f"expiry_date must be YYYY-MM-DD. Received: {value!r}") from e


class ExcelService:
    def __init__(self, repo, ledger, inventory_service):
        self.repo = repo
        self.ledger = ledger
        self.inventory = inventory_service

    @staticmethod
    def _read_sheet(path: str, required: list[str]):
        wb = load_workbook(path, data_only=True)
        ws = wb.active

        headers = {}
        for col in range(1, ws.max_column + 1):
            v = ws.cell(row=1, column=col).value
            if isinstance(v, str):
                headers[v.strip().lower()] = col

        for r in required:
            if r not in headers:
                raise ValidationError(f"Missing column header: {r}")

        for row in range(2, ws.max_row + 1):
            values = {h: ws.cell(row=row, column=col).value for h, col in headers.items()}
            if all(_blank(v) for v in values.values()):
                continue
            yield row, values

    def import_movements_excel(self, path: str, actor_id: Optional[str] = None) -> ImportReport:
        """
        Each row is one movement request, applied independently in row order.
        Headers:
          sku | movement_type | quantity | unit | reason | reference_number
        Rows that cannot be parsed are reported as failures, never skipped.
        """
        parsed: list[tuple[int, MovementRequest]] = []
        rejected: list[ImportRow] = []

        for row, values in self._read_sheet(path, MOVEMENT_HEADERS):
            try:
                sku = _text(values.get("sku"))
                if not sku:
                    raise ValidationError("sku is empty.")
                product = self.repo.get_product_by_sku(sku)
                if not product:
                    raise NotFoundError(f"Product not found: {sku}")
                movement_type = _text(values.get("movement_type"))
                if not movement_type:
                    raise ValidationError("movement_type is empty.")
                quantity = _number(values.get("quantity"), "quantity", error=InvalidQuantityError)
                parsed.append(
                    (
                        row,
                        MovementRequest(
                            product_id=product.id,
                            movement_type=movement_type.lower(),
                            quantity=quantity,
                            unit=(_text(values.get("unit")) or UNIT_PIECE).lower(),
                            reason=_text(values.get("reason")),
                            reference_number=_text(values.get("reference_number")),
                            actor_id=actor_id,
                        ),
                    )
                )
            except AppError as e:
                log.warning("Excel movement import rejected row %s: %s", row, e)
                rejected.append(ImportRow(row=row, error=e))

        outcomes = self.ledger.bulk_apply([req for _, req in parsed])
        applied = [ImportRow(row=row, movement=o.movement, error=o.error) for (row, _), o in zip(parsed, outcomes)]

        report = ImportReport(rows=sorted(applied + rejected, key=lambda r: r.row))
        log.info("excel_movements_imported path=%s ok=%s failed=%s", path, report.applied, report.failed)
        return report

    def import_products_excel(self, path: str, actor_id: Optional[str] = None) -> ImportReport:
        """
        Headers:
          sku | name | pieces_per_sheet | sheets_per_box | reorder_level | min_stock_level | expiry_date | stock
        Thresholds are required per row; stock (in pieces) is booked as a stock_in movement.
        """
        report = ImportReport()
        for row, values in self._read_sheet(path, PRODUCT_HEADERS):
            try:
                stock = values.get("stock")
                product = self.inventory.add_product(
                    sku=_text(values.get("sku")) or "",
                    name=_text(values.get("name")) or "",
                    pieces_per_sheet=_whole(values.get("pieces_per_sheet"), "pieces_per_sheet"),
                    sheets_per_box=_whole(values.get("sheets_per_box"), "sheets_per_box"),
                    reorder_level=_whole(values.get("reorder_level"), "reorder_level"),
                    min_stock_level=_whole(values.get("min_stock_level"), "min_stock_level"),
                    expiry_date=_expiry(values.get("expiry_date")),
                    initial_stock=0 if _blank(stock) else _whole(stock, "stock"),
                    actor_id=actor_id,
                )
            except AppError as e:
                log.warning("Excel product import rejected row %s: %s", row, e)
                report.rows.append(ImportRow(row=row, error=e))
                continue

            opening = self.repo.list_movements(MovementFilter(product_id=product.id), limit=1) if product.stock_quantity else []
            report.rows.append(ImportRow(row=row, product=product, movement=opening[0] if opening else None))

        log.info("excel_products_imported path=%s ok=%s failed=%s", path, report.applied, report.failed)
        return report
