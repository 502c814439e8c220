from datetime import date
from pathlib import Path

import pytest
from conftest import add_tablets, build_services
from openpyxl import Workbook

from stockledger.domain.errors import (
    InsufficientStockError,
    InvalidQuantityError,
    InvalidUnitError,
    NotFoundError,
    ValidationError,
)
from stockledger.domain.models import MovementFilter
from stockledger.services.excel_service import ExcelService


def _workbook(path: Path, rows):
    wb = Workbook()
    ws = wb.active
    for r in rows:
        ws.append(r)
    wb.save(path)
    return str(path)


def _excel(s):
    return ExcelService(s.repo, s.ledger, s.inventory)


def test_movement_import_reports_every_row(tmp_path: Path):
    s = build_services(tmp_path)
    product = add_tablets(s.inventory, stock=100)
    path = _workbook(
        tmp_path / "movements.xlsx",
        [
            ["SKU", "Movement_Type", "Quantity", "Unit", "Reason", "Reference_Number"],
            ["PARA-500", "sale", 1, "box", "Walk-in", "S-1"],
            ["PARA-500", "sale", None, "box", None, None],
            ["NOPE-1", "sale", 1, None, None, None],
            [None, None, None, None, None, None],
            ["PARA-500", "sale", 2, "box", None, None],
            ["PARA-500", "purchase", "3", "Sheet", None, "PO-9"],
            ["PARA-500", "sale", 1, "crate", None, None],
        ],
    )

    report = _excel(s).import_movements_excel(path, actor_id="importer")

    assert [r.row for r in report.rows] == [2, 3, 4, 6, 7, 8]
    assert report.applied == 2
    assert report.failed == 4
    by_row = {r.row: r for r in report.rows}
    assert by_row[2].movement.quantity_after == 50
    assert by_row[2].movement.actor_id == "importer"
    assert isinstance(by_row[3].error, InvalidQuantityError)
    assert isinstance(by_row[4].error, NotFoundError)
    assert isinstance(by_row[6].error, InsufficientStockError)
    assert by_row[7].movement.quantity_change == 30
    assert by_row[7].movement.reference_number == "PO-9"
    assert isinstance(by_row[8].error, InvalidUnitError)
    assert set(report.errors_by_row()) == {3, 4, 6, 8}

    assert s.inventory.get_product(product.id).stock_quantity == 80


def test_movement_import_requires_headers(tmp_path: Path):
    s = build_services(tmp_path)
    path = _workbook(tmp_path / "bad.xlsx", [["sku", "quantity"], ["PARA-500", 1]])

    with pytest.raises(ValidationError, match="movement_type"):
        _excel(s).import_movements_excel(path)


def test_product_import_books_opening_stock_and_rejects_missing_thresholds(tmp_path: Path):
    s = build_services(tmp_path)
    add_tablets(s.inventory, stock=0)
    path = _workbook(
        tmp_path / "products.xlsx",
        [
            ["sku", "name", "pieces_per_sheet", "sheets_per_box", "reorder_level", "min_stock_level", "expiry_date", "stock"],
            ["AMOX-250", "Amoxicillin", 8, 4, 20, 10, date(2026, 1, 31), 64],
            ["CETI-10", "Cetirizine", 10, 1, None, 5, None, 10],
            ["PARA-500", "Duplicate", 10, 5, 5, 5, None, None],
            ["ORS-1", "Oral Rehydration", 1, 20, 0, 0, "2026-05-01", None],
            ["BAD-1", "Bad expiry", 1, 1, 0, 0, "31/12/2026", None],
        ],
    )

    report = _excel(s).import_products_excel(path)

    by_row = {r.row: r for r in report.rows}
    assert report.applied == 2
    assert by_row[2].product.stock_quantity == 64
    assert by_row[2].product.expiry_date == date(2026, 1, 31)
    assert by_row[2].movement.movement_type == "stock_in"
    assert by_row[2].movement.quantity_change == 64
    assert isinstance(by_row[3].error, ValidationError)
    assert "reorder_level" in str(by_row[3].error)
    assert isinstance(by_row[4].error, ValidationError)
    assert by_row[5].product.expiry_date == date(2026, 5, 1)
    assert by_row[5].movement is None
    assert isinstance(by_row[6].error, ValidationError)

    with pytest.raises(NotFoundError):
        s.inventory.get_product_by_sku("CETI-10")
    assert s.movements.list(MovementFilter(product_id=by_row[5].product.id)) == []
