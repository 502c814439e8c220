from __future__ import annotations

import math
from decimal import Decimal
from typing import Union

from stockledger.domain.errors import InvalidConfigurationError, InvalidQuantityError, InvalidUnitError
from stockledger.domain.models import UNIT_BOX, UNIT_PIECE, UNIT_SHEET, UNITS, Product, StockBreakdown

Number = Union[int, float]

# Largest value an SQLite INTEGER column can hold.
MAX_BASE_QUANTITY = 2**63 - 1

UNIT_LABELS = {UNIT_PIECE: "Piece", UNIT_SHEET: "Sheet", UNIT_BOX: "Box"}
_PLURAL_LABELS = {UNIT_PIECE: "Pieces", UNIT_SHEET: "Sheets", UNIT_BOX: "Boxes"}


def _check_configuration(product: Product) -> None:
    if int(product.pieces_per_sheet) < 1 or int(product.sheets_per_box) < 1:
        raise InvalidConfigurationError(
            f"Invalid packaging for product {product.id}: "
            f"pieces_per_sheet={product.pieces_per_sheet}, sheets_per_box={product.sheets_per_box}"
        )


def unit_size(unit: str, product: Product) -> int:
    """Number of base units (pieces) in one `unit` of `product`."""
    if unit not in UNITS:
        raise InvalidUnitError(f"Unknown unit: {unit!r}. Expected one of {', '.join(UNITS)}.")
    _check_configuration(product)
    if unit == UNIT_SHEET:
        return int(product.pieces_per_sheet)
    if unit == UNIT_BOX:
        return int(product.pieces_per_sheet) * int(product.sheets_per_box)
    return 1


def to_base_units(quantity: Number, unit: str, product: Product) -> int:
    """
    Convert a positive caller quantity into pieces.

    Fractional quantities are accepted only when they land on a whole number
    of pieces (half a box of 50 is 25 pieces, a third of a sheet of 10 is not).
    """
    size = unit_size(unit, product)
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
        raise InvalidQuantityError(f"Quantity must be a number. Received: {quantity!r}")
    if quantity <= 0:
        raise InvalidQuantityError(f"Quantity must be > 0. Received: {quantity}")
    if isinstance(quantity, int):
        return _bounded(quantity * size, quantity, unit)
    if not math.isfinite(quantity):
        raise InvalidQuantityError(f"Quantity must be a finite number. Received: {quantity!r}")

    base = Decimal(str(quantity)) * size
    if base != base.to_integral_value():
        raise InvalidQuantityError(f"{quantity} {unit} is not a whole number of pieces.")
    return _bounded(int(base), quantity, unit)


def _bounded(base: int, quantity: Number, unit: str) -> int:
    if base > MAX_BASE_QUANTITY:
        raise InvalidQuantityError(f"{quantity} {unit} exceeds the largest storable quantity.")
    return base


def from_base_units(base_quantity: int, unit: str, product: Product) -> Number:
    """Inverse of to_base_units, for display. Does not round."""
    size = unit_size(unit, product)
    if size == 1:
        return base_quantity
    return base_quantity / size


def stock_breakdown(base_quantity: int, product: Product) -> StockBreakdown:
    _check_configuration(product)
    per_sheet = int(product.pieces_per_sheet)
    per_box = per_sheet * int(product.sheets_per_box)
    if per_box == 1:
        return StockBreakdown(boxes=0, sheets=0, pieces=int(base_quantity))

    boxes, rest = divmod(int(base_quantity), per_box)
    sheets, pieces = divmod(rest, per_sheet)
    return StockBreakdown(boxes=boxes, sheets=sheets, pieces=pieces)


def price_per_unit(price_per_piece: float, unit: str, product: Product) -> float:
    return float(price_per_piece) * unit_size(unit, product)


def available_units(product: Product) -> list[str]:
    units = [UNIT_PIECE]
    if int(product.pieces_per_sheet) > 1:
        units.append(UNIT_SHEET)
    if int(product.sheets_per_box) > 1:
        units.append(UNIT_BOX)
    return units


def format_quantity(quantity: Number, unit: str) -> str:
    if unit not in UNITS:
        raise InvalidUnitError(f"Unknown unit: {unit!r}")
    label = UNIT_LABELS[unit] if quantity == 1 else _PLURAL_LABELS[unit]
    if isinstance(quantity, float) and quantity.is_integer():
        quantity = int(quantity)
    return f"{quantity} {label}"
