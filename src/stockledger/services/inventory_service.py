from __future__ import annotations

import sqlite3
from datetime import date
from typing import Optional, Union

from stockledger.domain.errors import (
    InvalidConfigurationError,
    InvalidQuantityError,
    InvalidThresholdError,
    NotFoundError,
    ValidationError,
)
from stockledger.domain.models import UNIT_PIECE, Product, StockBreakdown
from stockledger.services.unit_converter import stock_breakdown, to_base_units


class InventoryService:
    def __init__(self, repo, ledger):
        self.repo = repo
        self.ledger = ledger

    def list_products(self) -> list[Product]:
        return self.repo.list_products()

    def get_product(self, product_id: int) -> Product:
        p = self.repo.get_product_by_id(int(product_id))
        if not p:
            raise NotFoundError("Product not found.")
        return p

    def get_product_by_sku(self, sku: str) -> Product:
        p = self.repo.get_product_by_sku((sku or "").strip())
        if not p:
            raise NotFoundError("Product not found.")
        return p

    def add_product(
        self,
        sku: str,
        name: str,
        pieces_per_sheet: int = 1,
        sheets_per_box: int = 1,
        reorder_level: int = 0,
        min_stock_level: int = 0,
        expiry_date: Optional[date] = None,
        initial_stock: Union[int, float] = 0,
        initial_unit: str = UNIT_PIECE,
        actor_id: Optional[str] = None,
    ) -> Product:
        """Register a product. Opening stock is booked as a stock_in movement, never written directly."""
        sku = (sku or "").strip()
        name = (name or "").strip()
        if not sku or not name:
            raise ValidationError("SKU and Name are required.")
        if int(pieces_per_sheet) < 1 or int(sheets_per_box) < 1:
            raise InvalidConfigurationError("Pieces per sheet and sheets per box must be >= 1.")
        if int(reorder_level) < 0 or int(min_stock_level) < 0:
            raise InvalidThresholdError("Stock thresholds must be >= 0.")
        if isinstance(initial_stock, bool) or not isinstance(initial_stock, (int, float)):
            raise InvalidQuantityError(f"Initial stock must be a number. Received: {initial_stock!r}")
        if initial_stock < 0:
            raise InvalidQuantityError("Initial stock must be >= 0.")

        draft = Product(
            0, sku, name, int(pieces_per_sheet), int(sheets_per_box), 0, int(reorder_level), int(min_stock_level), expiry_date
        )
        if initial_stock > 0:
            to_base_units(initial_stock, initial_unit, draft)

        try:
            pid, _ = self.ledger.register_product(draft, initial_stock, unit=initial_unit, actor_id=actor_id)
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"SKU already exists: {sku}") from e
        return self.get_product(pid)

    def update_thresholds(self, product_id: int, reorder_level: int, min_stock_level: int) -> None:
        if int(reorder_level) < 0 or int(min_stock_level) < 0:
            raise InvalidThresholdError("Stock thresholds must be >= 0.")
        updated = self.repo.update_product_thresholds(int(product_id), int(reorder_level), int(min_stock_level))
        if not updated:
            raise NotFoundError("Product not found.")

    def set_expiry_date(self, product_id: int, expiry_date: Optional[date]) -> None:
        updated = self.repo.update_product_expiry(int(product_id), expiry_date)
        if not updated:
            raise NotFoundError("Product not found.")

    def deactivate_product(self, product_id: int) -> None:
        removed = self.repo.deactivate_product(int(product_id))
        if not removed:
            raise NotFoundError("Product not found.")

    def stock_breakdown(self, product_id: int) -> StockBreakdown:
        product = self.get_product(product_id)
        return stock_breakdown(product.stock_quantity, product)
