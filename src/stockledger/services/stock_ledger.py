from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterable, Optional, TypeVar, Union

from stockledger.config import EngineSettings
from stockledger.domain.errors import (
    AppError,
    ContentionError,
    InsufficientStockError,
    InvalidMovementTypeError,
    InvalidQuantityError,
    InvalidUnitError,
    NotFoundError,
)
from stockledger.domain.models import (
    INBOUND_TYPES,
    MOVEMENT_TYPES,
    UNIT_PIECE,
    UNITS,
    MovementOutcome,
    MovementRequest,
    Product,
    StockMovement,
)
from stockledger.repositories.unit_of_work import SqliteUnitOfWork, UnitOfWork
from stockledger.services.unit_converter import MAX_BASE_QUANTITY, to_base_units

log = logging.getLogger("stockledger.ledger")

T = TypeVar("T")


class ProductLocks:
    """One lock per product id; different products never share a lock."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def get(self, product_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(product_id)
            if lock is None:
                lock = self._locks[product_id] = threading.Lock()
            return lock

    def __contains__(self, product_id: int) -> bool:
        with self._guard:
            return product_id in self._locks


def product_key(product_id) -> int:
    """Whole-number ids only. Anything else cannot name a stored product."""
    if isinstance(product_id, str) and product_id.strip().isdigit():
        product_id = int(product_id)
    if isinstance(product_id, bool) or not isinstance(product_id, int) or abs(product_id) > MAX_BASE_QUANTITY:
        raise NotFoundError(f"Product not found: {product_id!r}")
    return product_id


def signed_delta(movement_type: str, magnitude: Union[int, float], unit: str, product: Product) -> int:
    """Base-unit delta for a movement. Only adjustments carry their own sign."""
    if movement_type == "adjustment":
        if isinstance(magnitude, bool) or not isinstance(magnitude, (int, float)):
            raise InvalidQuantityError(f"Quantity must be a number. Received: {magnitude!r}")
        if magnitude == 0:
            raise InvalidQuantityError("Adjustment quantity must be non-zero.")
        base = to_base_units(abs(magnitude), unit, product)
        return base if magnitude > 0 else -base
    base = to_base_units(magnitude, unit, product)
    return base if movement_type in INBOUND_TYPES else -base


class StockLedger:
    def __init__(
        self,
        repo,
        settings: EngineSettings | None = None,
        uow_factory: Callable[[], UnitOfWork] | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repo = repo
        self.settings = settings or EngineSettings()
        self.uow_factory = uow_factory or (lambda: SqliteUnitOfWork(repo))
        self.clock = clock or datetime.now
        self._sleep = sleep
        self._locks = ProductLocks()

    def apply(
        self,
        product_id: int,
        movement_type: str,
        magnitude: Union[int, float],
        unit: str = UNIT_PIECE,
        reason: Optional[str] = None,
        reference_number: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> StockMovement:
        """
        Apply one signed movement and return the written ledger entry.

        The balance update and the movement insert commit together or not at all.
        Raises InsufficientStockError when the balance would go negative and
        ContentionError when the product cannot be locked in time.
        """
        if movement_type not in MOVEMENT_TYPES:
            raise InvalidMovementTypeError(f"Unknown movement type: {movement_type!r}")
        if unit not in UNITS:
            raise InvalidUnitError(f"Unknown unit: {unit!r}. Expected one of {', '.join(UNITS)}.")

        product_id = product_key(product_id)
        if self.repo.get_product_by_id(product_id) is None:
            raise NotFoundError(f"Product not found: {product_id}")

        lock = self._locks.get(product_id)
        if not lock.acquire(timeout=self.settings.lock_timeout_seconds):
            log.warning("lock_timeout product_id=%s timeout=%.2f", product_id, self.settings.lock_timeout_seconds)
            raise ContentionError(f"Timed out waiting for product {product_id}.")
        try:
            movement = self._with_retry(
                f"product_id={product_id}",
                lambda: self._apply_once(product_id, movement_type, magnitude, unit, reason, reference_number, actor_id),
            )
        finally:
            lock.release()

        log.info(
            "movement_applied id=%s product_id=%s type=%s change=%s before=%s after=%s unit=%s actor=%s",
            movement.id,
            movement.product_id,
            movement.movement_type,
            movement.quantity_change,
            movement.quantity_before,
            movement.quantity_after,
            movement.unit_used_by_caller,
            movement.actor_id,
        )
        return movement

    def register_product(
        self,
        draft: Product,
        initial_stock: Union[int, float] = 0,
        unit: str = UNIT_PIECE,
        actor_id: Optional[str] = None,
    ) -> tuple[int, Optional[StockMovement]]:
        """
        Insert `draft` and its opening stock_in movement in one transaction.

        Either both rows are written or neither is. Returns the new product id
        and the opening movement (None when there is no opening stock).
        """
        if unit not in UNITS:
            raise InvalidUnitError(f"Unknown unit: {unit!r}. Expected one of {', '.join(UNITS)}.")

        def register() -> tuple[int, Optional[StockMovement]]:
            with self.uow_factory() as uow:
                product_id = uow.insert_product(draft)
                if not initial_stock:
                    return product_id, None
                product = replace(draft, id=product_id, stock_quantity=0)
                return product_id, self._book(uow, product, "stock_in", initial_stock, unit, "Initial stock", None, actor_id)

        product_id, movement = self._with_retry(f"sku={draft.sku}", register)
        log.info("product_registered id=%s sku=%s opening=%s", product_id, draft.sku, movement.quantity_after if movement else 0)
        return product_id, movement

    def _with_retry(self, target: str, op: Callable[[], T]) -> T:
        attempts = self.settings.max_retries + 1
        last_err: ContentionError | None = None
        for attempt in range(1, attempts + 1):
            try:
                return op()
            except ContentionError as e:
                last_err = e
                log.warning("apply_retry %s attempt=%s/%s error=%s", target, attempt, attempts, e)
                if attempt < attempts:
                    self._sleep(self.settings.retry_backoff_seconds * attempt)
        raise ContentionError(f"Gave up on {target} after {attempts} attempts. Last error: {last_err}")

    def _apply_once(self, product_id, movement_type, magnitude, unit, reason, reference_number, actor_id) -> StockMovement:
        with self.uow_factory() as uow:
            product = uow.get_product(product_id)
            if product is None:
                raise NotFoundError(f"Product not found: {product_id}")
            return self._book(uow, product, movement_type, magnitude, unit, reason, reference_number, actor_id)

    def _book(self, uow, product, movement_type, magnitude, unit, reason, reference_number, actor_id) -> StockMovement:
        delta = signed_delta(movement_type, magnitude, unit, product)
        before = int(product.stock_quantity)
        after = before + delta
        if after < 0:
            raise InsufficientStockError(product.id, before, -delta)
        if after > MAX_BASE_QUANTITY:
            raise InvalidQuantityError(f"Balance for product {product.id} would exceed the largest storable quantity.")

        if not uow.compare_and_set_stock(product.id, before, after):
            raise ContentionError(f"Stock for product {product.id} changed concurrently.")

        return uow.insert_movement(
            product_id=product.id,
            movement_type=movement_type,
            quantity_change=delta,
            quantity_before=before,
            quantity_after=after,
            unit_used_by_caller=unit,
            quantity_in_unit=abs(float(magnitude)),
            reason=reason,
            reference_number=reference_number,
            actor_id=actor_id,
            created_at=self.clock().replace(microsecond=0).isoformat(sep=" "),
        )

    def submit(self, request: MovementRequest) -> MovementOutcome:
        try:
            movement = self.apply(
                request.product_id,
                request.movement_type,
                request.quantity,
                unit=request.unit,
                reason=request.reason,
                reference_number=request.reference_number,
                actor_id=request.actor_id,
            )
        except AppError as e:
            log.warning(
                "movement_rejected product_id=%s type=%s error=%s: %s",
                request.product_id,
                request.movement_type,
                type(e).__name__,
                e,
            )
            return MovementOutcome(request=request, error=e)
        return MovementOutcome(request=request, movement=movement)

    def bulk_apply(self, requests: Iterable[MovementRequest]) -> list[MovementOutcome]:
        """Apply each request on its own, in submission order. Failures do not undo earlier requests."""
        outcomes = [self.submit(r) for r in requests]
        failed = sum(1 for o in outcomes if not o.success)
        log.info("bulk_applied total=%s ok=%s failed=%s", len(outcomes), len(outcomes) - failed, failed)
        return outcomes
