from __future__ import annotations

from typing import Iterator, Optional

from stockledger.domain.errors import InvalidMovementTypeError, ValidationError
from stockledger.domain.models import MOVEMENT_TYPES, MovementFilter, MovementSummary, StockMovement


class MovementCursor:
    """Newest-first movements fetched page by page. Each iteration starts over from the top."""

    def __init__(self, repo, flt: Optional[MovementFilter], limit: Optional[int], page_size: int):
        self.repo = repo
        self.filter = flt
        self.limit = limit
        self.page_size = page_size

    def __iter__(self) -> Iterator[StockMovement]:
        remaining = self.limit
        before_id = None
        while remaining is None or remaining > 0:
            size = self.page_size if remaining is None else min(self.page_size, remaining)
            page = self.repo.list_movements(self.filter, limit=size, before_id=before_id)
            if not page:
                return
            yield from page
            if remaining is not None:
                remaining -= len(page)
            if len(page) < size:
                return
            before_id = page[-1].id


class MovementQueryService:
    def __init__(self, repo):
        self.repo = repo

    @staticmethod
    def _check_filter(flt: Optional[MovementFilter]) -> None:
        if flt is None:
            return
        if flt.movement_type is not None and flt.movement_type not in MOVEMENT_TYPES:
            raise InvalidMovementTypeError(f"Unknown movement type: {flt.movement_type!r}")
        start, end = flt.date_from, flt.date_to
        if start is not None and end is not None and type(start) is type(end) and start > end:
            raise ValidationError("date_from must not be after date_to.")

    def list(self, flt: Optional[MovementFilter] = None, limit: int = 100) -> list[StockMovement]:
        self._check_filter(flt)
        if limit <= 0:
            raise ValidationError("Limit must be >= 1.")
        return self.repo.list_movements(flt, limit=limit)

    def iter_movements(
        self,
        flt: Optional[MovementFilter] = None,
        limit: Optional[int] = None,
        page_size: int = 100,
    ) -> MovementCursor:
        self._check_filter(flt)
        if page_size <= 0:
            raise ValidationError("Page size must be >= 1.")
        if limit is not None and limit < 0:
            raise ValidationError("Limit must be >= 0.")
        return MovementCursor(self.repo, flt, limit, page_size)

    def summarize(self, flt: Optional[MovementFilter] = None) -> dict[str, MovementSummary]:
        self._check_filter(flt)
        return self.repo.summarize_movements(flt)
