from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerMismatch:
    product_id: int
    sku: str
    kind: str
    expected: int
    actual: int
    movement_id: Optional[int] = None


@dataclass(frozen=True)
class HealthReport:
    sqlite_integrity: str
    products_checked: int
    mismatches: list[LedgerMismatch] = field(default_factory=list)
    generated_at: str = ""

    @property
    def ok(self) -> bool:
        return self.sqlite_integrity == "ok" and not self.mismatches


class OperationsService:
    def __init__(self, repo):
        self.repo = repo

    def reconcile_ledger(self) -> tuple[int, list[LedgerMismatch]]:
        """
        Rebuild each balance from its movement log.

        Reports 'balance' when stock_quantity differs from the sum of changes and
        'chain' when a movement's quantity_before does not follow the previous
        movement's quantity_after.
        """
        totals = self.repo.ledger_totals()
        mismatches: list[LedgerMismatch] = []
        for product_id, sku, stock_quantity, ledger_sum in totals:
            if stock_quantity != ledger_sum:
                mismatches.append(LedgerMismatch(product_id, sku, "balance", expected=ledger_sum, actual=stock_quantity))

            running = 0
            for m in self.repo.movement_chain(product_id):
                if m.quantity_before != running:
                    mismatches.append(
                        LedgerMismatch(product_id, sku, "chain", expected=running, actual=m.quantity_before, movement_id=m.id)
                    )
                running = m.quantity_after
        return len(totals), mismatches

    def run_health_check(self) -> HealthReport:
        integrity = self.repo.integrity_check()
        checked, mismatches = self.reconcile_ledger()
        report = HealthReport(
            sqlite_integrity=integrity,
            products_checked=checked,
            mismatches=mismatches,
            generated_at=datetime.now().isoformat(timespec="seconds"),
        )
        if report.ok:
            log.info("health_check_ok products=%s", checked)
        else:
            log.error("health_check_failed integrity=%s mismatches=%s", integrity, len(mismatches))
        return report
