from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, Iterable, Optional

from stockledger.domain.errors import InvalidThresholdError, NotFoundError
from stockledger.domain.models import (
    SEVERITY_CRITICAL,
    SEVERITY_INFO,
    SEVERITY_RANK,
    SEVERITY_WARNING,
    AlertCondition,
    AlertThresholds,
    Product,
)

log = logging.getLogger("stockledger.alerts")


def validate_thresholds(product: Product, thresholds: AlertThresholds) -> None:
    if int(product.min_stock_level) < 0 or int(product.reorder_level) < 0:
        raise InvalidThresholdError(
            f"Stock thresholds must be >= 0 for product {product.id}: "
            f"min_stock_level={product.min_stock_level}, reorder_level={product.reorder_level}"
        )
    if int(thresholds.expiry_warning_days) < 0:
        raise InvalidThresholdError(f"Expiry warning days must be >= 0. Received: {thresholds.expiry_warning_days}")


def evaluate(
    product: Product,
    thresholds: AlertThresholds,
    current_date: date,
    computed_at: Optional[datetime] = None,
) -> list[AlertCondition]:
    """
    Classify one product's current state. No alerts is an empty list.

    Stock: out_of_stock (critical) when empty, else low_stock (warning) at or
    below min_stock_level. reorder_needed (info) at or below reorder_level is
    checked independently and can co-occur with either.
    Expiry: expired (critical) once past the date, else expiring_soon (warning)
    within expiry_warning_days.
    """
    validate_thresholds(product, thresholds)
    if not thresholds.enabled:
        return []
    if isinstance(current_date, datetime):
        current_date = current_date.date()
    at = computed_at or datetime.now()

    def alert(kind: str, severity: str, message: str) -> AlertCondition:
        return AlertCondition(type=kind, severity=severity, product_id=product.id, message=message, computed_at=at)

    qty = int(product.stock_quantity)
    alerts: list[AlertCondition] = []

    if qty == 0:
        alerts.append(alert("out_of_stock", SEVERITY_CRITICAL, f"{product.name} is completely out of stock"))
    elif qty <= int(product.min_stock_level):
        alerts.append(alert("low_stock", SEVERITY_WARNING, f"{product.name} is running low ({qty} units remaining)"))

    if qty <= int(product.reorder_level):
        alerts.append(alert("reorder_needed", SEVERITY_INFO, f"{product.name} has reached reorder point ({qty} units)"))

    if product.expiry_date is not None:
        days_left = (product.expiry_date - current_date).days
        if days_left < 0:
            alerts.append(alert("expired", SEVERITY_CRITICAL, f"{product.name} expired {abs(days_left)} days ago"))
        elif days_left <= int(thresholds.expiry_warning_days):
            alerts.append(alert("expiring_soon", SEVERITY_WARNING, f"{product.name} expires in {days_left} days"))

    return alerts


def sort_alerts(alerts: Iterable[AlertCondition]) -> list[AlertCondition]:
    """critical, then warning, then info; newest first within a severity."""
    newest_first = sorted(alerts, key=lambda a: a.computed_at, reverse=True)
    return sorted(newest_first, key=lambda a: SEVERITY_RANK[a.severity])


class AlertService:
    """Loads products and stored thresholds, then evaluates. Never writes stock."""

    def __init__(self, repo, default_thresholds: AlertThresholds | None = None, clock: Callable[[], datetime] | None = None):
        self.repo = repo
        self.default_thresholds = default_thresholds or AlertThresholds()
        self.clock = clock or datetime.now

    def get_thresholds(self) -> AlertThresholds:
        return self.repo.get_alert_settings() or self.default_thresholds

    def update_thresholds(self, expiry_warning_days: int, enabled: bool = True) -> AlertThresholds:
        if int(expiry_warning_days) < 0:
            raise InvalidThresholdError(f"Expiry warning days must be >= 0. Received: {expiry_warning_days}")
        thresholds = AlertThresholds(expiry_warning_days=int(expiry_warning_days), enabled=bool(enabled))
        self.repo.save_alert_settings(thresholds)
        log.info("alert_thresholds_updated expiry_warning_days=%s enabled=%s", thresholds.expiry_warning_days, thresholds.enabled)
        return thresholds

    def evaluate_product(self, product_id: int) -> list[AlertCondition]:
        product = self.repo.get_product_by_id(int(product_id))
        if not product:
            raise NotFoundError("Product not found.")
        now = self.clock()
        return sort_alerts(evaluate(product, self.get_thresholds(), now.date(), computed_at=now))

    def evaluate_all(self) -> list[AlertCondition]:
        thresholds = self.get_thresholds()
        now = self.clock()
        alerts: list[AlertCondition] = []
        for product in self.repo.list_products():
            alerts.extend(evaluate(product, thresholds, now.date(), computed_at=now))
        critical = sum(1 for a in alerts if a.severity == SEVERITY_CRITICAL)
        log.info("alerts_evaluated total=%s critical=%s", len(alerts), critical)
        return sort_alerts(alerts)
