from datetime import date, datetime, timedelta
from pathlib import Path

import pytest
from conftest import SteppingClock, add_tablets

from stockledger.application.container import build_container
from stockledger.config import EngineSettings
from stockledger.domain.errors import InvalidThresholdError
from stockledger.domain.models import AlertCondition, AlertThresholds, Product
from stockledger.services.alert_evaluator import AlertService, evaluate, sort_alerts

TODAY = date(2025, 6, 15)


def _product(stock=100, min_stock=0, reorder=0, expiry=None):
    return Product(
        id=7,
        sku="IBU-200",
        name="Ibuprofen",
        pieces_per_sheet=10,
        sheets_per_box=10,
        stock_quantity=stock,
        reorder_level=reorder,
        min_stock_level=min_stock,
        expiry_date=expiry,
    )


def _kinds(alerts):
    return [(a.type, a.severity) for a in alerts]


def test_empty_stock_is_critical_out_of_stock():
    alerts = evaluate(_product(stock=0), AlertThresholds(), TODAY)
    assert _kinds(alerts) == [("out_of_stock", "critical")]
    assert alerts[0].message == "Ibuprofen is completely out of stock"


def test_low_stock_and_reorder_can_co_occur():
    alerts = evaluate(_product(stock=10, min_stock=20, reorder=15), AlertThresholds(), TODAY)
    assert _kinds(alerts) == [("low_stock", "warning"), ("reorder_needed", "info")]


def test_out_of_stock_suppresses_low_stock_but_not_reorder():
    alerts = evaluate(_product(stock=0, min_stock=20, reorder=15), AlertThresholds(), TODAY)
    assert _kinds(alerts) == [("out_of_stock", "critical"), ("reorder_needed", "info")]


def test_healthy_product_has_no_alerts():
    assert evaluate(_product(stock=100, min_stock=20, reorder=15), AlertThresholds(), TODAY) == []


def test_expired_and_expiring_soon():
    expired = evaluate(_product(expiry=TODAY - timedelta(days=1)), AlertThresholds(), TODAY)
    soon = evaluate(_product(expiry=TODAY + timedelta(days=10)), AlertThresholds(expiry_warning_days=30), TODAY)
    later = evaluate(_product(expiry=TODAY + timedelta(days=31)), AlertThresholds(expiry_warning_days=30), TODAY)

    assert _kinds(expired) == [("expired", "critical")]
    assert expired[0].message == "Ibuprofen expired 1 days ago"
    assert _kinds(soon) == [("expiring_soon", "warning")]
    assert soon[0].message == "Ibuprofen expires in 10 days"
    assert later == []


def test_expiry_today_is_expiring_not_expired():
    alerts = evaluate(_product(expiry=TODAY), AlertThresholds(expiry_warning_days=0), TODAY)
    assert _kinds(alerts) == [("expiring_soon", "warning")]


def test_stock_and_expiry_alerts_are_independent():
    alerts = evaluate(_product(stock=5, min_stock=10, expiry=TODAY + timedelta(days=3)), AlertThresholds(), TODAY)
    assert _kinds(alerts) == [("low_stock", "warning"), ("expiring_soon", "warning")]


def test_evaluation_is_repeatable():
    product = _product(stock=0, reorder=5, expiry=TODAY + timedelta(days=2))
    first = evaluate(product, AlertThresholds(), TODAY, computed_at=datetime(2025, 6, 15, 8, 0))
    second = evaluate(product, AlertThresholds(), TODAY, computed_at=datetime(2025, 6, 15, 9, 0))
    assert first == second


def test_disabled_thresholds_produce_no_alerts():
    assert evaluate(_product(stock=0), AlertThresholds(enabled=False), TODAY) == []


@pytest.mark.parametrize(
    "product,thresholds",
    [
        (_product(min_stock=-1), AlertThresholds()),
        (_product(reorder=-5), AlertThresholds()),
        (_product(), AlertThresholds(expiry_warning_days=-1)),
    ],
)
def test_negative_thresholds_are_rejected(product, thresholds):
    with pytest.raises(InvalidThresholdError):
        evaluate(product, thresholds, TODAY)


def test_sort_alerts_by_severity_then_newest():
    old = datetime(2025, 6, 1, 8, 0)
    new = datetime(2025, 6, 2, 8, 0)
    alerts = [
        AlertCondition("reorder_needed", "info", 1, "r", new),
        AlertCondition("low_stock", "warning", 1, "old low", old),
        AlertCondition("expired", "critical", 2, "e", old),
        AlertCondition("low_stock", "warning", 3, "new low", new),
    ]
    ordered = sort_alerts(alerts)
    assert [a.message for a in ordered] == ["e", "new low", "old low", "r"]


def test_alert_service_reads_ledger_state(tmp_path: Path):
    container = build_container(tmp_path / "alerts.db", EngineSettings(expiry_warning_days=45))
    clock = SteppingClock(start=datetime(2025, 6, 15, 12, 0))
    alerts = AlertService(container.repo, clock=clock)

    empty = add_tablets(container.inventory, stock=0, reorder_level=10)
    low = add_tablets(
        container.inventory,
        stock=60,
        sku="AMOX-250",
        name="Amoxicillin",
        min_stock_level=100,
        expiry_date=date(2025, 7, 20),
    )

    assert alerts.get_thresholds().expiry_warning_days == 45
    result = alerts.evaluate_all()
    assert [(a.product_id, a.type) for a in result] == [
        (empty.id, "out_of_stock"),
        (low.id, "low_stock"),
        (low.id, "expiring_soon"),
        (empty.id, "reorder_needed"),
    ]

    container.ledger.apply(empty.id, "purchase", 1, unit="box")
    assert alerts.evaluate_product(empty.id) == []


def test_alert_service_persists_threshold_updates(tmp_path: Path):
    container = build_container(tmp_path / "alert_settings.db")
    container.alerts.update_thresholds(expiry_warning_days=7, enabled=False)

    assert container.repo.get_alert_settings() == AlertThresholds(expiry_warning_days=7, enabled=False)
    with pytest.raises(InvalidThresholdError):
        container.alerts.update_thresholds(expiry_warning_days=-2)
