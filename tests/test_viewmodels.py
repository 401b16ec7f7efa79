from datetime import date, datetime

import pytest

from models import AIStatus
from schemas import (
    MonthlyReportItemOut,
    MonthlyReportOut,
    MonthlyReportShareOut,
    MonthlyReportTotalsOut,
    TransactionOut,
    TransactionTypeOut,
)
from viewmodels import (
    confidence_level,
    format_currency,
    format_percent,
    map_report_to_chart_items,
    map_report_to_total,
    map_transaction_to_vm,
    threshold_status,
)


@pytest.mark.parametrize(
    ("percent", "expected"),
    [(0, "ok"), (79.99, "ok"), (80, "warn"), (100, "warn"), (100.01, "over")],
)
def test_threshold_status(percent: float, expected: str) -> None:
    assert threshold_status(percent) == expected


def _report(budget: float, spend: float, shares=None) -> MonthlyReportOut:
    return MonthlyReportOut(
        month="2026-01",
        summary=[
            MonthlyReportItemOut(
                type_id=1,
                type_name="Groceries",
                budget=budget,
                spend=spend,
                transactions_count=3,
                shares=shares or [],
            )
        ],
        totals=MonthlyReportTotalsOut(budget=budget, spend=spend),
    )


def test_chart_item_over_budget() -> None:
    report = _report(
        200,
        250,
        shares=[
            MonthlyReportShareOut(user_id="a", spend=50, transactions_count=1),
            MonthlyReportShareOut(user_id="b", spend=200, transactions_count=1),
            MonthlyReportShareOut(user_id="c", spend=0, transactions_count=1),
        ],
    )
    [item] = map_report_to_chart_items(report, {})
    assert item.percent == 125
    assert item.status == "over"
    assert item.over_amount == 50
    assert [(s.user_id, s.amount) for s in item.shares] == [("b", 200), ("a", 50)]


def test_zero_budget_is_always_ok() -> None:
    [item] = map_report_to_chart_items(_report(0, 90), {})
    assert item.percent == 0
    assert item.status == "ok"
    assert item.over_amount == 90
    assert map_report_to_total(_report(0, 90)).status == "ok"


def test_explicit_budget_overrides_report_budget() -> None:
    [item] = map_report_to_chart_items(_report(1000, 450), {1: 500})
    assert item.budget == 500
    assert item.percent == 90
    assert item.status == "warn"

    [fallback] = map_report_to_chart_items(_report(1000, 450), {1: None})
    assert fallback.budget == 1000


def test_transaction_vm_falls_back_for_unknown_category_and_missing_ai() -> None:
    now = datetime(2026, 1, 2, 10, 0)
    txn = TransactionOut(
        id="t-1",
        user_id="u",
        type_id=42,
        amount=12.3,
        description="Mystery",
        date=date(2026, 1, 2),
        is_manual_override=False,
        created_at=now,
        updated_at=now,
    )
    vm = map_transaction_to_vm(txn, [TransactionTypeOut(id=1, code="GROCERY", name="Groceries", position=1)])
    assert vm.type.name == "Unknown category"
    assert vm.ai.status == "error"
    assert vm.ai.level == "low"
    assert vm.date == "2026-01-02"

    known = txn.model_copy(update={"type_id": 1, "ai_status": AIStatus.success, "ai_confidence": 0.8})
    vm = map_transaction_to_vm(known, [TransactionTypeOut(id=1, code="GROCERY", name="Groceries", position=1)])
    assert vm.type.code == "GROCERY"
    assert vm.ai.status == "success"
    assert vm.ai.level == "high"


def test_confidence_levels() -> None:
    assert confidence_level(None) == "low"
    assert confidence_level(0.49) == "low"
    assert confidence_level(0.5) == "medium"
    assert confidence_level(0.8) == "high"


def test_formatting() -> None:
    assert format_currency(1234.5) == "1 234,50 zł"
    assert format_currency(1000, decimals=0) == "1 000 zł"
    assert format_percent(79.6) == "80%"
    assert format_percent(12.345, decimals=1) == "12.3%"
