from dataclasses import dataclass, field
from typing import Iterable, Literal, Optional

from models import AIStatus
from schemas import BudgetOut, MonthlyReportOut, TransactionOut, TransactionTypeOut

ThresholdStatus = Literal["ok", "warn", "over"]
ConfidenceLevel = Literal["high", "medium", "low"]

UNKNOWN_CATEGORY_NAME = "Unknown category"


@dataclass(frozen=True)
class ShareVM:
    user_id: str
    amount: float


@dataclass(frozen=True)
class ChartItemVM:
    type_id: int
    type_name: str
    budget: Optional[float]
    spend: float
    percent: float
    status: ThresholdStatus
    over_amount: float
    shares: list[ShareVM] = field(default_factory=list)


@dataclass(frozen=True)
class TotalProgressVM:
    budget: float
    spend: float
    percent: float
    status: ThresholdStatus


@dataclass(frozen=True)
class ConfidenceVM:
    status: str
    confidence: Optional[float]
    level: ConfidenceLevel


@dataclass(frozen=True)
class TransactionListItemVM:
    id: str
    type: TransactionTypeOut
    amount: float
    description: str
    date: str
    ai: ConfidenceVM
    is_manual: bool


def threshold_status(percent: float) -> ThresholdStatus:
    if percent < 80:
        return "ok"
    if percent <= 100:
        return "warn"
    return "over"


def _progress(spend: float, budget: Optional[float]) -> tuple[float, ThresholdStatus]:
    visible = budget or 0
    if visible <= 0:
        return 0.0, "ok"
    percent = spend / visible * 100
    return percent, threshold_status(percent)


def create_budget_map(budgets: Iterable[BudgetOut]) -> dict[int, Optional[float]]:
    return {budget.type_id: budget.amount for budget in budgets}


def map_report_to_chart_items(
    report: MonthlyReportOut, budget_by_type: dict[int, Optional[float]]
) -> list[ChartItemVM]:
    """Turn report rows into chart bars.

    An explicit budget from ``budget_by_type`` wins over the report's
    (possibly defaulted) amount.
    """
    items = []
    for row in report.summary:
        budget = budget_by_type.get(row.type_id)
        if budget is None:
            budget = row.budget
        percent, status = _progress(row.spend, budget)
        shares = sorted(
            (
                ShareVM(user_id=share.user_id, amount=share.spend)
                for share in row.shares
                if share.spend > 0
            ),
            key=lambda share: share.amount,
            reverse=True,
        )
        items.append(
            ChartItemVM(
                type_id=row.type_id,
                type_name=row.type_name,
                budget=budget,
                spend=row.spend,
                percent=percent,
                status=status,
                over_amount=max(0.0, row.spend - (budget or 0)),
                shares=shares,
            )
        )
    return items


def map_report_to_total(report: MonthlyReportOut) -> TotalProgressVM:
    percent, status = _progress(report.totals.spend, report.totals.budget)
    return TotalProgressVM(
        budget=report.totals.budget,
        spend=report.totals.spend,
        percent=percent,
        status=status,
    )


def confidence_level(confidence: Optional[float]) -> ConfidenceLevel:
    if confidence is None:
        return "low"
    if confidence >= 0.8:
        return "high"
    if confidence >= 0.5:
        return "medium"
    return "low"


def map_transaction_to_vm(
    txn: TransactionOut, types: Iterable[TransactionTypeOut]
) -> TransactionListItemVM:
    txn_type = next((t for t in types if t.id == txn.type_id), None)
    if txn_type is None:
        txn_type = TransactionTypeOut(
            id=txn.type_id, code="unknown", name=UNKNOWN_CATEGORY_NAME, position=0
        )
    status = txn.ai_status.value if txn.ai_status else AIStatus.error.value
    return TransactionListItemVM(
        id=txn.id,
        type=txn_type,
        amount=txn.amount,
        description=txn.description,
        date=txn.date.isoformat(),
        ai=ConfidenceVM(
            status=status,
            confidence=txn.ai_confidence,
            level=confidence_level(txn.ai_confidence),
        ),
        is_manual=txn.is_manual_override,
    )


def format_currency(amount: float, decimals: int = 2) -> str:
    formatted = f"{amount:,.{decimals}f}".replace(",", " ").replace(".", ",")
    return f"{formatted} zł"


def format_percent(value: float, decimals: int = 0) -> str:
    return f"{value:.{decimals}f}%"
