import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


@dataclass(frozen=True)
class MonthWindow:
    """Half-open date window [start, next_start) covering one calendar month."""

    start: date
    next_start: date

    @property
    def end(self) -> date:
        return self.next_start - date.resolution

    @property
    def value(self) -> str:
        return format_month(self.start)


@dataclass(frozen=True)
class ReadonlyFlags:
    is_readonly: bool
    can_edit_budgets: bool
    can_edit_transactions: bool


def first_of_month(d: date) -> date:
    return d.replace(day=1)


def add_months(d: date, count: int) -> date:
    index = d.year * 12 + (d.month - 1) + count
    return date(index // 12, index % 12 + 1, 1)


def format_month(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def parse_month(value: str) -> date:
    if not MONTH_RE.match(value or ""):
        raise ValueError("Invalid month format, expected YYYY-MM")
    year_str, month_str = value.split("-", 1)
    return date(int(year_str), int(month_str), 1)


def parse_month_or_none(value: Optional[str]) -> Optional[date]:
    try:
        return parse_month(value or "")
    except ValueError:
        return None


def month_window(month: date | str) -> MonthWindow:
    start = parse_month(month) if isinstance(month, str) else first_of_month(month)
    return MonthWindow(start=start, next_start=add_months(start, 1))


def current_month(*, today: Optional[date] = None) -> date:
    return first_of_month(today or date.today())


def normalize_month_param(
    raw: Optional[str], *, today: Optional[date] = None
) -> date:
    """Parse a ``YYYY-MM`` query value, falling back to the current month.

    Invalid values and months in the future both resolve to the current month.
    """
    fallback = current_month(today=today)
    parsed = parse_month_or_none(raw)
    if parsed is None or parsed > fallback:
        return fallback
    return parsed


def readonly_flags(month: date, *, today: Optional[date] = None) -> ReadonlyFlags:
    current = current_month(today=today)
    previous = add_months(current, -1)
    can_edit = first_of_month(month) in (current, previous)
    return ReadonlyFlags(
        is_readonly=not can_edit,
        can_edit_budgets=can_edit,
        can_edit_transactions=can_edit,
    )
