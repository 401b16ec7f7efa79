"""Async HTTP client for the household budget API and the dashboard loaders built on it."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from months import ReadonlyFlags, format_month, normalize_month_param, readonly_flags
from schemas import (
    BudgetIn,
    BudgetOut,
    MonthlyReportOut,
    TransactionOut,
    TransactionPageOut,
    TransactionTypeOut,
)
from viewmodels import (
    ChartItemVM,
    TotalProgressVM,
    TransactionListItemVM,
    create_budget_map,
    map_report_to_chart_items,
    map_report_to_total,
    map_transaction_to_vm,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FEED_PAGE_SIZE = 30


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str, details: Any = None) -> None:
        super().__init__(f"{code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


def _raise_for_api_error(response: httpx.Response) -> None:
    if response.is_success:
        return
    code = "HTTP_ERROR"
    message = response.text or response.reason_phrase
    details = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        error = body["error"]
        code = error.get("code", code)
        message = error.get("message", message)
        details = error.get("details")
    raise ApiError(response.status_code, code, message, details)


class BudgetApiClient:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @classmethod
    def connect(
        cls, base_url: str, *, session_token: Optional[str] = None, cookie_name: str = "budget_session"
    ) -> "BudgetApiClient":
        cookies = {cookie_name: session_token} if session_token else None
        timeout = httpx.Timeout(20.0, connect=5.0)
        return cls(httpx.AsyncClient(base_url=base_url, cookies=cookies, timeout=timeout))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BudgetApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        response = await self._client.request(method, path, params=params, json=json)
        _raise_for_api_error(response)
        return response.json()

    async def fetch_monthly_report(self, month: str) -> MonthlyReportOut:
        data = await self._request("GET", "/api/reports/monthly", params={"month": month})
        return MonthlyReportOut.model_validate(data)

    async def fetch_budgets(self, month: str) -> list[BudgetOut]:
        data = await self._request("GET", "/api/budgets", params={"month": month})
        return [BudgetOut.model_validate(item) for item in data]

    async def fetch_transaction_types(
        self, *, q: Optional[str] = None, order: str = "position.asc"
    ) -> list[TransactionTypeOut]:
        params: dict[str, Any] = {"order": order}
        if q and q.strip():
            params["q"] = q.strip()
        data = await self._request("GET", "/api/transaction-types", params=params)
        return [TransactionTypeOut.model_validate(item) for item in data]

    async def fetch_transactions(self, month: str, **filters: Any) -> TransactionPageOut:
        params: dict[str, Any] = {"month": month}
        for key, value in filters.items():
            if value is None or value == "":
                continue
            if key == "page_size":
                key = "pageSize"
            if isinstance(value, bool):
                value = "true" if value else "false"
            params[key] = value
        data = await self._request("GET", "/api/transactions", params=params)
        return TransactionPageOut.model_validate(data)

    async def upsert_budget(self, command: BudgetIn) -> BudgetOut:
        data = await self._request("POST", "/api/budgets", json=command.model_dump(mode="json"))
        return BudgetOut.model_validate(data)


class LatestRequestRunner:
    """Runs one load at a time, cancelling the previous one when a new one starts."""

    def __init__(self) -> None:
        self._task: Optional[asyncio.Task] = None

    def cancel(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        self.cancel()
        task = asyncio.ensure_future(factory())
        self._task = task
        return await task


@dataclass
class DashboardState:
    month: str
    chart_items: list[ChartItemVM]
    total: TotalProgressVM
    budgets: list[BudgetOut]
    readonly: ReadonlyFlags


class DashboardLoader:
    def __init__(self, api: BudgetApiClient) -> None:
        self.api = api
        self.state: Optional[DashboardState] = None
        self._runner = LatestRequestRunner()

    async def load(self, month: Optional[str], *, today: Optional[date] = None) -> DashboardState:
        month_date = normalize_month_param(month, today=today)
        state = await self._runner.run(lambda: self._fetch(month_date, today))
        self.state = state
        return state

    async def _fetch(self, month_date: date, today: Optional[date]) -> DashboardState:
        value = format_month(month_date)
        report, budgets = await asyncio.gather(
            self.api.fetch_monthly_report(value), self.api.fetch_budgets(value)
        )
        budget_map = create_budget_map(budgets)
        return DashboardState(
            month=value,
            chart_items=map_report_to_chart_items(report, budget_map),
            total=map_report_to_total(report),
            budgets=budgets,
            readonly=readonly_flags(month_date, today=today),
        )


@dataclass
class TransactionFeed:
    """Cursor-driven, append-only view of one month's transactions."""

    api: BudgetApiClient
    types: list[TransactionTypeOut]
    page_size: int = DEFAULT_FEED_PAGE_SIZE
    items: list[TransactionListItemVM] = field(default_factory=list)
    count: Optional[int] = None
    cursor: Optional[str] = None
    has_more: bool = False
    _month: Optional[str] = None
    _filters: dict[str, Any] = field(default_factory=dict)
    _runner: LatestRequestRunner = field(default_factory=LatestRequestRunner)

    async def load_first(
        self,
        month: str,
        *,
        q: Optional[str] = None,
        type_id: Optional[int] = None,
        order: str = "date.desc",
    ) -> list[TransactionListItemVM]:
        if order not in ("date.asc", "date.desc"):
            order = "date.desc"
        self._month = month
        self._filters = {"q": q.strip() if q else None, "type_id": type_id, "order": order}
        self.items = []
        self.cursor = None
        self.count = None
        page = await self._runner.run(
            lambda: self.api.fetch_transactions(month, limit=self.page_size, **self._filters)
        )
        self._apply(page)
        return self.items

    async def load_more(self) -> list[TransactionListItemVM]:
        if not self.has_more or self._month is None:
            return self.items
        cursor = self.cursor
        page = await self._runner.run(
            lambda: self.api.fetch_transactions(
                self._month, limit=self.page_size, cursor=cursor, **self._filters
            )
        )
        self._apply(page)
        return self.items

    def _apply(self, page: TransactionPageOut) -> None:
        self.items.extend(
            map_transaction_to_vm(TransactionOut.model_validate(row), self.types)
            for row in page.data
        )
        self.count = page.count
        self.cursor = page.next_cursor
        self.has_more = page.next_cursor is not None
        logger.debug(f"transaction_feed_page: rows={len(page.data)} has_more={self.has_more}")
