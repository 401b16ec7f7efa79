import asyncio
import json
from datetime import date

import httpx
import pytest

from client import ApiError, BudgetApiClient, DashboardLoader, TransactionFeed
from schemas import BudgetIn, TransactionTypeOut

REPORT = {
    "month": "2026-01",
    "summary": [
        {
            "type_id": 1,
            "type_name": "Groceries",
            "budget": 1000,
            "spend": 800,
            "transactions_count": 2,
            "shares": [{"user_id": "a", "spend": 800, "transactions_count": 2}],
        },
        {
            "type_id": 2,
            "type_name": "Home",
            "budget": 500,
            "spend": 0,
            "transactions_count": 0,
            "shares": [],
        },
    ],
    "totals": {"budget": 1500, "spend": 800},
}

BUDGETS = [
    {
        "month_date": "2026-01-01",
        "type_id": 2,
        "amount": 100,
        "created_at": "2026-01-01T00:00:00",
        "updated_at": "2026-01-01T00:00:00",
    }
]


def _transaction(n: int) -> dict:
    return {
        "id": f"00000000-0000-0000-0000-00000000000{n}",
        "user_id": "a",
        "type_id": 1,
        "amount": 10 * n,
        "description": f"item {n}",
        "date": f"2026-01-0{n}",
        "ai_status": None,
        "ai_confidence": None,
        "is_manual_override": False,
        "import_hash": None,
        "created_at": "2026-01-01T00:00:00",
        "updated_at": "2026-01-01T00:00:00",
    }


def _api(handler) -> BudgetApiClient:
    transport = httpx.MockTransport(handler)
    return BudgetApiClient(httpx.AsyncClient(transport=transport, base_url="http://budget.test"))


def test_dashboard_loader_maps_report_with_budgets() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["month"] == "2026-01"
        if request.url.path == "/api/reports/monthly":
            return httpx.Response(200, json=REPORT)
        if request.url.path == "/api/budgets":
            return httpx.Response(200, json=BUDGETS)
        return httpx.Response(404)

    async def run():
        async with _api(handler) as api:
            return await DashboardLoader(api).load("2026-01", today=date(2026, 1, 20))

    state = asyncio.run(run())
    assert state.month == "2026-01"
    assert state.chart_items[0].status == "warn"
    assert state.chart_items[1].budget == 100
    assert state.total.percent == pytest.approx(800 / 1500 * 100)
    assert state.readonly.can_edit_budgets is True


def test_dashboard_loader_cancels_superseded_load() -> None:
    async def run():
        slow_month_started = asyncio.Event()
        never = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            month = request.url.params["month"]
            if month == "2025-12":
                slow_month_started.set()
                await never.wait()
            body = REPORT if request.url.path.endswith("monthly") else []
            return httpx.Response(200, json={**body, "month": month} if body else body)

        async with _api(handler) as api:
            loader = DashboardLoader(api)
            stale = asyncio.create_task(loader.load("2025-12", today=date(2026, 1, 20)))
            await slow_month_started.wait()
            fresh = await loader.load("2026-01", today=date(2026, 1, 20))
            with pytest.raises(asyncio.CancelledError):
                await stale
            return loader, fresh

    loader, fresh = asyncio.run(run())
    assert fresh.month == "2026-01"
    assert loader.state is fresh


def test_api_error_carries_server_error_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"error": {"code": "VALIDATION_ERROR", "message": "Invalid budget"}},
        )

    async def run():
        async with _api(handler) as api:
            await api.upsert_budget(BudgetIn(month_date=date(2026, 1, 1), type_id=1, amount=5))

    with pytest.raises(ApiError) as exc_info:
        asyncio.run(run())
    assert exc_info.value.status_code == 400
    assert exc_info.value.code == "VALIDATION_ERROR"
    assert exc_info.value.message == "Invalid budget"


def test_upsert_budget_posts_json() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body == {"month_date": "2026-01-01", "type_id": 1, "amount": 5.0}
        return httpx.Response(201, json={**BUDGETS[0], "type_id": 1, "amount": 5})

    async def run():
        async with _api(handler) as api:
            return await api.upsert_budget(BudgetIn(month_date=date(2026, 1, 1), type_id=1, amount=5))

    saved = asyncio.run(run())
    assert saved.amount == 5


def test_transaction_feed_follows_cursor() -> None:
    calls: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        calls.append(params)
        if "cursor" not in params:
            return httpx.Response(
                200,
                json={"data": [_transaction(1), _transaction(2)], "count": 3, "next_cursor": "abc"},
            )
        return httpx.Response(200, json={"data": [_transaction(3)], "count": 3, "next_cursor": None})

    types = [TransactionTypeOut(id=1, code="GROCERY", name="Groceries", position=1)]

    async def run():
        async with _api(handler) as api:
            feed = TransactionFeed(api=api, types=types, page_size=2)
            await feed.load_first("2026-01", q=" milk ", order="amount.asc")
            assert feed.has_more is True
            await feed.load_more()
            return feed

    feed = asyncio.run(run())
    assert [item.description for item in feed.items] == ["item 1", "item 2", "item 3"]
    assert feed.has_more is False
    assert feed.count == 3
    assert calls[0] == {"month": "2026-01", "limit": "2", "q": "milk", "order": "date.desc"}
    assert calls[1]["cursor"] == "abc"
