import logging
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from auth import issue_session_token
from config import get_settings
from database import Base, enable_sqlite_pragmas, get_db
from main import app
from services import seed_transaction_types


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(eng, "connect", enable_sqlite_pragmas)
    Base.metadata.create_all(eng)
    with Session(eng) as session:
        seed_transaction_types(session)
    yield eng
    eng.dispose()


@pytest.fixture()
def client(engine):
    testing_session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = testing_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    cookie = {get_settings().session_cookie: issue_session_token("user-a", "a@example.com")}
    with TestClient(app, cookies=cookie) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _type_id(client: TestClient, code: str) -> int:
    types = client.get("/api/transaction-types").json()
    return next(t["id"] for t in types if t["code"] == code)


def test_requests_without_session_are_unauthorized(client: TestClient) -> None:
    anonymous = TestClient(app)
    response = anonymous.get("/api/transactions")
    assert response.status_code == 401
    assert response.json() == {
        "error": {"code": "UNAUTHORIZED", "message": "Authentication required"}
    }

    anonymous.cookies.set(get_settings().session_cookie, "tampered.token.value")
    assert anonymous.get("/api/budgets").status_code == 401


def test_transaction_types_filter_and_lookup(client: TestClient) -> None:
    types = client.get("/api/transaction-types").json()
    assert [t["position"] for t in types] == sorted(t["position"] for t in types)

    reversed_types = client.get("/api/transaction-types", params={"order": "position.desc"}).json()
    assert reversed_types[0]["code"] == "OTHER"

    found = client.get("/api/transaction-types", params={"q": "groc"}).json()
    assert [t["code"] for t in found] == ["GROCERY"]

    assert client.get(f"/api/transaction-types/{found[0]['id']}").json()["name"] == "Groceries"
    assert client.get("/api/transaction-types/9999").status_code == 404
    assert client.get("/api/transaction-types/abc").status_code == 400


def test_budget_lifecycle(client: TestClient) -> None:
    type_id = _type_id(client, "CAR")
    payload = {"month_date": "2026-01-20", "type_id": type_id, "amount": 750}

    created = client.post("/api/budgets", json=payload)
    assert created.status_code == 201
    assert created.json()["month_date"] == "2026-01-01"

    updated = client.post("/api/budgets", json={**payload, "amount": 800})
    assert updated.status_code == 200
    assert updated.json()["amount"] == 800

    listed = client.get("/api/budgets", params={"month": "2026-01"}).json()
    assert [(b["type_id"], b["amount"]) for b in listed] == [(type_id, 800)]

    put = client.put(f"/api/budgets/2026-01-01/{type_id}", json={"amount": 820})
    assert put.json()["amount"] == 820
    assert client.put(f"/api/budgets/2026-02-01/{type_id}", json={"amount": 1}).status_code == 404

    assert client.delete(f"/api/budgets/2026-01-01/{type_id}").status_code == 204
    assert client.get(f"/api/budgets/2026-01-01/{type_id}").status_code == 404
    assert client.delete(f"/api/budgets/2026-01-01/{type_id}").status_code == 404


def test_budget_validation_errors(client: TestClient) -> None:
    response = client.post(
        "/api/budgets", json={"month_date": "not-a-date", "type_id": 1, "amount": -5}
    )
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert set(error["details"]) == {"month_date", "amount"}

    unknown = client.post(
        "/api/budgets", json={"month_date": "2026-01-01", "type_id": 999, "amount": 5}
    )
    assert unknown.status_code == 400
    assert unknown.json()["error"]["details"] == {"type_id": 999}

    both = client.get("/api/budgets", params={"month": "2026-01", "month_date": "2026-01-01"})
    assert both.status_code == 400


def test_transaction_lifecycle(client: TestClient) -> None:
    type_id = _type_id(client, "GROCERY")
    body = {"type_id": type_id, "amount": 42.5, "description": "Market", "date": "2026-01-15"}

    created = client.post("/api/transactions", json=body)
    assert created.status_code == 201
    txn = created.json()
    assert txn["user_id"] == "user-a"
    assert len(txn["import_hash"]) == 64

    duplicate = client.post("/api/transactions", json=body)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "CONFLICT"

    fetched = client.get(f"/api/transactions/{txn['id']}")
    assert fetched.json()["description"] == "Market"

    rejected = client.patch(f"/api/transactions/{txn['id']}", json={"ai_status": "success"})
    assert rejected.status_code == 400

    patched = client.patch(
        f"/api/transactions/{txn['id']}",
        json={"is_manual_override": True, "ai_status": "success", "ai_confidence": 0.9},
    )
    assert patched.status_code == 200
    assert patched.json()["ai_status"] == "success"

    assert client.patch(f"/api/transactions/{txn['id']}", json={}).status_code == 400

    replaced = client.put(
        f"/api/transactions/{txn['id']}",
        json={"type_id": type_id, "amount": 40, "description": "Market", "date": "2026-01-16"},
    )
    assert replaced.json()["ai_status"] is None
    assert replaced.json()["is_manual_override"] is False

    deleted = client.delete(f"/api/transactions/{txn['id']}")
    assert deleted.json() == {"ok": True}
    assert client.get(f"/api/transactions/{txn['id']}").status_code == 404
    assert client.get(f"/api/transactions/{uuid.uuid4()}").status_code == 404
    assert client.get("/api/transactions/not-a-uuid").status_code == 400


def test_batch_import_returns_multi_status(client: TestClient) -> None:
    type_id = _type_id(client, "HOME")
    item = {"type_id": type_id, "amount": 10, "description": "Bulb", "date": "2026-01-02"}

    response = client.post("/api/transactions", json={"transactions": [item, item]})
    assert response.status_code == 207
    payload = response.json()
    assert [r["status"] for r in payload["results"]] == ["created", "skipped"]
    assert payload["results"][1]["reason"] == "duplicate"
    assert "error" not in payload["results"][0]
    assert payload["summary"] == {"created": 1, "skipped": 1, "errors": 0}

    empty = client.post("/api/transactions", json={"transactions": []})
    assert empty.status_code == 400


def test_transaction_list_paginates_with_cursor(client: TestClient) -> None:
    type_id = _type_id(client, "FASHION")
    for day in (3, 4, 5):
        client.post(
            "/api/transactions",
            json={"type_id": type_id, "amount": day, "description": f"d{day}", "date": f"2026-01-0{day}"},
        )

    first = client.get("/api/transactions", params={"month": "2026-01", "limit": 2}).json()
    assert [row["description"] for row in first["data"]] == ["d5", "d4"]
    assert first["count"] == 3
    assert first["next_cursor"]

    second = client.get(
        "/api/transactions",
        params={"month": "2026-01", "limit": 2, "cursor": first["next_cursor"]},
    ).json()
    assert [row["description"] for row in second["data"]] == ["d3"]
    assert second["next_cursor"] is None

    assert client.get("/api/transactions", params={"limit": 5000}).status_code == 400
    assert client.get("/api/transactions", params={"cursor": "%%%"}).status_code == 400


def test_monthly_report(client: TestClient) -> None:
    assert client.get("/api/reports/monthly").status_code == 400
    assert client.get("/api/reports/monthly", params={"month": "2026-13"}).status_code == 400

    report = client.get("/api/reports/monthly", params={"month": "2026-01"}).json()
    assert report["month"] == "2026-01"
    assert len(report["summary"]) == 11
    assert report["totals"] == {"budget": 7000, "spend": 0}


def test_invalid_json_body(client: TestClient) -> None:
    response = client.post(
        "/api/budgets", content="{broken", headers={"content-type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_unexpected_errors_are_generic(client: TestClient, monkeypatch) -> None:
    def boom(self, month):
        raise RuntimeError("database exploded")

    monkeypatch.setattr("main.ReportService.monthly_report", boom)
    quiet = TestClient(app, raise_server_exceptions=False, cookies=client.cookies)
    response = quiet.get("/api/reports/monthly", params={"month": "2026-01"})
    assert response.status_code == 500
    assert response.json() == {
        "error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"}
    }


def test_logout_clears_cookie(client: TestClient) -> None:
    response = client.post("/auth/logout")
    assert response.status_code == 200
    assert get_settings().session_cookie in response.headers["set-cookie"]


@pytest.mark.parametrize(
    ("path", "params"),
    [
        ("/api/reports/monthly", {"month": "9999-12"}),
        ("/api/reports/monthly", {"month": "0000-01"}),
        ("/api/transactions", {"month": "9999-12"}),
        ("/api/budgets", {"month": "0000-01"}),
    ],
)
def test_months_outside_calendar_range_are_rejected(
    client: TestClient, path: str, params: dict
) -> None:
    quiet = TestClient(app, raise_server_exceptions=False, cookies=client.cookies)
    response = quiet.get(path, params=params)
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert "month" in error["details"]


def test_report_database_failure_is_logged_once(
    client: TestClient, monkeypatch, caplog
) -> None:
    def broken_scalars(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(Session, "scalars", broken_scalars)
    quiet = TestClient(app, raise_server_exceptions=False, cookies=client.cookies)
    with caplog.at_level(logging.ERROR):
        response = quiet.get("/api/reports/monthly", params={"month": "2026-01"})

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "INTERNAL_ERROR"
    errors = [record for record in caplog.records if record.levelno >= logging.ERROR]
    assert len(errors) == 1
    assert errors[0].exc_info is not None
