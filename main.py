import logging
from typing import Any

from fastapi import Body, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from auth import AuthUser, require_user
from config import get_settings
from database import get_db
from errors import (
    INTERNAL_ERROR_CODE,
    INTERNAL_ERROR_MESSAGE,
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
    error_body,
    field_errors,
)
from schemas import (
    BudgetAmountIn,
    BudgetIn,
    BudgetKeyIn,
    BudgetListQuery,
    BudgetOut,
    MonthlyReportQuery,
    TransactionBatchIn,
    TransactionIdIn,
    TransactionIn,
    TransactionListQuery,
    TransactionOut,
    TransactionPatchIn,
    TransactionReplaceIn,
    TransactionTypeIdIn,
    TransactionTypeOut,
    TransactionTypeQuery,
    parse_model,
)
from services import (
    BudgetService,
    ReportService,
    TransactionService,
    TransactionTypeService,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)

app = FastAPI(title="Household Budget")


def _error_response(exc: Any) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details),
    )


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(exc)


for _exc_class in (ValidationError, NotFoundError, ConflictError, UnauthorizedError):
    app.add_exception_handler(_exc_class, domain_error_handler)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return _error_response(ValidationError("Invalid request", field_errors(exc.errors())))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logging.exception(f"unhandled_error: method={request.method} path={request.url.path}")
    return JSONResponse(
        status_code=500, content=error_body(INTERNAL_ERROR_CODE, INTERNAL_ERROR_MESSAGE)
    )


def _query(request: Request) -> dict[str, str]:
    return dict(request.query_params)


def _transaction_id(transaction_id: str) -> str:
    parsed = parse_model(
        TransactionIdIn, {"id": transaction_id}, "Invalid transaction id"
    )
    return str(parsed.id)


def _budget_key(month_date: str, type_id: str) -> BudgetKeyIn:
    return parse_model(
        BudgetKeyIn, {"month_date": month_date, "type_id": type_id}, "Invalid budget key"
    )


# --- transaction types ------------------------------------------------------


@app.get("/api/transaction-types")
def api_transaction_types(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    query = parse_model(TransactionTypeQuery, _query(request), "Invalid query parameters")
    types = TransactionTypeService(db).list(query)
    return [TransactionTypeOut.model_validate(t) for t in types]


@app.get("/api/transaction-types/{type_id}")
def api_transaction_type(
    type_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    parsed = parse_model(TransactionTypeIdIn, {"id": type_id}, "Invalid transaction type id")
    txn_type = TransactionTypeService(db).get(parsed.id)
    return TransactionTypeOut.model_validate(txn_type)


# --- reports ----------------------------------------------------------------


@app.get("/api/reports/monthly")
def api_monthly_report(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    query = parse_model(MonthlyReportQuery, _query(request), "Invalid month")
    return ReportService(db).monthly_report(query.month)


# --- budgets ----------------------------------------------------------------


@app.get("/api/budgets")
def api_budgets(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    query = parse_model(BudgetListQuery, _query(request), "Invalid query parameters")
    budgets = BudgetService(db).list(query)
    return [BudgetOut.model_validate(b) for b in budgets]


@app.post("/api/budgets")
def api_upsert_budget(
    response: Response,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    data = parse_model(BudgetIn, payload, "Invalid budget")
    budget, created = BudgetService(db).upsert(data)
    response.status_code = 201 if created else 200
    return BudgetOut.model_validate(budget)


@app.get("/api/budgets/{month_date}/{type_id}")
def api_budget(
    month_date: str,
    type_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    key = _budget_key(month_date, type_id)
    budget = BudgetService(db).get(key.month_date, key.type_id)
    return BudgetOut.model_validate(budget)


@app.put("/api/budgets/{month_date}/{type_id}")
def api_update_budget(
    month_date: str,
    type_id: str,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    key = _budget_key(month_date, type_id)
    data = parse_model(BudgetAmountIn, payload, "Invalid budget")
    budget = BudgetService(db).update(key.month_date, key.type_id, data.amount)
    return BudgetOut.model_validate(budget)


@app.delete("/api/budgets/{month_date}/{type_id}")
def api_delete_budget(
    month_date: str,
    type_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    key = _budget_key(month_date, type_id)
    BudgetService(db).delete(key.month_date, key.type_id)
    return Response(status_code=204)


# --- transactions -----------------------------------------------------------


@app.get("/api/transactions")
def api_transactions(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    query = parse_model(TransactionListQuery, _query(request), "Invalid query parameters")
    return TransactionService(db, user.id).list(query)


@app.post("/api/transactions")
def api_create_transactions(
    response: Response,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    service = TransactionService(db, user.id)
    if isinstance(payload, dict) and "transactions" in payload:
        batch = parse_model(TransactionBatchIn, payload, "Invalid transactions batch")
        result = service.create_batch(batch)
        response.status_code = 207
        return {
            "results": [
                {k: v for k, v in item.model_dump(mode="json").items() if v is not None}
                for item in result.results
            ],
            "summary": result.summary,
        }

    data = parse_model(TransactionIn, payload, "Invalid transaction")
    txn = service.create(data)
    response.status_code = 201
    return TransactionOut.model_validate(txn)


@app.get("/api/transactions/{transaction_id}")
def api_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    txn = TransactionService(db, user.id).get(_transaction_id(transaction_id))
    return TransactionOut.model_validate(txn)


@app.put("/api/transactions/{transaction_id}")
def api_replace_transaction(
    transaction_id: str,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    txn_id = _transaction_id(transaction_id)
    data = parse_model(TransactionReplaceIn, payload, "Invalid transaction")
    txn = TransactionService(db, user.id).replace(txn_id, data)
    return TransactionOut.model_validate(txn)


@app.patch("/api/transactions/{transaction_id}")
def api_patch_transaction(
    transaction_id: str,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    txn_id = _transaction_id(transaction_id)
    data = parse_model(TransactionPatchIn, payload, "Invalid transaction")
    txn = TransactionService(db, user.id).patch(txn_id, data)
    return TransactionOut.model_validate(txn)


@app.delete("/api/transactions/{transaction_id}")
def api_delete_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    TransactionService(db, user.id).delete(_transaction_id(transaction_id))
    return {"ok": True}


# --- auth -------------------------------------------------------------------


@app.post("/auth/logout")
def logout():
    response = JSONResponse({"ok": True})
    response.delete_cookie(settings.session_cookie)
    return response


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
