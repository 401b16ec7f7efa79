from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import func, or_, select, tuple_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cursors import decode_cursor, encode_cursor
from errors import ConflictError, NotFoundError, ValidationError
from models import Budget, Transaction, TransactionType
from months import current_month, month_window, parse_month
from schemas import (
    MAX_PAGE_LIMIT,
    TRANSACTION_SELECTABLE_FIELDS,
    BatchImportItemOut,
    BatchImportOut,
    BatchImportSummaryOut,
    BudgetIn,
    BudgetListQuery,
    MonthlyReportItemOut,
    MonthlyReportOut,
    MonthlyReportShareOut,
    MonthlyReportTotalsOut,
    TransactionBatchIn,
    TransactionIn,
    TransactionListQuery,
    TransactionOut,
    TransactionPageOut,
    TransactionPatchIn,
    TransactionReplaceIn,
    TransactionTypeQuery,
)

logger = logging.getLogger(__name__)

DEFAULT_TRANSACTION_TYPES: tuple[tuple[str, str], ...] = (
    ("GROCERY", "Groceries"),
    ("HOME", "Home"),
    ("HEALTH_BEAUTY", "Health & beauty"),
    ("CAR", "Car"),
    ("FASHION", "Fashion"),
    ("ENTERTAINMENT", "Entertainment"),
    ("BILLS", "Bills"),
    ("FIXED", "Fixed costs"),
    ("UNPLANNED", "Unplanned"),
    ("INVEST", "Investments"),
    ("OTHER", "Other"),
)

DEFAULT_BUDGET_AMOUNT = 1000.0
DEFAULT_BUDGET_BY_CODE: dict[str, float] = {
    "GROCERY": 1000.0,
    "HOME": 500.0,
    "HEALTH_BEAUTY": 300.0,
    "CAR": 800.0,
    "FASHION": 200.0,
    "ENTERTAINMENT": 500.0,
    "BILLS": 1000.0,
    "FIXED": 1000.0,
    "UNPLANNED": 200.0,
    "INVEST": 1000.0,
    "OTHER": 500.0,
}

AI_UPDATE_REJECTED = "AI metadata can only be updated when is_manual_override is true"
DUPLICATE_IMPORT_HASH = "Transaction with the same import_hash already exists"


def default_budget_for(code: str) -> float:
    return DEFAULT_BUDGET_BY_CODE.get(code, DEFAULT_BUDGET_AMOUNT)


def _format_amount(amount: float) -> str:
    if float(amount).is_integer():
        return str(int(amount))
    return repr(float(amount))


def compute_import_hash(txn_date: date, amount: float, description: str) -> str:
    payload = f"{txn_date.isoformat()}|{_format_amount(amount)}|{description}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def seed_transaction_types(session: Session) -> list[TransactionType]:
    existing = {code for code in session.scalars(select(TransactionType.code))}
    for position, (code, name) in enumerate(DEFAULT_TRANSACTION_TYPES, start=1):
        if code not in existing:
            session.add(TransactionType(code=code, name=name, position=position))
    session.commit()
    return session.scalars(
        select(TransactionType).order_by(TransactionType.position)
    ).all()


class TransactionTypeService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self, query: Optional[TransactionTypeQuery] = None) -> list[TransactionType]:
        query = query or TransactionTypeQuery()
        ascending = query.order.endswith(".asc")
        stmt = select(TransactionType).order_by(
            TransactionType.position.asc() if ascending else TransactionType.position.desc(),
            TransactionType.id.asc(),
        )
        if query.q:
            like = f"%{query.q.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(TransactionType.name).like(like),
                    func.lower(TransactionType.code).like(like),
                )
            )
        return self.session.scalars(stmt).all()

    def get(self, type_id: int) -> TransactionType:
        txn_type = self.session.get(TransactionType, type_id)
        if not txn_type:
            raise NotFoundError("Transaction type not found")
        return txn_type

    def exists(self, type_id: int) -> bool:
        found = self.session.scalar(
            select(TransactionType.id).where(TransactionType.id == type_id)
        )
        return found is not None


class BudgetService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _assert_type_exists(self, type_id: int) -> None:
        if not TransactionTypeService(self.session).exists(type_id):
            raise ValidationError("Unknown transaction type", {"type_id": type_id})

    def _find(self, month_date: date, type_id: int) -> Optional[Budget]:
        return self.session.scalar(
            select(Budget).where(
                Budget.month_date == month_date, Budget.type_id == type_id
            )
        )

    def list(
        self, query: Optional[BudgetListQuery] = None, *, today: Optional[date] = None
    ) -> list[Budget]:
        query = query or BudgetListQuery()
        if query.month_date:
            month_date = query.month_date
        elif query.month:
            month_date = parse_month(query.month)
        else:
            month_date = current_month(today=today)

        field, direction = query.order.split(".")
        column = {
            "month_date": Budget.month_date,
            "type_id": Budget.type_id,
            "created_at": Budget.created_at,
        }[field]
        stmt = (
            select(Budget)
            .where(Budget.month_date == month_date)
            .order_by(column.asc() if direction == "asc" else column.desc())
        )
        if query.type_id:
            stmt = stmt.where(Budget.type_id == query.type_id)
        return self.session.scalars(stmt).all()

    def get(self, month_date: date, type_id: int) -> Budget:
        budget = self._find(month_date, type_id)
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def _upsert_statement(self, data: BudgetIn):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            raise NotImplementedError(f"Budget upsert is not supported on {dialect}")

        now = datetime.utcnow()
        stmt = insert(Budget).values(
            month_date=data.month_date,
            type_id=data.type_id,
            amount=data.amount,
            created_at=now,
            updated_at=now,
        )
        return stmt.on_conflict_do_update(
            index_elements=["month_date", "type_id"],
            set_={"amount": stmt.excluded.amount, "updated_at": now},
        )

    def upsert(self, data: BudgetIn) -> tuple[Budget, bool]:
        """Create or overwrite the budget for (month_date, type_id).

        Returns the saved row and whether it was newly created.
        """
        self._assert_type_exists(data.type_id)
        existing_key = self.session.scalar(
            select(Budget.type_id).where(
                Budget.month_date == data.month_date, Budget.type_id == data.type_id
            )
        )
        created = existing_key is None

        self.session.execute(self._upsert_statement(data))
        self.session.commit()

        budget = self.session.get(
            Budget, (data.month_date, data.type_id), populate_existing=True
        )
        logger.info(
            f"budget_upsert: month_date={data.month_date} type_id={data.type_id} "
            f"amount={data.amount} created={created}"
        )
        return budget, created

    def update(self, month_date: date, type_id: int, amount: float) -> Budget:
        self._assert_type_exists(type_id)
        budget = self.get(month_date, type_id)
        budget.amount = amount
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, month_date: date, type_id: int) -> None:
        budget = self.get(month_date, type_id)
        self.session.delete(budget)
        self.session.commit()


@dataclass
class _Stats:
    spend: float = 0.0
    count: int = 0


class ReportService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def monthly_report(self, month: str) -> MonthlyReportOut:
        """Spend vs budget for every category in the month, household wide.

        Categories without transactions are included with zero spend; missing
        budget rows fall back to the per-category default amount.
        """
        window = month_window(month)
        types = self.session.scalars(
            select(TransactionType).order_by(
                TransactionType.position.asc(), TransactionType.id.asc()
            )
        ).all()
        budget_by_type = {
            row.type_id: float(row.amount)
            for row in self.session.execute(
                select(Budget.type_id, Budget.amount).where(
                    Budget.month_date == window.start
                )
            )
        }
        share_rows = self.session.execute(
            select(
                Transaction.type_id,
                Transaction.user_id,
                func.coalesce(func.sum(Transaction.amount), 0).label("spend"),
                func.count(Transaction.id).label("count"),
            )
            .where(
                Transaction.date >= window.start,
                Transaction.date < window.next_start,
            )
            .group_by(Transaction.type_id, Transaction.user_id)
        ).all()

        stats_by_type: dict[int, _Stats] = {}
        shares_by_type: dict[int, list[MonthlyReportShareOut]] = {}
        for row in share_rows:
            spend = float(row.spend or 0)
            stats = stats_by_type.setdefault(row.type_id, _Stats())
            stats.spend += spend
            stats.count += int(row.count)
            if row.user_id and spend != 0:
                shares_by_type.setdefault(row.type_id, []).append(
                    MonthlyReportShareOut(
                        user_id=row.user_id,
                        spend=round(spend, 2),
                        transactions_count=int(row.count),
                    )
                )

        summary: list[MonthlyReportItemOut] = []
        for txn_type in types:
            stats = stats_by_type.get(txn_type.id, _Stats())
            budget = budget_by_type.get(txn_type.id)
            if budget is None:
                budget = default_budget_for(txn_type.code)
            shares = sorted(
                shares_by_type.get(txn_type.id, []),
                key=lambda share: share.spend,
                reverse=True,
            )
            summary.append(
                MonthlyReportItemOut(
                    type_id=txn_type.id,
                    type_name=txn_type.name,
                    budget=budget,
                    spend=round(stats.spend, 2),
                    transactions_count=stats.count,
                    shares=shares,
                )
            )

        totals = MonthlyReportTotalsOut(
            budget=round(sum(item.budget for item in summary), 2),
            spend=round(sum(item.spend for item in summary), 2),
        )
        return MonthlyReportOut(month=window.value, summary=summary, totals=totals)


def sort_is_ascending(order: str) -> bool:
    """Map a client sort value onto the (date, id) ordering.

    Amount sorts are accepted but not implemented; they fall back to the
    newest-first date order.
    """
    field, direction = order.split(".", 1)
    if field != "date":
        logger.debug(f"transactions_sort_fallback: order={order}")
        return False
    return direction == "asc"


class TransactionService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def _assert_type_exists(self, type_id: int) -> None:
        if not TransactionTypeService(self.session).exists(type_id):
            raise ValidationError("Unknown transaction type", {"type_id": type_id})

    def _conditions(self, query: TransactionListQuery) -> list[Any]:
        conditions: list[Any] = [Transaction.user_id == self.user_id]
        if query.month:
            window = month_window(query.month)
            conditions.append(Transaction.date >= window.start)
            conditions.append(Transaction.date < window.next_start)
        if query.start_date:
            conditions.append(Transaction.date >= query.start_date)
        if query.end_date:
            conditions.append(Transaction.date <= query.end_date)
        if query.type_id:
            conditions.append(Transaction.type_id == query.type_id)
        if query.min_amount is not None:
            conditions.append(Transaction.amount >= query.min_amount)
        if query.max_amount is not None:
            conditions.append(Transaction.amount <= query.max_amount)
        if query.q:
            escaped = (
                query.q.lower()
                .replace("\\", "\\\\")
                .replace("%", "\\%")
                .replace("_", "\\_")
            )
            conditions.append(
                func.lower(Transaction.description).like(f"%{escaped}%", escape="\\")
            )
        if query.is_manual_override is not None:
            conditions.append(
                Transaction.is_manual_override.is_(query.is_manual_override)
            )
        if query.import_hash:
            conditions.append(Transaction.import_hash == query.import_hash)
        return conditions

    def list(self, query: TransactionListQuery) -> TransactionPageOut:
        fields = query.projection or list(TRANSACTION_SELECTABLE_FIELDS)
        columns = [Transaction.__table__.c[name] for name in fields]
        key_columns = [
            Transaction.date.label("_cursor_date"),
            Transaction.id.label("_cursor_id"),
        ]
        conditions = self._conditions(query)
        ascending = sort_is_ascending(query.order)
        ordering = (
            [Transaction.date.asc(), Transaction.id.asc()]
            if ascending
            else [Transaction.date.desc(), Transaction.id.desc()]
        )
        limit = min(max(query.limit, 1), MAX_PAGE_LIMIT)

        stmt = select(*columns, *key_columns).where(*conditions).order_by(*ordering)
        if query.cursor:
            boundary = decode_cursor(query.cursor)
            row_key = tuple_(Transaction.date, Transaction.id)
            if ascending:
                stmt = stmt.where(row_key > (boundary.date, boundary.id))
            else:
                stmt = stmt.where(row_key < (boundary.date, boundary.id))
            window_size = limit
            stmt = stmt.limit(window_size)
        else:
            page = query.page or 1
            window_size = min(query.page_size or limit, MAX_PAGE_LIMIT)
            stmt = stmt.offset((page - 1) * window_size).limit(window_size)

        rows = self.session.execute(stmt).all()
        count = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(*conditions)
            ).scalar_one()
            or 0
        )

        data = [{name: row._mapping[name] for name in fields} for row in rows]
        next_cursor = None
        if rows and len(rows) == window_size:
            last = rows[-1]
            next_cursor = encode_cursor(last._cursor_date, last._cursor_id)
        return TransactionPageOut(data=data, count=count, next_cursor=next_cursor)

    def get(self, transaction_id: str) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.id == transaction_id,
                Transaction.user_id == self.user_id,
            )
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def _assert_hash_unused(self, import_hash: str) -> None:
        existing = self.session.scalar(
            select(Transaction.id).where(Transaction.import_hash == import_hash)
        )
        if existing:
            raise ConflictError(DUPLICATE_IMPORT_HASH)

    def _commit_or_conflict(self) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(DUPLICATE_IMPORT_HASH) from exc

    def create(self, data: TransactionIn) -> Transaction:
        self._assert_type_exists(data.type_id)
        import_hash = data.import_hash or compute_import_hash(
            data.date, data.amount, data.description
        )
        self._assert_hash_unused(import_hash)

        txn = Transaction(
            user_id=self.user_id,
            type_id=data.type_id,
            amount=data.amount,
            description=data.description,
            date=data.date,
            import_hash=import_hash,
            is_manual_override=bool(data.is_manual_override),
        )
        self.session.add(txn)
        self._commit_or_conflict()
        self.session.refresh(txn)
        return txn

    def create_batch(self, data: TransactionBatchIn) -> BatchImportOut:
        results: list[BatchImportItemOut] = []
        summary = BatchImportSummaryOut()
        for item in data.transactions:
            try:
                created = self.create(item)
            except ConflictError:
                import_hash = item.import_hash or compute_import_hash(
                    item.date, item.amount, item.description
                )
                results.append(
                    BatchImportItemOut(
                        status="skipped", reason="duplicate", import_hash=import_hash
                    )
                )
                summary.skipped += 1
                continue
            except ValidationError as exc:
                results.append(BatchImportItemOut(status="error", error=exc.message))
                summary.errors += 1
                continue
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.exception("batch_import_item_failed")
                results.append(
                    BatchImportItemOut(status="error", error=exc.__class__.__name__)
                )
                summary.errors += 1
                continue
            results.append(
                BatchImportItemOut(
                    status="created", data=TransactionOut.model_validate(created)
                )
            )
            summary.created += 1

        logger.info(
            f"batch_import: user_id={self.user_id} created={summary.created} "
            f"skipped={summary.skipped} errors={summary.errors}"
        )
        return BatchImportOut(results=results, summary=summary)

    def replace(self, transaction_id: str, data: TransactionReplaceIn) -> Transaction:
        if data.wants_ai_update() and data.is_manual_override is not True:
            raise ValidationError(AI_UPDATE_REJECTED)
        txn = self.get(transaction_id)
        self._assert_type_exists(data.type_id)

        txn.type_id = data.type_id
        txn.amount = data.amount
        txn.description = data.description
        txn.date = data.date
        txn.is_manual_override = bool(data.is_manual_override)
        txn.ai_status = data.ai_status
        txn.ai_confidence = data.ai_confidence
        txn.import_hash = data.import_hash
        self._commit_or_conflict()
        self.session.refresh(txn)
        return txn

    def patch(self, transaction_id: str, data: TransactionPatchIn) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.changes()
        if data.wants_ai_update():
            manual = changes.get("is_manual_override", txn.is_manual_override)
            if manual is not True:
                raise ValidationError(AI_UPDATE_REJECTED)
        if "type_id" in changes:
            self._assert_type_exists(changes["type_id"])

        for name, value in changes.items():
            setattr(txn, name, value)
        self._commit_or_conflict()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: str) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
