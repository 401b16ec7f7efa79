import datetime as dt
import uuid
from typing import Annotated, Any, Literal, Optional, TypeVar

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from errors import ValidationError, field_errors
from models import AIStatus
from months import MONTH_RE, first_of_month, month_window

MIN_TRANSACTION_DATE = dt.date(2000, 1, 1)
DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 1000
MAX_BATCH_SIZE = 1000

# Keep in sync with what clients may project through ?fields=
TRANSACTION_SELECTABLE_FIELDS = (
    "id",
    "user_id",
    "type_id",
    "amount",
    "description",
    "date",
    "ai_status",
    "ai_confidence",
    "is_manual_override",
    "import_hash",
    "created_at",
    "updated_at",
)

AI_FIELDS = frozenset({"ai_status", "ai_confidence"})

Description = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)
]
ImportHash = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)
]
SearchText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


def _check_month_range(value: str) -> str:
    try:
        month_window(value)
    except ValueError as exc:
        raise ValueError(f"Month {value} is out of range") from exc
    return value


MonthString = Annotated[
    str,
    StringConstraints(pattern=MONTH_RE.pattern),
    AfterValidator(_check_month_range),
]
BudgetMonthDate = Annotated[dt.date, AfterValidator(first_of_month)]
TransactionAmount = Annotated[float, Field(gt=0, lt=100_000, allow_inf_nan=False)]
BudgetAmount = Annotated[float, Field(ge=0, lt=1_000_000_000, allow_inf_nan=False)]
AIConfidence = Annotated[float, Field(ge=0, le=1, allow_inf_nan=False)]

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_model(model: type[ModelT], data: Any, message: str) -> ModelT:
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(message, field_errors(exc.errors())) from exc


def _check_transaction_date(value: dt.date) -> dt.date:
    if value < MIN_TRANSACTION_DATE:
        raise ValueError("date must be >= 2000-01-01")
    return value


TransactionDate = Annotated[dt.date, AfterValidator(_check_transaction_date)]


def _drop_blank_params(data: Any) -> Any:
    if isinstance(data, dict):
        return {
            key: value
            for key, value in data.items()
            if not (isinstance(value, str) and value.strip() == "")
        }
    return data


# --- transactions -----------------------------------------------------------


class TransactionIn(BaseModel):
    type_id: int = Field(..., gt=0)
    amount: TransactionAmount
    description: Description
    date: TransactionDate
    import_hash: Optional[ImportHash] = None
    is_manual_override: Optional[bool] = None


class TransactionBatchIn(BaseModel):
    transactions: list[TransactionIn] = Field(
        ..., min_length=1, max_length=MAX_BATCH_SIZE
    )


class TransactionReplaceIn(BaseModel):
    type_id: int = Field(..., gt=0)
    amount: TransactionAmount
    description: Description
    date: TransactionDate
    is_manual_override: Optional[bool] = None
    ai_status: Optional[AIStatus] = None
    ai_confidence: Optional[AIConfidence] = None
    import_hash: Optional[ImportHash] = None

    def wants_ai_update(self) -> bool:
        return bool(AI_FIELDS & self.model_fields_set)


class TransactionPatchIn(BaseModel):
    type_id: Optional[int] = Field(default=None, gt=0)
    amount: Optional[TransactionAmount] = None
    description: Optional[Description] = None
    date: Optional[TransactionDate] = None
    is_manual_override: Optional[bool] = None
    ai_status: Optional[AIStatus] = None
    ai_confidence: Optional[AIConfidence] = None
    import_hash: Optional[ImportHash] = None

    @model_validator(mode="after")
    def _check_fields(self) -> "TransactionPatchIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        for name in ("type_id", "amount", "description", "date", "is_manual_override"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}

    def wants_ai_update(self) -> bool:
        return bool(AI_FIELDS & self.model_fields_set)


class TransactionIdIn(BaseModel):
    id: uuid.UUID


class TransactionListQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    limit: int = Field(default=DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT)
    cursor: Optional[SearchText] = None
    order: Literal["date.asc", "date.desc", "amount.asc", "amount.desc"] = "date.desc"
    month: Optional[MonthString] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    type_id: Optional[int] = Field(default=None, gt=0)
    min_amount: Optional[float] = Field(default=None, allow_inf_nan=False)
    max_amount: Optional[float] = Field(default=None, allow_inf_nan=False)
    q: Optional[SearchText] = None
    is_manual_override: Optional[bool] = None
    import_hash: Optional[SearchText] = None
    page: Optional[int] = Field(default=None, ge=1)
    page_size: Optional[int] = Field(
        default=None, alias="pageSize", ge=1, le=MAX_PAGE_LIMIT
    )
    fields: Optional[SearchText] = None

    @model_validator(mode="before")
    @classmethod
    def _ignore_blank(cls, data: Any) -> Any:
        return _drop_blank_params(data)

    @field_validator("fields")
    @classmethod
    def _check_projection(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        requested = [part.strip() for part in value.split(",") if part.strip()]
        unknown = [f for f in requested if f not in TRANSACTION_SELECTABLE_FIELDS]
        if unknown:
            raise ValueError(f"Unknown fields: {', '.join(unknown)}")
        return ",".join(requested)

    @model_validator(mode="after")
    def _check_ranges(self) -> "TransactionListQuery":
        if self.month and (self.start_date or self.end_date):
            raise ValueError("Provide either month or start_date/end_date, not both")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be <= end_date")
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.min_amount > self.max_amount
        ):
            raise ValueError("min_amount must be <= max_amount")
        return self

    @property
    def projection(self) -> Optional[list[str]]:
        if not self.fields:
            return None
        return self.fields.split(",")


# --- budgets ----------------------------------------------------------------


class BudgetIn(BaseModel):
    month_date: BudgetMonthDate
    type_id: int = Field(..., gt=0)
    amount: BudgetAmount


class BudgetAmountIn(BaseModel):
    amount: BudgetAmount


class BudgetKeyIn(BaseModel):
    month_date: BudgetMonthDate
    type_id: int = Field(..., gt=0)


class BudgetListQuery(BaseModel):
    month: Optional[MonthString] = None
    month_date: Optional[BudgetMonthDate] = None
    type_id: Optional[int] = Field(default=None, gt=0)
    order: Literal[
        "month_date.asc",
        "month_date.desc",
        "type_id.asc",
        "type_id.desc",
        "created_at.asc",
        "created_at.desc",
    ] = "type_id.asc"

    @model_validator(mode="before")
    @classmethod
    def _ignore_blank(cls, data: Any) -> Any:
        return _drop_blank_params(data)

    @model_validator(mode="after")
    def _check_month(self) -> "BudgetListQuery":
        if self.month and self.month_date:
            raise ValueError("Provide either month or month_date, not both")
        return self


# --- reports & reference data -----------------------------------------------


class MonthlyReportQuery(BaseModel):
    month: MonthString


class TransactionTypeQuery(BaseModel):
    q: Optional[str] = None
    order: Literal["position.asc", "position.desc"] = "position.asc"

    @model_validator(mode="before")
    @classmethod
    def _ignore_blank(cls, data: Any) -> Any:
        return _drop_blank_params(data)

    @field_validator("q")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value else None


class TransactionTypeIdIn(BaseModel):
    id: int = Field(..., gt=0)


# --- responses --------------------------------------------------------------


class TransactionTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    position: int


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    month_date: dt.date
    type_id: int
    amount: float
    created_at: dt.datetime
    updated_at: dt.datetime


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    type_id: int
    amount: float
    description: str
    date: dt.date
    ai_status: Optional[AIStatus] = None
    ai_confidence: Optional[float] = None
    is_manual_override: bool
    import_hash: Optional[str] = None
    created_at: dt.datetime
    updated_at: dt.datetime


class TransactionPageOut(BaseModel):
    data: list[dict[str, Any]]
    count: int
    next_cursor: Optional[str] = None


class BatchImportItemOut(BaseModel):
    status: Literal["created", "skipped", "error"]
    data: Optional[TransactionOut] = None
    reason: Optional[Literal["duplicate"]] = None
    import_hash: Optional[str] = None
    error: Optional[str] = None


class BatchImportSummaryOut(BaseModel):
    created: int = 0
    skipped: int = 0
    errors: int = 0


class BatchImportOut(BaseModel):
    results: list[BatchImportItemOut]
    summary: BatchImportSummaryOut


class MonthlyReportShareOut(BaseModel):
    user_id: str
    spend: float
    transactions_count: int


class MonthlyReportItemOut(BaseModel):
    type_id: int
    type_name: str
    budget: float
    spend: float
    transactions_count: int
    shares: list[MonthlyReportShareOut] = Field(default_factory=list)


class MonthlyReportTotalsOut(BaseModel):
    budget: float
    spend: float


class MonthlyReportOut(BaseModel):
    month: str
    summary: list[MonthlyReportItemOut]
    totals: MonthlyReportTotalsOut
