import uuid
import datetime as dt
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class AIStatus(str, Enum):
    success = "success"
    fallback = "fallback"
    error = "error"


AI_STATUS_ENUM = SAEnum(
    AIStatus,
    name="ai_status",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)

# Amounts are exact NUMERIC(12, 2) in the database and plain floats in Python.
MONEY = Numeric(12, 2, asdecimal=False)


def _new_uuid() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class TransactionType(Base, TimestampMixin):
    __tablename__ = "transaction_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    budgets: Mapped[list["Budget"]] = relationship(
        "Budget", back_populates="transaction_type"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="transaction_type"
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    month_date: Mapped[dt.date] = mapped_column(Date, primary_key=True)
    type_id: Mapped[int] = mapped_column(
        ForeignKey("transaction_types.id"), primary_key=True
    )
    amount: Mapped[float] = mapped_column(MONEY, nullable=False)

    transaction_type: Mapped["TransactionType"] = relationship(
        "TransactionType", back_populates="budgets"
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_budgets_amount_non_negative"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type_id: Mapped[int] = mapped_column(
        ForeignKey("transaction_types.id"), nullable=False
    )
    amount: Mapped[float] = mapped_column(MONEY, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    is_manual_override: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    ai_status: Mapped[Optional[AIStatus]] = mapped_column(AI_STATUS_ENUM)
    ai_confidence: Mapped[Optional[float]] = mapped_column(Float)
    import_hash: Mapped[Optional[str]] = mapped_column(String(255), unique=True)

    transaction_type: Mapped["TransactionType"] = relationship(
        "TransactionType", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_date_id", "date", "id"),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_type_date", "type_id", "date"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "ai_confidence IS NULL OR (ai_confidence >= 0 AND ai_confidence <= 1)",
            name="ck_transactions_ai_confidence_range",
        ),
    )
