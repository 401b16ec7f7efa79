"""household budget schema

Revision ID: 202601050900
Revises:
Create Date: 2026-01-05 09:00:00.000000

"""

from datetime import datetime

from alembic import op
import sqlalchemy as sa


revision = "202601050900"
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_TYPES = [
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
]


def upgrade():
    transaction_types = op.create_table(
        "transaction_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=40), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("code", name="uq_transaction_types_code"),
    )

    op.create_table(
        "budgets",
        sa.Column("month_date", sa.Date(), nullable=False),
        sa.Column(
            "type_id",
            sa.Integer(),
            sa.ForeignKey("transaction_types.id"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("month_date", "type_id"),
        sa.CheckConstraint("amount >= 0", name="ck_budgets_amount_non_negative"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "type_id",
            sa.Integer(),
            sa.ForeignKey("transaction_types.id"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "is_manual_override",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "ai_status",
            sa.Enum("success", "fallback", "error", name="ai_status"),
        ),
        sa.Column("ai_confidence", sa.Float()),
        sa.Column("import_hash", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("import_hash", name="uq_transactions_import_hash"),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            "ai_confidence IS NULL OR (ai_confidence >= 0 AND ai_confidence <= 1)",
            name="ck_transactions_ai_confidence_range",
        ),
    )
    op.create_index("ix_transactions_date_id", "transactions", ["date", "id"])
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index("ix_transactions_type_date", "transactions", ["type_id", "date"])

    now = datetime.utcnow()
    op.bulk_insert(
        transaction_types,
        [
            {
                "code": code,
                "name": name,
                "position": position,
                "created_at": now,
                "updated_at": now,
            }
            for position, (code, name) in enumerate(TRANSACTION_TYPES, start=1)
        ],
    )


def downgrade():
    op.drop_index("ix_transactions_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_index("ix_transactions_date_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("budgets")
    op.drop_table("transaction_types")
    sa.Enum(name="ai_status").drop(op.get_bind(), checkfirst=True)
