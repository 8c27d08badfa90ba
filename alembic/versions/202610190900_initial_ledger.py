"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    transaction_type = sa.Enum("input", "output", name="transactiontype")
    currency = sa.Enum("BRL", "USD", "EUR", name="currency")

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=254), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=100), nullable=False),
        sa.Column("cpf", sa.String(length=14)),
        sa.Column("phone", sa.String(length=20)),
        *_timestamps(),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "current_value_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("currency", currency, nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "account_id",
            sa.String(length=36),
            sa.ForeignKey("accounts.id"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=50), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("account_id", "name", name="uq_category_account_name"),
    )

    op.create_table(
        "credit_cards",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "account_id",
            sa.String(length=36),
            sa.ForeignKey("accounts.id"),
            nullable=False,
        ),
        sa.Column("company", sa.String(length=60), nullable=False),
        sa.Column("limit_cents", sa.Integer(), nullable=False),
        sa.Column("available_limit_cents", sa.Integer(), nullable=False),
        sa.Column("close_day", sa.Integer(), nullable=False),
        sa.Column("expire_day", sa.Integer(), nullable=False),
        sa.Column("controls", sa.JSON()),
        *_timestamps(),
        sa.CheckConstraint("close_day BETWEEN 1 AND 31", name="ck_card_close_day"),
        sa.CheckConstraint("expire_day BETWEEN 1 AND 31", name="ck_card_expire_day"),
        sa.CheckConstraint("limit_cents >= 0", name="ck_card_limit_positive"),
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "credit_card_id",
            sa.String(length=36),
            sa.ForeignKey("credit_cards.id"),
            nullable=False,
        ),
        sa.Column("closing_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("paid_at", sa.DateTime()),
        sa.Column("paid_value_cents", sa.Integer()),
        *_timestamps(),
        sa.UniqueConstraint(
            "credit_card_id", "closing_date", name="uq_invoice_card_closing_date"
        ),
    )
    op.create_index(
        "ix_invoices_card_created", "invoices", ["credit_card_id", "created_at"]
    )

    op.create_table(
        "objectives",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "account_id",
            sa.String(length=36),
            sa.ForeignKey("accounts.id"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("target_cents", sa.Integer(), nullable=False),
        sa.Column("deadline", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint("target_cents >= 0", name="ck_objective_target_positive"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "account_id",
            sa.String(length=36),
            sa.ForeignKey("accounts.id"),
            nullable=False,
        ),
        sa.Column(
            "category_id",
            sa.String(length=36),
            sa.ForeignKey("categories.id"),
            nullable=False,
        ),
        sa.Column(
            "credit_card_id", sa.String(length=36), sa.ForeignKey("credit_cards.id")
        ),
        sa.Column("invoice_id", sa.String(length=36), sa.ForeignKey("invoices.id")),
        sa.Column(
            "objective_id", sa.String(length=36), sa.ForeignKey("objectives.id")
        ),
        sa.Column("value_cents", sa.Integer(), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column(
            "destination", sa.String(length=200), nullable=False, server_default=""
        ),
        sa.Column("description", sa.Text()),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("value_cents > 0", name="ck_transactions_value_positive"),
        sa.CheckConstraint(
            "(credit_card_id IS NULL) = (invoice_id IS NULL)",
            name="ck_transactions_card_invoice",
        ),
    )
    op.create_index(
        "ix_transactions_account_occurred",
        "transactions",
        ["account_id", "occurred_at"],
    )
    op.create_index(
        "ix_transactions_account_category",
        "transactions",
        ["account_id", "category_id"],
    )

    op.create_table(
        "plannings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "account_id",
            sa.String(length=36),
            sa.ForeignKey("accounts.id"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("month", sa.Date(), nullable=False),
        sa.Column("limit_cents", sa.Integer(), nullable=False),
        sa.Column("available_limit_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("account_id", "month", name="uq_planning_account_month"),
    )

    op.create_table(
        "planning_categories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "planning_id",
            sa.String(length=36),
            sa.ForeignKey("plannings.id"),
            nullable=False,
        ),
        sa.Column(
            "category_id",
            sa.String(length=36),
            sa.ForeignKey("categories.id"),
            nullable=False,
        ),
        sa.Column("limit_cents", sa.Integer(), nullable=False),
        sa.Column("available_limit_cents", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_planning_categories_category", "planning_categories", ["category_id"]
    )

    op.create_table(
        "transaction_planning_categories",
        sa.Column(
            "transaction_id",
            sa.String(length=36),
            sa.ForeignKey("transactions.id"),
            primary_key=True,
        ),
        sa.Column(
            "planning_category_id",
            sa.String(length=36),
            sa.ForeignKey("planning_categories.id"),
            primary_key=True,
        ),
    )

    op.create_table(
        "holdings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "account_id",
            sa.String(length=36),
            sa.ForeignKey("accounts.id"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tax_bps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("due_date", sa.Date()),
        sa.Column("controls", sa.JSON()),
        *_timestamps(),
    )

    op.create_table(
        "moviments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "holding_id",
            sa.String(length=36),
            sa.ForeignKey("holdings.id"),
            nullable=False,
        ),
        sa.Column(
            "account_id",
            sa.String(length=36),
            sa.ForeignKey("accounts.id"),
            nullable=False,
        ),
        sa.Column("value_cents", sa.Integer(), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("controls", sa.JSON()),
        *_timestamps(),
        sa.CheckConstraint("value_cents > 0", name="ck_moviments_value_positive"),
    )


def downgrade():
    op.drop_table("moviments")
    op.drop_table("holdings")
    op.drop_table("transaction_planning_categories")
    op.drop_index("ix_planning_categories_category", table_name="planning_categories")
    op.drop_table("planning_categories")
    op.drop_table("plannings")
    op.drop_index("ix_transactions_account_category", table_name="transactions")
    op.drop_index("ix_transactions_account_occurred", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("objectives")
    op.drop_index("ix_invoices_card_created", table_name="invoices")
    op.drop_table("invoices")
    op.drop_table("credit_cards")
    op.drop_table("categories")
    op.drop_table("accounts")
    op.drop_table("users")
    sa.Enum(name="transactiontype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="currency").drop(op.get_bind(), checkfirst=True)
