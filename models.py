import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.orm import Mapped, column_property, mapped_column, relationship

from database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class TransactionType(str, Enum):
    input = "input"
    output = "output"


class Currency(str, Enum):
    brl = "BRL"
    usd = "USD"
    eur = "EUR"


CURRENCY_ENUM = SAEnum(
    Currency,
    name="currency",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(100), nullable=False)
    cpf: Mapped[Optional[str]] = mapped_column(String(14))
    phone: Mapped[Optional[str]] = mapped_column(String(20))

    account: Mapped[Optional["Account"]] = relationship(
        "Account", back_populates="user", uselist=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id"), nullable=False, unique=True
    )
    current_value_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    currency: Mapped[Currency] = mapped_column(
        CURRENCY_ENUM, nullable=False, default=Currency.brl
    )

    user: Mapped["User"] = relationship("User", back_populates="account")
    categories: Mapped[list["Category"]] = relationship(
        "Category", back_populates="account"
    )
    credit_cards: Mapped[list["CreditCard"]] = relationship(
        "CreditCard", back_populates="account"
    )
    holdings: Mapped[list["Holding"]] = relationship(
        "Holding", back_populates="account"
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)

    account: Mapped["Account"] = relationship("Account", back_populates="categories")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("account_id", "name", name="uq_category_account_name"),
    )


class CreditCard(Base, TimestampMixin):
    __tablename__ = "credit_cards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    company: Mapped[str] = mapped_column(String(60), nullable=False)
    limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    available_limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    close_day: Mapped[int] = mapped_column(Integer, nullable=False)
    expire_day: Mapped[int] = mapped_column(Integer, nullable=False)
    controls: Mapped[Optional[Any]] = mapped_column(JSON)

    account: Mapped["Account"] = relationship("Account", back_populates="credit_cards")
    invoices: Mapped[list["Invoice"]] = relationship(
        "Invoice", back_populates="credit_card"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="credit_card"
    )

    __table_args__ = (
        CheckConstraint("close_day BETWEEN 1 AND 31", name="ck_card_close_day"),
        CheckConstraint("expire_day BETWEEN 1 AND 31", name="ck_card_expire_day"),
        CheckConstraint("limit_cents >= 0", name="ck_card_limit_positive"),
    )


class Invoice(Base, TimestampMixin):
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    credit_card_id: Mapped[str] = mapped_column(
        ForeignKey("credit_cards.id"), nullable=False
    )
    closing_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    paid_value_cents: Mapped[Optional[int]] = mapped_column(Integer)

    credit_card: Mapped["CreditCard"] = relationship(
        "CreditCard", back_populates="invoices"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="invoice"
    )

    @property
    def is_open(self) -> bool:
        return self.paid_at is None

    __table_args__ = (
        UniqueConstraint(
            "credit_card_id", "closing_date", name="uq_invoice_card_closing_date"
        ),
        Index("ix_invoices_card_created", "credit_card_id", "created_at"),
    )


transaction_planning_categories = Table(
    "transaction_planning_categories",
    Base.metadata,
    Column(
        "transaction_id", String(36), ForeignKey("transactions.id"), primary_key=True
    ),
    Column(
        "planning_category_id",
        String(36),
        ForeignKey("planning_categories.id"),
        primary_key=True,
    ),
)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    category_id: Mapped[str] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    credit_card_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("credit_cards.id")
    )
    invoice_id: Mapped[Optional[str]] = mapped_column(ForeignKey("invoices.id"))
    objective_id: Mapped[Optional[str]] = mapped_column(ForeignKey("objectives.id"))
    value_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    destination: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(Text)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="transactions"
    )
    credit_card: Mapped[Optional["CreditCard"]] = relationship(
        "CreditCard", back_populates="transactions"
    )
    invoice: Mapped[Optional["Invoice"]] = relationship(
        "Invoice", back_populates="transactions"
    )
    objective: Mapped[Optional["Objective"]] = relationship(
        "Objective", back_populates="transactions"
    )
    planning_categories: Mapped[list["PlanningCategory"]] = relationship(
        "PlanningCategory",
        secondary=transaction_planning_categories,
        back_populates="transactions",
    )

    __table_args__ = (
        Index("ix_transactions_account_occurred", "account_id", "occurred_at"),
        Index("ix_transactions_account_category", "account_id", "category_id"),
        CheckConstraint("value_cents > 0", name="ck_transactions_value_positive"),
        CheckConstraint(
            "(credit_card_id IS NULL) = (invoice_id IS NULL)",
            name="ck_transactions_card_invoice",
        ),
    )


# Sum of the invoice's transactions, loaded with every Invoice query.
Invoice.total_value_cents = column_property(
    select(func.coalesce(func.sum(Transaction.value_cents), 0))
    .where(Transaction.invoice_id == Invoice.id)
    .correlate_except(Transaction)
    .scalar_subquery()
)


class Planning(Base, TimestampMixin):
    __tablename__ = "plannings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    month: Mapped[date] = mapped_column(Date, nullable=False)
    limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    available_limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    planning_categories: Mapped[list["PlanningCategory"]] = relationship(
        "PlanningCategory",
        back_populates="planning",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("account_id", "month", name="uq_planning_account_month"),
    )


class PlanningCategory(Base, TimestampMixin):
    __tablename__ = "planning_categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    planning_id: Mapped[str] = mapped_column(
        ForeignKey("plannings.id"), nullable=False
    )
    category_id: Mapped[str] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    available_limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    planning: Mapped["Planning"] = relationship(
        "Planning", back_populates="planning_categories"
    )
    category: Mapped["Category"] = relationship("Category")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        secondary=transaction_planning_categories,
        back_populates="planning_categories",
    )

    __table_args__ = (
        Index("ix_planning_categories_category", "category_id"),
    )


class Holding(Base, TimestampMixin):
    __tablename__ = "holdings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tax_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    controls: Mapped[Optional[Any]] = mapped_column(JSON)

    account: Mapped["Account"] = relationship("Account", back_populates="holdings")
    moviments: Mapped[list["Moviment"]] = relationship(
        "Moviment", back_populates="holding", order_by="Moviment.occurred_at"
    )


class Moviment(Base, TimestampMixin):
    __tablename__ = "moviments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    holding_id: Mapped[str] = mapped_column(ForeignKey("holdings.id"), nullable=False)
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    value_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    controls: Mapped[Optional[Any]] = mapped_column(JSON)

    holding: Mapped["Holding"] = relationship("Holding", back_populates="moviments")

    __table_args__ = (
        CheckConstraint("value_cents > 0", name="ck_moviments_value_positive"),
    )


class Objective(Base, TimestampMixin):
    __tablename__ = "objectives"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    target_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    deadline: Mapped[Optional[date]] = mapped_column(Date)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="objective"
    )

    __table_args__ = (
        CheckConstraint("target_cents >= 0", name="ck_objective_target_positive"),
    )
