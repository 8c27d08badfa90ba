from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import Currency, TransactionType


class UserIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=254)
    password: str = Field(..., min_length=8, max_length=128)
    cpf: Optional[str] = Field(default=None, max_length=14)
    phone: Optional[str] = Field(default=None, max_length=20)


class UserUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)
    cpf: Optional[str] = Field(default=None, max_length=14)
    phone: Optional[str] = Field(default=None, max_length=20)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    cpf: Optional[str] = None
    phone: Optional[str] = None
    created_at: datetime


class TokenIn(BaseModel):
    email: str
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"


class AccountIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    current_value_cents: int = 0
    currency: Currency = Currency.brl


class AccountUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    currency: Currency


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    current_value_cents: int
    currency: Currency


class CategoryIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=50)
    account_id: str


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    name: str


class CreditCardIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: str
    company: str = Field(..., min_length=2, max_length=60)
    limit_cents: int = Field(..., ge=0)
    available_limit_cents: Optional[int] = Field(default=None, ge=0)
    close_day: int = Field(..., ge=1, le=31)
    expire_day: int = Field(..., ge=1, le=31)
    controls: Optional[Any] = None


class CreditCardUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    company: Optional[str] = Field(default=None, min_length=2, max_length=60)
    limit_cents: Optional[int] = Field(default=None, ge=0)
    close_day: Optional[int] = Field(default=None, ge=1, le=31)
    expire_day: Optional[int] = Field(default=None, ge=1, le=31)
    controls: Optional[Any] = None


class CreditCardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    company: str
    limit_cents: int
    available_limit_cents: int
    close_day: int
    expire_day: int
    controls: Optional[Any] = None


class InvoiceIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    credit_card_id: str
    closing_date: date
    due_date: date


class InvoiceUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    closing_date: Optional[date] = None
    due_date: Optional[date] = None


class InvoicePayIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    payment_value_cents: Optional[int] = Field(default=None, gt=0)


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    credit_card_id: str
    closing_date: date
    due_date: date
    paid_at: Optional[datetime] = None
    paid_value_cents: Optional[int] = None
    total_value_cents: int = 0
    is_open: bool


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: str
    category_id: str
    value_cents: int = Field(..., gt=0)
    type: TransactionType
    destination: str = Field(default="", max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    credit_card_id: Optional[str] = None
    objective_id: Optional[str] = None
    invoice_id: Optional[str] = None
    occurred_at: Optional[datetime] = None


class TransactionUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category_id: Optional[str] = None
    value_cents: Optional[int] = Field(default=None, gt=0)
    type: Optional[TransactionType] = None
    destination: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    credit_card_id: Optional[str] = None
    objective_id: Optional[str] = None
    invoice_id: Optional[str] = None
    occurred_at: Optional[datetime] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    category_id: str
    credit_card_id: Optional[str] = None
    invoice_id: Optional[str] = None
    objective_id: Optional[str] = None
    value_cents: int
    type: TransactionType
    destination: str
    description: Optional[str] = None
    occurred_at: datetime


class PlanningCategoryIn(BaseModel):
    category_id: str
    limit_cents: int = Field(..., gt=0)


class PlanningIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: str
    title: str = Field(..., min_length=1, max_length=120)
    month: date
    limit_cents: int = Field(..., gt=0)
    available_limit_cents: Optional[int] = Field(default=None, ge=0)
    categories: list[PlanningCategoryIn] = Field(default_factory=list)


class PlanningUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=120)
    limit_cents: Optional[int] = Field(default=None, gt=0)


class PlanningCategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    category_id: str
    limit_cents: int
    available_limit_cents: int


class PlanningOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    title: str
    month: date
    limit_cents: int
    available_limit_cents: int
    planning_categories: list[PlanningCategoryOut] = Field(default_factory=list)


class HoldingIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: str
    name: str = Field(..., min_length=1, max_length=120)
    total_cents: int = Field(default=0, ge=0)
    tax_bps: int = Field(default=0, ge=0, le=100_000)
    due_date: Optional[date] = None
    controls: Optional[Any] = None


class MovimentIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: str
    holding_id: str
    value_cents: int = Field(..., gt=0)
    type: TransactionType
    occurred_at: Optional[datetime] = None
    controls: Optional[Any] = None


class MovimentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    holding_id: str
    account_id: str
    value_cents: int
    type: TransactionType
    occurred_at: datetime
    controls: Optional[Any] = None


class HoldingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    name: str
    total_cents: int
    tax_bps: int
    due_date: Optional[date] = None
    controls: Optional[Any] = None
    moviments: list[MovimentOut] = Field(default_factory=list)


class ObjectiveIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: str
    title: str = Field(..., min_length=1, max_length=120)
    target_cents: int = Field(..., ge=0)
    deadline: Optional[date] = None


class ObjectiveOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    title: str
    target_cents: int
    deadline: Optional[date] = None


class ChatIn(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)


class ChatOut(BaseModel):
    reply: str
    action: str
    data: Optional[dict[str, Any]] = None
