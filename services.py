from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import case, delete, func, select
from sqlalchemy.orm import Session, joinedload, selectinload

from auth import hash_password, verify_password
from billing import InvoicePeriodResolver, local_now, local_today
from database import ledger_transaction
from errors import ConflictError, NotFoundError, ValidationError
from ledger import BalanceMutator, LedgerEntryValidator, ReversalEngine
from models import (
    Account,
    Category,
    CreditCard,
    Holding,
    Invoice,
    Moviment,
    Objective,
    Planning,
    PlanningCategory,
    Transaction,
    TransactionType,
    User,
    transaction_planning_categories,
)
from periods import Period
from schemas import (
    AccountIn,
    AccountUpdateIn,
    CategoryIn,
    CreditCardIn,
    CreditCardUpdateIn,
    HoldingIn,
    InvoiceIn,
    InvoicePayIn,
    InvoiceUpdateIn,
    MovimentIn,
    ObjectiveIn,
    PlanningIn,
    PlanningUpdateIn,
    TransactionIn,
    TransactionUpdateIn,
    UserIn,
    UserUpdateIn,
)


logger = logging.getLogger(__name__)

PLANNING_WARNING_RATIO = 0.8


def usage_status(spent: int, limit: int) -> str:
    if spent > limit:
        return "exceeded"
    if spent > limit * PLANNING_WARNING_RATIO:
        return "warning"
    return "ok"


def percentage(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 2)


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, data: UserIn) -> User:
        email = data.email.strip().lower()
        existing = self.session.scalar(select(User).where(User.email == email))
        if existing:
            raise ConflictError("User with this email already exists")
        user = User(
            name=data.name.strip(),
            email=email,
            password_hash=hash_password(data.password),
            cpf=data.cpf,
            phone=data.phone,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get(self, user_id: str) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def authenticate(self, email: str, password: str) -> Optional[User]:
        user = self.session.scalar(
            select(User).where(User.email == email.strip().lower())
        )
        if not user or not verify_password(password, user.password_hash):
            return None
        return user

    def update(self, user_id: str, data: UserUpdateIn) -> User:
        user = self.get(user_id)
        fields = data.model_dump(exclude_unset=True)
        if fields.get("name") is not None:
            user.name = fields["name"].strip()
        if fields.get("password") is not None:
            user.password_hash = hash_password(fields["password"])
        if "cpf" in fields:
            user.cpf = fields["cpf"]
        if "phone" in fields:
            user.phone = fields["phone"]
        self.session.commit()
        self.session.refresh(user)
        return user

    def delete(self, user_id: str) -> None:
        """Remove the user together with its account and every ledger row in it."""
        user = self.get(user_id)
        account = user.account
        with ledger_transaction(self.session):
            if account:
                self._purge_account(account.id)
            self.session.delete(user)
        logger.info(f"user_deleted: user={user_id}")

    def _purge_account(self, account_id: str) -> None:
        txn_ids = select(Transaction.id).where(Transaction.account_id == account_id)
        card_ids = select(CreditCard.id).where(CreditCard.account_id == account_id)
        planning_ids = select(Planning.id).where(Planning.account_id == account_id)
        holding_ids = select(Holding.id).where(Holding.account_id == account_id)
        statements = [
            delete(transaction_planning_categories).where(
                transaction_planning_categories.c.transaction_id.in_(txn_ids)
            ),
            delete(Transaction).where(Transaction.account_id == account_id),
            delete(Invoice).where(Invoice.credit_card_id.in_(card_ids)),
            delete(CreditCard).where(CreditCard.account_id == account_id),
            delete(PlanningCategory).where(
                PlanningCategory.planning_id.in_(planning_ids)
            ),
            delete(Planning).where(Planning.account_id == account_id),
            delete(Moviment).where(Moviment.holding_id.in_(holding_ids)),
            delete(Holding).where(Holding.account_id == account_id),
            delete(Objective).where(Objective.account_id == account_id),
            delete(Category).where(Category.account_id == account_id),
            delete(Account).where(Account.id == account_id),
        ]
        for stmt in statements:
            self.session.execute(
                stmt, execution_options={"synchronize_session": False}
            )
        self.session.expire_all()


class AccountService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: AccountIn) -> Account:
        existing = self.session.scalar(
            select(Account).where(Account.user_id == self.user_id)
        )
        if existing:
            raise ConflictError("User already has an account")
        account = Account(
            user_id=self.user_id,
            current_value_cents=data.current_value_cents,
            currency=data.currency,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def get_for_user(self) -> Account:
        account = self.session.scalar(
            select(Account).where(Account.user_id == self.user_id)
        )
        if not account:
            raise NotFoundError("Account not found")
        return account

    def update(self, data: AccountUpdateIn) -> Account:
        account = self.get_for_user()
        account.currency = data.currency
        self.session.commit()
        self.session.refresh(account)
        return account


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.validator = LedgerEntryValidator(session, user_id)

    def list_all(self, account_id: str) -> list[Category]:
        account = self.validator.account(account_id)
        stmt = (
            select(Category)
            .where(Category.account_id == account.id)
            .order_by(Category.name)
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: CategoryIn) -> Category:
        account = self.validator.account(data.account_id)
        name = data.name.strip()
        existing = self.session.scalar(
            select(Category).where(
                Category.account_id == account.id,
                func.lower(Category.name) == name.lower(),
            )
        )
        if existing:
            raise ConflictError("Category with this name already exists")
        category = Category(account_id=account.id, name=name)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category


class CreditCardService:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.validator = LedgerEntryValidator(session, user_id)
        self.mutator = BalanceMutator(session)

    def create(self, data: CreditCardIn) -> CreditCard:
        account = self.validator.account(data.account_id)
        available = (
            data.limit_cents
            if data.available_limit_cents is None
            else data.available_limit_cents
        )
        if available > data.limit_cents:
            raise ValidationError(
                "Available limit cannot exceed the card limit",
                details=[{"field": "available_limit_cents", "msg": "exceeds limit"}],
            )
        card = CreditCard(
            account_id=account.id,
            company=data.company.strip(),
            limit_cents=data.limit_cents,
            available_limit_cents=available,
            close_day=data.close_day,
            expire_day=data.expire_day,
            controls=data.controls,
        )
        self.session.add(card)
        self.session.commit()
        self.session.refresh(card)
        return card

    def list_all(self, account_id: str) -> list[CreditCard]:
        account = self.validator.account(account_id)
        stmt = (
            select(CreditCard)
            .where(CreditCard.account_id == account.id)
            .order_by(CreditCard.company, CreditCard.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, credit_card_id: str) -> CreditCard:
        card = self.session.get(CreditCard, credit_card_id)
        if not card:
            raise NotFoundError("Credit card not found")
        self.validator.account(card.account_id)
        return card

    def update(self, credit_card_id: str, data: CreditCardUpdateIn) -> CreditCard:
        card = self.get(credit_card_id)
        fields = data.model_dump(exclude_unset=True)
        with ledger_transaction(self.session):
            if fields.get("company") is not None:
                card.company = fields["company"].strip()
            if fields.get("close_day") is not None:
                card.close_day = fields["close_day"]
            if fields.get("expire_day") is not None:
                card.expire_day = fields["expire_day"]
            if "controls" in fields:
                card.controls = fields["controls"]
            if fields.get("limit_cents") is not None:
                self.mutator.shift_card_limit(card, fields["limit_cents"])
        self.session.refresh(card)
        return card

    def delete(self, credit_card_id: str) -> None:
        card = self.get(credit_card_id)
        has_transactions = self.session.execute(
            select(Transaction.id)
            .where(Transaction.credit_card_id == card.id)
            .limit(1)
        ).scalar_one_or_none()
        if has_transactions:
            raise ConflictError("Cannot delete a credit card that has transactions")
        for invoice in list(card.invoices):
            self.session.delete(invoice)
        self.session.delete(card)
        self.session.commit()


class InvoiceService:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.validator = LedgerEntryValidator(session, user_id)
        self.mutator = BalanceMutator(session)
        self.resolver = InvoicePeriodResolver(session)

    def _card(self, credit_card_id: str) -> CreditCard:
        card = self.session.get(CreditCard, credit_card_id)
        if not card:
            raise NotFoundError("Credit card not found")
        self.validator.account(card.account_id)
        return card

    def create(self, data: InvoiceIn) -> Invoice:
        card = self._card(data.credit_card_id)
        if data.due_date < data.closing_date:
            raise ValidationError("Due date must not be before the closing date")
        invoice = self.resolver.create_for_period(
            card, data.closing_date, data.due_date
        )
        self.session.commit()
        self.session.refresh(invoice)
        return invoice

    def generate_current(
        self, credit_card_id: str, today: Optional[date] = None
    ) -> Invoice:
        card = self._card(credit_card_id)
        cycle = self.resolver.current_cycle(card, today)
        invoice = self.resolver.create_for_period(
            card, cycle.closing_date, cycle.due_date
        )
        self.session.commit()
        self.session.refresh(invoice)
        return invoice

    def ensure_open_invoices(self, today: Optional[date] = None) -> int:
        """Give every card without an open invoice one for the current cycle."""
        created = 0
        for card in self.session.scalars(select(CreditCard)).all():
            if self.resolver.latest_open(card):
                continue
            self.resolver.resolve(card, today)
            created += 1
        self.session.commit()
        logger.info(f"invoice_sweep: invoices_created={created}")
        return created

    def due_soon(self, today: Optional[date] = None, days: int = 3) -> list[Invoice]:
        """Open invoices whose due date falls within the next ``days`` days."""
        today = today or local_today()
        stmt = (
            select(Invoice)
            .where(
                Invoice.paid_at.is_(None),
                Invoice.due_date >= today,
                Invoice.due_date <= today + timedelta(days=days),
            )
            .order_by(Invoice.due_date, Invoice.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, invoice_id: str) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)
        if not invoice:
            raise NotFoundError("Invoice not found")
        self.validator.account(invoice.credit_card.account_id)
        return invoice

    def list_all(
        self,
        account_id: str,
        *,
        credit_card_id: Optional[str] = None,
        year: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Invoice]:
        account = self.validator.account(account_id)
        stmt = (
            select(Invoice)
            .join(CreditCard, Invoice.credit_card_id == CreditCard.id)
            .where(CreditCard.account_id == account.id)
            .order_by(Invoice.due_date.desc(), Invoice.id)
            .offset(offset)
            .limit(limit)
        )
        if credit_card_id:
            stmt = stmt.where(Invoice.credit_card_id == credit_card_id)
        if year:
            stmt = stmt.where(
                Invoice.due_date.between(date(year, 1, 1), date(year, 12, 31))
            )
        return list(self.session.scalars(stmt).all())

    def total_value(self, invoice_id: str) -> int:
        stmt = select(func.coalesce(func.sum(Transaction.value_cents), 0)).where(
            Transaction.invoice_id == invoice_id
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def statistics(
        self,
        credit_card_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> dict[str, object]:
        """Invoice totals of one card, optionally limited to a due-date range."""
        card = self._card(credit_card_id)
        stmt = (
            select(Invoice)
            .where(Invoice.credit_card_id == card.id)
            .order_by(Invoice.due_date, Invoice.id)
        )
        if start and end:
            stmt = stmt.where(Invoice.due_date.between(start, end))
        invoices = list(self.session.scalars(stmt).all())
        totals = {invoice.id: 0 for invoice in invoices}

        by_category: dict[str, dict[str, object]] = {}
        if invoices:
            rows = self.session.execute(
                select(
                    Transaction.invoice_id,
                    Category.name,
                    func.sum(Transaction.value_cents).label("value"),
                    func.count(Transaction.id).label("count"),
                )
                .join(Category, Transaction.category_id == Category.id)
                .where(Transaction.invoice_id.in_(list(totals)))
                .group_by(Transaction.invoice_id, Category.name)
                .order_by(Category.name)
            ).all()
            for row in rows:
                totals[row.invoice_id] += int(row.value)
                item = by_category.setdefault(
                    row.name, {"name": row.name, "value_cents": 0, "count": 0}
                )
                item["value_cents"] += int(row.value)
                item["count"] += int(row.count)

        monthly: dict[str, dict[str, object]] = {}
        for invoice in invoices:
            key = invoice.due_date.strftime("%Y-%m")
            item = monthly.setdefault(key, {"month": key, "value_cents": 0, "count": 0})
            item["value_cents"] += totals[invoice.id]
            item["count"] += 1

        values = list(totals.values())
        total = sum(values)
        return {
            "credit_card_id": card.id,
            "total_invoices": len(values),
            "total_value_cents": total,
            "average_value_cents": round(total / len(values)) if values else 0,
            "highest_value_cents": max(values) if values else 0,
            "lowest_value_cents": min(values) if values else 0,
            "by_category": list(by_category.values()),
            "monthly_breakdown": list(monthly.values()),
        }

    def detail(self, invoice_id: str) -> dict[str, object]:
        invoice = self.get(invoice_id)
        rows = self.session.execute(
            select(
                Category.id,
                Category.name,
                func.coalesce(func.sum(Transaction.value_cents), 0).label("value"),
                func.count(Transaction.id).label("count"),
            )
            .join(Category, Transaction.category_id == Category.id)
            .where(Transaction.invoice_id == invoice.id)
            .group_by(Category.id, Category.name)
            .order_by(Category.name)
        ).all()
        by_category = [
            {
                "category_id": row.id,
                "name": row.name,
                "value_cents": int(row.value),
                "count": int(row.count),
            }
            for row in rows
        ]
        return {
            "invoice": invoice,
            "total_value_cents": sum(item["value_cents"] for item in by_category),
            "transaction_count": sum(item["count"] for item in by_category),
            "transactions_by_category": by_category,
        }

    def update(self, invoice_id: str, data: InvoiceUpdateIn) -> Invoice:
        invoice = self.get(invoice_id)
        if data.closing_date and data.closing_date != invoice.closing_date:
            clash = self.session.scalar(
                select(Invoice.id).where(
                    Invoice.credit_card_id == invoice.credit_card_id,
                    Invoice.closing_date == data.closing_date,
                    Invoice.id != invoice.id,
                )
            )
            if clash:
                raise ConflictError("invoice already exists for period")
            invoice.closing_date = data.closing_date
        if data.due_date:
            invoice.due_date = data.due_date
        if invoice.due_date < invoice.closing_date:
            self.session.rollback()
            raise ValidationError("Due date must not be before the closing date")
        self.session.commit()
        self.session.refresh(invoice)
        return invoice

    def delete(self, invoice_id: str) -> None:
        invoice = self.get(invoice_id)
        count = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.invoice_id == invoice.id
                )
            ).scalar_one()
            or 0
        )
        if count > 0:
            raise ConflictError("Cannot delete an invoice that has transactions")
        self.session.delete(invoice)
        self.session.commit()

    def pay(self, invoice_id: str, data: InvoicePayIn) -> dict[str, object]:
        """Record a full or partial payment against the invoice's open balance.

        The invoice is closed once its payments cover the total.
        """
        invoice = self.get(invoice_id)
        if not invoice.is_open:
            raise ConflictError("Invoice is already paid")
        total = self.total_value(invoice.id)
        paid_before = invoice.paid_value_cents or 0
        outstanding = total - paid_before
        value = data.payment_value_cents or outstanding
        if value <= 0:
            raise ValidationError(
                "Payment value must be greater than zero",
                details=[{"field": "payment_value_cents", "msg": "must be > 0"}],
            )
        if value > outstanding:
            raise ValidationError(
                "Payment exceeds the outstanding invoice amount",
                details=[
                    {
                        "field": "payment_value_cents",
                        "msg": f"must be <= {outstanding}",
                    }
                ],
            )
        card = invoice.credit_card
        paid_total = paid_before + value
        with ledger_transaction(self.session):
            self.mutator.apply_invoice_payment(card.account_id, card.id, value)
            invoice.paid_value_cents = paid_total
            if paid_total >= total:
                invoice.paid_at = datetime.utcnow()
        logger.info(
            f"invoice_paid: invoice={invoice.id} value_cents={value} "
            f"paid_cents={paid_total} total_cents={total}"
        )
        return {
            "invoice_id": invoice.id,
            "account_id": card.account_id,
            "paid_value_cents": value,
            "total_paid_cents": paid_total,
            "total_value_cents": total,
            "remaining_cents": total - paid_total,
            "is_open": invoice.is_open,
        }


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[str] = None
    credit_card_id: Optional[str] = None
    query: Optional[str] = None


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.user_id = user_id
        self.validator = LedgerEntryValidator(session, user_id)
        self.mutator = BalanceMutator(session)
        self.reversal = ReversalEngine(session, self.mutator)
        self.resolver = InvoicePeriodResolver(session)

    def create(self, data: TransactionIn) -> Transaction:
        refs = self.validator.validate_transaction(
            data.account_id,
            data.category_id,
            credit_card_id=data.credit_card_id,
            objective_id=data.objective_id,
            invoice_id=data.invoice_id,
        )
        occurred_at = data.occurred_at or local_now()
        with ledger_transaction(self.session):
            invoice = refs.invoice
            if refs.credit_card and invoice is None:
                invoice = self.resolver.resolve(refs.credit_card, occurred_at.date())
            txn = Transaction(
                account_id=refs.account.id,
                category_id=refs.category.id,
                credit_card_id=refs.credit_card.id if refs.credit_card else None,
                invoice_id=invoice.id if invoice else None,
                objective_id=refs.objective.id if refs.objective else None,
                value_cents=data.value_cents,
                type=data.type,
                destination=data.destination,
                description=data.description,
                occurred_at=occurred_at,
            )
            self.session.add(txn)
            self.session.flush()
            self.mutator.apply_transaction(txn)
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: str) -> Transaction:
        stmt = (
            select(Transaction)
            .join(Account, Transaction.account_id == Account.id)
            .options(joinedload(Transaction.category))
            .where(Transaction.id == transaction_id)
        )
        if self.user_id:
            stmt = stmt.where(Account.user_id == self.user_id)
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def update(self, transaction_id: str, data: TransactionUpdateIn) -> Transaction:
        txn = self.get(transaction_id)
        fields = data.model_dump(exclude_unset=True)
        merged = {
            "category_id": txn.category_id,
            "value_cents": txn.value_cents,
            "type": txn.type,
            "destination": txn.destination,
            "description": txn.description,
            "credit_card_id": txn.credit_card_id,
            "objective_id": txn.objective_id,
            "invoice_id": txn.invoice_id,
            "occurred_at": txn.occurred_at,
        }
        merged.update(fields)
        for required in ("category_id", "value_cents", "type", "occurred_at"):
            if merged[required] is None:
                raise ValidationError(
                    f"{required} cannot be cleared",
                    details=[{"field": required, "msg": "cannot be null"}],
                )
        if merged["destination"] is None:
            merged["destination"] = ""
        card_changed = merged["credit_card_id"] != txn.credit_card_id
        if card_changed and "invoice_id" not in fields:
            merged["invoice_id"] = None
        keep_invoice = (
            not card_changed
            and merged["credit_card_id"] is not None
            and merged["invoice_id"] == txn.invoice_id
        )

        refs = self.validator.validate_transaction(
            txn.account_id,
            merged["category_id"],
            credit_card_id=merged["credit_card_id"],
            objective_id=merged["objective_id"],
            invoice_id=None if keep_invoice else merged["invoice_id"],
        )

        with ledger_transaction(self.session):
            self.reversal.reverse_transaction(txn)

            invoice_id: Optional[str] = None
            if refs.credit_card:
                if keep_invoice:
                    invoice_id = txn.invoice_id
                elif refs.invoice:
                    invoice_id = refs.invoice.id
                else:
                    invoice_id = self.resolver.resolve(
                        refs.credit_card, merged["occurred_at"].date()
                    ).id

            txn.category_id = refs.category.id
            txn.credit_card_id = refs.credit_card.id if refs.credit_card else None
            txn.invoice_id = invoice_id
            txn.objective_id = refs.objective.id if refs.objective else None
            txn.value_cents = merged["value_cents"]
            txn.type = merged["type"]
            txn.destination = merged["destination"]
            txn.description = merged["description"]
            txn.occurred_at = merged["occurred_at"]
            self.session.flush()
            self.mutator.apply_transaction(txn)
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: str) -> Transaction:
        txn = self.get(transaction_id)
        with ledger_transaction(self.session):
            self.reversal.reverse_transaction(txn)
            self.session.delete(txn)
        return txn

    def list(
        self,
        account_id: str,
        period: Period,
        filters: Optional[TransactionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        account = self.validator.account(account_id)
        filters = filters or TransactionFilters()
        start, end = period.datetime_bounds()
        stmt = (
            select(Transaction)
            .where(
                Transaction.account_id == account.id,
                Transaction.occurred_at >= start,
                Transaction.occurred_at < end,
            )
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.credit_card_id:
            stmt = stmt.where(Transaction.credit_card_id == filters.credit_card_id)
        if filters.query:
            like = f"%{filters.query.lower()}%"
            stmt = stmt.where(
                func.lower(
                    Transaction.destination
                    + " "
                    + func.coalesce(Transaction.description, "")
                ).like(like)
            )
        return list(self.session.scalars(stmt).all())

    def statistics(self, account_id: str, period: Period) -> dict[str, object]:
        account = self.validator.account(account_id)
        start, end = period.datetime_bounds()
        input_sum = func.coalesce(
            func.sum(
                case(
                    (
                        Transaction.type == TransactionType.input,
                        Transaction.value_cents,
                    ),
                    else_=0,
                )
            ),
            0,
        )
        output_sum = func.coalesce(
            func.sum(
                case(
                    (
                        Transaction.type == TransactionType.output,
                        Transaction.value_cents,
                    ),
                    else_=0,
                )
            ),
            0,
        )
        rows = self.session.execute(
            select(
                Category.id,
                Category.name,
                input_sum.label("income"),
                output_sum.label("expenses"),
                func.count(Transaction.id).label("count"),
            )
            .join(Category, Transaction.category_id == Category.id)
            .where(
                Transaction.account_id == account.id,
                Transaction.occurred_at >= start,
                Transaction.occurred_at < end,
            )
            .group_by(Category.id, Category.name)
            .order_by(Category.name)
        ).all()
        by_category = [
            {
                "category_id": row.id,
                "name": row.name,
                "income_cents": int(row.income),
                "expense_cents": int(row.expenses),
                "count": int(row.count),
            }
            for row in rows
        ]
        income = sum(item["income_cents"] for item in by_category)
        expenses = sum(item["expense_cents"] for item in by_category)
        return {
            "period": {"slug": period.slug, "start": period.start, "end": period.end},
            "income_cents": income,
            "expense_cents": expenses,
            "net_cents": income - expenses,
            "transaction_count": sum(item["count"] for item in by_category),
            "by_category": by_category,
        }


class PlanningService:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.validator = LedgerEntryValidator(session, user_id)
        self.mutator = BalanceMutator(session)

    def create(self, data: PlanningIn) -> Planning:
        account = self.validator.account(data.account_id)
        month = data.month.replace(day=1)
        existing = self.session.scalar(
            select(Planning.id).where(
                Planning.account_id == account.id, Planning.month == month
            )
        )
        if existing:
            raise ConflictError("A planning already exists for this month")

        category_ids = [item.category_id for item in data.categories]
        if len(set(category_ids)) != len(category_ids):
            raise ValidationError("Each category can appear only once per planning")
        for category_id in category_ids:
            self.validator.category(account, category_id)

        available = (
            data.limit_cents
            if data.available_limit_cents is None
            else data.available_limit_cents
        )
        planning = Planning(
            account_id=account.id,
            title=data.title.strip(),
            month=month,
            limit_cents=data.limit_cents,
            available_limit_cents=available,
            planning_categories=[
                PlanningCategory(
                    category_id=item.category_id,
                    limit_cents=item.limit_cents,
                    available_limit_cents=item.limit_cents,
                )
                for item in data.categories
            ],
        )
        self.session.add(planning)
        self.session.commit()
        self.session.refresh(planning)
        return planning

    def get(self, planning_id: str) -> Planning:
        planning = self.session.scalar(
            select(Planning)
            .options(selectinload(Planning.planning_categories))
            .where(Planning.id == planning_id)
        )
        if not planning:
            raise NotFoundError("Planning not found")
        self.validator.account(planning.account_id)
        return planning

    def list_all(self, account_id: str, year: Optional[int] = None) -> list[Planning]:
        account = self.validator.account(account_id)
        stmt = (
            select(Planning)
            .options(selectinload(Planning.planning_categories))
            .where(Planning.account_id == account.id)
            .order_by(Planning.month.desc())
        )
        if year:
            stmt = stmt.where(
                Planning.month.between(date(year, 1, 1), date(year, 12, 31))
            )
        return list(self.session.scalars(stmt).all())

    def update(self, planning_id: str, data: PlanningUpdateIn) -> Planning:
        planning = self.get(planning_id)
        with ledger_transaction(self.session):
            if data.title is not None:
                planning.title = data.title.strip()
            if data.limit_cents is not None:
                self.mutator.shift_planning_limit(planning, data.limit_cents)
        self.session.refresh(planning)
        return planning

    def delete(self, planning_id: str) -> None:
        planning = self.get(planning_id)
        self.session.delete(planning)
        self.session.commit()

    def get_by_month(self, account_id: str, year: int, month: int) -> dict[str, object]:
        if not 1 <= month <= 12:
            raise ValidationError(
                "Month must be between 1 and 12",
                details=[{"field": "month", "msg": "must be 1..12"}],
            )
        if not 1 <= year <= 9999:
            raise ValidationError("Year out of range")
        account = self.validator.account(account_id)
        planning = self.session.scalar(
            select(Planning)
            .options(selectinload(Planning.planning_categories))
            .where(
                Planning.account_id == account.id,
                Planning.month == date(year, month, 1),
            )
        )
        if not planning:
            raise NotFoundError("No planning for this month")
        category_limits = sum(row.limit_cents for row in planning.planning_categories)
        category_used = sum(
            row.limit_cents - row.available_limit_cents
            for row in planning.planning_categories
        )
        return {
            "planning": planning,
            "statistics": {
                "total_category_limits_cents": category_limits,
                "total_category_used_cents": category_used,
                "total_available_cents": planning.available_limit_cents,
                "total_limit_cents": planning.limit_cents,
                "usage_percentage": percentage(category_used, category_limits),
            },
        }

    def progress(self, planning_id: str) -> dict[str, object]:
        planning = self.get(planning_id)
        categories = []
        for row in planning.planning_categories:
            spent = row.limit_cents - row.available_limit_cents
            categories.append(
                {
                    "category_id": row.category_id,
                    "category_name": row.category.name,
                    "limit_cents": row.limit_cents,
                    "spent_cents": spent,
                    "available_cents": row.available_limit_cents,
                    "percentage": percentage(spent, row.limit_cents),
                    "status": usage_status(spent, row.limit_cents),
                }
            )
        total_spent = planning.limit_cents - planning.available_limit_cents
        return {
            "planning": {
                "id": planning.id,
                "title": planning.title,
                "month": planning.month,
            },
            "summary": {
                "limit_cents": planning.limit_cents,
                "spent_cents": total_spent,
                "available_cents": planning.available_limit_cents,
                "percentage": percentage(total_spent, planning.limit_cents),
                "status": usage_status(total_spent, planning.limit_cents),
            },
            "categories": categories,
        }


class HoldingService:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.validator = LedgerEntryValidator(session, user_id)

    def create(self, data: HoldingIn) -> Holding:
        account = self.validator.account(data.account_id)
        holding = Holding(
            account_id=account.id,
            name=data.name.strip(),
            total_cents=data.total_cents,
            tax_bps=data.tax_bps,
            due_date=data.due_date,
            controls=data.controls,
        )
        self.session.add(holding)
        self.session.commit()
        self.session.refresh(holding)
        return holding

    def list_all(self, account_id: str) -> list[Holding]:
        account = self.validator.account(account_id)
        stmt = (
            select(Holding)
            .options(selectinload(Holding.moviments))
            .where(Holding.account_id == account.id)
            .order_by(Holding.name)
        )
        return list(self.session.scalars(stmt).all())


class MovimentService:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.validator = LedgerEntryValidator(session, user_id)
        self.mutator = BalanceMutator(session)
        self.reversal = ReversalEngine(session, self.mutator)

    def create(self, data: MovimentIn) -> Moviment:
        account = self.validator.account(data.account_id)
        holding = self.validator.holding(account, data.holding_id)
        with ledger_transaction(self.session):
            moviment = Moviment(
                holding_id=holding.id,
                account_id=account.id,
                value_cents=data.value_cents,
                type=data.type,
                occurred_at=data.occurred_at or local_now(),
                controls=data.controls,
            )
            self.session.add(moviment)
            self.session.flush()
            self.mutator.apply_moviment(moviment)
        self.session.refresh(moviment)
        return moviment

    def list_all(self, account_id: str) -> list[Moviment]:
        account = self.validator.account(account_id)
        stmt = (
            select(Moviment)
            .where(Moviment.account_id == account.id)
            .order_by(Moviment.occurred_at.desc(), Moviment.id)
        )
        return list(self.session.scalars(stmt).all())

    def delete(self, moviment_id: str) -> Moviment:
        moviment = self.session.get(Moviment, moviment_id)
        if not moviment:
            raise NotFoundError("Moviment not found")
        self.validator.account(moviment.account_id)
        with ledger_transaction(self.session):
            self.reversal.reverse_moviment(moviment)
            self.session.delete(moviment)
        return moviment


class ObjectiveService:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.validator = LedgerEntryValidator(session, user_id)

    def create(self, data: ObjectiveIn) -> Objective:
        account = self.validator.account(data.account_id)
        objective = Objective(
            account_id=account.id,
            title=data.title.strip(),
            target_cents=data.target_cents,
            deadline=data.deadline,
        )
        self.session.add(objective)
        self.session.commit()
        self.session.refresh(objective)
        return objective

    def list_all(self, account_id: str) -> list[Objective]:
        account = self.validator.account(account_id)
        stmt = (
            select(Objective)
            .where(Objective.account_id == account.id)
            .order_by(Objective.deadline.is_(None), Objective.deadline, Objective.title)
        )
        return list(self.session.scalars(stmt).all())

    def progress(self, objective_id: str) -> dict[str, object]:
        objective = self.session.get(Objective, objective_id)
        if not objective:
            raise NotFoundError("Objective not found")
        self.validator.account(objective.account_id)
        row = self.session.execute(
            select(
                func.coalesce(
                    func.sum(
                        case(
                            (
                                Transaction.type == TransactionType.input,
                                Transaction.value_cents,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ).label("saved_in"),
                func.coalesce(
                    func.sum(
                        case(
                            (
                                Transaction.type == TransactionType.output,
                                Transaction.value_cents,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ).label("saved_out"),
            ).where(Transaction.objective_id == objective.id)
        ).one()
        saved = int(row.saved_in) - int(row.saved_out)
        return {
            "objective_id": objective.id,
            "title": objective.title,
            "target_cents": objective.target_cents,
            "saved_cents": saved,
            "remaining_cents": max(0, objective.target_cents - saved),
            "percentage": percentage(saved, objective.target_cents),
            "deadline": objective.deadline,
        }
