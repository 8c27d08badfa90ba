"""Ledger consistency core.

Every ledger entry (a Transaction or a Moviment) moves one or more derived
aggregates: the account balance, a card's available limit, planning available
limits and holding totals. The classes here validate entries, apply their
effects as relative increments and reverse them exactly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import ConflictError, MutationFailedError, NotFoundError, ValidationError
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
)


logger = logging.getLogger(__name__)


def month_bounds(on: date) -> tuple[date, date]:
    start = on.replace(day=1)
    if start.month == 12:
        next_month = start.replace(year=start.year + 1, month=1)
    else:
        next_month = start.replace(month=start.month + 1)
    return start, next_month - date.resolution


def signed_value(value_cents: int, txn_type: TransactionType) -> int:
    if txn_type == TransactionType.input:
        return value_cents
    return -value_cents


@dataclass
class LedgerRefs:
    account: Account
    category: Category
    credit_card: Optional[CreditCard] = None
    objective: Optional[Objective] = None
    invoice: Optional[Invoice] = None


class LedgerEntryValidator:
    """Read-only reference checks that run before any aggregate moves."""

    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.user_id = user_id

    def account(self, account_id: str) -> Account:
        account = self.session.get(Account, account_id)
        if not account or (self.user_id and account.user_id != self.user_id):
            raise NotFoundError("Account not found")
        return account

    def category(self, account: Account, category_id: str) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.account_id != account.id:
            raise NotFoundError("Category not found")
        return category

    def credit_card(self, account: Account, credit_card_id: str) -> CreditCard:
        card = self.session.get(CreditCard, credit_card_id)
        if not card or card.account_id != account.id:
            raise NotFoundError("Credit card not found")
        return card

    def objective(self, account: Account, objective_id: str) -> Objective:
        objective = self.session.get(Objective, objective_id)
        if not objective or objective.account_id != account.id:
            raise NotFoundError("Objective not found")
        return objective

    def invoice(self, card: CreditCard, invoice_id: str) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)
        if not invoice or invoice.credit_card_id != card.id:
            raise NotFoundError("Invoice not found")
        if not invoice.is_open:
            raise ConflictError("Invoice is already paid")
        return invoice

    def holding(self, account: Account, holding_id: str) -> Holding:
        holding = self.session.get(Holding, holding_id)
        if not holding or holding.account_id != account.id:
            raise NotFoundError("Holding not found")
        return holding

    def validate_transaction(
        self,
        account_id: str,
        category_id: str,
        *,
        credit_card_id: Optional[str] = None,
        objective_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
    ) -> LedgerRefs:
        if invoice_id and not credit_card_id:
            raise ValidationError(
                "invoice_id requires credit_card_id",
                details=[{"field": "invoice_id", "msg": "requires credit_card_id"}],
            )
        account = self.account(account_id)
        refs = LedgerRefs(account=account, category=self.category(account, category_id))
        if credit_card_id:
            refs.credit_card = self.credit_card(account, credit_card_id)
            if invoice_id:
                refs.invoice = self.invoice(refs.credit_card, invoice_id)
        if objective_id:
            refs.objective = self.objective(account, objective_id)
        return refs


class BalanceMutator:
    """Applies signed relative adjustments to aggregate columns.

    Each adjustment is a single ``UPDATE ... SET col = col + :delta``; callers
    wrap all adjustments of one ledger event in one database transaction.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def _increment(self, model, column: str, row_id: str, delta: int) -> None:
        if delta == 0:
            return
        label = model.__tablename__
        stmt = (
            update(model)
            .where(model.id == row_id)
            .values({column: getattr(model, column) + delta})
        )
        try:
            result = self.session.execute(stmt)
        except SQLAlchemyError as exc:
            raise MutationFailedError(f"Failed to update {label}.{column}") from exc
        if result.rowcount != 1:
            raise MutationFailedError(f"Row {row_id} missing from {label}")

    def adjust_account(self, account_id: str, delta: int) -> None:
        self._increment(Account, "current_value_cents", account_id, delta)

    def adjust_card(self, credit_card_id: str, delta: int) -> None:
        self._increment(CreditCard, "available_limit_cents", credit_card_id, delta)

    def adjust_holding(self, holding_id: str, delta: int) -> None:
        self._increment(Holding, "total_cents", holding_id, delta)

    def adjust_planning(self, planning_id: str, delta: int) -> None:
        self._increment(Planning, "available_limit_cents", planning_id, delta)

    def adjust_planning_category(self, row: PlanningCategory, delta: int) -> None:
        self._increment(PlanningCategory, "available_limit_cents", row.id, delta)
        self.adjust_planning(row.planning_id, delta)

    def matching_planning_categories(
        self, account_id: str, category_id: str, on: date
    ) -> list[PlanningCategory]:
        start, end = month_bounds(on)
        stmt = (
            select(PlanningCategory)
            .join(Planning, PlanningCategory.planning_id == Planning.id)
            .where(
                Planning.account_id == account_id,
                Planning.month.between(start, end),
                PlanningCategory.category_id == category_id,
            )
            .order_by(PlanningCategory.id)
        )
        return list(self.session.scalars(stmt).all())

    def apply_transaction(self, txn: Transaction) -> None:
        if txn.credit_card_id:
            self.adjust_card(txn.credit_card_id, -txn.value_cents)
        else:
            self.adjust_account(txn.account_id, signed_value(txn.value_cents, txn.type))

        rows = self.matching_planning_categories(
            txn.account_id, txn.category_id, txn.occurred_at.date()
        )
        for row in rows:
            self.adjust_planning_category(row, -txn.value_cents)
        txn.planning_categories = rows
        self.session.flush()
        logger.info(
            f"ledger_apply: transaction={txn.id} type={txn.type.value} "
            f"value_cents={txn.value_cents} card={txn.credit_card_id} "
            f"planning_rows={len(rows)}"
        )

    def apply_moviment(self, moviment: Moviment) -> None:
        # Money entering the holding leaves the account, and vice versa.
        delta = signed_value(moviment.value_cents, moviment.type)
        self.adjust_account(moviment.account_id, -delta)
        self.adjust_holding(moviment.holding_id, delta)
        logger.info(
            f"ledger_apply: moviment={moviment.id} type={moviment.type.value} "
            f"value_cents={moviment.value_cents} holding={moviment.holding_id}"
        )

    def apply_invoice_payment(
        self, account_id: str, credit_card_id: str, value_cents: int
    ) -> None:
        self.adjust_account(account_id, -value_cents)
        self.adjust_card(credit_card_id, value_cents)
        logger.info(
            f"ledger_apply: invoice_payment card={credit_card_id} "
            f"value_cents={value_cents}"
        )

    def shift_card_limit(self, card: CreditCard, new_limit_cents: int) -> None:
        delta = new_limit_cents - card.limit_cents
        card.limit_cents = new_limit_cents
        self.adjust_card(card.id, delta)

    def shift_planning_limit(self, planning: Planning, new_limit_cents: int) -> None:
        delta = new_limit_cents - planning.limit_cents
        planning.limit_cents = new_limit_cents
        self.adjust_planning(planning.id, delta)


class ReversalEngine:
    """Undoes the stored effects of a ledger entry.

    The inverse is derived from the entry itself (value, type, links and the
    planning rows recorded when it was applied), never from the current value
    of the aggregates.
    """

    def __init__(self, session: Session, mutator: Optional[BalanceMutator] = None) -> None:
        self.session = session
        self.mutator = mutator or BalanceMutator(session)

    def reverse_transaction(self, txn: Transaction) -> None:
        if txn.credit_card_id:
            self.mutator.adjust_card(txn.credit_card_id, txn.value_cents)
        else:
            self.mutator.adjust_account(
                txn.account_id, -signed_value(txn.value_cents, txn.type)
            )
        rows = list(txn.planning_categories)
        for row in rows:
            self.mutator.adjust_planning_category(row, txn.value_cents)
        txn.planning_categories = []
        self.session.flush()
        logger.info(
            f"ledger_reverse: transaction={txn.id} value_cents={txn.value_cents} "
            f"planning_rows={len(rows)}"
        )

    def reverse_moviment(self, moviment: Moviment) -> None:
        delta = signed_value(moviment.value_cents, moviment.type)
        self.mutator.adjust_account(moviment.account_id, delta)
        self.mutator.adjust_holding(moviment.holding_id, -delta)
        logger.info(
            f"ledger_reverse: moviment={moviment.id} value_cents={moviment.value_cents}"
        )
