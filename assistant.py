from __future__ import annotations

import json
import logging
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from billing import local_today
from errors import ConflictError, LedgerError, NotFoundError, ValidationError
from ledger import month_bounds
from llm_client import LLMClient
from models import Account, Category, CreditCard, Planning, Transaction, TransactionType
from schemas import TransactionIn
from services import AccountService, TransactionService


logger = logging.getLogger(__name__)

PROMPT = """You are Finanz, a personal finance assistant.
Answer with a single JSON object and nothing else. Allowed shapes:
{{"action": "answer", "reply": "<text>"}}
{{"action": "get_balance"}}
{{"action": "create_transaction", "category": "<category name>",
  "value_cents": <positive integer>, "type": "input" | "output",
  "destination": "<who or where>", "description": "<optional text>",
  "credit_card": "<optional card company>"}}
Amounts are integer cents. Use create_transaction only when the user clearly
asks to record income or an expense.

Account snapshot:
{snapshot}

User message:
{message}
"""


class AssistantCategoryAmbiguous(ConflictError):
    pass


def format_cents(cents: int, currency: str = "") -> str:
    text = f"{cents / 100:,.2f}"
    return f"{currency} {text}".strip()


class AssistantService:
    """LLM front-end over the ledger services.

    Every write goes through ``TransactionService.create`` so the assistant
    gets the same validation and balance handling as the REST API.
    """

    def __init__(
        self, session: Session, user_id: str, llm: Optional[LLMClient] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.llm = llm or LLMClient()

    def _account(self) -> Account:
        return AccountService(self.session, self.user_id).get_for_user()

    def snapshot(self) -> dict[str, Any]:
        account = self._account()
        start, end = month_bounds(local_today())
        cards = self.session.scalars(
            select(CreditCard).where(CreditCard.account_id == account.id)
        ).all()
        planning = self.session.scalar(
            select(Planning).where(
                Planning.account_id == account.id,
                Planning.month.between(start, end),
            )
        )
        categories = self.session.scalars(
            select(Category.name)
            .where(Category.account_id == account.id)
            .order_by(Category.name)
        ).all()
        transaction_count = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.account_id == account.id
            )
        ).scalar_one()
        return {
            "currency": account.currency.value,
            "balance_cents": account.current_value_cents,
            "credit_cards": [
                {
                    "company": card.company,
                    "available_limit_cents": card.available_limit_cents,
                    "limit_cents": card.limit_cents,
                }
                for card in cards
            ],
            "planning": (
                {
                    "title": planning.title,
                    "available_limit_cents": planning.available_limit_cents,
                    "limit_cents": planning.limit_cents,
                }
                if planning
                else None
            ),
            "categories": list(categories),
            "transaction_count": int(transaction_count or 0),
        }

    def resolve_category(self, account: Account, name: str) -> Category:
        input_lower = name.strip().lower()
        exact = self.session.scalar(
            select(Category).where(
                Category.account_id == account.id,
                func.lower(Category.name) == input_lower,
            )
        )
        if exact:
            return exact

        categories = self.session.scalars(
            select(Category).where(Category.account_id == account.id)
        ).all()
        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in categories:
            dist = int(Levenshtein.distance(input_lower, category.name.strip().lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)

        if best_distance is None or best_distance > 1:
            raise NotFoundError(f"Category '{name}' not found")
        if len(best) > 1:
            options = ", ".join(sorted({c.name for c in best}))
            raise AssistantCategoryAmbiguous(
                f"Category '{name}' is ambiguous; matches: {options}"
            )
        return best[0]

    def resolve_card(self, account: Account, company: str) -> CreditCard:
        card = self.session.scalar(
            select(CreditCard).where(
                CreditCard.account_id == account.id,
                func.lower(CreditCard.company) == company.strip().lower(),
            )
        )
        if not card:
            raise NotFoundError(f"Credit card '{company}' not found")
        return card

    def create_transaction(
        self,
        category: str,
        value_cents: int,
        txn_type: TransactionType,
        *,
        destination: str = "",
        description: Optional[str] = None,
        credit_card: Optional[str] = None,
    ) -> Transaction:
        account = self._account()
        resolved = self.resolve_category(account, category)
        card_id = self.resolve_card(account, credit_card).id if credit_card else None
        try:
            data = TransactionIn(
                account_id=account.id,
                category_id=resolved.id,
                value_cents=value_cents,
                type=txn_type,
                destination=destination,
                description=description,
                credit_card_id=card_id,
            )
        except PydanticValidationError as exc:
            details = [
                {"field": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in exc.errors()
            ]
            fields = ", ".join(item["field"] for item in details)
            raise ValidationError(
                f"Invalid transaction fields: {fields}", details=details
            ) from exc
        return TransactionService(self.session, self.user_id).create(data)

    def _plan(self, message: str, snapshot: dict[str, Any]) -> dict[str, Any]:
        prompt = PROMPT.format(snapshot=json.dumps(snapshot, indent=2), message=message)
        raw = self.llm.complete(prompt, json_mode=True)
        if not raw:
            return {}
        try:
            plan = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"assistant_plan_invalid: chars={len(raw)}")
            return {"action": "answer", "reply": raw}
        return plan if isinstance(plan, dict) else {}

    def chat(self, message: str) -> dict[str, Any]:
        snapshot = self.snapshot()
        # release the read transaction before the network call
        self.session.rollback()
        plan = self._plan(message, snapshot)
        action = str(plan.get("action") or "")
        logger.info(f"assistant_chat: action={action or 'none'}")

        if action == "get_balance":
            return {
                "reply": "Your balance is "
                + format_cents(snapshot["balance_cents"], snapshot["currency"]),
                "action": action,
                "data": {"balance_cents": snapshot["balance_cents"]},
            }

        if action == "create_transaction":
            try:
                value_cents = int(plan.get("value_cents") or 0)
                txn_type = TransactionType(plan.get("type") or "output")
                if value_cents <= 0:
                    raise ValueError("value_cents must be positive")
            except (TypeError, ValueError) as exc:
                return {
                    "reply": f"I could not understand the amount or type: {exc}",
                    "action": "error",
                    "data": None,
                }
            try:
                txn = self.create_transaction(
                    str(plan.get("category") or ""),
                    value_cents,
                    txn_type,
                    destination=str(plan.get("destination") or ""),
                    description=plan.get("description"),
                    credit_card=plan.get("credit_card") or None,
                )
            except LedgerError as exc:
                logger.info(f"assistant_create_rejected: {exc.kind} {exc.message}")
                return {"reply": exc.message, "action": "error", "data": None}
            return {
                "reply": (
                    f"Recorded {txn_type.value} of "
                    f"{format_cents(txn.value_cents, snapshot['currency'])}."
                ),
                "action": action,
                "data": {"transaction_id": txn.id},
            }

        if action == "answer" and plan.get("reply"):
            return {"reply": str(plan["reply"]), "action": "answer", "data": None}

        return {
            "reply": "The assistant is unavailable right now. Please try again later.",
            "action": "none",
            "data": None,
        }
