import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from errors import ConflictError
from models import CreditCard, Invoice


logger = logging.getLogger(__name__)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def local_now() -> datetime:
    settings = get_settings()
    return (
        datetime.now(ZoneInfo(settings.timezone))
        .replace(tzinfo=None)
        .replace(microsecond=0)
    )


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def clamp_day(year: int, month: int, desired_day: int) -> date:
    dim = days_in_month(year, month)
    if desired_day > dim:
        day = dim
    else:
        day = desired_day
    return date(year, month, day)


def add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return clamp_day(year, month, desired_day)


@dataclass(frozen=True)
class BillingCycle:
    closing_date: date
    due_date: date


def billing_cycle(
    close_day: int,
    expire_day: int,
    on_date: date,
    *,
    due_offset_months: Optional[int] = None,
) -> BillingCycle:
    """Cycle whose closing date falls in the month of ``on_date``.

    Both days are clamped to the last day of their month, so a card closing on
    the 31st closes on Feb 28/29 and Apr 30.
    """
    if due_offset_months is None:
        due_offset_months = get_settings().invoice_due_offset_months
    closing = clamp_day(on_date.year, on_date.month, close_day)
    due = add_months(closing, due_offset_months, desired_day=expire_day)
    return BillingCycle(closing_date=closing, due_date=due)


class InvoicePeriodResolver:
    def __init__(self, session: Session) -> None:
        self.session = session

    def latest_open(self, card: CreditCard) -> Optional[Invoice]:
        stmt = (
            select(Invoice)
            .where(Invoice.credit_card_id == card.id, Invoice.paid_at.is_(None))
            .order_by(Invoice.created_at.desc(), Invoice.closing_date.desc())
            .limit(1)
        )
        return self.session.scalar(stmt)

    def exists_for(self, card: CreditCard, closing_date: date) -> bool:
        stmt = (
            select(Invoice.id)
            .where(
                Invoice.credit_card_id == card.id,
                Invoice.closing_date == closing_date,
            )
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def create_for_period(
        self, card: CreditCard, closing_date: date, due_date: date
    ) -> Invoice:
        if self.exists_for(card, closing_date):
            raise ConflictError("invoice already exists for period")
        invoice = Invoice(
            credit_card_id=card.id,
            closing_date=closing_date,
            due_date=due_date,
        )
        self.session.add(invoice)
        self.session.flush()
        logger.info(
            f"invoice_created: card={card.id} closing={closing_date} due={due_date}"
        )
        return invoice

    def current_cycle(self, card: CreditCard, today: Optional[date] = None) -> BillingCycle:
        today = today or local_today()
        return billing_cycle(card.close_day, card.expire_day, today)

    def resolve(self, card: CreditCard, today: Optional[date] = None) -> Invoice:
        """Open invoice that card-linked spend should be booked on."""
        existing = self.latest_open(card)
        if existing:
            return existing

        cycle = self.current_cycle(card, today)
        max_advances = 24  # two years of already-paid cycles
        advances = 0
        while self.exists_for(card, cycle.closing_date) and advances < max_advances:
            next_month = add_months(cycle.closing_date, 1, desired_day=1)
            cycle = billing_cycle(card.close_day, card.expire_day, next_month)
            advances += 1
        return self.create_for_period(card, cycle.closing_date, cycle.due_date)
