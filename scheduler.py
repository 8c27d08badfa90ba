import logging
from datetime import date
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from notifications import LedgerNotifier
from services import InvoiceService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

REMINDER_WINDOW_DAYS = 3


class SchedulerManager:
    """Background jobs that keep invoices in step with the calendar.

    The sweep opens the current-cycle invoice for every card that has none.
    The reminder posts an ``invoice.due_soon`` event per open invoice that is
    due within ``REMINDER_WINDOW_DAYS``.
    """

    def __init__(self, notifier: Optional[LedgerNotifier] = None) -> None:
        settings = get_settings()
        self.enabled = settings.scheduler_enabled
        self.notifier = notifier or LedgerNotifier()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def sweep_invoices(self, source: str = "manual") -> int:
        with session_scope() as session:
            created = InvoiceService(session).ensure_open_invoices()
        logger.info(f"invoice_job: source={source} invoices_created={created}")
        return created

    def remind_due_invoices(self, today: Optional[date] = None) -> int:
        with session_scope() as session:
            invoices = InvoiceService(session).due_soon(today, REMINDER_WINDOW_DAYS)
            payloads = [
                {
                    "invoice_id": invoice.id,
                    "credit_card_id": invoice.credit_card_id,
                    "company": invoice.credit_card.company,
                    "due_date": invoice.due_date,
                }
                for invoice in invoices
            ]
        sent = sum(
            1
            for payload in payloads
            if self.notifier.ledger_event("invoice.due_soon", payload)
        )
        logger.info(f"reminder_job: due_soon={len(payloads)} sent={sent}")
        return sent

    def start(self) -> None:
        if not self.enabled:
            logger.info("Scheduler disabled by configuration")
            return

        self.sweep_invoices("startup")

        self.scheduler.add_job(
            self.sweep_invoices,
            CronTrigger(hour=3, minute=15),
            args=["daily_03:15"],
            id="invoices_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.add_job(
            self.sweep_invoices,
            IntervalTrigger(hours=1),
            args=["hourly_safety_net"],
            id="invoices_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )
        self.scheduler.add_job(
            self.remind_due_invoices,
            CronTrigger(hour=8, minute=0),
            id="invoices_due_reminder",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started: invoice sweep 03:15 + hourly, due reminder 08:00"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
