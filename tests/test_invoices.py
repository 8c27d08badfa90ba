from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from billing import InvoicePeriodResolver, add_months, billing_cycle, clamp_day
from database import Base
from errors import ConflictError, ValidationError
from models import Account, Category, CreditCard, Invoice, TransactionType, User
from schemas import InvoiceIn, InvoicePayIn, InvoiceUpdateIn, TransactionIn
from services import InvoiceService, TransactionService


def setup_card(session: Session, close_day: int = 10, expire_day: int = 20):
    user = User(name="Ana", email="ana@example.com", password_hash="x")
    session.add(user)
    session.flush()
    account = Account(user_id=user.id, current_value_cents=100_000)
    session.add(account)
    session.flush()
    food = Category(account_id=account.id, name="Food")
    card = CreditCard(
        account_id=account.id,
        company="Nubank",
        limit_cents=500_000,
        available_limit_cents=500_000,
        close_day=close_day,
        expire_day=expire_day,
    )
    session.add_all([food, card])
    session.commit()
    return account, food, card


def card_spend(session, account, category, card, value_cents, occurred_at, **kwargs):
    return TransactionService(session).create(
        TransactionIn(
            account_id=account.id,
            category_id=category.id,
            value_cents=value_cents,
            type=TransactionType.output,
            credit_card_id=card.id,
            occurred_at=occurred_at,
            **kwargs,
        )
    )


def test_billing_cycle_clamps_to_month_end() -> None:
    feb = billing_cycle(31, 5, date(2025, 2, 14), due_offset_months=1)
    assert feb.closing_date == date(2025, 2, 28)
    assert feb.due_date == date(2025, 3, 5)

    leap = billing_cycle(31, 31, date(2024, 2, 3), due_offset_months=1)
    assert leap.closing_date == date(2024, 2, 29)
    assert leap.due_date == date(2024, 3, 31)

    april = billing_cycle(31, 31, date(2025, 3, 31), due_offset_months=1)
    assert april.closing_date == date(2025, 3, 31)
    assert april.due_date == date(2025, 4, 30)


def test_add_months_crosses_year_boundary() -> None:
    assert add_months(date(2025, 12, 15), 1, desired_day=31) == date(2026, 1, 31)
    assert add_months(date(2025, 1, 31), 13, desired_day=31) == date(2026, 2, 28)
    assert clamp_day(2025, 6, 31) == date(2025, 6, 30)


def test_transactions_in_same_period_share_invoice() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account, food, card = setup_card(session)
        first = card_spend(session, account, food, card, 1_000, datetime(2025, 3, 1, 9))
        second = card_spend(session, account, food, card, 2_000, datetime(2025, 3, 8, 9))

        assert first.invoice_id == second.invoice_id
        invoices = session.scalars(select(Invoice)).all()
        assert len(invoices) == 1
        assert InvoiceService(session).total_value(first.invoice_id) == 3_000


def test_explicit_invoice_for_existing_period_conflicts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, _, card = setup_card(session)
        service = InvoiceService(session)
        service.create(
            InvoiceIn(
                credit_card_id=card.id,
                closing_date=date(2025, 3, 10),
                due_date=date(2025, 4, 20),
            )
        )
        with pytest.raises(ConflictError):
            service.create(
                InvoiceIn(
                    credit_card_id=card.id,
                    closing_date=date(2025, 3, 10),
                    due_date=date(2025, 4, 25),
                )
            )
        with pytest.raises(ValidationError):
            service.create(
                InvoiceIn(
                    credit_card_id=card.id,
                    closing_date=date(2025, 5, 10),
                    due_date=date(2025, 5, 1),
                )
            )


def test_generate_current_then_conflict() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, _, card = setup_card(session, close_day=31, expire_day=7)
        service = InvoiceService(session)
        invoice = service.generate_current(card.id, today=date(2025, 2, 3))
        assert invoice.closing_date == date(2025, 2, 28)
        assert invoice.due_date == date(2025, 3, 7)

        with pytest.raises(ConflictError):
            service.generate_current(card.id, today=date(2025, 2, 20))


def test_ensure_open_invoices_is_idempotent() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        setup_card(session)
        service = InvoiceService(session)
        assert service.ensure_open_invoices(today=date(2025, 3, 1)) == 1
        assert service.ensure_open_invoices(today=date(2025, 3, 2)) == 0


def test_delete_invoice_with_transactions_conflicts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account, food, card = setup_card(session)
        txn = card_spend(session, account, food, card, 1_000, datetime(2025, 3, 1, 9))
        service = InvoiceService(session)

        with pytest.raises(ConflictError):
            service.delete(txn.invoice_id)

        empty = service.create(
            InvoiceIn(
                credit_card_id=card.id,
                closing_date=date(2025, 6, 10),
                due_date=date(2025, 7, 20),
            )
        )
        service.delete(empty.id)
        assert session.get(Invoice, empty.id) is None


def test_pay_invoice_restores_card_limit() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account, food, card = setup_card(session)
        txn = card_spend(session, account, food, card, 10_000, datetime(2025, 3, 1, 9))
        session.refresh(card)
        assert card.available_limit_cents == 490_000

        service = InvoiceService(session)
        result = service.pay(txn.invoice_id, InvoicePayIn())
        assert result["paid_value_cents"] == 10_000
        assert result["remaining_cents"] == 0

        session.refresh(card)
        session.refresh(account)
        assert card.available_limit_cents == 500_000
        assert account.current_value_cents == 90_000
        assert service.get(txn.invoice_id).is_open is False

        with pytest.raises(ConflictError):
            service.pay(txn.invoice_id, InvoicePayIn())


def test_paid_period_books_onto_next_cycle() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account, food, card = setup_card(session)
        first = card_spend(session, account, food, card, 1_000, datetime(2025, 3, 1, 9))
        InvoiceService(session).pay(first.invoice_id, InvoicePayIn())

        second = card_spend(session, account, food, card, 2_000, datetime(2025, 3, 2, 9))
        assert second.invoice_id != first.invoice_id
        assert second.invoice.closing_date == date(2025, 4, 10)
        assert second.invoice.due_date == date(2025, 5, 20)

        with pytest.raises(ConflictError):
            card_spend(
                session,
                account,
                food,
                card,
                500,
                datetime(2025, 3, 3, 9),
                invoice_id=first.invoice_id,
            )


def test_resolver_reuses_latest_open_invoice() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, _, card = setup_card(session)
        resolver = InvoicePeriodResolver(session)
        created = resolver.resolve(card, date(2025, 3, 1))
        session.commit()
        assert resolver.resolve(card, date(2025, 8, 1)).id == created.id


def test_update_invoice_checks_period_clash() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, _, card = setup_card(session)
        service = InvoiceService(session)
        march = service.create(
            InvoiceIn(
                credit_card_id=card.id,
                closing_date=date(2025, 3, 10),
                due_date=date(2025, 4, 20),
            )
        )
        april = service.create(
            InvoiceIn(
                credit_card_id=card.id,
                closing_date=date(2025, 4, 10),
                due_date=date(2025, 5, 20),
            )
        )

        with pytest.raises(ConflictError):
            service.update(april.id, InvoiceUpdateIn(closing_date=march.closing_date))

        moved = service.update(april.id, InvoiceUpdateIn(due_date=date(2025, 5, 22)))
        assert moved.due_date == date(2025, 5, 22)


def test_invoice_detail_groups_by_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account, food, card = setup_card(session)
        travel = Category(account_id=account.id, name="Travel")
        session.add(travel)
        session.commit()
        txn = card_spend(session, account, food, card, 1_500, datetime(2025, 3, 1, 9))
        card_spend(session, account, travel, card, 4_000, datetime(2025, 3, 2, 9))
        card_spend(session, account, food, card, 500, datetime(2025, 3, 3, 9))

        detail = InvoiceService(session).detail(txn.invoice_id)
        assert detail["total_value_cents"] == 6_000
        assert detail["transaction_count"] == 3
        assert [
            (row["name"], row["value_cents"])
            for row in detail["transactions_by_category"]
        ] == [("Food", 2_000), ("Travel", 4_000)]


def test_due_soon_lists_open_invoices_in_window() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, _, card = setup_card(session)
        service = InvoiceService(session)
        soon = service.create(
            InvoiceIn(
                credit_card_id=card.id,
                closing_date=date(2025, 3, 10),
                due_date=date(2025, 3, 20),
            )
        )
        service.create(
            InvoiceIn(
                credit_card_id=card.id,
                closing_date=date(2025, 4, 10),
                due_date=date(2025, 4, 20),
            )
        )

        assert [i.id for i in service.due_soon(date(2025, 3, 18), days=3)] == [soon.id]
        assert service.due_soon(date(2025, 3, 21), days=3) == []


def test_overpayment_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account, food, card = setup_card(session)
        txn = card_spend(session, account, food, card, 10_000, datetime(2025, 3, 1, 9))

        with pytest.raises(ValidationError):
            InvoiceService(session).pay(
                txn.invoice_id, InvoicePayIn(payment_value_cents=10_001)
            )

        session.refresh(card)
        session.refresh(account)
        assert card.available_limit_cents == 490_000
        assert account.current_value_cents == 100_000
        assert InvoiceService(session).get(txn.invoice_id).is_open is True


def test_partial_payments_close_invoice_once_covered() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account, food, card = setup_card(session)
        txn = card_spend(session, account, food, card, 10_000, datetime(2025, 3, 1, 9))
        service = InvoiceService(session)

        first = service.pay(txn.invoice_id, InvoicePayIn(payment_value_cents=4_000))
        assert first["remaining_cents"] == 6_000
        assert first["is_open"] is True
        invoice = service.get(txn.invoice_id)
        assert invoice.paid_at is None
        assert invoice.paid_value_cents == 4_000

        with pytest.raises(ValidationError):
            service.pay(txn.invoice_id, InvoicePayIn(payment_value_cents=7_000))

        second = service.pay(txn.invoice_id, InvoicePayIn())
        assert second["paid_value_cents"] == 6_000
        assert second["total_paid_cents"] == 10_000
        assert second["is_open"] is False

        session.refresh(card)
        session.refresh(account)
        assert card.available_limit_cents == 500_000
        assert account.current_value_cents == 90_000


def two_card_invoices(session):
    account, food, card = setup_card(session)
    travel = Category(account_id=account.id, name="Travel")
    session.add(travel)
    session.commit()
    first = card_spend(session, account, food, card, 1_000, datetime(2025, 3, 1, 9))
    card_spend(session, account, travel, card, 2_000, datetime(2025, 3, 2, 9))
    InvoiceService(session).pay(first.invoice_id, InvoicePayIn())
    second = card_spend(session, account, food, card, 5_000, datetime(2025, 3, 12, 9))
    return account, card, first.invoice_id, second.invoice_id


def test_listed_invoices_carry_their_total() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account, _, first_id, second_id = two_card_invoices(session)
        invoices = InvoiceService(session).list_all(account.id)
        assert [(i.id, i.total_value_cents) for i in invoices] == [
            (second_id, 5_000),
            (first_id, 3_000),
        ]


def test_invoice_statistics_per_card() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, card, _, _ = two_card_invoices(session)
        service = InvoiceService(session)

        stats = service.statistics(card.id)
        assert stats["total_invoices"] == 2
        assert stats["total_value_cents"] == 8_000
        assert stats["average_value_cents"] == 4_000
        assert stats["highest_value_cents"] == 5_000
        assert stats["lowest_value_cents"] == 3_000
        assert stats["by_category"] == [
            {"name": "Food", "value_cents": 6_000, "count": 2},
            {"name": "Travel", "value_cents": 2_000, "count": 1},
        ]
        assert stats["monthly_breakdown"] == [
            {"month": "2025-04", "value_cents": 3_000, "count": 1},
            {"month": "2025-05", "value_cents": 5_000, "count": 1},
        ]

        may = service.statistics(card.id, date(2025, 5, 1), date(2025, 5, 31))
        assert may["total_invoices"] == 1
        assert may["total_value_cents"] == 5_000
        assert may["by_category"] == [
            {"name": "Food", "value_cents": 5_000, "count": 1}
        ]


def test_invoice_statistics_for_card_without_invoices() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, _, card = setup_card(session)
        stats = InvoiceService(session).statistics(card.id)
        assert stats["total_invoices"] == 0
        assert stats["average_value_cents"] == 0
        assert stats["by_category"] == []
        assert stats["monthly_breakdown"] == []
