from datetime import date, datetime

import pytest

from auth import generate_access_token, hash_password, read_access_token, verify_password
from periods import resolve_period


def test_default_period_is_current_month() -> None:
    period = resolve_period(None, today=date(2024, 2, 10))
    assert period.slug == "this_month"
    assert (period.start, period.end) == (date(2024, 2, 1), date(2024, 2, 29))


def test_month_and_last_month_periods() -> None:
    dec = resolve_period("month", month="2025-12")
    assert (dec.start, dec.end) == (date(2025, 12, 1), date(2025, 12, 31))

    last = resolve_period("last_month", today=date(2025, 1, 15))
    assert (last.start, last.end) == (date(2024, 12, 1), date(2024, 12, 31))

    with pytest.raises(ValueError):
        resolve_period("month", month="December")


def test_custom_period_bounds_are_half_open() -> None:
    period = resolve_period("custom", "2025-03-01", "2025-03-31")
    start, end = period.datetime_bounds()
    assert start == datetime(2025, 3, 1)
    assert end == datetime(2025, 4, 1)

    with pytest.raises(ValueError):
        resolve_period("custom", "2025-03-31", "2025-03-01")


def test_password_hash_and_token() -> None:
    hashed = hash_password("correct-horse")
    assert verify_password("correct-horse", hashed)
    assert not verify_password("wrong", hashed)

    token = generate_access_token("user-1")
    assert read_access_token(token) == "user-1"
    assert read_access_token(token + "x") is None
