from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

from ledger import month_bounds


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def datetime_bounds(self) -> tuple[datetime, datetime]:
        """Half-open ``[start, end + 1 day)`` range for ``occurred_at`` filters."""
        return (
            datetime.combine(self.start, time.min),
            datetime.combine(self.end + date.resolution, time.min),
        )


def resolve_period(
    period: Optional[str],
    start: Optional[str] = None,
    end: Optional[str] = None,
    *,
    month: Optional[str] = None,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        return Period("last_month", last_month_end.replace(day=1), last_month_end)
    if period == "month":
        # YYYY-MM
        if not month:
            raise ValueError("Month period requires month=YYYY-MM")
        try:
            year_str, month_str = month.split("-", 1)
            first = date(int(year_str), int(month_str), 1)
        except ValueError as exc:
            raise ValueError("Month must be formatted as YYYY-MM") from exc
        month_start, month_end = month_bounds(first)
        return Period("month", month_start, month_end)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)

    month_start, month_end = month_bounds(today)
    return Period("this_month", month_start, month_end)
