"""Fiscal-year, period and due-date helpers.

The fiscal year starts in July by default (``RECON_ENGINE_FISCAL_YEAR_START_MONTH``)
and is written ``"YYYY-YYYY"``. Monthly filings are due on the configured day
(default the 15th) of the month after the period.
"""

import calendar
from datetime import date
from typing import NamedTuple, Optional

from recon_core.config import get_config


class FilingPeriod(NamedTuple):
    """Bounds and due date of one monthly filing period."""

    period_from: date
    period_to: date
    due_date: date


def period_key(year: int, month: int) -> str:
    """Period key in ``YYYY-MM`` form."""
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be 1-12, got {month}")
    return f"{year:04d}-{month:02d}"


def parse_period(period: str) -> tuple[int, int]:
    """Split a ``YYYY-MM`` key into (year, month)."""
    year, month = period.split("-")
    return int(year), int(month)


def month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def fiscal_year_for(day: date, start_month: Optional[int] = None) -> str:
    """
    Fiscal year containing a date.

    >>> fiscal_year_for(date(2025, 1, 31))
    '2024-2025'
    >>> fiscal_year_for(date(2025, 7, 1))
    '2025-2026'
    """
    start_month = start_month or get_config().engine.fiscal_year_start_month
    start_year = day.year if day.month >= start_month else day.year - 1
    return f"{start_year}-{start_year + 1}"


def fiscal_year_months(fiscal_year: str, start_month: Optional[int] = None) -> list[tuple[int, int]]:
    """The twelve (year, month) pairs of a fiscal year, in order."""
    start_month = start_month or get_config().engine.fiscal_year_start_month
    year = int(fiscal_year.split("-")[0])
    months = []
    month = start_month
    for _ in range(12):
        months.append((year, month))
        month += 1
        if month > 12:
            month = 1
            year += 1
    return months


def filing_period(year: int, month: int, due_day: Optional[int] = None) -> FilingPeriod:
    """
    Bounds and due date of a monthly filing.

    Args:
        year: Calendar year of the period
        month: Calendar month of the period
        due_day: Day of the following month the filing is due (default:
            configured ``filing_due_day``)
    """
    due_day = due_day or get_config().engine.filing_due_day
    period_key(year, month)
    next_year, next_month = (year + 1, 1) if month == 12 else (year, month + 1)
    return FilingPeriod(
        period_from=date(year, month, 1),
        period_to=month_end(year, month),
        due_date=date(next_year, next_month, due_day),
    )
