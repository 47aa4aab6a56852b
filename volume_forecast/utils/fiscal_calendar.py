# volume_forecast/utils/fiscal_calendar.py
"""Fiscal calendar helpers.

The fiscal year runs April to March and is named after the calendar year in
which it starts. Month index 1 is April, 12 is March.
"""
from datetime import date
from typing import NamedTuple, Optional, Tuple

from volume_forecast.exceptions import MalformedDateError

MONTHS_PER_YEAR = 12
FISCAL_YEAR_START_MONTH = 4

MONTH_LABELS = [
    "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec", "Jan", "Feb", "Mar"
]

class DiscontinuationMarker(NamedTuple):
    """Last fiscal period in which a channel/product is expected to sell."""
    fiscal_year: int
    month_index: int

def to_fiscal_period(day: int, month: int, year: int) -> Tuple[int, int]:
    """Convert a first-of-month calendar date to a fiscal period.

    Args:
        day: Day of month, must be 1
        month: Calendar month (1-12)
        year: Calendar year

    Returns:
        Tuple with fiscal year and month index

    Raises:
        MalformedDateError: If the day is not 1 or the month is out of range
    """
    if day != 1:
        raise MalformedDateError(
            f"Day must be 1, got {day} in {day:02d}-{month:02d}-{year}",
            details={'day': day, 'month': month, 'year': year}
        )
    if month < 1 or month > 12:
        raise MalformedDateError(
            f"Month out of range: {month}",
            details={'day': day, 'month': month, 'year': year}
        )

    if month >= FISCAL_YEAR_START_MONTH:
        return (year, month - 3)  # Apr -> 1

    # Jan-Mar close the fiscal year that started the previous April
    return (year - 1, month + 9)

def fiscal_period_for_date(value: date) -> Tuple[int, int]:
    """Get the fiscal period for a date object (must be first of month)."""
    return to_fiscal_period(value.day, value.month, value.year)

def parse_period_date(value: str) -> Tuple[int, int]:
    """Parse a ``DD-MM-YYYY`` period string into a fiscal period.

    Args:
        value: Date string as delivered by sales extracts, e.g. ``01-04-2024``

    Returns:
        Tuple with fiscal year and month index

    Raises:
        MalformedDateError: If the string cannot be parsed or is not first-of-month
    """
    if not value:
        raise MalformedDateError("Empty period date")

    parts = value.strip().split('-')
    if len(parts) != 3:
        raise MalformedDateError(f"Expected DD-MM-YYYY, got '{value}'")

    try:
        day, month, year = (int(part) for part in parts)
    except ValueError:
        raise MalformedDateError(f"Non-numeric period date: '{value}'")

    return to_fiscal_period(day, month, year)

def fiscal_period_to_date(fiscal_year: int, month_index: int) -> date:
    """Get the first calendar day of a fiscal period."""
    if month_index < 1 or month_index > MONTHS_PER_YEAR:
        raise ValueError(f"Invalid month index: {month_index}")

    if month_index <= 9:
        return date(fiscal_year, month_index + 3, 1)
    return date(fiscal_year + 1, month_index - 9, 1)

def get_month_label(month_index: int) -> str:
    """Get the short month name for a fiscal month index."""
    if 1 <= month_index <= MONTHS_PER_YEAR:
        return MONTH_LABELS[month_index - 1]
    return "?"

def is_edit_allowed(
    marker: Optional[DiscontinuationMarker],
    target_fiscal_year: int,
    target_month_index: int
) -> bool:
    """Check whether a period is still open given a discontinuation marker.

    Periods up to and including the marker month are open; anything later
    in the same fiscal year, and any later fiscal year, is closed.

    Args:
        marker: Discontinuation marker, or None if the product is not discontinued
        target_fiscal_year: Fiscal year being forecast or edited
        target_month_index: Month index being forecast or edited

    Returns:
        True if volume is allowed for the period
    """
    if marker is None:
        return True

    if target_fiscal_year < marker.fiscal_year:
        return True

    if target_fiscal_year > marker.fiscal_year:
        return False

    return target_month_index <= marker.month_index

def marker_from_fields(fiscal_year: Optional[int], month_index: Optional[int]) -> Optional[DiscontinuationMarker]:
    """Build a marker from the two stored columns.

    Returns None when neither field is set.

    Raises:
        MalformedDateError: If only one field is set or the month is out of range
    """
    if fiscal_year is None and month_index is None:
        return None

    if fiscal_year is None or month_index is None:
        raise MalformedDateError(
            "Discontinuation marker needs both fiscal year and month index",
            details={'fiscal_year': fiscal_year, 'month_index': month_index}
        )

    if month_index < 1 or month_index > MONTHS_PER_YEAR:
        raise MalformedDateError(
            f"Discontinuation month index out of range: {month_index}",
            details={'fiscal_year': fiscal_year, 'month_index': month_index}
        )

    return DiscontinuationMarker(fiscal_year, month_index)
