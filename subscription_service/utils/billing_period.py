"""Billing period utilities.

Parses ISO 8601 duration strings used for invoiced periods and computes
period windows. Months and years use calendar arithmetic: a period that
starts on a day the end month does not have ends on that month's last day.
"""

import calendar
import re
from datetime import datetime, timedelta


def parse_billing_period(period: str) -> tuple[int, str]:
    """Parse ISO 8601 duration string into (count, unit).

    Supports:
    - P[n]D - days (e.g., P7D = 7 days)
    - P[n]W - weeks (e.g., P1W = 1 week)
    - P[n]M - calendar months (e.g., P1M = 1 month)
    - P[n]Y - calendar years (e.g., P1Y = 1 year)

    Args:
        period: ISO 8601 duration string (e.g., "P1M", "P1Y", "P7D")

    Returns:
        Tuple of (count, unit) where unit is one of D, W, M, Y

    Raises:
        ValueError: If the period string is invalid or unsupported

    Examples:
        >>> parse_billing_period("P1M")
        (1, 'M')

        >>> parse_billing_period("p2w")
        (2, 'W')
    """
    if not period or not isinstance(period, str):
        raise ValueError("Period must be a non-empty string")

    period = period.strip().upper()

    if not period.startswith("P"):
        raise ValueError(f"Invalid period format: '{period}'. Must start with 'P'")

    duration_str = period[1:]

    if not duration_str:
        raise ValueError(f"Invalid period format: '{period}'. No duration specified")

    match = re.match(r"^(\d+)?([DWMY])$", duration_str)

    if not match:
        raise ValueError(
            f"Unsupported period format: '{period}'. "
            "Supported formats: P[n]D, P[n]W, P[n]M, P[n]Y"
        )

    number_str, unit = match.groups()
    number = int(number_str) if number_str else 1

    if number <= 0:
        raise ValueError(f"Period number must be positive, got: {number}")

    return number, unit


def add_months(start: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month.

    Examples:
        >>> add_months(datetime(2026, 1, 31), 1)
        datetime.datetime(2026, 2, 28, 0, 0)
    """
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def period_end(start: datetime, period: str) -> datetime:
    """Compute the end of one billing period starting at start."""
    number, unit = parse_billing_period(period)
    if unit == "D":
        return start + timedelta(days=number)
    elif unit == "W":
        return start + timedelta(weeks=number)
    elif unit == "M":
        return add_months(start, number)
    else:
        return add_months(start, 12 * number)


def billing_period_window(start: datetime, period: str) -> tuple[datetime, datetime]:
    """Compute the half-open invoiced window [start, start + period).

    Args:
        start: Period start
        period: ISO 8601 duration string

    Returns:
        Tuple of (period_start, period_end)
    """
    return start, period_end(start, period)


def validate_billing_period(period: str) -> bool:
    """Validate that a string is a valid billing period format.

    Examples:
        >>> validate_billing_period("P1M")
        True

        >>> validate_billing_period("invalid")
        False
    """
    try:
        parse_billing_period(period)
        return True
    except (ValueError, TypeError):
        return False
