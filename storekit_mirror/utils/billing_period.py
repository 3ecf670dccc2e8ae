"""Subscription period parsing utilities.

Parses ISO 8601 duration strings used for subscription billing periods
and converts them to durations for expiry calculations.
"""

import re
from datetime import datetime, timedelta

# Milliseconds in common time units
MILLIS_PER_SECOND = 1000
MILLIS_PER_MINUTE = 60 * MILLIS_PER_SECOND
MILLIS_PER_HOUR = 60 * MILLIS_PER_MINUTE
MILLIS_PER_DAY = 24 * MILLIS_PER_HOUR
MILLIS_PER_WEEK = 7 * MILLIS_PER_DAY
MILLIS_PER_MONTH = 30 * MILLIS_PER_DAY  # Standard approximation for billing
MILLIS_PER_YEAR = 365 * MILLIS_PER_DAY  # Standard approximation for billing

_UNIT_MILLIS = {
    "D": MILLIS_PER_DAY,
    "W": MILLIS_PER_WEEK,
    "M": MILLIS_PER_MONTH,
    "Y": MILLIS_PER_YEAR,
}


def parse_billing_period(period: str) -> int:
    """Parse ISO 8601 duration string to milliseconds.

    Supports P[n]D, P[n]W, P[n]M and P[n]Y. Months are approximated as
    30 days and years as 365 days.

    Args:
        period: ISO 8601 duration string (e.g., "P1M", "P1Y", "P7D")

    Returns:
        Duration in milliseconds

    Raises:
        ValueError: If the period string is invalid or unsupported

    Examples:
        >>> parse_billing_period("P1W")
        604800000

        >>> parse_billing_period("P1M")
        2592000000
    """
    if not period or not isinstance(period, str):
        raise ValueError("Period must be a non-empty string")

    period = period.strip().upper()

    if not period.startswith("P"):
        raise ValueError(f"Invalid period format: '{period}'. Must start with 'P'")

    duration_str = period[1:]
    if not duration_str:
        raise ValueError(f"Invalid period format: '{period}'. No duration specified")

    # [n] is optional and defaults to 1
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

    return number * _UNIT_MILLIS[unit]


def billing_period_to_timedelta(period: str) -> timedelta:
    """Convert ISO 8601 duration string to Python timedelta.

    Examples:
        >>> billing_period_to_timedelta("P1M")
        datetime.timedelta(days=30)
    """
    return timedelta(milliseconds=parse_billing_period(period))


def expiry_after(start: datetime, period: str) -> datetime:
    """Get the end of one billing period that begins at ``start``."""
    return start + billing_period_to_timedelta(period)


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
