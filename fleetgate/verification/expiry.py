"""
Expiry arithmetic shared by both verification chains and the identity card.

``days_remaining`` is a pure function of (now, expiry): both are reduced to
UTC calendar dates first, so the same inputs always give the same whole
number of days regardless of the time of day.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

CRITICAL_DAYS = 7
WARNING_DAYS = 30


def to_utc_date(value: date | datetime | str | None) -> date | None:
    """Reduce a date, datetime or ISO string to a UTC calendar date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.date()
        return value.astimezone(timezone.utc).date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return to_utc_date(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        return date.fromisoformat(text[:10])


def days_remaining(now: datetime | date, expiry: date | datetime | str | None) -> int | None:
    """
    Whole days from ``now`` until ``expiry``; negative once expired.

    Returns None when there is no expiry date.
    """
    expiry_day = to_utc_date(expiry)
    if expiry_day is None:
        return None
    today = to_utc_date(now)
    return (expiry_day - today).days


def risk_level(days: int | None) -> str:
    if days is None:
        return "unknown"
    if days < 0:
        return "expired"
    if days <= CRITICAL_DAYS:
        return "critical"
    if days <= WARNING_DAYS:
        return "warning"
    return "safe"


def insurance_health_pct(days: int | None) -> int:
    """Remaining cover as a share of a year, clamped to 0–100."""
    if days is None:
        return 0
    return min(100, max(0, round(days / 365 * 100)))
