"""Shared utility functions."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal


def utc_now() -> datetime:
    """Return aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Normalize datetime to UTC timezone."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def percent_of(amount: int, percent: int | Decimal) -> int:
    """Return `percent` of an amount in minor units, rounded half-up."""
    value = Decimal(amount) * Decimal(percent) / Decimal(100)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def prorated_amount(hourly_rate: int, minutes: int) -> int:
    """Hourly rate in minor units prorated to `minutes`, rounded half-up."""
    value = Decimal(hourly_rate) * Decimal(minutes) / Decimal(60)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))
