"""Rate limiting for payment setup attempts."""

from __future__ import annotations

import time
from uuid import UUID

from app.core.config import get_settings
from app.core.rate_limit import RateLimiter, get_rate_limiter
from app.shared.exceptions import RateLimitException


def payment_setup_key(session_id: UUID, tutor_id: UUID, *, now: float | None = None) -> str:
    """Window counter key scoped to a session, its tutor and the current time bucket."""
    settings = get_settings()
    timestamp = time.time() if now is None else now
    bucket = int(timestamp // settings.payment_rate_limit_bucket_seconds)
    return f"{payment_setup_state_key(session_id, tutor_id)}:{bucket}"


def payment_setup_state_key(session_id: UUID, tutor_id: UUID) -> str:
    """Spacing and cooldown key; it has no bucket so a cooldown survives the rollover."""
    return f"payment-setup:{session_id}:{tutor_id}"


async def enforce_payment_setup_limit(
    session_id: UUID,
    tutor_id: UUID,
    *,
    limiter: RateLimiter | None = None,
    now: float | None = None,
) -> None:
    """Reject bursts of payment setup calls for the same session."""
    settings = get_settings()
    allowed, retry_after = await (limiter or get_rate_limiter()).acquire(
        payment_setup_key(session_id, tutor_id, now=now),
        max_requests=settings.payment_rate_limit_max_requests,
        window_seconds=settings.payment_rate_limit_window_seconds,
        min_interval_seconds=settings.payment_rate_limit_min_interval_seconds,
        cooldown_seconds=settings.payment_rate_limit_cooldown_seconds,
        state_key=payment_setup_state_key(session_id, tutor_id),
    )
    if not allowed:
        raise RateLimitException(
            f"Too many payment attempts. Try again in {retry_after} second(s).",
            retry_after=retry_after,
        )
