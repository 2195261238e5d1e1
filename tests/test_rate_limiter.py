from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

import pytest

from app.core import rate_limit as rate_limit_module
from app.core.rate_limit import InMemorySlidingWindowRateLimiter, RedisSlidingWindowRateLimiter
from app.modules.payments import rate_limit as payment_rate_limit_module
from app.modules.payments.rate_limit import enforce_payment_setup_limit, payment_setup_key
from app.shared.exceptions import RateLimitException


@pytest.mark.asyncio
async def test_sliding_window_blocks_after_limit_and_recovers() -> None:
    now_point = [100.0]
    limiter = InMemorySlidingWindowRateLimiter(now_provider=lambda: now_point[0])

    first_allowed, first_retry = await limiter.acquire("k", max_requests=2, window_seconds=10)
    second_allowed, second_retry = await limiter.acquire("k", max_requests=2, window_seconds=10)
    third_allowed, third_retry = await limiter.acquire("k", max_requests=2, window_seconds=10)

    assert first_allowed is True
    assert first_retry == 0
    assert second_allowed is True
    assert second_retry == 0
    assert third_allowed is False
    assert third_retry == 10

    now_point[0] = 110.01
    fourth_allowed, fourth_retry = await limiter.acquire("k", max_requests=2, window_seconds=10)
    assert fourth_allowed is True
    assert fourth_retry == 0


@pytest.mark.asyncio
async def test_minimum_interval_spaces_out_requests() -> None:
    now_point = [100.0]
    limiter = InMemorySlidingWindowRateLimiter(now_provider=lambda: now_point[0])

    await limiter.acquire("k", max_requests=10, window_seconds=60, min_interval_seconds=5)
    now_point[0] = 102.0
    allowed, retry_after = await limiter.acquire("k", max_requests=10, window_seconds=60, min_interval_seconds=5)

    assert allowed is False
    assert retry_after == 3

    now_point[0] = 105.0
    allowed, _ = await limiter.acquire("k", max_requests=10, window_seconds=60, min_interval_seconds=5)
    assert allowed is True


@pytest.mark.asyncio
async def test_cooldown_starts_when_limit_is_reached() -> None:
    now_point = [100.0]
    limiter = InMemorySlidingWindowRateLimiter(now_provider=lambda: now_point[0])

    await limiter.acquire("k", max_requests=2, window_seconds=10, cooldown_seconds=300)
    await limiter.acquire("k", max_requests=2, window_seconds=10, cooldown_seconds=300)

    now_point[0] = 150.0
    allowed, retry_after = await limiter.acquire("k", max_requests=2, window_seconds=10, cooldown_seconds=300)
    assert allowed is False
    assert retry_after == 250

    now_point[0] = 400.0
    allowed, _ = await limiter.acquire("k", max_requests=2, window_seconds=10, cooldown_seconds=300)
    assert allowed is True


@pytest.mark.asyncio
async def test_clear_drops_all_counters() -> None:
    limiter = InMemorySlidingWindowRateLimiter(now_provider=lambda: 200.0)

    await limiter.acquire("payment-setup:1", max_requests=1, window_seconds=60)
    blocked, _ = await limiter.acquire("payment-setup:1", max_requests=1, window_seconds=60)
    assert blocked is False

    await limiter.clear()
    allowed_again, retry_after = await limiter.acquire(
        "payment-setup:1",
        max_requests=1,
        window_seconds=60,
    )
    assert allowed_again is True
    assert retry_after == 0


def test_payment_setup_key_changes_with_time_bucket(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        payment_rate_limit_module,
        "get_settings",
        lambda: SimpleNamespace(payment_rate_limit_bucket_seconds=3600),
    )
    session_id, tutor_id = uuid4(), uuid4()

    first = payment_setup_key(session_id, tutor_id, now=7_200.0)
    same_bucket = payment_setup_key(session_id, tutor_id, now=10_799.0)
    next_bucket = payment_setup_key(session_id, tutor_id, now=10_800.0)

    assert first == f"payment-setup:{session_id}:{tutor_id}:2"
    assert same_bucket == first
    assert next_bucket != first


@pytest.mark.asyncio
async def test_payment_setup_limit_raises_with_retry_after(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        payment_rate_limit_module,
        "get_settings",
        lambda: SimpleNamespace(
            payment_rate_limit_bucket_seconds=3600,
            payment_rate_limit_max_requests=10,
            payment_rate_limit_window_seconds=60,
            payment_rate_limit_min_interval_seconds=5,
            payment_rate_limit_cooldown_seconds=0,
        ),
    )
    limiter = InMemorySlidingWindowRateLimiter(now_provider=lambda: 1_000.0)
    session_id, tutor_id = uuid4(), uuid4()

    await enforce_payment_setup_limit(session_id, tutor_id, limiter=limiter, now=1_000.0)
    with pytest.raises(RateLimitException) as exc_info:
        await enforce_payment_setup_limit(session_id, tutor_id, limiter=limiter, now=1_000.0)

    assert exc_info.value.retry_after == 5
    await enforce_payment_setup_limit(uuid4(), tutor_id, limiter=limiter, now=1_000.0)


@pytest.mark.asyncio
async def test_lapsed_keys_are_swept() -> None:
    now_point = [0.0]
    limiter = InMemorySlidingWindowRateLimiter(now_provider=lambda: now_point[0])

    for index in range(500):
        await limiter.acquire(f"payment-setup:{index}", max_requests=10, window_seconds=60, min_interval_seconds=5)
    await limiter.acquire("cooling", max_requests=1, window_seconds=10, cooldown_seconds=600)
    assert limiter.tracked_keys == 501

    now_point[0] = 120.0
    allowed, _ = await limiter.acquire("fresh", max_requests=10, window_seconds=60)

    assert allowed is True
    # The cooldown has not lapsed yet, so its key is kept.
    assert limiter.tracked_keys == 2
    blocked, retry_after = await limiter.acquire("cooling", max_requests=1, window_seconds=10, cooldown_seconds=600)
    assert blocked is False
    assert retry_after == 480


def _payment_limit_settings() -> SimpleNamespace:
    return SimpleNamespace(
        payment_rate_limit_bucket_seconds=3600,
        payment_rate_limit_max_requests=10,
        payment_rate_limit_window_seconds=60,
        payment_rate_limit_min_interval_seconds=5,
        payment_rate_limit_cooldown_seconds=300,
    )


@pytest.mark.asyncio
async def test_cooldown_survives_time_bucket_rollover(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(payment_rate_limit_module, "get_settings", _payment_limit_settings)
    now_point = [3_540.0]
    limiter = InMemorySlidingWindowRateLimiter(now_provider=lambda: now_point[0])
    session_id, tutor_id = uuid4(), uuid4()

    for step in range(10):
        now_point[0] = 3_540.0 + step * 5
        await enforce_payment_setup_limit(session_id, tutor_id, limiter=limiter, now=now_point[0])

    now_point[0] = 3_601.0
    with pytest.raises(RateLimitException) as exc_info:
        await enforce_payment_setup_limit(session_id, tutor_id, limiter=limiter, now=now_point[0])

    assert exc_info.value.retry_after == 284


@pytest.mark.asyncio
async def test_minimum_interval_survives_time_bucket_rollover(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(payment_rate_limit_module, "get_settings", _payment_limit_settings)
    now_point = [3_599.0]
    limiter = InMemorySlidingWindowRateLimiter(now_provider=lambda: now_point[0])
    session_id, tutor_id = uuid4(), uuid4()

    await enforce_payment_setup_limit(session_id, tutor_id, limiter=limiter, now=now_point[0])
    now_point[0] = 3_601.0
    with pytest.raises(RateLimitException) as exc_info:
        await enforce_payment_setup_limit(session_id, tutor_id, limiter=limiter, now=now_point[0])

    assert exc_info.value.retry_after == 3
    assert payment_setup_key(session_id, tutor_id, now=3_601.0) != payment_setup_key(session_id, tutor_id, now=3_599.0)


def test_redis_limiter_keeps_state_under_the_bucketless_key() -> None:
    limiter = RedisSlidingWindowRateLimiter(redis_url="redis://localhost:6379/0", namespace="ns")

    assert limiter._build_storage_keys("payment-setup:s:t:1", "payment-setup:s:t") == [
        "ns:payment-setup:s:t:1:events",
        "ns:payment-setup:s:t:state",
    ]
    assert limiter._build_storage_keys("k") == ["ns:k:events", "ns:k:state"]


def test_get_rate_limiter_uses_redis_backend_when_configured(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    class FakeRedisLimiter:
        def __init__(self, *, redis_url: str, namespace: str) -> None:
            self.redis_url = redis_url
            self.namespace = namespace

        async def acquire(self, key: str, **kwargs) -> tuple[bool, int]:
            return True, 0

        async def clear(self) -> None:
            return None

    settings = SimpleNamespace(
        payment_rate_limit_backend="redis",
        redis_url="redis://redis:6379/0",
        payment_rate_limit_redis_namespace="payment_limit_test",
    )
    monkeypatch.setattr(rate_limit_module, "get_settings", lambda: settings)
    monkeypatch.setattr(rate_limit_module, "RedisSlidingWindowRateLimiter", FakeRedisLimiter)
    monkeypatch.setattr(rate_limit_module, "_rate_limiter", None)
    monkeypatch.setattr(rate_limit_module, "_rate_limiter_signature", None)

    limiter = rate_limit_module.get_rate_limiter()
    assert isinstance(limiter, FakeRedisLimiter)
    assert limiter.redis_url == "redis://redis:6379/0"
    assert limiter.namespace == "payment_limit_test"


def test_get_rate_limiter_reuses_instance_for_same_signature(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    settings = SimpleNamespace(
        payment_rate_limit_backend="memory",
        redis_url=None,
        payment_rate_limit_redis_namespace="payment_rate_limit",
    )
    monkeypatch.setattr(rate_limit_module, "get_settings", lambda: settings)
    monkeypatch.setattr(rate_limit_module, "_rate_limiter", None)
    monkeypatch.setattr(rate_limit_module, "_rate_limiter_signature", None)

    first = rate_limit_module.get_rate_limiter()
    second = rate_limit_module.get_rate_limiter()

    assert first is second


def test_get_rate_limiter_rebuilds_when_signature_changes(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    state = {"backend": "memory", "namespace": "payment_rate_limit"}

    def _settings() -> SimpleNamespace:
        return SimpleNamespace(
            payment_rate_limit_backend=state["backend"],
            redis_url=None,
            payment_rate_limit_redis_namespace=state["namespace"],
        )

    monkeypatch.setattr(rate_limit_module, "get_settings", _settings)
    monkeypatch.setattr(rate_limit_module, "_rate_limiter", None)
    monkeypatch.setattr(rate_limit_module, "_rate_limiter_signature", None)

    first = rate_limit_module.get_rate_limiter()
    state["namespace"] = "payment_rate_limit_v2"
    second = rate_limit_module.get_rate_limiter()

    assert first is not second
    assert isinstance(second, InMemorySlidingWindowRateLimiter)
