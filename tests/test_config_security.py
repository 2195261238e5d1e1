from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.core.config import Settings


def test_default_secret_key_allowed_in_development() -> None:
    settings = Settings(_env_file=None, app_env="development", secret_key="change-me")
    assert settings.secret_key == "change-me"


def test_default_secret_key_rejected_in_production() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, app_env="production", secret_key="change-me")


def test_placeholder_secret_key_prefix_rejected_in_production() -> None:
    with pytest.raises(ValidationError):
        Settings(
            _env_file=None,
            app_env="production",
            secret_key="change-me-in-production",
            payment_rate_limit_allow_in_memory_in_production=True,
        )


def test_in_memory_rate_limiter_requires_explicit_ack_in_production() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, app_env="production", secret_key="super-secure-value")


def test_custom_secret_key_allowed_in_production_with_explicit_ack() -> None:
    settings = Settings(
        _env_file=None,
        app_env="production",
        secret_key="super-secure-value",
        payment_rate_limit_allow_in_memory_in_production=True,
    )
    assert settings.secret_key == "super-secure-value"


def test_redis_backends_require_redis_url() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, payment_rate_limit_backend="redis")
    with pytest.raises(ValidationError):
        Settings(_env_file=None, cache_backend="redis")

    settings = Settings(_env_file=None, cache_backend=" REDIS ", redis_url="redis://redis:6379/0")
    assert settings.cache_backend == "redis"


def test_business_hours_must_be_ordered_clock_times() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, business_hours_start="22:00", business_hours_end="06:00")
    with pytest.raises(ValidationError):
        Settings(_env_file=None, business_hours_start="6am")


def test_live_stripe_key_requires_webhook_secret() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, stripe_secret_key="sk_live_abc")

    settings = Settings(_env_file=None, stripe_secret_key="sk_live_abc", stripe_webhook_secret="whsec_abc")
    assert settings.stripe_webhook_secret == "whsec_abc"
