"""
Tests for the configuration checker script.
"""

from kinderhub.core.config import settings
from scripts.check_config import FAIL, OK, WARN, check

STRONG_SECRET = "x" * 48


def configured(**overrides):
    values = {
        "python_env": "production",
        "jwt_secret_key": STRONG_SECRET,
        "database_url": "postgresql+asyncpg://kinderhub:secret@db:5432/kinderhub",
        "redis_url": "redis://redis:6379/0",
        "timezone": "Africa/Johannesburg",
        "payfast_merchant_id": "10000100",
        "payfast_merchant_key": "46f0cd694581a",
        "payfast_passphrase": "jt7NOE43FZPn",
        "payfast_sandbox": False,
    }
    values.update(overrides)
    return settings.model_copy(update=values)


def levels(results, level):
    return [message for found, message in results if found == level]


def test_complete_production_config_passes():
    assert levels(check(configured()), FAIL) == []


def test_default_secret_fails_in_production():
    failures = levels(check(configured(jwt_secret_key="change-me-in-production")), FAIL)
    assert any("JWT_SECRET_KEY" in message for message in failures)


def test_short_secret_only_warns_in_development():
    results = check(configured(python_env="development", jwt_secret_key="short"))
    assert any("JWT_SECRET_KEY" in message for message in levels(results, WARN))
    assert not any("JWT_SECRET_KEY" in message for message in levels(results, FAIL))


def test_sync_database_driver_fails():
    failures = levels(check(configured(database_url="postgresql://db/kinderhub")), FAIL)
    assert any("DATABASE_URL" in message for message in failures)


def test_half_vapid_pair_fails():
    failures = levels(check(configured(vapid_public_key="pub", vapid_private_key=None)), FAIL)
    assert any("VAPID" in message for message in failures)


def test_half_payfast_credentials_fail():
    failures = levels(check(configured(payfast_merchant_key=None)), FAIL)
    assert any("PAYFAST_MERCHANT" in message for message in failures)


def test_stripe_requires_webhook_secret():
    results = check(configured(stripe_secret_key="sk_test_1", stripe_webhook_secret=None))
    assert "STRIPE_WEBHOOK_SECRET is required when Stripe is enabled" in levels(results, FAIL)


def test_no_gateway_in_production_fails():
    results = check(configured(payfast_merchant_id=None, payfast_merchant_key=None))
    assert "No payment gateway configured in production" in levels(results, FAIL)


def test_unknown_timezone_fails():
    failures = levels(check(configured(timezone="Mars/Olympus")), FAIL)
    assert any("TIMEZONE" in message for message in failures)


def test_ok_lines_reported():
    assert "DATABASE_URL uses asyncpg" in levels(check(configured()), OK)


def test_negative_proxy_hops_fail():
    failures = levels(check(configured(trusted_proxy_hops=-1)), FAIL)
    assert any("TRUSTED_PROXY_HOPS" in message for message in failures)


def test_no_trusted_proxy_warns():
    warnings = levels(check(configured(trusted_proxy_hops=0)), WARN)
    assert any("X-Forwarded-For is ignored" in message for message in warnings)
