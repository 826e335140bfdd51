"""
Configuration Checker

Validates the environment (.env) before deploying. Prints one line per
check and exits with status 1 if any check fails.

Usage:
    python scripts/check_config.py
"""

import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError

from kinderhub.core.config import Settings

MIN_SECRET_LENGTH = 32
DEFAULT_SECRET_PREFIX = "change-me"

OK = "OK"
WARN = "WARN"
FAIL = "FAIL"


def check(settings: Settings) -> list[tuple[str, str]]:
    """Return ``(level, message)`` pairs for every check."""
    results: list[tuple[str, str]] = []
    production = settings.is_production

    # Tokens
    secret = settings.jwt_secret_key
    if secret.startswith(DEFAULT_SECRET_PREFIX):
        results.append((FAIL if production else WARN, "JWT_SECRET_KEY is the default value"))
    elif len(secret) < MIN_SECRET_LENGTH:
        results.append(
            (
                FAIL if production else WARN,
                f"JWT_SECRET_KEY is shorter than {MIN_SECRET_LENGTH} characters",
            )
        )
    else:
        results.append((OK, "JWT_SECRET_KEY set"))

    # Infrastructure
    if settings.database_url.startswith("postgresql+asyncpg://"):
        results.append((OK, "DATABASE_URL uses asyncpg"))
    else:
        results.append((FAIL, "DATABASE_URL must start with postgresql+asyncpg://"))

    if settings.redis_url.startswith(("redis://", "rediss://")):
        results.append((OK, "REDIS_URL set"))
    else:
        results.append((FAIL, "REDIS_URL must start with redis:// or rediss://"))

    if settings.trusted_proxy_hops < 0:
        results.append((FAIL, "TRUSTED_PROXY_HOPS must not be negative"))
    elif settings.trusted_proxy_hops == 0:
        results.append((WARN, "TRUSTED_PROXY_HOPS is 0, X-Forwarded-For is ignored"))

    try:
        ZoneInfo(settings.timezone)
        results.append((OK, f"TIMEZONE {settings.timezone}"))
    except ZoneInfoNotFoundError:
        results.append((FAIL, f"TIMEZONE {settings.timezone!r} is not a known zone"))

    # Notifications
    if settings.resend_api_key:
        results.append((OK, "RESEND_API_KEY set"))
    else:
        results.append((WARN, "RESEND_API_KEY not set, e-mails will only be logged"))

    if bool(settings.vapid_public_key) != bool(settings.vapid_private_key):
        results.append((FAIL, "VAPID_PUBLIC_KEY and VAPID_PRIVATE_KEY must be set together"))
    elif settings.push_enabled:
        results.append((OK, "Web push configured"))
    else:
        results.append((WARN, "VAPID keys not set, push notifications disabled"))

    # Gateways
    payfast_fields = (settings.payfast_merchant_id, settings.payfast_merchant_key)
    if any(payfast_fields) and not all(payfast_fields):
        results.append((FAIL, "PAYFAST_MERCHANT_ID and PAYFAST_MERCHANT_KEY must be set together"))
    elif settings.payfast_enabled:
        mode = "sandbox" if settings.payfast_sandbox else "live"
        results.append((OK, f"PayFast configured ({mode})"))
        if not settings.payfast_passphrase:
            results.append((WARN, "PAYFAST_PASSPHRASE not set, signatures use no passphrase"))
        if production and settings.payfast_sandbox:
            results.append((WARN, "PAYFAST_SANDBOX is on in production"))
    else:
        results.append((WARN, "PayFast not configured"))

    if settings.stripe_enabled:
        results.append((OK, "Stripe configured"))
        if not settings.stripe_webhook_secret:
            results.append((FAIL, "STRIPE_WEBHOOK_SECRET is required when Stripe is enabled"))
        if not settings.stripe_publishable_key:
            results.append((WARN, "STRIPE_PUBLISHABLE_KEY not set"))
    else:
        results.append((WARN, "Stripe not configured"))

    if production and not (settings.payfast_enabled or settings.stripe_enabled):
        results.append((FAIL, "No payment gateway configured in production"))

    # Billing automation
    if settings.renewal_failure_threshold < 1:
        results.append((FAIL, "RENEWAL_FAILURE_THRESHOLD must be at least 1"))
    if settings.renewal_lookahead_days < 0:
        results.append((FAIL, "RENEWAL_LOOKAHEAD_DAYS must not be negative"))

    return results


def main() -> int:
    try:
        settings = Settings()
    except ValidationError as e:
        print(f"[{FAIL}] Settings could not be loaded:\n{e}")
        return 1

    print(f"Checking configuration for {settings.python_env}...")
    results = check(settings)
    for level, message in results:
        print(f"[{level}] {message}")

    failures = sum(1 for level, _ in results if level == FAIL)
    if failures:
        print(f"{failures} check(s) failed")
        return 1
    print("Configuration OK")
    return 0


if __name__ == "__main__":
    sys.exit(main())
