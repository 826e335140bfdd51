"""
PayFast Gateway

Redirect-based checkout: the payer's browser posts a signed form to
PayFast, and PayFast reports the outcome to ``/webhooks/payfast`` through
an ITN (Instant Transaction Notification).

Signature: MD5 of the parameters sorted by key, URL-encoded, with
``&passphrase=...`` appended when a passphrase is configured. The
passphrase is percent-encoded (spaces as ``%20``), unlike the fields. The
``signature`` field itself is never part of the signed string.
"""

import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from urllib.parse import quote, quote_plus, urlencode

import httpx

from kinderhub.core.config import settings

logger = logging.getLogger(__name__)

SIGNATURE_FIELD = "signature"
# Left unescaped in the passphrase, as JavaScript's encodeURIComponent does
PASSPHRASE_SAFE = "!*'()"
VALIDATE_TIMEOUT_SECONDS = 10.0

# ITN payment_status values
STATUS_COMPLETE = "COMPLETE"
STATUS_FAILED = "FAILED"
STATUS_CANCELLED = "CANCELLED"


@dataclass
class PayFastCheckout:
    url: str
    reference: str
    fields: dict[str, str] = field(default_factory=dict)

    @property
    def redirect_url(self) -> str:
        """Checkout as a single GET URL, for e-mailed payment links."""
        return f"{self.url}?{urlencode(self.fields, quote_via=quote_plus)}"


def generate_reference(prefix: str = "SUB") -> str:
    return f"{prefix}_{int(time.time())}_{secrets.token_hex(5)}"


def generate_signature(data: Mapping[str, str], passphrase: str | None = None) -> str:
    params = [(key, str(data[key])) for key in sorted(data) if key != SIGNATURE_FIELD]
    payload = urlencode(params, quote_via=quote_plus)
    if passphrase:
        payload += f"&passphrase={quote(passphrase, safe=PASSPHRASE_SAFE)}"
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def verify_signature(data: Mapping[str, str], passphrase: str | None = None) -> bool:
    received = data.get(SIGNATURE_FIELD)
    if not received:
        return False
    expected = generate_signature(data, passphrase)
    return hmac.compare_digest(expected, received.lower())


def is_allowed_ip(ip: str | None) -> bool:
    return ip is not None and ip in settings.payfast_allowed_ips


def build_checkout(
    amount: Decimal,
    item_name: str,
    email: str,
    first_name: str,
    last_name: str,
    subscription_id: str,
    user_id: str,
    reference: str | None = None,
    item_description: str | None = None,
) -> PayFastCheckout:
    """
    Build a signed checkout form.

    ``custom_str1`` carries the subscription id and ``custom_str2`` the user
    id so the ITN can be matched without trusting anything else.
    """
    reference = reference or generate_reference()
    fields = {
        "merchant_id": settings.payfast_merchant_id or "",
        "merchant_key": settings.payfast_merchant_key or "",
        "return_url": f"{settings.frontend_url}/payment/success",
        "cancel_url": f"{settings.frontend_url}/payment/cancel",
        "notify_url": f"{settings.api_url}/webhooks/payfast",
        "name_first": first_name,
        "name_last": last_name,
        "email_address": email,
        "m_payment_id": reference,
        "amount": f"{amount:.2f}",
        "item_name": item_name,
        "item_description": item_description or item_name,
        "custom_str1": subscription_id,
        "custom_str2": user_id,
    }
    fields[SIGNATURE_FIELD] = generate_signature(fields, settings.payfast_passphrase)
    return PayFastCheckout(url=settings.payfast_process_url, reference=reference, fields=fields)


async def validate_with_server(data: Mapping[str, str]) -> bool:
    """
    Confirm an ITN with PayFast's validate endpoint.

    The ITN parameters are posted back as received; PayFast answers
    ``VALID`` or ``INVALID``.
    """
    params = [(key, str(value)) for key, value in data.items() if key != SIGNATURE_FIELD]
    try:
        async with httpx.AsyncClient(timeout=VALIDATE_TIMEOUT_SECONDS) as client:
            response = await client.post(
                settings.payfast_validate_url,
                content=urlencode(params, quote_via=quote_plus),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
    except httpx.HTTPError as e:
        logger.error(f"PayFast validation request failed: {e}")
        return False

    return response.status_code == 200 and response.text.strip() == "VALID"
