"""
Stripe Gateway

Thin async wrapper over the synchronous Stripe SDK. Amounts are passed in
major units (Decimal) and converted to cents here.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe

from kinderhub.core.config import settings

logger = logging.getLogger(__name__)

stripe.api_key = settings.stripe_secret_key

SUCCEEDED = "succeeded"
# Not final yet; Stripe reports the outcome through a webhook
UNSETTLED_STATUSES = frozenset({"processing", "requires_action"})


@dataclass
class StripeChargeResult:
    success: bool
    payment_intent_id: str | None = None
    status: str | None = None
    error: str | None = None
    raw: dict[str, Any] | None = None

    @property
    def unsettled(self) -> bool:
        return self.status in UNSETTLED_STATUSES


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


async def create_customer(email: str, name: str, user_id: str) -> str:
    customer = await asyncio.to_thread(
        stripe.Customer.create,
        email=email,
        name=name,
        metadata={"user_id": user_id},
    )
    return customer.id


async def create_payment_intent(
    amount: Decimal,
    currency: str,
    metadata: dict[str, str],
    customer_id: str | None = None,
    idempotency_key: str | None = None,
) -> dict[str, Any]:
    """
    Create a PaymentIntent for on-session checkout.

    The card is saved for off-session renewals (``setup_future_usage``).
    """
    params: dict[str, Any] = {
        "amount": to_minor_units(amount),
        "currency": currency.lower(),
        "metadata": metadata,
        "automatic_payment_methods": {"enabled": True},
        "setup_future_usage": "off_session",
    }
    if customer_id:
        params["customer"] = customer_id
    if idempotency_key:
        params["idempotency_key"] = idempotency_key

    intent = await asyncio.to_thread(stripe.PaymentIntent.create, **params)
    return {"id": intent.id, "client_secret": intent.client_secret, "status": intent.status}


async def charge_off_session(
    amount: Decimal,
    currency: str,
    customer_id: str,
    payment_method_id: str | None,
    metadata: dict[str, str],
    idempotency_key: str,
) -> StripeChargeResult:
    """
    Charge a saved payment method without the customer present.

    Card declines come back as an unsuccessful result rather than an
    exception; other Stripe errors propagate. A result can also be
    ``unsettled`` (bank debits, 3-D Secure) and must then be left for the
    ``payment_intent.*`` webhooks.
    """
    params: dict[str, Any] = {
        "amount": to_minor_units(amount),
        "currency": currency.lower(),
        "customer": customer_id,
        "metadata": metadata,
        "off_session": True,
        "confirm": True,
        "idempotency_key": idempotency_key,
    }
    if payment_method_id:
        params["payment_method"] = payment_method_id

    try:
        intent = await asyncio.to_thread(stripe.PaymentIntent.create, **params)
    except stripe.CardError as e:
        intent_id = None
        if e.error is not None and e.error.payment_intent is not None:
            intent_id = e.error.payment_intent.id
        logger.warning(f"Stripe off-session charge declined for customer {customer_id}: {e}")
        return StripeChargeResult(
            success=False,
            payment_intent_id=intent_id,
            status="card_declined",
            error=e.user_message or str(e),
        )

    return StripeChargeResult(
        success=intent.status == SUCCEEDED,
        payment_intent_id=intent.id,
        status=intent.status,
        error=None if intent.status == SUCCEEDED else f"Payment status: {intent.status}",
        raw={"id": intent.id, "status": intent.status},
    )


def construct_event(payload: bytes, signature_header: str) -> stripe.Event:
    """
    Verify and parse a webhook body.

    Raises:
        ValueError: Malformed payload, or no webhook secret configured
        stripe.SignatureVerificationError: Bad signature
    """
    if not settings.stripe_webhook_secret:
        raise ValueError("STRIPE_WEBHOOK_SECRET is not configured")
    return stripe.Webhook.construct_event(payload, signature_header, settings.stripe_webhook_secret)
