"""
Webhooks Service

Applies payment notifications from PayFast (ITN) and Stripe.

Every notification is written to ``payment_logs`` before anything else.
Processing then runs inside a savepoint: if it raises, its changes are
rolled back, the error is recorded on the log row and the caller still
answers 200 so the gateway does not retry forever.

Notifications are only applied to transactions that are still pending,
so redelivered webhooks are no-ops.
"""

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.config import settings
from kinderhub.modules.billing import repository as billing_repository
from kinderhub.modules.billing.gateways import payfast, stripe_gateway
from kinderhub.modules.billing.models import (
    PaymentGateway,
    PaymentLog,
    SubscriptionStatus,
    SubscriptionTransaction,
    TransactionStatus,
)
from kinderhub.modules.billing.service import activate_after_payment, apply_failure

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = Decimal("0.01")


class WebhookRejected(Exception):
    """The notification was received but must not be applied."""


def _reject(log: PaymentLog, reason: str) -> PaymentLog:
    log.error = reason
    logger.warning(f"{log.gateway.value} webhook rejected ({log.reference}): {reason}")
    return log


async def _run(db: AsyncSession, log: PaymentLog, handler, *args: Any) -> PaymentLog:
    """Run ``handler`` in a savepoint and record the outcome on ``log``."""
    try:
        async with db.begin_nested():
            detail = await handler(db, *args)
    except WebhookRejected as e:
        return _reject(log, str(e))
    except Exception as e:
        logger.error(
            f"Error processing {log.gateway.value} webhook ({log.reference}): {e}", exc_info=True
        )
        log.error = str(e)
        return log

    log.processed = True
    log.error = detail
    await db.flush()
    return log


# ============================================
# PayFast
# ============================================


def _parse_amount(value: str | None) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(value)
    except InvalidOperation:
        return None


async def _apply_itn(db: AsyncSession, data: Mapping[str, str]) -> str | None:
    reference = data.get("m_payment_id")
    if not reference:
        raise WebhookRejected("Missing m_payment_id")

    transaction = await billing_repository.get_transaction_by_reference(
        db, PaymentGateway.PAYFAST, reference
    )
    if transaction is None:
        raise WebhookRejected(f"Unknown transaction {reference}")
    if data.get("custom_str1") and data["custom_str1"] != transaction.subscription_id:
        raise WebhookRejected("Subscription does not match transaction")

    amount = _parse_amount(data.get("amount_gross"))
    if amount is None or abs(amount - transaction.amount) > AMOUNT_TOLERANCE:
        raise WebhookRejected(
            f"Amount mismatch: expected {transaction.amount}, got {data.get('amount_gross')}"
        )

    if transaction.status != TransactionStatus.PENDING:
        logger.info(f"PayFast ITN for {reference} already applied ({transaction.status.value})")
        return "already_processed"

    subscription = await billing_repository.get_subscription(db, transaction.subscription_id)
    if subscription is None:
        raise WebhookRejected(f"Subscription {transaction.subscription_id} not found")

    now = datetime.now(UTC)
    payment_status = (data.get("payment_status") or "").upper()
    fields: dict[str, Any] = {
        "gateway_payment_id": data.get("pf_payment_id"),
        "gateway_response": dict(data),
        "processed_at": now,
    }
    fee = _parse_amount(data.get("amount_fee"))
    if fee is not None:
        fields["fee"] = abs(fee)

    if payment_status == payfast.STATUS_COMPLETE:
        fields["status"] = TransactionStatus.COMPLETED
        await billing_repository.update_transaction(db, transaction, fields)
        await activate_after_payment(db, subscription, now)
        logger.info(f"PayFast payment {reference} completed for subscription {subscription.id}")
        return None

    if payment_status == payfast.STATUS_FAILED:
        fields.update(status=TransactionStatus.FAILED, failure_reason="Payment failed at PayFast")
        await billing_repository.update_transaction(db, transaction, fields)
        await apply_failure(db, subscription, "Payment failed at PayFast", now)
        return None

    if payment_status == payfast.STATUS_CANCELLED:
        fields.update(status=TransactionStatus.FAILED, failure_reason="Payment cancelled by payer")
        await billing_repository.update_transaction(db, transaction, fields)
        logger.info(f"PayFast payment {reference} cancelled by payer")
        return None

    raise WebhookRejected(f"Unknown payment_status {payment_status!r}")


async def handle_payfast_itn(
    db: AsyncSession, data: Mapping[str, str], source_ip: str | None
) -> PaymentLog:
    """
    Verify and apply a PayFast ITN.

    Checks, in order: source IP (production only), signature, and
    optionally a round trip to PayFast's validate endpoint.
    """
    log = await billing_repository.create_payment_log(
        db,
        gateway=PaymentGateway.PAYFAST,
        event_type=data.get("payment_status"),
        reference=data.get("m_payment_id"),
        source_ip=source_ip,
        payload=dict(data),
    )

    if settings.is_production and not payfast.is_allowed_ip(source_ip):
        return _reject(log, f"Source IP {source_ip} not allowed")

    log.signature_valid = payfast.verify_signature(data, settings.payfast_passphrase)
    if not log.signature_valid:
        return _reject(log, "Invalid signature")

    if settings.payfast_validate_itn and not await payfast.validate_with_server(data):
        return _reject(log, "PayFast validation failed")

    return await _run(db, log, _apply_itn, data)


# ============================================
# Stripe
# ============================================


async def _intent_transaction(
    db: AsyncSession, intent: Mapping[str, Any]
) -> SubscriptionTransaction | None:
    transaction = await billing_repository.get_transaction_by_reference(
        db, PaymentGateway.STRIPE, intent["id"]
    )
    if transaction is None:
        logger.info(f"No transaction for payment intent {intent['id']}")
    return transaction


async def _intent_succeeded(db: AsyncSession, intent: Mapping[str, Any]) -> str | None:
    transaction = await _intent_transaction(db, intent)
    if transaction is None:
        return "unknown_payment_intent"

    subscription = await billing_repository.get_subscription(db, transaction.subscription_id)
    if subscription is None:
        raise WebhookRejected(f"Subscription {transaction.subscription_id} not found")

    if intent.get("payment_method"):
        subscription.stripe_payment_method_id = intent["payment_method"]
    if intent.get("customer"):
        subscription.stripe_customer_id = intent["customer"]

    if transaction.status != TransactionStatus.PENDING:
        await db.flush()
        return "already_processed"

    now = datetime.now(UTC)
    await billing_repository.update_transaction(
        db,
        transaction,
        {
            "status": TransactionStatus.COMPLETED,
            "gateway_payment_id": intent["id"],
            "processed_at": now,
            "gateway_response": {"status": intent.get("status")},
        },
    )
    await activate_after_payment(db, subscription, now)
    return None


async def _intent_failed(db: AsyncSession, intent: Mapping[str, Any]) -> str | None:
    transaction = await _intent_transaction(db, intent)
    if transaction is None:
        return "unknown_payment_intent"
    if transaction.status != TransactionStatus.PENDING:
        return "already_processed"

    error = intent.get("last_payment_error") or {}
    cancelled = intent.get("status") == "canceled"
    reason = error.get("message") or (
        "Payment cancelled at Stripe" if cancelled else "Payment failed at Stripe"
    )
    now = datetime.now(UTC)
    await billing_repository.update_transaction(
        db,
        transaction,
        {"status": TransactionStatus.FAILED, "failure_reason": reason, "processed_at": now},
    )

    subscription = await billing_repository.get_subscription(db, transaction.subscription_id)
    if subscription is not None and subscription.status != SubscriptionStatus.PENDING:
        await apply_failure(db, subscription, reason, now)
    return None


async def _subscription_deleted(db: AsyncSession, stripe_subscription: Mapping[str, Any]) -> str | None:
    subscription = await billing_repository.get_by_gateway_subscription_id(
        db, PaymentGateway.STRIPE, stripe_subscription["id"]
    )
    if subscription is None:
        return "unknown_subscription"

    await billing_repository.update_subscription(
        db,
        subscription,
        {
            "status": SubscriptionStatus.CANCELLED,
            "auto_renew": False,
            "next_billing_date": None,
            "cancelled_at": datetime.now(UTC),
            "cancellation_reason": "Cancelled in Stripe",
        },
    )
    logger.info(f"Subscription {subscription.id} cancelled from Stripe")
    return None


async def _invoice_failed(db: AsyncSession, invoice: Mapping[str, Any]) -> str | None:
    gateway_subscription_id = invoice.get("subscription")
    if not gateway_subscription_id:
        return "no_subscription"

    subscription = await billing_repository.get_by_gateway_subscription_id(
        db, PaymentGateway.STRIPE, gateway_subscription_id
    )
    if subscription is None:
        return "unknown_subscription"

    existing = await billing_repository.get_transaction_by_reference(
        db, PaymentGateway.STRIPE, invoice["id"]
    )
    if existing is not None:
        return "already_processed"

    now = datetime.now(UTC)
    reason = "Invoice payment failed at Stripe"
    await billing_repository.create_transaction(
        db,
        subscription_id=subscription.id,
        user_id=subscription.user_id,
        gateway=PaymentGateway.STRIPE,
        reference=invoice["id"],
        amount=Decimal(invoice.get("amount_due") or 0) / 100,
        currency=(invoice.get("currency") or subscription.currency).upper(),
        status=TransactionStatus.FAILED,
        is_renewal=True,
        failure_reason=reason,
        processed_at=now,
    )
    await apply_failure(db, subscription, reason, now)
    return None


STRIPE_HANDLERS = {
    "payment_intent.succeeded": _intent_succeeded,
    "payment_intent.payment_failed": _intent_failed,
    "payment_intent.canceled": _intent_failed,
    "customer.subscription.deleted": _subscription_deleted,
    "invoice.payment_failed": _invoice_failed,
}


async def handle_stripe_event(
    db: AsyncSession, payload: bytes, signature_header: str | None, source_ip: str | None
) -> PaymentLog:
    """Verify a Stripe webhook and apply the events this application handles."""
    try:
        if not signature_header:
            raise ValueError("Missing Stripe-Signature header")
        event = stripe_gateway.construct_event(payload, signature_header)
    except (ValueError, stripe.SignatureVerificationError) as e:
        log = await billing_repository.create_payment_log(
            db,
            gateway=PaymentGateway.STRIPE,
            source_ip=source_ip,
            signature_valid=False,
            payload={},
        )
        return _reject(log, f"Invalid webhook: {e}")

    event_type = event["type"]
    obj = event["data"]["object"]
    log = await billing_repository.create_payment_log(
        db,
        gateway=PaymentGateway.STRIPE,
        event_type=event_type,
        reference=obj.get("id"),
        source_ip=source_ip,
        signature_valid=True,
        payload={"event_id": event["id"], "type": event_type, "object_id": obj.get("id")},
    )

    handler = STRIPE_HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Ignoring Stripe event {event_type}")
        log.error = "unhandled_event"
        return log

    return await _run(db, log, handler, obj)
