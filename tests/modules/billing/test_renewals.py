"""
Unit tests for the renewal engine.

The repository, gateways and e-mail are mocked; subscriptions and
transactions are real (unsaved) ORM objects so state changes can be
asserted directly.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import stripe
from sqlalchemy.exc import IntegrityError

from kinderhub.core.exceptions import NotFoundError, ValidationError
from kinderhub.modules.billing import renewals
from kinderhub.modules.billing.gateways.stripe_gateway import StripeChargeResult
from kinderhub.modules.billing.models import (
    PaymentGateway,
    SubscriptionStatus,
    TransactionStatus,
)

RENEWALS = "kinderhub.modules.billing.renewals"
NOW = datetime(2026, 3, 10, 0, 0, tzinfo=UTC)


def _apply(db, obj, fields):
    for key, value in fields.items():
        setattr(obj, key, value)
    return obj


@pytest.fixture
def deps(make_transaction):
    with (
        patch(f"{RENEWALS}.repository") as repo,
        patch(f"{RENEWALS}.UserRepository") as users,
        patch(f"{RENEWALS}.email") as email,
        patch(f"{RENEWALS}.stripe_gateway.charge_off_session", new_callable=AsyncMock) as charge,
        patch("kinderhub.modules.billing.service.apply_failure", new_callable=AsyncMock) as failure,
    ):
        repo.count_closed_renewal_attempts = AsyncMock(return_value=0)
        repo.create_transaction = AsyncMock(
            side_effect=lambda db, **fields: make_transaction(**{**fields, "reference": None})
        )
        repo.update_transaction = AsyncMock(side_effect=_apply)
        repo.get_subscription = AsyncMock()
        account = MagicMock()
        account.email = "parent@test.com"
        account.full_name = "Pat Parent"
        account.first_name = "Pat"
        account.last_name = "Parent"
        users.get_by_id = AsyncMock(return_value=account)
        email.send_renewal_success = AsyncMock(return_value=True)
        email.send_renewal_payment_link = AsyncMock(return_value=True)
        failure.return_value = False
        yield repo, email, charge, failure


def test_idempotency_key_format():
    key = renewals.renewal_idempotency_key("sub-1", NOW.date(), 2)
    assert key == "renewal:sub-1:2026-03-10:2"


class TestManualRenewal:
    @pytest.mark.asyncio
    async def test_extends_period_without_charge(self, mock_db, make_subscription, deps):
        repo, email, charge, _ = deps
        subscription = make_subscription(gateway=PaymentGateway.MANUAL)
        old_end = subscription.end_date

        outcome = await renewals.renew_subscription(mock_db, subscription, NOW)

        assert outcome.outcome == renewals.RENEWED
        assert subscription.end_date == old_end + timedelta(days=30)
        assert subscription.next_billing_date == subscription.end_date
        kwargs = repo.create_transaction.call_args.kwargs
        assert kwargs["amount"] == Decimal("0")
        assert kwargs["is_renewal"] is True
        assert kwargs["idempotency_key"] == f"renewal:{subscription.id}:2026-03-10:1"
        charge.assert_not_awaited()
        email.send_renewal_success.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_trial_becomes_active(self, mock_db, make_subscription, deps):
        subscription = make_subscription(
            gateway=PaymentGateway.MANUAL, status=SubscriptionStatus.TRIAL
        )

        await renewals.renew_subscription(mock_db, subscription, NOW)

        assert subscription.status == SubscriptionStatus.ACTIVE


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_duplicate_attempt_is_skipped(self, mock_db, subscription, deps):
        repo, _, charge, _ = deps
        repo.create_transaction.side_effect = IntegrityError("INSERT", {}, Exception("duplicate"))
        old_end = subscription.end_date

        outcome = await renewals.renew_subscription(mock_db, subscription, NOW)

        assert outcome.outcome == renewals.SKIPPED
        assert subscription.end_date == old_end
        charge.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_after_failure_uses_next_attempt(self, mock_db, subscription, deps):
        repo, _, charge, _ = deps
        repo.count_closed_renewal_attempts.return_value = 2
        charge.return_value = StripeChargeResult(success=True, payment_intent_id="pi_1")

        await renewals.renew_subscription(mock_db, subscription, NOW)

        key = repo.create_transaction.call_args.kwargs["idempotency_key"]
        assert key.endswith(":3")
        assert charge.call_args.kwargs["idempotency_key"] == key


class TestStripeRenewal:
    @pytest.mark.asyncio
    async def test_successful_charge(self, mock_db, subscription, deps):
        repo, _, charge, failure = deps
        charge.return_value = StripeChargeResult(success=True, payment_intent_id="pi_1")

        outcome = await renewals.renew_subscription(mock_db, subscription, NOW)

        assert outcome.outcome == renewals.RENEWED
        assert charge.call_args.kwargs["amount"] == Decimal("199.00")
        assert charge.call_args.kwargs["customer_id"] == "cus_123"
        transaction = repo.update_transaction.call_args.args[1]
        assert transaction.status == TransactionStatus.COMPLETED
        assert transaction.reference == "pi_1"
        failure.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_declined_charge(self, mock_db, subscription, deps):
        repo, _, charge, failure = deps
        charge.return_value = StripeChargeResult(
            success=False, payment_intent_id="pi_2", error="Your card was declined."
        )
        old_end = subscription.end_date

        outcome = await renewals.renew_subscription(mock_db, subscription, NOW)

        assert outcome.outcome == renewals.FAILED
        assert outcome.detail == "Your card was declined."
        assert subscription.end_date == old_end
        transaction = repo.update_transaction.call_args.args[1]
        assert transaction.status == TransactionStatus.FAILED
        failure.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_processing_charge_stays_pending(self, mock_db, subscription, deps):
        repo, _, charge, failure = deps
        charge.return_value = StripeChargeResult(
            success=False,
            payment_intent_id="pi_3",
            status="processing",
            error="Payment status: processing",
            raw={"id": "pi_3", "status": "processing"},
        )
        old_end = subscription.end_date

        outcome = await renewals.renew_subscription(mock_db, subscription, NOW)

        assert outcome.outcome == renewals.AWAITING_CONFIRMATION
        assert outcome.detail == "processing"
        transaction = repo.update_transaction.call_args.args[1]
        assert transaction.status == TransactionStatus.PENDING
        assert transaction.reference == "pi_3"
        assert subscription.end_date == old_end
        failure.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unsettled_charge_blocks_a_second_charge(self, mock_db, subscription, deps):
        repo, _, charge, failure = deps
        charge.return_value = StripeChargeResult(
            success=False, payment_intent_id="pi_3", status="requires_action"
        )
        build = repo.create_transaction.side_effect
        taken: set[str] = set()

        def create_once(db, **fields):
            if fields["idempotency_key"] in taken:
                raise IntegrityError("INSERT", {}, Exception("duplicate"))
            taken.add(fields["idempotency_key"])
            return build(db, **fields)

        repo.create_transaction.side_effect = create_once

        first = await renewals.renew_subscription(mock_db, subscription, NOW)
        second = await renewals.renew_subscription(mock_db, subscription, NOW + timedelta(days=1))

        assert first.outcome == renewals.AWAITING_CONFIRMATION
        assert second.outcome == renewals.SKIPPED
        charge.assert_awaited_once()
        failure.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_third_failure_suspends(self, mock_db, subscription, deps):
        _, _, charge, failure = deps
        charge.return_value = StripeChargeResult(success=False, error="Insufficient funds")
        failure.return_value = True

        outcome = await renewals.renew_subscription(mock_db, subscription, NOW)

        assert outcome.outcome == renewals.SUSPENDED

    @pytest.mark.asyncio
    async def test_stripe_error_is_a_failure(self, mock_db, subscription, deps):
        _, _, charge, failure = deps
        charge.side_effect = stripe.StripeError("Stripe is down")

        outcome = await renewals.renew_subscription(mock_db, subscription, NOW)

        assert outcome.outcome == renewals.FAILED
        failure.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_saved_customer(self, mock_db, make_subscription, deps):
        _, _, charge, _ = deps
        subscription = make_subscription(stripe_customer_id=None)

        outcome = await renewals.renew_subscription(mock_db, subscription, NOW)

        assert outcome.outcome == renewals.FAILED
        charge.assert_not_awaited()


class TestPayFastRenewal:
    @pytest.mark.asyncio
    async def test_payment_link_sent(self, mock_db, make_subscription, deps):
        repo, email, _, _ = deps
        subscription = make_subscription(gateway=PaymentGateway.PAYFAST)
        old_end = subscription.end_date

        outcome = await renewals.renew_subscription(mock_db, subscription, NOW)

        assert outcome.outcome == renewals.PAYMENT_LINK_SENT
        assert subscription.end_date == old_end
        transaction = repo.update_transaction.call_args.args[1]
        assert transaction.status == TransactionStatus.PENDING
        assert transaction.reference.startswith("REN_")
        assert "custom_str1" in transaction.gateway_response["payment_url"]
        email.send_renewal_payment_link.assert_awaited_once()


class TestRenewById:
    @pytest.mark.asyncio
    async def test_not_found(self, mock_db, deps):
        repo, _, _, _ = deps
        repo.get_subscription.return_value = None

        with pytest.raises(NotFoundError):
            await renewals.renew_by_id(mock_db, "missing")

    @pytest.mark.asyncio
    async def test_cancelled_is_not_renewable(self, mock_db, make_subscription, deps):
        repo, _, _, _ = deps
        repo.get_subscription.return_value = make_subscription(status=SubscriptionStatus.CANCELLED)

        with pytest.raises(ValidationError) as exc:
            await renewals.renew_by_id(mock_db, "sub")
        assert exc.value.error_code == "NOT_RENEWABLE"
