"""
Tests for the gateway webhook endpoints.

Every request must be answered with 200; whether it was applied is
reported in the body and recorded on the payment log.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from kinderhub.core.config import settings
from kinderhub.core.database import get_db
from kinderhub.main import app
from kinderhub.modules.billing.gateways import payfast
from kinderhub.modules.billing.models import (
    PaymentGateway,
    PaymentLog,
    SubscriptionStatus,
    TransactionStatus,
)

WEBHOOKS = "kinderhub.modules.webhooks.service"
PASSPHRASE = "jt7NOE43FZPn"


@pytest.fixture
def client(mock_db):
    async def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def logs() -> list[PaymentLog]:
    return []


@pytest.fixture
def gateway_settings(monkeypatch):
    monkeypatch.setattr(settings, "payfast_passphrase", PASSPHRASE)
    monkeypatch.setattr(settings, "payfast_validate_itn", False)
    monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")


@pytest.fixture
def deps(logs, gateway_settings, make_transaction):
    async def create_payment_log(db, **fields):
        log = PaymentLog(processed=False, **fields)
        logs.append(log)
        return log

    transaction = make_transaction(reference="SUB_1_abc", amount=Decimal("199.00"))
    with (
        patch(f"{WEBHOOKS}.billing_repository") as repo,
        patch(f"{WEBHOOKS}.activate_after_payment", new_callable=AsyncMock) as activate,
        patch(f"{WEBHOOKS}.apply_failure", new_callable=AsyncMock) as failure,
    ):
        repo.create_payment_log = AsyncMock(side_effect=create_payment_log)
        repo.get_transaction_by_reference = AsyncMock(return_value=transaction)
        repo.get_subscription = AsyncMock(return_value=MagicMock(id=transaction.subscription_id))
        repo.update_transaction = AsyncMock(
            side_effect=lambda db, txn, fields: [setattr(txn, k, v) for k, v in fields.items()]
        )
        yield repo, transaction, activate, failure


def signed_itn(**overrides) -> dict[str, str]:
    data = {
        "m_payment_id": "SUB_1_abc",
        "pf_payment_id": "1089250",
        "payment_status": "COMPLETE",
        "amount_gross": "199.00",
        "amount_fee": "-4.58",
        "custom_str1": "44444444-4444-4444-4444-444444444444",
        "custom_str2": "11111111-1111-1111-1111-111111111111",
    }
    data.update(overrides)
    data["signature"] = payfast.generate_signature(data, PASSPHRASE)
    return data


class TestPayFastItn:
    def test_completed_payment_is_applied(self, client, deps, logs):
        _, transaction, activate, _ = deps

        response = client.post("/webhooks/payfast", data=signed_itn())

        assert response.status_code == 200
        assert response.json() == {"received": True, "processed": True}
        assert transaction.status == TransactionStatus.COMPLETED
        assert transaction.gateway_payment_id == "1089250"
        assert transaction.fee == Decimal("4.58")
        activate.assert_awaited_once()
        log = logs[0]
        assert log.signature_valid is True
        assert log.reference == "SUB_1_abc"

    def test_tampered_signature_is_logged_not_applied(self, client, deps, logs):
        repo, transaction, activate, _ = deps
        data = signed_itn()
        data["amount_gross"] = "1.00"

        response = client.post("/webhooks/payfast", data=data)

        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert logs[0].signature_valid is False
        assert logs[0].error == "Invalid signature"
        repo.get_transaction_by_reference.assert_not_awaited()
        assert transaction.status == TransactionStatus.PENDING
        activate.assert_not_awaited()

    def test_amount_mismatch_rejected(self, client, deps, logs):
        _, transaction, activate, _ = deps

        response = client.post("/webhooks/payfast", data=signed_itn(amount_gross="99.00"))

        assert response.json()["processed"] is False
        assert logs[0].error.startswith("Amount mismatch")
        assert transaction.status == TransactionStatus.PENDING
        activate.assert_not_awaited()

    def test_wrong_subscription_rejected(self, client, deps, logs):
        _, _, activate, _ = deps

        response = client.post("/webhooks/payfast", data=signed_itn(custom_str1="someone-else"))

        assert response.json()["processed"] is False
        activate.assert_not_awaited()

    def test_redelivery_is_a_no_op(self, client, deps, logs):
        _, transaction, activate, _ = deps
        transaction.status = TransactionStatus.COMPLETED

        response = client.post("/webhooks/payfast", data=signed_itn())

        assert response.json()["processed"] is True
        assert logs[0].error == "already_processed"
        activate.assert_not_awaited()

    def test_failed_payment_counts_towards_suspension(self, client, deps):
        _, transaction, activate, failure = deps

        response = client.post("/webhooks/payfast", data=signed_itn(payment_status="FAILED"))

        assert response.status_code == 200
        assert transaction.status == TransactionStatus.FAILED
        failure.assert_awaited_once()
        activate.assert_not_awaited()

    def test_cancelled_payment_does_not_count_towards_suspension(self, client, deps):
        _, transaction, activate, failure = deps

        response = client.post("/webhooks/payfast", data=signed_itn(payment_status="CANCELLED"))

        assert response.json()["processed"] is True
        assert transaction.status == TransactionStatus.FAILED
        assert transaction.failure_reason == "Payment cancelled by payer"
        failure.assert_not_awaited()
        activate.assert_not_awaited()

    def test_handler_error_still_answers_200(self, client, deps, logs):
        _, _, activate, _ = deps
        activate.side_effect = RuntimeError("database went away")

        response = client.post("/webhooks/payfast", data=signed_itn())

        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert logs[0].error == "database went away"


class TestStripeWebhook:
    def test_bad_signature_answers_200(self, client, deps, logs):
        response = client.post(
            "/webhooks/stripe",
            content=b'{"id": "evt_1", "type": "payment_intent.succeeded"}',
            headers={"stripe-signature": "t=1,v1=deadbeef"},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True, "processed": False}
        assert logs[0].signature_valid is False

    def test_missing_signature_header(self, client, deps, logs):
        response = client.post("/webhooks/stripe", content=b"{}")

        assert response.status_code == 200
        assert logs[0].error.startswith("Invalid webhook")

    def test_unhandled_event_is_logged(self, client, deps, logs):
        event = {"id": "evt_2", "type": "charge.refunded", "data": {"object": {"id": "ch_1"}}}
        with patch(f"{WEBHOOKS}.stripe_gateway.construct_event", return_value=event):
            response = client.post(
                "/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=ok"}
            )

        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert logs[0].error == "unhandled_event"

    def test_payment_intent_succeeded(self, client, deps, logs):
        repo, transaction, activate, _ = deps
        subscription = MagicMock(id=transaction.subscription_id)
        repo.get_subscription.return_value = subscription
        event = {
            "id": "evt_3",
            "type": "payment_intent.succeeded",
            "data": {
                "object": {
                    "id": "pi_1",
                    "status": "succeeded",
                    "customer": "cus_9",
                    "payment_method": "pm_9",
                }
            },
        }
        with patch(f"{WEBHOOKS}.stripe_gateway.construct_event", return_value=event):
            response = client.post(
                "/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=ok"}
            )

        assert response.json()["processed"] is True
        assert transaction.status == TransactionStatus.COMPLETED
        assert subscription.stripe_payment_method_id == "pm_9"
        activate.assert_awaited_once()

    @pytest.fixture
    def pending_renewal(self, deps, make_transaction):
        repo, _, _, _ = deps
        transaction = make_transaction(
            gateway=PaymentGateway.STRIPE,
            reference="pi_3",
            is_renewal=True,
            idempotency_key="renewal:4444:2026-03-10:1",
        )
        subscription = MagicMock(id=transaction.subscription_id, status=SubscriptionStatus.ACTIVE)
        repo.get_transaction_by_reference.return_value = transaction
        repo.get_subscription.return_value = subscription
        return transaction, subscription

    def send_intent_event(self, client, event_type, **intent):
        event = {
            "id": "evt_4",
            "type": event_type,
            "data": {"object": {"id": "pi_3", **intent}},
        }
        with patch(f"{WEBHOOKS}.stripe_gateway.construct_event", return_value=event):
            return client.post(
                "/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=ok"}
            )

    def test_late_success_settles_pending_renewal(self, client, deps, pending_renewal):
        _, _, activate, failure = deps
        transaction, subscription = pending_renewal

        response = self.send_intent_event(client, "payment_intent.succeeded", status="succeeded")

        assert response.json()["processed"] is True
        assert transaction.status == TransactionStatus.COMPLETED
        activate.assert_awaited_once()
        assert activate.call_args.args[1] is subscription
        failure.assert_not_awaited()

    def test_late_failure_counts_towards_suspension(self, client, deps, pending_renewal):
        _, _, activate, failure = deps
        transaction, _ = pending_renewal

        response = self.send_intent_event(
            client,
            "payment_intent.payment_failed",
            status="requires_payment_method",
            last_payment_error={"message": "Your card has insufficient funds."},
        )

        assert response.json()["processed"] is True
        assert transaction.status == TransactionStatus.FAILED
        assert transaction.failure_reason == "Your card has insufficient funds."
        failure.assert_awaited_once()
        activate.assert_not_awaited()

    def test_cancelled_intent_fails_pending_renewal(self, client, deps, pending_renewal):
        _, _, _, failure = deps
        transaction, _ = pending_renewal

        self.send_intent_event(client, "payment_intent.canceled", status="canceled")

        assert transaction.status == TransactionStatus.FAILED
        assert transaction.failure_reason == "Payment cancelled at Stripe"
        failure.assert_awaited_once()


class TestSourceIp:
    @pytest.fixture
    def production(self, monkeypatch):
        monkeypatch.setattr(settings, "python_env", "production")

    def test_caller_supplied_hop_cannot_spoof_payfast(self, client, deps, logs, production):
        _, transaction, activate, _ = deps

        response = client.post(
            "/webhooks/payfast",
            data=signed_itn(),
            headers={"x-forwarded-for": "197.97.145.144, 6.6.6.6"},
        )

        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert logs[0].source_ip == "6.6.6.6"
        assert logs[0].error == "Source IP 6.6.6.6 not allowed"
        assert transaction.status == TransactionStatus.PENDING
        activate.assert_not_awaited()

    def test_hop_appended_by_proxy_is_trusted(self, client, deps, logs, production):
        _, _, activate, _ = deps

        response = client.post(
            "/webhooks/payfast",
            data=signed_itn(),
            headers={"x-forwarded-for": "197.97.145.144"},
        )

        assert response.json()["processed"] is True
        assert logs[0].source_ip == "197.97.145.144"
        activate.assert_awaited_once()

    def test_hop_depth_follows_configured_proxy_count(self, client, deps, logs, monkeypatch):
        monkeypatch.setattr(settings, "trusted_proxy_hops", 2)

        client.post(
            "/webhooks/payfast",
            data=signed_itn(),
            headers={"x-forwarded-for": "6.6.6.6, 197.97.145.144, 10.0.0.1"},
        )

        assert logs[0].source_ip == "197.97.145.144"

    def test_header_ignored_without_trusted_proxies(self, client, deps, logs, monkeypatch):
        monkeypatch.setattr(settings, "trusted_proxy_hops", 0)

        client.post(
            "/webhooks/payfast",
            data=signed_itn(),
            headers={"x-forwarded-for": "197.97.145.144"},
        )

        assert logs[0].source_ip == "testclient"
