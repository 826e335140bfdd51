"""
Tests for PayFast signatures and checkout forms.
"""

import hashlib
from decimal import Decimal

import pytest

from kinderhub.core.config import settings
from kinderhub.modules.billing.gateways import payfast


@pytest.fixture
def merchant(monkeypatch):
    monkeypatch.setattr(settings, "payfast_merchant_id", "10000100")
    monkeypatch.setattr(settings, "payfast_merchant_key", "46f0cd694581a")
    monkeypatch.setattr(settings, "payfast_passphrase", "jt7NOE43FZPn")


class TestSignature:
    def test_sorted_url_encoded_md5(self):
        data = {"b": "two words", "a": "1", "signature": "ignored"}
        expected = hashlib.md5(b"a=1&b=two+words").hexdigest()
        assert payfast.generate_signature(data) == expected

    def test_passphrase_appended_with_spaces_percent_encoded(self):
        data = {"amount": "99.00"}
        expected = hashlib.md5(b"amount=99.00&passphrase=secret%20phrase").hexdigest()
        assert payfast.generate_signature(data, "secret phrase") == expected

    def test_passphrase_keeps_uri_component_safe_characters(self):
        data = {"amount": "99.00"}
        expected = hashlib.md5(b"amount=99.00&passphrase=it's(ok)!*%2Fa%26b").hexdigest()
        assert payfast.generate_signature(data, "it's(ok)!*/a&b") == expected

    def test_verify_accepts_own_signature(self):
        data = {"m_payment_id": "SUB_1", "amount_gross": "199.00"}
        data["signature"] = payfast.generate_signature(data, "pass")
        assert payfast.verify_signature(data, "pass")

    def test_verify_is_case_insensitive(self):
        data = {"m_payment_id": "SUB_1"}
        data["signature"] = payfast.generate_signature(data).upper()
        assert payfast.verify_signature(data)

    def test_tampered_field_rejected(self):
        data = {"m_payment_id": "SUB_1", "amount_gross": "199.00"}
        data["signature"] = payfast.generate_signature(data, "pass")
        data["amount_gross"] = "1.00"
        assert not payfast.verify_signature(data, "pass")

    def test_wrong_passphrase_rejected(self):
        data = {"m_payment_id": "SUB_1"}
        data["signature"] = payfast.generate_signature(data, "pass")
        assert not payfast.verify_signature(data, "other")

    def test_missing_signature(self):
        assert not payfast.verify_signature({"m_payment_id": "SUB_1"})


class TestCheckout:
    def test_form_is_signed_and_carries_ids(self, merchant):
        checkout = payfast.build_checkout(
            amount=Decimal("199"),
            item_name="Family Plan - monthly",
            email="parent@test.com",
            first_name="Pat",
            last_name="Parent",
            subscription_id="sub-1",
            user_id="user-1",
        )

        assert checkout.fields["amount"] == "199.00"
        assert checkout.fields["custom_str1"] == "sub-1"
        assert checkout.fields["custom_str2"] == "user-1"
        assert checkout.fields["m_payment_id"] == checkout.reference
        assert checkout.reference.startswith("SUB_")
        assert payfast.verify_signature(checkout.fields, "jt7NOE43FZPn")
        assert checkout.url.endswith("/eng/process")
        assert "custom_str1=sub-1" in checkout.redirect_url

    def test_references_are_unique(self):
        assert payfast.generate_reference() != payfast.generate_reference()

    def test_allowed_ips(self):
        assert not payfast.is_allowed_ip(None)
        assert not payfast.is_allowed_ip("203.0.113.9")
        assert payfast.is_allowed_ip(settings.payfast_allowed_ips[0])
