"""
Unit tests for password hashing and tokens.
"""

import hashlib
from datetime import timedelta

import pytest

from kinderhub.core.security import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    BcryptHash,
    Pbkdf2Hash,
    TokenCodec,
    hash_password,
    needs_rehash,
    parse_password_hash,
    verify_password,
)


def make_pbkdf2(password: str, salt: str = "a1b2c3d4e5f6") -> str:
    digest = hashlib.pbkdf2_hmac("sha512", password.encode(), salt.encode(), 10000, 64).hex()
    return f"{salt}:{digest}"


class TestParsePasswordHash:
    def test_bcrypt_prefix(self):
        assert isinstance(parse_password_hash("$2b$12$abcdefghijklmnopqrstuv"), BcryptHash)

    def test_salt_colon_hash(self):
        parsed = parse_password_hash("somesalt:deadbeef")
        assert parsed == Pbkdf2Hash(salt="somesalt", digest="deadbeef")

    @pytest.mark.parametrize("stored", ["", "plaintext", ":digest", "salt:"])
    def test_unknown_format_raises(self, stored):
        with pytest.raises(ValueError):
            parse_password_hash(stored)


class TestVerifyPassword:
    def test_bcrypt_round_trip(self):
        stored = hash_password("correct horse")
        assert stored.startswith("$2")
        assert verify_password("correct horse", stored)
        assert not verify_password("wrong horse", stored)

    def test_legacy_pbkdf2(self):
        stored = make_pbkdf2("secret123")
        assert verify_password("secret123", stored)
        assert not verify_password("secret124", stored)

    def test_legacy_pbkdf2_uppercase_digest(self):
        salt, digest = make_pbkdf2("secret123").split(":")
        assert verify_password("secret123", f"{salt}:{digest.upper()}")

    def test_unknown_format_is_rejected(self):
        assert not verify_password("anything", "not-a-hash")

    def test_malformed_bcrypt_is_rejected(self):
        assert not verify_password("anything", "$2b$broken")


class TestNeedsRehash:
    def test_pbkdf2_needs_rehash(self):
        assert needs_rehash(make_pbkdf2("pw"))

    def test_bcrypt_does_not(self):
        assert not needs_rehash(hash_password("pw"))


class TestTokenCodec:
    @pytest.fixture
    def codec(self):
        return TokenCodec("x" * 32)

    def test_issue_and_verify(self, codec):
        token = codec.issue("user-1", claims={"role": "parent"})
        payload = codec.verify(token, ACCESS_TOKEN_TYPE)
        assert payload["sub"] == "user-1"
        assert payload["role"] == "parent"
        assert payload["type"] == ACCESS_TOKEN_TYPE

    def test_wrong_type_rejected(self, codec):
        token = codec.issue("user-1", REFRESH_TOKEN_TYPE)
        assert codec.verify(token, ACCESS_TOKEN_TYPE) is None
        assert codec.verify(token, REFRESH_TOKEN_TYPE) is not None

    def test_expired_rejected(self, codec):
        token = codec.issue("user-1", expires_delta=timedelta(seconds=-10))
        assert codec.verify(token) is None

    def test_other_secret_rejected(self, codec):
        token = TokenCodec("y" * 32).issue("user-1")
        assert codec.verify(token) is None

    def test_garbage_rejected(self, codec):
        assert codec.verify("not.a.token") is None

    def test_each_token_has_its_own_id(self, codec):
        first = codec.verify(codec.issue("user-1"))
        second = codec.verify(codec.issue("user-1"))
        assert first["jti"] and second["jti"]
        assert first["jti"] != second["jti"]
