"""
Tests for session revocation and the auth dependency that enforces it.
"""

import time
from unittest.mock import patch

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from kinderhub.core import redis as redis_module
from kinderhub.core import sessions
from kinderhub.core.auth import get_current_user
from kinderhub.core.security import create_access_token, decode_token

CLAIMS = {"email": "parent@test.com", "role": "parent", "name": "Pat Parent"}


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestRevokeToken:
    @pytest.mark.asyncio
    async def test_revoked_token_expires_with_the_token(self, session_redis):
        expires_at = int(time.time()) + 600

        assert await sessions.revoke_token("abc", expires_at) is True

        key, value = session_redis.set.call_args.args
        assert key == "auth:revoked:abc"
        assert 590 <= session_redis.set.call_args.kwargs["ex"] <= 600
        assert await sessions.is_revoked("parent", "user-1", "abc", time.time())

    @pytest.mark.asyncio
    async def test_other_tokens_stay_valid(self, session_redis):
        await sessions.revoke_token("abc", int(time.time()) + 600)
        assert not await sessions.is_revoked("parent", "user-1", "def", time.time())

    @pytest.mark.asyncio
    async def test_without_redis_nothing_is_revoked(self):
        with patch.object(redis_module, "redis_client", None):
            assert await sessions.revoke_token("abc", int(time.time()) + 600) is False
            assert await sessions.is_revoked("parent", "user-1", "abc", time.time()) is False


class TestRevokeAllSessions:
    @pytest.mark.asyncio
    async def test_tokens_issued_before_are_revoked(self, session_redis):
        issued_at = int(time.time()) - 60
        await sessions.revoke_all_sessions("teacher", "t-1")

        assert await sessions.is_revoked("teacher", "t-1", "any", issued_at)

    @pytest.mark.asyncio
    async def test_tokens_issued_after_are_valid(self, session_redis):
        await sessions.revoke_all_sessions("teacher", "t-1")

        assert not await sessions.is_revoked("teacher", "t-1", "any", time.time() + 5)

    @pytest.mark.asyncio
    async def test_scoped_to_role_and_account(self, session_redis):
        issued_at = int(time.time()) - 60
        await sessions.revoke_all_sessions("teacher", "t-1")

        assert not await sessions.is_revoked("parent", "t-1", "any", issued_at)
        assert not await sessions.is_revoked("teacher", "t-2", "any", issued_at)

    @pytest.mark.asyncio
    async def test_redis_error_does_not_lock_everyone_out(self, session_redis):
        session_redis.exists.side_effect = ConnectionError("down")

        assert await sessions.is_revoked("parent", "user-1", "abc", time.time()) is False


class TestCurrentUserDependency:
    @pytest.mark.asyncio
    async def test_token_claims_carried_on_user(self, session_redis):
        token = create_access_token("user-1", CLAIMS)
        claims = decode_token(token)

        user = await get_current_user(bearer(token))

        assert user.id == "user-1"
        assert user.token_id == claims["jti"]
        assert user.expires_at == claims["exp"]

    @pytest.mark.asyncio
    async def test_signed_out_token_is_rejected(self, session_redis):
        token = create_access_token("user-1", CLAIMS)
        claims = decode_token(token)
        await sessions.revoke_token(claims["jti"], claims["exp"])

        with pytest.raises(HTTPException) as exc:
            await get_current_user(bearer(token))

        assert exc.value.status_code == 401
        assert exc.value.detail["error"] == "TOKEN_REVOKED"

    @pytest.mark.asyncio
    async def test_token_from_before_password_reset_is_rejected(self, session_redis):
        token = create_access_token("user-1", CLAIMS)
        # reset happens after the token was issued
        session_redis.store["auth:valid_after:parent:user-1"] = repr(time.time() + 1)

        with pytest.raises(HTTPException) as exc:
            await get_current_user(bearer(token))

        assert exc.value.detail["error"] == "TOKEN_REVOKED"
