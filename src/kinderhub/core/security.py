"""
Security Utilities

Password hashing and signed tokens.

Passwords
---------
Two stored formats co-exist:

- ``Pbkdf2Hash``: ``"<salt>:<hex digest>"`` produced by PBKDF2-HMAC-SHA512
  (10 000 iterations, 64-byte key). The salt string is used verbatim as
  the PBKDF2 salt. Verify-only.
- ``BcryptHash``: standard ``$2a$``/``$2b$``/``$2y$`` modular crypt string.
  All new hashes use this format.

``needs_rehash`` reports hashes that should be replaced with bcrypt after
the next successful login.

Tokens
------
``TokenCodec`` is the single place that signs and verifies tokens. Callers
only see ``issue`` and ``verify``; the JWT algorithm is configuration.
Every token carries a random ``jti`` so it can be revoked on its own.
"""

import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from kinderhub.core.config import settings

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 10000
PBKDF2_KEY_LENGTH = 64
PBKDF2_DIGEST = "sha512"

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


# ============================================
# Password hashing
# ============================================


@dataclass(frozen=True)
class Pbkdf2Hash:
    """Legacy ``salt:hash`` password hash."""

    salt: str
    digest: str

    def verify(self, password: str) -> bool:
        candidate = hashlib.pbkdf2_hmac(
            PBKDF2_DIGEST,
            password.encode("utf-8"),
            self.salt.encode("utf-8"),
            PBKDF2_ITERATIONS,
            PBKDF2_KEY_LENGTH,
        ).hex()
        return hmac.compare_digest(candidate, self.digest.lower())


@dataclass(frozen=True)
class BcryptHash:
    """bcrypt modular crypt hash."""

    value: str

    def verify(self, password: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), self.value.encode("utf-8"))
        except ValueError:
            logger.warning("Malformed bcrypt hash encountered during verification")
            return False


PasswordHash = Pbkdf2Hash | BcryptHash


def parse_password_hash(stored: str) -> PasswordHash:
    """
    Identify the format of a stored password hash.

    Args:
        stored: Hash string as persisted in the database

    Returns:
        The matching ``PasswordHash`` variant

    Raises:
        ValueError: If the string is in neither known format
    """
    if stored.startswith(("$2a$", "$2b$", "$2y$")):
        return BcryptHash(stored)

    salt, sep, digest = stored.partition(":")
    if sep and salt and digest:
        return Pbkdf2Hash(salt=salt, digest=digest)

    raise ValueError("Unrecognized password hash format")


def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, stored: str) -> bool:
    """Check a plain password against a stored hash of either format."""
    try:
        parsed = parse_password_hash(stored)
    except ValueError:
        logger.warning("Stored password hash has an unknown format")
        return False
    return parsed.verify(password)


def needs_rehash(stored: str) -> bool:
    """True when the stored hash is not bcrypt and should be migrated."""
    try:
        return not isinstance(parse_password_hash(stored), BcryptHash)
    except ValueError:
        return True


# ============================================
# Tokens
# ============================================


class TokenCodec:
    """Issues and verifies signed, expiring tokens."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        lifetimes: dict[str, timedelta] | None = None,
    ):
        self._secret = secret
        self._algorithm = algorithm
        self._lifetimes = lifetimes or {
            ACCESS_TOKEN_TYPE: timedelta(minutes=settings.access_token_expire_minutes),
            REFRESH_TOKEN_TYPE: timedelta(days=settings.refresh_token_expire_days),
        }

    def issue(
        self,
        subject: str,
        token_type: str = ACCESS_TOKEN_TYPE,
        claims: dict[str, Any] | None = None,
        expires_delta: timedelta | None = None,
    ) -> str:
        now = datetime.now(UTC)
        lifetime = expires_delta or self._lifetimes[token_type]
        payload: dict[str, Any] = dict(claims or {})
        payload.update(
            {
                "sub": subject,
                "type": token_type,
                "iat": int(now.timestamp()),
                "exp": int((now + lifetime).timestamp()),
                "jti": uuid.uuid4().hex,
            }
        )
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str, expected_type: str | None = None) -> dict[str, Any] | None:
        """
        Decode a token and check its signature, expiry and type.

        Returns:
            The claims, or None when the token is not acceptable
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError:
            logger.debug("Token expired")
            return None
        except JWTError as e:
            logger.debug(f"Token rejected: {e}")
            return None

        if expected_type is not None and payload.get("type") != expected_type:
            logger.debug(f"Token type mismatch: expected {expected_type}")
            return None

        return payload


token_codec = TokenCodec(settings.jwt_secret_key, settings.jwt_algorithm)


def create_access_token(subject: str, additional_claims: dict[str, Any] | None = None) -> str:
    return token_codec.issue(subject, ACCESS_TOKEN_TYPE, additional_claims)


def create_refresh_token(subject: str, additional_claims: dict[str, Any] | None = None) -> str:
    return token_codec.issue(subject, REFRESH_TOKEN_TYPE, additional_claims)


def decode_token(token: str) -> dict[str, Any] | None:
    """Verify any token issued by this service and return its claims."""
    return token_codec.verify(token)
