"""Password hashing and JWT creation/verification for authentication."""

import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt

from signwise.services.errors import TokenExpired, TokenInvalid

# Bcrypt cost (rounds); 12 is a good default for security vs speed.
BCRYPT_ROUNDS = 12
# bcrypt only looks at the first 72 bytes of input.
BCRYPT_MAX_BYTES = 72

# Min/max lengths for username and password validation (input validation).
USERNAME_MIN_LEN = 3
USERNAME_MAX_LEN = 64
PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 128

# Values of the "typ" claim.
ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"
OAUTH_STATE = "oauth_state"


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from stores without tz support."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class MalformedHashError(Exception):
    """Stored credential is not a parseable bcrypt hash (data integrity problem)."""


class CredentialHasher:
    """One-way salted password hashing with bcrypt."""

    def __init__(self, rounds: int = BCRYPT_ROUNDS) -> None:
        self.rounds = rounds

    def hash(self, plain_password: str) -> str:
        """Hash a plain-text password for storage. Do not store plain passwords."""
        pw_bytes = plain_password.encode("utf-8")[:BCRYPT_MAX_BYTES]
        return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain_password: str, hashed: str) -> bool:
        """
        Verify a plain password against a stored hash.
        Returns False on mismatch; raises MalformedHashError if the hash is unusable.
        """
        pw_bytes = plain_password.encode("utf-8")[:BCRYPT_MAX_BYTES]
        try:
            return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
        except (ValueError, TypeError, AttributeError) as e:
            raise MalformedHashError(str(e)) from e


@dataclass(frozen=True)
class TokenClaims:
    """Verified payload of an access or refresh token."""

    subject_user_id: int
    username: str
    role: str
    auth_method_type: str
    auth_method_id: int
    issued_at: datetime
    expires_at: datetime
    token_use: str
    token_id: str


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime


class TokenIssuer:
    """Signs and verifies access/refresh JWTs and OAuth state values."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        state_ttl: timedelta = timedelta(minutes=10),
    ) -> None:
        if not secret:
            raise ValueError("TokenIssuer requires a non-empty signing secret")
        self._secret = secret
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.state_ttl = state_ttl

    @classmethod
    def from_settings(cls, settings: Any) -> "TokenIssuer":
        return cls(
            secret=settings.JWT_SECRET.get_secret_value(),
            algorithm=settings.JWT_ALGORITHM,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            state_ttl=timedelta(minutes=settings.OAUTH_STATE_EXPIRE_MINUTES),
        )

    def _encode(self, payload: dict[str, Any]) -> str:
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def _decode(self, token: str) -> dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat", "typ"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpired(str(e)) from e
        except jwt.PyJWTError as e:
            raise TokenInvalid(str(e)) from e

    def issue(
        self,
        *,
        user_id: int,
        username: str,
        role: str,
        auth_method_type: str,
        auth_method_id: int,
        token_use: str,
        now: datetime | None = None,
    ) -> tuple[str, datetime]:
        """Create a signed token of the given use; returns (token, expires_at)."""
        if token_use == ACCESS_TOKEN:
            ttl = self.access_ttl
        elif token_use == REFRESH_TOKEN:
            ttl = self.refresh_ttl
        else:
            raise ValueError(f"Unknown token use: {token_use!r}")
        issued_at = now or utcnow()
        expires_at = issued_at + ttl
        payload: dict[str, Any] = {
            "sub": str(user_id),
            "username": username,
            "role": role,
            "type": auth_method_type,
            "auth_method_id": auth_method_id,
            "typ": token_use,
            # jti keeps two tokens minted in the same second distinct.
            "jti": secrets.token_hex(16),
            "iat": issued_at,
            "exp": expires_at,
        }
        return self._encode(payload), expires_at

    def issue_pair(
        self,
        *,
        user_id: int,
        username: str,
        role: str,
        auth_method_type: str,
        auth_method_id: int,
        now: datetime | None = None,
    ) -> TokenPair:
        now = now or utcnow()
        identity = {
            "user_id": user_id,
            "username": username,
            "role": role,
            "auth_method_type": auth_method_type,
            "auth_method_id": auth_method_id,
            "now": now,
        }
        access, _ = self.issue(token_use=ACCESS_TOKEN, **identity)
        refresh, refresh_expires_at = self.issue(token_use=REFRESH_TOKEN, **identity)
        return TokenPair(access, refresh, refresh_expires_at)

    def verify(self, token: str, expected_use: str = ACCESS_TOKEN) -> TokenClaims:
        """
        Verify signature, expiry and token use; return typed claims.
        Raises TokenExpired on expiry and TokenInvalid on anything else.
        """
        payload = self._decode(token)
        if payload.get("typ") != expected_use:
            raise TokenInvalid(f"Expected a {expected_use} token")
        try:
            return TokenClaims(
                subject_user_id=int(payload["sub"]),
                username=str(payload["username"]),
                role=str(payload.get("role") or "user"),
                auth_method_type=str(payload["type"]),
                auth_method_id=int(payload["auth_method_id"]),
                issued_at=datetime.fromtimestamp(payload["iat"], UTC),
                expires_at=datetime.fromtimestamp(payload["exp"], UTC),
                token_use=expected_use,
                token_id=str(payload.get("jti") or ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TokenInvalid(f"Invalid token payload: {e}") from e

    def issue_state(self, now: datetime | None = None) -> str:
        """Signed, short-lived OAuth state value (no server-side session needed)."""
        issued_at = now or utcnow()
        return self._encode(
            {
                "typ": OAUTH_STATE,
                "nonce": secrets.token_urlsafe(16),
                "iat": issued_at,
                "exp": issued_at + self.state_ttl,
            }
        )

    def verify_state(self, state: str) -> None:
        payload = self._decode(state)
        if payload.get("typ") != OAUTH_STATE:
            raise TokenInvalid("Not an OAuth state value")
