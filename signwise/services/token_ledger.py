"""Refresh-token persistence: issue, rotate-on-use and revocation."""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from signwise.core.security import (
    ACCESS_TOKEN,
    REFRESH_TOKEN,
    TokenIssuer,
    utcnow,
)
from signwise.models import AuthMethod, Token, User
from signwise.services.errors import TokenInvalid


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a successful authentication: who, through which method, and the tokens."""

    user: User
    auth_method: AuthMethod
    access_token: str
    refresh_token: str | None = None


class TokenLedger:
    """
    Stores issued refresh tokens and makes each one single-use.

    Methods that only add rows (issue_refresh, mint) flush but leave the commit
    to the caller; rotate and revoke_all own their transaction.
    """

    def __init__(self, issuer: TokenIssuer, logger: logging.Logger | None = None) -> None:
        self.issuer = issuer
        self.logger = logger or logging.getLogger(__name__)

    def _identity(self, user: User, method: AuthMethod) -> dict:
        return {
            "user_id": user.id,
            "username": user.username,
            "role": user.role,
            "auth_method_type": method.type,
            "auth_method_id": method.id,
        }

    def issue_access(self, user: User, method: AuthMethod, now: datetime | None = None) -> str:
        token, _ = self.issuer.issue(token_use=ACCESS_TOKEN, now=now, **self._identity(user, method))
        return token

    def issue_refresh(
        self, db: Session, user: User, method: AuthMethod, now: datetime | None = None
    ) -> str:
        """Sign a refresh token and persist it unrevoked with the refresh TTL."""
        token, expires_at = self.issuer.issue(
            token_use=REFRESH_TOKEN, now=now, **self._identity(user, method)
        )
        db.add(Token(auth_method_id=method.id, token=token, expires_at=expires_at, revoked=False))
        db.flush()
        return token

    def mint(
        self, db: Session, user: User, method: AuthMethod, now: datetime | None = None
    ) -> AuthResult:
        now = now or utcnow()
        access = self.issue_access(user, method, now)
        refresh = self.issue_refresh(db, user, method, now)
        return AuthResult(user=user, auth_method=method, access_token=access, refresh_token=refresh)

    def rotate(self, db: Session, old_token: str) -> AuthResult:
        """
        Exchange a refresh token for a new access/refresh pair, revoking the old one.

        The signature check runs before any I/O. Lookup, ownership check,
        revocation and the new row commit together; a token that another caller
        already rotated is rejected with TokenInvalid, never retried.
        """
        claims = self.issuer.verify(old_token, expected_use=REFRESH_TOKEN)
        now = utcnow()
        try:
            row = (
                db.query(Token)
                .filter(
                    Token.token == old_token,
                    Token.revoked.is_(False),
                    Token.expires_at > now,
                )
                .with_for_update()
                .first()
            )
            if row is None:
                self.logger.warning(
                    "Refresh rejected: token for auth method %s not found, revoked or expired",
                    claims.auth_method_id,
                )
                raise TokenInvalid("Refresh token not active")

            method = row.auth_method
            if method.id != claims.auth_method_id or method.user_id != claims.subject_user_id:
                self.logger.warning(
                    "Refresh rejected: token row %s owned by auth method %s/user %s, claims say %s/%s",
                    row.id,
                    method.id,
                    method.user_id,
                    claims.auth_method_id,
                    claims.subject_user_id,
                )
                raise TokenInvalid("Refresh token ownership mismatch")

            claimed = (
                db.query(Token)
                .filter(Token.id == row.id, Token.revoked.is_(False))
                .update({Token.revoked: True}, synchronize_session=False)
            )
            if claimed != 1:
                raise TokenInvalid("Refresh token already used")

            result = self.mint(db, method.user, method, now)
            db.commit()
        except Exception:
            db.rollback()
            raise

        self.logger.info(
            "Refresh token rotated for user %s (auth method %s)",
            result.user.id,
            result.auth_method.id,
        )
        return result

    def revoke_all(self, db: Session, user_id: int) -> int:
        """Revoke every active refresh token across all of the user's auth methods. Commits."""
        method_ids = [
            method_id
            for (method_id,) in db.query(AuthMethod.id).filter(AuthMethod.user_id == user_id).all()
        ]
        if not method_ids:
            self.logger.warning("No auth methods found for user %s; nothing to revoke", user_id)
            return 0
        revoked = (
            db.query(Token)
            .filter(Token.auth_method_id.in_(method_ids), Token.revoked.is_(False))
            .update({Token.revoked: True}, synchronize_session=False)
        )
        db.commit()
        self.logger.info("Revoked %s tokens for user %s", revoked, user_id)
        return revoked
