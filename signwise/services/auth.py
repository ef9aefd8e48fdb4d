"""Authentication use cases: register, login, refresh, logout, account changes and OAuth sign-in."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from signwise.core.security import (
    CredentialHasher,
    MalformedHashError,
    TokenIssuer,
    utcnow,
)
from signwise.models import AuthMethod, AuthMethodType, Token, User
from signwise.services.errors import (
    AccountLocked,
    AuthError,
    AuthenticationFailed,
    Conflict,
    InvalidCredentials,
    NotFound,
    TokenInvalid,
)
from signwise.services.lockout import AccountLockPolicy
from signwise.services.oauth import (
    GoogleOAuthClient,
    OAuthAssertion,
    OAuthCallbackOutcome,
    OAuthIdentityLinker,
    OAuthProviderError,
)
from signwise.services.token_ledger import AuthResult, TokenLedger
from signwise.services.users import UserStore, normalize_email

if TYPE_CHECKING:
    from signwise.core.config import Settings


@dataclass(frozen=True)
class PasswordCredential:
    email: str
    password: str

    @property
    def kind(self) -> AuthMethodType:
        return AuthMethodType.LOCAL


class Authenticator(Protocol):
    """One implementation per credential kind; selected by AuthMethodType."""

    def authenticate(self, db: Session, credential: Any) -> AuthResult: ...


class LocalPasswordAuthenticator:
    """Email + password against the LOCAL AuthMethod, with lockout."""

    def __init__(
        self,
        users: UserStore,
        hasher: CredentialHasher,
        lock_policy: AccountLockPolicy,
        ledger: TokenLedger,
        logger: logging.Logger | None = None,
    ) -> None:
        self.users = users
        self.hasher = hasher
        self.lock_policy = lock_policy
        self.ledger = ledger
        self.logger = logger or logging.getLogger(__name__)

    def authenticate(self, db: Session, credential: PasswordCredential) -> AuthResult:
        email = normalize_email(credential.email)
        now = utcnow()

        user = self.users.find_by_email(db, email)
        if user is None:
            self.logger.warning("Login failed: no user for the given email")
            raise InvalidCredentials()

        method = (
            db.query(AuthMethod)
            .filter(
                AuthMethod.user_id == user.id,
                AuthMethod.type == AuthMethodType.LOCAL.value,
                AuthMethod.identifier == email,
            )
            .first()
        )
        if method is None or not method.credential:
            self.logger.warning("Login failed: user %s has no LOCAL auth method", user.id)
            raise InvalidCredentials()

        self.lock_policy.ensure_not_locked(method, now)

        try:
            valid = self.hasher.verify(credential.password, method.credential)
        except MalformedHashError as e:
            self.logger.error(
                "Stored credential for auth method %s is not a valid hash: %s", method.id, e
            )
            raise AuthenticationFailed() from e

        if not valid:
            state = self.lock_policy.record_failure(db, method.id, now)
            if state.locked:
                raise AccountLocked()
            raise InvalidCredentials()

        self.lock_policy.record_success(method, now)
        result = self.ledger.mint(db, user, method, now)
        db.commit()
        self.logger.info("User %s logged in with password", user.id)
        return result


class AuthOrchestrator:
    """
    Public authentication use cases. Built once per process; every call takes
    the request's database session.

    All failures leave here as an AuthError subclass; storage errors are
    logged in full and reported without detail.
    """

    def __init__(
        self,
        users: UserStore,
        hasher: CredentialHasher,
        issuer: TokenIssuer,
        lock_policy: AccountLockPolicy,
        ledger: TokenLedger,
        linker: OAuthIdentityLinker,
        logger: logging.Logger | None = None,
    ) -> None:
        self.users = users
        self.hasher = hasher
        self.issuer = issuer
        self.lock_policy = lock_policy
        self.ledger = ledger
        self.linker = linker
        self.logger = logger or logging.getLogger(__name__)
        self._authenticators: dict[AuthMethodType, Authenticator] = {
            AuthMethodType.LOCAL: LocalPasswordAuthenticator(
                users, hasher, lock_policy, ledger, self.logger
            ),
            AuthMethodType.GOOGLE: linker,
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        issuer: TokenIssuer | None = None,
        logger: logging.Logger | None = None,
    ) -> AuthOrchestrator:
        logger = logger or logging.getLogger(__name__)
        issuer = issuer or TokenIssuer.from_settings(settings)
        users = UserStore(logger)
        ledger = TokenLedger(issuer, logger)
        return cls(
            users=users,
            hasher=CredentialHasher(settings.BCRYPT_ROUNDS),
            issuer=issuer,
            lock_policy=AccountLockPolicy.from_settings(settings, logger),
            ledger=ledger,
            linker=OAuthIdentityLinker(users, ledger, logger),
            logger=logger,
        )

    def authenticate(self, db: Session, credential: PasswordCredential | OAuthAssertion) -> AuthResult:
        authenticator = self._authenticators.get(credential.kind)
        if authenticator is None:
            self.logger.error("No authenticator registered for %s", credential.kind)
            raise AuthenticationFailed()
        return authenticator.authenticate(db, credential)

    def register(
        self,
        db: Session,
        username: str,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> AuthResult:
        """Create the user, its LOCAL credential and a first token pair in one transaction."""
        username = username.strip()
        email = normalize_email(email)
        self.logger.info("Registering user %s", username)
        # Hash before touching the database to keep the transaction short.
        credential = self.hasher.hash(password)
        try:
            user = self.users.create(
                db,
                username=username,
                email=email,
                first_name=first_name,
                last_name=last_name,
            )
            method = AuthMethod(
                user_id=user.id,
                type=AuthMethodType.LOCAL.value,
                identifier=email,
                credential=credential,
                is_verified=True,
                failed_attempts=0,
            )
            db.add(method)
            db.flush()
            result = self.ledger.mint(db, user, method)
            db.commit()
        except Conflict as e:
            db.rollback()
            self.logger.warning("Registration failed: %s", e.message)
            raise
        except IntegrityError as e:
            db.rollback()
            self.logger.warning("Registration failed on a unique constraint")
            raise Conflict() from e
        except SQLAlchemyError as e:
            db.rollback()
            self.logger.exception("Registration failed")
            raise AuthenticationFailed() from e

        self.logger.info("Registered user %s (%s)", result.user.id, result.user.username)
        return result

    def login(self, db: Session, email: str, password: str) -> AuthResult:
        try:
            return self.authenticate(db, PasswordCredential(email=email, password=password))
        except AuthError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            self.logger.exception("Login failed on a storage error")
            raise AuthenticationFailed() from e

    def refresh(self, db: Session, refresh_token: str) -> AuthResult:
        """Rotate a refresh token. Every failure, including expiry, is reported as TokenInvalid."""
        try:
            return self.ledger.rotate(db, refresh_token)
        except TokenInvalid:
            raise
        except AuthError as e:
            raise TokenInvalid(e.message) from e
        except SQLAlchemyError as e:
            self.logger.exception("Token refresh failed on a storage error")
            raise TokenInvalid() from e

    def logout(self, db: Session, user_id: int) -> int:
        """Revoke all of the user's refresh tokens; returns how many were revoked."""
        try:
            return self.ledger.revoke_all(db, user_id)
        except SQLAlchemyError as e:
            db.rollback()
            self.logger.exception("Logout failed for user %s", user_id)
            raise AuthenticationFailed() from e

    def _local_method(self, db: Session, user_id: int, password: str) -> AuthMethod:
        """The user's LOCAL method, after checking ``password`` against it."""
        method = (
            db.query(AuthMethod)
            .filter(AuthMethod.user_id == user_id, AuthMethod.type == AuthMethodType.LOCAL.value)
            .first()
        )
        if method is None or not method.credential:
            raise NotFound("User has no password to check")
        try:
            valid = self.hasher.verify(password, method.credential)
        except MalformedHashError as e:
            self.logger.error(
                "Stored credential for auth method %s is not a valid hash: %s", method.id, e
            )
            raise AuthenticationFailed() from e
        if not valid:
            self.logger.warning("Password check failed for user %s", user_id)
            raise InvalidCredentials("Current password is incorrect")
        return method

    def change_password(self, db: Session, user_id: int, current_password: str, new_password: str) -> None:
        """Replace the LOCAL credential after checking the current one. Issued tokens stay valid."""
        credential = self.hasher.hash(new_password)
        try:
            method = self._local_method(db, user_id, current_password)
            method.credential = credential
            db.commit()
        except AuthError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            self.logger.exception("Password change failed for user %s", user_id)
            raise AuthenticationFailed() from e
        self.logger.info("Password changed for user %s", user_id)

    def delete_account(self, db: Session, user_id: int, password: str) -> None:
        """Delete the user with its auth methods and tokens, after a password check."""
        try:
            self._local_method(db, user_id, password)
            method_ids = [
                row.id for row in db.query(AuthMethod.id).filter(AuthMethod.user_id == user_id).all()
            ]
            db.query(Token).filter(Token.auth_method_id.in_(method_ids)).delete(synchronize_session=False)
            db.query(AuthMethod).filter(AuthMethod.user_id == user_id).delete(synchronize_session=False)
            db.query(User).filter(User.id == user_id).delete(synchronize_session=False)
            db.commit()
        except AuthError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            self.logger.exception("Account deletion failed for user %s", user_id)
            raise AuthenticationFailed() from e
        self.logger.info("Deleted user %s", user_id)

    def oauth_login(self, db: Session, assertion: OAuthAssertion) -> AuthResult:
        return self.authenticate(db, assertion)

    async def complete_oauth(
        self,
        db: Session,
        client: GoogleOAuthClient,
        *,
        code: str | None,
        state: str | None,
        provider_error: str | None = None,
    ) -> OAuthCallbackOutcome:
        """
        Turn a provider callback into an outcome. Never raises: the caller is a
        browser mid-redirect, so every failure becomes an error outcome.
        """
        if provider_error:
            self.logger.warning("OAuth provider returned error: %s", provider_error)
            return OAuthCallbackOutcome.failure()
        if not code or not state:
            self.logger.warning("OAuth callback missing code or state")
            return OAuthCallbackOutcome.failure()
        try:
            self.issuer.verify_state(state)
        except AuthError as e:
            self.logger.warning("OAuth callback state rejected: %s", e.message)
            return OAuthCallbackOutcome.failure()

        try:
            assertion = await client.fetch_assertion(code)
        except OAuthProviderError as e:
            self.logger.warning("OAuth code exchange failed: %s", e.message)
            return OAuthCallbackOutcome.failure()

        try:
            result = await asyncio.to_thread(self.oauth_login, db, assertion)
        except Conflict as e:
            return OAuthCallbackOutcome.failure(e.detail)
        except AuthError:
            return OAuthCallbackOutcome.failure()
        except Exception:
            self.logger.exception("Unexpected OAuth callback failure")
            return OAuthCallbackOutcome.failure()

        self.logger.info("OAuth sign-in succeeded for user %s", result.user.id)
        return OAuthCallbackOutcome.success(result.access_token)
