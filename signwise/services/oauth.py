"""OAuth sign-in: Google code exchange, linking provider identities to local users, callback outcome."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx
from sqlalchemy.orm import Session

from signwise.core.security import USERNAME_MAX_LEN, USERNAME_MIN_LEN, utcnow
from signwise.models import AuthMethod, AuthMethodType
from signwise.services.errors import AuthenticationFailed, Conflict
from signwise.services.token_ledger import AuthResult, TokenLedger
from signwise.services.users import UserStore, normalize_email

if TYPE_CHECKING:
    from signwise.core.config import Settings

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
GOOGLE_SCOPES = "openid email profile"

_USERNAME_STRIP = re.compile(r"[^a-z0-9_.-]+")


@dataclass(frozen=True)
class OAuthAssertion:
    """Identity asserted by an external provider after a successful code exchange."""

    provider: AuthMethodType
    provider_subject_id: str
    email: str
    display_name: str = ""
    provider_refresh_token: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    avatar_url: str | None = None

    @property
    def kind(self) -> AuthMethodType:
        return self.provider


class OAuthProviderError(Exception):
    """Raised when the provider exchange fails or returns an unusable identity."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def derive_username(display_name: str, email: str, fallback: str) -> str:
    """
    Lower-cased display name without spaces/punctuation, else the email local
    part, else ``fallback``. A candidate shorter than USERNAME_MIN_LEN is skipped,
    so names written entirely in other scripts never yield an empty username.
    """
    for source in (display_name or "", email.split("@", 1)[0]):
        candidate = _USERNAME_STRIP.sub("", source.lower())[:USERNAME_MAX_LEN]
        if len(candidate) >= USERNAME_MIN_LEN:
            return candidate
    return fallback[:USERNAME_MAX_LEN]


def provider_username(assertion: OAuthAssertion) -> str:
    """Deterministic username for an OAuth identity, e.g. ``google_1098765``."""
    fallback = _USERNAME_STRIP.sub("", f"{assertion.provider.value}_{assertion.provider_subject_id}".lower())
    return derive_username(assertion.display_name, assertion.email, fallback)


class GoogleOAuthClient:
    """Authorization-code flow against Google's OAuth 2.0 / OpenID Connect endpoints."""

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str | None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> GoogleOAuthClient:
        secret = settings.GOOGLE_CLIENT_SECRET.get_secret_value() if settings.GOOGLE_CLIENT_SECRET else None
        return cls(
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=secret,
            redirect_uri=settings.GOOGLE_REDIRECT_URI,
            timeout=settings.OAUTH_REQUEST_TIMEOUT_SEC,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def authorization_url(self, state: str) -> str:
        if not self.is_configured:
            raise OAuthProviderError("Google OAuth is not configured.")
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": GOOGLE_SCOPES,
            "state": state,
            # offline + consent so Google returns a refresh token we can keep on the AuthMethod
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def fetch_assertion(self, code: str) -> OAuthAssertion:
        """Exchange the authorization code and read the user's OpenID profile."""
        if not self.is_configured:
            raise OAuthProviderError("Google OAuth is not configured.")
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=False, transport=self._transport
            ) as client:
                token_resp = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "code": code,
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "redirect_uri": self.redirect_uri,
                        "grant_type": "authorization_code",
                    },
                    headers={"Accept": "application/json"},
                )
                if token_resp.status_code >= 400:
                    raise OAuthProviderError(
                        f"Google token endpoint returned {token_resp.status_code}",
                        token_resp.status_code,
                    )
                token_data = _json_object(token_resp, "token")
                access_token = token_data.get("access_token")
                if not access_token:
                    raise OAuthProviderError("Google token response has no access_token")

                info_resp = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                if info_resp.status_code >= 400:
                    raise OAuthProviderError(
                        f"Google userinfo endpoint returned {info_resp.status_code}",
                        info_resp.status_code,
                    )
                profile = _json_object(info_resp, "userinfo")
        except httpx.TimeoutException as e:
            raise OAuthProviderError("Google OAuth request timed out") from e
        except httpx.HTTPError as e:
            raise OAuthProviderError(f"Google OAuth request failed: {e!s}") from e

        return _assertion_from_google_profile(profile, token_data.get("refresh_token"))


def _json_object(resp: httpx.Response, what: str) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as e:
        raise OAuthProviderError(f"Google {what} response is not JSON") from e
    if not isinstance(data, dict):
        raise OAuthProviderError(f"Google {what} response is not an object")
    return data


def _assertion_from_google_profile(profile: dict[str, Any], refresh_token: str | None) -> OAuthAssertion:
    subject = profile.get("sub")
    email = profile.get("email")
    if not subject or not email:
        raise OAuthProviderError("Google profile is missing sub or email")
    # Accounts are linked by email, so an unverified address must never be trusted.
    if profile.get("email_verified") is not True:
        raise OAuthProviderError("Google account email is not verified")
    return OAuthAssertion(
        provider=AuthMethodType.GOOGLE,
        provider_subject_id=str(subject),
        email=normalize_email(email),
        display_name=profile.get("name") or "",
        provider_refresh_token=refresh_token,
        first_name=profile.get("given_name"),
        last_name=profile.get("family_name"),
        avatar_url=profile.get("picture"),
    )


class OAuthIdentityLinker:
    """Find-or-create the local user and provider AuthMethod for an OAuth assertion."""

    def __init__(
        self,
        users: UserStore,
        ledger: TokenLedger,
        logger: logging.Logger | None = None,
    ) -> None:
        self.users = users
        self.ledger = ledger
        self.logger = logger or logging.getLogger(__name__)

    def authenticate(self, db: Session, assertion: OAuthAssertion) -> AuthResult:
        """
        Link the assertion and issue an access token bound to the provider method.
        No local refresh token is minted: the provider's refresh token is the
        durable credential. Raises Conflict on a duplicate username, otherwise
        AuthenticationFailed for any fault.
        """
        provider = assertion.provider.value
        now = utcnow()
        try:
            user = self.users.find_by_email(db, assertion.email)
            if user is None:
                user = self.users.create(
                    db,
                    username=provider_username(assertion),
                    email=assertion.email,
                    first_name=assertion.first_name,
                    last_name=assertion.last_name,
                    avatar_url=assertion.avatar_url,
                )
                self.logger.info("Created user %s from %s sign-in", user.id, provider)

            method = (
                db.query(AuthMethod)
                .filter(
                    AuthMethod.user_id == user.id,
                    AuthMethod.type == provider,
                    AuthMethod.identifier == assertion.provider_subject_id,
                )
                .first()
            )
            if method is None:
                method = AuthMethod(
                    user_id=user.id,
                    type=provider,
                    identifier=assertion.provider_subject_id,
                    credential=None,
                    provider_refresh_token=assertion.provider_refresh_token,
                    is_verified=True,
                    last_used_at=now,
                    failed_attempts=0,
                )
                db.add(method)
                self.logger.info("Linked %s identity to user %s", provider, user.id)
            else:
                # Google only returns a refresh token on consent; keep the stored one otherwise.
                if assertion.provider_refresh_token:
                    method.provider_refresh_token = assertion.provider_refresh_token
                method.last_used_at = now
            db.flush()

            access_token = self.ledger.issue_access(user, method, now)
            db.commit()
        except Conflict as e:
            db.rollback()
            self.logger.warning("%s sign-in conflict: %s", provider, e.message)
            raise
        except Exception as e:
            db.rollback()
            self.logger.exception("%s sign-in failed", provider)
            raise AuthenticationFailed() from e

        return AuthResult(user=user, auth_method=method, access_token=access_token)


@dataclass(frozen=True)
class OAuthCallbackOutcome:
    """Decision reached by an OAuth callback, independent of the HTTP redirect that carries it."""

    access_token: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, access_token: str) -> OAuthCallbackOutcome:
        return cls(access_token=access_token)

    @classmethod
    def failure(cls, error: str = AuthenticationFailed.detail) -> OAuthCallbackOutcome:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.access_token is not None

    def redirect_url(self, frontend_url: str) -> str:
        base = frontend_url.rstrip("/")
        if self.ok:
            return f"{base}/signin?{urlencode({'token': self.access_token})}"
        return f"{base}/login?{urlencode({'error': self.error or AuthenticationFailed.detail})}"
