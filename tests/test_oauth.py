"""Tests for Google sign-in: code exchange, identity linking and the callback outcome."""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx

from signwise.core.security import ACCESS_TOKEN
from signwise.models import AuthMethod, AuthMethodType, Token, User
from signwise.services.errors import AuthenticationFailed, Conflict
from signwise.services.oauth import (
    GOOGLE_TOKEN_URL,
    GOOGLE_USERINFO_URL,
    GoogleOAuthClient,
    OAuthAssertion,
    OAuthCallbackOutcome,
    OAuthIdentityLinker,
    OAuthProviderError,
    derive_username,
    provider_username,
)
from signwise.services.token_ledger import TokenLedger
from signwise.services.users import UserStore
from tests.helpers import add_user_with_local_method, make_auth_service, make_issuer, make_session_factory

GOOGLE_PROFILE = {
    "sub": "1098765",
    "email": "Dana.Scully@Example.com",
    "email_verified": True,
    "name": "Dana Scully",
    "given_name": "Dana",
    "family_name": "Scully",
    "picture": "https://example.com/dana.png",
}


def assertion(**overrides: object) -> OAuthAssertion:
    fields = {
        "provider": AuthMethodType.GOOGLE,
        "provider_subject_id": "1098765",
        "email": "dana.scully@example.com",
        "display_name": "Dana Scully",
        "provider_refresh_token": "google-refresh-1",
        "first_name": "Dana",
        "last_name": "Scully",
    }
    fields.update(overrides)
    return OAuthAssertion(**fields)


def google_transport(token_status: int = 200, token_body: dict | None = None, profile: dict | None = None):
    token_body = token_body if token_body is not None else {"access_token": "ya29.x", "refresh_token": "1//r"}
    profile = profile if profile is not None else GOOGLE_PROFILE
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        url = str(request.url)
        if url == GOOGLE_TOKEN_URL:
            return httpx.Response(token_status, json=token_body)
        if url == GOOGLE_USERINFO_URL:
            return httpx.Response(200, json=profile)
        return httpx.Response(404)

    return httpx.MockTransport(handler), seen


def google_client(transport: httpx.MockTransport | None = None) -> GoogleOAuthClient:
    return GoogleOAuthClient(
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="http://localhost:8000/api/v1/auth/oauth/google/callback",
        timeout=5.0,
        transport=transport,
    )


class TestDeriveUsername(unittest.TestCase):
    def test_display_name_is_lowered_and_stripped(self) -> None:
        self.assertEqual(derive_username("Dana Scully", "x@y.com", "google_1"), "danascully")
        self.assertEqual(derive_username("O'Brien, Pat!", "x@y.com", "google_1"), "obrienpat")

    def test_falls_back_to_email_local_part(self) -> None:
        self.assertEqual(derive_username("", "Fox.Mulder@fbi.gov", "google_1"), "fox.mulder")
        self.assertEqual(derive_username("  ", "fox@fbi.gov", "google_1"), "fox")

    def test_is_capped_at_column_length(self) -> None:
        self.assertEqual(len(derive_username("a" * 100, "x@y.com", "google_1")), 64)

    def test_unrepresentable_names_use_fallback(self) -> None:
        self.assertEqual(derive_username("用户", "张@x.com", "google_1098765"), "google_1098765")

    def test_names_shorter_than_minimum_use_fallback(self) -> None:
        self.assertEqual(derive_username("Al", "al@x.com", "google_1098765"), "google_1098765")
        self.assertEqual(derive_username("Al", "alfred@x.com", "google_1098765"), "alfred")

    def test_provider_username_is_built_from_provider_and_subject(self) -> None:
        self.assertEqual(provider_username(assertion(display_name="用户", email="张@x.com")), "google_1098765")
        self.assertEqual(provider_username(assertion()), "danascully")


class TestGoogleOAuthClient(unittest.TestCase):
    def test_authorization_url_requests_offline_consent(self) -> None:
        url = urlparse(google_client().authorization_url("state-123"))
        params = parse_qs(url.query)
        self.assertEqual(url.netloc, "accounts.google.com")
        self.assertEqual(params["state"], ["state-123"])
        self.assertEqual(params["response_type"], ["code"])
        self.assertEqual(params["access_type"], ["offline"])
        self.assertEqual(params["prompt"], ["consent"])
        self.assertEqual(params["scope"], ["openid email profile"])

    def test_unconfigured_client_refuses(self) -> None:
        client = GoogleOAuthClient(None, None, None)
        self.assertFalse(client.is_configured)
        with self.assertRaises(OAuthProviderError):
            client.authorization_url("state")
        with self.assertRaises(OAuthProviderError):
            asyncio.run(client.fetch_assertion("code"))

    def test_exchange_returns_assertion(self) -> None:
        transport, seen = google_transport()
        result = asyncio.run(google_client(transport).fetch_assertion("auth-code"))

        self.assertEqual(result.provider, AuthMethodType.GOOGLE)
        self.assertEqual(result.provider_subject_id, "1098765")
        self.assertEqual(result.email, "dana.scully@example.com")
        self.assertEqual(result.display_name, "Dana Scully")
        self.assertEqual(result.provider_refresh_token, "1//r")
        self.assertEqual(result.avatar_url, "https://example.com/dana.png")

        token_request, info_request = seen
        form = parse_qs(token_request.content.decode())
        self.assertEqual(form["code"], ["auth-code"])
        self.assertEqual(form["grant_type"], ["authorization_code"])
        self.assertEqual(info_request.headers["Authorization"], "Bearer ya29.x")

    def test_token_endpoint_error(self) -> None:
        transport, _ = google_transport(token_status=400, token_body={"error": "invalid_grant"})
        with self.assertRaises(OAuthProviderError) as ctx:
            asyncio.run(google_client(transport).fetch_assertion("bad-code"))
        self.assertEqual(ctx.exception.status_code, 400)

    def test_missing_access_token(self) -> None:
        transport, _ = google_transport(token_body={"token_type": "Bearer"})
        with self.assertRaises(OAuthProviderError):
            asyncio.run(google_client(transport).fetch_assertion("code"))

    def test_unverified_email_is_refused(self) -> None:
        transport, _ = google_transport(profile={**GOOGLE_PROFILE, "email_verified": False})
        with self.assertRaises(OAuthProviderError):
            asyncio.run(google_client(transport).fetch_assertion("code"))

    def test_profile_without_subject_is_refused(self) -> None:
        profile = {k: v for k, v in GOOGLE_PROFILE.items() if k != "sub"}
        transport, _ = google_transport(profile=profile)
        with self.assertRaises(OAuthProviderError):
            asyncio.run(google_client(transport).fetch_assertion("code"))

    def test_network_failure_is_wrapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(OAuthProviderError):
            asyncio.run(google_client(httpx.MockTransport(handler)).fetch_assertion("code"))

    def test_non_json_response_is_refused(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>oops</html>")

        with self.assertRaises(OAuthProviderError):
            asyncio.run(google_client(httpx.MockTransport(handler)).fetch_assertion("code"))


class TestOAuthIdentityLinker(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.issuer = make_issuer()
        users = UserStore()
        self.linker = OAuthIdentityLinker(users, TokenLedger(self.issuer))

    def tearDown(self) -> None:
        self.db.close()

    def test_first_sign_in_creates_user_and_method(self) -> None:
        result = self.linker.authenticate(self.db, assertion())

        user = self.db.query(User).one()
        self.assertEqual(user.username, "danascully")
        self.assertEqual(user.email, "dana.scully@example.com")
        self.assertEqual(user.first_name, "Dana")
        method = self.db.query(AuthMethod).one()
        self.assertEqual(method.type, AuthMethodType.GOOGLE.value)
        self.assertEqual(method.identifier, "1098765")
        self.assertIsNone(method.credential)
        self.assertEqual(method.provider_refresh_token, "google-refresh-1")

        claims = self.issuer.verify(result.access_token, expected_use=ACCESS_TOKEN)
        self.assertEqual(claims.auth_method_type, AuthMethodType.GOOGLE.value)
        self.assertEqual(claims.auth_method_id, method.id)
        self.assertIsNone(result.refresh_token)
        self.assertEqual(self.db.query(Token).count(), 0)

    def test_repeat_sign_in_reuses_method(self) -> None:
        self.linker.authenticate(self.db, assertion())
        self.linker.authenticate(self.db, assertion(provider_refresh_token="google-refresh-2"))
        self.assertEqual(self.db.query(User).count(), 1)
        method = self.db.query(AuthMethod).one()
        self.assertEqual(method.provider_refresh_token, "google-refresh-2")

    def test_missing_provider_refresh_token_keeps_stored_one(self) -> None:
        self.linker.authenticate(self.db, assertion())
        self.linker.authenticate(self.db, assertion(provider_refresh_token=None))
        method = self.db.query(AuthMethod).one()
        self.assertEqual(method.provider_refresh_token, "google-refresh-1")

    def test_links_to_existing_local_user_by_email(self) -> None:
        user, _ = add_user_with_local_method(self.db, username="dana", email="dana.scully@example.com")
        result = self.linker.authenticate(self.db, assertion())
        self.assertEqual(result.user.id, user.id)
        self.assertEqual(self.db.query(User).count(), 1)
        types = sorted(m.type for m in self.db.query(AuthMethod).all())
        self.assertEqual(types, [AuthMethodType.GOOGLE.value, AuthMethodType.LOCAL.value])

    def test_unrepresentable_names_get_provider_username(self) -> None:
        first = self.linker.authenticate(self.db, assertion(email="张@x.com", display_name="用户"))
        self.assertEqual(first.user.username, "google_1098765")
        second = self.linker.authenticate(
            self.db,
            assertion(email="李@x.com", display_name="李", provider_subject_id="2233"),
        )
        self.assertEqual(second.user.username, "google_2233")
        self.assertEqual(self.db.query(User).filter(User.username == "").count(), 0)

    def test_short_display_name_is_not_saved_as_username(self) -> None:
        result = self.linker.authenticate(self.db, assertion(email="al@x.com", display_name="Al"))
        self.assertEqual(result.user.username, "google_1098765")

    def test_taken_username_conflicts(self) -> None:
        add_user_with_local_method(self.db, username="danascully", email="someone.else@example.com")
        with self.assertRaises(Conflict):
            self.linker.authenticate(self.db, assertion())
        self.assertEqual(self.db.query(User).count(), 1)

    def test_storage_failure_becomes_authentication_failed(self) -> None:
        db = MagicMock()
        db.query.side_effect = RuntimeError("database is gone")
        with self.assertRaises(AuthenticationFailed):
            self.linker.authenticate(db, assertion())
        db.rollback.assert_called_once()


class TestOAuthCallbackOutcome(unittest.TestCase):
    def test_success_redirects_to_signin_with_token(self) -> None:
        outcome = OAuthCallbackOutcome.success("abc.def.ghi")
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.redirect_url("http://localhost:4000/"), "http://localhost:4000/signin?token=abc.def.ghi")

    def test_failure_redirects_to_login_with_error(self) -> None:
        outcome = OAuthCallbackOutcome.failure()
        self.assertFalse(outcome.ok)
        url = urlparse(outcome.redirect_url("http://localhost:4000"))
        self.assertEqual(url.path, "/login")
        self.assertEqual(parse_qs(url.query)["error"], ["Authentication failed"])


class TestCompleteOAuth(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.issuer = make_issuer()
        self.service = make_auth_service(issuer=self.issuer)
        self.client = MagicMock()
        self.client.fetch_assertion = AsyncMock(return_value=assertion())

    def tearDown(self) -> None:
        self.db.close()

    def complete(self, **kwargs: object) -> OAuthCallbackOutcome:
        params = {"code": "auth-code", "state": self.issuer.issue_state()}
        params.update(kwargs)
        return asyncio.run(self.service.complete_oauth(self.db, self.client, **params))

    def test_success_carries_access_token(self) -> None:
        outcome = self.complete()
        self.assertTrue(outcome.ok)
        claims = self.issuer.verify(outcome.access_token, expected_use=ACCESS_TOKEN)
        self.assertEqual(claims.username, "danascully")
        self.client.fetch_assertion.assert_awaited_once_with("auth-code")

    def test_provider_error_short_circuits(self) -> None:
        outcome = self.complete(provider_error="access_denied")
        self.assertFalse(outcome.ok)
        self.client.fetch_assertion.assert_not_awaited()

    def test_missing_code_fails(self) -> None:
        self.assertFalse(self.complete(code=None).ok)
        self.client.fetch_assertion.assert_not_awaited()

    def test_forged_state_fails(self) -> None:
        self.assertFalse(self.complete(state="forged").ok)
        self.client.fetch_assertion.assert_not_awaited()

    def test_access_token_is_not_accepted_as_state(self) -> None:
        token, _ = self.issuer.issue(
            user_id=1,
            username="x",
            role="user",
            auth_method_type="LOCAL",
            auth_method_id=1,
            token_use=ACCESS_TOKEN,
        )
        self.assertFalse(self.complete(state=token).ok)

    def test_exchange_failure_fails(self) -> None:
        self.client.fetch_assertion.side_effect = OAuthProviderError("boom", 500)
        outcome = self.complete()
        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.error, "Authentication failed")

    def test_username_conflict_is_reported(self) -> None:
        add_user_with_local_method(self.db, username="danascully", email="other@example.com")
        outcome = self.complete()
        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.error, Conflict.detail)

    def test_linking_runs_off_the_event_loop(self) -> None:
        with patch("signwise.services.auth.asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
            outcome = self.complete()
        self.assertTrue(outcome.ok)
        to_thread.assert_called_once()
        self.assertEqual(to_thread.call_args.args[0], self.service.oauth_login)
        self.assertIs(to_thread.call_args.args[1], self.db)


if __name__ == "__main__":
    unittest.main()
