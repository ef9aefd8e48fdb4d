"""Process-wide service objects, built once and handed to routes through Depends."""

import logging
from functools import lru_cache

from signwise.core.config import get_settings
from signwise.core.security import TokenIssuer
from signwise.services.auth import AuthOrchestrator
from signwise.services.oauth import GoogleOAuthClient
from signwise.services.users import UserStore

logger = logging.getLogger("signwise.auth")


@lru_cache
def get_token_issuer() -> TokenIssuer:
    return TokenIssuer.from_settings(get_settings())


@lru_cache
def get_auth_service() -> AuthOrchestrator:
    return AuthOrchestrator.from_settings(get_settings(), issuer=get_token_issuer(), logger=logger)


@lru_cache
def get_user_store() -> UserStore:
    return UserStore(logger)


@lru_cache
def get_google_client() -> GoogleOAuthClient:
    return GoogleOAuthClient.from_settings(get_settings())
