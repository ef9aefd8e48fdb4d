"""Auth endpoints (register, login, refresh, logout, account, Google sign-in) and auth dependencies."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from signwise.api.deps import get_auth_service, get_google_client, get_token_issuer
from signwise.api.guards import (
    GuardChain,
    GuardContext,
    access_token_valid,
    bearer_token_present,
    role_required,
)
from signwise.core.config import get_settings
from signwise.core.database import get_db
from signwise.core.security import TokenIssuer
from signwise.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    CurrentUser,
    DeleteAccountRequest,
    LoginRequest,
    LogoutResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    UserOut,
)
from signwise.services.auth import AuthOrchestrator
from signwise.services.errors import AuthError
from signwise.services.oauth import GoogleOAuthClient, OAuthCallbackOutcome, OAuthProviderError
from signwise.services.token_ledger import AuthResult

logger = logging.getLogger(__name__)
router = APIRouter()
security = HTTPBearer(auto_error=False)


def _http_error(e: AuthError) -> HTTPException:
    headers = {"WWW-Authenticate": "Bearer"} if e.status_code == status.HTTP_401_UNAUTHORIZED else None
    return HTTPException(status_code=e.status_code, detail=e.detail, headers=headers)


def _auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token or "",
        token_type="bearer",
        user=UserOut.model_validate(result.user),
    )


def _enforce(chain: GuardChain, credentials: HTTPAuthorizationCredentials | None) -> GuardContext:
    authorization = f"{credentials.scheme} {credentials.credentials}" if credentials else None
    ctx = GuardContext(authorization=authorization)
    decision = chain.evaluate(ctx)
    if not decision.allowed:
        headers = {"WWW-Authenticate": "Bearer"} if decision.status_code == 401 else None
        raise HTTPException(status_code=decision.status_code, detail=decision.reason, headers=headers)
    return ctx


def _current_user(ctx: GuardContext) -> CurrentUser:
    claims = ctx.claims
    return CurrentUser(
        id=claims.subject_user_id,
        username=claims.username,
        role=claims.role,
        auth_method_id=claims.auth_method_id,
        auth_type=claims.auth_method_type,
    )


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    issuer: Annotated[TokenIssuer, Depends(get_token_issuer)],
) -> CurrentUser:
    """Dependency: require a valid Bearer access token; identity comes from its claims only."""
    chain = GuardChain([bearer_token_present, access_token_valid(issuer)])
    return _current_user(_enforce(chain, credentials))


def require_admin(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    issuer: Annotated[TokenIssuer, Depends(get_token_issuer)],
) -> CurrentUser:
    """Dependency: require an authenticated user with role 'admin'. 403 for other roles."""
    chain = GuardChain([bearer_token_present, access_token_valid(issuer)]).then(role_required("admin"))
    return _current_user(_enforce(chain, credentials))


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[AuthOrchestrator, Depends(get_auth_service)],
) -> AuthResponse:
    """Create a local account and return an access/refresh token pair."""
    try:
        result = service.register(
            db,
            username=body.username,
            email=body.email,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
        )
    except AuthError as e:
        raise _http_error(e) from e
    return _auth_response(result)


@router.post("/login", response_model=AuthResponse)
def login(
    body: LoginRequest,
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[AuthOrchestrator, Depends(get_auth_service)],
) -> AuthResponse:
    """
    Authenticate with email and password.
    Include the access token in the Authorization header as: Bearer <accessToken>
    """
    try:
        result = service.login(db, body.email, body.password)
    except AuthError as e:
        raise _http_error(e) from e
    return _auth_response(result)


@router.post("/refresh", response_model=AuthResponse)
def refresh(
    body: RefreshRequest,
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[AuthOrchestrator, Depends(get_auth_service)],
) -> AuthResponse:
    """Exchange a refresh token for a new pair. Each refresh token works once."""
    try:
        result = service.refresh(db, body.refresh_token)
    except AuthError as e:
        raise _http_error(e) from e
    return _auth_response(result)


@router.post("/logout", response_model=LogoutResponse)
def logout(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[AuthOrchestrator, Depends(get_auth_service)],
) -> LogoutResponse:
    """Revoke every refresh token of the current user."""
    try:
        revoked = service.logout(db, current_user.id)
    except AuthError as e:
        raise _http_error(e) from e
    return LogoutResponse(revoked=revoked)


@router.get("/me", response_model=CurrentUser)
def me(current_user: Annotated[CurrentUser, Depends(get_current_user)]) -> CurrentUser:
    return current_user


@router.patch("/me/password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[AuthOrchestrator, Depends(get_auth_service)],
) -> MessageResponse:
    try:
        service.change_password(db, current_user.id, body.current_password, body.new_password)
    except AuthError as e:
        raise _http_error(e) from e
    return MessageResponse(message="Password changed successfully")


@router.delete("/me", response_model=MessageResponse)
def delete_account(
    body: DeleteAccountRequest,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[AuthOrchestrator, Depends(get_auth_service)],
) -> MessageResponse:
    """Delete the current user's account. Requires the account password."""
    try:
        service.delete_account(db, current_user.id, body.password)
    except AuthError as e:
        raise _http_error(e) from e
    return MessageResponse(message="Account deleted")



@router.get("/oauth/google")
def google_login(
    client: Annotated[GoogleOAuthClient, Depends(get_google_client)],
    issuer: Annotated[TokenIssuer, Depends(get_token_issuer)],
) -> RedirectResponse:
    """Send the browser to Google's consent screen."""
    try:
        url = client.authorization_url(issuer.issue_state())
    except OAuthProviderError as e:
        logger.warning("Google sign-in unavailable: %s", e.message)
        outcome = OAuthCallbackOutcome.failure("Google sign-in is not available")
        url = outcome.redirect_url(get_settings().FRONTEND_URL)
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get("/oauth/google/callback")
async def google_callback(
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[AuthOrchestrator, Depends(get_auth_service)],
    client: Annotated[GoogleOAuthClient, Depends(get_google_client)],
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> RedirectResponse:
    """Provider redirect target: always answers with a redirect to the frontend."""
    outcome = await service.complete_oauth(db, client, code=code, state=state, provider_error=error)
    return RedirectResponse(
        outcome.redirect_url(get_settings().FRONTEND_URL),
        status_code=status.HTTP_302_FOUND,
    )
