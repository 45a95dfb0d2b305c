"""FastAPI routes exposing the OAuth login and token lifecycle flows."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import RedirectResponse

from .. import config as app_config
from ..models import ApiResponse, UserPublic
from . import config
from .cookies import attach_session_cookies, clear_session_cookies
from .deps import AuthenticatedSession, require_user
from .errors import AuthError, AuthErrorKind, TokenInvalidError
from .oauth import OAuthService, get_oauth_service
from .schemas import (
    AuthorizationLink,
    LoginTokens,
    RefreshedTokens,
    RefreshTokenRequest,
    serialize_user,
)
from .sessions import SessionStore
from .token_service import TokenService, get_token_service
from .tokens import (
    REFRESH_PURPOSE,
    issue_access_token,
    issue_refresh_token,
    issue_session_credentials,
    issue_state_token,
    verify,
    verify_state_token,
)

LOGGER = logging.getLogger(__name__)

oauth_router = APIRouter(prefix="/v1/oauth", tags=["oauth"])
auth_router = APIRouter(prefix="/v1/auth", tags=["auth"])

# Failures while completing a login. Anything unlisted is a server fault.
CALLBACK_ERROR_STATUS: Dict[AuthErrorKind, int] = {
    AuthErrorKind.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.UNSUPPORTED_PROVIDER: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.INVALID_STATE: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.UPSTREAM: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    AuthErrorKind.IDENTITY_UNAVAILABLE: status.HTTP_409_CONFLICT,
}

# Failures while refreshing an existing session.
REFRESH_ERROR_STATUS: Dict[AuthErrorKind, int] = {
    AuthErrorKind.SESSION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthErrorKind.SESSION_INACTIVE: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.REFRESH_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.UPSTREAM: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.TOKEN_INVALID: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.TOKEN_EXPIRED: status.HTTP_401_UNAUTHORIZED,
}

REAUTHENTICATE_MESSAGE = "Session is no longer valid. Please re-authenticate."
STATE_INVALID_MESSAGE = "State invalid or expired, please retry"


def _bad_request(detail) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _unsupported_provider(service: OAuthService, provider: str) -> HTTPException:
    return _bad_request(
        {
            "message": f'OAuth provider "{provider}" is not supported',
            "supportedProviders": sorted(service.registry.list_providers()),
        }
    )


def _client_metadata(request: Request) -> Dict[str, Optional[str]]:
    ip_address = request.headers.get("x-forwarded-for")
    if ip_address and "," in ip_address:
        ip_address = ip_address.split(",", 1)[0].strip()
    if not ip_address and request.client:
        ip_address = request.client.host
    return {"ipAddress": ip_address, "userAgent": request.headers.get("user-agent")}


@oauth_router.get("/{provider}", response_model=ApiResponse[AuthorizationLink])
def authorization_link(
    provider: str,
    redirect: bool = False,
    service: OAuthService = Depends(get_oauth_service),
) -> ApiResponse[AuthorizationLink]:
    """Return the provider consent URL carrying a signed CSRF state."""
    if not service.registry.has_provider(provider):
        LOGGER.warning("Authorization requested for unsupported provider %s", provider)
        raise _unsupported_provider(service, provider)
    link = service.get_authorization_url(provider, issue_state_token(redirect))
    return ApiResponse(message="Authorization link generated", payload=AuthorizationLink(link=link))


@oauth_router.get("/{provider}/callback", response_model=ApiResponse[LoginTokens])
async def oauth_callback(
    provider: str,
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    service: OAuthService = Depends(get_oauth_service),
):
    if not service.registry.has_provider(provider):
        raise _unsupported_provider(service, provider)
    if not state:
        LOGGER.warning("OAuth callback without state for %s", provider)
        raise _bad_request("Missing state parameter")
    try:
        state_claims = verify_state_token(state)
    except AuthError as exc:
        LOGGER.warning("OAuth callback state rejected for %s (%s)", provider, exc.kind.value)
        raise _bad_request(STATE_INVALID_MESSAGE) from exc
    if error:
        LOGGER.warning("Provider %s reported error %s", provider, error)
        raise _bad_request(error_description or error)
    if not code:
        raise _bad_request("Missing authorization code")

    try:
        result = await service.handle_callback(provider, code, metadata=_client_metadata(request))
    except AuthError as exc:
        status_code = CALLBACK_ERROR_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
        raise HTTPException(status_code=status_code, detail=exc.public_message) from exc

    credentials = issue_session_credentials(result.user.id, result.session.id)
    if state_claims.get("redirect") == "true":
        response = RedirectResponse(app_config.FRONTEND_URL, status_code=status.HTTP_302_FOUND)
        attach_session_cookies(
            response,
            access_token=credentials.access_token,
            access_token_expires_at=credentials.access_token_expires_at,
            refresh_token=credentials.refresh_token,
            refresh_token_expires_at=credentials.refresh_token_expires_at,
        )
        return response

    return ApiResponse(
        message="Login successful",
        payload=LoginTokens(
            access_token=credentials.access_token,
            access_token_expires_at=credentials.access_token_expires_at,
            refresh_token=credentials.refresh_token,
            refresh_token_expires_at=credentials.refresh_token_expires_at,
            session_id=result.session.id,
        ),
    )


@auth_router.post("/refresh-token", response_model=ApiResponse[RefreshedTokens])
async def refresh_token(
    body: RefreshTokenRequest,
    request: Request,
    response: Response,
    token_service: TokenService = Depends(get_token_service),
) -> ApiResponse[RefreshedTokens]:
    """Rotate the session's provider tokens and mint a new bearer access credential."""
    from_cookie = body.refresh_token is None
    credential = body.refresh_token or request.cookies.get(config.REFRESH_COOKIE_NAME)
    try:
        if not credential:
            raise TokenInvalidError("Refresh credential required")
        claims = verify(credential, config.JWT_SECRET, purpose=REFRESH_PURPOSE)
        if claims.get("sid") != body.session_id:
            raise TokenInvalidError("Refresh credential does not belong to this session")
        result = await token_service.refresh_access_token(body.session_id)
    except AuthError as exc:
        status_code = REFRESH_ERROR_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
        LOGGER.warning("Refresh rejected for session %s (%s)", body.session_id, exc.kind.value)
        if status_code == status.HTTP_404_NOT_FOUND:
            detail = exc.public_message
        elif status_code == status.HTTP_401_UNAUTHORIZED:
            detail = REAUTHENTICATE_MESSAGE
        else:
            detail = "Unable to refresh session"
        raise HTTPException(status_code=status_code, detail=detail) from exc

    user_id = str(claims.get("sub"))
    access_token, access_expires_at = issue_access_token(user_id, body.session_id)
    payload = RefreshedTokens(access_token=access_token, access_token_expires_at=access_expires_at)
    if result.refresh_token:
        # The provider rotated its refresh token; rotate ours with it.
        payload.refresh_token, payload.refresh_token_expires_at = issue_refresh_token(
            user_id, body.session_id
        )
    if from_cookie:
        attach_session_cookies(
            response,
            access_token=payload.access_token,
            access_token_expires_at=payload.access_token_expires_at,
            refresh_token=payload.refresh_token,
            refresh_token_expires_at=payload.refresh_token_expires_at,
        )
    response.headers["Cache-Control"] = "no-store"
    return ApiResponse(message="Token refreshed", payload=payload)


@auth_router.get("/me", response_model=ApiResponse[UserPublic])
def current_user(principal: AuthenticatedSession = Depends(require_user)) -> ApiResponse[UserPublic]:
    return ApiResponse(message="Current user", payload=serialize_user(principal.user))


@auth_router.post("/logout", response_model=ApiResponse)
def logout(
    response: Response,
    principal: AuthenticatedSession = Depends(require_user),
) -> ApiResponse:
    SessionStore().revoke(principal.session.id)
    clear_session_cookies(response)
    return ApiResponse(message="Logged out")
