"""Google OAuth 2.0 provider implementation."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from .. import config
from ..errors import TokenExchangeError, UserInfoError
from .base import OAuthProvider, ProviderTokenResponse, ProviderUserInfo

LOGGER = logging.getLogger(__name__)

AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
USERINFO_ENDPOINT = "https://www.googleapis.com/oauth2/v2/userinfo"
SCOPES = ["openid", "email", "profile"]


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _error_code(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        # The userinfo endpoint nests errors as {"error": {"status": ...}}.
        return error.get("status") or error.get("message")
    return error


class GoogleOAuthProvider(OAuthProvider):
    """Google sign-in using the v2 authorization and userinfo endpoints.

    Requests ``access_type=offline`` with ``prompt=consent`` so Google issues
    a refresh token on every login.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Google provider.

        Args:
            client_id: OAuth client id (defaults to config.GOOGLE_CLIENT_ID)
            client_secret: OAuth client secret (defaults to config.GOOGLE_CLIENT_SECRET)
            redirect_uri: Registered callback URL (defaults to config.GOOGLE_REDIRECT_URI)
            timeout: Request timeout in seconds (defaults to config.PROVIDER_HTTP_TIMEOUT_SECONDS)
            transport: Optional httpx transport (for testing)
        """
        self._client_id = client_id if client_id is not None else config.GOOGLE_CLIENT_ID
        self._client_secret = (
            client_secret if client_secret is not None else config.GOOGLE_CLIENT_SECRET
        )
        self._redirect_uri = redirect_uri if redirect_uri is not None else config.GOOGLE_REDIRECT_URI
        self._timeout = timeout or config.PROVIDER_HTTP_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def provider_id(self) -> str:
        return "google"

    def default_scopes(self) -> List[str]:
        return list(SCOPES)

    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret and self._redirect_uri)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def authorization_url(self, state: str) -> str:
        query = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.default_scopes()),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{AUTHORIZATION_ENDPOINT}?{urlencode(query)}"

    async def _post_token(self, data: Dict[str, str], action: str) -> ProviderTokenResponse:
        try:
            async with self._client() as client:
                response = await client.post(
                    TOKEN_ENDPOINT,
                    data=data,
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException as exc:
            LOGGER.warning("Google %s timed out after %.1fs", action, self._timeout)
            raise TokenExchangeError(
                f"Google {action} timed out", provider_id=self.provider_id
            ) from exc
        except httpx.HTTPError as exc:
            LOGGER.warning("Google %s transport failure: %s", action, exc.__class__.__name__)
            raise TokenExchangeError(
                f"Google {action} failed", provider_id=self.provider_id
            ) from exc

        if response.status_code != 200:
            error_code = _error_code(response)
            LOGGER.error(
                "Google %s rejected (status=%s, error=%s)",
                action,
                response.status_code,
                error_code,
            )
            raise TokenExchangeError(
                f"Google {action} failed",
                provider_id=self.provider_id,
                status_code=response.status_code,
                error_code=error_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise TokenExchangeError(
                f"Google {action} returned a malformed body",
                provider_id=self.provider_id,
                status_code=response.status_code,
            ) from exc

        return ProviderTokenResponse(
            access_token=body.get("access_token") or None,
            refresh_token=body.get("refresh_token") or None,
            expires_in=_optional_int(body.get("expires_in")),
            scope=body.get("scope") or None,
            refresh_token_expires_in=_optional_int(body.get("refresh_token_expires_in")),
        )

    async def exchange_code_for_token(self, code: str) -> ProviderTokenResponse:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "redirect_uri": self._redirect_uri,
        }
        return await self._post_token(data, "code exchange")

    async def refresh_access_token(self, refresh_token: str) -> ProviderTokenResponse:
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        return await self._post_token(data, "token refresh")

    async def get_user_info(self, access_token: str) -> ProviderUserInfo:
        try:
            async with self._client() as client:
                response = await client.get(
                    USERINFO_ENDPOINT,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as exc:
            LOGGER.warning("Google userinfo request failed: %s", exc.__class__.__name__)
            raise UserInfoError(provider_id=self.provider_id) from exc

        if response.status_code != 200:
            LOGGER.error(
                "Google userinfo rejected (status=%s, error=%s)",
                response.status_code,
                _error_code(response),
            )
            raise UserInfoError(provider_id=self.provider_id, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise UserInfoError(
                "Google userinfo returned a malformed body",
                provider_id=self.provider_id,
                status_code=response.status_code,
            ) from exc

        subject = body.get("id")
        return ProviderUserInfo(
            id=str(subject) if subject is not None else None,
            email=body.get("email") or None,
            given_name=body.get("given_name") or None,
            family_name=body.get("family_name") or None,
            name=body.get("name") or None,
            picture=body.get("picture") or None,
        )
