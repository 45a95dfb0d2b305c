"""Base provider interface for OAuth identity providers.

This module defines the abstract base class and data structures every
identity provider integration (Google, ...) implements, so the login and
refresh flows never branch on a provider identifier.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Tuple

DEFAULT_FIRST_NAME = "User"


def resolve_names(
    given_name: Optional[str],
    family_name: Optional[str],
    name: Optional[str],
) -> Tuple[str, str]:
    """Derive ``(first_name, last_name)`` when the provider omits split fields.

    The first whitespace-delimited token of ``name`` becomes the first name
    ("User" when absent); the remaining tokens form the last name.
    """
    tokens = (name or "").split()
    first_name = given_name or (tokens[0] if tokens else DEFAULT_FIRST_NAME)
    last_name = family_name or " ".join(tokens[1:])
    return first_name, last_name


@dataclass
class ProviderTokenResponse:
    """Tokens returned by a code exchange or refresh.

    Attributes:
        access_token: Provider access token, None when the provider omitted it
        refresh_token: Present on first consent and when the provider rotates it
        expires_in: Access token lifetime in seconds
        scope: Space-separated scopes actually granted
        refresh_token_expires_in: Refresh token lifetime, when the provider reports one
    """
    access_token: Optional[str]
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    refresh_token_expires_in: Optional[int] = None


@dataclass
class ProviderUserInfo:
    """Provider-agnostic identity returned by the userinfo endpoint.

    Attributes:
        id: Stable subject identifier at the provider
        email: Primary email address
        given_name: First name when the provider splits names
        family_name: Last name when the provider splits names
        name: Combined display name
        picture: Avatar URL
    """
    id: Optional[str]
    email: Optional[str]
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None

    @property
    def first_name(self) -> str:
        return resolve_names(self.given_name, self.family_name, self.name)[0]

    @property
    def last_name(self) -> str:
        return resolve_names(self.given_name, self.family_name, self.name)[1]


class OAuthProvider(ABC):
    """Abstract base class for OAuth identity providers.

    Implementations are stateless apart from their client credentials, so
    the registry may construct a new instance on every lookup.
    """

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Return the provider identifier used in URLs and session rows."""

    @abstractmethod
    def default_scopes(self) -> List[str]:
        """Return the ordered scopes requested on the consent screen."""

    def is_configured(self) -> bool:
        """Whether the adapter has the client credentials it needs."""
        return True

    @abstractmethod
    def authorization_url(self, state: str) -> str:
        """Build the consent-screen redirect embedding ``state``."""

    @abstractmethod
    async def exchange_code_for_token(self, code: str) -> ProviderTokenResponse:
        """Trade an authorization code for tokens.

        Raises:
            TokenExchangeError: Non-success response, timeout or transport failure.
        """

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> ProviderTokenResponse:
        """Mint a new access token from a stored refresh token.

        Raises:
            TokenExchangeError: The provider rejected the refresh token or
                could not be reached.
        """

    @abstractmethod
    async def get_user_info(self, access_token: str) -> ProviderUserInfo:
        """Fetch the profile of the token's owner.

        Raises:
            UserInfoError: The provider could not identify the caller.
        """
