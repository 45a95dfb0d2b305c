"""OAuth identity provider abstraction layer."""

from .base import (
    OAuthProvider,
    ProviderTokenResponse,
    ProviderUserInfo,
    resolve_names,
)
from .google import GoogleOAuthProvider

__all__ = [
    "OAuthProvider",
    "ProviderTokenResponse",
    "ProviderUserInfo",
    "GoogleOAuthProvider",
    "resolve_names",
]
