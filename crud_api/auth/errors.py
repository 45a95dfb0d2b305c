"""Typed errors raised by the authentication subsystem.

Every error carries an ``AuthErrorKind`` so the HTTP layer can pick a status
code from a lookup table instead of inspecting message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional


class AuthErrorKind(str, Enum):
    """Closed set of failure categories produced by the auth services."""

    CONFIGURATION = "configuration"
    INVALID_REQUEST = "invalid_request"
    UNSUPPORTED_PROVIDER = "unsupported_provider"
    INVALID_STATE = "invalid_state"
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    UPSTREAM = "upstream"
    INTEGRITY = "integrity"
    CONFLICT = "conflict"
    IDENTITY_UNAVAILABLE = "identity_unavailable"
    TRANSACTION_REQUIRED = "transaction_required"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_INACTIVE = "session_inactive"
    REFRESH_EXPIRED = "refresh_expired"


class AuthError(Exception):
    """Base class for every domain error in the auth subsystem."""

    kind: AuthErrorKind = AuthErrorKind.INVALID_REQUEST
    public_message = "Authentication failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.public_message)


class ConfigurationError(AuthError):
    """Secrets or settings are unusable. Fatal at startup."""

    kind = AuthErrorKind.CONFIGURATION
    public_message = "Server misconfiguration"


class UnsupportedProviderError(AuthError):
    kind = AuthErrorKind.UNSUPPORTED_PROVIDER
    public_message = "OAuth provider not supported"

    def __init__(self, provider_id: str, supported: Iterable[str] = ()) -> None:
        self.provider_id = provider_id
        self.supported = sorted(supported)
        super().__init__(f'OAuth provider "{provider_id}" is not supported')


class TokenInvalidError(AuthError):
    """A signed token has a bad signature, bad structure or wrong purpose."""

    kind = AuthErrorKind.TOKEN_INVALID
    public_message = "Invalid token"


class TokenExpiredError(AuthError):
    kind = AuthErrorKind.TOKEN_EXPIRED
    public_message = "Token expired"


class TokenExchangeError(AuthError):
    """The provider rejected a code exchange or refresh, or could not be reached."""

    kind = AuthErrorKind.UPSTREAM
    public_message = "OAuth token exchange failed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        provider_id: Optional[str] = None,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.provider_id = provider_id
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class MissingRefreshTokenError(TokenExchangeError):
    public_message = "Refresh token is required for session creation"


class UserInfoError(AuthError):
    kind = AuthErrorKind.UPSTREAM
    public_message = "Unable to fetch user info from provider"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        provider_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.provider_id = provider_id
        self.status_code = status_code
        super().__init__(message)


class IncompleteUserInfoError(UserInfoError):
    public_message = "User info missing required fields (id, email)"


class IntegrityError(AuthError):
    """Authenticated decryption failed: tampered data or key mismatch."""

    kind = AuthErrorKind.INTEGRITY
    public_message = "Stored credential failed integrity verification"


class TransactionRequiredError(AuthError):
    kind = AuthErrorKind.TRANSACTION_REQUIRED
    public_message = "An active transaction is required for this operation"


class IdentityConflictError(AuthError):
    """A concurrent login for the same identity won the race; safe to retry."""

    kind = AuthErrorKind.CONFLICT
    public_message = "Login is already in progress, please retry"


class SessionNotFoundError(AuthError):
    kind = AuthErrorKind.SESSION_NOT_FOUND
    public_message = "Session not found"


class SessionNotActiveError(AuthError):
    kind = AuthErrorKind.SESSION_INACTIVE
    public_message = "Session is not active"


class RefreshTokenExpiredError(AuthError):
    kind = AuthErrorKind.REFRESH_EXPIRED
    public_message = "Refresh token expired. Please re-authenticate."


class EmailInUseError(AuthError):
    """The provider now reports an email that another active user holds.

    Not a race: retrying cannot succeed until one of the accounts changes.
    """

    kind = AuthErrorKind.IDENTITY_UNAVAILABLE
    public_message = "Unable to complete sign-in for this account"
