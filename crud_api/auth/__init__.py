"""OAuth authentication and session management for the CRUD API."""

from .routes import auth_router, oauth_router

__all__ = [
    "auth_router",
    "oauth_router",
]
