"""Pydantic schemas for authentication routes."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from ..models import CamelModel, UserPublic
from .models import AuthUser


class AuthorizationLink(CamelModel):
    link: str = Field(..., description="Provider consent-screen URL")


class LoginTokens(CamelModel):
    """Bearer credentials issued after a successful OAuth callback."""

    access_token: str
    access_token_expires_at: datetime
    refresh_token: str
    refresh_token_expires_at: datetime
    session_id: str


class RefreshTokenRequest(CamelModel):
    session_id: str = Field(..., min_length=1)
    refresh_token: Optional[str] = Field(
        default=None, description="Service refresh credential; falls back to the refresh cookie"
    )


class RefreshedTokens(CamelModel):
    access_token: str
    access_token_expires_at: datetime
    refresh_token: Optional[str] = None
    refresh_token_expires_at: Optional[datetime] = None


def serialize_user(user: AuthUser) -> UserPublic:
    return UserPublic(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        avatar=user.avatar,
        role=getattr(user.role, "value", user.role),
        created_at=user.created_at,
        updated_at=user.updated_at,
    )
