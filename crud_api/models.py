"""Pydantic models shared by the CRUD API routes."""

from __future__ import annotations

from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

PayloadT = TypeVar("PayloadT")


class CamelModel(BaseModel):
    """Serialises snake_case fields as camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ApiResponse(CamelModel, Generic[PayloadT]):
    """Envelope wrapping every successful response.

    Attributes:
        message: Human-readable outcome.
        payload: Endpoint-specific body, or None.
    """

    message: str
    payload: Optional[PayloadT] = None


class UserPublic(CamelModel):
    """User profile as exposed by the API. Provider tokens are never included."""

    id: str
    email: EmailStr
    first_name: str
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    role: str = Field(default="user", description="Either 'user' or 'admin'")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class UserList(CamelModel):
    users: List[UserPublic] = Field(default_factory=list)
    pagination: Pagination
