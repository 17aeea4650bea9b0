"""Pydantic models for API requests and responses.

Every response carries ``success``; error responses are produced by the
exception handlers in ``main.py`` as ``{"success": false, "error": ...}``.
"""

import re
from typing import Any

from pydantic import BaseModel, field_validator

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# =============================================================================
# Auth Models
# =============================================================================


class RegisterRequest(BaseModel):
    """Request to register a new user."""

    username: str
    password: str
    email: str | None = None

    @field_validator("username")
    @classmethod
    def check_username(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 3 or len(value) > 50:
            raise ValueError("Username must be between 3 and 50 characters")
        if not USERNAME_PATTERN.match(value):
            raise ValueError("Username can only contain letters, numbers, underscores, and hyphens")
        return value

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        if len(value) < 8:
            raise ValueError("Password must be at least 8 characters")
        return value

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value:
            return None
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Invalid email address")
        return value


class LoginRequest(BaseModel):
    """Request to log in with username and password."""

    username: str
    password: str

    @field_validator("username")
    @classmethod
    def strip_username(cls, value: str) -> str:
        return value.strip()


class UserInfo(BaseModel):
    """Public user information."""

    id: int
    uuid: str
    username: str
    email: str | None = None


class AuthResponse(BaseModel):
    """Register/login response with a fresh bearer token."""

    success: bool = True
    user: UserInfo
    token: str


class UserResponse(BaseModel):
    success: bool = True
    user: UserInfo


class MessageResponse(BaseModel):
    success: bool = True
    message: str


# =============================================================================
# Sync Models
# =============================================================================


class SyncRequest(BaseModel):
    """Incremental sync request.

    ``changes`` stays loosely typed: malformed mutations are counted as
    conflicts by the sync engine rather than failing the request.
    """

    lastSyncTime: str | None = None
    changes: list[Any] | None = None


class SyncStatsModel(BaseModel):
    processed: int
    accepted: int
    conflicts: int
    returned: int


class SyncResponse(BaseModel):
    """Incremental sync result."""

    success: bool = True
    serverTime: str
    changes: list[dict[str, Any]]
    stats: SyncStatsModel


class FullSyncUploadResponse(BaseModel):
    success: bool = True
    message: str
    stats: dict[str, int]


class FullSyncDownloadResponse(BaseModel):
    success: bool = True
    ttData: dict[str, Any]


# =============================================================================
# Settings Models
# =============================================================================


class SettingsResponse(BaseModel):
    success: bool = True
    settings: dict[str, Any]
