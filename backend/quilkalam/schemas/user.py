"""
Quilkalam Backend — User & Auth Schemas
========================================

What:  Request/response contracts for registration, login and profile.
Who:   routes/auth.py, routes/users.py and UserService.

Length minimums for phone numbers and passwords come from settings so a
deployment can tighten them without a code change.
"""

import re
import uuid
from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from quilkalam.config import settings
from quilkalam.schemas.common import CamelModel

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class _Credentials(CamelModel):
    phone_number: str
    password: str

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, v: str) -> str:
        v = v.strip()
        if len(v) < settings.phone_min_length:
            raise ValueError(
                f"Phone number must be at least {settings.phone_min_length} characters"
            )
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < settings.password_min_length:
            raise ValueError(
                f"Password must be at least {settings.password_min_length} characters"
            )
        return v


class RegisterRequest(_Credentials):
    display_name: Optional[str] = None


class LoginRequest(_Credentials):
    pass


class UserSummary(CamelModel):
    id: uuid.UUID
    phone_number: str
    display_name: Optional[str] = None


class AuthResponse(CamelModel):
    """Returned by register and login: the user plus a bearer token."""
    success: bool = True
    user: UserSummary
    token: str = Field(description="Bearer token for the Authorization header")


class UserProfile(CamelModel):
    id: uuid.UUID
    phone_number: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    profile_image_url: Optional[str] = None
    bio: Optional[str] = None
    created_at: Optional[datetime] = None


class ProfileResponse(CamelModel):
    user: UserProfile


class ProfileUpdateResponse(CamelModel):
    success: bool = True
    user: UserProfile


class ProfileUpdate(CamelModel):
    """
    Sparse profile update. Only keys present in the request body are written.

    profile_image is an inline image (data URL or base64); it is stored
    through the blob store and its URL lands in profile_image_url.
    """
    display_name: Optional[str] = None
    email: Optional[str] = None
    bio: Optional[str] = None
    profile_image: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _EMAIL_RE.match(v):
            raise ValueError("Invalid email address")
        return v
