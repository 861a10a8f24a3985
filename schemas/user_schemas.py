"""Pydantic request/response schemas for auth endpoints."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RegisterUserRequest(BaseModel):
    """Body of POST /auth/register."""
    name: Optional[str] = Field(None, description="Display name")
    profilePicture: Optional[str] = Field(None, description="Avatar URL")
    preference: Optional[str] = Field(None, description="Free-form preference, e.g. 'light'")


class UpdateProfileRequest(BaseModel):
    """Body of PUT /auth/profile."""
    displayName: Optional[str] = None
    profilePicture: Optional[str] = None
    preference: Optional[str] = None


class UserResponse(BaseModel):
    """Internal user record."""
    id: str
    external_id: str = Field(..., description="Identity-provider subject")
    display_name: Optional[str] = None
    email: Optional[str] = None
    profile_picture: Optional[str] = None
    preference: Optional[str] = None
    last_login: Optional[datetime] = None

    model_config = {"from_attributes": True}
