"""User schemas."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr

from app.models import User, UserRole
from app.utils.gravatar import gravatar_url


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    email: str | None
    role: UserRole
    mfa_enabled: bool
    disabled: bool
    created_at: datetime
    avatar_url: str | None = None

    @classmethod
    def from_user(cls, user: User) -> UserRead:
        read = cls.model_validate(user)
        read.avatar_url = gravatar_url(user.email)
        return read


class EmailUpdateRequest(BaseModel):
    email: EmailStr | None = None


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str
