from __future__ import annotations

from datetime import datetime

from pydantic import EmailStr, Field, field_validator

from itcrm.core.roles import Role
from itcrm.core.schemas import ApiModel


def _normalize_email(value: str | None) -> str | None:
    return value.strip().lower() if value else value


class RegisterRequest(ApiModel):
    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6, max_length=200)
    role: Role
    manager_id: int | None = Field(default=None, gt=0)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str | None) -> str | None:
        return _normalize_email(value)


class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str | None) -> str | None:
        return _normalize_email(value)


class UserCreate(RegisterRequest):
    is_active: bool = True


class UserUpdate(ApiModel):
    name: str | None = Field(default=None, min_length=2, max_length=100)
    email: EmailStr | None = None
    role: Role | None = None
    is_active: bool | None = None
    manager_id: int | None = Field(default=None, gt=0)
    password: str | None = Field(default=None, min_length=6, max_length=200)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str | None) -> str | None:
        return _normalize_email(value)


class UserRead(ApiModel):
    id: int
    name: str
    email: str
    role: Role
    is_active: bool
    manager_id: int | None
    created_at: datetime


class SessionUserRead(ApiModel):
    id: int
    name: str
    email: str
    role: Role
