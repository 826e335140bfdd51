"""Account management schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AccountCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str | None = Field(default=None, max_length=20)


class ParentCreate(AccountCreate):
    address: str | None = None


class AccountUpdate(BaseModel):
    email: EmailStr | None = None
    password: str | None = Field(default=None, min_length=8)
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    phone: str | None = Field(default=None, max_length=20)
    is_active: bool | None = None


class ParentUpdate(AccountUpdate):
    address: str | None = None


class PasswordResetByAdmin(BaseModel):
    new_password: str = Field(min_length=8)


class AccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    first_name: str
    last_name: str
    phone: str | None = None
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime | None = None


class ParentResponse(AccountResponse):
    address: str | None = None
