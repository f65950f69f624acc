from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    HttpUrl,
    field_validator,
    model_validator,
)

from .common import NonEmptyStr, UUIDStr

MAX_NAME_LENGTH = 100


def _check_name_length(value: Optional[str]) -> Optional[str]:
    if value is not None and len(value) > MAX_NAME_LENGTH:
        raise ValueError(f"name cannot exceed {MAX_NAME_LENGTH} characters")
    return value


class UserCreate(BaseModel):
    id: UUIDStr
    email: EmailStr
    name: NonEmptyStr
    avatar_url: Optional[HttpUrl] = None

    @field_validator("name")
    @classmethod
    def _name_length(cls, value: str) -> str:
        return _check_name_length(value)


class UserUpdate(BaseModel):
    name: Optional[NonEmptyStr] = None
    avatar_url: Optional[HttpUrl] = None

    @field_validator("name")
    @classmethod
    def _name_length(cls, value: Optional[str]) -> Optional[str]:
        return _check_name_length(value)

    @model_validator(mode="after")
    def _at_least_one(self) -> "UserUpdate":
        if self.name is None and self.avatar_url is None:
            raise ValueError("At least one field must be provided for update")
        return self


class UserSummary(BaseModel):
    id: str
    email: str
    name: str
    avatar_url: Optional[str] = None


class UserOut(UserSummary):
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
