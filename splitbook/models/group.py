from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, model_validator

from .common import CurrencyCode, NonEmptyStr
from .constants import DEFAULT_CURRENCY, MemberRole
from .user import UserSummary


class GroupCreate(BaseModel):
    name: NonEmptyStr
    currency_code: CurrencyCode = DEFAULT_CURRENCY


class GroupUpdate(BaseModel):
    name: Optional[NonEmptyStr] = None
    currency_code: Optional[CurrencyCode] = None

    @model_validator(mode="after")
    def _at_least_one(self) -> "GroupUpdate":
        if self.name is None and self.currency_code is None:
            raise ValueError("At least one field must be provided for update")
        return self


class InviteRequest(BaseModel):
    email: EmailStr


class RoleUpdate(BaseModel):
    role: MemberRole


class GroupMemberOut(BaseModel):
    group_id: str
    user_id: str
    role: MemberRole
    joined_at: datetime
    user: Optional[UserSummary] = None


class GroupOut(BaseModel):
    id: str
    name: str
    currency_code: str
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    members: Optional[List[GroupMemberOut]] = None


class InviteResponse(BaseModel):
    message: str
    user: Optional[UserSummary] = None


class RoleUpdateResponse(BaseModel):
    message: str
    member: GroupMemberOut
