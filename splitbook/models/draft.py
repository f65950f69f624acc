from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .common import MAX_AMOUNT_CENTS, NonEmptyStr, SplitTypeIn, UUIDStr
from .constants import DraftSource, DraftStatus, SplitType
from .expense import SplitIn
from .user import UserSummary


def _unique_participants(participants: Optional[List[str]]) -> Optional[List[str]]:
    if participants is None:
        return None
    if len(participants) == 0:
        raise ValueError("at least one participant is required")
    # Remove duplicates while preserving order
    seen = set()
    unique = []
    for pid in participants:
        if pid not in seen:
            seen.add(pid)
            unique.append(pid)
    return unique


class DraftCreate(BaseModel):
    title: NonEmptyStr
    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    paid_by: UUIDStr
    participants: List[UUIDStr]
    split_type: SplitTypeIn = "equal"
    splits: Optional[List[SplitIn]] = None
    source: DraftSource = "manual"
    llm_metadata: Optional[Dict[str, Any]] = None

    @field_validator("participants")
    @classmethod
    def _participants(cls, value: List[str]) -> List[str]:
        return _unique_participants(value)


class DraftUpdate(BaseModel):
    title: Optional[NonEmptyStr] = None
    amount_cents: Optional[int] = Field(None, gt=0, le=MAX_AMOUNT_CENTS)
    paid_by: Optional[UUIDStr] = None
    participants: Optional[List[UUIDStr]] = None
    split_type: Optional[SplitTypeIn] = None
    splits: Optional[List[SplitIn]] = None

    @field_validator("participants")
    @classmethod
    def _participants(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _unique_participants(value)

    @model_validator(mode="after")
    def _at_least_one(self) -> "DraftUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        return self


class DraftParseRequest(BaseModel):
    text: NonEmptyStr = Field(..., max_length=2000)


class DraftReview(BaseModel):
    action: Literal["approve", "reject"]
    reason: Optional[str] = None


class DraftOut(BaseModel):
    id: str
    group_id: str
    created_by: str
    created_by_user: Optional[UserSummary] = None
    title: str
    amount_cents: int
    paid_by: str
    paid_by_user: Optional[UserSummary] = None
    participants: List[str]
    split_type: SplitType
    splits: Optional[List[SplitIn]] = None
    status: DraftStatus
    source: DraftSource
    llm_metadata: Optional[Dict[str, Any]] = None
    validation_warnings: Optional[List[str]] = None
    expense_id: Optional[str] = None
    review_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DraftValidationOut(BaseModel):
    is_valid: bool
    errors: List[str]
    warnings: List[str]
