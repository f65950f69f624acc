from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, HttpUrl, field_validator, model_validator

from .common import MAX_AMOUNT_CENTS, CurrencyCode, NonEmptyStr, SplitTypeIn, UUIDStr
from .constants import SplitType
from .user import UserSummary


class SplitIn(BaseModel):
    """Per-participant split input; which field matters depends on split_type."""

    user_id: UUIDStr
    amount_cents: Optional[int] = Field(None, ge=0, le=MAX_AMOUNT_CENTS)
    percent: Optional[float] = Field(None, ge=0, le=100)
    shares: Optional[int] = Field(None, gt=0)


def _check_split_fields(split_type: str, splits: Optional[List[SplitIn]]) -> None:
    if split_type == "equal":
        return
    if not splits:
        raise ValueError(f"Splits array is required for split_type: {split_type}")
    field = {"amount": "amount_cents", "percent": "percent", "share": "shares"}[
        split_type
    ]
    for split in splits:
        if getattr(split, field) is None:
            raise ValueError(f"{field} is required for {split_type} splits")


class ExpenseIn(BaseModel):
    title: NonEmptyStr
    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    currency_code: Optional[CurrencyCode] = None  # defaults to the group currency
    paid_by: UUIDStr
    description: Optional[str] = None
    receipt_url: Optional[HttpUrl] = None
    split_type: SplitTypeIn = "equal"
    splits: Optional[List[SplitIn]] = None

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value is not None else None

    @model_validator(mode="after")
    def _splits_match_type(self) -> "ExpenseIn":
        _check_split_fields(self.split_type, self.splits)
        return self


class ExpenseUpdateIn(BaseModel):
    """Partial update; splits are recomputed whenever amount or split inputs change."""

    title: Optional[NonEmptyStr] = None
    amount_cents: Optional[int] = Field(None, gt=0, le=MAX_AMOUNT_CENTS)
    currency_code: Optional[CurrencyCode] = None
    paid_by: Optional[UUIDStr] = None
    description: Optional[str] = None
    receipt_url: Optional[HttpUrl] = None
    split_type: Optional[SplitTypeIn] = None
    splits: Optional[List[SplitIn]] = None

    @model_validator(mode="after")
    def _at_least_one(self) -> "ExpenseUpdateIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        if self.split_type is not None and self.split_type != "equal":
            _check_split_fields(self.split_type, self.splits)
        return self


class ExpenseSplitOut(BaseModel):
    id: str
    expense_id: str
    user_id: str
    amount_cents: int
    split_type: SplitType
    created_at: datetime
    user: Optional[UserSummary] = None


class ExpenseOut(BaseModel):
    id: str
    group_id: str
    title: str
    amount_cents: int
    currency_code: str
    paid_by: str
    paid_by_user: Optional[UserSummary] = None
    receipt_url: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    splits: List[ExpenseSplitOut] = []
    summary: Optional[str] = None  # e.g. "$30.00 split equally among 3 people"


class ExpenseEnvelope(BaseModel):
    data: ExpenseOut
