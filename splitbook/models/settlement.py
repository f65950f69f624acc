from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from .common import MAX_AMOUNT_CENTS, UUIDStr
from .constants import SettlementStatus
from .user import UserSummary


class SettlementCreate(BaseModel):
    from_user: UUIDStr
    to_user: UUIDStr
    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)

    @model_validator(mode="after")
    def _not_self(self) -> "SettlementCreate":
        if self.from_user == self.to_user:
            raise ValueError("from_user and to_user cannot be the same")
        return self


class SettlementStatusUpdate(BaseModel):
    status: SettlementStatus


class SettlementOut(BaseModel):
    id: str
    group_id: str
    from_user: str
    from_user_details: Optional[UserSummary] = None
    to_user: str
    to_user_details: Optional[UserSummary] = None
    amount_cents: int
    status: SettlementStatus
    created_at: datetime
    updated_at: datetime


class BalanceOut(BaseModel):
    user_id: str
    user: Optional[UserSummary] = None
    net_cents: int  # positive = owed money, negative = owes money


class SettlementSuggestionOut(BaseModel):
    from_user: str
    from_user_details: Optional[UserSummary] = None
    to_user: str
    to_user_details: Optional[UserSummary] = None
    amount_cents: int
    description: Optional[str] = None


class SettlementSummaryOut(BaseModel):
    total_transactions: int
    total_amount_cents: int
    average_transaction_cents: int
    largest_transaction_cents: int
    smallest_transaction_cents: int


class SettlementPlanOut(BaseModel):
    suggestions: List[SettlementSuggestionOut]
    summary: SettlementSummaryOut
    explanation: str


class BalanceExplanationOut(BaseModel):
    balances: List[BalanceOut]
    explanation: str
