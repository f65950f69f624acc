"""Domain constants and enumerations for validation."""

from typing import Literal, Set

SUPPORTED_CURRENCIES: Set[str] = {"USD", "EUR", "GBP", "CAD", "AUD", "JPY", "INR"}
DEFAULT_CURRENCY = "USD"

MemberRole = Literal["admin", "member"]
SplitType = Literal["equal", "percent", "amount", "share"]
DraftStatus = Literal["pending_review", "approved", "rejected"]
DraftSource = Literal["manual", "llm_parsed"]
SettlementStatus = Literal["pending", "completed", "cancelled"]

MEMBER_ROLES: Set[str] = {"admin", "member"}
SPLIT_TYPES: Set[str] = {"equal", "percent", "amount", "share"}
# Accepted on input, stored under the canonical name.
SPLIT_TYPE_ALIASES = {"exact": "amount", "percentage": "percent"}
DRAFT_STATUSES: Set[str] = {"pending_review", "approved", "rejected"}
DRAFT_SOURCES: Set[str] = {"manual", "llm_parsed"}
SETTLEMENT_STATUSES: Set[str] = {"pending", "completed", "cancelled"}
