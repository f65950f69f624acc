"""Pydantic data contracts shared by the API routers and services."""

from .constants import (
    SUPPORTED_CURRENCIES,
    SPLIT_TYPES,
    DRAFT_STATUSES,
    SETTLEMENT_STATUSES,
)  # re-export
from .common import PaginatedResponse, Pagination
from .user import UserCreate, UserOut, UserSummary
from .group import GroupCreate, GroupOut, GroupMemberOut
from .expense import ExpenseIn, ExpenseOut, ExpenseSplitOut, SplitIn
from .draft import DraftCreate, DraftOut
from .settlement import BalanceOut, SettlementOut, SettlementSuggestionOut

__all__ = [
    "SUPPORTED_CURRENCIES",
    "SPLIT_TYPES",
    "DRAFT_STATUSES",
    "SETTLEMENT_STATUSES",
    "PaginatedResponse",
    "Pagination",
    "UserCreate",
    "UserOut",
    "UserSummary",
    "GroupCreate",
    "GroupOut",
    "GroupMemberOut",
    "ExpenseIn",
    "ExpenseOut",
    "ExpenseSplitOut",
    "SplitIn",
    "DraftCreate",
    "DraftOut",
    "BalanceOut",
    "SettlementOut",
    "SettlementSuggestionOut",
]
