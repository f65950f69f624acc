from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, Generic, List, Optional, TypeVar

from pydantic import AfterValidator, BaseModel

from .constants import SPLIT_TYPE_ALIASES, SPLIT_TYPES, SUPPORTED_CURRENCIES

T = TypeVar("T")

# largest integer a JSON client holds exactly; also well inside SQLite INTEGER
MAX_AMOUNT_CENTS = 2**53 - 1


def _uuid_str(value: str) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except ValueError as exc:
        raise ValueError("must be a valid UUID") from exc


def _currency(value: str) -> str:
    code = value.strip().upper()
    if code not in SUPPORTED_CURRENCIES:
        raise ValueError("unsupported currency")
    return code


def _non_empty(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("cannot be empty")
    return value.strip()


def normalize_split_type(value: str) -> str:
    canonical = SPLIT_TYPE_ALIASES.get(value, value)
    if canonical not in SPLIT_TYPES:
        raise ValueError(f"Invalid split type: {value}")
    return canonical


UUIDStr = Annotated[str, AfterValidator(_uuid_str)]
CurrencyCode = Annotated[str, AfterValidator(_currency)]
NonEmptyStr = Annotated[str, AfterValidator(_non_empty)]
SplitTypeIn = Annotated[str, AfterValidator(normalize_split_type)]


def parse_timestamp(raw) -> Optional[datetime]:
    if raw is None or isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


class Pagination(BaseModel):
    cursor: Optional[str] = None
    has_more: bool
    total: Optional[int] = None


class PaginatedResponse(BaseModel, Generic[T]):
    data: List[T]
    pagination: Pagination
