"""Opaque keyset cursors for newest-first listings."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict, List, Optional, Tuple

from splitbook.core.errors import ValidationError
from splitbook.models.common import Pagination


def encode_cursor(created_at: str, item_id: str) -> str:
    raw = json.dumps([created_at, item_id]).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: Optional[str]) -> Optional[Tuple[str, str]]:
    if not cursor:
        return None
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        value = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeError) as exc:
        raise ValidationError("Invalid pagination cursor", code="INVALID_CURSOR") from exc
    if (
        not isinstance(value, list)
        or len(value) != 2
        or not all(isinstance(v, str) for v in value)
    ):
        raise ValidationError("Invalid pagination cursor", code="INVALID_CURSOR")
    return value[0], value[1]


def paginate(
    rows: List[Dict[str, Any]], total: int, limit: int
) -> Tuple[List[Dict[str, Any]], Pagination]:
    """Trim a ``limit + 1`` row fetch to one page and describe what follows."""
    has_more = len(rows) > limit
    page = rows[:limit]
    cursor = None
    if has_more and page:
        last = page[-1]
        cursor = encode_cursor(last["created_at"], last["id"])
    return page, Pagination(cursor=cursor, has_more=has_more, total=total)
