"""Replay of create responses for retried requests.

A client that sends ``Idempotency-Key`` with a create request gets the body of
the first successful response back on every retry with the same key. Keys are
scoped per user, so two users cannot collide.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from splitbook.core.errors import ValidationError
from splitbook.db.dal import Database

IDEMPOTENCY_HEADER = "Idempotency-Key"
MAX_KEY_LENGTH = 255

logger = logging.getLogger("splitbook.idempotency")


def normalize_key(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    key = raw.strip()
    if not key or len(key) > MAX_KEY_LENGTH:
        raise ValidationError(
            f"{IDEMPOTENCY_HEADER} must be between 1 and {MAX_KEY_LENGTH} characters",
            code="INVALID_IDEMPOTENCY_KEY",
        )
    return key


def replay(db: Database, key: Optional[str], user_id: str) -> Optional[Dict[str, Any]]:
    if key is None:
        return None
    stored = db.get_idempotent_response(key, user_id)
    if stored is None:
        return None
    logger.info(
        "idempotent replay", extra={"context": {"key": key, "user_id": user_id}}
    )
    return json.loads(stored)


def encode_body(body: Dict[str, Any]) -> str:
    """Serialized form of a response body as stored for later replays."""
    return json.dumps(body, default=str)
