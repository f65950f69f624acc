"""Database schema DDL definitions and initialization utilities.

Tables:
  - users: profiles keyed by the identity provider's user id (UUID text)
  - groups: named collections of members sharing a currency
  - group_members: membership with role ('admin' | 'member')
  - expenses / expense_splits: monetary events and their per-user shares
  - settlements: proposed or executed transfers between two members
  - expense_drafts: unconfirmed expenses awaiting review
  - idempotency_keys: stored responses for retried create requests
  - metadata: key/value store (schema version etc.)
"""

from __future__ import annotations
import sqlite3
from typing import Sequence
from pathlib import Path

BASIC_UTC_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"

USERS_DDL = f"""
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    avatar_url TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

GROUPS_DDL = f"""
CREATE TABLE IF NOT EXISTS groups (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL CHECK (length(name) > 0),
    currency_code TEXT NOT NULL DEFAULT 'USD' CHECK (length(currency_code) = 3),
    created_by TEXT REFERENCES users(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

GROUP_MEMBERS_DDL = f"""
CREATE TABLE IF NOT EXISTS group_members (
    group_id TEXT NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    role TEXT NOT NULL DEFAULT 'member' CHECK (role IN ('admin','member')),
    joined_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    PRIMARY KEY (group_id, user_id)
);
"""

EXPENSES_DDL = f"""
CREATE TABLE IF NOT EXISTS expenses (
    id TEXT PRIMARY KEY,
    group_id TEXT NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    title TEXT NOT NULL CHECK (length(title) > 0),
    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
    currency_code TEXT NOT NULL CHECK (length(currency_code) = 3),
    paid_by TEXT NOT NULL REFERENCES users(id),
    receipt_url TEXT,
    description TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

EXPENSE_SPLITS_DDL = f"""
CREATE TABLE IF NOT EXISTS expense_splits (
    id TEXT PRIMARY KEY,
    expense_id TEXT NOT NULL REFERENCES expenses(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    amount_cents INTEGER NOT NULL CHECK (amount_cents >= 0),
    split_type TEXT NOT NULL DEFAULT 'equal' CHECK (split_type IN ('equal','percent','amount','share')),
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    UNIQUE (expense_id, user_id)
);
"""

SETTLEMENTS_DDL = f"""
CREATE TABLE IF NOT EXISTS settlements (
    id TEXT PRIMARY KEY,
    group_id TEXT NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    from_user TEXT NOT NULL REFERENCES users(id),
    to_user TEXT NOT NULL REFERENCES users(id),
    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','completed','cancelled')),
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    CHECK (from_user != to_user)
);
"""

# v1 layout; splits/expense_id/review_reason are added by migration v2
EXPENSE_DRAFTS_DDL = f"""
CREATE TABLE IF NOT EXISTS expense_drafts (
    id TEXT PRIMARY KEY,
    group_id TEXT NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    created_by TEXT NOT NULL REFERENCES users(id),
    title TEXT NOT NULL CHECK (length(title) > 0),
    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
    paid_by TEXT NOT NULL REFERENCES users(id),
    participants TEXT NOT NULL DEFAULT '[]', -- JSON array of user ids
    split_type TEXT NOT NULL DEFAULT 'equal' CHECK (split_type IN ('equal','percent','amount','share')),
    status TEXT NOT NULL DEFAULT 'pending_review' CHECK (status IN ('pending_review','approved','rejected')),
    source TEXT NOT NULL DEFAULT 'manual' CHECK (source IN ('manual','llm_parsed')),
    llm_metadata TEXT, -- JSON object
    validation_warnings TEXT NOT NULL DEFAULT '[]', -- JSON array of strings
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

IDEMPOTENCY_KEYS_DDL = f"""
CREATE TABLE IF NOT EXISTS idempotency_keys (
    key TEXT NOT NULL,
    user_id TEXT NOT NULL,
    response_data TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    PRIMARY KEY (key, user_id)
);
"""

METADATA_DDL = f"""
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

INDEX_DDL: Sequence[str] = (
    "CREATE INDEX IF NOT EXISTS idx_group_members_user ON group_members(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_expenses_group_created ON expenses(group_id, created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_expense_splits_expense ON expense_splits(expense_id);",
    "CREATE INDEX IF NOT EXISTS idx_settlements_group ON settlements(group_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_expense_drafts_group_status ON expense_drafts(group_id, status);",
)

DDL_ORDER: Sequence[str] = (
    USERS_DDL,
    GROUPS_DDL,
    GROUP_MEMBERS_DDL,
    EXPENSES_DDL,
    EXPENSE_SPLITS_DDL,
    SETTLEMENTS_DDL,
    EXPENSE_DRAFTS_DDL,
    IDEMPOTENCY_KEYS_DDL,
    METADATA_DDL,
)


def init_db(path: Path) -> None:
    """Create all tables idempotently.

    Parameters
    ----------
    path: Path to SQLite database file.
    """
    conn = sqlite3.connect(path)
    try:
        cur = conn.cursor()
        for ddl in DDL_ORDER:
            cur.execute(ddl)
        for ddl in INDEX_DDL:
            cur.execute(ddl)
        conn.commit()
    finally:
        conn.close()
