"""Data Access Layer for groups, expenses, settlements and drafts.

Responsibilities
----------------
- Provide CRUD helpers for users, groups and memberships.
- Persist expenses together with their splits in a single transaction, and
  convert an approved draft into an expense atomically.
- Offer keyset pagination over ``(created_at, id)`` newest first.
- Store idempotent responses per ``(key, user_id)``.

Rows are returned as plain dicts; JSON text columns on drafts are decoded.
Authorization and business rules live in the routers and services.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from splitbook.services.splitting import SplitLine

UTC_NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"
_UNSET = object()

# keyset position of the last item already returned: (created_at, id)
After = Optional[Tuple[str, str]]
Page = Tuple[List[Dict[str, Any]], int]

_DRAFT_JSON_COLUMNS = ("participants", "splits", "llm_metadata", "validation_warnings")
_EXPENSE_COLUMNS = ("title", "amount_cents", "currency_code", "paid_by", "description", "receipt_url")
_DRAFT_COLUMNS = ("title", "amount_cents", "paid_by", "participants", "split_type", "splits", "validation_warnings")


def _new_id() -> str:
    return str(uuid.uuid4())


def _draft_row(row: sqlite3.Row) -> Dict[str, Any]:
    draft = dict(row)
    for column in _DRAFT_JSON_COLUMNS:
        raw = draft.get(column)
        draft[column] = json.loads(raw) if raw else None
    draft["participants"] = draft["participants"] or []
    return draft


def _encode_draft_value(column: str, value: Any) -> Any:
    if column in _DRAFT_JSON_COLUMNS and value is not None:
        return json.dumps(value)
    return value


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path

    # ------------------------------------------------------------------
    # Connection helpers
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        # SQLite leaves foreign keys off unless asked, per connection
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _page(
        self,
        cur: sqlite3.Cursor,
        columns: str,
        from_sql: str,
        params: Sequence[Any],
        limit: int,
        after: After,
        prefix: str = "",
    ) -> Page:
        """Run a newest-first keyset page; returns up to ``limit + 1`` rows and the total.

        ``from_sql`` must contain a WHERE clause so the keyset condition can be
        appended with AND.
        """
        cur.execute(f"SELECT COUNT(*) {from_sql}", tuple(params))
        total = int(cur.fetchone()[0])
        sql = f"SELECT {columns} {from_sql}"
        page_params: List[Any] = list(params)
        if after is not None:
            sql += (
                f" AND ({prefix}created_at < ? OR ({prefix}created_at = ? AND {prefix}id < ?))"
            )
            page_params.extend([after[0], after[0], after[1]])
        sql += f" ORDER BY {prefix}created_at DESC, {prefix}id DESC LIMIT ?"
        page_params.append(limit + 1)
        cur.execute(sql, page_params)
        return [dict(r) for r in cur.fetchall()], total

    # ------------------------------------------------------------------
    # Users
    def create_user(
        self, user_id: str, email: str, name: str, avatar_url: Optional[str] = None
    ) -> Dict[str, Any]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                INSERT INTO users (id, email, name, avatar_url, created_at, updated_at)
                VALUES (?, ?, ?, ?, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                """,
                (user_id, email.lower(), name, avatar_url),
            )
            conn.commit()
            cur.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            return dict(cur.fetchone())

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()
            return dict(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM users WHERE email = ?", (email.lower(),))
            row = cur.fetchone()
            return dict(row) if row else None

    def get_users(self, user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(f"SELECT * FROM users WHERE id IN ({placeholders})", ids)
            return {r["id"]: dict(r) for r in cur.fetchall()}

    def update_user(
        self, user_id: str, *, name: Any = _UNSET, avatar_url: Any = _UNSET
    ) -> bool:
        updates: List[str] = []
        params: List[Any] = []
        if name is not _UNSET:
            updates.append("name = ?")
            params.append(name)
        if avatar_url is not _UNSET:
            updates.append("avatar_url = ?")
            params.append(avatar_url)
        if not updates:
            return False
        updates.append(f"updated_at = ({UTC_NOW_SQL})")
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE users SET {', '.join(updates)} WHERE id = ?",
                (*params, user_id),
            )
            conn.commit()
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Groups & membership
    def create_group(self, name: str, currency_code: str, created_by: str) -> str:
        group_id = _new_id()
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                INSERT INTO groups (id, name, currency_code, created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                """,
                (group_id, name, currency_code, created_by),
            )
            cur.execute(
                "INSERT INTO group_members (group_id, user_id, role) VALUES (?, ?, 'admin')",
                (group_id, created_by),
            )
            conn.commit()
        return group_id

    def get_group(self, group_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM groups WHERE id = ?", (group_id,))
            row = cur.fetchone()
            return dict(row) if row else None

    def list_groups_for_user(self, user_id: str, limit: int, after: After = None) -> Page:
        with self._connect() as conn:
            return self._page(
                conn.cursor(),
                "g.*",
                "FROM groups g JOIN group_members m ON m.group_id = g.id WHERE m.user_id = ?",
                (user_id,),
                limit,
                after,
                prefix="g.",
            )

    def update_group(
        self, group_id: str, *, name: Any = _UNSET, currency_code: Any = _UNSET
    ) -> bool:
        updates: List[str] = []
        params: List[Any] = []
        if name is not _UNSET:
            updates.append("name = ?")
            params.append(name)
        if currency_code is not _UNSET:
            updates.append("currency_code = ?")
            params.append(currency_code)
        if not updates:
            return False
        updates.append(f"updated_at = ({UTC_NOW_SQL})")
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE groups SET {', '.join(updates)} WHERE id = ?",
                (*params, group_id),
            )
            conn.commit()
            return cur.rowcount > 0

    def delete_group(self, group_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM groups WHERE id = ?", (group_id,))
            conn.commit()
            return cur.rowcount > 0

    def list_members(self, group_id: str) -> List[Dict[str, Any]]:
        """Members with their profile columns prefixed ``user_``, oldest first."""
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT m.group_id, m.user_id, m.role, m.joined_at,
                       u.email AS user_email, u.name AS user_name,
                       u.avatar_url AS user_avatar_url
                FROM group_members m
                JOIN users u ON u.id = m.user_id
                WHERE m.group_id = ?
                ORDER BY m.joined_at ASC, m.user_id ASC
                """,
                (group_id,),
            )
            return [dict(r) for r in cur.fetchall()]

    def get_member_role(self, group_id: str, user_id: str) -> Optional[str]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT role FROM group_members WHERE group_id = ? AND user_id = ?",
                (group_id, user_id),
            )
            row = cur.fetchone()
            return row["role"] if row else None

    def count_admins(self, group_id: str) -> int:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT COUNT(*) FROM group_members WHERE group_id = ? AND role = 'admin'",
                (group_id,),
            )
            return int(cur.fetchone()[0])

    def add_member(self, group_id: str, user_id: str, role: str = "member") -> bool:
        """Insert a membership; False when the user already belongs to the group."""
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "INSERT OR IGNORE INTO group_members (group_id, user_id, role) VALUES (?, ?, ?)",
                (group_id, user_id, role),
            )
            conn.commit()
            return cur.rowcount > 0

    def remove_member(self, group_id: str, user_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "DELETE FROM group_members WHERE group_id = ? AND user_id = ?",
                (group_id, user_id),
            )
            conn.commit()
            return cur.rowcount > 0

    def set_member_role(self, group_id: str, user_id: str, role: str) -> bool:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "UPDATE group_members SET role = ? WHERE group_id = ? AND user_id = ?",
                (role, group_id, user_id),
            )
            conn.commit()
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Expenses & splits
    def _insert_expense(
        self,
        cur: sqlite3.Cursor,
        group_id: str,
        expense: Mapping[str, Any],
        split_type: str,
        splits: Sequence[SplitLine],
    ) -> str:
        expense_id = _new_id()
        cur.execute(
            f"""
            INSERT INTO expenses (
                id, group_id, title, amount_cents, currency_code, paid_by,
                receipt_url, description, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
            """,
            (
                expense_id,
                group_id,
                expense["title"],
                expense["amount_cents"],
                expense["currency_code"],
                expense["paid_by"],
                expense.get("receipt_url"),
                expense.get("description"),
            ),
        )
        self._insert_splits(cur, expense_id, split_type, splits)
        return expense_id

    def _insert_splits(
        self, cur: sqlite3.Cursor, expense_id: str, split_type: str, splits: Sequence[SplitLine]
    ) -> None:
        cur.executemany(
            "INSERT INTO expense_splits (id, expense_id, user_id, amount_cents, split_type) "
            "VALUES (?, ?, ?, ?, ?)",
            [(_new_id(), expense_id, s.user_id, s.amount_cents, split_type) for s in splits],
        )

    def _attach_splits(self, cur: sqlite3.Cursor, expenses: List[Dict[str, Any]]) -> None:
        if not expenses:
            return
        by_id = {e["id"]: e for e in expenses}
        for e in expenses:
            e["splits"] = []
        placeholders = ",".join("?" for _ in by_id)
        cur.execute(
            f"""
            SELECT * FROM expense_splits
            WHERE expense_id IN ({placeholders})
            ORDER BY created_at ASC, rowid ASC
            """,
            list(by_id),
        )
        for row in cur.fetchall():
            by_id[row["expense_id"]]["splits"].append(dict(row))

    def create_expense(
        self,
        group_id: str,
        expense: Mapping[str, Any],
        split_type: str,
        splits: Sequence[SplitLine],
        idempotency: Optional[Tuple[str, str]] = None,
        render_response: Optional[Callable[[Dict[str, Any]], str]] = None,
    ) -> str:
        """Insert an expense and its splits atomically; returns the new id.

        With ``idempotency`` as ``(key, user_id)`` the new expense is passed to
        ``render_response`` and the resulting body is stored in the same
        transaction, so a retried request always finds it.
        """
        with self._connect() as conn:
            cur = conn.cursor()
            try:
                expense_id = self._insert_expense(cur, group_id, expense, split_type, splits)
                if idempotency is not None and render_response is not None:
                    key, user_id = idempotency
                    created = self._fetch_expense(cur, expense_id)
                    self._insert_idempotent_response(cur, key, user_id, render_response(created))
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        return expense_id

    def _fetch_expense(self, cur: sqlite3.Cursor, expense_id: str) -> Optional[Dict[str, Any]]:
        cur.execute("SELECT * FROM expenses WHERE id = ?", (expense_id,))
        row = cur.fetchone()
        if not row:
            return None
        expense = dict(row)
        self._attach_splits(cur, [expense])
        return expense

    def get_expense(self, expense_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            return self._fetch_expense(conn.cursor(), expense_id)

    def list_expenses(self, group_id: str, limit: int, after: After = None) -> Page:
        with self._connect() as conn:
            cur = conn.cursor()
            rows, total = self._page(
                cur, "*", "FROM expenses WHERE group_id = ?", (group_id,), limit, after
            )
            self._attach_splits(cur, rows)
            return rows, total

    def list_group_ledger(self, group_id: str) -> List[Dict[str, Any]]:
        """Every expense of a group with splits; input for balance computation."""
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT id, paid_by, amount_cents FROM expenses WHERE group_id = ?",
                (group_id,),
            )
            expenses = [dict(r) for r in cur.fetchall()]
            self._attach_splits(cur, expenses)
            return expenses

    def update_expense(
        self,
        expense_id: str,
        fields: Mapping[str, Any],
        split_type: Optional[str] = None,
        splits: Optional[Sequence[SplitLine]] = None,
    ) -> bool:
        """Apply field changes and, when ``splits`` is given, replace all splits."""
        updates = [f"{col} = ?" for col in _EXPENSE_COLUMNS if col in fields]
        params = [fields[col] for col in _EXPENSE_COLUMNS if col in fields]
        updates.append(f"updated_at = ({UTC_NOW_SQL})")
        with self._connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute(
                    f"UPDATE expenses SET {', '.join(updates)} WHERE id = ?",
                    (*params, expense_id),
                )
                if cur.rowcount == 0:
                    conn.rollback()
                    return False
                if splits is not None:
                    cur.execute("DELETE FROM expense_splits WHERE expense_id = ?", (expense_id,))
                    self._insert_splits(cur, expense_id, split_type or "equal", splits)
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        return True

    def delete_expense(self, expense_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM expenses WHERE id = ?", (expense_id,))
            conn.commit()
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Settlements
    def create_settlement(
        self, group_id: str, from_user: str, to_user: str, amount_cents: int
    ) -> str:
        settlement_id = _new_id()
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                INSERT INTO settlements (
                    id, group_id, from_user, to_user, amount_cents, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, 'pending', ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                """,
                (settlement_id, group_id, from_user, to_user, amount_cents),
            )
            conn.commit()
        return settlement_id

    def get_settlement(self, settlement_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM settlements WHERE id = ?", (settlement_id,))
            row = cur.fetchone()
            return dict(row) if row else None

    def list_settlements(
        self, group_id: str, status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        query = "SELECT * FROM settlements WHERE group_id = ?"
        params: List[Any] = [group_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, id DESC"
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(query, params)
            return [dict(r) for r in cur.fetchall()]

    def update_settlement_status(self, settlement_id: str, current: str, status: str) -> bool:
        """Compare-and-set the status; False when it no longer equals ``current``."""
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                UPDATE settlements SET status = ?, updated_at = ({UTC_NOW_SQL})
                WHERE id = ? AND status = ?
                """,
                (status, settlement_id, current),
            )
            conn.commit()
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Drafts
    def create_draft(self, group_id: str, created_by: str, draft: Mapping[str, Any]) -> str:
        draft_id = _new_id()
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                INSERT INTO expense_drafts (
                    id, group_id, created_by, title, amount_cents, paid_by, participants,
                    split_type, splits, status, source, llm_metadata, validation_warnings,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending_review', ?, ?, ?,
                          ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                """,
                (
                    draft_id,
                    group_id,
                    created_by,
                    draft["title"],
                    draft["amount_cents"],
                    draft["paid_by"],
                    json.dumps(list(draft["participants"])),
                    draft.get("split_type", "equal"),
                    _encode_draft_value("splits", draft.get("splits")),
                    draft.get("source", "manual"),
                    _encode_draft_value("llm_metadata", draft.get("llm_metadata")),
                    json.dumps(list(draft.get("validation_warnings") or [])),
                ),
            )
            conn.commit()
        return draft_id

    def get_draft(self, group_id: str, draft_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM expense_drafts WHERE id = ? AND group_id = ?",
                (draft_id, group_id),
            )
            row = cur.fetchone()
            return _draft_row(row) if row else None

    def list_drafts(
        self, group_id: str, status: Optional[str], limit: int, after: After = None
    ) -> Page:
        from_sql = "FROM expense_drafts WHERE group_id = ?"
        params: List[Any] = [group_id]
        if status:
            from_sql += " AND status = ?"
            params.append(status)
        with self._connect() as conn:
            rows, total = self._page(conn.cursor(), "*", from_sql, params, limit, after)
        return [_draft_row(r) for r in rows], total

    def update_draft(self, draft_id: str, fields: Mapping[str, Any]) -> bool:
        """Edit a draft that is still pending review; False otherwise."""
        columns = [col for col in _DRAFT_COLUMNS if col in fields]
        updates = [f"{col} = ?" for col in columns]
        params = [_encode_draft_value(col, fields[col]) for col in columns]
        updates.append(f"updated_at = ({UTC_NOW_SQL})")
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE expense_drafts SET {', '.join(updates)} "
                "WHERE id = ? AND status = 'pending_review'",
                (*params, draft_id),
            )
            conn.commit()
            return cur.rowcount > 0

    def approve_draft(
        self,
        draft: Mapping[str, Any],
        expense: Mapping[str, Any],
        splits: Sequence[SplitLine],
        reason: Optional[str] = None,
    ) -> Optional[str]:
        """Create the expense and resolve the draft in one transaction.

        Returns the new expense id, or None when the draft was no longer
        pending (nothing is written in that case).
        """
        with self._connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute(
                    f"""
                    UPDATE expense_drafts
                    SET status = 'approved', review_reason = ?, updated_at = ({UTC_NOW_SQL})
                    WHERE id = ? AND status = 'pending_review'
                    """,
                    (reason, draft["id"]),
                )
                if cur.rowcount == 0:
                    conn.rollback()
                    return None
                expense_id = self._insert_expense(
                    cur, draft["group_id"], expense, draft["split_type"], splits
                )
                cur.execute(
                    "UPDATE expense_drafts SET expense_id = ? WHERE id = ?",
                    (expense_id, draft["id"]),
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        return expense_id

    def reject_draft(self, draft_id: str, reason: Optional[str] = None) -> bool:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                UPDATE expense_drafts
                SET status = 'rejected', review_reason = ?, updated_at = ({UTC_NOW_SQL})
                WHERE id = ? AND status = 'pending_review'
                """,
                (reason, draft_id),
            )
            conn.commit()
            return cur.rowcount > 0

    def delete_draft(self, draft_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM expense_drafts WHERE id = ?", (draft_id,))
            conn.commit()
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Idempotency
    def get_idempotent_response(self, key: str, user_id: str) -> Optional[str]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT response_data FROM idempotency_keys WHERE key = ? AND user_id = ?",
                (key, user_id),
            )
            row = cur.fetchone()
            return row["response_data"] if row else None

    def _insert_idempotent_response(
        self, cur: sqlite3.Cursor, key: str, user_id: str, response_data: str
    ) -> None:
        # first writer wins; a concurrent duplicate keeps the original body
        cur.execute(
            "INSERT OR IGNORE INTO idempotency_keys (key, user_id, response_data) VALUES (?, ?, ?)",
            (key, user_id, response_data),
        )
