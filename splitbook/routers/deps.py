"""Shared router dependencies and access checks."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request

from splitbook.core.errors import ForbiddenError, NotFoundError, ValidationError
from splitbook.db.dal import Database
from splitbook.models.user import UserSummary


def get_db(request: Request) -> Database:
    settings = request.app.state.settings
    return Database(settings.db_path)


def require_profile(db: Database, user_id: str) -> Dict[str, Any]:
    user = db.get_user(user_id)
    if not user:
        raise NotFoundError("User", user_id)
    return user


def get_group_or_404(db: Database, group_id: str) -> Dict[str, Any]:
    group = db.get_group(group_id)
    if not group:
        raise NotFoundError("Group", group_id)
    return group


def require_member(db: Database, group_id: str, user_id: str) -> str:
    """Return the caller's role in the group or raise 403."""
    role = db.get_member_role(group_id, user_id)
    if role is None:
        raise ForbiddenError(
            "You are not a member of this group", code="GROUP_ACCESS_DENIED"
        )
    return role


def require_admin(db: Database, group_id: str, user_id: str, action: str) -> None:
    if require_member(db, group_id, user_id) != "admin":
        raise ForbiddenError(
            f"Only group admins can {action}", code="INSUFFICIENT_PERMISSIONS"
        )


def user_summary(user: Optional[Dict[str, Any]]) -> Optional[UserSummary]:
    if not user:
        return None
    return UserSummary(
        id=user["id"],
        email=user["email"],
        name=user["name"],
        avatar_url=user.get("avatar_url"),
    )


def page_limit(request: Request, limit: Optional[int]) -> int:
    settings = request.app.state.settings
    if limit is None:
        return settings.default_page_limit
    if limit > settings.max_page_limit:
        raise ValidationError(
            f"limit must be between 1 and {settings.max_page_limit}",
            details={"limit": [f"must be <= {settings.max_page_limit}"]},
        )
    return limit
