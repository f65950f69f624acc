from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from splitbook.core.auth import CurrentUser, get_current_user
from splitbook.core.errors import ForbiddenError, NotFoundError
from splitbook.db.dal import Database
from splitbook.models.common import PaginatedResponse, parse_timestamp
from splitbook.models.group import (
    GroupCreate,
    GroupMemberOut,
    GroupOut,
    GroupUpdate,
    InviteRequest,
    InviteResponse,
    RoleUpdate,
    RoleUpdateResponse,
)
from splitbook.models.user import UserSummary
from splitbook.routers.deps import (
    get_db,
    get_group_or_404,
    page_limit,
    require_admin,
    require_member,
    require_profile,
    user_summary,
)
from splitbook.services.pagination import decode_cursor, paginate

router = APIRouter(prefix="/v1/groups", tags=["groups"])
logger = logging.getLogger("splitbook.groups")


def _row_to_member(row: dict) -> GroupMemberOut:
    user = None
    if row.get("user_email") is not None:
        user = UserSummary(
            id=row["user_id"],
            email=row["user_email"],
            name=row["user_name"],
            avatar_url=row.get("user_avatar_url"),
        )
    return GroupMemberOut(
        group_id=row["group_id"],
        user_id=row["user_id"],
        role=row["role"],
        joined_at=parse_timestamp(row["joined_at"]),
        user=user,
    )


def _row_to_group(row: dict, members: Optional[List[dict]] = None) -> GroupOut:
    return GroupOut(
        id=row["id"],
        name=row["name"],
        currency_code=row["currency_code"],
        created_by=row.get("created_by"),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        members=[_row_to_member(m) for m in members] if members is not None else None,
    )


def _find_member(db: Database, group_id: str, user_id: str) -> dict:
    for member in db.list_members(group_id):
        if member["user_id"] == user_id:
            return member
    raise NotFoundError("Group member", user_id)


# Routes -----------------------------------------------------------
@router.get("", response_model=PaginatedResponse[GroupOut], summary="List the caller's groups")
async def list_groups(
    request: Request,
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    size = page_limit(request, limit)
    rows, total = db.list_groups_for_user(user.id, size, decode_cursor(cursor))
    page, pagination = paginate(rows, total, size)
    return PaginatedResponse[GroupOut](
        data=[_row_to_group(r) for r in page], pagination=pagination
    )


@router.post(
    "",
    response_model=GroupOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a group (creator becomes admin)",
)
async def create_group(
    payload: GroupCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    require_profile(db, user.id)
    group_id = db.create_group(payload.name, payload.currency_code, user.id)
    logger.info(
        "group created",
        extra={"context": {"group_id": group_id, "user_id": user.id}},
    )
    return _row_to_group(db.get_group(group_id), db.list_members(group_id))


@router.get("/{group_id}", response_model=GroupOut, summary="Get a group with its members")
async def get_group(
    group_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    group = get_group_or_404(db, group_id)
    require_member(db, group_id, user.id)
    return _row_to_group(group, db.list_members(group_id))


@router.patch("/{group_id}", response_model=GroupOut, summary="Update group details (admin)")
async def update_group(
    group_id: str,
    payload: GroupUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    require_admin(db, group_id, user.id, "update group details")
    db.update_group(group_id, **payload.model_dump(exclude_none=True))
    return _row_to_group(get_group_or_404(db, group_id), db.list_members(group_id))


@router.delete(
    "/{group_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a group and everything in it (admin)",
)
async def delete_group(
    group_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    require_admin(db, group_id, user.id, "delete groups")
    db.delete_group(group_id)
    logger.info(
        "group deleted",
        extra={"context": {"group_id": group_id, "user_id": user.id}},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{group_id}/invite",
    response_model=InviteResponse,
    summary="Add a registered user to the group by email (admin)",
)
async def invite_member(
    group_id: str,
    payload: InviteRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    group = get_group_or_404(db, group_id)
    require_admin(db, group_id, user.id, "invite members")
    invited = db.get_user_by_email(payload.email)
    if not invited:
        raise NotFoundError("User with email", payload.email)
    summary = user_summary(invited)
    if not db.add_member(group_id, invited["id"]):
        return InviteResponse(message="User is already a member of this group", user=summary)
    return InviteResponse(
        message=f"{invited['name']} has been invited to {group['name']}", user=summary
    )


@router.delete(
    "/{group_id}/members/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Leave the group or remove a member (admin)",
)
async def remove_member(
    group_id: str,
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    role = require_member(db, group_id, user.id)
    target = _find_member(db, group_id, user_id)
    if user.id != user_id and role != "admin":
        raise ForbiddenError(
            "You can only remove yourself or be an admin to remove others",
            code="INSUFFICIENT_PERMISSIONS",
        )
    if target["role"] == "admin" and db.count_admins(group_id) == 1:
        raise ForbiddenError("Cannot remove the last admin from the group", code="LAST_ADMIN")
    db.remove_member(group_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch(
    "/{group_id}/members/{user_id}",
    response_model=RoleUpdateResponse,
    summary="Change a member's role (admin)",
)
async def update_member_role(
    group_id: str,
    user_id: str,
    payload: RoleUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    require_admin(db, group_id, user.id, "change member roles")
    target = _find_member(db, group_id, user_id)
    if (
        target["role"] == "admin"
        and payload.role == "member"
        and db.count_admins(group_id) == 1
    ):
        raise ForbiddenError("Cannot demote the last admin", code="LAST_ADMIN")
    db.set_member_role(group_id, user_id, payload.role)
    return RoleUpdateResponse(
        message=f"Member role updated to {payload.role}",
        member=_row_to_member(_find_member(db, group_id, user_id)),
    )
