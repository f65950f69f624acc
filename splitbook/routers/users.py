from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends, Response, status

from splitbook.core.auth import CurrentUser, get_current_user
from splitbook.core.errors import ConflictError, ForbiddenError, NotFoundError
from splitbook.db.dal import Database
from splitbook.models.common import parse_timestamp
from splitbook.models.user import UserCreate, UserOut, UserSummary, UserUpdate
from splitbook.routers.deps import get_db, require_profile

router = APIRouter(prefix="/v1/users", tags=["users"])


def _row_to_user(row: dict) -> UserOut:
    return UserOut(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        avatar_url=row.get("avatar_url"),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


@router.post(
    "",
    response_model=UserOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create the caller's profile",
)
async def create_user(
    payload: UserCreate,
    response: Response,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if payload.id != user.id:
        raise ForbiddenError("You can only create your own profile")
    existing = db.get_user(payload.id)
    if existing:
        response.status_code = status.HTTP_200_OK
        return _row_to_user(existing)
    try:
        row = db.create_user(
            payload.id,
            payload.email,
            payload.name,
            str(payload.avatar_url) if payload.avatar_url else None,
        )
    except sqlite3.IntegrityError as exc:
        # lost a race with a concurrent create for the same id
        existing = db.get_user(payload.id)
        if existing:
            response.status_code = status.HTTP_200_OK
            return _row_to_user(existing)
        raise ConflictError(
            "A user with this email already exists", code="EMAIL_TAKEN"
        ) from exc
    return _row_to_user(row)


@router.get("/me", response_model=UserOut, summary="Get the caller's profile")
async def get_me(
    user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)
):
    return _row_to_user(require_profile(db, user.id))


@router.patch("/me", response_model=UserOut, summary="Update the caller's profile")
async def update_me(
    payload: UserUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    require_profile(db, user.id)
    changes = payload.model_dump(exclude_none=True)
    if "avatar_url" in changes:
        changes["avatar_url"] = str(changes["avatar_url"])
    db.update_user(user.id, **changes)
    return _row_to_user(require_profile(db, user.id))


@router.get("/{user_id}", response_model=UserSummary, summary="Get a user by id")
async def get_user(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    row = db.get_user(user_id)
    if not row:
        raise NotFoundError("User", user_id)
    # public view only: no timestamps
    return UserSummary(
        id=row["id"], email=row["email"], name=row["name"], avatar_url=row.get("avatar_url")
    )
