from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from splitbook.core.auth import CurrentUser, get_current_user
from splitbook.core.errors import NotFoundError, ValidationError
from splitbook.db.dal import Database
from splitbook.models.common import PaginatedResponse, parse_timestamp
from splitbook.models.constants import DraftStatus
from splitbook.models.draft import (
    DraftCreate,
    DraftOut,
    DraftParseRequest,
    DraftReview,
    DraftUpdate,
    DraftValidationOut,
)
from splitbook.models.user import UserSummary
from splitbook.routers.deps import (
    get_db,
    get_group_or_404,
    page_limit,
    require_member,
    user_summary,
)
from splitbook.services.drafts import (
    collect_validation_warnings,
    draft_split_lines,
    ensure_can_manage,
    ensure_members,
    ensure_pending,
    next_status,
    validate_draft,
)
from splitbook.services.pagination import decode_cursor, paginate
from splitbook.services.parsing import parse_expense_text

router = APIRouter(prefix="/v1/groups/{group_id}/drafts", tags=["drafts"])
logger = logging.getLogger("splitbook.drafts")


# Helpers ----------------------------------------------------------


def _row_to_draft(row: dict, users: Dict[str, UserSummary]) -> DraftOut:
    return DraftOut(
        id=row["id"],
        group_id=row["group_id"],
        created_by=row["created_by"],
        created_by_user=users.get(row["created_by"]),
        title=row["title"],
        amount_cents=row["amount_cents"],
        paid_by=row["paid_by"],
        paid_by_user=users.get(row["paid_by"]),
        participants=row["participants"],
        split_type=row["split_type"],
        splits=row.get("splits"),
        status=row["status"],
        source=row["source"],
        llm_metadata=row.get("llm_metadata"),
        validation_warnings=row.get("validation_warnings"),
        expense_id=row.get("expense_id"),
        review_reason=row.get("review_reason"),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def _drafts_out(db: Database, rows: List[dict]) -> List[DraftOut]:
    ids = {r["created_by"] for r in rows} | {r["paid_by"] for r in rows}
    users = {uid: user_summary(u) for uid, u in db.get_users(ids).items()}
    return [_row_to_draft(r, users) for r in rows]


def _get_draft(db: Database, group_id: str, draft_id: str) -> dict:
    draft = db.get_draft(group_id, draft_id)
    if not draft:
        raise NotFoundError("Draft", draft_id, code="DRAFT_NOT_FOUND")
    return draft


def _members(db: Database, group_id: str) -> List[dict]:
    return [
        {"id": m["user_id"], "name": m["user_name"]} for m in db.list_members(group_id)
    ]


def _check_people(draft: Dict[str, Any], member_ids: List[str]) -> None:
    people = [draft["paid_by"], *draft["participants"]]
    people.extend(s["user_id"] for s in draft.get("splits") or [])
    ensure_members(people, member_ids)


def _dump_splits(splits) -> Optional[List[dict]]:
    if splits is None:
        return None
    return [s.model_dump(exclude_none=True) for s in splits]


# Routes -----------------------------------------------------------
@router.get("", response_model=PaginatedResponse[DraftOut], summary="List drafts of a group")
async def list_drafts(
    group_id: str,
    request: Request,
    status_filter: Optional[DraftStatus] = Query(None, alias="status"),
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    require_member(db, group_id, user.id)
    size = page_limit(request, limit)
    rows, total = db.list_drafts(group_id, status_filter, size, decode_cursor(cursor))
    page, pagination = paginate(rows, total, size)
    return PaginatedResponse[DraftOut](data=_drafts_out(db, page), pagination=pagination)


@router.post(
    "",
    response_model=DraftOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft for review",
)
async def create_draft(
    group_id: str,
    payload: DraftCreate,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    require_member(db, group_id, user.id)
    draft = payload.model_dump()
    draft["splits"] = _dump_splits(payload.splits)
    _check_people(draft, [m["id"] for m in _members(db, group_id)])
    draft["validation_warnings"] = collect_validation_warnings(
        draft, request.app.state.settings
    )
    draft_id = db.create_draft(group_id, user.id, draft)
    logger.info(
        "draft created",
        extra={"context": {"group_id": group_id, "draft_id": draft_id, "source": payload.source}},
    )
    return _drafts_out(db, [db.get_draft(group_id, draft_id)])[0]


@router.post(
    "/validate",
    response_model=DraftValidationOut,
    summary="Check a draft without saving it",
)
async def validate_draft_payload(
    group_id: str,
    payload: DraftCreate,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    require_member(db, group_id, user.id)
    draft = payload.model_dump()
    draft["splits"] = _dump_splits(payload.splits)
    result = validate_draft(
        draft, [m["id"] for m in _members(db, group_id)], request.app.state.settings
    )
    logger.info(
        "draft validated",
        extra={"context": {"group_id": group_id, "is_valid": result.is_valid}},
    )
    return DraftValidationOut(
        is_valid=result.is_valid, errors=result.errors, warnings=result.warnings
    )


@router.post(
    "/parse",
    response_model=DraftOut,
    status_code=status.HTTP_201_CREATED,
    summary="Parse free text into a draft",
)
async def parse_draft(
    group_id: str,
    payload: DraftParseRequest,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    require_member(db, group_id, user.id)
    members = _members(db, group_id)
    parsed = parse_expense_text(payload.text, members, user.id)
    if parsed.amount_cents <= 0:
        raise ValidationError(
            "Could not detect a valid amount in the description",
            details={"warnings": parsed.warnings},
        )
    draft: Dict[str, Any] = {
        "title": parsed.title,
        "amount_cents": parsed.amount_cents,
        "paid_by": parsed.paid_by,
        "participants": parsed.participants,
        "split_type": "equal",
        "splits": None,
        "source": "llm_parsed",
        "llm_metadata": parsed.llm_metadata(payload.text),
    }
    draft["validation_warnings"] = parsed.warnings + collect_validation_warnings(
        draft, request.app.state.settings
    )
    draft_id = db.create_draft(group_id, user.id, draft)
    logger.info(
        "draft parsed",
        extra={
            "context": {
                "group_id": group_id,
                "draft_id": draft_id,
                "confidence": parsed.confidence,
            }
        },
    )
    return _drafts_out(db, [db.get_draft(group_id, draft_id)])[0]


@router.get("/{draft_id}", response_model=DraftOut, summary="Get a draft")
async def get_draft(
    group_id: str,
    draft_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    require_member(db, group_id, user.id)
    return _drafts_out(db, [_get_draft(db, group_id, draft_id)])[0]


@router.put("/{draft_id}", response_model=DraftOut, summary="Edit a pending draft")
async def update_draft(
    group_id: str,
    draft_id: str,
    payload: DraftUpdate,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    role = require_member(db, group_id, user.id)
    draft = _get_draft(db, group_id, draft_id)
    ensure_pending(draft, "Only drafts pending review can be edited")
    ensure_can_manage(draft, user.id, role, "edit")

    changes = payload.model_dump(exclude_unset=True, exclude={"splits"})
    changes = {k: v for k, v in changes.items() if v is not None}
    if "splits" in payload.model_fields_set:
        changes["splits"] = _dump_splits(payload.splits)
    merged = {**draft, **changes}
    _check_people(merged, [m["id"] for m in _members(db, group_id)])
    changes["validation_warnings"] = collect_validation_warnings(
        merged, request.app.state.settings
    )
    if not db.update_draft(draft_id, changes):
        raise ValidationError("Only drafts pending review can be edited", code="INVALID_DRAFT_STATUS")
    return _drafts_out(db, [db.get_draft(group_id, draft_id)])[0]


@router.delete(
    "/{draft_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a draft"
)
async def delete_draft(
    group_id: str,
    draft_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    role = require_member(db, group_id, user.id)
    draft = _get_draft(db, group_id, draft_id)
    ensure_can_manage(draft, user.id, role, "delete")
    db.delete_draft(draft_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{draft_id}/review",
    response_model=DraftOut,
    summary="Approve (creating an expense) or reject a draft",
)
async def review_draft(
    group_id: str,
    draft_id: str,
    payload: DraftReview,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    group = get_group_or_404(db, group_id)
    role = require_member(db, group_id, user.id)
    draft = _get_draft(db, group_id, draft_id)
    target = next_status(draft["status"], payload.action)
    ensure_can_manage(draft, user.id, role, "review")

    if target == "approved":
        _check_people(draft, [m["id"] for m in _members(db, group_id)])
        lines = draft_split_lines(draft)
        expense = {
            "title": draft["title"],
            "amount_cents": draft["amount_cents"],
            "currency_code": group["currency_code"],
            "paid_by": draft["paid_by"],
            "description": f"Approved from draft: {draft['title']}",
        }
        expense_id = db.approve_draft(draft, expense, lines, payload.reason)
        if expense_id is None:
            raise ValidationError("Draft is not pending review", code="INVALID_DRAFT_STATUS")
        logger.info(
            "draft approved",
            extra={"context": {"draft_id": draft_id, "expense_id": expense_id}},
        )
    else:
        if not db.reject_draft(draft_id, payload.reason):
            raise ValidationError("Draft is not pending review", code="INVALID_DRAFT_STATUS")
        logger.info("draft rejected", extra={"context": {"draft_id": draft_id}})

    return _drafts_out(db, [db.get_draft(group_id, draft_id)])[0]
