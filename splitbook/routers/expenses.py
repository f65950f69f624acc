from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response, status
from fastapi.responses import JSONResponse

from splitbook.core.auth import CurrentUser, get_current_user
from splitbook.core.errors import NotFoundError, ValidationError
from splitbook.db.dal import Database
from splitbook.models.common import PaginatedResponse, parse_timestamp
from splitbook.models.expense import (
    ExpenseEnvelope,
    ExpenseIn,
    ExpenseOut,
    ExpenseSplitOut,
    ExpenseUpdateIn,
)
from splitbook.models.user import UserSummary
from splitbook.routers.deps import (
    get_db,
    get_group_or_404,
    page_limit,
    require_member,
    user_summary,
)
from splitbook.services import idempotency
from splitbook.services.drafts import ensure_members
from splitbook.services.pagination import decode_cursor, paginate
from splitbook.services.splitting import expense_split_lines, split_summary

router = APIRouter(prefix="/v1", tags=["expenses"])
logger = logging.getLogger("splitbook.expenses")


# Helpers ----------------------------------------------------------


def _user_ids(rows: Iterable[dict]) -> set:
    ids = set()
    for row in rows:
        ids.add(row["paid_by"])
        ids.update(s["user_id"] for s in row.get("splits", []))
    return ids


def _row_to_expense_out(row: dict, users: Dict[str, UserSummary]) -> ExpenseOut:
    splits = row.get("splits", [])
    summary = None
    if splits:
        summary = split_summary(
            splits[0]["split_type"], len(splits), row["amount_cents"], row["currency_code"]
        )
    return ExpenseOut(
        id=row["id"],
        group_id=row["group_id"],
        title=row["title"],
        amount_cents=row["amount_cents"],
        currency_code=row["currency_code"],
        paid_by=row["paid_by"],
        paid_by_user=users.get(row["paid_by"]),
        receipt_url=row.get("receipt_url"),
        description=row.get("description"),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        splits=[
            ExpenseSplitOut(
                id=s["id"],
                expense_id=s["expense_id"],
                user_id=s["user_id"],
                amount_cents=s["amount_cents"],
                split_type=s["split_type"],
                created_at=parse_timestamp(s["created_at"]),
                user=users.get(s["user_id"]),
            )
            for s in splits
        ],
        summary=summary,
    )


def _expenses_out(db: Database, rows: List[dict]) -> List[ExpenseOut]:
    users = {uid: user_summary(u) for uid, u in db.get_users(_user_ids(rows)).items()}
    return [_row_to_expense_out(r, users) for r in rows]


def _expense_for_member(db: Database, expense_id: str, user_id: str) -> dict:
    row = db.get_expense(expense_id)
    if not row:
        raise NotFoundError("Expense", expense_id)
    require_member(db, row["group_id"], user_id)
    return row


def _member_ids(db: Database, group_id: str) -> List[str]:
    return [m["user_id"] for m in db.list_members(group_id)]


# Routes -----------------------------------------------------------
@router.get(
    "/groups/{group_id}/expenses",
    response_model=PaginatedResponse[ExpenseOut],
    summary="List group expenses, newest first",
)
async def list_expenses(
    group_id: str,
    request: Request,
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    require_member(db, group_id, user.id)
    size = page_limit(request, limit)
    rows, total = db.list_expenses(group_id, size, decode_cursor(cursor))
    page, pagination = paginate(rows, total, size)
    return PaginatedResponse[ExpenseOut](data=_expenses_out(db, page), pagination=pagination)


@router.post(
    "/groups/{group_id}/expenses",
    response_model=ExpenseEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Create an expense with its splits",
)
async def create_expense(
    group_id: str,
    payload: ExpenseIn,
    idempotency_key: Optional[str] = Header(None, alias=idempotency.IDEMPOTENCY_HEADER),
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    group = get_group_or_404(db, group_id)
    require_member(db, group_id, user.id)

    # 1. Replay a previous result for the same key
    key = idempotency.normalize_key(idempotency_key)
    stored = idempotency.replay(db, key, user.id)
    if stored is not None:
        return JSONResponse(status_code=status.HTTP_200_OK, content=stored)

    # 2. Participants must belong to the group
    member_ids = _member_ids(db, group_id)
    splits_in = payload.splits or []
    ensure_members([payload.paid_by, *(s.user_id for s in splits_in)], member_ids)

    # 3. Compute splits (sum always equals amount_cents)
    lines = expense_split_lines(
        payload.amount_cents, payload.split_type, payload.splits, member_ids
    )

    # 4. Persist expense + splits (+ replay body) atomically
    expense = {
        "title": payload.title,
        "amount_cents": payload.amount_cents,
        "currency_code": payload.currency_code or group["currency_code"],
        "paid_by": payload.paid_by,
        "description": payload.description,
        "receipt_url": str(payload.receipt_url) if payload.receipt_url else None,
    }
    users = {uid: user_summary(u) for uid, u in db.get_users(member_ids).items()}

    def render(row: dict) -> str:
        envelope = ExpenseEnvelope(data=_row_to_expense_out(row, users))
        return idempotency.encode_body(envelope.model_dump(mode="json"))

    expense_id = db.create_expense(
        group_id,
        expense,
        payload.split_type,
        lines,
        idempotency=(key, user.id) if key is not None else None,
        render_response=render,
    )
    logger.info(
        "expense created",
        extra={
            "context": {
                "group_id": group_id,
                "expense_id": expense_id,
                "amount_cents": payload.amount_cents,
                "split_type": payload.split_type,
            }
        },
    )

    return ExpenseEnvelope(data=_row_to_expense_out(db.get_expense(expense_id), users))


@router.get("/expenses/{expense_id}", response_model=ExpenseEnvelope, summary="Get an expense")
async def get_expense(
    expense_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    row = _expense_for_member(db, expense_id, user.id)
    return ExpenseEnvelope(data=_expenses_out(db, [row])[0])


@router.put(
    "/expenses/{expense_id}",
    response_model=ExpenseEnvelope,
    summary="Update an expense; splits are recomputed when amounts change",
)
async def update_expense(
    expense_id: str,
    payload: ExpenseUpdateIn,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    row = _expense_for_member(db, expense_id, user.id)
    member_ids = _member_ids(db, row["group_id"])
    changes: Dict[str, Any] = payload.model_dump(
        exclude_none=True, exclude={"split_type", "splits"}
    )
    if "receipt_url" in changes:
        changes["receipt_url"] = str(changes["receipt_url"])

    to_check = [s.user_id for s in payload.splits or []]
    if payload.paid_by:
        to_check.append(payload.paid_by)
    ensure_members(to_check, member_ids)

    current_type = row["splits"][0]["split_type"] if row["splits"] else "equal"
    split_type = payload.split_type or current_type
    amount = payload.amount_cents or row["amount_cents"]
    lines = None
    if payload.split_type is not None or payload.splits is not None:
        lines = expense_split_lines(amount, split_type, payload.splits, member_ids)
    elif payload.amount_cents is not None and payload.amount_cents != row["amount_cents"]:
        if current_type != "equal":
            raise ValidationError(
                f"Splits are required to change the amount of a '{current_type}' split expense",
                details={"splits": ["required when amount_cents changes"]},
            )
        # keep the same people, re-divide the new total
        current_participants = [s["user_id"] for s in row["splits"]] or member_ids
        lines = expense_split_lines(amount, "equal", None, current_participants)

    db.update_expense(expense_id, changes, split_type if lines is not None else None, lines)
    logger.info(
        "expense updated",
        extra={"context": {"expense_id": expense_id, "resplit": lines is not None}},
    )
    return ExpenseEnvelope(data=_expenses_out(db, [db.get_expense(expense_id)])[0])


@router.delete(
    "/expenses/{expense_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an expense and its splits",
)
async def delete_expense(
    expense_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    _expense_for_member(db, expense_id, user.id)
    db.delete_expense(expense_id)
    logger.info("expense deleted", extra={"context": {"expense_id": expense_id}})
    return Response(status_code=status.HTTP_204_NO_CONTENT)
