from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from splitbook.core.auth import CurrentUser, get_current_user
from splitbook.core.errors import ConflictError, NotFoundError
from splitbook.db.dal import Database
from splitbook.models.common import parse_timestamp
from splitbook.models.constants import SettlementStatus
from splitbook.models.settlement import (
    BalanceExplanationOut,
    BalanceOut,
    SettlementCreate,
    SettlementOut,
    SettlementPlanOut,
    SettlementStatusUpdate,
    SettlementSuggestionOut,
    SettlementSummaryOut,
)
from splitbook.models.user import UserSummary
from splitbook.routers.deps import get_db, get_group_or_404, require_member, user_summary
from splitbook.services.drafts import ensure_members
from splitbook.services.settlements import (
    check_settlement_transition,
    compute_balances,
    consolidate_settlements,
    describe_settlement,
    explain_balances,
    explain_settlements,
    settlement_summary,
    suggest_settlements,
    validate_settlements,
)

router = APIRouter(prefix="/v1", tags=["settlements"])
logger = logging.getLogger("splitbook.settlements")


def _member_summaries(db: Database, group_id: str) -> Dict[str, UserSummary]:
    return {
        m["user_id"]: UserSummary(
            id=m["user_id"],
            email=m["user_email"],
            name=m["user_name"],
            avatar_url=m.get("user_avatar_url"),
        )
        for m in db.list_members(group_id)
    }


def _row_to_settlement(row: dict, users: Dict[str, UserSummary]) -> SettlementOut:
    return SettlementOut(
        id=row["id"],
        group_id=row["group_id"],
        from_user=row["from_user"],
        from_user_details=users.get(row["from_user"]),
        to_user=row["to_user"],
        to_user_details=users.get(row["to_user"]),
        amount_cents=row["amount_cents"],
        status=row["status"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def _summaries_for(db: Database, row: dict) -> Dict[str, UserSummary]:
    users = db.get_users([row["from_user"], row["to_user"]])
    return {uid: user_summary(u) for uid, u in users.items()}


def _group_balances(db: Database, group_id: str, member_ids: List[str]):
    return compute_balances(
        db.list_group_ledger(group_id),
        db.list_settlements(group_id, status="completed"),
        member_ids,
    )


# Routes -----------------------------------------------------------
@router.get(
    "/groups/{group_id}/balances",
    response_model=List[BalanceOut],
    summary="Net balance of every member",
)
async def group_balances(
    group_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    require_member(db, group_id, user.id)
    users = _member_summaries(db, group_id)
    balances = _group_balances(db, group_id, list(users))
    return [
        BalanceOut(user_id=b.user_id, user=users.get(b.user_id), net_cents=b.net_cents)
        for b in balances
    ]


@router.get(
    "/groups/{group_id}/balances/explanation",
    response_model=BalanceExplanationOut,
    summary="Balances with a plain-language summary",
)
async def explain_group_balances(
    group_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    group = get_group_or_404(db, group_id)
    require_member(db, group_id, user.id)
    users = _member_summaries(db, group_id)
    ledger = db.list_group_ledger(group_id)
    completed = db.list_settlements(group_id, status="completed")
    balances = compute_balances(ledger, completed, list(users))
    return BalanceExplanationOut(
        balances=[
            BalanceOut(user_id=b.user_id, user=users.get(b.user_id), net_cents=b.net_cents)
            for b in balances
        ],
        explanation=explain_balances(
            balances,
            {uid: u.name for uid, u in users.items()},
            group["currency_code"],
            has_activity=bool(ledger or completed),
        ),
    )


@router.get(
    "/groups/{group_id}/settlements/suggestions",
    response_model=SettlementPlanOut,
    summary="Minimal transfers that settle the group",
)
async def settlement_suggestions(
    group_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    group = get_group_or_404(db, group_id)
    require_member(db, group_id, user.id)
    settings = request.app.state.settings
    users = _member_summaries(db, group_id)
    names = {uid: u.name for uid, u in users.items()}
    balances = _group_balances(db, group_id, list(users))
    suggestions = consolidate_settlements(
        suggest_settlements(
            balances,
            min_amount_cents=settings.settlement_min_amount_cents,
            names=names,
            currency_code=group["currency_code"],
        ),
        min_amount_cents=settings.settlement_min_amount_cents,
    )
    check = validate_settlements(suggestions)
    if not check.is_valid:
        logger.warning(
            "settlement suggestions failed validation",
            extra={"context": {"group_id": group_id, "errors": check.errors}},
        )
    return SettlementPlanOut(
        suggestions=[
            SettlementSuggestionOut(
                from_user=s.from_user,
                from_user_details=users.get(s.from_user),
                to_user=s.to_user,
                to_user_details=users.get(s.to_user),
                amount_cents=s.amount_cents,
                description=s.description
                or describe_settlement(
                    names.get(s.from_user, s.from_user),
                    names.get(s.to_user, s.to_user),
                    s.amount_cents,
                    group["currency_code"],
                ),
            )
            for s in suggestions
        ],
        summary=SettlementSummaryOut(**settlement_summary(suggestions).as_dict()),
        explanation=explain_settlements(suggestions, names, group["currency_code"]),
    )


@router.get(
    "/groups/{group_id}/settlements",
    response_model=List[SettlementOut],
    summary="List recorded settlements",
)
async def list_settlements(
    group_id: str,
    status_filter: Optional[SettlementStatus] = Query(None, alias="status"),
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    require_member(db, group_id, user.id)
    users = _member_summaries(db, group_id)
    rows = db.list_settlements(group_id, status=status_filter)
    missing = {r[k] for r in rows for k in ("from_user", "to_user")} - set(users)
    if missing:
        # former members keep their history
        users.update({uid: user_summary(u) for uid, u in db.get_users(missing).items()})
    return [_row_to_settlement(r, users) for r in rows]


@router.post(
    "/groups/{group_id}/settlements",
    response_model=SettlementOut,
    status_code=status.HTTP_201_CREATED,
    summary="Record a settlement between two members",
)
async def create_settlement(
    group_id: str,
    payload: SettlementCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    get_group_or_404(db, group_id)
    require_member(db, group_id, user.id)
    users = _member_summaries(db, group_id)
    ensure_members([payload.from_user, payload.to_user], list(users))
    settlement_id = db.create_settlement(
        group_id, payload.from_user, payload.to_user, payload.amount_cents
    )
    logger.info(
        "settlement recorded",
        extra={
            "context": {
                "group_id": group_id,
                "settlement_id": settlement_id,
                "amount_cents": payload.amount_cents,
            }
        },
    )
    return _row_to_settlement(db.get_settlement(settlement_id), users)


@router.patch(
    "/settlements/{settlement_id}",
    response_model=SettlementOut,
    summary="Complete or cancel a pending settlement",
)
async def update_settlement(
    settlement_id: str,
    payload: SettlementStatusUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    row = db.get_settlement(settlement_id)
    if not row:
        raise NotFoundError("Settlement", settlement_id)
    require_member(db, row["group_id"], user.id)
    check_settlement_transition(row["status"], payload.status)
    if not db.update_settlement_status(settlement_id, row["status"], payload.status):
        raise ConflictError(
            "Settlement was modified concurrently", code="INVALID_SETTLEMENT_STATUS"
        )
    updated = db.get_settlement(settlement_id)
    return _row_to_settlement(updated, _summaries_for(db, updated))
