"""Expense draft review rules.

A draft is a candidate expense waiting for a human decision. It starts in
``pending_review`` and moves exactly once, to ``approved`` (an expense is
created from it) or ``rejected``. Resolved drafts are frozen: no edits, no
second review.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from splitbook.core.config import Settings
from splitbook.core.errors import ForbiddenError, ValidationError
from splitbook.models.expense import SplitIn
from splitbook.services.splitting import SplitLine, calculate_splits

DRAFT_TRANSITIONS: Dict[str, set] = {
    "pending_review": {"approved", "rejected"},
    "approved": set(),
    "rejected": set(),
}
REVIEW_ACTIONS = {"approve": "approved", "reject": "rejected"}


@dataclass
class DraftValidation:
    is_valid: bool
    errors: List[str]
    warnings: List[str]


def is_terminal(status: str) -> bool:
    return not DRAFT_TRANSITIONS.get(status)


def ensure_pending(draft: Mapping[str, Any], message: str) -> None:
    if is_terminal(draft["status"]):
        raise ValidationError(message, code="INVALID_DRAFT_STATUS")


def next_status(current: str, action: str) -> str:
    target = REVIEW_ACTIONS.get(action)
    if target is None:
        raise ValidationError(f"Unsupported review action '{action}'")
    if target not in DRAFT_TRANSITIONS.get(current, set()):
        raise ValidationError("Draft is not pending review", code="INVALID_DRAFT_STATUS")
    return target


def ensure_can_manage(draft: Mapping[str, Any], user_id: str, role: Optional[str], verb: str) -> None:
    if draft["created_by"] != user_id and role != "admin":
        raise ForbiddenError(
            f"Only the draft creator or group admin can {verb} this draft",
            code="INSUFFICIENT_PERMISSIONS",
        )


def ensure_members(user_ids: Sequence[str], member_ids: Sequence[str]) -> None:
    members = set(member_ids)
    outsiders = [uid for uid in user_ids if uid not in members]
    if outsiders:
        raise ValidationError(
            "Some participants are not members of this group",
            code="INVALID_PARTICIPANTS",
            details={"user_ids": outsiders},
        )


def split_inputs(raw: Optional[Sequence[Any]]) -> Optional[List[SplitIn]]:
    if raw is None:
        return None
    return [s if isinstance(s, SplitIn) else SplitIn(**s) for s in raw]


def _confidence(llm_metadata: Optional[Mapping[str, Any]]) -> Optional[float]:
    if not llm_metadata:
        return None
    value = llm_metadata.get("confidence")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


def collect_validation_warnings(draft: Mapping[str, Any], settings: Settings) -> List[str]:
    """Soft checks shown to the reviewer; none of them block saving the draft."""
    warnings: List[str] = []
    participants = list(draft.get("participants") or [])
    splits = split_inputs(draft.get("splits"))

    if draft["paid_by"] not in participants:
        warnings.append("Payer is not among the participants")

    if draft.get("source") == "llm_parsed":
        confidence = _confidence(draft.get("llm_metadata"))
        if confidence is None:
            warnings.append("Parser confidence unknown, please review carefully")
        elif confidence < settings.draft_low_confidence_threshold:
            warnings.append("Low confidence in expense parsing, please review carefully")

    if draft["amount_cents"] >= settings.large_amount_warning_cents:
        warnings.append("Amount is unusually large, please double-check it")

    split_type = draft.get("split_type", "equal")
    if split_type != "equal":
        if not splits:
            warnings.append(
                f"Split type '{split_type}' needs per-participant splits before approval"
            )
        else:
            result = calculate_splits(draft["amount_cents"], split_type, participants, splits)
            warnings.extend(result.errors)
            split_users = {s.user_id for s in splits}
            if split_users != set(participants):
                warnings.append("Splits do not cover exactly the listed participants")
    return warnings


def draft_split_lines(draft: Mapping[str, Any]) -> List[SplitLine]:
    """Splits an approved draft turns into; raises ValidationError when impossible."""
    splits = split_inputs(draft.get("splits"))
    result = calculate_splits(
        draft["amount_cents"], draft["split_type"], draft["participants"], splits
    )
    if not result.is_valid:
        raise ValidationError(
            "Draft cannot be approved with its current split configuration",
            details={"splits": result.errors},
        )
    return result.splits


def validate_draft(
    draft: Mapping[str, Any], member_ids: Sequence[str], settings: Settings
) -> DraftValidation:
    """Dry run of create-then-approve: hard errors block approval, warnings do not."""
    errors: List[str] = []
    members = set(member_ids)
    participants = list(draft.get("participants") or [])
    splits = split_inputs(draft.get("splits"))

    if draft["paid_by"] not in members:
        errors.append("Payer is not a member of this group")
    outsiders = [uid for uid in participants if uid not in members]
    outsiders.extend(s.user_id for s in splits or [] if s.user_id not in members)
    if outsiders:
        errors.append(
            "Some participants are not members of this group: "
            + ", ".join(dict.fromkeys(outsiders))
        )

    result = calculate_splits(
        draft["amount_cents"], draft.get("split_type", "equal"), participants, splits
    )
    errors.extend(result.errors)

    warnings = [w for w in collect_validation_warnings(draft, settings) if w not in errors]
    return DraftValidation(is_valid=not errors, errors=errors, warnings=warnings)
