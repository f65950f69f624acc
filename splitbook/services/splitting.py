"""Expense split calculation.

Turns an expense total (integer cents) and a split configuration into one
amount per participant. Every valid result sums exactly to the total:

- ``equal``: ``total // n`` each; the first ``total % n`` participants absorb
  one extra cent.
- ``amount``: caller supplied amounts, must add up to the total.
- ``percent``: percentages must add up to 100 (0.01 tolerance); rounding
  drift is handed out one cent at a time from the first participant.
- ``share``: proportional to positive integer shares; rounding drift goes to
  the participant holding the most shares.

`calculate_splits` never raises for bad input; it reports problems in
``SplitResult.errors`` so draft review can surface them as warnings.
`require_splits` is the strict variant used when an expense is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from splitbook.core.errors import ValidationError
from splitbook.models.common import normalize_split_type
from splitbook.models.expense import SplitIn
from splitbook.services.money import format_amount

PERCENT_TOLERANCE = 0.01


@dataclass
class SplitLine:
    user_id: str
    amount_cents: int
    percent: Optional[float] = None
    shares: Optional[int] = None


@dataclass
class SplitResult:
    splits: List[SplitLine] = field(default_factory=list)
    total_calculated: int = 0
    is_valid: bool = False
    errors: List[str] = field(default_factory=list)


def _invalid(*errors: str) -> SplitResult:
    return SplitResult(errors=list(errors))


def _finish(total_cents: int, splits: List[SplitLine]) -> SplitResult:
    calculated = sum(s.amount_cents for s in splits)
    errors = []
    if calculated != total_cents:
        errors.append(
            f"Split amounts ({calculated}) don't match expense total ({total_cents})"
        )
    return SplitResult(
        splits=splits,
        total_calculated=calculated,
        is_valid=not errors,
        errors=errors,
    )


def _equal(total_cents: int, participants: Sequence[str]) -> SplitResult:
    base, remainder = divmod(total_cents, len(participants))
    splits = [
        SplitLine(user_id=uid, amount_cents=base + (1 if i < remainder else 0))
        for i, uid in enumerate(participants)
    ]
    return _finish(total_cents, splits)


def _amount(total_cents: int, custom: Sequence[SplitIn]) -> SplitResult:
    errors = [
        f"Invalid amount for user {s.user_id}"
        for s in custom
        if s.amount_cents is None or s.amount_cents < 0
    ]
    if errors:
        return _invalid(*errors)
    splits = [SplitLine(user_id=s.user_id, amount_cents=int(s.amount_cents)) for s in custom]
    return _finish(total_cents, splits)


def _percent(total_cents: int, custom: Sequence[SplitIn]) -> SplitResult:
    errors = [
        f"Invalid percentage for user {s.user_id}: {s.percent}"
        for s in custom
        if s.percent is None or not 0 <= s.percent <= 100
    ]
    if errors:
        return _invalid(*errors)
    total_percent = sum(float(s.percent) for s in custom)
    if abs(total_percent - 100) > PERCENT_TOLERANCE:
        return _invalid(f"Percentages must add up to 100% (got {total_percent:g}%)")

    splits = [
        SplitLine(
            user_id=s.user_id,
            amount_cents=int(round(float(s.percent) / 100 * total_cents)),
            percent=s.percent,
        )
        for s in custom
    ]
    difference = total_cents - sum(s.amount_cents for s in splits)
    step = 1 if difference > 0 else -1
    idx = 0
    while difference != 0:
        target = splits[idx % len(splits)]
        if step > 0 or target.amount_cents > 0:
            target.amount_cents += step
            difference -= step
        idx += 1
    return _finish(total_cents, splits)


def _share(total_cents: int, custom: Sequence[SplitIn]) -> SplitResult:
    errors = [
        f"Invalid shares for user {s.user_id}: {s.shares}"
        for s in custom
        if s.shares is None or s.shares <= 0
    ]
    if errors:
        return _invalid(*errors)
    total_shares = sum(int(s.shares) for s in custom)
    splits = [
        SplitLine(
            user_id=s.user_id,
            amount_cents=int(round(total_cents * int(s.shares) / total_shares)),
            shares=s.shares,
        )
        for s in custom
    ]
    difference = total_cents - sum(s.amount_cents for s in splits)
    if difference:
        # first participant wins ties for the largest share
        largest = max(range(len(splits)), key=lambda i: (splits[i].shares or 0, -i))
        splits[largest].amount_cents += difference
    return _finish(total_cents, splits)


def _duplicates(user_ids: Iterable[str]) -> List[str]:
    seen, dupes = set(), []
    for uid in user_ids:
        if uid in seen and uid not in dupes:
            dupes.append(uid)
        seen.add(uid)
    return dupes


def calculate_splits(
    total_cents: int,
    split_type: str,
    participants: Sequence[str] = (),
    custom_splits: Optional[Sequence[SplitIn]] = None,
) -> SplitResult:
    """Compute per-participant amounts for an expense total."""
    try:
        kind = normalize_split_type(split_type)
    except ValueError as exc:
        return _invalid(str(exc))

    errors = []
    if total_cents <= 0:
        errors.append("Total amount must be positive")
    if kind == "equal" and not participants:
        errors.append("At least one participant is required")
    if errors:
        return _invalid(*errors)

    if kind == "equal":
        dupes = _duplicates(participants)
        if dupes:
            return _invalid(f"Duplicate participants: {', '.join(dupes)}")
        return _equal(total_cents, participants)

    if not custom_splits:
        label = {"amount": "amount-based", "percent": "percentage-based", "share": "share-based"}
        return _invalid(f"Custom splits required for {label[kind]} splitting")
    dupes = _duplicates(s.user_id for s in custom_splits)
    if dupes:
        return _invalid(f"Duplicate participants: {', '.join(dupes)}")

    if kind == "amount":
        return _amount(total_cents, custom_splits)
    if kind == "percent":
        return _percent(total_cents, custom_splits)
    return _share(total_cents, custom_splits)


def require_splits(
    total_cents: int,
    split_type: str,
    participants: Sequence[str] = (),
    custom_splits: Optional[Sequence[SplitIn]] = None,
) -> List[SplitLine]:
    result = calculate_splits(total_cents, split_type, participants, custom_splits)
    if not result.is_valid:
        raise ValidationError(
            "Invalid split configuration", details={"splits": result.errors}
        )
    return result.splits


def split_summary(
    split_type: str, participant_count: int, total_cents: int, currency_code: str = "USD"
) -> str:
    total = format_amount(total_cents, currency_code)
    kind = normalize_split_type(split_type)
    if kind == "equal" and participant_count > 0:
        per_person = format_amount(round(total_cents / participant_count), currency_code)
        return f"{total} split equally among {participant_count} people (≈{per_person} each)"
    labels = {"amount": "custom amounts", "percent": "percentages", "share": "shares"}
    if kind in labels:
        return f"{total} split by {labels[kind]}"
    return f"{total} split"


def expense_split_lines(
    total_cents: int,
    split_type: str,
    custom_splits: Optional[Sequence[SplitIn]],
    default_participants: Sequence[str],
) -> List[SplitLine]:
    """Splits for a persisted expense.

    An equal split without explicit splits is shared by ``default_participants``
    (the whole group); with explicit splits, by the users they name.
    """
    participants: Sequence[str] = default_participants
    if normalize_split_type(split_type) == "equal" and custom_splits:
        participants = [s.user_id for s in custom_splits]
    return require_splits(total_cents, split_type, participants, custom_splits)
