"""Group balances and settlement suggestions.

Balances are derived, never stored: the payer of an expense is credited with
the full amount, every split participant is debited their split, and completed
settlements move money from ``from_user`` (credited) to ``to_user`` (debited).
Pending and cancelled settlements do not count.

Suggestions use the greedy debt-settlement approach: repeatedly pair the
largest creditor with the largest debtor and transfer the smaller of the two
amounts. Each transfer zeroes at least one party, so a group of ``n`` people
with non-zero balances needs at most ``n - 1`` transfers.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from splitbook.models.constants import SETTLEMENT_STATUSES
from splitbook.core.errors import ConflictError, ValidationError
from splitbook.services.money import format_amount

# pending -> completed | cancelled; terminal states have no exits
SETTLEMENT_TRANSITIONS: Dict[str, set] = {
    "pending": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


@dataclass
class UserBalance:
    user_id: str
    net_cents: int


@dataclass
class Suggestion:
    from_user: str
    to_user: str
    amount_cents: int
    description: Optional[str] = None


@dataclass
class SettlementCheck:
    is_valid: bool
    errors: List[str]


@dataclass
class SettlementSummary:
    total_transactions: int = 0
    total_amount_cents: int = 0
    average_transaction_cents: int = 0
    largest_transaction_cents: int = 0
    smallest_transaction_cents: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "total_transactions": self.total_transactions,
            "total_amount_cents": self.total_amount_cents,
            "average_transaction_cents": self.average_transaction_cents,
            "largest_transaction_cents": self.largest_transaction_cents,
            "smallest_transaction_cents": self.smallest_transaction_cents,
        }


def compute_balances(
    expenses: Iterable[Mapping],
    settlements: Iterable[Mapping] = (),
    member_ids: Sequence[str] = (),
) -> List[UserBalance]:
    """Net each user's position in a group.

    ``expenses`` items need ``paid_by``, ``amount_cents`` and ``splits`` (each
    with ``user_id`` / ``amount_cents``); ``settlements`` items need
    ``from_user``, ``to_user``, ``amount_cents`` and ``status``. Members listed
    in ``member_ids`` appear even with a zero balance, in that order; other
    users follow in first-seen order.
    """
    nets: Dict[str, int] = {uid: 0 for uid in member_ids}

    for expense in expenses:
        payer = expense["paid_by"]
        nets[payer] = nets.get(payer, 0) + int(expense["amount_cents"])
        for split in expense.get("splits", ()):
            uid = split["user_id"]
            nets[uid] = nets.get(uid, 0) - int(split["amount_cents"])

    for settlement in settlements:
        if settlement.get("status") != "completed":
            continue
        amount = int(settlement["amount_cents"])
        nets[settlement["from_user"]] = nets.get(settlement["from_user"], 0) + amount
        nets[settlement["to_user"]] = nets.get(settlement["to_user"], 0) - amount

    return [UserBalance(user_id=uid, net_cents=net) for uid, net in nets.items()]


def describe_settlement(
    debtor_name: str, creditor_name: str, amount_cents: int, currency_code: str = "USD"
) -> str:
    return f"{debtor_name} pays {creditor_name} {format_amount(amount_cents, currency_code)}"


def suggest_settlements(
    balances: Iterable[UserBalance],
    min_amount_cents: int = 1,
    names: Optional[Mapping[str, str]] = None,
    currency_code: str = "USD",
) -> List[Suggestion]:
    """Propose transfers that bring every balance back to zero."""
    names = names or {}
    # Sort by amount descending, user id ascending so equal balances pair deterministically
    creditors = sorted(
        ([b.user_id, b.net_cents] for b in balances if b.net_cents > 0),
        key=lambda item: (-item[1], item[0]),
    )
    debtors = sorted(
        ([b.user_id, -b.net_cents] for b in balances if b.net_cents < 0),
        key=lambda item: (-item[1], item[0]),
    )

    suggestions: List[Suggestion] = []
    i = j = 0
    while i < len(creditors) and j < len(debtors):
        creditor, debtor = creditors[i], debtors[j]
        amount = min(creditor[1], debtor[1])
        if amount > 0:
            suggestions.append(
                Suggestion(
                    from_user=debtor[0],
                    to_user=creditor[0],
                    amount_cents=amount,
                    description=describe_settlement(
                        names.get(debtor[0], debtor[0]),
                        names.get(creditor[0], creditor[0]),
                        amount,
                        currency_code,
                    ),
                )
            )
            creditor[1] -= amount
            debtor[1] -= amount
        if creditor[1] == 0:
            i += 1
        if debtor[1] == 0:
            j += 1

    return [s for s in suggestions if s.amount_cents >= min_amount_cents]


def validate_settlements(suggestions: Sequence[Suggestion]) -> SettlementCheck:
    errors: List[str] = []
    non_positive = [s for s in suggestions if s.amount_cents <= 0]
    if non_positive:
        errors.append(
            f"Invalid settlement amounts found: {len(non_positive)} settlements with non-positive amounts"
        )
    self_payments = [s for s in suggestions if s.from_user == s.to_user]
    if self_payments:
        errors.append(
            f"Self-payments found: {len(self_payments)} settlements where from_user equals to_user"
        )
    totals: Dict[str, int] = {}
    for s in suggestions:
        totals[s.from_user] = totals.get(s.from_user, 0) - s.amount_cents
        totals[s.to_user] = totals.get(s.to_user, 0) + s.amount_cents
    net = sum(totals.values())
    if net != 0:
        errors.append(f"Settlements don't balance: total sum is {net} cents")
    return SettlementCheck(is_valid=not errors, errors=errors)


def consolidate_settlements(
    suggestions: Iterable[Suggestion], min_amount_cents: int = 50
) -> List[Suggestion]:
    """Merge transfers between the same pair and net opposite directions.

    A merged transfer loses its description, since the amount it quoted changed.
    """
    pairs: Dict[tuple, Suggestion] = {}
    for s in suggestions:
        key, reverse = (s.from_user, s.to_user), (s.to_user, s.from_user)
        if reverse in pairs:
            existing = pairs[reverse]
            net = existing.amount_cents - s.amount_cents
            if net == 0:
                del pairs[reverse]
            elif net > 0:
                existing.amount_cents, existing.description = net, None
            else:
                del pairs[reverse]
                pairs[key] = replace(s, amount_cents=-net, description=None)
        elif key in pairs:
            merged = pairs[key]
            merged.amount_cents, merged.description = merged.amount_cents + s.amount_cents, None
        else:
            pairs[key] = replace(s)
    return [s for s in pairs.values() if s.amount_cents >= min_amount_cents]


def settlement_summary(suggestions: Sequence[Suggestion]) -> SettlementSummary:
    if not suggestions:
        return SettlementSummary()
    amounts = [s.amount_cents for s in suggestions]
    total = sum(amounts)
    return SettlementSummary(
        total_transactions=len(amounts),
        total_amount_cents=total,
        average_transaction_cents=int(round(total / len(amounts))),
        largest_transaction_cents=max(amounts),
        smallest_transaction_cents=min(amounts),
    )


def check_settlement_transition(current: str, target: str) -> None:
    if target not in SETTLEMENT_STATUSES:
        raise ValidationError(f"Unsupported settlement status '{target}'")
    if target not in SETTLEMENT_TRANSITIONS.get(current, set()):
        raise ConflictError(
            f"Cannot change settlement status from {current} to {target}",
            code="INVALID_SETTLEMENT_STATUS",
        )


def explain_balances(
    balances: Sequence[UserBalance],
    names: Optional[Mapping[str, str]] = None,
    currency_code: str = "USD",
    has_activity: bool = True,
) -> str:
    """Plain-language summary of who is owed and who owes."""
    if not has_activity or not balances:
        zero = format_amount(0, currency_code)
        return f"This group has no expenses yet, so everyone's balance is {zero}."
    names = names or {}
    lines = ["Here's the current balance summary:", ""]
    for b in balances:
        name = names.get(b.user_id, b.user_id)
        amount = format_amount(abs(b.net_cents), currency_code)
        if b.net_cents > 0:
            lines.append(f"• {name} is owed {amount}")
        elif b.net_cents < 0:
            lines.append(f"• {name} owes {amount}")
        else:
            lines.append(f"• {name} is all settled up")
    return "\n".join(lines)


def explain_settlements(
    suggestions: Sequence[Suggestion],
    names: Optional[Mapping[str, str]] = None,
    currency_code: str = "USD",
) -> str:
    if not suggestions:
        return "Great! Everyone is already settled up. No payments needed."
    names = names or {}
    count = len(suggestions)
    lines = [f"To settle all balances with {count} payment{'s' if count > 1 else ''}:", ""]
    for index, s in enumerate(suggestions, start=1):
        step = s.description or describe_settlement(
            names.get(s.from_user, s.from_user),
            names.get(s.to_user, s.to_user),
            s.amount_cents,
            currency_code,
        )
        lines.append(f"{index}. {step}")
    return "\n".join(lines)
