"""Free-text expense parsing.

Turns a sentence such as ``"Dinner $84.50 with Bob and Carol"`` into draft
fields. The parser is deliberately rule-based: first money amount found, group
members mentioned by name, author as payer. Its output always lands in a draft
marked ``llm_parsed`` so a human reviews it before it becomes an expense.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Sequence

PARSER_NAME = "rule-based-v1"
CONFIDENT = 0.8
UNSURE = 0.3

_AMOUNT_RE = re.compile(r"(?<![\w.])[$€£¥]?\s?(\d{1,3}(?:,\d{3})+|\d+)(?:\.(\d{1,2}))?(?![\w])")


@dataclass
class ParsedExpense:
    title: str
    amount_cents: int
    paid_by: str
    participants: List[str]
    confidence: float
    warnings: List[str] = field(default_factory=list)

    def llm_metadata(self, original_text: str) -> Dict[str, Any]:
        return {
            "original_text": original_text,
            "confidence": self.confidence,
            "parser": PARSER_NAME,
        }


def extract_amount_cents(text: str) -> Optional[int]:
    match = _AMOUNT_RE.search(text)
    if not match:
        return None
    whole = match.group(1).replace(",", "")
    fraction = (match.group(2) or "0").ljust(2, "0")
    try:
        value = Decimal(f"{whole}.{fraction}")
    except InvalidOperation:  # pragma: no cover - regex guarantees digits
        return None
    return int(value * 100)


def mentioned_members(text: str, members: Sequence[Mapping[str, Any]]) -> List[str]:
    lowered = text.lower()
    found = []
    for member in members:
        name = (member.get("name") or "").strip().lower()
        if not name:
            continue
        first = name.split()[0]
        if re.search(rf"\b{re.escape(name)}\b", lowered) or re.search(
            rf"\b{re.escape(first)}\b", lowered
        ):
            found.append(member["id"])
    return found


def _title(text: str) -> str:
    title = " ".join(text.split())
    return title if len(title) <= 120 else title[:117] + "..."


def parse_expense_text(
    text: str, members: Sequence[Mapping[str, Any]], user_id: str
) -> ParsedExpense:
    warnings: List[str] = []
    amount = extract_amount_cents(text) or 0
    if amount <= 0:
        warnings.append("Could not detect a valid amount in the description")

    participants = mentioned_members(text, members)
    if not participants:
        warnings.append("No participants detected, defaulting to expense creator")
        participants = [user_id]
    elif user_id not in participants:
        # the author is assumed to share the expense they describe
        participants.insert(0, user_id)

    return ParsedExpense(
        title=_title(text),
        amount_cents=amount,
        paid_by=user_id,
        participants=participants,
        confidence=CONFIDENT if amount > 0 else UNSURE,
        warnings=warnings,
    )
