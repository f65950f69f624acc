import pytest

from splitbook.services.parsing import (
    CONFIDENT,
    PARSER_NAME,
    UNSURE,
    extract_amount_cents,
    mentioned_members,
    parse_expense_text,
)

MEMBERS = [
    {"id": "u-alice", "name": "Alice Smith"},
    {"id": "u-bob", "name": "Bob Jones"},
    {"id": "u-carol", "name": "Carol"},
]


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Dinner $84.50 with Bob", 8450),
        ("Taxi 12", 1200),
        ("Hotel 1,234.56 for two nights", 123456),
        ("coffee 3.5", 350),
        ("Groceries €20", 2000),
        ("nothing to see here", None),
    ],
)
def test_extract_amount_cents(text, expected):
    assert extract_amount_cents(text) == expected


def test_mentioned_members_matches_first_names():
    assert mentioned_members("lunch with bob and Carol", MEMBERS) == ["u-bob", "u-carol"]


def test_mentioned_members_needs_whole_words():
    assert mentioned_members("bobsled rental", MEMBERS) == []


def test_parse_adds_author_as_payer_and_participant():
    parsed = parse_expense_text("Dinner $84.50 with Bob and Carol", MEMBERS, "u-alice")
    assert parsed.amount_cents == 8450
    assert parsed.paid_by == "u-alice"
    assert parsed.participants == ["u-alice", "u-bob", "u-carol"]
    assert parsed.confidence == CONFIDENT
    assert parsed.warnings == []


def test_parse_without_names_defaults_to_author():
    parsed = parse_expense_text("Parking 8.00", MEMBERS, "u-bob")
    assert parsed.participants == ["u-bob"]
    assert any("No participants detected" in w for w in parsed.warnings)


def test_parse_without_amount_is_unsure():
    parsed = parse_expense_text("Dinner with Bob", MEMBERS, "u-alice")
    assert parsed.amount_cents == 0
    assert parsed.confidence == UNSURE
    assert any("Could not detect" in w for w in parsed.warnings)


def test_llm_metadata_keeps_original_text():
    parsed = parse_expense_text("Taxi 12", MEMBERS, "u-alice")
    assert parsed.llm_metadata("Taxi 12") == {
        "original_text": "Taxi 12",
        "confidence": CONFIDENT,
        "parser": PARSER_NAME,
    }
