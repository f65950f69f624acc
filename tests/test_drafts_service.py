import pytest

from splitbook.core.config import Settings
from splitbook.core.errors import ForbiddenError, ValidationError
from splitbook.services.drafts import (
    collect_validation_warnings,
    draft_split_lines,
    ensure_can_manage,
    ensure_members,
    ensure_pending,
    is_terminal,
    next_status,
    validate_draft,
)

A = "11111111-1111-4111-8111-111111111111"
B = "22222222-2222-4222-8222-222222222222"
C = "33333333-3333-4333-8333-333333333333"


@pytest.fixture
def settings():
    return Settings(environment="test")


def make_draft(**overrides):
    draft = {
        "id": "d1",
        "created_by": A,
        "title": "Groceries",
        "amount_cents": 4500,
        "paid_by": A,
        "participants": [A, B],
        "split_type": "equal",
        "splits": None,
        "status": "pending_review",
        "source": "manual",
        "llm_metadata": None,
    }
    draft.update(overrides)
    return draft


class TestTransitions:
    def test_pending_moves_once(self):
        assert next_status("pending_review", "approve") == "approved"
        assert next_status("pending_review", "reject") == "rejected"

    @pytest.mark.parametrize("status", ["approved", "rejected"])
    def test_resolved_drafts_are_terminal(self, status):
        assert is_terminal(status)
        with pytest.raises(ValidationError) as excinfo:
            next_status(status, "approve")
        assert excinfo.value.code == "INVALID_DRAFT_STATUS"

    def test_unknown_action(self):
        with pytest.raises(ValidationError):
            next_status("pending_review", "archive")

    def test_ensure_pending(self):
        ensure_pending(make_draft(), "nope")
        with pytest.raises(ValidationError):
            ensure_pending(make_draft(status="approved"), "nope")


class TestPermissions:
    def test_creator_and_admin_may_manage(self):
        ensure_can_manage(make_draft(), A, "member", "review")
        ensure_can_manage(make_draft(), B, "admin", "review")

    def test_other_members_may_not(self):
        with pytest.raises(ForbiddenError) as excinfo:
            ensure_can_manage(make_draft(), B, "member", "delete")
        assert excinfo.value.code == "INSUFFICIENT_PERMISSIONS"

    def test_outsiders_rejected_as_participants(self):
        with pytest.raises(ValidationError) as excinfo:
            ensure_members([A, C], [A, B])
        assert excinfo.value.code == "INVALID_PARTICIPANTS"
        assert excinfo.value.details == {"user_ids": [C]}


class TestValidationWarnings:
    def test_clean_draft_has_none(self, settings):
        assert collect_validation_warnings(make_draft(), settings) == []

    def test_payer_outside_participants(self, settings):
        warnings = collect_validation_warnings(make_draft(paid_by=C), settings)
        assert "Payer is not among the participants" in warnings

    def test_low_confidence_parse(self, settings):
        draft = make_draft(source="llm_parsed", llm_metadata={"confidence": 0.3})
        warnings = collect_validation_warnings(draft, settings)
        assert any("Low confidence" in w for w in warnings)

    def test_large_amount(self, settings):
        warnings = collect_validation_warnings(make_draft(amount_cents=5_000_000), settings)
        assert any("unusually large" in w for w in warnings)

    def test_non_equal_split_without_splits(self, settings):
        warnings = collect_validation_warnings(make_draft(split_type="amount"), settings)
        assert any("needs per-participant splits" in w for w in warnings)

    def test_splits_that_do_not_add_up(self, settings):
        draft = make_draft(
            split_type="amount",
            splits=[
                {"user_id": A, "amount_cents": 2000},
                {"user_id": B, "amount_cents": 2000},
            ],
        )
        warnings = collect_validation_warnings(draft, settings)
        assert any("don't match expense total" in w for w in warnings)


def test_draft_split_lines_equal():
    lines = draft_split_lines(make_draft(amount_cents=4501))
    assert [(l.user_id, l.amount_cents) for l in lines] == [(A, 2251), (B, 2250)]


def test_draft_split_lines_with_custom_shares():
    draft = make_draft(
        split_type="share",
        splits=[{"user_id": A, "shares": 2}, {"user_id": B, "shares": 1}],
    )
    assert [l.amount_cents for l in draft_split_lines(draft)] == [3000, 1500]


def test_draft_split_lines_invalid():
    with pytest.raises(ValidationError):
        draft_split_lines(make_draft(split_type="percent"))


class TestValidateDraft:
    def test_clean_draft(self, settings):
        result = validate_draft(make_draft(), [A, B, C], settings)
        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    def test_non_members_are_errors(self, settings):
        result = validate_draft(make_draft(paid_by=C, participants=[A, C]), [A, B], settings)
        assert not result.is_valid
        assert "Payer is not a member of this group" in result.errors
        assert f"Some participants are not members of this group: {C}" in result.errors

    def test_split_errors_are_not_repeated_as_warnings(self, settings):
        draft = make_draft(
            split_type="amount",
            splits=[
                {"user_id": A, "amount_cents": 2000},
                {"user_id": B, "amount_cents": 2000},
            ],
        )
        result = validate_draft(draft, [A, B], settings)
        assert result.errors == ["Split amounts (4000) don't match expense total (4500)"]
        assert result.warnings == []

    def test_soft_issues_stay_warnings(self, settings):
        result = validate_draft(make_draft(paid_by=C), [A, B, C], settings)
        assert result.is_valid
        assert result.warnings == ["Payer is not among the participants"]
