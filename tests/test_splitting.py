import pytest

from splitbook.core.errors import ValidationError
from splitbook.models.expense import SplitIn
from splitbook.services.money import format_amount
from splitbook.services.splitting import (
    calculate_splits,
    expense_split_lines,
    require_splits,
    split_summary,
)

A = "11111111-1111-4111-8111-111111111111"
B = "22222222-2222-4222-8222-222222222222"
C = "33333333-3333-4333-8333-333333333333"


def amounts(result):
    return [s.amount_cents for s in result.splits]


class TestEqualSplit:
    def test_remainder_goes_to_first_participants(self):
        result = calculate_splits(1000, "equal", [A, B, C])
        assert result.is_valid
        assert amounts(result) == [334, 333, 333]
        assert result.total_calculated == 1000

    def test_single_participant_takes_everything(self):
        assert amounts(calculate_splits(999, "equal", [A])) == [999]

    def test_requires_participants(self):
        result = calculate_splits(1000, "equal", [])
        assert not result.is_valid
        assert "At least one participant is required" in result.errors

    def test_rejects_non_positive_total(self):
        result = calculate_splits(0, "equal", [A])
        assert not result.is_valid

    def test_rejects_duplicates(self):
        result = calculate_splits(1000, "equal", [A, A])
        assert not result.is_valid
        assert result.errors[0].startswith("Duplicate participants")


class TestAmountSplit:
    def test_exact_sum_is_valid(self):
        splits = [SplitIn(user_id=A, amount_cents=700), SplitIn(user_id=B, amount_cents=300)]
        assert amounts(calculate_splits(1000, "amount", custom_splits=splits)) == [700, 300]

    def test_off_by_one_is_rejected(self):
        splits = [SplitIn(user_id=A, amount_cents=700), SplitIn(user_id=B, amount_cents=299)]
        result = calculate_splits(1000, "amount", custom_splits=splits)
        assert not result.is_valid
        assert "don't match expense total" in result.errors[0]

    def test_exact_alias(self):
        splits = [SplitIn(user_id=A, amount_cents=1000)]
        assert calculate_splits(1000, "exact", custom_splits=splits).is_valid

    def test_missing_custom_splits(self):
        result = calculate_splits(1000, "amount")
        assert result.errors == ["Custom splits required for amount-based splitting"]


class TestPercentSplit:
    def test_rounding_drift_spread_from_first(self):
        splits = [
            SplitIn(user_id=A, percent=33.33),
            SplitIn(user_id=B, percent=33.33),
            SplitIn(user_id=C, percent=33.34),
        ]
        result = calculate_splits(1000, "percent", custom_splits=splits)
        assert result.is_valid
        assert amounts(result) == [334, 333, 333]

    def test_percentage_alias(self):
        splits = [SplitIn(user_id=A, percent=50), SplitIn(user_id=B, percent=50)]
        # 500.5 rounds half to even; the missing cent goes to the first participant
        assert amounts(calculate_splits(1001, "percentage", custom_splits=splits)) == [501, 500]

    def test_must_add_up_to_hundred(self):
        splits = [SplitIn(user_id=A, percent=50), SplitIn(user_id=B, percent=40)]
        result = calculate_splits(1000, "percent", custom_splits=splits)
        assert not result.is_valid
        assert "add up to 100%" in result.errors[0]


class TestShareSplit:
    def test_proportional(self):
        splits = [SplitIn(user_id=A, shares=1), SplitIn(user_id=B, shares=2)]
        assert amounts(calculate_splits(1000, "share", custom_splits=splits)) == [333, 667]

    def test_remainder_to_largest_holder_first_wins_ties(self):
        splits = [
            SplitIn(user_id=A, shares=1),
            SplitIn(user_id=B, shares=1),
            SplitIn(user_id=C, shares=1),
        ]
        assert amounts(calculate_splits(100, "share", custom_splits=splits)) == [34, 33, 33]


@pytest.mark.parametrize("total", [1, 7, 100, 1001, 99999])
def test_valid_results_always_sum_to_total(total):
    assert sum(amounts(calculate_splits(total, "equal", [A, B, C]))) == total
    shares = [SplitIn(user_id=A, shares=3), SplitIn(user_id=B, shares=5), SplitIn(user_id=C, shares=7)]
    assert sum(amounts(calculate_splits(total, "share", custom_splits=shares))) == total


def test_require_splits_raises_with_details():
    with pytest.raises(ValidationError) as excinfo:
        require_splits(1000, "percent", custom_splits=[SplitIn(user_id=A, percent=10)])
    assert excinfo.value.details["splits"]


def test_expense_split_lines_defaults_to_everyone():
    lines = expense_split_lines(900, "equal", None, [A, B, C])
    assert [l.user_id for l in lines] == [A, B, C]
    assert [l.amount_cents for l in lines] == [300, 300, 300]


def test_expense_split_lines_equal_with_named_participants():
    lines = expense_split_lines(
        901, "equal", [SplitIn(user_id=B), SplitIn(user_id=C)], [A, B, C]
    )
    assert [(l.user_id, l.amount_cents) for l in lines] == [(B, 451), (C, 450)]


def test_format_amount():
    assert format_amount(12345, "USD") == "$123.45"
    assert format_amount(500, "EUR") == "€5.00"
    assert format_amount(1500, "JPY") == "¥15"
    assert format_amount(250, "INR") == "INR 2.50"


def test_split_summary():
    assert split_summary("equal", 3, 3000, "USD") == "$30.00 split equally among 3 people (≈$10.00 each)"
    assert split_summary("percentage", 2, 3000) == "$30.00 split by percentages"
