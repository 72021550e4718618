"""Tests for installment scheduling."""

from datetime import date
from decimal import Decimal

import pytest

from ledgerkit.exceptions import DivisionByZero, SeriesLockedError, ValidationError
from ledgerkit.installments import (
    ANTICIPATED_SUFFIX,
    add_months,
    anticipate_installments,
    expand_installments,
    reschedule_series,
)
from ledgerkit.models import InstallmentIntent, Split, TransactionKind


def intent(amount: str = "100.00", **kwargs) -> InstallmentIntent:
    kwargs.setdefault("date", date(2025, 1, 15))
    kwargs.setdefault("description", "Laptop")
    kwargs.setdefault("account_id", "checking")
    return InstallmentIntent(amount=Decimal(amount), **kwargs)


class TestAddMonths:
    @pytest.mark.parametrize(
        "origin,months,expected",
        [
            (date(2025, 1, 15), 1, date(2025, 2, 15)),
            (date(2025, 1, 31), 1, date(2025, 2, 28)),
            (date(2024, 1, 31), 1, date(2024, 2, 29)),
            (date(2025, 11, 30), 3, date(2026, 2, 28)),
            (date(2025, 3, 31), 0, date(2025, 3, 31)),
        ],
    )
    def test_clamps_to_month_length(self, origin, months, expected):
        assert add_months(origin, months) == expected


class TestExpandInstallments:
    def test_hundred_in_three(self):
        """100.00 in 3 installments is 33.33, 33.33 and 33.34."""
        series = expand_installments(intent("100.00"), 3)
        assert [tx.amount for tx in series] == [
            Decimal("33.33"),
            Decimal("33.33"),
            Decimal("33.34"),
        ]

    @pytest.mark.parametrize("count", [1, 2, 3, 6, 7, 11, 12, 24])
    def test_sums_exactly(self, count):
        series = expand_installments(intent("1234.57"), count)
        assert len(series) == count
        assert sum(tx.amount for tx in series) == Decimal("1234.57")

    def test_dates_follow_monthly_with_clamp(self):
        series = expand_installments(intent(date=date(2025, 1, 31)), 3)
        assert [tx.date for tx in series] == [
            date(2025, 1, 31),
            date(2025, 2, 28),
            date(2025, 3, 31),
        ]

    def test_series_metadata(self):
        series = expand_installments(intent(), 3, series_id="s1")
        assert {tx.series_id for tx in series} == {"s1"}
        assert [tx.id for tx in series] == ["s1-1", "s1-2", "s1-3"]
        assert [tx.installment_number for tx in series] == [1, 2, 3]
        assert all(tx.installment_total == 3 for tx in series)
        assert [tx.description for tx in series] == [
            "Laptop (1/3)",
            "Laptop (2/3)",
            "Laptop (3/3)",
        ]
        assert all(tx.kind is TransactionKind.EXPENSE for tx in series)
        assert all(tx.is_installment for tx in series)

    def test_generated_series_id_is_shared(self):
        series = expand_installments(intent(), 4)
        assert len({tx.series_id for tx in series}) == 1
        assert series[0].series_id

    @pytest.mark.parametrize("count", [1, 2, 3, 4, 6, 7, 11, 12, 24])
    def test_per_member_splits_sum_exactly(self, count):
        splits = [
            Split(member_id="ana", assigned_amount=Decimal("50.00")),
            Split(member_id="bruno", assigned_amount=Decimal("10.01")),
            Split(member_id="carla", assigned_amount=Decimal("0.05")),
        ]
        series = expand_installments(intent("100.00", splits=splits), count)

        for split in splits:
            total = sum(
                s.assigned_amount
                for tx in series
                for s in tx.splits
                if s.member_id == split.member_id
            )
            assert total == split.assigned_amount
        assert sum(tx.amount for tx in series) == Decimal("100.00")
        assert all(tx.is_shared for tx in series)

    def test_existing_counter_not_duplicated(self):
        series = expand_installments(intent(description="Sofa (1/2)"), 2)
        assert series[1].description == "Sofa (2/2)"

    def test_zero_count_raises(self):
        with pytest.raises(DivisionByZero):
            expand_installments(intent(), 0)

    def test_negative_count_raises(self):
        with pytest.raises(ValidationError):
            expand_installments(intent(), -2)


class TestRescheduleSeries:
    def test_regenerates_with_new_count(self):
        series = expand_installments(intent("120.00"), 3, series_id="old")
        rescheduled = reschedule_series(series, 4, series_id="new")

        assert len(rescheduled) == 4
        assert sum(tx.amount for tx in rescheduled) == Decimal("120.00")
        assert rescheduled[0].date == date(2025, 1, 15)
        assert rescheduled[0].description == "Laptop (1/4)"
        assert {tx.series_id for tx in rescheduled} == {"new"}

    def test_settled_series_is_locked(self):
        series = expand_installments(intent(), 3, series_id="s1")
        series[0] = series[0].model_copy(update={"is_settled": True})
        with pytest.raises(SeriesLockedError) as exc_info:
            reschedule_series(series, 2)
        assert exc_info.value.series_id == "s1"

    def test_shared_series_is_locked(self):
        splits = [Split(member_id="ana", assigned_amount=Decimal("30.00"))]
        series = expand_installments(intent("90.00", splits=splits), 3)
        with pytest.raises(SeriesLockedError):
            reschedule_series(series, 6)

    def test_empty_series_rejected(self):
        with pytest.raises(ValidationError):
            reschedule_series([], 3)


class TestAnticipateInstallments:
    def test_moves_selected_installments(self):
        series = expand_installments(intent(), 3, series_id="s1")
        result = anticipate_installments(
            series, ["s1-2", "s1-3"], date(2025, 1, 20), account_id="savings"
        )

        assert result[0] == series[0]
        assert [tx.date for tx in result[1:]] == [date(2025, 1, 20)] * 2
        assert all(tx.account_id == "savings" for tx in result[1:])
        assert result[2].description == f"Laptop (3/3) {ANTICIPATED_SUFFIX}"
        assert result[2].amount == series[2].amount

    def test_suffix_added_once(self):
        series = expand_installments(intent(), 2, series_id="s1")
        once = anticipate_installments(series, ["s1-2"], date(2025, 1, 20))
        twice = anticipate_installments(once, ["s1-2"], date(2025, 1, 21))
        assert twice[1].description.count(ANTICIPATED_SUFFIX) == 1
        assert twice[1].account_id == "checking"

    def test_unknown_ids_rejected(self):
        series = expand_installments(intent(), 2, series_id="s1")
        with pytest.raises(ValidationError):
            anticipate_installments(series, ["other-1"], date(2025, 1, 20))
