"""Tests for calendar-month dose scheduling."""

from calendar import monthrange
from datetime import date

import pytest
from hypothesis import given
from hypothesis import strategies as st

from herdcare.domain.models import TreatmentType
from herdcare.services.dose_scheduler import add_months, compute_next_due, preview_next_due


class TestAddMonths:
    @pytest.mark.parametrize(
        "start,months,expected",
        [
            (date(2024, 1, 15), 6, date(2024, 7, 15)),
            (date(2024, 1, 31), 1, date(2024, 2, 29)),
            (date(2023, 1, 31), 1, date(2023, 2, 28)),
            (date(2024, 8, 31), 1, date(2024, 9, 30)),
            (date(2024, 11, 30), 3, date(2025, 2, 28)),
            (date(2024, 12, 10), 12, date(2025, 12, 10)),
            (date(2024, 5, 5), 0, date(2024, 5, 5)),
        ],
    )
    def test_known_dates(self, start: date, months: int, expected: date) -> None:
        assert add_months(start, months) == expected

    @given(
        start=st.dates(min_value=date(1990, 1, 1), max_value=date(2090, 12, 31)),
        months=st.integers(min_value=1, max_value=120),
    )
    def test_lands_on_same_day_of_month_or_clamped(self, start: date, months: int) -> None:
        """Property: exactly N months later, day preserved unless the month is shorter."""
        result = add_months(start, months)

        elapsed = (result.year * 12 + result.month) - (start.year * 12 + start.month)
        assert elapsed == months
        last_day = monthrange(result.year, result.month)[1]
        assert result.day == min(start.day, last_day)


class TestComputeNextDue:
    def test_brucelose_interval(self) -> None:
        assert compute_next_due(date(2024, 1, 15), 6) == date(2024, 7, 15)

    @pytest.mark.parametrize("interval", [None, 0])
    def test_no_interval_means_no_follow_up(self, interval: int | None) -> None:
        assert compute_next_due(date(2024, 1, 15), interval) is None


class TestPreviewNextDue:
    @pytest.fixture
    def brucelose(self) -> TreatmentType:
        return TreatmentType(id="tt-1", name="Brucelose", interval_months=6)

    def test_computed_when_no_override(self, brucelose: TreatmentType) -> None:
        assert preview_next_due(date(2024, 1, 15), brucelose) == date(2024, 7, 15)

    def test_override_replaces_computed_date(self, brucelose: TreatmentType) -> None:
        override = date(2024, 8, 1)
        assert preview_next_due(date(2024, 1, 15), brucelose, override) == override

    def test_single_dose_type_has_no_preview(self) -> None:
        single = TreatmentType(id="tt-2", name="Vermífugo")
        assert preview_next_due(date(2024, 1, 15), single, date(2024, 8, 1)) is None
