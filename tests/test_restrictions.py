"""Stay restriction rules and their evaluation order."""

from datetime import date

import pytest

from staybook.domain.errors import RestrictionViolation
from staybook.domain.restrictions import check_stay, merge_rows, stay_is_allowed

JUNE_1 = date(2026, 6, 1)
JUNE_2 = date(2026, 6, 2)
JUNE_3 = date(2026, 6, 3)
JUNE_5 = date(2026, 6, 5)


def row(**overrides) -> dict:
    return merge_rows([overrides])


def _violation(restrictions, checkin, checkout) -> RestrictionViolation:
    with pytest.raises(RestrictionViolation) as exc_info:
        check_stay(restrictions, checkin, checkout)
    return exc_info.value


class TestConcreteCases:
    def test_min_los_on_arrival_night(self):
        err = _violation({JUNE_1: row(min_los=3)}, JUNE_1, JUNE_3)
        assert err.code == RestrictionViolation.BELOW_MIN_STAY
        assert "minimum stay" in err.message

    def test_closed_to_arrival(self):
        err = _violation({JUNE_1: row(closed_to_arrival=True)}, JUNE_1, JUNE_3)
        assert err.code == RestrictionViolation.CLOSED_TO_ARRIVAL
        assert "Arrival" in err.message

    def test_closed_date_inside_stay(self):
        err = _violation({JUNE_2: row(closed=True)}, JUNE_1, JUNE_3)
        assert err.code == RestrictionViolation.DATE_CLOSED
        assert "closed" in err.message

    def test_max_los(self):
        err = _violation({JUNE_1: row(max_los=2)}, JUNE_1, JUNE_5)
        assert err.code == RestrictionViolation.EXCEEDS_MAX_STAY
        assert "maximum stay" in err.message

    def test_no_restrictions(self):
        check_stay({}, JUNE_1, JUNE_3)
        assert stay_is_allowed({}, JUNE_1, JUNE_3)


class TestBoundaries:
    def test_closed_on_checkout_date_does_not_block(self):
        # The checkout date is not a night of the stay
        check_stay({JUNE_3: row(closed=True)}, JUNE_1, JUNE_3)

    def test_closed_to_departure_on_checkout(self):
        err = _violation({JUNE_3: row(closed_to_departure=True)}, JUNE_1, JUNE_3)
        assert err.code == RestrictionViolation.CLOSED_TO_DEPARTURE

    def test_closed_to_arrival_mid_stay_is_fine(self):
        check_stay({JUNE_2: row(closed_to_arrival=True)}, JUNE_1, JUNE_3)

    def test_min_los_met_exactly(self):
        check_stay({JUNE_1: row(min_los=2)}, JUNE_1, JUNE_3)


class TestOrder:
    def test_closed_wins_over_everything(self):
        restrictions = {
            JUNE_1: row(closed_to_arrival=True, min_los=5),
            JUNE_2: row(closed=True),
        }
        err = _violation(restrictions, JUNE_1, JUNE_3)
        assert err.code == RestrictionViolation.DATE_CLOSED

    def test_arrival_before_los(self):
        err = _violation({JUNE_1: row(closed_to_arrival=True, min_los=5)}, JUNE_1, JUNE_3)
        assert err.code == RestrictionViolation.CLOSED_TO_ARRIVAL

    def test_min_before_max(self):
        restrictions = {JUNE_1: row(min_los=3), JUNE_2: row(max_los=1)}
        err = _violation(restrictions, JUNE_1, JUNE_3)
        assert err.code == RestrictionViolation.BELOW_MIN_STAY


class TestMergeRows:
    def test_stricter_values_win(self):
        merged = merge_rows(
            [
                {"min_los": 2, "max_los": 10, "closed": False, "closed_to_arrival": True},
                {"min_los": 3, "max_los": 7, "closed": False, "closed_to_departure": True},
            ]
        )
        assert merged == {
            "min_los": 3,
            "max_los": 7,
            "closed_to_arrival": True,
            "closed_to_departure": True,
            "closed": False,
        }

    def test_empty(self):
        assert merge_rows([])["min_los"] is None
