"""Quote engine: pricing against mocked repositories, cache replay."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from staybook.domain.errors import NotFound, ValidationFailed
from staybook.domain.quote import QuoteRequest, compute_quotes, generate_quotes
from staybook.domain.rate_plans import Adjustment, RatePlan
from staybook.infra.property_settings import PropertySettings
from staybook.infra.repositories.catalog_repository import RoomType

PROPERTY_ID = "prop-1"
CHECKIN = date(2026, 6, 1)
CHECKOUT = date(2026, 6, 3)
NIGHTS = [date(2026, 6, 1), date(2026, 6, 2)]

STD = RoomType(id="rt-std", code="STD", name="Standard", max_adults=2, max_children=1)
FAM = RoomType(id="rt-fam", code="FAM", name="Family", max_adults=4, max_children=3)

BAR = RatePlan(id="rp-bar", code="BAR", name="Best available")
NR = RatePlan(
    id="rp-nr",
    code="NR",
    name="Non refundable",
    parent_id="rp-bar",
    parent_code="BAR",
    derived=Adjustment(type="PERCENTAGE", value=Decimal("-10")),
    cancellation_policy="NON_REFUNDABLE",
)


def _inventory(room_type_id, available=3, price=20000):
    return {
        (room_type_id, day): {
            "date": day, "total": 5, "booked": 5 - available, "available": available, "price_cents": price,
        }
        for day in NIGHTS
    }


@contextmanager
def _repositories(
    *,
    room_types=(STD,),
    plans=(BAR, NR),
    inventory=None,
    rates=None,
    restrictions=None,
    settings=PropertySettings(property_id=PROPERTY_ID, code="P1", name="Pousada"),
):
    with patch("staybook.domain.quote.get_property_settings", return_value=settings), \
         patch("staybook.domain.quote.catalog_repository") as catalog, \
         patch("staybook.domain.quote.inventory_repository") as inv, \
         patch("staybook.domain.quote.restrictions_repository") as restr:
        catalog.list_room_types.return_value = list(room_types)
        catalog.list_rate_plans.return_value = list(plans)
        catalog.fetch_rates.return_value = rates or {}
        inv.fetch_range.return_value = _inventory("rt-std") if inventory is None else inventory
        restr.fetch_range.return_value = restrictions or {}
        yield catalog


def _request(**overrides) -> QuoteRequest:
    params = dict(property_id=PROPERTY_ID, checkin=CHECKIN, checkout=CHECKOUT, adults=2)
    params.update(overrides)
    return QuoteRequest(**params)


def _compute(request=None):
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    return compute_quotes(MagicMock(), request or _request(), now=now, validity=timedelta(minutes=5))


class TestComputeQuotes:
    def test_one_quote_per_plan(self):
        with _repositories():
            quotes = _compute()

        by_plan = {q.rate_plan_code: q for q in quotes}
        assert set(by_plan) == {"BAR", "NR"}
        assert by_plan["BAR"].total_cents == 40000
        assert by_plan["NR"].total_cents == 36000
        assert [n.price_cents for n in by_plan["NR"].nightly] == [18000, 18000]
        assert by_plan["NR"].cancellation_policy == "NON_REFUNDABLE"

    def test_quote_signature_verifies(self):
        with _repositories():
            quote = _compute()[0]
        assert quote.has_valid_signature(quote.pricing_signature)
        assert not quote.has_valid_signature("tampered")

    def test_valid_until_from_validity(self):
        with _repositories():
            quote = _compute()[0]
        assert quote.valid_until.isoformat() == "2026-01-01T00:05:00+00:00"

    def test_sold_out_night_not_offered(self):
        inventory = _inventory("rt-std")
        inventory[("rt-std", NIGHTS[1])]["available"] = 0
        with _repositories(inventory=inventory):
            assert _compute() == []

    def test_missing_inventory_row_not_offered(self):
        inventory = _inventory("rt-std")
        del inventory[("rt-std", NIGHTS[0])]
        with _repositories(inventory=inventory):
            assert _compute() == []

    def test_room_type_too_small_filtered(self):
        with _repositories(room_types=(STD, FAM), inventory={**_inventory("rt-std"), **_inventory("rt-fam")}):
            quotes = _compute(_request(adults=3))
        assert {q.room_type_code for q in quotes} == {"FAM"}

    def test_restricted_plan_filtered(self):
        restrictions = {
            ("rt-std", CHECKIN, "NR"): {
                "min_los": 3, "max_los": None,
                "closed_to_arrival": False, "closed_to_departure": False, "closed": False,
            }
        }
        with _repositories(restrictions=restrictions):
            quotes = _compute()
        assert [q.rate_plan_code for q in quotes] == ["BAR"]

    def test_base_restriction_applies_to_every_plan(self):
        restrictions = {
            ("rt-std", NIGHTS[1], "BASE"): {
                "min_los": None, "max_los": None,
                "closed_to_arrival": False, "closed_to_departure": False, "closed": True,
            }
        }
        with _repositories(restrictions=restrictions):
            assert _compute() == []

    def test_no_rate_plans_uses_implicit_base(self):
        with _repositories(plans=()):
            quotes = _compute()
        assert [q.rate_plan_code for q in quotes] == ["BASE"]
        assert quotes[0].total_cents == 40000

    def test_unknown_property(self):
        with _repositories(settings=None):
            with pytest.raises(NotFound):
                _compute()


class TestRequestValidation:
    def test_checkout_after_checkin(self):
        with pytest.raises(ValidationFailed):
            _request(checkout=CHECKIN).validate()

    def test_at_least_one_adult(self):
        with pytest.raises(ValidationFailed):
            _request(adults=0).validate()

    def test_too_many_ages(self):
        with pytest.raises(ValidationFailed):
            _request(children=1, children_ages=(3, 4)).validate()


class TestGenerateQuotes:
    def _generate(self, cache, request=None):
        with patch("staybook.domain.quote.txn") as mock_txn, \
             _repositories():
            mock_txn.return_value.__enter__.return_value = MagicMock()
            return generate_quotes(request or _request(), cache=cache), mock_txn

    def test_second_call_is_cached(self, quote_cache):
        first, txn_first = self._generate(quote_cache)
        second, txn_second = self._generate(quote_cache)

        assert first.cached is False
        assert second.cached is True
        txn_first.assert_called_once()
        txn_second.assert_not_called()
        assert [q.quote_id for q in first.quotes] == [q.quote_id for q in second.quotes]

    def test_after_ttl_fresh_quote_ids(self, quote_cache, clock):
        first, _ = self._generate(quote_cache)
        clock.advance(seconds=301)
        again, _ = self._generate(quote_cache)

        assert again.cached is False
        assert {q.quote_id for q in first.quotes}.isdisjoint({q.quote_id for q in again.quotes})

    def test_rate_plan_filter_applies_to_cached_entry(self, quote_cache):
        self._generate(quote_cache)
        filtered, _ = self._generate(quote_cache, _request(rate_plan_code="NR"))

        assert filtered.cached is True
        assert [q.rate_plan_code for q in filtered.quotes] == ["NR"]
