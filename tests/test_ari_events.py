"""ARI event processor with repositories patched out."""

from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock, patch

import psycopg2
import psycopg2.errors
import pytest

from staybook.domain import ari_events
from staybook.domain.ari_events import (
    AriEvent,
    AvailabilityPayload,
    RateEntry,
    RatePayload,
    generate_event_id,
    process_event,
)
from staybook.domain.patch import RestrictionPatch, Set
from staybook.infra.repositories.catalog_repository import RoomType
from staybook.infra.repositories.inventory_repository import InventoryCounts

from .helpers import make_quote

STD = RoomType(id="rt-std", code="STD", name="Standard", max_adults=2, max_children=0)
JUNE_1 = date(2026, 6, 1)
JUNE_2 = date(2026, 6, 2)


@pytest.fixture
def repos():
    with patch.object(ari_events, "txn") as mock_txn, \
         patch.object(ari_events, "ari_events_repository") as events_repo, \
         patch.object(ari_events, "audit_repository") as audit_repo, \
         patch.object(ari_events, "catalog_repository") as catalog, \
         patch.object(ari_events, "inventory_repository") as inventory, \
         patch.object(ari_events, "restrictions_repository") as restrictions:
        mock_txn.return_value.__enter__.return_value = MagicMock()
        events_repo.insert_event.return_value = True
        catalog.get_room_type_by_code.return_value = STD
        inventory.ensure_row.return_value = False
        inventory.lock_row.return_value = {
            "date": JUNE_1, "total": 5, "booked": 0, "available": 5, "price_cents": 20000,
        }
        yield MagicMock(
            events=events_repo,
            audit=audit_repo,
            catalog=catalog,
            inventory=inventory,
            restrictions=restrictions,
        )


def _event(payload, event_type=ari_events.AVAILABILITY, **overrides) -> AriEvent:
    params = dict(
        event_type=event_type,
        room_type_code="STD",
        date_from=JUNE_1,
        date_to=JUNE_1,
        payload=payload,
        event_id="evt-1",
        channel_code="BOOKING_COM",
    )
    params.update(overrides)
    return AriEvent(**params)


class TestDedupe:
    def test_first_delivery_applied(self, repos):
        result = process_event("prop-1", _event(AvailabilityPayload(available=8)))

        assert result.status == "APPLIED"
        assert result.success is True
        repos.events.mark_status.assert_called_once()
        repos.audit.write_audit.assert_called_once()

    def test_replay_is_deduped_without_applying(self, repos):
        repos.events.insert_event.return_value = False

        result = process_event("prop-1", _event(AvailabilityPayload(available=8)))

        assert result.status == "DEDUPED"
        assert result.success is True
        repos.inventory.write_counts.assert_not_called()

    def test_generated_event_id(self, repos):
        result = process_event("prop-1", _event(AvailabilityPayload(available=1), event_id=None))
        assert result.event_id.startswith("ari_availability_STD_")

    def test_generate_event_id_unique(self):
        assert generate_event_id("RATE", "STD") != generate_event_id("RATE", "STD")


class TestAvailability:
    def test_set_writes_counts(self, repos):
        process_event("prop-1", _event(AvailabilityPayload(available=8)))

        counts = repos.inventory.write_counts.call_args.kwargs["counts"]
        assert counts == InventoryCounts(total=8, booked=0, available=8)

    def test_decrement_clamp_warns(self, repos):
        result = process_event(
            "prop-1", _event(AvailabilityPayload(available=9, update_type="DECREMENT"))
        )

        assert result.status == "APPLIED"
        assert len(result.warnings) == 1
        assert "clamped" in result.warnings[0]
        counts = repos.inventory.write_counts.call_args.kwargs["counts"]
        assert counts.available == 0

    def test_every_date_in_range(self, repos):
        process_event("prop-1", _event(AvailabilityPayload(available=3), date_to=date(2026, 6, 3)))
        assert repos.inventory.write_counts.call_count == 3


class TestRate:
    def test_inventory_price_without_plan(self, repos):
        process_event(
            "prop-1",
            _event(RatePayload(base_rate_cents=25000), event_type=ari_events.RATE, date_to=JUNE_2),
        )

        prices = [c.kwargs["price_cents"] for c in repos.inventory.write_price.call_args_list]
        assert prices == [25000, 25000]
        repos.catalog.upsert_rate.assert_not_called()

    def test_plan_rate_not_manual(self, repos):
        repos.catalog.get_rate_plan_by_code.return_value = MagicMock()
        payload = RatePayload(rates=(RateEntry(date=JUNE_1, price_cents=19900),))

        process_event(
            "prop-1",
            _event(payload, event_type=ari_events.RATE, rate_plan_code="NR"),
        )

        kwargs = repos.catalog.upsert_rate.call_args.kwargs
        assert kwargs["rate_plan_code"] == "NR"
        assert kwargs["amount_cents"] == 19900
        assert kwargs["is_manual_override"] is False

    def test_rate_outside_range_is_error(self, repos):
        payload = RatePayload(rates=(RateEntry(date=date(2026, 7, 1), price_cents=100),))

        result = process_event("prop-1", _event(payload, event_type=ari_events.RATE))

        assert result.status == "ERROR"
        assert result.success is False
        assert "outside" in result.message

    def test_unknown_plan_is_error(self, repos):
        repos.catalog.get_rate_plan_by_code.return_value = None

        result = process_event(
            "prop-1",
            _event(RatePayload(base_rate_cents=100), event_type=ari_events.RATE, rate_plan_code="XX"),
        )

        assert result.status == "ERROR"


class TestRestriction:
    def test_defaults_to_base_plan(self, repos):
        patch_ = RestrictionPatch(closed=Set(True))

        process_event("prop-1", _event(patch_, event_type=ari_events.RESTRICTION))

        kwargs = repos.restrictions.upsert_patch.call_args.kwargs
        assert kwargs["rate_plan_code"] == "BASE"
        assert kwargs["patch"] is patch_

    def test_empty_patch_is_error(self, repos):
        result = process_event("prop-1", _event(RestrictionPatch(), event_type=ari_events.RESTRICTION))
        assert result.status == "ERROR"


class TestErrors:
    def test_unknown_room_type_recorded_as_error(self, repos):
        repos.catalog.get_room_type_by_code.return_value = None

        result = process_event("prop-1", _event(AvailabilityPayload(available=1)))

        assert result.status == "ERROR"
        statuses = [c.kwargs["status"] for c in repos.events.insert_event.call_args_list]
        assert statuses == ["PENDING", "ERROR"]

    def test_reversed_range_is_error(self, repos):
        result = process_event(
            "prop-1", _event(AvailabilityPayload(available=1), date_from=JUNE_2, date_to=JUNE_1)
        )
        assert result.status == "ERROR"

    def test_payload_type_mismatch_is_error(self, repos):
        result = process_event(
            "prop-1", _event(AvailabilityPayload(available=1), event_type=ari_events.RATE)
        )
        assert result.status == "ERROR"

    def test_storage_failure_recorded_as_error(self, repos):
        repos.inventory.write_counts.side_effect = psycopg2.errors.NumericValueOutOfRange(
            "integer out of range"
        )

        result = process_event("prop-1", _event(AvailabilityPayload(available=8)))

        assert result.status == "ERROR"
        assert result.success is False
        assert result.message == "Event could not be stored"
        statuses = [c.kwargs["status"] for c in repos.events.insert_event.call_args_list]
        assert statuses == ["PENDING", "ERROR"]
        error_row = repos.events.insert_event.call_args.kwargs
        assert "NumericValueOutOfRange" in error_row["error_message"]
        repos.events.mark_status.assert_not_called()

    def test_storage_failure_does_not_invalidate_quotes(self, repos):
        cache = MagicMock()
        repos.audit.write_audit.side_effect = psycopg2.OperationalError("connection lost")

        result = process_event(
            "prop-1", _event(AvailabilityPayload(available=8)), quote_cache=cache
        )

        assert result.status == "ERROR"
        cache.invalidate_property.assert_not_called()


class TestCacheInvalidation:
    def test_applied_event_invalidates_property(self, repos, quote_cache):
        quote_cache.set("k", "prop-1", [])
        process_event("prop-1", _event(AvailabilityPayload(available=2)), quote_cache=quote_cache)
        assert quote_cache.get("k") is None

    def test_issued_quote_survives_applied_event(self, repos, quote_cache):
        quote = make_quote()
        quote_cache.set("k", "prop-1", [quote])
        process_event("prop-1", _event(AvailabilityPayload(available=2)), quote_cache=quote_cache)
        assert quote_cache.find_quote("prop-1", quote.quote_id) is quote

    def test_error_keeps_cache(self, repos, quote_cache):
        repos.catalog.get_room_type_by_code.return_value = None
        quote_cache.set("k", "prop-1", [])
        process_event("prop-1", _event(AvailabilityPayload(available=2)), quote_cache=quote_cache)
        assert quote_cache.get("k") is not None
