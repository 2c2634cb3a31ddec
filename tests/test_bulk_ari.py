"""Bulk ARI updater: validation, day filtering, propagation and undo guards."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from staybook.domain import bulk_ari
from staybook.domain.bulk_ari import BulkUpdate, undo_bulk, update_bulk
from staybook.domain.errors import AlreadyUndone, NotFound, ValidationFailed
from staybook.domain.patch import BulkFieldsPatch
from staybook.domain.rate_plans import Adjustment, RatePlan
from staybook.infra.repositories.catalog_repository import RoomType

STD = RoomType(id="rt-std", code="STD", name="Standard", max_adults=2, max_children=0)
BAR = RatePlan(id="p1", code="BAR", name="Best available")
NR = RatePlan(
    id="p2", code="NR", name="Non refundable", parent_id="p1", parent_code="BAR",
    derived=Adjustment(type="PERCENTAGE", value=Decimal("-10")),
)
NR_MOBILE = RatePlan(
    id="p3", code="NRM", name="Non refundable mobile", parent_id="p2", parent_code="NR",
    derived=Adjustment(type="FIXED_AMOUNT", value=Decimal("-1000")),
)


def _update(**overrides) -> BulkUpdate:
    params = dict(
        date_from=date(2026, 6, 1),
        date_to=date(2026, 6, 7),
        room_type_ids=("rt-std",),
        fields=BulkFieldsPatch.from_changes({"closed": True}),
    )
    params.update(overrides)
    return BulkUpdate(**params)


class TestValidation:
    def test_reversed_range(self):
        with pytest.raises(ValidationFailed):
            _update(date_from=date(2026, 6, 8)).validate()

    def test_range_too_long(self):
        with pytest.raises(ValidationFailed, match="180"):
            _update(date_to=date(2026, 12, 31)).validate()

    def test_no_fields(self):
        with pytest.raises(ValidationFailed):
            _update(fields=BulkFieldsPatch()).validate()

    def test_non_positive_price(self):
        with pytest.raises(ValidationFailed):
            _update(fields=BulkFieldsPatch.from_changes({"price_cents": 0})).validate()

    def test_min_above_max(self):
        fields = BulkFieldsPatch.from_changes({"min_los": 5, "max_los": 2})
        with pytest.raises(ValidationFailed):
            _update(fields=fields).validate()

    def test_bad_weekday(self):
        with pytest.raises(ValidationFailed):
            _update(days_of_week=(7,)).validate()


class TestDates:
    def test_all_days(self):
        assert len(_update().dates()) == 7

    def test_weekends_only(self):
        # 2026-06-06 is a Saturday, 2026-06-07 a Sunday
        assert _update(days_of_week=(0, 6)).dates() == [date(2026, 6, 6), date(2026, 6, 7)]


class TestDescendants:
    def test_breadth_first_parents_first(self):
        pairs = bulk_ari._descendants("BAR", [NR_MOBILE, NR, BAR])
        assert [(p.code, c.code) for p, c in pairs] == [("BAR", "NR"), ("NR", "NRM")]

    def test_leaf_has_none(self):
        assert bulk_ari._descendants("NRM", [BAR, NR, NR_MOBILE]) == []


@pytest.fixture
def repos():
    with patch.object(bulk_ari, "txn") as mock_txn, \
         patch.object(bulk_ari, "ari_events_repository") as events_repo, \
         patch.object(bulk_ari, "audit_repository"), \
         patch.object(bulk_ari, "catalog_repository") as catalog, \
         patch.object(bulk_ari, "inventory_repository") as inventory, \
         patch.object(bulk_ari, "restrictions_repository") as restrictions:
        mock_txn.return_value.__enter__.return_value = MagicMock()
        catalog.get_room_types_by_ids.return_value = {"rt-std": STD}
        catalog.list_rate_plans.return_value = [BAR, NR, NR_MOBILE]
        catalog.lock_rate.return_value = None
        inventory.ensure_row.return_value = False
        inventory.lock_row.return_value = {
            "total": 5, "booked": 1, "available": 4, "price_cents": 20000,
        }
        restrictions.upsert_patch.return_value = (None, {"closed": True})
        yield MagicMock(events=events_repo, catalog=catalog, inventory=inventory, restrictions=restrictions)


class TestUpdateBulk:
    def test_unknown_room_type(self, repos):
        with pytest.raises(NotFound):
            update_bulk("prop-1", _update(room_type_ids=("rt-std", "rt-ghost")))

    def test_unknown_rate_plan(self, repos):
        fields = BulkFieldsPatch.from_changes({"price_cents": 30000})
        with pytest.raises(NotFound):
            update_bulk("prop-1", _update(fields=fields, rate_plan_code="XX"))

    def test_event_recorded_with_snapshot(self, repos):
        result = update_bulk("prop-1", _update())

        assert result.event_id.startswith("bulk_")
        kwargs = repos.events.insert_event.call_args.kwargs
        assert kwargs["source"] == "BULK"
        assert kwargs["event_type"] == "RESTRICTION"
        assert len(kwargs["payload"]["snapshot"]["restrictions"]) == 7

    def test_base_price_goes_to_inventory(self, repos):
        fields = BulkFieldsPatch.from_changes({"price_cents": 30000})
        update_bulk("prop-1", _update(fields=fields, date_to=date(2026, 6, 1)))

        repos.inventory.write_price.assert_called_once()
        repos.catalog.upsert_rate.assert_not_called()
        assert repos.events.insert_event.call_args.kwargs["event_type"] == "RATE"

    def test_available_sets_counts(self, repos):
        fields = BulkFieldsPatch.from_changes({"available": 2})
        update_bulk("prop-1", _update(fields=fields, date_to=date(2026, 6, 1)))

        counts = repos.inventory.write_counts.call_args.kwargs["counts"]
        assert (counts.total, counts.booked, counts.available) == (3, 1, 2)
        assert repos.events.insert_event.call_args.kwargs["event_type"] == "AVAILABILITY"

    def test_plan_price_propagates_to_children(self, repos):
        fields = BulkFieldsPatch.from_changes({"price_cents": 30000})
        update_bulk("prop-1", _update(fields=fields, rate_plan_code="BAR", date_to=date(2026, 6, 1)))

        written = {
            c.kwargs["rate_plan_code"]: (c.kwargs["amount_cents"], c.kwargs["is_manual_override"])
            for c in repos.catalog.upsert_rate.call_args_list
        }
        assert written == {
            "BAR": (30000, True),
            "NR": (27000, False),
            "NRM": (26000, False),
        }

    def test_manual_child_rate_skipped_with_warning(self, repos):
        def lock_rate(cur, *, rate_plan_code, **kwargs):
            if rate_plan_code == "NR":
                return {"amount_cents": 15000, "is_manual_override": True}
            return None

        repos.catalog.lock_rate.side_effect = lock_rate
        fields = BulkFieldsPatch.from_changes({"price_cents": 30000})
        result = update_bulk(
            "prop-1", _update(fields=fields, rate_plan_code="BAR", date_to=date(2026, 6, 1))
        )

        written = [c.kwargs["rate_plan_code"] for c in repos.catalog.upsert_rate.call_args_list]
        assert written == ["BAR"]
        assert any("manual" in w for w in result.warnings)

    def test_override_manual_rewrites_child(self, repos):
        repos.catalog.lock_rate.return_value = {"amount_cents": 15000, "is_manual_override": True}
        fields = BulkFieldsPatch.from_changes({"price_cents": 30000})
        update_bulk(
            "prop-1",
            _update(fields=fields, rate_plan_code="BAR", date_to=date(2026, 6, 1), override_manual=True),
        )

        written = [c.kwargs["rate_plan_code"] for c in repos.catalog.upsert_rate.call_args_list]
        assert written == ["BAR", "NR", "NRM"]

    def test_failure_propagates_and_nothing_recorded(self, repos):
        repos.restrictions.upsert_patch.side_effect = [(None, {})] * 5 + [RuntimeError("disk full")]

        with pytest.raises(RuntimeError):
            update_bulk("prop-1", _update())

        repos.events.insert_event.assert_not_called()

    def test_invalidates_cache(self, repos, quote_cache):
        quote_cache.set("k", "prop-1", [])
        update_bulk("prop-1", _update(), quote_cache=quote_cache)
        assert quote_cache.get("k") is None


class TestUndoGuards:
    def _event(self, **overrides):
        event = {
            "event_id": "bulk_1",
            "source": "BULK",
            "status": "APPLIED",
            "payload": {"snapshot": {"inventory": [], "rates": [], "restrictions": []}},
        }
        event.update(overrides)
        return event

    def test_unknown_event(self, repos):
        repos.events.get_event.return_value = None
        with pytest.raises(NotFound):
            undo_bulk("prop-1", "bulk_1")

    def test_channel_event_cannot_be_undone(self, repos):
        repos.events.get_event.return_value = self._event(source="CHANNEL")
        with pytest.raises(ValidationFailed):
            undo_bulk("prop-1", "bulk_1")

    def test_already_undone(self, repos):
        repos.events.get_event.return_value = self._event(status="UNDONE")
        with pytest.raises(AlreadyUndone):
            undo_bulk("prop-1", "bulk_1")

    def test_restores_snapshot(self, repos):
        repos.events.get_event.return_value = self._event(
            payload={
                "snapshot": {
                    "inventory": [
                        {
                            "room_type_id": "rt-std", "date": "2026-06-01", "created": False,
                            "total": 5, "booked": 0, "available": 5, "price_cents": 20000,
                        }
                    ],
                    "rates": [
                        {"room_type_id": "rt-std", "rate_plan_code": "BAR", "date": "2026-06-01", "before": None},
                    ],
                    "restrictions": [
                        {
                            "room_type_id": "rt-std", "rate_plan_code": "BASE", "date": "2026-06-01",
                            "before": {"min_los": 2, "max_los": None, "closed_to_arrival": False,
                                       "closed_to_departure": False, "closed": False},
                        },
                    ],
                }
            }
        )
        # Two rooms were booked after the bulk shrank availability
        repos.inventory.lock_row.return_value = {"total": 7, "booked": 7, "available": 0, "price_cents": 1}

        result = undo_bulk("prop-1", "bulk_1")

        repos.catalog.delete_rate.assert_called_once()
        repos.restrictions.write.assert_called_once()
        counts = repos.inventory.write_counts.call_args.kwargs["counts"]
        assert (counts.total, counts.booked, counts.available) == (7, 7, 0)
        repos.inventory.write_price.assert_called_once()
        assert repos.inventory.write_price.call_args.kwargs["price_cents"] == 20000
        assert result.warnings
        repos.events.mark_status.assert_called_once()
