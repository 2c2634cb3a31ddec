"""Booking endpoints: validation, error bodies and idempotent replay."""

from __future__ import annotations

import uuid
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from staybook.api.factory import create_app
from staybook.domain.booking import Booking
from staybook.domain.errors import (
    IdempotencyConflict,
    NoAvailability,
    ReservationStateError,
    RestrictionViolation,
)
from staybook.domain.idempotency import IdempotencyClaim, IdempotentResponse

from .helpers import booking_payload, make_quote

HEADERS = {"X-Hotel-Id": "prop-1"}


@pytest.fixture
def client(quote_cache):
    return TestClient(create_app(quote_cache=quote_cache))


def _booking() -> Booking:
    return Booking(
        reservation_id="7c9e6679-7425-40de-944b-e07fc1f90ae7",
        pnr="K7QX4M",
        status="CONFIRMED",
        total_cents=40000,
        currency="BRL",
        checkin=date(2026, 6, 1),
        checkout=date(2026, 6, 3),
        room_type_code="STD",
        rate_plan_code="BAR",
    )


class TestCreateBooking:
    def test_created(self, client):
        quote = make_quote()
        with patch("staybook.api.routes.bookings.create_booking", return_value=_booking()) as create:
            response = client.post("/bookings", json=booking_payload(quote), headers=HEADERS)

        assert response.status_code == 201
        booking = response.json()["booking"]
        assert booking["pnr"] == "K7QX4M"
        assert booking["status"] == "CONFIRMED"
        assert booking["totalCents"] == 40000

        request = create.call_args.args[1]
        assert request.quote_id == quote.quote_id
        assert request.guest.email == "ana.souza@example.com"
        assert request.payment is None

    def test_restriction_error_body(self, client):
        violation = RestrictionViolation(
            "Arrival is not allowed on 2026-06-01", code=RestrictionViolation.CLOSED_TO_ARRIVAL
        )
        with patch("staybook.api.routes.bookings.create_booking", side_effect=violation):
            response = client.post("/bookings", json=booking_payload(make_quote()), headers=HEADERS)

        assert response.status_code == 400
        assert response.json() == {
            "code": "CLOSED_TO_ARRIVAL",
            "message": "Arrival is not allowed on 2026-06-01",
        }

    def test_invalid_email(self, client):
        body = booking_payload(make_quote())
        body["primaryGuest"]["email"] = "not-an-email"
        response = client.post("/bookings", json=body, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_missing_quote_id(self, client):
        body = booking_payload(make_quote())
        del body["quoteId"]
        response = client.post("/bookings", json=body, headers=HEADERS)
        assert response.status_code == 400

    def test_payment_method_passed(self, client):
        body = booking_payload(make_quote(), payment={"paymentMethodId": "pm_card_visa"})
        with patch("staybook.api.routes.bookings.create_booking", return_value=_booking()) as create:
            client.post("/bookings", json=body, headers=HEADERS)
        assert create.call_args.args[1].payment.payment_method_id == "pm_card_visa"


class TestIdempotentCreate:
    def test_header_key_wraps_handler(self, client):
        stored = {"booking": {"reservationId": "r-1"}}
        with patch(
            "staybook.api.routes.bookings.with_idempotency",
            return_value=IdempotentResponse(status_code=201, body=stored, replayed=True),
        ) as guard:
            response = client.post(
                "/bookings",
                json=booking_payload(make_quote()),
                headers={**HEADERS, "Idempotency-Key": "key-1"},
            )

        assert response.status_code == 201
        assert response.json() == stored
        assert response.headers["Idempotent-Replayed"] == "true"
        property_id, key, method, path, _ = guard.call_args.args
        assert (property_id, key, method, path) == ("prop-1", "key-1", "POST", "/bookings")

    def test_body_key(self, client):
        body = booking_payload(make_quote(), idempotencyKey="body-key")
        with patch(
            "staybook.api.routes.bookings.with_idempotency",
            return_value=IdempotentResponse(status_code=201, body={}),
        ) as guard:
            response = client.post("/bookings", json=body, headers=HEADERS)

        assert guard.call_args.args[1] == "body-key"
        assert "Idempotent-Replayed" not in response.headers

    def test_handler_turns_rejection_into_stored_result(self, client):
        captured = {}

        def fake_guard(property_id, key, method, path, handler):
            captured["result"] = handler(IdempotencyClaim(property_id, key, "claim-1"))
            status_code, body = captured["result"]
            return IdempotentResponse(status_code=status_code, body=body)

        with patch("staybook.api.routes.bookings.with_idempotency", side_effect=fake_guard), \
             patch(
                 "staybook.api.routes.bookings.create_booking",
                 side_effect=NoAvailability("No availability for STD on 2026-06-02"),
             ):
            response = client.post(
                "/bookings",
                json=booking_payload(make_quote()),
                headers={**HEADERS, "Idempotency-Key": "key-2"},
            )

        assert captured["result"][0] == 400
        assert response.status_code == 400
        assert response.json()["code"] == "NO_AVAILABILITY"

    def test_created_booking_stored_through_commit_hook(self, client):
        claim = IdempotencyClaim("prop-1", "key-4", "claim-1")
        cur = MagicMock()

        def fake_create(context, request, **kwargs):
            booking = _booking()
            kwargs["on_committed"](cur, booking)
            return booking

        def fake_guard(property_id, key, method, path, handler):
            status_code, body = handler(claim)
            return IdempotentResponse(status_code=status_code, body=body)

        with patch("staybook.api.routes.bookings.with_idempotency", side_effect=fake_guard), \
             patch("staybook.api.routes.bookings.create_booking", side_effect=fake_create), \
             patch("staybook.domain.idempotency.idempotency_repository") as repo:
            repo.complete.return_value = True
            response = client.post(
                "/bookings",
                json=booking_payload(make_quote()),
                headers={**HEADERS, "Idempotency-Key": "key-4"},
            )

        assert response.status_code == 201
        kwargs = repo.complete.call_args.kwargs
        assert repo.complete.call_args.args[0] is cur
        assert kwargs["claim_id"] == "claim-1"
        assert kwargs["response_code"] == 201
        assert kwargs["response_body"] == response.json()
        assert claim.completed is True

    def test_lost_claim_during_commit_is_409(self, client):
        claim = IdempotencyClaim("prop-1", "key-5", "claim-1")

        def fake_create(context, request, **kwargs):
            kwargs["on_committed"](MagicMock(), _booking())
            return _booking()

        def fake_guard(property_id, key, method, path, handler):
            status_code, body = handler(claim)
            return IdempotentResponse(status_code=status_code, body=body)

        with patch("staybook.api.routes.bookings.with_idempotency", side_effect=fake_guard), \
             patch("staybook.api.routes.bookings.create_booking", side_effect=fake_create), \
             patch("staybook.domain.idempotency.idempotency_repository") as repo:
            repo.complete.return_value = False
            response = client.post(
                "/bookings",
                json=booking_payload(make_quote()),
                headers={**HEADERS, "Idempotency-Key": "key-5"},
            )

        assert response.status_code == 409
        assert response.json()["code"] == "IDEMPOTENCY_CONFLICT"

    def test_without_key_no_commit_hook(self, client):
        with patch("staybook.api.routes.bookings.create_booking", return_value=_booking()) as create:
            client.post("/bookings", json=booking_payload(make_quote()), headers=HEADERS)
        assert create.call_args.kwargs["on_committed"] is None

    def test_in_flight_conflict_is_409(self, client):
        with patch(
            "staybook.api.routes.bookings.with_idempotency",
            side_effect=IdempotencyConflict("in progress"),
        ):
            response = client.post(
                "/bookings",
                json=booking_payload(make_quote()),
                headers={**HEADERS, "Idempotency-Key": "key-3"},
            )
        assert response.status_code == 409
        assert response.json()["code"] == "IDEMPOTENCY_CONFLICT"

    def test_overlong_key_rejected(self, client):
        response = client.post(
            "/bookings",
            json=booking_payload(make_quote()),
            headers={**HEADERS, "Idempotency-Key": "k" * 129},
        )
        assert response.status_code == 400


class TestCancelAndStatus:
    RES_ID = str(uuid.uuid4())

    def test_cancel(self, client):
        with patch(
            "staybook.api.routes.bookings.cancel_reservation",
            return_value={"reservation_id": self.RES_ID, "pnr": "K7QX4M", "status": "CANCELLED"},
        ) as cancel:
            response = client.post(
                f"/bookings/{self.RES_ID}/cancel", json={"reason": "guest request"}, headers=HEADERS
            )

        assert response.status_code == 200
        assert response.json()["booking"]["status"] == "CANCELLED"
        assert cancel.call_args.kwargs["reason"] == "guest request"

    def test_cancel_twice(self, client):
        with patch(
            "staybook.api.routes.bookings.cancel_reservation",
            side_effect=ReservationStateError(
                "already", code=ReservationStateError.ALREADY_CANCELLED
            ),
        ):
            response = client.post(f"/bookings/{self.RES_ID}/cancel", headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["code"] == "ALREADY_CANCELLED"

    def test_cancel_bad_id(self, client):
        response = client.post("/bookings/not-a-uuid/cancel", headers=HEADERS)
        assert response.status_code == 400

    def test_status_transition(self, client):
        with patch(
            "staybook.api.routes.bookings.transition_status",
            return_value={"reservation_id": self.RES_ID, "pnr": "K7QX4M", "status": "CHECKED_IN"},
        ) as transition:
            response = client.post(
                f"/bookings/{self.RES_ID}/status", json={"status": "CHECKED_IN"}, headers=HEADERS
            )

        assert response.status_code == 200
        assert transition.call_args.args == ("prop-1", self.RES_ID, "CHECKED_IN")

    def test_unknown_status(self, client):
        response = client.post(
            f"/bookings/{self.RES_ID}/status", json={"status": "LOST"}, headers=HEADERS
        )
        assert response.status_code == 400


def test_list_bookings(client):
    rows = [{"reservation_id": "r-1", "pnr": "K7QX4M", "checkin": date(2026, 6, 1)}]
    with patch("staybook.api.routes.bookings.list_bookings", return_value=rows) as list_:
        response = client.get("/bookings", params={"status": "CONFIRMED"}, headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["bookings"][0]["reservationId"] == "r-1"
    assert list_.call_args.kwargs["status"] == "CONFIRMED"
