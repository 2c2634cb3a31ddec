"""Reservation cancellation and status transitions.

Cancel runs inside a single transaction:
lock -> validate -> release inventory -> update status -> audit.
"""

from __future__ import annotations

from typing import Any

from staybook.domain.booking import (
    STATUS_CANCELLED,
    STATUS_CHECKED_IN,
    STATUS_CHECKED_OUT,
    STATUS_CONFIRMED,
    STATUS_PENDING,
)
from staybook.domain.errors import (
    InventoryConsistencyError,
    NotFound,
    ReservationStateError,
)
from staybook.infra.db import txn
from staybook.infra.repositories import (
    audit_repository,
    inventory_repository,
    reservations_repository,
)
from staybook.infra.time import nights
from staybook.observability.logging import get_logger
from staybook.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Forward-only lifecycle; CANCELLED is reachable from any non-terminal state
_NEXT_STATUS = {
    STATUS_PENDING: STATUS_CONFIRMED,
    STATUS_CONFIRMED: STATUS_CHECKED_IN,
    STATUS_CHECKED_IN: STATUS_CHECKED_OUT,
}


def cancel_reservation(
    property_id: str,
    reservation_id: str,
    *,
    reason: str | None = None,
) -> dict[str, Any]:
    """Cancel a reservation and give its nights back to inventory.

    Raises:
        NotFound: If the reservation does not exist in this property.
        ReservationStateError: ALREADY_CANCELLED or CANNOT_CANCEL.
        InventoryConsistencyError: If a night cannot be released.
    """
    with txn() as cur:
        # Step 1: Lock reservation
        reservation = reservations_repository.get_reservation(
            cur, property_id=property_id, reservation_id=reservation_id, for_update=True
        )
        if reservation is None:
            raise NotFound(f"Reservation {reservation_id} not found")

        # Step 2: Validate status
        status = reservation["status"]
        if status == STATUS_CANCELLED:
            raise ReservationStateError(
                "Reservation is already cancelled",
                code=ReservationStateError.ALREADY_CANCELLED,
            )
        if status == STATUS_CHECKED_OUT:
            raise ReservationStateError(
                "A checked-out reservation cannot be cancelled",
                code=ReservationStateError.CANNOT_CANCEL,
            )

        # Step 3: Release one unit per night, in date order
        for day in nights(reservation["checkin"], reservation["checkout"]):
            if not inventory_repository.release_night(
                cur,
                property_id=property_id,
                room_type_id=reservation["room_type_id"],
                day=day,
            ):
                raise InventoryConsistencyError(
                    f"Cannot release {day.isoformat()}: no booked unit on record"
                )

        # Step 4: Update status
        reservations_repository.update_status(
            cur,
            property_id=property_id,
            reservation_id=reservation_id,
            status=STATUS_CANCELLED,
        )

        # Step 5: Audit
        audit_repository.write_audit(
            cur,
            property_id=property_id,
            event_type=audit_repository.BOOKING_CANCELLED,
            aggregate_type="reservation",
            aggregate_id=reservation_id,
            payload={
                "pnr": reservation["pnr"],
                "previous_status": status,
                "reason": reason,
            },
        )

    logger.info(
        "reservation cancelled",
        extra={
            "extra_fields": safe_log_context(
                reservation_id=reservation_id, previous_status=status
            )
        },
    )
    return {
        "reservation_id": reservation_id,
        "pnr": reservation["pnr"],
        "status": STATUS_CANCELLED,
    }


def transition_status(
    property_id: str,
    reservation_id: str,
    new_status: str,
) -> dict[str, Any]:
    """Move a reservation one step forward in its lifecycle.

    Cancellation has its own entry point (cancel_reservation) because it
    releases inventory.

    Raises:
        NotFound: If the reservation does not exist in this property.
        ReservationStateError: INVALID_TRANSITION for anything but the next step.
    """
    if new_status == STATUS_CANCELLED:
        return cancel_reservation(property_id, reservation_id)

    with txn() as cur:
        reservation = reservations_repository.get_reservation(
            cur, property_id=property_id, reservation_id=reservation_id, for_update=True
        )
        if reservation is None:
            raise NotFound(f"Reservation {reservation_id} not found")

        current = reservation["status"]
        if _NEXT_STATUS.get(current) != new_status:
            raise ReservationStateError(
                f"Cannot move reservation from {current} to {new_status}",
                code=ReservationStateError.INVALID_TRANSITION,
            )

        reservations_repository.update_status(
            cur,
            property_id=property_id,
            reservation_id=reservation_id,
            status=new_status,
        )
        audit_repository.write_audit(
            cur,
            property_id=property_id,
            event_type=audit_repository.BOOKING_STATUS_CHANGED,
            aggregate_type="reservation",
            aggregate_id=reservation_id,
            payload={"from": current, "to": new_status},
        )

    return {
        "reservation_id": reservation_id,
        "pnr": reservation["pnr"],
        "status": new_status,
    }
