"""Booking lifecycle — accept, check-in, cancel.

Status transitions are enforced via Booking.VALID_TRANSITIONS. Check-out
lives in checkout_service because it moves money.

Functions flush but do NOT commit — the caller commits.
"""

import logging
from datetime import datetime, timezone

import bleach
from flask import current_app

from marketplace_core.errors import Forbidden, InvalidState, NotFound, ValidationError
from marketplace_core.extensions import db
from marketplace_core.models.audit import AuditEvent
from marketplace_core.models.booking import Booking
from marketplace_core.services.location_service import is_valid_coordinate, verify_location

logger = logging.getLogger(__name__)


def sanitize_text(text):
    """Strip all HTML tags from user input. Blank results become None."""
    if text is None:
        return None
    return bleach.clean(text, tags=[], strip=True).strip() or None


def get_booking(booking_id):
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFound(f"Booking {booking_id} not found.")
    return booking


def _transition(booking, new_status, actor_id, metadata=None):
    """Move booking to new_status and write the audit row."""
    old_status = booking.status
    if not booking.can_transition_to(new_status):
        allowed = Booking.VALID_TRANSITIONS.get(old_status, [])
        raise InvalidState(
            f"Cannot transition booking from '{old_status}' to '{new_status}'. "
            f"Allowed: {', '.join(allowed) if allowed else 'none (terminal state)'}"
        )

    booking.status = new_status
    booking.updated_at = datetime.now(timezone.utc)
    db.session.flush()

    audit = AuditEvent(
        actor_user_id=actor_id,
        booking_id=booking.id,
        action=f"booking.{new_status}",
        metadata_={"old_status": old_status, "new_status": new_status, **(metadata or {})},
    )
    db.session.add(audit)
    db.session.flush()

    logger.info(f"Booking {booking.id}: {old_status} -> {new_status} (actor={actor_id})")
    return booking


def accept_booking(booking_id, actor_id):
    """Professional accepts a pending booking.

    Raises:
        NotFound, Forbidden, InvalidState.
    """
    booking = get_booking(booking_id)
    if booking.professional_id != actor_id:
        raise Forbidden("Only the assigned professional can accept this booking.")
    return _transition(booking, "confirmed", actor_id)


def check_in(booking_id, actor_id, latitude, longitude):
    """Professional arrives: confirmed -> in_progress.

    GPS is checked against the booking address with the same soft
    enforcement as check-out.

    Raises:
        NotFound, Forbidden, ValidationError, InvalidState.
    """
    booking = get_booking(booking_id)
    if booking.professional_id != actor_id:
        raise Forbidden("Only the assigned professional can check in to this booking.")
    if booking.status != "confirmed":
        raise InvalidState(f"Cannot check in to booking with status: {booking.status}")
    if not is_valid_coordinate(latitude, longitude):
        raise ValidationError(
            "Invalid coordinates: latitude must be between -90 and 90, "
            "longitude between -180 and 180."
        )

    latitude = float(latitude)
    longitude = float(longitude)
    max_distance = current_app.config.get("GPS_MAX_DISTANCE_METERS", 150)
    result = verify_location(latitude, longitude, booking.address, max_distance)
    if not result.verified and result.distance is not None:
        logger.warning(
            f"Professional checking in from unexpected location: booking={booking.id} "
            f"professional={actor_id} distance={result.distance}m max={result.max_distance}m "
            f"severity=MEDIUM"
        )
        if current_app.config.get("GPS_HARD_ENFORCEMENT"):
            raise ValidationError(
                f"You must be at the service address to check in ({result.reason})."
            )

    booking.checked_in_at = datetime.now(timezone.utc)
    booking.check_in_latitude = latitude
    booking.check_in_longitude = longitude
    return _transition(
        booking,
        "in_progress",
        actor_id,
        metadata={"location_verified": result.verified, "distance": result.distance},
    )


def cancel_booking(booking_id, actor_id, reason=None):
    """Customer or professional cancels a pending/confirmed booking.

    Raises:
        NotFound, Forbidden, InvalidState.
    """
    booking = get_booking(booking_id)
    if actor_id not in (booking.customer_id, booking.professional_id):
        raise Forbidden("Only the customer or the assigned professional can cancel this booking.")

    reason = sanitize_text(reason)
    _transition(booking, "cancelled", actor_id, metadata={"reason": reason})
    booking.cancellation_reason = reason
    booking.cancelled_at = datetime.now(timezone.utc)
    db.session.flush()
    return booking
