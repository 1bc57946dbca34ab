"""Check-out service — settles a booking when the professional leaves.

Flow for check_out():
  1. Preconditions (exists, owner, in_progress, checked in, coords, intent)
  2. GPS verification against the booking address (soft: log only)
  3. Duration + amount to capture (authorized + time extension)
  4. Claim the booking: conditional UPDATE on settlement_token
  5. Capture via the payment gateway (the one irreversible step)
  6. Conditional UPDATE to completed, guarded by the claim
  7. Notify customer + professional (after commit, best-effort)

The claim in step 4 is what stops two concurrent check-outs from both
reaching the gateway: only one request can flip settlement_token from NULL.
After a successful capture nothing in this module ever calls capture again
for that booking.

Commits happen here (not in the caller) because the ordering
claim -> capture -> completion commit is the whole point.
"""

import logging
import time
import uuid
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from marketplace_core.errors import (
    ConcurrentModification,
    CriticalInconsistency,
    Forbidden,
    InvalidState,
    NotFound,
    PaymentCaptureFailed,
    PaymentConfigurationError,
    ValidationError,
)
from marketplace_core.extensions import db
from marketplace_core.models.audit import AuditEvent
from marketplace_core.models.booking import Booking
from marketplace_core.services import notification_service, payment_gateway
from marketplace_core.services.booking_service import sanitize_text
from marketplace_core.services.location_service import is_valid_coordinate, verify_location

logger = logging.getLogger(__name__)


def capture_idempotency_key(booking_id, token):
    """One key per settlement claim.

    Stripe replays the stored response for a reused key, errors included, so
    a retry after a released claim must not reuse the previous key.
    """
    return f"booking-{booking_id}-capture-{token}"


def _as_utc(dt):
    # SQLite hands back naive datetimes; everything we store is UTC.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def calculate_actual_duration(checked_in_at, checked_out_at):
    """Whole minutes between check-in and check-out, rounded.

    Zero or negative results are returned as-is (device clock skew).
    """
    seconds = (_as_utc(checked_out_at) - _as_utc(checked_in_at)).total_seconds()
    return round(seconds / 60)


def amount_to_capture(booking):
    return booking.amount_authorized + (booking.time_extension_amount or 0)


# ──────────────────────────────────────────────
# Preconditions
# ──────────────────────────────────────────────

def validate_check_out(booking, actor_id, latitude, longitude):
    """Raise the matching domain error for the first failed precondition."""
    if booking.professional_id != actor_id:
        raise Forbidden("Only the assigned professional can check out of this booking.")

    if booking.status != "in_progress":
        raise InvalidState(f"Cannot check out of booking with status: {booking.status}")

    if booking.checked_in_at is None:
        raise InvalidState("Cannot check out without checking in first (check-in required first).")

    if not is_valid_coordinate(latitude, longitude):
        raise ValidationError(
            "Invalid coordinates: latitude must be between -90 and 90, "
            "longitude between -180 and 180."
        )

    if not booking.payment_intent_id:
        raise PaymentConfigurationError(
            f"Booking {booking.id} has no payment intent",
            details={"booking_id": booking.id},
        )


def verify_check_out_location(booking, latitude, longitude):
    """Run GPS verification and log the outcome.

    Soft enforcement: an unexpected location is a MEDIUM fraud signal and
    does not block check-out unless GPS_HARD_ENFORCEMENT is on.
    """
    max_distance = current_app.config.get("GPS_MAX_DISTANCE_METERS", 150)
    result = verify_location(latitude, longitude, booking.address, max_distance)

    logger.info(
        f"GPS verification at check-out: booking={booking.id} "
        f"professional={booking.professional_id} verified={result.verified} "
        f"distance={result.distance} max={result.max_distance} reason={result.reason}"
    )

    if not result.verified and result.distance is not None:
        logger.warning(
            f"Professional checking out from unexpected location: booking={booking.id} "
            f"professional={booking.professional_id} distance={result.distance}m "
            f"max={result.max_distance}m service={booking.service_name or 'Unknown'} "
            f"severity=MEDIUM action=review check-out location for potential fraud"
        )
        if current_app.config.get("GPS_HARD_ENFORCEMENT"):
            raise ValidationError(
                f"You must be at the service address to check out ({result.reason})."
            )

    return result


# ──────────────────────────────────────────────
# Settlement claim
# ──────────────────────────────────────────────

def _claim_for_settlement(booking_id, started_at):
    """Take the pre-capture claim. Returns the claim token.

    Single conditional UPDATE; if another request got there first (or the
    booking left in_progress) no row matches and we raise
    ConcurrentModification without touching the gateway.
    """
    token = str(uuid.uuid4())
    result = db.session.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == "in_progress",
            Booking.settlement_token.is_(None),
        )
        .values(settlement_token=token, settlement_started_at=started_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise ConcurrentModification(
            f"Booking {booking_id} is already being settled by another request"
        )
    db.session.commit()
    return token


def _release_claim(booking_id, token):
    """Give the claim back after a failed capture so the caller can retry."""
    try:
        db.session.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.settlement_token == token)
            .values(settlement_token=None, settlement_started_at=None)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        # Booking stays claimed; `flask release-settlement-claim` clears it.
        logger.error(f"Failed to release settlement claim on booking {booking_id}: {e}")


def release_stale_claim(booking_id):
    """Operator action: clear a claim left behind by a crashed request.

    Only valid while the booking is still in_progress. The next check-out
    takes a new claim and so a new idempotency key; Stripe refuses to
    capture an intent twice, but the operator should still confirm in the
    dashboard that the crashed capture did not go through.
    """
    result = db.session.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == "in_progress",
            Booking.settlement_token.is_not(None),
        )
        .values(settlement_token=None, settlement_started_at=None)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


# ──────────────────────────────────────────────
# Completion write
# ──────────────────────────────────────────────

def _persist_completion(booking_id, token, values):
    """Conditional UPDATE to completed, retried on database errors.

    Returns normally on success. Raises ConcurrentModification if the row
    no longer holds our claim, or re-raises the last SQLAlchemyError once
    attempts run out.
    """
    attempts = max(1, current_app.config.get("SETTLEMENT_PERSIST_ATTEMPTS", 3))
    backoff = current_app.config.get("SETTLEMENT_PERSIST_BACKOFF_SECONDS", 0.1)

    for attempt in range(attempts):
        try:
            result = db.session.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.status == "in_progress",
                    Booking.settlement_token == token,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.session.rollback()
                raise ConcurrentModification(
                    f"Booking {booking_id} changed while it was being settled"
                )
            db.session.commit()
            return
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning(
                f"Completion write failed for booking {booking_id} "
                f"(attempt {attempt + 1}/{attempts}): {e}"
            )
            if attempt == attempts - 1:
                raise
            time.sleep(backoff * (2 ** attempt))


def _snapshot(booking):
    """Plain copy of the fields needed for logs and alerts.

    Taken before the claim commit so that error paths never need to
    reload the row from a database that may be the thing failing.
    """
    return {
        "booking_id": booking.id,
        "payment_intent_id": booking.payment_intent_id,
        "currency": booking.currency,
        "professional_id": booking.professional_id,
        "customer_id": booking.customer_id,
        "amount_authorized": booking.amount_authorized,
        "time_extension_amount": booking.time_extension_amount or 0,
        "checked_in_at": _as_utc(booking.checked_in_at).isoformat(),
    }


def _reconciliation_context(snapshot, capture, checked_out_at):
    return {
        **snapshot,
        "amount_captured": capture.amount_received,
        "checked_out_at": checked_out_at.isoformat(),
    }


# ──────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────

def check_out(booking_id, actor_id, latitude, longitude, completion_notes=None):
    """Complete a booking and capture its payment.

    Args:
        booking_id: Booking UUID string.
        actor_id: User id of the caller; must be the booking's professional.
        latitude, longitude: Professional's position at check-out.
        completion_notes: Optional free text (HTML stripped).

    Returns:
        The completed Booking.

    Raises:
        NotFound, Forbidden, InvalidState, ValidationError,
        PaymentConfigurationError: precondition failures, nothing written.
        ConcurrentModification: another request holds the claim.
        PaymentCaptureFailed: gateway refused or unreachable; retry-safe.
        CriticalInconsistency: money captured but the booking row could
            not be completed. Needs an operator.
    """
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFound(f"Booking {booking_id} not found.")

    validate_check_out(booking, actor_id, latitude, longitude)
    latitude = float(latitude)
    longitude = float(longitude)

    verify_check_out_location(booking, latitude, longitude)

    checked_out_at = datetime.now(timezone.utc)
    actual_duration_minutes = calculate_actual_duration(booking.checked_in_at, checked_out_at)
    requested_amount = amount_to_capture(booking)
    notes = sanitize_text(completion_notes)
    snapshot = _snapshot(booking)

    token = _claim_for_settlement(booking_id, checked_out_at)

    logger.info(
        f"Attempting payment capture: booking={booking_id} intent={snapshot['payment_intent_id']} "
        f"authorized={snapshot['amount_authorized']} "
        f"extension={snapshot['time_extension_amount']} to_capture={requested_amount}"
    )
    try:
        capture = payment_gateway.capture(
            snapshot["payment_intent_id"],
            requested_amount,
            idempotency_key=capture_idempotency_key(booking_id, token),
        )
    except payment_gateway.PaymentGatewayError as e:
        logger.error(
            f"Payment capture failed during check-out: booking={booking_id} "
            f"intent={snapshot['payment_intent_id']} to_capture={requested_amount} "
            f"checked_in_at={snapshot['checked_in_at']} "
            f"duration={actual_duration_minutes}min: {e}"
        )
        _release_claim(booking_id, token)
        notification_service.alert_admins(
            f"Payment capture failed for booking {booking_id}",
            {
                "booking_id": booking_id,
                "payment_intent_id": snapshot["payment_intent_id"],
                "amount": notification_service.format_amount(requested_amount, snapshot["currency"]),
                "error": str(e),
            },
        )
        raise PaymentCaptureFailed(f"Capture failed for booking {booking_id}: {e}") from e

    if capture.amount_received != requested_amount:
        logger.warning(
            f"Gateway captured {capture.amount_received} but {requested_amount} was requested "
            f"for booking {booking_id}; recording the gateway amount"
        )
    logger.info(
        f"Payment captured: booking={booking_id} intent={snapshot['payment_intent_id']} "
        f"amount={capture.amount_received}"
    )

    values = {
        "status": "completed",
        "checked_out_at": checked_out_at,
        "check_out_latitude": latitude,
        "check_out_longitude": longitude,
        "actual_duration_minutes": actual_duration_minutes,
        "completion_notes": notes,
        "amount_captured": capture.amount_received,
        "payment_status": "succeeded",
        "updated_at": checked_out_at,
    }

    try:
        _persist_completion(booking_id, token, values)
    except ConcurrentModification:
        context = _reconciliation_context(snapshot, capture, checked_out_at)
        logger.critical(
            f"CRITICAL: payment captured but booking no longer holds its settlement claim: {context}"
        )
        notification_service.alert_admins(
            "Payment captured, booking changed underneath settlement", context
        )
        raise
    except SQLAlchemyError as e:
        context = _reconciliation_context(snapshot, capture, checked_out_at)
        logger.critical(
            f"CRITICAL: payment captured but booking update failed, manual database "
            f"update required: {context} error={e}",
            exc_info=True,
        )
        notification_service.alert_admins(
            "Payment captured but booking not marked complete", context
        )
        raise CriticalInconsistency(
            f"Payment captured but booking {booking_id} update failed",
            details=context,
        ) from e

    try:
        db.session.add(AuditEvent(
            actor_user_id=actor_id,
            booking_id=booking_id,
            action="booking.completed",
            metadata_={
                "amount_requested": requested_amount,
                "amount_captured": capture.amount_received,
                "actual_duration_minutes": actual_duration_minutes,
                "payment_intent_id": snapshot["payment_intent_id"],
            },
        ))
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to write audit event for completed booking {booking_id}: {e}")

    # Settled from here on; nothing below may fail the request.
    try:
        booking = db.session.get(Booking, booking_id)
        notification_service.notify_booking_completed(booking)
    except Exception as e:
        logger.error(
            f"Post-settlement notification failed for booking {booking_id}: {e}",
            exc_info=True,
        )

    logger.info(f"Booking {booking_id} checked out and settled")
    return booking
