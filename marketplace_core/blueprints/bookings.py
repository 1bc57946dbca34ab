"""Bookings blueprint — /api/bookings

JSON API used by the mobile apps. Session auth via Flask-Login; the
unauthorized handler returns a JSON 401. Domain errors raised by the
services are rendered by the MarketplaceError handler in create_app().
POSTs are CSRF-protected; clients fetch a token from GET /csrf-token after
logging in.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user
from flask_wtf.csrf import generate_csrf

from marketplace_core.decorators import role_required
from marketplace_core.errors import ValidationError
from marketplace_core.extensions import db, limiter
from marketplace_core.services import booking_service, checkout_service

logger = logging.getLogger(__name__)

bookings_bp = Blueprint("bookings", __name__, url_prefix="/api/bookings")


def _iso(dt):
    return dt.isoformat() if dt else None


def serialize_booking(booking):
    return {
        "id": booking.id,
        "status": booking.status,
        "serviceName": booking.service_name,
        "scheduledStart": _iso(booking.scheduled_start),
        "checkedInAt": _iso(booking.checked_in_at),
        "checkedOutAt": _iso(booking.checked_out_at),
        "actualDurationMinutes": booking.actual_duration_minutes,
        "amountAuthorized": booking.amount_authorized,
        "amountCaptured": booking.amount_captured,
        "currency": booking.currency,
        "paymentStatus": booking.payment_status,
        "cancelledAt": _iso(booking.cancelled_at),
    }


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


@bookings_bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    """Token for the session cookie. Send it back as the X-CSRFToken header
    on every POST to this blueprint."""
    return jsonify({"csrfToken": generate_csrf()}), 200


@bookings_bp.route("/<booking_id>/check-out", methods=["POST"])
@limiter.limit("10 per minute")
@role_required("professional")
def check_out(booking_id):
    """Finish the service and capture payment.

    Body: {"latitude": float, "longitude": float, "completionNotes": str?}
    """
    data = _json_body()
    booking = checkout_service.check_out(
        booking_id,
        current_user.id,
        data.get("latitude"),
        data.get("longitude"),
        completion_notes=data.get("completionNotes"),
    )
    return jsonify({
        "success": True,
        "booking": {
            "id": booking.id,
            "status": booking.status,
            "checkedOutAt": _iso(booking.checked_out_at),
            "actualDurationMinutes": booking.actual_duration_minutes,
            "amountCaptured": booking.amount_captured,
        },
    }), 200


@bookings_bp.route("/<booking_id>/accept", methods=["POST"])
@role_required("professional")
def accept(booking_id):
    booking = booking_service.accept_booking(booking_id, current_user.id)
    db.session.commit()
    return jsonify({"success": True, "booking": serialize_booking(booking)}), 200


@bookings_bp.route("/<booking_id>/check-in", methods=["POST"])
@limiter.limit("10 per minute")
@role_required("professional")
def check_in(booking_id):
    """Body: {"latitude": float, "longitude": float}"""
    data = _json_body()
    booking = booking_service.check_in(
        booking_id, current_user.id, data.get("latitude"), data.get("longitude")
    )
    db.session.commit()
    return jsonify({"success": True, "booking": serialize_booking(booking)}), 200


@bookings_bp.route("/<booking_id>/cancel", methods=["POST"])
@role_required("customer", "professional")
def cancel(booking_id):
    """Body: {"reason": str?}"""
    data = _json_body()
    booking = booking_service.cancel_booking(booking_id, current_user.id, data.get("reason"))
    db.session.commit()
    return jsonify({"success": True, "booking": serialize_booking(booking)}), 200
