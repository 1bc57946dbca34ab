"""Tests for the booking lifecycle: accept, check-in, cancel.

Covers:
- Table-driven status transitions and terminal states
- Ownership checks
- Check-in GPS soft enforcement and recorded coordinates
- Cancellation reason sanitizing
- Audit trail
- JSON endpoints under /api/bookings
"""

import json

import pytest

from marketplace_core.errors import Forbidden, InvalidState, NotFound, ValidationError
from marketplace_core.extensions import db
from marketplace_core.models.audit import AuditEvent
from marketplace_core.models.booking import Booking
from marketplace_core.services import booking_service

SERVICE_LAT = 4.6767
SERVICE_LNG = -74.0483


class TestAcceptBooking:
    def test_pending_becomes_confirmed(self, seed_data):
        booking = booking_service.accept_booking(seed_data["pending_id"], seed_data["pro_id"])
        db.session.commit()
        assert booking.status == "confirmed"

    def test_other_professional_cannot_accept(self, seed_data):
        with pytest.raises(Forbidden):
            booking_service.accept_booking(seed_data["pending_id"], seed_data["other_pro_id"])

    def test_cannot_accept_confirmed_booking(self, seed_data):
        with pytest.raises(InvalidState) as exc:
            booking_service.accept_booking(seed_data["confirmed_id"], seed_data["pro_id"])
        assert "Allowed: in_progress, cancelled" in str(exc.value)

    def test_missing_booking(self, seed_data):
        with pytest.raises(NotFound):
            booking_service.accept_booking("nope", seed_data["pro_id"])

    def test_writes_audit_event(self, seed_data):
        booking_service.accept_booking(seed_data["pending_id"], seed_data["pro_id"])
        db.session.commit()
        audit = AuditEvent.query.filter_by(
            booking_id=seed_data["pending_id"], action="booking.confirmed"
        ).first()
        assert audit is not None
        assert audit.actor_user_id == seed_data["pro_id"]
        assert audit.metadata_["old_status"] == "pending"


class TestCheckIn:
    def test_confirmed_becomes_in_progress(self, seed_data):
        booking = booking_service.check_in(
            seed_data["confirmed_id"], seed_data["pro_id"], SERVICE_LAT, SERVICE_LNG
        )
        db.session.commit()
        assert booking.status == "in_progress"
        assert booking.checked_in_at is not None
        assert booking.check_in_latitude == SERVICE_LAT
        assert booking.check_in_longitude == SERVICE_LNG

    def test_pending_cannot_check_in(self, seed_data):
        with pytest.raises(InvalidState):
            booking_service.check_in(
                seed_data["pending_id"], seed_data["pro_id"], SERVICE_LAT, SERVICE_LNG
            )

    def test_invalid_coordinates(self, seed_data):
        with pytest.raises(ValidationError):
            booking_service.check_in(seed_data["confirmed_id"], seed_data["pro_id"], 100, 0)

    def test_far_away_check_in_is_logged_not_blocked(self, seed_data, caplog):
        with caplog.at_level("WARNING"):
            booking = booking_service.check_in(
                seed_data["confirmed_id"], seed_data["pro_id"], SERVICE_LAT + 0.1, SERVICE_LNG
            )
        assert booking.status == "in_progress"
        assert "unexpected location" in caplog.text

    def test_other_professional_cannot_check_in(self, seed_data):
        with pytest.raises(Forbidden):
            booking_service.check_in(
                seed_data["confirmed_id"], seed_data["other_pro_id"], SERVICE_LAT, SERVICE_LNG
            )


class TestCancelBooking:
    @pytest.mark.parametrize("key", ["pending_id", "confirmed_id"])
    def test_customer_can_cancel_before_service(self, key, seed_data):
        booking = booking_service.cancel_booking(
            seed_data[key], seed_data["customer_id"], reason="<i>Plans changed</i>"
        )
        db.session.commit()
        assert booking.status == "cancelled"
        assert booking.cancelled_at is not None
        assert booking.cancellation_reason == "Plans changed"

    def test_professional_can_cancel(self, seed_data):
        booking = booking_service.cancel_booking(seed_data["pending_id"], seed_data["pro_id"])
        assert booking.status == "cancelled"
        assert booking.cancellation_reason is None

    def test_in_progress_cannot_be_cancelled(self, seed_data):
        with pytest.raises(InvalidState):
            booking_service.cancel_booking(seed_data["in_progress_id"], seed_data["customer_id"])
        booking = db.session.get(Booking, seed_data["in_progress_id"])
        assert booking.cancelled_at is None

    def test_cancelled_is_terminal(self, seed_data):
        booking_service.cancel_booking(seed_data["pending_id"], seed_data["customer_id"])
        db.session.commit()
        with pytest.raises(InvalidState) as exc:
            booking_service.accept_booking(seed_data["pending_id"], seed_data["pro_id"])
        assert "terminal state" in str(exc.value)

    def test_stranger_cannot_cancel(self, seed_data):
        with pytest.raises(Forbidden):
            booking_service.cancel_booking(seed_data["pending_id"], seed_data["other_pro_id"])


class TestBookingEndpoints:
    def test_accept_endpoint(self, client, login, seed_data):
        login(seed_data["pro_id"])
        resp = client.post(f"/api/bookings/{seed_data['pending_id']}/accept")
        assert resp.status_code == 200
        data = json.loads(resp.data)
        assert data["success"] is True
        assert data["booking"]["status"] == "confirmed"

    def test_check_in_endpoint(self, client, login, seed_data):
        login(seed_data["pro_id"])
        resp = client.post(
            f"/api/bookings/{seed_data['confirmed_id']}/check-in",
            data=json.dumps({"latitude": SERVICE_LAT, "longitude": SERVICE_LNG}),
            content_type="application/json",
        )
        assert resp.status_code == 200
        data = json.loads(resp.data)
        assert data["booking"]["status"] == "in_progress"
        assert data["booking"]["checkedInAt"]

    def test_cancel_endpoint_as_customer(self, client, login, seed_data):
        login(seed_data["customer_id"])
        resp = client.post(
            f"/api/bookings/{seed_data['confirmed_id']}/cancel",
            data=json.dumps({"reason": "Sick"}),
            content_type="application/json",
        )
        assert resp.status_code == 200
        assert json.loads(resp.data)["booking"]["status"] == "cancelled"

    def test_customer_cannot_accept(self, client, login, seed_data):
        login(seed_data["customer_id"])
        resp = client.post(f"/api/bookings/{seed_data['pending_id']}/accept")
        assert resp.status_code == 403
        assert json.loads(resp.data)["code"] == "forbidden"

    def test_invalid_transition_returns_409(self, client, login, seed_data):
        login(seed_data["customer_id"])
        resp = client.post(
            f"/api/bookings/{seed_data['in_progress_id']}/cancel",
            data=json.dumps({}),
            content_type="application/json",
        )
        assert resp.status_code == 409
        assert json.loads(resp.data)["code"] == "invalid_state"

    def test_non_object_body_returns_400(self, client, login, seed_data):
        login(seed_data["pro_id"])
        resp = client.post(
            f"/api/bookings/{seed_data['confirmed_id']}/check-in",
            data=json.dumps([1, 2]),
            content_type="application/json",
        )
        assert resp.status_code == 400

    def test_unauthenticated_returns_401(self, client, seed_data):
        resp = client.post(f"/api/bookings/{seed_data['pending_id']}/accept")
        assert resp.status_code == 401
        assert json.loads(resp.data)["code"] == "unauthenticated"
