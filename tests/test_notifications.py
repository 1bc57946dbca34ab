"""Tests for notification fan-out, Expo push, email rendering and the
payment gateway adapter."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests
import stripe

from marketplace_core.extensions import db
from marketplace_core.models.booking import Booking
from marketplace_core.models.user import User
from marketplace_core.services import email_service, notification_service, payment_gateway
from marketplace_core.services.push_service import PushDeliveryError, send_push

SEND_EMAIL = "marketplace_core.services.notification_service.send_email"
SEND_EMAIL_SYNC = "marketplace_core.services.notification_service.send_email_sync"
SEND_PUSH = "marketplace_core.services.notification_service.send_push"
REQUESTS_POST = "marketplace_core.services.push_service.requests.post"


def _completed_booking(seed_data):
    booking = db.session.get(Booking, seed_data["in_progress_id"])
    booking.status = "completed"
    booking.checked_out_at = datetime.now(timezone.utc)
    booking.amount_captured = 5500000
    booking.actual_duration_minutes = 60
    db.session.commit()
    return booking


class TestFormatting:
    def test_format_amount(self):
        assert notification_service.format_amount(5500000, "cop") == "55,000.00 COP"

    def test_format_address(self):
        assert notification_service.format_address({"formatted": "Calle 93"}) == "Calle 93"
        assert notification_service.format_address(None) == "Not specified"


class TestBookingCompleted:
    @patch(SEND_PUSH)
    @patch(SEND_EMAIL)
    def test_emails_and_pushes_both_parties(self, mock_email, mock_push, seed_data):
        booking = _completed_booking(seed_data)

        notification_service.notify_booking_completed(booking)

        recipients = [c.kwargs["to"] for c in mock_email.call_args_list]
        assert recipients == ["customer@test.com", "pro@test.com"]
        pushed_to = [c.args[0] for c in mock_push.call_args_list]
        assert pushed_to == [seed_data["customer_id"], seed_data["pro_id"]]
        assert "55,000.00 COP" in mock_push.call_args_list[1].args[1]["body"]

    @patch(SEND_PUSH)
    @patch(SEND_EMAIL, side_effect=RuntimeError("smtp down"))
    def test_one_failure_does_not_stop_the_rest(self, mock_email, mock_push, seed_data, caplog):
        booking = _completed_booking(seed_data)

        with caplog.at_level("ERROR"):
            notification_service.notify_booking_completed(booking)

        assert mock_email.call_count == 2
        assert mock_push.call_count == 2
        assert "customer completion email" in caplog.text

    @patch(SEND_PUSH)
    @patch(SEND_EMAIL)
    @patch("marketplace_core.services.notification_service.format_amount", side_effect=ValueError("bad currency"))
    def test_preparation_failure_is_logged_not_raised(self, mock_format, mock_email, mock_push, seed_data, caplog):
        booking = _completed_booking(seed_data)

        with caplog.at_level("ERROR"):
            notification_service.notify_booking_completed(booking)

        mock_email.assert_not_called()
        assert "booking completion fan-out" in caplog.text


class TestAlertAdmins:
    @patch(SEND_EMAIL_SYNC)
    def test_alerts_configured_recipients(self, mock_send):
        notification_service.alert_admins("Capture failed", {"booking_id": "b1"})
        assert mock_send.call_args.kwargs["to"] == ["ops@marketplace.test"]
        assert mock_send.call_args.kwargs["subject"] == "[ALERT] Capture failed"

    @patch(SEND_EMAIL_SYNC, side_effect=OSError("no route"))
    def test_never_raises(self, mock_send):
        notification_service.alert_admins("Capture failed", {})


class TestPush:
    def test_user_without_token_is_skipped(self, seed_data):
        with patch(REQUESTS_POST) as mock_post:
            assert send_push(seed_data["customer_id"], {"title": "Hi"}) is False
        mock_post.assert_not_called()

    @patch(REQUESTS_POST)
    def test_sends_to_expo(self, mock_post, app, seed_data):
        user = db.session.get(User, seed_data["customer_id"])
        user.push_token = "ExponentPushToken[abc]"
        db.session.commit()
        mock_post.return_value = MagicMock(status_code=200)

        assert send_push(user.id, {"title": "Done", "body": "All clean"}) is True

        assert mock_post.call_args.args[0] == app.config["EXPO_PUSH_URL"]
        message = mock_post.call_args.kwargs["json"]
        assert message["to"] == "ExponentPushToken[abc]"
        assert message["title"] == "Done"

    @patch(REQUESTS_POST, side_effect=requests.exceptions.ConnectionError("refused"))
    def test_expo_failure_raises(self, mock_post, seed_data):
        user = db.session.get(User, seed_data["pro_id"])
        user.push_token = "ExponentPushToken[xyz]"
        db.session.commit()

        with pytest.raises(PushDeliveryError):
            send_push(user.id, {"title": "Payment received"})


class TestEmailRendering:
    def test_completion_email_renders(self, app):
        msg = email_service._build_message(
            app,
            "customer@test.com",
            "Your Deep cleaning is complete",
            "emails/service_completed.html",
            {
                "customer_name": "Carla",
                "professional_name": "Pedro",
                "service_name": "Deep cleaning",
                "booking_id": "b1",
                "duration": "60 minutes",
                "address": "Calle 93",
                "amount": "55,000.00 COP",
                "for_professional": False,
            },
            None,
        )
        assert msg["To"] == "customer@test.com"
        assert "55,000.00 COP" in msg.get_payload()[0].get_payload(decode=True).decode()

    def test_alert_email_to_several_recipients(self, app):
        msg = email_service._build_message(
            app,
            ["a@test.com", "b@test.com"],
            "[ALERT] x",
            "emails/admin_alert.html",
            {"subject": "x", "details": {"booking_id": "b1"}},
            None,
        )
        assert msg["To"] == "a@test.com, b@test.com"


class TestPaymentGateway:
    @patch("marketplace_core.services.payment_gateway.stripe.PaymentIntent.create")
    def test_authorize_places_manual_capture_hold(self, mock_create):
        mock_create.return_value = {"id": "pi_new"}

        assert payment_gateway.authorize(50000, "COP", "pm_card") == "pi_new"

        params = mock_create.call_args.kwargs
        assert params["capture_method"] == "manual"
        assert params["currency"] == "cop"
        assert params["amount"] == 50000

    @patch("marketplace_core.services.payment_gateway.stripe.PaymentIntent.create")
    def test_authorize_decline(self, mock_create):
        mock_create.side_effect = stripe.CardError("Your card was declined.", None, "card_declined")
        with pytest.raises(payment_gateway.PaymentGatewayError) as exc:
            payment_gateway.authorize(50000, "cop", "pm_card")
        assert exc.value.code == "card_declined"

    @patch("marketplace_core.services.payment_gateway.stripe.PaymentIntent.capture")
    def test_capture_prefers_reported_amount(self, mock_capture):
        mock_capture.return_value = {"status": "succeeded", "amount_received": 54000}

        result = payment_gateway.capture("pi_test", 55000, idempotency_key="k1")

        assert result.amount_requested == 55000
        assert result.amount_received == 54000
        assert mock_capture.call_args.kwargs["idempotency_key"] == "k1"

    @patch("marketplace_core.services.payment_gateway.stripe.PaymentIntent.capture")
    def test_capture_keeps_a_reported_zero(self, mock_capture):
        mock_capture.return_value = {"status": "succeeded", "amount_received": 0}

        result = payment_gateway.capture("pi_test", 55000, idempotency_key="k1")

        assert result.amount_received == 0

    @patch("marketplace_core.services.payment_gateway.stripe.PaymentIntent.capture")
    def test_capture_falls_back_when_amount_missing(self, mock_capture):
        mock_capture.return_value = {"status": "succeeded"}
        assert payment_gateway.capture("pi_test", 55000).amount_received == 55000
