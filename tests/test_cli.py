"""Tests for the operator CLI commands."""

from datetime import datetime, timezone

from marketplace_core.extensions import db
from marketplace_core.models.booking import Booking
from marketplace_core.models.user import User
from marketplace_core.models.webhook_event import WebhookEvent
from marketplace_core.services import idempotency_service


def _claim(booking_id):
    booking = db.session.get(Booking, booking_id)
    booking.settlement_token = "stale-token"
    booking.settlement_started_at = datetime.now(timezone.utc)
    db.session.commit()


class TestSeedDemo:
    def test_creates_users_and_booking(self, app):
        result = app.test_cli_runner().invoke(args=["seed-demo", "--password", "s3cret"])

        assert result.exit_code == 0
        assert "Seed data created successfully!" in result.output
        db.session.expire_all()
        assert User.query.filter_by(email="pro@marketplace.local").count() == 1
        assert Booking.query.filter_by(status="confirmed").count() == 1

    def test_is_rerunnable(self, app):
        runner = app.test_cli_runner()
        runner.invoke(args=["seed-demo"])
        result = runner.invoke(args=["seed-demo"])

        assert result.exit_code == 0
        assert "User already exists: customer@marketplace.local" in result.output


class TestWebhookEvents:
    def test_lists_failed_rows(self, app, seed_data):
        idempotency_service.record_event("rpt_1:check.completed", "checkr", "check.completed", {})
        idempotency_service.mark_failed("rpt_1:check.completed", "checkr", "provider down")
        idempotency_service.record_event("rpt_2:check.created", "checkr", "check.created", {})

        result = app.test_cli_runner().invoke(args=["webhook-events", "--status", "failed"])

        assert result.exit_code == 0
        assert "rpt_1:check.completed" in result.output
        assert "error=provider down" in result.output
        assert "rpt_2:check.created" not in result.output

    def test_empty(self, app, seed_data):
        result = app.test_cli_runner().invoke(args=["webhook-events"])
        assert "No webhook events found." in result.output


class TestReplayWebhookEvent:
    def test_unknown_id(self, app, seed_data):
        result = app.test_cli_runner().invoke(args=["replay-webhook-event", "missing"])
        assert result.exit_code != 0
        assert "not found" in result.output

    def test_replays_created_event(self, app, seed_data):
        payload = {"type": "report.created", "data": {"object": {"id": "rpt_123", "status": "pending"}}}
        idempotency_service.record_event("rpt_123:check.created", "checkr", "check.created", payload)
        idempotency_service.mark_failed("rpt_123:check.created", "checkr", "db hiccup")
        row = WebhookEvent.query.filter_by(event_key="rpt_123:check.created").first()

        result = app.test_cli_runner().invoke(args=["replay-webhook-event", row.id])

        assert result.exit_code == 0
        assert f"Webhook event {row.id}: completed" in result.output


class TestReleaseSettlementClaim:
    def test_releases_stale_claim(self, app, seed_data):
        _claim(seed_data["in_progress_id"])

        result = app.test_cli_runner().invoke(
            args=["release-settlement-claim", seed_data["in_progress_id"]]
        )

        assert result.exit_code == 0
        assert "Released settlement claim" in result.output
        db.session.expire_all()
        booking = db.session.get(Booking, seed_data["in_progress_id"])
        assert booking.settlement_token is None
        assert booking.status == "in_progress"

    def test_nothing_to_release(self, app, seed_data):
        result = app.test_cli_runner().invoke(
            args=["release-settlement-claim", seed_data["confirmed_id"]]
        )
        assert result.exit_code == 0
        assert "No claim to release" in result.output
