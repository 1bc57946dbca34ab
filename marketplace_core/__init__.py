import os
import logging

import click
from flask import Flask, jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import generate_password_hash

from marketplace_core.config import config_by_name
from marketplace_core.errors import MarketplaceError
from marketplace_core.extensions import db, migrate, login_manager, csrf, limiter

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from marketplace_core import models  # noqa: F401

    # --- Register blueprints ---
    from marketplace_core.blueprints.bookings import bookings_bp
    from marketplace_core.blueprints.webhooks import webhooks_bp

    app.register_blueprint(bookings_bp)
    app.register_blueprint(webhooks_bp)

    # Webhooks authenticate by provider signature over the raw body, not CSRF
    csrf.exempt(webhooks_bp)

    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Prevent XSS (legacy but still useful)
        response.headers["X-XSS-Protection"] = "1; mode=block"
        # Permissions Policy (restrict browser features)
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=(), payment=()"
        )
        # JSON API only: nothing to load, nothing to frame
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'; base-uri 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_error_handlers(app):
    """Render every error as JSON: {"success": false, "error", "code"}."""

    @app.errorhandler(MarketplaceError)
    def domain_error(e):
        db.session.rollback()
        if e.status_code >= 500:
            logger.error(f"{type(e).__name__}: {e.message} details={e.details}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"success": False, "error": "Bad request", "code": "bad_request"}), 400

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify({"success": False, "error": "Authentication required", "code": "unauthenticated"}), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"success": False, "error": "Forbidden", "code": "forbidden"}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "error": "Not found", "code": "not_found"}), 404

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"success": False, "error": "Too many requests", "code": "rate_limited"}), 429

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        original = getattr(e, "original_exception", None)
        logger.error(f"Unhandled error: {original or e}", exc_info=original is not None)
        return jsonify({"success": False, "error": "Internal server error", "code": "internal_error"}), 500


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-demo")
    @click.option("--password", default="demo1234", help="Password for the demo users")
    def seed_demo(password):
        """Create a demo customer, professional and a confirmed booking.

        Usage:
            flask seed-demo
            flask seed-demo --password s3cret
        """
        from datetime import datetime, timedelta, timezone

        from marketplace_core.models.background_check import BackgroundCheck
        from marketplace_core.models.booking import Booking
        from marketplace_core.models.professional import ProfessionalProfile
        from marketplace_core.models.user import User

        def get_or_create_user(email, full_name, role):
            user = User.query.filter_by(email=email).first()
            if user:
                click.echo(f"User already exists: {email}")
                return user
            user = User(
                email=email,
                password_hash=generate_password_hash(password),
                full_name=full_name,
                role=role,
            )
            db.session.add(user)
            db.session.flush()
            click.echo(f"Created {role}: {email}")
            return user

        # --- 1. Users ---
        customer = get_or_create_user("customer@marketplace.local", "Demo Customer", "customer")
        pro = get_or_create_user("pro@marketplace.local", "Demo Professional", "professional")

        # --- 2. Professional profile + pending background check ---
        profile = ProfessionalProfile.query.filter_by(user_id=pro.id).first()
        if profile is None:
            profile = ProfessionalProfile(
                user_id=pro.id,
                onboarding_status="application_in_review",
                documents_verified=True,
                interview_completed=True,
            )
            db.session.add(profile)
            db.session.flush()

        check = BackgroundCheck(
            professional_id=pro.id,
            provider=app.config["BACKGROUND_CHECK_PROVIDER"],
            provider_check_id=f"demo_{int(datetime.now(timezone.utc).timestamp())}",
            status="pending",
        )
        db.session.add(check)

        # --- 3. Confirmed booking (authorization already placed) ---
        booking = Booking(
            customer_id=customer.id,
            professional_id=pro.id,
            service_name="Deep cleaning",
            status="confirmed",
            scheduled_start=datetime.now(timezone.utc) + timedelta(hours=1),
            duration_minutes=180,
            address={
                "formatted": "Calle 93 #11-26, Bogotá",
                "latitude": 4.6767,
                "longitude": -74.0483,
            },
            amount_authorized=15000000,
            currency="cop",
            payment_intent_id="pi_demo_not_real",
            payment_status="requires_capture",
        )
        db.session.add(booking)
        db.session.commit()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Seed data created successfully!")
        click.echo("=" * 60)
        click.echo(f"  Customer:      {customer.email} / {password}")
        click.echo(f"  Professional:  {pro.email} / {password}")
        click.echo(f"  Booking:       {booking.id} ({booking.status})")
        click.echo(f"  Check:         {check.provider}:{check.provider_check_id}")
        click.echo("=" * 60)

    @app.cli.command("webhook-events")
    @click.option(
        "--status",
        type=click.Choice(["processing", "completed", "failed"]),
        default=None,
        help="Only show events with this ledger status.",
    )
    @click.option("--limit", default=50, show_default=True, help="Max rows to show.")
    def webhook_events(status, limit):
        """List recent background-check webhook ledger rows.

        Usage:
            flask webhook-events
            flask webhook-events --status failed
        """
        from marketplace_core.services.idempotency_service import list_events

        events = list_events(status=status, limit=limit)
        if not events:
            click.echo("No webhook events found.")
            return
        for event in events:
            received = event.received_at.isoformat() if event.received_at else "-"
            line = f"{event.id}  {event.provider:<7} {event.status:<10} {received}  {event.event_key}"
            if event.error_message:
                line += f"  error={event.error_message}"
            click.echo(line)

    @app.cli.command("replay-webhook-event")
    @click.argument("event_id")
    def replay_webhook_event(event_id):
        """Re-run the handler for one stored webhook event.

        Meant for rows left "failed" after the underlying problem was fixed.

        Usage:
            flask replay-webhook-event <webhook_event_id>
        """
        from marketplace_core.services.background_check_service import (
            BackgroundCheckEventProcessor,
        )

        processor = BackgroundCheckEventProcessor.from_config(app.config)
        try:
            result = processor.replay(event_id)
        except (MarketplaceError, ValueError) as e:
            raise click.ClickException(str(e))
        click.echo(f"Webhook event {event_id}: {result}")

    @app.cli.command("release-settlement-claim")
    @click.argument("booking_id")
    def release_settlement_claim(booking_id):
        """Clear a settlement claim left by a crashed check-out request.

        Only touches bookings still in_progress. Check the payment intent in
        the Stripe dashboard first: if it was already captured, complete the
        booking by hand instead.

        Usage:
            flask release-settlement-claim <booking_id>
        """
        from marketplace_core.services.checkout_service import release_stale_claim

        try:
            released = release_stale_claim(booking_id)
        except SQLAlchemyError as e:
            db.session.rollback()
            raise click.ClickException(f"Database error: {e}")
        if released:
            click.echo(f"Released settlement claim on booking {booking_id}.")
        else:
            click.echo(f"No claim to release on booking {booking_id} (not in_progress or not claimed).")
