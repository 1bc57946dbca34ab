"""Background-check webhook processing.

Flow for BackgroundCheckEventProcessor.ingest():
  1. Verify signature over the raw body (SignatureInvalid -> 400)
  2. Normalize into a NormalizedEvent
  3. Insert ledger row "<provider_check_id>:<type>" (duplicate -> ack, stop)
  4. Dispatch to the handler for the event type (unknown -> log, ack)
  5. Mark the ledger row completed / failed
  6. Re-raise a handler failure after the ledger update (-> 500)

A failed row is never reprocessed by a redelivery; the redelivery is
absorbed as a duplicate. `flask replay-webhook-event` re-drives one by hand.
"""

import logging

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from marketplace_core.errors import NotFound, ProviderError
from marketplace_core.extensions import db
from marketplace_core.models.background_check import BackgroundCheck
from marketplace_core.models.professional import ProfessionalProfile
from marketplace_core.models.user import User
from marketplace_core.models.webhook_event import WebhookEvent
from marketplace_core.services import idempotency_service, notification_service, onboarding_service
from marketplace_core.services.background_check_providers import build_provider

logger = logging.getLogger(__name__)


class BackgroundCheckEventProcessor:
    """Ingests webhooks for exactly one provider, chosen by the caller."""

    def __init__(self, provider):
        self.provider = provider
        self._handlers = {
            "check.created": self._handle_created,
            "check.completed": self._handle_completed,
            "check.updated": self._handle_updated,
            "check.failed": self._handle_failed,
        }

    @classmethod
    def from_config(cls, config=None):
        config = config or current_app.config
        return cls(build_provider(config["BACKGROUND_CHECK_PROVIDER"], config))

    def ingest(self, raw_body, signature, headers=None):
        """Process one webhook delivery. Returns the acknowledgement dict.

        Raises:
            SignatureInvalid: bad or missing signature.
            ValidationError: signed body is not a usable event.
            Exception: whatever the handler raised, after the ledger says failed.
        """
        event = self.provider.verify_webhook(raw_body, signature, headers)
        event_key = idempotency_service.build_event_key(event.provider_check_id, event.type)

        outcome = idempotency_service.record_event(
            event_key, event.provider, event.type, event.data
        )
        if outcome == idempotency_service.DUPLICATE:
            return {"received": True, "duplicate": True}

        logger.info(
            f"Processing background check event: type={event.type} "
            f"provider={event.provider} check={event.provider_check_id}"
        )
        self._run(event, event_key)
        logger.info(f"Background check event processed: {event.provider}:{event_key}")
        return {"received": True}

    def _run(self, event, event_key):
        try:
            self.dispatch(event)
        except Exception as e:
            db.session.rollback()
            logger.error(
                f"Background check event failed: {event.provider}:{event_key}: {e}",
                exc_info=True,
            )
            idempotency_service.mark_failed(event_key, event.provider, e)
            raise
        idempotency_service.mark_completed(event_key, event.provider)

    def dispatch(self, event):
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.warning(f"Unhandled background check event type: {event.type}")
            return
        handler(event)

    def replay(self, webhook_event_id):
        """Re-drive a stored ledger row (operator action). Returns its new status."""
        row = db.session.get(WebhookEvent, webhook_event_id)
        if row is None:
            raise NotFound(f"Webhook event {webhook_event_id} not found.")
        if row.provider != self.provider.name:
            raise ValueError(
                f"Webhook event {webhook_event_id} belongs to provider {row.provider}, "
                f"not {self.provider.name}"
            )
        event = self.provider.normalize_event(row.payload or {})
        event.type = row.event_type
        logger.info(f"Replaying webhook event {row.provider}:{row.event_key} (was {row.status})")
        try:
            self._run(event, row.event_key)
        except Exception:
            return "failed"
        return "completed"

    # ──────────────────────────────────────────────
    # Handlers
    # ──────────────────────────────────────────────

    def _get_check(self, provider_check_id):
        check = BackgroundCheck.query.filter_by(provider_check_id=provider_check_id).first()
        if check is None:
            raise NotFound(f"No background check with provider id {provider_check_id}")
        return check

    def _handle_created(self, event):
        check = BackgroundCheck.query.filter_by(provider_check_id=event.provider_check_id).first()
        if check is None:
            # The provider can call back before our own insert is committed.
            logger.warning(f"check.created for unknown check {event.provider_check_id}")
            return
        check.status = event.status
        db.session.commit()
        logger.info(f"Background check created: {event.provider_check_id} ({event.status})")

    def _handle_completed(self, event):
        # The webhook is a pointer; the provider's API is the source of truth.
        result = self.provider.get_check_status(event.provider_check_id)

        check = self._get_check(event.provider_check_id)
        check.status = result.status
        check.recommendation = result.recommendation
        check.result_data = result.raw_data
        check.completed_at = result.completed_at
        db.session.flush()

        professional = db.session.get(User, check.professional_id)
        profile = ProfessionalProfile.query.filter_by(user_id=check.professional_id).first()
        if profile is not None:
            profile.background_check_status = result.status
            profile.latest_background_check_id = check.id
        else:
            logger.warning(f"No professional profile for user {check.professional_id}")
        db.session.commit()

        logger.info(
            f"Background check completed: {event.provider_check_id} "
            f"status={result.status} recommendation={result.recommendation}"
        )

        notification_service.notify_background_check_result(professional, check)

        if profile is not None:
            onboarding_service.apply_background_check_result(
                profile, result.status, result.recommendation
            )
            db.session.commit()

    def _handle_updated(self, event):
        try:
            result = self.provider.get_check_status(event.provider_check_id)
        except ProviderError as e:
            logger.warning(
                f"Skipping check.updated for {event.provider_check_id}, status fetch failed: {e}"
            )
            return

        check = BackgroundCheck.query.filter_by(provider_check_id=event.provider_check_id).first()
        if check is None:
            logger.warning(f"check.updated for unknown check {event.provider_check_id}")
            return
        check.status = result.status
        check.result_data = result.raw_data
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to update background check {event.provider_check_id}: {e}")

    def _handle_failed(self, event):
        logger.error(f"Background check failed at provider: {event.provider_check_id}")
        check = BackgroundCheck.query.filter_by(provider_check_id=event.provider_check_id).first()
        if check is None:
            logger.warning(f"check.failed for unknown check {event.provider_check_id}")
        else:
            check.status = "suspended"
            check.result_data = event.data
            db.session.commit()

        notification_service.alert_admins(
            f"Background check failed: {event.provider_check_id}",
            {
                "provider": event.provider,
                "provider_check_id": event.provider_check_id,
                "professional_id": check.professional_id if check else None,
            },
        )
