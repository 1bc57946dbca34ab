"""Idempotency ledger for inbound provider webhooks.

The ledger row is inserted BEFORE the handler runs. The unique constraint
on (event_key, provider) is the lock: of two concurrent deliveries only one
insert succeeds, the other gets an IntegrityError and is a duplicate.

Ledger availability is secondary to processing the webhook, so a database
error other than the uniqueness violation is logged and processing goes on
without a ledger row.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from marketplace_core.extensions import db
from marketplace_core.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)

# Outcomes of record_event()
RECORDED = "recorded"
DUPLICATE = "duplicate"
UNRECORDED = "unrecorded"


def build_event_key(provider_check_id, event_type):
    return f"{provider_check_id}:{event_type}"


def record_event(event_key, provider, event_type, payload):
    """Insert the ledger row with status=processing.

    Returns RECORDED, DUPLICATE (row already exists, skip side effects),
    or UNRECORDED (ledger unavailable, process anyway).
    """
    event = WebhookEvent(
        event_key=event_key,
        provider=provider,
        event_type=event_type,
        status="processing",
        payload=payload,
    )
    try:
        db.session.add(event)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info(f"Duplicate webhook event {provider}:{event_key}, skipping")
        return DUPLICATE
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(
            f"Could not record webhook event {provider}:{event_key} in ledger, "
            f"processing anyway: {e}"
        )
        return UNRECORDED
    return RECORDED


def _finish(event_key, provider, status, error_message=None):
    try:
        event = WebhookEvent.query.filter_by(event_key=event_key, provider=provider).first()
        if event is None:
            logger.warning(f"No ledger row for {provider}:{event_key}, cannot mark {status}")
            return
        event.status = status
        event.error_message = error_message
        event.processed_at = datetime.now(timezone.utc)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to mark webhook event {provider}:{event_key} as {status}: {e}")


def mark_completed(event_key, provider):
    _finish(event_key, provider, "completed")


def mark_failed(event_key, provider, error_message):
    _finish(event_key, provider, "failed", error_message=str(error_message)[:2000])


def list_events(status=None, limit=50):
    """Most recent ledger rows first, optionally filtered by status."""
    query = WebhookEvent.query
    if status:
        query = query.filter_by(status=status)
    return query.order_by(WebhookEvent.received_at.desc()).limit(limit).all()
