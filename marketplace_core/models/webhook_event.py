"""Webhook event model (idempotency ledger).

One row per (event_key, provider), where event_key is
"<provider_check_id>:<event_type>". The row is inserted with
status="processing" BEFORE any side effect runs; a second insert with the
same key hits the unique constraint, and that violation is the duplicate
signal. Rows are never deleted — they are the audit trail.
"""

import uuid

from marketplace_core.extensions import db


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"
    __table_args__ = (
        db.UniqueConstraint("event_key", "provider", name="uq_webhook_events_key_provider"),
    )

    STATUSES = ["processing", "completed", "failed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event_key = db.Column(
        db.String(255), nullable=False
    )  # e.g. "rpt_123:check.completed"
    provider = db.Column(db.String(50), nullable=False)  # checkr | truora
    event_type = db.Column(db.String(100), nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default="processing", index=True
    )  # processing | completed | failed
    payload = db.Column(db.JSON, nullable=True)  # raw provider body, for replay
    error_message = db.Column(db.Text, nullable=True)
    received_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<WebhookEvent {self.provider}:{self.event_key} ({self.status})>"
