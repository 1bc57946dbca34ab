"""Audit event model.

Logs significant actions (booking transitions, settlement, onboarding
decisions) for the admin activity feed and debugging.
"""

import uuid

from marketplace_core.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    actor_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    booking_id = db.Column(
        db.String(36), db.ForeignKey("bookings.id"), nullable=True
    )
    action = db.Column(db.String(255), nullable=False)  # e.g. "booking.completed"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid Python builtin clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    actor = db.relationship("User", back_populates="audit_events")

    def __repr__(self):
        return f"<AuditEvent {self.action}>"
