"""Booking model.

Amounts are integers in minor units (cents). Status transitions are
enforced by booking_service / checkout_service via VALID_TRANSITIONS.

Invariants kept by checkout_service:
- checked_out_at and amount_captured are set iff status == "completed"
- settlement_token is the pre-capture claim; at most one request holds it
"""

import uuid

from marketplace_core.extensions import db


class Booking(db.Model):
    __tablename__ = "bookings"
    __table_args__ = (
        db.Index("ix_bookings_professional_status", "professional_id", "status"),
    )

    # -- Valid statuses --
    STATUSES = ["pending", "confirmed", "in_progress", "completed", "cancelled"]

    # -- Valid status transitions --
    VALID_TRANSITIONS = {
        "pending": ["confirmed", "cancelled"],
        "confirmed": ["in_progress", "cancelled"],
        "in_progress": ["completed"],
    }

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    customer_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    professional_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    service_name = db.Column(db.String(255), nullable=True)
    status = db.Column(
        db.String(50), default="pending", nullable=False
    )  # pending | confirmed | in_progress | completed | cancelled

    # --- Schedule ---
    scheduled_start = db.Column(db.DateTime(timezone=True), nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=True)
    checked_in_at = db.Column(db.DateTime(timezone=True), nullable=True)
    checked_out_at = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_duration_minutes = db.Column(db.Integer, nullable=True)

    # --- Location ---
    address = db.Column(db.JSON, nullable=True)  # {"formatted", "latitude", "longitude"}
    check_in_latitude = db.Column(db.Float, nullable=True)
    check_in_longitude = db.Column(db.Float, nullable=True)
    check_out_latitude = db.Column(db.Float, nullable=True)
    check_out_longitude = db.Column(db.Float, nullable=True)

    # --- Money (minor units) ---
    amount_authorized = db.Column(db.BigInteger, nullable=False)
    time_extension_amount = db.Column(db.BigInteger, nullable=True)
    amount_captured = db.Column(db.BigInteger, nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="cop")
    payment_intent_id = db.Column(db.String(255), nullable=True)
    payment_status = db.Column(
        db.String(50), nullable=True
    )  # requires_capture | succeeded

    # --- Settlement claim (taken before capture, see checkout_service) ---
    settlement_token = db.Column(db.String(36), nullable=True)
    settlement_started_at = db.Column(db.DateTime(timezone=True), nullable=True)

    completion_notes = db.Column(db.Text, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    customer = db.relationship("User", foreign_keys=[customer_id])
    professional = db.relationship("User", foreign_keys=[professional_id])

    def can_transition_to(self, new_status):
        return new_status in self.VALID_TRANSITIONS.get(self.status, [])

    def __repr__(self):
        return f"<Booking {self.id} ({self.status})>"
