"""Background check model.

status holds the provider-reported state as a string (clear, consider,
suspended, ...). Values are owned by the provider, not by us.
"""

import uuid

from marketplace_core.extensions import db


class BackgroundCheck(db.Model):
    __tablename__ = "background_checks"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    professional_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    provider = db.Column(db.String(50), nullable=False)  # checkr | truora
    provider_check_id = db.Column(
        db.String(255), unique=True, nullable=False
    )
    status = db.Column(db.String(50), nullable=False, default="pending")
    recommendation = db.Column(
        db.String(50), nullable=True
    )  # approved | review_required | rejected
    result_data = db.Column(db.JSON, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    professional = db.relationship("User")

    def __repr__(self):
        return f"<BackgroundCheck {self.provider}:{self.provider_check_id} ({self.status})>"
