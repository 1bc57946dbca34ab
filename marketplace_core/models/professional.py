"""Professional profile — the onboarding subset.

background_check_status mirrors the latest BackgroundCheck.status so the
directory and dashboards don't need a join. The webhook processor keeps it
in sync.
"""

import uuid

from marketplace_core.extensions import db


class ProfessionalProfile(db.Model):
    __tablename__ = "professional_profiles"

    # -- Onboarding states (see onboarding_service) --
    ONBOARDING_STATUSES = [
        "not_started",
        "application_in_review",
        "approved",
        "rejected",
    ]
    ACCOUNT_STATUSES = ["active", "suspended"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), unique=True, nullable=False
    )
    onboarding_status = db.Column(
        db.String(50), nullable=False, default="not_started"
    )
    documents_verified = db.Column(db.Boolean, nullable=False, default=False)
    interview_completed = db.Column(db.Boolean, nullable=False, default=False)
    account_status = db.Column(
        db.String(50), nullable=False, default="active"
    )  # active | suspended
    background_check_status = db.Column(db.String(50), nullable=True)
    latest_background_check_id = db.Column(db.String(36), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="professional_profile")

    def __repr__(self):
        return f"<ProfessionalProfile {self.user_id} ({self.onboarding_status})>"
