"""User model.

Customers, professionals and admins share one table; ``role`` tells them
apart. Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from marketplace_core.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    ROLES = ["customer", "professional", "admin"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255))
    role = db.Column(
        db.String(50), nullable=False, default="customer"
    )  # customer | professional | admin
    push_token = db.Column(db.String(255), nullable=True)  # Expo push token
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    professional_profile = db.relationship(
        "ProfessionalProfile", back_populates="user", uselist=False
    )
    audit_events = db.relationship(
        "AuditEvent", back_populates="actor", lazy="dynamic"
    )

    @property
    def is_admin(self):
        return self.role == "admin"

    def __repr__(self):
        return f"<User {self.email}>"
