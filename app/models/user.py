"""User model.

Staff accounts (admins, managers, sub-admins, gate staff) that log in to
run check-in and resend passes. Members never log in here.
Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from app.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    ROLES = ["admin", "manager", "sub-admin", "staff"]

    # Roles exempt from the public send-whatsapp rate limit
    PRIVILEGED_ROLES = ["admin", "manager", "sub-admin"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255))
    role = db.Column(
        db.String(50), default="staff", nullable=False
    )  # admin | manager | sub-admin | staff
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
    audit_events = db.relationship(
        "AuditEvent", back_populates="actor", lazy="dynamic"
    )
    notifications = db.relationship(
        "NotificationLog", back_populates="user", lazy="dynamic"
    )

    @property
    def is_admin(self):
        return self.role == "admin"

    @property
    def is_privileged(self):
        return self.role in self.PRIVILEGED_ROLES

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
