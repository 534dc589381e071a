"""Notification log model.

Operator-facing activity feed. One row per notification shown to a staff
user, e.g. "WhatsApp Pass Sent" after a resend they triggered succeeds.
"""

from app.extensions import db


class NotificationLog(db.Model):
    __tablename__ = "notification_logs"

    TYPES = ["event", "app_update"]
    STATUSES = ["sent", "failed"]

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    member_id = db.Column(
        db.Integer, db.ForeignKey("members.id"), nullable=True
    )
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(50), default="event", nullable=False)
    event_id = db.Column(
        db.Integer, db.ForeignKey("events.id"), nullable=True
    )
    status = db.Column(db.String(50), default="sent", nullable=False)
    error_message = db.Column(db.Text)
    sent_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="notifications")

    def __repr__(self):
        return f"<NotificationLog {self.title} ({self.status})>"
