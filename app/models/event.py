"""Event model."""

from app.extensions import db


class Event(db.Model):
    __tablename__ = "events"

    STATUSES = ["upcoming", "ongoing", "completed", "cancelled"]

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    event_date = db.Column(db.DateTime(timezone=True))
    venue = db.Column(db.String(255))
    city = db.Column(db.String(100))
    registration_fee = db.Column(db.Numeric(10, 2), default=0)
    max_attendees = db.Column(db.Integer)
    is_public = db.Column(db.Boolean, default=True)
    status = db.Column(db.String(50), default="upcoming", nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    registrations = db.relationship(
        "Registration", back_populates="event", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Event {self.title[:30]} ({self.status})>"
