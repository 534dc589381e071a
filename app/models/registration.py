"""Event registration model.

One member's claim on one event slot. Carries two independent state
axes (attendance status and payment status) and the pass send-lock.

The send-lock is a tagged variant:
    unset   — no pass delivered, nobody sending
    locked  — a worker holds the lock (pdf_lock_token identifies it)
    sent    — delivered at pdf_sent_at
"""

from datetime import datetime, timezone

from app.extensions import db

# Reported by send_marker while a lock is held. Older than any real send.
LOCK_SENTINEL = datetime(2000, 1, 1, tzinfo=timezone.utc)


class Registration(db.Model):
    __tablename__ = "event_registrations"
    __table_args__ = (
        db.UniqueConstraint(
            "event_id", "member_id", name="unique_event_member_registration"
        ),
    )

    # -- Valid statuses --
    STATUSES = ["registered", "cancelled", "attended", "no_show"]

    # -- Valid status transitions (enforced in registration_service) --
    VALID_TRANSITIONS = {
        "registered": ["attended", "cancelled", "no_show"],
        "cancelled": ["registered"],
        "attended": [],
        "no_show": [],
    }

    # -- Valid payment statuses --
    PAYMENT_STATUSES = ["pending", "paid", "failed", "refunded"]

    PAYMENT_TRANSITIONS = {
        "pending": ["paid", "failed"],
        "failed": ["pending", "paid"],
        "paid": ["refunded"],
        "refunded": [],
    }

    # -- Send-lock states --
    SEND_STATES = ["unset", "locked", "sent"]

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(
        db.Integer, db.ForeignKey("events.id"), nullable=False, index=True
    )
    member_id = db.Column(
        db.Integer, db.ForeignKey("members.id"), nullable=False, index=True
    )
    status = db.Column(
        db.String(20), default="registered", nullable=False
    )  # registered | cancelled | attended | no_show
    payment_status = db.Column(
        db.String(20), default="pending", nullable=False
    )  # pending | paid | failed | refunded
    amount_paid = db.Column(db.Numeric(10, 2))
    payment_order_id = db.Column(db.String(255))
    payment_id = db.Column(db.String(255))
    cash_receipt_number = db.Column(db.String(100))
    notes = db.Column(db.Text)
    pdf_path = db.Column(db.String(500))

    registered_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    attended_at = db.Column(db.DateTime(timezone=True))
    cancelled_at = db.Column(db.DateTime(timezone=True))

    # --- Send-lock ---
    pdf_send_state = db.Column(
        db.String(10), default="unset", nullable=False
    )  # unset | locked | sent
    pdf_sent_at = db.Column(db.DateTime(timezone=True))
    pdf_lock_token = db.Column(db.String(36))
    pdf_lock_acquired_at = db.Column(db.DateTime(timezone=True))

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    event = db.relationship("Event", back_populates="registrations")
    member = db.relationship("Member", back_populates="registrations")
    audit_events = db.relationship(
        "AuditEvent", back_populates="registration", lazy="dynamic"
    )

    @property
    def pass_sent(self):
        return self.pdf_send_state == "sent"

    @property
    def send_marker(self):
        """Single-timestamp view of the send-lock.

        None when unset, LOCK_SENTINEL while locked, the send time once sent.
        """
        if self.pdf_send_state == "locked":
            return LOCK_SENTINEL
        if self.pdf_send_state == "sent":
            return self.pdf_sent_at
        return None

    def __repr__(self):
        return (
            f"<Registration {self.id} event={self.event_id} "
            f"member={self.member_id} ({self.status}/{self.payment_status})>"
        )
