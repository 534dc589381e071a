"""Member model.

Association members who register for events. Owned by the member CRUD
surface; the pass pipeline only reads name, phone and photo.
"""

from app.extensions import db


class Member(db.Model):
    __tablename__ = "members"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    business_name = db.Column(db.String(255))
    phone = db.Column(db.String(20), nullable=False)
    email = db.Column(db.String(255))
    city = db.Column(db.String(100))
    association_name = db.Column(db.String(255))
    profile_image = db.Column(db.String(1000))  # filename, URL or data: URI
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
    registrations = db.relationship(
        "Registration", back_populates="member", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Member {self.name} ({self.phone})>"
