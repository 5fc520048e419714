"""Prospect model.

A doctor, clinic or pharmacy being worked by a sales associate. Only the
fields the reminder job reads are modelled here.
"""

import uuid

from salestrack.extensions import db


class Prospect(db.Model):
    __tablename__ = "prospects"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(50), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    user_id = db.Column(
        db.String(36),
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )  # owning associate
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="prospects")
    activities = db.relationship(
        "Activity", back_populates="prospect", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Prospect {self.name}>"
