"""User model.

Stores authentication credentials, profile info and the phone number used
as the reminder contact channel. Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from salestrack.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    # -- Roles --
    ROLES = ["SYS_ADMIN", "ADMIN", "ASSOCIATE"]
    ADMIN_ROLES = ["SYS_ADMIN", "ADMIN"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(255))
    phone = db.Column(db.String(50), nullable=True)  # WhatsApp reminders
    role = db.Column(
        db.String(20), default="ASSOCIATE", nullable=False
    )  # SYS_ADMIN | ADMIN | ASSOCIATE
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
    activities = db.relationship(
        "Activity", back_populates="user", lazy="dynamic"
    )
    prospects = db.relationship(
        "Prospect", back_populates="user", lazy="dynamic"
    )

    @property
    def is_admin(self):
        return self.role in self.ADMIN_ROLES

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
