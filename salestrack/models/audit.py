"""Audit log model.

One immutable row per action taken against one entity: field-level diffs
for updates, full snapshots for creates/deletes, an error description for
failed mutations, and login events.

The actor is captured by value (user_name, user_role) and user_id is a weak
reference with no foreign-key constraint, so rows stay meaningful after the
referenced user or entity is changed or deleted.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import event

from salestrack.extensions import db
from salestrack.services.clock import as_utc


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    # -- Known action tags (the column accepts any string) --
    ACTIONS = [
        "CREATE",
        "UPDATE",
        "DELETE",
        "LOGIN_SUCCESS",
        "LOGIN_FAILURE",
        "LOGOUT",
        "FAILED",
    ]

    # -- Known entity types --
    ENTITY_TYPES = ["USER", "PROSPECT", "ACTIVITY", "TASK", "SESSION", "SYSTEM"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    timestamp = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    action = db.Column(db.String(50), nullable=False)
    entity_type = db.Column(db.String(50), nullable=True)
    entity_id = db.Column(db.String(36), nullable=True)
    user_id = db.Column(db.String(36), nullable=True, index=True)
    user_name = db.Column(db.String(255), nullable=True)
    user_role = db.Column(db.String(20), nullable=True)
    target_user_id = db.Column(db.String(36), nullable=True)
    details = db.Column(db.JSON, nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id", "timestamp"),
    )

    # --- Relationships ---
    # Lookup only; the log never owns or cascades to the user.
    user = db.relationship(
        "User",
        primaryjoin="foreign(AuditLog.user_id) == User.id",
        viewonly=True,
        lazy="joined",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "timestamp": as_utc(self.timestamp).isoformat() if self.timestamp else None,
            "action": self.action,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "userId": self.user_id,
            "userName": self.user_name,
            "userRole": self.user_role,
            "targetUserId": self.target_user_id,
            "details": self.details,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "user": (
                {
                    "id": self.user.id,
                    "name": self.user.name,
                    "email": self.user.email,
                    "role": self.user.role,
                }
                if self.user is not None
                else None
            ),
        }

    def __repr__(self):
        return f"<AuditLog {self.action} {self.entity_type}:{self.entity_id}>"


@event.listens_for(AuditLog, "before_update")
def _refuse_update(mapper, connection, target):
    raise RuntimeError("Audit log entries are append-only")


@event.listens_for(AuditLog, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise RuntimeError("Audit log entries are append-only")
