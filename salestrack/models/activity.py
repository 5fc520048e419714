"""Activity model — a logged sales interaction with an attached next action.

Besides the business fields (subject, outcome, samples, order), each
activity carries one standing "next action" slot: a scheduled follow-up
with its own due date, status and reminder flag. The slot's lifecycle is
owned by services/next_action.py; this model only stores it.
"""

import uuid

from salestrack.extensions import db
from salestrack.services import next_action
from salestrack.services.clock import as_utc


class Activity(db.Model):
    __tablename__ = "activities"

    TYPES = ["CALL", "MEETING", "EMAIL", "VISIT", "WHATSAPP", "OTHER"]

    NEXT_ACTION_TYPES = next_action.TYPES
    NEXT_ACTION_STATUSES = next_action.STATUSES

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36),
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    prospect_id = db.Column(
        db.String(36),
        db.ForeignKey("prospects.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    type = db.Column(db.String(20), nullable=False, default="CALL")
    subject = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    duration = db.Column(db.Integer, nullable=True)  # minutes
    outcome = db.Column(db.Text, nullable=True)
    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    samples_provided = db.Column(
        db.JSON, nullable=True
    )  # [{"productId": ..., "quantity": ...}]
    order_discussed = db.Column(db.Boolean, default=False, nullable=False)
    order_amount = db.Column(db.Numeric(12, 2), nullable=True)

    # --- Next action slot ---
    next_action_type = db.Column(db.String(50), nullable=True)
    next_action_details = db.Column(db.Text, nullable=True)
    next_action_date = db.Column(
        db.DateTime(timezone=True), nullable=True, index=True
    )  # stored as UTC
    next_action_status = db.Column(
        db.String(20), default=next_action.PENDING, nullable=False
    )  # PENDING | RESCHEDULED | COMPLETED | CANCELLED
    next_action_reminder_sent = db.Column(
        db.Boolean, default=False, nullable=False
    )
    next_action_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="activities")
    prospect = db.relationship("Prospect", back_populates="activities")

    def next_action_state(self):
        """Current next-action slot as an immutable NextActionState."""
        return next_action.NextActionState(
            type=self.next_action_type,
            details=self.next_action_details,
            date=as_utc(self.next_action_date),
            status=self.next_action_status or next_action.PENDING,
            reminder_sent=bool(self.next_action_reminder_sent),
            completed_at=as_utc(self.next_action_completed_at),
        )

    def apply_next_action_state(self, state):
        """Copy a NextActionState back onto the columns."""
        self.next_action_type = state.type
        self.next_action_details = state.details
        self.next_action_date = state.date
        self.next_action_status = state.status
        self.next_action_reminder_sent = state.reminder_sent
        self.next_action_completed_at = state.completed_at

    def to_dict(self):
        def _iso(value):
            value = as_utc(value)
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "userId": self.user_id,
            "prospectId": self.prospect_id,
            "type": self.type,
            "subject": self.subject,
            "description": self.description,
            "duration": self.duration,
            "outcome": self.outcome,
            "scheduledAt": _iso(self.scheduled_at),
            "samplesProvided": self.samples_provided,
            "orderDiscussed": self.order_discussed,
            "orderAmount": float(self.order_amount) if self.order_amount is not None else None,
            "nextActionType": self.next_action_type,
            "nextActionDetails": self.next_action_details,
            "nextActionDate": _iso(self.next_action_date),
            "nextActionStatus": self.next_action_status,
            "nextActionReminderSent": self.next_action_reminder_sent,
            "nextActionCompletedAt": _iso(self.next_action_completed_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Activity {self.subject} ({self.next_action_status})>"
