"""Activity service — edits to an activity and its next-action slot.

Both entry points parse the JSON payload, run next-action changes through
services/next_action.py and return the field-level changes for the audit
log, keyed by the API field names. Only the fields present in the request
(plus the next-action fields the state machine forces, like the reminder
flag) are compared.

Functions flush but do NOT commit; the caller commits.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

import bleach

from salestrack.extensions import db
from salestrack.models.activity import Activity
from salestrack.models.prospect import Prospect
from salestrack.services import next_action
from salestrack.services.audit_service import compute_changes, snapshot
from salestrack.services.clock import as_utc

# API name -> column, for the general-purpose edit.
EDITABLE_FIELDS = {
    "type": "type",
    "subject": "subject",
    "description": "description",
    "duration": "duration",
    "outcome": "outcome",
    "scheduledAt": "scheduled_at",
    "samplesProvided": "samples_provided",
    "orderDiscussed": "order_discussed",
    "orderAmount": "order_amount",
    "prospectId": "prospect_id",
    "nextActionType": "next_action_type",
    "nextActionDetails": "next_action_details",
    "nextActionDate": "next_action_date",
}

# API name -> NextActionState field.
NEXT_ACTION_FIELDS = {
    "nextActionType": "type",
    "nextActionDetails": "details",
    "nextActionDate": "date",
    "nextActionStatus": "status",
    "nextActionReminderSent": "reminder_sent",
    "nextActionCompletedAt": "completed_at",
}

NEXT_ACTION_CONTENT_KEYS = ("nextActionType", "nextActionDetails", "nextActionDate")
NEXT_ACTION_DERIVED_KEYS = ("nextActionStatus", "nextActionReminderSent", "nextActionCompletedAt")


class ActivityPermissionError(Exception):
    """Actor may not touch the referenced record."""


# ──────────────────────────────────────────────
# Parsing helpers
# ──────────────────────────────────────────────

def _sanitize(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return text
    return bleach.clean(text, tags=[], strip=True).strip()


def parse_datetime(value, field_name):
    """ISO 8601 string with an offset -> aware UTC datetime. None passes through."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be an ISO 8601 string.")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"Invalid date format for {field_name}. Expected ISO 8601 string.")
    if parsed.tzinfo is None:
        raise ValueError(f"{field_name} must include a UTC offset.")
    return parsed.astimezone(timezone.utc)


def _optional_text(data, key):
    value = data[key]
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string.")
    return _sanitize(value)


def _parse_samples(value):
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValueError("samplesProvided must be a list.")
    samples = []
    for item in value:
        if not isinstance(item, dict) or not item.get("productId"):
            raise ValueError("Product ID in sample is required.")
        quantity = item.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValueError("Sample quantity must be at least 1.")
        samples.append({"productId": str(item["productId"]), "quantity": quantity})
    return samples


def parse_activity_update(data):
    """Validate a general-purpose edit. Returns {api_name: python_value}.

    Raises:
        ValueError: On any invalid field.
    """
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object.")

    values = {}
    for key in data:
        if key not in EDITABLE_FIELDS:
            continue

        if key == "type":
            if data[key] not in Activity.TYPES:
                raise ValueError(
                    f"Invalid activity type '{data[key]}'. Must be one of: {', '.join(Activity.TYPES)}"
                )
            values[key] = data[key]
        elif key == "subject":
            subject = _optional_text(data, key)
            if not subject or len(subject) < 2:
                raise ValueError("Subject must be at least 2 characters.")
            values[key] = subject
        elif key in ("description", "outcome", "nextActionType", "nextActionDetails"):
            values[key] = _optional_text(data, key)
        elif key == "duration":
            duration = data[key]
            if duration is not None and (
                isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration <= 0
            ):
                raise ValueError("Duration must be a positive number.")
            values[key] = int(duration) if duration is not None else None
        elif key in ("scheduledAt", "nextActionDate"):
            values[key] = parse_datetime(data[key], key)
        elif key == "samplesProvided":
            values[key] = _parse_samples(data[key])
        elif key == "orderDiscussed":
            if not isinstance(data[key], bool):
                raise ValueError("orderDiscussed must be a boolean.")
            values[key] = data[key]
        elif key == "orderAmount":
            amount = data[key]
            if amount is not None:
                try:
                    amount = Decimal(str(amount))
                except InvalidOperation:
                    raise ValueError("Order amount must be a number.")
                if amount <= 0:
                    raise ValueError("Order amount must be a positive number.")
            values[key] = amount
        elif key == "prospectId":
            if not data[key]:
                raise ValueError("Prospect ID is required if provided.")
            values[key] = data[key]

    return values


def parse_next_action_update(data):
    """Validate a next-action payload. Returns {api_name: python_value}."""
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object.")
    if "nextActionReminderSent" in data:
        raise ValueError("nextActionReminderSent is managed by the reminder job.")

    values = {}
    for key in ("nextActionType", "nextActionDetails"):
        if key in data:
            values[key] = _optional_text(data, key)
    for key in ("nextActionDate", "nextActionCompletedAt"):
        if key in data:
            values[key] = parse_datetime(data[key], key)
    if "nextActionStatus" in data:
        status = data["nextActionStatus"]
        if status not in next_action.STATUSES:
            raise ValueError(
                f"Invalid next action status '{status}'. "
                f"Must be one of: {', '.join(next_action.STATUSES)}"
            )
        values["nextActionStatus"] = status

    if values.get("nextActionCompletedAt") is not None and values.get("nextActionStatus") != next_action.COMPLETED:
        raise ValueError("nextActionCompletedAt can only be sent with status COMPLETED.")

    return values


# ──────────────────────────────────────────────
# Snapshots
# ──────────────────────────────────────────────

def api_snapshot(activity):
    """Current values keyed by API field name, for diffing."""
    values = {key: getattr(activity, col) for key, col in EDITABLE_FIELDS.items()}
    state = activity.next_action_state()
    for key, attr in NEXT_ACTION_FIELDS.items():
        values[key] = getattr(state, attr)
    values["scheduledAt"] = as_utc(activity.scheduled_at)
    return values


# ──────────────────────────────────────────────
# Mutations
# ──────────────────────────────────────────────

def update_activity(activity, data, actor):
    """Apply a general-purpose edit.

    Any change to the next-action type, details or date (including clearing
    all three) resets the reminder flag, exactly as a dedicated next-action
    edit would.

    Returns:
        dict: Field-level changes for the audit log (may be empty).

    Raises:
        ValueError: Invalid payload or unknown prospect.
        ActivityPermissionError: Non-admin moving the activity to a prospect
            they do not own.
        NextActionPreconditionError: Resulting next action is invalid.
    """
    values = parse_activity_update(data)
    before = api_snapshot(activity)

    new_prospect_id = values.get("prospectId")
    if new_prospect_id and new_prospect_id != activity.prospect_id:
        prospect = db.session.get(Prospect, new_prospect_id)
        if prospect is None:
            raise ValueError("New prospect not found.")
        if not actor.is_admin and prospect.user_id != actor.id:
            raise ActivityPermissionError("You do not own the new prospect.")

    for key, value in values.items():
        if key in NEXT_ACTION_CONTENT_KEYS:
            continue
        setattr(activity, EDITABLE_FIELDS[key], value)

    edit = {
        NEXT_ACTION_FIELDS[key]: values[key]
        for key in NEXT_ACTION_CONTENT_KEYS
        if key in values
    }
    if edit:
        state = next_action.apply_edit(activity.next_action_state(), **edit)
        activity.apply_next_action_state(state)

    after = api_snapshot(activity)
    fields = list(values)
    if edit:
        fields.append("nextActionReminderSent")

    db.session.flush()
    return compute_changes(before, after, fields)


def update_next_action(activity, data, now=None):
    """Define, reschedule, complete, cancel or clear the next action.

    Content fields not present in the payload keep their current values.
    A status in the payload is applied after any content change.

    Returns:
        dict: Field-level changes for the audit log (empty = nothing to write).
    """
    values = parse_next_action_update(data)
    if not values:
        return {}

    now = now or datetime.now(timezone.utc)
    before_state = activity.next_action_state()
    state = before_state

    if any(key in values for key in NEXT_ACTION_CONTENT_KEYS):
        state = next_action.define(
            state,
            values.get("nextActionType", state.type),
            values.get("nextActionDetails", state.details),
            values.get("nextActionDate", state.date),
        )

    if "nextActionStatus" in values:
        state = next_action.set_status(
            state,
            values["nextActionStatus"],
            now,
            completed_at=values.get("nextActionCompletedAt"),
        )

    if not next_action.diff_fields(before_state, state):
        return {}

    before = {key: getattr(before_state, attr) for key, attr in NEXT_ACTION_FIELDS.items()}
    after = {key: getattr(state, attr) for key, attr in NEXT_ACTION_FIELDS.items()}
    fields = [k for k in values if k in NEXT_ACTION_FIELDS]
    fields += [k for k in NEXT_ACTION_DERIVED_KEYS if k not in fields]

    activity.apply_next_action_state(state)
    db.session.flush()
    return compute_changes(before, after, fields)


def delete_activity(activity):
    """Delete an activity. Returns its snapshot for the DELETE audit entry."""
    data = snapshot(activity)
    db.session.delete(activity)
    db.session.flush()
    return data
