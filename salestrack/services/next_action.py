"""Next-action lifecycle — the state machine behind an activity's follow-up slot.

Every activity has one standing next-action slot (type, details, due date,
status, reminder flag, completed timestamp). This module computes how that
slot changes; it performs no I/O and knows nothing about Flask or the
database. Callers load the current state from the Activity row, call one of
the operations below and persist the returned state.

Status transitions are driven by the TRANSITIONS table, keyed by current
status and event. COMPLETED and CANCELLED are soft-terminal: defining the
action again, or giving it a new date, reopens it as PENDING.

Reminder flag rules:
  - any change to type, details or date forces reminder_sent to False
  - any transition landing in PENDING or RESCHEDULED forces it to False
  - only mark_reminded() (the dispatch job) sets it to True
"""

from dataclasses import dataclass, replace

from salestrack.services.clock import as_utc

# -- Statuses --
PENDING = "PENDING"
RESCHEDULED = "RESCHEDULED"
COMPLETED = "COMPLETED"
CANCELLED = "CANCELLED"

STATUSES = [PENDING, RESCHEDULED, COMPLETED, CANCELLED]

# -- Next-action type tags --
CUSTOM_TASK = "CUSTOM_TASK"

TYPES = [
    "CALL_PROSPECT",
    "EMAIL_PROSPECT",
    "SCHEDULE_MEETING",
    "SEND_SAMPLES",
    "WHATSAPP_PROSPECT",
    "WHATSAPP_SELF",
    CUSTOM_TASK,
]

# -- Events --
DEFINE = "define"                    # new or replaced action
RESCHEDULE = "reschedule"            # same action, new due date
COMPLETE = "complete"
CANCEL = "cancel"
REOPEN = "reopen"                    # explicit status -> PENDING
MARK_RESCHEDULED = "mark_rescheduled"  # explicit status -> RESCHEDULED
CLEAR = "clear"                      # type, details and date removed

TRANSITIONS = {
    PENDING: {
        DEFINE: PENDING,
        RESCHEDULE: RESCHEDULED,
        COMPLETE: COMPLETED,
        CANCEL: CANCELLED,
        REOPEN: PENDING,
        MARK_RESCHEDULED: RESCHEDULED,
        CLEAR: PENDING,
    },
    RESCHEDULED: {
        DEFINE: PENDING,
        RESCHEDULE: RESCHEDULED,
        COMPLETE: COMPLETED,
        CANCEL: CANCELLED,
        REOPEN: PENDING,
        MARK_RESCHEDULED: RESCHEDULED,
        CLEAR: PENDING,
    },
    COMPLETED: {
        DEFINE: PENDING,
        RESCHEDULE: PENDING,  # reopen
        COMPLETE: COMPLETED,
        CANCEL: CANCELLED,
        REOPEN: PENDING,
        MARK_RESCHEDULED: RESCHEDULED,
        CLEAR: PENDING,
    },
    CANCELLED: {
        DEFINE: PENDING,
        RESCHEDULE: PENDING,  # reopen
        COMPLETE: COMPLETED,
        CANCEL: CANCELLED,
        REOPEN: PENDING,
        MARK_RESCHEDULED: RESCHEDULED,
        CLEAR: PENDING,
    },
}

# Landing in one of these always re-arms the reminder.
RESET_REMINDER_STATUSES = (PENDING, RESCHEDULED)

FIELDS = ("type", "details", "date", "status", "reminder_sent", "completed_at")
CONTENT_FIELDS = ("type", "details", "date")


class NextActionPreconditionError(ValueError):
    """Input the state machine refuses to act on (caller's responsibility)."""


@dataclass(frozen=True)
class NextActionState:
    type: str = None
    details: str = None
    date: object = None
    status: str = PENDING
    reminder_sent: bool = False
    completed_at: object = None

    @property
    def is_defined(self):
        return any(getattr(self, f) is not None for f in CONTENT_FIELDS)


def _clean(text):
    if text is None:
        return None
    text = text.strip()
    return text or None


def check_preconditions(type_, details, date):
    """Raise NextActionPreconditionError unless (type, details, date) is valid."""
    if type_ is not None and type_ not in TYPES:
        raise NextActionPreconditionError(
            f"Invalid next action type '{type_}'. Must be one of: {', '.join(TYPES)}"
        )
    if (type_ is not None or details is not None) and date is None:
        raise NextActionPreconditionError(
            "Next action date is required when a next action type or details are set."
        )
    if type_ == CUSTOM_TASK and details is None:
        raise NextActionPreconditionError(
            "Next action details are required for a custom task."
        )


def transition(state, event, **changes):
    """Apply one event from the TRANSITIONS table, plus any field changes."""
    try:
        new_status = TRANSITIONS[state.status][event]
    except KeyError:
        raise NextActionPreconditionError(
            f"No transition for event '{event}' from status '{state.status}'."
        )

    fields = {"status": new_status}
    if new_status in RESET_REMINDER_STATUSES:
        fields["reminder_sent"] = False
    fields.update(changes)
    return replace(state, **fields)


def define(state, type_, details, date):
    """Define or replace the next action.

    A date-only change on an existing action is a reschedule; anything else
    (new type or details, or an empty slot) is a fresh definition. Passing
    None for all three clears the slot.
    """
    type_ = _clean(type_)
    details = _clean(details)
    date = as_utc(date)

    if type_ is None and details is None and date is None:
        return clear(state)

    check_preconditions(type_, details, date)

    only_date_changed = (
        state.is_defined
        and type_ == state.type
        and details == state.details
        and date != state.date
    )
    event = RESCHEDULE if only_date_changed else DEFINE

    return transition(
        state,
        event,
        type=type_,
        details=details,
        date=date,
        reminder_sent=False,
        completed_at=None,
    )


def clear(state):
    """Remove the next action entirely."""
    return transition(
        state,
        CLEAR,
        type=None,
        details=None,
        date=None,
        reminder_sent=False,
        completed_at=None,
    )


def complete(state, now, completed_at=None):
    """Mark completed. A second call returns the state unchanged."""
    if state.status == COMPLETED:
        return state
    return transition(state, COMPLETE, completed_at=as_utc(completed_at or now))


def cancel(state):
    """Mark cancelled. Leaves type, details, date and completed_at alone."""
    if state.status == CANCELLED:
        return state
    return transition(state, CANCEL)


def set_status(state, status, now, completed_at=None):
    """Status-only transition requested by a caller."""
    if status == COMPLETED:
        return complete(state, now, completed_at=completed_at)
    if status == CANCELLED:
        return cancel(state)
    if status == PENDING:
        return transition(state, REOPEN, completed_at=None)
    if status == RESCHEDULED:
        return transition(state, MARK_RESCHEDULED, completed_at=None)
    raise NextActionPreconditionError(
        f"Invalid next action status '{status}'. Must be one of: {', '.join(STATUSES)}"
    )


def apply_edit(state, **fields):
    """Apply a general-purpose activity edit that may touch the slot.

    Only `type`, `details` and `date` are accepted, and only the ones
    supplied are applied. Status is left alone; the reminder flag is reset
    when any supplied value differs from the current one.
    """
    unknown = set(fields) - set(CONTENT_FIELDS)
    if unknown:
        raise NextActionPreconditionError(
            f"Unexpected next action fields: {', '.join(sorted(unknown))}"
        )
    if not fields:
        return state

    updates = {}
    if "type" in fields:
        updates["type"] = _clean(fields["type"])
    if "details" in fields:
        updates["details"] = _clean(fields["details"])
    if "date" in fields:
        updates["date"] = as_utc(fields["date"])

    new_state = replace(state, **updates)
    check_preconditions(new_state.type, new_state.details, new_state.date)

    if any(getattr(new_state, k) != getattr(state, k) for k in updates):
        new_state = replace(new_state, reminder_sent=False)
    return new_state


def mark_reminded(state):
    """Set by the reminder dispatch job once the notification went out."""
    return replace(state, reminder_sent=True)


def diff_fields(before, after):
    """Fields whose values differ: {field: (old, new)}."""
    return {
        f: (getattr(before, f), getattr(after, f))
        for f in FIELDS
        if getattr(before, f) != getattr(after, f)
    }
