"""Reminder service — day-ahead WhatsApp reminders for next actions.

Selects every activity whose next action falls inside tomorrow's business
day (BUSINESS_TIMEZONE / BUSINESS_UTC_OFFSET), has content, and has not been
reminded yet; notifies the owning associate; and flips
next_action_reminder_sent for that activity only.

Safe to re-run at any time:
  - each activity is claimed with a conditional UPDATE (only if it is still
    due inside the window and the flag is still false) and committed on its
    own, so a crash mid-batch never re-notifies what was already processed,
    two overlapping runs never notify the same activity twice, and an action
    rescheduled mid-batch keeps its reminder for the new date
  - a failed send releases the claim, leaving the activity eligible for the
    next run while it is still inside the window
  - runs inside one process are serialised by a lock

Designed to be called from the cron endpoint (GET /api/cron/next-action-reminder)
or the Flask CLI (`flask send-reminders`).
"""

import logging
import threading
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import and_, or_
from sqlalchemy.orm import joinedload

from salestrack.extensions import db
from salestrack.models.activity import Activity
from salestrack.services.clock import BusinessClock
from salestrack.services.notification_service import send_next_action_reminder

logger = logging.getLogger(__name__)

ERROR_USER_MISSING = "User or phone missing"
ERROR_PROSPECT_MISSING = "Prospect missing"

_dispatch_lock = threading.Lock()


class DispatchInProgressError(RuntimeError):
    """Another reminder run is still going in this process."""


@dataclass
class DispatchSummary:
    window_start: object = None
    window_end: object = None
    candidates: int = 0
    sent: int = 0
    error_details: list = field(default_factory=list)
    dry_run: bool = False

    @property
    def errors(self):
        return len(self.error_details)

    @property
    def message(self):
        if self.candidates == 0:
            return "No reminders to send."
        if self.dry_run:
            return f"Dry run: {self.sent} reminder(s) would be sent."
        message = f"Cron job completed. Sent {self.sent} reminders."
        if self.errors:
            message += f" Encountered {self.errors} errors."
        return message

    def add_error(self, activity, error):
        self.error_details.append({
            "activityId": activity.id,
            "userId": activity.user_id,
            "prospectId": activity.prospect_id,
            "nextActionDate": (
                activity.next_action_date.isoformat()
                if activity.next_action_date else None
            ),
            "error": error,
        })

    def to_dict(self):
        return {
            "message": self.message,
            "sent": self.sent,
            "errors": self.errors,
            "errorDetails": self.error_details,
            "windowStart": self.window_start.isoformat() if self.window_start else None,
            "windowEnd": self.window_end.isoformat() if self.window_end else None,
        }


def _due_filters(window_start, window_end):
    """Selection predicate shared by the candidate query and the claim."""
    return (
        Activity.next_action_date >= window_start,
        Activity.next_action_date <= window_end,
        Activity.next_action_reminder_sent.is_(False),
        Activity.next_action_type.isnot(None),
        or_(
            Activity.next_action_type != "",
            and_(
                Activity.next_action_details.isnot(None),
                Activity.next_action_details != "",
            ),
        ),
    )


def find_candidates(window_start, window_end):
    """Activities due inside [window_start, window_end] that still need a reminder."""
    return (
        Activity.query
        .options(joinedload(Activity.user), joinedload(Activity.prospect))
        .filter(*_due_filters(window_start, window_end))
        .order_by(Activity.next_action_date.asc())
        .all()
    )


def _claim(activity_id, window_start, window_end):
    """Atomically flip reminder_sent false -> true. Returns True if we won.

    The row must still match the selection predicate at claim time: an
    activity edited after find_candidates() (new date, cleared action) is
    left alone.
    """
    claimed = (
        Activity.query
        .filter(Activity.id == activity_id)
        .filter(*_due_filters(window_start, window_end))
        .update(
            {Activity.next_action_reminder_sent: True},
            synchronize_session=False,
        )
    )
    db.session.commit()
    return claimed == 1


def _release(activity_id):
    """Undo a claim after a failed send so the next run retries it."""
    (
        Activity.query
        .filter(Activity.id == activity_id)
        .update(
            {Activity.next_action_reminder_sent: False},
            synchronize_session=False,
        )
    )
    db.session.commit()


def dispatch_reminders(clock=None, now=None, dry_run=False, notifier=None):
    """Send tomorrow's next-action reminders.

    Args:
        clock: BusinessClock; defaults to the app's configured business timezone.
        now: Reference instant for "today" (defaults to the current time).
        dry_run: If True, report what would be sent without sending or marking.
        notifier: Callable(activity, clock) performing the send; defaults to
            the WhatsApp notification service.

    Returns:
        DispatchSummary.

    Raises:
        DispatchInProgressError: If another run holds the lock.
    """
    if not _dispatch_lock.acquire(blocking=False):
        raise DispatchInProgressError("A reminder run is already in progress.")
    try:
        return _dispatch(
            clock or BusinessClock.from_config(current_app.config),
            now,
            dry_run,
            notifier or send_next_action_reminder,
        )
    finally:
        _dispatch_lock.release()


def _dispatch(clock, now, dry_run, notifier):
    window_start, window_end = clock.tomorrow_window(now)
    summary = DispatchSummary(
        window_start=window_start, window_end=window_end, dry_run=dry_run
    )

    logger.info(
        f"Querying for next actions due between (UTC): "
        f"{window_start.isoformat()} and {window_end.isoformat()}"
    )

    activities = find_candidates(window_start, window_end)
    summary.candidates = len(activities)

    if not activities:
        logger.info("No activities found for next-day reminders.")
        return summary

    logger.info(f"Found {len(activities)} activities for reminders.")

    for activity in activities:
        activity_id = activity.id

        if activity.user is None or not activity.user.phone:
            logger.warning(
                f"Skipping reminder for activity {activity_id}: user or user phone not found."
            )
            summary.add_error(activity, ERROR_USER_MISSING)
            continue

        if activity.prospect is None:
            logger.warning(
                f"Skipping reminder for activity {activity_id}: prospect not found."
            )
            summary.add_error(activity, ERROR_PROSPECT_MISSING)
            continue

        if dry_run:
            logger.info(f"[DRY RUN] Would remind {activity.user.name} for activity {activity_id}")
            summary.sent += 1
            continue

        if not _claim(activity_id, window_start, window_end):
            logger.info(
                f"Activity {activity_id} already claimed or no longer due, skipping."
            )
            continue

        try:
            notifier(activity, clock)
        except Exception as e:
            logger.error(f"Reminder for activity {activity_id} failed: {e}")
            db.session.rollback()
            _release(activity_id)
            summary.add_error(activity, f"Notification failed: {e}")
            continue

        summary.sent += 1

    logger.info(summary.message)
    if summary.error_details:
        logger.error(f"Reminder errors: {summary.error_details}")
    return summary
