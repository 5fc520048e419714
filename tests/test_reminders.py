"""Tests for the next-action reminder job.

Covers:
- Candidate selection (window edges, already reminded, empty action)
- Sending flips the reminder flag; a second run sends nothing
- Skips for missing user phone / prospect (flag untouched)
- Notifier failure releases the claim
- Compare-and-swap claim, process lock, dry run
- WhatsApp gateway call (payload, auth header, failures)
- Cron endpoint auth and summary
- CLI command
- End-to-end: remind, reschedule through the API, remind again
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from conftest import TODAY_NOW, TOMORROW_9AM, login_associate, reload
from salestrack.extensions import db
from salestrack.models.activity import Activity
from salestrack.models.audit import AuditLog
from salestrack.services import reminder_service
from salestrack.services.clock import BusinessClock
from salestrack.services.notification_service import (
    NotificationError,
    describe_next_action,
    send_next_action_reminder,
)
from salestrack.services.reminder_service import (
    DispatchInProgressError,
    dispatch_reminders,
    find_candidates,
)

IST = timezone(timedelta(hours=5, minutes=30))
CLOCK = BusinessClock("Asia/Kolkata", "+05:30")
CRON_HEADERS = {"Authorization": "Bearer cron-test-secret"}


def _run(notifier=None, dry_run=False, now=TODAY_NOW):
    return dispatch_reminders(
        clock=CLOCK,
        now=now,
        dry_run=dry_run,
        notifier=notifier or MagicMock(),
    )


# ══════════════════════════════════════════════
#  CANDIDATE SELECTION
# ══════════════════════════════════════════════

class TestCandidates:

    def test_selects_activity_due_tomorrow(self, seed_data):
        start, end = CLOCK.tomorrow_window(TODAY_NOW)
        ids = [a.id for a in find_candidates(start, end)]
        assert ids == [seed_data["activity_id"]]

    def test_last_second_of_tomorrow_selected(self, seed_data, make_activity):
        late = make_activity(
            next_action_date=datetime(2025, 6, 10, 23, 59, 59, tzinfo=IST).astimezone(timezone.utc)
        )
        start, end = CLOCK.tomorrow_window(TODAY_NOW)
        assert late.id in [a.id for a in find_candidates(start, end)]

    def test_day_after_tomorrow_not_selected(self, seed_data, make_activity):
        early = make_activity(
            next_action_date=datetime(2025, 6, 11, 0, 0, 1, tzinfo=IST).astimezone(timezone.utc)
        )
        start, end = CLOCK.tomorrow_window(TODAY_NOW)
        assert early.id not in [a.id for a in find_candidates(start, end)]

    def test_today_not_selected(self, seed_data, make_activity):
        today = make_activity(
            next_action_date=datetime(2025, 6, 9, 23, 59, 59, tzinfo=IST).astimezone(timezone.utc)
        )
        start, end = CLOCK.tomorrow_window(TODAY_NOW)
        assert today.id not in [a.id for a in find_candidates(start, end)]

    def test_already_reminded_not_selected(self, seed_data, make_activity):
        done = make_activity(next_action_reminder_sent=True)
        start, end = CLOCK.tomorrow_window(TODAY_NOW)
        assert done.id not in [a.id for a in find_candidates(start, end)]

    def test_empty_next_action_not_selected(self, seed_data, make_activity):
        empty = make_activity(next_action_type=None, next_action_details=None)
        start, end = CLOCK.tomorrow_window(TODAY_NOW)
        assert empty.id not in [a.id for a in find_candidates(start, end)]


# ══════════════════════════════════════════════
#  DISPATCH
# ══════════════════════════════════════════════

class TestDispatch:

    def test_sends_and_marks(self, seed_data):
        notifier = MagicMock()
        summary = _run(notifier)

        assert summary.sent == 1
        assert summary.errors == 0
        assert summary.message == "Cron job completed. Sent 1 reminders."
        notifier.assert_called_once()
        assert reload(Activity, seed_data["activity_id"]).next_action_reminder_sent is True

    def test_second_run_sends_nothing(self, seed_data):
        _run()
        notifier = MagicMock()
        summary = _run(notifier)

        assert summary.sent == 0
        assert summary.message == "No reminders to send."
        notifier.assert_not_called()

    def test_no_candidates(self, db_session):
        summary = _run()
        assert summary.candidates == 0
        assert summary.to_dict()["message"] == "No reminders to send."

    def test_only_candidates_are_touched(self, seed_data, make_activity):
        later = make_activity(next_action_date=TOMORROW_9AM + timedelta(days=3))
        _run()
        assert reload(Activity, later.id).next_action_reminder_sent is False

    def test_user_without_phone_skipped(self, seed_data):
        seed_data["associate"].phone = None
        db.session.commit()

        summary = _run()

        assert summary.sent == 0
        assert summary.errors == 1
        detail = summary.error_details[0]
        assert detail["activityId"] == seed_data["activity_id"]
        assert detail["error"] == "User or phone missing"
        assert reload(Activity, seed_data["activity_id"]).next_action_reminder_sent is False

    def test_missing_prospect_skipped(self, seed_data, make_activity):
        orphan = make_activity(prospect_id=None)
        summary = _run()

        assert summary.sent == 1
        assert [d["error"] for d in summary.error_details] == ["Prospect missing"]
        assert reload(Activity, orphan.id).next_action_reminder_sent is False

    def test_notifier_failure_releases_claim(self, seed_data):
        notifier = MagicMock(side_effect=NotificationError("Gateway returned 503: down"))
        summary = _run(notifier)

        assert summary.sent == 0
        assert summary.errors == 1
        assert summary.error_details[0]["error"].startswith("Notification failed:")
        assert summary.message == "Cron job completed. Sent 0 reminders. Encountered 1 errors."
        assert reload(Activity, seed_data["activity_id"]).next_action_reminder_sent is False

    def test_failed_activity_retried_next_run(self, seed_data):
        _run(MagicMock(side_effect=NotificationError("timeout")))
        summary = _run()
        assert summary.sent == 1

    def test_dry_run_sends_and_marks_nothing(self, seed_data):
        notifier = MagicMock()
        summary = _run(notifier, dry_run=True)

        assert summary.sent == 1
        assert summary.message.startswith("Dry run")
        notifier.assert_not_called()
        assert reload(Activity, seed_data["activity_id"]).next_action_reminder_sent is False

    def test_claim_is_compare_and_swap(self, seed_data):
        activity_id = seed_data["activity_id"]
        start, end = CLOCK.tomorrow_window(TODAY_NOW)
        assert reminder_service._claim(activity_id, start, end) is True
        assert reminder_service._claim(activity_id, start, end) is False

    def test_claim_refuses_activity_outside_window(self, seed_data):
        activity_id = seed_data["activity_id"]
        start, end = CLOCK.tomorrow_window(TODAY_NOW + timedelta(days=1))
        assert reminder_service._claim(activity_id, start, end) is False
        assert reload(Activity, activity_id).next_action_reminder_sent is False

    def test_reschedule_during_batch_keeps_new_reminder(self, seed_data, make_activity):
        first_id = seed_data["activity_id"]
        second_id = make_activity(next_action_date=TOMORROW_9AM + timedelta(hours=3)).id
        new_date = TOMORROW_9AM + timedelta(days=3)
        reminded = []

        def _notify(activity, clock):
            reminded.append(activity.id)
            if activity.id == first_id:
                # Owner moves the second action while the batch is running.
                (
                    Activity.query
                    .filter(Activity.id == second_id)
                    .update(
                        {
                            Activity.next_action_date: new_date,
                            Activity.next_action_reminder_sent: False,
                        },
                        synchronize_session=False,
                    )
                )
                db.session.commit()

        summary = _run(_notify)

        assert reminded == [first_id]
        assert summary.sent == 1
        assert summary.errors == 0
        second = reload(Activity, second_id)
        assert second.next_action_reminder_sent is False

        later = _run(now=TODAY_NOW + timedelta(days=3))
        assert later.sent == 1
        assert reload(Activity, second_id).next_action_reminder_sent is True

    def test_cleared_during_batch_not_claimed(self, seed_data, make_activity):
        first_id = seed_data["activity_id"]
        second_id = make_activity(next_action_date=TOMORROW_9AM + timedelta(hours=3)).id

        def _notify(activity, clock):
            if activity.id == first_id:
                (
                    Activity.query
                    .filter(Activity.id == second_id)
                    .update(
                        {Activity.next_action_type: None, Activity.next_action_date: None},
                        synchronize_session=False,
                    )
                )
                db.session.commit()

        summary = _run(_notify)

        assert summary.sent == 1
        assert reload(Activity, second_id).next_action_reminder_sent is False

    def test_concurrent_run_rejected(self, seed_data):
        reminder_service._dispatch_lock.acquire()
        try:
            with pytest.raises(DispatchInProgressError):
                _run()
        finally:
            reminder_service._dispatch_lock.release()

    def test_lock_released_after_error(self, seed_data):
        with patch.object(reminder_service, "find_candidates", side_effect=RuntimeError("db down")):
            with pytest.raises(RuntimeError):
                _run()
        assert _run().sent == 1


# ══════════════════════════════════════════════
#  WHATSAPP GATEWAY
# ══════════════════════════════════════════════

class TestNotification:

    def test_describe_next_action(self, seed_data):
        assert describe_next_action(seed_data["activity"]) == "call prospect: Follow-up call"

    @patch("salestrack.services.notification_service.requests.post")
    def test_posts_to_gateway(self, mock_post, seed_data):
        mock_post.return_value = MagicMock(status_code=200, text="ok")

        send_next_action_reminder(seed_data["activity"], CLOCK)

        args, kwargs = mock_post.call_args
        assert args[0] == "https://whatsapp.example.test/messages"
        assert kwargs["headers"]["Authorization"] == "Bearer wa_test_fake"
        assert kwargs["timeout"] == 2
        payload = kwargs["json"]
        assert payload["to"] == "+919800000001"
        assert payload["reference"] == seed_data["activity_id"]
        assert "Asha Rep" in payload["text"]
        assert "Dr. Mehta Clinic" in payload["text"]
        assert "Tuesday, June 10, 2025 9:00 AM" in payload["text"]

    @patch("salestrack.services.notification_service.requests.post")
    def test_non_2xx_raises(self, mock_post, seed_data):
        mock_post.return_value = MagicMock(status_code=500, text="boom")
        with pytest.raises(NotificationError, match="500"):
            send_next_action_reminder(seed_data["activity"], CLOCK)

    @patch("salestrack.services.notification_service.requests.post")
    def test_timeout_raises(self, mock_post, seed_data):
        mock_post.side_effect = requests.exceptions.Timeout()
        with pytest.raises(NotificationError, match="Timed out"):
            send_next_action_reminder(seed_data["activity"], CLOCK)

    def test_missing_gateway_url_raises(self, app, seed_data, monkeypatch):
        monkeypatch.setitem(app.config, "WHATSAPP_API_URL", None)
        with pytest.raises(NotificationError, match="not configured"):
            send_next_action_reminder(seed_data["activity"], CLOCK)


# ══════════════════════════════════════════════
#  CRON ENDPOINT
# ══════════════════════════════════════════════

class TestCronEndpoint:

    def test_missing_token_rejected(self, client, seed_data):
        resp = client.get("/api/cron/next-action-reminder")
        assert resp.status_code == 401
        assert reload(Activity, seed_data["activity_id"]).next_action_reminder_sent is False

    def test_wrong_token_rejected(self, client, seed_data):
        resp = client.post(
            "/api/cron/next-action-reminder",
            headers={"Authorization": "Bearer nope"},
        )
        assert resp.status_code == 401

    @patch("salestrack.services.reminder_service.send_next_action_reminder")
    def test_runs_and_returns_summary(self, mock_send, client, seed_data, make_activity):
        start, _ = BusinessClock.from_config(client.application.config).tomorrow_window()
        due = make_activity(next_action_date=start + timedelta(hours=10))

        resp = client.get("/api/cron/next-action-reminder", headers=CRON_HEADERS)

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["sent"] == 1
        assert body["errors"] == 0
        assert body["errorDetails"] == []
        assert body["windowStart"] == start.isoformat()
        mock_send.assert_called_once()
        assert reload(Activity, due.id).next_action_reminder_sent is True

    def test_nothing_due(self, client, db_session):
        resp = client.post("/api/cron/next-action-reminder", headers=CRON_HEADERS)
        assert resp.status_code == 200
        assert resp.get_json()["message"] == "No reminders to send."

    @patch("salestrack.blueprints.cron.dispatch_reminders")
    def test_unexpected_error_returns_500(self, mock_dispatch, client, db_session):
        mock_dispatch.side_effect = RuntimeError("database unavailable")
        resp = client.get("/api/cron/next-action-reminder", headers=CRON_HEADERS)
        assert resp.status_code == 500
        body = resp.get_json()
        assert body["error"] == "Internal Server Error during cron execution."
        assert body["details"] == "database unavailable"

    @patch("salestrack.blueprints.cron.dispatch_reminders")
    def test_overlapping_run_returns_409(self, mock_dispatch, client, db_session):
        mock_dispatch.side_effect = DispatchInProgressError("A reminder run is already in progress.")
        resp = client.get("/api/cron/next-action-reminder", headers=CRON_HEADERS)
        assert resp.status_code == 409


# ══════════════════════════════════════════════
#  CLI
# ══════════════════════════════════════════════

class TestCli:

    def test_send_reminders_dry_run(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["send-reminders", "--dry-run"])
        assert result.exit_code == 0
        assert "[DRY RUN]" in result.output
        assert "No reminders to send." in result.output


# ══════════════════════════════════════════════
#  END TO END
# ══════════════════════════════════════════════

class TestRescheduleAfterReminder:
    """Remind on the 9th, move the action to the 12th, remind again on the 11th."""

    def test_reschedule_rearms_reminder(self, client, seed_data, make_activity):
        seed_data["activity"].next_action_reminder_sent = True
        db.session.commit()
        activity_id = make_activity(
            next_action_type=None, next_action_details=None, next_action_date=None
        ).id
        login_associate(client)

        resp = client.put(
            f"/api/activities/{activity_id}/next-action",
            json={
                "nextActionType": "CALL_PROSPECT",
                "nextActionDetails": None,
                "nextActionDate": "2025-06-10T09:00:00+05:30",
            },
        )
        assert resp.get_json()["nextActionStatus"] == "PENDING"
        assert resp.get_json()["nextActionReminderSent"] is False

        assert _run().sent == 1
        assert reload(Activity, activity_id).next_action_reminder_sent is True

        resp = client.put(
            f"/api/activities/{activity_id}/next-action",
            json={"nextActionDate": "2025-06-12T09:00:00+05:30"},
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["nextActionStatus"] == "RESCHEDULED"
        assert body["nextActionReminderSent"] is False

        entry = (
            AuditLog.query.filter_by(entity_id=activity_id, action="UPDATE")
            .order_by(AuditLog.timestamp.desc())
            .first()
        )
        assert set(entry.details["changes"]) == {
            "nextActionDate",
            "nextActionStatus",
            "nextActionReminderSent",
        }

        # Still the 9th: the 12th is not tomorrow.
        assert _run().candidates == 0

        summary = _run(now=datetime(2025, 6, 11, 10, 0, tzinfo=IST))
        assert summary.sent == 1
        assert reload(Activity, activity_id).next_action_reminder_sent is True
