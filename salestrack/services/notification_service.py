"""Notification service — WhatsApp reminders for upcoming next actions.

Posts a plain-text message to the configured WhatsApp gateway
(WHATSAPP_API_URL, bearer WHATSAPP_API_TOKEN). Each call is bounded by
REMINDER_NOTIFY_TIMEOUT seconds. Any failure (missing config, timeout,
non-2xx) raises NotificationError so the reminder job can record it and
leave the activity eligible for the next run.
"""

import logging

import requests
from flask import current_app

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """The reminder could not be delivered."""


def describe_next_action(activity):
    """Human-readable action, e.g. "call prospect: Follow-up call"."""
    if activity.next_action_type:
        description = activity.next_action_type.replace("_", " ").lower()
    else:
        description = "your scheduled action"
    if activity.next_action_details:
        description += f": {activity.next_action_details}"
    return description


def build_reminder_message(activity, clock):
    user_name = activity.user.name or "there"
    prospect_name = activity.prospect.name or "the prospect"
    due = clock.format_local(activity.next_action_date)
    base_url = current_app.config["APP_BASE_URL"]
    return (
        f"Hi {user_name}, reminder for tomorrow: {describe_next_action(activity)} "
        f"with {prospect_name}, due {due}. "
        f"Details: {base_url}/activities"
    )


def send_next_action_reminder(activity, clock):
    """Send the reminder for one activity to its owner's phone.

    Raises:
        NotificationError: If the gateway is not configured or the send fails.
    """
    url = current_app.config.get("WHATSAPP_API_URL")
    token = current_app.config.get("WHATSAPP_API_TOKEN")
    timeout = current_app.config.get("REMINDER_NOTIFY_TIMEOUT", 10)

    if not url:
        raise NotificationError("WHATSAPP_API_URL not configured")

    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    payload = {
        "to": activity.user.phone,
        "type": "text",
        "text": build_reminder_message(activity, clock),
        "reference": activity.id,
    }

    try:
        resp = requests.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.exceptions.Timeout:
        raise NotificationError(f"Timed out after {timeout}s")
    except requests.exceptions.RequestException as e:
        raise NotificationError(f"Request failed: {e}")

    if resp.status_code >= 300:
        raise NotificationError(
            f"Gateway returned {resp.status_code}: {resp.text[:200]}"
        )

    logger.info(f"Reminder sent to {activity.user.phone} for activity {activity.id}")
