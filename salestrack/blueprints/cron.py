"""Cron blueprint — /api/cron/*

Scheduler-triggered jobs. Bearer-token gated via CRON_SECRET, CSRF-exempt.

Route Map:
  GET|POST /api/cron/next-action-reminder  — Send tomorrow's next-action reminders
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, jsonify

from salestrack.decorators import cron_secret_required
from salestrack.services.reminder_service import (
    DispatchInProgressError,
    dispatch_reminders,
)

logger = logging.getLogger(__name__)

cron_bp = Blueprint("cron", __name__, url_prefix="/api/cron")


@cron_bp.route("/next-action-reminder", methods=["GET", "POST"])
@cron_secret_required
def next_action_reminder():
    """Run the reminder job and return its summary.

    A non-zero `errors` count still returns 200: the run itself succeeded,
    individual activities were skipped and are listed in errorDetails.
    """
    logger.info(
        f"Cron job: send-reminders started at {datetime.now(timezone.utc).isoformat()}"
    )

    try:
        summary = dispatch_reminders()
    except DispatchInProgressError as e:
        return jsonify({"error": str(e)}), 409
    except Exception as e:
        logger.error(f"Error in cron job: send-reminders: {e}", exc_info=True)
        return jsonify({
            "error": "Internal Server Error during cron execution.",
            "details": str(e),
        }), 500

    return jsonify(summary.to_dict()), 200
