"""Activities blueprint — /api/activities/*

JSON endpoints for reading and editing an activity and its next action.
Owner or admin only. Every successful mutation is followed by an audit
entry; a failed write is rolled back, returned as 500 and recorded as FAILED.

Route Map:
  GET    /api/activities/<id>              — Activity detail
  PUT    /api/activities/<id>              — General edit (resets reminder on next-action change)
  PUT    /api/activities/<id>/next-action  — Define / reschedule / complete / cancel next action
  DELETE /api/activities/<id>              — Delete activity
  GET    /api/activities/<id>/history      — Audit trail for the activity
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from salestrack.extensions import audit_recorder, db
from salestrack.middleware.client_info import get_request_client_info
from salestrack.models.activity import Activity
from salestrack.services import activity_service
from salestrack.services.activity_service import ActivityPermissionError
from salestrack.services.audit_service import actor_identity, entity_history

logger = logging.getLogger(__name__)

activities_bp = Blueprint("activities", __name__, url_prefix="/api/activities")

ENTITY_TYPE = "ACTIVITY"


def _get_owned_activity(activity_id):
    """Return (activity, None) or (None, error_response)."""
    activity = db.session.get(Activity, activity_id)
    if activity is None:
        return None, (jsonify({"error": "Activity not found"}), 404)
    if not current_user.is_admin and activity.user_id != current_user.id:
        return None, (jsonify({"error": "Forbidden. You do not own this activity."}), 403)
    return activity, None


def _audit_context():
    ip_address, user_agent = get_request_client_info(request)
    return dict(
        ip_address=ip_address,
        user_agent=user_agent,
        **actor_identity(current_user),
    )


# ──────────────────────────────────────────────
# GET /api/activities/<id>
# ──────────────────────────────────────────────

@activities_bp.route("/<activity_id>", methods=["GET"])
@login_required
def get_activity(activity_id):
    activity, error = _get_owned_activity(activity_id)
    if error:
        return error
    return jsonify(activity.to_dict())


# ──────────────────────────────────────────────
# PUT /api/activities/<id>
# ──────────────────────────────────────────────

@activities_bp.route("/<activity_id>", methods=["PUT"])
@login_required
def update_activity(activity_id):
    """General-purpose edit.

    Changing nextActionType, nextActionDetails or nextActionDate here has the
    same reminder-reset effect as the dedicated next-action endpoint.
    """
    activity, error = _get_owned_activity(activity_id)
    if error:
        return error

    context = _audit_context()
    data = request.get_json(silent=True)

    try:
        changes = activity_service.update_activity(activity, data, current_user)
        db.session.commit()
    except ActivityPermissionError as e:
        db.session.rollback()
        return jsonify({"error": f"Forbidden. {e}"}), 403
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": "Invalid input", "details": str(e)}), 400
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating activity {activity_id}: {e}", exc_info=True)
        audit_recorder.record_failure(
            "UPDATE_ACTIVITY", e,
            entity_type=ENTITY_TYPE, entity_id=activity_id, **context,
        )
        return jsonify({"error": "Internal server error"}), 500

    if changes:
        audit_recorder.record(
            "UPDATE",
            entity_type=ENTITY_TYPE,
            entity_id=activity_id,
            details={"changes": changes},
            **context,
        )

    return jsonify(activity.to_dict())


# ──────────────────────────────────────────────
# PUT /api/activities/<id>/next-action
# ──────────────────────────────────────────────

@activities_bp.route("/<activity_id>/next-action", methods=["PUT"])
@login_required
def update_next_action(activity_id):
    """Manage the next action.

    Body (all optional): nextActionType, nextActionDetails, nextActionDate,
    nextActionStatus (PENDING|RESCHEDULED|COMPLETED|CANCELLED),
    nextActionCompletedAt (only with COMPLETED).
    """
    activity, error = _get_owned_activity(activity_id)
    if error:
        return error

    context = _audit_context()
    data = request.get_json(silent=True)

    try:
        changes = activity_service.update_next_action(activity, data)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": "Invalid input", "details": str(e)}), 400
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating next action for activity {activity_id}: {e}", exc_info=True)
        audit_recorder.record_failure(
            "UPDATE_NEXT_ACTION_FAILED", e,
            entity_type=ENTITY_TYPE, entity_id=activity_id,
            details={"target": "next-action"}, **context,
        )
        return jsonify({"error": "Internal server error"}), 500

    if not changes:
        return jsonify({
            "message": "No changes to update for next action.",
            "activity": activity.to_dict(),
        }), 200

    audit_recorder.record(
        "UPDATE",
        entity_type=ENTITY_TYPE,
        entity_id=activity_id,
        details={"targetComponent": "nextAction", "changes": changes},
        **context,
    )

    return jsonify(activity.to_dict())


# ──────────────────────────────────────────────
# DELETE /api/activities/<id>
# ──────────────────────────────────────────────

@activities_bp.route("/<activity_id>", methods=["DELETE"])
@login_required
def delete_activity(activity_id):
    activity, error = _get_owned_activity(activity_id)
    if error:
        return error

    context = _audit_context()

    try:
        deleted = activity_service.delete_activity(activity)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error deleting activity {activity_id}: {e}", exc_info=True)
        audit_recorder.record_failure(
            "DELETE_ACTIVITY", e,
            entity_type=ENTITY_TYPE, entity_id=activity_id, **context,
        )
        return jsonify({"error": "Internal server error"}), 500

    audit_recorder.record(
        "DELETE",
        entity_type=ENTITY_TYPE,
        entity_id=activity_id,
        details={"deletedDataSnapshot": deleted},
        **context,
    )

    return jsonify({"message": "Activity deleted successfully"}), 200


# ──────────────────────────────────────────────
# GET /api/activities/<id>/history
# ──────────────────────────────────────────────

@activities_bp.route("/<activity_id>/history", methods=["GET"])
@login_required
def activity_history(activity_id):
    activity, error = _get_owned_activity(activity_id)
    if error:
        return error
    entries = entity_history(ENTITY_TYPE, activity.id)
    return jsonify([entry.to_dict() for entry in entries])
