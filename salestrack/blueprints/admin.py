"""Admin blueprint — /api/admin/*

Audit log browser. All routes protected by @admin_required.

Route Map:
  GET /api/admin/audit-logs   — Paginated, filterable audit log
"""

from datetime import datetime, time, timezone

from flask import Blueprint, jsonify, request
from sqlalchemy import or_

from salestrack.decorators import admin_required
from salestrack.extensions import db
from salestrack.models.audit import AuditLog
from salestrack.models.user import User

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

MAX_PAGE_SIZE = 100


def _parse_date(value, end_of_day=False):
    """YYYY-MM-DD (or full ISO datetime) -> aware UTC datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if len(value) == 10 and end_of_day:
        parsed = datetime.combine(parsed.date(), time.max)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@admin_bp.route("/audit-logs", methods=["GET"])
@admin_required
def audit_logs():
    """List audit entries, newest first.

    Query params: page, limit, userId, actionType, entityType, entityId,
    dateFrom, dateTo (inclusive, whole day when given as YYYY-MM-DD).
    Entries whose actor is a SYS_ADMIN are hidden.
    """
    page = max(request.args.get("page", 1, type=int) or 1, 1)
    limit = min(max(request.args.get("limit", 20, type=int) or 20, 1), MAX_PAGE_SIZE)

    sys_admin_ids = db.select(User.id).where(User.role == "SYS_ADMIN")
    query = AuditLog.query.filter(
        or_(AuditLog.user_id.is_(None), AuditLog.user_id.notin_(sys_admin_ids))
    )

    user_id = request.args.get("userId")
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)

    action = request.args.get("actionType")
    if action and action in AuditLog.ACTIONS:
        query = query.filter(AuditLog.action == action)

    entity_type = request.args.get("entityType")
    if entity_type and entity_type in AuditLog.ENTITY_TYPES:
        query = query.filter(AuditLog.entity_type == entity_type)

    entity_id = request.args.get("entityId")
    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)

    try:
        date_from = request.args.get("dateFrom")
        if date_from:
            query = query.filter(AuditLog.timestamp >= _parse_date(date_from))
        date_to = request.args.get("dateTo")
        if date_to:
            query = query.filter(AuditLog.timestamp <= _parse_date(date_to, end_of_day=True))
    except ValueError:
        return jsonify({"error": "dateFrom/dateTo must be ISO dates (YYYY-MM-DD)."}), 400

    total = query.count()
    entries = (
        query
        .order_by(AuditLog.timestamp.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return jsonify({
        "auditLogs": [entry.to_dict() for entry in entries],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": (total + limit - 1) // limit,
        },
    })
