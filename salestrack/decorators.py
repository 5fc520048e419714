"""
Custom route decorators for access control.

- admin_required: ensures user is logged in AND has an admin role.
- cron_secret_required: Bearer token matching CRON_SECRET (scheduler calls).
"""

import hmac
import logging
from functools import wraps

from flask import current_app, jsonify, request
from flask_login import current_user, login_required

logger = logging.getLogger(__name__)


def admin_required(f):
    """Require login + SYS_ADMIN or ADMIN role."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            return jsonify({"error": "Forbidden: Access restricted to administrators."}), 403
        return f(*args, **kwargs)

    return decorated


def cron_secret_required(f):
    """Require `Authorization: Bearer <CRON_SECRET>`; nothing runs otherwise."""

    @wraps(f)
    def decorated(*args, **kwargs):
        expected = current_app.config.get("CRON_SECRET") or ""
        auth_header = request.headers.get("Authorization", "")
        token = auth_header[7:] if auth_header.startswith("Bearer ") else ""
        if not expected or not token or not hmac.compare_digest(token, expected):
            logger.warning(f"Unauthorized attempt to run cron job: {request.path}")
            return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)

    return decorated
