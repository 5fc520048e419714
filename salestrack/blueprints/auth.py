"""Auth blueprint — /auth/*

Thin email + password session login for the JSON API. Every attempt is
audited: LOGIN_SUCCESS, LOGIN_FAILURE (with the reason) and LOGOUT.
Accepts JSON or form bodies.
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash

from salestrack.extensions import audit_recorder, limiter
from salestrack.middleware.client_info import get_request_client_info
from salestrack.models.user import User
from salestrack.services.audit_service import actor_identity

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _login_failed(email, reason, user=None):
    ip_address, user_agent = get_request_client_info(request)
    audit_recorder.record(
        "LOGIN_FAILURE",
        entity_type="SESSION",
        entity_id=user.id if user else None,
        user_id=user.id if user else None,
        user_name=user.name if user else None,
        user_role=user.role if user else None,
        details={"email": email, "reason": reason},
        ip_address=ip_address,
        user_agent=user_agent,
    )


# ──────────────────────────────────────────────
# GET /auth/csrf-token
# ──────────────────────────────────────────────

@auth_bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    """Token for the X-CSRFToken header on session-authenticated writes."""
    return jsonify({"csrfToken": generate_csrf()})


# ──────────────────────────────────────────────
# POST /auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("15 per minute", methods=["POST"])
def login():
    """Email + password login."""
    data = request.get_json(silent=True) or request.form
    email = (data.get("email") or "").lower().strip()
    password = data.get("password") or ""
    remember = bool(data.get("remember"))

    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400

    user = User.query.filter_by(email=email).first()

    if user is None or not check_password_hash(user.password_hash, password):
        _login_failed(email, "Invalid credentials", user)
        return jsonify({"error": "Invalid email or password."}), 401

    if not user.is_active:
        _login_failed(email, "Account deactivated", user)
        return jsonify({"error": "Your account has been deactivated."}), 403

    login_user(user, remember=remember)

    ip_address, user_agent = get_request_client_info(request)
    audit_recorder.record(
        "LOGIN_SUCCESS",
        entity_type="SESSION",
        entity_id=user.id,
        details={"email": email},
        ip_address=ip_address,
        user_agent=user_agent,
        **actor_identity(user),
    )

    return jsonify({
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
    })


# ──────────────────────────────────────────────
# POST /auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    ip_address, user_agent = get_request_client_info(request)
    audit_recorder.record(
        "LOGOUT",
        entity_type="SESSION",
        entity_id=current_user.id,
        ip_address=ip_address,
        user_agent=user_agent,
        **actor_identity(current_user),
    )
    logout_user()
    return jsonify({"message": "Logged out."})
