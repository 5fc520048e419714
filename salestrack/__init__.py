import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.security import generate_password_hash

from salestrack.config import config_by_name
from salestrack.extensions import db, migrate, login_manager, csrf, limiter, audit_recorder


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)
    audit_recorder.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from salestrack import models  # noqa: F401

    # --- Register blueprints ---
    from salestrack.blueprints.auth import auth_bp
    from salestrack.blueprints.activities import activities_bp
    from salestrack.blueprints.admin import admin_bp
    from salestrack.blueprints.cron import cron_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(activities_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(cron_bp)

    # Cron is called by the scheduler with a bearer token, not a session
    csrf.exempt(cron_bp)

    # --- Error handlers ---
    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": getattr(e, "description", "Bad request")}), 400

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"error": "Forbidden"}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-admin")
    @click.option("--email", default="admin@salestrack.local", help="Admin email")
    @click.option("--password", default="admin123", help="Admin password")
    @click.option("--name", default="System Admin", help="Display name")
    def seed_admin(email, password, name):
        """Create a SYS_ADMIN user.

        Usage:
            flask seed-admin
            flask seed-admin --email admin@example.com --password s3cret
        """
        from salestrack.models.user import User

        existing = User.query.filter_by(email=email).first()
        if existing:
            click.echo(f"Admin user already exists: {email}")
            return

        admin = User(
            email=email,
            password_hash=generate_password_hash(password),
            name=name,
            role="SYS_ADMIN",
        )
        db.session.add(admin)
        db.session.commit()

        audit_recorder.record(
            "CREATE",
            entity_type="USER",
            entity_id=admin.id,
            details={"email": email, "role": "SYS_ADMIN", "source": "cli"},
        )
        audit_recorder.flush(timeout=5)
        click.echo(f"Created admin user: {email}")

    @app.cli.command("send-reminders")
    @click.option("--dry-run", is_flag=True, help="Show what would be sent without actually sending.")
    def send_reminders(dry_run):
        """Send WhatsApp reminders for next actions due tomorrow.

        Tomorrow is the next calendar day in BUSINESS_TIMEZONE. Activities
        already reminded are skipped, so the command is safe to re-run.

        Usage:
            flask send-reminders
            flask send-reminders --dry-run
        """
        from salestrack.services.reminder_service import (
            DispatchInProgressError,
            dispatch_reminders,
        )

        if dry_run:
            click.echo("[DRY RUN] No reminders will actually be sent.\n")

        try:
            summary = dispatch_reminders(dry_run=dry_run)
        except DispatchInProgressError as e:
            click.echo(f"✗ {e}")
            return

        click.echo(
            f"Window (UTC): {summary.window_start.isoformat()} → {summary.window_end.isoformat()}"
        )
        click.echo(f"Candidates: {summary.candidates}")
        for detail in summary.error_details:
            click.echo(f"   SKIP {detail['activityId']}: {detail['error']}")
        click.echo(summary.message)
