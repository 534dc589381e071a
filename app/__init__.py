import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash

from app.config import config_by_name
from app.extensions import db, migrate, login_manager, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    config_cls = config_by_name[config_name]
    app.config.from_object(config_cls)
    app.config["CELERY"] = config_cls.celery_settings()

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_cls.validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from app import models  # noqa: F401

    # --- Notification queue (Celery) + transport selection ---
    from app.tasks.celery_app import celery_init_app
    from app.services.notification_service import init_notification_transport
    celery_init_app(app)
    init_notification_transport(app)

    # --- Request logging ---
    from app.middleware.request_log import init_request_log_middleware
    init_request_log_middleware(app)

    # --- Register blueprints ---
    from app.blueprints.auth import auth_bp
    from app.blueprints.checkin import checkin_bp
    from app.blueprints.registrations import registrations_bp
    from app.blueprints.passes import passes_bp, jobs_bp
    from app.blueprints.logs import logs_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(checkin_bp)
    app.register_blueprint(registrations_bp)
    app.register_blueprint(passes_bp)
    app.register_blueprint(jobs_bp)
    app.register_blueprint(logs_bp)

    # Exempt public endpoints from CSRF — hit by the mobile app without a session
    csrf.exempt(passes_bp)
    csrf.exempt(logs_bp)

    # --- Root route ---
    @app.route("/health")
    def health():
        return jsonify(
            status="ok",
            notificationTransport=app.extensions["notification_transport"].name,
        )

    # --- Local file serving (dev only) ---
    if app.debug:
        @app.route("/uploads/<path:filepath>")
        def serve_upload(filepath):
            """Serve uploaded files from UPLOAD_FOLDER in dev mode."""
            from flask import send_from_directory
            upload_dir = app.config["UPLOAD_FOLDER"]
            if not os.path.isabs(upload_dir):
                upload_dir = os.path.join(app.root_path, "..", upload_dir)
            return send_from_directory(upload_dir, filepath)

    # --- Error handlers ---
    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify(success=False, message=e.description), e.code

    @app.errorhandler(500)
    def server_error(e):
        return jsonify(success=False, message="Internal server error."), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Permissions Policy (restrict browser features)
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=()"
        )
        # JSON + PDF API: nothing to load, nothing to frame
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'; base-uri 'none'"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-admin")
    @click.option("--email", default="admin@mandapam.local", help="Admin email")
    @click.option("--password", default="admin123", help="Admin password")
    def seed_admin(email, password):
        """Create admin user + demo member + event + registration.

        Usage:
            flask seed-admin
            flask seed-admin --email admin@example.com --password s3cret
        """
        from datetime import datetime, timedelta, timezone

        from app.models.event import Event
        from app.models.member import Member
        from app.models.user import User
        from app.services import qr_service, registration_service

        # --- 1. Admin user ---
        existing = User.query.filter_by(email=email).first()
        if existing:
            click.echo(f"Admin user already exists: {email}")
            admin = existing
        else:
            admin = User(
                email=email,
                password_hash=generate_password_hash(password),
                full_name="Admin",
                role="admin",
            )
            db.session.add(admin)
            db.session.flush()
            click.echo(f"Created admin user: {email}")

        # --- 2. Demo member ---
        member = Member(
            name="Demo Member",
            business_name="Demo Mandap Decorators",
            phone="9876543210",
            city="Kolhapur",
            association_name="Kolhapur Mandap Association",
        )
        db.session.add(member)

        # --- 3. Demo event ---
        event = Event(
            title="MANDAPAM 2026",
            description="Annual trade exhibition",
            event_date=datetime.now(timezone.utc) + timedelta(days=30),
            venue="Exhibition Grounds",
            city="Kolhapur",
            registration_fee=500,
        )
        db.session.add(event)
        db.session.flush()

        # --- 4. Registration ---
        registration, _ = registration_service.register_member(
            event.id, member.id, actor_user_id=admin.id, payment_status="pending"
        )
        db.session.commit()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Seed data created successfully!")
        click.echo("=" * 60)
        click.echo(f"  Admin:        {email} / {password}")
        click.echo(f"  Member:       {member.name} (id: {member.id})")
        click.echo(f"  Event:        {event.title} (id: {event.id})")
        click.echo(f"  Registration: {registration.id}")
        click.echo(f"  QR token:     {qr_service.encode(registration)}")
        click.echo("=" * 60)

    @app.cli.command("bulk-register")
    @click.option("--event-id", type=int, required=True, help="Event to register members for.")
    @click.option("--member-id", "member_ids", type=int, multiple=True,
                  help="Limit to these members (repeatable). Default: all active members.")
    @click.option("--payment-status", default="paid", show_default=True,
                  type=click.Choice(["pending", "paid"]))
    def bulk_register(event_id, member_ids, payment_status):
        """Register members to an event, reactivating cancelled registrations.

        Usage:
            flask bulk-register --event-id 3
            flask bulk-register --event-id 3 --member-id 10 --member-id 11
        """
        from app.services.bulk_service import bulk_register_members
        bulk_register_members(event_id, member_ids or None, payment_status=payment_status)

    @app.cli.command("send-pending-passes")
    @click.option("--event-id", type=int, default=None, help="Only this event.")
    @click.option("--dry-run", is_flag=True, help="Show what would be sent without actually sending.")
    def send_pending_passes(event_id, dry_run):
        """Queue WhatsApp passes for registrations that never received one.

        Usage:
            flask send-pending-passes
            flask send-pending-passes --event-id 3 --dry-run
        """
        from app.services.bulk_service import send_pending_passes as _send
        _send(event_id=event_id, dry_run=dry_run)
