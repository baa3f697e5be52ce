import logging

import click
from flask import Flask, request
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

from config import Config
from routes import health_bp, booking_bp, admin_bp, audit_bp

from models import db
from models.booking import Booking
from models.user import User, Role
from security.rbac import ADMIN, EMPLOYEE
from security.session import create_session
from utils.audit import log_event
from utils.auth_context import load_current_user
from utils.errors import AppError
from utils.logging_context import configure_logging, get_request_id, set_request_id
from utils.notifier import Notifier
from utils.responses import fail
from utils.seed import seed_roles

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(audit_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Outbound email/SMS worker pool
    Notifier(app)

    # Seed default roles at startup (safe & idempotent)
    with app.app_context():
        if app.config.get("CREATE_TABLES"):
            db.create_all()
        seed_roles()

    @app.before_request
    def _request_id():
        set_request_id(request.headers.get("X-Request-ID"))

    @app.before_request
    def _load_user():
        load_current_user()

    register_error_handlers(app)

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        resp.headers["X-Request-ID"] = get_request_id()
        return resp

    register_cli(app)

    return app


def register_error_handlers(app):
    @app.errorhandler(AppError)
    def _app_error(exc):
        logger.warning(
            "%s %s -> %s %s: %s",
            request.method, request.path, exc.status_code, exc.error_code, exc.message,
        )
        return fail(exc.message, exc.status_code, exc.error_code, exc.errors)

    @app.errorhandler(HTTPException)
    def _http_error(exc):
        code = exc.code or 500
        if code < 400:
            # redirects raised by routing (e.g. trailing slash)
            return exc
        log = logger.error if code >= 500 else logger.warning
        log("%s %s -> %s", request.method, request.path, code)
        return fail(exc.description or exc.name, code, exc.name.upper().replace(" ", "_"))

    @app.errorhandler(Exception)
    def _unexpected(exc):
        db.session.rollback()
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return fail(INTERNAL_ERROR_MESSAGE, 500, "INTERNAL_SERVER_ERROR")


def register_cli(app):
    @app.cli.command("make-staff")
    @click.argument("email")
    @click.option("--role", type=click.Choice([EMPLOYEE, ADMIN]), default=EMPLOYEE, show_default=True)
    def make_staff(email, role):
        """Grant EMPLOYEE or ADMIN to an existing user by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            raise click.ClickException("User not found")

        staff_role = Role.query.filter_by(name=role).first()
        if not staff_role:
            staff_role = Role(name=role)
            db.session.add(staff_role)
            db.session.commit()

        if staff_role not in user.roles:
            user.roles.append(staff_role)
            db.session.commit()

        log_event("ROLE_GRANT", entity="user", entity_id=user.id, metadata={"role": role})
        click.echo(f"{user.email} granted {role}")

    @app.cli.command("purge-booking")
    @click.argument("booking_number")
    @click.confirmation_option(prompt="This permanently deletes the booking and its history. Continue?")
    def purge_booking(booking_number):
        """Delete a booking and, by cascade, its status history."""
        booking = Booking.query.filter_by(booking_number=booking_number.strip().upper()).first()
        if not booking:
            raise click.ClickException("Booking not found")

        booking_id = booking.id
        db.session.delete(booking)
        db.session.commit()

        log_event("BOOKING_PURGE", entity="booking", entity_id=booking_id,
                  metadata={"booking_number": booking_number})
        click.echo(f"Booking {booking_number} purged")

    @app.cli.command("issue-session")
    @click.argument("email")
    def issue_session(email):
        """Print a session token for a user (local development only)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            raise click.ClickException("User not found")
        click.echo(create_session(user.id, ip="cli", user_agent="flask issue-session"))


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
