"""
vendor_billing/__init__.py

Flask application factory for the Vendor Billing System API.

Requirements:
- JSON everywhere: success responses are {"success": true, "data": ...},
  errors are {"success": false, "error": ..., "code": ...}.
- Bearer-token authentication through Flask-Login's request_loader.
- UI is never trusted; server-side access control is enforced in the core.
"""

from __future__ import annotations

import logging

import click
from flask import Flask, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .exceptions import AuthenticationError, BillingError, PersistenceError
from .extensions import db, login_manager, migrate
from .session import load_user_from_request

logger = logging.getLogger(__name__)


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    logging.getLogger("vendor_billing").setLevel(level)


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(BillingError)
    def handle_billing_error(exc: BillingError):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.code, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(exc: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error")
        error = PersistenceError("The database is unavailable, please try again later")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        payload = {
            "success": False,
            "error": exc.description or exc.name,
            "code": exc.name.lower().replace(" ", "_"),
        }
        return jsonify(payload), exc.code


def create_app(config_object: str | object = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    _configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    login_manager.request_loader(load_user_from_request)

    @login_manager.unauthorized_handler
    def unauthorized():
        error = AuthenticationError("Unauthorized: Please login to access this resource")
        return jsonify(error.to_dict()), error.status_code

    _register_error_handlers(app)

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.auth import auth_bp
    from .blueprints.users import users_bp
    from .blueprints.vendors import vendors_bp
    from .blueprints.settings import settings_bp
    from .blueprints.jobs import jobs_bp
    from .blueprints.billing import billing_bp
    from .blueprints.receipts import receipts_bp
    from .blueprints.payment_vouchers import payment_vouchers_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(vendors_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(jobs_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(receipts_bp)
    app.register_blueprint(payment_vouchers_bp)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("seed")
    def seed_command():
        """Seed roles and the bootstrap administrator."""
        from .seed import seed_defaults

        seed_defaults()
        click.echo("Roles and bootstrap administrator seeded.")

    @app.cli.command("backfill-price-before-vat")
    @click.option("--dry-run", is_flag=True, help="Report what would change without writing.")
    def backfill_command(dry_run: bool):
        """Fill missing BillingNote.price_before_vat values."""
        from .backfill import backfill_price_before_vat

        try:
            report = backfill_price_before_vat(dry_run=dry_run)
        except PersistenceError as exc:
            raise click.ClickException(f"{exc.message} (last billing ref: {exc.details.get('lastBillingRef')})")

        prefix = "[dry run] " if dry_run else ""
        click.echo(
            f"{prefix}scanned={report.scanned} updated={report.updated} "
            f"skipped_invalid={report.skipped_invalid} assumed_inclusive={report.assumed_inclusive}"
        )
        if report.last_billing_ref:
            click.echo(f"{prefix}last billing ref: {report.last_billing_ref}")

    # ----------------------------------------------------------------------
    # Home / health
    # ----------------------------------------------------------------------
    @app.route("/")
    def index():
        return jsonify({"success": True, "data": {"name": app.config.get("APP_NAME"), "status": "running"}})

    @app.route("/health")
    def health():
        db.session.execute(text("SELECT 1"))
        return jsonify({"success": True, "data": {"status": "ok"}})

    return app
