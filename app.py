import logging

import click
from flask import Flask, jsonify
from flask_migrate import Migrate
from sqlalchemy import inspect

from config import Config
from routes import health_bp, auth_bp, pods_bp, booking_bp, payments_bp, webhook_bp

from models import db
from models.user import User, Role
from services.cashfree_gateway import build_gateway
from services.errors import PlatformError
from services.factory import get_payment_service
from utils.audit import log_event
from utils.seed import seed_roles, seed_payment_provider
from utils.auth_context import load_current_user
from utils.transactions import serialize_sqlite_writes
from security.csrf import csrf_applies, require_csrf

logger = logging.getLogger(__name__)


def configure_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger().setLevel(level)
    app.logger.setLevel(level)


def create_app(config_class=Config, overrides=None):
    app = Flask(__name__)
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    configure_logging(app)

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
        connect_args = dict(options.get("connect_args") or {})
        connect_args.setdefault("timeout", app.config.get("SQLITE_BUSY_TIMEOUT_SECONDS", 30))
        connect_args.setdefault("check_same_thread", False)
        options["connect_args"] = connect_args
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = options

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(pods_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Payment gateway client, one per app
    app.extensions["payment_gateway"] = build_gateway(app.config)

    with app.app_context():
        if db.engine.dialect.name == "sqlite":
            serialize_sqlite_writes(db.engine)
        if app.config.get("TESTING"):
            db.create_all()
        # Seed default roles and payment provider at startup (safe & idempotent)
        if inspect(db.engine).has_table("roles"):
            seed_roles()
            seed_payment_provider()
        else:
            logger.warning("Schema not found; run `flask db upgrade` then restart")

    @app.before_request
    def _load_user():
        load_current_user()

    @app.before_request
    def _csrf_protect():
        # Only cookie sessions doing state-changing requests
        if csrf_applies():
            failure = require_csrf()
            if failure:
                return failure

    @app.errorhandler(PlatformError)
    def _platform_error(exc):
        if exc.status_code >= 500:
            logger.error("%s: %s (upstream: %s)", exc.__class__.__name__, exc.message,
                         getattr(exc, "upstream_message", None))
        return jsonify(exc.to_dict()), exc.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------

def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        admin_role = Role.query.filter_by(name="ADMIN").first()
        if not admin_role:
            admin_role = Role(name="ADMIN")
            db.session.add(admin_role)
            db.session.commit()

        if admin_role not in user.roles:
            user.roles.append(admin_role)
            db.session.commit()

        click.echo(f"{user.email} promoted to ADMIN")

    @app.cli.command("seed-provider")
    @click.option("--provider", default=None, help="Provider id, defaults to DEFAULT_PAYMENT_PROVIDER.")
    def seed_provider(provider):
        """Create the default payment provider if missing."""
        row = seed_payment_provider(provider)
        click.echo(f"Provider {row.provider_id} ready (default={row.is_default})")

    @app.cli.command("reconcile-webhooks")
    @click.option("--limit", default=100, show_default=True, help="Max events to replay.")
    def reconcile_webhooks(limit):
        """Replay webhook events that were recorded but not applied."""
        result = get_payment_service().reprocess_pending_webhooks(limit=limit)
        log_event("WEBHOOK_REPLAY", entity="payment_webhook_event", metadata=result)
        click.echo(f"processed={result['processed']} failed={result['failed']}")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
