"""
OpEx Hub - Stage Progression Service
Flask Application Factory.

Usage:
    from opexhub import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from opexhub.config import config
from opexhub.middleware.logging_config import configure_logging
from opexhub.middleware.rate_limiter import init_rate_limits
from opexhub.middleware.timing import init_request_timing
from opexhub.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit - apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_request_timing(app)

    # ── Models (imported so Alembic and create_all see them) ─────────────
    from opexhub.models import auth as _auth_models                 # noqa: F401
    from opexhub.models import initiative as _initiative_models     # noqa: F401
    from opexhub.models import notification as _notification_models  # noqa: F401
    from opexhub.models import workflow as _workflow_models         # noqa: F401

    # ── Workflow services ────────────────────────────────────────────────
    from opexhub.services.action_tokens import init_action_tokens
    from opexhub.services.notification import NotificationDispatcher
    from opexhub.services.stage_engine import init_stage_engine

    token_store = init_action_tokens(app)
    init_stage_engine(app, NotificationDispatcher(token_store))

    # ── Auto-create tables (CREATE IF NOT EXISTS; migrations stay authoritative) ──
    os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
        except SQLAlchemyError as exc:
            app.logger.warning("db.create_all() failed: %s", exc)

    # ── Blueprints ───────────────────────────────────────────────────────
    from opexhub.blueprints.health_bp import health_bp
    from opexhub.blueprints.initiative_bp import initiative_bp
    from opexhub.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(initiative_bp)
    app.register_blueprint(workflow_bp)

    _register_cli(app)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app


def _register_cli(app):
    @app.cli.command("seed-routing")
    def seed_routing_cmd():
        """Seed demo users and stage 1–3 routing for the NDS and DHJ sites."""
        from opexhub.services.routing_table import seed_default_routing
        counts = seed_default_routing()
        click.echo(f"Seeded {counts['users']} users and {counts['routing_entries']} routing entries.")

    @app.cli.command("reconcile-stages")
    @click.argument("site")
    def reconcile_stages_cmd(site):
        """Report routing rows that disagree with the engine's stage definitions."""
        from opexhub.services.routing_table import RoutingTable
        mismatches = RoutingTable().reconcile(site)
        if not mismatches:
            click.echo(f"Routing for {site} matches the engine stage definitions.")
            return
        for m in mismatches:
            click.echo(
                f"stage {m['stage_number']}: {m['field']} configured={m['configured']!r} "
                f"executed={m['executed']!r}"
            )
        raise click.exceptions.Exit(1)

    @app.cli.command("purge-action-tokens")
    def purge_action_tokens_cmd():
        """Drop expired e-mail action tokens (memory backend only)."""
        removed = app.extensions["action_tokens"].purge_expired()
        click.echo(f"Purged {removed} expired action tokens.")
