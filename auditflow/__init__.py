"""
Audit Workflow Platform
Flask Application Factory.

Usage:
    from auditflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from auditflow.config import config
from auditflow.models import db
from auditflow.middleware.logging_config import configure_logging
from auditflow.middleware.rate_limiter import init_rate_limits
from auditflow.middleware.timing import init_request_timing
from auditflow.services.live_events import init_live_events
from auditflow.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


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
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiate so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())

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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Live events (memory or Redis pub/sub) ────────────────────────────
    init_live_events(app)

    # ── Error handlers: exception hierarchy → api_error ──────────────────
    register_error_handlers(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from auditflow.models import activity_log as _activity_models  # noqa: F401
    from auditflow.models import audit as _audit_models            # noqa: F401
    from auditflow.models import audit_plan as _plan_models        # noqa: F401
    from auditflow.models import auth as _auth_models              # noqa: F401
    from auditflow.models import meeting as _meeting_models        # noqa: F401
    from auditflow.models import notification as _notification_models  # noqa: F401

    # ── Auto-create tables outside production (migrations own prod schema) ─
    if config_name != "production":
        with app.app_context():
            try:
                db.create_all()
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from auditflow.blueprints import register_blueprints
    register_blueprints(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-agenda-templates")
    @click.argument("tenant_id", type=int)
    def seed_agenda_templates_cmd(tenant_id):
        """Copy the standard opening/closing/management-review agendas into a tenant."""
        from auditflow.services.agenda_templates import seed_default_templates
        count = seed_default_templates(tenant_id)
        db.session.commit()
        logger.info("Seeded %s new agenda templates.", count, extra={"tenant_id": tenant_id})

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
