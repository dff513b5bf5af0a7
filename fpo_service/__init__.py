"""
FPO Lifecycle Service
Flask Application Factory.

Usage:
    from fpo_service import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from fpo_service.config import config
from fpo_service.integrations.aaa_gateway import init_aaa_gateway
from fpo_service.middleware.logging_config import configure_logging
from fpo_service.middleware.rate_limiter import init_rate_limits
from fpo_service.middleware.timing import init_request_timing
from fpo_service.models import db
from fpo_service.utils.errors import E, api_error

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
    default_limits=[],                     # no global limit - apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None, aaa_gateway=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to the APP_ENV environment variable.
        aaa_gateway: Optional gateway instance to register instead of one
                     built from config (tests pass a fake here).

    Returns:
        Configured Flask app instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__)
    config_cls = config.get(config_name, config["default"])
    # ProductionConfig validates required env vars on instantiation
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    # ── Logging ──────────────────────────────────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    CORS(app, origins=app.config["CORS_ORIGINS"])
    init_aaa_gateway(app, aaa_gateway)

    # ── Middleware ───────────────────────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from fpo_service.models import audit as _audit_models  # noqa: F401
    from fpo_service.models import fpo as _fpo_models      # noqa: F401

    # ── Blueprints ───────────────────────────────────────────────────────
    from fpo_service.blueprints.fpo_lifecycle_bp import fpo_lifecycle_bp
    from fpo_service.blueprints.health_bp import health_bp

    app.register_blueprint(fpo_lifecycle_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("fpo-setup-retry-sweep")
    def fpo_setup_retry_sweep_cmd():
        """Retry provisioning for SETUP_FAILED FPOs below the attempt cap."""
        from fpo_service.services.scheduler_service import SchedulerService
        result = SchedulerService.run_job("fpo_setup_retry_sweep")
        logger.info("Setup retry sweep: %s", result)
        if result.get("status") in ("failed", "error"):
            raise SystemExit(1)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
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
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    import importlib
    importlib.import_module("fpo_service.services.scheduled_jobs")  # registers @register_job handlers
    from fpo_service.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)

    return app
