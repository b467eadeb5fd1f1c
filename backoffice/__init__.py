"""
Billing Back Office
Flask Application Factory.

Usage:
    from backoffice import create_app
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

from backoffice.config import config
from backoffice.models import db
from backoffice.middleware.logging_config import configure_logging
from backoffice.middleware.rate_limiter import init_rate_limits
from backoffice.middleware.timing import init_request_timing
from backoffice.services.queue_runner import queue_runner

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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 10 * 1024 * 1024)  # 10 MB, queue payloads carry rows

    @app.before_request
    def _guard_request():
        from flask import request as _req, abort
        if _req.method in ("POST", "PUT", "PATCH"):
            ct = _req.content_type or ""
            # form bodies are parsed into request.form and leave request.data empty
            if (_req.content_length or 0) > 0 and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from backoffice.models import billing as _billing_models      # noqa: F401
    from backoffice.models import documents as _documents_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from backoffice.blueprints.health_bp import health_bp
    from backoffice.blueprints.invoice_bp import invoice_bp
    from backoffice.blueprints.worklog_pdf_bp import worklog_pdf_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(invoice_bp)
    app.register_blueprint(worklog_pdf_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("drain-documents")
    @click.option("--sweep/--no-sweep", default=True,
                  help="Recover stale processing jobs before draining.")
    def drain_documents_cmd(sweep):
        """Process all due document jobs synchronously, then exit."""
        from backoffice.services import document_queue
        if sweep:
            recovered = document_queue.recover_stale_jobs()
            logger.info("Recovered %s stale document jobs.", recovered)
        picked = queue_runner.drain()
        if picked is None:
            logger.info("A drain loop is already running in this process.")
        else:
            logger.info("Drained %s document jobs.", picked)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(415)
    def unsupported_media(e):
        return {"error": e.description, "code": "ERR_VALIDATION_INVALID"}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Document queue runner (poke on enqueue + periodic poller) ───────
    queue_runner.init_app(app)
    queue_runner.start_poller()

    return app
