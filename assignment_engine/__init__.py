"""
Compliance Assignment Engine
Flask Application Factory.

Usage:
    from assignment_engine import create_app
    app = create_app()           # APP_ENV, or "development"
    app = create_app("testing")

CLI (``flask --app wsgi <command>``):
    seed-role-actions   insert the default role-action policies
    optimize            run one optimizer batch
    recompute-sla       recompute every open SLA record
    run-scheduler       sequential job loop (``--once`` for a single tick)
"""

import importlib
import logging
import os
import time

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as sa_engine
from sqlalchemy import event as sa_event

from assignment_engine.config import config
from assignment_engine.models import db
from assignment_engine.middleware.logging_config import configure_logging
from assignment_engine.middleware.rate_limiter import init_rate_limits
from assignment_engine.middleware.timing import init_request_timing

logger = logging.getLogger(__name__)

MODEL_MODULES = (
    "directory", "work_item", "assignment", "sla",
    "role_action", "scheduling", "notification", "optimization",
)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


@sa_event.listens_for(sa_engine.Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    # SQLite ignores ON DELETE CASCADE unless asked per connection
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """
    Build the engine's Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Falls back to the APP_ENV env var.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name or os.getenv("APP_ENV", "development")])
    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    _create_tables(app)
    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cli(app)
    init_rate_limits(app, limiter)
    _init_engine(app)
    return app


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _create_tables(app):
    for module in MODEL_MODULES:
        importlib.import_module(f"assignment_engine.models.{module}")

    with app.app_context():
        try:
            db.create_all()
        except Exception as exc:
            # Migrations own the schema in production; an app that cannot
            # create tables still serves /health/live with the real error.
            app.logger.warning("Table creation skipped: %s", exc)


def _register_blueprints(app):
    from assignment_engine.blueprints.assignment_bp import assignment_bp
    from assignment_engine.blueprints.health_bp import health_bp
    from assignment_engine.blueprints.notification_bp import notification_bp
    from assignment_engine.blueprints.scheduler_bp import scheduler_bp
    from assignment_engine.blueprints.sla_bp import sla_bp

    for bp in (assignment_bp, sla_bp, scheduler_bp, notification_bp, health_bp):
        app.register_blueprint(bp)

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Compliance Assignment Engine"}


def _register_error_handlers(app):

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed", "method": request.method}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled error on %s %s: %s", request.method, request.path, e, exc_info=True)
        return {"error": "Internal server error"}, 500


def _register_cli(app):

    @app.cli.command("seed-role-actions")
    def seed_role_actions_cmd():
        """Insert the default role-action policies."""
        from assignment_engine.services.role_action_service import seed_default_role_actions
        count = seed_default_role_actions()
        db.session.commit()
        click.echo(f"Seeded {count} role action(s).")

    @app.cli.command("optimize")
    def optimize_cmd():
        """Run one assignment optimizer batch."""
        from assignment_engine.services.assignment_optimizer import optimize_scheduling
        summary = optimize_scheduling()
        if summary.get("status") == "skipped":
            click.echo("Another optimizer batch holds the lock; nothing done.")
            return
        click.echo(
            f"Batch {summary.get('batch_id')}: {len(summary.get('assigned', []))} assigned, "
            f"{len(summary.get('bottlenecks', []))} bottlenecks, "
            f"{len(summary.get('failed', []))} failed"
        )

    @app.cli.command("recompute-sla")
    def recompute_sla_cmd():
        """Recompute every open SLA record."""
        from assignment_engine.services.sla_tracker import recompute_all_sla
        click.echo(f"SLA recompute: {recompute_all_sla()}")

    @app.cli.command("run-scheduler")
    @click.option("--once", is_flag=True, help="Run a single tick and exit.")
    def run_scheduler_cmd(once):
        """Run due scheduled jobs one after another, forever."""
        from assignment_engine.services.scheduler_service import run_due_jobs
        tick = app.config.get("SCHEDULER_TICK_SECONDS", 30)
        logger.info("Scheduler loop started (tick=%ss)", tick)
        while True:
            run_due_jobs()
            if once:
                break
            time.sleep(tick)


def _init_engine(app):
    # Importing the module registers the @register_job handlers
    importlib.import_module("assignment_engine.services.scheduled_jobs")
    from assignment_engine.services.scheduler_service import SchedulerService
    from assignment_engine.services.scheduling_engine import init_engine

    SchedulerService.init_app(app)
    init_engine(app)
