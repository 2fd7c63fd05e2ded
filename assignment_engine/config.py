"""
Compliance Assignment Engine
Configuration classes for the Flask app factory.

Every engine knob reads an environment variable of the same name, so a
deployment tunes the optimizer and SLA thresholds without code changes:

    APP_ENV=production
    DATABASE_URL=postgresql://...
    AT_RISK_THRESHOLD=0.25
    MAX_ACTIVE_WORKLOAD=12
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'assignment_engine_dev.db')}"


def _env_float(name, default):
    return float(os.getenv(name, str(default)))


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


def _env_list(name, default):
    return tuple(part.strip() for part in os.getenv(name, default).split(",") if part.strip())


def _database_url(fallback=None):
    # SQLAlchemy 2 rejects the legacy postgres:// scheme some hosts still hand out
    url = os.getenv("DATABASE_URL", "")
    if not url:
        return fallback
    return url.replace("postgres://", "postgresql://", 1)


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_hex(32))
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")

    # ── Request logging (LOG_LEVEL and LOG_FORMAT are read by logging_config) ──
    SLOW_REQUEST_MS = _env_int("SLOW_REQUEST_MS", 1000)

    # ── History window shared by profiles, patterns and model training ──
    HISTORY_WINDOW_DAYS = _env_int("HISTORY_WINDOW_DAYS", 180)
    HISTORY_LIMIT = _env_int("HISTORY_LIMIT", 1000)

    # ── Completion-time predictor ──
    # "auto": model-backed once enough history exists, heuristic before that
    # "heuristic": never train a model
    PREDICTOR_STRATEGY = os.getenv("PREDICTOR_STRATEGY", "auto")
    MIN_TRAINING_SAMPLES = _env_int("MIN_TRAINING_SAMPLES", 50)

    # ── Optimizer ──
    STALE_ASSIGNMENT_GRACE_HOURS = _env_float("STALE_ASSIGNMENT_GRACE_HOURS", 2)
    MAX_ACTIVE_WORKLOAD = _env_int("MAX_ACTIVE_WORKLOAD", 10)
    OVERLOAD_THRESHOLD = _env_int("OVERLOAD_THRESHOLD", 8)
    OPTIMIZER_ELIGIBLE_ROLES = _env_list(
        "OPTIMIZER_ELIGIBLE_ROLES", "manager,analyst,auditor,compliance_officer",
    )
    ASSIGNMENT_LOCK_TTL_SECONDS = _env_int("ASSIGNMENT_LOCK_TTL_SECONDS", 600)

    # ── SLA ──
    AT_RISK_THRESHOLD = _env_float("AT_RISK_THRESHOLD", 0.2)
    PLAN_SLA_DAYS = _env_int("PLAN_SLA_DAYS", 30)
    TASK_SLA_HOURS = _env_int("TASK_SLA_HOURS", 8)

    # ── Scheduler loop ──
    SCHEDULER_TICK_SECONDS = _env_int("SCHEDULER_TICK_SECONDS", 30)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    """PostgreSQL only; refuses to start without DATABASE_URL and SECRET_KEY."""

    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        # Optimizer batches commit per item; no single statement should run 30s
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
