"""
Billing Back Office
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'backoffice_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # Rate limiter storage (memory for dev, Redis in production)
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Email / SMTP (optional; dev mode logs without sending)
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", "true")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "Back Office <no-reply@backoffice.local>")
    MAIL_SENDER_NAME = os.getenv("MAIL_SENDER_NAME", "Back Office")

    # Accounting system (Fortnox-compatible REST API)
    ACCOUNTING_API_URL = os.getenv("ACCOUNTING_API_URL", "https://api.fortnox.se")
    ACCOUNTING_ACCESS_TOKEN = os.getenv("ACCOUNTING_ACCESS_TOKEN")
    ACCOUNTING_TIMEOUT = int(os.getenv("ACCOUNTING_TIMEOUT", "30"))
    ACCOUNTING_INBOX_PATH = os.getenv("ACCOUNTING_INBOX_PATH", "inbox_kf")

    # Invoice lines
    INVOICE_VAT_PERCENT = int(os.getenv("INVOICE_VAT_PERCENT", "25"))

    # Document job queue
    DOCUMENT_JOB_MAX_ATTEMPTS = int(os.getenv("DOCUMENT_JOB_MAX_ATTEMPTS", "3"))
    DOCUMENT_JOB_RETRY_MINUTES = int(os.getenv("DOCUMENT_JOB_RETRY_MINUTES", "5"))
    DOCUMENT_JOB_STALE_MINUTES = int(os.getenv("DOCUMENT_JOB_STALE_MINUTES", "15"))
    DOCUMENT_QUEUE_POLL_SECONDS = int(os.getenv("DOCUMENT_QUEUE_POLL_SECONDS", "60"))
    DOCUMENT_QUEUE_POKE = _env_bool("DOCUMENT_QUEUE_POKE", "true")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    MAIL_SERVER = None
    ACCOUNTING_ACCESS_TOKEN = "test-token"
    # Background threads off; tests drive the queue synchronously
    DOCUMENT_QUEUE_POKE = False
    DOCUMENT_QUEUE_POLL_SECONDS = 0


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
