"""
FPO Lifecycle Service
Per-environment settings, loaded by ``create_app`` through ``config[APP_ENV]``.

Every value can be overridden from the environment. The AAA_* group
configures the identity/access-control client; the FPO_* group tunes the
lifecycle controller and the setup retry sweep.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_backoff(name: str, default: str) -> list[float]:
    """Comma-separated seconds, e.g. ``"1,4"``; blank parts are ignored."""
    return [float(part) for part in os.getenv(name, default).split(",") if part.strip()]


def _database_url(fallback: str | None) -> str | None:
    # Hosted Postgres often hands out postgres://, which SQLAlchemy 2 rejects
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return fallback
    return raw.replace("postgres://", "postgresql://", 1)


_POOL_OPTIONS = {
    "pool_pre_ping": True,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_recycle": 300,
    "pool_timeout": 20,
}


class Config:
    """Settings shared by every environment."""

    DEBUG = False
    TESTING = False
    # Ephemeral outside production; sessions do not survive a restart
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    FPO_RATE_LIMIT = os.getenv("FPO_RATE_LIMIT", "60/minute")

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = dict(_POOL_OPTIONS)

    AAA_BASE_URL = os.getenv("AAA_BASE_URL", "http://localhost:8081")
    AAA_SERVICE_TOKEN = os.getenv("AAA_SERVICE_TOKEN", "")
    AAA_TIMEOUT_SECONDS = float(os.getenv("AAA_TIMEOUT_SECONDS", "10"))
    AAA_RETRY_MAX = int(os.getenv("AAA_RETRY_MAX", "2"))
    AAA_RETRY_BACKOFF_SECONDS = _env_backoff("AAA_RETRY_BACKOFF_SECONDS", "1,4")
    AAA_PERMISSION_FAIL_OPEN = _env_bool("AAA_PERMISSION_FAIL_OPEN", "false")

    FPO_MAX_SETUP_ATTEMPTS = int(os.getenv("FPO_MAX_SETUP_ATTEMPTS", "3"))
    FPO_TRANSITION_TIMEOUT_SECONDS = float(os.getenv("FPO_TRANSITION_TIMEOUT_SECONDS", "60"))
    FPO_AUTO_RETRY_ENABLED = _env_bool("FPO_AUTO_RETRY_ENABLED", "true")
    # A claim older than this is treated as abandoned by a crashed worker
    FPO_SETUP_CLAIM_TTL_SECONDS = float(os.getenv("FPO_SETUP_CLAIM_TTL_SECONDS", "300"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(basedir, 'instance', 'fpo_service_dev.db')}"
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False

    AAA_BASE_URL = "http://aaa.test"
    AAA_SERVICE_TOKEN = "test-token"
    AAA_RETRY_BACKOFF_SECONDS = [0, 0]
    AAA_PERMISSION_FAIL_OPEN = False
    FPO_MAX_SETUP_ATTEMPTS = 3


class ProductionConfig(Config):
    """Instantiated (not just referenced) so missing settings fail at startup."""

    SQLALCHEMY_DATABASE_URI = _database_url(None)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        **_POOL_OPTIONS,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        missing = []
        if not self.SQLALCHEMY_DATABASE_URI:
            missing.append("DATABASE_URL")
        missing.extend(name for name in ("SECRET_KEY", "AAA_BASE_URL") if not os.getenv(name))
        if missing:
            raise RuntimeError(f"Production requires environment variables: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
