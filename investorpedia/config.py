"""
Configuration management for the Investorpedia API.
Designed to fail fast with clear error messages in production.
"""

import os
import logging
from datetime import timedelta
from typing import Optional
from urllib.parse import urlparse
from enum import Enum

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    """Environment types"""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class ConfigurationError(Exception):
    """Raised when configuration validation fails"""
    pass


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


class BaseConfig:
    """
    Base configuration shared by all environments.
    """

    # ============================================
    # APPLICATION META
    # ============================================
    APP_NAME = os.getenv("APP_NAME", "Investorpedia")
    APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
    ENVIRONMENT = Environment.DEVELOPMENT.value

    # Flask
    DEBUG = False
    TESTING = False
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    JSON_SORT_KEYS = False

    # ============================================
    # DATABASE
    # ============================================
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///investorpedia.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # ============================================
    # AUTH (tokens are issued by the external provider)
    # ============================================
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", SECRET_KEY)
    JWT_TOKEN_LOCATION = ["headers"]
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=15)
    JWT_ERROR_MESSAGE_KEY = "message"

    # ============================================
    # STRIPE
    # ============================================
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_API_VERSION = os.getenv("STRIPE_API_VERSION", "2024-06-20")
    STRIPE_WEBHOOK_TOLERANCE = _env_int("STRIPE_WEBHOOK_TOLERANCE", 300)
    STRIPE_MAX_NETWORK_RETRIES = _env_int("STRIPE_MAX_NETWORK_RETRIES", 0)
    BILLING_CURRENCY = os.getenv("BILLING_CURRENCY", "usd")
    BILLING_INTERVAL = os.getenv("BILLING_INTERVAL", "month")

    # ============================================
    # LOCKING / REDIS
    # ============================================
    REDIS_URL = os.getenv("REDIS_URL")
    LOCK_TTL_SECONDS = _env_int("LOCK_TTL_SECONDS", 30)
    LOCK_WAIT_SECONDS = _env_int("LOCK_WAIT_SECONDS", 10)

    # ============================================
    # EVENT PIPELINE
    # ============================================
    EVENT_RETENTION_DAYS = _env_int("EVENT_RETENTION_DAYS", 30)
    EVENT_SWEEP_AFTER_SECONDS = _env_int("EVENT_SWEEP_AFTER_SECONDS", 120)
    EVENT_MAX_ATTEMPTS = _env_int("EVENT_MAX_ATTEMPTS", 8)

    CELERY = {
        "broker_url": os.getenv("CELERY_BROKER_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0")),
        "result_backend": os.getenv("CELERY_RESULT_BACKEND", os.getenv("REDIS_URL", "redis://localhost:6379/0")),
        "task_serializer": "json",
        "result_serializer": "json",
        "accept_content": ["json"],
        "timezone": "UTC",
        "enable_utc": True,
        "task_acks_late": True,
        "worker_prefetch_multiplier": 1,
        "task_reject_on_worker_lost": True,
        "task_ignore_result": True,
    }

    # ============================================
    # HTTP / OBSERVABILITY
    # ============================================
    FRONTEND_URL = os.getenv("FRONTEND_URL")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json").lower()
    SENTRY_DSN = os.getenv("SENTRY_DSN")

    @classmethod
    def validate(cls) -> None:
        """Hook for environment specific validation."""
        return None


class DevelopmentConfig(BaseConfig):
    """
    Development configuration.
    """

    ENVIRONMENT = Environment.DEVELOPMENT.value
    DEBUG = True


class TestingConfig(BaseConfig):
    """
    Testing configuration: in-memory database, eager Celery, no Redis.
    """

    ENVIRONMENT = Environment.TESTING.value
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    JWT_SECRET_KEY = "test-jwt-secret-key-with-enough-length-for-hs256"
    STRIPE_SECRET_KEY = "sk_test_mock"
    STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
    REDIS_URL = None
    LOCK_WAIT_SECONDS = 2
    LOG_LEVEL = "WARNING"
    CELERY = dict(
        BaseConfig.CELERY,
        broker_url="memory://",
        result_backend=None,
        task_always_eager=True,
        task_eager_propagates=False,
    )


class ProductionConfig(BaseConfig):
    """
    Production configuration.
    """

    ENVIRONMENT = Environment.PRODUCTION.value
    DEBUG = False

    @classmethod
    def validate(cls) -> None:
        """Refuse to boot with development defaults in production."""
        missing = [
            name for name in ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET", "REDIS_URL")
            if not getattr(cls, name)
        ]
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

        if cls.STRIPE_SECRET_KEY.startswith("sk_test"):
            raise ConfigurationError("Stripe test key detected in production!")

        if cls.JWT_SECRET_KEY in (None, "", "dev-secret-key"):
            raise ConfigurationError("JWT_SECRET_KEY is required in production")

        if urlparse(cls.SQLALCHEMY_DATABASE_URI).scheme == "sqlite":
            raise ConfigurationError("SQLite is not allowed in production. Use PostgreSQL.")


CONFIGS = {
    Environment.DEVELOPMENT.value: DevelopmentConfig,
    Environment.TESTING.value: TestingConfig,
    Environment.PRODUCTION.value: ProductionConfig,
}


def get_config(config_name: Optional[str] = None):
    """
    Resolve the configuration class.

    Args:
        config_name: development, testing or production. Falls back to the
            APP_ENV environment variable, then to development.

    Raises:
        ConfigurationError: If the name is unknown or validation fails
    """
    name = (config_name or os.getenv("APP_ENV", Environment.DEVELOPMENT.value)).lower()

    config = CONFIGS.get(name)
    if config is None:
        raise ConfigurationError(f"Invalid APP_ENV value: {name}")

    config.validate()
    return config
