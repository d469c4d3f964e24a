# investorpedia/extensions.py
"""
Flask extensions initialization module.
"""

import logging

import redis
from flask import current_app
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

# Initialize extensions
db = SQLAlchemy()
jwt = JWTManager()
cors = CORS()
migrate = Migrate()

logger = logging.getLogger(__name__)


def init_extensions(app):
    """Initialize all Flask extensions."""
    db.init_app(app)
    logger.info("SQLAlchemy initialized")

    migrate.init_app(app, db)
    logger.info("Flask-Migrate initialized")

    jwt.init_app(app)
    logger.info("JWT Manager initialized")

    init_cors(app)
    init_redis(app)

    return app


def init_cors(app):
    """Initialize CORS for API routes only."""
    frontend_url = app.config.get("FRONTEND_URL")
    if not frontend_url:
        logger.warning("FRONTEND_URL not set, CORS will be disabled")
        return

    cors.init_app(
        app,
        resources={r"/api/*": {"origins": frontend_url}},
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=600,
    )
    logger.info("CORS configured", extra={"origin": frontend_url})


def init_redis(app):
    """Create the Redis client used for distributed locks, if configured."""
    redis_url = app.config.get("REDIS_URL")
    if not redis_url:
        app.extensions["redis"] = None
        logger.warning("REDIS_URL not set - using process-local locks (single process only)")
        return

    app.extensions["redis"] = redis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    logger.info("Redis client configured")


def get_redis_client():
    """Return the app's Redis client, or None when running without Redis."""
    return current_app.extensions.get("redis")
