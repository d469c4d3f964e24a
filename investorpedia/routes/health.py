# investorpedia/routes/health.py
import logging

import redis
from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from investorpedia.extensions import db, get_redis_client

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__)


def check_database():
    try:
        db.session.execute(text("SELECT 1"))
        return {"status": "ok"}
    except SQLAlchemyError as exc:
        logger.error("Database health check failed", extra={"error": str(exc)})
        return {"status": "error", "message": "Database unreachable"}


def check_redis():
    client = get_redis_client()
    if client is None:
        return {"status": "skipped", "message": "REDIS_URL not set"}

    try:
        client.ping()
        return {"status": "ok"}
    except redis.exceptions.RedisError as exc:
        logger.error("Redis health check failed", extra={"error": str(exc)})
        return {"status": "error", "message": "Redis unreachable"}


def check_stripe_config():
    missing = [
        name for name in ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET")
        if not current_app.config.get(name)
    ]
    if missing:
        return {"status": "error", "message": f"Missing: {', '.join(missing)}"}
    return {"status": "ok"}


@health_bp.route("/health", methods=["GET"])
def health():
    """
    Health check endpoint that verifies database, Redis and Stripe settings.
    """
    checks = {
        "database": check_database(),
        "redis": check_redis(),
        "stripe": check_stripe_config(),
    }
    healthy = all(check["status"] != "error" for check in checks.values())

    return jsonify({
        "status": "ok" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
