"""
Investorpedia application factory.

Fails fast on configuration errors; everything else (extensions, Stripe,
Celery, routes) is wired here so web and worker processes share one setup.
"""

import logging
from typing import Optional

import sentry_sdk
from flask import Flask
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.flask import FlaskIntegration

from investorpedia.commands import register_commands
from investorpedia.config import Environment, get_config
from investorpedia.error_handlers import register_error_handlers
from investorpedia.extensions import init_extensions
from investorpedia.logging_config import setup_logging
from investorpedia.middleware import init_request_id_middleware
from investorpedia.routes import register_blueprints
from investorpedia.services.stripe_gateway import init_stripe
from investorpedia.workers.celery_app import celery_init_app

logger = logging.getLogger(__name__)


def setup_sentry(app: Flask) -> None:
    """Initialize Sentry error tracking in production when a DSN is set."""
    sentry_dsn = app.config.get("SENTRY_DSN")

    if sentry_dsn and app.config.get("ENVIRONMENT") == Environment.PRODUCTION.value:
        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[FlaskIntegration(), CeleryIntegration()],
            traces_sample_rate=0.1,
            environment=app.config["ENVIRONMENT"],
            send_default_pii=False,
        )
        app.logger.info("Sentry error tracking initialized")


def create_app(config_name: Optional[str] = None) -> Flask:
    """
    Application factory.

    Args:
        config_name: development, testing or production (defaults to APP_ENV)

    Raises:
        ConfigurationError: if the selected configuration is invalid
    """
    app = Flask(__name__)
    app.config.from_object(get_config(config_name))

    setup_logging(app)
    setup_sentry(app)

    init_extensions(app)
    init_stripe(app)
    celery_init_app(app)

    init_request_id_middleware(app)
    register_error_handlers(app)
    register_blueprints(app)
    register_commands(app)

    logger.info("Application created", extra={"environment": app.config["ENVIRONMENT"]})
    return app
