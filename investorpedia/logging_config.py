# investorpedia/logging_config.py
import logging
import logging.config

from flask import g, has_app_context


class RequestIdFilter(logging.Filter):
    """
    Inject request_id into every log record if present.
    """

    def filter(self, record):
        record.request_id = g.get("request_id") if has_app_context() else None
        return True


def build_logging_config(level="INFO", fmt="json"):
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {
                "()": RequestIdFilter,
            },
        },
        "formatters": {
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "fmt": (
                    "%(asctime)s "
                    "%(levelname)s "
                    "%(name)s "
                    "%(message)s "
                    "%(request_id)s "
                    "%(module)s "
                    "%(funcName)s "
                    "%(lineno)d"
                ),
            },
            "simple": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "json" if fmt == "json" else "simple",
                "filters": ["request_id"],
            },
        },
        "loggers": {
            "werkzeug": {"level": "WARNING"},
            "sqlalchemy.engine": {"level": "WARNING"},
            "stripe": {"level": "WARNING"},
        },
        "root": {
            "level": level,
            "handlers": ["default"],
        },
    }


def setup_logging(app):
    """Configure structured logging for the application"""
    level = app.config.get("LOG_LEVEL", "INFO").upper()
    fmt = app.config.get("LOG_FORMAT", "json")

    logging.config.dictConfig(build_logging_config(level, fmt))
    app.logger.setLevel(level)

    return app


def configure_logging_for_worker(level="INFO"):
    """Configure logging for Celery workers and standalone scripts."""
    logging.config.dictConfig(build_logging_config(level.upper(), "json"))
