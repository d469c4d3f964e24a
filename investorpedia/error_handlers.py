# investorpedia/error_handlers.py
import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from investorpedia.errors import BillingError

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    """Translate the billing error taxonomy and HTTP errors into JSON responses."""

    @app.errorhandler(BillingError)
    def handle_billing_error(error):
        level = logging.ERROR if error.status_code >= 500 else logging.WARNING
        logger.log(
            level,
            f"{error.__class__.__name__}: {error.message}",
            extra={"path": request.path, "status_code": error.status_code},
        )
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        """
        Handles known HTTP errors (404, 405, 415, ...)
        """
        logger.info(f"{error.code} {error.name} - Path: {request.path}")
        return jsonify({"message": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_exception(error):
        """
        Handles all unexpected server errors.
        Prevents stack trace leakage to clients.
        """
        logger.exception("Unhandled exception", extra={"path": request.path})
        return jsonify({"message": "An unexpected error occurred."}), 500

    app.logger.info("Error handlers registered")
