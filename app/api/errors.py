"""Error handlers for the application.

Lifecycle exceptions map onto HTTP status codes; every error body is JSON:
``{"error": <title>, "message": <detail>}``.
"""
from flask import jsonify
from werkzeug.exceptions import HTTPException

from app.core.feature_flags import FeatureDisabledError, UndefinedFeatureFlagError
from app.core.lifecycle.exceptions import (
    AssociationNotEmptyError,
    ConflictError,
    LifecycleError,
    OperationFailedError,
    UnknownResourceError,
    UnsupportedOperationError,
    ValidationError,
)

# Most specific first
ERROR_STATUS = (
    (ConflictError, 409, "Conflict"),
    (ValidationError, 422, "Unprocessable Entity"),
    (UnknownResourceError, 404, "Not Found"),
    (FeatureDisabledError, 403, "Forbidden"),
    (AssociationNotEmptyError, 400, "Bad Request"),
    (UnsupportedOperationError, 400, "Bad Request"),
    (UndefinedFeatureFlagError, 400, "Bad Request"),
    (OperationFailedError, 502, "Bad Gateway"),
)


def status_for(error: LifecycleError) -> tuple[int, str]:
    """HTTP status and title for a lifecycle exception."""
    for exc_type, status, title in ERROR_STATUS:
        if isinstance(error, exc_type):
            return status, title
    return 500, "Internal Server Error"


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(LifecycleError)
    def lifecycle_error(error):
        status, title = status_for(error)
        if status >= 500 and status != 502:
            app.logger.error(f"Lifecycle error: {error}", exc_info=True)
        body = {"error": title, "message": str(error)}
        if isinstance(error, ValidationError):
            body["field"] = error.field
        return jsonify(body), status

    @app.errorhandler(400)
    def bad_request(error):
        """Handle 400 Bad Request errors."""
        return jsonify({"error": "Bad Request", "message": error.description}), 400

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 Not Found errors."""
        return jsonify({"error": "Not Found", "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Method Not Allowed", "message": error.description}), 405

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        # Pass through HTTP errors
        if isinstance(error, HTTPException):
            return error

        # ALWAYS log the error (even in production) - logs are secure
        app.logger.error(f"Unhandled exception: {error}", exc_info=True)
        print(f"[ERROR UNHANDLED] {error}")

        return jsonify({"error": "Internal Server Error", "message": "An unexpected error occurred"}), 500
