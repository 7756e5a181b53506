from flask import jsonify
from pymongo.errors import PyMongoError
from werkzeug.exceptions import HTTPException


class MarketError(Exception):
    """Base class for errors surfaced to API callers as ``{"message": ...}``."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(MarketError):
    status_code = 400
    default_message = "Bad request"


class AuthenticationError(MarketError):
    status_code = 401
    default_message = "Unauthorized"


class AuthorizationError(MarketError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(MarketError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(MarketError):
    status_code = 409
    default_message = "Conflict"


class StorageError(MarketError):
    status_code = 500
    default_message = "Storage failure"


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def register_error_handlers(app):

    @app.errorhandler(MarketError)
    def market_error(error):
        if error.status_code >= 500:
            app.logger.error("%s: %s", type(error).__name__, error.message)
        return jsonify({"message": error.message}), error.status_code

    @app.errorhandler(PyMongoError)
    def storage_error(error):
        app.logger.exception("Unexpected database error")
        return jsonify({"message": StorageError.default_message}), 500

    @app.errorhandler(HTTPException)
    def http_error(error):
        return jsonify({"message": error.description}), error.code

    @app.errorhandler(500)
    def internal_server_error(error):
        return jsonify({"message": "Internal server error"}), 500
