"""Campus Trade: REST backend for a campus second-hand marketplace."""

from flask import Flask, request
from pymongo.errors import PyMongoError

from .config import Config
from .db import ensure_indexes
from .errors import register_error_handlers
from .extensions import cors, jwt, mongo


def create_app(config=None):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    mongo.init_app(app)
    jwt.init_app(app)
    cors.init_app(
        app,
        resources={r"/*": {"origins": app.config["CORS_ORIGINS"]}},
        supports_credentials="*" not in app.config["CORS_ORIGINS"],
    )

    @app.before_request
    def log_request_info():
        app.logger.debug("%s %s", request.method, request.path)

    register_error_handlers(app)

    from . import admin, auth, products, system, users

    prefix = app.config["API_PREFIX"]
    app.register_blueprint(auth.bp, url_prefix=prefix)
    app.register_blueprint(products.bp, url_prefix=prefix)
    app.register_blueprint(users.bp, url_prefix=prefix)
    app.register_blueprint(admin.bp, url_prefix=prefix)
    app.register_blueprint(system.bp)

    if app.config["ENSURE_INDEXES"]:
        try:
            ensure_indexes(mongo.db)
        except PyMongoError as exc:
            app.logger.warning("Unable to ensure indexes: %s", exc)

    return app
