"""
Flask application factory.

Creates and configures the Flask application with the workflow runtime,
error handlers and the health endpoint.
"""

import logging
from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from review_workflows.config import get_config
from review_workflows.services import Runtime, build_runtime

logger = logging.getLogger(__name__)


def create_app(config=None, runtime: Runtime = None) -> Flask:
    """
    Application factory for creating Flask app.

    Args:
        config: Optional configuration object
        runtime: Optional pre-built runtime (tests inject one backed by fakes)

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)

    # Enable CORS for all routes
    CORS(app)

    app_config = config or get_config()
    app.config["SECRET_KEY"] = app_config.SECRET_KEY
    app.config["DEBUG"] = app_config.FLASK_DEBUG
    app.config["APP_CONFIG"] = app_config

    app.config["RUNTIME"] = runtime or build_runtime(app_config)

    register_error_handlers(app)

    from .routes import register_routes
    register_routes(app)

    @app.route("/health")
    def health_check():
        """Health check endpoint."""
        rt = app.config["RUNTIME"]
        db_healthy = rt.instances.health_check()
        redis_healthy = rt.queue.health_check()

        status = "healthy" if (db_healthy and redis_healthy) else "unhealthy"
        status_code = 200 if status == "healthy" else 503

        return jsonify({
            "status": status,
            "database": "healthy" if db_healthy else "unhealthy",
            "redis": "healthy" if redis_healthy else "unhealthy",
        }), status_code

    logger.info("Flask application created")
    return app


def register_error_handlers(app: Flask) -> None:
    """Register error handlers for the application."""

    @app.errorhandler(HTTPException)
    def handle_http_exception(e: HTTPException):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(ValueError)
    def handle_value_error(e: ValueError):
        """Handle validation errors."""
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(Exception)
    def handle_generic_exception(e: Exception):
        """Handle unexpected errors."""
        logger.exception(f"Unhandled exception: {e}")
        return jsonify({"error": "An unexpected error occurred"}), 500
