"""
Flask application factory and configuration.

This module contains the Flask application factory that initializes
and configures all extensions, blueprints, and error handlers.
"""
import os
import uuid

from flask import Flask, g, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

from config.settings import DevelopmentConfig, ProductionConfig, TestingConfig


def create_app(config_class=None):
    """
    Create and configure Flask application.

    Args:
        config_class: Configuration class to use. If None, will be determined
                     from FLASK_ENV environment variable.

    Returns:
        Flask: Configured Flask application instance
    """
    instance_path = os.environ.get("BETALIFT_INSTANCE_PATH")
    if instance_path:
        os.makedirs(instance_path, exist_ok=True)
        app = Flask(__name__, instance_path=instance_path)
    else:
        app = Flask(__name__)

    # Determine configuration class if not provided
    if config_class is None:
        env = os.environ.get("FLASK_ENV", "development")
        if env == "production":
            config_class = ProductionConfig
        elif env == "testing":
            config_class = TestingConfig
        else:
            config_class = DevelopmentConfig

    app.config.from_object(config_class)

    # SQLite is reserved for tests only
    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if not app.config.get("TESTING") and db_uri.startswith("sqlite:"):
        raise RuntimeError(
            "SQLite is only supported in TESTING. Set DATABASE_URL/DEV_DATABASE_URL to PostgreSQL."
        )

    # Configure structured logging early (minimal console renderer during tests)
    from betalift.structured_logging import configure_structlog

    configure_structlog(app, role="web")

    init_extensions(app)
    register_blueprints(app)
    register_error_handlers(app)

    return app


def init_extensions(app):
    """
    Initialize Flask extensions.

    Args:
        app: Flask application instance
    """
    from betalift.auth import login_manager
    from betalift.models import db

    db.init_app(app)

    # Database migrations available in all environments
    Migrate(app, db)

    # CORS for the mobile and web clients
    CORS(app, origins=app.config.get("CORS_ORIGINS", []), supports_credentials=False)

    @app.before_request
    def _assign_request_id():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

    @app.after_request
    def _expose_request_id(response):
        if hasattr(g, "request_id"):
            response.headers["X-Request-ID"] = g.request_id
        return response

    # Always roll back a failed request's transaction so it cannot leak
    @app.teardown_request
    def _teardown_request(exc):  # pragma: no cover - simple guard
        if exc is not None:
            db.session.rollback()

    # Rate limiting (can be disabled via RATELIMIT_ENABLED=False)
    if app.config.get("RATELIMIT_ENABLED", True):
        limiter = Limiter(
            key_func=get_remote_address,
            default_limits=[app.config.get("RATELIMIT_DEFAULT", "300 per hour")],
            storage_uri=app.config.get("RATELIMIT_STORAGE_URL"),
        )
        limiter.init_app(app)

    # Bearer-token identity (see betalift.auth)
    login_manager.init_app(app)


def register_blueprints(flask_app):
    """
    Register Flask blueprints.

    Args:
        flask_app: Flask application instance
    """
    # All API endpoints are registered on the shared api_bp blueprint.
    # Import modules to register their routes, then register the blueprint once.
    from betalift.api import api_bp
    import betalift.api.feedback  # noqa: F401 - registers routes on api_bp
    import betalift.api.health  # noqa: F401 - registers routes on api_bp
    import betalift.api.notifications  # noqa: F401 - registers routes on api_bp
    import betalift.api.projects  # noqa: F401 - registers routes on api_bp
    import betalift.api.push  # noqa: F401 - registers routes on api_bp

    flask_app.register_blueprint(api_bp, url_prefix="/api")


def register_error_handlers(app):
    """
    Register JSON error handlers.

    Workflow errors map to their status code; HTTP errors keep theirs; anything
    else is logged and rendered as a generic 500.

    Args:
        app: Flask application instance
    """
    from betalift.error_utils import handle_api_exception
    from betalift.errors import WorkflowError
    from betalift.models import db

    @app.errorhandler(WorkflowError)
    def workflow_error(error):
        """Handle expected workflow failures (validation, permission, state)."""
        db.session.rollback()
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def http_error(error):
        """Handle 4xx/5xx raised by Flask/Werkzeug (404 routes, 405, 429...)."""
        return (
            jsonify({"success": False, "error": error.description or error.name}),
            error.code,
        )

    @app.errorhandler(Exception)
    def internal_error(error):
        """Handle unexpected exceptions."""
        db.session.rollback()
        body, status = handle_api_exception(
            app.logger,
            "Unhandled exception",
            path=request.path,
            method=request.method,
        )
        return jsonify(body), status
