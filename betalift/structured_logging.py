"""
Structured logging configuration using structlog.

This module provides:
- Structured JSON log files for easy parsing and analysis
- Context-aware logging (request IDs, user IDs, task IDs)
- Redaction of tokens, secrets and authorization headers
- Plain console output for development and a minimal renderer for tests

Usage in Flask:
    from betalift.structured_logging import configure_structlog
    configure_structlog(app, role="web")

Usage in Celery:
    from betalift.structured_logging import configure_structlog_celery
    configure_structlog_celery(instance_path)

Usage in code:
    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("join_request_reviewed", join_request_id=12, decision="approved")
"""
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog
from pythonjsonlogger.json import JsonFormatter

# Module-level guard to avoid duplicate configuration
_STRUCTLOG_CONFIGURED = False

REDACTED = "***REDACTED***"
SENSITIVE_KEYS = ("password", "secret", "token", "authorization", "cookie", "api_key")

# Paths too frequent to be worth logging at INFO
NOISY_PATHS = ("/api/health", "/api/notifications/unread-count")


def get_log_dir(instance_path: str, override: str | None = None) -> str:
    """Resolve the directory where log files will be stored.

    Order of preference:
    1) explicit override argument
    2) LOG_DIR env var
    3) <instance_path>/logs
    """
    base = override or os.environ.get("LOG_DIR") or os.path.join(instance_path, "logs")
    Path(base).mkdir(parents=True, exist_ok=True)
    return base


def add_request_context(logger, method_name, event_dict):
    """Add Flask request context to log events."""
    from flask import g, has_request_context, request

    if has_request_context():
        event_dict.setdefault("method", request.method)
        event_dict.setdefault("path", request.path)
        if hasattr(g, "request_id"):
            event_dict["request_id"] = g.request_id

        from flask_login import current_user

        if current_user and current_user.is_authenticated:
            event_dict.setdefault("user_id", current_user.id)
    return event_dict


def add_celery_context(logger, method_name, event_dict):
    """Add Celery task context to log events."""
    from celery import current_task

    if current_task and current_task.request and current_task.request.id:
        event_dict["task_id"] = current_task.request.id
        event_dict["task_name"] = current_task.request.task
        event_dict["task_retries"] = getattr(current_task.request, "retries", 0)
    return event_dict


def filter_noisy_requests(logger, method_name, event_dict):
    """Drop INFO-level events for health checks and badge polling."""
    if method_name == "info":
        path = event_dict.get("path") or ""
        if any(path.startswith(p) for p in NOISY_PATHS):
            raise structlog.DropEvent
    return event_dict


def censor_sensitive_data(logger, method_name, event_dict):
    """Redact values whose key looks like a credential."""
    for key in list(event_dict.keys()):
        if any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
            event_dict[key] = REDACTED
    return event_dict


def _build_json_handler(path: str, level: int) -> RotatingFileHandler:
    """Build a rotating file handler with JSON formatting."""
    # 50 MB per file, keep 10 backups (500 MB total)
    handler = RotatingFileHandler(path, maxBytes=50 * 1024 * 1024, backupCount=10)
    handler.setLevel(level)
    handler.setFormatter(
        JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    return handler


def _build_console_handler(level: int) -> logging.StreamHandler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    return handler


def get_log_level(app_config=None) -> int:
    """Determine log level from config or environment."""
    if app_config and "LOG_LEVEL" in app_config:
        level_name = str(app_config["LOG_LEVEL"])
    else:
        level_name = os.environ.get("LOG_LEVEL", "INFO")
    return getattr(logging, level_name.upper(), logging.INFO)


def configure_component_loggers(base_level: int) -> None:
    """Quiet chatty third-party loggers unless running at DEBUG."""
    logging.getLogger("werkzeug").setLevel(
        logging.DEBUG if base_level <= logging.DEBUG else logging.WARNING
    )
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if base_level <= logging.DEBUG else logging.WARNING
    )
    logging.getLogger("celery").setLevel(min(base_level, logging.INFO))
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _shared_processors(*context_processors):
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_logger_name,
        *context_processors,
        censor_sensitive_data,
        # Event becomes the record message, remaining keys become JSON fields
        structlog.stdlib.render_to_log_kwargs,
    ]


def _install_root_handlers(handlers, level: int) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    configure_component_loggers(level)


def configure_structlog(app, role: str = "web") -> dict:
    """Configure structlog for the Flask application.

    Args:
        app: Flask app instance (must have .instance_path and .config)
        role: "web" or "worker" for context identification

    Returns:
        dict with keys: log_dir, app_log, error_log
    """
    global _STRUCTLOG_CONFIGURED

    # Never configure file logging in tests
    if app.config.get("TESTING"):
        if not _STRUCTLOG_CONFIGURED:
            structlog.configure(
                processors=[
                    structlog.processors.add_log_level,
                    censor_sensitive_data,
                    structlog.dev.ConsoleRenderer(colors=False),
                ],
                wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
                context_class=dict,
                logger_factory=structlog.PrintLoggerFactory(),
                cache_logger_on_first_use=False,
            )
            _STRUCTLOG_CONFIGURED = True
        return {"log_dir": "", "app_log": "", "error_log": ""}

    log_dir = get_log_dir(app.instance_path)
    app_log_path = os.path.join(log_dir, "app.json")
    error_log_path = os.path.join(log_dir, "error.json")
    level = get_log_level(app.config)

    if not _STRUCTLOG_CONFIGURED:
        _install_root_handlers(
            [
                _build_json_handler(app_log_path, level),
                # Separate error log (WARNING and above only)
                _build_json_handler(error_log_path, logging.WARNING),
                _build_console_handler(level),
            ],
            level,
        )
        structlog.configure(
            processors=_shared_processors(
                add_request_context, add_celery_context, filter_noisy_requests
            ),
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _STRUCTLOG_CONFIGURED = True

    structlog.get_logger(__name__).debug(
        "logging_configured",
        role=role,
        log_dir=log_dir,
        level=logging.getLevelName(level),
    )
    return {"log_dir": log_dir, "app_log": app_log_path, "error_log": error_log_path}


def configure_structlog_celery(instance_path: str) -> None:
    """Configure structlog for Celery workers.

    Args:
        instance_path: Path to instance directory for log files
    """
    global _STRUCTLOG_CONFIGURED

    if _STRUCTLOG_CONFIGURED:
        return

    log_dir = get_log_dir(instance_path)
    level = get_log_level()

    _install_root_handlers(
        [
            _build_json_handler(os.path.join(log_dir, "worker.json"), level),
            _build_json_handler(os.path.join(log_dir, "error.json"), logging.WARNING),
            _build_console_handler(level),
        ],
        level,
    )
    structlog.configure(
        processors=_shared_processors(add_celery_context),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _STRUCTLOG_CONFIGURED = True

    structlog.get_logger(__name__).debug("celery_logging_configured", log_dir=log_dir)
