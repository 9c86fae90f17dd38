"""
Structured error logging for failures that must not escape.

Notification emission, push fan-out and the maintenance jobs report their
failures through these helpers and carry on; the record keeps the exception
type, message and caller-supplied fields so log search can group them.
"""

import logging
import sys
from typing import Any

from flask import g, has_request_context

GENERIC_SERVER_ERROR = "An internal error occurred. Please try again later."
GENERIC_CLIENT_ERROR = "The request could not be completed."


def _describe_exception(exc_info) -> dict[str, str]:
    """Return exception_type/exception_message for any accepted exc_info form."""
    if exc_info is True:
        exc_info = sys.exc_info()
    if isinstance(exc_info, BaseException):
        return {
            "exception_type": type(exc_info).__name__,
            "exception_message": str(exc_info),
        }
    if isinstance(exc_info, tuple) and exc_info and exc_info[0] is not None:
        return {
            "exception_type": exc_info[0].__name__,
            "exception_message": str(exc_info[1]),
        }
    return {}


def safe_log_error(
    logger: logging.Logger,
    message: str,
    exc_info: bool | BaseException | tuple | None = True,
    level: int = logging.ERROR,
    **extra_context: Any,
) -> None:
    """
    Log a handled failure with its exception and context attached.

    Args:
        logger: Logger to write to (usually ``current_app.logger``)
        message: Event name, e.g. "notification_dispatch_failed"
        exc_info: True for the exception being handled, an exception
            instance, a sys.exc_info() tuple, or None/False for none
        level: Log level (default: ERROR)
        **extra_context: Fields stored under ``error_context`` on the record

    Example:
        except Exception as e:
            db.session.rollback()
            safe_log_error(
                current_app.logger,
                "notification_dispatch_failed",
                exc_info=e,
                recipient_id=recipient_id,
            )
    """
    record_fields = {
        "error_context": extra_context,
        "has_exception": bool(exc_info),
    }
    if exc_info:
        record_fields.update(_describe_exception(exc_info))

    logger.log(level, message, exc_info=exc_info, extra=record_fields)


def handle_api_exception(
    logger: logging.Logger,
    message: str,
    status_code: int = 500,
    public_message: str | None = None,
    **extra_context: Any,
) -> tuple[dict[str, Any], int]:
    """
    Log the exception being handled and build a sanitized JSON error body.

    Internal details stay in the log; clients get a generic message plus the
    request id so a report can be matched to the log line.

    Returns:
        (body, status_code) where body is ``{"success": False, "error": ...}``
    """
    safe_log_error(logger, message, exc_info=True, **extra_context)

    if public_message is None:
        public_message = (
            GENERIC_SERVER_ERROR if status_code >= 500 else GENERIC_CLIENT_ERROR
        )

    body: dict[str, Any] = {"success": False, "error": public_message}
    if has_request_context() and hasattr(g, "request_id"):
        body["request_id"] = g.request_id
    return body, status_code


class ErrorContext:
    """
    Log any exception raised inside the block, optionally suppressing it.

    The caught exception is kept on ``.exception`` so callers can report it
    after the block:

        with ErrorContext(app.logger, "feedback counter reconciliation",
                          raise_on_error=False) as ctx:
            repaired = reconcile_feedback_counters()
        if ctx.exception is not None:
            ...
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation_name: str,
        raise_on_error: bool = True,
        log_level: int = logging.ERROR,
        **context: Any,
    ):
        self.logger = logger
        self.operation_name = operation_name
        self.raise_on_error = raise_on_error
        self.log_level = log_level
        self.context = context
        self.exception: BaseException | None = None

    def __enter__(self) -> "ErrorContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            return False

        self.exception = exc_val
        safe_log_error(
            self.logger,
            f"Error in {self.operation_name}",
            exc_info=(exc_type, exc_val, exc_tb),
            level=self.log_level,
            **self.context,
        )
        return not self.raise_on_error
