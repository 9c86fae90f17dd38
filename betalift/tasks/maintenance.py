"""
Celery tasks for periodic maintenance.
Runs as scheduled tasks via Celery Beat (see celery_app.beat_schedule).
"""
import structlog

from betalift.tasks.celery_app import celery_app

logger = structlog.get_logger(__name__)


@celery_app.task(bind=True)
def cleanup_old_notifications_task(self, retention_days: int = 30):
    """
    Delete read notifications older than the retention period.

    Args:
        retention_days: Number of days to retain read notifications (default: 30)

    Returns:
        dict: Cleanup statistics
    """
    from betalift import create_app
    from betalift.maintenance import cleanup_old_notifications
    from betalift.models import db

    app = create_app()
    with app.app_context():
        try:
            return cleanup_old_notifications(retention_days)
        except Exception as e:
            db.session.rollback()
            logger.error(
                "notification_cleanup_failed",
                error=str(e),
                exc_info=True,
            )
            return {"error": str(e), "deleted": 0}


@celery_app.task(bind=True)
def reconcile_feedback_counters_task(self, feedback_id: int | None = None):
    """
    Repair drifted feedback vote/comment counters.

    Returns:
        dict: {"repaired": [feedback ids]}
    """
    from betalift import create_app
    from betalift.error_utils import ErrorContext
    from betalift.maintenance import reconcile_feedback_counters
    from betalift.models import db

    app = create_app()
    with app.app_context():
        repaired = []
        with ErrorContext(
            app.logger,
            "feedback counter reconciliation",
            raise_on_error=False,
            feedback_id=feedback_id,
        ) as ctx:
            repaired = reconcile_feedback_counters(feedback_id)

        if ctx.exception is not None:
            db.session.rollback()
            return {"error": str(ctx.exception), "repaired": []}

        return {"repaired": repaired}


@celery_app.task(bind=True)
def reconcile_project_counters_task(self, project_id: int | None = None):
    """Repair drifted project tester/feedback counters."""
    from betalift import create_app
    from betalift.error_utils import ErrorContext
    from betalift.maintenance import reconcile_project_counters
    from betalift.models import db

    app = create_app()
    with app.app_context():
        repaired = []
        with ErrorContext(
            app.logger,
            "project counter reconciliation",
            raise_on_error=False,
            project_id=project_id,
        ) as ctx:
            repaired = reconcile_project_counters(project_id)

        if ctx.exception is not None:
            db.session.rollback()
            return {"error": str(ctx.exception), "repaired": []}

        return {"repaired": repaired}
