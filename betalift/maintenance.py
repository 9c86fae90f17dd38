"""
Maintenance operations: derived counter repair and notification retention.

Both are plain functions so they can be run from a shell or a test; the
Celery wrappers in ``betalift.tasks.maintenance`` schedule them with beat.
"""
from datetime import datetime, timedelta

import structlog
from sqlalchemy import delete, func, or_, select, update

from betalift.models import (
    Feedback,
    FeedbackComment,
    FeedbackVote,
    MemberRole,
    MembershipStatus,
    Notification,
    Project,
    ProjectMembership,
    VoteValue,
    db,
)

logger = structlog.get_logger(__name__)


def _count(model, *conditions, correlate_to):
    return (
        select(func.count(model.id))
        .where(*conditions)
        .correlate(correlate_to)
        .scalar_subquery()
    )


def _feedback_actuals() -> dict:
    return {
        "upvotes": _count(
            FeedbackVote,
            FeedbackVote.feedback_id == Feedback.id,
            FeedbackVote.value == VoteValue.UP,
            correlate_to=Feedback,
        ),
        "downvotes": _count(
            FeedbackVote,
            FeedbackVote.feedback_id == Feedback.id,
            FeedbackVote.value == VoteValue.DOWN,
            correlate_to=Feedback,
        ),
        "comment_count": _count(
            FeedbackComment,
            FeedbackComment.feedback_id == Feedback.id,
            correlate_to=Feedback,
        ),
    }


def _project_actuals() -> dict:
    return {
        "tester_count": _count(
            ProjectMembership,
            ProjectMembership.project_id == Project.id,
            ProjectMembership.status == MembershipStatus.APPROVED,
            ProjectMembership.role != MemberRole.OWNER,
            correlate_to=Project,
        ),
        "feedback_count": _count(
            Feedback, Feedback.project_id == Project.id, correlate_to=Project
        ),
    }


def _repair_counters(model, actuals: dict, row_id: int | None = None) -> list[int]:
    """
    Rewrite drifted counter columns of ``model`` from their source rows.

    Drifted rows are locked first, so writers bumping the same counters wait
    for the repair to commit; the UPDATE recounts and writes in one statement.
    """
    drifted = or_(
        *(getattr(model, column) != actual for column, actual in actuals.items())
    )
    scope = [drifted]
    if row_id is not None:
        scope.append(model.id == row_id)

    snapshot = db.session.execute(
        select(
            model.id,
            *(getattr(model, column) for column in actuals),
            *(actual.label(f"actual_{column}") for column, actual in actuals.items()),
        )
        .where(*scope)
        .order_by(model.id)
        .with_for_update(of=model)
    ).all()
    if not snapshot:
        return []

    repaired = [row.id for row in snapshot]
    db.session.execute(
        update(model)
        .where(model.id.in_(repaired), drifted)
        .values({getattr(model, column): actual for column, actual in actuals.items()})
        .execution_options(synchronize_session=False)
    )
    for row in snapshot:
        logger.warning(
            "counters_repaired",
            table=model.__tablename__,
            row_id=row.id,
            **{
                column: (getattr(row, column), getattr(row, f"actual_{column}"))
                for column in actuals
            },
        )
    return repaired


def reconcile_feedback_counters(feedback_id: int | None = None) -> list[int]:
    """
    Recompute upvotes, downvotes and comment_count from the source rows.

    Args:
        feedback_id: Limit the check to one feedback item (default: all)

    Returns:
        IDs of feedback rows whose counters had drifted and were repaired
    """
    repaired = _repair_counters(Feedback, _feedback_actuals(), feedback_id)
    db.session.commit()
    logger.info(
        "feedback_counters_reconciled",
        scope=feedback_id or "all",
        repaired=len(repaired),
    )
    return repaired


def reconcile_project_counters(project_id: int | None = None) -> list[int]:
    """Recompute tester_count and feedback_count; returns repaired project IDs."""
    repaired = _repair_counters(Project, _project_actuals(), project_id)
    db.session.commit()
    logger.info(
        "project_counters_reconciled",
        scope=project_id or "all",
        repaired=len(repaired),
    )
    return repaired


def cleanup_old_notifications(retention_days: int = 30) -> dict:
    """
    Delete read notifications older than the retention period.

    Unread notifications are never deleted to ensure users don't miss
    important information.

    Args:
        retention_days: Number of days to retain read notifications (default: 30)

    Returns:
        dict: Cleanup statistics
    """
    cutoff_date = datetime.utcnow() - timedelta(days=retention_days)

    logger.info(
        "notification_cleanup_started",
        retention_days=retention_days,
        cutoff_date=cutoff_date.isoformat(),
    )

    result = db.session.execute(
        delete(Notification)
        .where(Notification.is_read.is_(True), Notification.read_at < cutoff_date)
        .execution_options(synchronize_session=False)
    )
    deleted = result.rowcount or 0
    db.session.commit()

    logger.info(
        "notification_cleanup_complete",
        deleted=deleted,
        cutoff_date=cutoff_date.isoformat(),
    )

    return {
        "deleted": deleted,
        "cutoff_date": cutoff_date.isoformat(),
        "message": f"Deleted {deleted} read notification(s) older than {retention_days} days",
    }
