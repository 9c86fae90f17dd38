"""
Notification helper functions for creating and managing user notifications.

Membership and feedback workflows call ``emit`` after their own transaction
has committed. Emission is fire-and-forget: a failure here is rolled back and
logged, never propagated into the workflow that triggered it.
"""

from datetime import datetime

import structlog
from flask import current_app
from sqlalchemy import delete, func, select, update

from betalift.error_utils import safe_log_error
from betalift.errors import Forbidden, NotFound
from betalift.models import Notification, NotificationType, db

logger = structlog.get_logger(__name__)


def _push_enabled() -> bool:
    return bool(
        current_app.config.get("PUSH_DELIVERY_ENABLED")
        and current_app.config.get("VAPID_PRIVATE_KEY")
    )


def _enqueue_push(notification_id: int) -> None:
    """Hand the notification to the delivery worker."""
    from betalift.tasks.notification_delivery import deliver_notification_task

    deliver_notification_task.delay(notification_id)


def emit(
    recipient_id: int,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: dict | None = None,
):
    """
    Create a notification for a user and schedule push delivery.

    Args:
        recipient_id: ID of the user to notify
        notification_type: Type of notification (NotificationType enum)
        title: Short headline (truncated to 200 chars)
        message: Human-readable message (truncated to 500 chars)
        data: Additional metadata, e.g. project_id, feedback_id, reason

    Returns:
        The persisted Notification, or None if emission failed
    """
    try:
        notification = Notification(
            user_id=recipient_id,
            notification_type=notification_type,
            title=title[:200],
            message=message[:500],
            data=data or {},
            is_read=False,
        )
        db.session.add(notification)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        safe_log_error(
            current_app.logger,
            "notification_dispatch_failed",
            exc_info=e,
            recipient_id=recipient_id,
            notification_type=notification_type.value,
        )
        return None

    logger.info(
        "notification_emitted",
        notification_id=notification.id,
        recipient_id=recipient_id,
        notification_type=notification_type.value,
    )

    if _push_enabled():
        try:
            _enqueue_push(notification.id)
        except Exception as e:
            # Broker unavailable; the in-app notification still stands
            safe_log_error(
                current_app.logger,
                "push_enqueue_failed",
                exc_info=e,
                notification_id=notification.id,
            )

    return notification


# Query helpers


def get_unread_count(user_id: int) -> int:
    """Get count of unread notifications for a user."""
    return (
        db.session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id, Notification.is_read.is_(False)
            )
        ).scalar()
        or 0
    )


def get_user_notifications(
    user_id: int,
    limit: int = 20,
    offset: int = 0,
    unread_only: bool = False,
    notification_type: str | None = None,
):
    """
    Get notifications for a user, newest first.

    Args:
        user_id: User ID
        limit: Maximum number of notifications to return
        offset: Offset for pagination
        unread_only: Only return unread notifications
        notification_type: Filter by notification type value (optional, ignored if unknown)

    Returns:
        List of Notification objects
    """
    query = select(Notification).where(Notification.user_id == user_id)

    if unread_only:
        query = query.where(Notification.is_read.is_(False))

    if notification_type:
        try:
            query = query.where(
                Notification.notification_type == NotificationType(notification_type)
            )
        except ValueError:
            pass  # Invalid type, ignore filter

    query = (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .offset(offset)
    )

    return list(db.session.execute(query).scalars())


def mark_as_read(notification_id: int, user_id: int) -> Notification:
    """
    Mark one notification as read.

    Raises:
        NotFound: If the notification does not exist
        Forbidden: If it belongs to another user
    """
    notification = db.session.get(Notification, notification_id)
    if not notification:
        raise NotFound("Notification not found", notification_id=notification_id)
    if notification.user_id != user_id:
        raise Forbidden("Permission denied", notification_id=notification_id)

    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.utcnow()
        db.session.commit()

    return notification


def mark_all_as_read(user_id: int) -> int:
    """Mark all notifications as read for a user. Returns the number updated."""
    result = db.session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=datetime.utcnow())
    )
    db.session.commit()
    return result.rowcount or 0


def delete_notification(notification_id: int, user_id: int) -> None:
    """
    Delete one of the user's notifications.

    Raises:
        NotFound: If the notification does not exist
        Forbidden: If it belongs to another user
    """
    notification = db.session.get(Notification, notification_id)
    if not notification:
        raise NotFound("Notification not found", notification_id=notification_id)
    if notification.user_id != user_id:
        raise Forbidden("Permission denied", notification_id=notification_id)

    db.session.delete(notification)
    db.session.commit()


def delete_all_notifications(user_id: int) -> int:
    """Delete every notification for a user. Returns the number deleted."""
    result = db.session.execute(
        delete(Notification)
        .where(Notification.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    logger.info("notifications_cleared", user_id=user_id, deleted=result.rowcount)
    return result.rowcount or 0
