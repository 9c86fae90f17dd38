"""
Celery task delivering stored notifications over Web Push.

Enqueued by ``betalift.notifications.emit`` after the notification row is
committed. Failures here never affect the in-app notification.
"""
import structlog

from betalift.tasks.celery_app import celery_app

logger = structlog.get_logger(__name__)


@celery_app.task(bind=True, max_retries=3, default_retry_delay=30)
def deliver_notification_task(self, notification_id: int) -> dict:
    """
    Fan a notification out to the recipient's push subscriptions.

    Retries with exponential backoff while every attempt fails transiently,
    up to PUSH_DELIVERY_MAX_RETRIES.

    Args:
        notification_id: ID of the Notification row

    Returns:
        dict: Delivery statistics from ``deliver_notification``
    """
    from betalift import create_app
    from betalift.push import deliver_notification

    app = create_app()
    with app.app_context():
        stats = deliver_notification(notification_id)
        max_retries = int(app.config.get("PUSH_DELIVERY_MAX_RETRIES", self.max_retries))

    if stats.get("retry") and self.request.retries < max_retries:
        countdown = 30 * (2**self.request.retries)
        logger.info(
            "push_delivery_retry_scheduled",
            notification_id=notification_id,
            attempt=self.request.retries + 1,
            countdown=countdown,
        )
        raise self.retry(countdown=countdown, max_retries=max_retries)

    return stats
