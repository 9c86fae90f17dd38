"""
Push notification sending utilities using Web Push API.
"""
import json
from datetime import datetime

import structlog
from flask import current_app
from pywebpush import WebPushException, webpush

from betalift.models import Notification, PushSubscription, db

logger = structlog.get_logger(__name__)

# Push services answer 404/410 for subscriptions that will never work again
EXPIRED_STATUS_CODES = (404, 410)


def vapid_claims() -> dict | None:
    email = current_app.config.get("VAPID_CLAIMS_EMAIL")
    if not email:
        return None
    return {"sub": f"mailto:{email}"}


def build_payload(notification: Notification) -> dict:
    """Payload the client service worker renders (and routes on click)."""
    data = dict(notification.data or {})
    data.update(
        {
            "type": notification.notification_type.value,
            "notification_id": notification.id,
        }
    )
    return {
        "title": notification.title,
        "body": notification.message,
        "tag": f"notification-{notification.notification_type.value}",
        "data": data,
    }


def deliver_notification(notification_id: int) -> dict:
    """
    Send a stored notification to all of its recipient's subscribed devices.

    Expired subscriptions are pruned. ``retry`` is set when nothing could be
    delivered and at least one failure looked transient.

    Args:
        notification_id: ID of the Notification row to deliver

    Returns:
        dict: Statistics about sent notifications
    """
    stats = {"sent": 0, "failed": 0, "expired": 0, "total": 0, "retry": False}

    vapid_private_key = current_app.config.get("VAPID_PRIVATE_KEY")
    claims = vapid_claims()
    if not vapid_private_key or not claims:
        logger.warning(
            "push_notification_skipped",
            reason="VAPID keys not configured",
            notification_id=notification_id,
        )
        return stats

    notification = db.session.get(Notification, notification_id)
    if not notification:
        logger.warning(
            "push_notification_skipped",
            reason="Notification no longer exists",
            notification_id=notification_id,
        )
        return stats

    subscriptions = PushSubscription.query.filter_by(
        user_id=notification.user_id
    ).all()
    if not subscriptions:
        logger.debug(
            "push_notification_skipped",
            reason="No push subscriptions",
            user_id=notification.user_id,
        )
        return stats

    payload = json.dumps(build_payload(notification))
    expired_subscriptions = []
    transient_failures = 0

    for subscription in subscriptions:
        try:
            webpush(
                subscription_info={
                    "endpoint": subscription.endpoint,
                    "keys": {
                        "p256dh": subscription.p256dh_key,
                        "auth": subscription.auth_key,
                    },
                },
                data=payload,
                vapid_private_key=vapid_private_key,
                vapid_claims=dict(claims),
            )
            subscription.last_used_at = datetime.utcnow()
            stats["sent"] += 1

            logger.debug(
                "push_notification_sent",
                user_id=notification.user_id,
                subscription_id=subscription.id,
                notification_id=notification_id,
            )

        except WebPushException as e:
            stats["failed"] += 1
            status_code = e.response.status_code if e.response is not None else None
            logger.warning(
                "push_notification_failed",
                user_id=notification.user_id,
                subscription_id=subscription.id,
                error=str(e),
                status_code=status_code,
            )

            if status_code in EXPIRED_STATUS_CODES:
                expired_subscriptions.append(subscription)
                logger.info(
                    "push_subscription_expired",
                    user_id=notification.user_id,
                    subscription_id=subscription.id,
                )
            else:
                transient_failures += 1

    for subscription in expired_subscriptions:
        db.session.delete(subscription)

    db.session.commit()

    stats["total"] = len(subscriptions)
    stats["expired"] = len(expired_subscriptions)
    stats["retry"] = stats["sent"] == 0 and transient_failures > 0

    logger.info(
        "push_notification_batch_complete",
        user_id=notification.user_id,
        notification_id=notification_id,
        sent=stats["sent"],
        failed=stats["failed"],
        total=stats["total"],
        expired=stats["expired"],
    )
    return stats
