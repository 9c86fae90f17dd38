"""
API endpoints for Web Push subscriptions.
"""
from datetime import datetime

import structlog
from flask import request
from flask_login import current_user, login_required

from betalift.api import api_bp
from betalift.api._helpers import get_json_body, success
from betalift.errors import NotFound, ValidationError
from betalift.models import PushSubscription, db

logger = structlog.get_logger(__name__)


@api_bp.route("/push/subscribe", methods=["POST"])
@login_required
def push_subscribe():
    """
    Subscribe the current device to push notifications.

    Request body (from PushSubscription.toJSON()):
        {"endpoint": "https://...", "keys": {"p256dh": "...", "auth": "..."}}
    """
    data = get_json_body()
    endpoint = data.get("endpoint")
    keys = data.get("keys") or {}
    p256dh = keys.get("p256dh")
    auth = keys.get("auth")

    if not endpoint or not p256dh or not auth:
        raise ValidationError("Missing required subscription fields")

    existing = PushSubscription.query.filter_by(endpoint=endpoint).first()
    if existing:
        # Endpoints are per browser install; re-home it to whoever registered last
        existing.user_id = current_user.id
        existing.p256dh_key = p256dh
        existing.auth_key = auth
        existing.last_used_at = datetime.utcnow()
        db.session.commit()
        logger.info(
            "push_subscription_refreshed",
            user_id=current_user.id,
            subscription_id=existing.id,
        )
        return success({"id": existing.id}, message="Subscription already exists")

    subscription = PushSubscription(
        user_id=current_user.id,
        endpoint=endpoint,
        p256dh_key=p256dh,
        auth_key=auth,
        user_agent=(request.headers.get("User-Agent") or "")[:255] or None,
    )
    db.session.add(subscription)
    db.session.commit()

    logger.info(
        "push_subscription_created",
        user_id=current_user.id,
        subscription_id=subscription.id,
    )
    return success({"id": subscription.id}, 201, message="Subscription saved")


@api_bp.route("/push/unsubscribe", methods=["POST"])
@login_required
def push_unsubscribe():
    """
    Remove a push subscription.

    Request body:
        {"endpoint": "https://..."}
    """
    endpoint = get_json_body().get("endpoint")
    if not endpoint:
        raise ValidationError("Missing endpoint")

    subscription = PushSubscription.query.filter_by(
        endpoint=endpoint, user_id=current_user.id
    ).first()
    if not subscription:
        raise NotFound("Subscription not found")

    subscription_id = subscription.id
    db.session.delete(subscription)
    db.session.commit()

    logger.info(
        "push_subscription_removed",
        user_id=current_user.id,
        subscription_id=subscription_id,
    )
    return success(message="Subscription removed")
