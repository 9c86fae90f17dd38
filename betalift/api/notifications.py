"""
API endpoints for user notifications.
"""

from flask import request
from flask_login import current_user, login_required

from betalift.api import api_bp
from betalift.api._helpers import success
from betalift.notifications import (
    delete_all_notifications,
    delete_notification,
    get_unread_count,
    get_user_notifications,
    mark_all_as_read,
    mark_as_read,
)


@api_bp.route("/notifications", methods=["GET"])
@login_required
def list_notifications():
    """
    Get notifications for the current user, newest first.

    Query parameters:
        limit: Maximum number of notifications (default: 20, max: 100)
        offset: Pagination offset (default: 0)
        unread_only: Only return unread notifications (default: false)
        type: Only this notification type (optional)

    Returns:
        {
            "success": true,
            "data": {
                "notifications": [{"id", "type", "title", "message", "data",
                                   "is_read", "read_at", "created_at"}],
                "unread_count": int,
                "total": int
            }
        }
    """
    limit = min(request.args.get("limit", 20, type=int), 100)
    offset = max(request.args.get("offset", 0, type=int), 0)
    unread_only = request.args.get("unread_only", "false").lower() == "true"

    notifications = get_user_notifications(
        user_id=current_user.id,
        limit=limit,
        offset=offset,
        unread_only=unread_only,
        notification_type=request.args.get("type"),
    )

    return success(
        {
            "notifications": [n.to_dict() for n in notifications],
            "unread_count": get_unread_count(current_user.id),
            "total": len(notifications),
        }
    )


@api_bp.route("/notifications/unread-count", methods=["GET"])
@login_required
def unread_count():
    return success({"count": get_unread_count(current_user.id)})


@api_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
@login_required
def mark_notification_read(notification_id):
    notification = mark_as_read(notification_id, current_user.id)
    return success(notification.to_dict(), message="Notification marked as read")


@api_bp.route("/notifications/read-all", methods=["POST"])
@login_required
def mark_all_notifications_read():
    updated = mark_all_as_read(current_user.id)
    return success({"updated": updated}, message="All notifications marked as read")


@api_bp.route("/notifications/<int:notification_id>", methods=["DELETE"])
@login_required
def remove_notification(notification_id):
    delete_notification(notification_id, current_user.id)
    return success(message="Notification deleted")


@api_bp.route("/notifications", methods=["DELETE"])
@login_required
def clear_notifications():
    deleted = delete_all_notifications(current_user.id)
    return success({"deleted": deleted}, message="All notifications deleted")
