"""
API endpoints for feedback, votes and comments.
"""
from flask import request
from flask_login import current_user, login_required

from betalift import feedback as lifecycle
from betalift.api import api_bp
from betalift.api._helpers import get_json_body, page_args, success
from betalift.errors import NotFound, ValidationError
from betalift.models import FeedbackComment, db
from betalift.pagination import pagination_to_dict


@api_bp.route("/projects/<int:project_id>/feedback", methods=["GET"])
def list_feedback(project_id):
    """
    List feedback for a project.

    Query parameters:
        type, status, priority: Filters (comma-separated for several values)
        user_id: Only feedback by this author
        sort: recent (default), upvotes, priority
        page, limit: Pagination
    """
    author_id = request.args.get("user_id")
    if author_id is not None:
        try:
            author_id = int(author_id)
        except ValueError:
            raise ValidationError("user_id must be an integer")

    page, per_page = page_args()
    result = lifecycle.list_feedback(
        project_id,
        type=request.args.get("type"),
        status=request.args.get("status"),
        priority=request.args.get("priority"),
        author_id=author_id,
        sort=request.args.get("sort", "recent"),
        page=page,
        per_page=per_page,
    )
    return success(pagination_to_dict(result))


@api_bp.route("/projects/<int:project_id>/feedback", methods=["POST"])
@login_required
def submit_feedback(project_id):
    """
    Submit feedback (owner or approved members only).

    Request body:
        {"type": str, "title": str, "description": str, "priority": str?,
         "steps_to_reproduce": str?, "device_info": {"platform": "ios"|"android"|"web", ...}?}
    """
    data = get_json_body()
    created = lifecycle.submit_feedback(
        project_id,
        current_user.id,
        data.get("type"),
        data.get("title"),
        data.get("description"),
        priority=data.get("priority"),
        device_info=data.get("device_info"),
        steps_to_reproduce=data.get("steps_to_reproduce"),
    )
    return success(created.to_dict(), 201, message="Feedback submitted successfully")


@api_bp.route("/feedback/<int:feedback_id>", methods=["GET"])
def get_feedback(feedback_id):
    return success(lifecycle.get_feedback(feedback_id).to_dict())


@api_bp.route("/feedback/<int:feedback_id>", methods=["DELETE"])
@login_required
def delete_feedback(feedback_id):
    lifecycle.delete_feedback(feedback_id, current_user.id)
    return success(message="Feedback deleted successfully")


@api_bp.route("/feedback/<int:feedback_id>/status", methods=["PATCH"])
@login_required
def transition_status(feedback_id):
    """
    Move feedback through its status workflow (owner/admin only).

    Request body:
        {"status": "open" | "in-progress" | "resolved" | "closed" | "wont-fix"}
    """
    data = get_json_body()
    updated = lifecycle.transition_status(
        feedback_id, current_user.id, data.get("status")
    )
    return success(updated.to_dict())


@api_bp.route("/feedback/<int:feedback_id>/vote", methods=["POST"])
@login_required
def vote(feedback_id):
    """
    Vote on feedback. Repeating the same vote changes nothing.

    Request body:
        {"value": "up" | "down"}  ("type" is accepted as an alias)
    """
    data = get_json_body()
    action = lifecycle.vote(
        feedback_id, current_user.id, data.get("value") or data.get("type")
    )
    current = lifecycle.get_feedback(feedback_id)
    return success(
        {
            "action": action.value,
            "upvotes": current.upvotes,
            "downvotes": current.downvotes,
        }
    )


@api_bp.route("/feedback/<int:feedback_id>/vote", methods=["DELETE"])
@login_required
def retract_vote(feedback_id):
    removed = lifecycle.retract_vote(feedback_id, current_user.id)
    current = lifecycle.get_feedback(feedback_id)
    return success(
        {
            "removed": removed,
            "upvotes": current.upvotes,
            "downvotes": current.downvotes,
        }
    )


@api_bp.route("/feedback/<int:feedback_id>/comments", methods=["GET"])
def list_comments(feedback_id):
    return success([c.to_dict() for c in lifecycle.list_comments(feedback_id)])


@api_bp.route("/feedback/<int:feedback_id>/comments", methods=["POST"])
@login_required
def add_comment(feedback_id):
    """
    Comment on feedback.

    Request body:
        {"content": str}
    """
    data = get_json_body()
    created = lifecycle.comment(feedback_id, current_user.id, data.get("content"))
    return success(created.to_dict(), 201, message="Comment created successfully")


@api_bp.route(
    "/feedback/<int:feedback_id>/comments/<int:comment_id>", methods=["DELETE"]
)
@login_required
def delete_comment(feedback_id, comment_id):
    existing = db.session.get(FeedbackComment, comment_id)
    if not existing or existing.feedback_id != feedback_id:
        raise NotFound("Comment not found")

    lifecycle.delete_comment(comment_id, current_user.id)
    return success(message="Comment deleted successfully")
