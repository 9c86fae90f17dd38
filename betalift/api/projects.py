"""
API endpoints for projects, join requests and membership.

All workflow failures propagate as ``betalift.errors`` kinds and are rendered
by the app-level error handler.
"""
from flask import request
from flask_login import current_user, login_required

from betalift import membership
from betalift.api import api_bp
from betalift.api._helpers import get_json_body, page_args, success
from betalift.errors import NotFound
from betalift.models import JoinRequest, db
from betalift.pagination import pagination_to_dict
from betalift.permissions import get_project_or_404


@api_bp.route("/projects", methods=["POST"])
@login_required
def create_project():
    """
    Create a project owned by the current user.

    Request body:
        {"name": str, "description": str, "short_description": str?,
         "category": str?, "status": str?, "visibility": str?, "max_testers": int?}
    """
    data = get_json_body()
    project = membership.create_project(
        current_user.id,
        name=data.get("name"),
        description=data.get("description"),
        short_description=data.get("short_description"),
        category=data.get("category"),
        status=data.get("status"),
        visibility=data.get("visibility"),
        max_testers=data.get("max_testers"),
    )
    return success(project.to_dict(), 201)


@api_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id):
    return success(get_project_or_404(project_id).to_dict())


@api_bp.route("/projects/<int:project_id>/join", methods=["POST"])
@login_required
def request_to_join(project_id):
    """
    Ask to join a project.

    Request body:
        {"message": str?}
    """
    data = get_json_body()
    join_request = membership.request_to_join(
        project_id, current_user.id, data.get("message")
    )
    return success(
        join_request.to_dict(), 201, message="Join request submitted successfully"
    )


@api_bp.route("/projects/<int:project_id>/requests", methods=["GET"])
@login_required
def list_join_requests(project_id):
    """
    List join requests (owner/admin only).

    Query parameters:
        status: pending (default), approved, rejected, or "all"
        page, limit: Pagination
    """
    status = request.args.get("status", "pending")
    page, per_page = page_args()
    result = membership.list_join_requests(
        project_id,
        current_user.id,
        status=None if status == "all" else status,
        page=page,
        per_page=per_page,
    )
    return success(pagination_to_dict(result))


@api_bp.route(
    "/projects/<int:project_id>/requests/<int:request_id>", methods=["PATCH"]
)
@login_required
def review_join_request(project_id, request_id):
    """
    Approve or reject a join request.

    Request body:
        {"decision": "approve" | "reject", "reason": str?}
        ("status" and "rejection_reason" are accepted as aliases)
    """
    join_request = db.session.get(JoinRequest, request_id)
    if not join_request or join_request.project_id != project_id:
        raise NotFound("Join request not found")

    data = get_json_body()
    reviewed = membership.review_join_request(
        request_id,
        current_user.id,
        data.get("decision") or data.get("status"),
        data.get("reason") or data.get("rejection_reason"),
    )
    return success(
        reviewed.to_dict(), message=f"Join request {reviewed.status.value}"
    )


@api_bp.route("/projects/<int:project_id>/members", methods=["GET"])
def list_members(project_id):
    """
    List project members, most recently joined first.

    Query parameters:
        status: pending, approved or rejected (optional)
        page, limit: Pagination
    """
    page, per_page = page_args()
    result = membership.list_members(
        project_id, status=request.args.get("status"), page=page, per_page=per_page
    )
    return success(pagination_to_dict(result))


@api_bp.route("/projects/<int:project_id>/members/<int:user_id>", methods=["PATCH"])
@login_required
def update_member_role(project_id, user_id):
    """
    Change a member's role.

    Request body:
        {"role": "admin" | "tester"}
    """
    data = get_json_body()
    updated = membership.update_member_role(
        project_id, current_user.id, user_id, data.get("role")
    )
    return success(updated.to_dict())


@api_bp.route("/projects/<int:project_id>/members/<int:user_id>", methods=["DELETE"])
@login_required
def remove_member(project_id, user_id):
    membership.remove_member(project_id, current_user.id, user_id)
    return success(message="Member removed")


@api_bp.route("/projects/<int:project_id>/leave", methods=["POST"])
@login_required
def leave_project(project_id):
    membership.remove_member(project_id, current_user.id, current_user.id)
    return success(message="You left the project")
