"""
Membership workflow: project creation, join requests and member management.

Every operation takes the acting user's id explicitly, validates, mutates the
store inside one transaction and commits before emitting notifications. All
failures are raised as ``betalift.errors`` kinds after rolling back.

Join request state machine::

    pending -> approved | rejected      (terminal; a rejected user may ask again,
                                         which creates a new request row)
"""
from datetime import datetime

import structlog
from flask_sqlalchemy.pagination import Pagination
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError

from betalift import notifications
from betalift.errors import Conflict, Forbidden, NotFound, ValidationError
from betalift.models import (
    JoinRequest,
    JoinRequestStatus,
    MemberRole,
    MembershipStatus,
    NotificationType,
    Project,
    ProjectMembership,
    ProjectStatus,
    ProjectVisibility,
    User,
    adjust_counters,
    db,
)
from betalift.pagination import paginate
from betalift.permissions import (
    can_remove_member,
    check_project_role,
    get_project_or_404,
)

logger = structlog.get_logger(__name__)

MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 5000
MAX_SHORT_DESCRIPTION_LENGTH = 200
MAX_CATEGORY_LENGTH = 32
MAX_JOIN_MESSAGE_LENGTH = 500
MAX_REJECTION_REASON_LENGTH = 500

# Review decisions accepted by review_join_request (verb or resulting status)
DECISIONS = {
    "approve": JoinRequestStatus.APPROVED,
    "approved": JoinRequestStatus.APPROVED,
    "reject": JoinRequestStatus.REJECTED,
    "rejected": JoinRequestStatus.REJECTED,
}

# Roles that can be granted through update_member_role
ASSIGNABLE_ROLES = {MemberRole.ADMIN, MemberRole.TESTER}


def _get_user_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound("User not found", user_id=user_id)
    return user


def _parse_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Invalid {field_name} '{value}'. Allowed: {allowed}")


def _check_str(value, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")
    return value.strip()


def _require_text(value, field_name: str, max_length: int) -> str:
    text = _check_str(value if value is not None else "", field_name)
    if not text:
        raise ValidationError(f"{field_name} is required")
    if len(text) > max_length:
        raise ValidationError(
            f"{field_name} must be at most {max_length} characters"
        )
    return text


def _optional_text(value, field_name: str, max_length: int):
    if value is None:
        return None
    text = _check_str(value, field_name)
    if len(text) > max_length:
        raise ValidationError(
            f"{field_name} must be at most {max_length} characters"
        )
    return text or None


def _get_membership(project_id: int, user_id: int):
    return db.session.execute(
        select(ProjectMembership).where(
            ProjectMembership.project_id == project_id,
            ProjectMembership.user_id == user_id,
        )
    ).scalar_one_or_none()


def _has_pending_request(project_id: int, user_id: int) -> bool:
    return (
        db.session.execute(
            select(JoinRequest.id).where(
                JoinRequest.project_id == project_id,
                JoinRequest.user_id == user_id,
                JoinRequest.status == JoinRequestStatus.PENDING,
            )
        ).first()
        is not None
    )


def _claim_tester_slot(project_id: int) -> None:
    """Bump tester_count unless the project is at max_testers."""
    result = db.session.execute(
        update(Project)
        .where(
            Project.id == project_id,
            or_(
                Project.max_testers.is_(None),
                Project.tester_count < Project.max_testers,
            ),
        )
        .values(tester_count=Project.tester_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise Conflict("This project has reached its maximum number of testers")


def create_project(
    owner_id: int,
    name: str,
    description: str,
    short_description: str | None = None,
    category: str | None = None,
    status=None,
    visibility=None,
    max_testers: int | None = None,
) -> Project:
    """
    Create a project together with its owner's approved membership.

    Raises:
        NotFound: If the owner does not exist
        ValidationError: For blank/oversized text or unknown status/visibility
    """
    _get_user_or_404(owner_id)

    name = _require_text(name, "Name", MAX_NAME_LENGTH)
    description = _require_text(description, "Description", MAX_DESCRIPTION_LENGTH)
    short_description = _optional_text(
        short_description, "Short description", MAX_SHORT_DESCRIPTION_LENGTH
    )
    category = _optional_text(category, "Category", MAX_CATEGORY_LENGTH)
    status = _parse_enum(ProjectStatus, status or ProjectStatus.ACTIVE, "status")
    visibility = _parse_enum(
        ProjectVisibility, visibility or ProjectVisibility.PUBLIC, "visibility"
    )
    if max_testers is not None:
        try:
            max_testers = int(max_testers)
        except (TypeError, ValueError):
            raise ValidationError("max_testers must be an integer")
        if max_testers < 1:
            raise ValidationError("max_testers must be positive")

    project = Project(
        name=name,
        description=description,
        short_description=short_description,
        category=category,
        owner_id=owner_id,
        status=status,
        visibility=visibility,
        max_testers=max_testers or 100,
    )
    db.session.add(project)
    db.session.flush()

    db.session.add(
        ProjectMembership(
            project_id=project.id,
            user_id=owner_id,
            status=MembershipStatus.APPROVED,
            role=MemberRole.OWNER,
            joined_at=datetime.utcnow(),
        )
    )
    db.session.commit()

    logger.info("project_created", project_id=project.id, owner_id=owner_id)
    return project


def request_to_join(
    project_id: int, user_id: int, message: str | None = None
) -> JoinRequest:
    """
    Ask to join a project as a tester.

    Args:
        project_id: Target project
        user_id: Requesting user
        message: Optional note to the project owner (max 500 chars)

    Returns:
        The new pending JoinRequest

    Raises:
        NotFound: Project missing or closed, or user missing
        ValidationError: Message too long
        Conflict: Already a member, or a request is already pending
    """
    project = db.session.get(Project, project_id)
    if not project or project.status == ProjectStatus.CLOSED:
        raise NotFound("Project not found or no longer accepting testers")
    user = _get_user_or_404(user_id)

    message = _optional_text(message, "Message", MAX_JOIN_MESSAGE_LENGTH)

    membership = _get_membership(project_id, user_id)
    if project.owner_id == user_id or (
        membership and membership.status == MembershipStatus.APPROVED
    ):
        raise Conflict("You are already a member of this project")

    if _has_pending_request(project_id, user_id):
        raise Conflict("You already have a pending request for this project")

    join_request = JoinRequest(
        project_id=project_id,
        user_id=user_id,
        message=message,
        status=JoinRequestStatus.PENDING,
    )
    db.session.add(join_request)
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent request for the same (project, user) won the insert
        db.session.rollback()
        raise Conflict("You already have a pending request for this project")

    logger.info(
        "join_request_created",
        join_request_id=join_request.id,
        project_id=project_id,
        user_id=user_id,
    )

    notifications.emit(
        project.owner_id,
        NotificationType.PROJECT_INVITE,
        title="New Join Request",
        message=f"{user.get_display_name()} wants to join {project.name}",
        data={
            "project_id": project_id,
            "join_request_id": join_request.id,
            "user_id": user_id,
        },
    )
    return join_request


def review_join_request(
    request_id: int, reviewer_id: int, decision: str, reason: str | None = None
) -> JoinRequest:
    """
    Approve or reject a pending join request.

    The pending -> decided move is a compare-and-set on the request row, so of
    two concurrent reviews exactly one wins; the other gets Conflict. Approval
    creates (or reactivates) the tester membership in the same transaction.

    Args:
        request_id: JoinRequest to review
        reviewer_id: Acting user; must be the project owner or an admin
        decision: "approve" or "reject"
        reason: Optional rejection reason (max 500 chars), sent to the requester

    Returns:
        The reviewed JoinRequest

    Raises:
        NotFound: Request missing
        ValidationError: Unknown decision or reason too long
        Forbidden: Reviewer is not owner/admin
        Conflict: Request already reviewed (including a lost race), or the
            project is at max_testers on approval
    """
    join_request = db.session.get(JoinRequest, request_id)
    if not join_request:
        raise NotFound("Join request not found", request_id=request_id)

    new_status = DECISIONS.get(str(decision).lower() if decision else "")
    if new_status is None:
        raise ValidationError("Decision must be 'approve' or 'reject'")
    reason = _optional_text(reason, "Reason", MAX_REJECTION_REASON_LENGTH)

    project = join_request.project
    check_project_role(project, reviewer_id, MemberRole.ADMIN)

    if join_request.status != JoinRequestStatus.PENDING:
        raise Conflict("This request has already been reviewed")

    now = datetime.utcnow()
    result = db.session.execute(
        update(JoinRequest)
        .where(
            JoinRequest.id == request_id,
            JoinRequest.status == JoinRequestStatus.PENDING,
        )
        .values(
            status=new_status,
            reviewed_by_id=reviewer_id,
            reviewed_at=now,
            rejection_reason=reason
            if new_status == JoinRequestStatus.REJECTED
            else None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise Conflict("This request has already been reviewed")

    if new_status == JoinRequestStatus.APPROVED:
        membership = _get_membership(project.id, join_request.user_id)
        if membership is None or membership.status != MembershipStatus.APPROVED:
            _claim_tester_slot(project.id)
        if membership is None:
            db.session.add(
                ProjectMembership(
                    project_id=project.id,
                    user_id=join_request.user_id,
                    status=MembershipStatus.APPROVED,
                    role=MemberRole.TESTER,
                    joined_at=now,
                )
            )
        else:
            membership.status = MembershipStatus.APPROVED
            membership.role = MemberRole.TESTER
            membership.joined_at = now

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("Membership changed while reviewing this request")

    db.session.refresh(join_request)

    logger.info(
        "join_request_reviewed",
        join_request_id=request_id,
        project_id=project.id,
        reviewer_id=reviewer_id,
        decision=new_status.value,
    )

    if new_status == JoinRequestStatus.APPROVED:
        notifications.emit(
            join_request.user_id,
            NotificationType.PROJECT_JOINED,
            title="Join Request Approved",
            message=f"Your request to join {project.name} has been approved",
            data={"project_id": project.id, "join_request_id": request_id},
        )
    else:
        message = f"Your request to join {project.name} was not approved"
        if reason:
            message = f"{message}: {reason}"
        notifications.emit(
            join_request.user_id,
            NotificationType.PROJECT_JOIN_REJECTED,
            title="Join Request Rejected",
            message=message,
            data={
                "project_id": project.id,
                "join_request_id": request_id,
                "reason": reason,
            },
        )

    return join_request


def list_join_requests(
    project_id: int,
    actor_id: int,
    status: str | None = "pending",
    page: int = 1,
    per_page: int | None = None,
) -> Pagination:
    """List a project's join requests, newest first. Owner/admin only."""
    project = get_project_or_404(project_id)
    check_project_role(project, actor_id, MemberRole.ADMIN)

    query = select(JoinRequest).where(JoinRequest.project_id == project_id)
    if status:
        query = query.where(
            JoinRequest.status == _parse_enum(JoinRequestStatus, status, "status")
        )
    query = query.order_by(JoinRequest.created_at.desc(), JoinRequest.id.desc())
    return paginate(query, page, per_page)


def remove_member(project_id: int, acting_user_id: int, target_user_id: int) -> None:
    """
    Remove a member from a project, or leave it when acting on oneself.

    The membership row is deleted; join request history is kept.

    Raises:
        NotFound: Project or membership missing
        Forbidden: Target is the owner, or the acting user may not remove the target
    """
    project = get_project_or_404(project_id)

    if target_user_id == project.owner_id:
        raise Forbidden("The project owner cannot be removed")

    if not can_remove_member(project, acting_user_id, target_user_id):
        raise Forbidden("You do not have permission to remove this member")

    membership = _get_membership(project_id, target_user_id)
    if not membership:
        raise NotFound("Membership not found")

    was_approved = membership.status == MembershipStatus.APPROVED
    result = db.session.execute(
        delete(ProjectMembership)
        .where(ProjectMembership.id == membership.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise NotFound("Membership not found")
    db.session.expunge(membership)
    if was_approved:
        adjust_counters(Project, project_id, tester_count=-1)
    db.session.commit()

    logger.info(
        "member_removed",
        project_id=project_id,
        user_id=target_user_id,
        removed_by=acting_user_id,
        self_leave=acting_user_id == target_user_id,
    )


def update_member_role(
    project_id: int, acting_user_id: int, target_user_id: int, role
) -> ProjectMembership:
    """
    Change an approved member's role between admin and tester.

    The owner may change any member's role; admins may only change testers.

    Raises:
        NotFound: Project or approved membership missing
        ValidationError: Role is not admin/tester
        Forbidden: Target is the owner or the acting user lacks permission
    """
    project = get_project_or_404(project_id)

    new_role = _parse_enum(MemberRole, role, "role")
    if new_role not in ASSIGNABLE_ROLES:
        raise ValidationError("The owner role cannot be assigned")

    if target_user_id == project.owner_id:
        raise Forbidden("The project owner's role cannot be changed")

    acting_role = check_project_role(project, acting_user_id, MemberRole.ADMIN)

    membership = _get_membership(project_id, target_user_id)
    if not membership or membership.status != MembershipStatus.APPROVED:
        raise NotFound("Membership not found")

    if acting_role != MemberRole.OWNER and membership.role != MemberRole.TESTER:
        raise Forbidden("Only the project owner can change an admin's role")

    old_role = membership.role
    membership.role = new_role
    db.session.commit()

    logger.info(
        "member_role_changed",
        project_id=project_id,
        user_id=target_user_id,
        old_role=old_role.value,
        new_role=new_role.value,
        changed_by=acting_user_id,
    )
    return membership


def list_members(
    project_id: int, status=None, page: int = 1, per_page: int | None = None
) -> Pagination:
    """List memberships, most recently joined first (ties by id, newest first)."""
    get_project_or_404(project_id)

    query = select(ProjectMembership).where(
        ProjectMembership.project_id == project_id
    )
    if status:
        query = query.where(
            ProjectMembership.status
            == _parse_enum(MembershipStatus, status, "status")
        )
    query = query.order_by(
        ProjectMembership.joined_at.desc().nulls_last(),
        ProjectMembership.id.desc(),
    )
    return paginate(query, page, per_page)
