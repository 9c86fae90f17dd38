"""
Feedback lifecycle: submission, status workflow, voting and comments.

Derived counters (upvotes, downvotes, comment_count) are only ever changed by
SQL-side increments in the same transaction as the vote/comment row they
mirror, so concurrent writers cannot lose updates.
"""
from datetime import datetime
from enum import Enum

import structlog
from flask_sqlalchemy.pagination import Pagination
from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import IntegrityError

from betalift import notifications
from betalift.errors import Conflict, Forbidden, NotFound, ValidationError
from betalift.models import (
    PRIORITY_RANK,
    Feedback,
    FeedbackComment,
    FeedbackPriority,
    FeedbackStatus,
    FeedbackType,
    FeedbackVote,
    MemberRole,
    NotificationType,
    Project,
    User,
    VoteValue,
    adjust_counters,
    db,
)
from betalift.pagination import paginate
from betalift.permissions import (
    can_manage_project,
    check_project_role,
    get_project_or_404,
    is_project_member,
)

logger = structlog.get_logger(__name__)

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 5000
MAX_STEPS_LENGTH = 2000
MAX_COMMENT_LENGTH = 2000
DEVICE_PLATFORMS = {"ios", "android", "web"}
SORT_OPTIONS = ("recent", "upvotes", "priority")

# Legal status moves; CLOSED is terminal
TRANSITIONS = {
    FeedbackStatus.PENDING: {
        FeedbackStatus.OPEN,
        FeedbackStatus.WONT_FIX,
        FeedbackStatus.CLOSED,
    },
    FeedbackStatus.OPEN: {
        FeedbackStatus.IN_PROGRESS,
        FeedbackStatus.RESOLVED,
        FeedbackStatus.WONT_FIX,
        FeedbackStatus.CLOSED,
    },
    FeedbackStatus.IN_PROGRESS: {
        FeedbackStatus.OPEN,
        FeedbackStatus.RESOLVED,
        FeedbackStatus.WONT_FIX,
        FeedbackStatus.CLOSED,
    },
    FeedbackStatus.RESOLVED: {FeedbackStatus.OPEN, FeedbackStatus.CLOSED},
    FeedbackStatus.WONT_FIX: {FeedbackStatus.OPEN, FeedbackStatus.CLOSED},
    FeedbackStatus.CLOSED: set(),
}

_VOTE_COUNTERS = {VoteValue.UP: "upvotes", VoteValue.DOWN: "downvotes"}


class VoteAction(Enum):
    """Outcome of an idempotent vote upsert."""

    ADDED = "added"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


def _parse_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Invalid {field_name} '{value}'. Allowed: {allowed}")


def _parse_enum_list(enum_cls, value, field_name: str):
    """Accept a single value, a comma-separated string or a list."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        value = [v for v in (part.strip() for part in value.split(",")) if v]
    elif isinstance(value, enum_cls):
        value = [value]
    return [_parse_enum(enum_cls, v, field_name) for v in value]


def _check_length(value, field_name: str, max_length: int, required: bool = True):
    text = value.strip() if isinstance(value, str) else ""
    if required and not text:
        raise ValidationError(f"{field_name} is required")
    if len(text) > max_length:
        raise ValidationError(f"{field_name} must be at most {max_length} characters")
    return text or None


def _validate_device_info(device_info):
    if device_info is None:
        return None
    if not isinstance(device_info, dict):
        raise ValidationError("device_info must be an object")
    platform = device_info.get("platform")
    if platform is not None and platform not in DEVICE_PLATFORMS:
        raise ValidationError(
            f"Invalid device platform '{platform}'. Allowed: android, ios, web"
        )
    return device_info


def get_feedback(feedback_id: int) -> Feedback:
    feedback = db.session.get(Feedback, feedback_id)
    if not feedback:
        raise NotFound("Feedback not found", feedback_id=feedback_id)
    return feedback


def submit_feedback(
    project_id: int,
    user_id: int,
    type,
    title: str,
    description: str,
    priority=None,
    device_info: dict | None = None,
    steps_to_reproduce: str | None = None,
) -> Feedback:
    """
    Submit feedback against a project.

    The submitter must be the project owner or an approved member. New
    feedback starts in ``pending`` with all counters at zero, and the project
    owner is notified unless they wrote it.

    Raises:
        NotFound: Project or user missing
        ValidationError: Invalid fields, or submitter is not a member
    """
    project = db.session.get(Project, project_id)
    if not project:
        raise NotFound("Project not found", project_id=project_id)
    author = db.session.get(User, user_id)
    if not author:
        raise NotFound("User not found", user_id=user_id)

    feedback_type = _parse_enum(FeedbackType, type, "type")
    priority = _parse_enum(
        FeedbackPriority, priority or FeedbackPriority.MEDIUM, "priority"
    )
    title = _check_length(title, "Title", MAX_TITLE_LENGTH)
    description = _check_length(description, "Description", MAX_DESCRIPTION_LENGTH)
    steps_to_reproduce = _check_length(
        steps_to_reproduce, "Steps to reproduce", MAX_STEPS_LENGTH, required=False
    )
    device_info = _validate_device_info(device_info)

    if not is_project_member(project, user_id):
        raise ValidationError(
            "You must be an approved member of this project to submit feedback"
        )

    feedback = Feedback(
        project_id=project_id,
        user_id=user_id,
        feedback_type=feedback_type,
        priority=priority,
        title=title,
        description=description,
        steps_to_reproduce=steps_to_reproduce,
        device_info=device_info,
        status=FeedbackStatus.PENDING,
        upvotes=0,
        downvotes=0,
        comment_count=0,
    )
    db.session.add(feedback)
    adjust_counters(Project, project_id, feedback_count=1)
    db.session.commit()

    logger.info(
        "feedback_submitted",
        feedback_id=feedback.id,
        project_id=project_id,
        user_id=user_id,
        feedback_type=feedback_type.value,
    )

    if project.owner_id != user_id:
        notifications.emit(
            project.owner_id,
            NotificationType.FEEDBACK_RECEIVED,
            title="New Feedback",
            message=f"{author.get_display_name()} submitted {feedback_type.value} feedback on {project.name}",
            data={"project_id": project_id, "feedback_id": feedback.id},
        )
    return feedback


def transition_status(feedback_id: int, actor_id: int, new_status) -> Feedback:
    """
    Move feedback to a new status following ``TRANSITIONS``.

    Entering ``resolved`` stamps resolved_at; reopening clears it. The update
    only applies if the status is still the one that was validated, so two
    racing moves cannot both pass the transition check.

    Raises:
        NotFound: Feedback missing
        Forbidden: Actor is not the project owner/admin
        ValidationError: Unknown status value
        Conflict: The move is not allowed from the current status
    """
    feedback = get_feedback(feedback_id)
    project = feedback.project
    check_project_role(project, actor_id, MemberRole.ADMIN)

    new_status = _parse_enum(FeedbackStatus, new_status, "status")
    old_status = feedback.status

    if new_status not in TRANSITIONS[old_status]:
        raise Conflict(
            f"Cannot move feedback from '{old_status.value}' to '{new_status.value}'"
        )

    now = datetime.utcnow()
    values = {"status": new_status, "updated_at": now}
    if new_status == FeedbackStatus.RESOLVED:
        values["resolved_at"] = now
    elif new_status == FeedbackStatus.OPEN:
        values["resolved_at"] = None

    result = db.session.execute(
        update(Feedback)
        .where(Feedback.id == feedback_id, Feedback.status == old_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise Conflict("Feedback status changed concurrently, please retry")
    db.session.commit()
    db.session.refresh(feedback)

    logger.info(
        "feedback_status_changed",
        feedback_id=feedback_id,
        actor_id=actor_id,
        old_status=old_status.value,
        new_status=new_status.value,
    )

    if feedback.user_id != actor_id:
        notifications.emit(
            feedback.user_id,
            NotificationType.FEEDBACK_STATUS_CHANGED,
            title="Feedback Updated",
            message=f"Your feedback \"{feedback.title}\" is now {new_status.value}",
            data={
                "project_id": project.id,
                "feedback_id": feedback_id,
                "old_status": old_status.value,
                "new_status": new_status.value,
            },
        )
    return feedback


def _get_vote(feedback_id: int, user_id: int):
    return db.session.execute(
        select(FeedbackVote).where(
            FeedbackVote.feedback_id == feedback_id,
            FeedbackVote.user_id == user_id,
        )
    ).scalar_one_or_none()


def vote(feedback_id: int, user_id: int, value) -> VoteAction:
    """
    Record a user's up/down vote; idempotent per (feedback, user).

    Same value again is a no-op, a different value flips one count across,
    and a first vote is inserted inside a savepoint. If a concurrent first
    vote wins the unique constraint, the insert is retried as an update.

    Returns:
        VoteAction describing what changed
    """
    get_feedback(feedback_id)
    value = _parse_enum(VoteValue, value, "vote")

    for _attempt in range(2):
        existing = _get_vote(feedback_id, user_id)

        if existing is None:
            try:
                with db.session.begin_nested():
                    db.session.add(
                        FeedbackVote(
                            feedback_id=feedback_id, user_id=user_id, value=value
                        )
                    )
                    db.session.flush()
            except IntegrityError:
                # Lost the insert race; re-read and update instead
                continue
            adjust_counters(Feedback, feedback_id, **{_VOTE_COUNTERS[value]: 1})
            action = VoteAction.ADDED

        elif existing.value == value:
            return VoteAction.UNCHANGED

        else:
            previous = existing.value
            result = db.session.execute(
                update(FeedbackVote)
                .where(FeedbackVote.id == existing.id, FeedbackVote.value == previous)
                .values(value=value, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.session.rollback()
                continue
            adjust_counters(
                Feedback,
                feedback_id,
                **{_VOTE_COUNTERS[value]: 1, _VOTE_COUNTERS[previous]: -1},
            )
            action = VoteAction.CHANGED

        db.session.commit()
        logger.info(
            "feedback_vote_recorded",
            feedback_id=feedback_id,
            user_id=user_id,
            value=value.value,
            action=action.value,
        )
        return action

    db.session.rollback()
    raise Conflict("Vote changed concurrently, please retry")


def retract_vote(feedback_id: int, user_id: int) -> bool:
    """Remove a user's vote. Returns False if there was none."""
    get_feedback(feedback_id)
    existing = _get_vote(feedback_id, user_id)
    if existing is None:
        return False

    previous = existing.value
    result = db.session.execute(
        delete(FeedbackVote)
        .where(FeedbackVote.id == existing.id, FeedbackVote.value == previous)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise Conflict("Vote changed concurrently, please retry")
    db.session.expunge(existing)
    adjust_counters(Feedback, feedback_id, **{_VOTE_COUNTERS[previous]: -1})
    db.session.commit()

    logger.info(
        "feedback_vote_retracted",
        feedback_id=feedback_id,
        user_id=user_id,
        value=previous.value,
    )
    return True


def comment(feedback_id: int, user_id: int, content: str) -> FeedbackComment:
    """
    Add a comment and bump the feedback's comment_count in one transaction.

    Raises:
        NotFound: Feedback or user missing
        ValidationError: Blank content or more than 2000 characters
    """
    feedback = get_feedback(feedback_id)
    author = db.session.get(User, user_id)
    if not author:
        raise NotFound("User not found", user_id=user_id)
    content = _check_length(content, "Comment", MAX_COMMENT_LENGTH)

    new_comment = FeedbackComment(
        feedback_id=feedback_id, user_id=user_id, content=content
    )
    db.session.add(new_comment)
    db.session.flush()
    adjust_counters(Feedback, feedback_id, comment_count=1)
    db.session.commit()

    logger.info(
        "feedback_comment_added",
        feedback_id=feedback_id,
        comment_id=new_comment.id,
        user_id=user_id,
    )

    if feedback.user_id != user_id:
        notifications.emit(
            feedback.user_id,
            NotificationType.FEEDBACK_COMMENT,
            title="New Comment",
            message=f"{author.get_display_name()} commented on your feedback",
            data={
                "project_id": feedback.project_id,
                "feedback_id": feedback_id,
                "comment_id": new_comment.id,
            },
        )
    return new_comment


def delete_comment(comment_id: int, actor_id: int) -> None:
    """
    Delete a comment. Allowed for its author and for project owners/admins.

    Raises:
        NotFound: Comment missing
        Forbidden: Actor may not delete this comment
    """
    existing = db.session.get(FeedbackComment, comment_id)
    if not existing:
        raise NotFound("Comment not found", comment_id=comment_id)

    feedback_id = existing.feedback_id
    if existing.user_id != actor_id and not can_manage_project(
        existing.feedback.project, actor_id
    ):
        raise Forbidden("You do not have permission to delete this comment")

    result = db.session.execute(
        delete(FeedbackComment)
        .where(FeedbackComment.id == comment_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise NotFound("Comment not found", comment_id=comment_id)
    db.session.expunge(existing)
    adjust_counters(Feedback, feedback_id, comment_count=-1)
    db.session.commit()

    logger.info(
        "feedback_comment_deleted",
        feedback_id=feedback_id,
        comment_id=comment_id,
        actor_id=actor_id,
    )


def delete_feedback(feedback_id: int, actor_id: int) -> None:
    """
    Delete feedback with its votes and comments.

    Allowed for the author and for project owners/admins. The project's
    feedback_count is decremented in the same transaction.

    Raises:
        NotFound: Feedback missing
        Forbidden: Actor may not delete this feedback
    """
    feedback = get_feedback(feedback_id)
    project_id = feedback.project_id
    if feedback.user_id != actor_id and not can_manage_project(
        feedback.project, actor_id
    ):
        raise Forbidden("You do not have permission to delete this feedback")

    for model in (FeedbackVote, FeedbackComment):
        db.session.execute(
            delete(model)
            .where(model.feedback_id == feedback_id)
            .execution_options(synchronize_session=False)
        )
    result = db.session.execute(
        delete(Feedback)
        .where(Feedback.id == feedback_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise NotFound("Feedback not found", feedback_id=feedback_id)
    db.session.expunge(feedback)
    adjust_counters(Project, project_id, feedback_count=-1)
    db.session.commit()

    logger.info(
        "feedback_deleted",
        feedback_id=feedback_id,
        project_id=project_id,
        actor_id=actor_id,
    )


def list_feedback(
    project_id: int,
    type=None,
    status=None,
    priority=None,
    author_id: int | None = None,
    sort: str = "recent",
    page: int = 1,
    per_page: int | None = None,
) -> Pagination:
    """
    List a project's feedback.

    Filters accept a single value, a list, or a comma-separated string.
    ``sort`` is one of recent (default), upvotes or priority; ties always
    fall back to newest first.
    """
    get_project_or_404(project_id)

    query = select(Feedback).where(Feedback.project_id == project_id)

    types = _parse_enum_list(FeedbackType, type, "type")
    if types:
        query = query.where(Feedback.feedback_type.in_(types))
    statuses = _parse_enum_list(FeedbackStatus, status, "status")
    if statuses:
        query = query.where(Feedback.status.in_(statuses))
    priorities = _parse_enum_list(FeedbackPriority, priority, "priority")
    if priorities:
        query = query.where(Feedback.priority.in_(priorities))
    if author_id is not None:
        query = query.where(Feedback.user_id == author_id)

    sort = sort or "recent"
    if sort not in SORT_OPTIONS:
        raise ValidationError(
            f"Invalid sort '{sort}'. Allowed: {', '.join(SORT_OPTIONS)}"
        )

    recency = (Feedback.created_at.desc(), Feedback.id.desc())
    if sort == "upvotes":
        query = query.order_by(Feedback.upvotes.desc(), *recency)
    elif sort == "priority":
        rank = case(
            *((Feedback.priority == p, r) for p, r in PRIORITY_RANK.items()),
            else_=0,
        )
        query = query.order_by(rank.desc(), *recency)
    else:
        query = query.order_by(*recency)

    return paginate(query, page, per_page)


def list_comments(feedback_id: int) -> list[FeedbackComment]:
    """Comments on a feedback item, oldest first."""
    get_feedback(feedback_id)
    return list(
        db.session.execute(
            select(FeedbackComment)
            .where(FeedbackComment.feedback_id == feedback_id)
            .order_by(FeedbackComment.created_at.asc(), FeedbackComment.id.asc())
        ).scalars()
    )
