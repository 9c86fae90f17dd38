"""
Database models for the BetaLift access and feedback engine.

This module contains all SQLAlchemy models defining the database schema
for users, projects, memberships, join requests, feedback, votes, comments,
notifications and push subscriptions.
"""
from datetime import datetime
from enum import Enum

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text, update

# Initialize SQLAlchemy instance
db = SQLAlchemy()


def _enum_column(enum_cls, name, **kwargs):
    """Enum column persisted by value (e.g. "in-progress"), not by member name."""
    return db.Column(
        db.Enum(
            enum_cls,
            name=name,
            values_callable=lambda enum: [e.value for e in enum],
            validate_strings=True,
        ),
        **kwargs,
    )


def adjust_counters(model, row_id: int, **deltas) -> None:
    """Apply ``col = col + delta`` to a row's counter columns in one UPDATE."""
    values = {
        getattr(model, column): getattr(model, column) + delta
        for column, delta in deltas.items()
        if delta
    }
    if not values:
        return
    db.session.execute(
        update(model)
        .where(model.id == row_id)
        .values(values)
        .execution_options(synchronize_session=False)
    )


class UserRole(Enum):
    """
    Enumeration for user roles on the platform.

    - CREATOR: Publishes projects and collects feedback
    - TESTER: Joins projects and submits feedback
    - BOTH: Does both
    """

    CREATOR = "creator"
    TESTER = "tester"
    BOTH = "both"


class ProjectStatus(Enum):
    ACTIVE = "active"
    BETA = "beta"
    CLOSED = "closed"
    PAUSED = "paused"


class ProjectVisibility(Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class MemberRole(Enum):
    """
    Enumeration for project member roles.

    - OWNER: Project owner with full permissions (cannot be removed)
    - ADMIN: Reviews join requests, manages members and feedback status
    - TESTER: Submits feedback, votes and comments
    """

    OWNER = "owner"
    ADMIN = "admin"
    TESTER = "tester"


# Role hierarchy: OWNER > ADMIN > TESTER
ROLE_HIERARCHY = {
    MemberRole.OWNER: 3,
    MemberRole.ADMIN: 2,
    MemberRole.TESTER: 1,
}


class MembershipStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class JoinRequestStatus(Enum):
    """
    Enumeration for join request states.

    PENDING is the only non-terminal state. ACCEPTED is kept for rows written
    by older clients and is treated exactly like APPROVED.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACCEPTED = "accepted"

    @property
    def is_terminal(self) -> bool:
        return self is not JoinRequestStatus.PENDING


class FeedbackType(Enum):
    BUG = "bug"
    FEATURE = "feature"
    IMPROVEMENT = "improvement"
    PRAISE = "praise"
    QUESTION = "question"
    OTHER = "other"


class FeedbackPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Sort rank for "priority" ordering (higher first)
PRIORITY_RANK = {
    FeedbackPriority.LOW: 1,
    FeedbackPriority.MEDIUM: 2,
    FeedbackPriority.HIGH: 3,
    FeedbackPriority.CRITICAL: 4,
}


class FeedbackStatus(Enum):
    PENDING = "pending"
    OPEN = "open"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    WONT_FIX = "wont-fix"


class VoteValue(Enum):
    UP = "up"
    DOWN = "down"


class NotificationType(Enum):
    """
    Enumeration for notification types.

    Membership:
    - PROJECT_INVITE: Someone asked to join a project you own
    - PROJECT_JOINED: Your join request was approved
    - PROJECT_JOIN_REJECTED: Your join request was rejected (carries the reason)

    Feedback:
    - FEEDBACK_RECEIVED: New feedback on your project
    - FEEDBACK_COMMENT: New comment on your feedback
    - FEEDBACK_STATUS_CHANGED: Your feedback moved to a new status

    Other:
    - PROJECT_UPDATE: Project announcement
    """

    PROJECT_INVITE = "project_invite"
    PROJECT_JOINED = "project_joined"
    PROJECT_JOIN_REJECTED = "project_join_rejected"
    FEEDBACK_RECEIVED = "feedback_received"
    FEEDBACK_COMMENT = "feedback_comment"
    FEEDBACK_STATUS_CHANGED = "feedback_status_changed"
    PROJECT_UPDATE = "project_update"


class User(UserMixin, db.Model):
    """
    User model for identity and display profile.

    Authentication is handled by an external collaborator; this model only
    stores the identity and the mutable profile fields.
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(30), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)

    # Profile information
    display_name = db.Column(db.String(50))
    bio = db.Column(db.String(500))
    avatar = db.Column(db.String(500))
    role = _enum_column(UserRole, "userrole", default=UserRole.TESTER, nullable=False)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    owned_projects = db.relationship(
        "Project", back_populates="owner", lazy="dynamic", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User {self.username}>"

    def get_display_name(self) -> str:
        return self.display_name or self.username

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.get_display_name(),
            "avatar": self.avatar,
        }


class Project(db.Model):
    """
    Project model representing an app under beta test.

    Each project is owned by exactly one user, who also holds an approved
    OWNER membership created together with the project.
    """

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False)
    short_description = db.Column(db.String(200))
    category = db.Column(db.String(32))

    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    status = _enum_column(
        ProjectStatus, "projectstatus", default=ProjectStatus.ACTIVE, nullable=False
    )
    visibility = _enum_column(
        ProjectVisibility,
        "projectvisibility",
        default=ProjectVisibility.PUBLIC,
        nullable=False,
    )
    max_testers = db.Column(db.Integer, default=100)

    # Derived: approved non-owner memberships and feedback rows; SQL-side updates only
    tester_count = db.Column(db.Integer, default=0, nullable=False)
    feedback_count = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    owner = db.relationship("User", back_populates="owned_projects")
    memberships = db.relationship(
        "ProjectMembership",
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )
    join_requests = db.relationship(
        "JoinRequest",
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )
    feedback = db.relationship(
        "Feedback",
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )

    __table_args__ = (db.Index("ix_projects_owner_created", "owner_id", "created_at"),)

    def __repr__(self) -> str:
        return f"<Project {self.id} '{self.name}'>"

    def get_member_role(self, user_id: int):
        """
        Get the role of a user in this project.

        Args:
            user_id: ID of the user to check

        Returns:
            MemberRole if the user is the owner or an approved member, None otherwise
        """
        if self.owner_id == user_id:
            return MemberRole.OWNER

        from sqlalchemy import select

        membership = db.session.execute(
            select(ProjectMembership).where(
                ProjectMembership.project_id == self.id,
                ProjectMembership.user_id == user_id,
                ProjectMembership.status == MembershipStatus.APPROVED,
            )
        ).scalar_one_or_none()

        return membership.role if membership else None

    def has_permission(self, user_id: int, required_role: MemberRole) -> bool:
        """
        Check if a user has at least the required permission level.

        Args:
            user_id: ID of the user to check
            required_role: Minimum required role

        Returns:
            True if user has sufficient permissions, False otherwise
        """
        role = self.get_member_role(user_id)
        if not role:
            return False

        return ROLE_HIERARCHY.get(role, 0) >= ROLE_HIERARCHY.get(required_role, 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "short_description": self.short_description,
            "category": self.category,
            "owner": self.owner.to_summary() if self.owner else None,
            "status": self.status.value,
            "visibility": self.visibility.value,
            "max_testers": self.max_testers,
            "tester_count": self.tester_count,
            "feedback_count": self.feedback_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ProjectMembership(db.Model):
    """
    Resolved relationship between a user and a project.

    Created for the owner at project creation and for testers when a join
    request is approved.
    """

    __tablename__ = "project_memberships"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    status = _enum_column(
        MembershipStatus,
        "membershipstatus",
        default=MembershipStatus.PENDING,
        nullable=False,
    )
    role = _enum_column(
        MemberRole, "memberrole", default=MemberRole.TESTER, nullable=False
    )

    joined_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    project = db.relationship("Project", back_populates="memberships")
    user = db.relationship("User")

    # A user can only have one membership per project
    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="unique_project_member"),
        db.Index("ix_memberships_project_status", "project_id", "status"),
        db.Index("ix_memberships_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<ProjectMembership project={self.project_id} user={self.user_id} "
            f"role={self.role.value} status={self.status.value}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user": self.user.to_summary() if self.user else None,
            "role": self.role.value,
            "status": self.status.value,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }


class JoinRequest(db.Model):
    """
    A user's proposal to join a project, awaiting owner/admin review.

    History is append-only: a rejected request stays rejected and a new
    request row is created on resubmission.
    """

    __tablename__ = "join_requests"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    message = db.Column(db.String(500))

    status = _enum_column(
        JoinRequestStatus,
        "joinrequeststatus",
        default=JoinRequestStatus.PENDING,
        nullable=False,
    )

    reviewed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime)
    rejection_reason = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    project = db.relationship("Project", back_populates="join_requests")
    user = db.relationship("User", foreign_keys=[user_id])
    reviewed_by = db.relationship("User", foreign_keys=[reviewed_by_id])

    __table_args__ = (
        # At most one outstanding request per (project, user)
        db.Index(
            "uq_join_requests_pending",
            "project_id",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        db.Index("ix_join_requests_project_status", "project_id", "status", "created_at"),
        db.Index("ix_join_requests_user_status", "user_id", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<JoinRequest {self.id} project={self.project_id} user={self.user_id} ({self.status.value})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user": self.user.to_summary() if self.user else None,
            "message": self.message,
            "status": self.status.value,
            "reviewed_by_id": self.reviewed_by_id,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "rejection_reason": self.rejection_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Feedback(db.Model):
    """
    A bug report, suggestion or question submitted against a project.

    upvotes, downvotes and comment_count are derived counters: they always
    equal the number of FeedbackVote / FeedbackComment rows and are only ever
    changed with SQL-side increments.
    """

    __tablename__ = "feedback"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    feedback_type = _enum_column(FeedbackType, "feedbacktype", nullable=False)
    priority = _enum_column(
        FeedbackPriority,
        "feedbackpriority",
        default=FeedbackPriority.MEDIUM,
        nullable=True,
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    steps_to_reproduce = db.Column(db.Text)
    device_info = db.Column(db.JSON)

    status = _enum_column(
        FeedbackStatus,
        "feedbackstatus",
        default=FeedbackStatus.PENDING,
        nullable=False,
    )

    upvotes = db.Column(db.Integer, default=0, nullable=False)
    downvotes = db.Column(db.Integer, default=0, nullable=False)
    comment_count = db.Column(db.Integer, default=0, nullable=False)

    resolved_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    project = db.relationship("Project", back_populates="feedback")
    author = db.relationship("User")
    votes = db.relationship(
        "FeedbackVote",
        back_populates="feedback",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )
    comments = db.relationship(
        "FeedbackComment",
        back_populates="feedback",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )

    __table_args__ = (
        db.Index("ix_feedback_project_created", "project_id", "created_at"),
        db.Index("ix_feedback_user_created", "user_id", "created_at"),
        db.Index("ix_feedback_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Feedback {self.id} '{self.title}' ({self.status.value})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "author": self.author.to_summary() if self.author else None,
            "type": self.feedback_type.value,
            "priority": self.priority.value if self.priority else None,
            "title": self.title,
            "description": self.description,
            "steps_to_reproduce": self.steps_to_reproduce,
            "device_info": self.device_info,
            "status": self.status.value,
            "upvotes": self.upvotes,
            "downvotes": self.downvotes,
            "comment_count": self.comment_count,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class FeedbackVote(db.Model):
    __tablename__ = "feedback_votes"

    id = db.Column(db.Integer, primary_key=True)
    feedback_id = db.Column(db.Integer, db.ForeignKey("feedback.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    value = _enum_column(VoteValue, "votevalue", nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    feedback = db.relationship("Feedback", back_populates="votes")

    # A user can only vote once per feedback
    __table_args__ = (
        db.UniqueConstraint("feedback_id", "user_id", name="unique_feedback_vote"),
    )

    def __repr__(self) -> str:
        return f"<FeedbackVote feedback={self.feedback_id} user={self.user_id} {self.value.value}>"


class FeedbackComment(db.Model):
    __tablename__ = "feedback_comments"

    id = db.Column(db.Integer, primary_key=True)
    feedback_id = db.Column(db.Integer, db.ForeignKey("feedback.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    feedback = db.relationship("Feedback", back_populates="comments")
    author = db.relationship("User")

    __table_args__ = (
        db.Index("ix_feedback_comments_feedback_created", "feedback_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<FeedbackComment {self.id} feedback={self.feedback_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "feedback_id": self.feedback_id,
            "author": self.author.to_summary() if self.author else None,
            "content": self.content,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Notification(db.Model):
    """
    Notification model for in-app user notifications.

    Rows are write-once; only is_read/read_at ever change after creation.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)

    # Recipient
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    notification_type = _enum_column(
        NotificationType, "notificationtype", nullable=False
    )
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.String(500), nullable=False)
    data = db.Column(db.JSON, nullable=True)  # e.g. {"project_id": 1, "reason": "..."}

    # Read status
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    read_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = db.relationship(
        "User", backref=db.backref("notifications", lazy="dynamic")
    )

    # Indexes for efficient queries
    __table_args__ = (
        db.Index("ix_notifications_user_created", user_id, created_at.desc()),
        db.Index("ix_notifications_user_read", user_id, is_read),
    )

    def __repr__(self) -> str:
        return f"<Notification {self.id} {self.notification_type.value} for user {self.user_id}>"

    def to_dict(self) -> dict:
        """Convert notification to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "type": self.notification_type.value,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class PushSubscription(db.Model):
    """Web Push endpoint registered by one of a user's devices."""

    __tablename__ = "push_subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    endpoint = db.Column(db.String(500), unique=True, nullable=False)
    p256dh_key = db.Column(db.String(255), nullable=False)
    auth_key = db.Column(db.String(255), nullable=False)
    user_agent = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    last_used_at = db.Column(db.DateTime)

    user = db.relationship(
        "User",
        backref=db.backref(
            "push_subscriptions", lazy="dynamic", cascade="all, delete-orphan"
        ),
    )

    def __repr__(self) -> str:
        return f"<PushSubscription {self.id} user={self.user_id}>"
