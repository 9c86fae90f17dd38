"""
Project permission checking utilities.

This module provides helper functions for enforcing role-based access on
projects. Checks take the acting user's id explicitly so workflow functions
can be called from API handlers, Celery tasks and tests alike.
"""

from sqlalchemy import select

from betalift.errors import Forbidden, NotFound
from betalift.models import MemberRole, Project, db


def get_project_or_404(project_id: int) -> Project:
    """
    Load a project or raise NotFound.

    Args:
        project_id: ID of the project

    Returns:
        Project instance

    Raises:
        NotFound: If no project has this id
    """
    project = db.session.execute(
        select(Project).where(Project.id == project_id)
    ).scalar_one_or_none()
    if not project:
        raise NotFound("Project not found", project_id=project_id)
    return project


def check_project_role(project: Project, user_id: int, required_role: MemberRole):
    """
    Ensure a user holds at least ``required_role`` on a project.

    Args:
        project: Project instance to check access for
        user_id: ID of the acting user
        required_role: Minimum required member role

    Returns:
        MemberRole: The user's effective role

    Raises:
        Forbidden: If the user's role is missing or insufficient
    """
    if not project.has_permission(user_id, required_role):
        raise Forbidden(
            "Insufficient permissions for this project",
            project_id=project.id,
            user_id=user_id,
            required_role=required_role.value,
        )
    return project.get_member_role(user_id)


def can_manage_project(project: Project, user_id: int) -> bool:
    """Owner or admin: may review join requests, manage members and feedback status."""
    return project.has_permission(user_id, MemberRole.ADMIN)


def is_project_member(project: Project, user_id: int) -> bool:
    """Owner or approved member of any role."""
    return project.get_member_role(user_id) is not None


def can_remove_member(
    project: Project, acting_user_id: int, target_user_id: int
) -> bool:
    """
    Check if a user can remove another member from a project.

    Rules:
    - The owner can never be removed
    - Anyone can remove themselves (leave)
    - The owner can remove anyone else
    - Admins can remove testers, but not other admins

    Args:
        project: Project instance
        acting_user_id: ID of the user performing the removal
        target_user_id: ID of the member being removed

    Returns:
        bool: True if the removal is allowed
    """
    if target_user_id == project.owner_id:
        return False

    if acting_user_id == target_user_id:
        return True

    acting_role = project.get_member_role(acting_user_id)
    if acting_role == MemberRole.OWNER:
        return True

    if acting_role == MemberRole.ADMIN:
        return project.get_member_role(target_user_id) != MemberRole.ADMIN

    return False
