import pytest

from betalift import create_app
from betalift.auth import issue_token
from betalift.membership import create_project
from betalift.models import (
    MemberRole,
    MembershipStatus,
    Project,
    ProjectMembership,
    User,
    UserRole,
    adjust_counters,
    db,
)
from config.settings import TestingConfig


@pytest.fixture()
def app():
    flask_app = create_app(TestingConfig)
    with flask_app.app_context():
        # Ensure a clean schema per test run
        db.drop_all()
        db.create_all()
        owner = User(username="owner", email="owner@example.com", role=UserRole.CREATOR)
        tester = User(username="tester", email="tester@example.com")
        admin = User(username="admin", email="admin@example.com")
        outsider = User(username="outsider", email="outsider@example.com")
        db.session.add_all([owner, tester, admin, outsider])
        db.session.commit()
    yield flask_app


@pytest.fixture()
def client(app):
    return app.test_client()


def _user_id(app, username):
    with app.app_context():
        return int(User.query.filter_by(username=username).one().id)


@pytest.fixture()
def owner_id(app):
    return _user_id(app, "owner")


@pytest.fixture()
def tester_id(app):
    return _user_id(app, "tester")


@pytest.fixture()
def admin_id(app):
    return _user_id(app, "admin")


@pytest.fixture()
def outsider_id(app):
    return _user_id(app, "outsider")


@pytest.fixture()
def project_id(app, owner_id, admin_id):
    """An active project owned by "owner" with "admin" as an approved admin."""
    with app.app_context():
        project = create_project(
            owner_id, name="Test Project", description="A project under beta test"
        )
        _add_member(project.id, admin_id, MemberRole.ADMIN)
        # Capture the ID while inside the app context to avoid detached instances
        return int(project.id)


@pytest.fixture()
def auth_headers(app):
    """Build Authorization headers for a user id."""

    def _headers(user_id):
        with app.app_context():
            token = issue_token(db.session.get(User, user_id))
        return {"Authorization": f"Bearer {token}"}

    return _headers


def _add_member(project_id, user_id, role=MemberRole.TESTER):
    membership = ProjectMembership(
        project_id=project_id,
        user_id=user_id,
        role=role,
        status=MembershipStatus.APPROVED,
    )
    db.session.add(membership)
    adjust_counters(Project, project_id, tester_count=1)
    db.session.commit()
    return membership


@pytest.fixture()
def add_member(app):
    """Insert an approved membership directly, bypassing the join workflow."""

    def _add(project_id, user_id, role=MemberRole.TESTER):
        with app.app_context():
            return int(_add_member(project_id, user_id, role).id)

    return _add
