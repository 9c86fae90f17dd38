#!/usr/bin/env python3
"""
Database initialization script for BetaLift.

This script creates the database tables and optionally adds sample data
(a creator, two testers, a project with one approved tester and one pending
join request, and a piece of feedback) for local development.
"""
from betalift import create_app
from betalift import feedback as lifecycle
from betalift import membership
from betalift.models import Project, User, UserRole, db
from config.settings import DevelopmentConfig


def init_db(drop_existing=False):
    """
    Initialize the database with tables.

    Args:
        drop_existing: Whether to drop existing tables first
    """
    app = create_app(DevelopmentConfig)

    with app.app_context():
        if drop_existing:
            print("Dropping existing tables...")
            db.drop_all()

        print("Creating database tables...")
        db.create_all()

        print("Database initialized successfully!")


def _get_or_create_user(username: str, role: UserRole) -> User:
    user = User.query.filter_by(username=username).first()
    if not user:
        user = User(
            username=username,
            email=f"{username}@betalift.dev",
            display_name=username.capitalize(),
            role=role,
        )
        db.session.add(user)
        db.session.commit()
        print(f"User created: {username}")
    return user


def create_sample_data():
    """Create sample data for development."""
    app = create_app(DevelopmentConfig)

    with app.app_context():
        creator = _get_or_create_user("creator", UserRole.CREATOR)
        alice = _get_or_create_user("alice", UserRole.TESTER)
        bob = _get_or_create_user("bob", UserRole.TESTER)

        if Project.query.filter_by(name="Sample App").first():
            print("Sample project already exists, skipping.")
            return

        project = membership.create_project(
            creator.id,
            name="Sample App",
            description="A sample beta project for trying out the API",
            short_description="Sample beta",
            category="productivity",
        )

        accepted = membership.request_to_join(project.id, alice.id, "Happy to help!")
        membership.review_join_request(accepted.id, creator.id, "approve")
        membership.request_to_join(project.id, bob.id, "I test on Android")

        lifecycle.submit_feedback(
            project.id,
            alice.id,
            "bug",
            "Crash on launch",
            "The app closes right after the splash screen.",
            priority="high",
            device_info={"platform": "ios", "os_version": "17.4"},
        )
        print("Sample project created!")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Initialize BetaLift database")
    parser.add_argument(
        "--drop", action="store_true", help="Drop existing tables first"
    )
    parser.add_argument("--sample", action="store_true", help="Create sample data")
    parser.add_argument("--all", action="store_true", help="Initialize everything")

    args = parser.parse_args()

    if args.all:
        init_db(drop_existing=True)
        create_sample_data()
    else:
        if args.drop or not any(vars(args).values()):
            init_db(drop_existing=args.drop)

        if args.sample:
            create_sample_data()

    print("\nDatabase setup complete!")
    print("\nTo start the application:")
    print("  python main.py")
    print("\nTo start Celery worker:")
    print("  celery -A betalift.tasks.celery_app worker --beat --loglevel=info")
