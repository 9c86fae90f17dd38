"""Tests for the feedback lifecycle: submission, status, votes and comments."""
import threading
from unittest.mock import patch

import pytest
from sqlalchemy import update

from betalift import create_app
from betalift import feedback as lifecycle
from betalift.errors import Conflict, Forbidden, NotFound, ValidationError
from betalift.feedback import VoteAction
from betalift.maintenance import reconcile_feedback_counters, reconcile_project_counters
from betalift.membership import create_project
from betalift.models import (
    Feedback,
    FeedbackComment,
    FeedbackPriority,
    FeedbackStatus,
    FeedbackVote,
    Notification,
    NotificationType,
    Project,
    User,
    VoteValue,
    adjust_counters,
    db,
)
from config.settings import TestingConfig


@pytest.fixture()
def feedback_id(app, project_id, tester_id, add_member):
    """A pending bug report written by an approved tester."""
    add_member(project_id, tester_id)
    with app.app_context():
        item = lifecycle.submit_feedback(
            project_id,
            tester_id,
            "bug",
            "Crash on launch",
            "The app closes right after the splash screen.",
        )
        return int(item.id)


def _counters(feedback_id):
    item = db.session.get(Feedback, feedback_id)
    db.session.refresh(item)
    return item.upvotes, item.downvotes, item.comment_count


def _set_status(feedback_id, status):
    item = db.session.get(Feedback, feedback_id)
    item.status = status
    db.session.commit()


class TestSubmitFeedback:
    """Test feedback submission."""

    def test_member_submission_starts_pending(
        self, app, feedback_id, owner_id, tester_id
    ):
        """Should store pending feedback with zeroed counters and notify the owner."""
        with app.app_context():
            item = db.session.get(Feedback, feedback_id)
            assert item.status == FeedbackStatus.PENDING
            assert item.priority == FeedbackPriority.MEDIUM
            assert (item.upvotes, item.downvotes, item.comment_count) == (0, 0, 0)
            assert item.user_id == tester_id

            received = Notification.query.filter_by(
                user_id=owner_id, notification_type=NotificationType.FEEDBACK_RECEIVED
            ).all()
            assert len(received) == 1
            assert received[0].data["feedback_id"] == feedback_id

    def test_owner_submission_does_not_notify_self(self, app, project_id, owner_id):
        with app.app_context():
            lifecycle.submit_feedback(
                project_id, owner_id, "feature", "Dark mode", "Please add it"
            )
            assert (
                Notification.query.filter_by(
                    notification_type=NotificationType.FEEDBACK_RECEIVED
                ).count()
                == 0
            )

    def test_description_over_limit_is_rejected(
        self, app, project_id, tester_id, add_member
    ):
        """A 5001-character description fails validation and stores nothing."""
        add_member(project_id, tester_id)
        with app.app_context():
            with pytest.raises(ValidationError):
                lifecycle.submit_feedback(
                    project_id, tester_id, "bug", "Too long", "d" * 5001
                )
            assert Feedback.query.count() == 0

    def test_description_at_limit_is_accepted(
        self, app, project_id, tester_id, add_member
    ):
        add_member(project_id, tester_id)
        with app.app_context():
            item = lifecycle.submit_feedback(
                project_id, tester_id, "bug", "Long", "d" * 5000
            )
            assert len(item.description) == 5000

    def test_non_member_cannot_submit(self, app, project_id, outsider_id):
        with app.app_context():
            with pytest.raises(ValidationError):
                lifecycle.submit_feedback(
                    project_id, outsider_id, "bug", "Title", "Description"
                )

    def test_unknown_type_is_rejected(self, app, project_id, owner_id):
        with app.app_context():
            with pytest.raises(ValidationError):
                lifecycle.submit_feedback(
                    project_id, owner_id, "complaint", "Title", "Description"
                )

    def test_device_platform_is_validated(self, app, project_id, owner_id):
        with app.app_context():
            with pytest.raises(ValidationError):
                lifecycle.submit_feedback(
                    project_id,
                    owner_id,
                    "bug",
                    "Title",
                    "Description",
                    device_info={"platform": "windows-phone"},
                )
            item = lifecycle.submit_feedback(
                project_id,
                owner_id,
                "bug",
                "Title",
                "Description",
                device_info={"platform": "android", "os_version": "14"},
            )
            assert item.device_info["os_version"] == "14"

    def test_missing_project(self, app, owner_id):
        with app.app_context():
            with pytest.raises(NotFound):
                lifecycle.submit_feedback(9999, owner_id, "bug", "Title", "Body")


class TestTransitionStatus:
    """Test the feedback status workflow."""

    def test_resolve_stamps_and_reopen_clears_resolved_at(
        self, app, feedback_id, owner_id
    ):
        with app.app_context():
            lifecycle.transition_status(feedback_id, owner_id, "open")
            resolved = lifecycle.transition_status(feedback_id, owner_id, "resolved")
            assert resolved.status == FeedbackStatus.RESOLVED
            assert resolved.resolved_at is not None

            reopened = lifecycle.transition_status(feedback_id, owner_id, "open")
            assert reopened.status == FeedbackStatus.OPEN
            assert reopened.resolved_at is None

    def test_closed_is_terminal(self, app, feedback_id, owner_id):
        """closed -> open is rejected and the status is unchanged."""
        with app.app_context():
            lifecycle.transition_status(feedback_id, owner_id, "closed")
            with pytest.raises(Conflict):
                lifecycle.transition_status(feedback_id, owner_id, "open")
            assert db.session.get(Feedback, feedback_id).status == FeedbackStatus.CLOSED

    def test_pending_cannot_jump_to_resolved(self, app, feedback_id, owner_id):
        with app.app_context():
            with pytest.raises(Conflict):
                lifecycle.transition_status(feedback_id, owner_id, "resolved")

    def test_hyphenated_status_values(self, app, feedback_id, admin_id):
        with app.app_context():
            lifecycle.transition_status(feedback_id, admin_id, "open")
            item = lifecycle.transition_status(feedback_id, admin_id, "in-progress")
            assert item.status == FeedbackStatus.IN_PROGRESS
            item = lifecycle.transition_status(feedback_id, admin_id, "wont-fix")
            assert item.status == FeedbackStatus.WONT_FIX

    def test_unknown_status_is_validation_error(self, app, feedback_id, owner_id):
        with app.app_context():
            with pytest.raises(ValidationError):
                lifecycle.transition_status(feedback_id, owner_id, "done")

    def test_tester_cannot_change_status(self, app, feedback_id, tester_id):
        with app.app_context():
            with pytest.raises(Forbidden):
                lifecycle.transition_status(feedback_id, tester_id, "open")

    def test_author_is_notified(self, app, feedback_id, owner_id, tester_id):
        with app.app_context():
            lifecycle.transition_status(feedback_id, owner_id, "open")
            changed = Notification.query.filter_by(
                user_id=tester_id,
                notification_type=NotificationType.FEEDBACK_STATUS_CHANGED,
            ).one()
            assert changed.data["old_status"] == "pending"
            assert changed.data["new_status"] == "open"

    def test_every_transition_follows_the_table(self, app, feedback_id, owner_id):
        """Should accept exactly the moves listed in TRANSITIONS."""
        with app.app_context():
            for source, targets in lifecycle.TRANSITIONS.items():
                for target in FeedbackStatus:
                    _set_status(feedback_id, source)
                    if target in targets:
                        item = lifecycle.transition_status(
                            feedback_id, owner_id, target.value
                        )
                        assert item.status == target
                    else:
                        with pytest.raises(Conflict):
                            lifecycle.transition_status(
                                feedback_id, owner_id, target.value
                            )


class TestVote:
    """Test idempotent voting."""

    def test_repeated_upvote_counts_once(self, app, feedback_id, admin_id):
        with app.app_context():
            assert lifecycle.vote(feedback_id, admin_id, "up") == VoteAction.ADDED
            assert lifecycle.vote(feedback_id, admin_id, "up") == VoteAction.UNCHANGED
            assert _counters(feedback_id)[:2] == (1, 0)
            assert FeedbackVote.query.filter_by(feedback_id=feedback_id).count() == 1

    def test_flip_moves_one_count(self, app, feedback_id, admin_id, outsider_id):
        with app.app_context():
            lifecycle.vote(feedback_id, admin_id, "up")
            lifecycle.vote(feedback_id, outsider_id, "up")
            assert lifecycle.vote(feedback_id, admin_id, "down") == VoteAction.CHANGED
            assert _counters(feedback_id)[:2] == (1, 1)

            vote_row = FeedbackVote.query.filter_by(
                feedback_id=feedback_id, user_id=admin_id
            ).one()
            assert vote_row.value == VoteValue.DOWN

    def test_retract_vote(self, app, feedback_id, admin_id):
        with app.app_context():
            lifecycle.vote(feedback_id, admin_id, "down")
            assert lifecycle.retract_vote(feedback_id, admin_id) is True
            assert _counters(feedback_id)[:2] == (0, 0)
            assert lifecycle.retract_vote(feedback_id, admin_id) is False

    def test_invalid_vote_value(self, app, feedback_id, admin_id):
        with app.app_context():
            with pytest.raises(ValidationError):
                lifecycle.vote(feedback_id, admin_id, "sideways")

    def test_missing_feedback(self, app, admin_id):
        with app.app_context():
            with pytest.raises(NotFound):
                lifecycle.vote(9999, admin_id, "up")

    def test_lost_insert_race_retries_as_update(self, app, feedback_id, admin_id):
        """Should recover from a concurrent first vote hitting the unique constraint."""
        with app.app_context():
            lifecycle.vote(feedback_id, admin_id, "up")

            real_get_vote = lifecycle._get_vote
            calls = []

            def stale_then_real(fid, uid):
                calls.append(uid)
                # First read misses the row another request just inserted
                if len(calls) == 1:
                    return None
                return real_get_vote(fid, uid)

            with patch("betalift.feedback._get_vote", side_effect=stale_then_real):
                action = lifecycle.vote(feedback_id, admin_id, "down")

            assert action == VoteAction.CHANGED
            assert len(calls) == 2
            assert _counters(feedback_id)[:2] == (0, 1)
            assert FeedbackVote.query.filter_by(feedback_id=feedback_id).count() == 1

    def test_lost_flip_race_rereads_the_vote(self, app, feedback_id, admin_id):
        """Should retry when the vote row changed between the read and the flip."""
        with app.app_context():
            lifecycle.vote(feedback_id, admin_id, "up")

            real_get_vote = lifecycle._get_vote
            calls = []

            def flipped_underneath(fid, uid):
                calls.append(uid)
                current = real_get_vote(fid, uid)
                if len(calls) > 1:
                    return current
                vote_id = current.id
                # A parallel request flips the same vote to down and commits first
                db.session.execute(
                    update(FeedbackVote)
                    .where(FeedbackVote.id == vote_id)
                    .values(value=VoteValue.DOWN)
                    .execution_options(synchronize_session=False)
                )
                adjust_counters(Feedback, fid, upvotes=-1, downvotes=1)
                db.session.commit()
                return FeedbackVote(
                    id=vote_id, feedback_id=fid, user_id=uid, value=VoteValue.UP
                )

            with patch("betalift.feedback._get_vote", side_effect=flipped_underneath):
                action = lifecycle.vote(feedback_id, admin_id, "down")

            assert action == VoteAction.UNCHANGED
            assert len(calls) == 2
            assert _counters(feedback_id)[:2] == (0, 1)


class TestComments:
    """Test comments and the comment counter."""

    def test_comment_count_matches_comments(self, app, feedback_id, owner_id, admin_id):
        with app.app_context():
            for i in range(3):
                lifecycle.comment(feedback_id, owner_id, f"Looking into it ({i})")
            lifecycle.comment(feedback_id, admin_id, "Reproduced on Android")

            assert _counters(feedback_id)[2] == 4
            assert FeedbackComment.query.filter_by(feedback_id=feedback_id).count() == 4

    def test_comment_notifies_author_but_not_self(
        self, app, feedback_id, owner_id, tester_id
    ):
        with app.app_context():
            lifecycle.comment(feedback_id, owner_id, "Thanks!")
            lifecycle.comment(feedback_id, tester_id, "No problem")

            comments = Notification.query.filter_by(
                notification_type=NotificationType.FEEDBACK_COMMENT
            ).all()
            assert len(comments) == 1
            assert comments[0].user_id == tester_id

    def test_blank_and_oversized_comments(self, app, feedback_id, owner_id):
        with app.app_context():
            with pytest.raises(ValidationError):
                lifecycle.comment(feedback_id, owner_id, "   ")
            with pytest.raises(ValidationError):
                lifecycle.comment(feedback_id, owner_id, "c" * 2001)
            assert _counters(feedback_id)[2] == 0

    def test_list_comments_oldest_first(self, app, feedback_id, owner_id):
        with app.app_context():
            first = lifecycle.comment(feedback_id, owner_id, "first").id
            second = lifecycle.comment(feedback_id, owner_id, "second").id
            assert [c.id for c in lifecycle.list_comments(feedback_id)] == [
                first,
                second,
            ]

    def test_author_deletes_comment(self, app, feedback_id, tester_id):
        with app.app_context():
            comment_id = lifecycle.comment(feedback_id, tester_id, "oops").id
            lifecycle.delete_comment(comment_id, tester_id)
            assert _counters(feedback_id)[2] == 0
            assert db.session.get(FeedbackComment, comment_id) is None

    def test_admin_deletes_others_comment(self, app, feedback_id, tester_id, admin_id):
        with app.app_context():
            comment_id = lifecycle.comment(feedback_id, tester_id, "spam").id
            lifecycle.delete_comment(comment_id, admin_id)
            assert _counters(feedback_id)[2] == 0

    def test_outsider_cannot_delete(self, app, feedback_id, tester_id, outsider_id):
        with app.app_context():
            comment_id = lifecycle.comment(feedback_id, tester_id, "mine").id
            with pytest.raises(Forbidden):
                lifecycle.delete_comment(comment_id, outsider_id)
            assert _counters(feedback_id)[2] == 1


class TestListFeedback:
    """Test filtering, sorting and paging of feedback."""

    @pytest.fixture()
    def three_items(self, app, project_id, owner_id, admin_id):
        with app.app_context():
            low = lifecycle.submit_feedback(
                project_id, owner_id, "bug", "Low", "body", priority="low"
            ).id
            critical = lifecycle.submit_feedback(
                project_id, owner_id, "feature", "Critical", "body", priority="critical"
            ).id
            medium = lifecycle.submit_feedback(
                project_id, admin_id, "bug", "Medium", "body"
            ).id
            lifecycle.vote(low, admin_id, "up")
            lifecycle.vote(low, owner_id, "up")
            lifecycle.vote(medium, owner_id, "up")
            return low, critical, medium

    def test_default_sort_is_newest_first(self, app, project_id, three_items):
        low, critical, medium = three_items
        with app.app_context():
            page = lifecycle.list_feedback(project_id)
            assert [f.id for f in page.items] == [medium, critical, low]
            assert page.total == 3

    def test_sort_by_upvotes(self, app, project_id, three_items):
        low, critical, medium = three_items
        with app.app_context():
            page = lifecycle.list_feedback(project_id, sort="upvotes")
            assert [f.id for f in page.items] == [low, medium, critical]

    def test_sort_by_priority(self, app, project_id, three_items):
        low, critical, medium = three_items
        with app.app_context():
            page = lifecycle.list_feedback(project_id, sort="priority")
            assert [f.id for f in page.items] == [critical, medium, low]

    def test_filters(self, app, project_id, admin_id, three_items):
        low, critical, medium = three_items
        with app.app_context():
            bugs = lifecycle.list_feedback(project_id, type="bug")
            assert {f.id for f in bugs.items} == {low, medium}

            several = lifecycle.list_feedback(project_id, priority="low,critical")
            assert {f.id for f in several.items} == {low, critical}

            by_author = lifecycle.list_feedback(project_id, author_id=admin_id)
            assert [f.id for f in by_author.items] == [medium]

            pending = lifecycle.list_feedback(project_id, status=["pending"])
            assert pending.total == 3

    def test_paging(self, app, project_id, three_items):
        with app.app_context():
            page = lifecycle.list_feedback(project_id, page=2, per_page=2)
            assert page.total == 3
            assert len(page.items) == 1
            assert page.has_next is False

    def test_invalid_sort(self, app, project_id):
        with app.app_context():
            with pytest.raises(ValidationError):
                lifecycle.list_feedback(project_id, sort="random")


class TestDeleteFeedback:
    """Test feedback deletion and the project feedback counter."""

    def _feedback_count(self, project_id):
        project = db.session.get(Project, project_id)
        db.session.refresh(project)
        return project.feedback_count

    def test_submit_bumps_project_feedback_count(self, app, project_id, feedback_id):
        with app.app_context():
            assert self._feedback_count(project_id) == 1

    def test_author_deletes_with_votes_and_comments(
        self, app, project_id, feedback_id, tester_id, admin_id, owner_id
    ):
        with app.app_context():
            lifecycle.vote(feedback_id, admin_id, "up")
            lifecycle.comment(feedback_id, owner_id, "Can you share logs?")

            lifecycle.delete_feedback(feedback_id, tester_id)

            assert db.session.get(Feedback, feedback_id) is None
            assert FeedbackVote.query.filter_by(feedback_id=feedback_id).count() == 0
            assert FeedbackComment.query.filter_by(feedback_id=feedback_id).count() == 0
            assert self._feedback_count(project_id) == 0
            assert reconcile_project_counters() == []

    def test_admin_may_delete(self, app, project_id, feedback_id, admin_id):
        with app.app_context():
            lifecycle.delete_feedback(feedback_id, admin_id)
            assert self._feedback_count(project_id) == 0

    def test_outsider_is_forbidden(self, app, project_id, feedback_id, outsider_id):
        with app.app_context():
            with pytest.raises(Forbidden):
                lifecycle.delete_feedback(feedback_id, outsider_id)
            assert db.session.get(Feedback, feedback_id) is not None
            assert self._feedback_count(project_id) == 1

    def test_missing_feedback(self, app, owner_id):
        with app.app_context():
            with pytest.raises(NotFound):
                lifecycle.delete_feedback(9999, owner_id)


class TestConcurrentComments:
    """Comment counts under parallel writers on a shared database file."""

    WRITERS = 8

    def test_comment_count_matches_parallel_writers(self, tmp_path):
        config = type(
            "FileDatabaseConfig",
            (TestingConfig,),
            {"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'betalift.db'}"},
        )
        file_app = create_app(config)

        with file_app.app_context():
            db.create_all()
            author = User(username="author", email="author@example.com")
            db.session.add(author)
            db.session.commit()
            author_id = author.id
            project = create_project(
                author_id, name="Race", description="Parallel comment writers"
            )
            feedback_id = lifecycle.submit_feedback(
                project.id, author_id, "bug", "Race", "Many comments at once"
            ).id

        errors = []

        def write_comment(n):
            try:
                with file_app.app_context():
                    lifecycle.comment(feedback_id, author_id, f"Comment {n}")
            except Exception as exc:
                errors.append(exc)

        threads = [
            threading.Thread(target=write_comment, args=(n,))
            for n in range(self.WRITERS)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        with file_app.app_context():
            try:
                assert errors == []
                assert _counters(feedback_id)[2] == self.WRITERS
                assert (
                    FeedbackComment.query.filter_by(feedback_id=feedback_id).count()
                    == self.WRITERS
                )
                assert reconcile_feedback_counters() == []
            finally:
                db.session.remove()
                db.drop_all()
                db.engine.dispose()
