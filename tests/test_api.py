"""End-to-end tests for the JSON API."""
from unittest.mock import patch

from betalift.models import Feedback, JoinRequest, db


def _join(client, project_id, headers, message="Let me in"):
    return client.post(
        f"/api/projects/{project_id}/join", json={"message": message}, headers=headers
    )


class TestHealth:
    def test_health_endpoint(self, client):
        """Should answer without authentication."""
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["database"] == "ok"
        assert resp.headers.get("X-Request-ID")

    def test_request_id_is_echoed(self, client):
        resp = client.get("/api/health", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"


class TestAuthentication:
    def test_missing_token_is_401(self, client, project_id):
        resp = _join(client, project_id, headers={})
        assert resp.status_code == 401
        assert resp.get_json() == {"success": False, "error": "Authentication required"}

    def test_bad_token_is_401(self, client, project_id):
        resp = _join(client, project_id, headers={"Authorization": "Bearer forged"})
        assert resp.status_code == 401

    def test_public_reads_need_no_token(self, client, project_id):
        resp = client.get(f"/api/projects/{project_id}")
        assert resp.status_code == 200
        assert resp.get_json()["data"]["id"] == project_id


class TestProjectEndpoints:
    """Test project creation and the join request flow over HTTP."""

    def test_create_project(self, client, owner_id, auth_headers):
        resp = client.post(
            "/api/projects",
            json={"name": "New App", "description": "Fresh beta", "category": "games"},
            headers=auth_headers(owner_id),
        )
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["name"] == "New App"
        assert data["status"] == "active"

    def test_create_project_validation_error(self, client, owner_id, auth_headers):
        resp = client.post(
            "/api/projects", json={"name": "", "description": "x"}, headers=auth_headers(owner_id)
        )
        assert resp.status_code == 400
        assert resp.get_json()["success"] is False

    def test_non_string_join_message_is_rejected(
        self, client, project_id, tester_id, auth_headers
    ):
        resp = _join(client, project_id, auth_headers(tester_id), message=12345)
        assert resp.status_code == 400
        assert resp.get_json()["success"] is False

    def test_join_and_approve_flow(
        self, client, app, project_id, owner_id, tester_id, auth_headers
    ):
        resp = _join(client, project_id, auth_headers(tester_id))
        assert resp.status_code == 201
        request_id = resp.get_json()["data"]["id"]
        assert resp.get_json()["data"]["status"] == "pending"

        # Duplicate while pending
        resp = _join(client, project_id, auth_headers(tester_id))
        assert resp.status_code == 409

        resp = client.get(
            f"/api/projects/{project_id}/requests", headers=auth_headers(owner_id)
        )
        assert resp.status_code == 200
        assert [r["id"] for r in resp.get_json()["data"]["items"]] == [request_id]

        resp = client.patch(
            f"/api/projects/{project_id}/requests/{request_id}",
            json={"decision": "approve"},
            headers=auth_headers(owner_id),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["status"] == "approved"

        # Second review loses
        resp = client.patch(
            f"/api/projects/{project_id}/requests/{request_id}",
            json={"decision": "reject"},
            headers=auth_headers(owner_id),
        )
        assert resp.status_code == 409

        resp = client.get(f"/api/projects/{project_id}/members")
        user_ids = [m["user"]["id"] for m in resp.get_json()["data"]["items"]]
        assert tester_id in user_ids

        resp = client.get("/api/notifications", headers=auth_headers(tester_id))
        types = [n["type"] for n in resp.get_json()["data"]["notifications"]]
        assert types == ["project_joined"]

    def test_reject_with_status_alias(
        self, client, project_id, owner_id, tester_id, auth_headers
    ):
        request_id = _join(client, project_id, auth_headers(tester_id)).get_json()[
            "data"
        ]["id"]
        resp = client.patch(
            f"/api/projects/{project_id}/requests/{request_id}",
            json={"status": "rejected", "rejection_reason": "Android only"},
            headers=auth_headers(owner_id),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["rejection_reason"] == "Android only"

        resp = client.get("/api/notifications", headers=auth_headers(tester_id))
        rejected = resp.get_json()["data"]["notifications"][0]
        assert rejected["type"] == "project_join_rejected"
        assert rejected["data"]["reason"] == "Android only"

    def test_review_requires_admin(
        self, client, project_id, tester_id, outsider_id, auth_headers
    ):
        request_id = _join(client, project_id, auth_headers(tester_id)).get_json()[
            "data"
        ]["id"]
        resp = client.patch(
            f"/api/projects/{project_id}/requests/{request_id}",
            json={"decision": "approve"},
            headers=auth_headers(outsider_id),
        )
        assert resp.status_code == 403

    def test_review_request_from_other_project_is_404(
        self, client, app, project_id, owner_id, tester_id, auth_headers
    ):
        request_id = _join(client, project_id, auth_headers(tester_id)).get_json()[
            "data"
        ]["id"]
        resp = client.patch(
            f"/api/projects/{project_id + 1}/requests/{request_id}",
            json={"decision": "approve"},
            headers=auth_headers(owner_id),
        )
        assert resp.status_code == 404
        with app.app_context():
            assert db.session.get(JoinRequest, request_id).status.value == "pending"

    def test_member_role_and_removal(
        self, client, project_id, owner_id, tester_id, auth_headers, add_member
    ):
        add_member(project_id, tester_id)

        resp = client.patch(
            f"/api/projects/{project_id}/members/{tester_id}",
            json={"role": "admin"},
            headers=auth_headers(owner_id),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["role"] == "admin"

        resp = client.delete(
            f"/api/projects/{project_id}/members/{owner_id}",
            headers=auth_headers(tester_id),
        )
        assert resp.status_code == 403

        resp = client.post(
            f"/api/projects/{project_id}/leave", headers=auth_headers(tester_id)
        )
        assert resp.status_code == 200

        resp = client.delete(
            f"/api/projects/{project_id}/members/{tester_id}",
            headers=auth_headers(owner_id),
        )
        assert resp.status_code == 404


class TestFeedbackEndpoints:
    """Test feedback, votes and comments over HTTP."""

    def _submit(self, client, project_id, headers, **overrides):
        body = {
            "type": "bug",
            "title": "Crash on save",
            "description": "Saving a draft crashes the app",
            "device_info": {"platform": "ios"},
        }
        body.update(overrides)
        return client.post(f"/api/projects/{project_id}/feedback", json=body, headers=headers)

    def test_submit_vote_comment_and_transition(
        self, client, app, project_id, owner_id, admin_id, tester_id, auth_headers, add_member
    ):
        add_member(project_id, tester_id)
        resp = self._submit(client, project_id, auth_headers(tester_id))
        assert resp.status_code == 201
        feedback_id = resp.get_json()["data"]["id"]
        assert resp.get_json()["data"]["type"] == "bug"

        resp = client.post(
            f"/api/feedback/{feedback_id}/vote",
            json={"value": "up"},
            headers=auth_headers(admin_id),
        )
        assert resp.get_json()["data"] == {"action": "added", "upvotes": 1, "downvotes": 0}

        resp = client.post(
            f"/api/feedback/{feedback_id}/vote",
            json={"type": "up"},
            headers=auth_headers(admin_id),
        )
        assert resp.get_json()["data"]["action"] == "unchanged"
        assert resp.get_json()["data"]["upvotes"] == 1

        resp = client.post(
            f"/api/feedback/{feedback_id}/vote",
            json={"value": "down"},
            headers=auth_headers(admin_id),
        )
        assert resp.get_json()["data"] == {"action": "changed", "upvotes": 0, "downvotes": 1}

        resp = client.delete(
            f"/api/feedback/{feedback_id}/vote", headers=auth_headers(admin_id)
        )
        assert resp.get_json()["data"] == {"removed": True, "upvotes": 0, "downvotes": 0}

        for i in range(3):
            resp = client.post(
                f"/api/feedback/{feedback_id}/comments",
                json={"content": f"note {i}"},
                headers=auth_headers(owner_id),
            )
            assert resp.status_code == 201

        resp = client.get(f"/api/feedback/{feedback_id}/comments")
        assert [c["content"] for c in resp.get_json()["data"]] == [
            "note 0",
            "note 1",
            "note 2",
        ]
        assert client.get(f"/api/feedback/{feedback_id}").get_json()["data"][
            "comment_count"
        ] == 3

        resp = client.patch(
            f"/api/feedback/{feedback_id}/status",
            json={"status": "closed"},
            headers=auth_headers(owner_id),
        )
        assert resp.status_code == 200
        resp = client.patch(
            f"/api/feedback/{feedback_id}/status",
            json={"status": "open"},
            headers=auth_headers(owner_id),
        )
        assert resp.status_code == 409
        with app.app_context():
            assert db.session.get(Feedback, feedback_id).status.value == "closed"

    def test_oversized_description_is_400(
        self, client, project_id, owner_id, auth_headers
    ):
        resp = self._submit(
            client, project_id, auth_headers(owner_id), description="x" * 5001
        )
        assert resp.status_code == 400
        assert "5000" in resp.get_json()["error"]

    def test_non_member_submission_is_400(
        self, client, project_id, outsider_id, auth_headers
    ):
        resp = self._submit(client, project_id, auth_headers(outsider_id))
        assert resp.status_code == 400

    def test_list_filters_and_sort(self, client, project_id, owner_id, auth_headers):
        headers = auth_headers(owner_id)
        self._submit(client, project_id, headers, priority="low")
        self._submit(client, project_id, headers, type="feature", priority="critical")

        resp = client.get(
            f"/api/projects/{project_id}/feedback?sort=priority&limit=1"
        )
        data = resp.get_json()["data"]
        assert data["total"] == 2
        assert data["per_page"] == 1
        assert data["items"][0]["priority"] == "critical"

        resp = client.get(f"/api/projects/{project_id}/feedback?type=bug")
        assert resp.get_json()["data"]["total"] == 1

        resp = client.get(f"/api/projects/{project_id}/feedback?user_id=abc")
        assert resp.status_code == 400

    def test_comment_on_other_feedback_is_404(
        self, client, project_id, owner_id, auth_headers
    ):
        headers = auth_headers(owner_id)
        first = self._submit(client, project_id, headers).get_json()["data"]["id"]
        second = self._submit(client, project_id, headers).get_json()["data"]["id"]
        comment_id = client.post(
            f"/api/feedback/{first}/comments", json={"content": "hi"}, headers=headers
        ).get_json()["data"]["id"]

        resp = client.delete(
            f"/api/feedback/{second}/comments/{comment_id}", headers=headers
        )
        assert resp.status_code == 404

        resp = client.delete(
            f"/api/feedback/{first}/comments/{comment_id}", headers=headers
        )
        assert resp.status_code == 200

    def test_delete_feedback(
        self, client, project_id, owner_id, tester_id, auth_headers
    ):
        headers = auth_headers(owner_id)
        feedback_id = self._submit(client, project_id, headers).get_json()["data"]["id"]

        resp = client.delete(
            f"/api/feedback/{feedback_id}", headers=auth_headers(tester_id)
        )
        assert resp.status_code == 403

        resp = client.delete(f"/api/feedback/{feedback_id}", headers=headers)
        assert resp.status_code == 200
        assert client.get(f"/api/feedback/{feedback_id}", headers=headers).status_code == 404

        project = client.get(f"/api/projects/{project_id}", headers=headers).get_json()
        assert project["data"]["feedback_count"] == 0


class TestNotificationEndpoints:
    def test_unread_count_and_read_all(
        self, client, project_id, owner_id, tester_id, outsider_id, auth_headers
    ):
        _join(client, project_id, auth_headers(tester_id))
        _join(client, project_id, auth_headers(outsider_id))
        headers = auth_headers(owner_id)

        resp = client.get("/api/notifications/unread-count", headers=headers)
        assert resp.get_json()["data"]["count"] == 2

        listed = client.get("/api/notifications?limit=1", headers=headers).get_json()
        assert listed["data"]["total"] == 1
        assert listed["data"]["unread_count"] == 2
        notification_id = listed["data"]["notifications"][0]["id"]

        resp = client.post(
            f"/api/notifications/{notification_id}/read", headers=headers
        )
        assert resp.get_json()["data"]["is_read"] is True

        resp = client.post(
            f"/api/notifications/{notification_id}/read",
            headers=auth_headers(tester_id),
        )
        assert resp.status_code == 403

        resp = client.post("/api/notifications/read-all", headers=headers)
        assert resp.get_json()["data"]["updated"] == 1

        resp = client.get("/api/notifications?unread_only=true", headers=headers)
        assert resp.get_json()["data"]["notifications"] == []

    def test_delete_one_and_all(
        self, client, project_id, owner_id, tester_id, outsider_id, auth_headers
    ):
        _join(client, project_id, auth_headers(tester_id))
        _join(client, project_id, auth_headers(outsider_id))
        headers = auth_headers(owner_id)
        listed = client.get("/api/notifications", headers=headers).get_json()
        notification_id = listed["data"]["notifications"][0]["id"]

        resp = client.delete(
            f"/api/notifications/{notification_id}", headers=auth_headers(tester_id)
        )
        assert resp.status_code == 403

        resp = client.delete(f"/api/notifications/{notification_id}", headers=headers)
        assert resp.status_code == 200

        resp = client.delete("/api/notifications", headers=headers)
        assert resp.get_json()["data"]["deleted"] == 1

        resp = client.get("/api/notifications/unread-count", headers=headers)
        assert resp.get_json()["data"]["count"] == 0


class TestErrorHandling:
    def test_unknown_route_is_json_404(self, client):
        resp = client.get("/api/does-not-exist")
        assert resp.status_code == 404
        assert resp.get_json()["success"] is False

    def test_unexpected_error_is_sanitized_500(
        self, client, project_id, tester_id, auth_headers
    ):
        with patch(
            "betalift.membership.request_to_join",
            side_effect=RuntimeError("connection reset by peer"),
        ):
            resp = _join(client, project_id, auth_headers(tester_id))

        assert resp.status_code == 500
        body = resp.get_json()
        assert body["success"] is False
        assert "connection reset" not in body["error"]
        assert body["request_id"] == resp.headers["X-Request-ID"]

    def test_non_object_body_is_400(self, client, project_id, tester_id, auth_headers):
        resp = client.post(
            f"/api/projects/{project_id}/join",
            json=["not", "an", "object"],
            headers=auth_headers(tester_id),
        )
        assert resp.status_code == 400
