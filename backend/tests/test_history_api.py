"""Tests for the HTTP read path: history, contact picker, pin/hide, unread."""
from fastapi.testclient import TestClient

from conftest import auth_headers
from portalchat.directory import User, UserRole, get_directory
from portalchat.main import app
from portalchat.messaging.rooms import room_id
from portalchat.messaging.store import get_message_store

client = TestClient(app)


def store_message(sender_id: str, recipient_id: str, body: str):
    return get_message_store().append(
        sender_id, recipient_id, room_id(sender_id, recipient_id), body
    )


def partner_ids(user_id: str) -> list:
    response = client.get("/messages", headers=auth_headers(user_id))
    assert response.status_code == 200
    return [p["id"] for p in response.json()]


class TestHistory:

    def test_returns_conversation_in_order(self):
        first = store_message("student-1", "coord-1", "question")
        second = store_message("coord-1", "student-1", "answer")
        store_message("student-1", "alumni-1", "unrelated")

        response = client.get("/messages/coord-1", headers=auth_headers("student-1"))

        assert response.status_code == 200
        data = response.json()
        assert [m["id"] for m in data] == [first.id, second.id]
        assert data[0]["body"] == "question"
        assert data[0]["conversationId"] == "coord-1:student-1"

    def test_same_history_for_both_participants(self):
        store_message("student-1", "coord-1", "hello")
        mine = client.get("/messages/coord-1", headers=auth_headers("student-1")).json()
        theirs = client.get("/messages/student-1", headers=auth_headers("coord-1")).json()
        assert mine == theirs

    def test_empty_history(self):
        response = client.get("/messages/alumni-1", headers=auth_headers("student-1"))
        assert response.status_code == 200
        assert response.json() == []

    def test_one_way_permission_grants_read(self):
        store_message("admin-1", "coord-1", "memo")
        response = client.get("/messages/admin-1", headers=auth_headers("coord-1"))
        assert response.status_code == 200
        assert len(response.json()) == 1

    def test_no_permission_either_way_is_forbidden(self):
        response = client.get("/messages/student-1", headers=auth_headers("admin-1"))
        assert response.status_code == 403

    def test_coordinators_cannot_read_each_other(self):
        get_directory().upsert_user(User(id="coord-2", name="Cleo", role=UserRole.COORDINATOR))
        response = client.get("/messages/coord-2", headers=auth_headers("coord-1"))
        assert response.status_code == 403

    def test_unknown_user_is_not_found(self):
        response = client.get("/messages/ghost-1", headers=auth_headers("student-1"))
        assert response.status_code == 404

    def test_malformed_user_id_is_not_found(self):
        response = client.get("/messages/bad_id", headers=auth_headers("student-1"))
        assert response.status_code == 404

    def test_own_history_is_forbidden(self):
        response = client.get("/messages/student-1", headers=auth_headers("student-1"))
        assert response.status_code == 403

    def test_inactive_partner_history_still_readable(self):
        response = client.get("/messages/student-9", headers=auth_headers("student-1"))
        assert response.status_code == 200

    def test_requires_token(self):
        response = client.get("/messages/coord-1")
        assert response.status_code == 401


class TestPartners:

    def test_partners_by_role(self):
        # Alphabetical by name when there is no activity yet
        assert partner_ids("student-1") == ["alumni-1", "student-2", "coord-1"]
        assert partner_ids("admin-1") == ["coord-1"]
        assert partner_ids("coord-1") == ["admin-1", "alumni-1", "student-2", "student-1"]

    def test_inactive_users_excluded(self):
        assert "student-9" not in partner_ids("student-1")

    def test_summary_shape(self):
        response = client.get("/messages", headers=auth_headers("admin-1"))
        assert response.json() == [{
            "id": "coord-1",
            "name": "Colin Coordinator",
            "role": "coordinator",
            "department": "CS",
            "pinned": False,
            "lastMessage": None,
        }]

    def test_recent_conversations_first(self):
        store_message("student-1", "coord-1", "older")
        store_message("student-2", "student-1", "newer")

        response = client.get("/messages", headers=auth_headers("student-1"))
        data = response.json()

        assert [p["id"] for p in data] == ["student-2", "coord-1", "alumni-1"]
        assert data[0]["lastMessage"]["body"] == "newer"
        assert data[0]["lastMessage"]["senderId"] == "student-2"
        assert data[2]["lastMessage"] is None

    def test_pinned_first(self):
        store_message("student-1", "coord-1", "recent")
        response = client.post("/messages/alumni-1/pin", headers=auth_headers("student-1"))
        assert response.json() == {"success": True, "pinned": True}
        assert partner_ids("student-1")[0] == "alumni-1"

    def test_pin_toggles_and_is_per_user(self):
        headers = auth_headers("student-1")
        client.post("/messages/coord-1/pin", headers=headers)
        response = client.post("/messages/coord-1/pin", headers=headers)
        assert response.json()["pinned"] is False

        client.post("/messages/student-1/pin", headers=auth_headers("coord-1"))
        pinned = {p["id"]: p["pinned"] for p in client.get("/messages", headers=headers).json()}
        assert pinned["coord-1"] is False

    def test_pin_forbidden_pair(self):
        response = client.post("/messages/student-1/pin", headers=auth_headers("admin-1"))
        assert response.status_code == 403

    def test_hidden_until_new_message(self):
        store_message("student-1", "coord-1", "done here")
        response = client.post("/messages/coord-1/hide", headers=auth_headers("student-1"))
        assert response.json() == {"success": True, "hidden": True}
        assert "coord-1" not in partner_ids("student-1")
        # Hiding is per user
        assert "student-1" in partner_ids("coord-1")

        store_message("coord-1", "student-1", "one more thing")
        assert partner_ids("student-1")[0] == "coord-1"

    def test_hide_keeps_history(self):
        store_message("student-1", "coord-1", "keep me")
        client.post("/messages/coord-1/hide", headers=auth_headers("student-1"))
        response = client.get("/messages/coord-1", headers=auth_headers("student-1"))
        assert [m["body"] for m in response.json()] == ["keep me"]

    def test_non_canonical_directory_row_is_skipped(self):
        # Written straight to the table, bypassing User validation
        get_directory()._conn.execute(
            "INSERT INTO users (id, name, email, role, department, active) "
            "VALUES ('stu_3', 'Stu Three', '', 'student', 'CS', TRUE)"
        )

        assert partner_ids("student-1") == ["alumni-1", "student-2", "coord-1"]
        response = client.get("/messages/stu_3", headers=auth_headers("student-1"))
        assert response.status_code == 404

    def test_hide_unknown_user(self):
        response = client.post("/messages/ghost-1/hide", headers=auth_headers("student-1"))
        assert response.status_code == 404


class TestUnreadCount:

    def test_counts_only_incoming_unread(self):
        store_message("coord-1", "student-1", "a")
        store_message("student-2", "student-1", "b")
        store_message("student-1", "coord-1", "c")
        get_message_store().mark_read(room_id("student-1", "student-2"), "student-1")

        response = client.get("/messages/unread-count", headers=auth_headers("student-1"))

        assert response.status_code == 200
        assert response.json() == {"count": 1}

    def test_requires_token(self):
        assert client.get("/messages/unread-count").status_code == 401


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
