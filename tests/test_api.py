"""
HTTP API Tests

Drives the FastAPI app end to end: signup/login, event CRUD, the
swappable marketplace, and the swap request/response flow, including the
error-kind to status-code mapping.
"""

import pytest
from fastapi.testclient import TestClient

from slot_swap.errors import ErrorKind, SwapError
from slot_swap.main import create_app


@pytest.fixture
def client(database_url):
    app = create_app(database_url=database_url)
    with TestClient(app) as test_client:
        yield test_client


def signup(client: TestClient, name: str, email: str, password: str = "password123") -> dict:
    response = client.post("/api/auth/signup", json={"name": name, "email": email, "password": password})
    assert response.status_code == 201, response.text
    body = response.json()
    return {
        "id": body["user"]["id"],
        "headers": {"Authorization": f"Bearer {body['access_token']}"},
    }


def create_event(client: TestClient, user: dict, title: str, start: str, end: str, status: str = None) -> dict:
    payload = {"title": title, "start_time": start, "end_time": end}
    if status:
        payload["status"] = status
    response = client.post("/api/events", json=payload, headers=user["headers"])
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def alice(client):
    return signup(client, "Alice Smith", "alice@example.com")


@pytest.fixture
def bob(client):
    return signup(client, "Bob Johnson", "bob@example.com")


@pytest.fixture
def pair(client, alice, bob):
    slot_a = create_event(client, alice, "Team Meeting", "2030-01-15T10:00:00Z", "2030-01-15T11:00:00Z", "SWAPPABLE")
    slot_b = create_event(client, bob, "Client Call", "2030-01-16T14:00:00Z", "2030-01-16T15:30:00Z", "SWAPPABLE")
    return slot_a, slot_b


class TestAuth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_signup_then_me(self, client, alice):
        response = client.get("/api/auth/me", headers=alice["headers"])
        assert response.status_code == 200
        assert response.json() == {"id": alice["id"], "name": "Alice Smith", "email": "alice@example.com"}

    def test_duplicate_email_is_rejected(self, client, alice):
        response = client.post(
            "/api/auth/signup",
            json={"name": "Other Alice", "email": "alice@example.com", "password": "password123"},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Email already registered."}

    def test_login(self, client, alice):
        response = client.post("/api/auth/login", data={"username": "alice@example.com", "password": "password123"})
        assert response.status_code == 200
        assert response.json()["token_type"] == "bearer"
        assert response.json()["user"]["id"] == alice["id"]

    def test_login_with_wrong_password(self, client, alice):
        response = client.post("/api/auth/login", data={"username": "alice@example.com", "password": "wrong-pass"})
        assert response.status_code == 401
        assert response.json() == {"error": "Incorrect email or password"}
        assert response.headers["www-authenticate"] == "Bearer"

    def test_routes_require_a_token(self, client):
        assert client.get("/api/events").status_code == 401
        assert client.get("/api/requests", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401

    def test_auth_failures_use_error_envelope(self, client):
        assert client.get("/api/events").json() == {"error": "Not authenticated"}
        response = client.get("/api/requests", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.json() == {"error": "Could not validate credentials"}

    def test_signup_that_loses_the_email_race_is_rejected(self, client, alice, monkeypatch):
        async def no_user(database, email):
            return None

        # Lookup misses, so the insert hits the unique constraint
        monkeypatch.setattr("slot_swap.main.get_user_by_email", no_user)
        response = client.post(
            "/api/auth/signup",
            json={"name": "Other Alice", "email": "alice@example.com", "password": "password123"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Email already registered."}


class TestEvents:

    def test_create_defaults_to_busy(self, client, alice):
        event = create_event(client, alice, "Standup", "2030-01-15T09:00:00Z", "2030-01-15T09:15:00Z")

        assert event["status"] == "BUSY"
        assert event["owner_id"] == alice["id"]

    def test_create_rejects_backwards_range(self, client, alice):
        response = client.post(
            "/api/events",
            json={"title": "Backwards", "start_time": "2030-01-15T10:00:00Z", "end_time": "2030-01-15T09:00:00Z"},
            headers=alice["headers"],
        )
        assert response.status_code == 400
        assert response.json() == {"error": "end_time must be after start_time"}

    def test_create_rejects_blank_title(self, client, alice):
        response = client.post(
            "/api/events",
            json={"title": "   ", "start_time": "2030-01-15T09:00:00Z", "end_time": "2030-01-15T10:00:00Z"},
            headers=alice["headers"],
        )
        assert response.status_code == 400

    def test_list_is_sorted_by_start(self, client, alice):
        late = create_event(client, alice, "Late", "2030-01-15T16:00:00Z", "2030-01-15T17:00:00Z")
        early = create_event(client, alice, "Early", "2030-01-15T08:00:00Z", "2030-01-15T09:00:00Z")

        response = client.get("/api/events", headers=alice["headers"])

        assert [e["id"] for e in response.json()] == [early["id"], late["id"]]

    def test_update_and_toggle_status(self, client, alice):
        event = create_event(client, alice, "Standup", "2030-01-15T09:00:00Z", "2030-01-15T09:15:00Z")

        response = client.put(f"/api/events/{event['id']}", json={"status": "SWAPPABLE"}, headers=alice["headers"])

        assert response.status_code == 200
        assert response.json()["status"] == "SWAPPABLE"
        assert response.json()["title"] == "Standup"

    def test_update_by_other_user_is_forbidden(self, client, alice, bob):
        event = create_event(client, alice, "Standup", "2030-01-15T09:00:00Z", "2030-01-15T09:15:00Z")

        response = client.put(f"/api/events/{event['id']}", json={"title": "Hijacked"}, headers=bob["headers"])

        assert response.status_code == 403

    def test_update_missing_event(self, client, alice):
        response = client.put("/api/events/does-not-exist", json={"title": "x"}, headers=alice["headers"])
        assert response.status_code == 404

    def test_invalid_status_value_is_unprocessable(self, client, alice):
        event = create_event(client, alice, "Standup", "2030-01-15T09:00:00Z", "2030-01-15T09:15:00Z")

        response = client.put(f"/api/events/{event['id']}", json={"status": "FREE"}, headers=alice["headers"])

        assert response.status_code == 422

    def test_delete(self, client, alice):
        event = create_event(client, alice, "Standup", "2030-01-15T09:00:00Z", "2030-01-15T09:15:00Z")

        response = client.delete(f"/api/events/{event['id']}", headers=alice["headers"])

        assert response.status_code == 204
        assert client.get("/api/events", headers=alice["headers"]).json() == []


class TestSwapFlow:

    def test_marketplace_shows_other_users_swappable_slots(self, client, alice, bob, pair):
        slot_a, slot_b = pair

        response = client.get("/api/swappable-slots", headers=alice["headers"])

        assert response.status_code == 200
        listed = response.json()
        assert [s["id"] for s in listed] == [slot_b["id"]]
        assert listed[0]["owner"] == {"id": bob["id"], "name": "Bob Johnson", "email": "bob@example.com"}

    def test_accept_flow(self, client, alice, bob, pair):
        slot_a, slot_b = pair

        response = client.post(
            "/api/swap-request",
            json={"my_slot_id": slot_a["id"], "their_slot_id": slot_b["id"]},
            headers=alice["headers"],
        )
        assert response.status_code == 201, response.text
        request = response.json()
        assert request["status"] == "PENDING"
        assert request["offered_slot"]["status"] == "SWAP_PENDING"
        assert request["responder"]["name"] == "Bob Johnson"

        # Marketplace no longer offers the locked slot
        assert client.get("/api/swappable-slots", headers=alice["headers"]).json() == []

        incoming = client.get("/api/requests", headers=bob["headers"]).json()["incoming"]
        assert [r["id"] for r in incoming] == [request["id"]]

        response = client.post(f"/api/swap-response/{request['id']}", json={"accept": True}, headers=bob["headers"])
        assert response.status_code == 200
        resolved = response.json()
        assert resolved["status"] == "ACCEPTED"
        assert resolved["offered_slot"]["owner_id"] == bob["id"]
        assert resolved["requested_slot"]["owner_id"] == alice["id"]
        assert resolved["offered_slot"]["status"] == "BUSY"

        alice_events = client.get("/api/events", headers=alice["headers"]).json()
        assert [e["id"] for e in alice_events] == [slot_b["id"]]

        response = client.post(f"/api/swap-response/{request['id']}", json={"accept": False}, headers=bob["headers"])
        assert response.status_code == 409
        assert response.json() == {"error": "Swap request is no longer pending"}

    def test_reject_flow_and_delete(self, client, alice, bob, pair):
        slot_a, slot_b = pair
        request = client.post(
            "/api/swap-request",
            json={"my_slot_id": slot_a["id"], "their_slot_id": slot_b["id"]},
            headers=alice["headers"],
        ).json()

        assert client.delete(f"/api/events/{slot_a['id']}", headers=alice["headers"]).status_code == 409
        status_change = client.put(f"/api/events/{slot_a['id']}", json={"status": "SWAPPABLE"}, headers=alice["headers"])
        assert status_change.status_code == 409

        response = client.post(f"/api/swap-response/{request['id']}", json={"accept": False}, headers=bob["headers"])
        assert response.status_code == 200
        assert response.json()["status"] == "REJECTED"
        assert response.json()["offered_slot"]["status"] == "SWAPPABLE"

        outgoing = client.get("/api/requests", headers=alice["headers"]).json()["outgoing"]
        assert [r["status"] for r in outgoing] == ["REJECTED"]

        assert client.delete(f"/api/events/{slot_a['id']}", headers=alice["headers"]).status_code == 204

    def test_requester_cannot_respond(self, client, alice, pair):
        slot_a, slot_b = pair
        request = client.post(
            "/api/swap-request",
            json={"my_slot_id": slot_a["id"], "their_slot_id": slot_b["id"]},
            headers=alice["headers"],
        ).json()

        response = client.post(f"/api/swap-response/{request['id']}", json={"accept": True}, headers=alice["headers"])

        assert response.status_code == 403

    def test_same_slot_is_bad_request(self, client, alice, pair):
        slot_a, _ = pair

        response = client.post(
            "/api/swap-request",
            json={"my_slot_id": slot_a["id"], "their_slot_id": slot_a["id"]},
            headers=alice["headers"],
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Cannot swap slot with itself"}

    def test_busy_slot_cannot_be_requested(self, client, alice, bob, pair):
        slot_a, _ = pair
        busy = create_event(client, bob, "Busy", "2030-01-17T10:00:00Z", "2030-01-17T11:00:00Z")

        response = client.post(
            "/api/swap-request",
            json={"my_slot_id": slot_a["id"], "their_slot_id": busy["id"]},
            headers=alice["headers"],
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Their slot must be SWAPPABLE"}

    def test_unknown_slot_is_not_found(self, client, alice, pair):
        slot_a, _ = pair

        response = client.post(
            "/api/swap-request",
            json={"my_slot_id": slot_a["id"], "their_slot_id": "00000000-0000-0000-0000-000000000000"},
            headers=alice["headers"],
        )

        assert response.status_code == 404

    def test_malformed_slot_ids_are_unprocessable(self, client, alice):
        response = client.post(
            "/api/swap-request",
            json={"my_slot_id": "abc", "their_slot_id": "def"},
            headers=alice["headers"],
        )
        assert response.status_code == 422

    def test_unknown_request_is_not_found(self, client, bob):
        response = client.post("/api/swap-response/missing", json={"accept": True}, headers=bob["headers"])
        assert response.status_code == 404


class TestServerErrors:

    @pytest.fixture
    def app(self, database_url):
        return create_app(database_url=database_url)

    @pytest.fixture
    def quiet_client(self, app):
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client

    def test_unexpected_failure_is_generic_500(self, app, quiet_client, caplog):
        user = signup(quiet_client, "Alice Smith", "alice@example.com")

        async def broken(owner_id):
            raise RuntimeError("secret path /var/db")

        app.state.slot_store.list_by_owner = broken
        response = quiet_client.get("/api/events", headers=user["headers"])

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        assert "secret" not in response.text
        assert "secret path /var/db" in caplog.text

    def test_storage_failure_is_generic_500(self, app, quiet_client, caplog):
        user = signup(quiet_client, "Alice Smith", "alice@example.com")

        async def broken(owner_id):
            raise SwapError(ErrorKind.INTERNAL, "disk I/O error at /var/db")

        app.state.slot_store.list_by_owner = broken
        response = quiet_client.get("/api/events", headers=user["headers"])

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        assert "/var/db" not in response.text
        assert "disk I/O error" in caplog.text
