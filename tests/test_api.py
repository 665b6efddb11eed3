import re
from datetime import timedelta

import pytest

from secretshare.models import utcnow

from .conftest import RecordingNotifier

ALICE = ("alice@example.com", "correct horse battery")
BOB = ("bob@example.com", "another long password")


def register(client, email, password):
    return client.post(
        "/auth/register", json={"email": email, "password": password, "confirm": password}
    )


def login(client, email, password):
    return client.post("/auth/login", json={"email": email, "password": password})


def signed_in(app, credentials):
    client = app.test_client()
    register(client, *credentials)
    assert login(client, *credentials).status_code == 200
    return client


def drain_notifications(app):
    app.extensions["secret_service"].dispatcher.shutdown(wait=True)


def create(client, **payload):
    payload.setdefault("secret_text", "hello")
    response = client.post("/api/secrets", json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()["id"]


@pytest.fixture
def alice(app):
    return signed_in(app, ALICE)


@pytest.fixture
def bob(app):
    return signed_in(app, BOB)


class TestSecretFlow:
    def test_one_time_secret(self, app, alice, client):
        response = alice.post("/api/secrets", json={"secret_text": "hello"})
        assert response.status_code == 201
        body = response.get_json()
        assert set(body) == {"id", "created_at"}

        info = client.get(f"/api/secrets/{body['id']}/info").get_json()
        assert info["one_time_access"] is True
        assert info["has_password"] is False
        assert "secret_text" not in info

        viewed = client.post(f"/api/secrets/{body['id']}/view")
        assert viewed.status_code == 200
        assert viewed.get_json()["secret_text"] == "hello"
        drain_notifications(app)

        again = client.post(f"/api/secrets/{body['id']}/view")
        assert again.status_code == 404
        assert again.get_json()["error"] == "not_found"

    def test_reusable_secret(self, alice, client):
        secret_id = create(alice, one_time_access=False, expires_hours=1)
        for _ in range(3):
            assert client.post(f"/api/secrets/{secret_id}/view").get_json()["secret_text"] == "hello"
        info = client.get(f"/api/secrets/{secret_id}/info").get_json()
        assert info["expires_at"] is not None

    def test_password_protected_secret(self, app, alice, client):
        secret_id = create(alice, password="hunter2")
        assert client.get(f"/api/secrets/{secret_id}/info").get_json()["has_password"] is True

        missing = client.post(f"/api/secrets/{secret_id}/view", json={})
        assert missing.status_code == 401
        assert missing.get_json()["error"] == "password_required"

        wrong = client.post(f"/api/secrets/{secret_id}/view", json={"password": "nope"})
        assert wrong.status_code == 403
        assert wrong.get_json()["error"] == "invalid_password"

        right = client.post(f"/api/secrets/{secret_id}/view", json={"password": "hunter2"})
        assert right.status_code == 200
        assert right.get_json()["secret_text"] == "hello"
        drain_notifications(app)

    def test_not_found_bodies_are_identical(self, app, alice, client):
        burned = create(alice)
        client.post(f"/api/secrets/{burned}/view")
        drain_notifications(app)

        for_missing = client.get("/api/secrets/doesnotexist/info")
        for_burned = client.get(f"/api/secrets/{burned}/info")
        assert for_missing.status_code == for_burned.status_code == 404
        assert for_missing.get_json() == for_burned.get_json()

    def test_burn_notifies_owner(self, app, alice):
        service = app.extensions["secret_service"]
        recorder = RecordingNotifier()
        service.dispatcher.notifier = recorder
        secret_id = create(alice, secret_text="notify me please, thanks")

        viewer = app.test_client()
        viewer.post(f"/api/secrets/{secret_id}/view", headers={"X-Forwarded-For": "198.51.100.4"})
        drain_notifications(app)

        [sent] = recorder.sent
        assert sent.owner_email == ALICE[0]
        assert sent.viewer_ip == "198.51.100.4"
        assert sent.preview == "notify me please, th"

    def test_no_notification_when_owner_opted_out(self, app, alice, client):
        service = app.extensions["secret_service"]
        recorder = RecordingNotifier()
        service.dispatcher.notifier = recorder
        alice.put("/settings/profile", json={"name": "Alice", "notifications_enabled": False})
        secret_id = create(alice)

        client.post(f"/api/secrets/{secret_id}/view")
        drain_notifications(app)
        assert recorder.sent == []


class TestCreateValidation:
    def test_requires_login(self, client):
        response = client.post("/api/secrets", json={"secret_text": "x"})
        assert response.status_code == 401
        assert response.get_json()["error"] == "unauthorized"

    @pytest.mark.parametrize(
        "payload, field",
        [
            ({"secret_text": ""}, "secret_text"),
            ({}, "secret_text"),
            ({"secret_text": "x", "one_time_access": "yes"}, "one_time_access"),
            ({"secret_text": "x", "expires_hours": -1}, "expires_hours"),
            ({"secret_text": "x", "expires_hours": "soon"}, "expires_hours"),
            ({"secret_text": "x", "expires_at": "not a date"}, "expires_at"),
            ({"secret_text": "x", "expires_at": "2000-01-01T00:00:00Z"}, "expires_at"),
            ({"secret_text": "x", "expires_hours": "nan"}, "expires_hours"),
            ({"secret_text": "x", "expires_hours": "inf"}, "expires_hours"),
            ({"secret_text": "x", "expires_at": "0001-01-01T00:00:00+14:00"}, "expires_at"),
            ({"secret_text": "x", "expires_at": "9999-12-31T23:59:59-14:00"}, "expires_at"),
        ],
    )
    def test_rejects_invalid_payload(self, alice, payload, field):
        response = alice.post("/api/secrets", json=payload)
        assert response.status_code == 400
        body = response.get_json()
        assert body["error"] == "validation_error"
        assert body["fields"] == [field]

    def test_accepts_explicit_expiry(self, alice, client):
        expires = (utcnow() + timedelta(days=1)).replace(microsecond=0)
        secret_id = create(alice, expires_at=expires.isoformat() + "Z")
        info = client.get(f"/api/secrets/{secret_id}/info").get_json()
        assert info["expires_at"] == expires.isoformat()


class TestJsonBodies:
    @pytest.mark.parametrize(
        "method, path, body",
        [
            ("post", "/api/secrets", ["secret_text", "x"]),
            ("post", "/api/secrets/{id}/view", "password"),
            ("put", "/settings/profile", ["name"]),
            ("post", "/auth/register", [ALICE[0]]),
            ("post", "/api/secrets", 42),
        ],
    )
    def test_non_object_body_is_rejected(self, alice, method, path, body):
        secret_id = create(alice)
        response = getattr(alice, method)(path.format(id=secret_id), json=body)
        assert response.status_code == 400
        assert response.get_json()["error"] == "validation_error"

    def test_malformed_json_is_rejected(self, alice):
        response = alice.post("/api/secrets", data="{", content_type="application/json")
        assert response.status_code == 400
        assert response.get_json()["error"] == "validation_error"

    def test_rejected_view_does_not_burn(self, app, alice, client):
        secret_id = create(alice)
        assert client.post(f"/api/secrets/{secret_id}/view", json=[]).status_code == 400
        assert client.post(f"/api/secrets/{secret_id}/view").status_code == 200
        drain_notifications(app)


class TestOwnerEndpoints:
    def test_list_search_stats(self, app, alice, client):
        first = create(alice, secret_text="database password")
        second = create(alice, secret_text="api token", password="pw")
        client.post(f"/api/secrets/{first}/view")
        drain_notifications(app)

        listed = alice.get("/api/secrets").get_json()["secrets"]
        by_id = {s["id"]: s for s in listed}
        assert set(by_id) == {first, second}
        assert by_id[first]["status"] == "viewed"
        assert by_id[second]["status"] == "active"
        assert by_id[second]["has_password"] is True
        assert "password_hash" not in by_id[second]

        found = alice.get("/api/secrets/search?q=TOKEN").get_json()
        assert found["query"] == "TOKEN"
        assert [s["id"] for s in found["secrets"]] == [second]

        stats = alice.get("/api/secrets/stats").get_json()
        assert stats == {"active": 1, "viewed": 1, "expired": 0, "total": 2}

    def test_owner_lists_are_private(self, alice, bob):
        create(alice)
        assert bob.get("/api/secrets").get_json()["secrets"] == []

    def test_delete_requires_ownership(self, alice, bob, client):
        secret_id = create(alice)
        assert bob.delete(f"/api/secrets/{secret_id}").status_code == 404

        response = alice.delete(f"/api/secrets/{secret_id}")
        assert response.status_code == 200
        assert response.get_json() == {"success": True}
        assert client.get(f"/api/secrets/{secret_id}/info").status_code == 404
        assert alice.delete(f"/api/secrets/{secret_id}").status_code == 404


class TestAuth:
    def test_duplicate_registration(self, client):
        assert register(client, *ALICE).status_code == 201
        response = register(client, *ALICE)
        assert response.status_code == 409
        assert response.get_json()["error"] == "user_exists"

    def test_registration_validation(self, client):
        response = client.post(
            "/auth/register", json={"email": "nope", "password": "short", "confirm": "other"}
        )
        assert response.status_code == 400
        assert set(response.get_json()["fields"]) == {"email", "password", "confirm"}

    def test_bad_credentials(self, client):
        register(client, *ALICE)
        response = login(client, ALICE[0], "wrong password")
        assert response.status_code == 401
        assert response.get_json()["error"] == "invalid_credentials"
        assert client.get("/api/secrets").status_code == 401

    def test_lockout_after_repeated_failures(self, client):
        register(client, *ALICE)
        for _ in range(5):
            login(client, ALICE[0], "wrong password")
        assert login(client, *ALICE).status_code == 401

    def test_logout(self, alice):
        assert alice.post("/auth/logout").get_json() == {"success": True}
        assert alice.get("/api/secrets").status_code == 401

    def test_change_password(self, app, alice):
        wrong = alice.post(
            "/auth/change-password",
            json={"current_password": "not it", "new_password": "brand new password"},
        )
        assert wrong.status_code == 400
        assert wrong.get_json()["fields"] == ["current_password"]

        ok = alice.post(
            "/auth/change-password",
            json={"current_password": ALICE[1], "new_password": "brand new password"},
        )
        assert ok.status_code == 200
        fresh = app.test_client()
        assert login(fresh, ALICE[0], "brand new password").status_code == 200

    def test_profile(self, alice):
        profile = alice.get("/settings/profile").get_json()
        assert profile["email"] == ALICE[0]
        assert profile["notifications_enabled"] is True

        updated = alice.put("/settings/profile", json={"name": "Alice"}).get_json()["data"]
        assert updated["name"] == "Alice"
        assert updated["notifications_enabled"] is True

        updated = alice.put(
            "/settings/profile", json={"name": "Alice", "notifications_enabled": False}
        ).get_json()["data"]
        assert updated["notifications_enabled"] is False

    def test_csrf_token_endpoint(self, client):
        assert client.get("/auth/csrf-token").get_json()["csrf_token"]


class TestRegistrationsDisabled:
    @pytest.fixture
    def app_config(self, tmp_path):
        return {
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'secretshare.db'}",
            "ALLOW_USER_REGISTRATIONS": False,
        }

    def test_register_is_forbidden(self, client):
        response = register(client, *ALICE)
        assert response.status_code == 403
        assert response.get_json()["error"] == "registrations_disabled"


class TestCsrf:
    @pytest.fixture
    def app_config(self, tmp_path):
        return {
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'secretshare.db'}",
            "WTF_CSRF_ENABLED": True,
        }

    def test_post_without_token_is_rejected(self, client):
        response = login(client, *ALICE)
        assert response.status_code == 400
        assert response.get_json()["error"] == "csrf_failed"


class TestRateLimiting:
    @pytest.fixture
    def app_config(self, tmp_path):
        return {
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'secretshare.db'}",
            "RATELIMIT_POLICIES": {"access_secret": (2, 60), "create_secret": (1, 60)},
        }

    def test_access_limit_per_client(self, client):
        headers = {"X-Forwarded-For": "203.0.113.9"}
        for _ in range(2):
            assert client.get("/api/secrets/abc/info", headers=headers).status_code == 404

        limited = client.get("/api/secrets/abc/info", headers=headers)
        assert limited.status_code == 429
        body = limited.get_json()
        assert body["error"] == "rate_limited"
        assert body["retry_after"] > 0
        assert int(limited.headers["Retry-After"]) > 0
        assert limited.headers["X-RateLimit-Limit"] == "2"
        assert limited.headers["X-RateLimit-Remaining"] == "0"
        assert "X-RateLimit-Reset" in limited.headers

        other = client.get("/api/secrets/abc/info", headers={"X-Forwarded-For": "203.0.113.10"})
        assert other.status_code == 404

    def test_create_limit(self, alice):
        create(alice)
        response = alice.post("/api/secrets", json={"secret_text": "again"})
        assert response.status_code == 429


class TestOperations:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert body["services"]["database"]["status"] == "healthy"
        assert body["services"]["encryption"]["status"] == "healthy"

    def test_security_headers(self, client):
        response = client.get("/health")
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "no-store" in response.headers["Cache-Control"]
        assert "X-Response-Time" in response.headers

    def test_cli_generate_key(self, app):
        result = app.test_cli_runner().invoke(args=["generate-key"])
        assert re.fullmatch(r"[0-9a-f]{64}", result.output.strip())

    def test_cli_maintenance(self, app, alice, client):
        secret_id = create(alice)
        client.post(f"/api/secrets/{secret_id}/view")
        drain_notifications(app)

        runner = app.test_cli_runner()
        assert "Purged 1" in runner.invoke(args=["purge-expired"]).output
        create(alice, secret_text="still here")
        assert "Rotated 0 of 1" in runner.invoke(args=["rotate-keys"]).output
