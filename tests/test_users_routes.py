"""Tests for the administrative user endpoints."""

from __future__ import annotations

import pytest

from identity_service.models.enums import AuditAction
from identity_service.models.repositories import (
    AuditLogRepository,
    UserRepository,
)
from identity_service.services.rate_limit import (
    RateLimiter,
    build_rate_limit_table,
)
from identity_service.services.transactions import transactional_session


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def _events(action, **filters):
    with transactional_session(name="tests.events") as session:
        items, _ = AuditLogRepository(session).list_events(
            page=1,
            per_page=100,
            filters={"action": action.value, **filters},
        )
        return items


@pytest.fixture
def alice(register):
    return register()


@pytest.fixture
def seeded_users(register):
    return {
        "alice": register(),
        "bob": register(email="bob@example.com", name="Bob"),
    }


def test_users_require_admin(client, alice):
    assert client.get("/users").status_code == 401

    resp = client.get("/users", headers=_bearer(alice["token"]))
    assert resp.status_code == 403
    error = resp.get_json()["error"]
    assert error["message"] == "insufficient permissions"
    assert error["details"] == {"required_roles": ["admin"]}


def test_list_users(client, admin_token, seeded_users):
    resp = client.get("/users", headers=_bearer(admin_token))
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["total"] == 3
    assert body["page"] == 1
    assert [item["email"] for item in body["items"]] == [
        "admin@example.com",
        "alice@example.com",
        "bob@example.com",
    ]
    assert resp.headers["X-RateLimit-Limit"] == "100"
    assert resp.headers["X-RateLimit-Remaining"] == "99"
    assert int(resp.headers["X-RateLimit-Reset"]) > 0

    reads = _events(AuditAction.USER_READ)
    assert len(reads) == 1
    assert reads[0].resource == "users"
    assert reads[0].user_email == "admin@example.com"


def test_list_users_filters(client, admin_token, seeded_users):
    resp = client.get(
        "/users",
        query_string={"role": "admin"},
        headers=_bearer(admin_token),
    )
    assert [item["email"] for item in resp.get_json()["items"]] == [
        "admin@example.com"
    ]

    resp = client.get(
        "/users",
        query_string={"q": "BOB", "sort": "email:desc"},
        headers=_bearer(admin_token),
    )
    assert resp.get_json()["total"] == 1

    resp = client.get(
        "/users",
        query_string={"per_page": 2, "page": 2},
        headers=_bearer(admin_token),
    )
    body = resp.get_json()
    assert body["total"] == 3
    assert len(body["items"]) == 1


@pytest.mark.parametrize(
    "query", [{"role": "wizard"}, {"is_active": "maybe"}]
)
def test_list_users_rejects_bad_filters(client, admin_token, query):
    resp = client.get("/users", query_string=query, headers=_bearer(admin_token))
    assert resp.status_code == 400


def test_list_users_rate_limited(client, app, admin_token, monkeypatch):
    monkeypatch.setitem(
        app.extensions,
        "rate_limiter",
        RateLimiter(build_rate_limit_table(["user_read:users=2/3600000"])),
    )
    for remaining in ("1", "0"):
        resp = client.get("/users", headers=_bearer(admin_token))
        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Remaining"] == remaining

    resp = client.get("/users", headers=_bearer(admin_token))
    assert resp.status_code == 429
    error = resp.get_json()["error"]
    assert error["type"] == "rate_limit_exceeded"
    assert error["details"]["limit"] == 2
    assert error["details"]["remaining"] == 0
    assert resp.headers["X-RateLimit-Limit"] == "2"
    assert resp.headers["X-RateLimit-Remaining"] == "0"

    exceeded = _events(AuditAction.RATE_LIMIT_EXCEEDED)
    assert len(exceeded) == 1
    assert exceeded[0].resource == "users"


def test_get_user(client, admin_token, alice):
    resp = client.get(
        f"/users/{alice['user']['id']}", headers=_bearer(admin_token)
    )
    assert resp.status_code == 200
    assert resp.get_json()["user"]["email"] == "alice@example.com"

    resp = client.get("/users/missing", headers=_bearer(admin_token))
    assert resp.status_code == 404


def test_update_user(client, admin_token, alice):
    user_id = alice["user"]["id"]
    resp = client.put(
        f"/users/{user_id}",
        json={"name": "Alice Liddell", "role": "moderator"},
        headers=_bearer(admin_token),
    )
    assert resp.status_code == 200
    user = resp.get_json()["user"]
    assert user["name"] == "Alice Liddell"
    assert user["role"] == "moderator"
    assert resp.headers["X-RateLimit-Remaining"] == "99"

    updates = _events(AuditAction.USER_UPDATE)
    assert len(updates) == 1
    assert updates[0].resource_id == user_id
    assert updates[0].details == {"fields": ["name", "role"]}


def test_audit_entries_carry_operation_metadata(client, admin_token, alice):
    user_id = alice["user"]["id"]
    client.put(
        f"/users/{user_id}",
        json={"name": "Alice Liddell"},
        headers=_bearer(admin_token),
    )
    client.get("/users", headers=_bearer(admin_token))

    [update] = _events(AuditAction.USER_UPDATE)
    assert update.operation_name == "users.update_user"
    assert update.operation_type == "mutation"
    assert update.variables == {"user_id": user_id}
    assert update.duration_ms is not None and update.duration_ms >= 0

    [read] = _events(AuditAction.USER_READ)
    assert read.operation_name == "users.list_users"
    assert read.operation_type == "query"
    assert read.variables == {}
    assert read.duration_ms is not None


@pytest.mark.parametrize(
    "payload", [{}, {"role": "wizard"}, {"name": ""}, {"is_active": "maybe"}]
)
def test_update_user_rejects_invalid_payload(
    client, admin_token, alice, payload
):
    resp = client.put(
        f"/users/{alice['user']['id']}",
        json=payload,
        headers=_bearer(admin_token),
    )
    assert resp.status_code == 422


def test_update_missing_user(client, admin_token):
    resp = client.put(
        "/users/missing", json={"name": "x"}, headers=_bearer(admin_token)
    )
    assert resp.status_code == 404


def test_deactivation_revokes_sessions(client, admin_token, alice):
    user_id = alice["user"]["id"]
    resp = client.put(
        f"/users/{user_id}",
        json={"is_active": False},
        headers=_bearer(admin_token),
    )
    assert resp.status_code == 200
    assert resp.get_json()["user"]["is_active"] is False
    assert (
        client.get("/auth/me", headers=_bearer(alice["token"])).status_code
        == 401
    )
    login = client.post(
        "/auth/login",
        json={"email": "alice@example.com", "password": "Secret123!"},
    )
    assert login.status_code == 401

    deactivations = _events(AuditAction.USER_DEACTIVATE)
    assert len(deactivations) == 1
    assert deactivations[0].details == {"revoked_sessions": 1}

    resp = client.put(
        f"/users/{user_id}",
        json={"is_active": True},
        headers=_bearer(admin_token),
    )
    assert resp.status_code == 200
    assert len(_events(AuditAction.USER_ACTIVATE)) == 1


def test_deactivation_goes_through_repository(
    client, admin_token, alice, monkeypatch
):
    captured = []
    original = UserRepository.deactivate

    def tracking_deactivate(self, user):
        captured.append(user.id)
        return original(self, user)

    monkeypatch.setattr(UserRepository, "deactivate", tracking_deactivate)
    user_id = alice["user"]["id"]
    resp = client.put(
        f"/users/{user_id}",
        json={"is_active": False, "name": "Alice L."},
        headers=_bearer(admin_token),
    )
    assert resp.status_code == 200
    assert resp.get_json()["user"]["name"] == "Alice L."
    assert captured == [user_id]

    # already inactive, nothing to deactivate
    client.put(
        f"/users/{user_id}",
        json={"is_active": False},
        headers=_bearer(admin_token),
    )
    assert captured == [user_id]
    assert {"fields": ["is_active", "name"]} in [
        entry.details for entry in _events(AuditAction.USER_UPDATE)
    ]
    assert len(_events(AuditAction.USER_DEACTIVATE)) == 1


def test_delete_user_keeps_audit_history(client, admin_token, alice):
    user_id = alice["user"]["id"]
    resp = client.delete(f"/users/{user_id}", headers=_bearer(admin_token))
    assert resp.status_code == 204

    resp = client.get(f"/users/{user_id}", headers=_bearer(admin_token))
    assert resp.status_code == 404

    registrations = [
        entry
        for entry in _events(AuditAction.REGISTER)
        if entry.user_email == "alice@example.com"
    ]
    assert len(registrations) == 1
    assert registrations[0].user_id is None

    deletions = _events(AuditAction.USER_DELETE)
    assert len(deletions) == 1
    assert deletions[0].resource_id == user_id
    assert deletions[0].details == {"email": "alice@example.com"}

    resp = client.delete(f"/users/{user_id}", headers=_bearer(admin_token))
    assert resp.status_code == 404


def test_admin_cannot_delete_themselves(client, admin_token):
    me = client.get("/auth/me", headers=_bearer(admin_token)).get_json()
    resp = client.delete(
        f"/users/{me['user']['id']}", headers=_bearer(admin_token)
    )
    assert resp.status_code == 400


def test_list_user_sessions(client, admin_token, alice):
    resp = client.get(
        f"/users/{alice['user']['id']}/sessions",
        headers=_bearer(admin_token),
    )
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["total"] == 1
    assert "session_token" not in body["items"][0]

    resp = client.get("/users/missing/sessions", headers=_bearer(admin_token))
    assert resp.status_code == 404
