"""Tests for the audit trail and rate limit endpoints."""

from __future__ import annotations

import pytest


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def _login(client, email="alice@example.com", password="Secret123!"):
    resp = client.post("/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200
    return resp.get_json()["token"]


@pytest.fixture
def alice(register):
    return register()


def test_logs_require_admin(client, alice):
    assert client.get("/audit/logs").status_code == 401
    resp = client.get("/audit/logs", headers=_bearer(alice["token"]))
    assert resp.status_code == 403


def test_list_logs(client, admin_token, alice):
    _login(client)
    resp = client.post(
        "/auth/login",
        json={"email": "alice@example.com", "password": "wrong"},
        headers={"User-Agent": "pytest-agent", "X-Request-ID": "req-42"},
    )
    assert resp.status_code == 401

    resp = client.get("/audit/logs", headers=_bearer(admin_token))
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["total"] == 4
    # newest first
    assert body["items"][0]["action"] == "login"
    assert body["items"][0]["status"] == "failure"
    assert body["items"][0]["request_id"] == "req-42"
    assert body["items"][0]["user_agent"] == "pytest-agent"
    assert body["items"][0]["details"]["attempts"] == 1

    resp = client.get(
        "/audit/logs",
        query_string={"action": "register"},
        headers=_bearer(admin_token),
    )
    assert {item["user_email"] for item in resp.get_json()["items"]} == {
        "admin@example.com",
        "alice@example.com",
    }

    resp = client.get(
        "/audit/logs",
        query_string={
            "user_id": alice["user"]["id"],
            "action": "LOGIN",
            "status": "success",
        },
        headers=_bearer(admin_token),
    )
    assert resp.get_json()["total"] == 1


@pytest.mark.parametrize("query", [{"action": "teleport"}, {"status": "odd"}])
def test_list_logs_rejects_unknown_filters(client, admin_token, query):
    resp = client.get(
        "/audit/logs", query_string=query, headers=_bearer(admin_token)
    )
    assert resp.status_code == 400


def test_rate_limit_usage_for_self(client, alice):
    token = _login(client)
    resp = client.get("/audit/rate-limits", headers=_bearer(token))
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["user_id"] == alice["user"]["id"]
    assert body["usage"]["login"]["current"] == 1
    assert body["usage"]["login"]["limit"] == 5
    assert body["usage"]["ai_generate"]["current"] == 0
    assert body["usage"]["ai_generate"]["limit"] == 10
    assert body["usage"]["ai_generate"]["reset_time"]


def test_rate_limit_usage_for_others_is_admin_only(client, admin_token, alice):
    admin_id = client.get(
        "/auth/me", headers=_bearer(admin_token)
    ).get_json()["user"]["id"]
    resp = client.get(
        "/audit/rate-limits",
        query_string={"user_id": admin_id},
        headers=_bearer(alice["token"]),
    )
    assert resp.status_code == 403

    resp = client.get(
        "/audit/rate-limits",
        query_string={"user_id": alice["user"]["id"]},
        headers=_bearer(admin_token),
    )
    assert resp.status_code == 200
    assert resp.get_json()["user_id"] == alice["user"]["id"]


def test_reset_rate_limits(client, admin_token, alice):
    user_id = alice["user"]["id"]
    for _ in range(3):
        _login(client)

    resp = client.post(
        f"/audit/rate-limits/{user_id}/reset",
        json={"action": "login"},
        headers=_bearer(admin_token),
    )
    assert resp.status_code == 200
    assert resp.get_json() == {"user_id": user_id, "action": "login"}

    usage = client.get(
        "/audit/rate-limits",
        query_string={"user_id": user_id},
        headers=_bearer(admin_token),
    ).get_json()["usage"]
    assert usage["login"]["current"] == 0

    resp = client.post(
        f"/audit/rate-limits/{user_id}/reset", headers=_bearer(admin_token)
    )
    assert resp.status_code == 200
    assert resp.get_json()["action"] == "all"

    logs = client.get(
        "/audit/logs",
        query_string={"action": "rate_limit_reset"},
        headers=_bearer(admin_token),
    ).get_json()
    assert logs["total"] == 2
    assert {item["resource"] for item in logs["items"]} == {"login", "all"}


def test_reset_rate_limits_validation(client, admin_token, alice):
    user_id = alice["user"]["id"]
    resp = client.post(
        f"/audit/rate-limits/{user_id}/reset",
        json={"action": "teleport"},
        headers=_bearer(admin_token),
    )
    assert resp.status_code == 400

    resp = client.post(
        f"/audit/rate-limits/{user_id}/reset",
        json={"action": "login"},
        headers=_bearer(alice["token"]),
    )
    assert resp.status_code == 403
