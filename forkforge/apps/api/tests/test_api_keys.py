"""HTTP contract tests for credential issuance, verification and revocation.

- POST /auth/api-keys requires X-Admin-Token; raw key returned once
- Uniform 401 for malformed / unknown / expired / revoked tokens
- RFC 9457 Problem Details with stable error codes
- last_used_at updated after the response
"""

import re

import pytest

from forkforge_api.auth.token_codec import digest_secret, parse_bearer_secret
from forkforge_api.schemas import MAX_EXPIRES_IN_SECONDS



def assert_problem_details(resp, expected_status: int, expected_error: str) -> dict:
    assert resp.headers.get("content-type", "").startswith("application/problem+json")
    data = resp.json()
    for field in ("type", "title", "status", "detail", "instance", "error"):
        assert field in data, f"Missing required field: {field}"
    assert data["status"] == expected_status
    assert data["error"] == expected_error
    assert data["type"] == f"urn:forkforge:problem:{expected_error}"
    assert re.match(r"^urn:forkforge:trace:[A-Za-z0-9._:-]{8,}$", data["instance"])
    return data


@pytest.fixture
def owner_id(sql_uow_factory, make_user) -> str:
    return make_user(sql_uow_factory, external_identity_id="gh-owner")


def _issue(test_client, admin_headers, user_id, **body):
    resp = test_client.post("/auth/api-keys", json={"user_id": user_id, **body}, headers=admin_headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _bearer(key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {key}"}


class TestIssuance:
    def test_issue_returns_key_once(self, test_client, admin_headers, owner_id, sql_uow_factory):
        data = _issue(test_client, admin_headers, owner_id, label="ci")

        assert data["key"].startswith("ff_live_")
        assert data["label"] == "ci"
        assert data["expires_at"] is None

        with sql_uow_factory() as uow:
            stored = uow.credentials.get(data["key_id"])
        assert stored.secret_digest == digest_secret(parse_bearer_secret(data["key"]))
        assert stored.secret_digest != data["key"]

    def test_expires_in_seconds_sets_expiry(self, test_client, admin_headers, owner_id, clock):
        data = _issue(test_client, admin_headers, owner_id, expires_in_seconds=3600)
        assert data["expires_at"].startswith("2026-03-01T13:00:00")

    @pytest.mark.parametrize("headers", [{}, {"X-Admin-Token": "wrong"}])
    def test_admin_token_required(self, test_client, owner_id, headers):
        resp = test_client.post("/auth/api-keys", json={"user_id": owner_id}, headers=headers)

        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"
        assert_problem_details(resp, 401, "invalid_admin_token")

    def test_admin_token_unconfigured_is_500(self, test_client, owner_id, admin_headers, monkeypatch):
        monkeypatch.delenv("ADMIN_TOKEN")
        resp = test_client.post("/auth/api-keys", json={"user_id": owner_id}, headers=admin_headers)

        assert resp.status_code == 500
        assert resp.headers["Retry-After"] == "60"
        assert_problem_details(resp, 500, "internal_error")

    def test_unknown_user_is_404(self, test_client, admin_headers):
        resp = test_client.post("/auth/api-keys", json={"user_id": "no-such-user"}, headers=admin_headers)
        assert_problem_details(resp, 404, "not_found")

    def test_second_long_lived_key_is_409(self, test_client, admin_headers, owner_id):
        _issue(test_client, admin_headers, owner_id)
        resp = test_client.post("/auth/api-keys", json={"user_id": owner_id}, headers=admin_headers)
        assert_problem_details(resp, 409, "conflict")

    def test_expiring_keys_do_not_conflict(self, test_client, admin_headers, owner_id):
        _issue(test_client, admin_headers, owner_id)
        _issue(test_client, admin_headers, owner_id, expires_in_seconds=60)
        _issue(test_client, admin_headers, owner_id, expires_in_seconds=60)

    @pytest.mark.parametrize("expires_in_seconds", [0, -5, MAX_EXPIRES_IN_SECONDS + 1, 10**12])
    def test_invalid_body_is_422(self, test_client, admin_headers, owner_id, expires_in_seconds):
        resp = test_client.post(
            "/auth/api-keys",
            json={"user_id": owner_id, "expires_in_seconds": expires_in_seconds},
            headers=admin_headers,
        )
        data = assert_problem_details(resp, 422, "validation_error")
        assert "expires_in_seconds" in data["detail"]

    def test_longest_allowed_lifetime(self, test_client, admin_headers, owner_id):
        data = _issue(test_client, admin_headers, owner_id, expires_in_seconds=MAX_EXPIRES_IN_SECONDS)
        assert data["expires_at"] is not None


class TestVerification:
    def test_me_returns_auth_context(self, test_client, admin_headers, owner_id):
        key = _issue(test_client, admin_headers, owner_id)

        resp = test_client.get("/auth/me", headers=_bearer(key["key"]))

        assert resp.status_code == 200
        assert resp.json() == {
            "user_id": owner_id,
            "credential_id": key["key_id"],
            "subscription_status": "inactive",
            "subscription_tier": "free",
            "long_lived": True,
        }

    def test_failures_are_indistinguishable(self, test_client, admin_headers, owner_id, clock):
        expiring = _issue(test_client, admin_headers, owner_id, expires_in_seconds=60)
        clock.advance(seconds=61)

        unknown = "ff_live_" + "A" * 43
        bodies = []
        for headers in (
            {},
            {"Authorization": "Bearer not-a-credential"},
            _bearer(unknown),
            _bearer(expiring["key"]),
        ):
            resp = test_client.get("/auth/me", headers=headers)
            assert resp.status_code == 401
            assert resp.headers["WWW-Authenticate"] == "Bearer"
            data = assert_problem_details(resp, 401, "invalid_or_expired_token")
            bodies.append({k: data[k] for k in ("type", "title", "status", "detail", "error")})

        assert all(body == bodies[0] for body in bodies)

    def test_key_valid_until_expiry(self, test_client, admin_headers, owner_id, clock):
        expiring = _issue(test_client, admin_headers, owner_id, expires_in_seconds=60)
        clock.advance(seconds=59)

        resp = test_client.get("/auth/me", headers=_bearer(expiring["key"]))
        assert resp.status_code == 200
        assert resp.json()["long_lived"] is False

    def test_last_used_at_updated_after_response(
        self, test_client, admin_headers, owner_id, clock, sql_uow_factory
    ):
        key = _issue(test_client, admin_headers, owner_id)
        clock.advance(minutes=5)

        assert test_client.get("/auth/me", headers=_bearer(key["key"])).status_code == 200

        with sql_uow_factory() as uow:
            stored = uow.credentials.get(key["key_id"])
        assert stored.last_used_at == clock()


class TestRevocation:
    def test_revoke_own_key(self, test_client, admin_headers, owner_id):
        long_lived = _issue(test_client, admin_headers, owner_id)
        other = _issue(test_client, admin_headers, owner_id, expires_in_seconds=600)

        resp = test_client.delete(f"/auth/api-keys/{other['key_id']}", headers=_bearer(long_lived["key"]))
        assert resp.status_code == 204

        resp = test_client.get("/auth/me", headers=_bearer(other["key"]))
        assert_problem_details(resp, 401, "invalid_or_expired_token")

    def test_revoke_self_then_reissue(self, test_client, admin_headers, owner_id):
        key = _issue(test_client, admin_headers, owner_id)

        resp = test_client.delete(f"/auth/api-keys/{key['key_id']}", headers=_bearer(key["key"]))
        assert resp.status_code == 204
        assert test_client.get("/auth/me", headers=_bearer(key["key"])).status_code == 401

        # Long-lived slot is free again
        _issue(test_client, admin_headers, owner_id)

    def test_revoke_foreign_key_is_stealth_404(
        self, test_client, admin_headers, owner_id, sql_uow_factory, make_user
    ):
        intruder_id = make_user(sql_uow_factory, external_identity_id="gh-intruder")
        victim_key = _issue(test_client, admin_headers, owner_id)
        intruder_key = _issue(test_client, admin_headers, intruder_id)

        resp = test_client.delete(
            f"/auth/api-keys/{victim_key['key_id']}", headers=_bearer(intruder_key["key"])
        )
        assert_problem_details(resp, 404, "not_found")
        assert test_client.get("/auth/me", headers=_bearer(victim_key["key"])).status_code == 200

    def test_revoke_requires_bearer(self, test_client):
        resp = test_client.delete("/auth/api-keys/anything")
        assert_problem_details(resp, 401, "invalid_or_expired_token")


class TestRequestContext:
    def test_request_id_echoed(self, test_client):
        resp = test_client.get("/health", headers={"X-Request-ID": "req-abc-123"})
        assert resp.headers["X-Request-ID"] == "req-abc-123"

    def test_request_id_generated(self, test_client):
        resp = test_client.get("/health")
        assert resp.headers["X-Request-ID"]

    def test_problem_carries_request_id(self, test_client):
        resp = test_client.get("/auth/me", headers={"X-Request-ID": "req-trace-0001"})
        data = assert_problem_details(resp, 401, "invalid_or_expired_token")
        assert data["request_id"] == "req-trace-0001"
        assert data["instance"] == "urn:forkforge:trace:req-trace-0001"

    def test_unknown_route_is_problem_json(self, test_client):
        resp = test_client.get("/no-such-route")
        assert_problem_details(resp, 404, "http_404")

    def test_health_and_readiness(self, test_client):
        health = test_client.get("/health")
        assert health.status_code == 200
        assert health.json()["services"]["database"] == "up"

        ready = test_client.get("/readyz")
        assert ready.status_code == 200
        assert ready.json()["status"] == "ready"
