"""HTTP contract tests for POST /billing/webhook.

Status taxonomy (anything but 2xx makes the processor redeliver):
  signature missing / invalid / stale     -> 400 invalid_signature
  invalid JSON                            -> 400 invalid_json
  malformed event                         -> 400 invalid_input
  signing secret not configured           -> 500 webhook_provider_misconfig
  long-lived credential already held      -> 409 conflict (rolled back)
  store unavailable                       -> 503 + Retry-After (rolled back)
"""

import json
import time

import pytest
from httpx import ASGITransport, AsyncClient

from forkforge_api.auth.issuer import CredentialIssuer
from forkforge_api.billing.signature import compute_signature_header
from forkforge_api.errors import ExternalService
from forkforge_api.main import app
from forkforge_api.routers.webhooks import get_ingestor

WEBHOOK_SECRET = "whsec_test_0123456789"


def _checkout(event_id: str = "evt_1", customer: str = "cus_1", payment_status: str = "paid") -> bytes:
    return json.dumps(
        {
            "id": event_id,
            "type": "checkout.session.completed",
            "data": {"object": {"customer": customer, "payment_status": payment_status}},
        }
    ).encode("utf-8")


def _signed(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> dict[str, str]:
    return {
        "Stripe-Signature": compute_signature_header(body, secret, timestamp),
        "Content-Type": "application/json",
    }


def _post(client, body: bytes, headers: dict[str, str]):
    return client.post("/billing/webhook", content=body, headers=headers)


def _event_recorded(uow_factory, event_id: str) -> bool:
    with uow_factory() as uow:
        return uow.events.exists(event_id)


class TestProvisioning:
    def test_checkout_provisions_once(self, test_client, key_sink, sql_uow_factory):
        body = _checkout()

        first = _post(test_client, body, _signed(body))
        assert first.status_code == 200
        assert first.json() == {"status": "processed"}

        # Processor redelivery of the same event
        second = _post(test_client, body, _signed(body))
        assert second.status_code == 200
        assert second.json() == {"status": "already_processed"}

        assert len(key_sink.deliveries) == 1
        with sql_uow_factory() as uow:
            user = uow.users.find_by_billing_ref("cus_1")
            creds = uow.credentials.list_for_user(user.id)
        assert user.subscription_status == "active"
        assert [c.id for c in creds] == [key_sink.deliveries[0]["issued"].credential_id]

    def test_provisioned_key_authenticates(self, test_client, key_sink):
        body = _checkout()
        assert _post(test_client, body, _signed(body)).status_code == 200

        secret = key_sink.deliveries[0]["issued"].secret
        resp = test_client.get("/auth/me", headers={"Authorization": f"Bearer {secret}"})
        assert resp.status_code == 200
        assert resp.json()["subscription_status"] == "active"

    def test_unknown_event_type_is_ignored(self, test_client, sql_uow_factory):
        body = json.dumps({"id": "evt_x", "type": "payout.created", "data": {"object": {}}}).encode()

        resp = _post(test_client, body, _signed(body))

        assert resp.status_code == 200
        assert resp.json() == {"status": "ignored"}
        assert _event_recorded(sql_uow_factory, "evt_x")

    def test_existing_long_lived_credential_is_409(
        self, test_client, key_sink, sql_uow_factory, clock
    ):
        with sql_uow_factory() as uow:
            user = uow.users.upsert_by_billing_ref("cus_1")
            uow.commit()
        CredentialIssuer(sql_uow_factory, clock=clock).issue(user.id)

        body = _checkout()
        resp = _post(test_client, body, _signed(body))

        assert resp.status_code == 409
        assert resp.json()["error"] == "conflict"
        assert not _event_recorded(sql_uow_factory, "evt_1")
        assert key_sink.deliveries == []


class TestSignature:
    def test_missing_signature_is_400(self, test_client, key_sink):
        resp = _post(test_client, _checkout(), {"Content-Type": "application/json"})

        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_signature"
        assert key_sink.deliveries == []

    def test_wrong_secret_is_400(self, test_client, sql_uow_factory):
        body = _checkout()
        resp = _post(test_client, body, _signed(body, secret="whsec_other"))

        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_signature"
        assert not _event_recorded(sql_uow_factory, "evt_1")

    def test_tampered_body_is_400(self, test_client):
        headers = _signed(_checkout(customer="cus_1"))
        resp = _post(test_client, _checkout(customer="cus_attacker"), headers)
        assert resp.status_code == 400

    def test_stale_timestamp_is_400(self, test_client):
        body = _checkout()
        resp = _post(test_client, body, _signed(body, timestamp=int(time.time()) - 3600))
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_signature"

    def test_tolerance_from_env(self, test_client, monkeypatch):
        monkeypatch.setenv("WEBHOOK_TOLERANCE_SECONDS", "10")
        body = _checkout()
        resp = _post(test_client, body, _signed(body, timestamp=int(time.time()) - 120))
        assert resp.status_code == 400

    def test_non_ascii_signature_is_400(self, test_client, sql_uow_factory):
        body = _checkout()
        header = f"t={int(time.time())},v1=".encode("ascii") + b"\xe9\xe9"
        resp = _post(
            test_client,
            body,
            {"Stripe-Signature": header, "Content-Type": "application/json"},
        )

        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_signature"
        assert "Retry-After" not in resp.headers
        assert not _event_recorded(sql_uow_factory, "evt_1")


class TestPayloadErrors:
    def test_invalid_json_is_400(self, test_client):
        body = b"{not json"
        resp = _post(test_client, body, _signed(body))

        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_json"

    def test_non_object_json_is_400(self, test_client):
        body = b"[1, 2, 3]"
        resp = _post(test_client, body, _signed(body))
        assert resp.json()["error"] == "invalid_json"

    def test_missing_event_id_is_400(self, test_client):
        body = json.dumps({"type": "checkout.session.completed"}).encode()
        resp = _post(test_client, body, _signed(body))

        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_input"

    def test_malformed_checkout_is_400_and_not_recorded(self, test_client, sql_uow_factory):
        body = json.dumps(
            {"id": "evt_m", "type": "checkout.session.completed", "data": {"object": {"payment_status": "paid"}}}
        ).encode()
        resp = _post(test_client, body, _signed(body))

        assert resp.status_code == 400
        assert not _event_recorded(sql_uow_factory, "evt_m")


class TestServerErrors:
    def test_missing_signing_secret_is_500(self, test_client, monkeypatch):
        monkeypatch.delenv("STRIPE_WEBHOOK_SECRET")
        body = _checkout()
        resp = _post(test_client, body, _signed(body))

        assert resp.status_code == 500
        assert resp.headers["Retry-After"] == "60"
        assert resp.json()["error"] == "webhook_provider_misconfig"

    def test_store_unavailable_is_503(self, test_client):
        class UnavailableIngestor:
            def ingest(self, event_id, event_type, payload):
                raise ExternalService("Store unavailable (events.try_insert)")

        app.dependency_overrides[get_ingestor] = UnavailableIngestor
        body = _checkout()
        resp = _post(test_client, body, _signed(body))

        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "60"
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.json()["error"] == "external_service_unavailable"


@pytest.mark.asyncio
async def test_webhook_over_asgi_transport(test_client, key_sink):
    """Same flow through an async client (threadpool hand-off for store work)."""
    body = _checkout(event_id="evt_async")
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post("/billing/webhook", content=body, headers=_signed(body))

    assert resp.status_code == 200
    assert resp.json() == {"status": "processed"}
    assert len(key_sink.deliveries) == 1
