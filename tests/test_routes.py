"""Tests for the HTTP routes."""

from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from conftest import (
    OLX_API,
    OLX_TOKEN_URL,
    OTODOM_API,
    OTODOM_TAXONOMY_URL,
    PRINCIPAL,
    configure_platform,
    make_apartment,
    make_settings,
)
from rental_sync.api.state import set_app_state
from rental_sync.auth import create_access_token
from rental_sync.main import app, build_app_state
from rental_sync.models.domain import ConfirmedRef, PendingRef, Platform
from rental_sync.partners.oauth import encode_state
from rental_sync.partners.signature import compute_signature

WEBHOOK_SECRET = "s3cret"
USER_HEADERS = {"Authorization": f"Bearer {create_access_token(PRINCIPAL, secret_key='test-secret-key')}"}
ADMIN_HEADERS = {
    "Authorization": f"Bearer {create_access_token('admin', is_admin=True, secret_key='test-secret-key')}"
}


@pytest.fixture
def app_state(tmp_path, partner):
    settings = make_settings(str(tmp_path / "routes.db"), otodom_webhook_secret=WEBHOOK_SECRET)
    state = build_app_state(settings, transport=partner.transport)
    set_app_state(state)
    yield state
    set_app_state(None)


@pytest.fixture
def client(app_state):
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


def create_apartment(client, app_state, **overrides) -> str:
    apartment = client.portal.call(app_state.storage.create_apartment, make_apartment(**overrides))
    return apartment.id


def get_apartment(client, app_state, apartment_id):
    return client.portal.call(app_state.storage.get_apartment, apartment_id)


class TestHealthAndAuth:
    """Health endpoint and bearer authentication."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "rental-sync"
        assert data["worker_running"] is True

    def test_missing_token(self, client):
        response = client.get("/api/api-config")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_token_signed_with_other_key(self, client):
        token = create_access_token(PRINCIPAL, secret_key="another-key")

        response = client.get("/api/api-config", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_admin_required_for_app_credentials(self, client):
        response = client.post(
            "/api/api-config",
            json={"platform": "olx", "clientId": "id", "clientSecret": "secret"},
            headers=USER_HEADERS,
        )

        assert response.status_code == 403


class TestApiConfig:
    """Credential configuration and the OAuth flow."""

    def test_save_and_list_configuration(self, client):
        response = client.post(
            "/api/api-config",
            json={"platform": "otodom", "clientId": "id", "clientSecret": "secret", "apiKey": "k"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["isConfigured"] is True

        # Key is kept when omitted on a later save
        client.post(
            "/api/api-config",
            json={"platform": "otodom", "clientId": "id2", "clientSecret": "secret2"},
            headers=ADMIN_HEADERS,
        )

        config = {c["platform"]: c for c in client.get("/api/api-config", headers=USER_HEADERS).json()}
        assert config["otodom"]["isConfigured"] is True
        assert config["otodom"]["clientId"] == "id2"
        assert config["otodom"]["hasApiKey"] is True
        assert config["otodom"]["isActive"] is False
        assert config["olx"]["isConfigured"] is False
        assert "clientSecret" not in config["otodom"]

    def test_authorize_not_configured(self, client):
        response = client.post("/api/api-config/olx/authorize", headers=USER_HEADERS)

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "NotConfigured"

    def test_authorize_and_callback(self, client, app_state, partner):
        client.portal.call(configure_platform, app_state.storage, Platform.OLX, PRINCIPAL, 3600, "r", False)

        response = client.post("/api/api-config/olx/authorize", headers=USER_HEADERS)
        assert response.status_code == 200
        state = parse_qs(urlsplit(response.json()["authUrl"]).query)["state"][0]

        partner.add_token(OLX_TOKEN_URL, access_token="granted")
        callback = client.get(
            "/api/api-config/olx/callback", params={"code": "abc", "state": state}
        )

        assert callback.status_code == 200
        assert "oauth_success" in callback.text
        config = {c["platform"]: c for c in client.get("/api/api-config", headers=USER_HEADERS).json()}
        assert config["olx"]["isActive"] is True
        assert config["olx"]["tokenExpiresAt"] is not None

    def test_callback_with_bad_state(self, client):
        response = client.get("/api/api-config/olx/callback", params={"code": "abc", "state": "x"})

        assert response.status_code == 400
        assert "authorization failed" in response.text

    def test_callback_denied_by_user(self, client):
        response = client.get(
            "/api/api-config/otodom/callback",
            params={"error": "access_denied", "state": encode_state(PRINCIPAL)},
        )

        assert response.status_code == 400
        assert "access_denied" in response.text


class TestPublishRoutes:
    """Publish, update, delete and status."""

    def test_publish_olx(self, client, app_state, partner):
        client.portal.call(configure_platform, app_state.storage, Platform.OLX)
        apartment_id = create_apartment(client, app_state)
        partner.add("POST", f"{OLX_API}/adverts", json={"id": "olx-5"})

        response = client.post(f"/api/publish/{apartment_id}/olx", headers=USER_HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Listing published on OLX.",
            "url": "https://www.olx.pl/oferta/olx-5",
            "advertId": "olx-5",
        }

    def test_publish_not_authorized(self, client, app_state):
        client.portal.call(configure_platform, app_state.storage, Platform.OLX, PRINCIPAL, 3600, "r", False)
        apartment_id = create_apartment(client, app_state)

        response = client.post(f"/api/publish/{apartment_id}/olx", headers=USER_HEADERS)

        assert response.status_code == 403
        assert response.json()["error"] == "NotAuthorized"

    def test_error_messages_distinguish_retry_cases(self, client, app_state, partner):
        client.portal.call(configure_platform, app_state.storage, Platform.OTODOM)
        published = create_apartment(client, app_state)
        pending = create_apartment(client, app_state)
        client.portal.call(
            app_state.storage.set_external_ref, published, Platform.OTODOM, ConfirmedRef(listing_id="u")
        )
        client.portal.call(
            app_state.storage.set_external_ref,
            pending,
            Platform.OTODOM,
            PendingRef(transaction_id="t"),
        )
        fresh = create_apartment(client, app_state)
        partner.add("POST", OTODOM_API, status_code=503, json={"message": "maintenance"})

        already = client.post(f"/api/publish/{published}/otodom", headers=USER_HEADERS)
        not_yet = client.put(f"/api/publish/{pending}/otodom", headers=USER_HEADERS)
        transient = client.post(f"/api/publish/{fresh}/otodom", headers=USER_HEADERS)

        assert (already.status_code, not_yet.status_code, transient.status_code) == (409, 409, 502)
        messages = {already.json()["message"], not_yet.json()["message"], transient.json()["message"]}
        assert len(messages) == 3
        assert transient.json()["error"] == "PublishRejected"
        assert "maintenance" in transient.json()["detail"]

    def test_unknown_apartment_and_platform(self, client):
        assert client.post("/api/publish/missing/olx", headers=USER_HEADERS).status_code == 404
        assert client.post("/api/publish/missing/allegro", headers=USER_HEADERS).status_code == 422

    def test_status_probe(self, client, app_state, partner):
        client.portal.call(configure_platform, app_state.storage, Platform.OTODOM)
        apartment_id = create_apartment(client, app_state)
        client.portal.call(
            app_state.storage.set_external_ref,
            apartment_id,
            Platform.OTODOM,
            PendingRef(transaction_id="txn-1"),
        )
        partner.add("GET", f"{OTODOM_API}/txn-1/meta", json={"uuid": "uuid-1", "state": "active"})

        response = client.get(f"/api/publish/{apartment_id}/otodom/status", headers=USER_HEADERS)

        assert response.status_code == 200
        assert response.json()["confirmed"] is True
        assert response.json()["advertId"] == "uuid-1"

    def test_otodom_taxonomy(self, client, app_state, partner):
        client.portal.call(configure_platform, app_state.storage, Platform.OTODOM)
        partner.add(
            "GET",
            OTODOM_TAXONOMY_URL,
            json=[{"urn": "urn:concept:deposit", "label": "Kaucja"}, {"urn": "urn:concept:floor"}],
        )

        response = client.get("/api/publish/otodom/taxonomy", headers=USER_HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "foundAttributes": [{"urn": "urn:concept:deposit", "label": "Kaucja"}],
            "allAttributes": [
                {"urn": "urn:concept:deposit", "label": "Kaucja"},
                {"urn": "urn:concept:floor"},
            ],
            "totalCount": 2,
        }

    def test_otodom_taxonomy_errors(self, client, app_state, partner):
        assert client.get("/api/publish/otodom/taxonomy").status_code == 401

        not_configured = client.get("/api/publish/otodom/taxonomy", headers=USER_HEADERS)
        assert not_configured.status_code == 400
        assert not_configured.json()["error"] == "NotConfigured"

        client.portal.call(configure_platform, app_state.storage, Platform.OTODOM)
        partner.add("GET", OTODOM_TAXONOMY_URL, status_code=503, json={"message": "maintenance"})
        failed = client.get("/api/publish/otodom/taxonomy", headers=USER_HEADERS)
        assert failed.status_code == 502
        assert failed.json()["error"] == "TaxonomyQueryFailed"


class TestWebhookRoutes:
    """Otodom notification endpoint."""

    def body(self, transaction_id="txn-1", object_id="obj-1"):
        return {
            "flow": "publish_advert",
            "event_type": "advert_posted_success",
            "object_id": object_id,
            "transaction_id": transaction_id,
        }

    def pending_apartment(self, client, app_state, transaction_id="txn-1") -> str:
        apartment_id = create_apartment(client, app_state)
        client.portal.call(
            app_state.storage.set_external_ref,
            apartment_id,
            Platform.OTODOM,
            PendingRef(transaction_id=transaction_id),
        )
        return apartment_id

    def test_probe_endpoints(self, client):
        assert client.get("/api/webhooks/otodom").text == "OK"
        assert client.head("/api/webhooks/otodom").status_code == 200

    def test_signed_notification_confirms(self, client, app_state):
        apartment_id = self.pending_apartment(client, app_state)
        signature = compute_signature("obj-1", "txn-1", WEBHOOK_SECRET)

        response = client.post(
            "/api/webhooks/otodom", json=self.body(), headers={"x-signature": signature}
        )
        client.portal.call(app_state.worker.join)

        assert response.status_code == 200
        assert response.text == "OK"
        apartment = get_apartment(client, app_state, apartment_id)
        assert apartment.external_ref(Platform.OTODOM) == ConfirmedRef(listing_id="obj-1")

    def test_bad_signature_rejected(self, client, app_state):
        apartment_id = self.pending_apartment(client, app_state)
        signature = compute_signature("obj-1", "txn-1", "wrong-secret")

        response = client.post(
            "/api/webhooks/otodom", json=self.body(), headers={"x-signature": signature}
        )
        client.portal.call(app_state.worker.join)

        assert response.status_code == 401
        apartment = get_apartment(client, app_state, apartment_id)
        assert isinstance(apartment.external_ref(Platform.OTODOM), PendingRef)

    def test_unsigned_accepted_unless_required(self, client, app_state):
        apartment_id = self.pending_apartment(client, app_state)

        app_state.settings.webhook_require_signature = True
        rejected = client.post("/api/webhooks/otodom", json=self.body())
        app_state.settings.webhook_require_signature = False
        accepted = client.post("/api/webhooks/otodom", json=self.body())
        client.portal.call(app_state.worker.join)

        assert rejected.status_code == 401
        assert accepted.status_code == 200
        apartment = get_apartment(client, app_state, apartment_id)
        assert isinstance(apartment.external_ref(Platform.OTODOM), ConfirmedRef)

    def test_malformed_payload(self, client):
        missing = client.post("/api/webhooks/otodom", json={"object_id": "obj-1"})
        not_json = client.post(
            "/api/webhooks/otodom",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )
        not_object = client.post("/api/webhooks/otodom", json=["obj-1", "txn-1"])

        assert [missing.status_code, not_json.status_code, not_object.status_code] == [400, 400, 400]
        assert missing.json()["error"] == "MalformedPayload"

    @pytest.mark.parametrize("field", ["object_id", "transaction_id"])
    def test_empty_ids_rejected_before_reconciliation(self, client, app_state, field):
        apartment_id = self.pending_apartment(client, app_state)
        body = {**self.body(), field: ""}

        response = client.post("/api/webhooks/otodom", json=body)
        client.portal.call(app_state.worker.join)

        assert response.status_code == 400
        assert response.json()["error"] == "MalformedPayload"
        apartment = get_apartment(client, app_state, apartment_id)
        assert apartment.external_ref(Platform.OTODOM) == PendingRef(transaction_id="txn-1")

    def test_unmatched_notification_acknowledged(self, client, app_state):
        signature = compute_signature("obj-1", "txn-unknown", WEBHOOK_SECRET)

        response = client.post(
            "/api/webhooks/otodom",
            json=self.body(transaction_id="txn-unknown"),
            headers={"x-signature": signature},
        )
        client.portal.call(app_state.worker.join)

        assert response.status_code == 200


class TestFeedRoutes:
    """Public feed endpoints."""

    def test_olx_feed(self, client, app_state):
        create_apartment(client, app_state, id=None, photos=[])

        response = client.get("/api/feeds/olx", params={"email": "landlord@example.com"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert response.headers["access-control-allow-origin"] == "*"
        assert "<email>landlord@example.com</email>" in response.text
        assert '<image url="http://testserver/placeholder.jpg" />' in response.text

    def test_otodom_feed_with_base_url(self, client, app_state):
        create_apartment(client, app_state)

        response = client.get("/api/feeds/otodom", params={"baseUrl": "https://cdn.rent.pl"})

        assert response.status_code == 200
        assert 'xmlns="http://www.otodom.pl/feed"' in response.text
        assert "https://cdn.rent.pl/uploads/a1.jpg" in response.text
