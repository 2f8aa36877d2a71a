"""HTTP contracts: auth, validation envelope, quota, generation, billing routes."""
import pytest
from fastapi.testclient import TestClient

from nextstep.api.deps import get_billing_provider, get_chat_client
from nextstep.core.auth import Identity, create_test_jwt
from nextstep.features.billing.provider import BillingEvent
from nextstep.features.billing.sync import CHECKOUT_COMPLETED
from nextstep.features.entitlements.service import QUOTA_EXCEEDED_MESSAGE
from nextstep.features.users.service import get_user, upsert_user
from nextstep.main import app
from nextstep.tests.mocks import FakeBillingProvider, FakeChatClient, action_json

VALID_BODY = {"availableMinutes": 45, "energy": 4, "context": "WORK"}


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


def use_llm(responses):
    llm = FakeChatClient(responses)
    app.dependency_overrides[get_chat_client] = lambda: llm
    return llm


def use_billing(provider=None):
    provider = provider or FakeBillingProvider()
    app.dependency_overrides[get_billing_provider] = lambda: provider
    return provider


def test_health_is_public(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert "timestamp" in body
    assert resp.headers.get("x-request-id")


def test_unknown_route_uses_error_envelope(client):
    resp = client.get("/no-such-route")
    assert resp.status_code == 404
    body = resp.json()
    assert body["error"]["code"] == "not_found"
    assert body["error"]["request_id"] == resp.headers["x-request-id"]
    assert body["detail"] == "Not Found"


def test_wrong_method_uses_error_envelope(client):
    resp = client.delete("/health")
    assert resp.status_code == 405
    assert resp.json()["error"]["code"] == "http_error"
    assert "GET" in resp.headers["allow"]


def test_missing_token_is_401(client):
    resp = client.get("/me")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_token_signed_with_wrong_key_is_401(client):
    token = create_test_jwt(sub="user_mallory", secret="not-the-key")
    resp = client.get("/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid token"


def test_me_upserts_profile(client, auth_headers):
    resp = client.get("/me", headers=auth_headers(name="Alice A."))
    assert resp.status_code == 200
    body = resp.json()
    assert body["id"] == "user_alice"
    assert body["email"] == "alice@example.com"
    assert body["name"] == "Alice A."
    assert "createdAt" in body


def test_me_with_email_held_by_older_account(client, auth_headers):
    upsert_user(Identity(user_id="user_old", email="alice@example.com"))

    resp = client.get("/me", headers=auth_headers(sub="user_new", email="alice@example.com"))

    assert resp.status_code == 200
    assert resp.json()["id"] == "user_new"
    assert resp.json()["email"] == "alice@example.com"
    assert get_user("user_old")["email"] is None


def test_next_action_returns_camel_case_record(client, auth_headers):
    use_llm([action_json()])

    resp = client.post("/next-action", json=VALID_BODY, headers=auth_headers())

    assert resp.status_code == 200
    body = resp.json()
    assert body["attempts"] == 1
    assert body["timeMinutes"] == 25
    assert body["whyThis"]
    assert body["successCriteria"]
    assert body["fallbackIfStuck"]
    assert body["userId"] == "user_alice"


def test_invalid_body_is_400_and_does_not_use_quota(client, auth_headers):
    use_llm([])
    headers = auth_headers()

    resp = client.post(
        "/next-action",
        json={"availableMinutes": 2, "energy": 9, "context": "BEACH"},
        headers=headers,
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["request_id"] == resp.headers["x-request-id"]
    fields = {d["field"] for d in body["error"]["details"]}
    assert {"availableMinutes", "energy", "context"} <= fields

    status = client.get("/billing/status", headers=headers).json()
    assert status["usageCount"] == 0


def test_sixth_request_hits_quota(client, auth_headers):
    use_llm([action_json() for _ in range(5)])
    headers = auth_headers()

    for _ in range(5):
        assert client.post("/next-action", json=VALID_BODY, headers=headers).status_code == 200

    resp = client.post("/next-action", json=VALID_BODY, headers=headers)
    assert resp.status_code == 403
    body = resp.json()
    assert body["error"]["code"] == "quota_exceeded"
    assert body["detail"] == QUOTA_EXCEEDED_MESSAGE

    status = client.get("/billing/status", headers=headers).json()
    assert status == {"plan": "FREE", "usageCount": 5, "remaining": 0, "limit": 5}


def test_generation_failure_is_500_and_still_counts(client, auth_headers):
    use_llm(["{}", "{\"title\": \"\"}"])
    headers = auth_headers()

    resp = client.post("/next-action", json=VALID_BODY, headers=headers)

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "generation_failed"
    assert "Last error" in body["detail"]
    assert client.get("/history", headers=headers).json() == []
    assert client.get("/billing/status", headers=headers).json()["usageCount"] == 1


def test_generation_not_configured_is_503(client, auth_headers):
    resp = client.post("/next-action", json=VALID_BODY, headers=auth_headers())
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "service_unavailable"


def test_history_and_feedback_ownership(client, auth_headers):
    use_llm([action_json()])
    alice = auth_headers()
    bob = auth_headers(sub="user_bob", email="bob@example.com", name="Bob")

    action_id = client.post("/next-action", json=VALID_BODY, headers=alice).json()["id"]

    history = client.get("/history", headers=alice).json()
    assert [item["id"] for item in history] == [action_id]
    assert client.get("/history", headers=bob).json() == []

    stolen = client.post("/feedback", json={"actionId": action_id, "type": "DONE"}, headers=bob)
    assert stolen.status_code == 404

    own = client.post("/feedback", json={"actionId": action_id, "type": "TOO_HARD", "note": "long"}, headers=alice)
    assert own.status_code == 200
    assert own.json()["actionId"] == action_id
    assert own.json()["type"] == "TOO_HARD"


def test_goals_crud(client, auth_headers):
    headers = auth_headers()

    created = client.post("/goals", json={"title": "Run 5k", "priority": 4}, headers=headers)
    assert created.status_code == 201
    goal_id = created.json()["id"]

    listed = client.get("/goals", headers=headers).json()
    assert [g["title"] for g in listed] == ["Run 5k"]

    other = auth_headers(sub="user_bob", email="bob@example.com")
    assert client.delete(f"/goals/{goal_id}", headers=other).status_code == 404
    assert client.delete(f"/goals/{goal_id}", headers=headers).status_code == 204
    assert client.get("/goals", headers=headers).json() == []


def test_checkout_session_url(client, auth_headers):
    provider = use_billing()
    resp = client.post("/billing/create-checkout-session", headers=auth_headers())
    assert resp.status_code == 200
    assert resp.json() == {"url": "https://checkout.stripe.test/session/cs_test_1"}
    assert provider.checkout_calls[0]["user_id"] == "user_alice"


def test_portal_without_customer_is_400(client, auth_headers):
    use_billing()
    resp = client.post("/billing/create-portal-session", headers=auth_headers())
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No Stripe customer found for this user"


def test_billing_disabled_is_503(client, auth_headers):
    resp = client.post("/billing/create-checkout-session", headers=auth_headers())
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "billing_disabled"


def test_webhook_signature_required(client):
    use_billing()
    resp = client.post("/billing/webhook", content=b"{}")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "webhook_error"

    bad = client.post("/billing/webhook", content=b"{}", headers={"stripe-signature": "forged"})
    assert bad.status_code == 400


def test_webhook_checkout_upgrades_to_pro(client, auth_headers):
    provider = use_billing()
    provider.events["t=1,v1=ok"] = BillingEvent(
        event_id="evt_checkout",
        event_type=CHECKOUT_COMPLETED,
        data={"client_reference_id": "user_alice", "customer": "cus_alice"},
    )
    headers = auth_headers()
    client.get("/me", headers=headers)

    resp = client.post("/billing/webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=ok"})
    assert resp.status_code == 200
    assert resp.json() == {"received": True}

    status = client.get("/billing/status", headers=headers).json()
    assert status["plan"] == "PRO"
    assert status["remaining"] == "UNLIMITED"
