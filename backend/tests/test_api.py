import datetime

import pytest
from fastapi.testclient import TestClient

from chatdesk.core.errors import InvalidRequest, StoreUnavailable
from chatdesk.main import create_app
from chatdesk.services.llm_client import LLMClient

from conftest import ADMIN_KEY

AUTH = {"Authorization": f"Bearer {ADMIN_KEY}"}


@pytest.fixture
def client(settings, fake_openai):
    app = create_app(settings, llm=LLMClient(settings, transport=fake_openai.transport()))
    with TestClient(app) as test_client:
        yield test_client


def _drain(client):
    """Wait for background notification writes scheduled by earlier requests."""
    client.portal.call(client.app.state.ctx.dispatcher.drain)


def _create(client, project_id="acme", **extra):
    body = {"project_id": project_id, "name": "Acme bot", "knowledge_text": "Open 9 to 5."}
    body.update(extra)
    return client.post("/admin/projects", json=body, headers=AUTH)


# ── System / auth ───────────────────────────────────────────
def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": "Bearer wrong"}, {"Authorization": ADMIN_KEY}],
)
def test_admin_routes_require_the_admin_key(client, headers):
    response = client.get("/admin/projects", headers=headers)
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or missing admin key."


# ── Projects ────────────────────────────────────────────────
def test_create_project_with_defaults(client):
    response = _create(client)
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "active"
    assert body["monthly_token_limit"] == 100_000
    assert body["total_tokens_used"] == 0


def test_duplicate_project_is_a_conflict(client):
    assert _create(client).status_code == 201
    assert _create(client).status_code == 409


def test_invalid_project_payload(client):
    assert _create(client, project_id="has spaces").status_code == 422
    assert _create(client, monthly_token_limit=0).status_code == 422


def test_unknown_project_is_404(client):
    assert client.get("/admin/projects/ghost", headers=AUTH).status_code == 404
    assert client.post("/api/projects/ghost/chat", json={"message": "hi"}).status_code == 404


def test_delete_hides_project_and_blocks_chat(client):
    _create(client)

    assert client.delete("/admin/projects/acme", headers=AUTH).status_code == 204
    assert client.get("/admin/projects", headers=AUTH).json() == []

    response = client.post("/api/projects/acme/chat", json={"message": "hi"})
    assert response.status_code == 200
    assert response.json()["status"] == "deleted"


def test_update_project_in_place(client, fake_openai):
    _create(client, description="Front desk", monthly_token_limit=1000)
    client.post("/api/projects/acme/chat", json={"message": "hi"})

    response = client.patch(
        "/admin/projects/acme",
        json={
            "name": "Acme support",
            "description": "",
            "knowledge_text": "Open 8 to 6.",
            "monthly_token_limit": 2000,
        },
        headers=AUTH,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Acme support"
    assert body["description"] == "Front desk"
    assert body["monthly_token_limit"] == 2000
    assert body["total_tokens_used"] == 100
    assert body["status"] == "active"

    client.post("/api/projects/acme/chat", json={"message": "When are you open?"})
    assert "Open 8 to 6." in fake_openai.requests[-1].content.decode()


def test_update_project_rejections(client):
    _create(client)

    assert client.patch("/admin/projects/acme", json={"monthly_token_limit": 0}, headers=AUTH).status_code == 422
    assert client.patch("/admin/projects/acme", json={"status": "active"}, headers=AUTH).status_code == 422
    assert client.patch("/admin/projects/ghost", json={"name": "x"}, headers=AUTH).status_code == 404

    client.delete("/admin/projects/acme", headers=AUTH)
    assert client.patch("/admin/projects/acme", json={"name": "x"}, headers=AUTH).status_code == 404


# ── Chat ────────────────────────────────────────────────────
def test_chat_round_trip(client):
    _create(client, monthly_token_limit=1000)

    response = client.post(
        "/api/projects/acme/chat",
        json={"message": "When are you open?", "session_id": "s1"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["tokens_used"] == 100
    assert body["usage"] == {"total_tokens": 100, "limit": 1000, "usage_percent": 10.0}

    history = client.get("/api/projects/acme/chat/history", params={"session_id": "s1"}).json()
    assert history["count"] == 1

    rate = client.post(
        f"/api/projects/acme/chat/messages/{body['message_id']}/rate",
        json={"rating": "positive"},
    )
    assert rate.status_code == 200
    assert rate.json()["rating"] == "positive"


def test_rate_unknown_message(client):
    _create(client)
    response = client.post(
        "/api/projects/acme/chat/messages/00000000-0000-0000-0000-000000000000/rate",
        json={"rating": "negative"},
    )
    assert response.status_code == 404


def test_chat_rejects_client_supplied_usage(client):
    _create(client)
    response = client.post("/api/projects/acme/chat", json={"message": "hi", "tokens_used": 1})
    assert response.status_code == 422


def test_llm_failure_is_502(client, fake_openai):
    _create(client)
    fake_openai.status_code = 503

    response = client.post("/api/projects/acme/chat", json={"message": "hi"})

    assert response.status_code == 502
    assert response.json()["status"] == "error"
    usage = client.get("/admin/projects/acme/usage", headers=AUTH).json()
    assert usage["tokens_used"] == 0


def test_store_outage_on_chat_is_503(client, fake_openai, monkeypatch):
    _create(client)
    store = client.app.state.ctx.store

    async def unavailable(project_id):
        raise StoreUnavailable("Project store unavailable during find_by_external_id")

    monkeypatch.setattr(store, "find_by_external_id", unavailable)
    response = client.post("/api/projects/acme/chat", json={"message": "hi"})
    monkeypatch.undo()

    assert response.status_code == 503
    assert response.json()["detail"] == "Service temporarily unavailable. Please try again."
    assert fake_openai.calls == 0
    assert client.get("/admin/projects/acme", headers=AUTH).json()["total_tokens_used"] == 0


def test_limit_exceeded_is_reported_to_the_widget(client):
    _create(client, monthly_token_limit=100)

    assert client.post("/api/projects/acme/chat", json={"message": "hi"}).json()["status"] == "success"
    body = client.post("/api/projects/acme/chat", json={"message": "hi"}).json()

    assert body["status"] == "limit_exceeded"
    assert body["usage"]["total_tokens"] == 100


# ── Subscription lifecycle ──────────────────────────────────
def test_suspend_reactivate_cycle(client):
    _create(client)

    suspended = client.post("/admin/projects/acme/suspend", json={"reason": "abuse"}, headers=AUTH)
    assert suspended.json()["status"] == "suspended"
    assert client.post("/api/projects/acme/chat", json={"message": "hi"}).json()["status"] == "suspended"

    reactivated = client.post("/admin/projects/acme/reactivate", headers=AUTH)
    assert reactivated.status_code == 200
    assert reactivated.json()["status"] == "active"

    again = client.post("/admin/projects/acme/reactivate", headers=AUTH)
    assert again.status_code == 400


def test_renew_with_defaults(client):
    created = _create(client).json()

    response = client.post("/admin/projects/acme/renew", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "active"
    assert body["tokens_reset"] is True
    assert datetime.datetime.fromisoformat(body["new_expiry"]) > datetime.datetime.fromisoformat(
        created["expiry_date"]
    )


def test_renew_rejects_out_of_range_months(client):
    _create(client)
    response = client.post("/admin/projects/acme/renew", json={"months": 13}, headers=AUTH)
    assert response.status_code == 422


def test_limit_update_and_usage_reset(client):
    _create(client)

    updated = client.post("/admin/projects/acme/limit", json={"new_limit": 5000}, headers=AUTH)
    assert updated.json()["monthly_token_limit"] == 5000
    assert client.post("/admin/projects/acme/limit", json={"new_limit": 0}, headers=AUTH).status_code == 422

    client.post("/api/projects/acme/chat", json={"message": "hi"})
    reset = client.post("/admin/projects/acme/usage/reset", headers=AUTH)
    assert reset.json()["total_tokens_used"] == 0


def test_subscription_and_usage_reports(client):
    _create(client, monthly_token_limit=1000)
    client.post("/api/projects/acme/chat", json={"message": "hi"})

    status = client.get("/admin/projects/acme/subscription", headers=AUTH).json()
    assert status["status"] == "active"
    assert status["remaining_tokens"] == 900
    assert status["is_active"] is True
    assert status["needs_renewal"] is False

    usage = client.get("/admin/projects/acme/usage", headers=AUTH).json()
    assert usage["tokens_used"] == 100
    assert usage["usage_percentage"] == 10.0
    assert usage["estimated_cost_usd"] is not None
    assert usage["warnings"] == []


def test_notifications_and_stats(client):
    _create(client)
    client.post("/admin/projects/acme/suspend", json={"reason": "abuse"}, headers=AUTH)
    _drain(client)

    notifications = client.get("/admin/projects/acme/notifications", headers=AUTH).json()
    assert notifications["count"] == 1
    assert notifications["notifications"][0]["type"] == "suspension"

    stats = client.get("/admin/subscriptions/stats", headers=AUTH).json()
    assert stats["by_status"] == [
        {"status": "suspended", "count": 1, "total_tokens": 0, "total_limit": 100_000},
    ]


def test_manual_maintenance_run(client):
    response = client.post("/admin/maintenance/run", headers=AUTH)
    assert response.status_code == 200
    assert response.json() == {"expired": 0, "reminders": 0, "failures": 0}


def test_only_domain_validation_errors_become_400(settings, fake_openai):
    app = create_app(settings, llm=LLMClient(settings, transport=fake_openai.transport()))

    @app.get("/raise/invalid-request")
    async def raise_invalid_request():
        raise InvalidRequest("Months must be between 1 and 12")

    @app.get("/raise/value-error")
    async def raise_value_error():
        raise ValueError("internal detail")

    with TestClient(app, raise_server_exceptions=False) as test_client:
        domain = test_client.get("/raise/invalid-request")
        internal = test_client.get("/raise/value-error")

    assert domain.status_code == 400
    assert domain.json() == {"detail": "Months must be between 1 and 12"}
    assert internal.status_code == 500
    assert "internal detail" not in internal.text
