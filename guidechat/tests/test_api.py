"""
HTTP surface tests (FastAPI TestClient with fake providers).
"""
from datetime import datetime, timezone, timedelta

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from guidechat.core.config import settings
import guidechat.features.chat.service as chat_service
import guidechat.features.plans.service as plans_service
from guidechat.core.database import get_db_session
from guidechat.features.plans.service import assign_plan
from guidechat.features.providers.registry import get_provider_registry
from guidechat.features.usage.service import get_count, record_usage
from guidechat.main import app
from guidechat.models.bucket import ModelBucket
from guidechat.models.plan import PlanTier


USER = "api@example.com"
AUTH = {"X-User-Email": USER}


@pytest.fixture
def client(registry):
    app.dependency_overrides[get_provider_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    assert resp.headers.get("x-request-id")


def test_request_id_is_echoed(client):
    resp = client.get("/healthz", headers={"x-request-id": "req-123"})
    assert resp.headers["x-request-id"] == "req-123"


def test_guide_for_signed_in_user(client):
    resp = client.post("/api/ai/guide", json={"prompt": "sourdough", "model": "gemini-flash-2.5"}, headers=AUTH)
    assert resp.status_code == 200
    body = resp.json()
    assert body["bucket"] == "gemini"
    assert body["usage"] == {"used": 1, "limit": 4, "remaining": 3}
    assert body["guest"] is False


def test_guide_quota_denial_shape(client):
    record_usage(USER, ModelBucket.LLAMA, requests=6)
    resp = client.post("/api/ai/guide", json={"prompt": "x", "model": "llama"}, headers=AUTH)

    assert resp.status_code == 429
    error = resp.json()["error"]
    assert error["code"] == "quota_exceeded"
    assert "6 guides" in error["message"]
    assert error["details"]["reason"] == "daily limit reached"
    assert error["details"]["used"] == 6
    assert error["request_id"] == resp.headers["x-request-id"]


def test_guide_plan_denial_shape(client):
    assign_plan(USER, PlanTier.PRO)
    resp = client.post("/api/ai/guide", json={"prompt": "x", "model": "gpt-4.1"}, headers=AUTH)
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "model_not_in_plan"
    assert resp.json()["error"]["details"]["reason"] == "plan does not include this model"


def test_guide_invalid_model(client):
    resp = client.post("/api/ai/guide", json={"prompt": "x", "model": "gpt-5"}, headers=AUTH)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"
    assert "llama" in resp.json()["error"]["details"]["valid_models"]


def test_guide_missing_prompt(client):
    resp = client.post("/api/ai/guide", json={"model": "llama"}, headers=AUTH)
    assert resp.status_code == 400


def test_guide_rate_limited_sets_retry_after(client, providers):
    providers[ModelBucket.GEMINI].fail_rate_limited(retry_after=12)
    resp = client.post("/api/ai/guide", json={"prompt": "x", "model": "gemini"}, headers=AUTH)
    assert resp.status_code == 429
    assert resp.headers["Retry-After"] == "12"
    assert resp.json()["error"]["code"] == "provider_rate_limited"


def test_guest_guides_capped_by_ip(client):
    headers = {"x-forwarded-for": "198.51.100.20"}
    for _ in range(3):
        resp = client.post("/api/ai/guide", json={"prompt": "x", "model": "llama"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["guest"] is True

    resp = client.post("/api/ai/guide", json={"prompt": "x", "model": "llama"}, headers=headers)
    assert resp.status_code == 429

    other = client.post("/api/ai/guide", json={"prompt": "x", "model": "llama"}, headers={"x-forwarded-for": "198.51.100.21"})
    assert other.status_code == 200


def test_guest_cannot_use_gemini(client):
    resp = client.post("/api/ai/guide", json={"prompt": "x", "model": "gemini"}, headers={"x-forwarded-for": "198.51.100.22"})
    assert resp.status_code == 403


def test_chat_requires_auth(client):
    resp = client.get("/api/chat")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_chat_lifecycle(client):
    created = client.post("/api/chat", json={"model": "llama4"}, headers=AUTH)
    assert created.status_code == 201
    chat = created.json()["chat"]
    assert chat["model"] == "llama"
    assert chat["title"] == "New Chat"

    sent = client.post(f"/api/chat/{chat['id']}", json={"message": "hello"}, headers=AUTH)
    assert sent.status_code == 200
    assert sent.json()["message"]["role"] == "assistant"
    assert sent.json()["usage"]["used"] == 1
    assert sent.json()["new_title"] == "fake reply"

    fetched = client.get(f"/api/chat/{chat['id']}", headers=AUTH).json()["chat"]
    assert [m["role"] for m in fetched["messages"]] == ["user", "assistant"]
    assert "user_email" not in fetched

    listed = client.get("/api/chat", headers=AUTH).json()["chats"]
    assert [c["id"] for c in listed] == [chat["id"]]

    deleted = client.delete(f"/api/chat/{chat['id']}", headers=AUTH)
    assert deleted.status_code == 204
    assert client.get(f"/api/chat/{chat['id']}", headers=AUTH).status_code == 404


def test_create_chat_on_forbidden_model(client):
    resp = client.post("/api/chat", json={"model": "o3-mini"}, headers=AUTH)
    assert resp.status_code == 403


def test_switch_model_denied_leaves_session(client):
    chat = client.post("/api/chat", json={"model": "llama"}, headers=AUTH).json()["chat"]

    resp = client.patch(f"/api/chat/{chat['id']}", json={"model": "gpt41"}, headers=AUTH)
    assert resp.status_code == 403

    fetched = client.get(f"/api/chat/{chat['id']}", headers=AUTH).json()["chat"]
    assert fetched["model"] == "llama"

    ok = client.patch(f"/api/chat/{chat['id']}", json={"model": "deepseek-chat"}, headers=AUTH)
    assert ok.status_code == 200
    assert ok.json()["chat"]["model"] == "deepseek"


def test_foreign_session_is_404(client):
    chat = client.post("/api/chat", json={"model": "llama"}, headers=AUTH).json()["chat"]
    intruder = {"X-User-Email": "intruder@example.com"}

    foreign = client.post(f"/api/chat/{chat['id']}", json={"message": "hi"}, headers=intruder)
    missing = client.post("/api/chat/does-not-exist", json={"message": "hi"}, headers=intruder)

    assert foreign.status_code == missing.status_code == 404
    assert foreign.json()["error"]["message"] == missing.json()["error"]["message"]
    assert client.delete(f"/api/chat/{chat['id']}", headers=intruder).status_code == 404


def test_usage_endpoints(client):
    record_usage(USER, ModelBucket.DEEPSEEK, requests=2, text=2, tokens=80)

    usage = client.get("/api/usage", headers=AUTH).json()
    assert usage["plan"] == "free"
    assert usage["buckets"]["deepseek"]["remaining"] == 2

    history = client.get("/api/usage/history", params={"days": 3}, headers=AUTH).json()
    assert len(history["history"]) == 3
    assert history["history"][-1]["buckets"]["deepseek"]["requests"] == 2
    assert history["history"][0]["total"]["requests"] == 0

    assert client.get("/api/usage/history", params={"days": 0}, headers=AUTH).status_code == 422
    assert client.get("/api/usage/history", params={"days": 91}, headers=AUTH).status_code == 422

    limits = client.get("/api/user/limits", headers=AUTH).json()
    assert limits["limits"]["deepseekGuides"] == 2
    assert limits["export"]["allowed"] is True


def test_bearer_token_identity(client, monkeypatch):
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", "test-secret")
    token = jwt.encode(
        {"email": "Token@Example.com", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        "test-secret",
        algorithm="HS256",
    )
    resp = client.get("/api/usage", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200

    bad = client.get("/api/usage", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401


def _disk_error():
    return OperationalError("SELECT 1", {}, Exception("disk I/O error"))


def test_chat_store_failure_is_retryable_503(client, monkeypatch):
    def broken_session():
        raise _disk_error()

    monkeypatch.setattr(chat_service, "get_db_session", broken_session)

    resp = client.get("/api/chat/abc", headers=AUTH)
    assert resp.status_code == 503
    error = resp.json()["error"]
    assert error["code"] == "storage_unavailable"
    assert error["details"]["retryable"] is True

    assert client.get("/api/chat", headers=AUTH).status_code == 503


def test_chat_store_failure_after_charge_is_503(client, monkeypatch, providers):
    chat = client.post("/api/chat", json={"model": "llama"}, headers=AUTH).json()["chat"]
    opened = []

    def flaky_session():
        opened.append(1)
        if len(opened) > 1:
            raise _disk_error()
        return get_db_session()

    monkeypatch.setattr(chat_service, "get_db_session", flaky_session)

    resp = client.post(f"/api/chat/{chat['id']}", json={"message": "hi"}, headers=AUTH)
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "storage_unavailable"
    # The attempt was already charged and the provider never ran
    assert get_count(USER, ModelBucket.LLAMA) == 1
    assert providers[ModelBucket.LLAMA].calls == []


def test_usage_overview_plan_lookup_failure_is_503(client, monkeypatch):
    def broken_session():
        raise _disk_error()

    monkeypatch.setattr(plans_service, "get_db_session", broken_session)

    resp = client.get("/api/usage", headers=AUTH)
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "storage_unavailable"


def test_export_is_gated_by_plan_cooldown(client):
    first = client.post("/api/user/export", headers=AUTH)
    assert first.status_code == 200
    assert first.json()["exported_at"]

    second = client.post("/api/user/export", headers=AUTH)
    assert second.status_code == 429
    assert second.json()["error"]["code"] == "export_cooldown"
    assert second.json()["error"]["details"]["wait_ms"] > 0

    limits = client.get("/api/user/limits", headers=AUTH).json()
    assert limits["export"]["allowed"] is False
    assert limits["limits"]["lastExport"] > 0
