"""HTTP surface: authentication, status codes and response shapes."""
import time

import jwt
import pytest
from fastapi.testclient import TestClient

from fakes import FakeBackend, make_orchestrator
from storygate.api.generate import get_orchestrator
from storygate.core.config import Settings
from storygate.main import app
from storygate.services.providers import ProviderTimeouts, RawImage

client = TestClient(app)

SECRET = "storygate-test-signing-secret-0123456789"
TEXT_BODY = {"messages": [{"role": "user", "content": "A story about a fox"}]}


def _token(claims=None, secret=SECRET):
    payload = {"sub": "user-1", "exp": int(time.time()) + 3600}
    if claims is not None:
        payload = {**claims, "exp": int(time.time()) + 3600}
    return jwt.encode(payload, secret, algorithm="HS256")


def _auth(claims=None, secret=SECRET):
    return {"Authorization": f"Bearer {_token(claims, secret)}"}


@pytest.fixture(autouse=True)
def auth_settings(monkeypatch):
    monkeypatch.setattr(app.state, "settings", Settings(auth_jwt_secret=SECRET), raising=False)


@pytest.fixture
def orchestrator():
    orch = make_orchestrator()
    app.dependency_overrides[get_orchestrator] = lambda: orch
    yield orch
    app.dependency_overrides.clear()


def _use(orch):
    app.dependency_overrides[get_orchestrator] = lambda: orch
    return orch


def test_health_check():
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data


def test_missing_credentials_is_401(orchestrator):
    response = client.post("/generate/text", json=TEXT_BODY)
    assert response.status_code == 401
    assert response.json()["code"] == "unauthenticated"


@pytest.mark.parametrize(
    "headers",
    [
        {"Authorization": "Basic dXNlcjpwYXNz"},
        {"Authorization": "Bearer not-a-jwt"},
        {"Authorization": f"Bearer {_token(secret='another-signing-secret-abcdefghijklmnop')}"},
        {"Authorization": f"Bearer {_token(claims={'name': 'No Subject'})}"},
    ],
)
def test_unverifiable_credentials_are_401(orchestrator, headers):
    response = client.post("/generate/text", json=TEXT_BODY, headers=headers)
    assert response.status_code == 401
    assert orchestrator.adapter.backend.calls == []


def test_expired_token_is_401(orchestrator):
    expired = jwt.encode({"sub": "user-1", "exp": int(time.time()) - 60}, SECRET, algorithm="HS256")
    response = client.post("/generate/text", json=TEXT_BODY, headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 401


def test_email_is_used_when_token_has_no_subject(orchestrator):
    response = client.post("/generate/text", json=TEXT_BODY, headers=_auth({"email": "reader@example.com"}))
    assert response.status_code == 200
    assert orchestrator.store._plans == {"reader@example.com": "free"}


def test_unset_secret_rejects_everyone(monkeypatch, orchestrator):
    monkeypatch.setattr(app.state, "settings", Settings(auth_jwt_secret=None))
    response = client.post("/generate/text", json=TEXT_BODY, headers=_auth())
    assert response.status_code == 401


def test_preflight_is_permissive():
    response = client.options("/generate/image")
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "POST" in response.headers["access-control-allow-methods"]


@pytest.mark.parametrize("method", ["get", "put", "delete"])
def test_other_methods_are_405(method):
    response = getattr(client, method)("/generate/text")
    assert response.status_code == 405
    assert "error" in response.json()


def test_text_quota_scenario(orchestrator):
    """free plan: 200 (1), 200 (2), then 429 with usage unchanged."""
    first = client.post("/generate/text", json=TEXT_BODY, headers=_auth())
    assert first.status_code == 200
    data = first.json()
    assert len(data["content"]) == 80
    assert data["usage"]["usedToday"] == 1
    assert data["usage"]["dailyLimit"] == 2
    assert data["usage"]["plan"] == "free"

    second = client.post("/generate/text", json=TEXT_BODY, headers=_auth())
    assert second.json()["usage"]["usedToday"] == 2

    third = client.post("/generate/text", json=TEXT_BODY, headers=_auth())
    assert third.status_code == 429
    body = third.json()
    assert body["code"] == "quota_exceeded"
    assert body["usedToday"] == 2
    assert body["dailyLimit"] == 2
    assert "dayBucket" in body
    assert int(third.headers["retry-after"]) > 0


def test_empty_messages_is_400(orchestrator):
    response = client.post("/generate/text", json={"messages": []}, headers=_auth())
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_request"
    assert client.get("/quota", headers=_auth()).json()["usedToday"] == 0


def test_stalled_provider_is_504():
    _use(make_orchestrator(backend=FakeBackend(delay=5), timeouts=ProviderTimeouts(text=0.05, image=0.05, audio=0.05)))
    try:
        response = client.post("/generate/text", json=TEXT_BODY, headers=_auth())
        assert response.status_code == 504
        assert response.json()["code"] == "upstream_timeout"
        assert client.get("/quota", headers=_auth()).json()["usedToday"] == 0
    finally:
        app.dependency_overrides.clear()


def test_short_result_is_502_not_counted():
    _use(make_orchestrator(backend=FakeBackend(text="0123456789")))
    try:
        response = client.post("/generate/text", json=TEXT_BODY, headers=_auth())
        assert response.status_code == 502
        body = response.json()
        assert body["code"] == "result_not_counted"
        assert "not counted" in body["error"]
        assert client.get("/quota", headers=_auth()).json()["usedToday"] == 0
    finally:
        app.dependency_overrides.clear()


def test_image_returns_reference():
    _use(make_orchestrator(backend=FakeBackend(image=RawImage(b64_data="iVBORw0KGgo=", mime_type="image/png"))))
    try:
        response = client.post("/generate/image", json={"prompt": "a fox with a lantern"}, headers=_auth())
        assert response.status_code == 200
        data = response.json()
        assert data["imageRef"] == "data:image/png;base64,iVBORw0KGgo="
        assert data["usage"]["usedToday"] == 1
    finally:
        app.dependency_overrides.clear()


def test_audio_returns_binary_with_usage_headers(orchestrator):
    response = client.post("/generate/audio", json={"text": "Goodnight, little fox."}, headers=_auth())
    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/wav"
    assert response.content[:4] == b"RIFF"
    assert response.headers["x-quota-used-today"] == "1"
    assert response.headers["x-quota-daily-limit"] == "2"
    assert response.headers["x-quota-plan"] == "free"


def test_audio_error_is_json(orchestrator):
    response = client.post("/generate/audio", json={"text": ""}, headers=_auth())
    assert response.status_code == 400
    assert response.headers["content-type"].startswith("application/json")


def test_quota_endpoint_reports_usage(orchestrator):
    client.post("/generate/text", json=TEXT_BODY, headers=_auth())
    response = client.get("/quota", headers=_auth())
    assert response.status_code == 200
    assert response.json()["usedToday"] == 1
    assert client.get("/quota").status_code == 401
