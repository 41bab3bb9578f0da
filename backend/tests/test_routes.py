"""
AIGate — HTTP Surface Tests
===========================

What:  Endpoint tests through httpx AsyncClient + ASGITransport.
Why:   The HTTP layer owns the error → status mapping and the Retry-After
       header; callers build their "try again in ~N" messages from it.

What we test:
    ✅ POST /api/generate/{domain}: success, 404, 408, 413, 503 + Retry-After, 422
    ✅ Status and reset endpoints (no secrets in responses)
    ✅ /health per-domain availability
    ✅ X-Request-ID propagation
    ✅ Batch generation and runtime model priority
"""

import pytest

from conftest import ScriptedError, rate_limited

BODY = {"messages": [{"role": "user", "content": "Summarize the lecture"}]}


class TestGenerate:
    @pytest.mark.asyncio
    async def test_success(self, test_client, provider):
        provider.outcomes = ["Here is the summary"]

        response = await test_client.post("/api/generate/chat", json=BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["content"] == "Here is the summary"
        assert data["model_used"] == "model-a"
        assert data["credential_used"] == "key-1"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, test_client):
        response = await test_client.post(
            "/api/generate/chat", json=BODY, headers={"X-Request-ID": "client-42"}
        )
        assert response.headers["X-Request-ID"] == "client-42"

    @pytest.mark.asyncio
    async def test_unknown_domain_is_404(self, test_client):
        response = await test_client.post("/api/generate/poetry", json=BODY)

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_disabled_domain_is_404_with_reason(self, test_client):
        response = await test_client.post("/api/generate/notes", json=BODY)

        assert response.status_code == 404
        assert response.json()["details"]["reason"] == "no credentials configured"

    @pytest.mark.asyncio
    async def test_all_keys_rate_limited_is_503_with_retry_after(self, test_client, provider):
        provider.outcomes = [rate_limited("Please retry in 5s") for _ in range(3)]

        response = await test_client.post("/api/generate/chat", json=BODY)

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "5"
        data = response.json()
        assert data["error"] == "all_credentials_rate_limited"
        assert data["details"]["attempts"] == 3
        assert data["request_id"]

    @pytest.mark.asyncio
    async def test_payload_too_large_is_413(self, test_client, provider):
        provider.outcomes = [ScriptedError("Request too large", status_code=413) for _ in range(2)]

        response = await test_client.post("/api/generate/chat", json=BODY)

        assert response.status_code == 413
        assert response.json()["error"] == "payload_too_large"

    @pytest.mark.asyncio
    async def test_timeout_is_408(self, test_client, provider):
        provider.outcomes = [TimeoutError("upstream deadline")]

        response = await test_client.post("/api/generate/chat", json=BODY)

        assert response.status_code == 408
        assert response.json()["error"] == "timeout"

    @pytest.mark.asyncio
    async def test_models_exhausted_is_503(self, test_client, provider):
        provider.outcomes = [ScriptedError("overloaded", status_code=503) for _ in range(2)]

        response = await test_client.post("/api/generate/chat", json=BODY)

        assert response.status_code == 503
        assert response.json()["error"] == "all_models_unavailable"
        assert "Retry-After" not in response.headers

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"messages": []},
            {"messages": [{"role": "robot", "content": "hi"}]},
            {"messages": BODY["messages"], "temperature": 5},
        ],
    )
    async def test_invalid_body_is_422(self, test_client, provider, body):
        response = await test_client.post("/api/generate/chat", json=body)

        assert response.status_code == 422
        assert provider.calls == []


class TestStatus:
    @pytest.mark.asyncio
    async def test_all_domains(self, test_client):
        response = await test_client.get("/api/status")

        assert response.status_code == 200
        assert list(response.json()) == ["chat"]

    @pytest.mark.asyncio
    async def test_domain_status_hides_secrets(self, test_client, orchestrator):
        orchestrator.pool.mark_failed("key-2", 5000)

        response = await test_client.get("/api/status/chat")

        assert response.status_code == 200
        data = response.json()
        assert data["total_credentials"] == 3
        assert data["available_credentials"] == 2
        assert data["cooldowns"][0]["name"] == "key-2"
        assert "secret-" not in response.text

    @pytest.mark.asyncio
    async def test_unknown_domain_status_is_404(self, test_client):
        response = await test_client.get("/api/status/poetry")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_reset_cooldowns(self, test_client, orchestrator):
        orchestrator.pool.mark_failed("key-1", 60_000)
        orchestrator.catalog.set_cooldown("model-a", 60_000)

        response = await test_client.post("/api/status/chat/cooldowns/reset")

        assert response.status_code == 200
        assert response.json()["cooldowns"] == []
        assert response.json()["model_cooldowns"] == []

    @pytest.mark.asyncio
    async def test_reset_budget(self, test_client, orchestrator):
        orchestrator.monitor.record("chat", 5000)

        response = await test_client.post("/api/status/chat/budget/reset")

        assert response.status_code == 200
        assert response.json()["token_usage"]["chat"]["used_today"] == 0


class TestHealth:
    @pytest.mark.asyncio
    async def test_degraded_when_a_domain_is_disabled(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        assert data["domains"]["chat"]["status"] == "available"
        assert data["domains"]["notes"]["status"] == "disabled"

    @pytest.mark.asyncio
    async def test_unhealthy_when_every_key_is_cooling(self, test_client, orchestrator):
        for credential_id in ("key-1", "key-2", "key-3"):
            orchestrator.pool.mark_failed(credential_id, 60_000)

        response = await test_client.get("/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["domains"]["chat"]["available_credentials"] == 0

    @pytest.mark.asyncio
    async def test_provider_check_reports_unreachable_provider(self, test_client, provider):
        provider.healthy = False

        response = await test_client.get("/health", params={"check_providers": "true"})

        assert response.json()["domains"]["chat"]["status"] == "unreachable"

    @pytest.mark.asyncio
    async def test_provider_check_skips_cooling_key(self, test_client, provider, orchestrator):
        orchestrator.pool.mark_failed("key-1", 60_000)

        response = await test_client.get("/health", params={"check_providers": "true"})

        assert response.json()["domains"]["chat"]["status"] == "available"
        assert provider.checked_secrets == ["secret-2"]

    @pytest.mark.asyncio
    async def test_provider_check_leaves_rotation_untouched(self, test_client, provider):
        await test_client.get("/health", params={"check_providers": "true"})

        response = await test_client.post("/api/generate/chat", json=BODY)

        assert response.json()["credential_used"] == "key-1"


class TestBatchAndPriority:
    @pytest.mark.asyncio
    async def test_batch_reports_each_item(self, test_client, provider):
        provider.outcomes = ["one", ScriptedError("overloaded", status_code=503), ScriptedError("overloaded", status_code=503)]

        response = await test_client.post("/api/generate/chat/batch", json={"requests": [BODY, BODY]})

        assert response.status_code == 200
        data = response.json()
        assert data["succeeded"] == 1
        assert len(data["results"]) == 2
        assert {r["success"] for r in data["results"]} == {True, False}

    @pytest.mark.asyncio
    async def test_empty_batch_is_422(self, test_client):
        response = await test_client.post("/api/generate/chat/batch", json={"requests": []})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_set_model_priority(self, test_client):
        response = await test_client.post("/api/status/chat/models/priority", json={"order": ["model-b"]})

        assert response.status_code == 200
        assert response.json()["available_models"] == ["model-b", "model-a"]

    @pytest.mark.asyncio
    async def test_set_model_priority_unknown_models_is_404(self, test_client):
        response = await test_client.post("/api/status/chat/models/priority", json={"order": ["gpt-x"]})

        assert response.status_code == 404
        assert response.json()["details"]["known"] == ["model-a", "model-b"]
