from __future__ import annotations

import json

import httpx
import pytest
from sqlalchemy import select

from assistcore.apps.api.deps import get_embedder, get_llm
from assistcore.apps.api.main import create_app
from assistcore.core.config import get_settings
from assistcore.domain.models import Memory, UsageCounter
from assistcore.persistence.db import SessionLocal
from assistcore.providers.llm.fake import FakeLLMProvider
from assistcore.services.insights import drain_background_tasks
from assistcore.services.quota import get_quota_service
from assistcore.tests.utils.accounts import cleanup_account, new_account_id, seed_plan
from assistcore.tests.utils.providers import FailingEmbeddingProvider, StaticEmbeddingProvider, unit_vector


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


def _headers(account_id: str) -> dict[str, str]:
    return {"X-Account-Id": account_id}


@pytest.fixture
def app():
    application = create_app()
    application.dependency_overrides[get_embedder] = lambda: StaticEmbeddingProvider({}, default=unit_vector(1))
    application.dependency_overrides[get_llm] = lambda: FakeLLMProvider()
    yield application
    application.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health_envelope_and_request_id(app) -> None:
    async with _client(app) as client:
        response = await client.get("/v1/health", headers={"X-Request-Id": "req-123"})

    body = response.json()
    assert response.status_code == 200
    assert response.headers["X-Request-Id"] == "req-123"
    assert body["meta"] == {"request_id": "req-123", "api_version": "v1"}
    assert body["data"]["status"] == "ok"
    assert body["data"]["database"] == "ok"
    assert body["data"]["llm_provider"] == "fake"


@pytest.mark.asyncio
async def test_missing_account_header_is_unauthorized(app) -> None:
    async with _client(app) as client:
        response = await client.get("/v1/plan")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_plan_defaults_to_free(app) -> None:
    account_id = new_account_id("api-plan")
    try:
        async with _client(app) as client:
            response = await client.get("/v1/plan", headers=_headers(account_id))

        data = response.json()["data"]
        assert response.status_code == 200
        assert data["tier"] == "free"
        assert data["daily_call_limit"] == 30
        assert data["features"]["memory"] is False
        assert data["is_max"] is False
        assert data["is_pro_or_above"] is False
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_admin_upgrade_requires_token(app, monkeypatch) -> None:
    monkeypatch.setenv("ADMIN_API_TOKEN", "s3cret")
    get_settings.cache_clear()
    account_id = new_account_id("api-admin")
    try:
        async with _client(app) as client:
            denied = await client.put(f"/v1/admin/accounts/{account_id}/plan", json={"tier": "max"})
            wrong = await client.put(
                f"/v1/admin/accounts/{account_id}/plan",
                json={"tier": "max"},
                headers={"X-Admin-Token": "nope"},
            )
            granted = await client.put(
                f"/v1/admin/accounts/{account_id}/plan",
                json={"tier": "pro", "duration_days": 30},
                headers={"X-Admin-Token": "s3cret"},
            )
            plan = await client.get("/v1/plan", headers=_headers(account_id))

        assert denied.status_code == 403
        assert wrong.status_code == 403
        assert granted.status_code == 200
        assert granted.json()["data"]["tier"] == "pro"
        assert granted.json()["data"]["expires_at"] is not None
        assert plan.json()["data"]["features"]["risk_alerts"] is True
        assert plan.json()["data"]["is_pro_or_above"] is True
        assert plan.json()["data"]["is_max"] is False
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_memory_search_is_gated_before_quota(app) -> None:
    account_id = new_account_id("api-gate")
    try:
        async with _client(app) as client:
            response = await client.post(
                "/v1/memories/search", json={"query": "coffee"}, headers=_headers(account_id)
            )

        body = response.json()
        assert response.status_code == 403
        assert body["error"]["code"] == "FEATURE_NOT_ENABLED"
        assert body["error"]["details"] == {"feature_key": "memory"}
        async with SessionLocal() as session:
            used = await session.scalar(select(UsageCounter.total_calls).where(UsageCounter.account_id == account_id))
        assert used is None
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_memory_lifecycle(app) -> None:
    account_id = new_account_id("api-memory")
    try:
        await seed_plan(account_id, "max")
        async with _client(app) as client:
            created = await client.post(
                "/v1/memories",
                json={"content": "prefers tea", "memory_type": "preference", "metadata": {"date": "2026-01-02"}},
                headers=_headers(account_id),
            )
            memory_id = created.json()["data"]["id"]

            found = await client.post(
                "/v1/memories/search", json={"query": "what drink"}, headers=_headers(account_id)
            )
            recent = await client.get("/v1/memories/recent", headers=_headers(account_id))
            deleted = await client.delete(f"/v1/memories/{memory_id}", headers=_headers(account_id))
            again = await client.delete(f"/v1/memories/{memory_id}", headers=_headers(account_id))
            after = await client.get("/v1/memories/recent", headers=_headers(account_id))

        assert created.status_code == 201
        assert found.status_code == 200
        assert found.headers["X-Quota-Day-Limit"] == "unlimited"
        (match,) = found.json()["data"]["items"]
        assert match["id"] == memory_id
        assert match["memory_date"] == "2026-01-02"
        assert match["similarity"] == pytest.approx(1.0)
        assert [item["id"] for item in recent.json()["data"]["items"]] == [memory_id]
        assert deleted.status_code == 204
        assert again.status_code == 204
        assert after.json()["data"]["items"] == []
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_invalid_memory_type_is_validation_error(app) -> None:
    async with _client(app) as client:
        response = await client.post(
            "/v1/memories",
            json={"content": "x", "memory_type": "dream"},
            headers=_headers(new_account_id("api-invalid")),
        )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_embedding_outage_is_service_unavailable(app) -> None:
    account_id = new_account_id("api-embed-down")
    app.dependency_overrides[get_embedder] = lambda: FailingEmbeddingProvider()
    try:
        await seed_plan(account_id, "max")
        async with _client(app) as client:
            response = await client.post(
                "/v1/memories", json={"content": "lost", "memory_type": "memo"}, headers=_headers(account_id)
            )

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "UPSTREAM_UNAVAILABLE"
        assert response.json()["error"]["details"] == {"retryable": True}
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_quota_exhaustion_returns_payment_required(app) -> None:
    account_id = new_account_id("api-quota")
    try:
        await seed_plan(account_id, "pro")
        async with SessionLocal() as session:
            session.add(
                UsageCounter(account_id=account_id, usage_date=get_quota_service().today(), total_calls=99)
            )
            await session.commit()

        payload = {"new_entry_text": "late dinner"}
        app.dependency_overrides[get_llm] = lambda: FakeLLMProvider(
            json.dumps({"recommendation": "approve", "reason": "Free evening."})
        )
        async with _client(app) as client:
            last = await client.post("/v1/briefing/schedule-advice", json=payload, headers=_headers(account_id))
            blocked = await client.post("/v1/briefing/schedule-advice", json=payload, headers=_headers(account_id))
            usage = await client.get("/v1/plan/usage", headers=_headers(account_id))

        assert last.status_code == 200
        assert last.json()["data"]["recommendation"] == "approve"
        assert last.headers["X-Quota-Day-Used"] == "100"
        assert last.headers["X-Quota-Day-Remaining"] == "0"
        assert blocked.status_code == 402
        assert blocked.json()["error"]["code"] == "QUOTA_EXCEEDED"
        assert blocked.headers["X-Quota-Day-Limit"] == "100"
        assert blocked.headers["X-Quota-Day-Remaining"] == "0"
        usage_data = usage.json()["data"]
        assert usage_data["today_used"] == 100
        assert usage_data["by_call_type"] == {"schedule_advice": 1}
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_extract_is_accepted_and_runs_in_background(app) -> None:
    account_id = new_account_id("api-extract")
    app.dependency_overrides[get_llm] = lambda: FakeLLMProvider(
        json.dumps({"insights": [{"type": "pattern", "content": "reads before bed", "importance": 0.6}]})
    )
    try:
        await seed_plan(account_id, "max")
        async with _client(app) as client:
            response = await client.post(
                "/v1/memories/extract",
                json={"conversation": [{"role": "user", "content": "I always read before bed."}]},
                headers=_headers(account_id),
            )
        await drain_background_tasks()

        assert response.status_code == 202
        assert response.json()["data"] == {"status": "accepted"}
        async with SessionLocal() as session:
            rows = (await session.execute(select(Memory).where(Memory.account_id == account_id))).scalars().all()
        assert [(row.content, row.memory_type) for row in rows] == [("reads before bed", "schedule_pattern")]
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_briefing_returns_buckets(app) -> None:
    account_id = new_account_id("api-briefing")
    app.dependency_overrides[get_llm] = lambda: FakeLLMProvider(
        json.dumps(
            {
                "greeting": "Big day for markets.",
                "items": [
                    {"newsIndex": 1, "relevanceScore": 0.9, "importanceLevel": "critical", "summary": "Rates fell."}
                ],
                "insights": [],
            }
        )
    )
    try:
        await seed_plan(account_id, "pro")
        async with _client(app) as client:
            response = await client.post(
                "/v1/briefing",
                json={"items": [{"title": "Rate cut", "source": "Reuters"}], "profile": {"job": "analyst"}},
                headers=_headers(account_id),
            )

        data = response.json()["data"]
        assert response.status_code == 200
        assert data["greeting"] == "Big day for markets."
        assert [item["title"] for item in data["critical_items"]] == ["Rate cut"]
        assert response.headers["X-Quota-Day-Used"] == "1"
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_unparsable_briefing_returns_null_data(app) -> None:
    account_id = new_account_id("api-briefing-null")
    app.dependency_overrides[get_llm] = lambda: FakeLLMProvider("I could not do that")
    try:
        await seed_plan(account_id, "pro")
        async with _client(app) as client:
            response = await client.post(
                "/v1/briefing", json={"items": [{"title": "Rate cut", "source": "Reuters"}]}, headers=_headers(account_id)
            )

        assert response.status_code == 200
        assert response.json()["data"] is None
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_risk_alert_flow(app) -> None:
    account_id = new_account_id("api-risk")
    body = {
        "candidate": {"id": "c1", "text": "team meeting", "start_time": "09:30", "end_time": "10:30"},
        "existing": [{"id": "e1", "text": "standup", "start_time": "09:00", "end_time": "10:00"}],
    }
    try:
        await seed_plan(account_id, "pro")
        async with _client(app) as client:
            analyzed = await client.post("/v1/risk/analyze", json=body, headers=_headers(account_id))
            (alert,) = analyzed.json()["data"]["items"]
            read = await client.post(f"/v1/risk/alerts/{alert['id']}/read", headers=_headers(account_id))
            unread = await client.get("/v1/risk/alerts", params={"unread_only": True}, headers=_headers(account_id))
            dismissed = await client.post(f"/v1/risk/alerts/{alert['id']}/dismiss", headers=_headers(account_id))
            listed = await client.get("/v1/risk/alerts", headers=_headers(account_id))

        assert analyzed.status_code == 200
        assert alert["alert_type"] == "schedule_conflict"
        assert alert["severity"] == 4
        assert alert["related_schedule_ids"] == ["c1", "e1"]
        assert read.json()["data"] == {"id": alert["id"], "status": "read"}
        assert unread.json()["data"]["items"] == []
        assert dismissed.json()["data"]["status"] == "dismissed"
        assert listed.json()["data"]["items"] == []
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_risk_rejects_malformed_times(app) -> None:
    body = {"candidate": {"id": "c1", "text": "x", "start_time": "25:00"}, "existing": []}
    async with _client(app) as client:
        response = await client.post("/v1/risk/analyze", json=body, headers=_headers(new_account_id("api-risk-bad")))

    assert response.status_code == 422
