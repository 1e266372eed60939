"""ActivityLoggingMiddleware: mutating requests land in the ledger."""

from __future__ import annotations

import logging

import pytest
from httpx import AsyncClient

from fleetwatch.api.app_state import AppState
from fleetwatch.api.middleware.activity_logging import (
    redact_headers,
    should_log,
)
from fleetwatch.constants import ActivityType
from fleetwatch.repositories.protocols import ActivityFilter

API_CALLS = ActivityFilter(activity_type=ActivityType.API_CALL)


class TestShouldLog:
    @pytest.mark.parametrize(
        ("method", "path", "expected"),
        [
            ("POST", "/api/tickets", True),
            ("PUT", "/api/tickets/t1", True),
            ("DELETE", "/api/activities/x1", True),
            ("PATCH", "/api/agents", True),
            ("GET", "/api/tickets/t1", False),
            ("POST", "/api/activities", False),
            ("POST", "/api/agents/a1/heartbeat", False),
            ("POST", "/api/health", False),
            ("POST", "/api/monitor/health", False),
        ],
    )
    def test_methods_and_exempt_paths(
        self, method: str, path: str, expected: bool
    ) -> None:
        assert should_log(method, path) is expected

    def test_secrets_redacted(self) -> None:
        headers = redact_headers(
            {"authorization": "Bearer t", "x-api-key": "k", "accept": "*/*"}
        )
        assert headers == {
            "authorization": "[REDACTED]",
            "x-api-key": "[REDACTED]",
            "accept": "*/*",
        }


class TestRequestActivities:
    async def test_post_recorded_with_caller_trace(
        self, client: AsyncClient, app_state: AppState
    ) -> None:
        resp = await client.post(
            "/api/tickets",
            json={"title": "Ship it"},
            headers={
                "X-Agent-Id": "planner",
                "X-Trace-Id": "tr-req",
                "Authorization": "Bearer hidden",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["X-Trace-Id"] == "tr-req"

        activity = await app_state.repos.activity.get(
            resp.headers["X-Activity-Id"]
        )
        assert activity is not None
        assert activity.activity_type == ActivityType.API_CALL
        assert activity.agent_id == "planner"
        assert activity.trace_id == "tr-req"
        assert activity.api_endpoint == "/api/tickets"
        assert activity.api_method == "POST"
        assert activity.api_status_code == 200
        assert activity.total_tokens == 0
        assert activity.meta["source"] == "api"
        assert activity.content_parts["request"]["body"] == {
            "title": "Ship it"
        }
        assert (
            activity.content_parts["headers"]["authorization"]
            == "[REDACTED]"
        )

    async def test_agent_from_query_else_system(
        self, client: AsyncClient, app_state: AppState
    ) -> None:
        await client.post(
            "/api/agents",
            params={"agentId": "ops"},
            json={"id": "w1", "name": "Worker"},
        )
        resp = await client.post("/api/tickets", json={"title": "T"})
        assert resp.headers["X-Trace-Id"].startswith("trace-")

        found = await app_state.repos.activity.find(API_CALLS)
        assert sorted(a.agent_id for a in found) == ["ops", "system"]

    async def test_failed_request_still_recorded(
        self, client: AsyncClient, app_state: AppState
    ) -> None:
        resp = await client.put(
            "/api/tickets/missing", json={"status": "Done"}
        )
        assert resp.status_code == 404
        found = await app_state.repos.activity.find(API_CALLS)
        assert [a.api_status_code for a in found] == [404]

    async def test_reads_ingest_and_heartbeats_not_recorded(
        self, client: AsyncClient, app_state: AppState
    ) -> None:
        await client.get("/api/agents")
        await client.post("/api/agents/a1/heartbeat", json={})
        resp = await client.post(
            "/api/activities",
            json={
                "agent_id": "a1",
                "activity_type": "tool_call",
                "input_tokens": 1,
                "output_tokens": 1,
            },
        )
        assert resp.status_code == 200
        assert "X-Activity-Id" not in resp.headers

        assert await app_state.repos.activity.find(API_CALLS) == []
        everything = await app_state.repos.activity.find(ActivityFilter())
        assert len(everything) == 1

    async def test_ledger_failure_does_not_fail_request(
        self,
        client: AsyncClient,
        app_state: AppState,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        class BrokenLedger:
            async def record_api_call(self, *args, **kwargs):  # type: ignore[no-untyped-def]
                raise RuntimeError("disk full")

        app_state.ledger = BrokenLedger()  # type: ignore[assignment]
        with caplog.at_level(logging.WARNING):
            resp = await client.post("/api/tickets", json={"title": "T"})

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert "X-Trace-Id" in resp.headers
        assert "X-Activity-Id" not in resp.headers
        assert "event=request_activity_failed" in caplog.text

    async def test_disabled_by_setting(
        self, client: AsyncClient, app_state: AppState
    ) -> None:
        from fleetwatch.main import app

        app.state.settings = app_state.settings.model_copy(
            update={"log_api_requests": False}
        )
        resp = await client.post("/api/tickets", json={"title": "T"})
        assert resp.status_code == 200
        assert "X-Trace-Id" not in resp.headers
        assert await app_state.repos.activity.find(API_CALLS) == []
