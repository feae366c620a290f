"""End-to-end tests for principal, tenant, rate limit and audit middleware."""

from collections.abc import AsyncIterator, Callable
from typing import Any
from unittest.mock import Mock, patch

import pytest
from fastapi import FastAPI
from fastapi.responses import StreamingResponse
from httpx import ASGITransport, AsyncClient

from fieldservice_core.auth.audit import AuditRecord
from fieldservice_core.auth.rate_limiter import InMemoryRateLimitStore

USER = {"id": "user-1", "role": "admin", "company_id": "tenant-a"}


def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestPrincipalResolution:
    async def test_anonymous_request_rejected(
        self,
        client: AsyncClient,
        store: InMemoryRateLimitStore,
        audit_records: list[AuditRecord],
    ) -> None:
        """401 before any bucket is touched or audit record written."""
        response = await client.get("/api/whoami")

        assert response.status_code == 401
        assert response.json() == {
            "detail": "Authentication required",
            "code": "unauthenticated",
        }
        assert len(store) == 0
        assert audit_records == []

    @pytest.mark.parametrize(
        "user",
        [
            {"id": "", "role": "admin", "company_id": "tenant-a"},
            {"id": "user-1", "company_id": "tenant-a"},
            {"id": 7, "role": "admin", "company_id": "tenant-a"},
            "user-1",
        ],
    )
    async def test_malformed_session_user_rejected(
        self, client: AsyncClient, session_data: dict[str, Any], user: object
    ) -> None:
        session_data["user"] = user
        response = await client.get("/api/whoami")
        assert response.status_code == 401


class TestTenantContext:
    async def test_tenant_from_principal(
        self, client: AsyncClient, session_data: dict[str, Any]
    ) -> None:
        session_data["user"] = USER
        response = await client.get("/api/whoami")
        assert response.status_code == 200
        assert response.json() == {"tenant_id": "tenant-a", "user_id": "user-1"}

    @pytest.mark.parametrize("company_id", [None, "", 42, "../etc", " tenant-a"])
    async def test_missing_or_malformed_company_is_forbidden(
        self,
        client: AsyncClient,
        session_data: dict[str, Any],
        store: InMemoryRateLimitStore,
        company_id: object,
    ) -> None:
        session_data["user"] = {**USER, "company_id": company_id}
        response = await client.get("/api/whoami")

        assert response.status_code == 403
        assert response.json() == {
            "detail": "No company association found. Please contact support.",
            "code": "no_tenant_context",
        }
        assert len(store) == 0

    async def test_tenant_in_query_and_headers_ignored(
        self, client: AsyncClient, session_data: dict[str, Any]
    ) -> None:
        session_data["user"] = USER
        response = await client.get(
            "/api/whoami",
            params={"tenant_id": "tenant-b", "companyId": "tenant-b"},
            headers={"X-Tenant-ID": "tenant-b", "X-Company-ID": "tenant-b"},
        )
        assert response.json()["tenant_id"] == "tenant-a"

    async def test_tenant_in_body_ignored(
        self, client: AsyncClient, session_data: dict[str, Any]
    ) -> None:
        session_data["user"] = USER
        response = await client.post(
            "/api/echo", json={"companyId": "tenant-b", "tenant_id": "tenant-b"}
        )
        assert response.status_code == 200
        assert response.json()["tenant_id"] == "tenant-a"


class TestPublicPaths:
    async def test_exempt_prefix_skips_chain(
        self, build_app: Callable[..., FastAPI], audit_records: list[AuditRecord]
    ) -> None:
        async with _client(build_app(rate_limit_max_requests=1)) as client:
            for _ in range(3):
                response = await client.get("/api/auth/providers")
                assert response.status_code == 200
                assert "X-RateLimit-Limit" not in response.headers
        assert audit_records == []

    async def test_prefix_match_is_segment_aware(self, client: AsyncClient) -> None:
        """``/api/auth`` does not exempt ``/api/authority``."""
        response = await client.get("/api/authority")
        assert response.status_code == 401

    async def test_non_api_paths_pass_through(self, client: AsyncClient) -> None:
        response = await client.get("/assets/app.js")
        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers

    async def test_health_is_public(self, client: AsyncClient) -> None:
        response = await client.get("/api/health")
        assert response.status_code == 200


class TestRateLimiting:
    async def test_headers_on_admitted_response(
        self, client: AsyncClient, session_data: dict[str, Any]
    ) -> None:
        session_data["user"] = USER
        response = await client.get("/api/whoami")
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "4"
        assert "X-RateLimit-Reset" in response.headers
        assert "Retry-After" not in response.headers

    async def test_limit_exceeded_returns_429(
        self,
        build_app: Callable[..., FastAPI],
        session_data: dict[str, Any],
        audit_records: list[AuditRecord],
    ) -> None:
        session_data["user"] = USER
        async with _client(build_app(rate_limit_max_requests=2)) as client:
            first = await client.get("/api/whoami")
            second = await client.get("/api/whoami")
            third = await client.get("/api/whoami")

        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert second.headers["X-RateLimit-Remaining"] == "0"
        assert third.status_code == 429
        body = third.json()
        assert body["code"] == "rate_limited"
        assert body["detail"] == "Rate limit exceeded"
        assert 1 <= body["retry_after"] <= 60
        assert third.headers["Retry-After"] == str(body["retry_after"])
        assert third.headers["X-RateLimit-Remaining"] == "0"

    async def test_tenants_have_separate_buckets(
        self, build_app: Callable[..., FastAPI], session_data: dict[str, Any]
    ) -> None:
        async with _client(build_app(rate_limit_max_requests=1)) as client:
            session_data["user"] = USER
            assert (await client.get("/api/whoami")).status_code == 200
            assert (await client.get("/api/whoami")).status_code == 429

            session_data["user"] = {**USER, "company_id": "tenant-b"}
            assert (await client.get("/api/whoami")).status_code == 200

    async def test_forwarded_address_used_when_trusted(
        self, build_app: Callable[..., FastAPI], session_data: dict[str, Any]
    ) -> None:
        session_data["user"] = USER
        app = build_app(rate_limit_max_requests=1, trust_forwarded_for=True)
        async with _client(app) as client:
            first = await client.get(
                "/api/whoami", headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
            )
            other = await client.get(
                "/api/whoami", headers={"X-Forwarded-For": "203.0.113.8"}
            )
        assert first.status_code == 200
        assert other.status_code == 200

    async def test_colon_in_forwarded_value_cannot_share_bucket(
        self, build_app: Callable[..., FastAPI], session_data: dict[str, Any]
    ) -> None:
        app = build_app(rate_limit_max_requests=1, trust_forwarded_for=True)
        async with _client(app) as client:
            session_data["user"] = {**USER, "company_id": "a"}
            spoofed = await client.get(
                "/api/whoami", headers={"X-Forwarded-For": "b:10.0.0.1"}
            )
            session_data["user"] = {**USER, "company_id": "a:b"}
            victim = await client.get(
                "/api/whoami", headers={"X-Forwarded-For": "10.0.0.1"}
            )
        assert spoofed.status_code == 200
        assert victim.status_code == 200

    async def test_forwarded_address_ignored_by_default(
        self, build_app: Callable[..., FastAPI], session_data: dict[str, Any]
    ) -> None:
        session_data["user"] = USER
        async with _client(build_app(rate_limit_max_requests=1)) as client:
            await client.get("/api/whoami", headers={"X-Forwarded-For": "203.0.113.7"})
            response = await client.get(
                "/api/whoami", headers={"X-Forwarded-For": "203.0.113.8"}
            )
        assert response.status_code == 429


class TestAudit:
    async def test_reads_are_not_audited(
        self,
        client: AsyncClient,
        session_data: dict[str, Any],
        audit_records: list[AuditRecord],
    ) -> None:
        session_data["user"] = USER
        await client.get("/api/whoami")
        assert audit_records == []

    async def test_mutation_gets_default_label(
        self,
        client: AsyncClient,
        session_data: dict[str, Any],
        audit_records: list[AuditRecord],
    ) -> None:
        session_data["user"] = USER
        await client.post("/api/echo", json={"x": 1})

        assert len(audit_records) == 1
        record = audit_records[0].to_dict()
        assert set(record) == {
            "timestamp",
            "action",
            "userId",
            "tenantId",
            "method",
            "path",
            "statusCode",
            "ip",
        }
        assert record["action"] == "echo.create"
        assert record["userId"] == "user-1"
        assert record["tenantId"] == "tenant-a"
        assert record["method"] == "POST"
        assert record["path"] == "/api/echo"
        assert record["statusCode"] == 200

    async def test_route_label_overrides_default(
        self,
        client: AsyncClient,
        session_data: dict[str, Any],
        audit_records: list[AuditRecord],
    ) -> None:
        session_data["user"] = USER
        response = await client.patch(
            "/api/jobs/job-9", headers={"X-Request-ID": "req-123"}
        )

        assert response.json() == {
            "job_id": "job-9",
            "action": "job.status_change",
            "attached_by": "req-123",
        }
        assert [r.action for r in audit_records] == ["job.status_change"]

    async def test_impersonated_read_is_audited(
        self,
        client: AsyncClient,
        session_data: dict[str, Any],
        audit_records: list[AuditRecord],
    ) -> None:
        session_data["user"] = {**USER, "impersonated_by": "support-1"}
        await client.get("/api/whoami")
        assert [r.action for r in audit_records] == ["impersonation.request"]

    async def test_successful_check_recorded_with_status(
        self,
        client: AsyncClient,
        session_data: dict[str, Any],
        audit_records: list[AuditRecord],
    ) -> None:
        session_data["user"] = USER
        response = await client.post(
            "/api/status-transitions/job/check",
            json={"from_status": "on_hold", "to_status": "in_progress"},
        )
        assert response.status_code == 200
        assert [r.action for r in audit_records] == ["status_transition.check"]
        assert audit_records[0].status_code == 200

    async def test_failed_request_not_recorded(
        self,
        client: AsyncClient,
        session_data: dict[str, Any],
        audit_records: list[AuditRecord],
    ) -> None:
        session_data["user"] = USER
        response = await client.post(
            "/api/status-transitions/job/check",
            json={"from_status": "on_hold", "to_status": "invoiced"},
        )
        assert response.status_code == 400
        assert audit_records == []

    async def test_record_emitted_after_body_sent(
        self, build_app: Callable[..., FastAPI], session_data: dict[str, Any]
    ) -> None:
        session_data["user"] = USER
        events: list[str] = []
        sink = Mock()
        sink.emit.side_effect = lambda record: events.append(record.action)
        app = build_app(audit_sink=sink)

        @app.post("/api/exports")
        async def export() -> StreamingResponse:
            async def rows() -> AsyncIterator[bytes]:
                yield b"id,status\n"
                yield b"job-1,completed\n"
                events.append("body_sent")

            return StreamingResponse(rows(), media_type="text/csv")

        async with _client(app) as client:
            response = await client.post("/api/exports")

        assert response.text == "id,status\njob-1,completed\n"
        assert events == ["body_sent", "exports.create"]

    async def test_rejected_requests_are_not_audited(
        self,
        client: AsyncClient,
        session_data: dict[str, Any],
        audit_records: list[AuditRecord],
    ) -> None:
        session_data["user"] = {**USER, "company_id": None}
        await client.post("/api/echo", json={})
        assert audit_records == []

    async def test_sink_failure_does_not_fail_request(
        self, build_app: Callable[..., FastAPI], session_data: dict[str, Any]
    ) -> None:
        session_data["user"] = USER
        failing_sink = Mock()
        failing_sink.emit.side_effect = RuntimeError("sink down")

        with patch("fieldservice_core.api.middleware.logger") as mock_logger:
            async with _client(build_app(audit_sink=failing_sink)) as client:
                response = await client.post("/api/echo", json={})

        assert response.status_code == 200
        failing_sink.emit.assert_called_once()
        mock_logger.exception.assert_called_once()
        assert mock_logger.exception.call_args[0][0] == "audit_sink_error"


class TestSessionLogin:
    async def test_login_then_access(self, build_app: Callable[..., FastAPI]) -> None:
        """Session cookie set at login carries the principal."""
        async with _client(build_app(use_session_middleware=True)) as client:
            assert (await client.get("/api/whoami")).status_code == 401

            login = await client.post("/api/login", json=USER)
            assert login.status_code == 200

            response = await client.get("/api/whoami")
            assert response.status_code == 200
            assert response.json()["tenant_id"] == "tenant-a"
