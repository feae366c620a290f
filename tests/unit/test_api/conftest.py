"""Harness for exercising the authorization chain over HTTP."""

from collections.abc import AsyncGenerator, Callable, Mapping
from typing import Any

import pytest
from fastapi import APIRouter, Depends, FastAPI, Request
from httpx import ASGITransport, AsyncClient

from fieldservice_core.api.app import create_app
from fieldservice_core.api.deps import audit_action, get_tenant_context
from fieldservice_core.auth.audit import AuditAnnotation, AuditRecord
from fieldservice_core.auth.context import TenantContext
from fieldservice_core.auth.principal import SESSION_USER_KEY
from fieldservice_core.auth.rate_limiter import InMemoryRateLimitStore
from fieldservice_core.config import Settings


class RecordingSink:
    def __init__(self, records: list[AuditRecord]) -> None:
        self.records = records

    def emit(self, record: AuditRecord) -> None:
        self.records.append(record)


def _sample_router() -> APIRouter:
    router = APIRouter(prefix="/api")

    @router.get("/whoami")
    async def whoami(
        tenant: TenantContext = Depends(get_tenant_context),
    ) -> dict[str, str]:
        return {"tenant_id": tenant.tenant_id, "user_id": tenant.user_id}

    @router.post("/echo")
    async def echo(
        request: Request,
        tenant: TenantContext = Depends(get_tenant_context),
    ) -> dict[str, Any]:
        return {"tenant_id": tenant.tenant_id, "body": await request.json()}

    @router.patch("/jobs/{job_id}")
    async def update_job(
        job_id: str,
        tenant: TenantContext = Depends(get_tenant_context),
        audit: AuditAnnotation = Depends(audit_action("job.status_change")),
    ) -> dict[str, str]:
        return {
            "job_id": job_id,
            "action": audit.action,
            "attached_by": audit.attached_by,
        }

    @router.get("/authority")
    async def authority() -> dict[str, bool]:
        return {"public": False}

    @router.get("/auth/providers")
    async def auth_providers() -> dict[str, bool]:
        return {"public": True}

    @router.post("/login")
    async def login(request: Request) -> dict[str, bool]:
        request.session[SESSION_USER_KEY] = await request.json()
        return {"ok": True}

    return router


@pytest.fixture()
def session_data() -> dict[str, Any]:
    """Stand-in session; set ``session_data["user"]`` to log in."""
    return {}


@pytest.fixture()
def audit_records() -> list[AuditRecord]:
    return []


@pytest.fixture()
def store() -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore()


@pytest.fixture()
def build_app(
    session_data: dict[str, Any],
    audit_records: list[AuditRecord],
    store: InMemoryRateLimitStore,
) -> Callable[..., FastAPI]:
    """Factory: application with the sample routes and test collaborators.

    Keyword arguments are Settings overrides, except ``audit_sink`` and
    ``use_session_middleware`` (real signed-cookie sessions).
    """

    async def load_user(request: Request) -> Mapping[str, Any] | None:
        return session_data.get(SESSION_USER_KEY)

    def _build(
        *,
        use_session_middleware: bool = False,
        audit_sink: Any = None,
        **overrides: Any,
    ) -> FastAPI:
        values: dict[str, Any] = {
            "environment": "testing",
            "rate_limit_max_requests": 5,
        }
        values.update(overrides)
        kwargs: dict[str, Any] = {
            "rate_limit_store": store,
            "audit_sink": audit_sink or RecordingSink(audit_records),
        }
        if use_session_middleware:
            values.setdefault("session_secret", "test-session-secret")
        else:
            kwargs["principal_loader"] = load_user
        app = create_app(Settings(_env_file=None, **values), **kwargs)
        app.include_router(_sample_router())

        @app.get("/assets/app.js")
        async def asset() -> dict[str, str]:
            return {"asset": "app.js"}

        return app

    return _build


@pytest.fixture()
async def client(build_app: Callable[..., FastAPI]) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=build_app()),
        base_url="http://test",
    ) as ac:
        yield ac
