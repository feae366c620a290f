"""HTTP middleware: request logging and the authorization chain.

Every protected request passes, in order, through::

    PrincipalMiddleware -> TenantContextMiddleware
        -> RateLimitMiddleware -> AuditMiddleware -> route

Each step either rejects the request with a JSON error or stores its
result on ``request.state`` for the next one. Paths outside the API
prefix and exempt public paths skip the chain entirely.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog
from fastapi import FastAPI
from starlette.background import BackgroundTasks
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from fieldservice_core.auth.audit import (
    IMPERSONATION_ACTION,
    AuditRecord,
    AuditSink,
    StructlogAuditSink,
    annotate,
    build_record,
    default_action,
)
from fieldservice_core.auth.context import resolve_tenant_context
from fieldservice_core.auth.principal import (
    SESSION_USER_KEY,
    Principal,
    resolve_principal,
)
from fieldservice_core.auth.public_paths import PublicPaths
from fieldservice_core.auth.rate_limiter import FixedWindowRateLimiter
from fieldservice_core.errors import (
    AuthorizationFailure,
    RateLimitExceededError,
    UnauthenticatedError,
)

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"

PrincipalLoader = Callable[[Request], Awaitable[Mapping[str, Any] | None]]


def failure_response(
    error: AuthorizationFailure,
    *,
    headers: Mapping[str, str] | None = None,
    **extra: Any,
) -> JSONResponse:
    """Render an authorization failure as a JSON error body."""
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": error.detail, "code": error.code, **extra},
        headers=dict(headers) if headers else None,
    )


def client_address(request: Request, *, trust_forwarded_for: bool = False) -> str:
    """Client IP, taken from ``X-Forwarded-For`` only behind a trusted proxy."""
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


async def session_principal_loader(request: Request) -> Mapping[str, Any] | None:
    """Read the ``user`` entry written to the session at login.

    Returns None when no SessionMiddleware is installed.
    """
    session = request.scope.get("session")
    if not isinstance(session, Mapping):
        return None
    return session.get(SESSION_USER_KEY)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assign a request id and log method, path, status code, and latency.

    The health check under ``api_prefix`` and the docs pages are not logged.
    """

    DOC_PATHS: frozenset[str] = frozenset({"/docs", "/openapi.json", "/redoc"})

    def __init__(self, app: ASGIApp, *, api_prefix: str = "/api") -> None:
        super().__init__(app)
        prefix = "/" + api_prefix.strip("/")
        health = "/health" if prefix == "/" else f"{prefix}/health"
        self.skip_paths = self.DOC_PATHS | {health}

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request and log timing information."""
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = int((time.perf_counter() - start) * 1000)
        response.headers[REQUEST_ID_HEADER] = request_id

        if request.url.path not in self.skip_paths:
            logger.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                latency_ms=latency_ms,
            )
        return response


class PrincipalMiddleware(BaseHTTPMiddleware):
    """Resolve the authenticated principal; reject with 401 if absent."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        public_paths: PublicPaths,
        loader: PrincipalLoader = session_principal_loader,
    ) -> None:
        super().__init__(app)
        self.public_paths = public_paths
        self.loader = loader

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not self.public_paths.is_protected(request.url.path):
            return await call_next(request)

        payload = await self.loader(request)
        try:
            principal = resolve_principal(payload)
        except AuthorizationFailure as e:
            logger.info("request_unauthenticated", path=request.url.path)
            return failure_response(e)

        request.state.principal = principal
        return await call_next(request)


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Attach the tenant context derived from the principal.

    Only ``request.state.principal`` is read; a tenant id in the body,
    query string or headers has no effect.
    """

    def __init__(self, app: ASGIApp, *, public_paths: PublicPaths) -> None:
        super().__init__(app)
        self.public_paths = public_paths

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not self.public_paths.is_protected(request.url.path):
            return await call_next(request)

        principal: Principal | None = getattr(request.state, "principal", None)
        try:
            tenant = resolve_tenant_context(principal)
        except UnauthenticatedError as e:
            return failure_response(e)
        except AuthorizationFailure as e:
            # Authenticated user without a usable company: broken account record
            logger.warning(
                "tenant_context_missing",
                user_id=principal.user_id if principal else None,
                path=request.url.path,
            )
            return failure_response(e)

        request.state.tenant = tenant
        structlog.contextvars.bind_contextvars(
            tenant_id=tenant.tenant_id, user_id=tenant.user_id
        )
        return await call_next(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window limit per (tenant, client address, scope).

    ``X-RateLimit-*`` headers are set on every protected response;
    rejections get 429 with ``Retry-After``.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        limiter: FixedWindowRateLimiter,
        public_paths: PublicPaths,
        scope: str = "api",
        trust_forwarded_for: bool = False,
    ) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.public_paths = public_paths
        self.scope = scope
        self.trust_forwarded_for = trust_forwarded_for

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not self.public_paths.is_protected(request.url.path):
            return await call_next(request)

        tenant = getattr(request.state, "tenant", None)
        if tenant is None:
            return failure_response(UnauthenticatedError("Authentication required"))

        address = client_address(request, trust_forwarded_for=self.trust_forwarded_for)
        decision = await self.limiter.check(tenant.tenant_id, address, self.scope)

        if not decision.allowed:
            logger.info(
                "rate_limited",
                client_address=address,
                scope=self.scope,
                retry_after=decision.retry_after,
            )
            error = RateLimitExceededError(decision.retry_after)
            return failure_response(
                error, headers=decision.headers(), retry_after=error.retry_after
            )

        response = await call_next(request)
        response.headers.update(decision.headers())
        return response


class AuditMiddleware(BaseHTTPMiddleware):
    """Label sensitive requests and hand audit records to the sink.

    Mutating requests get a default ``{resource}.{verb}`` label, requests
    made under impersonation get ``impersonation.request``; route handlers
    override either with ``audit_action``. Only successful (below 400)
    responses of an authenticated principal are recorded, and the record
    is handed to the sink after the last body chunk has been sent. Sink
    failures are logged, never raised.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        public_paths: PublicPaths,
        sink: AuditSink | None = None,
        trust_forwarded_for: bool = False,
    ) -> None:
        super().__init__(app)
        self.public_paths = public_paths
        self.sink = sink or StructlogAuditSink()
        self.trust_forwarded_for = trust_forwarded_for

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if not self.public_paths.is_protected(path):
            return await call_next(request)

        principal: Principal | None = getattr(request.state, "principal", None)
        action = default_action(request.method, self.public_paths.resource_of(path))
        if action is None and principal is not None and principal.is_impersonated:
            action = IMPERSONATION_ACTION
        if action is not None:
            annotate(request, action, explicit=False)

        response = await call_next(request)

        annotation = getattr(request.state, "audit", None)
        if annotation is None or principal is None or response.status_code >= 400:
            return response

        tenant = getattr(request.state, "tenant", None)
        record = build_record(
            action=annotation.action,
            method=request.method,
            path=path,
            status_code=response.status_code,
            ip=client_address(request, trust_forwarded_for=self.trust_forwarded_for),
            user_id=principal.user_id,
            tenant_id=tenant.tenant_id if tenant else None,
        )
        tasks = BackgroundTasks()
        if response.background is not None:
            tasks.add_task(response.background)
        tasks.add_task(self._emit, record)
        response.background = tasks
        return response

    async def _emit(self, record: AuditRecord) -> None:
        try:
            self.sink.emit(record)
        except Exception:
            logger.exception("audit_sink_error", action=record.action)


def install_authorization_chain(
    app: FastAPI,
    *,
    public_paths: PublicPaths,
    limiter: FixedWindowRateLimiter,
    rate_limit_scope: str = "api",
    principal_loader: PrincipalLoader = session_principal_loader,
    audit_sink: AuditSink | None = None,
    trust_forwarded_for: bool = False,
) -> None:
    """Add the chain to ``app``.

    Starlette runs the most recently added middleware first, so the
    steps are added innermost first.
    """
    app.add_middleware(
        AuditMiddleware,
        public_paths=public_paths,
        sink=audit_sink,
        trust_forwarded_for=trust_forwarded_for,
    )
    app.add_middleware(
        RateLimitMiddleware,
        limiter=limiter,
        public_paths=public_paths,
        scope=rate_limit_scope,
        trust_forwarded_for=trust_forwarded_for,
    )
    app.add_middleware(TenantContextMiddleware, public_paths=public_paths)
    app.add_middleware(
        PrincipalMiddleware, public_paths=public_paths, loader=principal_loader
    )
