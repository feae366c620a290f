"""FastAPI dependency injection."""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from typing import Any, cast

from fastapi import HTTPException, Request

from fieldservice_core.auth.audit import AuditAnnotation, annotate
from fieldservice_core.auth.context import TenantContext
from fieldservice_core.auth.principal import Principal
from fieldservice_core.auth.rate_limiter import FixedWindowRateLimiter
from fieldservice_core.transitions.engine import StatusTransitionEngine

__all__ = [
    "audit_action",
    "get_principal",
    "get_rate_limiter",
    "get_tenant_context",
    "get_transition_engine",
]


async def get_principal(request: Request) -> Principal:
    """Principal resolved by PrincipalMiddleware.

    Raises:
        HTTPException 401: route mounted outside the authorization chain.
    """
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return cast(Principal, principal)


async def get_tenant_context(request: Request) -> TenantContext:
    """Tenant context attached by TenantContextMiddleware.

    Route handlers scope every query with ``tenant.tenant_id`` and never
    with an id taken from the request payload.

    Raises:
        HTTPException 401: route mounted outside the authorization chain.
    """
    tenant = getattr(request.state, "tenant", None)
    if tenant is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return cast(TenantContext, tenant)


async def get_transition_engine(request: Request) -> StatusTransitionEngine:
    """Retrieve the StatusTransitionEngine from app state.

    Initialized by ``create_app``.
    """
    return cast(StatusTransitionEngine, request.app.state.transition_engine)


async def get_rate_limiter(request: Request) -> FixedWindowRateLimiter:
    return cast(FixedWindowRateLimiter, request.app.state.rate_limiter)


def audit_action(
    action: str,
) -> Callable[..., Coroutine[Any, Any, AuditAnnotation]]:
    """Dependency factory: label the request for the audit log.

    Usage::

        @router.patch("/jobs/{job_id}/status")
        async def update_status(
            audit: AuditAnnotation = Depends(audit_action("job.status_change")),
        ): ...
    """

    async def _annotate(request: Request) -> AuditAnnotation:
        return annotate(request, action)

    return _annotate
