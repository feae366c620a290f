"""Request authorization: principal, tenant context, rate limits, audit.

Note: the FastAPI dependencies (``get_tenant_context``, ``audit_action``)
live in ``api.deps`` and are NOT re-exported here.
Import directly: ``from fieldservice_core.api.deps import audit_action``.
"""

from fieldservice_core.auth.context import TenantContext, resolve_tenant_context
from fieldservice_core.auth.principal import Principal, resolve_principal
from fieldservice_core.auth.public_paths import PublicPaths
from fieldservice_core.auth.rate_limiter import (
    FixedWindowRateLimiter,
    InMemoryRateLimitStore,
    RateLimitDecision,
    RateLimitStore,
)

__all__ = [
    "FixedWindowRateLimiter",
    "InMemoryRateLimitStore",
    "Principal",
    "PublicPaths",
    "RateLimitDecision",
    "RateLimitStore",
    "TenantContext",
    "resolve_principal",
    "resolve_tenant_context",
]
