"""Tenant context derived from the authenticated principal."""

from __future__ import annotations

import re
from dataclasses import dataclass

from fieldservice_core.auth.principal import Principal
from fieldservice_core.errors import MissingTenantContextError, UnauthenticatedError

TENANT_ID_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.:-]{0,127}")


@dataclass(frozen=True)
class TenantContext:
    """Tenant context, attached once per request and never mutated.

    Derived only from the principal, so ``tenant_id`` always equals
    ``principal.tenant_id``.
    """

    tenant_id: str
    user_id: str
    role: str
    impersonator_id: str | None = None


def is_well_formed_tenant_id(value: object) -> bool:
    return isinstance(value, str) and TENANT_ID_PATTERN.fullmatch(value) is not None


def resolve_tenant_context(principal: Principal | None) -> TenantContext:
    """Derive the tenant context of a request.

    The request body, query string and headers are never consulted: the
    tenant id comes solely from the authenticated principal.

    Raises:
        UnauthenticatedError: no principal.
        MissingTenantContextError: tenant id missing or malformed.
    """
    if principal is None:
        raise UnauthenticatedError("Authentication required")

    if not is_well_formed_tenant_id(principal.tenant_id):
        raise MissingTenantContextError(
            "No company association found. Please contact support."
        )

    return TenantContext(
        tenant_id=principal.tenant_id,  # type: ignore[arg-type]
        user_id=principal.user_id,
        role=principal.role,
        impersonator_id=principal.impersonator_id,
    )
