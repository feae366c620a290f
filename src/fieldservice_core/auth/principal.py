"""Authenticated principal extracted from the request session."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError

from fieldservice_core.errors import UnauthenticatedError

SESSION_USER_KEY = "user"


class SessionUser(BaseModel):
    """Shape of the ``user`` entry written to the session at login.

    ``company_id`` is deliberately left unvalidated here: a principal with
    a broken tenant reference is still authenticated, and the tenant
    context resolver reports it as a distinct failure.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: StrictStr = Field(min_length=1)
    role: StrictStr = Field(min_length=1)
    company_id: Any = None
    impersonated_by: StrictStr | None = None


@dataclass(frozen=True)
class Principal:
    """Authenticated identity, immutable for the lifetime of one request."""

    user_id: str
    tenant_id: str | None
    role: str
    impersonator_id: str | None = None

    @property
    def is_impersonated(self) -> bool:
        return self.impersonator_id is not None


def resolve_principal(payload: Mapping[str, Any] | None) -> Principal:
    """Build a Principal from a session ``user`` payload.

    Raises:
        UnauthenticatedError: payload is absent, not a mapping, or lacks
            a non-empty user id or role.
    """
    if payload is None:
        raise UnauthenticatedError("Authentication required")
    if not isinstance(payload, Mapping):
        raise UnauthenticatedError("Authentication required")

    try:
        user = SessionUser.model_validate(dict(payload))
    except ValidationError:
        raise UnauthenticatedError("Authentication required") from None

    if not user.id.strip() or not user.role.strip():
        raise UnauthenticatedError("Authentication required")

    return Principal(
        user_id=user.id,
        tenant_id=user.company_id,
        role=user.role,
        impersonator_id=user.impersonated_by,
    )
