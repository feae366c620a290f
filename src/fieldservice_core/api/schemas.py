"""Request/response schemas for the API layer."""

from __future__ import annotations

from pydantic import BaseModel, Field

from fieldservice_core.transitions.graph import EntityKind

# --- Status transitions ---


class StatusGraphResponse(BaseModel):
    """Response for ``GET /status-transitions/{kind}``.

    Example::

        {
            "kind": "invoice",
            "transitions": {"draft": ["pending", "sent", "void", "cancelled"], ...},
            "terminal": ["void", "cancelled"]
        }
    """

    kind: EntityKind
    transitions: dict[str, list[str]] = Field(
        description="Allowed next statuses per status, in declaration order."
    )
    terminal: list[str] = Field(description="Statuses with no outgoing edges.")


class StatusOptionsResponse(BaseModel):
    """Response for ``GET /status-transitions/{kind}/{status}``."""

    kind: EntityKind
    status: str
    allowed: list[str]
    terminal: bool


class TransitionCheckRequest(BaseModel):
    """Request body for ``POST /status-transitions/{kind}/check``."""

    from_status: str = Field(..., min_length=1, max_length=64)
    to_status: str = Field(..., min_length=1, max_length=64)


class TransitionCheckResponse(BaseModel):
    """Admitted transition. ``noop`` is true when the status is unchanged."""

    kind: EntityKind
    from_status: str
    to_status: str
    allowed: bool
    noop: bool
