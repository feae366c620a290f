"""Status transition lookup and validation endpoints.

Used by clients to populate status pickers and by external collaborators
to validate a change before writing it. Transition errors are translated
into HTTP responses here; the engine itself never renders HTTP.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from fieldservice_core.api.deps import (
    audit_action,
    get_tenant_context,
    get_transition_engine,
)
from fieldservice_core.api.schemas import (
    StatusGraphResponse,
    StatusOptionsResponse,
    TransitionCheckRequest,
    TransitionCheckResponse,
)
from fieldservice_core.auth.audit import AuditAnnotation
from fieldservice_core.auth.context import TenantContext
from fieldservice_core.errors import (
    InvalidTransitionError,
    TransitionError,
    UnknownStatusError,
)
from fieldservice_core.transitions.engine import StatusTransitionEngine
from fieldservice_core.transitions.graph import EntityKind

router = APIRouter(prefix="/status-transitions", tags=["status-transitions"])

TenantDep = Annotated[TenantContext, Depends(get_tenant_context)]
EngineDep = Annotated[StatusTransitionEngine, Depends(get_transition_engine)]
CheckAuditDep = Annotated[
    AuditAnnotation, Depends(audit_action("status_transition.check"))
]


@router.get("/{kind}")
async def get_status_graph(
    kind: EntityKind,
    tenant: TenantDep,
    engine: EngineDep,
) -> StatusGraphResponse:
    """Full adjacency of the entity kind's transition graph."""
    graph = engine.graph(kind)
    return StatusGraphResponse(
        kind=kind,
        transitions=graph.to_dict(),
        terminal=[s for s in graph.statuses if s in graph.terminal_statuses],
    )


@router.get("/{kind}/{status}")
async def get_status_options(
    kind: EntityKind,
    status: str,
    tenant: TenantDep,
    engine: EngineDep,
) -> StatusOptionsResponse:
    """Statuses reachable from ``status`` in one step.

    Returns 404 if the status is not part of the kind's graph.
    """
    try:
        allowed = engine.allowed_transitions(kind, status)
    except UnknownStatusError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None
    return StatusOptionsResponse(
        kind=kind, status=status, allowed=list(allowed), terminal=not allowed
    )


@router.post("/{kind}/check")
async def check_transition(
    kind: EntityKind,
    body: TransitionCheckRequest,
    tenant: TenantDep,
    engine: EngineDep,
    audit: CheckAuditDep,
) -> TransitionCheckResponse:
    """Validate a status change without persisting anything.

    Raises:
        HTTPException 400: transition not allowed (the body names both
            endpoints) or unknown status.
    """
    try:
        engine.assert_transition(kind, body.from_status, body.to_status)
    except InvalidTransitionError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "message": str(e),
                "from_status": e.from_status,
                "to_status": e.to_status,
            },
        ) from None
    except TransitionError as e:
        raise HTTPException(status_code=400, detail={"message": str(e)}) from None

    return TransitionCheckResponse(
        kind=kind,
        from_status=body.from_status,
        to_status=body.to_status,
        allowed=True,
        noop=body.from_status == body.to_status,
    )
