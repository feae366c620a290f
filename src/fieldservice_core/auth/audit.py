"""Audit annotation of sensitive requests.

Route handlers (or the audit middleware, for mutating requests) attach an
action label to the request. Nothing is persisted here: once the response
is final the middleware hands an :class:`AuditRecord` to an
:class:`AuditSink`, the logging collaborator.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog
from starlette.requests import Request

logger = structlog.get_logger()

MUTATING_METHOD_VERBS: dict[str, str] = {
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}

IMPERSONATION_ACTION = "impersonation.request"


@dataclass(frozen=True)
class AuditAnnotation:
    """Action label attached to one request."""

    action: str
    attached_by: str
    explicit: bool = True


@dataclass(frozen=True)
class AuditRecord:
    """Structured audit record handed to the sink after the response."""

    timestamp: datetime
    action: str
    user_id: str | None
    tenant_id: str | None
    method: str
    path: str
    status_code: int
    ip: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the field names the audit consumer relies on."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "action": self.action,
            "userId": self.user_id,
            "tenantId": self.tenant_id,
            "method": self.method,
            "path": self.path,
            "statusCode": self.status_code,
            "ip": self.ip,
        }


class AuditSink(Protocol):
    def emit(self, record: AuditRecord) -> None: ...


class StructlogAuditSink:
    """Default sink: one ``audit_event`` log line per record."""

    def emit(self, record: AuditRecord) -> None:
        logger.info("audit_event", **record.to_dict())


def request_id_of(request: Request) -> str:
    return getattr(request.state, "request_id", None) or "unknown"


def annotate(request: Request, action: str, *, explicit: bool = True) -> AuditAnnotation:
    """Attach an action label to the request.

    An explicit label (route handler) always wins; a default label
    (middleware) never replaces an existing one.
    """
    current: AuditAnnotation | None = getattr(request.state, "audit", None)
    if current is not None and current.explicit and not explicit:
        return current
    annotation = AuditAnnotation(
        action=action, attached_by=request_id_of(request), explicit=explicit
    )
    request.state.audit = annotation
    return annotation


def default_action(method: str, resource: str) -> str | None:
    """Label for a mutating request, e.g. ``jobs.update``; None for reads."""
    verb = MUTATING_METHOD_VERBS.get(method.upper())
    if verb is None:
        return None
    return f"{resource}.{verb}"


def build_record(
    *,
    action: str,
    method: str,
    path: str,
    status_code: int,
    ip: str,
    user_id: str | None,
    tenant_id: str | None,
    now: datetime | None = None,
) -> AuditRecord:
    return AuditRecord(
        timestamp=now or datetime.now(UTC),
        action=action,
        user_id=user_id,
        tenant_id=tenant_id,
        method=method,
        path=path,
        status_code=status_code,
        ip=ip,
    )
