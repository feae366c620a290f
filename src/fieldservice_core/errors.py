"""Domain-specific exceptions for fieldservice-core."""

from __future__ import annotations


class AuthorizationFailure(Exception):
    """Request rejected by the authorization chain before reaching a route.

    Carries the HTTP status and a stable machine-readable ``code`` so that
    operators can tell the failure categories apart in logs and responses.
    """

    status_code: int = 403
    code: str = "forbidden"

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class UnauthenticatedError(AuthorizationFailure):
    """No authenticated principal is attached to the request."""

    status_code = 401
    code = "unauthenticated"


class MissingTenantContextError(AuthorizationFailure):
    """Principal exists but its tenant id is missing or malformed."""

    status_code = 403
    code = "no_tenant_context"


class RateLimitExceededError(AuthorizationFailure):
    """Fixed-window quota for the (tenant, address, scope) key is spent."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__("Rate limit exceeded")


class TransitionError(ValueError):
    """Base class for status transition failures."""


class UnknownEntityKindError(TransitionError):
    """No transition graph is registered for the entity kind."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"Unknown entity kind: '{kind}'")


class UnknownStatusError(TransitionError):
    """Status is not a node of the entity kind's transition graph."""

    def __init__(self, kind: str, status: str) -> None:
        self.kind = kind
        self.status = status
        super().__init__(f"Unknown {kind} status: '{status}'")


class InvalidTransitionError(TransitionError):
    """Requested status is not reachable from the current one."""

    def __init__(self, kind: str, from_status: str, to_status: str) -> None:
        self.kind = kind
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid {kind} status transition: "
            f"cannot move from '{from_status}' to '{to_status}'"
        )


class StaleStatusError(TransitionError):
    """Conditional status write lost a race against a concurrent update."""

    def __init__(self, kind: str, from_status: str, to_status: str) -> None:
        self.kind = kind
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"{kind} status changed concurrently: "
            f"expected '{from_status}' while moving to '{to_status}'"
        )
