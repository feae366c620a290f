"""Shared table of paths that bypass the authorization chain."""

from __future__ import annotations

from collections.abc import Iterable


def _matches_prefix(path: str, prefix: str) -> bool:
    # Segment-aware: "/api/auth" matches "/api/auth/login", not "/api/authority".
    prefix = prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


class PublicPaths:
    """Decides which requests the authorization chain applies to.

    Only paths under ``api_prefix`` are protected; everything else
    (frontend assets, docs) passes through. Within the API, paths that
    match an exempt prefix (login, logout, invitation acceptance, health,
    CSRF token) are public. Principal, tenant, rate limit and audit
    middleware all consult the same instance.
    """

    def __init__(self, exempt_prefixes: Iterable[str], api_prefix: str = "/api") -> None:
        self.api_prefix = "/" + api_prefix.strip("/")
        self.exempt_prefixes: tuple[str, ...] = tuple(exempt_prefixes)

    def is_api(self, path: str) -> bool:
        if self.api_prefix == "/":
            return True
        return _matches_prefix(path, self.api_prefix)

    def is_exempt(self, path: str) -> bool:
        return any(_matches_prefix(path, prefix) for prefix in self.exempt_prefixes)

    def is_protected(self, path: str) -> bool:
        return self.is_api(path) and not self.is_exempt(path)

    def resource_of(self, path: str) -> str:
        """First path segment after the API prefix, e.g. ``jobs``."""
        remainder = path
        if self.api_prefix != "/" and self.is_api(path):
            remainder = path[len(self.api_prefix) :]
        segments = [s for s in remainder.split("/") if s]
        return segments[0] if segments else "root"
