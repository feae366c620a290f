"""FastAPI application with lifespan management."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from fieldservice_core.api.middleware import (
    PrincipalLoader,
    RequestLoggingMiddleware,
    install_authorization_chain,
    session_principal_loader,
)
from fieldservice_core.api.routes.status_transitions import (
    router as status_transitions_router,
)
from fieldservice_core.auth.audit import AuditSink
from fieldservice_core.auth.public_paths import PublicPaths
from fieldservice_core.auth.rate_limiter import (
    FixedWindowRateLimiter,
    InMemoryRateLimitStore,
    RateLimitStore,
)
from fieldservice_core.auth.redis_store import RedisRateLimitStore
from fieldservice_core.config import RateLimitBackend, Settings, get_settings
from fieldservice_core.logging_config import configure_logging
from fieldservice_core.transitions.engine import default_engine

logger = structlog.get_logger()

HEALTH_CHECK_TIMEOUT = 5.0


async def _cleanup_loop(limiter: FixedWindowRateLimiter, interval: float) -> None:
    """Periodic sweep of expired rate limit buckets."""
    while True:
        await asyncio.sleep(interval)
        try:
            cleaned = await limiter.cleanup()
            if cleaned:
                logger.debug("rate_limiter_cleanup", buckets_removed=cleaned)
        except Exception:
            logger.exception("rate_limiter_cleanup_error")


def create_rate_limit_store(settings: Settings) -> RateLimitStore:
    if settings.rate_limit_backend == RateLimitBackend.REDIS:
        return RedisRateLimitStore.from_url(settings.redis_url)
    return InMemoryRateLimitStore()


def create_app(
    settings: Settings | None = None,
    *,
    rate_limit_store: RateLimitStore | None = None,
    principal_loader: PrincipalLoader = session_principal_loader,
    audit_sink: AuditSink | None = None,
) -> FastAPI:
    """Build the application and its authorization chain.

    The rate limit store, principal loader and audit sink are injectable
    so that deployments (and tests) can swap them without touching the
    middleware.
    """
    settings = settings or get_settings()
    store = rate_limit_store or create_rate_limit_store(settings)
    limiter = FixedWindowRateLimiter(
        store,
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    public_paths = PublicPaths(
        settings.public_path_prefixes, api_prefix=settings.api_prefix
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        """Manage application startup and shutdown.

        Startup:
            - Configure logging.
            - Start rate limiter cleanup task.
        Shutdown:
            - Cancel cleanup task.
            - Close the rate limit store.
        """
        configure_logging(
            environment=str(settings.environment),
            log_level=settings.log_level,
        )
        cleanup_task = asyncio.create_task(
            _cleanup_loop(limiter, settings.rate_limit_cleanup_interval_seconds)
        )
        logger.info(
            "app_started",
            environment=str(settings.environment),
            rate_limit_backend=str(settings.rate_limit_backend),
        )
        yield

        cleanup_task.cancel()
        await store.close()
        logger.info("app_stopped")

    app = FastAPI(
        title="Field Service Core",
        description="Tenant isolation, rate limiting, audit and status rules",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.is_dev,
    )
    app.state.settings = settings
    app.state.rate_limiter = limiter
    app.state.public_paths = public_paths
    app.state.transition_engine = default_engine(settings.status_graph_path)

    install_authorization_chain(
        app,
        public_paths=public_paths,
        limiter=limiter,
        rate_limit_scope=settings.rate_limit_scope,
        principal_loader=principal_loader,
        audit_sink=audit_sink,
        trust_forwarded_for=settings.trust_forwarded_for,
    )
    if settings.session_secret is not None:
        app.add_middleware(
            SessionMiddleware,
            secret_key=settings.session_secret.get_secret_value(),
            session_cookie=settings.session_cookie,
            max_age=settings.session_max_age_seconds,
            same_site="lax",
            https_only=settings.session_https_only,
        )
    app.add_middleware(RequestLoggingMiddleware, api_prefix=settings.api_prefix)

    api = APIRouter(prefix=settings.api_prefix if settings.api_prefix != "/" else "")
    api.add_api_route("/health", health, methods=["GET"])
    api.include_router(status_transitions_router)
    app.include_router(api)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    return app


async def health(request: Request) -> JSONResponse:
    """Health check: verifies rate limit store connectivity."""
    limiter: FixedWindowRateLimiter = request.app.state.rate_limiter
    checks: dict[str, str] = {}
    overall = "ok"

    try:
        reachable = await asyncio.wait_for(
            limiter.store.ping(), timeout=HEALTH_CHECK_TIMEOUT
        )
        checks["rate_limit_store"] = "ok" if reachable else "error: unreachable"
        if not reachable:
            overall = "degraded"
    except TimeoutError as e:
        logger.warning("health_check_store_error", error=type(e).__name__)
        checks["rate_limit_store"] = f"error: {type(e).__name__}"
        overall = "degraded"

    status_code = 200 if overall == "ok" else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": overall,
            "checks": checks,
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds"),
        },
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Catch-all handler for unhandled exceptions."""
    logger.error("unhandled_exception", exc_info=exc, path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app = create_app()
