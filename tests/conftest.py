"""Shared pytest configuration."""

from collections.abc import Generator

import pytest
import structlog


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-redis",
        action="store_true",
        default=False,
        help="Run tests that talk to a live Redis (REDIS_URL, default db 15)",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    if config.getoption("--run-redis"):
        return
    skip_redis = pytest.mark.skip(reason="needs --run-redis flag")
    for item in items:
        if "requires_redis" in item.keywords:
            item.add_marker(skip_redis)


@pytest.fixture(autouse=True)
def _clear_log_context() -> Generator[None]:
    """Request middleware binds request/tenant ids; keep tests independent."""
    yield
    structlog.contextvars.clear_contextvars()
