"""Pytest fixtures for EWMA registry tests."""

from collections.abc import AsyncIterator, Iterator
import os

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

os.environ.setdefault("EWMA_MAX_INSTANCES", "1000")
os.environ.setdefault("EWMA_MAX_OUTSTANDING_BUFFERS", "1000")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from ewma_registry.accumulators.registry import AccumulatorRegistry
from ewma_registry.lib.metrics import MetricsRegistry
from ewma_registry.main import app as fastapi_app


@pytest.fixture(scope="session")
def app() -> FastAPI:
    """Return the FastAPI application instance."""
    return fastapi_app


@pytest_asyncio.fixture()
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Provide an `httpx.AsyncClient` routed to the FastAPI app in-process."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture(autouse=True)
def reset_runtime(app: FastAPI) -> Iterator[None]:
    """Reset metrics and the application registry across tests."""

    metrics = getattr(app.state, "metrics", None)
    registry = getattr(app.state, "registry", None)
    if metrics is not None:
        metrics.reset()
    if registry is not None:
        registry.clear()
    yield
    if metrics is not None:
        metrics.reset()
    if registry is not None:
        registry.clear()


@pytest.fixture()
def metrics() -> MetricsRegistry:
    """Return an isolated metrics registry."""
    return MetricsRegistry()


@pytest.fixture()
def registry(metrics: MetricsRegistry) -> AccumulatorRegistry:
    """Return a fresh registry with small, test-friendly limits."""
    return AccumulatorRegistry(max_instances=64, max_outstanding_buffers=8, metrics=metrics)
