"""Shared fixtures for instancehub unit tests."""

from collections.abc import AsyncIterator
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from instancehub.adapters.registry import MemoryInstanceRegistry
from instancehub.app.api.v1.dependencies import (
    get_clock,
    get_health_probe,
    get_port_allocator,
    get_registry,
    get_runtime_driver,
)
from instancehub.app.config import PortConfig, RuntimeConfig
from instancehub.app.main import app
from instancehub.app.proxy.client import get_http_client
from instancehub.core.clock import Clock
from instancehub.core.interfaces import RuntimeDriver, RuntimeState
from instancehub.core.models import Instance, InstanceStatus
from instancehub.services import HealthProbe, LifecycleManager, PortAllocator


class FrozenClock(Clock):
    """Clock pinned to one instant."""

    def __init__(self, at: datetime) -> None:
        self._at = at

    def now(self) -> datetime:
        return self._at


@pytest.fixture
def registry() -> MemoryInstanceRegistry:
    return MemoryInstanceRegistry()


@pytest.fixture
def driver() -> MagicMock:
    """RuntimeDriver double; a healthy daemon with the image already present."""
    mock = MagicMock(spec=RuntimeDriver)
    mock.name = "fake"
    mock.daemon_healthy = AsyncMock(return_value=True)
    mock.image_present = AsyncMock(return_value=True)
    mock.pull_image = AsyncMock()
    mock.create_and_start = AsyncMock(return_value="c-1")
    mock.start = AsyncMock()
    mock.stop = AsyncMock()
    mock.remove = AsyncMock()
    mock.inspect_state = AsyncMock(return_value=RuntimeState.RUNNING)
    mock.describe = MagicMock(return_value={"driver": "fake"})
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def ports() -> PortAllocator:
    """Allocator over 3001-3003 that sees nothing bound on the host."""
    allocator = PortAllocator(PortConfig(min_port=3001, max_port=3003))
    allocator.is_bound = AsyncMock(return_value=False)
    return allocator


@pytest.fixture
def runtime_config() -> RuntimeConfig:
    return RuntimeConfig(image="backend:test", resource_prefix="test-")


@pytest.fixture
def probe() -> MagicMock:
    mock = MagicMock(spec=HealthProbe)
    mock.check = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def lifecycle(
    driver: MagicMock,
    registry: MemoryInstanceRegistry,
    ports: PortAllocator,
    probe: MagicMock,
    runtime_config: RuntimeConfig,
) -> LifecycleManager:
    return LifecycleManager(driver, registry, ports, probe, runtime_config)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
async def running_instance(registry: MemoryInstanceRegistry) -> Instance:
    return await registry.create(
        Instance(name="alpha", runtime_handle="abc", port=3001, status=InstanceStatus.RUNNING)
    )


def upstream_transport(
    status_code: int = 200,
    content: bytes = b"",
    headers: dict[str, str] | None = None,
) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    """MockTransport answering every request the same way, recording requests."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_code, content=content, headers=headers)

    return httpx.MockTransport(handler), seen


@pytest.fixture
def upstream() -> tuple[httpx.MockTransport, list[httpx.Request]]:
    """Instance backend answering 200 {"messages":[]} to every request."""
    return upstream_transport(
        200,
        b'{"messages":[]}',
        {"content-type": "application/json", "x-backend": "wa"},
    )


@pytest.fixture
async def client(
    driver: MagicMock,
    registry: MemoryInstanceRegistry,
    ports: PortAllocator,
    probe: MagicMock,
    clock: FrozenClock,
    upstream: tuple[httpx.MockTransport, list[httpx.Request]],
) -> AsyncIterator[httpx.AsyncClient]:
    """API client with every collaborator replaced through dependency_overrides."""
    upstream_client = httpx.AsyncClient(transport=upstream[0])
    app.dependency_overrides[get_runtime_driver] = lambda: driver
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_port_allocator] = lambda: ports
    app.dependency_overrides[get_health_probe] = lambda: probe
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_http_client] = lambda: upstream_client

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    await upstream_client.aclose()
