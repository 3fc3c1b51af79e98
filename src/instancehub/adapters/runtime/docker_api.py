"""Runtime driver over the Docker Engine REST API.

Works against a local daemon socket (unix://) or a remote API
endpoint (tcp://, http(s)://) depending on DOCKER_HOST.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from instancehub.app.config import get_settings
from instancehub.core.errors import (
    CommandFailedError,
    RuntimeTimeoutError,
    RuntimeUnavailableError,
)
from instancehub.core.interfaces.runtime import RuntimeDriver, RuntimeState
from instancehub.core.logging_schema import LogEvent
from instancehub.infra.docker import (
    ContainerAPI,
    ContainerConfig,
    DockerClient,
    HostConfig,
    ImageAPI,
    PortBinding,
    SystemAPI,
)

logger = logging.getLogger(__name__)


def _daemon_message(resp: httpx.Response) -> str:
    """Extract the daemon's error message from an error response."""
    try:
        message = resp.json().get("message")
    except ValueError:
        message = None
    return message or resp.text.strip() or f"Docker API returned {resp.status_code}"


class DockerApiRuntimeDriver(RuntimeDriver):
    """RuntimeDriver backed by the async Engine API client."""

    def __init__(
        self,
        client: DockerClient | None = None,
        containers: ContainerAPI | None = None,
        images: ImageAPI | None = None,
        system: SystemAPI | None = None,
    ) -> None:
        settings = get_settings()
        self._docker = client or DockerClient()
        self._containers = containers or ContainerAPI(self._docker)
        self._images = images or ImageAPI(self._docker)
        self._system = system or SystemAPI(self._docker)
        self._ping_timeout = settings.docker.ping_timeout
        self._stop_timeout = settings.docker.stop_timeout
        self._pull_timeout = settings.docker.image_pull_timeout

    @property
    def name(self) -> str:
        return "docker-api"

    def describe(self) -> dict[str, str]:
        return {"driver": self.name, "endpoint": self._docker.host}

    @asynccontextmanager
    async def _translate(self, operation: str) -> AsyncIterator[None]:
        """Map httpx failures onto runtime error kinds."""
        try:
            yield
        except httpx.TimeoutException as exc:
            raise RuntimeTimeoutError(f"Docker {operation} timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise CommandFailedError(_daemon_message(exc.response)) from exc
        except httpx.TransportError as exc:
            raise RuntimeUnavailableError(
                f"Cannot reach Docker at {self._docker.host}: {exc}"
            ) from exc

    async def daemon_healthy(self) -> bool:
        try:
            return await self._system.ping(timeout=self._ping_timeout)
        except httpx.HTTPError as exc:
            logger.warning(
                "Docker daemon ping failed",
                extra={"event": LogEvent.RUNTIME_ERROR, "error": str(exc)},
            )
            return False

    async def image_present(self, ref: str) -> bool:
        async with self._translate("image inspect"):
            return await self._images.exists(ref)

    async def pull_image(self, ref: str) -> None:
        async with self._translate("image pull"):
            await self._images.pull(ref, timeout=self._pull_timeout)

    async def create_and_start(
        self,
        image: str,
        name: str,
        host_port: int,
        container_port: int,
        env: dict[str, str],
    ) -> str:
        config = ContainerConfig(
            image=image,
            name=name,
            env=env,
            labels={"instancehub.managed": "true"},
            host_config=HostConfig(
                port_bindings=[PortBinding(container_port=container_port, host_port=host_port)]
            ),
        )
        async with self._translate("create"):
            container_id = await self._containers.create(config)

        try:
            async with self._translate("start"):
                await self._containers.start(container_id)
        except Exception:
            await self._discard(container_id)
            raise
        return container_id

    async def _discard(self, container_id: str) -> None:
        """Remove a container that failed to start."""
        try:
            await self._containers.remove(container_id, force=True)
        except httpx.HTTPError as exc:
            logger.error(
                "Failed to discard container after start failure",
                extra={
                    "event": LogEvent.RUNTIME_ERROR,
                    "container": container_id,
                    "error": str(exc),
                },
            )

    async def start(self, handle: str) -> None:
        async with self._translate("start"):
            await self._containers.start(handle)

    async def stop(self, handle: str) -> None:
        async with self._translate("stop"):
            await self._containers.stop(handle, timeout=self._stop_timeout)

    async def remove(self, handle: str) -> None:
        async with self._translate("remove"):
            await self._containers.remove(handle, force=True)

    async def inspect_state(self, handle: str) -> RuntimeState:
        async with self._translate("inspect"):
            info = await self._containers.inspect(handle)
        if info is None:
            return RuntimeState.MISSING
        return RuntimeState.from_runtime(info.get("State", {}).get("Status"))

    async def close(self) -> None:
        await self._docker.close()
