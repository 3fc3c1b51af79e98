"""Runtime driver over the docker SDK (docker-py).

docker-py is synchronous, so every call runs in a worker thread.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from instancehub.app.config import get_settings
from instancehub.core.errors import (
    CommandFailedError,
    RuntimeTimeoutError,
    RuntimeUnavailableError,
)
from instancehub.core.interfaces.runtime import RuntimeDriver, RuntimeState
from instancehub.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DockerSdkRuntimeDriver(RuntimeDriver):
    """RuntimeDriver using docker-py against a local or remote daemon."""

    def __init__(
        self,
        docker_host: str | None = None,
        client: docker.DockerClient | None = None,
    ) -> None:
        settings = get_settings()
        self._host = docker_host or settings.docker.host
        self._timeout = int(settings.docker.api_timeout)
        self._stop_timeout = settings.docker.stop_timeout
        self._client = client

    @property
    def name(self) -> str:
        return "docker-sdk"

    def describe(self) -> dict[str, str]:
        return {"driver": self.name, "endpoint": self._host}

    def _get_client(self) -> docker.DockerClient:
        # Created lazily: the constructor contacts the daemon for its API version
        if self._client is None:
            self._client = docker.DockerClient(base_url=self._host, timeout=self._timeout)
        return self._client

    async def _run(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking SDK call and map its failures onto runtime error kinds."""
        try:
            return await asyncio.to_thread(fn, *args)
        except requests.exceptions.Timeout as exc:
            raise RuntimeTimeoutError(f"Docker {operation} timed out") from exc
        except requests.exceptions.ConnectionError as exc:
            raise RuntimeUnavailableError(f"Cannot reach Docker at {self._host}: {exc}") from exc
        except APIError as exc:
            raise CommandFailedError(exc.explanation or str(exc)) from exc
        except DockerException as exc:
            raise RuntimeUnavailableError(str(exc)) from exc

    # =========================================================================
    # Sync implementations (worker thread)
    # =========================================================================

    def _ping_sync(self) -> bool:
        return bool(self._get_client().ping())

    def _image_present_sync(self, ref: str) -> bool:
        try:
            self._get_client().images.get(ref)
        except ImageNotFound:
            return False
        return True

    def _pull_sync(self, ref: str) -> None:
        logger.info("Pulling image: %s", ref)
        self._get_client().images.pull(ref)
        logger.info("Pulled image: %s", ref, extra={"event": LogEvent.IMAGE_PULLED, "image": ref})

    def _create_and_start_sync(
        self,
        image: str,
        name: str,
        host_port: int,
        container_port: int,
        env: dict[str, str],
    ) -> str:
        container = self._get_client().containers.create(
            image,
            name=name,
            detach=True,
            environment=env,
            labels={"instancehub.managed": "true"},
            ports={f"{container_port}/tcp": host_port},
        )
        logger.info(
            "Created container: %s",
            name,
            extra={"event": LogEvent.CONTAINER_CREATED, "container": container.id},
        )
        try:
            container.start()
        except DockerException:
            try:
                container.remove(force=True)
            except DockerException as exc:
                logger.error(
                    "Failed to discard container after start failure",
                    extra={
                        "event": LogEvent.RUNTIME_ERROR,
                        "container": container.id,
                        "error": str(exc),
                    },
                )
            raise
        logger.info(
            "Started container: %s",
            name,
            extra={"event": LogEvent.CONTAINER_STARTED, "container": container.id},
        )
        return container.id

    def _start_sync(self, handle: str) -> None:
        self._get_client().containers.get(handle).start()
        logger.info(
            "Started container: %s",
            handle,
            extra={"event": LogEvent.CONTAINER_STARTED, "container": handle},
        )

    def _stop_sync(self, handle: str) -> None:
        self._get_client().containers.get(handle).stop(timeout=self._stop_timeout)
        logger.info(
            "Stopped container: %s",
            handle,
            extra={"event": LogEvent.CONTAINER_STOPPED, "container": handle},
        )

    def _remove_sync(self, handle: str) -> None:
        try:
            container = self._get_client().containers.get(handle)
        except NotFound:
            logger.debug("Container not found: %s", handle)
            return
        container.remove(force=True)
        logger.info(
            "Removed container: %s",
            handle,
            extra={"event": LogEvent.CONTAINER_REMOVED, "container": handle},
        )

    def _inspect_sync(self, handle: str) -> RuntimeState:
        try:
            container = self._get_client().containers.get(handle)
        except NotFound:
            return RuntimeState.MISSING
        return RuntimeState.from_runtime(container.status)

    # =========================================================================
    # RuntimeDriver
    # =========================================================================

    async def daemon_healthy(self) -> bool:
        try:
            return await self._run("ping", self._ping_sync)
        except (RuntimeUnavailableError, RuntimeTimeoutError, CommandFailedError) as exc:
            logger.warning(
                "Docker daemon ping failed",
                extra={"event": LogEvent.RUNTIME_ERROR, "error": exc.detail},
            )
            return False

    async def image_present(self, ref: str) -> bool:
        return await self._run("image inspect", self._image_present_sync, ref)

    async def pull_image(self, ref: str) -> None:
        await self._run("image pull", self._pull_sync, ref)

    async def create_and_start(
        self,
        image: str,
        name: str,
        host_port: int,
        container_port: int,
        env: dict[str, str],
    ) -> str:
        return await self._run(
            "create",
            self._create_and_start_sync,
            image,
            name,
            host_port,
            container_port,
            env,
        )

    async def start(self, handle: str) -> None:
        await self._run("start", self._start_sync, handle)

    async def stop(self, handle: str) -> None:
        await self._run("stop", self._stop_sync, handle)

    async def remove(self, handle: str) -> None:
        await self._run("remove", self._remove_sync, handle)

    async def inspect_state(self, handle: str) -> RuntimeState:
        return await self._run("inspect", self._inspect_sync, handle)

    async def close(self) -> None:
        if self._client is not None:
            await asyncio.to_thread(self._client.close)
            self._client = None
