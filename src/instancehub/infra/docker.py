"""Docker Engine API client with Pydantic models.

Provides async Docker API access for containers and images.
Supports both Unix socket and TCP (remote API) connections.

Configuration via DockerConfig (DOCKER_ env prefix).
"""

import logging

import httpx
from pydantic import BaseModel

from instancehub.app.config import get_settings
from instancehub.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)


# =============================================================================
# Pydantic Models
# =============================================================================


class PortBinding(BaseModel):
    """Publish a container port on a host port."""

    container_port: int
    host_port: int
    protocol: str = "tcp"

    model_config = {"frozen": True}

    @property
    def key(self) -> str:
        return f"{self.container_port}/{self.protocol}"


class HostConfig(BaseModel):
    """Docker HostConfig for container creation."""

    network_mode: str = "bridge"
    port_bindings: list[PortBinding] = []
    restart_policy: str = "no"

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API format."""
        result: dict = {
            "NetworkMode": self.network_mode,
            "RestartPolicy": {"Name": self.restart_policy},
        }
        if self.port_bindings:
            result["PortBindings"] = {
                b.key: [{"HostPort": str(b.host_port)}] for b in self.port_bindings
            }
        return result


class ContainerConfig(BaseModel):
    """Docker container configuration for creation."""

    image: str
    name: str
    env: dict[str, str] = {}
    labels: dict[str, str] = {}
    host_config: HostConfig = HostConfig()

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API JSON format."""
        result: dict = {
            "Image": self.image,
            "ExposedPorts": {b.key: {} for b in self.host_config.port_bindings},
            "HostConfig": self.host_config.to_api(),
        }
        if self.env:
            result["Env"] = [f"{k}={v}" for k, v in self.env.items()]
        if self.labels:
            result["Labels"] = self.labels
        return result


# =============================================================================
# Docker Client
# =============================================================================


class DockerClient:
    """Async Docker API client.

    Supports Unix socket and TCP connections.
    Handles event loop changes (important for tests).
    """

    def __init__(
        self,
        docker_host: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        docker_config = get_settings().docker
        self._host = docker_host or docker_config.host
        self._timeout = timeout if timeout is not None else docker_config.api_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def host(self) -> str:
        return self._host

    @property
    def timeout(self) -> float:
        return self._timeout

    def _create_client(self) -> httpx.AsyncClient:
        """Create a new HTTP client."""
        if self._transport is not None:
            return httpx.AsyncClient(
                transport=self._transport, base_url="http://docker", timeout=self._timeout
            )
        if self._host.startswith("unix://"):
            socket_path = self._host.replace("unix://", "")
            transport = httpx.AsyncHTTPTransport(uds=socket_path)
            return httpx.AsyncClient(
                transport=transport,
                base_url="http://localhost",
                timeout=self._timeout,
            )
        base_url = self._host
        if base_url.startswith("tcp://"):
            base_url = base_url.replace("tcp://", "http://")
        return httpx.AsyncClient(base_url=base_url, timeout=self._timeout)

    async def get(self) -> httpx.AsyncClient:
        """Get or create the HTTP client.

        Recreates the client if the previous one was closed
        (e.g., due to event loop change in tests).
        """
        if self._client is None or self._client.is_closed:
            self._client = self._create_client()
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# =============================================================================
# System API
# =============================================================================


class SystemAPI:
    """Docker daemon-level operations."""

    def __init__(self, client: DockerClient) -> None:
        self._docker = client

    async def ping(self, timeout: float | None = None) -> bool:
        """Return True if the daemon answers /_ping with 200."""
        client = await self._docker.get()
        kwargs = {"timeout": timeout} if timeout is not None else {}
        resp = await client.get("/_ping", **kwargs)
        return resp.status_code == 200


# =============================================================================
# Container API
# =============================================================================


class ContainerAPI:
    """Docker Container API operations."""

    def __init__(self, client: DockerClient) -> None:
        self._docker = client

    async def inspect(self, name: str) -> dict | None:
        """Inspect a container.

        Args:
            name: Container name or ID

        Returns:
            Container info dict or None if not found
        """
        client = await self._docker.get()
        resp = await client.get(f"/containers/{name}/json")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def create(self, config: ContainerConfig) -> str:
        """Create a container.

        Args:
            config: Container configuration

        Returns:
            Container ID
        """
        client = await self._docker.get()
        resp = await client.post(
            "/containers/create",
            params={"name": config.name},
            json=config.to_api(),
        )
        resp.raise_for_status()
        container_id = resp.json()["Id"]
        logger.info(
            "Created container: %s",
            config.name,
            extra={"event": LogEvent.CONTAINER_CREATED, "container": container_id},
        )
        return container_id

    async def start(self, name: str) -> None:
        """Start a container.

        Args:
            name: Container name or ID
        """
        client = await self._docker.get()
        resp = await client.post(f"/containers/{name}/start")
        if resp.status_code not in (204, 304):  # 304 = already started
            resp.raise_for_status()
        logger.info(
            "Started container: %s",
            name,
            extra={"event": LogEvent.CONTAINER_STARTED, "container": name},
        )

    async def stop(self, name: str, timeout: int = 10) -> None:
        """Stop a container.

        Args:
            name: Container name or ID
            timeout: Seconds to wait before killing
        """
        client = await self._docker.get()
        # Read timeout must outlast the daemon's own grace period
        resp = await client.post(
            f"/containers/{name}/stop",
            params={"t": str(timeout)},
            timeout=self._docker.timeout + timeout,
        )
        if resp.status_code not in (204, 304):  # 304 = already stopped
            resp.raise_for_status()
        logger.info(
            "Stopped container: %s",
            name,
            extra={"event": LogEvent.CONTAINER_STOPPED, "container": name},
        )

    async def remove(self, name: str, force: bool = True) -> None:
        """Remove a container.

        Args:
            name: Container name or ID
            force: Force removal of running container
        """
        client = await self._docker.get()
        resp = await client.delete(
            f"/containers/{name}", params={"force": "true" if force else "false"}
        )
        if resp.status_code == 404:
            logger.debug("Container not found: %s", name)
            return
        resp.raise_for_status()
        logger.info(
            "Removed container: %s",
            name,
            extra={"event": LogEvent.CONTAINER_REMOVED, "container": name},
        )


# =============================================================================
# Image API
# =============================================================================


class ImageAPI:
    """Docker Image API operations."""

    def __init__(self, client: DockerClient) -> None:
        self._docker = client

    async def exists(self, image_ref: str) -> bool:
        """Check if image exists locally.

        Args:
            image_ref: Image reference (e.g., "python:3.13-slim")

        Returns:
            True if image exists locally
        """
        client = await self._docker.get()
        resp = await client.get(f"/images/{image_ref}/json")
        if resp.status_code == 404:
            return False
        resp.raise_for_status()
        return True

    async def pull(self, image_ref: str, timeout: float | None = None) -> None:
        """Pull image from registry.

        Args:
            image_ref: Image reference (e.g., "python:3.13-slim")
            timeout: Overall pull timeout

        Note:
            Docker streams JSON progress lines and reports pull failures
            inside the stream with an "error" key, so the body is checked.
        """
        client = await self._docker.get()

        # Parse image:tag (a ":" inside the registry host is not a tag)
        name, _, tag = image_ref.rpartition(":")
        if not name or "/" in tag:
            name, tag = image_ref, "latest"

        logger.info("Pulling image: %s:%s", name, tag)
        resp = await client.post(
            "/images/create",
            params={"fromImage": name, "tag": tag},
            timeout=timeout if timeout is not None else get_settings().docker.image_pull_timeout,
        )
        resp.raise_for_status()
        if '"error"' in resp.text:
            raise httpx.HTTPStatusError(
                f"Image pull reported an error: {resp.text.strip().splitlines()[-1]}",
                request=resp.request,
                response=resp,
            )
        logger.info(
            "Pulled image: %s:%s",
            name,
            tag,
            extra={"event": LogEvent.IMAGE_PULLED, "image": image_ref},
        )
