"""Instance lifecycle management.

Drives the runtime through create/start/stop/remove and records the
outcome in the registry.

Status writes:
- create: creating -> running (only after the container is up)
- start:  -> running on success, -> error when the runtime rejects it
- stop:   -> stopped on success
- remove: handle and port cleared, -> stopped on success

A failed create leaves the record in creating without handle or port.
A failed remove leaves the record untouched so it can be retried.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from instancehub.app.config import RuntimeConfig, get_settings
from instancehub.app.metrics.collector import (
    LIFECYCLE_OPERATION_DURATION,
    LIFECYCLE_OPERATIONS_TOTAL,
)
from instancehub.core.errors import (
    CommandFailedError,
    DaemonUnavailableError,
    ImageUnavailableError,
    InstanceHubError,
    InstanceNotFoundError,
    RuntimeTimeoutError,
    RuntimeUnavailableError,
)
from instancehub.core.interfaces import InstanceRegistry, RuntimeDriver
from instancehub.core.logging_schema import Component, ErrorClass, LogEvent
from instancehub.core.models import Instance, InstanceStatus
from instancehub.services.health import HealthProbe
from instancehub.services.ports import PortAllocator

logger = logging.getLogger(__name__)


class InstanceSpec(BaseModel):
    """Creation request for a new instance."""

    name: str
    webhook_url: str | None = None
    webhook_secret: str | None = None


@dataclass(frozen=True)
class OperationResult:
    """Outcome of start/stop/remove. Truthy on success.

    error carries the runtime failure when the operation was attempted
    and failed; it is None for no-op failures (no runtime handle, daemon down).
    """

    ok: bool
    error: InstanceHubError | None = None

    def __bool__(self) -> bool:
        return self.ok


class LifecycleManager:
    def __init__(
        self,
        driver: RuntimeDriver,
        registry: InstanceRegistry,
        ports: PortAllocator,
        probe: HealthProbe | None = None,
        config: RuntimeConfig | None = None,
    ) -> None:
        self._driver = driver
        self._registry = registry
        self._ports = ports
        self._config = config or get_settings().runtime
        self._probe = probe or HealthProbe(self._config)

    @property
    def image(self) -> str:
        return self._config.image

    def container_name(self, instance_id: str) -> str:
        return f"{self._config.resource_prefix}{instance_id}"

    def _container_env(self, instance: Instance) -> dict[str, str]:
        env = {self._config.webhook_env: instance.webhook_url or ""}
        if instance.webhook_secret:
            env[self._config.webhook_secret_env] = instance.webhook_secret
        return env

    def _record(self, operation: str, ok: bool, started: float, **extra: Any) -> None:
        LIFECYCLE_OPERATIONS_TOTAL.labels(
            operation=operation, result="success" if ok else "failure"
        ).inc()
        LIFECYCLE_OPERATION_DURATION.labels(operation=operation).observe(
            time.monotonic() - started
        )
        log_extra = {
            "component": Component.LIFECYCLE,
            "operation": operation,
            "duration_ms": (time.monotonic() - started) * 1000,
            **extra,
        }
        if ok:
            logger.info(
                "Instance %s succeeded",
                operation,
                extra={"event": LogEvent.OPERATION_SUCCESS, **log_extra},
            )
        else:
            logger.error(
                "Instance %s failed",
                operation,
                extra={"event": LogEvent.OPERATION_FAILED, **log_extra},
            )

    # =========================================================================
    # Preflight
    # =========================================================================

    async def preflight(self) -> None:
        """Require a reachable daemon and a local copy of the backend image.

        Raises:
            DaemonUnavailableError: daemon failed its liveness probe
            ImageUnavailableError: image missing and the pull failed
        """
        if not await self._driver.daemon_healthy():
            logger.warning(
                "Preflight failed: daemon unavailable",
                extra={"event": LogEvent.PREFLIGHT_FAILED, "error_class": ErrorClass.TRANSIENT},
            )
            raise DaemonUnavailableError()

        if await self._driver.image_present(self.image):
            return
        logger.info("Image %s not present locally, pulling", self.image)
        try:
            await self._driver.pull_image(self.image)
        except InstanceHubError as exc:
            logger.warning(
                "Preflight failed: image unavailable",
                extra={
                    "event": LogEvent.PREFLIGHT_FAILED,
                    "image": self.image,
                    "error": exc.detail,
                },
            )
            raise ImageUnavailableError(self.image, exc.detail) from exc

    # =========================================================================
    # Operations
    # =========================================================================

    async def create_instance(self, spec: InstanceSpec) -> Instance:
        """Record a new instance and bring its container up.

        Raises:
            NameTakenError: name already in use (no runtime call is made)
            DaemonUnavailableError, ImageUnavailableError, PortsExhaustedError,
            CommandFailedError, RuntimeTimeoutError: creation failed; the
            record stays in creating
        """
        instance = await self._registry.create(
            Instance(
                name=spec.name,
                webhook_url=spec.webhook_url,
                webhook_secret=spec.webhook_secret,
                status=InstanceStatus.CREATING,
            )
        )
        started = time.monotonic()
        try:
            await self.preflight()
            async with self._ports.lease(await self._registry.used_ports()) as port:
                handle = await self._driver.create_and_start(
                    self.image,
                    self.container_name(instance.id),
                    port,
                    self._config.container_port,
                    self._container_env(instance),
                )
                updated = await self._attach(instance, handle, port)
        except Exception as exc:
            detail = exc.detail if isinstance(exc, InstanceHubError) else str(exc)
            self._record("create", False, started, instance_id=instance.id, error=detail)
            raise

        self._record("create", True, started, instance_id=instance.id, port=port, handle=handle)
        return updated

    async def _attach(self, instance: Instance, handle: str, port: int) -> Instance:
        """Persist the runtime binding, discarding the container if that fails."""
        try:
            updated = await self._registry.update(
                instance.id,
                runtime_handle=handle,
                port=port,
                status=InstanceStatus.RUNNING,
            )
            if updated is None:
                raise InstanceNotFoundError()
        except Exception:
            try:
                await self._driver.remove(handle)
            except InstanceHubError as exc:
                logger.error(
                    "Failed to discard container of unpersisted instance",
                    extra={
                        "event": LogEvent.RUNTIME_ERROR,
                        "instance_id": instance.id,
                        "handle": handle,
                        "error": exc.detail,
                    },
                )
            raise
        return updated

    async def start(self, instance: Instance) -> OperationResult:
        if instance.runtime_handle is None:
            return OperationResult(False)
        started = time.monotonic()
        if not await self._driver.daemon_healthy():
            logger.error(
                "Cannot start instance: Docker daemon is not running",
                extra={"event": LogEvent.PREFLIGHT_FAILED, "instance_id": instance.id},
            )
            return OperationResult(False)

        try:
            await self._driver.start(instance.runtime_handle)
        except (CommandFailedError, RuntimeTimeoutError) as exc:
            self._record("start", False, started, instance_id=instance.id, error=exc.detail)
            await self._registry.update(instance.id, status=InstanceStatus.ERROR)
            return OperationResult(False, exc)
        except RuntimeUnavailableError as exc:
            self._record("start", False, started, instance_id=instance.id, error=exc.detail)
            return OperationResult(False, exc)

        await self._registry.update(instance.id, status=InstanceStatus.RUNNING)
        self._record("start", True, started, instance_id=instance.id)
        return OperationResult(True)

    async def stop(self, instance: Instance) -> OperationResult:
        if instance.runtime_handle is None:
            return OperationResult(False)
        started = time.monotonic()
        try:
            await self._driver.stop(instance.runtime_handle)
        except InstanceHubError as exc:
            self._record("stop", False, started, instance_id=instance.id, error=exc.detail)
            return OperationResult(False, exc)

        await self._registry.update(instance.id, status=InstanceStatus.STOPPED)
        self._record("stop", True, started, instance_id=instance.id)
        return OperationResult(True)

    async def remove(self, instance: Instance) -> OperationResult:
        if instance.runtime_handle is None:
            return OperationResult(False)
        started = time.monotonic()
        handle = instance.runtime_handle

        try:
            await self._driver.stop(handle)
        except InstanceHubError as exc:
            logger.warning(
                "Stop before remove failed, removing anyway",
                extra={"instance_id": instance.id, "handle": handle, "error": exc.detail},
            )

        try:
            await self._driver.remove(handle)
        except InstanceHubError as exc:
            self._record("remove", False, started, instance_id=instance.id, error=exc.detail)
            return OperationResult(False, exc)

        await self._registry.update(
            instance.id,
            runtime_handle=None,
            port=None,
            status=InstanceStatus.STOPPED,
        )
        self._record("remove", True, started, instance_id=instance.id, handle=handle)
        return OperationResult(True)

    # =========================================================================
    # Queries
    # =========================================================================

    async def runtime_status(self, instance: Instance) -> str:
        """Live runtime view of one instance.

        not_created without a handle, docker_unavailable when the daemon is
        down, error when inspection fails, otherwise the runtime state.
        """
        if instance.runtime_handle is None:
            return InstanceStatus.NOT_CREATED.value
        if not await self._driver.daemon_healthy():
            return InstanceStatus.DOCKER_UNAVAILABLE.value
        try:
            state = await self._driver.inspect_state(instance.runtime_handle)
        except InstanceHubError as exc:
            logger.warning(
                "Inspect failed",
                extra={"instance_id": instance.id, "error": exc.detail},
            )
            return InstanceStatus.ERROR.value
        return state.value

    async def is_healthy(self, instance: Instance) -> bool:
        return await self._probe.check(instance)

    async def environment_status(self) -> dict[str, Any]:
        """Daemon reachability, image availability and configured port range."""
        docker_running = await self._driver.daemon_healthy()
        image_available = False
        if docker_running:
            try:
                image_available = await self._driver.image_present(self.image)
            except InstanceHubError as exc:
                logger.warning("Image check failed", extra={"error": exc.detail})
        low, high = self._ports.port_range
        return {
            **self._driver.describe(),
            "docker_running": docker_running,
            "image_available": image_available,
            "image_name": self.image,
            "port_range": f"{low}-{high}",
        }
