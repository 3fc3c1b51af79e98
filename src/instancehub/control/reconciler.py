"""Status reconciler - runtime observation -> recorded instance status.

Algorithm:
1. Daemon liveness probe. Down -> the whole pass is skipped with a single
   DaemonUnavailableError; no instance is touched.
2. For every instance with a runtime handle (bounded concurrency):
   inspect the container and probe the backend health endpoint.
3. Map (runtime state, health) onto a status:
     running + healthy   -> running
     running + unhealthy -> error
     exited              -> stopped
     created             -> creating
     missing / unknown   -> error
   An inspection failure maps to docker_unavailable (daemon went away
   mid-pass) or error; per-instance mapping never raises.
4. Write only when the status differs, as a compare-and-set against the
   status read at the start of the pass. A lifecycle transition that
   lands in between wins and the change is picked up next pass.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from instancehub.app.config import ReconcilerConfig, get_settings
from instancehub.app.logging import log_context
from instancehub.app.metrics.collector import (
    INSTANCES_BY_STATUS,
    RECONCILE_DURATION,
    RECONCILE_STATUS_CHANGES_TOTAL,
    RECONCILE_TOTAL,
)
from instancehub.core.errors import DaemonUnavailableError, RuntimeUnavailableError
from instancehub.core.interfaces import InstanceRegistry, RuntimeDriver, RuntimeState
from instancehub.core.logging_schema import Component, LogEvent
from instancehub.core.models import Instance, InstanceStatus
from instancehub.services.health import HealthProbe

logger = logging.getLogger(__name__)


def map_status(state: RuntimeState, healthy: bool) -> InstanceStatus:
    """Recorded status implied by an observed runtime state."""
    if state is RuntimeState.RUNNING:
        return InstanceStatus.RUNNING if healthy else InstanceStatus.ERROR
    if state is RuntimeState.EXITED:
        return InstanceStatus.STOPPED
    if state is RuntimeState.CREATED:
        return InstanceStatus.CREATING
    return InstanceStatus.ERROR


@dataclass
class ReconcileResult:
    checked: int = 0
    changed: int = 0
    conflicts: int = 0
    transitions: dict[str, str] = field(default_factory=dict)  # instance_id -> new status

    @property
    def unchanged(self) -> int:
        return self.checked - self.changed - self.conflicts


class StatusReconciler:
    def __init__(
        self,
        driver: RuntimeDriver,
        registry: InstanceRegistry,
        probe: HealthProbe | None = None,
        config: ReconcilerConfig | None = None,
    ) -> None:
        self._driver = driver
        self._registry = registry
        self._probe = probe or HealthProbe()
        self._config = config or get_settings().reconciler
        self._passes = 0

    async def observe(self, instance: Instance) -> InstanceStatus:
        """Status the runtime currently implies for one instance. Never raises."""
        try:
            state = await self._driver.inspect_state(instance.runtime_handle)
        except RuntimeUnavailableError:
            return InstanceStatus.DOCKER_UNAVAILABLE
        except Exception as exc:
            logger.warning(
                "Inspect failed",
                extra={
                    "event": LogEvent.RUNTIME_ERROR,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return InstanceStatus.ERROR

        # The probe only matters for a running container
        healthy = state is RuntimeState.RUNNING and await self._probe.check(instance)
        return map_status(state, healthy)

    async def _reconcile_one(self, instance: Instance, result: ReconcileResult) -> None:
        new_status = await self.observe(instance)
        result.checked += 1
        if new_status == instance.status:
            return

        updated = await self._registry.update(
            instance.id, expected_status=InstanceStatus(instance.status), status=new_status
        )
        if updated is None:
            result.conflicts += 1
            logger.info(
                "Status changed concurrently, skipping",
                extra={"event": LogEvent.CAS_CONFLICT},
            )
            return

        result.changed += 1
        result.transitions[instance.id] = new_status.value
        RECONCILE_STATUS_CHANGES_TOTAL.labels(status=new_status.value).inc()
        logger.info(
            "Instance status changed",
            extra={
                "event": LogEvent.STATE_CHANGED,
                "from_status": str(instance.status),
                "to_status": new_status.value,
            },
        )

    async def reconcile(self) -> ReconcileResult:
        """Run one reconciliation pass.

        Raises:
            DaemonUnavailableError: daemon is down; nothing was written
        """
        self._passes += 1
        with log_context(component=Component.RECONCILER, reconcile_pass=self._passes):
            return await self._run_pass()

    async def _run_pass(self) -> ReconcileResult:
        start = time.monotonic()
        if not await self._driver.daemon_healthy():
            RECONCILE_TOTAL.labels(result="skipped").inc()
            logger.warning(
                "Docker daemon unavailable, skipping reconcile",
                extra={"event": LogEvent.RECONCILE_SKIPPED},
            )
            raise DaemonUnavailableError()

        instances = await self._registry.list(with_handle=True)
        result = ReconcileResult()
        semaphore = asyncio.Semaphore(self._config.concurrency)

        async def bounded(instance: Instance) -> None:
            async with semaphore:
                with log_context(instance_id=instance.id):
                    await self._reconcile_one(instance, result)

        await asyncio.gather(*(bounded(i) for i in instances))

        duration = time.monotonic() - start
        RECONCILE_TOTAL.labels(result="completed").inc()
        RECONCILE_DURATION.observe(duration)
        self._update_gauges(instances, result)
        logger.info(
            "Reconcile complete",
            extra={
                "event": LogEvent.RECONCILE_COMPLETE,
                "checked": result.checked,
                "changed": result.changed,
                "conflicts": result.conflicts,
                "duration_ms": duration * 1000,
            },
        )
        return result

    @staticmethod
    def _update_gauges(instances: list[Instance], result: ReconcileResult) -> None:
        counts = {status.value: 0 for status in InstanceStatus}
        for instance in instances:
            status = result.transitions.get(instance.id, str(instance.status))
            counts[status] = counts.get(status, 0) + 1
        for status, count in counts.items():
            INSTANCES_BY_STATUS.labels(status=status).set(count)


class ReconcileLoop:
    """Periodic driver for StatusReconciler.

    A failed pass is logged and retried on the next tick.
    """

    def __init__(self, reconciler: StatusReconciler, interval: float | None = None) -> None:
        self._reconciler = reconciler
        self._interval = interval if interval is not None else get_settings().reconciler.interval
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def tick(self) -> None:
        try:
            await self._reconciler.reconcile()
        except DaemonUnavailableError:
            # Already logged by the reconciler
            pass
        except Exception as e:
            RECONCILE_TOTAL.labels(result="failed").inc()
            logger.exception("Error in reconcile tick: %s", e)

    async def run(self) -> None:
        """Main loop; exits on cancellation."""
        self._running = True
        logger.info(
            "Starting reconcile loop",
            extra={"event": LogEvent.APP_STARTED, "interval": self._interval},
        )
        try:
            while self._running:
                await self.tick()
                await asyncio.sleep(self._interval)
        finally:
            self._running = False
            logger.info("Reconcile loop stopped", extra={"event": LogEvent.APP_STOPPED})

    def stop(self) -> None:
        self._running = False
