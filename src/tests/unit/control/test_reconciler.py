"""Unit tests for StatusReconciler and ReconcileLoop."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from instancehub.adapters.registry import MemoryInstanceRegistry
from instancehub.app.config import ReconcilerConfig
from instancehub.app.logging import ContextFilter
from instancehub.control import ReconcileLoop, StatusReconciler, map_status
from instancehub.core.errors import (
    CommandFailedError,
    DaemonUnavailableError,
    RuntimeUnavailableError,
)
from instancehub.core.interfaces import RuntimeState
from instancehub.core.models import Instance, InstanceStatus


@pytest.fixture
def reconciler(
    driver: MagicMock, registry: MemoryInstanceRegistry, probe: MagicMock
) -> StatusReconciler:
    return StatusReconciler(driver, registry, probe, ReconcilerConfig(concurrency=2))


async def _add(registry: MemoryInstanceRegistry, name: str, status: str, port: int) -> Instance:
    return await registry.create(
        Instance(name=name, runtime_handle=f"h-{name}", port=port, status=status)
    )


class TestMapStatus:
    @pytest.mark.parametrize(
        ("state", "healthy", "expected"),
        [
            (RuntimeState.RUNNING, True, InstanceStatus.RUNNING),
            (RuntimeState.RUNNING, False, InstanceStatus.ERROR),
            (RuntimeState.EXITED, False, InstanceStatus.STOPPED),
            (RuntimeState.CREATED, False, InstanceStatus.CREATING),
            (RuntimeState.MISSING, False, InstanceStatus.ERROR),
            (RuntimeState.UNKNOWN, False, InstanceStatus.ERROR),
        ],
    )
    def test_table(self, state: RuntimeState, healthy: bool, expected: InstanceStatus):
        assert map_status(state, healthy) is expected


class TestReconcile:
    async def test_daemon_down_aborts_without_writes(
        self,
        reconciler: StatusReconciler,
        driver: MagicMock,
        registry: MemoryInstanceRegistry,
    ):
        instance = await _add(registry, "a", "running", 3001)
        driver.daemon_healthy.return_value = False

        with pytest.raises(DaemonUnavailableError):
            await reconciler.reconcile()

        driver.inspect_state.assert_not_called()
        assert (await registry.get(instance.id)).status == InstanceStatus.RUNNING

    async def test_unhealthy_running_becomes_error(
        self,
        reconciler: StatusReconciler,
        probe: MagicMock,
        registry: MemoryInstanceRegistry,
    ):
        instance = await _add(registry, "a", "running", 3001)
        probe.check.return_value = False

        result = await reconciler.reconcile()

        assert result.changed == 1
        assert result.transitions == {instance.id: "error"}
        assert (await registry.get(instance.id)).status == InstanceStatus.ERROR

    async def test_exited_becomes_stopped_without_probe(
        self,
        reconciler: StatusReconciler,
        driver: MagicMock,
        probe: MagicMock,
        registry: MemoryInstanceRegistry,
    ):
        instance = await _add(registry, "a", "running", 3001)
        driver.inspect_state.return_value = RuntimeState.EXITED

        await reconciler.reconcile()

        probe.check.assert_not_called()
        assert (await registry.get(instance.id)).status == InstanceStatus.STOPPED

    async def test_second_pass_writes_nothing(
        self,
        reconciler: StatusReconciler,
        driver: MagicMock,
        registry: MemoryInstanceRegistry,
    ):
        await _add(registry, "a", "error", 3001)
        await _add(registry, "b", "running", 3002)

        first = await reconciler.reconcile()
        assert first.changed == 1

        with patch.object(registry, "update", wraps=registry.update) as update:
            second = await reconciler.reconcile()
        assert second.changed == 0
        assert second.unchanged == 2
        update.assert_not_called()

    async def test_instances_without_handle_skipped(
        self,
        reconciler: StatusReconciler,
        driver: MagicMock,
        registry: MemoryInstanceRegistry,
    ):
        await registry.create(Instance(name="fresh", status="creating"))
        result = await reconciler.reconcile()
        assert result.checked == 0
        driver.inspect_state.assert_not_called()

    async def test_inspect_failures_map_to_status(
        self,
        reconciler: StatusReconciler,
        driver: MagicMock,
        registry: MemoryInstanceRegistry,
    ):
        gone = await _add(registry, "a", "running", 3001)
        broken = await _add(registry, "b", "running", 3002)

        async def inspect(handle: str) -> RuntimeState:
            if handle == gone.runtime_handle:
                raise RuntimeUnavailableError()
            raise CommandFailedError("inspect failed")

        driver.inspect_state.side_effect = inspect

        result = await reconciler.reconcile()

        assert result.checked == 2
        assert (await registry.get(gone.id)).status == InstanceStatus.DOCKER_UNAVAILABLE
        assert (await registry.get(broken.id)).status == InstanceStatus.ERROR

    async def test_concurrent_transition_wins(
        self,
        reconciler: StatusReconciler,
        driver: MagicMock,
        registry: MemoryInstanceRegistry,
    ):
        instance = await _add(registry, "a", "running", 3001)

        async def inspect(handle: str) -> RuntimeState:
            # A lifecycle stop lands while the pass is observing
            await registry.update(instance.id, status=InstanceStatus.STOPPED)
            return RuntimeState.MISSING

        driver.inspect_state.side_effect = inspect

        result = await reconciler.reconcile()

        assert result.conflicts == 1
        assert result.changed == 0
        assert (await registry.get(instance.id)).status == InstanceStatus.STOPPED

    async def test_records_carry_pass_and_instance(
        self,
        reconciler: StatusReconciler,
        probe: MagicMock,
        registry: MemoryInstanceRegistry,
        caplog: pytest.LogCaptureFixture,
    ):
        instance = await _add(registry, "a", "running", 3001)
        probe.check.return_value = False
        records: list[logging.LogRecord] = []
        handler = logging.Handler()
        handler.emit = records.append
        handler.addFilter(ContextFilter())
        target = logging.getLogger("instancehub.control.reconciler")
        caplog.set_level(logging.INFO, logger=target.name)
        target.addHandler(handler)
        try:
            await reconciler.reconcile()
            await reconciler.reconcile()
        finally:
            target.removeHandler(handler)

        changed = next(r for r in records if r.getMessage() == "Instance status changed")
        assert changed.instance_id == instance.id
        assert changed.component == "reconciler"
        assert changed.reconcile_pass == 1

        completed = [r for r in records if r.getMessage() == "Reconcile complete"]
        assert [r.reconcile_pass for r in completed] == [1, 2]
        assert not hasattr(completed[0], "instance_id")


class TestReconcileLoop:
    async def test_tick_swallows_daemon_unavailable(self):
        reconciler = MagicMock(spec=StatusReconciler)
        reconciler.reconcile = AsyncMock(side_effect=DaemonUnavailableError())
        await ReconcileLoop(reconciler, interval=0).tick()

    async def test_tick_logs_unexpected_errors(self, caplog: pytest.LogCaptureFixture):
        reconciler = MagicMock(spec=StatusReconciler)
        reconciler.reconcile = AsyncMock(side_effect=RuntimeError("db gone"))
        await ReconcileLoop(reconciler, interval=0).tick()
        assert "db gone" in caplog.text

    async def test_run_until_stopped(self):
        reconciler = MagicMock(spec=StatusReconciler)
        loop = ReconcileLoop(reconciler, interval=0)
        calls = 0

        async def reconcile():
            nonlocal calls
            calls += 1
            if calls == 3:
                loop.stop()

        reconciler.reconcile = AsyncMock(side_effect=reconcile)

        await asyncio.wait_for(loop.run(), timeout=1)

        assert calls == 3
        assert loop.running is False

    async def test_run_cancellation(self):
        reconciler = MagicMock(spec=StatusReconciler)
        reconciler.reconcile = AsyncMock()
        loop = ReconcileLoop(reconciler, interval=60)

        task = asyncio.create_task(loop.run())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert loop.running is False
