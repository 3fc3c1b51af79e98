"""API v1 dependencies for instancehub.

Singletons are built lazily from settings; tests replace them through
app.dependency_overrides.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from instancehub.adapters.registry import MemoryInstanceRegistry, SqlInstanceRegistry
from instancehub.adapters.runtime import DockerApiRuntimeDriver, DockerSdkRuntimeDriver
from instancehub.app.config import get_settings
from instancehub.control.reconciler import StatusReconciler
from instancehub.core.clock import Clock, SystemClock
from instancehub.core.errors import InstanceNotFoundError
from instancehub.core.interfaces import InstanceRegistry, RuntimeDriver
from instancehub.core.models import Instance
from instancehub.services import HealthProbe, LifecycleManager, PortAllocator


@lru_cache
def get_runtime_driver() -> RuntimeDriver:
    """Get runtime driver singleton based on config."""
    settings = get_settings()
    if settings.runtime.driver == "docker-sdk":
        return DockerSdkRuntimeDriver()
    return DockerApiRuntimeDriver()


@lru_cache
def get_registry() -> InstanceRegistry:
    """Get instance registry singleton based on config."""
    if get_settings().registry.backend == "memory":
        return MemoryInstanceRegistry()
    return SqlInstanceRegistry()


@lru_cache
def get_port_allocator() -> PortAllocator:
    return PortAllocator()


@lru_cache
def get_health_probe() -> HealthProbe:
    return HealthProbe()


@lru_cache
def get_clock() -> Clock:
    return SystemClock()


def get_lifecycle_manager(
    driver: Annotated[RuntimeDriver, Depends(get_runtime_driver)],
    registry: Annotated[InstanceRegistry, Depends(get_registry)],
    ports: Annotated[PortAllocator, Depends(get_port_allocator)],
    probe: Annotated[HealthProbe, Depends(get_health_probe)],
) -> LifecycleManager:
    return LifecycleManager(driver, registry, ports, probe)


def get_status_reconciler(
    driver: Annotated[RuntimeDriver, Depends(get_runtime_driver)],
    registry: Annotated[InstanceRegistry, Depends(get_registry)],
    probe: Annotated[HealthProbe, Depends(get_health_probe)],
) -> StatusReconciler:
    return StatusReconciler(driver, registry, probe)


Registry = Annotated[InstanceRegistry, Depends(get_registry)]
Lifecycle = Annotated[LifecycleManager, Depends(get_lifecycle_manager)]
Reconciler = Annotated[StatusReconciler, Depends(get_status_reconciler)]
CurrentClock = Annotated[Clock, Depends(get_clock)]


async def get_instance_or_404(instance_id: str, registry: Registry) -> Instance:
    """Resolve the {instance_id} path parameter.

    Raises:
        InstanceNotFoundError: no such instance
    """
    instance = await registry.get(instance_id)
    if instance is None:
        raise InstanceNotFoundError()
    return instance


ExistingInstance = Annotated[Instance, Depends(get_instance_or_404)]
