"""Business logic services."""

from instancehub.services.health import HealthProbe
from instancehub.services.lifecycle import InstanceSpec, LifecycleManager, OperationResult
from instancehub.services.ports import PortAllocator

__all__ = [
    "HealthProbe",
    "InstanceSpec",
    "LifecycleManager",
    "OperationResult",
    "PortAllocator",
]
