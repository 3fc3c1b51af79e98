"""Instance registry interface.

The registry is the only shared mutable state in the control plane.
Implementations must apply each update atomically and enforce the
unique indexes on name and port.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from instancehub.core.models import Instance, InstanceStatus


class InstanceRegistry(ABC):
    """Storage-agnostic access to Instance records."""

    @abstractmethod
    async def get(self, instance_id: str) -> Instance | None:
        ...

    @abstractmethod
    async def get_by_name(self, name: str) -> Instance | None:
        ...

    @abstractmethod
    async def list(self, *, with_handle: bool = False) -> list[Instance]:
        """All instances ordered by creation; optionally only those with a runtime handle."""
        ...

    @abstractmethod
    async def used_ports(self) -> set[int]:
        """Ports currently bound to any instance."""
        ...

    @abstractmethod
    async def create(self, instance: Instance) -> Instance:
        """Insert a new record.

        Raises:
            NameTakenError: name already used by another instance
        """
        ...

    @abstractmethod
    async def update(
        self,
        instance_id: str,
        *,
        expected_status: InstanceStatus | None = None,
        **fields: Any,
    ) -> Instance | None:
        """Apply a field set atomically.

        With expected_status, the write only happens while the recorded
        status still equals it (compare-and-set).

        Returns:
            Updated instance, or None if it no longer exists or the
            expected status did not match.

        Raises:
            NameTakenError: name already used by another instance
        """
        ...

    @abstractmethod
    async def delete(self, instance_id: str) -> bool:
        ...

    @abstractmethod
    async def touch(self, instance_id: str, at: datetime) -> None:
        """Record proxy activity."""
        ...

    async def close(self) -> None:
        return None
