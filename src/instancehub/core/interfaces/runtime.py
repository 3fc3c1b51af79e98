"""Runtime driver interface.

Thin boundary between the control plane and the container runtime.
Lifecycle Manager and Status Reconciler only talk to this interface,
never to a concrete runtime client.

Error contract (every method except daemon_healthy):
- RuntimeUnavailableError: daemon unreachable
- CommandFailedError: runtime rejected the call
- RuntimeTimeoutError: call exceeded its timeout
"""

from abc import ABC, abstractmethod
from enum import StrEnum


class RuntimeState(StrEnum):
    """Container state as reported by the runtime."""

    RUNNING = "running"
    EXITED = "exited"
    CREATED = "created"
    MISSING = "missing"  # runtime has no such handle
    UNKNOWN = "unknown"  # paused, restarting, dead, ...

    @classmethod
    def from_runtime(cls, value: str | None) -> "RuntimeState":
        """Map a raw runtime state string onto the known states."""
        try:
            state = cls((value or "").lower())
        except ValueError:
            return cls.UNKNOWN
        return cls.UNKNOWN if state is cls.MISSING else state


class RuntimeDriver(ABC):
    """Container runtime operations used by the control plane."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Driver identifier (matches RUNTIME_DRIVER)."""
        ...

    @abstractmethod
    async def daemon_healthy(self) -> bool:
        """True iff the runtime answers a liveness probe. Never raises."""
        ...

    @abstractmethod
    async def image_present(self, ref: str) -> bool:
        ...

    @abstractmethod
    async def pull_image(self, ref: str) -> None:
        ...

    @abstractmethod
    async def create_and_start(
        self,
        image: str,
        name: str,
        host_port: int,
        container_port: int,
        env: dict[str, str],
    ) -> str:
        """Create and start a container, returning its handle.

        Atomic for the caller: either a handle is returned or nothing
        is left behind in the runtime.
        """
        ...

    @abstractmethod
    async def start(self, handle: str) -> None:
        ...

    @abstractmethod
    async def stop(self, handle: str) -> None:
        ...

    @abstractmethod
    async def remove(self, handle: str) -> None:
        """Remove a container, stopping it first if still active."""
        ...

    @abstractmethod
    async def inspect_state(self, handle: str) -> RuntimeState:
        """Observed container state; MISSING if the runtime has no such handle."""
        ...

    def describe(self) -> dict[str, str]:
        """Driver name and endpoint for status reporting."""
        return {"driver": self.name}

    async def close(self) -> None:
        """Release client resources."""
        return None
