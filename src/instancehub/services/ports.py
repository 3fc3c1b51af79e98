"""Host port allocation for instance backends.

A candidate port is free when no instance record holds it and nothing
on the host accepts a TCP connection on it. The check is best effort:
another process can still bind the port between the probe and the
container start, which then fails as a runtime CommandFailedError.

Ports handed out by lease() stay reserved inside this process until
the lease ends, so concurrent creations here never collide.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

from instancehub.app.config import PortConfig, get_settings
from instancehub.core.errors import PortsExhaustedError
from instancehub.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)


class PortAllocator:
    def __init__(self, config: PortConfig | None = None) -> None:
        self._config = config or get_settings().ports
        self._reserved: set[int] = set()
        self._lock = asyncio.Lock()

    @property
    def port_range(self) -> tuple[int, int]:
        return self._config.min_port, self._config.max_port

    async def is_bound(self, port: int) -> bool:
        """True if something on the host accepts connections on the port."""
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self._config.probe_host, port),
                timeout=self._config.probe_timeout,
            )
        except (OSError, TimeoutError):
            return False
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        return True

    async def allocate(
        self,
        used_ports: Iterable[int],
        port_range: tuple[int, int] | None = None,
    ) -> int:
        """Return the lowest free port in the range.

        Raises:
            PortsExhaustedError: every port in the range is rejected
        """
        low, high = port_range or self.port_range
        taken = set(used_ports) | self._reserved
        for port in range(low, high + 1):
            if port in taken:
                continue
            if await self.is_bound(port):
                logger.debug("Port %d is bound on host, skipping", port)
                continue
            return port
        raise PortsExhaustedError(low, high)

    @asynccontextmanager
    async def lease(self, used_ports: Iterable[int]) -> AsyncIterator[int]:
        """Allocate a port and keep it reserved for the duration of the block."""
        async with self._lock:
            port = await self.allocate(used_ports)
            self._reserved.add(port)
        logger.info(
            "Allocated port %d",
            port,
            extra={"event": LogEvent.PORT_ALLOCATED, "port": port},
        )
        try:
            yield port
        finally:
            self._reserved.discard(port)
