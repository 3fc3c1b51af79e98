"""Application-level health probe for instance backends."""

import logging

import httpx

from instancehub.app.config import RuntimeConfig, get_settings
from instancehub.core.logging_schema import LogEvent
from instancehub.core.models import Instance

logger = logging.getLogger(__name__)


class HealthProbe:
    """HTTP GET against the backend health endpoint.

    Any response below 400 is healthy. Connection errors, timeouts and
    missing ports count as unhealthy; check() never raises.
    """

    def __init__(
        self,
        config: RuntimeConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or get_settings().runtime
        self._transport = transport

    def url_for(self, instance: Instance) -> str | None:
        base = instance.api_url(self._config.backend_host)
        return f"{base}{self._config.health_path}" if base else None

    async def check(self, instance: Instance) -> bool:
        url = self.url_for(instance)
        if url is None:
            return False
        try:
            async with httpx.AsyncClient(
                timeout=self._config.health_timeout, transport=self._transport
            ) as client:
                resp = await client.get(url)
        except Exception as exc:
            logger.debug(
                "Health probe failed",
                extra={
                    "event": LogEvent.UPSTREAM_UNHEALTHY,
                    "instance_id": instance.id,
                    "error": str(exc),
                },
            )
            return False
        return resp.status_code < 400
