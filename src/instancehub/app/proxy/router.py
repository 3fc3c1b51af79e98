"""Instance proxy routes.

Routes: /instance/{instance_id}/{subpath...} -> instance backend

1. Fewer than two segments after /instance -> 400 Invalid API path
2. Unknown instance                        -> 404 Instance not found
3. Instance not running                    -> 503 Instance is not running
4. Forward method, still-encoded sub-path, allow-listed headers,
   raw body and query string
5. Relay upstream status, body and headers; record activity
6. Any upstream failure                    -> 500 Proxy request failed
"""

import logging
import time
from typing import Annotated
from urllib.parse import quote, unquote

import httpx
from fastapi import APIRouter, Depends, Request
from starlette.responses import Response

from instancehub.app.api.v1.dependencies import CurrentClock, Registry
from instancehub.app.config import get_settings
from instancehub.app.logging import log_context
from instancehub.app.metrics.collector import PROXY_REQUESTS_TOTAL, PROXY_UPSTREAM_DURATION
from instancehub.core.errors import (
    InstanceNotFoundError,
    InstanceNotRunningError,
    InvalidPathError,
    ProxyFailureError,
)
from instancehub.core.clock import Clock
from instancehub.core.interfaces import InstanceRegistry
from instancehub.core.logging_schema import Component, LogEvent
from instancehub.core.models import Instance

from .client import (
    get_http_client,
    relayable_response_headers,
    select_request_headers,
    upstream_timeout,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"])

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

HttpClient = Annotated[httpx.AsyncClient, Depends(get_http_client)]

PROXY_PREFIX = "/instance"


def split_proxy_path(path: str) -> tuple[str, str]:
    """Split "{id}/{subpath...}" into its parts.

    Raises:
        InvalidPathError: no sub-path segment or empty instance id
    """
    instance_id, sep, subpath = path.partition("/")
    if not sep or not instance_id:
        raise InvalidPathError()
    return instance_id, subpath


def encoded_proxy_path(scope: dict) -> str:
    """Path after /instance/ as the client sent it, percent-escapes intact.

    The routed path parameter is already decoded, so an escaped "?" or "/"
    inside a segment would change the upstream path.
    """
    raw_path = scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path is not None else quote(scope["path"])
    path = path.partition("?")[0]
    _, sep, rest = path.partition(f"{PROXY_PREFIX}/")
    return rest if sep else ""


def build_target_url(host: str, port: int, subpath: str, query: str) -> str:
    url = f"http://{host}:{port}/{subpath}"
    return f"{url}?{query}" if query else url


@router.api_route(PROXY_PREFIX, methods=PROXY_METHODS, include_in_schema=False)
@router.api_route(f"{PROXY_PREFIX}/{{path:path}}", methods=PROXY_METHODS, response_model=None)
async def proxy_http(
    request: Request,
    registry: Registry,
    clock: CurrentClock,
    http_client: HttpClient,
) -> Response:
    """Proxy an HTTP request to the instance backend."""
    try:
        encoded_id, subpath = split_proxy_path(encoded_proxy_path(request.scope))
    except InvalidPathError:
        PROXY_REQUESTS_TOTAL.labels(outcome="invalid_path").inc()
        raise

    instance = await registry.get(unquote(encoded_id))
    if instance is None:
        PROXY_REQUESTS_TOTAL.labels(outcome="not_found").inc()
        raise InstanceNotFoundError()
    if not instance.is_running or instance.port is None:
        PROXY_REQUESTS_TOTAL.labels(outcome="not_running").inc()
        raise InstanceNotRunningError()

    with log_context(component=Component.PROXY, instance_id=instance.id):
        return await _forward(request, instance, subpath, registry, clock, http_client)


async def _forward(
    request: Request,
    instance: Instance,
    subpath: str,
    registry: InstanceRegistry,
    clock: Clock,
    http_client: httpx.AsyncClient,
) -> Response:
    target_url = build_target_url(
        get_settings().runtime.backend_host, instance.port, subpath, request.url.query
    )

    start = time.monotonic()
    try:
        body = await request.body()
        # Built directly so the client's default headers are not merged in
        upstream_request = httpx.Request(
            request.method,
            target_url,
            headers=select_request_headers(request.headers),
            content=body or None,
            extensions={"timeout": upstream_timeout().as_dict()},
        )
        upstream_response = await http_client.send(upstream_request, stream=True)
        try:
            # aiter_raw keeps the upstream Content-Encoding intact
            content = b"".join([chunk async for chunk in upstream_response.aiter_raw()])
        finally:
            await upstream_response.aclose()
    except Exception as exc:
        PROXY_REQUESTS_TOTAL.labels(outcome="failed").inc()
        message = str(exc) or type(exc).__name__
        logger.warning(
            "Proxy request failed",
            extra={
                "event": LogEvent.PROXY_FAILED,
                "error_type": type(exc).__name__,
                "error": message,
            },
        )
        raise ProxyFailureError(message) from exc
    finally:
        PROXY_UPSTREAM_DURATION.observe(time.monotonic() - start)

    PROXY_REQUESTS_TOTAL.labels(outcome="forwarded").inc()
    try:
        await registry.touch(instance.id, clock.now())
    except Exception as exc:
        logger.warning("Failed to record activity", extra={"error": str(exc)})

    response = Response(content=content, status_code=upstream_response.status_code)
    for name, value in relayable_response_headers(upstream_response.headers):
        response.headers.append(name, value)
    # A HEAD body is empty; the length describes the GET representation
    upstream_length = upstream_response.headers.get("content-length")
    if request.method == "HEAD" and upstream_length is not None:
        response.headers["content-length"] = upstream_length
    return response
