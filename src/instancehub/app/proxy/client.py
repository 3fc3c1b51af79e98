"""HTTP client management for the instance proxy.

Provides the shared httpx AsyncClient and header filtering.
Configuration via ProxyConfig (PROXY_ env prefix).
"""

from collections.abc import Mapping

import httpx

from instancehub.app.config import get_settings

# Inbound headers forwarded upstream; everything else is dropped
FORWARDED_REQUEST_HEADERS = ("content-type", "authorization", "accept", "user-agent")

# Per-hop framing headers (RFC 7230) not relayed back to the caller.
# content-length is recomputed for the buffered body (kept on HEAD by the router).
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "content-length",
    }
)

# Shared httpx client for connection pooling
_http_client: httpx.AsyncClient | None = None


def upstream_timeout() -> httpx.Timeout:
    proxy_config = get_settings().proxy
    return httpx.Timeout(
        timeout=proxy_config.timeout_total,
        connect=proxy_config.timeout_connect,
        pool=proxy_config.timeout_pool,
    )


async def get_http_client() -> httpx.AsyncClient:
    """Get or create shared httpx AsyncClient."""
    global _http_client
    if _http_client is None:
        proxy_config = get_settings().proxy
        _http_client = httpx.AsyncClient(
            timeout=upstream_timeout(),
            limits=httpx.Limits(
                max_connections=proxy_config.max_connections,
                max_keepalive_connections=proxy_config.max_keepalive,
                keepalive_expiry=proxy_config.keepalive_expiry,
            ),
            follow_redirects=False,
        )
    return _http_client


async def close_http_client() -> None:
    """Close shared httpx client. Call on application shutdown."""
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


def select_request_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Keep only the allow-listed inbound headers."""
    lowered = {k.lower(): v for k, v in headers.items()}
    return {name: lowered[name] for name in FORWARDED_REQUEST_HEADERS if name in lowered}


def relayable_response_headers(headers: httpx.Headers) -> list[tuple[str, str]]:
    """Upstream response headers minus hop-by-hop ones, repeats preserved."""
    return [(k, v) for k, v in headers.multi_items() if k.lower() not in HOP_BY_HOP_HEADERS]
