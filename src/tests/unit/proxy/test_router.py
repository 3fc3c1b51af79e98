"""Unit tests for the instance proxy router."""

import httpx
import pytest

from instancehub.adapters.registry import MemoryInstanceRegistry
from instancehub.app.main import app
from instancehub.app.proxy.client import get_http_client
from instancehub.app.proxy.router import (
    build_target_url,
    encoded_proxy_path,
    split_proxy_path,
)
from instancehub.core.clock import Clock
from instancehub.core.errors import InvalidPathError
from instancehub.core.models import Instance, InstanceStatus

Upstream = tuple[httpx.MockTransport, list[httpx.Request]]


class TestPathParsing:
    def test_split(self):
        assert split_proxy_path("abc/messages/1") == ("abc", "messages/1")

    def test_trailing_slash_is_empty_subpath(self):
        assert split_proxy_path("abc/") == ("abc", "")

    @pytest.mark.parametrize("path", ["", "abc", "/messages"])
    def test_invalid(self, path: str):
        with pytest.raises(InvalidPathError):
            split_proxy_path(path)

    def test_target_url_keeps_query_verbatim(self):
        url = build_target_url("localhost", 3001, "messages", "limit=10&q=a%20b")
        assert url == "http://localhost:3001/messages?limit=10&q=a%20b"

    def test_target_url_without_query(self):
        assert build_target_url("localhost", 3001, "", "") == "http://localhost:3001/"

    @pytest.mark.parametrize(
        ("scope", "expected"),
        [
            ({"path": "/instance/abc/a?b/c", "raw_path": b"/instance/abc/a%3Fb%2Fc"}, "abc/a%3Fb%2Fc"),
            ({"path": "/instance/abc/x", "raw_path": b"/instance/abc/x?q=1"}, "abc/x"),
            ({"path": "/instance/abc/a b"}, "abc/a%20b"),
            ({"path": "/instance", "raw_path": b"/instance"}, ""),
        ],
    )
    def test_encoded_proxy_path(self, scope: dict, expected: str):
        assert encoded_proxy_path(scope) == expected


class TestForwarding:
    async def test_get_scenario(
        self,
        client: httpx.AsyncClient,
        upstream: Upstream,
        registry: MemoryInstanceRegistry,
        running_instance: Instance,
        clock: Clock,
    ):
        resp = await client.get(f"/instance/{running_instance.id}/messages?limit=10")

        assert resp.status_code == 200
        assert resp.content == b'{"messages":[]}'
        assert resp.headers["x-backend"] == "wa"

        _, seen = upstream
        assert len(seen) == 1
        assert seen[0].method == "GET"
        assert str(seen[0].url) == "http://localhost:3001/messages?limit=10"

        stored = await registry.get(running_instance.id)
        assert stored.last_activity == clock.now()

    async def test_header_allow_list(
        self, client: httpx.AsyncClient, upstream: Upstream, running_instance: Instance
    ):
        await client.get(
            f"/instance/{running_instance.id}/chats",
            headers={
                "Authorization": "Bearer t",
                "Accept": "application/json",
                "User-Agent": "tester/1",
                "X-Forwarded-For": "10.0.0.1",
                "Cookie": "session=1",
            },
        )

        _, seen = upstream
        forwarded = {
            k: v for k, v in seen[0].headers.items() if k not in ("host", "content-length")
        }
        assert forwarded == {
            "authorization": "Bearer t",
            "accept": "application/json",
            "user-agent": "tester/1",
        }

    async def test_post_body_forwarded_raw(
        self, client: httpx.AsyncClient, upstream: Upstream, running_instance: Instance
    ):
        body = b'{"phone":"62812","message":"hi"}'
        await client.post(
            f"/instance/{running_instance.id}/send/message",
            content=body,
            headers={"Content-Type": "application/json"},
        )

        _, seen = upstream
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/send/message"
        assert seen[0].content == body
        assert seen[0].headers["content-type"] == "application/json"

    async def test_upstream_error_status_relayed(
        self, client: httpx.AsyncClient, running_instance: Instance
    ):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"code": "UNAUTHORIZED"})

        failing = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        app.dependency_overrides[get_http_client] = lambda: failing
        try:
            resp = await client.get(f"/instance/{running_instance.id}/app/login")
        finally:
            await failing.aclose()

        assert resp.status_code == 401
        assert resp.json() == {"code": "UNAUTHORIZED"}

    async def test_encoded_subpath_not_decoded(
        self, client: httpx.AsyncClient, upstream: Upstream, running_instance: Instance
    ):
        resp = await client.get(f"/instance/{running_instance.id}/files/a%3Fb%2Fc?x=1")

        assert resp.status_code == 200
        _, seen = upstream
        assert seen[0].url.raw_path == b"/files/a%3Fb%2Fc?x=1"

    async def test_head_keeps_upstream_length(
        self, client: httpx.AsyncClient, running_instance: Instance
    ):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, headers={"content-type": "application/json", "content-length": "42"}
            )

        backend = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        app.dependency_overrides[get_http_client] = lambda: backend
        try:
            resp = await client.head(f"/instance/{running_instance.id}/messages")
        finally:
            await backend.aclose()

        assert resp.status_code == 200
        assert resp.headers["content-length"] == "42"
        assert resp.content == b""

    async def test_get_length_matches_body(
        self, client: httpx.AsyncClient, running_instance: Instance
    ):
        resp = await client.get(f"/instance/{running_instance.id}/messages")
        assert resp.headers["content-length"] == str(len(b'{"messages":[]}'))


class TestProxyErrors:
    @pytest.mark.parametrize("path", ["/instance", "/instance/", "/instance/abc"])
    async def test_invalid_path(self, client: httpx.AsyncClient, upstream: Upstream, path: str):
        resp = await client.get(path)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid API path"}
        assert upstream[1] == []

    async def test_unknown_instance(self, client: httpx.AsyncClient):
        resp = await client.get("/instance/01UNKNOWN/messages")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Instance not found"}
        assert resp.headers["x-error-code"] == "INSTANCE_NOT_FOUND"

    @pytest.mark.parametrize("status", ["stopped", "creating", "error", "docker_unavailable"])
    async def test_not_running(
        self,
        client: httpx.AsyncClient,
        upstream: Upstream,
        registry: MemoryInstanceRegistry,
        running_instance: Instance,
        status: str,
    ):
        await registry.update(running_instance.id, status=InstanceStatus(status))

        resp = await client.get(f"/instance/{running_instance.id}/messages")

        assert resp.status_code == 503
        assert resp.json() == {"error": "Instance is not running"}
        assert upstream[1] == []

    async def test_upstream_unreachable(
        self,
        client: httpx.AsyncClient,
        registry: MemoryInstanceRegistry,
        running_instance: Instance,
    ):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        failing = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
        app.dependency_overrides[get_http_client] = lambda: failing
        try:
            resp = await client.get(f"/instance/{running_instance.id}/messages")
        finally:
            await failing.aclose()

        assert resp.status_code == 500
        assert resp.json() == {"error": "Proxy request failed", "message": "Connection refused"}
        assert (await registry.get(running_instance.id)).last_activity is None

    async def test_upstream_timeout(self, client: httpx.AsyncClient, running_instance: Instance):
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        failing = httpx.AsyncClient(transport=httpx.MockTransport(slow))
        app.dependency_overrides[get_http_client] = lambda: failing
        try:
            resp = await client.get(f"/instance/{running_instance.id}/messages")
        finally:
            await failing.aclose()

        assert resp.status_code == 500
        assert resp.json()["error"] == "Proxy request failed"
