"""Unit tests for DockerSdkRuntimeDriver with a mocked docker-py client."""

from unittest.mock import MagicMock

import pytest
import requests
from docker.errors import APIError, ImageNotFound, NotFound

from instancehub.adapters.runtime import DockerSdkRuntimeDriver
from instancehub.core.errors import (
    CommandFailedError,
    RuntimeTimeoutError,
    RuntimeUnavailableError,
)
from instancehub.core.interfaces import RuntimeState


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def driver(client: MagicMock) -> DockerSdkRuntimeDriver:
    return DockerSdkRuntimeDriver(docker_host="unix:///tmp/docker.sock", client=client)


class TestDaemonHealthy:
    async def test_ping(self, driver: DockerSdkRuntimeDriver, client: MagicMock):
        client.ping.return_value = True
        assert await driver.daemon_healthy() is True

    async def test_connection_refused(self, driver: DockerSdkRuntimeDriver, client: MagicMock):
        client.ping.side_effect = requests.exceptions.ConnectionError("refused")
        assert await driver.daemon_healthy() is False


class TestImages:
    async def test_present(self, driver: DockerSdkRuntimeDriver, client: MagicMock):
        assert await driver.image_present("backend:1") is True
        client.images.get.assert_called_once_with("backend:1")

    async def test_absent(self, driver: DockerSdkRuntimeDriver, client: MagicMock):
        client.images.get.side_effect = ImageNotFound("no such image")
        assert await driver.image_present("backend:1") is False

    async def test_pull_failure(self, driver: DockerSdkRuntimeDriver, client: MagicMock):
        client.images.pull.side_effect = APIError("pull failed", explanation="manifest unknown")
        with pytest.raises(CommandFailedError) as exc_info:
            await driver.pull_image("backend:1")
        assert exc_info.value.detail == "manifest unknown"


class TestCreateAndStart:
    async def test_success(self, driver: DockerSdkRuntimeDriver, client: MagicMock):
        container = MagicMock(id="c1")
        client.containers.create.return_value = container

        handle = await driver.create_and_start(
            "backend:1", "instancehub-x", 3001, 3000, {"WEBHOOK": "http://h"}
        )

        assert handle == "c1"
        kwargs = client.containers.create.call_args.kwargs
        assert kwargs["ports"] == {"3000/tcp": 3001}
        assert kwargs["environment"] == {"WEBHOOK": "http://h"}
        assert kwargs["name"] == "instancehub-x"
        container.start.assert_called_once()

    async def test_start_failure_removes_container(
        self, driver: DockerSdkRuntimeDriver, client: MagicMock
    ):
        container = MagicMock(id="c1")
        container.start.side_effect = APIError(
            "start failed", explanation="port is already allocated"
        )
        client.containers.create.return_value = container

        with pytest.raises(CommandFailedError) as exc_info:
            await driver.create_and_start("backend:1", "instancehub-x", 3001, 3000, {})

        assert exc_info.value.detail == "port is already allocated"
        container.remove.assert_called_once_with(force=True)


class TestContainerOps:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            ("running", RuntimeState.RUNNING),
            ("exited", RuntimeState.EXITED),
            ("created", RuntimeState.CREATED),
            ("paused", RuntimeState.UNKNOWN),
        ],
    )
    async def test_inspect_state(
        self,
        driver: DockerSdkRuntimeDriver,
        client: MagicMock,
        status: str,
        expected: RuntimeState,
    ):
        client.containers.get.return_value = MagicMock(status=status)
        assert await driver.inspect_state("c1") is expected

    async def test_inspect_missing(self, driver: DockerSdkRuntimeDriver, client: MagicMock):
        client.containers.get.side_effect = NotFound("no such container")
        assert await driver.inspect_state("c1") is RuntimeState.MISSING

    async def test_stop_uses_grace_period(self, driver: DockerSdkRuntimeDriver, client: MagicMock):
        container = MagicMock()
        client.containers.get.return_value = container
        await driver.stop("c1")
        container.stop.assert_called_once_with(timeout=10)

    async def test_remove_missing_is_ok(self, driver: DockerSdkRuntimeDriver, client: MagicMock):
        client.containers.get.side_effect = NotFound("no such container")
        await driver.remove("c1")

    async def test_remove_forces(self, driver: DockerSdkRuntimeDriver, client: MagicMock):
        container = MagicMock()
        client.containers.get.return_value = container
        await driver.remove("c1")
        container.remove.assert_called_once_with(force=True)


class TestErrorTranslation:
    async def test_timeout(self, driver: DockerSdkRuntimeDriver, client: MagicMock):
        client.containers.get.side_effect = requests.exceptions.ReadTimeout("slow")
        with pytest.raises(RuntimeTimeoutError):
            await driver.start("c1")

    async def test_unreachable(self, driver: DockerSdkRuntimeDriver, client: MagicMock):
        client.containers.get.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(RuntimeUnavailableError):
            await driver.start("c1")

    async def test_missing_container_on_start(
        self, driver: DockerSdkRuntimeDriver, client: MagicMock
    ):
        client.containers.get.side_effect = NotFound("No such container: c1")
        with pytest.raises(CommandFailedError):
            await driver.start("c1")


def test_describe(driver: DockerSdkRuntimeDriver):
    assert driver.describe() == {"driver": "docker-sdk", "endpoint": "unix:///tmp/docker.sock"}
