"""Runtime driver variants."""

from instancehub.adapters.runtime.docker_api import DockerApiRuntimeDriver
from instancehub.adapters.runtime.docker_sdk import DockerSdkRuntimeDriver

__all__ = ["DockerApiRuntimeDriver", "DockerSdkRuntimeDriver"]
