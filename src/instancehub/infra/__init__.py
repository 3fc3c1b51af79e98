"""Infrastructure connections (DB, Docker Engine API)."""

from instancehub.infra.docker import ContainerAPI, DockerClient, ImageAPI, SystemAPI
from instancehub.infra.postgresql import (
    close_db,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
)

__all__ = [
    # DB
    "init_db",
    "close_db",
    "get_engine",
    "get_session",
    "get_session_factory",
    # Docker
    "DockerClient",
    "ContainerAPI",
    "ImageAPI",
    "SystemAPI",
]
