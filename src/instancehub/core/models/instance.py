"""Instance model.

Plain record; all storage calls go through InstanceRegistry.
"""

from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import Column, DateTime, String, Text
from sqlmodel import Field, SQLModel
from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ULID())


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


class InstanceStatus(StrEnum):
    """Recorded instance status."""

    CREATING = "creating"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"
    NOT_CREATED = "not_created"
    DOCKER_UNAVAILABLE = "docker_unavailable"


class Instance(SQLModel, table=True):
    """One tenant backend and its control-plane metadata."""

    __tablename__ = "instances"

    id: str = Field(default_factory=generate_ulid, primary_key=True)
    name: str = Field(max_length=255, unique=True, index=True)
    runtime_handle: str | None = Field(default=None, max_length=128)
    # NULLs never collide, so only bound ports are unique
    port: int | None = Field(default=None, unique=True)
    status: InstanceStatus = Field(default=InstanceStatus.CREATING, sa_type=String)

    webhook_url: str | None = Field(default=None, sa_column=Column(Text))
    webhook_secret: str | None = Field(default=None, max_length=255)

    last_activity: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    @property
    def is_running(self) -> bool:
        return self.status == InstanceStatus.RUNNING

    @property
    def has_runtime(self) -> bool:
        return self.runtime_handle is not None

    def api_url(self, host: str) -> str | None:
        """Base URL of the instance backend, None until a port is bound."""
        if self.port is None:
            return None
        return f"http://{host}:{self.port}"
