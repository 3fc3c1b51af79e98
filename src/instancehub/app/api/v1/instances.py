"""Instance management API endpoints."""

from datetime import datetime

from fastapi import APIRouter
from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from instancehub.app.api.v1.dependencies import ExistingInstance, Lifecycle, Registry
from instancehub.app.config import get_settings
from instancehub.core.errors import (
    DaemonUnavailableError,
    InstanceHubError,
    InstanceNotFoundError,
    InternalError,
    InvalidStateError,
    OperationFailedError,
    ValidationFailedError,
)
from instancehub.core.models import Instance
from instancehub.services import InstanceSpec

router = APIRouter(prefix="/instances", tags=["instances"])


# =============================================================================
# Request/Response Models
# =============================================================================


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateInstanceRequest(CamelModel):
    """Create instance request."""

    name: str = Field(min_length=1, max_length=255)
    webhook_url: AnyHttpUrl | None = None
    webhook_secret: str | None = Field(default=None, max_length=255)


class UpdateInstanceRequest(CamelModel):
    """Partial update; only fields present in the body are applied."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    webhook_url: AnyHttpUrl | None = None


class InstanceResponse(CamelModel):
    """Instance response. The webhook secret is never returned."""

    id: str
    name: str
    runtime_handle: str | None
    port: int | None
    status: str
    webhook_url: str | None
    api_url: str | None
    last_activity: datetime | None
    created_at: datetime
    updated_at: datetime


class InstanceStatusResponse(CamelModel):
    instance_status: str
    runtime_status: str
    healthy: bool
    api_url: str | None
    last_activity: datetime | None


class MessageResponse(BaseModel):
    message: str


def _to_response(instance: Instance) -> InstanceResponse:
    return InstanceResponse(
        id=instance.id,
        name=instance.name,
        runtime_handle=instance.runtime_handle,
        port=instance.port,
        status=str(instance.status),
        webhook_url=instance.webhook_url,
        api_url=instance.api_url(get_settings().runtime.backend_host),
        last_activity=instance.last_activity,
        created_at=instance.created_at,
        updated_at=instance.updated_at,
    )


def _url_or_none(url: AnyHttpUrl | None) -> str | None:
    return str(url) if url is not None else None


# =============================================================================
# Endpoints
# =============================================================================


@router.get("", response_model=list[InstanceResponse])
async def list_instances(registry: Registry) -> list[InstanceResponse]:
    """List all instances."""
    return [_to_response(i) for i in await registry.list()]


@router.post("", response_model=InstanceResponse, status_code=201)
async def create_instance(
    request: CreateInstanceRequest, lifecycle: Lifecycle
) -> InstanceResponse:
    """Create an instance and bring its backend up.

    A failure after the record is written leaves it in creating and
    returns the cause's status (503 when the runtime is unavailable).
    """
    spec = InstanceSpec(
        name=request.name,
        webhook_url=_url_or_none(request.webhook_url),
        webhook_secret=request.webhook_secret,
    )
    try:
        instance = await lifecycle.create_instance(spec)
    except ValidationFailedError:
        raise
    except Exception as exc:
        raise OperationFailedError("create", exc) from exc
    return _to_response(instance)


@router.get("/{instance_id}", response_model=InstanceResponse)
async def get_instance(instance: ExistingInstance) -> InstanceResponse:
    return _to_response(instance)


@router.put("/{instance_id}", response_model=InstanceResponse)
async def update_instance(
    request: UpdateInstanceRequest, instance: ExistingInstance, registry: Registry
) -> InstanceResponse:
    """Update name and/or webhook URL.

    The new webhook URL reaches the backend only when its container is
    next created.
    """
    fields = request.model_dump(exclude_unset=True)
    if "webhook_url" in fields:
        fields["webhook_url"] = _url_or_none(request.webhook_url)
    if fields.get("name") is None:
        fields.pop("name", None)
    if not fields:
        return _to_response(instance)

    updated = await registry.update(instance.id, **fields)
    if updated is None:
        raise InstanceNotFoundError()
    return _to_response(updated)


@router.delete("/{instance_id}", response_model=MessageResponse)
async def delete_instance(
    instance: ExistingInstance, lifecycle: Lifecycle, registry: Registry
) -> MessageResponse:
    """Remove the backend container, then the record.

    If the container cannot be removed the record is kept so the delete
    can be retried.
    """
    if instance.has_runtime:
        result = await lifecycle.remove(instance)
        if not result:
            raise OperationFailedError("delete", result.error or InternalError())
    await registry.delete(instance.id)
    return MessageResponse(message="Instance deleted successfully")


@router.post("/{instance_id}/start", response_model=MessageResponse)
async def start_instance(instance: ExistingInstance, lifecycle: Lifecycle) -> MessageResponse:
    if not instance.has_runtime:
        raise InvalidStateError("Instance has no container to start")
    result = await lifecycle.start(instance)
    if not result:
        cause: InstanceHubError = result.error or DaemonUnavailableError()
        raise OperationFailedError("start", cause)
    return MessageResponse(message="Instance started successfully")


@router.post("/{instance_id}/stop", response_model=MessageResponse)
async def stop_instance(instance: ExistingInstance, lifecycle: Lifecycle) -> MessageResponse:
    if not instance.has_runtime:
        raise InvalidStateError("Instance has no container to stop")
    result = await lifecycle.stop(instance)
    if not result:
        raise OperationFailedError("stop", result.error or InternalError())
    return MessageResponse(message="Instance stopped successfully")


@router.get(
    "/{instance_id}/status",
    response_model=InstanceStatusResponse,
)
async def instance_status(
    instance: ExistingInstance, lifecycle: Lifecycle
) -> InstanceStatusResponse:
    """Recorded status next to the live runtime view."""
    runtime_status = await lifecycle.runtime_status(instance)
    healthy = runtime_status == "running" and await lifecycle.is_healthy(instance)
    return InstanceStatusResponse(
        instance_status=str(instance.status),
        runtime_status=runtime_status,
        healthy=healthy,
        api_url=instance.api_url(get_settings().runtime.backend_host),
        last_activity=instance.last_activity,
    )
