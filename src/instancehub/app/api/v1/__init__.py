"""API v1 module."""

from instancehub.app.api.v1.instances import router as instances_router
from instancehub.app.api.v1.runtime import router as runtime_router

__all__ = ["instances_router", "runtime_router"]
