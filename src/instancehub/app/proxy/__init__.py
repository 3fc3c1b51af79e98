"""Instance reverse proxy."""

from instancehub.app.proxy.router import router

__all__ = ["router"]
