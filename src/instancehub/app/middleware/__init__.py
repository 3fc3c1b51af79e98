"""HTTP middleware."""

from instancehub.app.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
