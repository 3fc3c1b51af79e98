"""instancehub - control plane for per-tenant backend containers."""

__version__ = "0.3.0"
