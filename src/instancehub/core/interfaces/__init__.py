"""Core interfaces for the control plane."""

from instancehub.core.interfaces.registry import InstanceRegistry
from instancehub.core.interfaces.runtime import RuntimeDriver, RuntimeState

__all__ = [
    "InstanceRegistry",
    "RuntimeDriver",
    "RuntimeState",
]
