"""Instance registry adapters."""

from instancehub.adapters.registry.memory import MemoryInstanceRegistry
from instancehub.adapters.registry.sql import SqlInstanceRegistry

__all__ = ["MemoryInstanceRegistry", "SqlInstanceRegistry"]
