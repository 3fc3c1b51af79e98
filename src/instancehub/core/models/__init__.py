"""Database models for instancehub.

Models are defined using SQLModel (SQLAlchemy + Pydantic).
"""

from instancehub.core.models.instance import (
    Instance,
    InstanceStatus,
    generate_ulid,
    utc_now,
)

__all__ = [
    "Instance",
    "InstanceStatus",
    "generate_ulid",
    "utc_now",
]
