"""In-process instance registry.

Single-process deployments and tests. Records are stored as plain dicts
and copied on every read so callers never share mutable state.
"""

import asyncio
from datetime import datetime
from typing import Any

from instancehub.core.errors import NameTakenError
from instancehub.core.interfaces.registry import InstanceRegistry
from instancehub.core.models import Instance, InstanceStatus, utc_now


class MemoryInstanceRegistry(InstanceRegistry):
    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _load(row: dict[str, Any]) -> Instance:
        return Instance.model_validate(row)

    def _conflicts(self, instance_id: str, field: str, value: Any) -> bool:
        return value is not None and any(
            row[field] == value for key, row in self._rows.items() if key != instance_id
        )

    async def get(self, instance_id: str) -> Instance | None:
        row = self._rows.get(instance_id)
        return self._load(row) if row else None

    async def get_by_name(self, name: str) -> Instance | None:
        for row in self._rows.values():
            if row["name"] == name:
                return self._load(row)
        return None

    async def list(self, *, with_handle: bool = False) -> list[Instance]:
        rows = sorted(self._rows.values(), key=lambda r: (r["created_at"], r["id"]))
        if with_handle:
            rows = [r for r in rows if r["runtime_handle"] is not None]
        return [self._load(r) for r in rows]

    async def used_ports(self) -> set[int]:
        return {r["port"] for r in self._rows.values() if r["port"] is not None}

    async def create(self, instance: Instance) -> Instance:
        async with self._lock:
            if instance.id in self._rows:
                raise ValueError(f"Instance {instance.id} already exists")
            if self._conflicts(instance.id, "name", instance.name):
                raise NameTakenError()
            if self._conflicts(instance.id, "port", instance.port):
                raise ValueError(f"Port {instance.port} already bound")
            self._rows[instance.id] = instance.model_dump()
            return self._load(self._rows[instance.id])

    async def update(
        self,
        instance_id: str,
        *,
        expected_status: InstanceStatus | None = None,
        **fields: Any,
    ) -> Instance | None:
        async with self._lock:
            row = self._rows.get(instance_id)
            if row is None:
                return None
            if expected_status is not None and row["status"] != expected_status:
                return None
            if self._conflicts(instance_id, "name", fields.get("name")):
                raise NameTakenError()
            if self._conflicts(instance_id, "port", fields.get("port")):
                raise ValueError(f"Port {fields['port']} already bound")
            row.update({"updated_at": utc_now(), **fields})
            return self._load(row)

    async def delete(self, instance_id: str) -> bool:
        async with self._lock:
            return self._rows.pop(instance_id, None) is not None

    async def touch(self, instance_id: str, at: datetime) -> None:
        async with self._lock:
            if instance_id in self._rows:
                self._rows[instance_id]["last_activity"] = at
