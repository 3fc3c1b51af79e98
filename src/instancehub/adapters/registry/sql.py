"""Instance registry backed by SQLModel tables.

Every operation uses its own short-lived session so the registry can be
shared by request handlers and the reconcile loop.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import col

from instancehub.core.errors import NameTakenError
from instancehub.core.interfaces.registry import InstanceRegistry
from instancehub.core.models import Instance, InstanceStatus, utc_now
from instancehub.infra.postgresql import get_session_factory

logger = logging.getLogger(__name__)


class SqlInstanceRegistry(InstanceRegistry):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def _name_taken(self, session: AsyncSession, name: str, exclude_id: str) -> bool:
        result = await session.execute(
            select(Instance.id).where(col(Instance.name) == name, col(Instance.id) != exclude_id)
        )
        return result.first() is not None

    async def get(self, instance_id: str) -> Instance | None:
        async with self._sessions()() as session:
            return await session.get(Instance, instance_id)

    async def get_by_name(self, name: str) -> Instance | None:
        async with self._sessions()() as session:
            result = await session.execute(select(Instance).where(col(Instance.name) == name))
            return result.scalar_one_or_none()

    async def list(self, *, with_handle: bool = False) -> list[Instance]:
        stmt = select(Instance).order_by(col(Instance.created_at), col(Instance.id))
        if with_handle:
            stmt = stmt.where(col(Instance.runtime_handle).is_not(None))
        async with self._sessions()() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def used_ports(self) -> set[int]:
        async with self._sessions()() as session:
            result = await session.execute(
                select(Instance.port).where(col(Instance.port).is_not(None))
            )
            return set(result.scalars().all())

    async def create(self, instance: Instance) -> Instance:
        async with self._sessions()() as session:
            session.add(instance)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                if await self._name_taken(session, instance.name, instance.id):
                    raise NameTakenError() from None
                raise
            return instance

    async def update(
        self,
        instance_id: str,
        *,
        expected_status: InstanceStatus | None = None,
        **fields: Any,
    ) -> Instance | None:
        fields.setdefault("updated_at", utc_now())
        stmt = update(Instance).where(col(Instance.id) == instance_id)
        if expected_status is not None:
            stmt = stmt.where(col(Instance.status) == expected_status)
        stmt = stmt.values(**fields).execution_options(synchronize_session=False)

        async with self._sessions()() as session:
            try:
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    await session.rollback()
                    return None
                await session.commit()
            except IntegrityError:
                await session.rollback()
                name = fields.get("name")
                if name is not None and await self._name_taken(session, name, instance_id):
                    raise NameTakenError() from None
                raise
            return await session.get(Instance, instance_id, populate_existing=True)

    async def delete(self, instance_id: str) -> bool:
        async with self._sessions()() as session:
            result = await session.execute(
                delete(Instance).where(col(Instance.id) == instance_id)
            )
            await session.commit()
            return result.rowcount > 0

    async def touch(self, instance_id: str, at: datetime) -> None:
        async with self._sessions()() as session:
            await session.execute(
                update(Instance)
                .where(col(Instance.id) == instance_id)
                .values(last_activity=at)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
