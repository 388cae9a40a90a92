"""
Key Store - Accessor over locally persisted shadow key records.

The reconciliation engine and lifecycle policy depend on the KeyStore protocol,
not on SQLAlchemy, so any keyed record store with filtered queries can back them.
"""

from typing import Protocol

from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from llmreq.db.models import KeyHistory
from llmreq.models.api import KeyStatus, KeyType


class KeyStore(Protocol):
    """Keyed record store for shadow key records."""

    async def list_for_user(self, user_id: str) -> list[KeyHistory]:
        """All records for the user, oldest first."""
        ...

    async def find_owned(self, user_id: str, remote_key_id: str) -> KeyHistory | None:
        """The current record for (user_id, remote_key_id), if the user owns one."""
        ...

    async def count(self, user_id: str, key_type: KeyType, status: KeyStatus) -> int:
        """Number of records for the user with the given type and status."""
        ...

    async def list_history(self, user_id: str) -> list[KeyHistory]:
        """Records that are no longer active, newest first."""
        ...

    async def add(self, record: KeyHistory) -> None:
        """Stage a new record."""
        ...

    async def commit(self) -> None:
        """Persist all staged changes."""
        ...

    async def rollback(self) -> None:
        """Discard all staged changes."""
        ...


class SQLAlchemyKeyStore:
    """KeyStore backed by an async SQLAlchemy session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_for_user(self, user_id: str) -> list[KeyHistory]:
        stmt = (
            select(KeyHistory)
            .where(KeyHistory.user_id == user_id)
            .order_by(KeyHistory.created_at, KeyHistory.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_owned(self, user_id: str, remote_key_id: str) -> KeyHistory | None:
        # Duplicates are legal; prefer the active record, then the newest
        stmt = (
            select(KeyHistory)
            .where(
                KeyHistory.user_id == user_id,
                KeyHistory.litellm_key_id == remote_key_id,
            )
            .order_by(
                case((KeyHistory.status == KeyStatus.ACTIVE.value, 0), else_=1),
                KeyHistory.created_at.desc(),
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def count(self, user_id: str, key_type: KeyType, status: KeyStatus) -> int:
        stmt = select(func.count(KeyHistory.id)).where(
            KeyHistory.user_id == user_id,
            KeyHistory.key_type == key_type.value,
            KeyHistory.status == status.value,
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def list_history(self, user_id: str) -> list[KeyHistory]:
        stmt = (
            select(KeyHistory)
            .where(
                KeyHistory.user_id == user_id,
                or_(
                    KeyHistory.status != KeyStatus.ACTIVE.value,
                    KeyHistory.revoked_at.is_not(None),
                ),
            )
            .order_by(KeyHistory.created_at.desc(), KeyHistory.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def add(self, record: KeyHistory) -> None:
        self.session.add(record)
        await self.session.flush()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
