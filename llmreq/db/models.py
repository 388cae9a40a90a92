"""
Database Models - SQLAlchemy ORM models with strict typing.

All columns use Mapped[] type annotations. Column types are portable between
SQLite (default deployment) and PostgreSQL.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Index, String, TypeDecorator, Uuid
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from llmreq.models.api import KeyStatus, KeyType


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware DateTime; SQLite drops tzinfo on the way back."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


class KeyHistory(Base):
    """
    ORM model for key_history table.

    Local shadow record of one LiteLLM key. Rows are never deleted; revocation
    and expiry are status transitions. litellm_key_id is whatever identifier
    LiteLLM reported last and may change between listings, so it is not unique.
    """

    __tablename__ = "key_history"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)

    # Ownership
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Upstream identity (unstable) and local correlation key
    litellm_key_id: Mapped[str] = mapped_column(String(255), nullable=False)
    key_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    key_mask: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    key_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=KeyType.STANDARD.value
    )

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=KeyStatus.ACTIVE.value
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("idx_key_history_user_id", "user_id"),
        Index("idx_key_history_user_key", "user_id", "litellm_key_id"),
        Index("idx_key_history_user_type_status", "user_id", "key_type", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == KeyStatus.ACTIVE.value

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<KeyHistory(id={self.id}, user_id={self.user_id}, "
            f"litellm_key_id={self.litellm_key_id}, name={self.key_name}, "
            f"status={self.status})>"
        )
