"""
Domain Models - Internal business logic models using dataclasses.

All data structures crossing service boundaries are immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from llmreq.models.api import KeyStatus, KeyType

NO_EXPIRY_SENTINELS = frozenset({"", "null", "none"})


def parse_expiry(raw: str | None) -> datetime | None:
    """
    Parse a LiteLLM "expires" value as an RFC 3339 timestamp.

    Returns None for "no expiry" (absent, empty, or the literal "null").
    Naive timestamps are taken as UTC.

    Raises:
        ValueError: if the value is present but not a timestamp
    """
    if raw is None or raw.strip().lower() in NO_EXPIRY_SENTINELS:
        return None
    parsed = datetime.fromisoformat(raw.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def mask_secret(secret: str) -> str:
    """Display-safe form of a secret: first 4 and last 4 characters."""
    if len(secret) > 8:
        return f"{secret[:4]}...{secret[-4:]}"
    return secret


@dataclass(frozen=True)
class RemoteUser:
    """User record as reported by LiteLLM."""

    user_id: str
    user_email: str | None
    max_budget: float | None
    spend: float


@dataclass(frozen=True)
class RemoteKey:
    """A key as currently listed by LiteLLM. Never persisted."""

    remote_key_id: str
    mask: str
    alias: str
    owner_user_id: str | None
    spend: float
    expires_raw: str | None


@dataclass(frozen=True)
class GeneratedKey:
    """Result of POST /key/generate."""

    secret: str
    expires_raw: str | None


@dataclass(frozen=True)
class KeyIdentity:
    """
    Identifier captured for a freshly issued key.

    confirmed=True means the ID was read back from LiteLLM's listing.
    confirmed=False means it is a mask derived from the secret and will be
    corrected by the next reconciliation pass through alias matching.
    """

    remote_key_id: str
    mask: str
    confirmed: bool


@dataclass(frozen=True)
class VisibleKey:
    """Externally visible view of an active key (local metadata + live upstream fields)."""

    key_id: str
    name: str
    mask: str
    key_type: KeyType
    created_at: datetime
    spend: float
    expires_at: datetime | None


@dataclass(frozen=True)
class IssuedKey:
    """A newly issued key. The secret is shown once and never stored."""

    secret: str
    record_id: UUID
    identity: KeyIdentity
    name: str
    key_type: KeyType
    max_budget: float
    duration: str | None
    expires_at: datetime | None
    created_at: datetime


@dataclass(frozen=True)
class KeyHistoryEntry:
    """A key that is no longer active."""

    record_id: UUID
    key_id: str
    name: str
    mask: str
    key_type: KeyType
    status: KeyStatus
    created_at: datetime
    expires_at: datetime | None
    revoked_at: datetime | None


@dataclass(frozen=True)
class ReconciliationReport:
    """Counts of transitions applied by one reconciliation pass."""

    created: int = 0
    drift_repaired: int = 0
    reactivated: int = 0
    expired: int = 0
    revoked: int = 0
    ignored_foreign: int = 0
