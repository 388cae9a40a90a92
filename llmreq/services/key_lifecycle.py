"""
Key Lifecycle Policy - issuing and revoking keys under per-user limits.

Limits:
- max_active_keys: counted from LiteLLM's live listing, never from local state
- longterm_key_limit: counted from active long-term shadow records

Budgets only ever tighten: a caller may ask for less than the class ceiling,
never more.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import NoReturn

from structlog import get_logger

from llmreq.config import Settings
from llmreq.db.models import KeyHistory
from llmreq.exceptions import (
    InvalidKeyRequestError,
    KeyManagerError,
    KeyNotFoundError,
    LimitReachedError,
    RevocationFailedError,
    UpstreamDecodeError,
    UpstreamUnavailableError,
)
from llmreq.models.api import KeyStatus, KeyType
from llmreq.models.domain import (
    GeneratedKey,
    IssuedKey,
    KeyHistoryEntry,
    KeyIdentity,
    mask_secret,
    parse_expiry,
)
from llmreq.observability.metrics import metrics
from llmreq.services.key_store import KeyStore
from llmreq.services.litellm_client import LiteLLMClient
from llmreq.services.reconciliation import is_expired, resolve_expiry
from llmreq.services.user_locks import UserLockRegistry, user_locks

logger = get_logger(__name__)

MAX_KEY_NAME_LENGTH = 255


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def resolve_budget(ceiling: float, requested: float | None) -> float:
    """Use the requested budget only if it is positive and below the ceiling."""
    if requested is not None and 0 < requested < ceiling:
        return requested
    return ceiling


def parse_key_type(value: KeyType | str | None) -> KeyType:
    """Parse a requested key type; empty means standard."""
    if isinstance(value, KeyType):
        return value
    if not value:
        return KeyType.STANDARD
    try:
        return KeyType(value)
    except ValueError:
        raise InvalidKeyRequestError(
            f"type must be 'standard' or 'long-term', got {value!r}"
        ) from None


class KeyLifecyclePolicy:
    """Creates and deletes keys on behalf of a user."""

    def __init__(
        self,
        client: LiteLLMClient,
        store: KeyStore,
        settings: Settings,
        locks: UserLockRegistry | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.client = client
        self.store = store
        self.settings = settings
        self.locks = locks if locks is not None else user_locks
        self.clock = clock

    def budget_ceiling(self, key_type: KeyType) -> float:
        if key_type is KeyType.LONG_TERM:
            return self.settings.longterm_key_budget
        return self.settings.default_budget

    def lifetime(self, key_type: KeyType) -> str | None:
        if key_type is KeyType.LONG_TERM:
            return self.settings.longterm_key_lifetime
        return self.settings.standard_key_lifetime

    async def create_key(
        self,
        user_id: str,
        name: str,
        requested_budget: float | None = None,
        key_type: KeyType | str | None = KeyType.STANDARD,
    ) -> IssuedKey:
        """
        Issue a new key for the user.

        Args:
            user_id: Normalized owner identity
            name: User-chosen alias, also LiteLLM's key_alias
            requested_budget: Optional tighter budget than the type's ceiling
            key_type: "standard" or "long-term"

        Returns:
            IssuedKey with the plaintext secret (shown once!)

        Raises:
            InvalidKeyRequestError: bad name or type
            UpstreamUnavailableError: live key count unavailable
            LimitReachedError: a per-user ceiling is already reached
            IssuanceFailedError: LiteLLM refused to generate the key
        """
        parsed_type = parse_key_type(key_type)
        clean_name = name.strip() if name else ""
        if not clean_name:
            raise InvalidKeyRequestError("name is required")
        if len(clean_name) > MAX_KEY_NAME_LENGTH:
            raise InvalidKeyRequestError(f"name must be at most {MAX_KEY_NAME_LENGTH} characters")

        async with self.locks.hold(user_id):
            return await self._create_key(user_id, clean_name, requested_budget, parsed_type)

    async def _create_key(
        self,
        user_id: str,
        name: str,
        requested_budget: float | None,
        key_type: KeyType,
    ) -> IssuedKey:
        now = self.clock()

        # 1-2. Global ceiling, from the live listing only
        try:
            remote_keys = await self.client.list_keys(user_id)
        except UpstreamDecodeError as e:
            raise UpstreamUnavailableError("list_keys", detail=e.message) from e
        live_count = sum(
            1
            for remote in remote_keys
            if remote.owner_user_id == user_id and not is_expired(resolve_expiry(remote), now)
        )
        if live_count >= self.settings.max_active_keys:
            self._reject("max_active", user_id, self.settings.max_active_keys, live_count)

        # 3. Long-term sub-limit, from local records
        if key_type is KeyType.LONG_TERM:
            long_term_count = await self.store.count(user_id, KeyType.LONG_TERM, KeyStatus.ACTIVE)
            if long_term_count >= self.settings.longterm_key_limit:
                self._reject(
                    "long_term", user_id, self.settings.longterm_key_limit, long_term_count
                )

        # 4-5. Budget and lifetime for the class
        max_budget = resolve_budget(self.budget_ceiling(key_type), requested_budget)
        duration = self.lifetime(key_type)

        # 6. Issue
        generated = await self.client.generate_key(user_id, name, max_budget, duration)

        # 7. Best-effort identity capture
        identity = await self._capture_identity(user_id, name, generated)

        # 8. Shadow record
        expires_at = self._issued_expiry(generated)
        record = KeyHistory(
            user_id=user_id,
            litellm_key_id=identity.remote_key_id,
            key_name=name,
            key_mask=identity.mask,
            key_type=key_type.value,
            status=KeyStatus.ACTIVE.value,
            created_at=now,
            expires_at=expires_at,
        )
        await self.store.add(record)
        await self.store.commit()

        metrics.keys_issued_total.labels(
            key_type=key_type.value, identity_confirmed=str(identity.confirmed)
        ).inc()
        logger.info(
            "key_created",
            user_id=user_id,
            record_id=str(record.id),
            key_name=name,
            key_type=key_type.value,
            max_budget=max_budget,
            duration=duration,
            identity_confirmed=identity.confirmed,
        )

        return IssuedKey(
            secret=generated.secret,
            record_id=record.id,
            identity=identity,
            name=name,
            key_type=key_type,
            max_budget=max_budget,
            duration=duration,
            expires_at=expires_at,
            created_at=now,
        )

    def _reject(self, limit_kind: str, user_id: str, limit: int, current: int) -> NoReturn:
        metrics.key_limit_rejections_total.labels(limit_kind=limit_kind).inc()
        logger.info(
            "key_limit_reached",
            user_id=user_id,
            limit_kind=limit_kind,
            limit=limit,
            current=current,
        )
        raise LimitReachedError(limit_kind, limit, current)

    async def _capture_identity(
        self, user_id: str, name: str, generated: GeneratedKey
    ) -> KeyIdentity:
        """
        Read the new key's identifier back from LiteLLM.

        Falls back to a provisional mask of the secret when the listing fails or
        has no untracked entry with this alias yet; reconciliation repairs it later.
        """
        provisional_mask = mask_secret(generated.secret)
        provisional = KeyIdentity(
            remote_key_id=provisional_mask, mask=provisional_mask, confirmed=False
        )

        try:
            remote_keys = await self.client.list_keys(user_id)
        except KeyManagerError as e:
            logger.warning(
                "key_identity_capture_failed",
                user_id=user_id,
                key_name=name,
                error=str(e),
            )
            return provisional

        matches = [
            remote
            for remote in remote_keys
            if remote.alias == name and remote.owner_user_id in (None, user_id)
        ]
        if not matches:
            logger.info("key_identity_provisional", user_id=user_id, key_name=name)
            return provisional

        # Older keys may share the alias; only an untracked one can be the new key
        records = await self.store.list_for_user(user_id)
        tracked = {r.litellm_key_id for r in records if r.is_active}
        chosen = next((m for m in matches if m.remote_key_id not in tracked), None)
        if chosen is None:
            logger.info("key_identity_provisional", user_id=user_id, key_name=name)
            return provisional
        return KeyIdentity(remote_key_id=chosen.remote_key_id, mask=chosen.mask, confirmed=True)

    @staticmethod
    def _issued_expiry(generated: GeneratedKey) -> datetime | None:
        try:
            return parse_expiry(generated.expires_raw)
        except ValueError:
            return None

    async def delete_key(self, user_id: str, remote_key_id: str) -> None:
        """
        Revoke one of the user's keys.

        Ownership is checked against local records only. A LiteLLM failure is
        logged and does not stop the local revocation; the next reconciliation
        pass settles any leftover upstream state.

        Raises:
            KeyNotFoundError: the user has no record with this key id
        """
        async with self.locks.hold(user_id):
            record = await self.store.find_owned(user_id, remote_key_id)
            if record is None:
                logger.warning(
                    "key_delete_not_owned",
                    user_id=user_id,
                    key_id=mask_secret(remote_key_id),
                )
                raise KeyNotFoundError(user_id, remote_key_id)

            upstream_confirmed = True
            try:
                await self.client.delete_key(remote_key_id)
            except (RevocationFailedError, UpstreamUnavailableError) as e:
                upstream_confirmed = False
                metrics.record_error(type(e).__name__, "delete_key")
                logger.warning(
                    "key_delete_upstream_failed",
                    user_id=user_id,
                    record_id=str(record.id),
                    error=str(e),
                )

            record.status = KeyStatus.REVOKED.value
            record.revoked_at = self.clock()
            await self.store.commit()

        metrics.keys_revoked_total.labels(upstream_confirmed=str(upstream_confirmed)).inc()
        logger.info(
            "key_revoked",
            user_id=user_id,
            record_id=str(record.id),
            key_name=record.key_name,
            upstream_confirmed=upstream_confirmed,
        )

    async def key_history(self, user_id: str) -> list[KeyHistoryEntry]:
        """Keys that are no longer active, newest first. Local state only."""
        records = await self.store.list_history(user_id)
        return [
            KeyHistoryEntry(
                record_id=record.id,
                key_id=record.litellm_key_id,
                name=record.key_name,
                mask=record.key_mask,
                key_type=KeyType(record.key_type),
                status=KeyStatus(record.status),
                created_at=record.created_at,
                expires_at=record.expires_at,
                revoked_at=record.revoked_at,
            )
            for record in records
        ]
