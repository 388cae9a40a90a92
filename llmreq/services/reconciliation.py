"""
Reconciliation Engine - merges LiteLLM's authoritative key list into the shadow store.

LiteLLM is the only authority on which keys exist, but the identifier it reports
for a key is not stable across calls. Each pass correlates upstream entries with
local records in two steps:

1. exact match on the stored litellm_key_id
2. alias match on key_name for entries whose identifier drifted

Every entry left over gets a fresh record. Local records that were active but
did not appear in the listing are revoked. After a pass, a record is active
if and only if its key was listed upstream and has not expired.
"""

from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime
from uuid import UUID

from structlog import get_logger

from llmreq.db.models import KeyHistory
from llmreq.exceptions import KeyManagerError
from llmreq.models.api import KeyStatus, KeyType
from llmreq.models.domain import (
    ReconciliationReport,
    RemoteKey,
    VisibleKey,
    mask_secret,
    parse_expiry,
)
from llmreq.observability.metrics import metrics
from llmreq.services.key_store import KeyStore
from llmreq.services.litellm_client import LiteLLMClient
from llmreq.services.user_locks import UserLockRegistry, user_locks

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def resolve_expiry(remote: RemoteKey) -> datetime | None:
    """
    Resolve a listed key's expiry.

    An unparseable value is logged and treated as "no expiry": the key is still
    listed, so LiteLLM considers it valid.
    """
    try:
        return parse_expiry(remote.expires_raw)
    except ValueError:
        logger.warning(
            "key_expiry_unparseable",
            key_id=mask_secret(remote.remote_key_id),
            expires=remote.expires_raw,
        )
        return None


def is_expired(expires_at: datetime | None, now: datetime) -> bool:
    return expires_at is not None and expires_at < now


def _index_by_remote_id(records: list[KeyHistory]) -> dict[str, KeyHistory]:
    """
    Index records by litellm_key_id.

    Several records may carry the same identifier (history is never deleted).
    The active one wins, then the most recently created.
    """
    index: dict[str, KeyHistory] = {}
    for record in records:
        current = index.get(record.litellm_key_id)
        if current is None or _preference(record) > _preference(current):
            index[record.litellm_key_id] = record
    return index


def _preference(record: KeyHistory) -> tuple[bool, datetime]:
    return (record.is_active, record.created_at)


def _alias_scan_order(records: list[KeyHistory]) -> list[KeyHistory]:
    """Candidates for drift repair: active first, then newest first, then by id."""
    return sorted(
        records,
        key=lambda r: (not r.is_active, -r.created_at.timestamp(), str(r.id)),
    )


class ReconciliationEngine:
    """
    Reconciles a user's shadow key records against LiteLLM.

    Usage:
        engine = ReconciliationEngine(client, SQLAlchemyKeyStore(session))
        visible = await engine.reconcile("alice@example.com")
    """

    def __init__(
        self,
        client: LiteLLMClient,
        store: KeyStore,
        locks: UserLockRegistry | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.client = client
        self.store = store
        self.locks = locks if locks is not None else user_locks
        self.clock = clock

    async def reconcile(self, user_id: str) -> list[VisibleKey]:
        """
        Run one reconciliation pass and return the user's active keys.

        Raises:
            UpstreamUnavailableError: the key list could not be fetched; nothing
                was changed locally
            UpstreamDecodeError: the key list could not be decoded
        """
        async with self.locks.hold(user_id):
            try:
                visible, report = await self._reconcile(user_id)
            except KeyManagerError as e:
                metrics.reconciliations_total.labels(outcome="upstream_error").inc()
                metrics.record_error(type(e).__name__, "reconcile")
                raise
            except Exception:
                metrics.reconciliations_total.labels(outcome="store_error").inc()
                await self.store.rollback()
                raise

        metrics.reconciliations_total.labels(outcome="success").inc()
        metrics.record_transition("created", report.created)
        metrics.record_transition("drift_repaired", report.drift_repaired)
        metrics.record_transition("reactivated", report.reactivated)
        metrics.record_transition("expired", report.expired)
        metrics.record_transition("revoked", report.revoked)

        logger.info(
            "keys_reconciled",
            user_id=user_id,
            visible=len(visible),
            created=report.created,
            drift_repaired=report.drift_repaired,
            reactivated=report.reactivated,
            expired=report.expired,
            revoked=report.revoked,
            ignored_foreign=report.ignored_foreign,
        )
        return visible

    async def _reconcile(self, user_id: str) -> tuple[list[VisibleKey], ReconciliationReport]:
        records = await self.store.list_for_user(user_id)

        # Authoritative list first: no local mutation without it
        remote_keys = await self.client.list_keys(user_id)

        now = self.clock()
        counts: Counter[str] = Counter()
        owned = self._owned_entries(user_id, remote_keys, counts)

        seen: set[UUID] = set()
        resolved = await self._resolve_identities(user_id, owned, records, seen, now, counts)

        visible: list[VisibleKey] = []
        for remote, record, is_new in resolved:
            view = self._apply_status(remote, record, is_new, now, counts)
            if view is not None:
                visible.append(view)

        for record in records:
            if record.id not in seen and record.is_active:
                record.status = KeyStatus.REVOKED.value
                record.revoked_at = now
                counts["revoked"] += 1
                logger.info(
                    "key_revoked_absent_upstream",
                    user_id=user_id,
                    record_id=str(record.id),
                    key_name=record.key_name,
                )

        await self.store.commit()

        report = ReconciliationReport(
            created=counts["created"],
            drift_repaired=counts["drift_repaired"],
            reactivated=counts["reactivated"],
            expired=counts["expired"],
            revoked=counts["revoked"],
            ignored_foreign=counts["ignored_foreign"],
        )
        return visible, report

    @staticmethod
    def _owned_entries(
        user_id: str, remote_keys: list[RemoteKey], counts: Counter[str]
    ) -> list[RemoteKey]:
        """Re-filter by owner and drop repeated identifiers."""
        owned: list[RemoteKey] = []
        listed_ids: set[str] = set()
        for remote in remote_keys:
            if remote.owner_user_id != user_id:
                counts["ignored_foreign"] += 1
                continue
            if not remote.remote_key_id or remote.remote_key_id in listed_ids:
                logger.warning(
                    "key_list_entry_skipped",
                    user_id=user_id,
                    alias=remote.alias,
                    reason="duplicate" if remote.remote_key_id else "missing_id",
                )
                continue
            listed_ids.add(remote.remote_key_id)
            owned.append(remote)
        return owned

    async def _resolve_identities(
        self,
        user_id: str,
        owned: list[RemoteKey],
        records: list[KeyHistory],
        seen: set[UUID],
        now: datetime,
        counts: Counter[str],
    ) -> list[tuple[RemoteKey, KeyHistory, bool]]:
        """
        Pair every listed key with exactly one local record.

        Exact identifier matches are claimed before any alias scan runs, so a
        key whose identifier is known locally can never be taken by drift
        repair on behalf of another listed key.
        """
        index = _index_by_remote_id(records)
        matches: list[KeyHistory | None] = []

        for remote in owned:
            record = index.get(remote.remote_key_id)
            if record is not None and record.id not in seen:
                seen.add(record.id)
                matches.append(record)
            else:
                matches.append(None)

        candidates = _alias_scan_order(records)
        resolved: list[tuple[RemoteKey, KeyHistory, bool]] = []

        for remote, record in zip(owned, matches):
            if record is not None:
                resolved.append((remote, record, False))
                continue

            drifted = self._find_by_alias(remote, candidates, seen)
            if drifted is not None:
                logger.info(
                    "key_identity_drift_repaired",
                    user_id=user_id,
                    record_id=str(drifted.id),
                    key_name=drifted.key_name,
                    old_key_id=mask_secret(drifted.litellm_key_id),
                    new_key_id=mask_secret(remote.remote_key_id),
                )
                drifted.litellm_key_id = remote.remote_key_id
                seen.add(drifted.id)
                counts["drift_repaired"] += 1
                resolved.append((remote, drifted, False))
                continue

            created = KeyHistory(
                user_id=user_id,
                litellm_key_id=remote.remote_key_id,
                key_name=remote.alias,
                key_mask=remote.mask,
                key_type=KeyType.STANDARD.value,
                status=KeyStatus.ACTIVE.value,
                created_at=now,
            )
            await self.store.add(created)
            counts["created"] += 1
            logger.info(
                "key_discovered_upstream",
                user_id=user_id,
                record_id=str(created.id),
                key_name=created.key_name,
            )
            resolved.append((remote, created, True))

        return resolved

    @staticmethod
    def _find_by_alias(
        remote: RemoteKey, candidates: list[KeyHistory], seen: set[UUID]
    ) -> KeyHistory | None:
        if not remote.alias:
            return None
        for record in candidates:
            if (
                record.id not in seen
                and record.key_name == remote.alias
                and record.litellm_key_id != remote.remote_key_id
            ):
                return record
        return None

    @staticmethod
    def _apply_status(
        remote: RemoteKey,
        record: KeyHistory,
        is_new: bool,
        now: datetime,
        counts: Counter[str],
    ) -> VisibleKey | None:
        """Apply expiry/active transition; return the visible view for active keys."""
        expires_at = resolve_expiry(remote)
        record.expires_at = expires_at

        if is_expired(expires_at, now):
            if record.status != KeyStatus.EXPIRED.value:
                record.status = KeyStatus.EXPIRED.value
                counts["expired"] += 1
            return None

        if record.status != KeyStatus.ACTIVE.value and not is_new:
            counts["reactivated"] += 1
        record.status = KeyStatus.ACTIVE.value
        record.revoked_at = None

        return VisibleKey(
            key_id=record.litellm_key_id,
            name=record.key_name,
            mask=record.key_mask,
            key_type=KeyType(record.key_type),
            created_at=record.created_at,
            spend=remote.spend,
            expires_at=expires_at,
        )
