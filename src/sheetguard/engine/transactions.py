"""Transaction (idempotency key) bookkeeping."""

import asyncio
import hashlib
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Optional

from ..config import settings
from ..errors import ReplayFailedError, TransactionConflictError, TransactionExpiredError
from .models import MutationReport, SafetyOptions, Transaction, TransactionState

if TYPE_CHECKING:
    from ..storage import RegistryStore

logger = logging.getLogger(__name__)


def _hash_json(payload: Any) -> str:
    text = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def request_fingerprint(action_description: dict[str, Any], options: SafetyOptions) -> str:
    """Hash of the action and its options, excluding the transaction id itself."""
    return _hash_json(
        {
            "action": action_description,
            "options": options.model_dump(mode="json", exclude={"transaction_id"}),
        }
    )


def result_hash(report: MutationReport) -> str:
    return _hash_json(report.model_dump(mode="json"))


class AdmitResult(str, Enum):
    FRESH = "fresh"
    REPLAY = "replay"


@dataclass
class Admission:
    result: AdmitResult
    report: Optional[MutationReport] = None


class TransactionRegistry:
    """Process-wide transaction entries with a lock per transaction id.

    Entries can be written through to a RegistryStore so idempotency survives
    a restart when that durability is configured.
    """

    def __init__(self, persistence: Optional["RegistryStore"] = None):
        self._entries: dict[str, Transaction] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._locks_guard = asyncio.Lock()
        self.persistence = persistence

    async def lock_for(self, transaction_id: str) -> asyncio.Lock:
        """The id's lock, counted as in use until release_lock() is called."""
        async with self._locks_guard:
            lock = self._locks.get(transaction_id)
            if lock is None:
                lock = self._locks[transaction_id] = asyncio.Lock()
            self._lock_users[transaction_id] = self._lock_users.get(transaction_id, 0) + 1
            return lock

    def release_lock(self, transaction_id: str) -> None:
        """Drop the id's lock once nobody holds or waits on it."""
        users = self._lock_users.get(transaction_id, 0) - 1
        if users > 0:
            self._lock_users[transaction_id] = users
            return
        self._lock_users.pop(transaction_id, None)
        self._locks.pop(transaction_id, None)

    def lock_count(self) -> int:
        return len(self._locks)

    async def get(self, transaction_id: str) -> Optional[Transaction]:
        entry = self._entries.get(transaction_id)
        if entry is None and self.persistence:
            entry = await self.persistence.get_transaction(transaction_id)
            if entry is not None:
                self._entries[transaction_id] = entry
        return entry

    async def put(self, entry: Transaction) -> None:
        self._entries[entry.transaction_id] = entry
        if self.persistence:
            await self.persistence.save_transaction(entry)

    async def remove(self, transaction_id: str) -> bool:
        removed = self._entries.pop(transaction_id, None) is not None
        if self.persistence:
            removed = await self.persistence.delete_transaction(transaction_id) or removed
        return removed

    async def purge_expired(self, now: datetime) -> int:
        expired = [tid for tid, entry in self._entries.items() if entry.expires_at <= now]
        for tid in expired:
            del self._entries[tid]
        purged = len(expired)
        if self.persistence:
            purged = max(purged, await self.persistence.purge_expired_transactions(now))
        return purged

    async def references_snapshot(self, snapshot_id: str, now: datetime) -> bool:
        """True while a live committed report names the snapshot as its revert point."""
        for entry in self._entries.values():
            if (
                entry.state == TransactionState.COMMITTED
                and entry.expires_at > now
                and entry.report is not None
                and entry.report.revert_snapshot_id == snapshot_id
            ):
                return True
        if self.persistence:
            return await self.persistence.snapshot_referenced(snapshot_id, now)
        return False

    def __len__(self) -> int:
        return len(self._entries)


class TransactionCoordinator:
    """Admits, commits and expires transactions.

    A transaction id maps to exactly one request fingerprint. Reusing an id
    for a different request is a caller error and is never merged.
    """

    def __init__(
        self,
        registry: Optional[TransactionRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
        ttl_seconds: Optional[int] = None,
    ):
        self.registry = registry if registry is not None else TransactionRegistry()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.ttl = timedelta(seconds=ttl_seconds or settings.transaction_ttl_seconds)

    @asynccontextmanager
    async def lock(self, transaction_id: Optional[str]) -> AsyncIterator[None]:
        """Serialize work on one transaction id; no-op without an id."""
        if transaction_id is None:
            yield
            return
        lock = await self.registry.lock_for(transaction_id)
        try:
            async with lock:
                yield
        finally:
            self.registry.release_lock(transaction_id)

    def _expired(self, entry: Transaction) -> bool:
        return entry.state == TransactionState.EXPIRED or self.clock() >= entry.expires_at

    async def get(self, transaction_id: str) -> Optional[Transaction]:
        return await self.registry.get(transaction_id)

    async def peek_replay(
        self, transaction_id: Optional[str], fingerprint: str
    ) -> Optional[MutationReport]:
        """Cached report of a live, committed, identical request, if any."""
        if transaction_id is None:
            return None
        entry = await self.registry.get(transaction_id)
        if (
            entry is None
            or entry.state != TransactionState.COMMITTED
            or entry.request_fingerprint != fingerprint
            or self._expired(entry)
        ):
            return None
        logger.info(f"Replaying committed transaction {transaction_id}")
        return entry.report

    async def admit(
        self, transaction_id: Optional[str], fingerprint: str, dry_run: bool = False
    ) -> Admission:
        """Decide whether a request may proceed.

        Registers a pending entry for a fresh transaction id unless this is a
        dry run, which must leave no trace.
        """
        if transaction_id is None:
            return Admission(AdmitResult.FRESH)

        entry = await self.registry.get(transaction_id)
        if entry is not None:
            if self._expired(entry):
                await self.registry.remove(transaction_id)
                logger.info(f"Transaction {transaction_id} expired at {entry.expires_at.isoformat()}")
                raise TransactionExpiredError(
                    transaction_id,
                    f"Transaction {transaction_id} has expired. Re-verify state and use a new transaction id.",
                )
            if entry.request_fingerprint != fingerprint:
                logger.warning(f"Transaction {transaction_id} reused for a different request")
                if entry.state == TransactionState.COMMITTED:
                    raise ReplayFailedError(
                        transaction_id,
                        f"Transaction {transaction_id} was already committed for a different request.",
                    )
                raise TransactionConflictError(
                    transaction_id,
                    f"Transaction {transaction_id} is in use by a different request.",
                )
            if entry.state == TransactionState.COMMITTED:
                return Admission(AdmitResult.REPLAY, entry.report)
            # Same request, but an earlier attempt is in flight or failed mid-apply
            raise TransactionConflictError(
                transaction_id,
                f"Transaction {transaction_id} is {entry.state.value}; its outcome is unknown. "
                "Re-verify state and use a new transaction id.",
            )

        if dry_run:
            return Admission(AdmitResult.FRESH)

        now = self.clock()
        await self.registry.put(
            Transaction(
                transaction_id=transaction_id,
                request_fingerprint=fingerprint,
                created_at=now,
                expires_at=now + self.ttl,
            )
        )
        logger.debug(f"Registered pending transaction {transaction_id}")
        return Admission(AdmitResult.FRESH)

    async def _update(self, transaction_id: Optional[str], **changes: Any) -> Optional[Transaction]:
        if transaction_id is None:
            return None
        entry = await self.registry.get(transaction_id)
        if entry is None:
            return None
        updated = entry.model_copy(update=changes)
        await self.registry.put(updated)
        return updated

    async def commit(self, transaction_id: Optional[str], report: MutationReport) -> None:
        """Store the committed report; the TTL restarts from the commit time."""
        entry = await self._update(
            transaction_id,
            state=TransactionState.COMMITTED,
            report=report,
            result_hash=result_hash(report),
            expires_at=self.clock() + self.ttl,
        )
        if entry is not None:
            logger.info(f"Committed transaction {transaction_id}")

    async def mark_conflicted(self, transaction_id: Optional[str]) -> None:
        entry = await self._update(transaction_id, state=TransactionState.CONFLICTED)
        if entry is not None:
            logger.warning(f"Transaction {transaction_id} marked conflicted")

    async def discard(self, transaction_id: Optional[str]) -> None:
        """Forget a pending entry whose request never reached the store."""
        if transaction_id is not None:
            await self.registry.remove(transaction_id)

    async def snapshot_in_use(self, snapshot_id: str) -> bool:
        return await self.registry.references_snapshot(snapshot_id, self.clock())

    async def purge_expired(self) -> int:
        purged = await self.registry.purge_expired(self.clock())
        if purged:
            logger.info(f"Purged {purged} expired transactions")
        return purged
