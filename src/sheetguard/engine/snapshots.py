"""Snapshot creation, retention and restore."""

import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from ..config import settings
from ..errors import SnapshotCreateError, SnapshotNotFoundError, SnapshotRestoreError
from ..sheets.models import DocumentRef
from ..sheets.store import DocumentStore
from .models import SafetyOptions, Snapshot

if TYPE_CHECKING:
    from ..storage import RegistryStore

logger = logging.getLogger(__name__)

FAIL_OPEN = "fail_open"
FAIL_CLOSED = "fail_closed"


class SnapshotRegistry:
    """Process-wide snapshot records, optionally written through to a database."""

    def __init__(self, persistence: Optional["RegistryStore"] = None):
        self._snapshots: dict[str, Snapshot] = {}
        self.persistence = persistence

    async def add(self, snapshot: Snapshot) -> None:
        self._snapshots[snapshot.id] = snapshot
        if self.persistence:
            await self.persistence.save_snapshot(snapshot)

    async def get(self, snapshot_id: str) -> Optional[Snapshot]:
        snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None and self.persistence:
            snapshot = await self.persistence.get_snapshot(snapshot_id)
            if snapshot is not None:
                self._snapshots[snapshot.id] = snapshot
        return snapshot

    async def list_snapshots(self, document_id: str) -> list[Snapshot]:
        """Snapshots of one document, oldest first."""
        if self.persistence:
            for snapshot in await self.persistence.list_snapshots(document_id):
                self._snapshots.setdefault(snapshot.id, snapshot)
        found = [s for s in self._snapshots.values() if s.document_ref.document_id == document_id]
        return sorted(found, key=lambda s: s.created_at)

    async def remove(self, snapshot_id: str) -> bool:
        removed = self._snapshots.pop(snapshot_id, None) is not None
        if self.persistence:
            removed = await self.persistence.delete_snapshot(snapshot_id) or removed
        return removed

    def clear(self) -> None:
        """Forget cached records; external copies are left untouched."""
        self._snapshots.clear()


class SnapshotManager:
    """Takes best-effort copies of a document before destructive writes."""

    def __init__(
        self,
        store: DocumentStore,
        registry: Optional[SnapshotRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_per_document: Optional[int] = None,
        failure_policy: Optional[str] = None,
        in_use: Optional[Callable[[str], Awaitable[bool]]] = None,
    ):
        self.store = store
        self.registry = registry if registry is not None else SnapshotRegistry()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.max_per_document = max_per_document or settings.max_snapshots_per_document
        self.failure_policy = failure_policy or settings.snapshot_failure_policy
        # Consulted before pruning; True keeps the snapshot
        self.in_use = in_use

    @staticmethod
    def should_snapshot(options: SafetyOptions, destructive: bool) -> bool:
        return options.require_snapshot or (options.auto_snapshot and destructive)

    async def maybe_snapshot(
        self, ref: DocumentRef, options: SafetyOptions, destructive: bool
    ) -> Optional[Snapshot]:
        """Snapshot when asked to; on failure either degrade or refuse per policy."""
        if not self.should_snapshot(options, destructive):
            return None

        try:
            return await self.create(ref, options.snapshot_name)
        except Exception as e:
            if options.require_snapshot or self.failure_policy == FAIL_CLOSED:
                logger.error(f"Snapshot of {ref.document_id} failed, refusing to write: {e}")
                raise SnapshotCreateError(
                    f"Failed to create snapshot of {ref.document_id}: {e}",
                    details={"document_id": ref.document_id},
                ) from e
            logger.warning(
                f"Snapshot of {ref.document_id} failed, continuing without rollback point: {e}"
            )
            return None

    async def create(self, ref: DocumentRef, name: Optional[str] = None) -> Snapshot:
        created_at = self.clock()
        name = name or f"Snapshot {created_at.isoformat()}"
        copy_id = await self.store.copy_document(ref, name)

        snapshot = Snapshot(
            id=f"snap_{uuid.uuid4().hex[:16]}",
            name=name,
            created_at=created_at,
            document_ref=ref,
            external_copy_ref=copy_id,
        )
        await self.registry.add(snapshot)
        logger.info(f"Created snapshot {snapshot.id} of {ref.document_id} (copy {copy_id})")

        try:
            await self.prune(ref.document_id, keep=snapshot.id)
        except Exception as e:
            logger.warning(f"Snapshot retention sweep for {ref.document_id} failed: {e}")
        return snapshot

    async def prune(self, document_id: str, keep: Optional[str] = None) -> int:
        """Drop the oldest snapshots beyond the retention limit.

        The snapshot named by ``keep`` and any snapshot still referenced by a
        replayable report survive, even if that leaves the document over the
        limit. Returns the number pruned.
        """
        snapshots = await self.registry.list_snapshots(document_id)
        excess = len(snapshots) - self.max_per_document
        pruned = 0
        for oldest in snapshots:
            if pruned >= excess:
                break
            if oldest.id == keep:
                continue
            if self.in_use is not None and await self.in_use(oldest.id):
                logger.info(f"Keeping snapshot {oldest.id} past retention, a replayable report names it")
                continue
            try:
                await self.store.delete_copy(oldest.external_copy_ref)
            except Exception as e:
                logger.warning(f"Failed to delete pruned snapshot copy {oldest.external_copy_ref}: {e}")
            await self.registry.remove(oldest.id)
            pruned += 1
            logger.info(f"Pruned snapshot {oldest.id} of {document_id}")
        return pruned

    async def get(self, snapshot_id: str) -> Optional[Snapshot]:
        return await self.registry.get(snapshot_id)

    async def list_snapshots(self, document_id: str) -> list[Snapshot]:
        return await self.registry.list_snapshots(document_id)

    async def _require(self, snapshot_id: str) -> Snapshot:
        snapshot = await self.registry.get(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(
                f"Snapshot {snapshot_id} not found", details={"snapshot_id": snapshot_id}
            )
        return snapshot

    async def restore(self, snapshot_id: str) -> DocumentRef:
        """Copy a snapshot back into a new document. Failure is terminal."""
        snapshot = await self._require(snapshot_id)
        try:
            restored = await self.store.restore_from_copy(
                snapshot.external_copy_ref, f"Restored from {snapshot.name}"
            )
        except Exception as e:
            logger.error(f"Failed to restore snapshot {snapshot_id}: {e}", exc_info=True)
            raise SnapshotRestoreError(
                f"Failed to restore snapshot {snapshot_id}: {e}",
                details={"snapshot_id": snapshot_id},
            ) from e

        logger.info(f"Restored snapshot {snapshot_id} into {restored.document_id}")
        return DocumentRef(
            document_id=restored.document_id,
            sheet_name=snapshot.document_ref.sheet_name,
            range=snapshot.document_ref.range,
        )

    async def delete(self, snapshot_id: str) -> None:
        """Delete the external copy and forget the record."""
        snapshot = await self._require(snapshot_id)
        await self.store.delete_copy(snapshot.external_copy_ref)
        await self.registry.remove(snapshot_id)
        logger.info(f"Deleted snapshot {snapshot_id}")

    async def url(self, snapshot_id: str) -> Optional[str]:
        snapshot = await self.registry.get(snapshot_id)
        if snapshot is None:
            return None
        return self.store.document_url(snapshot.external_copy_ref)
