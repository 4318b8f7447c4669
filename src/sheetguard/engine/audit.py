"""Audit trail of guarded mutations."""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..storage import RegistryStore

logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    """One terminal outcome of a guarded mutation."""

    id: str
    timestamp: str
    action: str
    document_id: str
    status: str  # "success", "dry_run", "replay", "failed"
    transaction_id: Optional[str] = None
    error_kind: Optional[str] = None
    message: str = ""
    cells_affected: int = 0
    snapshot_id: Optional[str] = None
    duration_ms: float = 0.0
    warnings: list[str] = field(default_factory=list)


class AuditLogger:
    """
    Records every guarded mutation outcome.

    Recent entries are kept in memory; when a RegistryStore is configured
    they are also persisted and reads go to the database.
    """

    def __init__(self, persistence: Optional["RegistryStore"] = None, capacity: int = 1000):
        self.persistence = persistence
        self._recent: deque[AuditEntry] = deque(maxlen=capacity)

    async def log_operation(self, entry: AuditEntry) -> None:
        self._recent.append(entry)
        if self.persistence:
            await self.persistence.log_audit(entry)
        logger.info(
            f"Audit {entry.id}: {entry.action} on {entry.document_id} - {entry.status}"
            + (f" ({entry.error_kind})" if entry.error_kind else "")
            + f" - {entry.cells_affected} cells"
        )

    async def get_recent_operations(
        self, limit: int = 50, document_id: Optional[str] = None
    ) -> list[AuditEntry]:
        """
        Most recent entries first.

        Args:
            limit: Maximum number of entries to return
            document_id: Filter by document (optional)
        """
        if self.persistence:
            return await self.persistence.get_audit_logs(document_id=document_id, limit=limit)

        entries = [e for e in reversed(self._recent) if document_id is None or e.document_id == document_id]
        return entries[:limit]
