"""SQLite-backed registry store for transactions, snapshots and audit logs."""

import json
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiosqlite

from ..config import settings
from ..engine.audit import AuditEntry
from ..engine.models import MutationReport, Snapshot, Transaction, TransactionState
from ..sheets.models import DocumentRef

logger = logging.getLogger(__name__)


class RegistryStore:
    """Durable backing for the process-wide registries."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or settings.registry_database_path
        self._connection: Optional[aiosqlite.Connection] = None

    async def initialize(self):
        """Open the database and create tables."""
        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(str(self.db_path))

        await self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS transactions (
                transaction_id TEXT PRIMARY KEY,
                request_fingerprint TEXT NOT NULL,
                result_hash TEXT,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                state TEXT NOT NULL,
                report TEXT
            );

            CREATE TABLE IF NOT EXISTS snapshots (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                created_at TEXT NOT NULL,
                document_id TEXT NOT NULL,
                document_ref TEXT NOT NULL,
                external_copy_ref TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS audit_logs (
                id TEXT PRIMARY KEY,
                timestamp TEXT NOT NULL,
                action TEXT NOT NULL,
                document_id TEXT,
                status TEXT NOT NULL,
                cells_affected INTEGER,
                details TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_transactions_expires ON transactions(expires_at);
            CREATE INDEX IF NOT EXISTS idx_snapshots_document ON snapshots(document_id);
            CREATE INDEX IF NOT EXISTS idx_audit_logs_timestamp ON audit_logs(timestamp);
            """
        )
        await self._connection.commit()
        logger.info(f"Registry store ready at {self.db_path}")

    async def close(self):
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    # Transaction operations
    async def save_transaction(self, entry: Transaction) -> None:
        await self._connection.execute(
            """
            INSERT OR REPLACE INTO transactions
            (transaction_id, request_fingerprint, result_hash, created_at, expires_at, state, report)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.transaction_id,
                entry.request_fingerprint,
                entry.result_hash,
                entry.created_at.isoformat(),
                entry.expires_at.isoformat(),
                entry.state.value,
                entry.report.model_dump_json() if entry.report else None,
            ),
        )
        await self._connection.commit()

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        async with self._connection.execute(
            "SELECT * FROM transactions WHERE transaction_id = ?", (transaction_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_transaction(row)
        return None

    async def delete_transaction(self, transaction_id: str) -> bool:
        cursor = await self._connection.execute(
            "DELETE FROM transactions WHERE transaction_id = ?", (transaction_id,)
        )
        await self._connection.commit()
        return cursor.rowcount > 0

    async def purge_expired_transactions(self, now: datetime) -> int:
        """Delete entries whose TTL elapsed. ISO-8601 UTC strings sort chronologically."""
        cursor = await self._connection.execute(
            "DELETE FROM transactions WHERE expires_at <= ?", (now.isoformat(),)
        )
        await self._connection.commit()
        return cursor.rowcount

    async def snapshot_referenced(self, snapshot_id: str, now: datetime) -> bool:
        """Whether an unexpired committed report names the snapshot as its revert point."""
        async with self._connection.execute(
            """
            SELECT 1 FROM transactions
            WHERE state = ? AND expires_at > ?
            AND json_extract(report, '$.revert_snapshot_id') = ?
            LIMIT 1
            """,
            (TransactionState.COMMITTED.value, now.isoformat(), snapshot_id),
        ) as cursor:
            return await cursor.fetchone() is not None

    def _row_to_transaction(self, row) -> Transaction:
        return Transaction(
            transaction_id=row[0],
            request_fingerprint=row[1],
            result_hash=row[2],
            created_at=datetime.fromisoformat(row[3]),
            expires_at=datetime.fromisoformat(row[4]),
            state=TransactionState(row[5]),
            report=MutationReport.model_validate_json(row[6]) if row[6] else None,
        )

    # Snapshot operations
    async def save_snapshot(self, snapshot: Snapshot) -> None:
        await self._connection.execute(
            """
            INSERT OR REPLACE INTO snapshots
            (id, name, created_at, document_id, document_ref, external_copy_ref)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                snapshot.id,
                snapshot.name,
                snapshot.created_at.isoformat(),
                snapshot.document_ref.document_id,
                snapshot.document_ref.model_dump_json(),
                snapshot.external_copy_ref,
            ),
        )
        await self._connection.commit()

    async def get_snapshot(self, snapshot_id: str) -> Optional[Snapshot]:
        async with self._connection.execute(
            "SELECT * FROM snapshots WHERE id = ?", (snapshot_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_snapshot(row)
        return None

    async def list_snapshots(self, document_id: str) -> list[Snapshot]:
        async with self._connection.execute(
            "SELECT * FROM snapshots WHERE document_id = ? ORDER BY created_at", (document_id,)
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_snapshot(row) for row in rows]

    async def delete_snapshot(self, snapshot_id: str) -> bool:
        cursor = await self._connection.execute("DELETE FROM snapshots WHERE id = ?", (snapshot_id,))
        await self._connection.commit()
        return cursor.rowcount > 0

    def _row_to_snapshot(self, row) -> Snapshot:
        return Snapshot(
            id=row[0],
            name=row[1],
            created_at=datetime.fromisoformat(row[2]),
            document_ref=DocumentRef.model_validate_json(row[4]),
            external_copy_ref=row[5],
        )

    # Audit log operations
    async def log_audit(self, entry: AuditEntry) -> None:
        details = asdict(entry)
        for key in ("id", "timestamp", "action", "document_id", "status", "cells_affected"):
            details.pop(key)

        await self._connection.execute(
            """
            INSERT INTO audit_logs
            (id, timestamp, action, document_id, status, cells_affected, details)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.timestamp,
                entry.action,
                entry.document_id,
                entry.status,
                entry.cells_affected,
                json.dumps(details),
            ),
        )
        await self._connection.commit()

    async def get_audit_logs(
        self, document_id: Optional[str] = None, limit: int = 100
    ) -> list[AuditEntry]:
        """Get audit logs, newest first, optionally filtered by document."""
        query = "SELECT * FROM audit_logs"
        params: list = []
        if document_id:
            query += " WHERE document_id = ?"
            params.append(document_id)
        query += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        async with self._connection.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_audit_entry(row) for row in rows]

    def _row_to_audit_entry(self, row) -> AuditEntry:
        details = json.loads(row[6]) if row[6] else {}
        return AuditEntry(
            id=row[0],
            timestamp=row[1],
            action=row[2],
            document_id=row[3] or "",
            status=row[4],
            cells_affected=row[5] or 0,
            **details,
        )
