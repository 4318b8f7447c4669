"""Tests for the SQLite registry store and write-through registries."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from sheetguard.engine import EngineContext, MutationGuard, SafetyOptions, WriteValuesAction, create_context
from sheetguard.engine.audit import AuditEntry
from sheetguard.engine.models import MutationReport, Snapshot, Transaction, TransactionState
from sheetguard.engine.snapshots import SnapshotRegistry
from sheetguard.engine.transactions import TransactionRegistry
from sheetguard.storage import RegistryStore


class TestRegistryStore:
    """Round-trips through the database."""

    @pytest.mark.asyncio
    async def test_transaction_round_trip(self, registry_store, clock):
        entry = Transaction(
            transaction_id="tx-1",
            request_fingerprint="fp",
            created_at=clock(),
            expires_at=clock() + timedelta(seconds=300),
            state=TransactionState.COMMITTED,
            report=MutationReport(cells_affected=3, warnings=["note"]),
        )
        await registry_store.save_transaction(entry)

        loaded = await registry_store.get_transaction("tx-1")
        assert loaded == entry
        assert await registry_store.delete_transaction("tx-1") is True
        assert await registry_store.get_transaction("tx-1") is None

    @pytest.mark.asyncio
    async def test_purge_expired_transactions(self, registry_store, clock):
        for tid, ttl in (("old", 10), ("new", 600)):
            await registry_store.save_transaction(
                Transaction(
                    transaction_id=tid,
                    request_fingerprint="fp",
                    created_at=clock(),
                    expires_at=clock() + timedelta(seconds=ttl),
                )
            )

        clock.advance(60)
        assert await registry_store.purge_expired_transactions(clock()) == 1
        assert await registry_store.get_transaction("new") is not None

    @pytest.mark.asyncio
    async def test_snapshot_round_trip(self, registry_store, clock, ref):
        first = Snapshot(id="snap_a", name="a", created_at=clock(), document_ref=ref, external_copy_ref="copy-a")
        clock.advance(5)
        second = Snapshot(id="snap_b", name="b", created_at=clock(), document_ref=ref, external_copy_ref="copy-b")
        await registry_store.save_snapshot(second)
        await registry_store.save_snapshot(first)

        assert await registry_store.get_snapshot("snap_a") == first
        assert [s.id for s in await registry_store.list_snapshots(ref.document_id)] == ["snap_a", "snap_b"]
        assert await registry_store.delete_snapshot("snap_a") is True
        assert await registry_store.delete_snapshot("snap_a") is False

    @pytest.mark.asyncio
    async def test_audit_round_trip(self, registry_store):
        entry = AuditEntry(
            id="audit_1",
            timestamp="2024-01-15T12:00:00+00:00",
            action="clear_range",
            document_id="doc-123",
            status="failed",
            transaction_id="tx-1",
            error_kind="EFFECT_SCOPE_EXCEEDED",
            warnings=["w"],
        )
        await registry_store.log_audit(entry)

        logs = await registry_store.get_audit_logs(document_id="doc-123")
        assert logs == [entry]
        assert await registry_store.get_audit_logs(document_id="other") == []


class TestDurableRegistries:
    """Registries backed by the database survive a fresh process."""

    @pytest.mark.asyncio
    async def test_replay_survives_restart(self, tmp_path, store, clock, ref):
        db_path = tmp_path / "durable.db"
        action = WriteValuesAction(ref=ref, range="B2", values=[["x"]])
        options = SafetyOptions(transaction_id="tx-durable")

        persistence = RegistryStore(db_path)
        await persistence.initialize()
        first = await MutationGuard(store, EngineContext.with_persistence(persistence, clock=clock)).guard(
            action, options
        )
        await persistence.close()

        reopened = RegistryStore(db_path)
        await reopened.initialize()
        try:
            guard = MutationGuard(store, EngineContext.with_persistence(reopened, clock=clock))
            second = await guard.guard(action, options)
            audit = await guard.context.audit.get_recent_operations()
        finally:
            await reopened.close()

        assert second == first
        assert store.calls["apply_batch"] == 1
        assert sorted(e.status for e in audit) == ["replay", "success"]

    @pytest.mark.asyncio
    async def test_snapshot_registry_reads_through(self, registry_store, clock, ref):
        snapshot = Snapshot(id="snap_a", name="a", created_at=clock(), document_ref=ref, external_copy_ref="copy-a")
        await SnapshotRegistry(registry_store).add(snapshot)

        fresh = SnapshotRegistry(registry_store)
        assert await fresh.get("snap_a") == snapshot
        assert await fresh.remove("snap_a") is True

    @pytest.mark.asyncio
    async def test_transaction_registry_purge(self, registry_store, clock):
        registry = TransactionRegistry(registry_store)
        await registry.put(
            Transaction(
                transaction_id="tx-1",
                request_fingerprint="fp",
                created_at=clock(),
                expires_at=clock() + timedelta(seconds=1),
            )
        )
        clock.advance(2)

        assert await registry.purge_expired(clock()) == 1
        assert await TransactionRegistry(registry_store).get("tx-1") is None


class TestCreateContext:
    """Settings choose the registry backend."""

    @pytest.mark.asyncio
    async def test_sqlite_backend_from_settings(self, mock_settings):
        sqlite_settings = mock_settings.model_copy(update={"registry_backend": "sqlite"})

        with patch("sheetguard.engine.guard.settings", sqlite_settings), patch(
            "sheetguard.storage.store.settings", sqlite_settings
        ):
            context = await create_context()
        try:
            assert context.persistence is not None
            assert context.transactions.persistence is context.persistence
            assert sqlite_settings.registry_database_path.exists()
        finally:
            await context.close()

    @pytest.mark.asyncio
    async def test_memory_backend_from_settings(self, mock_settings):
        with patch("sheetguard.engine.guard.settings", mock_settings):
            context = await create_context()

        assert context.persistence is None
        assert not mock_settings.registry_database_path.exists()

    @pytest.mark.asyncio
    async def test_unknown_backend(self):
        with pytest.raises(ValueError):
            await create_context("redis")
