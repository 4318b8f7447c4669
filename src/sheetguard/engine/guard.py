"""The guarded mutation entry point."""

import asyncio
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from ..config import settings
from ..errors import EngineError
from ..sheets.models import DocumentRef
from ..sheets.store import DocumentStore
from .actions import BaseAction
from .audit import AuditEntry, AuditLogger
from .differ import DiffComputer
from .fingerprint import FingerprintService
from .models import (
    DiffTier,
    Fingerprint,
    MetadataDiff,
    MetadataSummary,
    MutationReport,
    SafetyOptions,
    ScopePrediction,
)
from .precondition import PreconditionVerifier
from .scope import EffectScopeGuard
from .snapshots import SnapshotManager, SnapshotRegistry
from .transactions import AdmitResult, TransactionCoordinator, TransactionRegistry, request_fingerprint

if TYPE_CHECKING:
    from ..storage import RegistryStore

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EngineContext:
    """Shared registries plus the clock and RNG every guard reads from.

    Constructed once and injected; tests pass a fixed clock and seeded RNG.
    """

    transactions: TransactionRegistry = field(default_factory=TransactionRegistry)
    snapshots: SnapshotRegistry = field(default_factory=SnapshotRegistry)
    audit: AuditLogger = field(default_factory=AuditLogger)
    clock: Callable[[], datetime] = _utc_now
    rng: random.Random = field(default_factory=random.Random)
    persistence: Optional["RegistryStore"] = None

    @classmethod
    def with_persistence(
        cls,
        persistence: "RegistryStore",
        clock: Callable[[], datetime] = _utc_now,
        rng: Optional[random.Random] = None,
    ) -> "EngineContext":
        return cls(
            transactions=TransactionRegistry(persistence),
            snapshots=SnapshotRegistry(persistence),
            audit=AuditLogger(persistence),
            clock=clock,
            rng=rng or random.Random(),
            persistence=persistence,
        )

    async def close(self) -> None:
        if self.persistence:
            await self.persistence.close()


async def create_context(backend: Optional[str] = None) -> EngineContext:
    """Build a context for the configured registry backend."""
    backend = backend or settings.registry_backend
    if backend == "sqlite":
        from ..storage import RegistryStore

        persistence = RegistryStore()
        await persistence.initialize()
        return EngineContext.with_persistence(persistence)
    if backend != "memory":
        raise ValueError(f"Unknown registry backend: {backend}")
    return EngineContext()


class MutationGuard:
    """Runs one mutation through precondition, scope, snapshot, apply and diff.

    Every call either returns a MutationReport or raises an EngineError.
    Writes to the same document are not serialized; only calls that share a
    transaction id wait on each other.
    """

    def __init__(self, store: DocumentStore, context: Optional[EngineContext] = None):
        self.store = store
        self.context = context if context is not None else EngineContext()
        self.fingerprints = FingerprintService(store)
        self.verifier = PreconditionVerifier()
        self.scope_guard = EffectScopeGuard()
        self.transactions = TransactionCoordinator(self.context.transactions, clock=self.context.clock)
        self.snapshots = SnapshotManager(
            store,
            self.context.snapshots,
            clock=self.context.clock,
            in_use=self.transactions.snapshot_in_use,
        )

    async def guard(self, action: BaseAction, options: Optional[SafetyOptions] = None) -> MutationReport:
        options = options or SafetyOptions()
        started = time.monotonic()
        try:
            report, status = await self._run(action, options)
        except EngineError as e:
            await self._audit(action, options, "failed", started, error_kind=e.kind.value, message=e.message)
            raise
        except Exception as e:
            await self._audit(action, options, "failed", started, error_kind=type(e).__name__, message=str(e))
            raise
        await self._audit(action, options, status, started, report=report)
        return report

    async def _run(self, action: BaseAction, options: SafetyOptions) -> tuple[MutationReport, str]:
        txid = options.transaction_id
        fingerprint = request_fingerprint(action.describe(), options)

        async with self.transactions.lock(txid):
            cached = await self.transactions.peek_replay(txid, fingerprint)
            if cached is not None:
                return cached, "replay"

            ref = action.target_ref()
            meta = await self.fingerprints.describe_sheet(ref)
            expected = options.expected_state
            checksum_range = expected.checksum_range if expected else None
            before = await self.fingerprints.observe(ref, checksum_range, meta=meta)
            self.verifier.enforce(expected, before)

            predicted = action.predict_scope(meta)
            self.scope_guard.enforce_pre_apply(predicted, options.effect_scope)
            logger.info(
                f"{action.kind} on {ref.document_id} admitted by preconditions and scope "
                f"({predicted.cells} cells predicted)"
            )

            admission = await self.transactions.admit(txid, fingerprint, dry_run=options.dry_run)
            if admission.result == AdmitResult.REPLAY:
                return admission.report, "replay"

            if options.dry_run:
                return self._simulate(before, predicted), "dry_run"

            applied = False
            try:
                snapshot = await self.snapshots.maybe_snapshot(action.ref, options, action.is_destructive())
                warnings = []
                if snapshot is None and self.snapshots.should_snapshot(options, action.is_destructive()):
                    warnings.append("Snapshot creation failed; this change cannot be reverted.")

                budget = options.diff_cost_budget or settings.diff_cost_budget
                differ = DiffComputer(self.context.rng, sample_size=options.sample_size)
                diff_range = action.diff_range(meta)
                store_ref = DocumentRef(document_id=ref.document_id, sheet_name=meta.title)
                before_grid = None
                if diff_range and differ.select_tier(options.verbosity, predicted.cells, budget) != DiffTier.METADATA:
                    before_grid = await self.store.read_cells(store_ref, diff_range)

                applied = True
                outcome = await action.apply(self.store, meta)
                logger.info(f"Applied {action.kind} to {ref.document_id}: {outcome.actual_cells} cells")

                warnings.extend(self.scope_guard.check_post_apply(outcome, options.effect_scope))
                after = await self.fingerprints.observe(ref, checksum_range)

                changed_cells = outcome.changed_cells
                if before_grid is not None:
                    after_grid = await self.store.read_cells(store_ref, diff_range)
                    changed_cells = differ.compare_grids(before_grid, after_grid)

                diff = differ.compute_diff(
                    before,
                    after,
                    changed_cells,
                    options.verbosity,
                    budget,
                    cells_affected=outcome.actual_cells,
                    rows_affected=outcome.actual_rows,
                )
                report = MutationReport(
                    cells_affected=outcome.actual_cells,
                    rows_affected=outcome.actual_rows,
                    columns_affected=outcome.actual_columns,
                    diff=diff,
                    reversible=snapshot is not None,
                    revert_snapshot_id=snapshot.id if snapshot else None,
                    warnings=warnings,
                )
                await self.transactions.commit(txid, report)
                return report, "success"
            except asyncio.CancelledError:
                # After apply began the write may have landed; the pending entry stays
                if not applied:
                    await self.transactions.discard(txid)
                raise
            except Exception:
                if applied:
                    await self.transactions.mark_conflicted(txid)
                else:
                    await self.transactions.discard(txid)
                raise

    @staticmethod
    def _simulate(before: Fingerprint, predicted: ScopePrediction) -> MutationReport:
        """Report the predicted counts without touching the store."""
        return MutationReport(
            cells_affected=predicted.cells,
            rows_affected=predicted.rows,
            columns_affected=predicted.columns,
            diff=MetadataDiff(
                before=before,
                after=before,
                summary=MetadataSummary(
                    rows_changed=predicted.rows, estimated_cells_changed=predicted.cells
                ),
            ),
            reversible=False,
            dry_run=True,
        )

    async def _audit(
        self,
        action: BaseAction,
        options: SafetyOptions,
        status: str,
        started: float,
        report: Optional[MutationReport] = None,
        error_kind: Optional[str] = None,
        message: str = "",
    ) -> None:
        entry = AuditEntry(
            id=f"audit_{uuid.uuid4().hex[:16]}",
            timestamp=self.context.clock().isoformat(),
            action=action.kind,
            document_id=action.ref.document_id,
            status=status,
            transaction_id=options.transaction_id,
            error_kind=error_kind,
            message=message,
            cells_affected=report.cells_affected if report else 0,
            snapshot_id=report.revert_snapshot_id if report else None,
            duration_ms=(time.monotonic() - started) * 1000,
            warnings=list(report.warnings) if report else [],
        )
        try:
            await self.context.audit.log_operation(entry)
        except Exception as e:
            logger.error(f"Failed to write audit entry {entry.id}: {e}", exc_info=True)

    async def restore_snapshot(self, snapshot_id: str) -> DocumentRef:
        return await self.snapshots.restore(snapshot_id)

    async def purge_expired_transactions(self) -> int:
        return await self.transactions.purge_expired()
