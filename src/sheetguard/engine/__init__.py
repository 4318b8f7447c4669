"""Mutation safety engine."""

from .actions import (
    ActionKind,
    BaseAction,
    ClearRangeAction,
    DeleteDimensionAction,
    Dimension,
    InsertDimensionAction,
    MutationAction,
    WriteValuesAction,
    build_action,
)
from .audit import AuditEntry, AuditLogger
from .differ import DiffComputer
from .fingerprint import FingerprintService, compute_checksum
from .guard import EngineContext, MutationGuard, create_context
from .models import (
    CellChange,
    DiffTier,
    EffectScope,
    ExpectedState,
    Fingerprint,
    MutationReport,
    SafetyOptions,
    Snapshot,
    Transaction,
    TransactionState,
    Verbosity,
)
from .precondition import PreconditionVerifier
from .scope import EffectScopeGuard
from .snapshots import SnapshotManager, SnapshotRegistry
from .transactions import TransactionCoordinator, TransactionRegistry

__all__ = [
    "ActionKind",
    "BaseAction",
    "ClearRangeAction",
    "DeleteDimensionAction",
    "Dimension",
    "InsertDimensionAction",
    "MutationAction",
    "WriteValuesAction",
    "build_action",
    "AuditEntry",
    "AuditLogger",
    "DiffComputer",
    "FingerprintService",
    "compute_checksum",
    "EngineContext",
    "MutationGuard",
    "create_context",
    "CellChange",
    "DiffTier",
    "EffectScope",
    "ExpectedState",
    "Fingerprint",
    "MutationReport",
    "SafetyOptions",
    "Snapshot",
    "Transaction",
    "TransactionState",
    "Verbosity",
    "PreconditionVerifier",
    "EffectScopeGuard",
    "SnapshotManager",
    "SnapshotRegistry",
    "TransactionCoordinator",
    "TransactionRegistry",
]
