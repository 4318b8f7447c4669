"""API routes for SheetGuard."""

from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field, ValidationError

from ..engine import ActionKind, SafetyOptions, build_action
from ..errors import (
    EngineError,
    PreconditionError,
    ScopeError,
    SnapshotNotFoundError,
    TransactionError,
    TransportError,
)

router = APIRouter()


def get_guard():
    """Get the global guard instance."""
    from .app import get_guard as _get_guard

    return _get_guard()


def _http_error(error: EngineError) -> HTTPException:
    """Map an engine error family onto an HTTP status, keeping the structured payload."""
    if isinstance(error, SnapshotNotFoundError):
        status = 404
    elif isinstance(error, (PreconditionError, TransactionError)):
        status = 409
    elif isinstance(error, ScopeError):
        status = 422
    elif isinstance(error, TransportError):
        status = 429 if error.status == 429 else 502
    else:
        status = 500
    return HTTPException(status_code=status, detail=error.to_dict())


class MutationRequest(BaseModel):
    """A guarded mutation: action kind, its parameters, and safety options."""

    kind: ActionKind
    params: dict[str, Any] = Field(default_factory=dict)
    options: SafetyOptions = Field(default_factory=SafetyOptions)


# Mutations


@router.post("/mutations")
async def guard_mutation(request: MutationRequest):
    """Run one mutation through the safety engine and return its report."""
    try:
        action = build_action(request.kind, **request.params)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))

    guard = get_guard()
    try:
        report = await guard.guard(action, request.options)
    except EngineError as e:
        raise _http_error(e)
    return report.model_dump(mode="json")


# Snapshots


@router.get("/snapshots/{document_id}")
async def list_snapshots(document_id: str):
    """List snapshots of a document, oldest first."""
    guard = get_guard()
    snapshots = await guard.snapshots.list_snapshots(document_id)
    return {
        "count": len(snapshots),
        "snapshots": [
            {
                "id": s.id,
                "name": s.name,
                "created_at": s.created_at.isoformat(),
                "external_copy_ref": s.external_copy_ref,
                "url": guard.store.document_url(s.external_copy_ref),
            }
            for s in snapshots
        ],
    }


@router.post("/snapshots/{snapshot_id}/restore")
async def restore_snapshot(snapshot_id: str):
    """Copy a snapshot back into a new document."""
    guard = get_guard()
    try:
        restored = await guard.restore_snapshot(snapshot_id)
    except EngineError as e:
        raise _http_error(e)
    return {
        "status": "ok",
        "document_id": restored.document_id,
        "url": guard.store.document_url(restored.document_id),
    }


@router.delete("/snapshots/{snapshot_id}")
async def delete_snapshot(snapshot_id: str):
    """Delete a snapshot and its external copy."""
    guard = get_guard()
    try:
        await guard.snapshots.delete(snapshot_id)
    except EngineError as e:
        raise _http_error(e)
    return {"status": "ok", "message": "Snapshot deleted"}


# Transactions


@router.get("/transactions/{transaction_id}")
async def get_transaction(transaction_id: str):
    """Inspect a transaction's state."""
    guard = get_guard()
    entry = await guard.transactions.get(transaction_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return entry.model_dump(mode="json", exclude={"report"})


@router.post("/transactions/purge")
async def purge_transactions():
    """Evict expired transaction entries."""
    guard = get_guard()
    purged = await guard.purge_expired_transactions()
    return {"status": "ok", "purged": purged}


# Audit


@router.get("/audit")
async def list_audit_logs(document_id: Optional[str] = None, limit: int = 50):
    """List recent guarded mutation outcomes."""
    guard = get_guard()
    entries = await guard.context.audit.get_recent_operations(limit=limit, document_id=document_id)
    return {
        "count": len(entries),
        "logs": [
            {
                "id": e.id,
                "timestamp": e.timestamp,
                "action": e.action,
                "document_id": e.document_id,
                "status": e.status,
                "error_kind": e.error_kind,
                "transaction_id": e.transaction_id,
                "cells_affected": e.cells_affected,
            }
            for e in entries
        ],
    }


# Health check


@router.get("/health")
async def health_check():
    """Health check endpoint with diagnostics."""
    from ..config import settings

    return {
        "status": "ok",
        "service": "sheetguard",
        "config": {
            "registry_backend": settings.registry_backend,
            "snapshot_failure_policy": settings.snapshot_failure_policy,
            "google_credentials_configured": settings.google_credentials_path.exists(),
        },
    }


@router.get("/config/limits")
async def get_config_limits():
    """Get safety limits and diff budget configuration."""
    from ..config import settings

    return {
        "safety_limits": {
            "default_max_cells_affected": settings.default_max_cells_affected,
            "transaction_ttl_seconds": settings.transaction_ttl_seconds,
            "max_snapshots_per_document": settings.max_snapshots_per_document,
        },
        "diff": {
            "cost_budget": settings.diff_cost_budget,
            "sample_size": settings.diff_sample_size,
            "sample_cost_ratio": settings.diff_sample_cost_ratio,
        },
    }
