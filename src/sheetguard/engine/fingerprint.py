"""Deterministic state fingerprints for optimistic concurrency checks."""

import asyncio
import hashlib
import json
import logging
from typing import Any, Optional

from ..errors import PreconditionFailedError
from ..sheets.models import DocumentRef, SheetMetadata
from ..sheets.ranges import GridRange, parse_range
from ..sheets.store import DocumentStore
from .models import Fingerprint

logger = logging.getLogger(__name__)


def _tag(value: Any) -> list:
    """Type-tag a cell so 1, "1" and True never serialize alike."""
    if value is None or value == "":
        return ["e"]
    if isinstance(value, bool):
        return ["b", value]
    if isinstance(value, float) and value.is_integer():
        return ["n", int(value)]
    if isinstance(value, (int, float)):
        return ["n", value]
    if isinstance(value, str):
        return ["s", value]
    return ["x", repr(value)]


def _trim(row: list[list]) -> list[list]:
    while row and row[-1] == ["e"]:
        row = row[:-1]
    return row


def compute_checksum(values: list[list[Any]]) -> str:
    """Hash cell values in row-major, type-tagged order.

    Trailing empty cells and rows are dropped first, so a store that trims
    them and one that pads them produce the same checksum.
    """
    rows = [_trim([_tag(v) for v in row]) for row in values]
    while rows and not rows[-1]:
        rows.pop()
    payload = json.dumps(rows, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def sheet_range(meta: SheetMetadata) -> GridRange:
    """The whole populated grid of a sheet."""
    return GridRange(
        sheet_name=meta.title,
        start_row=0,
        end_row=max(meta.row_count, 1),
        start_col=0,
        end_col=max(meta.column_count, 1),
    )


class FingerprintService:
    """Observes a document and reduces it to a Fingerprint. Read-only."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def describe_sheet(self, ref: DocumentRef) -> SheetMetadata:
        meta = await self.store.get_sheet_metadata(ref)
        if meta is None:
            raise PreconditionFailedError(
                field="title",
                expected=ref.effective_sheet,
                observed=None,
                message=f"Sheet {ref.effective_sheet!r} not found in {ref.document_id}",
            )
        return meta

    def _checksum_grid(
        self, ref: DocumentRef, meta: SheetMetadata, checksum_range: Optional[str] = None
    ) -> tuple[GridRange, bool]:
        """The checksum range clipped to the grid, and whether anything is left of it."""
        if checksum_range:
            grid = parse_range(checksum_range)
        else:
            grid = ref.grid_range() or sheet_range(meta)
        if grid.sheet_name is None:
            grid = grid.model_copy(update={"sheet_name": meta.title})
        clipped = grid.clamp(max(meta.row_count, 1), max(meta.column_count, 1))
        if clipped.is_empty:
            return grid, False
        return clipped, True

    def resolve_checksum_range(
        self, ref: DocumentRef, meta: SheetMetadata, checksum_range: Optional[str] = None
    ) -> str:
        """Explicit checksum range if given, else the full addressed range."""
        grid, _ = self._checksum_grid(ref, meta, checksum_range)
        return grid.to_a1()

    async def observe(
        self,
        ref: DocumentRef,
        checksum_range: Optional[str] = None,
        meta: Optional[SheetMetadata] = None,
    ) -> Fingerprint:
        """Read dimensions, checksum range and header row, and fingerprint them."""
        if meta is None:
            meta = await self.describe_sheet(ref)
        grid, on_grid = self._checksum_grid(ref, meta, checksum_range)
        target = grid.to_a1()
        header_ref = DocumentRef(document_id=ref.document_id, sheet_name=meta.title)

        if on_grid:
            content, header = await asyncio.gather(
                self.store.read_cells(header_ref, target),
                self.store.read_cells(header_ref, "1:1"),
            )
            values = content.values
        else:
            # Nothing of the range exists on the grid, so it holds no values
            header = await self.store.read_cells(header_ref, "1:1")
            values = []

        first_row = header.values[0] if header.values else []
        fingerprint = Fingerprint(
            row_count=meta.row_count,
            column_count=meta.column_count,
            title=meta.title,
            checksum=compute_checksum(values),
            checksum_range=target,
            first_row_values=list(first_row),
        )
        logger.debug(
            f"Observed {ref.document_id} {target}: {meta.row_count}x{meta.column_count} "
            f"checksum={fingerprint.checksum[:8]}"
        )
        return fingerprint
