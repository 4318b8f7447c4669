"""Tiered before/after change reports."""

import logging
import math
import random
from typing import Any, Optional

from ..config import settings
from ..sheets.models import CellGrid
from ..sheets.ranges import col_letter_to_index, parse_cell_notation, split_sheet
from .models import (
    CellChange,
    CellChangeType,
    Diff,
    DiffSamples,
    DiffTier,
    Fingerprint,
    FullDiff,
    FullSummary,
    MetadataDiff,
    MetadataSummary,
    SampleDiff,
    SampleSummary,
    StructureChange,
    Verbosity,
)

logger = logging.getLogger(__name__)

TIER_FOR_VERBOSITY = {
    Verbosity.MINIMAL: DiffTier.METADATA,
    Verbosity.STANDARD: DiffTier.SAMPLE,
    Verbosity.DETAILED: DiffTier.FULL,
}

_TIER_ORDER = [DiffTier.METADATA, DiffTier.SAMPLE, DiffTier.FULL]


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def classify_change(before: Any, after: Any) -> CellChangeType:
    for value in (before, after):
        if isinstance(value, str) and value.startswith("="):
            return CellChangeType.FORMULA
    return CellChangeType.VALUE


def cell_position(cell: str) -> tuple[int, int]:
    """(row, col), both 0-based, of an A1 cell reference such as "'Data'!B3"."""
    _, notation = split_sheet(cell)
    col, row = parse_cell_notation(notation)
    return row - 1, col_letter_to_index(col)


def structure_change(before: Fingerprint, after: Fingerprint) -> StructureChange:
    return StructureChange(
        title_changed=before.title != after.title,
        row_delta=after.row_count - before.row_count,
        column_delta=after.column_count - before.column_count,
    )


class DiffComputer:
    """Builds METADATA, SAMPLE or FULL diffs within a cost budget."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        sample_size: Optional[int] = None,
        sample_cost_ratio: Optional[float] = None,
    ):
        self.rng = rng or random.Random()
        self.sample_size = sample_size or settings.diff_sample_size
        self.sample_cost_ratio = (
            sample_cost_ratio if sample_cost_ratio is not None else settings.diff_sample_cost_ratio
        )

    def estimate_cost(self, tier: DiffTier, cells: int) -> float:
        """Extra read cost of producing a tier, proportional to cells touched."""
        if tier == DiffTier.FULL:
            return float(cells)
        if tier == DiffTier.SAMPLE:
            return cells * self.sample_cost_ratio
        return 0.0

    def select_tier(self, verbosity: Verbosity, cells: int, cost_budget: int) -> DiffTier:
        """Start from the requested tier and step down while it is over budget."""
        index = _TIER_ORDER.index(TIER_FOR_VERBOSITY[verbosity])
        while index > 0 and self.estimate_cost(_TIER_ORDER[index], cells) > cost_budget:
            index -= 1
        tier = _TIER_ORDER[index]
        if tier != TIER_FOR_VERBOSITY[verbosity]:
            logger.info(
                f"Diff downgraded from {TIER_FOR_VERBOSITY[verbosity].value} to {tier.value} "
                f"({cells} cells, budget {cost_budget})"
            )
        return tier

    def compare_grids(self, before: CellGrid, after: CellGrid) -> list[CellChange]:
        """Cell-by-cell comparison in row-major order, by absolute position."""
        first_row = min(before.origin_row, after.origin_row)
        last_row = max(before.origin_row + len(before.values), after.origin_row + len(after.values))
        first_col = min(before.origin_col, after.origin_col)
        sheet_name = after.sheet_name or before.sheet_name

        changes = []
        for row in range(first_row, last_row):
            width = 0
            for grid in (before, after):
                r = row - grid.origin_row
                if 0 <= r < len(grid.values):
                    width = max(width, grid.origin_col + len(grid.values[r]))
            for col in range(first_col, width):
                old = before.get(row, col)
                new = after.get(row, col)
                if old == new or (_is_empty(old) and _is_empty(new)):
                    continue
                changes.append(
                    CellChange(
                        cell=CellGrid(sheet_name=sheet_name).cell_name(row, col),
                        before=None if _is_empty(old) else old,
                        after=None if _is_empty(new) else new,
                        type=classify_change(old, new),
                    )
                )
        return changes

    def compute_diff(
        self,
        before: Fingerprint,
        after: Fingerprint,
        changed_cells: Optional[list[CellChange]],
        verbosity: Verbosity,
        cost_budget: int,
        cells_affected: Optional[int] = None,
        rows_affected: Optional[int] = None,
    ) -> Diff:
        cost_cells = cells_affected if cells_affected is not None else len(changed_cells or [])
        tier = self.select_tier(verbosity, cost_cells, cost_budget)
        if changed_cells is None:
            tier = DiffTier.METADATA

        structure = structure_change(before, after)
        if tier == DiffTier.FULL:
            return self._full_diff(changed_cells, structure)
        if tier == DiffTier.SAMPLE:
            return self._sample_diff(changed_cells, structure)
        return self._metadata_diff(before, after, changed_cells, cells_affected, rows_affected, structure)

    def _metadata_diff(
        self,
        before: Fingerprint,
        after: Fingerprint,
        changed_cells: Optional[list[CellChange]],
        cells_affected: Optional[int],
        rows_affected: Optional[int],
        structure: StructureChange,
    ) -> MetadataDiff:
        if rows_affected is not None:
            rows_changed = rows_affected
        elif changed_cells:
            rows_changed = len({cell_position(c.cell)[0] for c in changed_cells})
        else:
            rows_changed = abs(structure.row_delta)

        if cells_affected is not None:
            estimated = cells_affected
        elif changed_cells is not None:
            estimated = len(changed_cells)
        elif before.checksum == after.checksum and structure == StructureChange():
            estimated = 0
        else:
            # Content moved but nothing was counted: assume a tenth of the grid
            estimated = math.ceil(after.row_count * after.column_count * 0.1)

        return MetadataDiff(
            before=before,
            after=after,
            summary=MetadataSummary(rows_changed=rows_changed, estimated_cells_changed=estimated),
            structure=structure,
        )

    def _sample_diff(self, changed_cells: list[CellChange], structure: StructureChange) -> SampleDiff:
        by_row: dict[int, list[CellChange]] = {}
        for change in changed_cells:
            by_row.setdefault(cell_position(change.cell)[0], []).append(change)
        rows = sorted(by_row)

        n = self.sample_size
        first = rows[:n]
        remaining = rows[n:]
        last = remaining[-n:] if remaining else []
        middle = remaining[:-n] if len(remaining) > n else []
        picked = sorted(self.rng.sample(middle, min(n, len(middle))))

        samples = DiffSamples(
            first_rows=[c for r in first for c in by_row[r]],
            last_rows=[c for r in last for c in by_row[r]],
            random_rows=[c for r in picked for c in by_row[r]],
        )
        cells_sampled = len(samples.first_rows) + len(samples.last_rows) + len(samples.random_rows)
        return SampleDiff(
            samples=samples,
            summary=SampleSummary(rows_changed=len(rows), cells_sampled=cells_sampled),
            structure=structure,
        )

    def _full_diff(self, changed_cells: list[CellChange], structure: StructureChange) -> FullDiff:
        added = sum(1 for c in changed_cells if _is_empty(c.before) and not _is_empty(c.after))
        removed = sum(1 for c in changed_cells if not _is_empty(c.before) and _is_empty(c.after))
        return FullDiff(
            changes=list(changed_cells),
            summary=FullSummary(
                cells_changed=len(changed_cells), cells_added=added, cells_removed=removed
            ),
            structure=structure,
        )
