"""Tests for tiered diff computation."""

import random

import pytest

from sheetguard.engine.differ import DiffComputer, cell_position, classify_change
from sheetguard.engine.models import (
    CellChange,
    CellChangeType,
    DiffTier,
    Fingerprint,
    FullDiff,
    MetadataDiff,
    SampleDiff,
    Verbosity,
)
from sheetguard.sheets.models import CellGrid


def _fingerprint(rows: int = 10, cols: int = 4, checksum: str = "c0", title: str = "Data") -> Fingerprint:
    return Fingerprint(
        row_count=rows, column_count=cols, title=title, checksum=checksum, checksum_range="'Data'!A1:D10"
    )


def _changes_on_rows(rows: int) -> list[CellChange]:
    return [CellChange(cell=f"'Data'!A{r + 1}", before=r, after=r + 1) for r in range(rows)]


@pytest.fixture
def differ() -> DiffComputer:
    return DiffComputer(random.Random(7), sample_size=3, sample_cost_ratio=0.25)


class TestTierSelection:
    """Requested verbosity, downgraded against the cost budget."""

    def test_requested_tier_within_budget(self, differ):
        assert differ.select_tier(Verbosity.MINIMAL, 10, 5000) == DiffTier.METADATA
        assert differ.select_tier(Verbosity.STANDARD, 10, 5000) == DiffTier.SAMPLE
        assert differ.select_tier(Verbosity.DETAILED, 10, 5000) == DiffTier.FULL

    def test_full_downgrades_to_sample(self, differ):
        # FULL costs 8000 > 5000, SAMPLE costs 2000
        assert differ.select_tier(Verbosity.DETAILED, 8000, 5000) == DiffTier.SAMPLE

    def test_huge_change_downgrades_to_metadata(self, differ):
        assert differ.select_tier(Verbosity.DETAILED, 50000, 5000) == DiffTier.METADATA

    def test_metadata_is_the_floor(self, differ):
        assert differ.select_tier(Verbosity.MINIMAL, 10**9, 1) == DiffTier.METADATA


class TestCompareGrids:
    def test_detects_value_and_formula_changes(self, differ):
        before = CellGrid(sheet_name="Data", values=[["a", "b"], ["=SUM(A1)", 4]])
        after = CellGrid(sheet_name="Data", values=[["a", "B"], ["=SUM(A2)", 4], ["", "new"]])

        changes = differ.compare_grids(before, after)

        assert [c.cell for c in changes] == ["'Data'!B1", "'Data'!A2", "'Data'!B3"]
        assert changes[1].type == CellChangeType.FORMULA
        assert changes[2].before is None
        assert changes[2].after == "new"

    def test_identical_grids(self, differ):
        grid = CellGrid(sheet_name="Data", origin_row=3, values=[[1, 2]])
        assert differ.compare_grids(grid, grid) == []

    def test_empty_and_missing_cells_are_equal(self, differ):
        before = CellGrid(sheet_name="Data", values=[["a", ""]])
        after = CellGrid(sheet_name="Data", values=[["a"]])
        assert differ.compare_grids(before, after) == []

    def test_round_trip(self, differ):
        """Applying every FULL change to the before grid reproduces the after grid."""
        before = CellGrid(sheet_name="Data", origin_row=1, origin_col=1, values=[[1, 2, 3], [4, 5], [7]])
        after = CellGrid(sheet_name="Data", origin_row=1, origin_col=1, values=[[1, 20, 3], [], [7, 8, 9]])

        diff = differ.compute_diff(
            _fingerprint(), _fingerprint(checksum="c1"), differ.compare_grids(before, after), Verbosity.DETAILED, 5000
        )
        assert isinstance(diff, FullDiff)

        rebuilt = {}
        for r, row in enumerate(before.values):
            for c, value in enumerate(row):
                rebuilt[(before.origin_row + r, before.origin_col + c)] = value
        for change in diff.changes:
            rebuilt[cell_position(change.cell)] = change.after
        rebuilt = {pos: v for pos, v in rebuilt.items() if v not in (None, "")}

        expected = {}
        for r, row in enumerate(after.values):
            for c, value in enumerate(row):
                expected[(after.origin_row + r, after.origin_col + c)] = value
        assert rebuilt == expected


class TestComputeDiff:
    def test_full_tier_counts(self, differ):
        """Scenario: 3 changed cells at detailed verbosity."""
        changes = [
            CellChange(cell="'Data'!A1", before="x", after="y"),
            CellChange(cell="'Data'!B1", before=None, after="new"),
            CellChange(cell="'Data'!C1", before="old", after=None),
        ]
        diff = differ.compute_diff(_fingerprint(), _fingerprint(checksum="c1"), changes, Verbosity.DETAILED, 5000)

        assert isinstance(diff, FullDiff)
        assert len(diff.changes) == 3
        assert diff.summary.cells_changed == 3
        assert diff.summary.cells_added == 1
        assert diff.summary.cells_removed == 1

    def test_metadata_with_known_counts(self, differ):
        """Scenario: 50,000 changed cells auto-downgrade to METADATA."""
        diff = differ.compute_diff(
            _fingerprint(),
            _fingerprint(checksum="c1"),
            None,
            Verbosity.DETAILED,
            5000,
            cells_affected=50000,
            rows_affected=500,
        )

        assert isinstance(diff, MetadataDiff)
        assert diff.summary.estimated_cells_changed == 50000
        assert diff.summary.rows_changed == 500

    def test_metadata_without_cells_forces_floor(self, differ):
        diff = differ.compute_diff(_fingerprint(), _fingerprint(), None, Verbosity.DETAILED, 5000)

        assert diff.tier == "METADATA"
        assert diff.summary.estimated_cells_changed == 0

    def test_metadata_estimate_when_uncounted(self, differ):
        diff = differ.compute_diff(_fingerprint(), _fingerprint(checksum="c1"), None, Verbosity.MINIMAL, 5000)
        assert diff.summary.estimated_cells_changed == 4

    def test_structure_change(self, differ):
        diff = differ.compute_diff(
            _fingerprint(), _fingerprint(rows=15, cols=3, title="Renamed"), None, Verbosity.MINIMAL, 5000
        )

        assert diff.structure.title_changed
        assert diff.structure.row_delta == 5
        assert diff.structure.column_delta == -1
        assert diff.summary.rows_changed == 5


class TestSampleTier:
    def test_sample_rows_are_disjoint(self, differ):
        changes = _changes_on_rows(20)
        diff = differ.compute_diff(_fingerprint(), _fingerprint(checksum="c1"), changes, Verbosity.STANDARD, 5000)

        assert isinstance(diff, SampleDiff)
        first = [cell_position(c.cell)[0] for c in diff.samples.first_rows]
        last = [cell_position(c.cell)[0] for c in diff.samples.last_rows]
        middle = [cell_position(c.cell)[0] for c in diff.samples.random_rows]

        assert first == [0, 1, 2]
        assert last == [17, 18, 19]
        assert len(middle) == 3
        assert not set(middle) & (set(first) | set(last))
        assert all(3 <= r <= 16 for r in middle)
        assert diff.summary.rows_changed == 20
        assert diff.summary.cells_sampled == 9

    def test_few_rows(self, differ):
        diff = differ.compute_diff(
            _fingerprint(), _fingerprint(checksum="c1"), _changes_on_rows(4), Verbosity.STANDARD, 5000
        )

        assert len(diff.samples.first_rows) == 3
        assert len(diff.samples.last_rows) == 1
        assert diff.samples.random_rows == []

    def test_seeded_sampling_is_deterministic(self):
        changes = _changes_on_rows(50)
        picks = []
        for _ in range(2):
            differ = DiffComputer(random.Random(99), sample_size=3)
            diff = differ.compute_diff(_fingerprint(), _fingerprint(checksum="c1"), changes, Verbosity.STANDARD, 5000)
            picks.append([c.cell for c in diff.samples.random_rows])
        assert picks[0] == picks[1]


class TestHelpers:
    def test_classify_change(self):
        assert classify_change("=A1", 5) == CellChangeType.FORMULA
        assert classify_change(1, 2) == CellChangeType.VALUE

    def test_cell_position(self):
        assert cell_position("'My Sheet'!C5") == (4, 2)
