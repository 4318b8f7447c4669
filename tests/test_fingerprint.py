"""Tests for checksums and the fingerprint service."""

import pytest

from sheetguard.engine.fingerprint import FingerprintService, compute_checksum
from sheetguard.errors import ErrorKind, PreconditionFailedError
from sheetguard.sheets.models import DocumentRef


class TestComputeChecksum:
    """Row-major, type-tagged hashing."""

    def test_stable(self):
        values = [["a", 1], ["b", 2.5]]
        assert compute_checksum(values) == compute_checksum([["a", 1], ["b", 2.5]])

    def test_type_tagging_distinguishes_values(self):
        assert compute_checksum([[1]]) != compute_checksum([["1"]])
        assert compute_checksum([[True]]) != compute_checksum([[1]])
        assert compute_checksum([["=A1"]]) != compute_checksum([["A1"]])

    def test_integral_floats_match_ints(self):
        assert compute_checksum([[3.0]]) == compute_checksum([[3]])

    def test_trailing_empties_ignored(self):
        assert compute_checksum([["a", ""], [], [None]]) == compute_checksum([["a"]])

    def test_position_matters(self):
        assert compute_checksum([["a", "b"]]) != compute_checksum([["b", "a"]])
        assert compute_checksum([["a"], ["b"]]) != compute_checksum([["a", "b"]])

    def test_empty_grid(self):
        assert compute_checksum([]) == compute_checksum([[""]])


class TestFingerprintService:
    """Observation against the fake store."""

    @pytest.mark.asyncio
    async def test_observe_full_sheet(self, store, ref):
        service = FingerprintService(store)
        fingerprint = await service.observe(ref)

        assert fingerprint.title == "Data"
        assert fingerprint.row_count == 10
        assert fingerprint.column_count == 4
        assert fingerprint.first_row_values == ["id", "name", "amount", "note"]
        assert fingerprint.checksum_range == "'Data'!A1:D10"

    @pytest.mark.asyncio
    async def test_observe_is_read_only(self, store, ref):
        service = FingerprintService(store)
        await service.observe(ref)
        assert store.calls["apply_batch"] == 0

    @pytest.mark.asyncio
    async def test_single_cell_change_inside_range_changes_checksum(self, store, ref):
        service = FingerprintService(store)
        before = await service.observe(ref, "A1:B5")

        store.sheet(ref.document_id, "Data").set(2, 1, "changed")
        after = await service.observe(ref, "A1:B5")

        assert before.checksum != after.checksum

    @pytest.mark.asyncio
    async def test_change_outside_range_keeps_checksum(self, store, ref):
        service = FingerprintService(store)
        before = await service.observe(ref, "A1:B5")

        store.sheet(ref.document_id, "Data").set(8, 3, "changed")
        after = await service.observe(ref, "A1:B5")

        assert before.checksum == after.checksum
        assert after.checksum_range == "'Data'!A1:B5"

    @pytest.mark.asyncio
    async def test_ref_range_is_default_checksum_range(self, store):
        service = FingerprintService(store)
        ref = DocumentRef(document_id="doc-123", sheet_name="Data", range="A2:C4")

        fingerprint = await service.observe(ref)
        assert fingerprint.checksum_range == "'Data'!A2:C4"

    @pytest.mark.asyncio
    async def test_missing_sheet_is_structural_failure(self, store):
        service = FingerprintService(store)
        ref = DocumentRef(document_id="doc-123", sheet_name="Renamed")

        with pytest.raises(PreconditionFailedError) as exc_info:
            await service.observe(ref)
        assert exc_info.value.kind == ErrorKind.PRECONDITION_FAILED
        assert exc_info.value.field == "title"

    @pytest.mark.asyncio
    async def test_range_past_grid_is_empty_without_reading_it(self, store, ref):
        service = FingerprintService(store)
        fingerprint = await service.observe(ref, "A200:B300")

        assert fingerprint.checksum == compute_checksum([])
        assert fingerprint.checksum_range == "'Data'!A200:B300"
        # header row only
        assert store.calls["read_cells"] == 1

    @pytest.mark.asyncio
    async def test_range_overlapping_grid_edge_is_clipped(self, store, ref):
        service = FingerprintService(store)
        fingerprint = await service.observe(ref, "C8:F40")

        assert fingerprint.checksum_range == "'Data'!C8:D10"
