"""Pytest configuration and shared fixtures."""

import copy
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

import pytest
import pytest_asyncio

from sheetguard.config import Settings
from sheetguard.engine import EngineContext, MutationGuard
from sheetguard.errors import ErrorKind, TransportError
from sheetguard.sheets.models import (
    BatchRequest,
    BatchResult,
    CellGrid,
    DocumentRef,
    SheetMetadata,
)
from sheetguard.sheets.ranges import parse_range
from sheetguard.storage import RegistryStore

DOCUMENT_ID = "doc-123"

HEADER = ["id", "name", "amount", "note"]


class FakeSheet:
    """One tab: fixed grid dimensions plus a sparse-ish value matrix."""

    def __init__(self, sheet_id: int, title: str, rows: int, cols: int, values: list[list[Any]]):
        self.sheet_id = sheet_id
        self.title = title
        self.rows = rows
        self.cols = cols
        self.values = [list(row) for row in values]

    def get(self, r: int, c: int) -> Any:
        if r < len(self.values) and c < len(self.values[r]):
            return self.values[r][c]
        return ""

    def set(self, r: int, c: int, value: Any) -> None:
        while len(self.values) <= r:
            self.values.append([])
        row = self.values[r]
        while len(row) <= c:
            row.append("")
        row[c] = value


class FakeDocumentStore:
    """In-memory DocumentStore with call counters, modelled on the Sheets API."""

    def __init__(self):
        self.documents: dict[str, dict[str, FakeSheet]] = {}
        self.calls: dict[str, int] = {
            "get_sheet_metadata": 0,
            "read_cells": 0,
            "apply_batch": 0,
            "copy_document": 0,
            "restore_from_copy": 0,
            "delete_copy": 0,
        }
        self.fail_copy = False
        self.fail_apply = False
        self._copies = 0

    def add_sheet(
        self,
        document_id: str,
        title: str,
        values: Optional[list[list[Any]]] = None,
        rows: int = 100,
        cols: int = 26,
    ) -> FakeSheet:
        doc = self.documents.setdefault(document_id, {})
        sheet = FakeSheet(len(doc), title, rows, cols, values or [])
        doc[title] = sheet
        return sheet

    def sheet(self, document_id: str, title: Optional[str] = None) -> Optional[FakeSheet]:
        doc = self.documents.get(document_id)
        if not doc:
            return None
        if title is None:
            return next(iter(doc.values()))
        return doc.get(title)

    async def get_sheet_metadata(self, ref: DocumentRef) -> Optional[SheetMetadata]:
        self.calls["get_sheet_metadata"] += 1
        sheet = self.sheet(ref.document_id, ref.effective_sheet)
        if sheet is None:
            return None
        return SheetMetadata(
            sheet_id=sheet.sheet_id, title=sheet.title, row_count=sheet.rows, column_count=sheet.cols
        )

    async def read_cells(self, ref: DocumentRef, range_notation: str) -> CellGrid:
        self.calls["read_cells"] += 1
        grid = parse_range(ref.qualify(range_notation))
        sheet = self.sheet(ref.document_id, grid.sheet_name or ref.effective_sheet)
        if sheet is None:
            raise TransportError("Unable to parse range", ErrorKind.NOT_FOUND, False, status=400)
        grid = grid.clamp(sheet.rows, sheet.cols)

        values = []
        for r in range(grid.start_row, grid.end_row):
            row = [sheet.get(r, c) for c in range(grid.start_col, grid.end_col)]
            while row and row[-1] == "":
                row.pop()
            values.append(row)
        while values and not values[-1]:
            values.pop()
        return CellGrid(
            sheet_name=sheet.title,
            origin_row=grid.start_row,
            origin_col=grid.start_col,
            values=values,
        )

    async def apply_batch(self, ref: DocumentRef, batch: BatchRequest) -> BatchResult:
        self.calls["apply_batch"] += 1
        if self.fail_apply:
            raise TransportError("Backend unavailable", ErrorKind.UNAVAILABLE, status=503)

        result = BatchResult()
        for update in batch.value_updates:
            grid = parse_range(ref.qualify(update["range"]))
            sheet = self.sheet(ref.document_id, grid.sheet_name or ref.effective_sheet)
            for i, row in enumerate(update["values"]):
                for j, value in enumerate(row):
                    sheet.set(grid.start_row + i, grid.start_col + j, value)
            sheet.rows = max(sheet.rows, grid.start_row + len(update["values"]))
            result.updated_cells += sum(len(row) for row in update["values"])
            result.updated_rows += len(update["values"])
            result.updated_columns += max((len(row) for row in update["values"]), default=0)
            result.updated_ranges.append(update["range"])

        doc = self.documents[ref.document_id]
        by_id = {s.sheet_id: s for s in doc.values()}
        for request in batch.structural_requests:
            if "updateCells" in request:
                rng = request["updateCells"]["range"]
                sheet = by_id[rng["sheetId"]]
                for r in range(rng["startRowIndex"], rng["endRowIndex"]):
                    for c in range(rng["startColumnIndex"], rng["endColumnIndex"]):
                        if r < len(sheet.values) and c < len(sheet.values[r]):
                            sheet.values[r][c] = ""
            elif "insertDimension" in request:
                rng = request["insertDimension"]["range"]
                sheet = by_id[rng["sheetId"]]
                count = rng["endIndex"] - rng["startIndex"]
                if rng["dimension"] == "ROWS":
                    sheet.values[rng["startIndex"]:rng["startIndex"]] = [[] for _ in range(count)]
                    sheet.rows += count
                else:
                    for row in sheet.values:
                        if len(row) > rng["startIndex"]:
                            row[rng["startIndex"]:rng["startIndex"]] = [""] * count
                    sheet.cols += count
            elif "deleteDimension" in request:
                rng = request["deleteDimension"]["range"]
                sheet = by_id[rng["sheetId"]]
                if rng["dimension"] == "ROWS":
                    end = min(rng["endIndex"], sheet.rows)
                    del sheet.values[rng["startIndex"]:end]
                    sheet.rows -= max(end - rng["startIndex"], 0)
                else:
                    end = min(rng["endIndex"], sheet.cols)
                    for row in sheet.values:
                        del row[rng["startIndex"]:end]
                    sheet.cols -= max(end - rng["startIndex"], 0)
            result.replies.append({})
        return result

    async def copy_document(self, ref: DocumentRef, name: str) -> str:
        self.calls["copy_document"] += 1
        if self.fail_copy:
            raise TransportError("Drive quota exceeded", ErrorKind.QUOTA_EXCEEDED, status=403)
        self._copies += 1
        copy_id = f"copy-{self._copies}"
        self.documents[copy_id] = copy.deepcopy(self.documents[ref.document_id])
        return copy_id

    async def restore_from_copy(self, copy_id: str, name: str) -> DocumentRef:
        self.calls["restore_from_copy"] += 1
        restored = await self.copy_document(DocumentRef(document_id=copy_id), name)
        return DocumentRef(document_id=restored)

    async def delete_copy(self, copy_id: str) -> None:
        self.calls["delete_copy"] += 1
        self.documents.pop(copy_id, None)

    def document_url(self, document_id: str) -> str:
        return f"https://sheets.example.com/d/{document_id}"


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def sample_rows(count: int = 9) -> list[list[Any]]:
    return [HEADER] + [[i, f"item-{i}", i * 10, ""] for i in range(1, count + 1)]


@pytest.fixture
def mock_settings(tmp_path: Path) -> Settings:
    """Create settings with test values."""
    return Settings(
        google_credentials_path=tmp_path / "credentials.json",
        google_token_path=tmp_path / "token.json",
        registry_backend="memory",
        registry_database_path=tmp_path / "data" / "sheetguard.db",
        snapshot_failure_policy="fail_open",
        cors_allow_origins=["*"],
    )


@pytest.fixture
def store() -> FakeDocumentStore:
    """A document with a 10x4 "Data" sheet (header + 9 rows) on a 10x4 grid."""
    fake = FakeDocumentStore()
    fake.add_sheet(DOCUMENT_ID, "Data", sample_rows(), rows=10, cols=4)
    return fake


@pytest.fixture
def ref() -> DocumentRef:
    return DocumentRef(document_id=DOCUMENT_ID, sheet_name="Data")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def context(clock: FakeClock) -> EngineContext:
    return EngineContext(clock=clock, rng=random.Random(42))


@pytest.fixture
def guard(store: FakeDocumentStore, context: EngineContext) -> MutationGuard:
    return MutationGuard(store, context)


@pytest_asyncio.fixture
async def registry_store(tmp_path: Path):
    """A fresh SQLite registry database."""
    registry = RegistryStore(tmp_path / "registry.db")
    await registry.initialize()
    yield registry
    await registry.close()


# Configure pytest-asyncio
def pytest_configure(config):
    """Configure pytest with asyncio settings."""
    config.addinivalue_line("markers", "asyncio: mark test as async")
