"""Data models for document store operations."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .ranges import A1Range, GridRange, format_cell, parse_range, quote_sheet_name


class DocumentRef(BaseModel):
    """Target document plus an optional sheet/range scope."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    sheet_name: Optional[str] = None
    range: A1Range = None  # A1 notation, may include a sheet prefix

    def grid_range(self) -> Optional[GridRange]:
        """Parsed range with the ref's sheet filled in, or None when sheet-wide."""
        if self.range is None:
            return None
        parsed = parse_range(self.range)
        if parsed.sheet_name is None and self.sheet_name:
            parsed = parsed.model_copy(update={"sheet_name": self.sheet_name})
        return parsed

    @property
    def effective_sheet(self) -> Optional[str]:
        grid = self.grid_range()
        if grid is not None and grid.sheet_name:
            return grid.sheet_name
        return self.sheet_name

    def qualify(self, range_notation: str) -> str:
        """Prefix a bare A1 range with the ref's sheet."""
        if "!" in range_notation or not self.effective_sheet:
            return range_notation
        return f"{quote_sheet_name(self.effective_sheet)}!{range_notation}"


class SheetMetadata(BaseModel):
    """Dimension metadata for one sheet (tab)."""

    sheet_id: int
    title: str
    row_count: int
    column_count: int


class CellGrid(BaseModel):
    """Values read from a range, anchored at its top-left cell.

    Trailing empty rows/cells are trimmed by the store, as the Sheets API does.
    """

    sheet_name: Optional[str] = None
    origin_row: int = 0
    origin_col: int = 0
    values: list[list[Any]] = Field(default_factory=list)

    def get(self, row: int, col: int) -> Any:
        """Value at absolute 0-based position, None if outside the grid."""
        r = row - self.origin_row
        c = col - self.origin_col
        if r < 0 or c < 0 or r >= len(self.values):
            return None
        row_values = self.values[r]
        if c >= len(row_values):
            return None
        return row_values[c]

    def cell_name(self, row: int, col: int) -> str:
        return format_cell(self.sheet_name, col, row)

    @property
    def cell_count(self) -> int:
        return sum(len(row) for row in self.values)


class BatchRequest(BaseModel):
    """One ApplyBatch call: value writes and/or structural requests."""

    value_updates: list[dict[str, Any]] = Field(default_factory=list)  # {range, values}
    structural_requests: list[dict[str, Any]] = Field(default_factory=list)  # Sheets API Request bodies
    description: str = ""

    @property
    def empty(self) -> bool:
        return not self.value_updates and not self.structural_requests


class BatchResult(BaseModel):
    """Counts reported by the remote store after ApplyBatch."""

    updated_cells: int = 0
    updated_rows: int = 0
    updated_columns: int = 0
    updated_ranges: list[str] = Field(default_factory=list)
    replies: list[dict[str, Any]] = Field(default_factory=list)
