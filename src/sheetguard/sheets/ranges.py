"""A1 notation helpers."""

import re
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel

_CELL_RE = re.compile(r"^([A-Za-z]+)(\d+)$")
_COL_RE = re.compile(r"^[A-Za-z]+$")
_ROW_RE = re.compile(r"^\d+$")
_ENDPOINT_RE = re.compile(r"^\$?([A-Za-z]{1,3})?\$?(\d+)?$")


def col_letter_to_index(col: str) -> int:
    """Convert column letter(s) to 0-based index. A=0, B=1, ..., Z=25, AA=26, etc."""
    result = 0
    for char in col.upper():
        result = result * 26 + (ord(char) - ord("A") + 1)
    return result - 1


def index_to_col_letter(index: int) -> str:
    """Convert 0-based index to column letter(s)."""
    result = ""
    index += 1
    while index > 0:
        index -= 1
        result = chr(ord("A") + (index % 26)) + result
        index //= 26
    return result


def parse_cell_notation(cell: str) -> tuple[str, int]:
    """Parse A1 notation into column letters and row number."""
    match = _CELL_RE.match(cell.replace("$", ""))
    if not match:
        raise ValueError(f"Invalid cell notation: {cell}")
    return match.group(1).upper(), int(match.group(2))


def quote_sheet_name(sheet_name: str) -> str:
    return "'" + sheet_name.replace("'", "''") + "'"


def format_cell(sheet_name: Optional[str], col: int, row: int) -> str:
    """Render a 0-based (col, row) position as an absolute A1 reference."""
    prefix = f"{quote_sheet_name(sheet_name)}!" if sheet_name else ""
    return f"{prefix}{index_to_col_letter(col)}{row + 1}"


def split_sheet(range_notation: str) -> tuple[Optional[str], str]:
    """Split "'Sheet 1'!A1:B2" into ("Sheet 1", "A1:B2")."""
    if "!" not in range_notation:
        return None, range_notation
    sheet_part, _, cells = range_notation.rpartition("!")
    if sheet_part.startswith("'") and sheet_part.endswith("'"):
        sheet_part = sheet_part[1:-1].replace("''", "'")
    return sheet_part, cells


class GridRange(BaseModel):
    """A parsed range. Indices are 0-based, ends exclusive; None means unbounded."""

    sheet_name: Optional[str] = None
    start_row: int = 0
    end_row: Optional[int] = None
    start_col: int = 0
    end_col: Optional[int] = None

    @property
    def bounded(self) -> bool:
        return self.end_row is not None and self.end_col is not None

    @property
    def row_count(self) -> Optional[int]:
        if self.end_row is None:
            return None
        return self.end_row - self.start_row

    @property
    def column_count(self) -> Optional[int]:
        if self.end_col is None:
            return None
        return self.end_col - self.start_col

    @property
    def cell_count(self) -> Optional[int]:
        if not self.bounded:
            return None
        return self.row_count * self.column_count

    @property
    def is_empty(self) -> bool:
        """True for a bounded range that covers no cells."""
        return self.bounded and (self.row_count <= 0 or self.column_count <= 0)

    def clamp(self, row_count: int, column_count: int) -> "GridRange":
        """Resolve unbounded edges against the sheet's grid size.

        Ends never move before their start, so a range lying past the grid's
        edge clamps to an empty range rather than an inverted one.
        """
        end_row = min(self.end_row, row_count) if self.end_row is not None else row_count
        end_col = min(self.end_col, column_count) if self.end_col is not None else column_count
        return GridRange(
            sheet_name=self.sheet_name,
            start_row=self.start_row,
            end_row=max(self.start_row, end_row),
            start_col=self.start_col,
            end_col=max(self.start_col, end_col),
        )

    def to_a1(self) -> str:
        if self.end_row is None and self.end_col is None and not (self.start_row or self.start_col):
            return quote_sheet_name(self.sheet_name) if self.sheet_name else ""
        start = index_to_col_letter(self.start_col)
        end_col = index_to_col_letter(self.end_col - 1) if self.end_col is not None else ""
        if self.end_row is None:
            if self.start_row:
                cells = f"{start}{self.start_row + 1}:{end_col}"
            else:
                cells = f"{start}:{end_col}"
        elif self.end_col is None and self.start_col == 0:
            cells = f"{self.start_row + 1}:{self.end_row}"
        else:
            cells = f"{start}{self.start_row + 1}:{end_col}{self.end_row}"
        if self.sheet_name:
            return f"{quote_sheet_name(self.sheet_name)}!{cells}"
        return cells


def _looks_like_cells(cells: str) -> bool:
    """True for "B3", "A1:C10", "A:C", "2:5"; False for sheet names like "Data"."""
    endpoints = cells.split(":")
    if len(endpoints) > 2 or not all(endpoints):
        return False
    for token in endpoints:
        match = _ENDPOINT_RE.match(token)
        if not match or not (match.group(1) or match.group(2)):
            return False
    if len(endpoints) == 1:
        return bool(_CELL_RE.match(cells.replace("$", "")))
    return True


def _parse_endpoint(token: str) -> tuple[Optional[int], Optional[int]]:
    """Return (col, row) for "B3", "B" or "3"; missing parts are None."""
    token = token.replace("$", "")
    if _CELL_RE.match(token):
        col, row = parse_cell_notation(token)
        return col_letter_to_index(col), row - 1
    if _COL_RE.match(token):
        return col_letter_to_index(token), None
    if _ROW_RE.match(token):
        return None, int(token) - 1
    raise ValueError(f"Invalid range endpoint: {token}")


def parse_range(range_notation: str) -> GridRange:
    """Parse A1 notation into a GridRange.

    A bare name with no "!" that does not look like cells is treated as a
    whole sheet, e.g. "Sheet1" -> unbounded range over Sheet1.
    """
    sheet_name, cells = split_sheet(range_notation.strip())
    if sheet_name is None and not _looks_like_cells(cells):
        return GridRange(sheet_name=cells.strip("'") or None)
    if not cells:
        return GridRange(sheet_name=sheet_name)
    if not _looks_like_cells(cells):
        raise ValueError(f"Invalid range: {range_notation}")

    start_token, _, end_token = cells.partition(":")
    start_col, start_row = _parse_endpoint(start_token)
    if not end_token:
        if start_col is None or start_row is None:
            raise ValueError(f"Invalid range: {range_notation}")
        return GridRange(
            sheet_name=sheet_name,
            start_row=start_row,
            end_row=start_row + 1,
            start_col=start_col,
            end_col=start_col + 1,
        )

    end_col, end_row = _parse_endpoint(end_token)
    return GridRange(
        sheet_name=sheet_name,
        start_row=start_row or 0,
        end_row=end_row + 1 if end_row is not None else None,
        start_col=start_col or 0,
        end_col=end_col + 1 if end_col is not None else None,
    )


def check_a1(value: Optional[str]) -> Optional[str]:
    """Field validator body: accept None or text parse_range can read."""
    if value is not None:
        parse_range(value)
    return value


# Optional A1 text, rejected at validation time when it cannot be parsed
A1Range = Annotated[Optional[str], AfterValidator(check_a1)]
