"""Closed set of mutation actions the guard knows how to predict and apply."""

import logging
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..errors import AmbiguousRangeError
from ..sheets.models import BatchRequest, DocumentRef, SheetMetadata
from ..sheets.ranges import A1Range, GridRange, parse_range
from ..sheets.store import DocumentStore
from .models import ApplyOutcome, ScopePrediction

logger = logging.getLogger(__name__)


def _outside_grid(declared: str, meta: SheetMetadata) -> AmbiguousRangeError:
    return AmbiguousRangeError(
        f"Range {declared!r} lies outside the {meta.row_count}x{meta.column_count} grid of {meta.title!r}. "
        "Re-read the sheet and address cells that exist.",
        details={"range": declared, "row_count": meta.row_count, "column_count": meta.column_count},
    )


class ActionKind(str, Enum):
    WRITE_VALUES = "write_values"
    CLEAR_RANGE = "clear_range"
    INSERT_DIMENSION = "insert_dimension"
    DELETE_DIMENSION = "delete_dimension"


class Dimension(str, Enum):
    ROWS = "ROWS"
    COLUMNS = "COLUMNS"


class BaseAction(BaseModel):
    """A self-describing mutation.

    Subclasses predict their blast radius from sheet metadata alone and apply
    themselves through a DocumentStore, reporting exact counts.
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    ref: DocumentRef

    def target_ref(self) -> DocumentRef:
        """The ref whose sheet and range the action addresses."""
        return self.ref

    def describe(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def is_destructive(self) -> bool:
        return False

    def predict_scope(self, meta: SheetMetadata) -> ScopePrediction:
        raise NotImplementedError

    def diff_range(self, meta: SheetMetadata) -> Optional[str]:
        """Range to read before and after apply for a cell-level diff, if any."""
        return None

    async def apply(self, store: DocumentStore, meta: SheetMetadata) -> ApplyOutcome:
        raise NotImplementedError

    def _store_ref(self, meta: SheetMetadata) -> DocumentRef:
        return DocumentRef(document_id=self.ref.document_id, sheet_name=meta.title)


class _RangeAction(BaseAction):
    range: A1Range = None  # falls back to ref.range

    @property
    def declared_range(self) -> Optional[str]:
        return self.range or self.ref.range

    def target_ref(self) -> DocumentRef:
        declared = self.declared_range
        if declared is None:
            return self.ref
        sheet = parse_range(declared).sheet_name or self.ref.sheet_name
        return DocumentRef(document_id=self.ref.document_id, sheet_name=sheet, range=declared)

    def _declared_grid(self, meta: SheetMetadata) -> GridRange:
        declared = self.declared_range
        grid = parse_range(declared) if declared else GridRange()
        return grid.model_copy(update={"sheet_name": meta.title})

    def _is_bounded(self) -> bool:
        declared = self.declared_range
        return declared is not None and parse_range(declared).bounded


class WriteValuesAction(_RangeAction):
    """Write a block of values anchored at the range's top-left cell."""

    kind: Literal["write_values"] = "write_values"
    values: list[list[Any]]

    def _target(self, meta: SheetMetadata) -> GridRange:
        anchor = self._declared_grid(meta)
        width = max((len(row) for row in self.values), default=0)
        return anchor.model_copy(
            update={
                "end_row": anchor.start_row + len(self.values),
                "end_col": anchor.start_col + width,
            }
        )

    def predict_scope(self, meta: SheetMetadata) -> ScopePrediction:
        return ScopePrediction(
            cells=sum(len(row) for row in self.values),
            rows=len(self.values),
            columns=max((len(row) for row in self.values), default=0),
            range=self.declared_range,
            bounded=self._is_bounded(),
        )

    def diff_range(self, meta: SheetMetadata) -> Optional[str]:
        if not self.values:
            return None
        return self._target(meta).to_a1()

    async def apply(self, store: DocumentStore, meta: SheetMetadata) -> ApplyOutcome:
        target = self._target(meta).to_a1()
        batch = BatchRequest(
            value_updates=[{"range": target, "values": self.values}],
            description=f"Write {len(self.values)} rows to {target}",
        )
        result = await store.apply_batch(self._store_ref(meta), batch)
        return ApplyOutcome(
            actual_cells=result.updated_cells,
            actual_rows=result.updated_rows,
            actual_columns=result.updated_columns,
        )


class ClearRangeAction(_RangeAction):
    """Clear cell values (formatting is kept). Sheet-wide when no range is given."""

    kind: Literal["clear_range"] = "clear_range"

    def _target(self, meta: SheetMetadata) -> GridRange:
        target = self._declared_grid(meta).clamp(meta.row_count, meta.column_count)
        if target.is_empty and self.declared_range is not None:
            raise _outside_grid(self.declared_range, meta)
        return target

    def is_destructive(self) -> bool:
        return True

    def predict_scope(self, meta: SheetMetadata) -> ScopePrediction:
        target = self._target(meta)
        return ScopePrediction(
            cells=target.cell_count,
            rows=target.row_count,
            columns=target.column_count,
            range=self.declared_range,
            bounded=self._is_bounded(),
        )

    def diff_range(self, meta: SheetMetadata) -> Optional[str]:
        target = self._target(meta)
        return None if target.is_empty else target.to_a1()

    async def apply(self, store: DocumentStore, meta: SheetMetadata) -> ApplyOutcome:
        target = self._target(meta)
        if target.is_empty:
            return ApplyOutcome()
        request = {
            "updateCells": {
                "range": {
                    "sheetId": meta.sheet_id,
                    "startRowIndex": target.start_row,
                    "endRowIndex": target.end_row,
                    "startColumnIndex": target.start_col,
                    "endColumnIndex": target.end_col,
                },
                "fields": "userEnteredValue",
            }
        }
        await store.apply_batch(
            self._store_ref(meta),
            BatchRequest(structural_requests=[request], description=f"Clear {target.to_a1()}"),
        )
        return ApplyOutcome(
            actual_cells=target.cell_count,
            actual_rows=target.row_count,
            actual_columns=target.column_count,
        )


class _DimensionAction(BaseAction):
    dimension: Dimension = Dimension.ROWS
    start_index: int = Field(ge=0)
    end_index: int = Field(gt=0)

    @model_validator(mode="after")
    def check_span(self) -> "_DimensionAction":
        if self.end_index <= self.start_index:
            raise ValueError("end_index must be greater than start_index")
        return self

    def _band(self, meta: SheetMetadata, count: int) -> GridRange:
        if self.dimension == Dimension.ROWS:
            return GridRange(
                sheet_name=meta.title,
                start_row=self.start_index,
                end_row=self.start_index + count,
                start_col=0,
                end_col=meta.column_count,
            )
        return GridRange(
            sheet_name=meta.title,
            start_row=0,
            end_row=meta.row_count,
            start_col=self.start_index,
            end_col=self.start_index + count,
        )

    def _prediction(self, meta: SheetMetadata, count: int) -> ScopePrediction:
        band = self._band(meta, count)
        return ScopePrediction(
            cells=band.cell_count,
            rows=band.row_count,
            columns=band.column_count,
            range=band.to_a1(),
            bounded=True,
            explicit=True,
        )

    def _request(self, meta: SheetMetadata) -> dict[str, Any]:
        return {
            "sheetId": meta.sheet_id,
            "dimension": self.dimension.value,
            "startIndex": self.start_index,
            "endIndex": self.end_index,
        }

    async def _measure(self, store: DocumentStore, meta: SheetMetadata) -> ApplyOutcome:
        """Exact counts from the sheet's dimensions after the change."""
        after = await store.get_sheet_metadata(self._store_ref(meta))
        if after is None:
            logger.warning(f"Sheet {meta.title!r} vanished after {self.dimension.value} change")
            return ApplyOutcome()
        if self.dimension == Dimension.ROWS:
            delta = abs(after.row_count - meta.row_count)
            return ApplyOutcome(
                actual_cells=delta * after.column_count,
                actual_rows=delta,
                actual_columns=after.column_count,
            )
        delta = abs(after.column_count - meta.column_count)
        return ApplyOutcome(
            actual_cells=delta * after.row_count,
            actual_rows=after.row_count,
            actual_columns=delta,
        )


class InsertDimensionAction(_DimensionAction):
    """Insert empty rows or columns before start_index."""

    kind: Literal["insert_dimension"] = "insert_dimension"

    def predict_scope(self, meta: SheetMetadata) -> ScopePrediction:
        return self._prediction(meta, self.end_index - self.start_index)

    async def apply(self, store: DocumentStore, meta: SheetMetadata) -> ApplyOutcome:
        request = {
            "insertDimension": {
                "range": self._request(meta),
                "inheritFromBefore": self.start_index > 0,
            }
        }
        await store.apply_batch(
            self._store_ref(meta),
            BatchRequest(
                structural_requests=[request],
                description=f"Insert {self.dimension.value.lower()} {self.start_index}:{self.end_index}",
            ),
        )
        return await self._measure(store, meta)


class DeleteDimensionAction(_DimensionAction):
    """Delete rows or columns in [start_index, end_index)."""

    kind: Literal["delete_dimension"] = "delete_dimension"

    def is_destructive(self) -> bool:
        return True

    def predict_scope(self, meta: SheetMetadata) -> ScopePrediction:
        size = meta.row_count if self.dimension == Dimension.ROWS else meta.column_count
        count = max(min(self.end_index, size) - self.start_index, 0)
        if count == 0:
            raise _outside_grid(f"{self.dimension.value.lower()} {self.start_index}:{self.end_index}", meta)
        return self._prediction(meta, count)

    async def apply(self, store: DocumentStore, meta: SheetMetadata) -> ApplyOutcome:
        request = {"deleteDimension": {"range": self._request(meta)}}
        await store.apply_batch(
            self._store_ref(meta),
            BatchRequest(
                structural_requests=[request],
                description=f"Delete {self.dimension.value.lower()} {self.start_index}:{self.end_index}",
            ),
        )
        return await self._measure(store, meta)


MutationAction = Annotated[
    Union[WriteValuesAction, ClearRangeAction, InsertDimensionAction, DeleteDimensionAction],
    Field(discriminator="kind"),
]

ACTION_TYPES: dict[ActionKind, type[BaseAction]] = {
    ActionKind.WRITE_VALUES: WriteValuesAction,
    ActionKind.CLEAR_RANGE: ClearRangeAction,
    ActionKind.INSERT_DIMENSION: InsertDimensionAction,
    ActionKind.DELETE_DIMENSION: DeleteDimensionAction,
}


def build_action(kind: Union[ActionKind, str], **params: Any) -> BaseAction:
    """Construct an action from its kind; unknown kinds fail with ValueError."""
    return ACTION_TYPES[ActionKind(kind)](**params)
