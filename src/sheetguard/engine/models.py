"""Data models for guarded mutations."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..sheets.models import DocumentRef
from ..sheets.ranges import A1Range


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class Fingerprint(BaseModel):
    """Observed state of a document range. Every field is always populated."""

    row_count: int
    column_count: int
    title: str
    checksum: str
    checksum_range: str
    first_row_values: list[Any] = Field(default_factory=list)


class ExpectedState(BaseModel):
    """Caller-declared expectation. A field left as None is not checked."""

    row_count: Optional[int] = Field(default=None, ge=0)
    column_count: Optional[int] = Field(default=None, ge=0)
    title: Optional[str] = None
    checksum: Optional[str] = None
    checksum_range: A1Range = None  # where the checksum was taken; not compared
    first_row_values: Optional[list[Any]] = None


class EffectScope(BaseModel):
    """Caller-declared ceiling on how much one request may change."""

    model_config = ConfigDict(frozen=True)

    max_cells_affected: Optional[int] = Field(default=None, gt=0)  # None -> settings default
    max_rows_affected: Optional[int] = Field(default=None, gt=0)
    max_columns_affected: Optional[int] = Field(default=None, gt=0)
    require_explicit_range: bool = False


class Verbosity(str, Enum):
    """Requested diff detail."""

    MINIMAL = "minimal"
    STANDARD = "standard"
    DETAILED = "detailed"


class DiffTier(str, Enum):
    METADATA = "METADATA"
    SAMPLE = "SAMPLE"
    FULL = "FULL"


class SafetyOptions(BaseModel):
    """Per-request safety controls, built by the tool handler."""

    dry_run: bool = False
    expected_state: Optional[ExpectedState] = None
    transaction_id: Optional[str] = None
    auto_snapshot: bool = True
    require_snapshot: bool = False  # always snapshot, and refuse to write without one
    snapshot_name: Optional[str] = None
    effect_scope: Optional[EffectScope] = None
    verbosity: Verbosity = Verbosity.MINIMAL
    diff_cost_budget: Optional[int] = Field(default=None, gt=0)
    sample_size: Optional[int] = Field(default=None, gt=0)


class ScopePrediction(BaseModel):
    """Blast radius of a request, predicted or measured."""

    cells: int = 0
    rows: int = 0
    columns: int = 0
    range: Optional[str] = None  # A1 range the request addresses
    bounded: bool = True  # False for sheet-wide / open-ended ranges
    explicit: bool = False  # caller supplied explicit start/end indices


class CellChangeType(str, Enum):
    VALUE = "value"
    FORMULA = "formula"
    FORMAT = "format"
    NOTE = "note"


class CellChange(BaseModel):
    """Before/after of a single cell."""

    cell: str
    before: Any = None
    after: Any = None
    type: CellChangeType = CellChangeType.VALUE


class ApplyOutcome(BaseModel):
    """Exact counts from the store after an action was applied."""

    actual_cells: int = 0
    actual_rows: int = 0
    actual_columns: int = 0
    changed_cells: Optional[list[CellChange]] = None


class StructureChange(BaseModel):
    """Structural delta derived from the before/after fingerprints."""

    title_changed: bool = False
    row_delta: int = 0
    column_delta: int = 0


class MetadataSummary(BaseModel):
    rows_changed: int
    estimated_cells_changed: int


class MetadataDiff(BaseModel):
    tier: Literal["METADATA"] = "METADATA"
    before: Fingerprint
    after: Fingerprint
    summary: MetadataSummary
    structure: StructureChange = Field(default_factory=StructureChange)


class DiffSamples(BaseModel):
    first_rows: list[CellChange] = Field(default_factory=list)
    last_rows: list[CellChange] = Field(default_factory=list)
    random_rows: list[CellChange] = Field(default_factory=list)


class SampleSummary(BaseModel):
    rows_changed: int
    cells_sampled: int


class SampleDiff(BaseModel):
    tier: Literal["SAMPLE"] = "SAMPLE"
    samples: DiffSamples
    summary: SampleSummary
    structure: StructureChange = Field(default_factory=StructureChange)


class FullSummary(BaseModel):
    cells_changed: int
    cells_added: int
    cells_removed: int


class FullDiff(BaseModel):
    tier: Literal["FULL"] = "FULL"
    changes: list[CellChange]
    summary: FullSummary
    structure: StructureChange = Field(default_factory=StructureChange)


Diff = Annotated[Union[MetadataDiff, SampleDiff, FullDiff], Field(discriminator="tier")]


class MutationReport(BaseModel):
    """Outcome of one guarded mutation. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    cells_affected: int
    rows_affected: Optional[int] = None
    columns_affected: Optional[int] = None
    diff: Optional[Diff] = None
    reversible: bool = False
    revert_snapshot_id: Optional[str] = None
    dry_run: Optional[bool] = None
    warnings: list[str] = Field(default_factory=list)


class Snapshot(BaseModel):
    """An independent copy of a document taken before a mutation."""

    id: str
    name: str
    created_at: datetime = Field(default_factory=_utc_now)
    document_ref: DocumentRef
    external_copy_ref: str


class TransactionState(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    CONFLICTED = "conflicted"
    EXPIRED = "expired"


class Transaction(BaseModel):
    """Idempotency record for a caller-supplied transaction id."""

    transaction_id: str
    request_fingerprint: str
    result_hash: Optional[str] = None
    created_at: datetime = Field(default_factory=_utc_now)
    expires_at: datetime
    state: TransactionState = TransactionState.PENDING
    report: Optional[MutationReport] = None
