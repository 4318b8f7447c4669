"""Outbound port: the only document store operations the engine relies on."""

from typing import Optional, Protocol

from .models import BatchRequest, BatchResult, CellGrid, DocumentRef, SheetMetadata


class DocumentStore(Protocol):
    """Remote, non-transactional document store.

    Every method is a suspension point; implementations raise
    ``sheetguard.errors.TransportError`` on remote failures.
    """

    async def get_sheet_metadata(self, ref: DocumentRef) -> Optional[SheetMetadata]:
        """Dimensions of the addressed sheet, or None if it does not exist."""
        ...

    async def read_cells(self, ref: DocumentRef, range_notation: str) -> CellGrid:
        ...

    async def apply_batch(self, ref: DocumentRef, batch: BatchRequest) -> BatchResult:
        ...

    async def copy_document(self, ref: DocumentRef, name: str) -> str:
        """Create an independent copy and return its document id."""
        ...

    async def restore_from_copy(self, copy_id: str, name: str) -> DocumentRef:
        ...

    async def delete_copy(self, copy_id: str) -> None:
        ...

    def document_url(self, document_id: str) -> str:
        ...
