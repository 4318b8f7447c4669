"""Document store integration."""

from .client import GoogleSheetsClient
from .models import BatchRequest, BatchResult, CellGrid, DocumentRef, SheetMetadata
from .store import DocumentStore

__all__ = [
    "GoogleSheetsClient",
    "DocumentStore",
    "DocumentRef",
    "SheetMetadata",
    "CellGrid",
    "BatchRequest",
    "BatchResult",
]
