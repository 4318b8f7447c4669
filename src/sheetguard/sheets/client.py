"""Google Sheets / Drive implementation of the document store."""

import asyncio
import logging
from typing import Any, Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config import settings
from ..errors import classify_http_error
from .models import BatchRequest, BatchResult, CellGrid, DocumentRef, SheetMetadata
from .ranges import parse_range

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
]


class GoogleSheetsClient:
    """Client for interacting with Google Sheets and Drive APIs."""

    def __init__(self, folder_id: Optional[str] = None):
        self._service = None
        self._drive = None
        self._credentials = None
        self.folder_id = folder_id if folder_id is not None else settings.snapshot_folder_id

    def _get_credentials(self) -> Credentials:
        """Get or refresh OAuth2 credentials."""
        creds = None

        if settings.google_token_path.exists():
            creds = Credentials.from_authorized_user_file(str(settings.google_token_path), SCOPES)

        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                creds.refresh(Request())
            else:
                if not settings.google_credentials_path.exists():
                    raise FileNotFoundError(
                        f"Google credentials file not found at {settings.google_credentials_path}. "
                        "Please download it from Google Cloud Console."
                    )
                flow = InstalledAppFlow.from_client_secrets_file(
                    str(settings.google_credentials_path), SCOPES
                )
                creds = flow.run_local_server(port=0)

            # Save credentials for next run
            settings.google_token_path.parent.mkdir(parents=True, exist_ok=True)
            with open(settings.google_token_path, "w") as token:
                token.write(creds.to_json())

        return creds

    @property
    def service(self):
        """Get or create the Sheets API service."""
        if self._service is None:
            self._credentials = self._credentials or self._get_credentials()
            self._service = build("sheets", "v4", credentials=self._credentials)
        return self._service

    @property
    def drive(self):
        """Get or create the Drive API service."""
        if self._drive is None:
            self._credentials = self._credentials or self._get_credentials()
            self._drive = build("drive", "v3", credentials=self._credentials)
        return self._drive

    async def _execute(self, request, operation: str) -> dict[str, Any]:
        """Run a blocking API request off the event loop, classifying failures."""
        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as e:
            logger.error(f"Google API call failed during {operation}: {e}")
            raise classify_http_error(e, operation)

    async def get_sheet_metadata(self, ref: DocumentRef) -> Optional[SheetMetadata]:
        result = await self._execute(
            self.service.spreadsheets().get(
                spreadsheetId=ref.document_id, fields="sheets.properties"
            ),
            "read sheet metadata",
        )
        sheets = [s["properties"] for s in result.get("sheets", [])]
        if not sheets:
            return None

        wanted = ref.effective_sheet
        props = next((p for p in sheets if p["title"] == wanted), None) if wanted else sheets[0]
        if props is None:
            return None

        grid = props.get("gridProperties", {})
        return SheetMetadata(
            sheet_id=props.get("sheetId", 0),
            title=props["title"],
            row_count=grid.get("rowCount", 0),
            column_count=grid.get("columnCount", 0),
        )

    async def read_cells(self, ref: DocumentRef, range_notation: str) -> CellGrid:
        qualified = ref.qualify(range_notation)
        result = await self._execute(
            self.service.spreadsheets()
            .values()
            .get(
                spreadsheetId=ref.document_id,
                range=qualified,
                valueRenderOption="FORMULA",
            ),
            "read range",
        )
        # The API echoes the range actually covered, which anchors the grid
        grid_range = parse_range(result.get("range", qualified))
        return CellGrid(
            sheet_name=grid_range.sheet_name or ref.effective_sheet,
            origin_row=grid_range.start_row,
            origin_col=grid_range.start_col,
            values=result.get("values", []),
        )

    async def apply_batch(self, ref: DocumentRef, batch: BatchRequest) -> BatchResult:
        outcome = BatchResult()
        if batch.empty:
            return outcome

        if batch.value_updates:
            body = {
                "valueInputOption": "USER_ENTERED",
                "data": [
                    {"range": ref.qualify(update["range"]), "values": update["values"]}
                    for update in batch.value_updates
                ],
            }
            result = await self._execute(
                self.service.spreadsheets()
                .values()
                .batchUpdate(spreadsheetId=ref.document_id, body=body),
                "write values",
            )
            outcome.updated_cells += result.get("totalUpdatedCells", 0)
            outcome.updated_rows += result.get("totalUpdatedRows", 0)
            outcome.updated_columns += result.get("totalUpdatedColumns", 0)
            outcome.updated_ranges.extend(
                r["updatedRange"] for r in result.get("responses", []) if "updatedRange" in r
            )

        if batch.structural_requests:
            result = await self._execute(
                self.service.spreadsheets().batchUpdate(
                    spreadsheetId=ref.document_id,
                    body={"requests": batch.structural_requests},
                ),
                "apply batch update",
            )
            outcome.replies = result.get("replies", [])

        logger.info(
            f"Applied batch to {ref.document_id}: {len(batch.value_updates)} value updates, "
            f"{len(batch.structural_requests)} structural requests"
        )
        return outcome

    async def copy_document(self, ref: DocumentRef, name: str) -> str:
        body: dict[str, Any] = {"name": name}
        if self.folder_id:
            body["parents"] = [self.folder_id]
        result = await self._execute(
            self.drive.files().copy(fileId=ref.document_id, body=body, fields="id"),
            "copy document",
        )
        copy_id = result.get("id")
        if not copy_id:
            raise RuntimeError("Drive API did not return a file ID for the copy")
        return copy_id

    async def restore_from_copy(self, copy_id: str, name: str) -> DocumentRef:
        restored_id = await self.copy_document(DocumentRef(document_id=copy_id), name)
        return DocumentRef(document_id=restored_id)

    async def delete_copy(self, copy_id: str) -> None:
        await self._execute(self.drive.files().delete(fileId=copy_id), "delete copy")

    def document_url(self, document_id: str) -> str:
        return f"https://docs.google.com/spreadsheets/d/{document_id}"
