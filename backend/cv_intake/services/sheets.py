"""
Google Sheets Service - appends one row per processed CV
"""
import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any, List, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..errors import SheetError
from ..models.upload_record import FileInfo, SubmittedFields
from ..schemas.cv import ParsedCV
from .storage import PLACEHOLDER_URL

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

HEADER_ROW = [
    "Submitted At", "Name", "Email", "Phone", "Filename",
    "Education", "Experience", "Projects", "CV",
]


FORMULA_PREFIXES = ("=", "+", "-", "@")


def escape_cell(value: str) -> str:
    """Quote text that USER_ENTERED would otherwise evaluate as a formula."""
    if value and value.startswith(FORMULA_PREFIXES):
        return f"'{value}"
    return value


def _join(values: List[Optional[str]]) -> str:
    cleaned = [v for v in values if v]
    return escape_cell("; ".join(cleaned)) if cleaned else "-"


def build_row(
    cv: ParsedCV,
    fields: SubmittedFields,
    file_info: FileInfo,
    cv_url: str,
    submitted_at: Optional[datetime] = None,
) -> List[Any]:
    """Flatten a submission into one spreadsheet row. Submitted fields win over parsed ones."""
    submitted_at = submitted_at or datetime.now(timezone.utc)
    info = cv.personal_info

    education = _join([
        " - ".join(p for p in (e.degree, e.institution) if p) for e in cv.education
    ])
    experience = _join([
        " @ ".join(p for p in (e.title, e.company) if p) for e in cv.experience
    ])
    projects = _join([p.name for p in cv.projects])

    if cv_url and cv_url != PLACEHOLDER_URL:
        safe_url = cv_url.replace('"', '""')
        link = f'=HYPERLINK("{safe_url}", "Click to Download CV")'
    else:
        link = PLACEHOLDER_URL

    return [
        submitted_at.isoformat(),
        escape_cell(fields.name or info.name or "N/A"),
        escape_cell(fields.email or info.email or "N/A"),
        escape_cell(fields.phone or info.phone or "N/A"),
        escape_cell(file_info.name or "N/A"),
        education,
        experience,
        projects,
        link,
    ]


class GoogleSheetClient:
    """Service-account client for one spreadsheet tab. API calls are blocking and run in a thread."""

    def __init__(self, spreadsheet_id: str, service_account_info: dict, tab: str = "PersonalInfo", service: Any = None):
        self.spreadsheet_id = spreadsheet_id
        self.service_account_info = service_account_info
        self.tab = tab
        self._service = service
        self._tab_ready = False
        # One httplib2 transport sits behind the service and it is not thread-safe
        self._lock = threading.Lock()

    def _get_service(self):
        if self._service is None:
            credentials = service_account.Credentials.from_service_account_info(
                self.service_account_info, scopes=SCOPES
            )
            self._service = build("sheets", "v4", credentials=credentials, cache_discovery=False)
        return self._service

    def _ensure_tab(self, service) -> None:
        """Create the tab (with a header row) if the spreadsheet does not have it yet."""
        if self._tab_ready:
            return
        meta = service.spreadsheets().get(
            spreadsheetId=self.spreadsheet_id,
            fields="sheets.properties.title",
        ).execute()
        titles = {s["properties"]["title"] for s in meta.get("sheets", [])}
        if self.tab not in titles:
            logger.info(f"[Sheets] Sheet '{self.tab}' not found. Creating new sheet.")
            service.spreadsheets().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={"requests": [{"addSheet": {"properties": {"title": self.tab}}}]},
            ).execute()
            service.spreadsheets().values().update(
                spreadsheetId=self.spreadsheet_id,
                range=f"{self.tab}!A1",
                valueInputOption="RAW",
                body={"values": [HEADER_ROW]},
            ).execute()
        self._tab_ready = True

    def _append_sync(self, row: List[Any]) -> None:
        with self._lock:
            service = self._get_service()
            self._ensure_tab(service)
            service.spreadsheets().values().append(
                spreadsheetId=self.spreadsheet_id,
                range=f"{self.tab}!A:I",
                valueInputOption="USER_ENTERED",
                insertDataOption="INSERT_ROWS",
                body={"values": [row]},
            ).execute()

    async def append_submission(self, cv: ParsedCV, fields: SubmittedFields, file_info: FileInfo, cv_url: str) -> None:
        """
        Append one row for the submission.

        Raises:
            SheetError: authentication or API failure
        """
        row = build_row(cv, fields, file_info, cv_url)
        try:
            await asyncio.to_thread(self._append_sync, row)
        except HttpError as e:
            raise SheetError(f"Google Sheets API error ({e.resp.status}): {e}") from e
        except Exception as e:
            raise SheetError(f"Failed to save CV to Google Sheets: {e}") from e
        logger.info(f"[Sheets] Row appended to '{self.tab}' for {file_info.name}")
