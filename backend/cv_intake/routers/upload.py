"""
Upload Router - CV intake, status polling and manual retry
"""
import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status

from ..config import Settings
from ..errors import ConfigurationError, ValidationError
from ..models.upload_record import FileInfo, SubmittedFields, UploadRecord
from ..schemas.upload import ErrorResponse, RetryResponse, StatusResponse, UploadResponse
from ..services.jobs import JobRunner
from ..services.pipeline import UploadPayload
from ..services.text_extractor import SUPPORTED_MIME_TYPES, normalize_mime_type

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload", tags=["Upload"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# ============================================================================
# Dependencies
# ============================================================================

def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_runner(request: Request) -> JobRunner:
    """The job runner exists only when a status store is configured."""
    runner = getattr(request.app.state, "runner", None)
    if runner is None:
        raise ConfigurationError(
            "Status store not configured. Set KV_REST_API_URL and KV_REST_API_TOKEN "
            "(or USE_MEMORY_STORE=true for local development)."
        )
    return runner


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _status_body(record: UploadRecord) -> dict:
    return record.model_dump(mode="json", by_alias=True, exclude_none=True, exclude={"version"})


# ============================================================================
# Endpoints
# ============================================================================

@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=UploadResponse, responses={
    **ERROR_RESPONSES, 413: {"model": ErrorResponse}, 415: {"model": ErrorResponse},
})
async def upload_cv(
    file: Optional[UploadFile] = File(None),
    name: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    phone: Optional[str] = Form(None),
    runner: JobRunner = Depends(get_runner),
    settings: Settings = Depends(get_settings_dep),
):
    """
    Accept a CV and start background processing.

    The response only acknowledges receipt; extraction, storage, the
    spreadsheet row and the confirmation email happen afterwards and are
    observable through ``GET /upload?id=``.
    """
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")

    mime_type = normalize_mime_type(file.content_type or "")
    if mime_type not in SUPPORTED_MIME_TYPES:
        raise ValidationError(
            f"Unsupported file type: {file.content_type or 'unknown'}. Please upload a PDF, DOCX or TXT file.",
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
        )

    # Read one byte past the limit so oversize files are detected without buffering them whole
    data = await file.read(settings.max_upload_bytes + 1)
    if not data:
        raise ValidationError("Uploaded file is empty")
    if len(data) > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes / (1024 * 1024)
        raise ValidationError(
            f"File size must be less than {limit_mb:g}MB",
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        )

    upload_id = secrets.token_urlsafe(16)
    file_info = FileInfo(name=file.filename, type=mime_type, size=len(data))
    fields = SubmittedFields(name=_clean(name), email=_clean(email), phone=_clean(phone))

    await runner.store.set(UploadRecord(id=upload_id, file_info=file_info, submitted=fields))
    logger.info(f"[Upload] Received {file_info.name} ({file_info.size} bytes) as {upload_id}")

    runner.start(upload_id, UploadPayload(data=data, file_info=file_info, fields=fields))

    return UploadResponse(uploadId=upload_id, fileInfo=file_info, fields=fields)


@router.get("", response_model=StatusResponse, responses=ERROR_RESPONSES)
async def get_upload_status_by_query(
    id: Optional[str] = Query(None, description="Upload id returned by POST /upload"),
    runner: JobRunner = Depends(get_runner),
):
    """Poll processing status (query-string form)."""
    if not id:
        raise ValidationError("Missing upload id")
    record = await runner.get_status(id)
    return StatusResponse(status=_status_body(record))


@router.get("/{upload_id}", response_model=StatusResponse, responses=ERROR_RESPONSES)
async def get_upload_status(upload_id: str, runner: JobRunner = Depends(get_runner)):
    """Poll processing status (path form)."""
    record = await runner.get_status(upload_id)
    return StatusResponse(status=_status_body(record))


@router.post("/{upload_id}/retry", status_code=status.HTTP_202_ACCEPTED, response_model=RetryResponse, responses={
    **ERROR_RESPONSES, 409: {"model": ErrorResponse},
})
async def retry_upload(upload_id: str, runner: JobRunner = Depends(get_runner)):
    """Re-run a failed upload from the beginning using the retained file."""
    record = await runner.retry(upload_id)
    return RetryResponse(uploadId=upload_id, retryCount=record.retry_count)
