"""
CV Processing Pipeline

extract text -> structure (LLM + heuristics) -> store file -> append sheet
row -> send confirmation, with the upload record advanced before each stage.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..errors import EmailError, SheetError, StorageError
from ..models.upload_record import FileInfo, SubmittedFields, UploadRecord, UploadStage
from ..schemas.cv import ParsedCV
from .cv_parser import GeminiCVStructurer, apply_heuristics
from .email import EmailSender
from .retry import with_retry
from .sheets import GoogleSheetClient
from .status_store import UploadStatusStore
from .storage import PLACEHOLDER_URL, StorageClient
from .text_extractor import extract_text

logger = logging.getLogger(__name__)


@dataclass
class UploadPayload:
    """Everything the background run needs; kept in memory only."""
    data: bytes
    file_info: FileInfo
    fields: SubmittedFields


@dataclass
class PipelineClients:
    """Injectable collaborator handles. ``None`` means the step is not configured."""
    store: Optional[UploadStatusStore]
    structurer: Optional[GeminiCVStructurer] = None
    storage: Optional[StorageClient] = None
    sheets: Optional[GoogleSheetClient] = None
    email: Optional[EmailSender] = None
    extract_text: Callable[[bytes, str], str] = extract_text


class _RunSuperseded(Exception):
    """The record reached a terminal stage outside this run."""


@dataclass
class _RunState:
    upload_id: str
    warnings: List[str] = field(default_factory=list)
    cv_url: Optional[str] = None

    def warn(self, message: str) -> None:
        logger.warning(f"[Pipeline] {self.upload_id}: {message}")
        self.warnings.append(message)


class CVPipeline:
    def __init__(self, clients: PipelineClients, retry_attempts: int = 3, retry_base_delay: float = 1.0):
        self.clients = clients
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay

    async def _write(self, state: _RunState, stage: UploadStage) -> UploadRecord:
        warnings = list(state.warnings)

        def mutate(record: UploadRecord) -> UploadRecord:
            if record.is_terminal:
                raise _RunSuperseded(record.stage.value)
            updated = record.advance(stage)
            for message in warnings:
                updated = updated.with_warning(message)
            if state.cv_url is not None:
                updated = updated.model_copy(update={"cv_url": state.cv_url})
            return updated

        record = await self.clients.store.update(state.upload_id, mutate)
        # Pending warnings are only dropped once they are stored
        del state.warnings[:len(warnings)]
        logger.info(f"[Pipeline] {state.upload_id}: {stage.value} ({record.progress}%)")
        return record

    async def _fail(self, state: _RunState, message: str) -> Optional[UploadRecord]:
        warnings = state.warnings

        def mutate(record: UploadRecord) -> UploadRecord:
            if record.is_terminal:
                return record
            updated = record.fail(message)
            for warning in warnings:
                updated = updated.with_warning(warning)
            return updated

        try:
            return await self.clients.store.update(state.upload_id, mutate)
        except Exception as e:
            logger.error(f"[Pipeline] {state.upload_id}: could not record failure '{message}': {e}")
            return None

    async def _structure(self, state: _RunState, text: str) -> ParsedCV:
        structurer = self.clients.structurer
        if structurer is None or not structurer.enabled:
            state.warn("LLM not configured; using heuristic extraction only")
            cv = ParsedCV()
        else:
            result = await structurer.structure(text)
            if result.soft_failure:
                state.warn(f"Structured extraction fell back to empty result: {result.soft_failure}")
            cv = result.cv
        return apply_heuristics(cv, text)

    async def _store_file(self, state: _RunState, payload: UploadPayload) -> str:
        storage = self.clients.storage
        if storage is None:
            state.warn("Object storage not configured; using placeholder URL")
            return PLACEHOLDER_URL
        try:
            return await with_retry(
                lambda: storage.upload(payload.data, payload.file_info.name, payload.file_info.type),
                attempts=self.retry_attempts,
                base_delay=self.retry_base_delay,
                retry_on=(StorageError,),
                label=f"storage upload {state.upload_id}",
            )
        except StorageError as e:
            state.warn(f"Storage upload failed, continuing with placeholder URL: {e}")
            return PLACEHOLDER_URL

    async def _save_row(self, state: _RunState, cv: ParsedCV, payload: UploadPayload) -> None:
        sheets = self.clients.sheets
        if sheets is None:
            state.warn("Spreadsheet not configured; row not saved")
            return
        await with_retry(
            lambda: sheets.append_submission(cv, payload.fields, payload.file_info, state.cv_url),
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            retry_on=(SheetError,),
            label=f"sheet append {state.upload_id}",
        )

    async def _notify(self, state: _RunState, payload: UploadPayload) -> None:
        sender = self.clients.email
        if sender is None or not sender.enabled:
            state.warn("Email not configured; confirmation skipped")
            return
        if not payload.fields.email:
            state.warn("No applicant email submitted; confirmation skipped")
            return
        try:
            await sender.send_confirmation(payload.fields.name, payload.fields.email, payload.file_info.name)
        except EmailError as e:
            state.warn(str(e))

    async def run(self, upload_id: str, payload: UploadPayload) -> Optional[UploadRecord]:
        """
        Process one upload to completion.

        Any fatal error moves the record to ``error`` and skips the remaining
        stages. Returns the final record (None if even the failure could not
        be written).
        """
        state = _RunState(upload_id)
        try:
            await self._write(state, UploadStage.EXTRACTING_TEXT)
            text = await asyncio.to_thread(self.clients.extract_text, payload.data, payload.file_info.type)
            cv = await self._structure(state, text)

            await self._write(state, UploadStage.UPLOADING_TO_CLOUD)
            state.cv_url = await self._store_file(state, payload)

            await self._write(state, UploadStage.SAVING_TO_SHEETS)
            await self._save_row(state, cv, payload)

            await self._write(state, UploadStage.SENDING_EMAIL)
            await self._notify(state, payload)

            record = await self._write(state, UploadStage.COMPLETED)
            logger.info(f"[Pipeline] {upload_id}: processing completed")
            return record
        except _RunSuperseded as e:
            logger.warning(f"[Pipeline] {upload_id}: record already {e}; abandoning run")
            return await self.clients.store.get(upload_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"[Pipeline] {upload_id}: processing failed: {message}", exc_info=True)
            return await self._fail(state, message)
