"""
Supervised background jobs for the CV pipeline.

Each upload gets one asyncio task whose handle is kept until it finishes.
A run that is cancelled or crashes outside the pipeline's own error
handling is still recorded as failed, and the payload of a failed run is
kept (bounded) so the upload can be retried without re-uploading.
"""
import asyncio
import logging
from collections import OrderedDict
from datetime import timedelta
from typing import Dict, Optional, Set

from ..errors import NotFound, ValidationError
from ..models.upload_record import UploadRecord, UploadStage, utcnow
from .pipeline import CVPipeline, UploadPayload
from .status_store import UploadStatusStore

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Processing interrupted"
TIMED_OUT_MESSAGE = "Processing timed out"


class JobRunner:
    def __init__(
        self,
        pipeline: CVPipeline,
        store: UploadStatusStore,
        retained_payloads: int = 50,
        max_manual_retries: int = 3,
        stale_after_seconds: int = 300,
    ):
        self.pipeline = pipeline
        self.store = store
        self.retained_payloads = retained_payloads
        self.max_manual_retries = max_manual_retries
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._payloads: "OrderedDict[str, UploadPayload]" = OrderedDict()
        self._housekeeping: Set[asyncio.Task] = set()

    def is_running(self, upload_id: str) -> bool:
        task = self._tasks.get(upload_id)
        return task is not None and not task.done()

    def start(self, upload_id: str, payload: UploadPayload) -> asyncio.Task:
        """Launch the pipeline for ``upload_id`` without awaiting it."""
        if self.is_running(upload_id):
            raise ValidationError(f"Upload {upload_id} is already being processed", status_code=409)
        task = asyncio.create_task(self.pipeline.run(upload_id, payload), name=f"cv-pipeline-{upload_id}")
        self._tasks[upload_id] = task
        task.add_done_callback(lambda t: self._on_done(upload_id, payload, t))
        logger.info(f"[Jobs] Started processing for upload {upload_id}")
        return task

    def _retain(self, upload_id: str, payload: UploadPayload) -> None:
        self._payloads[upload_id] = payload
        self._payloads.move_to_end(upload_id)
        while len(self._payloads) > self.retained_payloads:
            dropped, _ = self._payloads.popitem(last=False)
            logger.debug(f"[Jobs] Dropped retained payload for {dropped}")

    def _on_done(self, upload_id: str, payload: UploadPayload, task: asyncio.Task) -> None:
        if self._tasks.get(upload_id) is task:
            del self._tasks[upload_id]

        if task.cancelled():
            logger.warning(f"[Jobs] Processing for {upload_id} was cancelled")
            self._retain(upload_id, payload)
            self._spawn(self._mark_failed(upload_id, INTERRUPTED_MESSAGE))
            return

        error = task.exception()
        if error is not None:
            logger.error(f"[Jobs] Processing for {upload_id} crashed: {error}", exc_info=error)
            self._retain(upload_id, payload)
            self._spawn(self._mark_failed(upload_id, f"{INTERRUPTED_MESSAGE}: {error}"))
            return

        record = task.result()
        if record is None or record.stage == UploadStage.ERROR:
            self._retain(upload_id, payload)
        else:
            self._payloads.pop(upload_id, None)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._housekeeping.add(task)
        task.add_done_callback(self._housekeeping.discard)

    async def _mark_failed(self, upload_id: str, message: str) -> Optional[UploadRecord]:
        try:
            return await self.store.update(upload_id, lambda r: r if r.is_terminal else r.fail(message))
        except Exception as e:
            logger.error(f"[Jobs] Could not mark {upload_id} as failed: {e}")
            return None

    async def get_status(self, upload_id: str) -> UploadRecord:
        """
        Current record for ``upload_id``.

        A non-terminal record that has not been touched for longer than the
        stale threshold and has no live task here is moved to ``error``.

        Raises:
            NotFound: unknown or expired id
        """
        record = await self.store.get(upload_id)
        if record is None:
            raise NotFound(f"Upload {upload_id} not found")

        if not record.is_terminal and not self.is_running(upload_id):
            if utcnow() - record.last_updated > self.stale_after:
                logger.warning(f"[Jobs] Upload {upload_id} stuck in {record.stage.value}; marking as timed out")
                updated = await self._mark_failed(upload_id, TIMED_OUT_MESSAGE)
                if updated is not None:
                    record = updated
        return record

    async def retry(self, upload_id: str) -> UploadRecord:
        """
        Manually re-run a failed upload from the start.

        Raises:
            NotFound: unknown or expired id
            ValidationError: not failed (409), retry limit reached or payload gone (400)
        """
        record = await self.store.get(upload_id)
        if record is None:
            raise NotFound(f"Upload {upload_id} not found")
        if record.stage != UploadStage.ERROR:
            raise ValidationError(f"Upload is {record.stage.value}; only failed uploads can be retried", status_code=409)
        if record.retry_count >= self.max_manual_retries:
            raise ValidationError(
                f"Maximum retry attempts ({self.max_manual_retries}) reached. Please upload the CV again."
            )
        payload = self._payloads.get(upload_id)
        if payload is None:
            raise ValidationError("Original file is no longer available. Please upload the CV again.")

        def restart(current: UploadRecord) -> UploadRecord:
            if current.stage != UploadStage.ERROR:
                raise ValidationError(f"Upload is {current.stage.value}; only failed uploads can be retried", status_code=409)
            return current.restart()

        restarted = await self.store.update(upload_id, restart)
        self._payloads.pop(upload_id, None)
        self.start(upload_id, payload)
        logger.info(f"[Jobs] Retry {restarted.retry_count} started for upload {upload_id}")
        return restarted

    def cancel(self, upload_id: str) -> bool:
        task = self._tasks.get(upload_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def join(self, upload_id: str) -> Optional[UploadRecord]:
        """Wait for the running task of ``upload_id`` (and its bookkeeping) to finish."""
        task = self._tasks.get(upload_id)
        result = None
        if task is not None:
            try:
                result = await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        await asyncio.sleep(0)
        if self._housekeeping:
            await asyncio.gather(*list(self._housekeeping), return_exceptions=True)
        return result

    async def shutdown(self) -> None:
        """Cancel every running job and wait until their records are marked."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        if tasks:
            logger.info(f"[Jobs] Cancelling {len(tasks)} running job(s)")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await asyncio.sleep(0)
        if self._housekeeping:
            await asyncio.gather(*list(self._housekeeping), return_exceptions=True)
