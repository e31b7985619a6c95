"""
Upload Record Model - Tracks background CV processing status.
"""
from enum import Enum
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UploadStage(str, Enum):
    """Stage of an upload in the processing pipeline."""
    RECEIVED = "received"
    EXTRACTING_TEXT = "extracting_text"
    UPLOADING_TO_CLOUD = "uploading_to_cloud"
    SAVING_TO_SHEETS = "saving_to_sheets"
    SENDING_EMAIL = "sending_email"
    COMPLETED = "completed"
    ERROR = "error"


PIPELINE_ORDER = [
    UploadStage.RECEIVED,
    UploadStage.EXTRACTING_TEXT,
    UploadStage.UPLOADING_TO_CLOUD,
    UploadStage.SAVING_TO_SHEETS,
    UploadStage.SENDING_EMAIL,
    UploadStage.COMPLETED,
]

STAGE_PROGRESS = {
    UploadStage.RECEIVED: 0,
    UploadStage.EXTRACTING_TEXT: 20,
    UploadStage.UPLOADING_TO_CLOUD: 40,
    UploadStage.SAVING_TO_SHEETS: 60,
    UploadStage.SENDING_EMAIL: 80,
    UploadStage.COMPLETED: 100,
}

TERMINAL_STAGES = {UploadStage.COMPLETED, UploadStage.ERROR}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileInfo(BaseModel):
    name: str
    type: str
    size: int


class SubmittedFields(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class UploadRecord(BaseModel):
    """
    Status/progress object for one submission, stored as JSON under
    ``upload:<id>``. ``version`` is bumped on every write and is what
    compare-and-set checks against.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    stage: UploadStage = UploadStage.RECEIVED
    progress: int = 0
    file_info: FileInfo = Field(alias="fileInfo")
    submitted: SubmittedFields = Field(default_factory=SubmittedFields, alias="fields")
    error: Optional[str] = None
    start_time: datetime = Field(default_factory=utcnow, alias="startTime")
    last_updated: datetime = Field(default_factory=utcnow, alias="lastUpdated")
    cv_url: Optional[str] = Field(default=None, alias="cvUrl")
    warnings: List[str] = Field(default_factory=list)
    retry_count: int = Field(default=0, alias="retryCount")
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def advance(self, stage: UploadStage) -> "UploadRecord":
        """Return a copy moved forward to ``stage``; backwards or terminal moves raise."""
        if stage == UploadStage.ERROR:
            raise ValueError("Use fail() to move a record to the error stage")
        if self.is_terminal:
            raise ValueError(f"Upload {self.id} is already {self.stage.value}")
        if PIPELINE_ORDER.index(stage) < PIPELINE_ORDER.index(self.stage):
            raise ValueError(f"Cannot move upload {self.id} from {self.stage.value} back to {stage.value}")
        return self.model_copy(update={"stage": stage, "progress": STAGE_PROGRESS[stage]})

    def fail(self, message: str) -> "UploadRecord":
        """Return a copy in the error stage. Progress stays at the failed stage's checkpoint."""
        if self.is_terminal:
            raise ValueError(f"Upload {self.id} is already {self.stage.value}")
        return self.model_copy(update={"stage": UploadStage.ERROR, "error": message or "Unknown error"})

    def restart(self) -> "UploadRecord":
        """Manual re-invocation of a failed run."""
        if self.stage != UploadStage.ERROR:
            raise ValueError(f"Only failed uploads can be retried (upload {self.id} is {self.stage.value})")
        return self.model_copy(update={
            "stage": UploadStage.RECEIVED,
            "progress": STAGE_PROGRESS[UploadStage.RECEIVED],
            "error": None,
            "cv_url": None,
            "warnings": [],
            "retry_count": self.retry_count + 1,
        })

    def with_warning(self, message: str) -> "UploadRecord":
        return self.model_copy(update={"warnings": [*self.warnings, message]})

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, raw) -> "UploadRecord":
        if isinstance(raw, (bytes, str)):
            return cls.model_validate_json(raw)
        return cls.model_validate(raw)
