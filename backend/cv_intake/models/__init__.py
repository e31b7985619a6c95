from .upload_record import (
    UploadRecord, UploadStage, FileInfo, SubmittedFields,
    PIPELINE_ORDER, STAGE_PROGRESS, TERMINAL_STAGES,
)

__all__ = [
    "UploadRecord", "UploadStage", "FileInfo", "SubmittedFields",
    "PIPELINE_ORDER", "STAGE_PROGRESS", "TERMINAL_STAGES",
]
