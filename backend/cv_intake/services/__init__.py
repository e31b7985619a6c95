from .text_extractor import (
    extract_text,
    normalize_mime_type,
    SUPPORTED_MIME_TYPES
)
from .cv_parser import (
    GeminiCVStructurer,
    StructuringResult,
    parse_llm_response,
    apply_heuristics,
    extract_personal_info
)
from .storage import (
    StorageClient,
    SupabaseStorage,
    CloudinaryStorage,
    PLACEHOLDER_URL
)
from .sheets import (
    GoogleSheetClient,
    build_row
)
from .email import EmailSender
from .status_store import (
    UploadStatusStore,
    InMemoryStatusStore,
    RedisRestStatusStore
)
from .retry import with_retry
from .pipeline import (
    CVPipeline,
    PipelineClients,
    UploadPayload
)
from .jobs import JobRunner
from .clients import build_clients, close_clients

__all__ = [
    # Text extraction
    "extract_text",
    "normalize_mime_type",
    "SUPPORTED_MIME_TYPES",
    # Structured extraction
    "GeminiCVStructurer",
    "StructuringResult",
    "parse_llm_response",
    "apply_heuristics",
    "extract_personal_info",
    # Storage
    "StorageClient",
    "SupabaseStorage",
    "CloudinaryStorage",
    "PLACEHOLDER_URL",
    # Sheets
    "GoogleSheetClient",
    "build_row",
    # Email
    "EmailSender",
    # Status store
    "UploadStatusStore",
    "InMemoryStatusStore",
    "RedisRestStatusStore",
    # Pipeline
    "with_retry",
    "CVPipeline",
    "PipelineClients",
    "UploadPayload",
    "JobRunner",
    "build_clients",
    "close_clients"
]
