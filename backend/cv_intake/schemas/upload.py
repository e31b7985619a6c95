"""
Upload Schemas - Request/Response models for the upload API
"""
from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel

from ..models.upload_record import FileInfo, SubmittedFields


class UploadResponse(BaseModel):
    """Acknowledgement returned before background processing finishes"""
    success: bool = True
    uploadId: str
    fileInfo: FileInfo
    fields: SubmittedFields


class StatusResponse(BaseModel):
    success: bool = True
    status: Dict[str, Any]


class RetryResponse(BaseModel):
    success: bool = True
    uploadId: str
    retryCount: int
    message: str = "Processing restarted"


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: Optional[str] = None


class HealthConfig(BaseModel):
    hasLlmKey: bool
    hasBucket: bool
    hasSheet: bool
    hasEmail: bool
    hasStatusStore: bool


class HealthResponse(BaseModel):
    success: bool = True
    message: str = "API is healthy"
    timestamp: datetime
    env: str
    config: HealthConfig


class DebugResponse(BaseModel):
    success: bool = True
    message: str = "API is working"
    request: Dict[str, Any]


class EchoRequestInfo(BaseModel):
    method: str
    url: str
    headers: Dict[str, str]
    query: Dict[str, str]


class EchoResponse(BaseModel):
    success: bool = True
    message: str = "Echo endpoint responding"
    timestamp: datetime
    request: EchoRequestInfo


__all__ = [
    "UploadResponse", "StatusResponse", "RetryResponse", "ErrorResponse",
    "HealthConfig", "HealthResponse", "DebugResponse", "EchoRequestInfo", "EchoResponse",
]
