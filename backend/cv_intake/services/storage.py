"""
Object Storage Upload Service

Uploads the original CV file and returns a retrievable URL. Supabase Storage
is used over plain HTTP; Cloudinary is the alternative backend.
"""
import asyncio
import io
import logging
import re
import time
from typing import Optional

import cloudinary
import cloudinary.uploader
import httpx

from ..errors import StorageError

logger = logging.getLogger(__name__)

PLACEHOLDER_URL = "N/A"


def storage_object_name(filename: str, now_ms: Optional[int] = None) -> str:
    """Timestamp-prefixed, sanitized object name, e.g. ``1718000000000-Jane-Doe-CV.pdf``."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    sanitized = re.sub(r"[^a-zA-Z0-9.-]", "-", filename or "cv")
    return f"{now_ms}-{sanitized}"


class StorageClient:
    name = "storage"

    async def upload(self, data: bytes, filename: str, mime_type: str) -> str:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class SupabaseStorage(StorageClient):
    """Supabase Storage with an explicit Content-Length header."""

    name = "supabase"

    def __init__(self, supabase_url: str, service_key: str, bucket: str, client: Optional[httpx.AsyncClient] = None):
        self.supabase_url = supabase_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self._client = client or httpx.AsyncClient(timeout=120.0)

    async def upload(self, data: bytes, filename: str, mime_type: str) -> str:
        """
        Upload bytes to the bucket.

        Returns:
            Public URL of the uploaded object

        Raises:
            StorageError on upload failure
        """
        object_name = storage_object_name(filename)
        try:
            response = await self._client.post(
                f"{self.supabase_url}/storage/v1/object/{self.bucket}/{object_name}",
                headers={
                    "Authorization": f"Bearer {self.service_key}",
                    "apikey": self.service_key,
                    "Content-Type": mime_type or "application/octet-stream",
                    "Content-Length": str(len(data)),
                    "Cache-Control": "max-age=31536000",
                },
                content=data,
            )
        except httpx.TimeoutException as e:
            raise StorageError("Upload timeout - file too large or slow connection") from e
        except httpx.HTTPError as e:
            raise StorageError(f"Upload failed: {e}") from e

        if response.status_code not in (200, 201):
            error_detail = response.text[:500] if response.text else "Unknown error"
            raise StorageError(f"Supabase upload failed ({response.status_code}): {error_detail}")

        public_url = f"{self.supabase_url}/storage/v1/object/public/{self.bucket}/{object_name}"
        logger.info(f"[Storage] Uploaded {filename} to {public_url}")
        return public_url

    async def close(self) -> None:
        await self._client.aclose()


class CloudinaryStorage(StorageClient):
    """Cloudinary raw-resource upload. The SDK is blocking, so it runs in a thread."""

    name = "cloudinary"

    def __init__(self, cloud_name: str, api_key: str, api_secret: str, folder: str = "cv-intake/cvs"):
        self.folder = folder
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )
        logger.info(f"[Storage] Cloudinary initialized: {cloud_name}")

    async def upload(self, data: bytes, filename: str, mime_type: str) -> str:
        object_name = storage_object_name(filename)
        try:
            result = await asyncio.to_thread(
                cloudinary.uploader.upload,
                io.BytesIO(data),
                folder=self.folder,
                public_id=object_name,
                resource_type="raw",  # For non-image/video files
            )
        except Exception as e:
            raise StorageError(f"Cloudinary upload failed: {e}") from e

        url = result.get("secure_url")
        if not url:
            raise StorageError("Cloudinary upload returned no URL")
        logger.info(f"[Storage] Uploaded {filename} to {url}")
        return url
