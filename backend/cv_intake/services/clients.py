"""
Builds the pipeline's collaborator handles from settings.
"""
import logging
from typing import Optional

from ..config import Settings
from .cv_parser import GeminiCVStructurer
from .email import EmailSender
from .pipeline import PipelineClients
from .sheets import GoogleSheetClient
from .status_store import InMemoryStatusStore, RedisRestStatusStore, UploadStatusStore
from .storage import CloudinaryStorage, StorageClient, SupabaseStorage

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> Optional[UploadStatusStore]:
    """Redis REST when credentials exist, in-memory when explicitly allowed, else None."""
    if settings.has_status_store:
        logger.info("[Clients] Using Redis REST status store")
        return RedisRestStatusStore(
            settings.kv_rest_api_url,
            settings.kv_rest_api_token,
            ttl_seconds=settings.status_ttl_seconds,
        )
    if settings.use_memory_store:
        logger.warning("[Clients] Using in-memory status store; records are lost on restart")
        return InMemoryStatusStore(ttl_seconds=settings.status_ttl_seconds)
    logger.error("[Clients] Status store not configured (KV_REST_API_URL / KV_REST_API_TOKEN)")
    return None


def build_storage(settings: Settings) -> Optional[StorageClient]:
    if settings.has_supabase:
        return SupabaseStorage(
            settings.supabase_url,
            settings.supabase_service_role_key,
            settings.storage_bucket,
        )
    if settings.has_cloudinary:
        return CloudinaryStorage(
            settings.cloudinary_cloud_name,
            settings.cloudinary_api_key,
            settings.cloudinary_api_secret,
            folder=settings.cloudinary_folder,
        )
    logger.warning("[Clients] No object storage configured - CV links will use a placeholder")
    return None


def build_sheets(settings: Settings) -> Optional[GoogleSheetClient]:
    info = settings.service_account_info()
    if not settings.google_sheet_id or not info:
        logger.warning("[Clients] Google Sheets not configured - rows will not be saved")
        return None
    return GoogleSheetClient(settings.google_sheet_id, info, tab=settings.google_sheet_tab)


def build_clients(settings: Settings) -> PipelineClients:
    structurer = None
    if settings.has_llm:
        structurer = GeminiCVStructurer(settings.gemini_api_key, model=settings.gemini_model)
    else:
        logger.warning("[Clients] GEMINI_API_KEY not set - heuristic extraction only")

    return PipelineClients(
        store=build_store(settings),
        structurer=structurer,
        storage=build_storage(settings),
        sheets=build_sheets(settings),
        email=EmailSender.from_settings(settings),
    )


async def close_clients(clients: PipelineClients) -> None:
    for resource in (clients.store, clients.storage):
        if resource is None:
            continue
        try:
            await resource.close()
        except Exception as e:
            logger.warning(f"[Clients] Error while closing {type(resource).__name__}: {e}")
