from .upload import router as upload_router
from .system import router as system_router

__all__ = ["upload_router", "system_router"]
