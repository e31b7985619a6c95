"""
System Router - health check and request debugging endpoints
"""
from fastapi import APIRouter, Request

from ..models.upload_record import utcnow
from ..schemas.upload import DebugResponse, EchoRequestInfo, EchoResponse, HealthConfig, HealthResponse

router = APIRouter(tags=["System"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Report which integrations are configured. Only booleans, never the credentials themselves."""
    settings = request.app.state.settings
    return HealthResponse(
        timestamp=utcnow(),
        env=settings.environment,
        config=HealthConfig(
            hasLlmKey=settings.has_llm,
            hasBucket=settings.has_supabase or settings.has_cloudinary,
            hasSheet=settings.has_sheet,
            hasEmail=settings.has_email,
            hasStatusStore=settings.has_status_store or settings.use_memory_store,
        ),
    )


@router.get("/test", response_model=DebugResponse)
async def test_endpoint(request: Request):
    return DebugResponse(request={
        "method": request.method,
        "url": str(request.url),
        "headers": list(request.headers.keys()),
    })


@router.api_route("/echo", methods=["GET", "POST"], response_model=EchoResponse)
async def echo(request: Request):
    """Echo the request line, headers and query string back to the caller."""
    return EchoResponse(
        timestamp=utcnow(),
        request=EchoRequestInfo(
            method=request.method,
            url=str(request.url),
            headers=dict(request.headers),
            query=dict(request.query_params),
        ),
    )
