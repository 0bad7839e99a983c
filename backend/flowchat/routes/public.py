# /flowchat/routes/public.py

from datetime import datetime, timezone
from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from flowchat.config.settings import settings
from flowchat.models.api import APIResponse
from flowchat.services.flow_registry import flow_registry
from flowchat.services.host_gateway import get_host_gateway
from flowchat.services.session_store import session_registry

# Public endpoints without session context: root, health probes and metrics.

router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Flow Chat Assistant",
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.environment
    }


@router.get("/health", summary="Basic Health Check")
async def health_check():
    """Basic health check for load balancers."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc)}


@router.get("/health/detailed", response_model=APIResponse, tags=["Monitoring"])
async def detailed_health_check():
    """Configuration-level health of every collaborator. Makes no upstream calls beyond the cached host probe."""
    host_available = await get_host_gateway().is_available()
    health_status = {
        "status": "healthy",
        "services": {
            "model_provider": "configured" if settings.openai_api_key else "not_configured",
            "retrieval": "configured" if settings.weaviate_url else "not_configured",
            "host_platform": "host-integrated" if host_available else "demo",
        },
        "flows": len(flow_registry),
        "active_sessions": len(session_registry),
    }
    return APIResponse(
        success=True,
        message="Health status retrieved.",
        data=health_status,
        version=settings.api_version
    )


@router.get("/metrics", tags=["Monitoring"])
async def metrics():
    """Prometheus metrics endpoint."""
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)
