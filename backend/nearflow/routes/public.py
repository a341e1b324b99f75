# /nearflow/routes/public.py

from datetime import datetime
from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest

from nearflow.config.settings import settings
from nearflow.utils.dependencies import verify_api_key

# Health checks and the Prometheus scrape endpoint. /metrics is protected
# by the API key when one is configured.

router = APIRouter()


@router.get("/health", summary="Basic Health Check")
async def health_check(request: Request):
    """Basic health check for load balancers."""
    registry = getattr(request.app.state, "registry", None)
    return {
        "status": "healthy",
        "environment": settings.environment,
        "flows": len(registry) if registry is not None else 0,
        "timestamp": datetime.utcnow(),
    }


@router.get("/metrics", tags=["Monitoring"])
async def metrics(_: None = Depends(verify_api_key)):
    """Prometheus metrics endpoint."""
    return PlainTextResponse(generate_latest(), media_type="text/plain")
