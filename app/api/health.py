"""
Health check endpoints for the Agent Orchestration Service.
"""
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from app.core.config import get_settings
from app.core.logging import get_logger
from app.schemas.agents import SchedulerStatus

router = APIRouter()
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    uptime_seconds: float
    timestamp: datetime
    service_name: str
    datastore: str
    development_mode: bool
    scheduler: Optional[SchedulerStatus] = None


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Service health with datastore connectivity and scheduler status.

    Reports ``degraded`` when the agent registry is unreachable and
    ``starting`` before the agent runtime has been wired.
    """
    settings = get_settings()
    start_time = getattr(request.app.state, "start_time", time.time())
    uptime = time.time() - start_time
    runtime = getattr(request.app.state, "runtime", None)

    if runtime is None:
        status, datastore, scheduler = "starting", "unknown", None
    else:
        datastore_healthy = await runtime.registry.health_check()
        datastore = "healthy" if datastore_healthy else "unhealthy"
        status = "healthy" if datastore_healthy else "degraded"
        scheduler = runtime.scheduler.status()

    response = HealthResponse(
        status=status,
        version=settings.service_version,
        uptime_seconds=uptime,
        timestamp=datetime.now(timezone.utc),
        service_name=settings.service_name,
        datastore=datastore,
        development_mode=not settings.supabase_configured,
        scheduler=scheduler,
    )

    log = logger.info if status == "healthy" else logger.warning
    log(
        "Health check completed",
        status=response.status,
        datastore=response.datastore,
        uptime_seconds=round(response.uptime_seconds, 2),
    )

    return response
