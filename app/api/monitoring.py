"""
Agent monitoring endpoints.
"""
from enum import Enum

from fastapi import APIRouter, Depends, Query
import structlog

from app.core.dependencies import get_monitoring_service
from app.core.exceptions import InfrastructureError, ServiceUnavailableError
from app.services.monitoring import AgentMonitoringService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/agents", tags=["monitoring"])


class MonitoringView(str, Enum):
    ALL = "all"
    STATISTICS = "statistics"
    EXECUTIONS = "executions"
    HEALTH = "health"
    SYSTEM = "system"


@router.get("/monitoring")
async def get_monitoring(
    type: MonitoringView = Query(default=MonitoringView.ALL, description="Which view to return"),
    limit: int = Query(default=10, ge=0, le=100, description="Recent executions to include"),
    monitoring: AgentMonitoringService = Depends(get_monitoring_service),
):
    """
    Monitoring data for the agent dashboard.

    ``type=all`` returns statistics, recent executions, health and system
    metrics together; the other values return one view.
    """
    try:
        if type == MonitoringView.STATISTICS:
            data = await monitoring.aggregate_statistics()
        elif type == MonitoringView.EXECUTIONS:
            data = await monitoring.recent_executions(limit)
        elif type == MonitoringView.HEALTH:
            data = await monitoring.health_report()
        elif type == MonitoringView.SYSTEM:
            data = await monitoring.system_metrics()
        else:
            data = await monitoring.overview(limit)
    except InfrastructureError as e:
        logger.error("Monitoring query failed", view=type.value, error=e.message)
        raise ServiceUnavailableError("agent-registry", detail=e.message)

    return {"success": True, "type": type.value, "data": data}
