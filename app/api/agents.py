"""
Agent API endpoints.

REST endpoints for listing agents, running them on demand, registering the
default agents and controlling the scheduler.
"""

from fastapi import APIRouter, Depends
import structlog

from app.core.config import Settings, get_settings
from app.core.dependencies import AgentRuntime, get_registry, get_runtime, get_scheduler
from app.core.exceptions import (
    AgentNotFoundError,
    InfrastructureError,
    NotFoundAPIError,
    ServiceUnavailableError,
    ValidationError,
)
from app.database.agent_repository import AgentRegistry
from app.schemas.agents import (
    AgentListResponse,
    AgentResponse,
    ExecuteAgentResponse,
    InitializeAgentsResponse,
    SchedulerAction,
    SchedulerActionRequest,
    SchedulerActionResponse,
    SchedulerStatus,
)
from app.services.agent_service import register_agents
from app.services.scheduler import AgentScheduler

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/agents", tags=["agents"])


def _unavailable(e: InfrastructureError) -> ServiceUnavailableError:
    return ServiceUnavailableError("agent-registry", detail=e.message, operation=e.context.get("operation"))


@router.get("", response_model=AgentListResponse)
async def list_agents(registry: AgentRegistry = Depends(get_registry)):
    """List all registered agents ordered by name."""
    try:
        agents = await registry.get_all()
    except InfrastructureError as e:
        raise _unavailable(e)

    logger.info("Agents listed", count=len(agents))
    return AgentListResponse(agents=agents)


@router.post("/init", response_model=InitializeAgentsResponse)
async def initialize_agents(
    runtime: AgentRuntime = Depends(get_runtime),
    settings: Settings = Depends(get_settings),
):
    """
    Register the default agents and re-arm every trigger.

    Registration is idempotent by agent name, so calling this repeatedly
    never creates duplicates.
    """
    logger.info("Agent initialization requested", reset_state=settings.reset_on_register)

    try:
        registered = await register_agents(runtime.registry, reset_state=settings.reset_on_register)
        await runtime.scheduler.reschedule_all()
    except InfrastructureError as e:
        logger.error("Agent initialization failed", error=e.message)
        raise _unavailable(e)

    return InitializeAgentsResponse(
        message="Agents initialized and scheduled successfully",
        registered=[agent.name for agent in registered],
        status=runtime.scheduler.status(),
    )


@router.get("/scheduler/status", response_model=SchedulerStatus)
async def scheduler_status(scheduler: AgentScheduler = Depends(get_scheduler)):
    return scheduler.status()


@router.post("/scheduler", response_model=SchedulerActionResponse)
async def control_scheduler(
    request: SchedulerActionRequest,
    scheduler: AgentScheduler = Depends(get_scheduler),
):
    """
    Run a scheduler control action.

    Actions:
        initialize: start the timer loop and arm all triggers
        reschedule: cancel every trigger and re-arm from the registry
        trigger: run one agent now, requires agent_id
        shutdown: cancel all triggers and stop the timer loop

    Raises:
        ValidationError: Unknown action or trigger without agent_id
        ServiceUnavailableError: Agent registry unreachable
    """
    try:
        action = SchedulerAction(request.action)
    except ValueError:
        raise ValidationError(
            "Invalid action. Use: initialize, reschedule, trigger, or shutdown",
            field="action",
            value=request.action,
        )

    logger.info("Scheduler action requested", action=action.value, agent_id=request.agent_id)
    result = None

    try:
        if action == SchedulerAction.INITIALIZE:
            count = await scheduler.initialize()
            message = f"Scheduler initialized with {count} agents"
        elif action == SchedulerAction.RESCHEDULE:
            count = await scheduler.reschedule_all()
            message = f"Rescheduled {count} agents"
        elif action == SchedulerAction.TRIGGER:
            if not request.agent_id:
                raise ValidationError("Agent ID required for trigger action", field="agent_id")
            result = await scheduler.trigger_manually(request.agent_id)
            message = result.message
        else:
            await scheduler.shutdown()
            message = "Scheduler shut down successfully"
    except InfrastructureError as e:
        logger.error("Scheduler action failed", action=action.value, error=e.message)
        raise _unavailable(e)

    return SchedulerActionResponse(
        success=result.success if result is not None else True,
        message=message,
        status=scheduler.status(),
        result=result,
    )


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(
    agent_id: str,
    registry: AgentRegistry = Depends(get_registry),
    scheduler: AgentScheduler = Depends(get_scheduler),
):
    try:
        agent = await registry.get_by_id(agent_id)
    except InfrastructureError as e:
        raise _unavailable(e)

    if agent is None:
        raise NotFoundAPIError("Agent", agent_id)

    next_run = scheduler.next_run_time(agent_id)
    return AgentResponse(
        agent=agent,
        next_scheduled_run=next_run.isoformat() if next_run else None,
    )


@router.post("/{agent_id}/execute", response_model=ExecuteAgentResponse)
async def execute_agent(
    agent_id: str,
    runtime: AgentRuntime = Depends(get_runtime),
):
    """
    Run an agent now, outside its schedule.

    A handler failure is reported in the result with success false; only a
    missing agent or an unreachable registry produce an error response.
    """
    try:
        if await runtime.registry.get_by_id(agent_id) is None:
            raise NotFoundAPIError("Agent", agent_id)
        result = await runtime.scheduler.trigger_manually(agent_id)
    except AgentNotFoundError:
        raise NotFoundAPIError("Agent", agent_id)
    except InfrastructureError as e:
        logger.error("Manual agent run failed", agent_id=agent_id, error=e.message)
        raise _unavailable(e)

    return ExecuteAgentResponse(
        success=result.success,
        message="Agent executed successfully" if result.success else "Agent execution failed",
        result=result,
    )
