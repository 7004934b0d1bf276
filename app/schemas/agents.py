"""
Pydantic schemas for agent and scheduler API requests and responses.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.agent import Agent, ExecutionResult


class SchedulerStatus(BaseModel):
    """Snapshot of the scheduler's trigger table."""
    active_trigger_count: int = Field(..., description="Number of armed triggers")
    scheduled_agent_ids: List[str] = Field(default_factory=list, description="Agents with an armed trigger")
    in_flight_agent_ids: List[str] = Field(default_factory=list, description="Agents with a run in progress")
    running: bool = Field(..., description="Whether the timer loop is running")


class SchedulerAction(str, Enum):
    """Operator actions on the scheduler"""
    INITIALIZE = "initialize"
    RESCHEDULE = "reschedule"
    TRIGGER = "trigger"
    SHUTDOWN = "shutdown"


class SchedulerActionRequest(BaseModel):
    """Scheduler control request."""
    action: str = Field(..., description="initialize, reschedule, trigger or shutdown")
    agent_id: Optional[str] = Field(default=None, description="Agent to run, required for trigger")


class SchedulerActionResponse(BaseModel):
    """Scheduler control response."""
    success: bool
    message: str
    status: SchedulerStatus
    result: Optional[ExecutionResult] = None


class AgentListResponse(BaseModel):
    """All registered agents."""
    success: bool = True
    agents: List[Agent]


class AgentResponse(BaseModel):
    """One registered agent."""
    success: bool = True
    agent: Agent
    next_scheduled_run: Optional[str] = None


class ExecuteAgentResponse(BaseModel):
    """Outcome of a manual agent run."""
    success: bool = True
    message: str
    result: ExecutionResult


class InitializeAgentsResponse(BaseModel):
    """Outcome of default agent registration."""
    success: bool = True
    message: str
    registered: List[str]
    status: SchedulerStatus
