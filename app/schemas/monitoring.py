"""
Pydantic schemas for agent monitoring responses.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class HealthClass(str, Enum):
    """Health classification of an agent, ordered by severity"""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class SystemLoad(str, Enum):
    """Overall load classification"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AgentStatistics(BaseModel):
    """Aggregate counts and rates across all agents."""
    total_agents: int = Field(..., description="Number of registered agents")
    active_agents: int = Field(..., description="Agents currently running")
    idle_agents: int = Field(..., description="Agents that have never run")
    sleeping_agents: int = Field(..., description="Agents waiting for their next firing")
    error_agents: int = Field(..., description="Agents in error state")
    total_executions: int = Field(..., description="Executions across all agents")
    total_successes: int = Field(..., description="Successful executions across all agents")
    success_rate: float = Field(..., description="Successful executions in percent, 0 with no executions")
    avg_execution_time: float = Field(..., description="Execution-weighted mean duration in milliseconds")


class RecentExecution(BaseModel):
    """Most recent run of one agent."""
    agent_id: str
    agent_name: str
    last_run: datetime
    status: str
    duration: Optional[float] = Field(default=None, description="Mean duration in milliseconds")
    result: Optional[str] = None
    error: Optional[str] = None


class AgentHealth(BaseModel):
    """Health classification of one agent with every issue found."""
    id: str
    name: str
    status: HealthClass
    last_run: Optional[datetime] = None
    success_rate: float
    avg_response_time: float
    issues: List[str] = Field(default_factory=list)


class HealthReport(BaseModel):
    """Per-bucket totals plus per-agent detail."""
    healthy: int = 0
    warning: int = 0
    critical: int = 0
    agents: List[AgentHealth] = Field(default_factory=list)


class SystemMetrics(BaseModel):
    """Execution totals and overall load."""
    total_agents: int
    total_executions: int
    successful_executions: int
    failed_executions: int
    avg_execution_time: float
    system_load: SystemLoad


class MonitoringOverview(BaseModel):
    """Everything the monitoring dashboard shows at once."""
    statistics: AgentStatistics
    recent_executions: List[RecentExecution]
    health: HealthReport
    system: SystemMetrics
