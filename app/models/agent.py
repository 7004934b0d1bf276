"""
Agent models: persisted agent records, registration definitions and run results.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class AgentType(str, Enum):
    """Agent type enumeration, selects the handler"""
    SETTLEMENT = "settlement"
    PTP = "ptp"
    PAYMENT = "payment"
    ALLOCATION = "allocation"
    PERFORMANCE = "performance"
    CLEANUP = "cleanup"
    REPORTING = "reporting"


class AgentStatus(str, Enum):
    """Agent run status enumeration"""
    IDLE = "idle"
    RUNNING = "running"
    SLEEPING = "sleeping"
    ERROR = "error"


class AgentMetrics(BaseModel):
    """Cumulative run counters plus a running mean duration in milliseconds."""

    model_config = ConfigDict(populate_by_name=True)

    executions: int = Field(default=0, ge=0)
    successes: int = Field(default=0, ge=0)
    failures: int = Field(default=0, ge=0)
    avg_duration: float = Field(default=0.0, ge=0.0, alias="avgDuration")

    def record(self, success: bool, duration_ms: float) -> "AgentMetrics":
        """Return the metrics after folding in one more execution."""
        executions = self.executions + 1
        return AgentMetrics(
            executions=executions,
            successes=self.successes + (1 if success else 0),
            failures=self.failures + (0 if success else 1),
            avg_duration=(self.avg_duration * self.executions + duration_ms) / executions,
        )

    @property
    def success_rate(self) -> Optional[float]:
        """Percentage of successful executions, None before the first run."""
        if self.executions == 0:
            return None
        return self.successes / self.executions * 100


class Agent(BaseModel):
    """
    Persisted agent record, one row per named job.

    Field aliases match the column names of the ``agents`` table. ``type`` is
    kept as a plain string so that rows carrying a type with no handler still
    load and are reported as a configuration fault at execution time.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(..., min_length=1)
    type: str
    status: AgentStatus = AgentStatus.IDLE
    schedule: str
    last_run: Optional[datetime] = Field(default=None, alias="lastRun")
    next_run: Optional[datetime] = Field(default=None, alias="nextRun")
    last_result: Optional[str] = Field(default=None, alias="lastResult")
    error: Optional[str] = None
    metrics: AgentMetrics = Field(default_factory=AgentMetrics)
    version: int = Field(default=0, ge=0)

    def to_row(self) -> Dict[str, Any]:
        """Serialize to a datastore row."""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Agent":
        data = dict(row)
        if data.get("metrics") is None:
            data.pop("metrics", None)
        if data.get("version") is None:
            data.pop("version", None)
        return cls.model_validate(data)


class AgentDefinition(BaseModel):
    """Input to registration: the identity and schedule of a job."""

    name: str = Field(..., min_length=1)
    type: AgentType
    schedule: str
    status: AgentStatus = AgentStatus.SLEEPING

    def to_agent(self) -> Agent:
        return Agent(
            name=self.name,
            type=self.type.value,
            status=self.status,
            schedule=self.schedule,
        )


class ExecutionResult(BaseModel):
    """Outcome of one agent run."""

    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None
    duration_ms: float = Field(default=0.0, ge=0.0)
