"""
Agent registry: durable store of agent definitions, run status and metrics.

Two backends share one interface. ``SupabaseAgentRegistry`` talks to the
``agents`` table; ``InMemoryAgentRegistry`` keeps rows in a dict for
development mode and tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog

from app.core.exceptions import (
    AgentNotFoundError,
    InfrastructureError,
    MetricsConflictError,
)
from app.core.retry import create_async_retry_decorator, get_metrics_conflict_retry_config
from app.models.agent import Agent, AgentDefinition, AgentMetrics, AgentStatus

logger = structlog.get_logger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class AgentRegistry(ABC):
    """
    Base class for agent registries.

    Subclasses implement single-attempt storage primitives; the shared
    ``update_metrics`` wraps the read-modify-write in an optimistic
    concurrency retry loop.
    """

    def __init__(self, metrics_update_max_attempts: int = 5):
        self.metrics_update_max_attempts = metrics_update_max_attempts

    @abstractmethod
    async def register(self, definition: AgentDefinition, reset_state: bool = True) -> Agent:
        """
        Create or overwrite the agent row matching ``definition.name``.

        Args:
            definition: Agent name, type and schedule
            reset_state: Reset status and metrics of an existing row to defaults

        Returns:
            The stored agent
        """

    @abstractmethod
    async def get_all(self) -> List[Agent]:
        """All agents ordered by name."""

    @abstractmethod
    async def get_by_id(self, agent_id: str) -> Optional[Agent]:
        """One agent, or None when absent."""

    @abstractmethod
    async def update_status(
        self,
        agent_id: str,
        status: AgentStatus,
        last_run: Optional[datetime] = None,
        error: Optional[str] = None,
        last_result: Optional[str] = None,
        next_run: Optional[datetime] = None,
    ) -> None:
        """
        Set an agent's status.

        ``error`` is stored only when the new status is ``error`` and cleared
        otherwise. The remaining optional fields are written when given.
        """

    @abstractmethod
    async def _try_update_metrics(
        self, agent_id: str, success: bool, duration_ms: float
    ) -> AgentMetrics:
        """One version-checked read-modify-write; raises MetricsConflictError on a lost race."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Check datastore connectivity."""

    async def update_metrics(
        self, agent_id: str, success: bool, duration_ms: float
    ) -> AgentMetrics:
        """
        Fold one execution into an agent's metrics.

        Args:
            agent_id: Agent identifier
            success: Whether the run succeeded
            duration_ms: Run duration in milliseconds

        Returns:
            The metrics after the update

        Raises:
            InfrastructureError: On datastore failure or persistent write conflicts
        """
        retrying = create_async_retry_decorator(
            get_metrics_conflict_retry_config(self.metrics_update_max_attempts),
            operation="update_metrics",
        )
        try:
            return await retrying(self._try_update_metrics)(agent_id, success, duration_ms)
        except MetricsConflictError as e:
            logger.error(
                "Giving up on agent metrics update after repeated conflicts",
                agent_id=agent_id,
                attempts=self.metrics_update_max_attempts,
            )
            raise InfrastructureError(str(e), operation="update_metrics", agent_id=agent_id) from e

    @staticmethod
    def _status_fields(
        status: AgentStatus,
        last_run: Optional[datetime],
        error: Optional[str],
        last_result: Optional[str],
        next_run: Optional[datetime],
    ) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "status": status.value,
            "error": error if status == AgentStatus.ERROR else None,
        }
        if last_run is not None:
            fields["lastRun"] = _iso(last_run)
        if last_result is not None:
            fields["lastResult"] = last_result
        if next_run is not None:
            fields["nextRun"] = _iso(next_run)
        return fields


class SupabaseAgentRegistry(AgentRegistry):
    """Agent registry backed by a Supabase table."""

    def __init__(self, client, table: str = "agents", metrics_update_max_attempts: int = 5):
        super().__init__(metrics_update_max_attempts)
        self.client = client
        self.table = table

    def _query(self):
        return self.client.table(self.table)

    def _fail(self, operation: str, error: Exception, **context) -> InfrastructureError:
        logger.error(
            "Agent registry operation failed",
            operation=operation,
            table=self.table,
            error=str(error),
            **context
        )
        return InfrastructureError(
            f"Agent registry {operation} failed: {error}", operation=operation, **context
        )

    async def register(self, definition: AgentDefinition, reset_state: bool = True) -> Agent:
        try:
            response = self._query().select("*").eq("name", definition.name).limit(1).execute()
            existing = response.data[0] if response.data else None

            if existing and not reset_state:
                response = (
                    self._query()
                    .update({"type": definition.type.value, "schedule": definition.schedule})
                    .eq("id", existing["id"])
                    .execute()
                )
            else:
                agent = definition.to_agent()
                if existing:
                    agent.id = existing["id"]
                    agent.version = (existing.get("version") or 0) + 1
                response = self._query().upsert(agent.to_row(), on_conflict="name").execute()
        except Exception as e:
            raise self._fail("register", e, agent_name=definition.name) from e

        stored = Agent.from_row(response.data[0]) if response.data else definition.to_agent()
        logger.info(
            "Agent registered",
            agent_id=stored.id,
            agent_name=stored.name,
            reset_state=reset_state,
            existed=existing is not None,
        )
        return stored

    async def get_all(self) -> List[Agent]:
        try:
            response = self._query().select("*").order("name").execute()
        except Exception as e:
            raise self._fail("get_all", e) from e
        return [Agent.from_row(row) for row in response.data or []]

    async def get_by_id(self, agent_id: str) -> Optional[Agent]:
        try:
            response = self._query().select("*").eq("id", agent_id).limit(1).execute()
        except Exception as e:
            raise self._fail("get_by_id", e, agent_id=agent_id) from e
        return Agent.from_row(response.data[0]) if response.data else None

    async def update_status(
        self,
        agent_id: str,
        status: AgentStatus,
        last_run: Optional[datetime] = None,
        error: Optional[str] = None,
        last_result: Optional[str] = None,
        next_run: Optional[datetime] = None,
    ) -> None:
        fields = self._status_fields(status, last_run, error, last_result, next_run)
        try:
            response = self._query().update(fields).eq("id", agent_id).execute()
        except Exception as e:
            raise self._fail("update_status", e, agent_id=agent_id) from e

        if not response.data:
            raise AgentNotFoundError(agent_id)

        logger.debug("Agent status updated", agent_id=agent_id, status=status.value)

    async def _try_update_metrics(
        self, agent_id: str, success: bool, duration_ms: float
    ) -> AgentMetrics:
        try:
            response = (
                self._query().select("metrics, version").eq("id", agent_id).limit(1).execute()
            )
        except Exception as e:
            raise self._fail("update_metrics", e, agent_id=agent_id) from e

        if not response.data:
            raise AgentNotFoundError(agent_id)

        row = response.data[0]
        version = row.get("version") or 0
        current = AgentMetrics.model_validate(row.get("metrics") or {})
        updated = current.record(success, duration_ms)

        try:
            response = (
                self._query()
                .update({
                    "metrics": updated.model_dump(by_alias=True),
                    "version": version + 1,
                })
                .eq("id", agent_id)
                .eq("version", version)
                .execute()
            )
        except Exception as e:
            raise self._fail("update_metrics", e, agent_id=agent_id) from e

        if not response.data:
            raise MetricsConflictError(agent_id, version)

        return updated

    async def health_check(self) -> bool:
        try:
            self._query().select("id").limit(1).execute()
            return True
        except Exception as e:
            logger.error("Agent registry health check failed", error=str(e))
            return False


class InMemoryAgentRegistry(AgentRegistry):
    """
    Agent registry holding rows in process memory.

    Used when no datastore is configured and in tests. Every read returns a
    copy, so callers never hold a live reference to a stored row.
    """

    def __init__(self, agents: Optional[Iterable[Agent]] = None, metrics_update_max_attempts: int = 5):
        super().__init__(metrics_update_max_attempts)
        self._agents: Dict[str, Agent] = {}
        for agent in agents or []:
            self._agents[agent.id] = agent.model_copy(deep=True)

    def _find_by_name(self, name: str) -> Optional[Agent]:
        return next((a for a in self._agents.values() if a.name == name), None)

    def _get(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    async def register(self, definition: AgentDefinition, reset_state: bool = True) -> Agent:
        existing = self._find_by_name(definition.name)

        if existing and not reset_state:
            stored = existing.model_copy(update={
                "type": definition.type.value,
                "schedule": definition.schedule,
            })
        else:
            stored = definition.to_agent()
            if existing:
                stored.id = existing.id
                stored.version = existing.version + 1

        self._agents[stored.id] = stored
        logger.info(
            "Agent registered",
            agent_id=stored.id,
            agent_name=stored.name,
            reset_state=reset_state,
            existed=existing is not None,
        )
        return stored.model_copy(deep=True)

    async def get_all(self) -> List[Agent]:
        return [a.model_copy(deep=True) for a in sorted(self._agents.values(), key=lambda a: a.name)]

    async def get_by_id(self, agent_id: str) -> Optional[Agent]:
        agent = self._agents.get(agent_id)
        return agent.model_copy(deep=True) if agent else None

    async def update_status(
        self,
        agent_id: str,
        status: AgentStatus,
        last_run: Optional[datetime] = None,
        error: Optional[str] = None,
        last_result: Optional[str] = None,
        next_run: Optional[datetime] = None,
    ) -> None:
        agent = self._get(agent_id)
        agent.status = status
        agent.error = error if status == AgentStatus.ERROR else None
        if last_run is not None:
            agent.last_run = last_run
        if last_result is not None:
            agent.last_result = last_result
        if next_run is not None:
            agent.next_run = next_run

    async def _try_update_metrics(
        self, agent_id: str, success: bool, duration_ms: float
    ) -> AgentMetrics:
        # Read and write happen without yielding to the event loop, so they are atomic
        agent = self._get(agent_id)
        agent.metrics = agent.metrics.record(success, duration_ms)
        agent.version += 1
        return agent.metrics.model_copy()

    async def health_check(self) -> bool:
        return True
