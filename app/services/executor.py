"""
Agent executor: runs one agent's handler to completion and records the outcome.

State machine per run::

    idle | sleeping | error -> running -> sleeping | error

Handler failures are absorbed here and never reach the scheduler. Registry
failures (InfrastructureError) propagate to the caller.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Set

import structlog

from app.core.exceptions import ConfigurationError, HandlerError
from app.core.logging import agent_context
from app.database.agent_repository import AgentRegistry
from app.models.agent import Agent, AgentStatus, ExecutionResult
from app.services.handlers import AgentHandler, HandlerOutcome, HandlerRegistry
from app.utils.cron import next_fire_time

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentExecutor:
    """
    Executes agents by id, dispatching on agent type through a HandlerRegistry.

    At most one run per agent id is in flight at a time within this process;
    a second request for the same agent while one is running is rejected
    without touching the registry.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        handlers: HandlerRegistry,
        timezone_name: str = "UTC",
        handler_timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.perf_counter,
        now: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize executor.

        Args:
            registry: Agent registry to read agents from and record outcomes in
            handlers: Handler lookup keyed by agent type
            timezone_name: Timezone cron schedules are evaluated in
            handler_timeout_seconds: Upper bound on one handler run, None for no limit
            clock: Monotonic clock in seconds, used for run durations
            now: Wall clock for lastRun/nextRun stamps
        """
        self.registry = registry
        self.handlers = handlers
        self.timezone_name = timezone_name
        self.handler_timeout_seconds = handler_timeout_seconds
        self._clock = clock
        self._now = now
        self._in_flight: Set[str] = set()

    def is_running(self, agent_id: str) -> bool:
        return agent_id in self._in_flight

    @property
    def in_flight(self) -> Set[str]:
        return set(self._in_flight)

    async def execute(self, agent_id: str) -> ExecutionResult:
        """Run an agent now. Used by scheduled triggers."""
        return await self._run(agent_id, trigger="scheduled")

    async def trigger_manually(self, agent_id: str) -> ExecutionResult:
        """Run an agent now on behalf of an operator or a test."""
        logger.info("Manually triggering agent", agent_id=agent_id)
        return await self._run(agent_id, trigger="manual")

    async def _run(self, agent_id: str, trigger: str) -> ExecutionResult:
        if agent_id in self._in_flight:
            logger.warning("Agent run skipped, previous run still in progress", agent_id=agent_id, trigger=trigger)
            return ExecutionResult(
                success=False,
                message=f"Agent {agent_id} is already running",
            )

        self._in_flight.add(agent_id)
        try:
            agent = await self.registry.get_by_id(agent_id)
            if agent is None:
                logger.warning("Agent not found", agent_id=agent_id, trigger=trigger)
                return ExecutionResult(success=False, message=f"Agent not found: {agent_id}")

            with agent_context(agent.id, agent.name):
                return await self._execute_agent(agent, trigger)
        finally:
            self._in_flight.discard(agent_id)

    async def _execute_agent(self, agent: Agent, trigger: str) -> ExecutionResult:
        logger.info("Executing agent", agent_type=agent.type, trigger=trigger, previous_status=agent.status.value)
        await self.registry.update_status(agent.id, AgentStatus.RUNNING)

        start = self._clock()
        try:
            handler = self.handlers.get(agent.type)
        except ConfigurationError as e:
            return await self._record_misconfiguration(agent, e, self._elapsed_ms(start))

        try:
            outcome = await self._invoke(handler)
        except Exception as e:
            duration_ms = self._elapsed_ms(start)
            return await self._record_failure(agent, e, duration_ms)

        duration_ms = self._elapsed_ms(start)
        return await self._record_success(agent, outcome, duration_ms)

    async def _invoke(self, handler: AgentHandler) -> HandlerOutcome:
        if self.handler_timeout_seconds is None:
            return await handler.run()

        try:
            return await asyncio.wait_for(handler.run(), timeout=self.handler_timeout_seconds)
        except asyncio.TimeoutError:
            raise HandlerError(f"Handler timed out after {self.handler_timeout_seconds} seconds")

    def _elapsed_ms(self, start: float) -> float:
        return max(0.0, (self._clock() - start) * 1000)

    def _next_run(self, agent: Agent, now: datetime) -> Optional[datetime]:
        return next_fire_time(agent.schedule, self.timezone_name, now)

    async def _record_success(
        self, agent: Agent, outcome: HandlerOutcome, duration_ms: float
    ) -> ExecutionResult:
        now = self._now()
        await self.registry.update_metrics(agent.id, True, duration_ms)
        await self.registry.update_status(
            agent.id,
            AgentStatus.SLEEPING,
            last_run=now,
            last_result=outcome.message,
            next_run=self._next_run(agent, now),
        )

        logger.info("Agent executed successfully", duration_ms=round(duration_ms, 2), result=outcome.message)

        return ExecutionResult(
            success=True,
            message=outcome.message,
            data=outcome.data,
            duration_ms=duration_ms,
        )

    async def _record_failure(
        self, agent: Agent, error: Exception, duration_ms: float
    ) -> ExecutionResult:
        now = self._now()
        message = str(error) or type(error).__name__

        logger.error(
            "Agent handler failed",
            error=message,
            error_type=type(error).__name__,
            duration_ms=round(duration_ms, 2),
            exc_info=True,
        )

        await self.registry.update_metrics(agent.id, False, duration_ms)
        await self.registry.update_status(
            agent.id,
            AgentStatus.ERROR,
            last_run=now,
            error=message,
            last_result=f"Agent execution failed: {message}",
            next_run=self._next_run(agent, now),
        )

        return ExecutionResult(
            success=False,
            message=f"Agent execution failed: {message}",
            duration_ms=duration_ms,
        )

    async def _record_misconfiguration(
        self, agent: Agent, error: ConfigurationError, duration_ms: float
    ) -> ExecutionResult:
        # A configuration fault counts as a failed run but is not an operational error
        now = self._now()
        logger.error("Agent misconfigured, no handler invoked", agent_type=agent.type, error=error.message)

        await self.registry.update_metrics(agent.id, False, duration_ms)
        await self.registry.update_status(
            agent.id,
            AgentStatus.SLEEPING,
            last_run=now,
            last_result=error.message,
            next_run=self._next_run(agent, now),
        )

        return ExecutionResult(success=False, message=error.message, duration_ms=duration_ms)
