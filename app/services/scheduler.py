"""
Agent scheduler: one cron trigger per agent, each firing the executor.

Uses APScheduler's AsyncIOScheduler. The scheduler instance owns its trigger
table; nothing about it is module-global, so the application keeps one
instance on ``app.state`` and hands it to whoever needs scheduling control.
"""

import asyncio
from datetime import datetime
from typing import Dict, Optional

import structlog
from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.core.exceptions import ConfigurationError
from app.database.agent_repository import AgentRegistry
from app.models.agent import Agent, ExecutionResult
from app.schemas.agents import SchedulerStatus
from app.services.executor import AgentExecutor
from app.utils.cron import build_trigger

logger = structlog.get_logger(__name__)


class AgentScheduler:
    """
    Timer-driven orchestration of agent execution.

    APScheduler's asyncio executor runs each firing as its own task, and the
    callback holds one of ``max_concurrent_runs`` semaphore slots while the
    agent runs. The run's outcome is awaited and logged inside
    the job callback, and every exception is caught there, so a failing agent
    can never disturb the timers of the others.

    Attributes:
        scheduler: APScheduler AsyncIOScheduler instance
        registry: Agent registry the agents are loaded from
        executor: Executor invoked on every firing
    """

    def __init__(
        self,
        registry: AgentRegistry,
        executor: AgentExecutor,
        timezone_name: str = "UTC",
        max_concurrent_runs: int = 4,
        misfire_grace_time: int = 300,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.registry = registry
        self.executor = executor
        self.timezone_name = timezone_name
        self.misfire_grace_time = misfire_grace_time
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone_name)
        self._triggers: Dict[str, Job] = {}
        self._run_slots = asyncio.Semaphore(max_concurrent_runs)

    @property
    def running(self) -> bool:
        return self.scheduler.running

    async def initialize(self) -> int:
        """
        Start the timer loop, load all agents and arm one trigger per agent.

        Returns:
            Number of agents loaded from the registry

        Raises:
            InfrastructureError: If the registry cannot be read
        """
        logger.info("Initializing agent scheduler", timezone=self.timezone_name)

        if not self.scheduler.running:
            self.scheduler.start()

        agents = await self.registry.get_all()
        for agent in agents:
            self.schedule_agent(agent)

        logger.info(
            "Scheduler initialized",
            agent_count=len(agents),
            active_triggers=len(self._triggers),
        )
        return len(agents)

    def schedule_agent(self, agent: Agent) -> bool:
        """
        Arm (or re-arm) the trigger for one agent.

        Any existing trigger for the agent is cancelled first. An invalid cron
        expression is logged and leaves the agent without a trigger.

        Returns:
            True if a trigger is now active for the agent
        """
        self._cancel(agent.id)

        try:
            trigger = build_trigger(agent.schedule, self.timezone_name)
        except ConfigurationError as e:
            logger.error(
                "Invalid cron expression, agent not scheduled",
                agent_id=agent.id,
                agent_name=agent.name,
                schedule=agent.schedule,
                error=e.message,
            )
            return False

        job = self.scheduler.add_job(
            self._fire,
            trigger=trigger,
            args=[agent.id, agent.name],
            id=f"agent_{agent.id}",
            name=f"Agent: {agent.name}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.misfire_grace_time,
        )
        self._triggers[agent.id] = job

        logger.info(
            "Agent scheduled",
            agent_id=agent.id,
            agent_name=agent.name,
            schedule=agent.schedule,
            next_run=str(self.next_run_time(agent.id)),
        )
        return True

    def unschedule_agent(self, agent_id: str) -> bool:
        """
        Cancel an agent's trigger. No-op when the agent has none.

        Returns:
            True if a trigger was removed
        """
        removed = self._cancel(agent_id)
        if removed:
            logger.info("Agent unscheduled", agent_id=agent_id)
        return removed

    async def reschedule_all(self) -> int:
        """Cancel every trigger and re-arm from the registry's current definitions."""
        logger.info("Rescheduling all agents", active_triggers=len(self._triggers))
        self._cancel_all()
        return await self.initialize()

    async def trigger_manually(self, agent_id: str) -> ExecutionResult:
        """Run an agent now, outside its schedule."""
        return await self.executor.trigger_manually(agent_id)

    def next_run_time(self, agent_id: str) -> Optional[datetime]:
        job = self._triggers.get(agent_id)
        if job is None:
            return None
        # Jobs added before the scheduler starts have no next_run_time yet
        return getattr(job, "next_run_time", None)

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            active_trigger_count=len(self._triggers),
            scheduled_agent_ids=list(self._triggers),
            in_flight_agent_ids=sorted(self.executor.in_flight),
            running=self.scheduler.running,
        )

    async def shutdown(self) -> None:
        """
        Cancel all triggers and stop the timer loop. In-flight runs are not interrupted.

        AsyncIOScheduler may defer its stop to the next turn of the event loop,
        so this waits until the scheduler reports it is no longer running.
        """
        logger.info("Shutting down agent scheduler", active_triggers=len(self._triggers))
        self._cancel_all()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            while self.scheduler.running:
                await asyncio.sleep(0)
        logger.info("Agent scheduler shut down")

    async def _fire(self, agent_id: str, agent_name: str) -> None:
        """Trigger callback: run the agent as a bounded task and record its outcome."""
        logger.info("Executing scheduled agent", agent_id=agent_id, agent_name=agent_name)

        try:
            result = await self._run_bounded(agent_id)
        except Exception as e:
            logger.error(
                "Error executing scheduled agent",
                agent_id=agent_id,
                agent_name=agent_name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return

        logger.info(
            "Scheduled agent run finished",
            agent_id=agent_id,
            agent_name=agent_name,
            success=result.success,
            message=result.message,
            duration_ms=round(result.duration_ms, 2),
        )

    async def _run_bounded(self, agent_id: str) -> ExecutionResult:
        async with self._run_slots:
            return await self.executor.execute(agent_id)

    def _cancel(self, agent_id: str) -> bool:
        job = self._triggers.pop(agent_id, None)
        if job is None:
            return False
        try:
            self.scheduler.remove_job(job.id)
        except JobLookupError:
            logger.warning("Trigger already gone from scheduler", agent_id=agent_id, job_id=job.id)
        return True

    def _cancel_all(self) -> None:
        for agent_id in list(self._triggers):
            self._cancel(agent_id)
