"""
Tests for the agent scheduler.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from app.core.exceptions import InfrastructureError
from app.database.agent_repository import InMemoryAgentRegistry
from app.models.agent import AgentDefinition, AgentStatus, AgentType, ExecutionResult
from app.services.executor import AgentExecutor
from app.services.scheduler import AgentScheduler


@pytest.fixture
def executor(registry, handlers) -> AgentExecutor:
    return AgentExecutor(registry, handlers, timezone_name="Africa/Johannesburg")


@pytest.fixture
def scheduler(registry, executor) -> AgentScheduler:
    """Scheduler over the seeded registry, not started."""
    return AgentScheduler(registry, executor, timezone_name="Africa/Johannesburg")


@pytest_asyncio.fixture
async def running_scheduler(scheduler):
    """Initialized scheduler, shut down inside the event loop after the test."""
    await scheduler.initialize()
    yield scheduler
    await scheduler.shutdown()


class TestScheduling:
    """Arming and cancelling triggers."""

    def test_schedule_agent_arms_one_trigger(self, scheduler, settlement_agent):
        assert scheduler.schedule_agent(settlement_agent) is True

        status = scheduler.status()
        assert status.active_trigger_count == 1
        assert status.scheduled_agent_ids == [settlement_agent.id]
        assert scheduler.scheduler.get_job(f"agent_{settlement_agent.id}") is not None

    def test_schedule_agent_twice_keeps_one_trigger(self, scheduler, settlement_agent):
        scheduler.schedule_agent(settlement_agent)
        settlement_agent.schedule = "30 2 * * *"

        scheduler.schedule_agent(settlement_agent)

        assert scheduler.status().active_trigger_count == 1
        assert len(scheduler.scheduler.get_jobs()) == 1

    def test_invalid_cron_creates_no_trigger(self, scheduler, make_agent):
        """An out-of-range expression is logged and skipped without raising."""
        agent = make_agent(name="Broken Schedule", schedule="99 99 * * *")

        assert scheduler.schedule_agent(agent) is False

        assert scheduler.status().active_trigger_count == 0
        assert scheduler.scheduler.get_jobs() == []

    def test_invalid_cron_cancels_previous_trigger(self, scheduler, settlement_agent):
        scheduler.schedule_agent(settlement_agent)
        settlement_agent.schedule = "not a cron"

        assert scheduler.schedule_agent(settlement_agent) is False
        assert scheduler.status().active_trigger_count == 0

    def test_invalid_cron_leaves_other_triggers_alone(self, scheduler, settlement_agent, make_agent):
        scheduler.schedule_agent(settlement_agent)

        scheduler.schedule_agent(make_agent(name="Broken", schedule="99 99 * * *"))

        assert scheduler.status().scheduled_agent_ids == [settlement_agent.id]

    def test_unschedule_agent(self, scheduler, settlement_agent):
        scheduler.schedule_agent(settlement_agent)

        assert scheduler.unschedule_agent(settlement_agent.id) is True
        assert scheduler.status().active_trigger_count == 0
        assert scheduler.next_run_time(settlement_agent.id) is None

    def test_unschedule_unknown_agent_is_noop(self, scheduler):
        assert scheduler.unschedule_agent("missing") is False
        assert scheduler.status().active_trigger_count == 0

    def test_job_options(self, scheduler, settlement_agent):
        scheduler.schedule_agent(settlement_agent)

        job = scheduler.scheduler.get_job(f"agent_{settlement_agent.id}")
        assert job.max_instances == 1
        assert job.coalesce is True
        assert job.misfire_grace_time == 300
        assert job.args == (settlement_agent.id, settlement_agent.name)


class TestLifecycle:
    """initialize, reschedule_all and shutdown."""

    @pytest.mark.asyncio
    async def test_initialize_schedules_every_agent(self, make_agent, executor):
        registry = InMemoryAgentRegistry([
            make_agent(),
            make_agent(name="PTP Default Checker", type="ptp"),
            make_agent(name="Broken", schedule="99 99 * * *"),
        ])
        scheduler = AgentScheduler(registry, executor, timezone_name="Africa/Johannesburg")

        try:
            count = await scheduler.initialize()

            assert count == 3
            assert scheduler.running is True
            assert scheduler.status().active_trigger_count == 2
        finally:
            await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_initialize_sets_next_run_time(self, running_scheduler, settlement_agent):
        next_run = running_scheduler.next_run_time(settlement_agent.id)
        assert next_run is not None
        assert (next_run.hour, next_run.minute) == (0, 0)

    @pytest.mark.asyncio
    async def test_reschedule_all_picks_up_changes(self, running_scheduler, registry, settlement_agent):
        ptp = await registry.register(
            AgentDefinition(name="PTP Default Checker", type=AgentType.PTP, schedule="0 0 * * *")
        )

        count = await running_scheduler.reschedule_all()

        assert count == 2
        assert sorted(running_scheduler.status().scheduled_agent_ids) == sorted([settlement_agent.id, ptp.id])
        assert len(running_scheduler.scheduler.get_jobs()) == 2

    @pytest.mark.asyncio
    async def test_initialize_propagates_registry_failure(self, executor):
        registry = MagicMock()
        registry.get_all = AsyncMock(side_effect=InfrastructureError("unreachable", operation="get_all"))
        scheduler = AgentScheduler(registry, executor)

        try:
            with pytest.raises(InfrastructureError):
                await scheduler.initialize()
        finally:
            await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_all_triggers(self, running_scheduler):
        await running_scheduler.shutdown()

        status = running_scheduler.status()
        assert status.active_trigger_count == 0
        assert status.running is False

    @pytest.mark.asyncio
    async def test_shutdown_before_start_is_noop(self, scheduler):
        await scheduler.shutdown()

        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_initialize_after_shutdown_restarts(self, running_scheduler, settlement_agent):
        """A stop issued by shutdown never lands on the restarted scheduler."""
        await running_scheduler.shutdown()

        await running_scheduler.initialize()
        await asyncio.sleep(0.01)

        status = running_scheduler.status()
        assert status.running is True
        assert status.scheduled_agent_ids == [settlement_agent.id]
        assert running_scheduler.next_run_time(settlement_agent.id) is not None


class TestFiring:
    """The trigger callback."""

    @pytest.mark.asyncio
    async def test_fire_runs_the_agent(self, scheduler, registry, settlement_agent):
        await scheduler._fire(settlement_agent.id, settlement_agent.name)

        agent = await registry.get_by_id(settlement_agent.id)
        assert agent.status == AgentStatus.SLEEPING
        assert agent.metrics.executions == 1

    @pytest.mark.asyncio
    async def test_fire_swallows_infrastructure_errors(self, registry, settlement_agent):
        executor = MagicMock()
        executor.execute = AsyncMock(side_effect=InfrastructureError("write failed", operation="update_status"))
        scheduler = AgentScheduler(registry, executor)

        await scheduler._fire(settlement_agent.id, settlement_agent.name)

        executor.execute.assert_awaited_once_with(settlement_agent.id)

    @pytest.mark.asyncio
    async def test_fire_swallows_unexpected_errors(self, registry, settlement_agent):
        executor = MagicMock()
        executor.execute = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler = AgentScheduler(registry, executor)

        await scheduler._fire(settlement_agent.id, settlement_agent.name)

    @pytest.mark.asyncio
    async def test_trigger_manually_delegates_to_executor(self, registry, settlement_agent):
        executor = MagicMock()
        executor.trigger_manually = AsyncMock(return_value=ExecutionResult(success=True, message="ok"))
        scheduler = AgentScheduler(registry, executor)

        result = await scheduler.trigger_manually(settlement_agent.id)

        assert result.success is True
        executor.trigger_manually.assert_awaited_once_with(settlement_agent.id)

    @pytest.mark.asyncio
    async def test_status_reports_in_flight_agents(self, registry):
        executor = MagicMock()
        executor.in_flight = {"b", "a"}
        scheduler = AgentScheduler(registry, executor)

        assert scheduler.status().in_flight_agent_ids == ["a", "b"]
