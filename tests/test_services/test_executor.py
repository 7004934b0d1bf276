"""
Tests for the agent executor.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.exceptions import HandlerError, InfrastructureError
from app.database.agent_repository import InMemoryAgentRegistry
from app.models.agent import AgentStatus, AgentType
from app.services.executor import AgentExecutor
from app.services.handlers import (
    FunctionHandler,
    HandlerOutcome,
    HandlerRegistry,
    SettlementExpiryHandler,
)


def _executor(registry, handlers, **kwargs) -> AgentExecutor:
    return AgentExecutor(registry, handlers, timezone_name="Africa/Johannesburg", **kwargs)


def _settlement_client(expired_ids):
    """Mock Supabase client whose pending-settlement query returns the given ids."""
    client = MagicMock()
    query = client.table.return_value
    query.select.return_value.eq.return_value.lt.return_value.execute.return_value = MagicMock(
        data=[{"id": i} for i in expired_ids]
    )
    return client


class TestSuccessfulRun:
    """Runs whose handler returns."""

    @pytest.mark.asyncio
    async def test_manual_run_of_settlement_agent(self, registry, settlement_agent, fixed_now):
        """Three expired settlements found: sleeping, one success, result mentions 3."""
        handlers = HandlerRegistry([SettlementExpiryHandler(_settlement_client(["s1", "s2", "s3"]))])
        executor = _executor(registry, handlers, now=lambda: fixed_now)

        result = await executor.trigger_manually(settlement_agent.id)

        assert result.success is True
        assert result.data == {"expired_count": 3}
        assert "3" in result.message

        agent = await registry.get_by_id(settlement_agent.id)
        assert agent.status == AgentStatus.SLEEPING
        assert agent.metrics.executions == 1
        assert agent.metrics.successes == 1
        assert agent.metrics.failures == 0
        assert "3" in agent.last_result
        assert agent.last_run == fixed_now
        assert agent.next_run is not None
        assert agent.error is None

    @pytest.mark.asyncio
    async def test_running_mean_over_two_runs(self, registry, settlement_agent, handlers, fake_clock):
        """Durations of 100 ms then 300 ms average to 200 ms."""
        executor = _executor(registry, handlers, clock=fake_clock(0.0, 0.1, 1.0, 1.3))

        first = await executor.execute(settlement_agent.id)
        second = await executor.execute(settlement_agent.id)

        assert first.duration_ms == pytest.approx(100.0)
        assert second.duration_ms == pytest.approx(300.0)

        agent = await registry.get_by_id(settlement_agent.id)
        assert agent.metrics.executions == 2
        assert agent.metrics.avg_duration == pytest.approx(200.0)

    @pytest.mark.asyncio
    async def test_success_after_error_clears_error(self, registry, settlement_agent, handlers):
        await registry.update_status(settlement_agent.id, AgentStatus.ERROR, error="DB timeout")
        executor = _executor(registry, handlers)

        await executor.execute(settlement_agent.id)

        agent = await registry.get_by_id(settlement_agent.id)
        assert agent.status == AgentStatus.SLEEPING
        assert agent.error is None

    @pytest.mark.asyncio
    async def test_agent_is_running_while_handler_executes(self, registry, settlement_agent):
        observed = {}

        async def run():
            observed["status"] = (await registry.get_by_id(settlement_agent.id)).status
            return HandlerOutcome(message="ok")

        executor = _executor(registry, HandlerRegistry([FunctionHandler(AgentType.SETTLEMENT, run)]))

        await executor.execute(settlement_agent.id)

        assert observed["status"] == AgentStatus.RUNNING


class TestFailedRun:
    """Runs whose handler raises or cannot be resolved."""

    @pytest.mark.asyncio
    async def test_handler_exception_puts_agent_in_error(self, registry, settlement_agent, failing_handler):
        """Handler raising "DB timeout": error status, message stored, one failure."""
        handlers = HandlerRegistry([failing_handler(AgentType.SETTLEMENT, HandlerError("DB timeout"))])
        executor = _executor(registry, handlers)

        result = await executor.execute(settlement_agent.id)

        assert result.success is False
        assert "DB timeout" in result.message

        agent = await registry.get_by_id(settlement_agent.id)
        assert agent.status == AgentStatus.ERROR
        assert agent.error == "DB timeout"
        assert "DB timeout" in agent.last_result
        assert agent.metrics.executions == 1
        assert agent.metrics.failures == 1
        assert agent.metrics.successes == 0
        assert agent.next_run is not None

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_absorbed(self, registry, settlement_agent, failing_handler):
        handlers = HandlerRegistry([failing_handler(AgentType.SETTLEMENT, KeyError("id"))])
        executor = _executor(registry, handlers)

        result = await executor.execute(settlement_agent.id)

        assert result.success is False
        agent = await registry.get_by_id(settlement_agent.id)
        assert agent.status == AgentStatus.ERROR
        assert agent.error

    @pytest.mark.asyncio
    async def test_unknown_type_records_failure_without_error_state(self, make_agent, handlers):
        """No handler for the type: counted as a failure, agent goes back to sleep."""
        agent = make_agent(name="Legacy Job", type="archival")
        registry = InMemoryAgentRegistry([agent])
        executor = _executor(registry, handlers)

        result = await executor.execute(agent.id)

        assert result.success is False
        assert result.message == "Unknown agent type: archival"

        stored = await registry.get_by_id(agent.id)
        assert stored.status == AgentStatus.SLEEPING
        assert stored.error is None
        assert stored.last_result == "Unknown agent type: archival"
        assert stored.last_run is not None
        assert stored.metrics.failures == 1

    @pytest.mark.asyncio
    async def test_unknown_type_records_elapsed_duration(self, make_agent, handlers, fake_clock):
        agent = make_agent(name="Legacy Job", type="archival")
        registry = InMemoryAgentRegistry([agent])
        executor = _executor(registry, handlers, clock=fake_clock(10.0, 10.05))

        result = await executor.execute(agent.id)

        assert result.duration_ms == pytest.approx(50.0)
        stored = await registry.get_by_id(agent.id)
        assert stored.metrics.avg_duration == pytest.approx(50.0)

    @pytest.mark.asyncio
    async def test_known_type_without_handler(self, make_agent, handlers):
        agent = make_agent(name="Nightly Cleanup", type="cleanup")
        registry = InMemoryAgentRegistry([agent])

        result = await _executor(registry, handlers).execute(agent.id)

        assert result.message == "No handler registered for agent type: cleanup"

    @pytest.mark.asyncio
    async def test_handler_without_client_fails_run(self, registry, settlement_agent):
        executor = _executor(registry, HandlerRegistry([SettlementExpiryHandler(client=None)]))

        result = await executor.execute(settlement_agent.id)

        assert result.success is False
        agent = await registry.get_by_id(settlement_agent.id)
        assert agent.status == AgentStatus.ERROR
        assert "not configured" in agent.error

    @pytest.mark.asyncio
    async def test_handler_timeout_is_a_handler_fault(self, registry, settlement_agent):
        async def slow():
            await asyncio.sleep(1)
            return HandlerOutcome(message="too late")

        handlers = HandlerRegistry([FunctionHandler(AgentType.SETTLEMENT, slow)])
        executor = _executor(registry, handlers, handler_timeout_seconds=0.01)

        result = await executor.execute(settlement_agent.id)

        assert result.success is False
        agent = await registry.get_by_id(settlement_agent.id)
        assert agent.status == AgentStatus.ERROR
        assert "timed out" in agent.error


class TestMissingAndOverlappingRuns:
    """Runs that are rejected without touching the registry."""

    @pytest.mark.asyncio
    async def test_missing_agent_returns_failure_without_mutation(self, handlers):
        registry = MagicMock()
        registry.get_by_id = AsyncMock(return_value=None)
        registry.update_status = AsyncMock()
        registry.update_metrics = AsyncMock()
        executor = _executor(registry, handlers)

        result = await executor.execute("missing")

        assert result.success is False
        assert result.message == "Agent not found: missing"
        assert result.duration_ms == 0.0
        registry.update_status.assert_not_called()
        registry.update_metrics.assert_not_called()

    @pytest.mark.asyncio
    async def test_second_run_of_same_agent_is_rejected(self, registry, settlement_agent):
        """At most one run per agent is in flight."""
        release = asyncio.Event()
        calls = []

        async def blocking():
            calls.append(1)
            await release.wait()
            return HandlerOutcome(message="done")

        executor = _executor(registry, HandlerRegistry([FunctionHandler(AgentType.SETTLEMENT, blocking)]))

        first = asyncio.create_task(executor.execute(settlement_agent.id))
        await asyncio.sleep(0)
        assert executor.is_running(settlement_agent.id)

        second = await executor.execute(settlement_agent.id)
        release.set()
        first_result = await first

        assert second.success is False
        assert "already running" in second.message
        assert first_result.success is True
        assert len(calls) == 1
        assert executor.in_flight == set()

        agent = await registry.get_by_id(settlement_agent.id)
        assert agent.metrics.executions == 1

    @pytest.mark.asyncio
    async def test_different_agents_run_concurrently(self, make_agent):
        settlement = make_agent()
        ptp = make_agent(name="PTP Default Checker", type="ptp")
        registry = InMemoryAgentRegistry([settlement, ptp])
        release = asyncio.Event()

        async def blocking():
            await release.wait()
            return HandlerOutcome(message="done")

        handlers = HandlerRegistry([
            FunctionHandler(AgentType.SETTLEMENT, blocking),
            FunctionHandler(AgentType.PTP, blocking),
        ])
        executor = _executor(registry, handlers)

        tasks = [
            asyncio.create_task(executor.execute(settlement.id)),
            asyncio.create_task(executor.execute(ptp.id)),
        ]
        await asyncio.sleep(0)
        assert executor.in_flight == {settlement.id, ptp.id}

        release.set()
        results = await asyncio.gather(*tasks)

        assert all(r.success for r in results)

    @pytest.mark.asyncio
    async def test_registry_failure_propagates_and_releases_guard(self, settlement_agent, handlers):
        registry = MagicMock()
        registry.get_by_id = AsyncMock(return_value=settlement_agent)
        registry.update_status = AsyncMock(side_effect=InfrastructureError("write failed", operation="update_status"))
        executor = _executor(registry, handlers)

        with pytest.raises(InfrastructureError):
            await executor.execute(settlement_agent.id)

        assert not executor.is_running(settlement_agent.id)
