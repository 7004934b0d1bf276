"""
Agent monitoring: read-only statistics, recent runs and health over the registry.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import structlog

from app.core.logging import performance_timing
from app.database.agent_repository import AgentRegistry
from app.models.agent import Agent, AgentStatus
from app.schemas.monitoring import (
    AgentHealth,
    AgentStatistics,
    HealthClass,
    HealthReport,
    MonitoringOverview,
    RecentExecution,
    SystemLoad,
    SystemMetrics,
)
from app.utils.cron import is_daily_at_midnight

logger = structlog.get_logger(__name__)

_SEVERITY = {HealthClass.HEALTHY: 0, HealthClass.WARNING: 1, HealthClass.CRITICAL: 2}


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class AgentMonitoringService:
    """Aggregates agent records into statistics and health classifications."""

    def __init__(
        self,
        registry: AgentRegistry,
        overdue_threshold_hours: float = 25.0,
        slow_execution_threshold_ms: float = 300000.0,
        high_load_success_rate: float = 80.0,
        medium_load_success_rate: float = 95.0,
        medium_load_avg_execution_ms: float = 60000.0,
    ):
        self.registry = registry
        self.overdue_threshold = timedelta(hours=overdue_threshold_hours)
        self.slow_execution_threshold_ms = slow_execution_threshold_ms
        self.high_load_success_rate = high_load_success_rate
        self.medium_load_success_rate = medium_load_success_rate
        self.medium_load_avg_execution_ms = medium_load_avg_execution_ms

    async def aggregate_statistics(self) -> AgentStatistics:
        agents = await self.registry.get_all()
        return self._statistics(agents)

    def _statistics(self, agents: List[Agent]) -> AgentStatistics:
        by_status = {status: 0 for status in AgentStatus}
        executions = successes = 0
        total_duration = 0.0

        for agent in agents:
            by_status[agent.status] += 1
            executions += agent.metrics.executions
            successes += agent.metrics.successes
            total_duration += agent.metrics.avg_duration * agent.metrics.executions

        return AgentStatistics(
            total_agents=len(agents),
            active_agents=by_status[AgentStatus.RUNNING],
            idle_agents=by_status[AgentStatus.IDLE],
            sleeping_agents=by_status[AgentStatus.SLEEPING],
            error_agents=by_status[AgentStatus.ERROR],
            total_executions=executions,
            total_successes=successes,
            success_rate=successes / executions * 100 if executions else 0.0,
            avg_execution_time=total_duration / executions if executions else 0.0,
        )

    async def recent_executions(self, limit: int = 10) -> List[RecentExecution]:
        """Agents that have run at least once, most recent first."""
        agents = [a for a in await self.registry.get_all() if a.last_run is not None]
        agents.sort(key=lambda a: _aware(a.last_run), reverse=True)

        return [
            RecentExecution(
                agent_id=agent.id,
                agent_name=agent.name,
                last_run=agent.last_run,
                status=agent.status.value,
                duration=agent.metrics.avg_duration,
                result=agent.last_result,
                error=agent.error,
            )
            for agent in agents[:max(limit, 0)]
        ]

    async def health_report(self, now: Optional[datetime] = None) -> HealthReport:
        """
        Classify every agent as healthy, warning or critical.

        All matching rules contribute an issue; the most severe match decides
        the bucket.

        Args:
            now: Reference time for the overdue check, defaults to the current time

        Returns:
            Per-bucket totals and per-agent detail
        """
        now = _aware(now or datetime.now(timezone.utc))
        report = HealthReport()

        for agent in await self.registry.get_all():
            health = self._classify(agent, now)
            report.agents.append(health)
            setattr(report, health.status.value, getattr(report, health.status.value) + 1)

        if report.critical:
            logger.warning(
                "Critical agents detected",
                critical=report.critical,
                agents=[a.name for a in report.agents if a.status == HealthClass.CRITICAL],
            )

        return report

    def _classify(self, agent: Agent, now: datetime) -> AgentHealth:
        issues: List[str] = []
        level = HealthClass.HEALTHY

        def flag(issue: str, severity: HealthClass) -> None:
            nonlocal level
            issues.append(issue)
            if _SEVERITY[severity] > _SEVERITY[level]:
                level = severity

        if agent.status == AgentStatus.ERROR:
            flag("Agent in error state", HealthClass.CRITICAL)

        rate = agent.metrics.success_rate
        success_rate = 100.0 if rate is None else rate
        if success_rate < 50:
            flag("Low success rate", HealthClass.CRITICAL)
        elif success_rate < 80:
            flag("Moderate success rate", HealthClass.WARNING)

        if (
            agent.last_run is not None
            and is_daily_at_midnight(agent.schedule)
            and now - _aware(agent.last_run) > self.overdue_threshold
        ):
            flag("Overdue execution", HealthClass.WARNING)

        if agent.metrics.avg_duration > self.slow_execution_threshold_ms:
            flag("Slow execution time", HealthClass.WARNING)

        return AgentHealth(
            id=agent.id,
            name=agent.name,
            status=level,
            last_run=agent.last_run,
            success_rate=success_rate,
            avg_response_time=agent.metrics.avg_duration,
            issues=issues,
        )

    def _load(self, stats: AgentStatistics) -> SystemLoad:
        if stats.error_agents > 0 or stats.success_rate < self.high_load_success_rate:
            return SystemLoad.HIGH
        if (
            stats.avg_execution_time > self.medium_load_avg_execution_ms
            or stats.success_rate < self.medium_load_success_rate
        ):
            return SystemLoad.MEDIUM
        return SystemLoad.LOW

    async def system_load(self) -> SystemLoad:
        return self._load(await self.aggregate_statistics())

    async def system_metrics(self) -> SystemMetrics:
        stats = await self.aggregate_statistics()
        return SystemMetrics(
            total_agents=stats.total_agents,
            total_executions=stats.total_executions,
            successful_executions=stats.total_successes,
            failed_executions=stats.total_executions - stats.total_successes,
            avg_execution_time=stats.avg_execution_time,
            system_load=self._load(stats),
        )

    async def overview(self, limit: int = 5) -> MonitoringOverview:
        with performance_timing("monitoring_overview"):
            return MonitoringOverview(
                statistics=await self.aggregate_statistics(),
                recent_executions=await self.recent_executions(limit),
                health=await self.health_report(),
                system=await self.system_metrics(),
            )
