"""
Dependency injection for FastAPI application.

Provides factory functions for building the orchestration components and
request-scoped accessors that read them from ``app.state``.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from app.core.config import Settings
from app.core.exceptions import ServiceUnavailableError
from app.database.agent_repository import (
    AgentRegistry,
    InMemoryAgentRegistry,
    SupabaseAgentRegistry,
)
from app.services.executor import AgentExecutor
from app.services.handlers import HandlerRegistry, build_default_handlers
from app.services.monitoring import AgentMonitoringService
from app.services.scheduler import AgentScheduler


@dataclass
class AgentRuntime:
    """The wired orchestration components of one running process."""
    registry: AgentRegistry
    handlers: HandlerRegistry
    executor: AgentExecutor
    scheduler: AgentScheduler
    monitoring: AgentMonitoringService


def build_registry(settings: Settings, client=None) -> AgentRegistry:
    """Supabase-backed registry when a client is available, in-memory otherwise."""
    if client is None:
        return InMemoryAgentRegistry(metrics_update_max_attempts=settings.metrics_update_max_attempts)
    return SupabaseAgentRegistry(
        client,
        table=settings.agents_table,
        metrics_update_max_attempts=settings.metrics_update_max_attempts,
    )


def build_runtime(
    settings: Settings,
    client=None,
    registry: Optional[AgentRegistry] = None,
    handlers: Optional[HandlerRegistry] = None,
) -> AgentRuntime:
    """
    Wire registry, handlers, executor, scheduler and monitoring.

    Args:
        settings: Application settings
        client: Supabase client, None for development mode
        registry: Registry override, built from settings when omitted
        handlers: Handler lookup override, the default handlers when omitted

    Returns:
        Configured AgentRuntime instance
    """
    registry = registry or build_registry(settings, client)
    handlers = handlers or build_default_handlers(client, settings.scheduler_timezone)

    executor = AgentExecutor(
        registry,
        handlers,
        timezone_name=settings.scheduler_timezone,
        handler_timeout_seconds=settings.handler_timeout_seconds,
    )
    scheduler = AgentScheduler(
        registry,
        executor,
        timezone_name=settings.scheduler_timezone,
        max_concurrent_runs=settings.max_concurrent_runs,
        misfire_grace_time=settings.misfire_grace_time_seconds,
    )
    monitoring = AgentMonitoringService(
        registry,
        overdue_threshold_hours=settings.overdue_threshold_hours,
        slow_execution_threshold_ms=settings.slow_execution_threshold_ms,
    )

    return AgentRuntime(
        registry=registry,
        handlers=handlers,
        executor=executor,
        scheduler=scheduler,
        monitoring=monitoring,
    )


def get_runtime(request: Request) -> AgentRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise ServiceUnavailableError("agent-orchestrator", "Agent runtime not initialized")
    return runtime


def get_registry(request: Request) -> AgentRegistry:
    return get_runtime(request).registry


def get_executor(request: Request) -> AgentExecutor:
    return get_runtime(request).executor


def get_scheduler(request: Request) -> AgentScheduler:
    return get_runtime(request).scheduler


def get_monitoring_service(request: Request) -> AgentMonitoringService:
    return get_runtime(request).monitoring
