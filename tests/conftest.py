"""
Pytest configuration and fixtures for the Agent Orchestration Service.
"""
from datetime import datetime, timezone
from typing import Callable, Generator, Iterable
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.core.config import settings
from app.database.agent_repository import InMemoryAgentRegistry
from app.models.agent import Agent, AgentStatus, AgentType
from app.services.handlers import FunctionHandler, HandlerOutcome, HandlerRegistry


class _FakeClock:
    """Monotonic clock returning a scripted sequence of readings in seconds."""

    def __init__(self, readings: Iterable[float]):
        self._readings = iter(readings)

    def __call__(self) -> float:
        return next(self._readings)


def _outcome_handler(agent_type: AgentType, message: str, data: dict = None) -> FunctionHandler:
    """Handler that always succeeds with the given message."""

    async def run() -> HandlerOutcome:
        return HandlerOutcome(message=message, data=data)

    return FunctionHandler(agent_type, run)


def _failing_handler(agent_type: AgentType, error: Exception) -> FunctionHandler:
    """Handler that always raises the given exception."""

    async def run() -> HandlerOutcome:
        raise error

    return FunctionHandler(agent_type, run)


@pytest.fixture
def fake_clock() -> Callable[..., _FakeClock]:
    """Factory for clocks that return the given readings in order."""
    return lambda *readings: _FakeClock(readings)


@pytest.fixture
def outcome_handler() -> Callable[..., FunctionHandler]:
    return _outcome_handler


@pytest.fixture
def failing_handler() -> Callable[..., FunctionHandler]:
    return _failing_handler


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def make_agent() -> Callable[..., Agent]:
    """Factory for agent records with sensible defaults."""

    def _make(**overrides) -> Agent:
        fields = {
            "name": "Settlement Expiry Checker",
            "type": AgentType.SETTLEMENT.value,
            "status": AgentStatus.SLEEPING,
            "schedule": "0 0 * * *",
        }
        fields.update(overrides)
        return Agent(**fields)

    return _make


@pytest.fixture
def settlement_agent(make_agent) -> Agent:
    return make_agent()


@pytest.fixture
def registry(settlement_agent) -> InMemoryAgentRegistry:
    """In-memory registry seeded with the settlement agent."""
    return InMemoryAgentRegistry([settlement_agent])


@pytest.fixture
def handlers() -> HandlerRegistry:
    """Successful handlers for the three default agent types."""
    return HandlerRegistry([
        _outcome_handler(
            AgentType.SETTLEMENT,
            "Successfully checked for expired settlements. Found and updated 3 expired settlements.",
            {"expired_count": 3},
        ),
        _outcome_handler(AgentType.PTP, "Successfully checked for defaulted PTPs and updated 0 to defaulted."),
        _outcome_handler(AgentType.PERFORMANCE, "Successfully initialized monthly performance records (0 created)."),
    ])


@pytest.fixture
def client(handlers: HandlerRegistry) -> Generator[TestClient, None, None]:
    """
    Create a test client for the FastAPI application.

    Startup runs in development mode: the in-memory registry is seeded with
    the default agents and the handlers fixture replaces the Supabase-backed
    handlers.
    """
    from app.main import app

    with patch("app.main.create_supabase_client", return_value=None), \
            patch("app.core.dependencies.build_default_handlers", return_value=handlers):
        with TestClient(app) as test_client:
            yield test_client


@pytest.fixture
def sample_headers() -> dict:
    """Sample request headers with correlation ID."""
    return {
        "X-Correlation-ID": "test-correlation-123",
        "Content-Type": "application/json",
    }


@pytest.fixture
def api_prefix() -> str:
    """Get the API prefix from settings."""
    return settings.api_prefix
