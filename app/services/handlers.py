"""
Agent handlers: the business operations an agent runs, keyed by agent type.

A handler takes no input beyond "run now" and either returns a
``HandlerOutcome`` or raises. Adding an agent type means registering another
handler in the ``HandlerRegistry``; the executor never branches on type.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

import structlog

from app.core.exceptions import ConfigurationError, HandlerError
from app.models.agent import AgentType

logger = structlog.get_logger(__name__)

# Default monthly collection target seeded into new performance rows
DEFAULT_MONTHLY_TARGET = 1200000


@dataclass
class HandlerOutcome:
    """What a handler reports back after a successful run."""
    message: str
    data: Optional[Dict[str, Any]] = None


class AgentHandler(ABC):
    """Base class for agent handlers."""

    agent_type: AgentType

    @abstractmethod
    async def run(self) -> HandlerOutcome:
        """Run the business operation once."""


class FunctionHandler(AgentHandler):
    """Adapts a plain coroutine function to the handler interface."""

    def __init__(self, agent_type: AgentType, func: Callable[[], Awaitable[HandlerOutcome]]):
        self.agent_type = agent_type
        self.func = func

    async def run(self) -> HandlerOutcome:
        return await self.func()


class SupabaseHandler(AgentHandler):
    """Base for handlers that operate on the collections tables in Supabase."""

    def __init__(self, client=None, timezone: str = "UTC"):
        self.client = client
        self.timezone = ZoneInfo(timezone)

    def _require_client(self):
        if self.client is None:
            raise HandlerError(f"Supabase client not configured for {self.agent_type.value} handler")
        return self.client

    def today(self) -> date:
        return datetime.now(self.timezone).date()


class SettlementExpiryHandler(SupabaseHandler):
    """Marks pending settlement offers past their expiry date as expired."""

    agent_type = AgentType.SETTLEMENT

    async def run(self) -> HandlerOutcome:
        client = self._require_client()
        today = self.today().isoformat()

        response = (
            client.table("Settlements")
            .select("id")
            .eq("status", "pending")
            .lt("expiry_date", today)
            .execute()
        )
        ids = [row["id"] for row in response.data or []]

        if ids:
            client.table("Settlements").update({"status": "expired"}).in_("id", ids).execute()

        logger.info("Expired settlements updated", expired_count=len(ids), cutoff=today)

        return HandlerOutcome(
            message=(
                "Successfully checked for expired settlements. "
                f"Found and updated {len(ids)} expired settlements."
            ),
            data={"expired_count": len(ids)},
        )


class PTPDefaultHandler(SupabaseHandler):
    """Flags pending manual promise-to-pay arrangements whose date has lapsed."""

    agent_type = AgentType.PTP

    async def run(self) -> HandlerOutcome:
        client = self._require_client()
        today = self.today().isoformat()

        response = (
            client.table("ManualPTP")
            .select("id")
            .eq("status", "pending")
            .lt("date", today)
            .execute()
        )
        ids = [row["id"] for row in response.data or []]

        if ids:
            client.table("ManualPTP").update({"status": "defaulted"}).in_("id", ids).execute()

        logger.info("Defaulted PTPs flagged", defaulted_count=len(ids), cutoff=today)

        return HandlerOutcome(
            message=f"Successfully checked for defaulted PTPs and updated {len(ids)} to defaulted."
        )


class MonthlyPerformanceHandler(SupabaseHandler):
    """Seeds one performance row for the current month per collection agent profile."""

    agent_type = AgentType.PERFORMANCE

    async def run(self) -> HandlerOutcome:
        client = self._require_client()
        month_year = self.today().replace(day=1).isoformat()

        profiles = client.table("profiles").select("id").eq("role", "agent").execute()
        existing = (
            client.table("agent_performance")
            .select("agent_id")
            .eq("month_year", month_year)
            .execute()
        )
        seeded = {row["agent_id"] for row in existing.data or []}

        now = datetime.now(self.timezone).isoformat()
        new_rows = [
            {
                "agent_id": profile["id"],
                "month_year": month_year,
                "collected_amount": 0,
                "target_amount": DEFAULT_MONTHLY_TARGET,
                "cases_closed": 0,
                "new_payment_plans": 0,
                "contacts_made": 0,
                "total_accounts": 0,
                "promises_to_pay": 0,
                "promises_kept": 0,
                "created_at": now,
                "updated_at": now,
            }
            for profile in profiles.data or []
            if profile["id"] not in seeded
        ]

        if new_rows:
            client.table("agent_performance").insert(new_rows).execute()

        logger.info("Monthly performance records seeded", created=len(new_rows), month_year=month_year)

        return HandlerOutcome(
            message=f"Successfully initialized monthly performance records ({len(new_rows)} created)."
        )


class HandlerRegistry:
    """Lookup of handlers keyed by agent type tag."""

    def __init__(self, handlers: Iterable[AgentHandler] = ()):
        self._handlers: Dict[str, AgentHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: AgentHandler) -> None:
        key = handler.agent_type.value
        if key in self._handlers:
            logger.warning("Replacing registered handler", agent_type=key)
        self._handlers[key] = handler

    def get(self, agent_type: str) -> AgentHandler:
        """
        Resolve the handler for an agent type.

        Raises:
            ConfigurationError: If the type is unknown or has no handler
        """
        handler = self._handlers.get(agent_type)
        if handler is None:
            known = {t.value for t in AgentType}
            if agent_type in known:
                raise ConfigurationError(f"No handler registered for agent type: {agent_type}")
            raise ConfigurationError(f"Unknown agent type: {agent_type}")
        return handler

    @property
    def agent_types(self) -> List[str]:
        return sorted(self._handlers)


def build_default_handlers(client=None, timezone: str = "UTC") -> HandlerRegistry:
    """Wire the settlement, PTP and monthly performance handlers."""
    return HandlerRegistry([
        SettlementExpiryHandler(client, timezone),
        PTPDefaultHandler(client, timezone),
        MonthlyPerformanceHandler(client, timezone),
    ])
