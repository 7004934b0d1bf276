"""
Agent registration: the default maintenance agents and boot-time upsert.
"""

from typing import List, Optional, Sequence

import structlog

from app.core.exceptions import InfrastructureError
from app.database.agent_repository import AgentRegistry
from app.models.agent import Agent, AgentDefinition, AgentType

logger = structlog.get_logger(__name__)


DEFAULT_AGENTS: Sequence[AgentDefinition] = (
    AgentDefinition(
        name="Settlement Expiry Checker",
        type=AgentType.SETTLEMENT,
        schedule="0 0 * * *",  # Daily at midnight
    ),
    AgentDefinition(
        name="PTP Default Checker",
        type=AgentType.PTP,
        schedule="0 0 * * *",  # Daily at midnight
    ),
    AgentDefinition(
        name="Monthly Performance Initializer",
        type=AgentType.PERFORMANCE,
        schedule="0 1 1 * *",  # First day of month at 1 AM
    ),
)


async def register_agents(
    registry: AgentRegistry,
    definitions: Optional[Sequence[AgentDefinition]] = None,
    reset_state: bool = True,
) -> List[Agent]:
    """
    Register agent definitions, idempotent by name.

    A failure to register one agent is logged and does not stop the rest.

    Args:
        registry: Agent registry to upsert into
        definitions: Definitions to register, the default agents when omitted
        reset_state: Reset status and metrics of agents that already exist

    Returns:
        The agents that were stored
    """
    definitions = DEFAULT_AGENTS if definitions is None else definitions
    registered: List[Agent] = []

    logger.info("Registering agents", count=len(definitions), reset_state=reset_state)

    for definition in definitions:
        try:
            registered.append(await registry.register(definition, reset_state=reset_state))
        except InfrastructureError as e:
            logger.error("Error registering agent", agent_name=definition.name, error=e.message)

    logger.info("Agent registration complete", registered=len(registered), requested=len(definitions))
    return registered
