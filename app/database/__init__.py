"""
Datastore access for the Agent Orchestration Service.
"""
from .agent_repository import AgentRegistry, InMemoryAgentRegistry, SupabaseAgentRegistry
from .client import create_supabase_client

__all__ = [
    "AgentRegistry",
    "InMemoryAgentRegistry",
    "SupabaseAgentRegistry",
    "create_supabase_client",
]
