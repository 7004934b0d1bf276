"""
Models package for the Agent Orchestration Service.
"""
from .agent import Agent, AgentDefinition, AgentMetrics, AgentStatus, AgentType, ExecutionResult

__all__ = ["Agent", "AgentDefinition", "AgentMetrics", "AgentStatus", "AgentType", "ExecutionResult"]
