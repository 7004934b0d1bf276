"""Agent Orchestration Service for Collections Maintenance

This service runs the collections system's scheduled maintenance agents:
- Registers named agents with a cron schedule and a type
- Fires each agent on its schedule in one fixed timezone
- Dispatches every run to the handler for the agent's type
- Records run status and execution metrics
- Reports statistics and health for monitoring
"""

__version__ = "1.0.0"
