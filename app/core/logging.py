"""
Structured logging configuration with correlation IDs and agent run context.
"""
import random
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Context variables for request- and run-scoped data
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
agent_id_var: ContextVar[Optional[str]] = ContextVar('agent_id', default=None)
agent_name_var: ContextVar[Optional[str]] = ContextVar('agent_name', default=None)

SERVICE_NAME = "agent-orchestrator"


def add_correlation_id(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add correlation ID to log events."""
    correlation_id = correlation_id_var.get()
    if correlation_id:
        event_dict.setdefault("correlation_id", correlation_id)
    return event_dict


def add_agent_context(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add the agent currently being executed to log events."""
    agent_id = agent_id_var.get()
    if agent_id:
        event_dict.setdefault("agent_id", agent_id)

    agent_name = agent_name_var.get()
    if agent_name:
        event_dict.setdefault("agent_name", agent_name)

    return event_dict


def add_service_context(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add service context to log events."""
    event_dict["service"] = SERVICE_NAME
    return event_dict


def add_timestamp(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO format timestamp to log events."""
    event_dict["timestamp"] = time.time()
    event_dict["iso_timestamp"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    return event_dict


class LogSampler:
    """Log sampler for high-volume scenarios."""

    def __init__(self, sample_rate: float = 1.0):
        """
        Initialize sampler.

        Args:
            sample_rate: Rate between 0.0 and 1.0 for sampling logs
        """
        self.sample_rate = max(0.0, min(1.0, sample_rate))

    def should_log(self, level: str = "info") -> bool:
        """Determine if a log event should be sampled."""
        # Always log errors and warnings
        if level.lower() in ("error", "warning", "critical", "exception"):
            return True

        if self.sample_rate >= 1.0:
            return True
        if self.sample_rate <= 0.0:
            return False
        return random.random() < self.sample_rate


_log_sampler = LogSampler()


def drop_unsampled(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Drop info/debug events according to the configured sample rate."""
    if not _log_sampler.should_log(method_name):
        raise structlog.DropEvent
    return event_dict


def setup_logging(sample_rate: float = 1.0) -> None:
    """
    Configure structured logging.

    Args:
        sample_rate: Sampling rate for info/debug logs (0.0-1.0)
    """
    global _log_sampler
    _log_sampler = LogSampler(sample_rate)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            drop_unsampled,
            add_timestamp,
            add_service_context,
            add_correlation_id,
            add_agent_context,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def get_performance_logger() -> structlog.stdlib.BoundLogger:
    """Get a performance logger instance."""
    return structlog.get_logger("performance")


def get_correlation_id() -> Optional[str]:
    """Get correlation ID from current context."""
    return correlation_id_var.get()


def new_correlation_id() -> str:
    return str(uuid.uuid4())[:8]


@contextmanager
def correlation_context(correlation_id: Optional[str] = None):
    """
    Context manager for setting the correlation ID of a request or run.

    Args:
        correlation_id: Correlation ID, generated when omitted
    """
    token = correlation_id_var.set(correlation_id or new_correlation_id())
    try:
        yield correlation_id_var.get()
    finally:
        correlation_id_var.reset(token)


@contextmanager
def agent_context(agent_id: str, agent_name: Optional[str] = None):
    """
    Bind the agent being executed to every log event emitted inside the block.

    Args:
        agent_id: Agent identifier
        agent_name: Human label of the agent
    """
    id_token = agent_id_var.set(agent_id)
    name_token = agent_name_var.set(agent_name)
    try:
        yield
    finally:
        agent_name_var.reset(name_token)
        agent_id_var.reset(id_token)


@contextmanager
def performance_timing(operation_name: str, **context):
    """
    Context manager for timing operations.

    Args:
        operation_name: Name of the operation being timed
        **context: Extra fields logged with the completion event
    """
    start_time = time.perf_counter()
    logger = get_performance_logger()

    try:
        yield
    finally:
        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        logger.info(
            "Operation completed",
            operation=operation_name,
            duration_ms=duration_ms,
            **context
        )
