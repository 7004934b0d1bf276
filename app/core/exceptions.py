"""
Custom exception classes for the Agent Orchestration Service.
"""
from typing import Optional, Any, Dict
import uuid
from fastapi import HTTPException, status


class BaseAPIException(HTTPException):
    """Base exception for API errors."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.detail,
            "correlation_id": self.correlation_id,
            "context": self.context,
        }


class ValidationError(BaseAPIException):
    """Exception for request validation errors."""

    def __init__(
        self,
        detail: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **context
    ):
        error_code = "AGT_001"
        if field:
            error_code = f"AGT_001_{field.upper()}"
            detail = f"Validation failed for field '{field}': {detail}"

        context_dict = {"field": field, "value": value, **context}

        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code,
            context=context_dict,
        )


class NotFoundAPIError(BaseAPIException):
    """Exception for a requested agent that does not exist."""

    def __init__(self, resource: str, resource_id: str, **context):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {resource_id}",
            error_code="AGT_002",
            context={"resource": resource, "resource_id": resource_id, **context},
        )


class ServiceUnavailableError(BaseAPIException):
    """Exception for datastore or scheduler unavailability."""

    def __init__(
        self,
        service_name: str,
        detail: Optional[str] = None,
        retry_after: Optional[int] = None,
        **context
    ):
        self.service_name = service_name
        self.retry_after = retry_after
        if not detail:
            detail = f"Service '{service_name}' is currently unavailable"

        headers = {}
        if retry_after:
            headers["Retry-After"] = str(retry_after)

        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code="AGT_004",
            headers=headers,
            context={"service_name": service_name, "retry_after": retry_after, **context},
        )


class InternalServerError(BaseAPIException):
    """Exception for unexpected internal errors."""

    def __init__(self, detail: str = "An unexpected internal error occurred"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code="INTERNAL_SERVER_ERROR",
        )


# Agent orchestration exceptions
class AgentError(Exception):
    """Base exception for agent orchestration errors."""

    def __init__(self, message: str, agent_id: Optional[str] = None, **context):
        self.message = message
        self.agent_id = agent_id
        self.context = context
        super().__init__(message)


class ConfigurationError(AgentError):
    """Invalid cron expression, unknown agent type or missing collaborator."""

    pass


class AgentNotFoundError(AgentError):
    """Agent id absent from the registry."""

    def __init__(self, agent_id: str, **context):
        super().__init__(f"Agent not found: {agent_id}", agent_id=agent_id, **context)


class HandlerError(AgentError):
    """The business operation behind an agent failed."""

    pass


class InfrastructureError(AgentError):
    """Registry read or write failure."""

    def __init__(self, message: str, operation: Optional[str] = None, **context):
        self.operation = operation
        super().__init__(message, operation=operation, **context)


class MetricsConflictError(AgentError):
    """A concurrent metrics write won the race; the update must be retried."""

    def __init__(self, agent_id: str, expected_version: int):
        self.expected_version = expected_version
        super().__init__(
            f"Metrics for agent {agent_id} changed concurrently (expected version {expected_version})",
            agent_id=agent_id,
        )
