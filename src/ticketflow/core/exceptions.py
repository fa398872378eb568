"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries (HTTP layer, pipeline step runner).
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConflictException(DomainException):
    """Operation would violate a uniqueness or lifecycle invariant."""


class PermissionDeniedException(DomainException):
    """Actor is not allowed to perform the operation on this resource."""


class InvalidTransitionException(DomainException):
    """Requested status change is not a valid lifecycle transition."""

    def __init__(self, current: Optional[str], target: str):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move ticket from {current} to {target}",
            {"current": current, "target": target}
        )


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


# ========== Infrastructure failures ==========

class TransientException(ApplicationException):
    """Failure that may succeed when retried (timeouts, dropped connections)."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class RepositoryUnavailableException(RepositoryException, TransientException):
    """The data store could not be reached."""


class ExternalServiceException(TransientException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class LLMException(ExternalServiceException):
    """Exception for LLM API failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("LLM Service", message, details)


# ========== Pipeline control flow ==========

class NonRetriableError(ApplicationException):
    """Aborts the remaining steps of a pipeline run without retrying."""


class StepAbortedError(ApplicationException):
    """A required pipeline step kept failing after all retries."""

    def __init__(self, step_name: str, cause: Exception):
        self.step_name = step_name
        self.cause = cause
        super().__init__(
            f"Step '{step_name}' failed: {cause}",
            {"step": step_name, "error_type": type(cause).__name__}
        )
