"""
Core Exceptions
================

Exception taxonomy for the maintenance core.

Domain-rule violations (validation, conflict, capacity, not found) are raised
to the immediate caller. Infrastructure failures surface as
TransientInfraException so callers know a retry may succeed.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain rule violations."""


class ValidationException(DomainException):
    """Malformed or out-of-domain input."""


class ConflictException(DomainException):
    """Lost a state race: already assigned, already an active member, etc."""


class CapacityException(DomainException):
    """Team or workload limit exceeded, or the leader gate is unmet."""


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


class RepositoryException(ApplicationException):
    """Unexpected data access error."""


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external collaborator failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class TransientInfraException(ExternalServiceException):
    """Persistence or transport unavailable; the caller may retry."""


class NotificationException(TransientInfraException):
    """Push gateway failure."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification Gateway", message, details)
