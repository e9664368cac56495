"""
Core Module
============

Framework-agnostic building blocks shared by every bounded context.
"""

from cmms.core.exceptions import (
    ApplicationException,
    DomainException,
    ValidationException,
    ConflictException,
    CapacityException,
    ResourceNotFoundException,
    RepositoryException,
    ConfigurationException,
    ExternalServiceException,
    TransientInfraException,
    NotificationException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "ValidationException",
    "ConflictException",
    "CapacityException",
    "ResourceNotFoundException",
    "RepositoryException",
    "ConfigurationException",
    "ExternalServiceException",
    "TransientInfraException",
    "NotificationException",
]
