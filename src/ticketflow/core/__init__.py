"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from ticketflow.core.exceptions import (
    ApplicationException,
    DomainException,
    ValidationException,
    ResourceNotFoundException,
    ConflictException,
    PermissionDeniedException,
    InvalidTransitionException,
    ConfigurationException,
    TransientException,
    RepositoryException,
    RepositoryUnavailableException,
    ExternalServiceException,
    LLMException,
    NonRetriableError,
    StepAbortedError,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConflictException",
    "PermissionDeniedException",
    "InvalidTransitionException",
    "ConfigurationException",
    "TransientException",
    "RepositoryException",
    "RepositoryUnavailableException",
    "ExternalServiceException",
    "LLMException",
    "NonRetriableError",
    "StepAbortedError",
]
