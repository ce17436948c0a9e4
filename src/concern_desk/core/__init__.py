"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from concern_desk.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    AuthorizationException,
    InvalidStateException,
    NotConfirmableException,
    ResourceNotFoundException,
    ConcurrencyConflictException,
    ConfigurationException,
    ExternalServiceException,
    NotificationException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "AuthorizationException",
    "InvalidStateException",
    "NotConfirmableException",
    "ResourceNotFoundException",
    "ConcurrencyConflictException",
    "ConfigurationException",
    "ExternalServiceException",
    "NotificationException",
]
