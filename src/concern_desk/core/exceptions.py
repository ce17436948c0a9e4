"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

Every exception carries a human message plus a ``details`` dict with the
concern id and attempted transition where relevant, so the API layer can
surface enough context for the caller to act.
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


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Malformed input, rejected before any mutation."""


class AuthorizationException(DomainException):
    """Actor lacks the role or relationship for the requested transition."""

    def __init__(
        self,
        action: str,
        actor_id: Optional[str],
        reason: str,
        details: Optional[dict] = None
    ):
        self.action = action
        self.actor_id = actor_id
        self.reason = reason
        payload = {"action": action, "actor_id": actor_id, "reason": reason}
        payload.update(details or {})
        super().__init__(f"Not allowed to {action}: {reason}", payload)


class InvalidStateException(DomainException):
    """Requested transition is not legal from the concern's current status."""

    def __init__(
        self,
        concern_id: Optional[str],
        current_status: str,
        attempted: str,
        message: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.concern_id = concern_id
        self.current_status = current_status
        self.attempted = attempted
        payload = {
            "concern_id": concern_id,
            "current_status": current_status,
            "attempted": attempted,
        }
        payload.update(details or {})
        super().__init__(
            message or f"Cannot {attempted} a concern in status '{current_status}'",
            payload
        )


class NotConfirmableException(InvalidStateException):
    """Confirm/dispute attempted on a concern that is not awaiting the student."""

    def __init__(self, concern_id: Optional[str], current_status: str, attempted: str):
        super().__init__(
            concern_id,
            current_status,
            attempted,
            message=(
                f"Concern is not confirmable: status is '{current_status}', "
                "expected 'staff_resolved'"
            ),
            details={"not_confirmable": True},
        )


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


class ConcurrencyConflictException(RepositoryException):
    """A concern write lost an optimistic version race."""

    def __init__(self, concern_id: str, expected_version: int):
        self.concern_id = concern_id
        self.expected_version = expected_version
        super().__init__(
            f"Concern {concern_id} was modified concurrently",
            {"concern_id": concern_id, "expected_version": expected_version}
        )


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class NotificationException(ExternalServiceException):
    """Exception for notification delivery failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification Service", message, details)
