"""
Concern Infrastructure Layer
============================

SQLAlchemy persistence and default collaborator implementations.
"""

from concern_desk.concerns.infrastructure.external import (
    LoggingAuditLog,
    LoggingChatChannelGateway,
    WebhookNotifier,
)
from concern_desk.concerns.infrastructure.repositories import SQLAlchemyUnitOfWork

__all__ = [
    "LoggingAuditLog",
    "LoggingChatChannelGateway",
    "SQLAlchemyUnitOfWork",
    "WebhookNotifier",
]
