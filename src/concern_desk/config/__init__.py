"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="concern-desk", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/concerns",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Escalation ==========
    escalation_config_path: Path = Field(
        default=Path("escalation_config.yaml"),
        description="Path to escalation thresholds YAML file"
    )
    escalation_sweep_interval: int = Field(
        default=300,
        description="Seconds between escalation sweeps",
        ge=10
    )
    sweep_ticket_timeout_seconds: float = Field(
        default=10.0,
        description="Time budget for processing a single concern during a sweep",
        gt=0
    )

    # ========== Assignment ==========
    workload_capacity_cap: int = Field(
        default=10,
        description="Maximum open concerns per handler for automatic assignment",
        ge=1
    )
    high_load_ratio: float = Field(
        default=0.8,
        description="Department load ratio at or above which it is overloaded",
        gt=0
    )
    low_load_ratio: float = Field(
        default=0.3,
        description="Department load ratio at or below which it has spare capacity",
        ge=0
    )
    emergency_duration_hours: int = Field(
        default=2,
        description="Estimated duration of an emergency cross-department assignment",
        ge=1
    )
    conflict_retries: int = Field(
        default=3,
        description="Attempts for a concern write that loses an optimistic version race",
        ge=1
    )

    # ========== Lifecycle ==========
    rejection_reason_min_length: int = Field(
        default=10,
        description="Minimum characters in a rejection reason",
        ge=1
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook receiving user notifications (push/email fan-out)"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification webhook calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "testing", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str):
    """Concern priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ConcernCategory(str):
    """Concern categories, in classifier table order."""
    ACADEMIC = "academic"
    FINANCIAL = "financial"
    ADMINISTRATIVE = "administrative"
    TECHNICAL = "technical"
    HOUSING = "housing"
    HEALTH = "health"
    SAFETY = "safety"
    GENERAL = "general"


class ConcernStatus(str):
    """Concern lifecycle statuses."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    STAFF_RESOLVED = "staff_resolved"
    STUDENT_CONFIRMED = "student_confirmed"
    DISPUTED = "disputed"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class EscalationLevel(str):
    """Authority tiers a concern can be raised to."""
    NONE = "none"
    STAFF = "staff"
    DEPARTMENT_HEAD = "department_head"
    ADMIN = "admin"


class UserRole(str):
    """User roles."""
    STUDENT = "student"
    STAFF = "staff"
    DEPARTMENT_HEAD = "department_head"
    ADMIN = "admin"


class Sentiment(str):
    """Keyword sentiment of concern text."""
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class AssignmentType(str):
    """Cross-department assignment types."""
    NORMAL = "normal"
    EMERGENCY = "emergency"


class CrossAssignmentStatus(str):
    """Cross-department assignment states."""
    ACTIVE = "active"
    COMPLETED = "completed"


# ========== Lists for validation ==========

VALID_PRIORITIES = [
    Priority.LOW, Priority.MEDIUM,
    Priority.HIGH, Priority.URGENT
]
PRIORITY_RANK = {p: i for i, p in enumerate(VALID_PRIORITIES)}
VALID_STATUSES = [
    ConcernStatus.PENDING, ConcernStatus.APPROVED, ConcernStatus.REJECTED,
    ConcernStatus.IN_PROGRESS, ConcernStatus.STAFF_RESOLVED,
    ConcernStatus.STUDENT_CONFIRMED, ConcernStatus.DISPUTED,
    ConcernStatus.CLOSED, ConcernStatus.CANCELLED
]
TERMINAL_STATUSES = frozenset({
    ConcernStatus.STUDENT_CONFIRMED, ConcernStatus.CLOSED,
    ConcernStatus.REJECTED, ConcernStatus.CANCELLED
})
ESCALATION_LEVELS = [
    EscalationLevel.NONE, EscalationLevel.STAFF,
    EscalationLevel.DEPARTMENT_HEAD, EscalationLevel.ADMIN
]
ESCALATION_RANK = {level: i for i, level in enumerate(ESCALATION_LEVELS)}
HANDLER_ROLES = frozenset({UserRole.STAFF, UserRole.DEPARTMENT_HEAD, UserRole.ADMIN})
