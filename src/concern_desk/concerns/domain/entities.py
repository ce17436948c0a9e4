"""
Concern Domain Entities
=======================

Pure Python domain entities for the concern aggregate and the people and
departments it references.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from concern_desk.config import (
    CrossAssignmentStatus,
    EscalationLevel,
    HANDLER_ROLES,
    TERMINAL_STATUSES,
    UserRole,
)
from concern_desk.shared.domain.clock import ensure_utc, hours_between


REFERENCE_PREFIX = "CNR"
_REFERENCE_PATTERN = re.compile(r"^CNR(\d{4})(\d{2})(\d{4,})$")


def new_id() -> str:
    return str(uuid.uuid4())


def reference_month(moment: datetime) -> str:
    """``CNR`` plus year and month, e.g. ``CNR202410``."""
    return f"{REFERENCE_PREFIX}{moment.year:04d}{moment.month:02d}"


def format_reference_number(moment: datetime, sequence: int) -> str:
    if sequence < 1:
        raise ValueError("Reference sequence starts at 1")
    return f"{reference_month(moment)}{sequence:04d}"


def parse_reference_sequence(reference_number: str) -> int:
    """Sequence part of a reference number."""
    match = _REFERENCE_PATTERN.match(reference_number or "")
    if not match:
        raise ValueError(f"Malformed reference number: {reference_number!r}")
    return int(match.group(3))


@dataclass
class User:
    """A student or a handler (staff, department head, admin)."""
    id: str
    name: str
    role: str
    department_id: Optional[str] = None
    is_active: bool = True
    can_handle_cross_department: bool = False
    email: Optional[str] = None

    @property
    def is_handler(self) -> bool:
        return self.role in HANDLER_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def heads_department(self, department_id: Optional[str]) -> bool:
        return (
            self.role == UserRole.DEPARTMENT_HEAD
            and department_id is not None
            and self.department_id == department_id
        )


@dataclass
class Department:
    """Organisational unit owning concerns."""
    id: str
    code: str
    name: str
    head_id: Optional[str] = None
    is_active: bool = True


@dataclass
class Concern:
    """
    Concern aggregate root.

    Every change to ``assigned_to``, ``status`` or the escalation fields
    goes through ``LifecycleStateMachine``. ``version`` is the optimistic
    concurrency token checked by the repository on update.
    """

    id: str
    reference_number: str
    subject: str
    description: str
    category: str
    priority: str
    status: str
    student_id: str
    department_id: str
    created_at: datetime
    updated_at: datetime

    facility_id: Optional[str] = None
    is_anonymous: bool = False
    attachments: List[dict] = field(default_factory=list)

    # Assignment
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_by: Optional[str] = None

    # Escalation
    escalation_level: str = EscalationLevel.NONE
    escalation_reason: Optional[str] = None
    escalated_by: Optional[str] = None
    escalated_at: Optional[datetime] = None
    last_reminder_sent: Optional[datetime] = None

    # Lifecycle timestamps
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    student_resolved_at: Optional[datetime] = None
    disputed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    # Resolution details
    rejection_reason: Optional[str] = None
    resolution_notes: Optional[str] = None
    student_resolution_notes: Optional[str] = None
    dispute_reason: Optional[str] = None
    rating: Optional[int] = None

    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def is_active(self) -> bool:
        """Counts toward its handler's workload."""
        return not self.is_terminal and not self.is_archived

    @property
    def escalation_anchor(self) -> datetime:
        """Start of the escalation clock: assignment time, else creation."""
        return self.assigned_at or self.created_at

    def hours_open(self, now: datetime) -> float:
        return hours_between(self.escalation_anchor, now)

    def snapshot(self) -> dict:
        """Audit view of the mutable fields."""
        return {
            "status": self.status,
            "priority": self.priority,
            "assigned_to": self.assigned_to,
            "escalation_level": self.escalation_level,
            "archived": self.is_archived,
            "version": self.version,
        }

    def normalize_timestamps(self) -> "Concern":
        for name in (
            "created_at", "updated_at", "assigned_at", "escalated_at",
            "last_reminder_sent", "approved_at", "rejected_at", "resolved_at",
            "student_resolved_at", "disputed_at", "closed_at", "archived_at",
        ):
            setattr(self, name, ensure_utc(getattr(self, name)))
        return self


@dataclass
class CrossDepartmentAssignment:
    """
    A concern handled by staff outside its owning department.

    Append-only except for ``complete``.
    """
    id: str
    concern_id: str
    staff_id: str
    requesting_department_id: str
    assigned_department_id: Optional[str]
    assignment_type: str
    estimated_duration_hours: int
    assigned_at: datetime
    status: str = CrossAssignmentStatus.ACTIVE
    assigned_by: Optional[str] = None
    reason: Optional[str] = None
    actual_duration_hours: Optional[float] = None
    completed_at: Optional[datetime] = None
    completion_notes: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == CrossAssignmentStatus.ACTIVE

    def complete(self, now: datetime, notes: Optional[str] = None) -> None:
        if not self.is_active:
            raise ValueError(f"Cross-department assignment {self.id} already completed")
        self.status = CrossAssignmentStatus.COMPLETED
        self.completed_at = now
        self.actual_duration_hours = round(hours_between(self.assigned_at, now), 2)
        self.completion_notes = notes


@dataclass
class ConcernEvent:
    """Append-only history entry for a concern."""
    id: str
    concern_id: str
    event_type: str
    message: str
    created_at: datetime
    actor_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)


class EventType(str):
    """Concern history entry types."""
    CREATED = "created"
    APPROVED = "approved"
    REJECTED = "rejected"
    STATUS_CHANGE = "status_change"
    ASSIGNMENT = "assignment"
    ESCALATION = "escalation"
    REMINDER = "reminder"
    RESOLUTION_CONFIRMATION = "resolution_confirmation"
    RESOLUTION_DISPUTE = "resolution_dispute"
    CROSS_DEPARTMENT = "cross_department"
    EMERGENCY = "emergency"
