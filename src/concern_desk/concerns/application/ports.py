"""
Concern Application Ports
=========================

Repository and collaborator interfaces the application layer depends on
(Dependency Inversion). Infrastructure provides the implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from concern_desk.concerns.domain.entities import (
    Concern,
    ConcernEvent,
    CrossDepartmentAssignment,
    Department,
    User,
)


# ========== Repository Interfaces ==========

class IConcernRepository(ABC):
    """Interface for concern data access."""

    @abstractmethod
    async def get_by_id(self, concern_id: str) -> Optional[Concern]:
        """Get concern by id."""

    @abstractmethod
    async def add(self, concern: Concern) -> Concern:
        """Insert a new concern."""

    @abstractmethod
    async def update(self, concern: Concern) -> Concern:
        """
        Persist changes guarded by ``concern.version``.

        Raises:
            ConcurrencyConflictException: stored version no longer matches
        """

    @abstractmethod
    async def last_reference_sequence(self, month_prefix: str) -> int:
        """Highest sequence issued under ``month_prefix`` (0 when none)."""

    @abstractmethod
    async def count_active_by_handler(self, handler_ids: Iterable[str]) -> Dict[str, int]:
        """Open, non-archived concerns per handler (missing handlers map to 0)."""

    @abstractmethod
    async def average_resolution_hours(self, handler_ids: Iterable[str]) -> Dict[str, float]:
        """Mean hours from assignment to staff resolution, for handlers with history."""

    @abstractmethod
    async def list_by_status(self, statuses: Sequence[str], limit: Optional[int] = None) -> List[Concern]:
        """Non-archived concerns in any of ``statuses``, oldest first."""

    @abstractmethod
    async def list_open_for_department(self, department_id: str) -> List[Concern]:
        """Active concerns owned by a department, unassigned first then oldest."""

    @abstractmethod
    async def count_open_by_department(self) -> Dict[str, int]:
        """Active concerns per owning department."""

    @abstractmethod
    async def count_submitted(self, since: Optional[datetime] = None) -> int:
        """Concerns created at or after ``since`` (all concerns when None)."""

    @abstractmethod
    async def count_escalated_by_level(self, since: Optional[datetime] = None) -> Dict[str, int]:
        """Escalated concerns per current escalation level, by ``escalated_at``."""


class IUserRepository(ABC):
    """Interface for user data access."""

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[User]:
        """Get user by id."""

    @abstractmethod
    async def add(self, user: User) -> User:
        """Insert a user."""

    @abstractmethod
    async def list_handlers(
        self,
        department_id: Optional[str] = None,
        roles: Optional[Sequence[str]] = None,
        cross_department_only: bool = False,
    ) -> List[User]:
        """Active handlers filtered by department, role and cross-department capability."""

    @abstractmethod
    async def department_heads(self, department_id: str) -> List[User]:
        """Active department heads of a department."""


class IDepartmentRepository(ABC):
    """Interface for department data access."""

    @abstractmethod
    async def get_by_id(self, department_id: str) -> Optional[Department]:
        """Get department by id."""

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[Department]:
        """Get department by code."""

    @abstractmethod
    async def add(self, department: Department) -> Department:
        """Insert a department."""

    @abstractmethod
    async def list_active(self) -> List[Department]:
        """Active departments."""


class ICrossDepartmentAssignmentRepository(ABC):
    """Interface for cross-department assignment data access."""

    @abstractmethod
    async def add(self, assignment: CrossDepartmentAssignment) -> CrossDepartmentAssignment:
        """Insert an assignment."""

    @abstractmethod
    async def get_by_id(self, assignment_id: str) -> Optional[CrossDepartmentAssignment]:
        """Get assignment by id."""

    @abstractmethod
    async def complete(self, assignment: CrossDepartmentAssignment) -> CrossDepartmentAssignment:
        """Persist the single completion mutation."""

    @abstractmethod
    async def list_active_for_concern(self, concern_id: str) -> List[CrossDepartmentAssignment]:
        """Active assignments of a concern."""

    @abstractmethod
    async def list_since(self, since: Optional[datetime] = None) -> List[CrossDepartmentAssignment]:
        """Assignments created at or after ``since`` (all when None)."""


class IConcernEventRepository(ABC):
    """Interface for the append-only concern history."""

    @abstractmethod
    async def add(self, event: ConcernEvent) -> ConcernEvent:
        """Append an event."""

    @abstractmethod
    async def list_for_concern(self, concern_id: str) -> List[ConcernEvent]:
        """History of a concern, oldest first."""


class IUnitOfWork(ABC):
    """
    One transaction over all repositories.

    Used as ``async with uow_factory() as uow``; leaving the block without
    ``commit()`` rolls back.
    """

    concerns: IConcernRepository
    users: IUserRepository
    departments: IDepartmentRepository
    cross_assignments: ICrossDepartmentAssignmentRepository
    events: IConcernEventRepository

    async def __aenter__(self) -> "IUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.rollback()

    @abstractmethod
    async def commit(self) -> None:
        """Commit the transaction."""

    @abstractmethod
    async def rollback(self) -> None:
        """Roll back anything not yet committed."""


UnitOfWorkFactory = Callable[[], IUnitOfWork]


# ========== Collaborator Interfaces ==========

class INotifier(ABC):
    """Push/email/SMS fan-out."""

    @abstractmethod
    async def notify(self, user_id: str, title: str, body: str, data: Optional[dict] = None) -> None:
        """Deliver a notification to a user."""


class IChatChannelGateway(ABC):
    """Per-concern chat channel management."""

    @abstractmethod
    async def open_channel(
        self,
        concern: Concern,
        participants: Sequence[str],
        author_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        """Open (or join participants to) the concern's channel, posting ``message``."""

    @abstractmethod
    async def close_channel(self, concern: Concern) -> None:
        """Close the concern's channel."""

    @abstractmethod
    async def reopen_channel(
        self,
        concern: Concern,
        author_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        """Reactivate a closed channel."""


class IAuditLog(ABC):
    """Audit trail sink."""

    @abstractmethod
    async def record(self, actor_id: Optional[str], action: str, before: dict, after: dict) -> None:
        """Record a state change."""


@dataclass
class Collaborators:
    """External capabilities the orchestrator consumes."""
    notifier: INotifier
    chat: IChatChannelGateway
    audit: IAuditLog
