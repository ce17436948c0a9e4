"""
Assignment Selector
===================

Picks a handler for a concern from a workload snapshot.

Order of pools:
1. Active staff and department heads of the concern's department.
2. When that leaves nobody under the cap, or for emergencies, active
   cross-department-capable handlers from other departments.

Candidates at or above the capacity cap are dropped. The rest are ranked by
workload, then average resolution time (handlers with no history last),
then id. Selection has no side effects; the caller commits the choice and
re-checks capacity at that point, falling back down the ranked list.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from concern_desk.config import (
    AssignmentType,
    ConcernCategory,
    EscalationLevel,
    Priority,
    UserRole,
)
from concern_desk.concerns.domain.entities import Concern, User


BASE_DURATION_HOURS = {
    Priority.URGENT: 2,
    Priority.HIGH: 4,
    Priority.MEDIUM: 8,
    Priority.LOW: 24,
}

CATEGORY_DURATION_MULTIPLIER = {
    ConcernCategory.ACADEMIC: 1.0,
    ConcernCategory.TECHNICAL: 1.5,
    ConcernCategory.ADMINISTRATIVE: 0.8,
    ConcernCategory.HEALTH: 0.5,
    ConcernCategory.SAFETY: 0.3,
}

IN_DEPARTMENT_ROLES = (UserRole.STAFF, UserRole.DEPARTMENT_HEAD)


def estimate_duration_hours(priority: str, category: str) -> int:
    """Expected handling time of a normal cross-department assignment."""
    base = BASE_DURATION_HOURS.get(priority, BASE_DURATION_HOURS[Priority.MEDIUM])
    multiplier = CATEGORY_DURATION_MULTIPLIER.get(category, 1.0)
    return max(1, round(base * multiplier))


@dataclass(frozen=True)
class HandlerLoad:
    """A handler with the workload figures selection ranks on."""
    handler: User
    workload: int
    average_resolution_hours: Optional[float] = None

    @property
    def handler_id(self) -> str:
        return self.handler.id

    def rank_key(self, workload: Optional[int] = None) -> tuple:
        avg = self.average_resolution_hours
        return (
            self.workload if workload is None else workload,
            avg is None,
            avg if avg is not None else 0.0,
            self.handler.id,
        )


@dataclass
class AssignmentDecision:
    """
    Result of a selection.

    ``handler_id`` is None when no candidate survived; that is a normal
    outcome and the concern stays unassigned for manual review.
    """
    handler_id: Optional[str]
    candidates: List[HandlerLoad] = field(default_factory=list)
    cross_department: bool = False
    source_department_id: Optional[str] = None
    assignment_type: Optional[str] = None
    estimated_duration_hours: Optional[int] = None
    level: Optional[str] = None
    reason: str = ""

    @property
    def is_assigned(self) -> bool:
        return self.handler_id is not None

    @property
    def candidate_ids(self) -> List[str]:
        return [load.handler_id for load in self.candidates]


class AssignmentSelector:
    """Stateless handler selection."""

    def __init__(self, capacity_cap: int = 10, emergency_duration_hours: int = 2):
        self.capacity_cap = capacity_cap
        self.emergency_duration_hours = emergency_duration_hours

    def rank(self, loads: Iterable[HandlerLoad]) -> List[HandlerLoad]:
        return sorted(loads, key=lambda load: load.rank_key())

    def available(self, loads: Iterable[HandlerLoad]) -> List[HandlerLoad]:
        """Active candidates under the capacity cap, best first."""
        return self.rank(
            load for load in loads
            if load.handler.is_active and load.workload < self.capacity_cap
        )

    def select(
        self,
        concern: Concern,
        loads: Sequence[HandlerLoad],
        emergency: bool = False,
    ) -> AssignmentDecision:
        """Select a handler for a newly submitted concern."""
        if not emergency:
            in_department = self.available(
                load for load in loads
                if load.handler.department_id == concern.department_id
                and load.handler.role in IN_DEPARTMENT_ROLES
            )
            if in_department:
                return AssignmentDecision(
                    handler_id=in_department[0].handler_id,
                    candidates=in_department,
                    reason="Lowest workload in department",
                )

        return self.select_cross_department(concern, loads, emergency=emergency)

    def select_cross_department(
        self,
        concern: Concern,
        loads: Sequence[HandlerLoad],
        emergency: bool = False,
    ) -> AssignmentDecision:
        """Select among cross-department-capable handlers outside the concern's department."""
        pool = self.available(
            load for load in loads
            if load.handler.can_handle_cross_department
            and load.handler.is_handler
            and load.handler.department_id != concern.department_id
            and load.handler_id != concern.assigned_to
        )
        assignment_type = AssignmentType.EMERGENCY if emergency else AssignmentType.NORMAL
        if not pool:
            return AssignmentDecision(
                handler_id=None,
                cross_department=True,
                assignment_type=assignment_type,
                reason="No handler with spare capacity",
            )

        best = pool[0]
        return AssignmentDecision(
            handler_id=best.handler_id,
            candidates=pool,
            cross_department=True,
            source_department_id=best.handler.department_id,
            assignment_type=assignment_type,
            estimated_duration_hours=(
                self.emergency_duration_hours if emergency
                else estimate_duration_hours(concern.priority, concern.category)
            ),
            reason="Emergency cross-department assignment" if emergency else "Cross-department assignment",
        )

    def select_for_escalation(
        self,
        concern: Concern,
        level: str,
        loads: Sequence[HandlerLoad],
    ) -> AssignmentDecision:
        """
        Select the handler a concern escalates to.

        staff: another staff member of the department.
        department_head: a head of the department.
        admin: any admin.
        The current assignee is never selected.
        """
        if level == EscalationLevel.STAFF:
            predicate = lambda user: (
                user.role == UserRole.STAFF and user.department_id == concern.department_id
            )
        elif level == EscalationLevel.DEPARTMENT_HEAD:
            predicate = lambda user: user.heads_department(concern.department_id)
        elif level == EscalationLevel.ADMIN:
            predicate = lambda user: user.is_admin
        else:
            raise ValueError(f"Cannot escalate to level '{level}'")

        pool = self.available(
            load for load in loads
            if predicate(load.handler) and load.handler_id != concern.assigned_to
        )
        if not pool:
            return AssignmentDecision(
                handler_id=None,
                level=level,
                reason=f"No {level.replace('_', ' ')} available",
            )
        return AssignmentDecision(
            handler_id=pool[0].handler_id,
            candidates=pool,
            level=level,
            reason=f"Escalation to {level.replace('_', ' ')}",
        )
