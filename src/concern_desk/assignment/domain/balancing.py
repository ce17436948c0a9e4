"""
Department Load Balancing
=========================

Load ratios per department and rebalancing proposals for overloaded ones.

A department's load ratio is its open concerns (unassigned or handled
in-house) over the capacity of its active handlers. A department with open
concerns and no handlers is infinitely loaded.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from concern_desk.assignment.domain.selector import (
    AssignmentSelector,
    HandlerLoad,
    estimate_duration_hours,
)
from concern_desk.concerns.domain.entities import Concern


@dataclass(frozen=True)
class DepartmentLoad:
    department_id: str
    name: str
    open_concerns: int
    active_handlers: int
    capacity_cap: int

    @property
    def capacity(self) -> int:
        return self.active_handlers * self.capacity_cap

    def ratio_for(self, open_concerns: int) -> float:
        if self.capacity == 0:
            return math.inf if open_concerns > 0 else 0.0
        return open_concerns / self.capacity

    @property
    def load_ratio(self) -> float:
        return self.ratio_for(self.open_concerns)

    def is_overloaded(self, high_ratio: float) -> bool:
        return self.load_ratio >= high_ratio

    def is_underloaded(self, low_ratio: float) -> bool:
        return self.load_ratio <= low_ratio

    def to_dict(self, high_ratio: float, low_ratio: float) -> dict:
        ratio = self.load_ratio
        return {
            "department_id": self.department_id,
            "name": self.name,
            "open_concerns": self.open_concerns,
            "active_handlers": self.active_handlers,
            "capacity": self.capacity,
            "load_ratio": None if math.isinf(ratio) else round(ratio, 3),
            "is_overloaded": self.is_overloaded(high_ratio),
            "is_underloaded": self.is_underloaded(low_ratio),
        }


@dataclass(frozen=True)
class RebalanceProposal:
    """Suggested move of one queued concern to an outside handler. Never applied implicitly."""
    concern_id: str
    reference_number: str
    from_department_id: str
    to_handler_id: str
    to_department_id: Optional[str]
    handler_workload: int
    estimated_duration_hours: int
    reason: str

    def to_dict(self) -> dict:
        return {
            "concern_id": self.concern_id,
            "reference_number": self.reference_number,
            "from_department_id": self.from_department_id,
            "to_handler_id": self.to_handler_id,
            "to_department_id": self.to_department_id,
            "handler_workload": self.handler_workload,
            "estimated_duration_hours": self.estimated_duration_hours,
            "reason": self.reason,
        }


def propose_rebalance(
    department: DepartmentLoad,
    queued: Sequence[Concern],
    outside_handlers: Sequence[HandlerLoad],
    selector: AssignmentSelector,
    high_ratio: float,
) -> List[RebalanceProposal]:
    """
    Spread an overloaded department's queue over outside handlers.

    ``queued`` must already be ordered (unassigned first, then oldest).
    Each proposal counts against the receiving handler's simulated workload
    so proposals spread out; proposing stops once the department would drop
    below ``high_ratio`` or no outside handler has room.
    """
    if not department.is_overloaded(high_ratio):
        return []

    simulated: Dict[str, int] = {load.handler_id: load.workload for load in outside_handlers}
    remaining = department.open_concerns
    proposals: List[RebalanceProposal] = []

    for concern in queued:
        if department.ratio_for(remaining) < high_ratio:
            break
        room = [
            load for load in outside_handlers
            if load.handler.is_active
            and load.handler.can_handle_cross_department
            and load.handler.department_id != department.department_id
            and load.handler_id != concern.assigned_to
            and simulated[load.handler_id] < selector.capacity_cap
        ]
        if not room:
            break

        best = min(room, key=lambda load: load.rank_key(simulated[load.handler_id]))
        proposals.append(
            RebalanceProposal(
                concern_id=concern.id,
                reference_number=concern.reference_number,
                from_department_id=department.department_id,
                to_handler_id=best.handler_id,
                to_department_id=best.handler.department_id,
                handler_workload=simulated[best.handler_id],
                estimated_duration_hours=estimate_duration_hours(concern.priority, concern.category),
                reason=f"Department load at {department.ratio_for(remaining):.0%} of capacity",
            )
        )
        simulated[best.handler_id] += 1
        remaining -= 1

    return proposals
