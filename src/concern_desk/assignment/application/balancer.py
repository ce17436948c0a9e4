"""
Cross-Department Balancer
=========================

Department load analysis, rebalancing proposals and emergency assignment.

Proposals are advisory: ``rebalance_workload`` never writes, and
``execute_proposals`` has to be called explicitly. Each executed proposal
commits like any other assignment, re-checking the receiving handler's
capacity under that handler's lock.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from concern_desk.assignment.application.workload import WorkloadTracker
from concern_desk.assignment.domain.balancing import (
    DepartmentLoad,
    RebalanceProposal,
    propose_rebalance,
)
from concern_desk.assignment.domain.selector import AssignmentDecision, AssignmentSelector
from concern_desk.concerns.application.ports import IUnitOfWork, UnitOfWorkFactory
from concern_desk.concerns.application.services import cross_department_record
from concern_desk.concerns.application.transactions import ConcernTransactions, load_user
from concern_desk.concerns.domain.entities import Concern, CrossDepartmentAssignment, User
from concern_desk.concerns.domain.state_machine import (
    LifecycleStateMachine,
    Notification,
    TransitionResult,
    can_assign,
)
from concern_desk.config import AssignmentType, Priority
from concern_desk.core.exceptions import (
    ApplicationException,
    InvalidStateException,
    ResourceNotFoundException,
)
from concern_desk.shared.infrastructure.locks import KeyedLockRegistry, concern_key
from concern_desk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class WorkloadAnalysis:
    departments: List[DepartmentLoad]
    high_ratio: float
    low_ratio: float

    @property
    def overloaded(self) -> List[DepartmentLoad]:
        return [d for d in self.departments if d.is_overloaded(self.high_ratio)]

    @property
    def underloaded(self) -> List[DepartmentLoad]:
        return [d for d in self.departments if d.is_underloaded(self.low_ratio)]

    @property
    def system_utilization(self) -> Optional[float]:
        capacity = sum(d.capacity for d in self.departments)
        open_concerns = sum(d.open_concerns for d in self.departments)
        if capacity == 0:
            return None
        return round(open_concerns / capacity, 3)

    def to_dict(self) -> dict:
        return {
            "departments": [d.to_dict(self.high_ratio, self.low_ratio) for d in self.departments],
            "overloaded": [d.department_id for d in self.overloaded],
            "underloaded": [d.department_id for d in self.underloaded],
            "system_utilization": self.system_utilization,
        }


@dataclass
class ExecutionReport:
    executed: List[dict] = field(default_factory=list)
    failed: List[dict] = field(default_factory=list)


@dataclass
class EmergencyOutcome:
    concern: Concern
    handler: Optional[User] = None

    @property
    def assigned(self) -> bool:
        return self.handler is not None


@dataclass
class _ProposalPlan:
    proposal: RebalanceProposal
    actor: User

    @property
    def candidate_ids(self) -> List[str]:
        return [self.proposal.to_handler_id]


class CrossDepartmentBalancer:
    """Spreads load across departments."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        transactions: ConcernTransactions,
        locks: KeyedLockRegistry,
        state_machine: LifecycleStateMachine,
        selector: AssignmentSelector,
        workload: WorkloadTracker,
        high_load_ratio: float = 0.8,
        low_load_ratio: float = 0.3,
    ):
        self._uow_factory = uow_factory
        self._tx = transactions
        self._locks = locks
        self._machine = state_machine
        self._selector = selector
        self._workload = workload
        self.high_load_ratio = high_load_ratio
        self.low_load_ratio = low_load_ratio

    # ========== Analysis ==========

    async def analyze_workload(self) -> WorkloadAnalysis:
        async with self._uow_factory() as uow:
            departments = await self._workload.department_loads(uow)

        analysis = WorkloadAnalysis(departments, self.high_load_ratio, self.low_load_ratio)
        logger.info(
            "Workload analyzed",
            extra={
                "departments": len(departments),
                "overloaded": [d.department_id for d in analysis.overloaded],
                "system_utilization": analysis.system_utilization,
            },
        )
        return analysis

    async def handler_workload(self, handler_id: str) -> Dict[str, object]:
        """
        Open concerns, overload flag and resolution history for one handler.

        Raises:
            ResourceNotFoundException: unknown handler
        """
        async with self._uow_factory() as uow:
            handler = await load_user(uow, handler_id)
            workload = await self._workload.workload(uow, handler.id)
            average = await self._workload.average_resolution_hours(uow, handler.id)

        return {
            "handler_id": handler.id,
            "department_id": handler.department_id,
            "workload": workload,
            "capacity_cap": self._workload.capacity_cap,
            "is_overloaded": self._workload.is_overloaded(workload),
            "average_resolution_hours": round(average, 2) if average is not None else None,
        }

    async def rebalance_workload(self, department_id: str) -> List[RebalanceProposal]:
        """
        Propose moving queued concerns of an overloaded department elsewhere.

        Returns:
            Proposals, empty when the department is not overloaded or nobody
            outside it has room. Nothing is written.
        """
        async with self._uow_factory() as uow:
            department = await uow.departments.get_by_id(department_id)
            if department is None:
                raise ResourceNotFoundException("Department", department_id)

            loads = await self._workload.department_loads(uow, [department_id])
            if not loads:
                return []
            load = loads[0]
            if not load.is_overloaded(self.high_load_ratio):
                logger.info(
                    "Department not overloaded, nothing to rebalance",
                    extra={"department_id": department_id, "load_ratio": _ratio(load)},
                )
                return []

            queued = await uow.concerns.list_open_for_department(department_id)
            outside = await uow.users.list_handlers(cross_department_only=True)
            outside_loads = await self._workload.snapshot(
                uow, [u for u in outside if u.department_id != department_id]
            )

        proposals = propose_rebalance(
            load, queued, outside_loads, self._selector, self.high_load_ratio
        )
        logger.info(
            "Rebalance proposals computed",
            extra={
                "department_id": department_id,
                "load_ratio": _ratio(load),
                "queued": len(queued),
                "proposals": len(proposals),
            },
        )
        return proposals

    # ========== Execution ==========

    async def execute_proposals(
        self,
        proposals: Sequence[RebalanceProposal],
        actor_id: str,
    ) -> ExecutionReport:
        """
        Carry out proposals one by one.

        A failing proposal is reported and does not stop the rest.
        """
        report = ExecutionReport()
        for proposal in proposals:
            try:
                concern = await self._execute_one(proposal, actor_id)
            except ApplicationException as e:
                logger.warning(
                    "Rebalance proposal failed",
                    extra={"concern_id": proposal.concern_id, "handler_id": proposal.to_handler_id, "error": e.message},
                )
                report.failed.append({**proposal.to_dict(), "error": e.message})
                continue

            if concern is None:
                report.failed.append({**proposal.to_dict(), "error": "Handler at capacity"})
            else:
                report.executed.append(proposal.to_dict())

        logger.info(
            "Rebalance proposals executed",
            extra={"executed": len(report.executed), "failed": len(report.failed), "actor_id": actor_id},
        )
        return report

    async def _execute_one(self, proposal: RebalanceProposal, actor_id: str) -> Optional[Concern]:
        async def choose(uow: IUnitOfWork, concern: Concern, now: datetime) -> _ProposalPlan:
            actor = await load_user(uow, actor_id)
            can_assign(actor, concern).require("execute rebalance", actor, concern)
            if not concern.is_active:
                raise InvalidStateException(concern.id, concern.status, "rebalance")
            return _ProposalPlan(proposal=proposal, actor=actor)

        async def apply(
            uow: IUnitOfWork, concern: Concern, handler: User, now: datetime, plan: _ProposalPlan
        ) -> TransitionResult:
            result = self._machine.assign(concern, handler, now, actor=plan.actor, note=proposal.reason)
            await uow.cross_assignments.add(
                cross_department_record(
                    concern,
                    handler,
                    now,
                    AssignmentType.NORMAL,
                    proposal.estimated_duration_hours,
                    assigned_by=plan.actor.id,
                    reason=proposal.reason,
                )
            )
            result.notifications.append(
                Notification(
                    handler.id,
                    "Cross-Department Concern Assigned",
                    f"Concern #{concern.reference_number} has been reassigned to you to balance workload",
                    {"concern_id": concern.id, "cross_department": True},
                )
            )
            return result

        commit = await self._tx.commit_assignment(
            proposal.concern_id, choose, apply, actor_id=actor_id
        )
        return commit.concern if commit.assigned else None

    # ========== Emergency ==========

    async def activate_emergency(
        self,
        concern_id: str,
        reason: str,
        priority: str = Priority.URGENT,
        actor_id: Optional[str] = None,
    ) -> EmergencyOutcome:
        """
        Hand a concern to the least loaded cross-department handler right away.

        Returns:
            EmergencyOutcome; without a handler nothing was written
        """
        async def choose(uow: IUnitOfWork, concern: Concern, now: datetime) -> AssignmentDecision:
            if actor_id is not None:
                actor = await load_user(uow, actor_id)
                can_assign(actor, concern).require("activate emergency", actor, concern)
            if not concern.is_active:
                raise InvalidStateException(concern.id, concern.status, "activate emergency")
            outside = await uow.users.list_handlers(cross_department_only=True)
            loads = await self._workload.snapshot(uow, outside)
            return self._selector.select(concern, loads, emergency=True)

        async def apply(
            uow: IUnitOfWork, concern: Concern, handler: User, now: datetime, decision: AssignmentDecision
        ) -> TransitionResult:
            result = self._machine.activate_emergency(concern, handler, priority, reason, now)
            await uow.cross_assignments.add(
                cross_department_record(
                    concern,
                    handler,
                    now,
                    AssignmentType.EMERGENCY,
                    self._selector.emergency_duration_hours,
                    assigned_by=actor_id,
                    reason=reason,
                )
            )
            result.notifications.append(
                Notification(
                    handler.id,
                    "EMERGENCY: Concern Assigned",
                    f"Emergency assignment for concern #{concern.reference_number}: {reason}",
                    {"concern_id": concern.id, "priority": priority, "emergency": True},
                )
            )
            result.notifications.append(
                Notification(
                    concern.student_id,
                    "Concern Prioritized",
                    f"Your concern #{concern.reference_number} has been given emergency priority",
                    {"concern_id": concern.id},
                )
            )
            return result

        commit = await self._tx.commit_assignment(concern_id, choose, apply, actor_id=actor_id)
        if not commit.assigned:
            logger.warning(
                "No cross-department handler available for emergency",
                extra={"concern_id": concern_id, "reason": reason},
            )
        return EmergencyOutcome(concern=commit.concern, handler=commit.handler)

    # ========== Cross-department assignment records ==========

    async def complete_assignment(
        self, assignment_id: str, notes: Optional[str] = None
    ) -> CrossDepartmentAssignment:
        """
        Mark a cross-department assignment finished and record its actual duration.

        Raises:
            ResourceNotFoundException: unknown assignment
            InvalidStateException: assignment already completed
        """
        async with self._uow_factory() as uow:
            assignment = await uow.cross_assignments.get_by_id(assignment_id)
        if assignment is None:
            raise ResourceNotFoundException("CrossDepartmentAssignment", assignment_id)

        async with self._locks.hold(concern_key(assignment.concern_id)):
            async with self._uow_factory() as uow:
                assignment = await uow.cross_assignments.get_by_id(assignment_id)
                try:
                    assignment.complete(self._tx.clock.now(), notes)
                except ValueError as e:
                    raise InvalidStateException(
                        assignment.concern_id,
                        assignment.status,
                        "complete cross-department assignment",
                        message=str(e),
                        details={"assignment_id": assignment_id},
                    ) from e
                await uow.cross_assignments.complete(assignment)
                await uow.commit()

        logger.info(
            "Cross-department assignment completed",
            extra={
                "assignment_id": assignment.id,
                "concern_id": assignment.concern_id,
                "staff_id": assignment.staff_id,
                "actual_duration_hours": assignment.actual_duration_hours,
            },
        )
        return assignment

    async def assignment_stats(self, since: Optional[datetime] = None) -> Dict[str, object]:
        """Counts and durations of cross-department assignments."""
        async with self._uow_factory() as uow:
            assignments = await uow.cross_assignments.list_since(since)

        completed = [a for a in assignments if a.actual_duration_hours is not None]
        by_type: Dict[str, int] = {}
        for assignment in assignments:
            by_type[assignment.assignment_type] = by_type.get(assignment.assignment_type, 0) + 1

        return {
            "total": len(assignments),
            "active": sum(1 for a in assignments if a.is_active),
            "completed": len(completed),
            "by_type": by_type,
            "average_actual_duration_hours": (
                round(sum(a.actual_duration_hours for a in completed) / len(completed), 2)
                if completed else None
            ),
        }


def _ratio(load: DepartmentLoad) -> Optional[float]:
    ratio = load.load_ratio
    return None if math.isinf(ratio) else round(ratio, 3)
