"""
Concern Application Services
============================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

``LifecycleService`` covers submission with automatic assignment and every
student and handler driven transition. All writes go through
``ConcernTransactions`` so side effects cannot be skipped.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from concern_desk.assignment.application.workload import WorkloadTracker
from concern_desk.assignment.domain.selector import (
    AssignmentDecision,
    AssignmentSelector,
    IN_DEPARTMENT_ROLES,
    estimate_duration_hours,
)
from concern_desk.concerns.application.dto import AssignmentOutcome, ConcernDraft
from concern_desk.concerns.application.ports import IUnitOfWork, UnitOfWorkFactory
from concern_desk.concerns.application.transactions import (
    ConcernTransactions,
    load_concern,
    load_user,
)
from concern_desk.concerns.domain.entities import (
    Concern,
    ConcernEvent,
    CrossDepartmentAssignment,
    Department,
    EventType,
    User,
    format_reference_number,
    new_id,
    reference_month,
)
from concern_desk.concerns.domain.state_machine import (
    LifecycleStateMachine,
    Notification,
    TransitionResult,
    can_assign,
    higher_priority,
)
from concern_desk.config import AssignmentType, ConcernStatus, UserRole
from concern_desk.core.exceptions import (
    AuthorizationException,
    ValidationException,
)
from concern_desk.shared.infrastructure.locks import KeyedLockRegistry, reference_key
from concern_desk.shared.infrastructure.logging import get_logger
from concern_desk.triage.domain.classifier import PriorityClassifier
from concern_desk.triage.domain.entities import PriorityAnalysis

logger = get_logger(__name__)


@dataclass
class SubmissionResult:
    concern: Concern
    priority_analysis: PriorityAnalysis
    assignment: AssignmentOutcome


@dataclass
class _ManualPlan:
    actor: User
    handler: User

    @property
    def candidate_ids(self) -> List[str]:
        return [self.handler.id]


async def candidate_handlers(uow: IUnitOfWork, concern: Concern) -> List[User]:
    """In-department staff and heads plus every cross-department-capable handler."""
    local = await uow.users.list_handlers(
        department_id=concern.department_id, roles=IN_DEPARTMENT_ROLES
    )
    outside = await uow.users.list_handlers(cross_department_only=True)
    return local + [user for user in outside if user.department_id != concern.department_id]


def cross_department_record(
    concern: Concern,
    handler: User,
    now: datetime,
    assignment_type: str,
    estimated_hours: int,
    assigned_by: Optional[str] = None,
    reason: Optional[str] = None,
) -> CrossDepartmentAssignment:
    return CrossDepartmentAssignment(
        id=new_id(),
        concern_id=concern.id,
        staff_id=handler.id,
        requesting_department_id=concern.department_id,
        assigned_department_id=handler.department_id,
        assignment_type=assignment_type,
        estimated_duration_hours=estimated_hours,
        assigned_at=now,
        assigned_by=assigned_by,
        reason=reason,
    )


class LifecycleService:
    """
    Submission and lifecycle transitions of concerns.

    Authorization and validation happen inside the state machine before any
    mutation; this service loads the actors, builds notifications and routes
    every write through ``ConcernTransactions``.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        transactions: ConcernTransactions,
        locks: KeyedLockRegistry,
        state_machine: LifecycleStateMachine,
        selector: AssignmentSelector,
        workload: WorkloadTracker,
        classifier: Optional[PriorityClassifier] = None,
    ):
        self._uow_factory = uow_factory
        self._tx = transactions
        self._locks = locks
        self._machine = state_machine
        self._selector = selector
        self._workload = workload
        self._classifier = classifier or PriorityClassifier()

    # ========== Submission ==========

    async def submit(self, draft: ConcernDraft) -> SubmissionResult:
        """
        Create a concern, classify it and try to assign it right away.

        Args:
            draft: Validated submission payload

        Returns:
            SubmissionResult; an unassigned outcome is a success, the concern
            waits for manual review

        Raises:
            AuthorizationException: submitter is not an active student
            ValidationException: department cannot be resolved
        """
        analysis = self._classifier.classify(f"{draft.subject} {draft.description}")

        async with self._uow_factory() as uow:
            student = await load_user(uow, draft.student_id)
            if student.role != UserRole.STUDENT or not student.is_active:
                raise AuthorizationException(
                    "submit a concern", student.id, "only active students may submit concerns"
                )
            department = await self._resolve_department(uow, draft, analysis)

        priority = higher_priority(draft.priority, analysis.priority) if draft.priority else analysis.priority
        concern = await self._create(draft, department, analysis, priority)
        logger.info(
            "Concern submitted",
            extra={
                "concern_id": concern.id,
                "reference_number": concern.reference_number,
                "priority": concern.priority,
                "category": concern.category,
                "department_id": concern.department_id,
                "auto_escalation": analysis.auto_escalation,
            },
        )

        outcome, concern = await self._auto_assign(concern)

        if analysis.auto_escalation:
            await self._notify_auto_escalation(concern, analysis)

        return SubmissionResult(concern=concern, priority_analysis=analysis, assignment=outcome)

    async def _resolve_department(
        self,
        uow: IUnitOfWork,
        draft: ConcernDraft,
        analysis: PriorityAnalysis,
    ) -> Department:
        if draft.department_id:
            department = await uow.departments.get_by_id(draft.department_id)
        else:
            department = await uow.departments.get_by_code(analysis.department_hint)
        if department is None or not department.is_active:
            raise ValidationException(
                "Target department is unknown or inactive",
                {
                    "department_id": draft.department_id,
                    "department_hint": analysis.department_hint,
                },
            )
        return department

    async def _create(
        self,
        draft: ConcernDraft,
        department: Department,
        analysis: PriorityAnalysis,
        priority: str,
    ) -> Concern:
        now = self._tx.clock.now()
        month = reference_month(now)

        async with self._locks.hold(reference_key(month)):
            async with self._uow_factory() as uow:
                sequence = await uow.concerns.last_reference_sequence(month) + 1
                concern = Concern(
                    id=new_id(),
                    reference_number=format_reference_number(now, sequence),
                    subject=draft.subject,
                    description=draft.description,
                    category=draft.category or analysis.category,
                    priority=priority,
                    status=ConcernStatus.PENDING,
                    student_id=draft.student_id,
                    department_id=department.id,
                    facility_id=draft.facility_id,
                    is_anonymous=draft.is_anonymous,
                    attachments=[a.model_dump() for a in draft.attachments],
                    created_at=now,
                    updated_at=now,
                )
                await uow.concerns.add(concern)
                await uow.events.add(
                    ConcernEvent(
                        id=new_id(),
                        concern_id=concern.id,
                        event_type=EventType.CREATED,
                        message=f"Concern {concern.reference_number} submitted",
                        created_at=now,
                        actor_id=draft.student_id,
                        metadata={"priority_analysis": analysis.to_dict()},
                    )
                )
                await uow.commit()
        return concern

    async def _auto_assign(self, concern: Concern) -> Tuple[AssignmentOutcome, Concern]:
        async def choose(uow: IUnitOfWork, fresh: Concern, now: datetime) -> AssignmentDecision:
            loads = await self._workload.snapshot(uow, await candidate_handlers(uow, fresh))
            return self._selector.select(fresh, loads)

        async def apply(
            uow: IUnitOfWork, fresh: Concern, handler: User, now: datetime, decision: AssignmentDecision
        ) -> TransitionResult:
            result = self._machine.assign(fresh, handler, now)
            heads = await uow.users.department_heads(fresh.department_id)
            result.chat.participants.extend(h.id for h in heads if h.id not in result.chat.participants)

            cross = handler.department_id != fresh.department_id
            if cross:
                await uow.cross_assignments.add(
                    cross_department_record(
                        fresh,
                        handler,
                        now,
                        AssignmentType.NORMAL,
                        estimate_duration_hours(fresh.priority, fresh.category),
                        reason="No in-department capacity at submission",
                    )
                )
            result.notifications.append(
                Notification(
                    handler.id,
                    "New Concern Assigned",
                    f"Concern #{fresh.reference_number} has been assigned to you: {fresh.subject}",
                    {"concern_id": fresh.id, "priority": fresh.priority, "cross_department": cross},
                )
            )
            result.notifications.append(
                Notification(
                    fresh.student_id,
                    "Concern Assigned",
                    f"Your concern #{fresh.reference_number} has been assigned to {handler.name}",
                    {"concern_id": fresh.id},
                )
            )
            return result

        commit = await self._tx.commit_assignment(concern.id, choose, apply)
        if commit.assigned:
            return (
                AssignmentOutcome(
                    status="assigned",
                    handler_id=commit.handler.id,
                    handler_name=commit.handler.name,
                    cross_department=commit.handler.department_id != commit.concern.department_id,
                    message=f"Assigned to {commit.handler.name}",
                ),
                commit.concern,
            )

        logger.warning(
            "No handler available, concern left for manual review",
            extra={
                "concern_id": concern.id,
                "reference_number": concern.reference_number,
                "department_id": concern.department_id,
            },
        )
        return (
            AssignmentOutcome(status="unassigned", message="Unassigned, pending manual review"),
            commit.concern,
        )

    async def _notify_auto_escalation(self, concern: Concern, analysis: PriorityAnalysis) -> None:
        async with self._uow_factory() as uow:
            heads = await uow.users.department_heads(concern.department_id)

        result = TransitionResult(
            action="auto_escalation",
            before={},
            after=concern.snapshot(),
            notifications=[
                Notification(
                    head.id,
                    "URGENT: Auto-Escalated Concern",
                    f"Concern #{concern.reference_number} has been auto-escalated to URGENT priority: "
                    f"{concern.subject}",
                    {
                        "concern_id": concern.id,
                        "priority": concern.priority,
                        "escalation_reasons": list(analysis.reasons),
                        "confidence": analysis.confidence,
                    },
                )
                for head in heads
            ],
        )
        logger.info(
            "Concern auto-escalated",
            extra={
                "concern_id": concern.id,
                "reference_number": concern.reference_number,
                "notified": [head.id for head in heads],
            },
        )
        await self._tx.dispatch(concern, None, result)

    # ========== Approval ==========

    async def approve(self, concern_id: str, actor_id: str) -> Concern:
        async def apply(uow: IUnitOfWork, concern: Concern, now: datetime) -> TransitionResult:
            actor = await load_user(uow, actor_id)
            result = self._machine.approve(concern, actor, now)
            result.notifications.append(
                Notification(
                    concern.student_id,
                    "Concern Approved",
                    f"Your concern #{concern.reference_number} has been approved",
                    {"concern_id": concern.id},
                )
            )
            return result

        concern, _ = await self._tx.mutate(concern_id, actor_id, apply)
        return concern

    async def reject(self, concern_id: str, actor_id: str, reason: str) -> Concern:
        async def apply(uow: IUnitOfWork, concern: Concern, now: datetime) -> TransitionResult:
            actor = await load_user(uow, actor_id)
            result = self._machine.reject(concern, actor, reason, now)
            result.notifications.append(
                Notification(
                    concern.student_id,
                    "Concern Rejected",
                    f"Your concern #{concern.reference_number} was rejected: {concern.rejection_reason}",
                    {"concern_id": concern.id},
                )
            )
            return result

        concern, _ = await self._tx.mutate(concern_id, actor_id, apply)
        return concern

    # ========== Status updates ==========

    async def update_status(
        self,
        concern_id: str,
        actor_id: str,
        new_status: str,
        note: Optional[str] = None,
    ) -> Concern:
        async def apply(uow: IUnitOfWork, concern: Concern, now: datetime) -> TransitionResult:
            actor = await load_user(uow, actor_id)
            if new_status == ConcernStatus.STUDENT_CONFIRMED and actor.id == concern.student_id:
                return await self._confirm(uow, concern, actor, now, note, None)
            if new_status == ConcernStatus.DISPUTED and actor.id == concern.student_id:
                return await self._dispute(uow, concern, actor, now, note or "")

            result = self._machine.update_status(concern, actor, new_status, now, note)
            if concern.status == ConcernStatus.STAFF_RESOLVED:
                title, body = (
                    "Concern Resolved",
                    f"Your concern #{concern.reference_number} has been marked resolved. "
                    "Please confirm or dispute the resolution.",
                )
            else:
                title, body = (
                    "Concern Status Updated",
                    f"Your concern #{concern.reference_number} is now {concern.status.replace('_', ' ')}",
                )
            result.notifications.append(
                Notification(concern.student_id, title, body, {"concern_id": concern.id, "status": concern.status})
            )
            return result

        concern, _ = await self._tx.mutate(concern_id, actor_id, apply)
        return concern

    # ========== Student resolution ==========

    async def confirm_resolution(
        self,
        concern_id: str,
        student_id: str,
        notes: Optional[str] = None,
        rating: Optional[int] = None,
    ) -> Concern:
        async def apply(uow: IUnitOfWork, concern: Concern, now: datetime) -> TransitionResult:
            student = await load_user(uow, student_id)
            return await self._confirm(uow, concern, student, now, notes, rating)

        concern, _ = await self._tx.mutate(concern_id, student_id, apply)
        return concern

    async def _confirm(
        self,
        uow: IUnitOfWork,
        concern: Concern,
        student: User,
        now: datetime,
        notes: Optional[str],
        rating: Optional[int],
    ) -> TransitionResult:
        result = self._machine.confirm(concern, student, now, notes=notes, rating=rating)
        for assignment in await uow.cross_assignments.list_active_for_concern(concern.id):
            assignment.complete(now, "Resolution confirmed by student")
            await uow.cross_assignments.complete(assignment)
        if concern.assigned_to:
            result.notifications.append(
                Notification(
                    concern.assigned_to,
                    "Resolution Confirmed",
                    f"The student confirmed the resolution of concern #{concern.reference_number}",
                    {"concern_id": concern.id, "rating": concern.rating},
                )
            )
        return result

    async def dispute_resolution(self, concern_id: str, student_id: str, reason: str) -> Concern:
        async def apply(uow: IUnitOfWork, concern: Concern, now: datetime) -> TransitionResult:
            student = await load_user(uow, student_id)
            return await self._dispute(uow, concern, student, now, reason)

        concern, _ = await self._tx.mutate(concern_id, student_id, apply)
        return concern

    async def _dispute(
        self,
        uow: IUnitOfWork,
        concern: Concern,
        student: User,
        now: datetime,
        reason: str,
    ) -> TransitionResult:
        result = self._machine.dispute(concern, student, reason, now)
        recipients = [concern.assigned_to] if concern.assigned_to else []
        recipients += [h.id for h in await uow.users.department_heads(concern.department_id)]
        for user_id in dict.fromkeys(recipients):
            result.notifications.append(
                Notification(
                    user_id,
                    "Resolution Disputed",
                    f"The student disputed the resolution of concern #{concern.reference_number}: "
                    f"{concern.dispute_reason}",
                    {"concern_id": concern.id},
                )
            )
        return result

    # ========== Manual assignment ==========

    async def assign(self, concern_id: str, actor_id: str, handler_id: str) -> Concern:
        """
        Manually assign a concern.

        Admins and department heads may exceed the capacity cap; doing so is
        logged as a warning.
        """
        async def choose(uow: IUnitOfWork, concern: Concern, now: datetime) -> _ManualPlan:
            actor = await load_user(uow, actor_id)
            can_assign(actor, concern).require("assign", actor, concern)
            handler = await load_user(uow, handler_id)
            if not handler.is_handler or not handler.is_active:
                raise ValidationException(
                    f"User {handler_id} cannot handle concerns",
                    {"concern_id": concern.id, "attempted": "assign", "handler_id": handler_id},
                )
            workload = await self._workload.workload(uow, handler_id)
            if workload >= self._selector.capacity_cap:
                logger.warning(
                    "Manual assignment exceeds capacity cap",
                    extra={
                        "concern_id": concern.id,
                        "handler_id": handler_id,
                        "workload": workload,
                        "capacity_cap": self._selector.capacity_cap,
                        "actor_id": actor_id,
                    },
                )
            return _ManualPlan(actor=actor, handler=handler)

        async def apply(
            uow: IUnitOfWork, concern: Concern, handler: User, now: datetime, plan: _ManualPlan
        ) -> TransitionResult:
            result = self._machine.assign(concern, handler, now, actor=plan.actor)
            if handler.department_id != concern.department_id:
                await uow.cross_assignments.add(
                    cross_department_record(
                        concern,
                        handler,
                        now,
                        AssignmentType.NORMAL,
                        estimate_duration_hours(concern.priority, concern.category),
                        assigned_by=plan.actor.id,
                        reason="Manual cross-department assignment",
                    )
                )
            result.notifications.append(
                Notification(
                    handler.id,
                    "New Concern Assigned",
                    f"Concern #{concern.reference_number} has been assigned to you by {plan.actor.name}",
                    {"concern_id": concern.id, "priority": concern.priority},
                )
            )
            return result

        commit = await self._tx.commit_assignment(
            concern_id, choose, apply, actor_id=actor_id, enforce_cap=False
        )
        if not commit.assigned:
            raise ValidationException(
                f"Handler {handler_id} is no longer available",
                {"concern_id": concern_id, "attempted": "assign", "handler_id": handler_id},
            )
        return commit.concern

    # ========== Queries ==========

    async def get_concern(self, concern_id: str) -> Concern:
        async with self._uow_factory() as uow:
            return await load_concern(uow, concern_id)

    async def get_history(self, concern_id: str) -> List[ConcernEvent]:
        async with self._uow_factory() as uow:
            await load_concern(uow, concern_id)
            return await uow.events.list_for_concern(concern_id)
