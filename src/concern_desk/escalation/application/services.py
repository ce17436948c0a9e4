"""
Escalation Application Services
===============================

The escalation sweep and manual escalation.

The sweep is an idempotent batch keyed by concern id: each concern is
re-evaluated under its own lock against fresh data, the cooldown fields
double as the idempotence key, and one concern failing or timing out never
stops the others.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from concern_desk.assignment.application.workload import WorkloadTracker
from concern_desk.assignment.domain.selector import AssignmentDecision, AssignmentSelector
from concern_desk.concerns.application.ports import IUnitOfWork, UnitOfWorkFactory
from concern_desk.concerns.application.transactions import (
    ConcernTransactions,
    PendingEffects,
    load_user,
)
from concern_desk.concerns.domain.entities import Concern, User
from concern_desk.concerns.domain.state_machine import (
    LifecycleStateMachine,
    Notification,
    TransitionResult,
    can_escalate,
)
from concern_desk.config import ConcernStatus, EscalationLevel, HANDLER_ROLES, UserRole
from concern_desk.core.exceptions import InvalidStateException, ValidationException
from concern_desk.escalation.domain.value_objects import (
    EscalationDecision,
    EscalationPolicy,
    SkipReason,
    SweepAction,
    evaluate,
    manual_target_level,
)
from concern_desk.shared.domain.clock import Clock
from concern_desk.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

# staff_resolved waits on the student, not on a handler
SWEEP_STATUSES = (
    ConcernStatus.PENDING,
    ConcernStatus.APPROVED,
    ConcernStatus.IN_PROGRESS,
    ConcernStatus.DISPUTED,
)

MANUAL_REASON_MAX_LENGTH = 500


class IEscalationPolicyProvider(ABC):
    """Interface for escalation configuration access."""

    @property
    @abstractmethod
    def config(self) -> EscalationPolicy:
        """Current escalation policy."""


@dataclass
class SweepEntry:
    concern_id: str
    reference_number: str
    hours_open: float
    level: Optional[str] = None
    handler_id: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class SweepResult:
    """Outcome of one sweep; ``failed`` concerns are retried next sweep."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    evaluated: int = 0
    escalated: List[SweepEntry] = field(default_factory=list)
    reminded: List[SweepEntry] = field(default_factory=list)
    skipped: List[SweepEntry] = field(default_factory=list)
    failed: List[SweepEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "evaluated": self.evaluated,
            "escalated": [asdict(e) for e in self.escalated],
            "reminded": [asdict(e) for e in self.reminded],
            "skipped": [asdict(e) for e in self.skipped],
            "failed": [asdict(e) for e in self.failed],
        }


@dataclass
class _EscalationPlan:
    decision: EscalationDecision
    selection: Optional[AssignmentDecision] = None
    actor: Optional[User] = None
    level: Optional[str] = None
    reason: Optional[str] = None

    @property
    def candidate_ids(self) -> List[str]:
        return self.selection.candidate_ids if self.selection else []


class EscalationService:
    """Runs escalation sweeps and manual escalations."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        transactions: ConcernTransactions,
        state_machine: LifecycleStateMachine,
        selector: AssignmentSelector,
        workload: WorkloadTracker,
        policy_provider: IEscalationPolicyProvider,
        clock: Clock,
        ticket_timeout_seconds: float = 10.0,
    ):
        self._uow_factory = uow_factory
        self._tx = transactions
        self._machine = state_machine
        self._selector = selector
        self._workload = workload
        self._policy_provider = policy_provider
        self._clock = clock
        self._ticket_timeout = ticket_timeout_seconds

    # ========== Sweep ==========

    async def run_sweep(self) -> SweepResult:
        """
        Evaluate every open concern once.

        Returns:
            SweepResult with escalated, reminded, skipped and failed entries
        """
        policy = self._policy_provider.config
        result = SweepResult(started_at=self._clock.now())

        async with self._uow_factory() as uow:
            concerns = await uow.concerns.list_by_status(SWEEP_STATUSES)

        with log_latency(logger, "escalation_sweep", candidates=len(concerns)):
            for concern in concerns:
                result.evaluated += 1
                pending: List[PendingEffects] = []
                try:
                    await asyncio.wait_for(
                        self._process(concern, policy, result, pending), timeout=self._ticket_timeout
                    )
                except asyncio.TimeoutError:
                    if pending:
                        self._record_committed(concern, pending, result)
                    else:
                        logger.error(
                            "Escalation timed out for concern",
                            extra={"concern_id": concern.id, "timeout_seconds": self._ticket_timeout},
                        )
                        result.failed.append(
                            SweepEntry(concern.id, concern.reference_number, 0.0, reason="timeout")
                        )
                except Exception as e:
                    logger.error(
                        "Escalation failed for concern",
                        exc_info=True,
                        extra={"concern_id": concern.id, "error": str(e)},
                    )
                    if pending:
                        self._record_committed(concern, pending, result)
                    else:
                        result.failed.append(
                            SweepEntry(concern.id, concern.reference_number, 0.0, reason=str(e))
                        )
                # Effects of a committed write run even when the concern's deadline passed
                await self._tx.dispatch_pending(pending)

        result.finished_at = self._clock.now()
        logger.info(
            "Escalation sweep finished",
            extra={
                "evaluated": result.evaluated,
                "escalated": len(result.escalated),
                "reminded": len(result.reminded),
                "skipped": len(result.skipped),
                "failed": len(result.failed),
            },
        )
        return result

    def _record_committed(
        self, concern: Concern, pending: List[PendingEffects], result: SweepResult
    ) -> None:
        """Classify a concern from the writes it committed before its deadline passed."""
        hours_open = round(concern.hours_open(result.started_at), 2)
        for item in pending:
            committed = item.concern
            if item.result.action == "escalate":
                entries = result.escalated
                entry = SweepEntry(
                    committed.id,
                    committed.reference_number,
                    hours_open,
                    level=committed.escalation_level,
                    handler_id=committed.assigned_to,
                    reason=committed.escalation_reason,
                )
            elif item.result.action == "reminder":
                entries = result.reminded
                entry = SweepEntry(
                    committed.id, committed.reference_number, hours_open, handler_id=committed.assigned_to
                )
            else:
                continue
            if any(e.concern_id == committed.id for e in entries):
                continue
            entries.append(entry)
        logger.warning(
            "Escalation deadline passed after commit",
            extra={"concern_id": concern.id, "committed": [p.result.action for p in pending]},
        )

    async def _process(
        self,
        concern: Concern,
        policy: EscalationPolicy,
        result: SweepResult,
        pending: List[PendingEffects],
    ) -> None:
        # Cheap pre-check on the listing snapshot; the real decision is re-made under lock.
        if evaluate(concern, policy, self._clock.now()).action == SweepAction.NONE:
            return

        async def choose(uow: IUnitOfWork, fresh: Concern, now: datetime) -> _EscalationPlan:
            decision = evaluate(fresh, policy, now)
            if decision.action != SweepAction.ESCALATE or not fresh.is_active:
                return _EscalationPlan(decision=decision)
            loads = await self._workload.snapshot(
                uow, await self._escalation_pool(uow, fresh)
            )
            selection = self._selector.select_for_escalation(fresh, decision.target_level, loads)
            return _EscalationPlan(
                decision=decision,
                selection=selection,
                level=decision.target_level,
                reason=decision.reason,
            )

        commit = await self._tx.commit_assignment(
            concern.id, choose, self._apply_escalation, deferred=pending
        )
        plan: _EscalationPlan = commit.plan
        decision = plan.decision
        fresh = commit.concern

        if commit.assigned:
            result.escalated.append(
                SweepEntry(
                    fresh.id,
                    fresh.reference_number,
                    round(decision.hours_open, 2),
                    level=plan.level,
                    handler_id=commit.handler.id,
                    reason=plan.reason,
                )
            )
            return

        if decision.action == SweepAction.ESCALATE:
            logger.warning(
                "No handler available for escalation",
                extra={"concern_id": fresh.id, "target_level": plan.level},
            )
            result.skipped.append(
                SweepEntry(
                    fresh.id, fresh.reference_number, round(decision.hours_open, 2),
                    level=plan.level, reason=SkipReason.NO_ASSIGNEE,
                )
            )
        elif decision.skip_reason:
            result.skipped.append(
                SweepEntry(
                    fresh.id, fresh.reference_number, round(decision.hours_open, 2),
                    level=fresh.escalation_level, reason=decision.skip_reason,
                )
            )

        if decision.remind:
            reminded = await self._remind(fresh.id, policy, pending)
            if reminded is not None:
                result.reminded.append(reminded)

    async def _escalation_pool(self, uow: IUnitOfWork, concern: Concern) -> List[User]:
        local = await uow.users.list_handlers(department_id=concern.department_id)
        admins = await uow.users.list_handlers(roles=[UserRole.ADMIN])
        return local + admins

    async def _apply_escalation(
        self,
        uow: IUnitOfWork,
        concern: Concern,
        handler: User,
        now: datetime,
        plan: _EscalationPlan,
    ) -> TransitionResult:
        previous = concern.assigned_to
        result = self._machine.escalate(
            concern, plan.level, plan.reason, now, handler=handler, actor=plan.actor
        )
        result.notifications.append(
            Notification(
                handler.id,
                "Concern Escalated to You",
                f"Concern #{concern.reference_number} has been escalated to you: {plan.reason}",
                {"concern_id": concern.id, "escalation_level": plan.level, "priority": concern.priority},
            )
        )
        if previous and previous != handler.id:
            result.notifications.append(
                Notification(
                    previous,
                    "Concern Reassigned",
                    f"Concern #{concern.reference_number} was escalated and reassigned",
                    {"concern_id": concern.id},
                )
            )
        return result

    async def _remind(
        self, concern_id: str, policy: EscalationPolicy, pending: List[PendingEffects]
    ) -> Optional[SweepEntry]:
        async def apply(uow: IUnitOfWork, concern: Concern, now: datetime) -> Optional[TransitionResult]:
            decision = evaluate(concern, policy, now)
            if not decision.remind or not concern.is_active:
                return None
            result = self._machine.record_reminder(concern, now, decision.hours_open)
            if concern.assigned_to:
                recipients = [concern.assigned_to]
            else:
                recipients = [h.id for h in await uow.users.department_heads(concern.department_id)]
            for user_id in recipients:
                result.notifications.append(
                    Notification(
                        user_id,
                        "Concern Reminder",
                        f"Concern #{concern.reference_number} has been open for "
                        f"{int(decision.hours_open)} hours: {concern.subject}",
                        {"concern_id": concern.id, "priority": concern.priority},
                    )
                )
            return result

        concern, result = await self._tx.mutate(concern_id, None, apply, deferred=pending)
        if result is None:
            return None
        return SweepEntry(
            concern.id,
            concern.reference_number,
            round(concern.hours_open(concern.last_reminder_sent), 2),
            handler_id=concern.assigned_to,
        )

    # ========== Statistics ==========

    async def escalation_stats(self, since: Optional[datetime] = None) -> Dict[str, object]:
        """
        Escalation counts overall, for the current UTC day and per level.

        Args:
            since: Only count concerns submitted or escalated at or after this instant

        Returns:
            Totals, the escalation rate and a per-level count and share
        """
        now = self._clock.now()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        if since is not None and since > start_of_day:
            start_of_day = since

        async with self._uow_factory() as uow:
            submitted = await uow.concerns.count_submitted(since)
            by_level = await uow.concerns.count_escalated_by_level(since)
            today = await uow.concerns.count_escalated_by_level(start_of_day)

        total = sum(by_level.values())
        levels = (EscalationLevel.STAFF, EscalationLevel.DEPARTMENT_HEAD, EscalationLevel.ADMIN)
        return {
            "total_concerns": submitted,
            "total_escalated": total,
            "escalated_today": sum(today.values()),
            "escalation_rate": round(total / submitted, 3) if submitted else 0.0,
            "by_level": {
                level: {
                    "count": by_level.get(level, 0),
                    "rate": round(by_level.get(level, 0) / total, 3) if total else 0.0,
                }
                for level in levels
            },
        }

    # ========== Manual escalation ==========

    async def manual_escalate(self, concern_id: str, actor_id: str, reason: str) -> Concern:
        """
        Escalate on request of a department head or admin.

        Reassigns to the target level when someone is available; otherwise
        records the escalation and alerts the department heads.

        Raises:
            ValidationException: missing or overlong reason
            AuthorizationException: actor may not escalate this concern
            InvalidStateException: concern is closed or archived
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationException(
                "An escalation reason is required",
                {"concern_id": concern_id, "attempted": "escalate"},
            )
        if len(reason) > MANUAL_REASON_MAX_LENGTH:
            raise ValidationException(
                f"Escalation reason must be at most {MANUAL_REASON_MAX_LENGTH} characters",
                {"concern_id": concern_id, "attempted": "escalate"},
            )

        async def choose(uow: IUnitOfWork, concern: Concern, now: datetime) -> _EscalationPlan:
            actor = await load_user(uow, actor_id)
            can_escalate(actor, concern).require("escalate", actor, concern)
            if not concern.is_active:
                raise InvalidStateException(concern.id, concern.status, "escalate")
            level = manual_target_level(concern.escalation_level)
            loads = await self._workload.snapshot(uow, await self._escalation_pool(uow, concern))
            return _EscalationPlan(
                decision=EscalationDecision(
                    action=SweepAction.ESCALATE, hours_open=concern.hours_open(now), target_level=level
                ),
                selection=self._selector.select_for_escalation(concern, level, loads),
                actor=actor,
                level=level,
                reason=reason,
            )

        commit = await self._tx.commit_assignment(
            concern_id, choose, self._apply_escalation, actor_id=actor_id
        )
        if commit.assigned:
            await self._alert_department_heads(commit.concern, commit.plan, exclude=commit.handler.id)
            return commit.concern

        plan: _EscalationPlan = commit.plan

        async def record_only(uow: IUnitOfWork, concern: Concern, now: datetime) -> TransitionResult:
            return self._machine.escalate(concern, plan.level, reason, now, actor=plan.actor)

        concern, _ = await self._tx.mutate(concern_id, actor_id, record_only)
        logger.warning(
            "Manual escalation recorded without reassignment",
            extra={"concern_id": concern.id, "level": plan.level, "actor_id": actor_id},
        )
        await self._alert_department_heads(concern, plan)
        return concern

    async def _alert_department_heads(
        self, concern: Concern, plan: _EscalationPlan, exclude: Optional[str] = None
    ) -> None:
        async with self._uow_factory() as uow:
            heads = await uow.users.department_heads(concern.department_id)

        notifications = [
            Notification(
                head.id,
                "Concern Escalated",
                f"Concern #{concern.reference_number} was escalated to "
                f"{plan.level.replace('_', ' ')}: {plan.reason}",
                {"concern_id": concern.id, "escalation_level": plan.level},
            )
            for head in heads
            if head.id != exclude and head.role in HANDLER_ROLES
        ]
        if notifications:
            await self._tx.dispatch(
                concern,
                plan.actor.id if plan.actor else None,
                TransitionResult(
                    action="escalation_alert",
                    before=concern.snapshot(),
                    after=concern.snapshot(),
                    notifications=notifications,
                ),
            )
