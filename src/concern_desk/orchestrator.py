"""
Concern Orchestrator
====================

Single entry point to the concern desk, wiring the lifecycle, escalation
and balancing services over one lock registry, one clock and one set of
collaborators.

Every public operation is async and safe to call concurrently.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from concern_desk.assignment.application.balancer import (
    CrossDepartmentBalancer,
    EmergencyOutcome,
    ExecutionReport,
    WorkloadAnalysis,
)
from concern_desk.assignment.application.workload import WorkloadTracker
from concern_desk.assignment.domain.balancing import RebalanceProposal
from concern_desk.assignment.domain.selector import AssignmentSelector
from concern_desk.concerns.application.dto import ConcernDraft
from concern_desk.concerns.application.effects import EffectDispatcher
from concern_desk.concerns.application.ports import Collaborators, UnitOfWorkFactory
from concern_desk.concerns.application.services import LifecycleService, SubmissionResult
from concern_desk.concerns.application.transactions import ConcernTransactions
from concern_desk.concerns.domain.entities import Concern, ConcernEvent, CrossDepartmentAssignment
from concern_desk.concerns.domain.state_machine import LifecycleStateMachine
from concern_desk.concerns.infrastructure.repositories import SQLAlchemyUnitOfWork
from concern_desk.config import Priority, Settings, settings as default_settings
from concern_desk.escalation.application.services import (
    EscalationService,
    IEscalationPolicyProvider,
    SweepResult,
)
from concern_desk.shared.domain.clock import Clock, SystemClock
from concern_desk.shared.infrastructure.locks import KeyedLockRegistry
from concern_desk.triage.domain.classifier import PriorityClassifier


@dataclass
class ConcernOrchestrator:
    """Facade over the concern desk services."""
    lifecycle: LifecycleService
    escalation: EscalationService
    balancer: CrossDepartmentBalancer

    # ========== Lifecycle ==========

    async def submit(self, draft: ConcernDraft) -> SubmissionResult:
        return await self.lifecycle.submit(draft)

    async def approve(self, concern_id: str, actor_id: str) -> Concern:
        return await self.lifecycle.approve(concern_id, actor_id)

    async def reject(self, concern_id: str, actor_id: str, reason: str) -> Concern:
        return await self.lifecycle.reject(concern_id, actor_id, reason)

    async def update_status(
        self, concern_id: str, actor_id: str, new_status: str, note: Optional[str] = None
    ) -> Concern:
        return await self.lifecycle.update_status(concern_id, actor_id, new_status, note)

    async def confirm_resolution(
        self,
        concern_id: str,
        student_id: str,
        notes: Optional[str] = None,
        rating: Optional[int] = None,
    ) -> Concern:
        return await self.lifecycle.confirm_resolution(concern_id, student_id, notes, rating)

    async def dispute_resolution(self, concern_id: str, student_id: str, reason: str) -> Concern:
        return await self.lifecycle.dispute_resolution(concern_id, student_id, reason)

    async def assign(self, concern_id: str, actor_id: str, handler_id: str) -> Concern:
        return await self.lifecycle.assign(concern_id, actor_id, handler_id)

    async def get_concern(self, concern_id: str) -> Concern:
        return await self.lifecycle.get_concern(concern_id)

    async def get_history(self, concern_id: str) -> List[ConcernEvent]:
        return await self.lifecycle.get_history(concern_id)

    # ========== Escalation ==========

    async def run_escalation_sweep(self) -> SweepResult:
        return await self.escalation.run_sweep()

    async def manual_escalate(self, concern_id: str, actor_id: str, reason: str) -> Concern:
        return await self.escalation.manual_escalate(concern_id, actor_id, reason)

    async def escalation_stats(self, since: Optional[datetime] = None) -> Dict[str, object]:
        return await self.escalation.escalation_stats(since)

    # ========== Balancing ==========

    async def analyze_workload(self) -> WorkloadAnalysis:
        return await self.balancer.analyze_workload()

    async def handler_workload(self, handler_id: str) -> Dict[str, object]:
        return await self.balancer.handler_workload(handler_id)

    async def rebalance_workload(self, department_id: str) -> List[RebalanceProposal]:
        return await self.balancer.rebalance_workload(department_id)

    async def execute_rebalance(
        self,
        department_id: str,
        actor_id: str,
        concern_ids: Optional[Sequence[str]] = None,
    ) -> ExecutionReport:
        """Recompute proposals for a department and execute them (or the chosen subset)."""
        proposals = await self.balancer.rebalance_workload(department_id)
        if concern_ids is not None:
            wanted = set(concern_ids)
            proposals = [p for p in proposals if p.concern_id in wanted]
        return await self.balancer.execute_proposals(proposals, actor_id)

    async def activate_emergency(
        self,
        concern_id: str,
        reason: str,
        priority: str = Priority.URGENT,
        actor_id: Optional[str] = None,
    ) -> EmergencyOutcome:
        return await self.balancer.activate_emergency(concern_id, reason, priority, actor_id)

    async def complete_cross_department_assignment(
        self, assignment_id: str, notes: Optional[str] = None
    ) -> CrossDepartmentAssignment:
        return await self.balancer.complete_assignment(assignment_id, notes)


def build_orchestrator(
    uow_factory: UnitOfWorkFactory,
    collaborators: Collaborators,
    policy_provider: IEscalationPolicyProvider,
    clock: Optional[Clock] = None,
    config: Optional[Settings] = None,
    locks: Optional[KeyedLockRegistry] = None,
) -> ConcernOrchestrator:
    """
    Wire the services.

    Args:
        uow_factory: Opens a unit of work per call
        collaborators: Notifier, chat gateway and audit log
        policy_provider: Source of the current escalation policy
        clock: Defaults to the system clock
        config: Defaults to the process settings
        locks: Shared lock registry; one per process
    """
    config = config or default_settings
    clock = clock or SystemClock()
    locks = locks or KeyedLockRegistry()

    machine = LifecycleStateMachine(rejection_reason_min_length=config.rejection_reason_min_length)
    selector = AssignmentSelector(
        capacity_cap=config.workload_capacity_cap,
        emergency_duration_hours=config.emergency_duration_hours,
    )
    workload = WorkloadTracker(capacity_cap=config.workload_capacity_cap)
    transactions = ConcernTransactions(
        uow_factory,
        locks,
        clock,
        EffectDispatcher(collaborators),
        capacity_cap=config.workload_capacity_cap,
        conflict_retries=config.conflict_retries,
    )

    return ConcernOrchestrator(
        lifecycle=LifecycleService(
            uow_factory, transactions, locks, machine, selector, workload, PriorityClassifier()
        ),
        escalation=EscalationService(
            uow_factory,
            transactions,
            machine,
            selector,
            workload,
            policy_provider,
            clock,
            ticket_timeout_seconds=config.sweep_ticket_timeout_seconds,
        ),
        balancer=CrossDepartmentBalancer(
            uow_factory,
            transactions,
            locks,
            machine,
            selector,
            workload,
            high_load_ratio=config.high_load_ratio,
            low_load_ratio=config.low_load_ratio,
        ),
    )


def sqlalchemy_uow_factory(session_maker: async_sessionmaker[AsyncSession]) -> UnitOfWorkFactory:
    def factory() -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_maker)
    return factory
