"""
Tests for escalation policy evaluation, sweeps and manual escalation.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import pytest

from concern_desk.concerns.application.dto import ConcernDraft
from concern_desk.concerns.application.ports import Collaborators, INotifier
from concern_desk.concerns.domain.entities import Concern
from concern_desk.config import Settings
from concern_desk.core.exceptions import (
    AuthorizationException,
    InvalidStateException,
    ValidationException,
)
from concern_desk.escalation.domain.value_objects import (
    EscalationPolicy,
    PriorityThresholds,
    evaluate,
    manual_target_level,
    target_level,
)
from concern_desk.orchestrator import build_orchestrator

NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


def aged_concern(priority="high", hours_since_assignment=0.0, **fields):
    assigned_at = NOW - timedelta(hours=hours_since_assignment)
    return Concern(
        id="concern-1",
        reference_number="CNR2025030001",
        subject="Tuition payment",
        description="Not reflected",
        category="financial",
        priority=priority,
        status="in_progress",
        student_id="student",
        department_id="dept-finance",
        created_at=assigned_at - timedelta(hours=1),
        updated_at=assigned_at,
        assigned_to="staff-1",
        assigned_at=assigned_at,
        **fields,
    )


class SlowNotifier(INotifier):
    def __init__(self, delay: float):
        self.delay = delay
        self.sent: List[Tuple[str, str]] = []

    async def notify(self, user_id: str, title: str, body: str, data: Optional[dict] = None) -> None:
        await asyncio.sleep(self.delay)
        self.sent.append((user_id, title))

    def titles_for(self, user_id: str) -> List[str]:
        return [title for recipient, title in self.sent if recipient == user_id]


# ========== Policy evaluation ==========

class TestEvaluate:
    def test_nothing_to_do_before_reminder(self):
        decision = evaluate(aged_concern(hours_since_assignment=5), EscalationPolicy(), NOW)
        assert decision.action == "none"

    def test_reminder_window(self):
        decision = evaluate(aged_concern(hours_since_assignment=7), EscalationPolicy(), NOW)

        assert decision.action == "remind"
        assert decision.remind is True

    def test_reminder_cooldown(self):
        concern = aged_concern(hours_since_assignment=10, last_reminder_sent=NOW - timedelta(hours=3))
        assert evaluate(concern, EscalationPolicy(), NOW).action == "none"

    def test_escalates_at_threshold(self):
        decision = evaluate(aged_concern(hours_since_assignment=24), EscalationPolicy(), NOW)

        assert decision.action == "escalate"
        assert decision.target_level == "staff"
        assert decision.reason == "Reassigned to different staff member after 24 hours without progress"

    def test_escalation_cooldown_skips(self):
        concern = aged_concern(
            hours_since_assignment=50,
            escalated_at=NOW - timedelta(hours=2),
            last_reminder_sent=NOW - timedelta(hours=1),
        )

        decision = evaluate(concern, EscalationPolicy(), NOW)

        assert decision.action == "skip"
        assert decision.skip_reason == "escalation_cooldown"

    def test_cooling_escalation_can_still_remind(self):
        concern = aged_concern(hours_since_assignment=50, escalated_at=NOW - timedelta(hours=2))

        decision = evaluate(concern, EscalationPolicy(), NOW)

        assert decision.action == "remind"
        assert decision.skip_reason == "escalation_cooldown"

    def test_unassigned_concern_measured_from_creation(self):
        concern = aged_concern(priority="urgent")
        concern.assigned_to = None
        concern.assigned_at = None
        concern.created_at = NOW - timedelta(hours=6)

        assert evaluate(concern, EscalationPolicy(), NOW).action == "escalate"

    def test_unknown_priority_uses_default(self):
        decision = evaluate(aged_concern(priority="low", hours_since_assignment=30), EscalationPolicy(), NOW)
        assert decision.action == "remind"


class TestTargetLevel:
    URGENT = PriorityThresholds(reminder=2, escalate=6, department_head=12, admin=24)

    @pytest.mark.parametrize(
        "hours, current, expected",
        [
            (7, "none", "staff"),
            (13, "none", "department_head"),
            (25, "none", "admin"),
            (7, "staff", "department_head"),
            (7, "department_head", "admin"),
            (30, "admin", "admin"),
        ],
    )
    def test_highest_crossed_but_at_least_next(self, hours, current, expected):
        assert target_level(hours, self.URGENT, current) == expected

    def test_level_skip_disabled(self):
        assert target_level(25, self.URGENT, "none", allow_level_skip=False) == "department_head"
        assert target_level(25, self.URGENT, "department_head", allow_level_skip=False) == "admin"

    def test_manual_target_level(self):
        assert manual_target_level("none") == "department_head"
        assert manual_target_level("staff") == "department_head"
        assert manual_target_level("department_head") == "admin"
        assert manual_target_level("admin") == "admin"


class TestPolicyValidation:
    def test_thresholds_must_be_ordered(self):
        with pytest.raises(ValueError):
            PriorityThresholds(reminder=10, escalate=5, department_head=12, admin=24)

    def test_default_entry_is_always_present(self):
        policy = EscalationPolicy(
            thresholds={"urgent": {"reminder": 1, "escalate": 2, "department_head": 3, "admin": 4}}
        )

        assert policy.thresholds_for("medium").escalate == 72
        assert policy.thresholds_for("urgent").escalate == 2


# ========== Sweeps ==========

class TestSweep:
    async def test_urgent_concern_reassigned_after_seven_hours(
        self, orchestrator, submit, directory, clock, notifier
    ):
        result = await submit("Urgent: tuition payment failed")
        concern = result.concern
        assert concern.priority == "urgent"
        assert concern.assigned_to == directory.finance_staff_1

        clock.advance(hours=7)
        sweep = await orchestrator.run_escalation_sweep()

        assert [e.concern_id for e in sweep.escalated] == [concern.id]
        escalated = await orchestrator.get_concern(concern.id)
        assert escalated.assigned_to == directory.finance_staff_2
        assert escalated.escalation_level == "staff"
        assert escalated.escalated_at == clock.now()
        assert escalated.assigned_at == clock.now()
        assert escalated.status == "in_progress"
        assert "Concern Escalated to You" in notifier.titles_for(directory.finance_staff_2)
        assert "Concern Reassigned" in notifier.titles_for(directory.finance_staff_1)

    async def test_second_sweep_does_not_escalate_again(self, orchestrator, submit, clock):
        result = await submit("Urgent: tuition payment failed")
        clock.advance(hours=7)

        first = await orchestrator.run_escalation_sweep()
        second = await orchestrator.run_escalation_sweep()

        assert len(first.escalated) == 1
        assert second.escalated == []
        concern = await orchestrator.get_concern(result.concern.id)
        assert concern.version == 3

    async def test_high_priority_walks_up_one_level_at_a_time(
        self, orchestrator, submit, directory, clock, notifier
    ):
        result = await submit("My tuition payment has an issue")
        concern_id = result.concern.id
        assert result.concern.priority == "high"

        clock.advance(hours=25)
        await orchestrator.run_escalation_sweep()
        concern = await orchestrator.get_concern(concern_id)
        assert concern.escalation_level == "staff"
        assert concern.assigned_to == directory.finance_staff_2

        clock.advance(hours=12)
        sweep = await orchestrator.run_escalation_sweep()
        assert [e.concern_id for e in sweep.reminded] == [concern_id]
        assert "Concern Reminder" in notifier.titles_for(directory.finance_staff_2)

        clock.advance(hours=12)
        sweep = await orchestrator.run_escalation_sweep()
        concern = await orchestrator.get_concern(concern_id)
        assert [e.level for e in sweep.escalated] == ["department_head"]
        assert concern.escalation_level == "department_head"
        assert concern.assigned_to == directory.finance_head

    async def test_escalation_without_candidate_is_skipped(self, orchestrator, submit, directory, clock):
        # registrar has a single staff member and no head
        result = await submit("Need a copy of my transcript for enrollment", priority="urgent")
        assert result.concern.assigned_to == directory.registrar_staff

        clock.advance(hours=7)
        sweep = await orchestrator.run_escalation_sweep()

        assert [(e.concern_id, e.reason) for e in sweep.skipped] == [(result.concern.id, "no_assignee")]
        concern = await orchestrator.get_concern(result.concern.id)
        assert concern.escalation_level == "none"
        assert concern.assigned_to == directory.registrar_staff

    async def test_unassigned_concern_reminds_department_heads(
        self, make_orchestrator, directory, clock, notifier
    ):
        orchestrator = make_orchestrator(workload_capacity_cap=1)
        draft = ConcernDraft(student_id=directory.student, subject="Exam grade", description="Professor")
        await orchestrator.submit(draft)
        second = await orchestrator.submit(draft)
        # academic affairs only has its head, who is at the cap; cross handlers take it
        assert second.concern.assigned_to == directory.housing_staff

        third = await orchestrator.submit(draft)
        assert third.concern.assigned_to == directory.it_staff
        fourth = await orchestrator.submit(draft)
        assert fourth.assignment.status == "unassigned"

        clock.advance(hours=25)
        sweep = await orchestrator.run_escalation_sweep()

        assert fourth.concern.id in [e.concern_id for e in sweep.reminded]
        assert "Concern Reminder" in notifier.titles_for(directory.academic_head)

    async def test_resolved_and_archived_concerns_are_ignored(self, orchestrator, submit, directory, clock):
        result = await submit("Urgent: tuition payment failed")
        await orchestrator.update_status(result.concern.id, directory.finance_staff_1, "staff_resolved")

        clock.advance(hours=48)
        sweep = await orchestrator.run_escalation_sweep()

        assert sweep.evaluated == 0

    async def test_one_failing_concern_does_not_stop_the_sweep(
        self, orchestrator, submit, clock, monkeypatch
    ):
        first = await submit("Urgent: tuition payment failed")
        second = await submit("Urgent: tuition refund failed")
        clock.advance(hours=7)

        service = orchestrator.escalation
        original = service._process

        async def flaky(concern, policy, result, pending):
            if concern.id == first.concern.id:
                raise RuntimeError("selector exploded")
            await original(concern, policy, result, pending)

        monkeypatch.setattr(service, "_process", flaky)
        sweep = await orchestrator.run_escalation_sweep()

        assert [e.concern_id for e in sweep.failed] == [first.concern.id]
        assert [e.concern_id for e in sweep.escalated] == [second.concern.id]
        assert sweep.to_dict()["failed"][0]["reason"] == "selector exploded"

    async def test_slow_notifier_does_not_fail_committed_escalation(
        self, uow_factory, chat, audit, policy_provider, clock, directory
    ):
        notifier = SlowNotifier(delay=0.5)
        orchestrator = build_orchestrator(
            uow_factory,
            Collaborators(notifier=notifier, chat=chat, audit=audit),
            policy_provider,
            clock=clock,
            config=Settings(environment="testing", sweep_ticket_timeout_seconds=0.25),
        )
        result = await orchestrator.submit(
            ConcernDraft(
                student_id=directory.student,
                subject="Urgent: tuition payment failed",
                description="Urgent: tuition payment failed",
            )
        )
        clock.advance(hours=7)

        sweep = await orchestrator.run_escalation_sweep()

        assert sweep.failed == []
        assert [e.concern_id for e in sweep.escalated] == [result.concern.id]
        concern = await orchestrator.get_concern(result.concern.id)
        assert concern.assigned_to == directory.finance_staff_2
        assert "concern.escalate" in audit.actions
        assert "Concern Escalated to You" in notifier.titles_for(directory.finance_staff_2)

    async def test_deadline_after_commit_still_counts_as_escalated(
        self, make_orchestrator, directory, clock, audit, notifier, monkeypatch
    ):
        orchestrator = make_orchestrator(sweep_ticket_timeout_seconds=0.25)
        result = await orchestrator.submit(
            ConcernDraft(
                student_id=directory.student,
                subject="Urgent: tuition payment failed",
                description="Urgent: tuition payment failed",
            )
        )
        clock.advance(hours=7)

        transactions = orchestrator.escalation._tx
        original = transactions.commit_assignment

        async def slow_after_commit(*args, **kwargs):
            commit = await original(*args, **kwargs)
            await asyncio.sleep(1.0)
            return commit

        monkeypatch.setattr(transactions, "commit_assignment", slow_after_commit)
        sweep = await orchestrator.run_escalation_sweep()

        assert sweep.failed == []
        assert [(e.concern_id, e.level, e.handler_id) for e in sweep.escalated] == [
            (result.concern.id, "staff", directory.finance_staff_2)
        ]
        assert "concern.escalate" in audit.actions
        assert "Concern Escalated to You" in notifier.titles_for(directory.finance_staff_2)


# ========== Statistics ==========

class TestEscalationStats:
    async def test_empty_store(self, orchestrator):
        stats = await orchestrator.escalation_stats()

        assert stats["total_concerns"] == 0
        assert stats["total_escalated"] == 0
        assert stats["escalation_rate"] == 0.0
        assert stats["by_level"]["staff"] == {"count": 0, "rate": 0.0}

    async def test_counts_after_sweep(self, orchestrator, submit, clock):
        await submit("Urgent: tuition payment failed")
        await submit("My tuition payment has an issue")
        clock.advance(hours=7)
        await orchestrator.run_escalation_sweep()

        stats = await orchestrator.escalation_stats()

        assert stats["total_concerns"] == 2
        assert stats["total_escalated"] == 1
        assert stats["escalated_today"] == 1
        assert stats["escalation_rate"] == 0.5
        assert stats["by_level"] == {
            "staff": {"count": 1, "rate": 1.0},
            "department_head": {"count": 0, "rate": 0.0},
            "admin": {"count": 0, "rate": 0.0},
        }

    async def test_escalated_today_rolls_over(self, orchestrator, submit, clock):
        await submit("Urgent: tuition payment failed")
        clock.advance(hours=7)
        await orchestrator.run_escalation_sweep()

        clock.advance(hours=24)
        stats = await orchestrator.escalation_stats()

        assert stats["total_escalated"] == 1
        assert stats["escalated_today"] == 0

    async def test_since_filters_older_rows(self, orchestrator, submit, clock):
        await submit("Urgent: tuition payment failed")
        clock.advance(hours=7)
        await orchestrator.run_escalation_sweep()

        stats = await orchestrator.escalation_stats(since=clock.advance(hours=1))

        assert stats["total_concerns"] == 0
        assert stats["total_escalated"] == 0
        assert stats["escalation_rate"] == 0.0


# ========== Manual escalation ==========

class TestManualEscalation:
    async def test_head_escalates_to_department_head(self, orchestrator, submit, directory):
        result = await submit("My tuition payment has an issue")

        concern = await orchestrator.manual_escalate(
            result.concern.id, directory.finance_head, "Student called three times"
        )

        assert concern.escalation_level == "department_head"
        assert concern.assigned_to == directory.finance_head
        assert concern.escalated_by == directory.finance_head
        assert concern.escalation_reason == "Student called three times"

    async def test_second_manual_escalation_reaches_admin(self, orchestrator, submit, directory, notifier):
        result = await submit("My tuition payment has an issue")
        await orchestrator.manual_escalate(result.concern.id, directory.finance_head, "Student called")

        concern = await orchestrator.manual_escalate(result.concern.id, directory.admin, "Still unresolved")

        assert concern.escalation_level == "admin"
        assert concern.assigned_to == directory.admin
        assert "Concern Escalated" in notifier.titles_for(directory.finance_head)

    async def test_recorded_without_reassignment_when_nobody_available(self, orchestrator, submit, directory):
        result = await submit("Need a copy of my transcript for enrollment")

        concern = await orchestrator.manual_escalate(result.concern.id, directory.admin, "Waiting too long")

        assert concern.escalation_level == "department_head"
        assert concern.assigned_to == directory.registrar_staff
        history = await orchestrator.get_history(result.concern.id)
        assert "escalation" in [e.event_type for e in history]

    async def test_reason_required(self, orchestrator, submit, directory):
        result = await submit("My tuition payment has an issue")

        with pytest.raises(ValidationException):
            await orchestrator.manual_escalate(result.concern.id, directory.finance_head, "   ")

    async def test_reason_length_limit(self, orchestrator, submit, directory):
        result = await submit("My tuition payment has an issue")

        with pytest.raises(ValidationException):
            await orchestrator.manual_escalate(result.concern.id, directory.finance_head, "x" * 501)

    async def test_staff_cannot_escalate(self, orchestrator, submit, directory, caplog):
        result = await submit("My tuition payment has an issue")
        caplog.set_level(logging.WARNING, logger="concern_desk.concerns.application.transactions")

        with pytest.raises(AuthorizationException):
            await orchestrator.manual_escalate(result.concern.id, directory.finance_staff_2, "Please escalate")

        denied = [r for r in caplog.records if r.getMessage() == "Concern action denied"]
        assert [(r.actor_id, r.attempted) for r in denied] == [(directory.finance_staff_2, "escalate")]

    async def test_closed_concern_cannot_escalate(self, orchestrator, submit, directory):
        result = await submit("My tuition payment has an issue")
        await orchestrator.reject(result.concern.id, directory.finance_head, "Handled by the cashier office")

        with pytest.raises(InvalidStateException):
            await orchestrator.manual_escalate(result.concern.id, directory.admin, "Reopen this")
