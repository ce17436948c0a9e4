"""
Integration tests for submission, automatic assignment and the concern lifecycle.
"""

import logging

import pytest

from concern_desk.concerns.application.dto import ConcernDraft
from concern_desk.core.exceptions import (
    AuthorizationException,
    InvalidStateException,
    NotConfirmableException,
    ResourceNotFoundException,
    ValidationException,
)


class TestSubmission:
    async def test_urgent_security_concern_end_to_end(self, orchestrator, submit, directory, chat, clock):
        result = await submit("URGENT: security threat near dorm")
        concern = result.concern

        assert result.priority_analysis.priority == "urgent"
        assert concern.priority == "urgent"
        assert concern.category == "safety"
        assert concern.department_id == directory.security
        assert concern.assigned_to == directory.security_staff
        assert concern.status == "pending"
        assert result.assignment.status == "assigned"
        assert result.assignment.cross_department is False

        opened = [c for c in chat.calls if c.action == "open" and c.concern_id == concern.id]
        assert opened[0].participants == [directory.student, directory.security_staff, directory.security_head]
        assert opened[0].author_id == directory.security_staff

        approved = await orchestrator.approve(concern.id, directory.security_head)

        assert approved.status == "approved"
        assert approved.approved_at == clock.now()
        assert approved.approved_by == directory.security_head

    async def test_reference_number_and_created_event(self, orchestrator, submit):
        result = await submit("Need a copy of my transcript for enrollment")

        assert result.concern.reference_number == "CNR2025030001"
        history = await orchestrator.get_history(result.concern.id)
        created = [e for e in history if e.event_type == "created"]
        assert len(created) == 1
        assert created[0].actor_id == result.concern.student_id
        assert created[0].metadata["priority_analysis"]["category"] == "administrative"
        assert "assignment" in [e.event_type for e in history]

    async def test_requested_priority_is_never_lowered(self, submit):
        result = await submit("URGENT: security threat near dorm", priority="low")
        assert result.concern.priority == "urgent"

    async def test_requested_priority_can_raise(self, submit):
        result = await submit("Need a copy of my transcript for enrollment", priority="high")
        assert result.concern.priority == "high"

    async def test_explicit_department_overrides_hint(self, submit, directory):
        result = await submit("My tuition payment has an issue", department_id=directory.registrar)

        assert result.concern.department_id == directory.registrar
        assert result.concern.assigned_to == directory.registrar_staff

    async def test_department_without_handlers_goes_cross_department(self, submit, directory, uow_factory):
        result = await submit("Clinic doctor unavailable")

        assert result.concern.department_id == directory.health
        assert result.assignment.cross_department is True
        # housing and IT staff both idle; id breaks the tie
        assert result.concern.assigned_to == directory.housing_staff

        async with uow_factory() as uow:
            records = await uow.cross_assignments.list_active_for_concern(result.concern.id)
        assert len(records) == 1
        assert records[0].requesting_department_id == directory.health
        assert records[0].assigned_department_id == directory.housing
        assert records[0].assignment_type == "normal"

    async def test_lowest_workload_wins(self, submit, directory):
        first = await submit("My tuition payment has an issue")
        second = await submit("Refund of my scholarship fee")

        assert first.concern.assigned_to == directory.finance_staff_1
        assert second.concern.assigned_to == directory.finance_staff_2

    async def test_unknown_student(self, submit):
        with pytest.raises(ResourceNotFoundException):
            await submit("Help with my grade", student_id="nobody")

    async def test_staff_cannot_submit(self, submit, directory):
        with pytest.raises(AuthorizationException):
            await submit("Help with my grade", student_id=directory.finance_staff_1)

    async def test_unknown_department(self, submit):
        with pytest.raises(ValidationException):
            await submit("Help with my grade", department_id="dept-missing")

    async def test_auto_escalation_alerts_department_heads(self, submit, directory, notifier):
        result = await submit("Urgent: I am worried and upset about harassment")

        assert result.priority_analysis.auto_escalation is True
        assert result.concern.department_id == directory.security
        assert "URGENT: Auto-Escalated Concern" in notifier.titles_for(directory.security_head)

    async def test_assignment_notifies_handler_and_student(self, submit, directory, notifier, audit):
        await submit("My tuition payment has an issue")

        assert "New Concern Assigned" in notifier.titles_for(directory.finance_staff_1)
        assert "Concern Assigned" in notifier.titles_for(directory.student)
        assert "concern.assign" in audit.actions


class TestApprovalAndRejection:
    async def test_staff_cannot_approve(self, orchestrator, submit, directory):
        result = await submit("My tuition payment has an issue")

        with pytest.raises(AuthorizationException):
            await orchestrator.approve(result.concern.id, directory.finance_staff_1)

        concern = await orchestrator.get_concern(result.concern.id)
        assert concern.status == "pending"

    async def test_denied_approval_is_logged(self, orchestrator, submit, directory, caplog):
        result = await submit("My tuition payment has an issue")
        caplog.set_level(logging.WARNING, logger="concern_desk.concerns.application.transactions")

        with pytest.raises(AuthorizationException):
            await orchestrator.approve(result.concern.id, directory.finance_staff_1)

        denied = [r for r in caplog.records if r.getMessage() == "Concern action denied"]
        assert len(denied) == 1
        assert denied[0].levelno == logging.WARNING
        assert denied[0].concern_id == result.concern.id
        assert denied[0].actor_id == directory.finance_staff_1
        assert denied[0].attempted == "approve"

    async def test_head_of_other_department_cannot_approve(self, orchestrator, submit, directory):
        result = await submit("My tuition payment has an issue")

        with pytest.raises(AuthorizationException):
            await orchestrator.approve(result.concern.id, directory.security_head)

    async def test_approve_twice(self, orchestrator, submit, directory):
        result = await submit("My tuition payment has an issue")
        await orchestrator.approve(result.concern.id, directory.finance_head)

        with pytest.raises(InvalidStateException):
            await orchestrator.approve(result.concern.id, directory.admin)

    async def test_reject(self, orchestrator, submit, directory, notifier):
        result = await submit("My tuition payment has an issue")

        concern = await orchestrator.reject(result.concern.id, directory.finance_head, "Already settled with cashier")

        assert concern.status == "rejected"
        assert concern.rejection_reason == "Already settled with cashier"
        assert "Concern Rejected" in notifier.titles_for(directory.student)

    async def test_rejected_concern_frees_capacity(self, orchestrator, submit, directory):
        first = await submit("My tuition payment has an issue")
        await orchestrator.reject(first.concern.id, directory.finance_head, "Duplicate of another concern")

        second = await submit("Refund of my scholarship fee")

        assert second.concern.assigned_to == directory.finance_staff_1

    async def test_reject_with_short_reason(self, orchestrator, submit, directory):
        result = await submit("My tuition payment has an issue")

        with pytest.raises(ValidationException):
            await orchestrator.reject(result.concern.id, directory.finance_head, "no")

    async def test_unknown_concern(self, orchestrator, directory):
        with pytest.raises(ResourceNotFoundException):
            await orchestrator.approve("missing", directory.admin)


class TestResolution:
    async def _resolved(self, orchestrator, submit, directory, clock):
        result = await submit("My tuition payment has an issue")
        concern_id = result.concern.id
        await orchestrator.approve(concern_id, directory.finance_head)
        clock.advance(hours=1)
        await orchestrator.update_status(concern_id, directory.finance_staff_1, "in_progress")
        clock.advance(hours=3)
        await orchestrator.update_status(
            concern_id, directory.finance_staff_1, "staff_resolved", "Payment posted manually"
        )
        return concern_id

    async def test_confirm_resolution_archives(self, orchestrator, submit, directory, clock, chat, notifier):
        concern_id = await self._resolved(orchestrator, submit, directory, clock)
        clock.advance(hours=2)

        concern = await orchestrator.confirm_resolution(concern_id, directory.student, "Thank you", 5)

        assert concern.status == "student_confirmed"
        assert concern.archived_at == clock.now()
        assert concern.rating == 5
        assert chat.actions_for(concern_id)[-1] == "close"
        assert "Resolution Confirmed" in notifier.titles_for(directory.finance_staff_1)

        history = await orchestrator.get_history(concern_id)
        assert [e.event_type for e in history][-1] == "resolution_confirmation"

    async def test_confirm_twice(self, orchestrator, submit, directory, clock):
        concern_id = await self._resolved(orchestrator, submit, directory, clock)
        await orchestrator.confirm_resolution(concern_id, directory.student)

        with pytest.raises(NotConfirmableException):
            await orchestrator.confirm_resolution(concern_id, directory.student)

    async def test_other_student_cannot_confirm(self, orchestrator, submit, directory, clock):
        concern_id = await self._resolved(orchestrator, submit, directory, clock)

        with pytest.raises(AuthorizationException):
            await orchestrator.confirm_resolution(concern_id, directory.other_student)

    async def test_dispute_then_reopen(self, orchestrator, submit, directory, clock, chat, notifier):
        concern_id = await self._resolved(orchestrator, submit, directory, clock)

        disputed = await orchestrator.dispute_resolution(concern_id, directory.student, "Balance still shows")

        assert disputed.status == "disputed"
        assert chat.actions_for(concern_id)[-1] == "reopen"
        assert "Resolution Disputed" in notifier.titles_for(directory.finance_staff_1)
        assert "Resolution Disputed" in notifier.titles_for(directory.finance_head)

        reopened = await orchestrator.update_status(concern_id, directory.finance_staff_1, "in_progress")
        assert reopened.status == "in_progress"

    async def test_student_confirms_through_status_update(self, orchestrator, submit, directory, clock):
        concern_id = await self._resolved(orchestrator, submit, directory, clock)

        concern = await orchestrator.update_status(concern_id, directory.student, "student_confirmed")

        assert concern.status == "student_confirmed"

    async def test_resolution_history_feeds_selection(self, orchestrator, submit, directory, clock):
        concern_id = await self._resolved(orchestrator, submit, directory, clock)
        await orchestrator.confirm_resolution(concern_id, directory.student)

        # both finance staff idle again; staff-fin-1 now has a resolution average, staff-fin-2 none
        result = await submit("Refund of my scholarship fee")
        assert result.concern.assigned_to == directory.finance_staff_1


class TestManualAssignment:
    async def test_head_assigns_in_department(self, orchestrator, submit, directory):
        result = await submit("My tuition payment has an issue")

        concern = await orchestrator.assign(result.concern.id, directory.finance_head, directory.finance_staff_2)

        assert concern.assigned_to == directory.finance_staff_2

    async def test_admin_may_exceed_capacity(self, make_orchestrator, directory):
        orchestrator = make_orchestrator(workload_capacity_cap=1)
        draft = ConcernDraft(student_id=directory.student, subject="Transcript request", description="For enrollment")
        first = await orchestrator.submit(draft)
        second = await orchestrator.submit(draft)

        assert first.concern.assigned_to == directory.registrar_staff
        # registrar staff at the cap, so automatic assignment went outside
        assert second.concern.assigned_to == directory.housing_staff

        concern = await orchestrator.assign(second.concern.id, directory.admin, directory.registrar_staff)

        assert concern.assigned_to == directory.registrar_staff

    async def test_manual_cross_department_assignment_is_recorded(self, orchestrator, submit, directory, uow_factory):
        result = await submit("My tuition payment has an issue")

        await orchestrator.assign(result.concern.id, directory.admin, directory.it_staff)

        async with uow_factory() as uow:
            records = await uow.cross_assignments.list_active_for_concern(result.concern.id)
        assert [r.staff_id for r in records] == [directory.it_staff]
        assert records[0].assigned_by == directory.admin

    async def test_staff_cannot_assign(self, orchestrator, submit, directory):
        result = await submit("My tuition payment has an issue")

        with pytest.raises(AuthorizationException):
            await orchestrator.assign(result.concern.id, directory.finance_staff_1, directory.finance_staff_2)

    async def test_cannot_assign_to_student(self, orchestrator, submit, directory):
        result = await submit("My tuition payment has an issue")

        with pytest.raises(ValidationException):
            await orchestrator.assign(result.concern.id, directory.admin, directory.other_student)
