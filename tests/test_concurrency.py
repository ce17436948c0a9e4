"""
Concurrency tests: reference numbers, capacity cap and optimistic version checks.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from concern_desk.concerns.application.dto import ConcernDraft
from concern_desk.concerns.domain.entities import (
    Department,
    User,
    format_reference_number,
    parse_reference_sequence,
)
from concern_desk.core.exceptions import ConcurrencyConflictException

TRANSCRIPT = "Need a copy of my transcript for enrollment"


class TestReferenceNumbers:
    def test_format_and_parse(self):
        moment = datetime(2024, 10, 3, tzinfo=timezone.utc)

        assert format_reference_number(moment, 7) == "CNR2024100007"
        assert format_reference_number(moment, 12345) == "CNR20241012345"
        assert parse_reference_sequence("CNR20241012345") == 12345

    def test_malformed_reference(self):
        with pytest.raises(ValueError):
            parse_reference_sequence("TKT-1")

    async def test_sequential_within_month(self, submit):
        numbers = [(await submit(TRANSCRIPT)).concern.reference_number for _ in range(3)]
        assert numbers == ["CNR2025030001", "CNR2025030002", "CNR2025030003"]

    async def test_sequence_resets_each_month(self, submit, clock):
        await submit(TRANSCRIPT)
        await submit(TRANSCRIPT)

        clock.set(datetime(2025, 4, 1, 0, 5, tzinfo=timezone.utc))
        result = await submit(TRANSCRIPT)

        assert result.concern.reference_number == "CNR2025040001"

    async def test_concurrent_submissions_get_unique_numbers(self, submit):
        results = await asyncio.gather(*(submit(TRANSCRIPT) for _ in range(8)))

        numbers = sorted(r.concern.reference_number for r in results)
        assert numbers == [f"CNR202503{n:04d}" for n in range(1, 9)]


class TestConcurrentWrites:
    @pytest.fixture
    async def single_handler(self, seeder):
        await seeder(
            [Department("dept-registrar", "REGISTRAR", "Registrar")],
            [
                User("usr-student-1", "Maria Santos", "student"),
                User("staff-reg-1", "Lea Go", "staff", "dept-registrar"),
            ],
        )

    async def test_concurrent_submissions_respect_the_cap(self, make_orchestrator, single_handler):
        orchestrator = make_orchestrator(workload_capacity_cap=2)
        draft = ConcernDraft(student_id="usr-student-1", subject=TRANSCRIPT, description=TRANSCRIPT)

        results = await asyncio.gather(*(orchestrator.submit(draft) for _ in range(5)))

        statuses = sorted(r.assignment.status for r in results)
        assert statuses == ["assigned", "assigned", "unassigned", "unassigned", "unassigned"]
        assigned = [r.concern for r in results if r.assignment.status == "assigned"]
        assert {c.assigned_to for c in assigned} == {"staff-reg-1"}

    async def test_concurrent_sweeps_escalate_once(self, orchestrator, submit, clock):
        result = await submit("Urgent: tuition payment failed")
        clock.advance(hours=7)

        first, second = await asyncio.gather(
            orchestrator.run_escalation_sweep(), orchestrator.run_escalation_sweep()
        )

        assert len(first.escalated) + len(second.escalated) == 1
        history = await orchestrator.get_history(result.concern.id)
        assert [e.event_type for e in history].count("escalation") == 1


class TestOptimisticVersion:
    async def test_stale_update_is_rejected(self, orchestrator, submit, uow_factory):
        result = await submit(TRANSCRIPT)

        async with uow_factory() as uow:
            stale = await uow.concerns.get_by_id(result.concern.id)
        async with uow_factory() as uow:
            fresh = await uow.concerns.get_by_id(result.concern.id)
            fresh.subject = "Updated subject"
            await uow.concerns.update(fresh)
            await uow.commit()

        stale.subject = "Lost update"
        async with uow_factory() as uow:
            with pytest.raises(ConcurrencyConflictException):
                await uow.concerns.update(stale)

        concern = await orchestrator.get_concern(result.concern.id)
        assert concern.subject == "Updated subject"
        assert concern.version == fresh.version
