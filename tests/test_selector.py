"""
Unit tests for handler selection, duration estimates and rebalancing proposals.
"""

from datetime import datetime, timezone

import pytest

from concern_desk.assignment.domain.balancing import DepartmentLoad, propose_rebalance
from concern_desk.assignment.domain.selector import (
    AssignmentSelector,
    HandlerLoad,
    estimate_duration_hours,
)
from concern_desk.concerns.domain.entities import Concern, User

NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


def make_concern(concern_id="c-1", department_id="dept-a", assigned_to=None, priority="medium", category="general"):
    return Concern(
        id=concern_id,
        reference_number="CNR2025030001",
        subject="Subject",
        description="Description",
        category=category,
        priority=priority,
        status="pending",
        student_id="student",
        department_id=department_id,
        created_at=NOW,
        updated_at=NOW,
        assigned_to=assigned_to,
    )


def load(user_id, workload=0, department_id="dept-a", role="staff", avg=None, cross=False, active=True):
    user = User(
        id=user_id,
        name=user_id.title(),
        role=role,
        department_id=department_id,
        is_active=active,
        can_handle_cross_department=cross,
    )
    return HandlerLoad(handler=user, workload=workload, average_resolution_hours=avg)


@pytest.fixture
def selector():
    return AssignmentSelector(capacity_cap=10, emergency_duration_hours=2)


class TestSelect:
    def test_lowest_workload_in_department(self, selector):
        decision = selector.select(make_concern(), [load("a", 3), load("b", 1), load("c", 2)])

        assert decision.handler_id == "b"
        assert decision.candidate_ids == ["b", "c", "a"]
        assert decision.cross_department is False

    def test_faster_history_breaks_workload_tie(self, selector):
        decision = selector.select(make_concern(), [load("a", 1, avg=9.0), load("b", 1, avg=3.5)])
        assert decision.handler_id == "b"

    def test_handlers_without_history_rank_last(self, selector):
        decision = selector.select(make_concern(), [load("a", 1), load("b", 1, avg=40.0)])
        assert decision.handler_id == "b"

    def test_id_breaks_remaining_ties(self, selector):
        decision = selector.select(make_concern(), [load("zeta", 0), load("alpha", 0)])
        assert decision.handler_id == "alpha"

    def test_department_head_is_in_department_candidate(self, selector):
        decision = selector.select(
            make_concern(), [load("staff", 4), load("head", 2, role="department_head")]
        )
        assert decision.handler_id == "head"

    def test_admin_is_never_an_in_department_candidate(self, selector):
        decision = selector.select(make_concern(), [load("boss", 0, role="admin")])
        assert decision.handler_id is None

    def test_capped_and_inactive_handlers_are_dropped(self, selector):
        decision = selector.select(
            make_concern(),
            [load("full", 10), load("away", 0, active=False), load("outsider", 5, "dept-b", cross=True)],
        )

        assert decision.handler_id == "outsider"
        assert decision.cross_department is True
        assert decision.assignment_type == "normal"
        assert decision.source_department_id == "dept-b"

    def test_cross_department_estimate(self, selector):
        concern = make_concern(priority="high", category="technical")
        decision = selector.select(concern, [load("outsider", 0, "dept-b", cross=True)])
        assert decision.estimated_duration_hours == 6

    def test_non_cross_capable_outsiders_are_ignored(self, selector):
        decision = selector.select(make_concern(), [load("full", 10), load("other", 0, "dept-b")])

        assert decision.handler_id is None
        assert decision.is_assigned is False

    def test_emergency_skips_in_department_pool(self, selector):
        decision = selector.select(
            make_concern(),
            [load("local", 0), load("outsider", 7, "dept-b", cross=True)],
            emergency=True,
        )

        assert decision.handler_id == "outsider"
        assert decision.assignment_type == "emergency"
        assert decision.estimated_duration_hours == 2

    def test_current_assignee_excluded_from_cross_pool(self, selector):
        concern = make_concern(assigned_to="outsider")
        decision = selector.select(concern, [load("outsider", 0, "dept-b", cross=True)], emergency=True)
        assert decision.handler_id is None


class TestSelectForEscalation:
    def test_staff_level_picks_another_staff_member(self, selector):
        concern = make_concern(assigned_to="s1")
        loads = [load("s1", 0), load("s2", 3), load("head", 0, role="department_head")]

        decision = selector.select_for_escalation(concern, "staff", loads)

        assert decision.handler_id == "s2"
        assert decision.level == "staff"

    def test_department_head_level(self, selector):
        concern = make_concern(assigned_to="s1")
        loads = [
            load("s1", 0),
            load("head", 4, role="department_head"),
            load("other-head", 0, "dept-b", role="department_head"),
        ]

        assert selector.select_for_escalation(concern, "department_head", loads).handler_id == "head"

    def test_admin_level(self, selector):
        loads = [load("head", 0, role="department_head"), load("root", 2, None, role="admin")]
        decision = selector.select_for_escalation(make_concern(assigned_to="head"), "admin", loads)
        assert decision.handler_id == "root"

    def test_nobody_available(self, selector):
        decision = selector.select_for_escalation(make_concern(assigned_to="s1"), "staff", [load("s1", 0)])

        assert decision.handler_id is None
        assert decision.candidate_ids == []

    def test_unknown_level(self, selector):
        with pytest.raises(ValueError):
            selector.select_for_escalation(make_concern(), "none", [])


@pytest.mark.parametrize(
    "priority, category, hours",
    [
        ("urgent", "safety", 1),
        ("urgent", "general", 2),
        ("medium", "administrative", 6),
        ("low", "health", 12),
        ("unknown", "general", 8),
    ],
)
def test_estimate_duration_hours(priority, category, hours):
    assert estimate_duration_hours(priority, category) == hours


class TestProposeRebalance:
    def test_not_overloaded_department_gets_no_proposals(self, selector):
        department = DepartmentLoad("dept-a", "A", open_concerns=3, active_handlers=1, capacity_cap=10)
        proposals = propose_rebalance(
            department, [make_concern()], [load("x", 0, "dept-b", cross=True)], selector, 0.8
        )
        assert proposals == []

    def test_proposals_spread_and_stop_below_threshold(self, selector):
        department = DepartmentLoad("dept-a", "A", open_concerns=10, active_handlers=1, capacity_cap=10)
        queued = [make_concern(f"c-{i}") for i in range(1, 6)]
        outside = [load("x", 0, "dept-b", cross=True), load("y", 0, "dept-c", cross=True)]

        proposals = propose_rebalance(department, queued, outside, selector, 0.8)

        # 10 -> 8 open still at 80%; the third move drops it to 70%
        assert [p.concern_id for p in proposals] == ["c-1", "c-2", "c-3"]
        assert [p.to_handler_id for p in proposals] == ["x", "y", "x"]
        assert [p.handler_workload for p in proposals] == [0, 0, 1]

    def test_department_without_handlers_is_fully_drained(self, selector):
        department = DepartmentLoad("dept-a", "A", open_concerns=2, active_handlers=0, capacity_cap=10)
        queued = [make_concern("c-1"), make_concern("c-2")]

        proposals = propose_rebalance(department, queued, [load("x", 0, "dept-b", cross=True)], selector, 0.8)

        assert len(proposals) == 2
        assert department.to_dict(0.8, 0.3)["load_ratio"] is None

    def test_stops_when_outside_handlers_are_full(self, selector):
        department = DepartmentLoad("dept-a", "A", open_concerns=10, active_handlers=1, capacity_cap=10)
        proposals = propose_rebalance(
            department, [make_concern()], [load("x", 10, "dept-b", cross=True)], selector, 0.8
        )
        assert proposals == []
