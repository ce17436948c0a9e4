"""
Assignment Domain Layer
=======================

Pure selection and balancing rules over workload snapshots.
"""

from concern_desk.assignment.domain.selector import (
    AssignmentDecision,
    AssignmentSelector,
    HandlerLoad,
    estimate_duration_hours,
)
from concern_desk.assignment.domain.balancing import (
    DepartmentLoad,
    RebalanceProposal,
    propose_rebalance,
)

__all__ = [
    "AssignmentDecision",
    "AssignmentSelector",
    "HandlerLoad",
    "estimate_duration_hours",
    "DepartmentLoad",
    "RebalanceProposal",
    "propose_rebalance",
]
