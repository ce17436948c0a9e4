"""
Escalation Domain Layer
=======================

Threshold policy and the pure per-concern sweep decision.
"""

from concern_desk.escalation.domain.value_objects import (
    CooldownConfig,
    EscalationDecision,
    EscalationPolicy,
    PriorityThresholds,
    SkipReason,
    SweepAction,
    escalation_reason,
    evaluate,
    manual_target_level,
    target_level,
)

__all__ = [
    "CooldownConfig",
    "EscalationDecision",
    "EscalationPolicy",
    "PriorityThresholds",
    "SkipReason",
    "SweepAction",
    "escalation_reason",
    "evaluate",
    "manual_target_level",
    "target_level",
]
