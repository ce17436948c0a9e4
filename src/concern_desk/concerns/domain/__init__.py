"""
Concerns Domain Layer
=====================

Entities and the lifecycle state machine. Pure Python, no infrastructure.
"""

from concern_desk.concerns.domain.entities import (
    Concern,
    ConcernEvent,
    CrossDepartmentAssignment,
    Department,
    EventType,
    User,
    format_reference_number,
    new_id,
    parse_reference_sequence,
    reference_month,
)
from concern_desk.concerns.domain.state_machine import (
    Capability,
    ChatAction,
    ChatEffect,
    LifecycleStateMachine,
    Notification,
    TransitionResult,
    can_approve,
    can_assign,
    can_confirm,
    can_dispute,
    can_escalate,
    can_reject,
    can_update_status,
    higher_priority,
)

__all__ = [
    "Concern",
    "ConcernEvent",
    "CrossDepartmentAssignment",
    "Department",
    "EventType",
    "User",
    "format_reference_number",
    "new_id",
    "parse_reference_sequence",
    "reference_month",
    "Capability",
    "ChatAction",
    "ChatEffect",
    "LifecycleStateMachine",
    "Notification",
    "TransitionResult",
    "can_approve",
    "can_assign",
    "can_confirm",
    "can_dispute",
    "can_escalate",
    "can_reject",
    "can_update_status",
    "higher_priority",
]
