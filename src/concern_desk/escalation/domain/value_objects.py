"""
Escalation Value Objects
========================

Immutable threshold policy and the per-concern sweep decision.

Value objects are defined by their attributes rather than an identity.
``evaluate`` is a pure function of a concern, the policy and an instant.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator

from concern_desk.config import (
    ESCALATION_LEVELS,
    ESCALATION_RANK,
    EscalationLevel,
    Priority,
)
from concern_desk.concerns.domain.entities import Concern
from concern_desk.shared.domain.clock import hours_between


class PriorityThresholds(BaseModel):
    """Hours since assignment (or creation) at which each step fires."""
    reminder: float = Field(..., gt=0)
    escalate: float = Field(..., gt=0)
    department_head: float = Field(..., gt=0)
    admin: float = Field(..., gt=0)

    @model_validator(mode="after")
    def check_order(self) -> "PriorityThresholds":
        if not (self.reminder <= self.escalate <= self.department_head <= self.admin):
            raise ValueError("thresholds must satisfy reminder <= escalate <= department_head <= admin")
        return self


class CooldownConfig(BaseModel):
    escalation_hours: float = Field(default=24, ge=0)
    reminder_hours: float = Field(default=12, ge=0)


DEFAULT_KEY = "default"


def _default_thresholds() -> Dict[str, PriorityThresholds]:
    return {
        Priority.URGENT: PriorityThresholds(reminder=2, escalate=6, department_head=12, admin=24),
        Priority.HIGH: PriorityThresholds(reminder=6, escalate=24, department_head=48, admin=72),
        DEFAULT_KEY: PriorityThresholds(reminder=24, escalate=72, department_head=120, admin=168),
    }


class EscalationPolicy(BaseModel):
    """
    Escalation configuration loaded from YAML.

    Priorities without an entry use ``default``.
    """
    thresholds: Dict[str, PriorityThresholds] = Field(default_factory=_default_thresholds)
    cooldowns: CooldownConfig = Field(default_factory=CooldownConfig)
    allow_level_skip: bool = Field(
        default=True,
        description="Go straight to the highest level crossed instead of one step at a time",
    )

    @model_validator(mode="after")
    def ensure_default(self) -> "EscalationPolicy":
        if DEFAULT_KEY not in self.thresholds:
            self.thresholds[DEFAULT_KEY] = _default_thresholds()[DEFAULT_KEY]
        return self

    def thresholds_for(self, priority: str) -> PriorityThresholds:
        return self.thresholds.get(priority) or self.thresholds[DEFAULT_KEY]


class SweepAction(str):
    ESCALATE = "escalate"
    REMIND = "remind"
    SKIP = "skip"
    NONE = "none"


class SkipReason(str):
    ESCALATION_COOLDOWN = "escalation_cooldown"
    NO_ASSIGNEE = "no_assignee"


@dataclass(frozen=True)
class EscalationDecision:
    """
    What the sweep should do with one concern.

    ``remind`` can accompany a skipped escalation: the concern is overdue
    but cooling down, and its reminder window is open.
    """
    action: str
    hours_open: float
    target_level: Optional[str] = None
    reason: Optional[str] = None
    skip_reason: Optional[str] = None
    remind: bool = False


def _next_level(current: str) -> str:
    rank = min(ESCALATION_RANK.get(current, 0) + 1, ESCALATION_RANK[EscalationLevel.ADMIN])
    return ESCALATION_LEVELS[rank]


def target_level(
    hours_open: float,
    thresholds: PriorityThresholds,
    current_level: str,
    allow_level_skip: bool = True,
) -> str:
    """
    Level an overdue concern escalates to.

    The highest threshold crossed, but always at least one step above the
    current level, capped at admin.
    """
    if hours_open >= thresholds.admin:
        crossed = EscalationLevel.ADMIN
    elif hours_open >= thresholds.department_head:
        crossed = EscalationLevel.DEPARTMENT_HEAD
    else:
        crossed = EscalationLevel.STAFF

    if (
        not allow_level_skip
        and crossed == EscalationLevel.ADMIN
        and ESCALATION_RANK.get(current_level, 0) < ESCALATION_RANK[EscalationLevel.DEPARTMENT_HEAD]
    ):
        crossed = EscalationLevel.DEPARTMENT_HEAD

    step = _next_level(current_level)
    return crossed if ESCALATION_RANK[crossed] >= ESCALATION_RANK[step] else step


def manual_target_level(current_level: str) -> str:
    """Manual escalation goes to the department head, or admin once already there."""
    if ESCALATION_RANK.get(current_level, 0) >= ESCALATION_RANK[EscalationLevel.DEPARTMENT_HEAD]:
        return EscalationLevel.ADMIN
    return EscalationLevel.DEPARTMENT_HEAD


def escalation_reason(level: str, hours_open: float) -> str:
    hours = int(hours_open)
    if level == EscalationLevel.ADMIN:
        return f"Escalated to admin after {hours} hours without resolution"
    if level == EscalationLevel.DEPARTMENT_HEAD:
        return f"Escalated to department head after {hours} hours without resolution"
    return f"Reassigned to different staff member after {hours} hours without progress"


def _cooling(last: Optional[datetime], now: datetime, window_hours: float) -> bool:
    return last is not None and hours_between(last, now) < window_hours


def evaluate(concern: Concern, policy: EscalationPolicy, now: datetime) -> EscalationDecision:
    """Decide the sweep action for one concern at ``now``."""
    hours = concern.hours_open(now)
    thresholds = policy.thresholds_for(concern.priority)
    reminder_open = hours >= thresholds.reminder and not _cooling(
        concern.last_reminder_sent, now, policy.cooldowns.reminder_hours
    )

    if hours >= thresholds.escalate:
        if not _cooling(concern.escalated_at, now, policy.cooldowns.escalation_hours):
            level = target_level(
                hours, thresholds, concern.escalation_level, policy.allow_level_skip
            )
            return EscalationDecision(
                action=SweepAction.ESCALATE,
                hours_open=hours,
                target_level=level,
                reason=escalation_reason(level, hours),
                remind=reminder_open,
            )
        return EscalationDecision(
            action=SweepAction.REMIND if reminder_open else SweepAction.SKIP,
            hours_open=hours,
            skip_reason=SkipReason.ESCALATION_COOLDOWN,
            remind=reminder_open,
        )

    if reminder_open:
        return EscalationDecision(action=SweepAction.REMIND, hours_open=hours, remind=True)
    return EscalationDecision(action=SweepAction.NONE, hours_open=hours)
