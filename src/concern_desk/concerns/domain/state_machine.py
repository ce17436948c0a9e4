"""
Concern Lifecycle State Machine
===============================

Legal status transitions of a concern, who may perform each one, and the
side effects each transition requires.

Transitions mutate the ``Concern`` in place and return a ``TransitionResult``
listing the history events to persist and the chat effect to run after
commit. Nothing here performs I/O.

    pending ──approve──> approved ──assign──> in_progress ──> staff_resolved
       │                                                        │      │
       ├──reject──> rejected                      confirm (student)   dispute (student)
       └──cancel──> cancelled                          │               │
                                               student_confirmed    disputed ──> in_progress
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from concern_desk.config import (
    ConcernStatus,
    ESCALATION_RANK,
    PRIORITY_RANK,
    UserRole,
    VALID_PRIORITIES,
    VALID_STATUSES,
)
from concern_desk.core.exceptions import (
    AuthorizationException,
    InvalidStateException,
    NotConfirmableException,
    ValidationException,
)
from concern_desk.concerns.domain.entities import (
    Concern,
    ConcernEvent,
    EventType,
    User,
    new_id,
)


# ========== Capabilities ==========

@dataclass(frozen=True)
class Capability:
    """Answer to "may this actor do this?" with the reason when not."""
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed

    def require(self, action: str, actor: Optional[User], concern: Concern) -> None:
        if not self.allowed:
            raise AuthorizationException(
                action,
                actor.id if actor else None,
                self.reason,
                {"concern_id": concern.id, "reference_number": concern.reference_number},
            )


ALLOWED = Capability(True)


def _supervises(actor: User, concern: Concern) -> bool:
    return actor.is_admin or actor.heads_department(concern.department_id)


def can_approve(actor: User, concern: Concern) -> Capability:
    if not actor.is_active:
        return Capability(False, "actor is inactive")
    if _supervises(actor, concern):
        return ALLOWED
    return Capability(False, "only an admin or the head of the owning department may approve")


def can_reject(actor: User, concern: Concern) -> Capability:
    if not actor.is_active:
        return Capability(False, "actor is inactive")
    if _supervises(actor, concern):
        return ALLOWED
    return Capability(False, "only an admin or the head of the owning department may reject")


def can_update_status(actor: User, concern: Concern) -> Capability:
    if not actor.is_active:
        return Capability(False, "actor is inactive")
    if _supervises(actor, concern):
        return ALLOWED
    if actor.role in (UserRole.STAFF, UserRole.DEPARTMENT_HEAD) and concern.assigned_to == actor.id:
        return ALLOWED
    return Capability(False, "only the assigned handler, the department head or an admin may change status")


def can_assign(actor: User, concern: Concern) -> Capability:
    if not actor.is_active:
        return Capability(False, "actor is inactive")
    if _supervises(actor, concern):
        return ALLOWED
    return Capability(False, "only an admin or the head of the owning department may assign")


def can_confirm(actor: User, concern: Concern) -> Capability:
    if actor.id == concern.student_id:
        return ALLOWED
    return Capability(False, "only the student who raised the concern may confirm its resolution")


def can_dispute(actor: User, concern: Concern) -> Capability:
    if actor.id == concern.student_id:
        return ALLOWED
    return Capability(False, "only the student who raised the concern may dispute its resolution")


def can_escalate(actor: User, concern: Concern) -> Capability:
    if not actor.is_active:
        return Capability(False, "actor is inactive")
    if _supervises(actor, concern):
        return ALLOWED
    return Capability(False, "only an admin or the head of the owning department may escalate")


# Status moves available to handlers through update_status. Approval and
# rejection have their own transitions; confirm/dispute belong to the student.
HANDLER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    ConcernStatus.PENDING: frozenset({
        ConcernStatus.IN_PROGRESS, ConcernStatus.STAFF_RESOLVED,
        ConcernStatus.CLOSED, ConcernStatus.CANCELLED,
    }),
    ConcernStatus.APPROVED: frozenset({
        ConcernStatus.IN_PROGRESS, ConcernStatus.STAFF_RESOLVED,
        ConcernStatus.CLOSED, ConcernStatus.CANCELLED,
    }),
    ConcernStatus.IN_PROGRESS: frozenset({
        ConcernStatus.STAFF_RESOLVED, ConcernStatus.CLOSED, ConcernStatus.CANCELLED,
    }),
    ConcernStatus.STAFF_RESOLVED: frozenset({
        ConcernStatus.IN_PROGRESS, ConcernStatus.CLOSED,
    }),
    ConcernStatus.DISPUTED: frozenset({
        ConcernStatus.IN_PROGRESS, ConcernStatus.STAFF_RESOLVED,
        ConcernStatus.CLOSED, ConcernStatus.CANCELLED,
    }),
}


# ========== Transition results ==========

class ChatAction(str):
    OPEN = "open"
    CLOSE = "close"
    REOPEN = "reopen"


@dataclass
class ChatEffect:
    """Chat channel call to make once the transition is committed."""
    action: str
    participants: List[str] = field(default_factory=list)
    author_id: Optional[str] = None
    message: Optional[str] = None


@dataclass
class Notification:
    user_id: str
    title: str
    body: str
    data: dict = field(default_factory=dict)


@dataclass
class TransitionResult:
    """Everything a committed transition still owes the outside world."""
    action: str
    before: dict
    after: dict
    events: List[ConcernEvent] = field(default_factory=list)
    chat: Optional[ChatEffect] = None
    notifications: List[Notification] = field(default_factory=list)

    def merge(self, other: "TransitionResult") -> "TransitionResult":
        """Fold a follow-up transition on the same concern into this one."""
        self.after = other.after
        self.events.extend(other.events)
        self.chat = other.chat or self.chat
        self.notifications.extend(other.notifications)
        return self


def _participants(*user_ids: Optional[str]) -> List[str]:
    seen: List[str] = []
    for user_id in user_ids:
        if user_id and user_id not in seen:
            seen.append(user_id)
    return seen


def welcome_message(handler: User) -> str:
    return (
        f"Hello! I'm {handler.name} and I'll be helping you with your concern. "
        "Feel free to share any additional details here."
    )


# ========== State machine ==========

class LifecycleStateMachine:
    """
    Owner of every write to a concern's status, assignment and escalation fields.

    Each transition checks authorization first, then input, then the current
    status, and only then mutates.
    """

    def __init__(self, rejection_reason_min_length: int = 10):
        self.rejection_reason_min_length = rejection_reason_min_length

    # ---------- helpers ----------

    @staticmethod
    def _require_status(concern: Concern, allowed: FrozenSet[str], attempted: str) -> None:
        if concern.status not in allowed:
            raise InvalidStateException(concern.id, concern.status, attempted)

    @staticmethod
    def _event(
        concern: Concern,
        event_type: str,
        message: str,
        now: datetime,
        actor_id: Optional[str] = None,
        **metadata,
    ) -> ConcernEvent:
        return ConcernEvent(
            id=new_id(),
            concern_id=concern.id,
            event_type=event_type,
            message=message,
            created_at=now,
            actor_id=actor_id,
            metadata=metadata,
        )

    @staticmethod
    def _touch(concern: Concern, now: datetime) -> None:
        concern.updated_at = now

    # ---------- approval ----------

    def approve(self, concern: Concern, actor: User, now: datetime) -> TransitionResult:
        can_approve(actor, concern).require("approve", actor, concern)
        self._require_status(concern, frozenset({ConcernStatus.PENDING}), "approve")

        before = concern.snapshot()
        concern.status = ConcernStatus.APPROVED
        concern.approved_at = now
        concern.approved_by = actor.id
        self._touch(concern, now)

        return TransitionResult(
            action="approve",
            before=before,
            after=concern.snapshot(),
            events=[self._event(concern, EventType.APPROVED, "Concern approved", now, actor.id)],
            chat=ChatEffect(
                action=ChatAction.OPEN,
                participants=_participants(concern.student_id, concern.assigned_to, actor.id),
                author_id=concern.assigned_to or actor.id,
                message=(
                    f"Your concern {concern.reference_number} has been approved "
                    "and is now being processed."
                ),
            ),
        )

    def reject(self, concern: Concern, actor: User, reason: str, now: datetime) -> TransitionResult:
        can_reject(actor, concern).require("reject", actor, concern)
        reason = (reason or "").strip()
        if len(reason) < self.rejection_reason_min_length:
            raise ValidationException(
                f"Rejection reason must be at least {self.rejection_reason_min_length} characters",
                {"concern_id": concern.id, "attempted": "reject"},
            )
        self._require_status(concern, frozenset({ConcernStatus.PENDING}), "reject")

        before = concern.snapshot()
        concern.status = ConcernStatus.REJECTED
        concern.rejected_at = now
        concern.rejected_by = actor.id
        concern.rejection_reason = reason
        self._touch(concern, now)

        return TransitionResult(
            action="reject",
            before=before,
            after=concern.snapshot(),
            events=[
                self._event(concern, EventType.REJECTED, f"Concern rejected: {reason}", now, actor.id)
            ],
        )

    # ---------- status updates ----------

    def update_status(
        self,
        concern: Concern,
        actor: User,
        new_status: str,
        now: datetime,
        note: Optional[str] = None,
    ) -> TransitionResult:
        """
        Handler-driven status change.

        ``approved``/``rejected`` route to their own transitions, and
        ``student_confirmed``/``disputed`` are only reachable by the owning
        student through ``confirm``/``dispute``.
        """
        if new_status not in VALID_STATUSES:
            raise ValidationException(
                f"Unknown status '{new_status}'",
                {"concern_id": concern.id, "attempted": "update_status"},
            )

        if new_status == ConcernStatus.STUDENT_CONFIRMED:
            can_confirm(actor, concern).require("confirm resolution", actor, concern)
            return self.confirm(concern, actor, now, notes=note)
        if new_status == ConcernStatus.DISPUTED:
            can_dispute(actor, concern).require("dispute resolution", actor, concern)
            return self.dispute(concern, actor, note or "", now)
        if new_status == ConcernStatus.APPROVED:
            return self.approve(concern, actor, now)
        if new_status == ConcernStatus.REJECTED:
            return self.reject(concern, actor, note or "", now)

        can_update_status(actor, concern).require(f"change status to {new_status}", actor, concern)
        allowed = HANDLER_TRANSITIONS.get(concern.status, frozenset())
        if concern.is_archived or new_status not in allowed:
            raise InvalidStateException(concern.id, concern.status, f"change status to {new_status}")

        before = concern.snapshot()
        previous = concern.status
        concern.status = new_status
        chat = None
        if new_status == ConcernStatus.STAFF_RESOLVED:
            concern.resolved_at = now
            if note:
                concern.resolution_notes = note
        elif new_status == ConcernStatus.CLOSED:
            concern.closed_at = now
            chat = ChatEffect(action=ChatAction.CLOSE)
        elif new_status == ConcernStatus.CANCELLED:
            chat = ChatEffect(action=ChatAction.CLOSE)
        self._touch(concern, now)

        return TransitionResult(
            action="update_status",
            before=before,
            after=concern.snapshot(),
            events=[
                self._event(
                    concern,
                    EventType.STATUS_CHANGE,
                    f"Status changed from {previous} to {new_status}",
                    now,
                    actor.id,
                    old_status=previous,
                    new_status=new_status,
                    note=note,
                )
            ],
            chat=chat,
        )

    # ---------- student resolution ----------

    def confirm(
        self,
        concern: Concern,
        actor: User,
        now: datetime,
        notes: Optional[str] = None,
        rating: Optional[int] = None,
    ) -> TransitionResult:
        can_confirm(actor, concern).require("confirm resolution", actor, concern)
        if rating is not None and (isinstance(rating, bool) or not 1 <= int(rating) <= 5):
            raise ValidationException(
                "Rating must be between 1 and 5",
                {"concern_id": concern.id, "attempted": "confirm resolution"},
            )
        if concern.status != ConcernStatus.STAFF_RESOLVED:
            raise NotConfirmableException(concern.id, concern.status, "confirm resolution")

        before = concern.snapshot()
        concern.status = ConcernStatus.STUDENT_CONFIRMED
        concern.student_resolved_at = now
        concern.archived_at = now
        concern.student_resolution_notes = notes
        concern.rating = int(rating) if rating is not None else None
        self._touch(concern, now)

        return TransitionResult(
            action="confirm_resolution",
            before=before,
            after=concern.snapshot(),
            events=[
                self._event(
                    concern,
                    EventType.RESOLUTION_CONFIRMATION,
                    "Student confirmed the resolution",
                    now,
                    actor.id,
                    notes=notes,
                    rating=concern.rating,
                )
            ],
            chat=ChatEffect(action=ChatAction.CLOSE),
        )

    def dispute(self, concern: Concern, actor: User, reason: str, now: datetime) -> TransitionResult:
        can_dispute(actor, concern).require("dispute resolution", actor, concern)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationException(
                "A dispute reason is required",
                {"concern_id": concern.id, "attempted": "dispute resolution"},
            )
        if concern.status != ConcernStatus.STAFF_RESOLVED:
            raise NotConfirmableException(concern.id, concern.status, "dispute resolution")

        before = concern.snapshot()
        concern.status = ConcernStatus.DISPUTED
        concern.disputed_at = now
        concern.dispute_reason = reason
        self._touch(concern, now)

        return TransitionResult(
            action="dispute_resolution",
            before=before,
            after=concern.snapshot(),
            events=[
                self._event(
                    concern,
                    EventType.RESOLUTION_DISPUTE,
                    f"Student disputed the resolution: {reason}",
                    now,
                    actor.id,
                    reason=reason,
                )
            ],
            chat=ChatEffect(
                action=ChatAction.REOPEN,
                participants=_participants(concern.student_id, concern.assigned_to),
                author_id=concern.student_id,
                message=f"Resolution disputed: {reason}",
            ),
        )

    # ---------- assignment & escalation ----------

    def assign(
        self,
        concern: Concern,
        handler: User,
        now: datetime,
        actor: Optional[User] = None,
        note: Optional[str] = None,
    ) -> TransitionResult:
        """
        Point the concern at ``handler``.

        ``actor`` is None for automatic assignment. An approved concern moves
        to in_progress; a pending one stays pending until approval.
        """
        if actor is not None:
            can_assign(actor, concern).require("assign", actor, concern)
        if not handler.is_handler or not handler.is_active:
            raise ValidationException(
                f"User {handler.id} cannot handle concerns",
                {"concern_id": concern.id, "attempted": "assign", "handler_id": handler.id},
            )
        if not concern.is_active:
            raise InvalidStateException(concern.id, concern.status, "assign")
        if concern.assigned_to == handler.id:
            raise InvalidStateException(
                concern.id,
                concern.status,
                "assign",
                message=f"Concern is already assigned to {handler.id}",
            )

        before = concern.snapshot()
        previous = concern.assigned_to
        concern.assigned_to = handler.id
        concern.assigned_at = now
        if concern.status == ConcernStatus.APPROVED:
            concern.status = ConcernStatus.IN_PROGRESS
        self._touch(concern, now)

        return TransitionResult(
            action="assign",
            before=before,
            after=concern.snapshot(),
            events=[
                self._event(
                    concern,
                    EventType.ASSIGNMENT,
                    f"Assigned to {handler.name}",
                    now,
                    actor.id if actor else None,
                    previous_handler=previous,
                    new_handler=handler.id,
                    automatic=actor is None,
                    note=note,
                )
            ],
            chat=ChatEffect(
                action=ChatAction.OPEN,
                participants=_participants(concern.student_id, handler.id),
                author_id=handler.id,
                message=welcome_message(handler),
            ),
        )

    def escalate(
        self,
        concern: Concern,
        level: str,
        reason: str,
        now: datetime,
        handler: Optional[User] = None,
        actor: Optional[User] = None,
    ) -> TransitionResult:
        """
        Raise the concern to ``level``, reassigning to ``handler`` when given.

        A reassignment forces the status to in_progress.
        """
        if level not in ESCALATION_RANK:
            raise ValidationException(f"Unknown escalation level '{level}'", {"concern_id": concern.id})
        if not concern.is_active:
            raise InvalidStateException(concern.id, concern.status, "escalate")

        before = concern.snapshot()
        result = TransitionResult(action="escalate", before=before, after=before)
        if handler is not None and handler.id != concern.assigned_to:
            result.merge(self.assign(concern, handler, now, note=reason))
        if handler is not None:
            concern.status = ConcernStatus.IN_PROGRESS

        previous_level = concern.escalation_level
        concern.escalation_level = level
        concern.escalation_reason = reason
        concern.escalated_at = now
        concern.escalated_by = actor.id if actor else None
        self._touch(concern, now)

        result.after = concern.snapshot()
        result.events.append(
            self._event(
                concern,
                EventType.ESCALATION,
                reason,
                now,
                actor.id if actor else None,
                previous_level=previous_level,
                new_level=level,
                handler_id=concern.assigned_to,
            )
        )
        return result

    def record_reminder(self, concern: Concern, now: datetime, hours_open: float) -> TransitionResult:
        before = concern.snapshot()
        concern.last_reminder_sent = now
        self._touch(concern, now)
        return TransitionResult(
            action="reminder",
            before=before,
            after=concern.snapshot(),
            events=[
                self._event(
                    concern,
                    EventType.REMINDER,
                    f"Reminder sent after {hours_open:.0f} hours without resolution",
                    now,
                    hours_open=round(hours_open, 2),
                )
            ],
        )

    def activate_emergency(
        self,
        concern: Concern,
        handler: User,
        priority: str,
        reason: str,
        now: datetime,
    ) -> TransitionResult:
        """Emergency reassignment: forced priority and in_progress, no review."""
        if priority not in VALID_PRIORITIES:
            raise ValidationException(f"Unknown priority '{priority}'", {"concern_id": concern.id})

        before = concern.snapshot()
        result = TransitionResult(action="activate_emergency", before=before, after=before)
        if handler.id != concern.assigned_to:
            result.merge(self.assign(concern, handler, now, note=reason))
        elif not concern.is_active:
            raise InvalidStateException(concern.id, concern.status, "activate emergency")

        concern.priority = priority
        concern.status = ConcernStatus.IN_PROGRESS
        self._touch(concern, now)
        result.after = concern.snapshot()
        result.events.append(
            self._event(
                concern,
                EventType.EMERGENCY,
                f"Emergency assignment activated: {reason}",
                now,
                handler_id=handler.id,
                priority=priority,
            )
        )
        return result


def higher_priority(first: str, second: str) -> str:
    """The more severe of two priorities."""
    return first if PRIORITY_RANK.get(first, 0) >= PRIORITY_RANK.get(second, 0) else second
