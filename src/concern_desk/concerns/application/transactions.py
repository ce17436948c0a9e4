"""
Concern Transactions
====================

The two write paths every concern mutation goes through.

- ``mutate``: load, transition, persist and commit under the concern lock.
- ``commit_assignment``: same, but walks a ranked list of handlers and
  re-counts each candidate's workload inside the writing transaction while
  holding that handler's lock, so the capacity cap holds at commit time.

Both retry a bounded number of times when the optimistic version check
loses a race, then dispatch post-commit effects. Callers running under a
deadline pass a ``deferred`` list instead; committed effects are queued
there the moment the commit returns and the caller dispatches them with
``dispatch_pending`` outside the deadline.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence, Tuple

from concern_desk.concerns.application.effects import EffectDispatcher
from concern_desk.concerns.application.ports import IUnitOfWork, UnitOfWorkFactory
from concern_desk.concerns.domain.entities import Concern, User
from concern_desk.concerns.domain.state_machine import TransitionResult
from concern_desk.core.exceptions import (
    AuthorizationException,
    ConcurrencyConflictException,
    ResourceNotFoundException,
)
from concern_desk.shared.domain.clock import Clock
from concern_desk.shared.infrastructure.locks import KeyedLockRegistry, concern_key, handler_key
from concern_desk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class AssignmentPlan(Protocol):
    """Anything carrying ranked handler ids to try in order."""

    @property
    def candidate_ids(self) -> Sequence[str]: ...


ApplyFn = Callable[[IUnitOfWork, Concern, datetime], Awaitable[Optional[TransitionResult]]]
ChooseFn = Callable[[IUnitOfWork, Concern, datetime], Awaitable[Optional[AssignmentPlan]]]
AssignFn = Callable[[IUnitOfWork, Concern, User, datetime, Any], Awaitable[TransitionResult]]


@dataclass
class AssignmentCommit:
    """Outcome of ``commit_assignment``; ``handler`` is None when nobody could take it."""
    concern: Concern
    plan: Optional[AssignmentPlan] = None
    handler: Optional[User] = None
    result: Optional[TransitionResult] = None

    @property
    def assigned(self) -> bool:
        return self.handler is not None


@dataclass
class PendingEffects:
    """A committed transition whose effects have not been dispatched yet."""
    concern: Concern
    actor_id: Optional[str]
    result: TransitionResult


def _log_denied(concern_id: str, e: AuthorizationException) -> None:
    logger.warning(
        "Concern action denied",
        extra={
            "concern_id": concern_id,
            "actor_id": e.actor_id,
            "attempted": e.action,
            "error": e.reason,
        },
    )


async def load_concern(uow: IUnitOfWork, concern_id: str) -> Concern:
    concern = await uow.concerns.get_by_id(concern_id)
    if concern is None:
        raise ResourceNotFoundException("Concern", concern_id)
    return concern


async def load_user(uow: IUnitOfWork, user_id: str) -> User:
    user = await uow.users.get_by_id(user_id)
    if user is None:
        raise ResourceNotFoundException("User", user_id)
    return user


class ConcernTransactions:
    """Serialized, version-checked writes to concerns."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        locks: KeyedLockRegistry,
        clock: Clock,
        effects: EffectDispatcher,
        capacity_cap: int = 10,
        conflict_retries: int = 3,
    ):
        self._uow_factory = uow_factory
        self._locks = locks
        self._clock = clock
        self._effects = effects
        self.capacity_cap = capacity_cap
        self._conflict_retries = conflict_retries

    @property
    def clock(self) -> Clock:
        return self._clock

    async def dispatch(
        self, concern: Concern, actor_id: Optional[str], result: TransitionResult
    ) -> None:
        """Run effects that do not follow a write, e.g. alert-only notifications."""
        await self._effects.dispatch(concern, actor_id, result)

    async def dispatch_pending(self, pending: List[PendingEffects]) -> None:
        """Dispatch effects queued by deferred writes, in commit order."""
        while pending:
            item = pending.pop(0)
            await self._effects.dispatch(item.concern, item.actor_id, item.result)

    @staticmethod
    async def _persist(uow: IUnitOfWork, concern: Concern, result: TransitionResult) -> None:
        await uow.concerns.update(concern)
        for event in result.events:
            await uow.events.add(event)

    async def mutate(
        self,
        concern_id: str,
        actor_id: Optional[str],
        apply: ApplyFn,
        deferred: Optional[List[PendingEffects]] = None,
    ) -> Tuple[Concern, Optional[TransitionResult]]:
        """
        Run ``apply`` on a freshly loaded concern and commit what it changed.

        ``apply`` returning None means nothing to write.

        Raises:
            AuthorizationException: logged, then re-raised; nothing is written
        """
        for attempt in range(1, self._conflict_retries + 1):
            try:
                async with self._locks.hold(concern_key(concern_id)):
                    async with self._uow_factory() as uow:
                        concern = await load_concern(uow, concern_id)
                        result = await apply(uow, concern, self._clock.now())
                        if result is None:
                            return concern, None
                        await self._persist(uow, concern, result)
                        await uow.commit()
                        if deferred is not None:
                            deferred.append(PendingEffects(concern, actor_id, result))
                break
            except AuthorizationException as e:
                _log_denied(concern_id, e)
                raise
            except ConcurrencyConflictException as e:
                if attempt >= self._conflict_retries:
                    raise
                logger.warning(
                    "Concern write conflicted, retrying",
                    extra={"concern_id": concern_id, "attempt": attempt, "error": e.message},
                )

        logger.info(
            "Concern transition committed",
            extra={
                "concern_id": concern.id,
                "reference_number": concern.reference_number,
                "action": result.action,
                "status": concern.status,
                "actor_id": actor_id,
            },
        )
        if deferred is None:
            await self._effects.dispatch(concern, actor_id, result)
        return concern, result

    async def commit_assignment(
        self,
        concern_id: str,
        choose: ChooseFn,
        apply: AssignFn,
        actor_id: Optional[str] = None,
        enforce_cap: bool = True,
        deferred: Optional[List[PendingEffects]] = None,
    ) -> AssignmentCommit:
        """
        Assign the concern to the first plan candidate that passes the re-check.

        Args:
            concern_id: Concern to assign
            choose: Builds the plan from the concern as loaded under its lock;
                returning None (or a plan without candidates) writes nothing
            apply: Performs the transition for the chosen handler
            actor_id: Actor recorded in the audit trail
            enforce_cap: Re-check the capacity cap at commit
            deferred: Queue effects here instead of dispatching them

        Returns:
            AssignmentCommit with the handler that took the concern, if any

        Raises:
            AuthorizationException: logged, then re-raised; nothing is written
        """
        for attempt in range(1, self._conflict_retries + 1):
            try:
                outcome = await self._try_candidates(
                    concern_id, choose, apply, enforce_cap, actor_id, deferred
                )
                break
            except AuthorizationException as e:
                _log_denied(concern_id, e)
                raise
            except ConcurrencyConflictException as e:
                if attempt >= self._conflict_retries:
                    raise
                logger.warning(
                    "Assignment write conflicted, retrying",
                    extra={"concern_id": concern_id, "attempt": attempt, "error": e.message},
                )

        if outcome.assigned:
            logger.info(
                "Concern assigned",
                extra={
                    "concern_id": outcome.concern.id,
                    "reference_number": outcome.concern.reference_number,
                    "handler_id": outcome.handler.id,
                    "action": outcome.result.action,
                    "actor_id": actor_id,
                },
            )
            if deferred is None:
                await self._effects.dispatch(outcome.concern, actor_id, outcome.result)
        return outcome

    async def _try_candidates(
        self,
        concern_id: str,
        choose: ChooseFn,
        apply: AssignFn,
        enforce_cap: bool,
        actor_id: Optional[str],
        deferred: Optional[List[PendingEffects]],
    ) -> AssignmentCommit:
        async with self._locks.hold(concern_key(concern_id)):
            async with self._uow_factory() as uow:
                concern = await load_concern(uow, concern_id)
                plan = await choose(uow, concern, self._clock.now())

            candidate_ids = list(plan.candidate_ids) if plan is not None else []
            for handler_id in candidate_ids:
                async with self._locks.hold(handler_key(handler_id)):
                    async with self._uow_factory() as uow:
                        handler = await uow.users.get_by_id(handler_id)
                        if handler is None or not handler.is_active or not handler.is_handler:
                            continue

                        if enforce_cap:
                            counts = await uow.concerns.count_active_by_handler([handler_id])
                            workload = counts.get(handler_id, 0)
                            if workload >= self.capacity_cap:
                                logger.info(
                                    "Handler at capacity on commit re-check",
                                    extra={
                                        "concern_id": concern_id,
                                        "handler_id": handler_id,
                                        "workload": workload,
                                        "capacity_cap": self.capacity_cap,
                                    },
                                )
                                continue

                        concern = await load_concern(uow, concern_id)
                        result = await apply(uow, concern, handler, self._clock.now(), plan)
                        await self._persist(uow, concern, result)
                        await uow.commit()
                        if deferred is not None:
                            deferred.append(PendingEffects(concern, actor_id, result))
                        return AssignmentCommit(concern=concern, plan=plan, handler=handler, result=result)

        return AssignmentCommit(concern=concern, plan=plan)
