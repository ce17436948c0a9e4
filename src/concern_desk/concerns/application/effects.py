"""
Post-commit Effects
===================

Runs the chat, notification and audit calls a committed transition owes.

A collaborator failure here is logged and never undoes the transition:
the concern's state is already durable.
"""

from typing import Optional

from concern_desk.concerns.application.ports import Collaborators
from concern_desk.concerns.domain.entities import Concern
from concern_desk.concerns.domain.state_machine import ChatAction, TransitionResult
from concern_desk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class EffectDispatcher:
    """Executes ``TransitionResult`` side effects against the collaborators."""

    def __init__(self, collaborators: Collaborators):
        self._collaborators = collaborators

    async def dispatch(
        self,
        concern: Concern,
        actor_id: Optional[str],
        result: Optional[TransitionResult],
    ) -> None:
        if result is None:
            return

        context = {
            "concern_id": concern.id,
            "reference_number": concern.reference_number,
            "action": result.action,
        }

        if result.chat is not None:
            try:
                await self._run_chat(concern, result)
            except Exception as e:
                logger.error(
                    "Chat channel update failed",
                    extra={**context, "chat_action": result.chat.action, "error": str(e)},
                )

        for notification in result.notifications:
            try:
                await self._collaborators.notifier.notify(
                    notification.user_id,
                    notification.title,
                    notification.body,
                    notification.data,
                )
            except Exception as e:
                logger.error(
                    "Notification delivery failed",
                    extra={**context, "user_id": notification.user_id, "error": str(e)},
                )

        try:
            await self._collaborators.audit.record(
                actor_id, f"concern.{result.action}", result.before, result.after
            )
        except Exception as e:
            logger.error("Audit record failed", extra={**context, "error": str(e)})

    async def _run_chat(self, concern: Concern, result: TransitionResult) -> None:
        chat = result.chat
        gateway = self._collaborators.chat
        if chat.action == ChatAction.OPEN:
            await gateway.open_channel(concern, chat.participants, chat.author_id, chat.message)
        elif chat.action == ChatAction.CLOSE:
            await gateway.close_channel(concern)
        elif chat.action == ChatAction.REOPEN:
            await gateway.reopen_channel(concern, chat.author_id, chat.message)
