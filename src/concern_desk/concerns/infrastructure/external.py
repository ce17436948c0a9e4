"""
Concern External Integrations
=============================

Default implementations of the collaborator ports:

- Webhook notifier with circuit breaker and retry logic
- Chat channel gateway and audit log that write structured log records
"""

import asyncio
import time
from typing import Optional, Sequence

import httpx

from concern_desk.concerns.application.ports import IAuditLog, IChatChannelGateway, INotifier
from concern_desk.concerns.domain.entities import Concern
from concern_desk.core.exceptions import NotificationException
from concern_desk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={"failure_count": self._failure_count, "recovery_timeout": self.recovery_timeout},
            )


class WebhookNotifier(INotifier):
    """
    Posts notifications as JSON to a webhook (push/email/SMS fan-out service).

    Without a URL configured, notifications are only logged.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self._webhook_url = webhook_url
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._http_client = client
        self._circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=5, recovery_timeout=60)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def notify(self, user_id: str, title: str, body: str, data: Optional[dict] = None) -> None:
        """
        Deliver one notification.

        Raises:
            NotificationException: every retry failed
        """
        if not self._webhook_url:
            logger.info("Notification", extra={"user_id": user_id, "title": title, "data": data or {}})
            return

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping notification",
                extra={"user_id": user_id, "title": title},
            )
            return

        payload = {"user_id": user_id, "title": title, "body": body, "data": data or {}}
        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=payload)
                if response.status_code < 300:
                    self._circuit_breaker.record_success()
                    logger.info("Notification sent", extra={"user_id": user_id, "title": title})
                    return
                logger.warning(
                    "Notification webhook returned error status",
                    extra={"status_code": response.status_code, "attempt": attempt + 1},
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Notification delivery failed",
                    extra={"error": str(e), "attempt": attempt + 1, "user_id": user_id},
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        raise NotificationException(
            f"Could not notify user {user_id}", {"user_id": user_id, "title": title}
        )

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class LoggingChatChannelGateway(IChatChannelGateway):
    """Chat gateway for deployments without a chat service; records intent only."""

    async def open_channel(
        self,
        concern: Concern,
        participants: Sequence[str],
        author_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        logger.info(
            "Chat channel opened",
            extra={
                "concern_id": concern.id,
                "reference_number": concern.reference_number,
                "participants": list(participants),
                "author_id": author_id,
            },
        )

    async def close_channel(self, concern: Concern) -> None:
        logger.info("Chat channel closed", extra={"concern_id": concern.id})

    async def reopen_channel(
        self,
        concern: Concern,
        author_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        logger.info("Chat channel reopened", extra={"concern_id": concern.id, "author_id": author_id})


class LoggingAuditLog(IAuditLog):
    """Audit trail as structured log records on a dedicated logger."""

    def __init__(self, logger_name: str = "concern_desk.audit"):
        self._logger = get_logger(logger_name)

    async def record(self, actor_id: Optional[str], action: str, before: dict, after: dict) -> None:
        self._logger.info(
            "Audit",
            extra={"actor_id": actor_id, "action": action, "before": before, "after": after},
        )
