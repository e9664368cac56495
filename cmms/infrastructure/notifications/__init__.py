"""
Notification Infrastructure
===========================

Push notifications are an external collaborator: best-effort and
asynchronous. The core only ever talks to `INotificationDispatcher` through
`NotificationPublisher`, which fires and forgets and logs failures instead
of raising them into the transition that triggered them.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Set

import httpx

from cmms.config import EventKind, settings
from cmms.core import NotificationException
from cmms.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class INotificationDispatcher(ABC):
    """Interface for the push transport."""

    @abstractmethod
    async def notify(
        self,
        event_kind: EventKind,
        payload: Dict[str, Any],
        recipients: Sequence[str]
    ) -> bool:
        """Deliver one event to the given user ids. Returns True if delivered."""

    async def close(self) -> None:
        """Release transport resources."""


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for the push gateway.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
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

        if self._failure_count >= self.failure_threshold or self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


@dataclass
class PushMessage:
    """Push notification as sent to the gateway."""
    event_kind: str
    title: str
    body: str
    recipients: List[str]
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


_TITLES = {
    EventKind.NEW_REPORT: "New Maintenance Report",
    EventKind.REPORT_ASSIGNED: "Report Assigned",
    EventKind.STATUS_UPDATE: "Report Status Updated",
    EventKind.REPORT_COMPLETED: "Report Completed",
    EventKind.TEAM_ASSIGNMENT: "Team Assignment",
    EventKind.ESCALATION: "Report Escalated",
    EventKind.DAILY_SUMMARY: "Daily CMMS Summary",
    EventKind.LOW_STOCK_ALERT: "Low Stock Alert",
    EventKind.HEALTH_ALERT: "System Health Alert",
}


def build_push_message(
    event_kind: EventKind,
    payload: Dict[str, Any],
    recipients: Sequence[str]
) -> PushMessage:
    """Render the human-readable title/body for an event."""
    breakdown = str(payload.get("breakdown_type", "")).upper()
    sector = payload.get("sector", "")

    if event_kind == EventKind.NEW_REPORT:
        body = f"{breakdown} issue in {sector}"
        if payload.get("safety_required"):
            body += " - SAFETY CRITICAL"
    elif event_kind == EventKind.REPORT_ASSIGNED:
        body = f"You have been assigned a {payload.get('breakdown_type')} issue in {sector}"
    elif event_kind == EventKind.STATUS_UPDATE:
        body = f"Your report is now {str(payload.get('status', '')).upper()}"
    elif event_kind == EventKind.REPORT_COMPLETED:
        body = f"{payload.get('breakdown_type')} issue in {sector} has been resolved"
    elif event_kind == EventKind.TEAM_ASSIGNMENT:
        body = "You have been added to a maintenance team"
    elif event_kind == EventKind.ESCALATION:
        body = f"SLA exceeded for {payload.get('breakdown_type')} issue in {sector}"
    else:
        body = str(payload.get("message", ""))

    return PushMessage(
        event_kind=event_kind.value,
        title=_TITLES.get(event_kind, event_kind.value),
        body=body,
        recipients=list(recipients),
        data={k: v for k, v in payload.items() if k != "message"},
    )


class PushGatewayDispatcher(INotificationDispatcher):
    """
    HTTP push gateway client with circuit breaker and retry logic.

    Handles:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self._timeout = timeout_seconds or settings.notification_timeout_seconds
        self._max_retries = max_retries or settings.notification_max_retries
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.circuit_breaker_threshold,
            recovery_timeout=settings.circuit_breaker_recovery_seconds
        )
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def notify(
        self,
        event_kind: EventKind,
        payload: Dict[str, Any],
        recipients: Sequence[str]
    ) -> bool:
        """
        Send one event to the push gateway.

        Returns:
            True if sent, False if skipped (no URL, no recipients, circuit open)

        Raises:
            NotificationException: All retries failed
        """
        if not self._webhook_url:
            logger.debug("Push gateway URL not configured, skipping notification")
            return False

        if not recipients:
            logger.debug("No recipients for notification", extra={"event_kind": event_kind.value})
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping notification",
                extra={"event_kind": event_kind.value}
            )
            return False

        message = build_push_message(event_kind, payload, recipients)
        last_error: Optional[str] = None

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message.__dict__)

                if response.status_code < 300:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Notification sent",
                        extra={"event_kind": event_kind.value, "recipients": len(recipients)}
                    )
                    return True

                last_error = f"status {response.status_code}"
                logger.warning(
                    "Push gateway returned error status",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )

            except httpx.HTTPError as e:
                last_error = str(e)
                logger.error(
                    "Notification request failed",
                    extra={"error": str(e), "attempt": attempt + 1, "event_kind": event_kind.value}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        raise NotificationException(
            f"delivery failed after {self._max_retries} attempts: {last_error}",
            {"event_kind": event_kind.value}
        )

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class NotificationPublisher:
    """
    Fire-and-forget wrapper around a dispatcher.

    `publish` schedules delivery on the running loop and returns at once.
    Every failure, including timeouts, is logged and contained here.
    `drain` waits for outstanding deliveries (shutdown, tests).
    """

    def __init__(
        self,
        dispatcher: INotificationDispatcher,
        timeout_seconds: Optional[float] = None
    ):
        self._dispatcher = dispatcher
        self._timeout = timeout_seconds or settings.notification_timeout_seconds * settings.notification_max_retries
        self._pending: Set[asyncio.Task] = set()

    def publish(
        self,
        event_kind: EventKind,
        payload: Dict[str, Any],
        recipients: Sequence[str]
    ) -> None:
        task = asyncio.get_running_loop().create_task(
            self._deliver(event_kind, payload, list(recipients))
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(
        self,
        event_kind: EventKind,
        payload: Dict[str, Any],
        recipients: List[str]
    ) -> None:
        try:
            await asyncio.wait_for(
                self._dispatcher.notify(event_kind, payload, recipients),
                self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Notification timed out",
                extra={"event_kind": event_kind.value, "timeout_seconds": self._timeout}
            )
        except Exception as e:
            logger.warning(
                "Failed to send notification",
                extra={"event_kind": event_kind.value, "error": str(e)}
            )

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: Optional[float] = None) -> None:
        if not self._pending:
            return
        await asyncio.wait(set(self._pending), timeout=timeout)

    async def close(self) -> None:
        await self.drain(timeout=self._timeout)
        await self._dispatcher.close()


__all__ = [
    "INotificationDispatcher",
    "CircuitBreaker",
    "CircuitState",
    "PushMessage",
    "build_push_message",
    "PushGatewayDispatcher",
    "NotificationPublisher",
]
