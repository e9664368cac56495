"""
Unit of Work
============

One database transaction plus the notifications it emits once committed.

Services never publish directly: they queue events here and the caller
flushes them after the transaction commits, so a rolled-back transition
never notifies anyone.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cmms.config import EventKind
from cmms.core import DomainException
from cmms.shared.application.context import OperationContext
from cmms.shared.infrastructure.logging import get_context_logger

T = TypeVar("T")


@dataclass
class PendingNotification:
    event_kind: EventKind
    payload: Dict[str, Any]
    recipients: List[str]


class UnitOfWork:
    """Session, operation context and queued notifications for one call."""

    def __init__(self, session: AsyncSession, context: Optional[OperationContext] = None):
        self.session = session
        self.context = context or OperationContext()
        self.notifications: List[PendingNotification] = []
        self._logger = get_context_logger(__name__, self.context.correlation_id)

    def notify_after_commit(
        self,
        event_kind: EventKind,
        payload: Dict[str, Any],
        recipients: Sequence[str]
    ) -> None:
        if not recipients:
            return
        self.notifications.append(
            PendingNotification(event_kind, dict(payload), list(recipients))
        )

    async def best_effort(
        self,
        operation: str,
        action: Callable[[], Awaitable[T]],
        **log_context: Any
    ) -> Optional[T]:
        """
        Run `action` inside a SAVEPOINT.

        Domain rejections and database errors roll back the savepoint only;
        they are logged and None is returned, leaving the enclosing
        transaction intact.
        """
        try:
            async with self.session.begin_nested():
                return await action()
        except (DomainException, SQLAlchemyError) as e:
            self._logger.warning(
                f"{operation} skipped",
                extra={"operation": operation, "error": str(e), **log_context}
            )
            return None

    def publish(self, publisher) -> int:
        """Hand queued notifications to a NotificationPublisher."""
        count = len(self.notifications)
        for pending in self.notifications:
            publisher.publish(pending.event_kind, pending.payload, pending.recipients)
        self.notifications.clear()
        return count
