"""
Operation Context
=================

Explicit per-call context replacing process-wide mutable flags, plus the
timeout guard every core operation runs under.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Optional, TypeVar
from uuid import UUID

from sqlalchemy.exc import InterfaceError, OperationalError

from cmms.core import TransientInfraException

T = TypeVar("T")


@dataclass(frozen=True)
class OperationContext:
    """
    Context passed into mutating operations.

    `maintenance_mode` replaces a global toggle: request handling builds the
    context from whatever shared store holds the flag, so every instance of
    the service agrees on it.
    """
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    actor_id: Optional[UUID] = None
    maintenance_mode: bool = False

    def ensure_writable(self, operation: str) -> None:
        """Refuse mutations while the system is in maintenance mode."""
        if self.maintenance_mode:
            raise TransientInfraException(
                "CMMS",
                f"{operation} rejected: system is in maintenance mode",
                {"operation": operation}
            )


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout: Optional[float],
    operation: str
) -> T:
    """
    Await `awaitable` under `timeout` seconds.

    Timeouts and lost database connections are reported as
    TransientInfraException; domain exceptions pass through untouched.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise TransientInfraException(
            "Persistence",
            f"{operation} timed out after {timeout}s",
            {"operation": operation}
        ) from e
    except (OperationalError, InterfaceError) as e:
        raise TransientInfraException(
            "Persistence",
            f"{operation} failed: {e.orig if e.orig is not None else e}",
            {"operation": operation}
        ) from e
