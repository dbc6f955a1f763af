"""Write groups: sets of writes with a declared atomicity level.

A terminal transition is a status change plus a notification. Whether those
writes commit together is a per-kind configuration choice, declared here:

- ``NONE``: each step runs in its own session and commits on its own. A crash
  between steps leaves the earlier ones committed.
- ``ALL_OR_NOTHING``: every step runs in one transaction under a deadline. Any
  failure or timeout rolls back all of them.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from notifier.config import settings

logger = logging.getLogger(__name__)

WriteStep = Callable[[AsyncSession], Awaitable[Any]]


class Atomicity(str, Enum):
    NONE = "none"
    ALL_OR_NOTHING = "all_or_nothing"


class WriteGroupTimeout(RuntimeError):
    """An all-or-nothing write group exceeded its deadline and was rolled back."""

    def __init__(self, name: str, timeout_seconds: float):
        self.name = name
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Write group '{name}' timed out after {timeout_seconds}s")


@dataclass(frozen=True)
class WriteGroup:
    """Executes a sequence of write steps with the declared atomicity."""

    name: str
    atomicity: Atomicity
    timeout_seconds: Optional[float] = None

    async def execute(self, session_factory, steps: Sequence[WriteStep]) -> List[Any]:
        """
        Run the steps in order.

        Args:
            session_factory: Callable returning an ``AsyncSession`` context manager
            steps: Coroutine functions taking the session to write with

        Returns:
            The result of each step, in order

        Raises:
            WriteGroupTimeout: An all-or-nothing group ran past its deadline
            Exception: Whatever a step raised (after rollback when atomic)
        """
        if self.atomicity is Atomicity.ALL_OR_NOTHING:
            try:
                return await asyncio.wait_for(
                    self._execute_atomic(session_factory, steps),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                raise WriteGroupTimeout(self.name, self.timeout_seconds)

        results = []
        for step in steps:
            async with session_factory() as db:
                results.append(await step(db))
                await db.commit()
        return results

    async def _execute_atomic(self, session_factory, steps: Sequence[WriteStep]) -> List[Any]:
        results = []
        async with session_factory() as db:
            async with db.begin():
                for step in steps:
                    results.append(await step(db))
        return results


# Promotion ended: notify, then deactivate, as two independent commits.
PROMOTION_ENDED_WRITES = WriteGroup("promotion_ended", Atomicity.NONE)

# Subscription expired: status updates and notifications commit together.
SUBSCRIPTION_EXPIRED_WRITES = WriteGroup(
    "subscription_expired",
    Atomicity.ALL_OR_NOTHING,
    timeout_seconds=settings.expired_transaction_timeout_seconds,
)
