"""Plan execution with bounded retries and cooperative abort.

:meth:`PlanExecutor.steps` is an async stream of :class:`StepEvent`, one per
action attempt::

    executor = PlanExecutor(gateway, is_blocked=blocked, should_abort=aborted)
    async for event in executor.steps(plan):
        log(event)

A move refused because another agent stands on the destination tile is
retried after a backoff, at most ``max_retries`` times. Any other refusal
fails at once. Either failure ends the stream with
:class:`~parcelbot.errors.PlanExecutionError` after the ``FAILED`` event.
The abort callback is polled before every attempt; when it returns True the
stream simply ends.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from parcelbot.errors import PlanExecutionError
from parcelbot.gateway.base import EnvironmentGateway
from parcelbot.world import Action

logger = logging.getLogger("ParcelBot.Planner.Executor")


class StepStatus(Enum):
    OK = "ok"
    RETRYING = "retrying"
    FAILED = "failed"


@dataclass
class StepEvent:
    """Outcome of one attempt at one action."""

    index: int
    action: Action
    status: StepStatus
    attempt: int = 1
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "action": self.action.value,
            "status": self.status.value,
            "attempt": self.attempt,
            "reason": self.reason,
        }


def _never() -> bool:
    return False


class PlanExecutor:
    """Runs one plan against an :class:`EnvironmentGateway`.

    Args:
        gateway: Environment connection.
        is_blocked: ``is_blocked(action)`` tells whether a failed move was
            caused by an agent on the destination tile.
        should_abort: Polled before each attempt.
        max_retries: Retries allowed for a blocked move.
        backoff_s: Wait between retries.
        wait_s: Duration of a ``WAIT`` action.
    """

    def __init__(
        self,
        gateway: EnvironmentGateway,
        is_blocked: Callable[[Action], bool],
        should_abort: Callable[[], bool] = _never,
        max_retries: int = 3,
        backoff_s: float = 1.0,
        wait_s: float = 0.5,
    ) -> None:
        self.gateway = gateway
        self.is_blocked = is_blocked
        self.should_abort = should_abort
        self.max_retries = max_retries
        self.backoff_s = backoff_s
        self.wait_s = wait_s
        self._dispatch: Dict[Action, Callable[[], Awaitable[bool]]] = {
            Action.MOVE_UP: lambda: gateway.move(Action.MOVE_UP.direction),
            Action.MOVE_DOWN: lambda: gateway.move(Action.MOVE_DOWN.direction),
            Action.MOVE_LEFT: lambda: gateway.move(Action.MOVE_LEFT.direction),
            Action.MOVE_RIGHT: lambda: gateway.move(Action.MOVE_RIGHT.direction),
            Action.PICKUP: gateway.pickup,
            Action.PUTDOWN: gateway.putdown,
            Action.WAIT: self._wait,
        }

    async def _wait(self) -> bool:
        await asyncio.sleep(self.wait_s)
        return True

    async def steps(self, plan: Sequence[Action]) -> AsyncIterator[StepEvent]:
        """Execute *plan*, yielding one event per attempt."""
        pending = deque(plan)
        index = 0
        while pending:
            action = pending.popleft()
            retries = 0
            while True:
                if self.should_abort():
                    logger.debug("Plan aborted before %s", action.value)
                    return
                attempt = retries + 1
                if await self._dispatch[action]():
                    yield StepEvent(index, action, StepStatus.OK, attempt)
                    break
                if action.is_move and self.is_blocked(action):
                    if retries >= self.max_retries:
                        yield StepEvent(index, action, StepStatus.FAILED, attempt, "blocked")
                        raise PlanExecutionError(action.value, "blocked")
                    retries += 1
                    yield StepEvent(index, action, StepStatus.RETRYING, attempt, "blocked")
                    await asyncio.sleep(self.backoff_s)
                    continue
                yield StepEvent(index, action, StepStatus.FAILED, attempt, "rejected")
                raise PlanExecutionError(action.value, "rejected")
            index += 1

    async def run(
        self,
        plan: Sequence[Action],
        on_event: Optional[Callable[[StepEvent], None]] = None,
    ) -> List[StepEvent]:
        """Drain :meth:`steps`, passing each event to *on_event*.

        Raises:
            PlanExecutionError: when an action fails for good.
        """
        events: List[StepEvent] = []
        async for event in self.steps(plan):
            events.append(event)
            logger.debug("Step %d %s: %s", event.index, event.action.value, event.status.value)
            if on_event is not None:
                on_event(event)
        return events
