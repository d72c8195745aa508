"""BaseAgent ABC — every ParcelBot agent extends this.

Defines the lifecycle (start/stop), the periodic step contract and the
health-reporting shape shared by all agents.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional


class AgentStatus(Enum):
    """Lifecycle states for a BaseAgent."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class BaseAgent(ABC):
    """Abstract base for periodic agents.

    Subclasses implement :meth:`step` (one deliberation cycle) and may
    override :meth:`ready` and :meth:`interval_s`. The background loop
    polls :meth:`ready` every ``poll_s`` seconds, then calls :meth:`step`
    every :meth:`interval_s` seconds until :meth:`stop`.

    Example::

        class Ticker(BaseAgent):
            name = "ticker"

            async def step(self):
                self.ticks += 1
    """

    #: Agent name used in logs and health reports.
    name: str = "base"

    def __init__(self, name: Optional[str] = None, poll_s: float = 1.0) -> None:
        if name:
            self.name = name
        self.status: AgentStatus = AgentStatus.IDLE
        self.poll_s = poll_s
        self._start_time: Optional[float] = None
        self._errors: List[str] = []
        self._task: Optional[asyncio.Task] = None  # type: ignore[type-arg]
        self._stop_event: asyncio.Event = asyncio.Event()
        self._logger = logging.getLogger(f"ParcelBot.Agents.{self.name}")

    async def start(self) -> None:
        """Begin the agent's background loop.

        Idempotent — calling start on a RUNNING agent is a no-op.
        """
        if self.status == AgentStatus.RUNNING:
            return
        self.status = AgentStatus.RUNNING
        self._start_time = time.monotonic()
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self._logger.info(f"Agent '{self.name}' started")

    async def stop(self) -> None:
        """Gracefully shut down the background loop."""
        self._stop_event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self.status = AgentStatus.STOPPED
        self._logger.info(f"Agent '{self.name}' stopped")

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early when stop() is requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _run_loop(self) -> None:
        """Wait until ready, then step on a fixed interval.

        An exception inside one step is recorded and the loop carries on.
        """
        try:
            while not self._stop_event.is_set() and not self.ready():
                await self._sleep(self.poll_s)
            while not self._stop_event.is_set():
                try:
                    await self.step()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self._record_error(f"step failed: {exc}")
                await self._sleep(self.interval_s())
        except asyncio.CancelledError:
            pass

    def ready(self) -> bool:
        """Whether the prerequisites for :meth:`step` are in place."""
        return True

    def interval_s(self) -> float:
        """Seconds between two steps."""
        return 1.0

    @abstractmethod
    async def step(self) -> None:
        """Run one cycle of the agent's behaviour."""
        ...

    def health(self) -> Dict[str, Any]:
        """Return a snapshot of agent health.

        Returns:
            Dict with keys:
            - ``status``: current status string
            - ``uptime_s``: seconds since start (0.0 if never started)
            - ``errors``: list of error message strings
        """
        uptime = (time.monotonic() - self._start_time) if self._start_time is not None else 0.0
        return {
            "status": self.status.value,
            "uptime_s": round(uptime, 2),
            "errors": list(self._errors),
        }

    def _record_error(self, msg: str) -> None:
        """Record an error message; the agent keeps running."""
        self._errors.append(msg)
        self._logger.error(msg)
