"""Environment gateway contract.

A gateway connects one agent to the game environment: it pushes perception
events to subscribers and executes action requests. Concrete gateways call
:meth:`EnvironmentGateway._emit` whenever the environment reports something.

Event payloads:

* ``YOU``      — :class:`~parcelbot.world.AgentInfo` for the agent itself
* ``PARCELS``  — ``List[Parcel]`` currently sensed
* ``AGENTS``   — ``List[AgentInfo]`` currently sensed (self excluded)
* ``MAP``      — :class:`~parcelbot.world.GridMap` (once per mission)
* ``CONFIG``   — raw server configuration mapping
* ``MESSAGE``  — ``(sender_id, sender_name, payload_text)``
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict

from parcelbot.world import Direction

__all__ = ["EnvironmentGateway", "GatewayEvent"]

logger = logging.getLogger("ParcelBot.Gateway")


class GatewayEvent(Enum):
    YOU = "you"
    PARCELS = "parcels"
    AGENTS = "agents"
    MAP = "map"
    CONFIG = "config"
    MESSAGE = "message"


class EnvironmentGateway(ABC):
    """Abstract base class for environment connections.

    Subclasses must implement ``move()``, ``pickup()``, ``putdown()`` and
    ``say()``. Every action returns True on success and False when the
    environment refused it.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        # event → {sub_id → callback}
        self._listeners: Dict[GatewayEvent, Dict[str, Callable]] = {}

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on(self, event: GatewayEvent, callback: Callable) -> str:
        """Register *callback* for *event*; returns a subscription id."""
        sub_id = str(uuid.uuid4())
        with self._lock:
            self._listeners.setdefault(event, {})[sub_id] = callback
        return sub_id

    def off(self, sub_id: str) -> None:
        with self._lock:
            for subs in self._listeners.values():
                if sub_id in subs:
                    del subs[sub_id]
                    return

    def _emit(self, event: GatewayEvent, *args: Any) -> None:
        with self._lock:
            callbacks = list(self._listeners.get(event, {}).values())
        for cb in callbacks:
            try:
                cb(*args)
            except Exception as exc:
                logger.warning(f"Listener error for gateway event '{event.value}': {exc}")

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    @abstractmethod
    async def move(self, direction: Direction) -> bool:
        """Move one tile in *direction*."""

    @abstractmethod
    async def pickup(self) -> bool:
        """Pick up every parcel on the current tile."""

    @abstractmethod
    async def putdown(self) -> bool:
        """Drop every carried parcel on the current tile."""

    @abstractmethod
    async def say(self, to_id: str, payload: str) -> bool:
        """Send a text message to one agent."""

    def health_check(self) -> Dict:
        """Return ``{"ok": bool, "mode": str, "error": Optional[str]}``."""
        return {"ok": True, "mode": "mock", "error": None}
