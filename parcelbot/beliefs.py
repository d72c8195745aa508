"""Thread-safe belief store for a single agent.

Perception handlers, the negotiation protocol and the deliberation loop all
read and write the same :class:`BeliefStore`. Keys are members of the closed
:class:`Belief` enumeration; values are stored as immutable snapshots
(tuples, frozen dataclasses, frozensets) so readers never observe a
half-updated collection. All operations are guarded by an RLock; subscribers
are notified after it has been released.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, FrozenSet, List, Optional, Set, Tuple

from parcelbot.config import ServerConfig
from parcelbot.spatial.index import MapIndex
from parcelbot.world import AgentInfo, AgentLog, GridMap, Parcel, Position

logger = logging.getLogger("ParcelBot.Beliefs")


class Belief(Enum):
    """Every key the store accepts."""

    ID = "id"
    NAME = "name"
    POSITION = "position"
    SCORE = "score"
    MAP = "map"
    INDEX = "index"
    SERVER_CONFIG = "server_config"
    PARCELS = "parcels"
    AGENTS = "agents"
    TEAMMATES = "teammates"
    TEAMMATE_POSITIONS = "teammate_positions"
    TEAMMATE_INTENTIONS = "teammate_intentions"
    BOOKED_PARCELS = "booked_parcels"
    ROLE = "role"
    MIDPOINT = "midpoint"
    COLLABORATING = "collaborating"
    ATTEMPTING_TO_HELP = "attempting_to_help"
    AVAILABLE_TEAMMATE_POSITION = "available_teammate_position"


class Role(Enum):
    """Collaboration role. ``None`` in the store means no role."""

    EXPLORER = "explorer"
    COURIER = "courier"


class BeliefStore:
    """Key-value store with pub/sub callbacks plus typed accessors.

    Example::

        beliefs = BeliefStore(teammates=["b2"])
        beliefs.set(Belief.POSITION, Position(3, 4))
        sub_id = beliefs.subscribe(Belief.ROLE, lambda key, val: print(val))
        beliefs.role = Role.COURIER     # triggers callback
        beliefs.unsubscribe(sub_id)
    """

    def __init__(self, teammates: Optional[List[str]] = None, max_agent_logs: int = 4) -> None:
        self._lock: threading.RLock = threading.RLock()
        self._store: Dict[Belief, Any] = {}
        # key → {sub_id → callback}
        self._subscribers: Dict[Belief, Dict[str, Callable]] = {}
        self._max_agent_logs = max_agent_logs
        self._history: Dict[str, Deque[AgentLog]] = {}
        self._visited: Dict[Position, float] = {}
        self.set(Belief.TEAMMATES, tuple(teammates or ()))
        self.set(Belief.TEAMMATE_POSITIONS, {})
        self.set(Belief.TEAMMATE_INTENTIONS, {})
        self.set(Belief.BOOKED_PARCELS, {})
        self.set(Belief.PARCELS, ())
        self.set(Belief.AGENTS, ())
        self.reset_collaboration()

    # ------------------------------------------------------------------
    # Core store operations
    # ------------------------------------------------------------------

    def set(self, key: Belief, value: Any) -> None:
        """Store *value* under *key* and notify subscribers outside the lock."""
        self._write({key: value})

    def _write(self, updates: Dict[Belief, Any]) -> None:
        """Store every item of *updates* at once, then notify outside the lock."""
        for key in updates:
            if not isinstance(key, Belief):
                raise TypeError(f"Unknown belief key: {key!r}")
        with self._lock:
            self._store.update(updates)
            pending = [
                (key, value, list(self._subscribers.get(key, {}).values()))
                for key, value in updates.items()
            ]
        for key, value, callbacks in pending:
            self._notify(key, value, callbacks)

    @staticmethod
    def _notify(key: Belief, value: Any, callbacks: List[Callable]) -> None:
        for cb in callbacks:
            try:
                cb(key, value)
            except Exception as exc:
                logger.warning(f"Subscriber callback error for belief '{key.value}': {exc}")

    def _update(self, key: Belief, change: Callable[[Any], Any]) -> None:
        """Replace the value of *key* with ``change(old)`` atomically."""
        with self._lock:
            value = change(self._store.get(key))
            self._store[key] = value
            callbacks = list(self._subscribers.get(key, {}).values())
        self._notify(key, value, callbacks)

    def get(self, key: Belief, default: Any = None) -> Any:
        with self._lock:
            return self._store.get(key, default)

    def has(self, key: Belief) -> bool:
        with self._lock:
            return self._store.get(key) is not None

    def unset(self, key: Belief) -> None:
        """Remove *key*; subscribers see ``None``."""
        with self._lock:
            present = self._store.pop(key, None) is not None
            callbacks = list(self._subscribers.get(key, {}).values())
        if present:
            self._notify(key, None, callbacks)

    def subscribe(self, key: Belief, callback: Callable) -> str:
        """Register ``callback(key, value)`` for updates of *key*."""
        sub_id = str(uuid.uuid4())
        with self._lock:
            self._subscribers.setdefault(key, {})[sub_id] = callback
        return sub_id

    def unsubscribe(self, sub_id: str) -> None:
        with self._lock:
            for key_subs in self._subscribers.values():
                if sub_id in key_subs:
                    del key_subs[sub_id]
                    return

    def snapshot(self) -> Dict[str, Any]:
        """Shallow copy of every stored value keyed by its name."""
        with self._lock:
            return {k.value: v for k, v in self._store.items()}

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    @property
    def agent_id(self) -> Optional[str]:
        return self.get(Belief.ID)

    @property
    def position(self) -> Optional[Position]:
        return self.get(Belief.POSITION)

    @position.setter
    def position(self, value: Position) -> None:
        self.set(Belief.POSITION, value)

    @property
    def grid(self) -> Optional[GridMap]:
        return self.get(Belief.MAP)

    @property
    def index(self) -> Optional[MapIndex]:
        return self.get(Belief.INDEX)

    @property
    def server_config(self) -> ServerConfig:
        return self.get(Belief.SERVER_CONFIG) or ServerConfig()

    @property
    def parcels(self) -> Tuple[Parcel, ...]:
        return self.get(Belief.PARCELS, ())

    @parcels.setter
    def parcels(self, value: List[Parcel]) -> None:
        self.set(Belief.PARCELS, tuple(value))

    @property
    def agents(self) -> Tuple[AgentInfo, ...]:
        return self.get(Belief.AGENTS, ())

    @property
    def teammates(self) -> Tuple[str, ...]:
        return self.get(Belief.TEAMMATES, ())

    @property
    def role(self) -> Optional[Role]:
        return self.get(Belief.ROLE)

    @role.setter
    def role(self, value: Optional[Role]) -> None:
        self.set(Belief.ROLE, value)

    @property
    def midpoint(self) -> Optional[Position]:
        return self.get(Belief.MIDPOINT)

    @midpoint.setter
    def midpoint(self, value: Optional[Position]) -> None:
        self.set(Belief.MIDPOINT, value)

    @property
    def collaborating(self) -> bool:
        return bool(self.get(Belief.COLLABORATING, False))

    @collaborating.setter
    def collaborating(self, value: bool) -> None:
        self.set(Belief.COLLABORATING, value)

    @property
    def attempting_to_help(self) -> bool:
        return bool(self.get(Belief.ATTEMPTING_TO_HELP, False))

    @attempting_to_help.setter
    def attempting_to_help(self, value: bool) -> None:
        self.set(Belief.ATTEMPTING_TO_HELP, value)

    @property
    def ready(self) -> bool:
        """Self-state, map and server configuration have all arrived."""
        return all(self.has(k) for k in (Belief.POSITION, Belief.INDEX, Belief.SERVER_CONFIG))

    # ------------------------------------------------------------------
    # Parcels
    # ------------------------------------------------------------------

    def carried_parcels(self) -> List[Parcel]:
        me = self.agent_id
        if me is None:
            return []
        return [p for p in self.parcels if p.carried_by == me]

    def booked_parcel_ids(self) -> FrozenSet[str]:
        """Union of parcel ids booked by any teammate."""
        booked: Dict[str, FrozenSet[str]] = self.get(Belief.BOOKED_PARCELS, {})
        result: Set[str] = set()
        for ids in booked.values():
            result.update(ids)
        return frozenset(result)

    def book_for(self, teammate_id: str, parcel_ids: List[str]) -> None:
        ids = frozenset(parcel_ids)
        self._update(Belief.BOOKED_PARCELS, lambda old: {**(old or {}), teammate_id: ids})

    # ------------------------------------------------------------------
    # Agents and teammates
    # ------------------------------------------------------------------

    def update_agents(self, agents: List[AgentInfo], now: float) -> None:
        """Replace the sensed agent list and extend each agent's history."""
        with self._lock:
            for agent in agents:
                log = self._history.setdefault(agent.id, deque(maxlen=self._max_agent_logs))
                log.append(AgentLog(agent.position, now))
            self._store[Belief.AGENTS] = tuple(agents)
            callbacks = list(self._subscribers.get(Belief.AGENTS, {}).values())
        self._notify(Belief.AGENTS, tuple(agents), callbacks)

    def agent_history(self, agent_id: str) -> List[AgentLog]:
        with self._lock:
            return list(self._history.get(agent_id, ()))

    def teammate_positions(self) -> Dict[str, Position]:
        return dict(self.get(Belief.TEAMMATE_POSITIONS, {}))

    def set_teammate_position(self, teammate_id: str, pos: Position) -> None:
        self._update(Belief.TEAMMATE_POSITIONS, lambda old: {**(old or {}), teammate_id: pos})

    def set_teammate_intention(self, teammate_id: str, kind: str) -> None:
        self._update(Belief.TEAMMATE_INTENTIONS, lambda old: {**(old or {}), teammate_id: kind})

    def teammate_at(self, pos: Position) -> bool:
        return pos in self.teammate_positions().values()

    def obstacles(self) -> Set[Position]:
        """Positions of every other agent (sensed or teammate-reported)."""
        me = self.agent_id
        occupied = {a.position for a in self.agents if a.id != me}
        occupied.update(p for tid, p in self.teammate_positions().items() if tid != me)
        own = self.position
        if own is not None:
            occupied.discard(own)
        return occupied

    # ------------------------------------------------------------------
    # Exploration staleness
    # ------------------------------------------------------------------

    def record_visit(self, pos: Position, now: float) -> None:
        with self._lock:
            self._visited[pos] = now

    def tile_age(self, pos: Position, now: float) -> float:
        """Seconds since *pos* was last visited; ``inf`` if never."""
        with self._lock:
            seen = self._visited.get(pos)
        return math.inf if seen is None else now - seen

    # ------------------------------------------------------------------
    # Collaboration
    # ------------------------------------------------------------------

    def reset_collaboration(self) -> None:
        """Forget any role, midpoint and pending help offer."""
        self._write(
            {
                Belief.ATTEMPTING_TO_HELP: False,
                Belief.COLLABORATING: False,
                Belief.MIDPOINT: None,
                Belief.ROLE: None,
                Belief.AVAILABLE_TEAMMATE_POSITION: None,
            }
        )
