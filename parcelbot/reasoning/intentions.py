"""Intentions and the manager that commits to (and retires) them.

An :class:`Intention` is a tagged value: its :class:`IntentionKind` decides
the family (pickup / deliver / move) and whether it belongs to a
collaboration role. Intentions compare structurally, which is what
:meth:`IntentionManager.adopt` relies on to ignore re-adoption.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, FrozenSet, List, Optional, Tuple

from parcelbot.beliefs import BeliefStore, Role
from parcelbot.spatial.geometry import within_observation
from parcelbot.world import Parcel, Position

logger = logging.getLogger("ParcelBot.Reasoning.Intentions")


class Family(Enum):
    PICKUP = "pickup"
    DELIVER = "deliver"
    MOVE = "move"


class IntentionKind(Enum):
    """Every intention variant; values double as the wire name."""

    PICKUP = "pickup"
    DELIVER = "deliver"
    MOVE = "move"
    EXPLORER_PICKUP = "explorer_pickup"
    EXPLORER_DELIVER = "explorer_deliver"
    EXPLORER_MOVE = "explorer_move"
    COURIER_PICKUP = "courier_pickup"
    COURIER_DELIVER = "courier_deliver"
    COURIER_MOVE = "courier_move"

    @property
    def family(self) -> Family:
        return _KIND_TABLE[self][0]

    @property
    def role(self) -> Optional[Role]:
        return _KIND_TABLE[self][1]


_KIND_TABLE: Dict[IntentionKind, Tuple[Family, Optional[Role]]] = {
    IntentionKind.PICKUP: (Family.PICKUP, None),
    IntentionKind.DELIVER: (Family.DELIVER, None),
    IntentionKind.MOVE: (Family.MOVE, None),
    IntentionKind.EXPLORER_PICKUP: (Family.PICKUP, Role.EXPLORER),
    IntentionKind.EXPLORER_DELIVER: (Family.DELIVER, Role.EXPLORER),
    IntentionKind.EXPLORER_MOVE: (Family.MOVE, Role.EXPLORER),
    IntentionKind.COURIER_PICKUP: (Family.PICKUP, Role.COURIER),
    IntentionKind.COURIER_DELIVER: (Family.DELIVER, Role.COURIER),
    IntentionKind.COURIER_MOVE: (Family.MOVE, Role.COURIER),
}


def _kind_for(family: Family, role: Optional[Role]) -> IntentionKind:
    for kind, (kind_family, kind_role) in _KIND_TABLE.items():
        if kind_family is family and kind_role is role:
            return kind
    raise KeyError((family, role))


@dataclass(frozen=True)
class Intention:
    """A committed (or candidate) goal.

    Attributes:
        kind: Variant tag.
        parcels: Candidate parcels (pickup family).
        target: Destination tile (move family, and deliver when known).
        known_parcels: Ids of pickupable parcels that were already visible
            when a move was proposed; only parcels outside this set preempt it.
    """

    kind: IntentionKind
    parcels: Tuple[Parcel, ...] = ()
    target: Optional[Position] = None
    known_parcels: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def family(self) -> Family:
        return self.kind.family

    @property
    def role(self) -> Optional[Role]:
        return self.kind.role

    @classmethod
    def pickup(cls, parcels, role: Optional[Role] = None) -> Intention:
        return cls(_kind_for(Family.PICKUP, role), parcels=tuple(parcels))

    @classmethod
    def deliver(cls, role: Optional[Role] = None, target: Optional[Position] = None) -> Intention:
        return cls(_kind_for(Family.DELIVER, role), target=target)

    @classmethod
    def move(cls, target: Position, role: Optional[Role] = None, known_parcels=()) -> Intention:
        kind = _kind_for(Family.MOVE, role)
        return cls(kind, target=target, known_parcels=frozenset(known_parcels))

    def parcel_ids(self) -> List[str]:
        return [p.id for p in self.parcels]

    def describe(self) -> str:
        if self.parcels:
            return f"{self.kind.value}({', '.join(self.parcel_ids())})"
        if self.target is not None:
            return f"{self.kind.value}@({self.target.x},{self.target.y})"
        return self.kind.value


def pickupable_parcels(
    beliefs: BeliefStore,
    role: Optional[Role] = None,
    courier_range: Optional[int] = None,
) -> List[Parcel]:
    """Visible parcels this agent may go and collect.

    Free (not carried), not booked by a teammate, reachable. Explorers leave
    parcels next to the midpoint alone (those are handoffs for the courier);
    couriers stay within *courier_range* of the midpoint when given; without
    a role, a parcel on the agent's own tile is not a candidate.
    """
    index = beliefs.index
    me = beliefs.position
    if index is None or me is None:
        return []
    booked = beliefs.booked_parcel_ids()
    midpoint = beliefs.midpoint
    result = []
    for parcel in beliefs.parcels:
        if not parcel.is_free or parcel.id in booked:
            continue
        if not index.reachable(me, parcel.position):
            continue
        if role is Role.EXPLORER and midpoint is not None:
            if parcel.position.manhattan(midpoint) <= 1:
                continue
        if role is Role.COURIER and midpoint is not None and courier_range is not None:
            if parcel.position.manhattan(midpoint) > courier_range:
                continue
        if role is None and parcel.position == me:
            continue
        result.append(parcel)
    return result


class IntentionManager:
    """Holds the single active intention and the archive of retired ones.

    Args:
        courier_range: Same courier pickup range the desire generator uses,
            so a waiting courier is only preempted by parcels it would fetch.
        archive_size: Cap on the diagnostic archive (unbounded by default).
    """

    def __init__(
        self, courier_range: Optional[int] = None, archive_size: Optional[int] = None
    ) -> None:
        self._current: Optional[Intention] = None
        self._archive: Deque[Intention] = deque(maxlen=archive_size)
        self._courier_range = courier_range
        self._guards: Dict[Family, Callable[[Intention, BeliefStore], Optional[str]]] = {
            Family.PICKUP: self._pickup_guard,
            Family.DELIVER: self._deliver_guard,
            Family.MOVE: self._move_guard,
        }

    @property
    def current(self) -> Optional[Intention]:
        return self._current

    @property
    def archive(self) -> List[Intention]:
        return list(self._archive)

    def adopt(self, intention: Intention) -> bool:
        """Commit to *intention*. Returns False if it is already active."""
        if intention == self._current:
            return False
        if self._current is not None:
            self._archive.append(self._current)
        self._current = intention
        logger.info("Adopted intention %s", intention.describe())
        return True

    def drop(self) -> Optional[Intention]:
        """Retire the active intention (if any) and return it."""
        dropped = self._current
        if dropped is not None:
            self._archive.append(dropped)
            self._current = None
            logger.debug("Dropped intention %s", dropped.describe())
        return dropped

    def revise(self, beliefs: BeliefStore) -> Optional[Intention]:
        """Drop the active intention if its guard no longer holds.

        Returns:
            The dropped intention, or None when nothing changed.
        """
        intention = self._current
        if intention is None:
            return None
        if intention.role is not None and beliefs.role is not intention.role:
            reason: Optional[str] = "collaboration role changed"
        else:
            reason = self._guards[intention.family](intention, beliefs)
        if reason is None:
            return None
        logger.info("Revising %s: %s", intention.describe(), reason)
        return self.drop()

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _pickup_guard(self, intention: Intention, beliefs: BeliefStore) -> Optional[str]:
        visible = {p.id: p for p in beliefs.parcels}
        me = beliefs.position
        distance = beliefs.server_config.parcels_observation_distance
        for candidate in intention.parcels:
            seen = visible.get(candidate.id)
            if seen is not None:
                if seen.carried_by is not None:
                    return f"parcel {candidate.id} is carried by {seen.carried_by}"
            elif me is not None and within_observation(me, candidate.position, distance):
                return f"parcel {candidate.id} disappeared"
        return None

    def _deliver_guard(self, intention: Intention, beliefs: BeliefStore) -> Optional[str]:
        if not beliefs.carried_parcels():
            return "nothing left to deliver"
        return None

    def _move_guard(self, intention: Intention, beliefs: BeliefStore) -> Optional[str]:
        if intention.target is not None and beliefs.position == intention.target:
            return "target reached"
        fresh = [
            p.id
            for p in pickupable_parcels(beliefs, intention.role, self._courier_range)
            if p.id not in intention.known_parcels
        ]
        if fresh:
            return f"new parcels visible: {', '.join(fresh)}"
        return None
