"""Handler-based planner: one intention in, one action sequence out.

Every :class:`IntentionKind` maps to a handler in ``self._handlers``. A
handler reads the beliefs, runs A* around the currently known agents and
returns a :class:`PlanResult` (the plan plus the intention it actually
serves, which may be narrower than the one requested) or ``None`` when
nothing feasible exists.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from parcelbot.beliefs import BeliefStore, Role
from parcelbot.config import AgentSettings
from parcelbot.reasoning.intentions import Intention, IntentionKind
from parcelbot.reasoning.rewards import Strategy, normalize
from parcelbot.spatial.geometry import nearest_adjacent
from parcelbot.spatial.pathfinding import find_path, path_to_actions
from parcelbot.world import Action, Parcel, Position, Tile, TileKind

logger = logging.getLogger("ParcelBot.Planner")

Ranked = Tuple[float, int, Parcel, List[Tile]]


@dataclass
class PlanResult:
    """Actions to run and the intention they fulfil."""

    intention: Intention
    plan: List[Action] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.plan)

    def describe(self) -> str:
        return f"{self.intention.describe()}: {[a.value for a in self.plan]}"


Handler = Callable[[Intention, BeliefStore], Optional[PlanResult]]


class Planner:
    """Turns intentions into plans using the grid and A*.

    Example::

        planner = Planner(settings)
        result = planner.plan_for(Intention.deliver(), beliefs)
        if result:
            print(result.plan)   # [Action.MOVE_UP, ..., Action.PUTDOWN]
    """

    def __init__(self, settings: AgentSettings) -> None:
        self.settings = settings
        self.strategy = Strategy(settings.strategy)
        self._handlers: Dict[IntentionKind, Handler] = {
            IntentionKind.PICKUP: self._plan_pickup,
            IntentionKind.EXPLORER_PICKUP: self._plan_pickup,
            IntentionKind.COURIER_PICKUP: self._plan_courier_pickup,
            IntentionKind.DELIVER: self._plan_deliver,
            IntentionKind.COURIER_DELIVER: self._plan_deliver,
            IntentionKind.EXPLORER_DELIVER: self._plan_explorer_deliver,
            IntentionKind.MOVE: self._plan_move,
            IntentionKind.EXPLORER_MOVE: self._plan_move,
            IntentionKind.COURIER_MOVE: self._plan_courier_move,
        }

    def plan_for(self, intention: Intention, beliefs: BeliefStore) -> Optional[PlanResult]:
        """Plan *intention* against the current beliefs.

        Returns:
            A :class:`PlanResult` (whose plan may be empty when the goal is
            already satisfied), or ``None`` when no feasible plan exists or
            position/map are still unknown.
        """
        if beliefs.position is None or beliefs.grid is None:
            return None
        result = self._handlers[intention.kind](intention, beliefs)
        if result is None:
            logger.debug("No plan for %s", intention.describe())
        return result

    async def plan(self, intention: Intention, beliefs: BeliefStore) -> Optional[PlanResult]:
        """Awaitable form of :meth:`plan_for`, shared with the PDDL planner."""
        return self.plan_for(intention, beliefs)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _path(self, beliefs: BeliefStore, goal: Position) -> Optional[List[Tile]]:
        return find_path(beliefs.grid, beliefs.position, goal, beliefs.obstacles())

    def _rank(self, beliefs: BeliefStore, parcels: Tuple[Parcel, ...]) -> List[Ranked]:
        """Reachable parcels with their paths, best normalized value first."""
        ranked = []
        for parcel in parcels:
            path = self._path(beliefs, parcel.position)
            if path is None:
                continue
            value = normalize(self.strategy, parcel.reward, len(path), self.settings.weights)
            ranked.append((value, len(path), parcel, path))
        ranked.sort(key=lambda item: (-item[0], item[1]))
        return ranked

    # ------------------------------------------------------------------
    # Pickup
    # ------------------------------------------------------------------

    def _plan_pickup(self, intention: Intention, beliefs: BeliefStore) -> Optional[PlanResult]:
        ranked = self._rank(beliefs, intention.parcels)
        if not ranked:
            return None
        _, _, best, path = ranked[0]

        if beliefs.carried_parcels():
            for i, tile in enumerate(path[:-1]):
                if tile.kind is TileKind.DELIVERY:
                    actions = path_to_actions(beliefs.position, path[: i + 1])
                    actions.append(Action.PUTDOWN)
                    logger.info(
                        "Delivering on the way to parcel %s at (%d,%d)", best.id, tile.x, tile.y
                    )
                    return PlanResult(Intention.deliver(target=tile.position), actions)

        actions = path_to_actions(beliefs.position, path)
        actions.append(Action.PICKUP)
        return PlanResult(Intention.pickup([best], intention.role), actions)

    def _plan_courier_pickup(
        self, intention: Intention, beliefs: BeliefStore
    ) -> Optional[PlanResult]:
        midpoint = beliefs.midpoint
        if midpoint is not None:
            handoffs = tuple(p for p in intention.parcels if p.position.manhattan(midpoint) <= 1)
            if handoffs:
                result = self._plan_pickup(Intention.pickup(handoffs, Role.COURIER), beliefs)
                if result is not None:
                    return result
        return self._plan_pickup(intention, beliefs)

    # ------------------------------------------------------------------
    # Deliver
    # ------------------------------------------------------------------

    def _plan_deliver(self, intention: Intention, beliefs: BeliefStore) -> Optional[PlanResult]:
        me = beliefs.position
        if beliefs.grid.kind(me) is TileKind.DELIVERY:
            return PlanResult(Intention.deliver(intention.role, target=me), [Action.PUTDOWN])
        index = beliefs.index
        tiles = beliefs.grid.delivery_tiles
        if index is not None:
            tiles = sorted(tiles, key=lambda t: index.distance(me, t.position))
        for tile in tiles:
            path = self._path(beliefs, tile.position)
            if path is None:
                continue
            actions = path_to_actions(me, path)
            actions.append(Action.PUTDOWN)
            return PlanResult(Intention.deliver(intention.role, target=tile.position), actions)
        return None

    def _plan_explorer_deliver(
        self, intention: Intention, beliefs: BeliefStore
    ) -> Optional[PlanResult]:
        midpoint = beliefs.midpoint
        index = beliefs.index
        me = beliefs.position
        if midpoint is None or index is None:
            return None
        if me.manhattan(midpoint) == 1:
            if beliefs.carried_parcels() and beliefs.teammate_at(midpoint):
                return PlanResult(intention, [Action.PUTDOWN])
            return PlanResult(intention, [Action.WAIT])
        handoff = nearest_adjacent(index, midpoint, me)
        if handoff is None:
            return None
        path = self._path(beliefs, handoff.position)
        if path is None:
            return None
        return PlanResult(intention, path_to_actions(me, path))

    # ------------------------------------------------------------------
    # Move
    # ------------------------------------------------------------------

    def _plan_move(self, intention: Intention, beliefs: BeliefStore) -> Optional[PlanResult]:
        if intention.target is None:
            return None
        if intention.target == beliefs.position:
            return PlanResult(intention, [])
        path = self._path(beliefs, intention.target)
        if path is None:
            return None
        return PlanResult(intention, path_to_actions(beliefs.position, path))

    def _plan_courier_move(
        self, intention: Intention, beliefs: BeliefStore
    ) -> Optional[PlanResult]:
        midpoint = beliefs.midpoint or intention.target
        if midpoint is None:
            return None
        if beliefs.position == midpoint:
            return PlanResult(intention, [Action.WAIT])
        path = self._path(beliefs, midpoint)
        if path is None:
            return None
        return PlanResult(intention, path_to_actions(beliefs.position, path))
