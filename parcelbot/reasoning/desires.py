"""Desire generation: what could the agent do next, best first."""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, List, Optional, Sequence, Tuple

from parcelbot.beliefs import BeliefStore, Role
from parcelbot.config import AgentSettings
from parcelbot.reasoning.intentions import Intention, pickupable_parcels
from parcelbot.reasoning.rewards import Strategy, decayed_reward, normalize
from parcelbot.spatial.geometry import fallback_tile, nearest_delivery, within_observation
from parcelbot.world import Parcel, Position, Tile

logger = logging.getLogger("ParcelBot.Reasoning.Desires")


class DesireGenerator:
    """Builds the ranked desire list from the current beliefs.

    Example::

        generator = DesireGenerator(settings)
        for desire in generator.generate(beliefs):
            ...
    """

    def __init__(
        self, settings: AgentSettings, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.settings = settings
        self.strategy = Strategy(settings.strategy)
        self._clock = clock

    def generate(self, beliefs: BeliefStore) -> List[Intention]:
        """Return candidate intentions, most preferred first.

        Returns an empty list until position and map are known.
        """
        if beliefs.position is None or beliefs.index is None:
            return []
        role = beliefs.role
        desires: List[Intention] = []
        carried = beliefs.carried_parcels()
        candidates = pickupable_parcels(beliefs, role, self.settings.courier_exploration_range)

        if carried:
            extra = self.additional_pickups(beliefs, carried, candidates)
            if extra:
                desires.append(Intention.pickup(extra, role))
            desires.append(self._deliver_desire(beliefs, role))
        elif candidates:
            desires.append(Intention.pickup(candidates, role))

        fallback = self._move_desire(beliefs, role, candidates)
        if fallback is not None:
            desires.append(fallback)

        logger.debug("Desires: %s", [d.describe() for d in desires])
        return desires

    # ------------------------------------------------------------------
    # Delivery estimate
    # ------------------------------------------------------------------

    def delivery_distance(self, beliefs: BeliefStore, origin: Position) -> float:
        """Hops needed to bring a parcel from *origin* to a delivery tile.

        An explorer hands parcels over at the midpoint, so its estimate is the
        walk to the midpoint plus the courier's walk from there.
        """
        index = beliefs.index
        midpoint = beliefs.midpoint
        if beliefs.role is Role.EXPLORER and midpoint is not None:
            courier_leg = nearest_delivery(index, midpoint)
            if courier_leg is None:
                return math.inf
            return index.distance(origin, midpoint) + courier_leg[1]
        found = nearest_delivery(index, origin)
        return found[1] if found is not None else math.inf

    # ------------------------------------------------------------------
    # Additional pickup
    # ------------------------------------------------------------------

    def additional_pickups(
        self,
        beliefs: BeliefStore,
        carried: Sequence[Parcel],
        candidates: Sequence[Parcel],
    ) -> List[Parcel]:
        """Parcels worth a detour before delivering, best gain first."""
        me = beliefs.position
        index = beliefs.index
        server = beliefs.server_config
        step_s = server.movement_duration_s
        tau = server.parcel_decay_interval_s
        weights = self.settings.weights

        base_distance = self.delivery_distance(beliefs, me)
        if not math.isfinite(base_distance):
            return []
        base_reward = sum(decayed_reward(p.reward, base_distance * step_s, tau) for p in carried)
        base_value = normalize(self.strategy, base_reward, base_distance, weights)

        scored: List[Tuple[float, Parcel]] = []
        for parcel in candidates:
            to_parcel = index.distance(me, parcel.position)
            onward = self.delivery_distance(beliefs, parcel.position)
            total_distance = to_parcel + onward
            if not math.isfinite(total_distance):
                continue
            elapsed = total_distance * step_s
            total_reward = sum(decayed_reward(p.reward, elapsed, tau) for p in carried)
            total_reward += decayed_reward(parcel.reward, elapsed, tau)
            gain = normalize(self.strategy, total_reward, total_distance, weights) - base_value
            if gain > 0:
                scored.append((gain, parcel))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [parcel for _, parcel in scored]

    # ------------------------------------------------------------------
    # Delivery and fallback movement
    # ------------------------------------------------------------------

    def _deliver_desire(self, beliefs: BeliefStore, role: Optional[Role]) -> Intention:
        if role is Role.EXPLORER:
            return Intention.deliver(role, target=beliefs.midpoint)
        return Intention.deliver(role)

    def _move_desire(
        self, beliefs: BeliefStore, role: Optional[Role], known: Sequence[Parcel]
    ) -> Optional[Intention]:
        known_ids = [p.id for p in known]
        if role is Role.COURIER and beliefs.midpoint is not None:
            return Intention.move(beliefs.midpoint, role, known_ids)
        target = self.exploration_target(beliefs)
        if target is None:
            min_distance = self.settings.fallback_min_distance
            tile = fallback_tile(beliefs.index, beliefs.position, min_distance)
            target = tile.position if tile is not None else None
        if target is None:
            return None
        return Intention.move(target, role, known_ids)

    def exploration_target(self, beliefs: BeliefStore) -> Optional[Position]:
        """Stalest reachable tile out of sight, discounted by distance.

        Score is ``age / (distance + 1)``; never-visited tiles have unbounded
        age and ties go to the nearer tile. Spawn tiles are explored when the
        map has any, every walkable tile otherwise.
        """
        index = beliefs.index
        me = beliefs.position
        grid = index.grid
        sight = beliefs.server_config.parcels_observation_distance
        now = self._clock()
        tiles: List[Tile] = grid.spawn_tiles or grid.walkable_tiles()

        best: Optional[Tuple[float, float, Position]] = None
        for tile in tiles:
            pos = tile.position
            if pos == me or within_observation(me, pos, sight):
                continue
            distance = index.distance(me, pos)
            if not math.isfinite(distance) or distance > self.settings.max_distance_exploration:
                continue
            score = beliefs.tile_age(pos, now) / (distance + 1)
            if best is None or score > best[0] or (score == best[0] and distance < best[1]):
                best = (score, distance, pos)
        return best[2] if best is not None else None
