"""In-process grid world for tests and local runs.

A :class:`GridWorld` owns the map, the parcels and every agent's position.
Each agent talks to it through its own :class:`SimulatedGateway`, which
behaves like a remote environment connection: actions succeed or fail,
and after every state change all gateways receive fresh sensing events.

Example::

    world = GridWorld(GridMap.from_rows(rows), config={"MOVEMENT_DURATION": 50})
    gw_a = world.add_agent("a1", "alice", Position(0, 0))
    gw_b = world.add_agent("b1", "bob", Position(4, 4))
    world.spawn_parcel("p1", Position(2, 2), reward=20)
    await gw_a.connect()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from parcelbot.gateway.base import EnvironmentGateway, GatewayEvent
from parcelbot.world import AgentInfo, Direction, GridMap, Parcel, Position, TileKind

logger = logging.getLogger("ParcelBot.Gateway.Simulation")

_DIRECTION_DELTAS = {
    Direction.UP: (0, 1),
    Direction.DOWN: (0, -1),
    Direction.LEFT: (-1, 0),
    Direction.RIGHT: (1, 0),
}

DEFAULT_CONFIG: Dict[str, Any] = {
    "MOVEMENT_DURATION": 50,
    "CLOCK": 50,
    "PARCEL_DECADING_INTERVAL": "infinite",
    "PARCELS_OBSERVATION_DISTANCE": 5,
    "AGENTS_OBSERVATION_DISTANCE": 5,
}


@dataclass
class _AgentState:
    id: str
    name: str
    position: Position
    score: float = 0.0

    def info(self) -> AgentInfo:
        return AgentInfo(self.id, self.name, self.position, self.score)


class GridWorld:
    """Shared state of one simulated mission."""

    def __init__(self, grid: GridMap, config: Optional[Dict[str, Any]] = None) -> None:
        self.grid = grid
        self.config: Dict[str, Any] = {**DEFAULT_CONFIG, **(config or {})}
        self.agents: Dict[str, _AgentState] = {}
        self.parcels: Dict[str, Parcel] = {}
        self.gateways: Dict[str, SimulatedGateway] = {}
        self.movement_delay_s = 0.0
        self.delivered: List[Parcel] = []

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def add_agent(self, agent_id: str, name: str, position: Position) -> SimulatedGateway:
        self.agents[agent_id] = _AgentState(agent_id, name, position)
        gateway = SimulatedGateway(self, agent_id)
        self.gateways[agent_id] = gateway
        return gateway

    def spawn_parcel(self, parcel_id: str, position: Position, reward: float) -> Parcel:
        parcel = Parcel(parcel_id, position, reward)
        self.parcels[parcel_id] = parcel
        return parcel

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def occupant(self, pos: Position) -> Optional[str]:
        for state in self.agents.values():
            if state.position == pos:
                return state.id
        return None

    def carried_by(self, agent_id: str) -> List[Parcel]:
        return [p for p in self.parcels.values() if p.carried_by == agent_id]

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def move(self, agent_id: str, direction: Direction) -> bool:
        state = self.agents[agent_id]
        dx, dy = _DIRECTION_DELTAS[direction]
        target = Position(state.position.x + dx, state.position.y + dy)
        if not self.grid.is_walkable(target) or self.occupant(target) is not None:
            return False
        state.position = target
        for parcel in self.carried_by(agent_id):
            self.parcels[parcel.id] = Parcel(parcel.id, target, parcel.reward, agent_id)
        return True

    def pickup(self, agent_id: str) -> List[Parcel]:
        here = self.agents[agent_id].position
        picked = []
        for parcel in list(self.parcels.values()):
            if parcel.is_free and parcel.position == here:
                taken = Parcel(parcel.id, here, parcel.reward, agent_id)
                self.parcels[parcel.id] = taken
                picked.append(taken)
        return picked

    def putdown(self, agent_id: str) -> List[Parcel]:
        state = self.agents[agent_id]
        dropped = self.carried_by(agent_id)
        on_delivery = self.grid.kind(state.position) is TileKind.DELIVERY
        for parcel in dropped:
            if on_delivery:
                del self.parcels[parcel.id]
                state.score += parcel.reward
                self.delivered.append(parcel)
            else:
                self.parcels[parcel.id] = Parcel(parcel.id, state.position, parcel.reward)
        return dropped

    # ------------------------------------------------------------------
    # Sensing
    # ------------------------------------------------------------------

    def sense(self, agent_id: str) -> None:
        """Push self, parcel and agent sensing events to one agent."""
        gateway = self.gateways[agent_id]
        me = self.agents[agent_id]
        parcel_range = float(self.config["PARCELS_OBSERVATION_DISTANCE"])
        agent_range = float(self.config["AGENTS_OBSERVATION_DISTANCE"])
        parcels = [
            p
            for p in self.parcels.values()
            if p.carried_by == agent_id or me.position.manhattan(p.position) < parcel_range
        ]
        agents = [
            other.info()
            for other in self.agents.values()
            if other.id != agent_id and me.position.manhattan(other.position) < agent_range
        ]
        gateway._emit(GatewayEvent.YOU, me.info())
        gateway._emit(GatewayEvent.PARCELS, parcels)
        gateway._emit(GatewayEvent.AGENTS, agents)

    def sense_all(self) -> None:
        for agent_id in self.gateways:
            self.sense(agent_id)


class SimulatedGateway(EnvironmentGateway):
    """One agent's connection to a :class:`GridWorld`."""

    def __init__(self, world: GridWorld, agent_id: str) -> None:
        super().__init__()
        self.world = world
        self.agent_id = agent_id
        self.sent: List[tuple] = []

    async def connect(self) -> None:
        """Deliver the one-off configuration and map events, then sense."""
        self._emit(GatewayEvent.CONFIG, dict(self.world.config))
        self._emit(GatewayEvent.MAP, self.world.grid)
        self.world.sense(self.agent_id)

    async def move(self, direction: Direction) -> bool:
        if self.world.movement_delay_s:
            await asyncio.sleep(self.world.movement_delay_s)
        ok = self.world.move(self.agent_id, direction)
        if ok:
            self.world.sense_all()
        return ok

    async def pickup(self) -> bool:
        picked = self.world.pickup(self.agent_id)
        if picked:
            self.world.sense_all()
        return bool(picked)

    async def putdown(self) -> bool:
        dropped = self.world.putdown(self.agent_id)
        if dropped:
            self.world.sense_all()
        return bool(dropped)

    async def say(self, to_id: str, payload: str) -> bool:
        self.sent.append((to_id, payload))
        target = self.world.gateways.get(to_id)
        if target is None:
            return False
        me = self.world.agents[self.agent_id]
        target._emit(GatewayEvent.MESSAGE, me.id, me.name, payload)
        return True
