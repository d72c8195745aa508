"""Shared fixtures for the ParcelBot test-suite."""

from typing import Iterable, List, Optional

import pytest

from parcelbot.beliefs import Belief, BeliefStore
from parcelbot.config import ServerConfig
from parcelbot.spatial.index import build_index
from parcelbot.world import AgentInfo, GridMap, Parcel, Position

OPEN_5X5 = ["33333"] * 5


def build_beliefs(
    rows: Optional[List[str]] = None,
    position: Position = Position(0, 0),
    parcels: Iterable[Parcel] = (),
    agents: Iterable[AgentInfo] = (),
    agent_id: str = "me",
    teammates: Iterable[str] = (),
    server: Optional[ServerConfig] = None,
) -> BeliefStore:
    """A belief store that is ready for planning on the given map."""
    grid = GridMap.from_rows(rows or OPEN_5X5)
    beliefs = BeliefStore(teammates=list(teammates))
    beliefs.set(Belief.ID, agent_id)
    beliefs.set(Belief.MAP, grid)
    beliefs.set(Belief.INDEX, build_index(grid))
    beliefs.set(Belief.SERVER_CONFIG, server or ServerConfig(parcel_decay_interval_s=float("inf")))
    beliefs.position = position
    beliefs.parcels = list(parcels)
    beliefs.update_agents(list(agents), 0.0)
    return beliefs


@pytest.fixture
def make_beliefs():
    return build_beliefs
