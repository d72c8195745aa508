"""Tests for the in-process grid world and its gateways."""

import asyncio

import pytest

from parcelbot.gateway.base import GatewayEvent
from parcelbot.gateway.simulation import GridWorld
from parcelbot.world import Direction, GridMap, Position


def _world(rows=None, **config) -> GridWorld:
    return GridWorld(GridMap.from_rows(rows or ["33332"]), config=config)


def _record(gateway, *events):
    seen = []
    for event in events:
        gateway.on(event, lambda *args, _e=event: seen.append((_e, args)))
    return seen


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class TestActions:
    def test_move(self):
        world = _world()
        gw = world.add_agent("a", "alice", Position(0, 0))
        assert asyncio.run(gw.move(Direction.RIGHT))
        assert world.agents["a"].position == Position(1, 0)

    def test_move_off_map_or_into_agent_fails(self):
        world = _world()
        gw = world.add_agent("a", "alice", Position(0, 0))
        world.add_agent("b", "bob", Position(1, 0))
        assert not asyncio.run(gw.move(Direction.LEFT))
        assert not asyncio.run(gw.move(Direction.RIGHT))
        assert world.agents["a"].position == Position(0, 0)

    def test_carried_parcels_move_with_agent(self):
        world = _world()
        gw = world.add_agent("a", "alice", Position(0, 0))
        world.spawn_parcel("p1", Position(0, 0), 10)
        assert asyncio.run(gw.pickup())
        asyncio.run(gw.move(Direction.RIGHT))
        assert world.parcels["p1"].position == Position(1, 0)
        assert world.parcels["p1"].carried_by == "a"

    def test_pickup_nothing_fails(self):
        world = _world()
        gw = world.add_agent("a", "alice", Position(0, 0))
        assert not asyncio.run(gw.pickup())

    def test_putdown_on_delivery_scores(self):
        world = _world()
        gw = world.add_agent("a", "alice", Position(4, 0))
        world.spawn_parcel("p1", Position(4, 0), 10)
        asyncio.run(gw.pickup())
        assert asyncio.run(gw.putdown())
        assert "p1" not in world.parcels
        assert world.agents["a"].score == 10
        assert [p.id for p in world.delivered] == ["p1"]

    def test_putdown_elsewhere_leaves_parcel(self):
        world = _world()
        gw = world.add_agent("a", "alice", Position(1, 0))
        world.spawn_parcel("p1", Position(1, 0), 10)
        asyncio.run(gw.pickup())
        asyncio.run(gw.putdown())
        assert world.parcels["p1"].is_free
        assert world.agents["a"].score == 0


# ---------------------------------------------------------------------------
# Sensing and messages
# ---------------------------------------------------------------------------


class TestSensing:
    def test_connect_event_order(self):
        world = _world()
        gw = world.add_agent("a", "alice", Position(0, 0))
        seen = _record(gw, *GatewayEvent)
        asyncio.run(gw.connect())
        assert [e for e, _ in seen] == [
            GatewayEvent.CONFIG,
            GatewayEvent.MAP,
            GatewayEvent.YOU,
            GatewayEvent.PARCELS,
            GatewayEvent.AGENTS,
        ]

    def test_observation_range_is_strict(self):
        world = _world(["3333333"], PARCELS_OBSERVATION_DISTANCE=3)
        gw = world.add_agent("a", "alice", Position(0, 0))
        world.spawn_parcel("near", Position(2, 0), 1)
        world.spawn_parcel("edge", Position(3, 0), 1)
        seen = _record(gw, GatewayEvent.PARCELS)
        world.sense("a")
        (parcels,) = seen[0][1]
        assert [p.id for p in parcels] == ["near"]

    def test_agents_exclude_self(self):
        world = _world()
        gw = world.add_agent("a", "alice", Position(0, 0))
        world.add_agent("b", "bob", Position(2, 0))
        seen = _record(gw, GatewayEvent.AGENTS)
        world.sense("a")
        (agents,) = seen[0][1]
        assert [a.id for a in agents] == ["b"]

    def test_say_routes_message(self):
        world = _world()
        gw_a = world.add_agent("a", "alice", Position(0, 0))
        gw_b = world.add_agent("b", "bob", Position(2, 0))
        seen = _record(gw_b, GatewayEvent.MESSAGE)
        assert asyncio.run(gw_a.say("b", '{"type": "x"}'))
        assert seen == [(GatewayEvent.MESSAGE, ("a", "alice", '{"type": "x"}'))]
        assert gw_a.sent == [("b", '{"type": "x"}')]

    def test_say_unknown_agent(self):
        world = _world()
        gw = world.add_agent("a", "alice", Position(0, 0))
        assert not asyncio.run(gw.say("nobody", "{}"))

    def test_listener_errors_do_not_propagate(self):
        world = _world()
        gw = world.add_agent("a", "alice", Position(0, 0))

        def boom(*args):
            raise RuntimeError("listener failed")

        gw.on(GatewayEvent.YOU, boom)
        world.sense("a")

    def test_off_removes_listener(self):
        world = _world()
        gw = world.add_agent("a", "alice", Position(0, 0))
        seen = []
        sub_id = gw.on(GatewayEvent.YOU, seen.append)
        gw.off(sub_id)
        world.sense("a")
        assert seen == []

    def test_health_check(self):
        gw = _world().add_agent("a", "alice", Position(0, 0))
        assert gw.health_check()["ok"] is True


@pytest.mark.parametrize(
    "direction,expected",
    [(Direction.UP, Position(1, 2)), (Direction.DOWN, Position(1, 0))],
)
def test_up_increases_y(direction, expected):
    world = _world(["333", "333", "333"])
    gw = world.add_agent("a", "alice", Position(1, 1))
    asyncio.run(gw.move(direction))
    assert world.agents["a"].position == expected
