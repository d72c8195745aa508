"""Tests for the handler-based planner."""

from parcelbot.beliefs import BeliefStore, Role
from parcelbot.config import AgentSettings
from parcelbot.planning.planner import PlanResult, Planner
from parcelbot.reasoning.intentions import Family, Intention, IntentionKind
from parcelbot.world import Action, AgentInfo, Parcel, Position

DELIVERY_CENTER = ["33333", "33333", "33233", "33333", "33333"]


def _planner() -> Planner:
    return Planner(AgentSettings())


def _replay(start: Position, plan) -> Position:
    pos = start
    for action in plan:
        pos = pos.step(action)
    return pos


# ---------------------------------------------------------------------------
# Pickup
# ---------------------------------------------------------------------------


class TestPickup:
    def test_open_grid_corner_to_corner(self, make_beliefs):
        p = Parcel("p1", Position(4, 4), 10)
        beliefs = make_beliefs(parcels=[p])
        result = _planner().plan_for(Intention.pickup([p]), beliefs)
        moves = [a for a in result.plan if a.is_move]
        assert len(moves) == 8
        assert result.plan[-1] is Action.PICKUP
        assert len(result.plan) == 9
        assert _replay(Position(0, 0), result.plan) == Position(4, 4)
        assert result.intention == Intention.pickup([p])

    def test_best_value_wins(self, make_beliefs):
        near = Parcel("near", Position(1, 0), 10)
        far = Parcel("far", Position(4, 4), 10)
        beliefs = make_beliefs(parcels=[far, near])
        result = _planner().plan_for(Intention.pickup([far, near]), beliefs)
        assert result.intention.parcel_ids() == ["near"]
        assert result.plan == [Action.MOVE_RIGHT, Action.PICKUP]

    def test_unreachable_parcel(self, make_beliefs):
        p = Parcel("p1", Position(2, 0), 10)
        beliefs = make_beliefs(rows=["303"], parcels=[p])
        assert _planner().plan_for(Intention.pickup([p]), beliefs) is None

    def test_routes_around_agents(self, make_beliefs):
        p = Parcel("p1", Position(2, 1), 10)
        blocker = AgentInfo("x", "x", Position(1, 1))
        beliefs = make_beliefs(rows=["333", "333", "333"], position=Position(0, 1), agents=[blocker])
        result = _planner().plan_for(Intention.pickup([p]), beliefs)
        assert len(result.plan) == 5
        assert _replay(Position(0, 1), result.plan) == Position(2, 1)

    def test_delivers_on_the_way(self, make_beliefs):
        carried = Parcel("c", Position(0, 0), 10, carried_by="me")
        ahead = Parcel("ahead", Position(5, 0), 10)
        beliefs = make_beliefs(rows=["3323333"], parcels=[carried, ahead])
        result = _planner().plan_for(Intention.pickup([ahead]), beliefs)
        assert result.plan == [Action.MOVE_RIGHT, Action.MOVE_RIGHT, Action.PUTDOWN]
        assert result.intention.family is Family.DELIVER
        assert result.intention.target == Position(2, 0)

    def test_courier_prefers_handoff(self, make_beliefs):
        handoff = Parcel("handoff", Position(2, 3), 1)
        rich = Parcel("rich", Position(1, 0), 50)
        beliefs = make_beliefs(parcels=[handoff, rich])
        beliefs.role = Role.COURIER
        beliefs.midpoint = Position(2, 2)
        intention = Intention.pickup([handoff, rich], Role.COURIER)
        result = _planner().plan_for(intention, beliefs)
        assert result.intention.parcel_ids() == ["handoff"]
        assert result.intention.kind is IntentionKind.COURIER_PICKUP


# ---------------------------------------------------------------------------
# Deliver
# ---------------------------------------------------------------------------


class TestDeliver:
    def test_three_moves_then_putdown(self, make_beliefs):
        carried = Parcel("c", Position(0, 1), 5, carried_by="me")
        beliefs = make_beliefs(rows=DELIVERY_CENTER, position=Position(0, 1), parcels=[carried])
        result = _planner().plan_for(Intention.deliver(), beliefs)
        assert len(result.plan) == 4
        assert all(a.is_move for a in result.plan[:3])
        assert result.plan[-1] is Action.PUTDOWN
        assert _replay(Position(0, 1), result.plan) == Position(2, 2)
        assert result.intention.target == Position(2, 2)

    def test_already_on_delivery_tile(self, make_beliefs):
        beliefs = make_beliefs(rows=DELIVERY_CENTER, position=Position(2, 2))
        result = _planner().plan_for(Intention.deliver(), beliefs)
        assert result.plan == [Action.PUTDOWN]

    def test_no_delivery_tile(self, make_beliefs):
        assert _planner().plan_for(Intention.deliver(), make_beliefs()) is None

    def test_explorer_hands_over_to_courier(self, make_beliefs):
        carried = Parcel("c", Position(1, 2), 5, carried_by="me")
        beliefs = make_beliefs(position=Position(1, 2), parcels=[carried], teammates=["t1"])
        beliefs.role = Role.EXPLORER
        beliefs.midpoint = Position(2, 2)
        intention = Intention.deliver(Role.EXPLORER, target=Position(2, 2))

        assert _planner().plan_for(intention, beliefs).plan == [Action.WAIT]
        beliefs.set_teammate_position("t1", Position(2, 2))
        assert _planner().plan_for(intention, beliefs).plan == [Action.PUTDOWN]

    def test_explorer_walks_next_to_midpoint(self, make_beliefs):
        carried = Parcel("c", Position(0, 0), 5, carried_by="me")
        beliefs = make_beliefs(parcels=[carried])
        beliefs.role = Role.EXPLORER
        beliefs.midpoint = Position(2, 2)
        result = _planner().plan_for(Intention.deliver(Role.EXPLORER), beliefs)
        end = _replay(Position(0, 0), result.plan)
        assert end.manhattan(Position(2, 2)) == 1
        assert len(result.plan) == 3


# ---------------------------------------------------------------------------
# Move
# ---------------------------------------------------------------------------


class TestMove:
    def test_already_there_is_empty(self, make_beliefs):
        beliefs = make_beliefs(position=Position(3, 3))
        result = _planner().plan_for(Intention.move(Position(3, 3)), beliefs)
        assert isinstance(result, PlanResult)
        assert not result

    def test_move_path(self, make_beliefs):
        result = _planner().plan_for(Intention.move(Position(0, 3)), make_beliefs())
        assert result.plan == [Action.MOVE_UP] * 3

    def test_courier_waits_at_midpoint(self, make_beliefs):
        beliefs = make_beliefs(position=Position(2, 2))
        beliefs.role = Role.COURIER
        beliefs.midpoint = Position(2, 2)
        result = _planner().plan_for(Intention.move(Position(2, 2), Role.COURIER), beliefs)
        assert result.plan == [Action.WAIT]

    def test_unknown_position(self):
        assert _planner().plan_for(Intention.move(Position(1, 1)), BeliefStore()) is None

    async def test_plan_is_awaitable(self, make_beliefs):
        result = await _planner().plan(Intention.move(Position(1, 0)), make_beliefs())
        assert result.plan == [Action.MOVE_RIGHT]
