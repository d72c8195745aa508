"""Tests for the explorer/courier negotiation protocol."""

from typing import List, Tuple

import pytest

from parcelbot.beliefs import Belief, Role
from parcelbot.config import AgentSettings
from parcelbot.gateway.base import EnvironmentGateway
from parcelbot.reasoning.intentions import Intention, IntentionManager
from parcelbot.team.messages import MessageType, TeamMessage
from parcelbot.team.negotiation import NegotiationProtocol
from parcelbot.world import Parcel, Position

SPAWN_MAP = ["13331", "33333", "33333", "33333", "33333"]


class RecordingGateway(EnvironmentGateway):
    def __init__(self):
        super().__init__()
        self.said: List[Tuple[str, str]] = []

    async def move(self, direction):
        return True

    async def pickup(self):
        return True

    async def putdown(self):
        return True

    async def say(self, to_id, payload):
        self.said.append((to_id, payload))
        return True

    def types(self) -> List[MessageType]:
        return [TeamMessage.from_json(text).type for _, text in self.said]


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class Peer:
    """One agent's negotiation side, with its beliefs and gateway."""

    def __init__(self, build, agent_id, position, clock, rows=SPAWN_MAP, **settings):
        self.beliefs = build(rows=rows, position=position, agent_id=agent_id, teammates=["a", "b"])
        self.gateway = RecordingGateway()
        self.intentions = IntentionManager()
        self.stops = 0
        settings.setdefault("request_jitter_s", (0.0, 0.0))
        self.protocol = NegotiationProtocol(
            self.beliefs,
            self.gateway,
            self.intentions,
            AgentSettings(**settings),
            stop_plan=self._stop_plan,
            clock=clock,
        )

    async def _stop_plan(self):
        self.stops += 1
        self.intentions.drop()

    async def deliver_to(self, other: "Peer") -> None:
        """Hand every queued outgoing message to *other*."""
        pending, self.gateway.said = self.gateway.said, []
        for to_id, text in pending:
            if to_id == other.beliefs.agent_id:
                await other.protocol.handle(self.beliefs.agent_id, text)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pair(make_beliefs, clock):
    a = Peer(make_beliefs, "a", Position(0, 0), clock)
    b = Peer(make_beliefs, "b", Position(4, 0), clock)
    return a, b


# ---------------------------------------------------------------------------
# Handshake
# ---------------------------------------------------------------------------


class TestHandshake:
    async def test_offer_accept_assigns_complementary_roles(self, pair):
        a, b = pair
        assert await b.protocol.offer_help_if_idle()
        assert b.beliefs.attempting_to_help
        await b.deliver_to(a)

        assert a.beliefs.role is Role.EXPLORER
        assert a.stops == 1
        assert a.gateway.types() == [MessageType.HELP_HERE]
        await a.deliver_to(b)

        assert b.beliefs.role is Role.COURIER
        assert a.beliefs.collaborating and b.beliefs.collaborating
        assert a.beliefs.midpoint == b.beliefs.midpoint
        assert a.beliefs.midpoint is not None

    async def test_offer_carries_sender_position(self, pair):
        a, b = pair
        await b.protocol.offer_help_if_idle()
        await b.deliver_to(a)
        assert a.beliefs.get(Belief.AVAILABLE_TEAMMATE_POSITION) == Position(4, 0)

    async def test_busy_courier_declines(self, pair):
        a, b = pair
        await b.protocol.offer_help_if_idle()
        await b.deliver_to(a)
        b.intentions.adopt(Intention.pickup([Parcel("p1", Position(1, 1), 5)]))
        await a.deliver_to(b)

        assert b.beliefs.role is None
        assert b.gateway.types() == [MessageType.NOT_AVAILABLE_TO_HELP]
        await b.deliver_to(a)
        assert a.beliefs.role is None
        assert not a.beliefs.collaborating

    async def test_delivering_agent_does_not_need_help(self, pair):
        a, b = pair
        a.intentions.adopt(Intention.deliver())
        await b.protocol.offer_help_if_idle()
        await b.deliver_to(a)
        assert a.beliefs.role is None
        assert a.gateway.types() == [MessageType.NOT_AVAILABLE_TO_HELP]

    async def test_offer_ignored_while_collaborating(self, pair):
        a, b = pair
        a.protocol.start_collaboration(Role.EXPLORER, Position(2, 2))
        await b.protocol.offer_help_if_idle()
        await b.deliver_to(a)
        assert a.gateway.said == []
        assert a.beliefs.midpoint == Position(2, 2)

    async def test_simultaneous_offers_can_both_become_explorers(self, pair):
        a, b = pair
        await a.protocol.offer_help_if_idle()
        await b.protocol.offer_help_if_idle()
        await a.deliver_to(b)
        await b.deliver_to(a)
        assert a.beliefs.role is Role.EXPLORER
        assert b.beliefs.role is Role.EXPLORER
        # the crossing help_here messages are ignored
        await a.deliver_to(b)
        await b.deliver_to(a)
        assert a.beliefs.role is Role.EXPLORER
        assert b.beliefs.role is Role.EXPLORER


# ---------------------------------------------------------------------------
# Filtering and bookkeeping messages
# ---------------------------------------------------------------------------


class TestIncoming:
    async def test_non_teammate_ignored(self, pair):
        a, _ = pair
        text = TeamMessage.position_update(Position(1, 1)).to_json()
        assert not await a.protocol.handle("stranger", text)
        assert a.beliefs.teammate_positions() == {}

    async def test_garbage_ignored(self, pair):
        a, _ = pair
        assert not await a.protocol.handle("b", "hello?")

    async def test_position_update(self, pair):
        a, _ = pair
        await a.protocol.handle("b", TeamMessage.position_update(Position(3, 1)).to_json())
        assert a.beliefs.teammate_positions() == {"b": Position(3, 1)}

    async def test_intention_update(self, pair):
        a, _ = pair
        await a.protocol.handle("b", TeamMessage.intention_update("courier_move").to_json())
        assert a.beliefs.get(Belief.TEAMMATE_INTENTIONS) == {"b": "courier_move"}

    async def test_booking_and_unbooking(self, pair):
        a, _ = pair
        await a.protocol.handle("b", TeamMessage.book_parcel(["p1"]).to_json())
        assert a.beliefs.booked_parcel_ids() == {"p1"}
        await a.protocol.handle("b", TeamMessage.book_parcel([]).to_json())
        assert a.beliefs.booked_parcel_ids() == frozenset()

    async def test_not_available_resets(self, pair):
        a, _ = pair
        a.protocol.start_collaboration(Role.COURIER, Position(2, 2))
        await a.protocol.handle("b", TeamMessage.availability(False, Position(4, 0)).to_json())
        assert a.beliefs.role is None
        assert a.beliefs.midpoint is None


# ---------------------------------------------------------------------------
# Offers and timeout
# ---------------------------------------------------------------------------


class TestOffers:
    async def test_offer_is_broadcast_once(self, pair):
        _, b = pair
        assert await b.protocol.offer_help_if_idle()
        assert not await b.protocol.offer_help_if_idle()
        assert b.gateway.said[0][0] == "a"
        assert len(b.gateway.said) == 1

    async def test_offer_waits_for_jitter(self, make_beliefs, clock):
        b = Peer(make_beliefs, "b", Position(4, 0), clock, request_jitter_s=(5.0, 5.0))
        assert await b.protocol.offer_help_if_idle()
        b.beliefs.attempting_to_help = False
        assert not await b.protocol.offer_help_if_idle()
        clock.now = 5.0
        assert await b.protocol.offer_help_if_idle()

    async def test_no_offer_without_spawn(self, make_beliefs, clock):
        b = Peer(make_beliefs, "b", Position(4, 0), clock, rows=["33333"] * 5)
        assert not await b.protocol.offer_help_if_idle()

    async def test_no_offer_while_busy(self, pair):
        _, b = pair
        b.intentions.adopt(Intention.deliver())
        assert not await b.protocol.offer_help_if_idle()


class TestTimeout:
    async def test_idle_collaboration_times_out(self, pair, clock):
        a, _ = pair
        a.protocol.start_collaboration(Role.EXPLORER, Position(2, 2))
        clock.now = 60.0
        assert not await a.protocol.check_timeout()
        clock.now = 60.5
        assert await a.protocol.check_timeout()
        assert a.beliefs.role is None
        assert a.gateway.types() == [MessageType.NOT_AVAILABLE_TO_HELP]

    async def test_progress_refreshes_clock(self, pair, clock):
        a, _ = pair
        a.protocol.start_collaboration(Role.COURIER, Position(2, 2))
        clock.now = 50.0
        a.protocol.record_progress()
        clock.now = 100.0
        assert not await a.protocol.check_timeout()
        assert a.beliefs.role is Role.COURIER

    async def test_not_collaborating_never_times_out(self, pair, clock):
        a, _ = pair
        clock.now = 1e6
        assert not await a.protocol.check_timeout()
