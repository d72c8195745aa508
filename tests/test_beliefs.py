"""Tests for parcelbot.beliefs.BeliefStore."""

import math
import threading

import pytest

from parcelbot.beliefs import Belief, BeliefStore, Role
from parcelbot.world import AgentInfo, Parcel, Position


def _store(**kw) -> BeliefStore:
    return BeliefStore(**kw)


# ---------------------------------------------------------------------------
# Core operations
# ---------------------------------------------------------------------------


class TestCoreOperations:
    def test_set_get(self):
        s = _store()
        s.set(Belief.SCORE, 12)
        assert s.get(Belief.SCORE) == 12

    def test_get_default(self):
        assert _store().get(Belief.NAME, "anon") == "anon"

    def test_has_ignores_none(self):
        s = _store()
        assert not s.has(Belief.MIDPOINT)
        s.midpoint = Position(1, 1)
        assert s.has(Belief.MIDPOINT)

    def test_unset(self):
        s = _store()
        s.set(Belief.NAME, "alice")
        s.unset(Belief.NAME)
        assert not s.has(Belief.NAME)

    def test_rejects_unknown_keys(self):
        with pytest.raises(TypeError):
            _store().set("position", Position(0, 0))

    def test_snapshot_uses_key_names(self):
        s = _store()
        s.set(Belief.NAME, "alice")
        assert s.snapshot()["name"] == "alice"

    def test_ready_needs_position_index_and_config(self):
        s = _store()
        assert not s.ready
        s.position = Position(0, 0)
        s.set(Belief.INDEX, object())
        assert not s.ready
        s.set(Belief.SERVER_CONFIG, object())
        assert s.ready


class TestSubscriptions:
    def test_callback_fires(self):
        s = _store()
        seen = []
        s.subscribe(Belief.ROLE, lambda k, v: seen.append((k, v)))
        s.role = Role.COURIER
        assert seen == [(Belief.ROLE, Role.COURIER)]

    def test_unsubscribe(self):
        s = _store()
        seen = []
        sub_id = s.subscribe(Belief.ROLE, lambda k, v: seen.append(v))
        s.unsubscribe(sub_id)
        s.role = Role.EXPLORER
        assert seen == []

    def test_bad_callback_does_not_break_set(self):
        s = _store()

        def boom(k, v):
            raise RuntimeError("boom")

        s.subscribe(Belief.SCORE, boom)
        s.set(Belief.SCORE, 1)
        assert s.get(Belief.SCORE) == 1

    def test_unset_notifies_none(self):
        s = _store()
        s.set(Belief.NAME, "x")
        seen = []
        s.subscribe(Belief.NAME, lambda k, v: seen.append(v))
        s.unset(Belief.NAME)
        assert seen == [None]

    def test_concurrent_bookings(self):
        s = _store()

        def book(i):
            s.book_for(f"t{i}", [f"p{i}"])

        threads = [threading.Thread(target=book, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(s.booked_parcel_ids()) == 20

    @pytest.mark.parametrize(
        "key,write",
        [
            (Belief.BOOKED_PARCELS, lambda s: s.book_for("t1", ["p1"])),
            (Belief.TEAMMATE_POSITIONS, lambda s: s.set_teammate_position("t1", Position(1, 1))),
            (Belief.TEAMMATE_INTENTIONS, lambda s: s.set_teammate_intention("t1", "move")),
            (Belief.ROLE, lambda s: s.reset_collaboration()),
            (Belief.AGENTS, lambda s: s.update_agents([], 0.0)),
        ],
    )
    def test_callbacks_run_outside_the_lock(self, key, write):
        s = _store()
        reader_blocked = []

        def on_change(k, v):
            # another thread must be able to read while the callback runs
            reader = threading.Thread(target=s.get, args=(Belief.NAME,))
            reader.start()
            reader.join(timeout=1.0)
            reader_blocked.append(reader.is_alive())

        s.subscribe(key, on_change)
        write(s)
        assert reader_blocked == [False]

    def test_reset_notifies_after_every_write(self):
        s = _store()
        s.role = Role.COURIER
        s.midpoint = Position(2, 2)
        seen = []
        s.subscribe(Belief.ROLE, lambda k, v: seen.append(s.midpoint))
        s.reset_collaboration()
        assert seen == [None]


# ---------------------------------------------------------------------------
# Parcels and agents
# ---------------------------------------------------------------------------


class TestParcelsAndAgents:
    def test_carried_parcels_need_an_id(self):
        s = _store()
        s.parcels = [Parcel("p1", Position(0, 0), 5, carried_by="me")]
        assert s.carried_parcels() == []
        s.set(Belief.ID, "me")
        assert [p.id for p in s.carried_parcels()] == ["p1"]

    def test_booked_union(self):
        s = _store(teammates=["a", "b"])
        s.book_for("a", ["p1", "p2"])
        s.book_for("b", ["p3"])
        assert s.booked_parcel_ids() == {"p1", "p2", "p3"}
        s.book_for("a", [])
        assert s.booked_parcel_ids() == {"p3"}

    def test_agent_history_is_bounded(self):
        s = _store(max_agent_logs=4)
        for t in range(6):
            s.update_agents([AgentInfo("x", "x", Position(t, 0))], float(t))
        history = s.agent_history("x")
        assert len(history) == 4
        assert history[-1].position == Position(5, 0)

    def test_obstacles_exclude_self(self):
        s = _store(teammates=["me", "t1"])
        s.set(Belief.ID, "me")
        s.position = Position(0, 0)
        s.update_agents(
            [AgentInfo("me", "me", Position(0, 0)), AgentInfo("o", "o", Position(2, 2))], 0.0
        )
        s.set_teammate_position("t1", Position(3, 3))
        assert s.obstacles() == {Position(2, 2), Position(3, 3)}

    def test_teammate_at(self):
        s = _store(teammates=["t1"])
        s.set_teammate_position("t1", Position(1, 2))
        assert s.teammate_at(Position(1, 2))
        assert not s.teammate_at(Position(2, 1))

    def test_tile_age(self):
        s = _store()
        assert s.tile_age(Position(0, 0), 10.0) == math.inf
        s.record_visit(Position(0, 0), 4.0)
        assert s.tile_age(Position(0, 0), 10.0) == 6.0


class TestCollaboration:
    def test_reset(self):
        s = _store()
        s.role = Role.EXPLORER
        s.midpoint = Position(1, 1)
        s.collaborating = True
        s.attempting_to_help = True
        s.reset_collaboration()
        assert s.role is None
        assert s.midpoint is None
        assert not s.collaborating
        assert not s.attempting_to_help
