"""PDDL planning through an external solver.

:class:`PddlPlanner` serializes the beliefs into a STRIPS problem (tiles with
directional adjacency facts, the agent, visible and carried parcels),
sends it together with :data:`DOMAIN` to a :class:`Solver`, and maps the
returned steps back onto :class:`~parcelbot.world.Action`. Intention kinds
without a PDDL goal are delegated to the fallback (handler) planner.
"""

from __future__ import annotations

import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from parcelbot.beliefs import BeliefStore
from parcelbot.errors import SolverError
from parcelbot.planning.planner import PlanResult, Planner
from parcelbot.reasoning.intentions import Family, Intention, IntentionKind
from parcelbot.reasoning.rewards import normalize
from parcelbot.world import MOVE_DELTAS, Action, Position

logger = logging.getLogger("ParcelBot.Planner.Pddl")

DOMAIN = """\
(define (domain deliveroo)
  (:requirements :strips)
  (:predicates
    (me ?a) (agent ?a) (parcel ?p) (tile ?t) (delivery ?t)
    (at ?x ?t) (carrying ?a ?p)
    (right ?from ?to) (left ?from ?to) (up ?from ?to) (down ?from ?to))
  (:action moveRight
    :parameters (?a ?from ?to)
    :precondition (and (me ?a) (at ?a ?from) (right ?from ?to))
    :effect (and (at ?a ?to) (not (at ?a ?from))))
  (:action moveLeft
    :parameters (?a ?from ?to)
    :precondition (and (me ?a) (at ?a ?from) (left ?from ?to))
    :effect (and (at ?a ?to) (not (at ?a ?from))))
  (:action moveUp
    :parameters (?a ?from ?to)
    :precondition (and (me ?a) (at ?a ?from) (up ?from ?to))
    :effect (and (at ?a ?to) (not (at ?a ?from))))
  (:action moveDown
    :parameters (?a ?from ?to)
    :precondition (and (me ?a) (at ?a ?from) (down ?from ?to))
    :effect (and (at ?a ?to) (not (at ?a ?from))))
  (:action pickup
    :parameters (?a ?p ?t)
    :precondition (and (me ?a) (parcel ?p) (at ?a ?t) (at ?p ?t))
    :effect (and (carrying ?a ?p) (not (at ?p ?t))))
  (:action putdown
    :parameters (?a ?p ?t)
    :precondition (and (me ?a) (at ?a ?t) (carrying ?a ?p))
    :effect (and (at ?p ?t) (not (carrying ?a ?p)))))
"""

# solver action name (lower-cased) -> atomic action
ACTION_NAMES: Dict[str, Action] = {
    "moveright": Action.MOVE_RIGHT,
    "moveleft": Action.MOVE_LEFT,
    "moveup": Action.MOVE_UP,
    "movedown": Action.MOVE_DOWN,
    "pickup": Action.PICKUP,
    "putdown": Action.PUTDOWN,
}

_ADJACENCY = {
    Action.MOVE_RIGHT: "right",
    Action.MOVE_LEFT: "left",
    Action.MOVE_UP: "up",
    Action.MOVE_DOWN: "down",
}

ME = "me"


@dataclass(frozen=True)
class SolverStep:
    action: str
    args: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> SolverStep:
        """Parse ``"(moveright me t_0_0 t_1_0)"``."""
        parts = text.strip().strip("()").split()
        if not parts:
            raise SolverError(f"Empty plan step {text!r}")
        return cls(parts[0], tuple(parts[1:]))


class Solver(ABC):
    """Interface of an external planner."""

    @abstractmethod
    async def solve(self, domain: str, problem: str) -> List[SolverStep]:
        """Return the plan steps for *problem* in *domain*.

        Raises:
            SolverError: when no usable plan comes back.
        """


class OnlineSolver(Solver):
    """HTTP client for a planning.domains style ``/solve`` endpoint.

    Args:
        url: Full URL of the solve endpoint.
        timeout_s: Request timeout.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        url: str,
        timeout_s: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self._transport = transport

    async def solve(self, domain: str, problem: str) -> List[SolverStep]:
        try:
            client = httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)
            async with client:
                resp = await client.post(self.url, json={"domain": domain, "problem": problem})
                resp.raise_for_status()
                body = resp.json()
        except httpx.HTTPError as exc:
            raise SolverError(f"Solver request failed: {exc}") from exc
        except ValueError as exc:
            raise SolverError(f"Solver returned invalid JSON: {exc}") from exc

        if body.get("status") != "ok":
            raise SolverError(f"Solver error: {body.get('result', body)}")
        result = body.get("result") or {}
        steps = result.get("plan") if isinstance(result, dict) else None
        if steps is None:
            raise SolverError("Solver response has no plan")
        parsed = []
        for step in steps:
            text = (step.get("name") or step.get("action")) if isinstance(step, dict) else step
            parsed.append(SolverStep.parse(str(text)))
        return parsed


# ---------------------------------------------------------------------------
# Problem encoding
# ---------------------------------------------------------------------------


def tile_name(pos: Position) -> str:
    return f"t_{pos.x}_{pos.y}"


def parcel_name(parcel_id: str) -> str:
    return "p_" + re.sub(r"[^A-Za-z0-9_]", "_", parcel_id)


def build_problem(beliefs: BeliefStore, goal: str) -> str:
    """Encode the beliefs as a PDDL problem with *goal* as its goal formula.

    Tiles occupied by other agents are left out, so the solver routes around
    them the same way A* does.
    """
    grid = beliefs.grid
    me = beliefs.position
    blocked = beliefs.obstacles()
    tiles = [t for t in grid.walkable_tiles() if t.position not in blocked]
    present = {t.position for t in tiles}

    objects: List[str] = [ME]
    init: List[str] = [f"(me {ME})", f"(agent {ME})", f"(at {ME} {tile_name(me)})"]
    for tile in tiles:
        name = tile_name(tile.position)
        objects.append(name)
        init.append(f"(tile {name})")
        if tile in grid.delivery_tiles:
            init.append(f"(delivery {name})")
        for action, predicate in _ADJACENCY.items():
            dx, dy = MOVE_DELTAS[action]
            neighbour = Position(tile.x + dx, tile.y + dy)
            if neighbour in present:
                init.append(f"({predicate} {name} {tile_name(neighbour)})")

    my_id = beliefs.agent_id
    for parcel in beliefs.parcels:
        name = parcel_name(parcel.id)
        if my_id is not None and parcel.carried_by == my_id:
            objects.append(name)
            init.append(f"(parcel {name})")
            init.append(f"(carrying {ME} {name})")
        elif parcel.carried_by is None and parcel.position in present:
            objects.append(name)
            init.append(f"(parcel {name})")
            init.append(f"(at {name} {tile_name(parcel.position)})")

    return (
        "(define (problem deliveroo-problem)\n"
        "  (:domain deliveroo)\n"
        f"  (:objects {' '.join(objects)})\n"
        f"  (:init {' '.join(init)})\n"
        f"  (:goal {goal}))\n"
    )


def steps_to_actions(steps: Sequence[SolverStep]) -> List[Action]:
    """Map solver steps onto atomic actions.

    Consecutive pickups (or putdowns) collapse into one, since the
    environment picks up or drops everything on the tile at once.

    Raises:
        SolverError: on an action name outside the shared vocabulary.
    """
    actions: List[Action] = []
    for step in steps:
        action = ACTION_NAMES.get(step.action.lower())
        if action is None:
            raise SolverError(f"Unknown solver action {step.action!r}")
        if action in (Action.PICKUP, Action.PUTDOWN) and actions and actions[-1] is action:
            continue
        actions.append(action)
    return actions


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------

Goal = Optional[Tuple[str, Intention]]
GoalBuilder = Callable[[Intention, BeliefStore], Goal]


class PddlPlanner:
    """Planner backed by an external solver, same interface as :class:`Planner`.

    Example::

        solver = OnlineSolver(settings.solver_url)
        planner = PddlPlanner(solver, fallback=Planner(settings))
        result = await planner.plan(intention, beliefs)
    """

    def __init__(self, solver: Solver, fallback: Planner) -> None:
        self.solver = solver
        self.fallback = fallback
        self._goals: Dict[IntentionKind, GoalBuilder] = {
            IntentionKind.PICKUP: self._pickup_goal,
            IntentionKind.EXPLORER_PICKUP: self._pickup_goal,
            IntentionKind.COURIER_PICKUP: self._pickup_goal,
            IntentionKind.DELIVER: self._deliver_goal,
            IntentionKind.COURIER_DELIVER: self._deliver_goal,
            IntentionKind.MOVE: self._move_goal,
            IntentionKind.EXPLORER_MOVE: self._move_goal,
        }

    async def plan(self, intention: Intention, beliefs: BeliefStore) -> Optional[PlanResult]:
        """Solve *intention* with the external solver.

        Kinds without a PDDL goal go to the fallback planner. Solver errors
        are logged and reported as "no plan".
        """
        if beliefs.position is None or beliefs.grid is None:
            return None
        builder = self._goals.get(intention.kind)
        if builder is None:
            return self.fallback.plan_for(intention, beliefs)
        built = builder(intention, beliefs)
        if built is None:
            return None
        goal, served = built
        problem = build_problem(beliefs, goal)
        try:
            steps = await self.solver.solve(DOMAIN, problem)
            actions = steps_to_actions(steps)
        except SolverError as exc:
            logger.warning("PDDL planning failed for %s: %s", intention.describe(), exc)
            return None
        if served.family is Family.DELIVER and (not actions or actions[-1] is not Action.PUTDOWN):
            actions.append(Action.PUTDOWN)
        return PlanResult(served, actions)

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def _pickup_goal(self, intention: Intention, beliefs: BeliefStore) -> Goal:
        index = beliefs.index
        me = beliefs.position
        settings = self.fallback.settings
        best = None
        best_value = -math.inf
        for parcel in intention.parcels:
            distance = index.distance(me, parcel.position) if index is not None else math.inf
            if not math.isfinite(distance):
                continue
            value = normalize(self.fallback.strategy, parcel.reward, distance, settings.weights)
            if value > best_value:
                best, best_value = parcel, value
        if best is None:
            return None
        goal = f"(carrying {ME} {parcel_name(best.id)})"
        return goal, Intention.pickup([best], intention.role)

    def _deliver_goal(self, intention: Intention, beliefs: BeliefStore) -> Goal:
        carried = beliefs.carried_parcels()
        index = beliefs.index
        if not carried or index is None:
            return None
        found = index.nearest(beliefs.position, beliefs.grid.delivery_tiles)
        if found is None:
            return None
        tile = tile_name(found[0].position)
        facts = " ".join(f"(at {parcel_name(p.id)} {tile})" for p in carried)
        return f"(and {facts})", Intention.deliver(intention.role, target=found[0].position)

    def _move_goal(self, intention: Intention, beliefs: BeliefStore) -> Goal:
        if intention.target is None:
            return None
        return f"(at {ME} {tile_name(intention.target)})", intention
