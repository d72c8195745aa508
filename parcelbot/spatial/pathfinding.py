"""A* search around dynamic obstacles and path/action conversion."""

from __future__ import annotations

import heapq
import itertools
from typing import Dict, Iterable, List, Optional, Sequence, Set

from parcelbot.errors import GridModelError
from parcelbot.world import MOVE_DELTAS, Action, GridMap, Position, Tile

_DELTA_ACTIONS = {delta: action for action, delta in MOVE_DELTAS.items()}


def find_path(
    grid: GridMap,
    start: Position,
    goal: Position,
    obstacles: Iterable[Position] = (),
) -> Optional[List[Tile]]:
    """Shortest 4-connected path from *start* to *goal*.

    Obstacle positions are treated as blocked, except *start* itself (the
    agent stands there). Uses a Manhattan heuristic, which is admissible on
    a unit-cost grid, so the result is optimal.

    Args:
        grid: Static map.
        start: Current position.
        goal: Target position.
        obstacles: Transiently occupied tiles (other agents).

    Returns:
        Tiles after *start* up to and including *goal*; ``[]`` if
        ``start == goal``; ``None`` if no path exists.
    """
    if start == goal:
        return []
    blocked: Set[Position] = set(obstacles)
    blocked.discard(start)
    if not grid.is_walkable(start) or not grid.is_walkable(goal) or goal in blocked:
        return None

    counter = itertools.count()
    open_heap = [(start.manhattan(goal), 0, next(counter), start)]
    came_from: Dict[Position, Position] = {}
    g_score: Dict[Position, int] = {start: 0}

    while open_heap:
        _, g, _, current = heapq.heappop(open_heap)
        if current == goal:
            return _reconstruct(grid, came_from, current)
        if g > g_score.get(current, g):
            continue
        for neighbour in grid.walkable_neighbours(current):
            if neighbour in blocked:
                continue
            tentative = g + 1
            if tentative < g_score.get(neighbour, tentative + 1):
                came_from[neighbour] = current
                g_score[neighbour] = tentative
                heapq.heappush(
                    open_heap,
                    (tentative + neighbour.manhattan(goal), tentative, next(counter), neighbour),
                )
    return None


def _reconstruct(
    grid: GridMap, came_from: Dict[Position, Position], current: Position
) -> List[Tile]:
    steps = [current]
    while current in came_from:
        current = came_from[current]
        steps.append(current)
    steps.pop()  # start tile
    steps.reverse()
    return [grid.tile(p) for p in steps]


def path_to_actions(start: Position, path: Sequence[Tile]) -> List[Action]:
    """Translate a tile path into move actions.

    Raises:
        GridModelError: if two consecutive positions are not 4-neighbours.
    """
    actions: List[Action] = []
    previous = start
    for tile in path:
        delta = (tile.x - previous.x, tile.y - previous.y)
        action = _DELTA_ACTIONS.get(delta)
        if action is None:
            raise GridModelError(f"Non-unit step from {previous} to {tile.position}")
        actions.append(action)
        previous = tile.position
    return actions


def action_target(position: Position, action: Action) -> Position:
    """Tile a move action would enter from *position*."""
    return position.step(action)
