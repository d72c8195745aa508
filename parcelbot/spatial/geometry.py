"""Derived spatial queries built on top of :class:`MapIndex`."""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Tuple

from parcelbot.spatial.index import MapIndex
from parcelbot.world import Position, Tile, TileKind


def within_observation(origin: Position, other: Position, distance: float) -> bool:
    """True when *other* is inside the sensing range of an agent at *origin*."""
    return origin.manhattan(other) < distance


def nearest_delivery(index: MapIndex, origin: Position) -> Optional[Tuple[Tile, float]]:
    return index.nearest(origin, index.grid.delivery_tiles)


def can_reach(index: MapIndex, origin: Position, kind: TileKind) -> bool:
    tiles = index.grid.delivery_tiles if kind is TileKind.DELIVERY else index.grid.spawn_tiles
    return index.nearest(origin, tiles) is not None


def fallback_tile(index: MapIndex, origin: Position, min_distance: int) -> Optional[Tile]:
    """Nearest delivery tile, else spawn tile, at least *min_distance* away."""
    for tiles in (index.grid.delivery_tiles, index.grid.spawn_tiles):
        best: Optional[Tuple[Tile, float]] = None
        for tile in tiles:
            d = index.distance(origin, tile.position)
            if not math.isfinite(d) or d < min_distance:
                continue
            if best is None or d < best[1]:
                best = (tile, d)
        if best is not None:
            return best[0]
    return None


def adjacent_tiles(index: MapIndex, target: Position) -> List[Tile]:
    grid = index.grid
    return [grid.tile(p) for p in grid.walkable_neighbours(target)]


def nearest_adjacent(index: MapIndex, target: Position, origin: Position) -> Optional[Tile]:
    """Reachable tile next to *target* that is closest to *origin*."""
    found = index.nearest(origin, adjacent_tiles(index, target))
    return found[0] if found is not None else None


def spawn_clearance(index: MapIndex, pos: Position) -> float:
    """Hop distance from *pos* to the closest spawn tile (``inf`` if none)."""
    found = index.nearest(pos, index.grid.spawn_tiles)
    return found[1] if found is not None else math.inf


def compute_midpoint(index: MapIndex, a: Position, b: Position) -> Optional[Position]:
    """Pick a handoff tile for two collaborating agents.

    Candidates are non-spawn walkable tiles reachable from both agents that
    have at least one walkable neighbour to drop parcels on. Ranked by total
    travel ``d(a, m) + d(b, m)``, then by how evenly that travel is split,
    then by distance from spawn tiles (further is better).
    """
    best_key = None
    best: Optional[Position] = None
    for tile in _handoff_candidates(index):
        da = index.distance(a, tile.position)
        db = index.distance(b, tile.position)
        if not (math.isfinite(da) and math.isfinite(db)):
            continue
        key = (da + db, abs(da - db), -min(spawn_clearance(index, tile.position), 1e9))
        if best_key is None or key < best_key:
            best_key = key
            best = tile.position
    return best


def _handoff_candidates(index: MapIndex) -> Iterable[Tile]:
    grid = index.grid
    for tile in grid.walkable_tiles():
        if tile.kind is TileKind.SPAWN:
            continue
        if grid.walkable_neighbours(tile.position):
            yield tile
