"""All-pairs shortest paths over a static grid map.

The index is built once per map with a vectorised Floyd–Warshall over the
walkable tiles and is read-only afterwards. Each walkable tile gets a compact
vertex number (row-major over ``(y, x)``); blocked and out-of-map positions
have no vertex and every lookup involving them returns ``inf`` / ``None``.

Paths are reconstructed from a next-hop matrix on first request and memoised.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Dict, List, Optional, Tuple

import numpy as np

from parcelbot.world import GridMap, Position, Tile

logger = logging.getLogger("ParcelBot.Spatial.Index")

_NO_HOP = -1


class MapIndex:
    """Shortest-path distances and paths for one map.

    Example::

        index = build_index(grid)
        index.distance(Position(0, 0), Position(3, 2))   # 5.0
        index.path(Position(0, 0), Position(1, 0))       # [Tile((1, 0))]
    """

    def __init__(
        self,
        grid: GridMap,
        vertices: Dict[Position, int],
        tiles: List[Tile],
        dist: np.ndarray,
        next_hop: np.ndarray,
    ) -> None:
        self.grid = grid
        self._vertices = vertices
        self._tiles = tiles
        self._dist = dist
        self._next = next_hop
        self._paths: Dict[Tuple[int, int], List[Tile]] = {}

    def __len__(self) -> int:
        return len(self._tiles)

    def vertex(self, pos: Position) -> Optional[int]:
        return self._vertices.get(pos)

    def distance(self, a: Position, b: Position) -> float:
        """Shortest hop count from *a* to *b*; ``inf`` when unreachable."""
        i = self._vertices.get(a)
        j = self._vertices.get(b)
        if i is None or j is None:
            return math.inf
        return float(self._dist[i, j])

    def reachable(self, a: Position, b: Position) -> bool:
        return math.isfinite(self.distance(a, b))

    def path(self, a: Position, b: Position) -> Optional[List[Tile]]:
        """Tiles visited walking from *a* to *b*, excluding *a*.

        Returns ``[]`` when ``a == b`` and ``None`` when *b* is unreachable.
        """
        i = self._vertices.get(a)
        j = self._vertices.get(b)
        if i is None or j is None or not math.isfinite(self._dist[i, j]):
            return None
        cached = self._paths.get((i, j))
        if cached is None:
            cached = []
            cur = i
            while cur != j:
                cur = int(self._next[cur, j])
                cached.append(self._tiles[cur])
            self._paths[(i, j)] = cached
        return list(cached)

    def nearest(self, origin: Position, candidates: List[Tile]) -> Optional[Tuple[Tile, float]]:
        """Return the reachable candidate closest to *origin* with its distance."""
        best: Optional[Tuple[Tile, float]] = None
        for tile in candidates:
            d = self.distance(origin, tile.position)
            if not math.isfinite(d):
                continue
            if best is None or d < best[1]:
                best = (tile, d)
        return best


def build_index(grid: GridMap) -> MapIndex:
    """Compute all-pairs shortest paths for *grid*.

    Runs in O(V³) for V walkable tiles; call once per map.
    """
    started = time.monotonic()
    tiles = grid.walkable_tiles()
    vertices = {tile.position: i for i, tile in enumerate(tiles)}
    n = len(tiles)

    dist = np.full((n, n), np.inf)
    next_hop = np.full((n, n), _NO_HOP, dtype=np.int64)
    for i, tile in enumerate(tiles):
        dist[i, i] = 0.0
        next_hop[i, i] = i
        for neighbour in grid.walkable_neighbours(tile.position):
            j = vertices[neighbour]
            dist[i, j] = 1.0
            next_hop[i, j] = j

    for k in range(n):
        through_k = dist[:, k, None] + dist[None, k, :]
        shorter = through_k < dist
        if shorter.any():
            dist = np.where(shorter, through_k, dist)
            next_hop = np.where(shorter, next_hop[:, k, None], next_hop)

    logger.info(
        "Spatial index built: %dx%d map, %d walkable tiles in %.2fs",
        grid.width,
        grid.height,
        n,
        time.monotonic() - started,
    )
    return MapIndex(grid, vertices, tiles, dist, next_hop)
