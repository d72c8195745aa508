"""Grid-world data model shared by every ParcelBot component.

Coordinates are integer ``(x, y)`` pairs. ``up`` increases ``y``, ``right``
increases ``x``. Tiles come in four kinds (blocked, spawn, delivery, free);
everything except blocked is walkable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple


class TileKind(Enum):
    """Tile type codes as sent by the environment."""

    BLOCKED = 0
    SPAWN = 1
    DELIVERY = 2
    FREE = 3

    @property
    def walkable(self) -> bool:
        return self is not TileKind.BLOCKED


class Direction(Enum):
    """Movement directions understood by the environment gateway."""

    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


class Action(Enum):
    """Atomic actions a plan is made of."""

    MOVE_UP = "moveUp"
    MOVE_DOWN = "moveDown"
    MOVE_LEFT = "moveLeft"
    MOVE_RIGHT = "moveRight"
    PICKUP = "pickup"
    PUTDOWN = "putdown"
    WAIT = "wait"

    @property
    def is_move(self) -> bool:
        return self in MOVE_DELTAS

    @property
    def direction(self) -> Optional[Direction]:
        return _ACTION_DIRECTIONS.get(self)


# (dx, dy) per move action
MOVE_DELTAS: Dict[Action, Tuple[int, int]] = {
    Action.MOVE_UP: (0, 1),
    Action.MOVE_DOWN: (0, -1),
    Action.MOVE_LEFT: (-1, 0),
    Action.MOVE_RIGHT: (1, 0),
}

_ACTION_DIRECTIONS: Dict[Action, Direction] = {
    Action.MOVE_UP: Direction.UP,
    Action.MOVE_DOWN: Direction.DOWN,
    Action.MOVE_LEFT: Direction.LEFT,
    Action.MOVE_RIGHT: Direction.RIGHT,
}


@dataclass(frozen=True, order=True)
class Position:
    """An integer grid coordinate."""

    x: int
    y: int

    def manhattan(self, other: Position) -> int:
        return abs(self.x - other.x) + abs(self.y - other.y)

    def neighbours(self) -> Iterator[Position]:
        """Yield the four orthogonal neighbours (bounds are not checked)."""
        for dx, dy in MOVE_DELTAS.values():
            yield Position(self.x + dx, self.y + dy)

    def step(self, action: Action) -> Position:
        """Return the position reached by *action* (unchanged for non-moves)."""
        dx, dy = MOVE_DELTAS.get(action, (0, 0))
        return Position(self.x + dx, self.y + dy)

    @classmethod
    def rounded(cls, x: float, y: float) -> Position:
        """Build a position from possibly fractional coordinates.

        The environment reports ``x.4``/``x.6`` style values while an agent is
        between tiles.
        """
        return cls(int(round(x)), int(round(y)))

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, d: dict) -> Position:
        return cls.rounded(float(d["x"]), float(d["y"]))


@dataclass(frozen=True)
class Tile:
    position: Position
    kind: TileKind

    @property
    def x(self) -> int:
        return self.position.x

    @property
    def y(self) -> int:
        return self.position.y


class GridMap:
    """Immutable view of a rectangular map.

    Example::

        grid = GridMap.from_rows(["1331", "3003", "3332"])
        grid.kind(Position(0, 2))   # TileKind.SPAWN (top row is y = 2)
    """

    def __init__(self, width: int, height: int, tiles: Iterable[Tile]) -> None:
        self.width = width
        self.height = height
        self._tiles: Dict[Position, Tile] = {}
        for tile in tiles:
            if 0 <= tile.x < width and 0 <= tile.y < height:
                self._tiles[tile.position] = tile
        self.delivery_tiles: List[Tile] = sorted(
            (t for t in self._tiles.values() if t.kind is TileKind.DELIVERY),
            key=lambda t: (t.y, t.x),
        )
        self.spawn_tiles: List[Tile] = sorted(
            (t for t in self._tiles.values() if t.kind is TileKind.SPAWN),
            key=lambda t: (t.y, t.x),
        )

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_environment(cls, width: int, height: int, raw_tiles: Iterable[dict]) -> GridMap:
        """Build from the environment's ``[{x, y, type}]`` tile list.

        Tiles missing from the list are treated as blocked.
        """
        tiles = []
        for raw in raw_tiles:
            kind = TileKind(int(raw.get("type", TileKind.FREE.value)))
            tiles.append(Tile(Position(int(raw["x"]), int(raw["y"])), kind))
        return cls(width, height, tiles)

    @classmethod
    def from_rows(cls, rows: List[str]) -> GridMap:
        """Build from digit strings, first string being the top row."""
        height = len(rows)
        width = max((len(r) for r in rows), default=0)
        tiles = []
        for row_index, row in enumerate(rows):
            y = height - 1 - row_index
            for x, ch in enumerate(row):
                tiles.append(Tile(Position(x, y), TileKind(int(ch))))
        return cls(width, height, tiles)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __contains__(self, pos: object) -> bool:
        return pos in self._tiles

    def tile(self, pos: Position) -> Optional[Tile]:
        return self._tiles.get(pos)

    def kind(self, pos: Position) -> TileKind:
        tile = self._tiles.get(pos)
        return tile.kind if tile is not None else TileKind.BLOCKED

    def is_walkable(self, pos: Position) -> bool:
        return self.kind(pos).walkable

    def walkable_tiles(self) -> List[Tile]:
        """All non-blocked tiles ordered by ``(y, x)``."""
        return sorted(
            (t for t in self._tiles.values() if t.kind.walkable),
            key=lambda t: (t.y, t.x),
        )

    def walkable_neighbours(self, pos: Position) -> List[Position]:
        return [n for n in pos.neighbours() if self.is_walkable(n)]

    @property
    def size(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class Parcel:
    """A parcel as last sensed. ``carried_by`` is an agent id or None."""

    id: str
    position: Position
    reward: float
    carried_by: Optional[str] = None

    @property
    def is_free(self) -> bool:
        return self.carried_by is None

    @classmethod
    def from_dict(cls, d: dict) -> Parcel:
        return cls(
            id=str(d["id"]),
            position=Position.rounded(float(d["x"]), float(d["y"])),
            reward=float(d.get("reward", 0.0)),
            carried_by=d.get("carriedBy") or None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "x": self.position.x,
            "y": self.position.y,
            "reward": self.reward,
            "carriedBy": self.carried_by,
        }


@dataclass(frozen=True)
class AgentInfo:
    """Another agent (or ourselves) as reported by the environment."""

    id: str
    name: str
    position: Position
    score: float = 0.0

    @classmethod
    def from_dict(cls, d: dict) -> AgentInfo:
        return cls(
            id=str(d["id"]),
            name=str(d.get("name", "")),
            position=Position.rounded(float(d["x"]), float(d["y"])),
            score=float(d.get("score", 0.0)),
        )


@dataclass(frozen=True)
class AgentLog:
    """One movement-history sample for an observed agent."""

    position: Position
    timestamp: float = field(compare=False)
