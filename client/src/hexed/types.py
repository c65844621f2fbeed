"""Core types for the hex grid client."""

from enum import IntEnum

from pydantic import BaseModel


class Direction(IntEnum):
    """6-direction hex movement enum matching the ledger's Direction ordinals."""

    EAST = 0
    NORTHEAST = 1
    NORTHWEST = 2
    WEST = 3
    SOUTHWEST = 4
    SOUTHEAST = 5

    @property
    def label(self) -> str:
        """Display name as used by the ledger ABI, e.g. ``NorthEast``."""
        return _DIRECTION_LABELS[self]


_DIRECTION_LABELS: dict[Direction, str] = {
    Direction.EAST: "East",
    Direction.NORTHEAST: "NorthEast",
    Direction.NORTHWEST: "NorthWest",
    Direction.WEST: "West",
    Direction.SOUTHWEST: "SouthWest",
    Direction.SOUTHEAST: "SouthEast",
}


# Axial offsets for a pointy-top grid
# Coordinate system: +q is East, +r is South-East
DIRECTION_DELTAS: dict[Direction, tuple[int, int]] = {
    Direction.EAST: (1, 0),
    Direction.NORTHEAST: (1, -1),
    Direction.NORTHWEST: (0, -1),
    Direction.WEST: (-1, 0),
    Direction.SOUTHWEST: (-1, 1),
    Direction.SOUTHEAST: (0, 1),
}

# Inverse lookup: offset -> direction
OFFSET_DIRECTIONS: dict[tuple[int, int], Direction] = {
    delta: direction for direction, delta in DIRECTION_DELTAS.items()
}

if len(OFFSET_DIRECTIONS) != len(Direction) or set(DIRECTION_DELTAS) != set(Direction):
    raise RuntimeError("Direction offsets must map one-to-one onto directions")


class HexCoordinate(BaseModel, frozen=True):
    """Immutable axial hex coordinate."""

    q: int
    r: int

    @property
    def s(self) -> int:
        """Third cube coordinate, so that q + r + s == 0."""
        return -self.q - self.r

    def __add__(self, other: "HexCoordinate") -> "HexCoordinate":
        return HexCoordinate(q=self.q + other.q, r=self.r + other.r)

    def offset(self, direction: Direction) -> "HexCoordinate":
        """Return the neighbouring coordinate in ``direction``."""
        dq, dr = DIRECTION_DELTAS[direction]
        return HexCoordinate(q=self.q + dq, r=self.r + dr)

    def __hash__(self) -> int:
        return hash((self.q, self.r))

    def __str__(self) -> str:
        return f"({self.q}, {self.r})"

    def __repr__(self) -> str:
        return f"HexCoordinate(q={self.q}, r={self.r})"
