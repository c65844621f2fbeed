"""Axial hex math: adjacency, distance, rounding and pixel conversion.

All functions operate on pointy-top axial coordinates as defined in
:mod:`hexed.types`. The vectorised helpers take and return numpy arrays so a
renderer can map many screen points to cells in one call.
"""

import math

import numpy as np
from numpy.typing import ArrayLike, NDArray
from pydantic import BaseModel

from .types import OFFSET_DIRECTIONS, Direction, HexCoordinate

SQRT3 = math.sqrt(3.0)


class GridBounds(BaseModel, frozen=True):
    """Rectangular axial bounds of the playable grid."""

    width: int = 20
    height: int = 20
    min_q: int = 0
    min_r: int = 0

    def contains(self, pos: HexCoordinate) -> bool:
        return (
            self.min_q <= pos.q < self.min_q + self.width
            and self.min_r <= pos.r < self.min_r + self.height
        )


def neighbor(pos: HexCoordinate, direction: Direction) -> HexCoordinate:
    return pos.offset(direction)


def neighbors(pos: HexCoordinate) -> list[HexCoordinate]:
    """All six neighbours in Direction order."""
    return [pos.offset(d) for d in Direction]


def neighbors_in_bounds(pos: HexCoordinate, bounds: GridBounds) -> dict[Direction, HexCoordinate]:
    """Neighbours of ``pos`` that lie inside ``bounds``, keyed by direction."""
    result = {}
    for d in Direction:
        candidate = pos.offset(d)
        if bounds.contains(candidate):
            result[d] = candidate
    return result


def direction_to(a: HexCoordinate, b: HexCoordinate) -> Direction | None:
    """Direction leading from ``a`` to ``b``, or None if they are not adjacent.

    This is the only client-side check of move legality; ``a == b`` is not a move.
    """
    return OFFSET_DIRECTIONS.get((b.q - a.q, b.r - a.r))


def is_neighbor(a: HexCoordinate, b: HexCoordinate) -> bool:
    return direction_to(a, b) is not None


def distance(a: HexCoordinate, b: HexCoordinate) -> int:
    """Hex distance via cube coordinates (x=q, z=r, y=-x-z)."""
    x1, z1 = a.q, a.r
    y1 = -x1 - z1
    x2, z2 = b.q, b.r
    y2 = -x2 - z2
    return max(abs(x1 - x2), abs(y1 - y2), abs(z1 - z2))


def cube_round(fq: float, fr: float) -> tuple[int, int, int]:
    """Round fractional axial coordinates to the containing cell.

    Each cube coordinate is rounded independently, then the one with the
    largest rounding error is recomputed from the other two so the result
    satisfies q + r + s == 0 exactly.
    """
    fq, fr = float(fq), float(fr)
    fs = -fq - fr
    q, r, s = int(round(fq)), int(round(fr)), int(round(fs))
    dq, dr, ds = abs(q - fq), abs(r - fr), abs(s - fs)

    if dq > dr and dq > ds:
        q = -r - s
    elif dr > ds:
        r = -q - s
    else:
        s = -q - r
    return q, r, s


def hex_round(fq: float, fr: float) -> HexCoordinate:
    q, r, _ = cube_round(fq, fr)
    return HexCoordinate(q=q, r=r)


def hex_to_pixel(coord: HexCoordinate, size: float) -> tuple[float, float]:
    """Centre of ``coord`` in pixels for a pointy-top layout."""
    x = size * (SQRT3 * coord.q + SQRT3 / 2 * coord.r)
    y = size * (1.5 * coord.r)
    return x, y


def pixel_to_hex(x: float, y: float, size: float) -> HexCoordinate:
    fq = (SQRT3 / 3 * x - y / 3) / size
    fr = (2 / 3 * y) / size
    return hex_round(fq, fr)


def cube_round_array(
    fq: ArrayLike, fr: ArrayLike
) -> tuple[NDArray[np.int64], NDArray[np.int64], NDArray[np.int64]]:
    """Vectorised :func:`cube_round` with the same tie-breaking order."""
    fq = np.asarray(fq, dtype=np.float64)
    fr = np.asarray(fr, dtype=np.float64)
    fs = -fq - fr

    q = np.rint(fq)
    r = np.rint(fr)
    s = np.rint(fs)
    dq = np.abs(q - fq)
    dr = np.abs(r - fr)
    ds = np.abs(s - fs)

    fix_q = (dq > dr) & (dq > ds)
    fix_r = ~fix_q & (dr > ds)
    fix_s = ~fix_q & ~fix_r

    q = np.where(fix_q, -r - s, q)
    r = np.where(fix_r, -q - s, r)
    s = np.where(fix_s, -q - r, s)
    return q.astype(np.int64), r.astype(np.int64), s.astype(np.int64)


def pixels_to_hexes(points: ArrayLike, size: float) -> NDArray[np.int64]:
    """Convert an (N, 2) array of pixel points to an (N, 2) array of (q, r)."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    x = pts[:, 0]
    y = pts[:, 1]
    fq = (SQRT3 / 3 * x - y / 3) / size
    fr = (2 / 3 * y) / size
    q, r, _ = cube_round_array(fq, fr)
    return np.stack([q, r], axis=1)
