"""Diffraction path search.

Two searches are provided:

* :func:`compute_side_hull` finds the shortest path from one point to another
  that goes around the buildings standing above the direct line, on one side
  as seen from above.  Its corners are vertical-edge diffraction points.
* :func:`compute_hedge_diffraction` finds the path over the roofs and wall
  tops crossed by a cut profile, in the vertical plane of the direct line.
  Its corners are horizontal-edge diffraction points.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

import shapely
from shapely.geometry import LineString, MultiPoint
from shapely.geometry.polygon import orient

from .geometry import EPSILON, Vec3, as_vec3, cross2d, dist2d, project_param
from .paths import PathPoint, PointRole, PropagationPath
from .scene.api import Building, IntersectionType, ObstructionScene
from .scene.index import DEFAULT_WIDE_ANGLE_MAX, DEFAULT_WIDE_ANGLE_MIN
from .scene.profile import CutProfile

logger = logging.getLogger(__name__)

# A side path longer than this many times the direct distance is dropped.
MAX_RATIO_HULL_DIRECT_PATH = 4.0
MAX_HULL_ITERATIONS = 500

_XY = Tuple[float, float]


class _CutPlane:
    """Vertical plane through the direct line, tilted along it."""

    def __init__(self, p1: Vec3, p2: Vec3) -> None:
        self.p1 = p1
        self.p2 = p2

    def z_at(self, x: float, y: float) -> float:
        t = project_param((x, y), self.p1, self.p2)
        return self.p1[2] + (self.p2[2] - self.p1[2]) * t


def _crossed_buildings(
    scene: ObstructionScene, a: Vec3, b: Vec3, plane: _CutPlane, skip: Set[int]
) -> List[Tuple[Building, bool]]:
    """Buildings crossed by ``ab`` over a positive length, flagged when taller than the plane."""
    out = []
    segment = LineString([a[:2], b[:2]])
    for building in scene.buildings_on_path(a, b):
        if building.id in skip:
            continue
        crossing = segment.intersection(building.polygon)
        if crossing.is_empty or crossing.length <= EPSILON:
            continue
        coords = shapely.get_coordinates(crossing)
        above = building.roof_z > min(plane.z_at(x, y) for x, y in coords) + EPSILON
        out.append((building, above))
    return out


def _blocking_buildings(
    scene: ObstructionScene, a: Vec3, b: Vec3, plane: _CutPlane, skip: Set[int]
) -> List[Building]:
    return [b for b, above in _crossed_buildings(scene, a, b, plane, skip) if above]


def _index_of(ring: Sequence[_XY], p: Vec3) -> int:
    for i, c in enumerate(ring):
        if abs(c[0] - p[0]) <= EPSILON and abs(c[1] - p[1]) <= EPSILON:
            return i
    return -1


def _interpolate_z(chain: List[Tuple[Vec3, int]]) -> List[Tuple[Vec3, int]]:
    """Spread the end point elevations linearly along the unfolded chain."""
    a = chain[0][0]
    b = chain[-1][0]
    cum = [0.0]
    for (p, _), (q, _) in zip(chain, chain[1:]):
        cum.append(cum[-1] + dist2d(p, q))
    total = cum[-1]
    out = [chain[0]]
    for (p, bid), d in zip(chain[1:-1], cum[1:-1]):
        out.append(((p[0], p[1], a[2] + (b[2] - a[2]) * d / total), bid))
    out.append(chain[-1])
    return out


def _clockwise_side(scene: ObstructionScene, a: Vec3, b: Vec3) -> List[Tuple[Vec3, int]]:
    """Clockwise side of the obstacle hull from ``a`` to ``b``, with building ids."""
    direct = dist2d(a, b)
    if direct < EPSILON:
        return []
    plane = _CutPlane(a, b)
    points: Dict[_XY, Tuple[Vec3, int]] = {(a[0], a[1]): (a, -1), (b[0], b[1]): (b, -1)}
    included: Set[int] = set()

    def include(buildings: List[Building]) -> None:
        for building in buildings:
            included.add(building.id)
            corners = scene.get_wide_angle_points(
                building.id, DEFAULT_WIDE_ANGLE_MIN, DEFAULT_WIDE_ANGLE_MAX
            )
            for c in corners[:-1]:
                points.setdefault((c[0], c[1]), (c, building.id))

    crossed = _crossed_buildings(scene, a, b, plane, included)
    first = [building for building, above in crossed if above]
    if not first:
        if crossed:
            # the cut plane passes over every building in the way
            logger.debug("side hull %s -> %s rejected, plane above the buildings", a, b)
            return []
        return [(a, -1), (b, -1)]
    include(first)
    free: Set[Tuple[_XY, _XY]] = set()

    for _ in range(MAX_HULL_ITERATIONS):
        hull = MultiPoint(list(points)).convex_hull
        if hull.geom_type != "Polygon":
            return []
        if hull.length / direct > MAX_RATIO_HULL_DIRECT_PATH:
            logger.debug("side hull %s -> %s too long, dropped", a, b)
            return []
        ring = [tuple(c) for c in orient(hull, sign=-1.0).exterior.coords[:-1]]
        i1 = _index_of(ring, a)
        if i1 < 0:
            # a lies inside the hull, e.g. in a concave pocket of a building
            return []
        ring = ring[i1:] + ring[:i1]
        i2 = _index_of(ring, b)
        if i2 < 0:
            return []
        side = ring[: i2 + 1]
        grown = False
        for u, v in zip(side, side[1:]):
            if (u, v) in free:
                continue
            hits = _blocking_buildings(scene, points[u][0], points[v][0], plane, included)
            if hits:
                include(hits)
                grown = True
                break
            free.add((u, v))
        if not grown:
            return _interpolate_z([points[c] for c in side])
    logger.warning("side hull %s -> %s did not converge", a, b)
    return []


def _side_chain(
    clockwise: bool, p1: Sequence[float], p2: Sequence[float], scene: ObstructionScene
) -> List[Tuple[Vec3, int]]:
    a = as_vec3(p1)
    b = as_vec3(p2)
    if clockwise:
        return _clockwise_side(scene, a, b)
    # the counter-clockwise side from a is the clockwise side from b
    return list(reversed(_clockwise_side(scene, b, a)))


def compute_side_hull(
    clockwise: bool, p1: Sequence[float], p2: Sequence[float], scene: ObstructionScene
) -> List[Vec3]:
    """Shortest path from ``p1`` to ``p2`` around the blocking buildings.

    Only buildings whose roof is above the straight line ``p1 -> p2`` block.
    The path follows the convex hull of ``p1``, ``p2`` and the convex corners
    of the blocking buildings, on the clockwise or counter-clockwise side as
    seen from above; buildings crossed by the hull side are added until the
    side is free.  Returns ``[p1, corners..., p2]``, ``[p1, p2]`` when nothing
    blocks, and an empty list when no side path exists (``p1`` or ``p2``
    enclosed by the hull, e.g. in a concave pocket, a detour longer than
    ``MAX_RATIO_HULL_DIRECT_PATH`` times the direct distance, or a direct
    line crossing buildings that all stand below it).

    ``compute_side_hull(False, p2, p1)`` is the exact reverse of
    ``compute_side_hull(True, p1, p2)``.
    """
    return [p for p, _ in _side_chain(clockwise, p1, p2, scene)]


def compute_vedge_diffraction(
    clockwise: bool, src: Sequence[float], rcv: Sequence[float], scene: ObstructionScene
) -> Optional[PropagationPath]:
    """Path around building corners on one side, or ``None`` if there is none."""
    chain = _side_chain(clockwise, src, rcv, scene)
    if len(chain) < 3:
        return None
    points = [PathPoint(chain[0][0], PointRole.SOURCE)]
    for p, bid in chain[1:-1]:
        points.append(PathPoint(p, PointRole.DIFFRACTION_V, building_id=bid))
    points.append(PathPoint(chain[-1][0], PointRole.RECEIVER))
    return PropagationPath(points)


def _upper_hull(samples: List[Tuple[float, float, int]]) -> List[int]:
    """Indices of the upper convex hull of ``(d, z, index)`` sorted by ``d``."""
    hull: List[Tuple[float, float, int]] = []
    for s in samples:
        while len(hull) >= 2:
            o, a = hull[-2], hull[-1]
            scale = max(1.0, abs(s[0] - o[0]))
            if cross2d(o, a, s) >= -EPSILON * scale:
                hull.pop()
            else:
                break
        hull.append(s)
    return [h[2] for h in hull]


def compute_hedge_diffraction(profile: CutProfile) -> Optional[PropagationPath]:
    """Path over the horizontal edges crossed by ``profile``.

    The diffraction points are the vertices of the upper convex hull, in the
    vertical plane of the profile, of the source, the receiver, the building
    and wall tops and the ground.  Returns ``None`` when the direct line is
    not obstructed.
    """
    if len(profile) < 2:
        return None
    length = profile.length
    samples: List[Tuple[float, float, int]] = [(0.0, profile.source.position[2], 0)]
    inner = []
    for i, p in enumerate(profile.points[1:-1], start=1):
        if not EPSILON < p.distance < length - EPSILON:
            continue
        if p.type in (IntersectionType.BUILDING, IntersectionType.WALL):
            inner.append((p.distance, p.position[2], i))
        else:
            inner.append((p.distance, p.ground_z, i))
    inner.sort(key=lambda s: (s[0], s[1]))
    samples.extend(inner)
    samples.append((length, profile.receiver.position[2], len(profile) - 1))
    hull = _upper_hull(samples)
    if len(hull) <= 2:
        return None
    points = [PathPoint(profile.source.position, PointRole.SOURCE)]
    for i in hull[1:-1]:
        p = profile.points[i]
        if p.type in (IntersectionType.BUILDING, IntersectionType.WALL):
            pos = p.position
        else:
            pos = (p.position[0], p.position[1], p.ground_z)
        points.append(PathPoint(pos, PointRole.DIFFRACTION_H, p.building_id, p.wall_id))
    points.append(PathPoint(profile.receiver.position, PointRole.RECEIVER))
    return PropagationPath(points)
