"""Vertical cross-sections of the scene along a straight segment."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from shapely.geometry import LineString, Point
from shapely.strtree import STRtree

from ..geometry import EPSILON, Vec3, as_vec3, dist2d, lerp, ring_intersections, segment_intersection
from .api import Building, GroundEffect, IntersectionType, ProfilePoint, Wall
from .topography import TopographySurface

logger = logging.getLogger(__name__)

# Order of points sharing the same distance along the cut.
_TYPE_ORDER = {
    IntersectionType.SOURCE: 0,
    IntersectionType.TOPOGRAPHY: 1,
    IntersectionType.GROUND_EFFECT: 2,
    IntersectionType.BUILDING: 3,
    IntersectionType.WALL: 4,
    IntersectionType.RECEIVER: 5,
}


def _run_bounds(points: Sequence[ProfilePoint]) -> List[ProfilePoint]:
    if len(points) < 2:
        return list(points) * 2
    inner = [p for p in points[1:-1] if p.type == IntersectionType.GROUND_EFFECT]
    return [points[0], *inner, points[-1]]


@dataclass
class CutProfile:
    """Ordered cut of the scene from ``source`` to ``receiver``.

    ``points`` are sorted by horizontal distance from the first end point,
    which is always of type ``SOURCE``; the last one is of type ``RECEIVER``
    (a zero-length cut holds a single ``SOURCE`` point).  ``run_g`` holds the
    ground factor between each pair of consecutive ground-effect boundaries,
    ``None`` outside every zone.
    """

    points: List[ProfilePoint] = field(default_factory=list)
    run_g: List[Optional[float]] = field(default_factory=list, repr=False)

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self) -> Iterator[ProfilePoint]:
        return iter(self.points)

    @property
    def source(self) -> ProfilePoint:
        return self.points[0]

    @property
    def receiver(self) -> ProfilePoint:
        return self.points[-1]

    @property
    def length(self) -> float:
        return self.receiver.distance if self.points else 0.0

    def line_z(self, distance: float) -> float:
        """Elevation of the straight source-receiver line at ``distance``."""
        length = self.length
        zs, zr = self.source.position[2], self.receiver.position[2]
        if length < EPSILON:
            return zs
        return zs + (zr - zs) * distance / length

    def obstacles(self) -> List[ProfilePoint]:
        return [
            p
            for p in self.points
            if p.type in (IntersectionType.BUILDING, IntersectionType.WALL)
        ]

    def ground_points(self) -> List[Tuple[float, float]]:
        """``(distance, ground z)`` vertices of the ground line, one per distance."""
        out: List[Tuple[float, float]] = []
        for p in self.points:
            if out and p.distance - out[-1][0] < EPSILON:
                continue
            out.append((p.distance, p.ground_z))
        return out

    def ground_segments(self, default_g: float) -> List[Tuple[float, float, float]]:
        """Split the cut into ``(start, end, G)`` runs of constant ground factor.

        The G of a run is the one of the topmost zone covering its middle,
        ``default_g`` outside every zone.
        """
        runs: List[Tuple[float, float, float]] = []
        bounds = _run_bounds(self.points)
        for a, b, g in zip(bounds[:-1], bounds[1:], self.run_g):
            if b.distance - a.distance < EPSILON:
                continue
            g = default_g if g is None else g
            if runs and runs[-1][2] == g:
                runs[-1] = (runs[-1][0], b.distance, g)
            else:
                runs.append((a.distance, b.distance, g))
        return runs

    def g_path(self, default_g: float) -> float:
        """Length weighted mean ground factor along the cut."""
        runs = self.ground_segments(default_g)
        total = sum(e - s for s, e, _ in runs)
        if total < EPSILON:
            g = self.source.g if self.points else None
            return default_g if g is None else g
        return sum((e - s) * g for s, e, g in runs) / total

    def is_free_field(self) -> bool:
        """``True`` when no obstacle top nor the ground rises above the line."""
        for p in self.points[1:-1]:
            z_line = self.line_z(p.distance)
            if p.type in (IntersectionType.BUILDING, IntersectionType.WALL):
                if p.position[2] > z_line + EPSILON:
                    return False
            elif p.ground_z > z_line + EPSILON:
                return False
        return True

    def reversed(self) -> "CutProfile":
        """Return the same cut seen from the receiver."""
        length = self.length
        swap = {
            IntersectionType.SOURCE: IntersectionType.RECEIVER,
            IntersectionType.RECEIVER: IntersectionType.SOURCE,
        }
        if len(self.points) == 1:
            return CutProfile(list(self.points), list(self.run_g))
        pts = [
            replace(p, distance=max(0.0, length - p.distance), type=swap.get(p.type, p.type))
            for p in reversed(self.points)
        ]
        return CutProfile(pts, list(reversed(self.run_g)))


class ProfileCutter:
    """Cuts a frozen scene along segments.

    Built by :meth:`SceneIndex.finish_feeding` with the scene's frozen
    content and its spatial trees, whose item indices are positions in
    ``buildings``, ``walls`` and ``zones``; not meant to be used directly.
    """

    def __init__(
        self,
        buildings: Sequence[Building],
        building_walls: Dict[int, List[int]],
        walls: Sequence[Wall],
        zones: Sequence[GroundEffect],
        topography: TopographySurface,
        building_tree: Optional[STRtree],
        wall_tree: Optional[STRtree],
        zone_tree: Optional[STRtree],
    ) -> None:
        self.buildings = list(buildings)
        self.building_walls = building_walls
        self.walls = list(walls)
        self.zones = list(zones)
        self.topography = topography
        self._building_tree = building_tree
        self._wall_tree = wall_tree
        self._zone_tree = zone_tree

    def g_at(self, x: float, y: float) -> Optional[float]:
        """Ground factor of the topmost (last added) zone covering ``(x, y)``."""
        if self._zone_tree is None:
            return None
        idx = self._zone_tree.query(Point(x, y), predicate="intersects")
        if len(idx) == 0:
            return None
        return self.zones[int(np.max(idx))].g

    def get_profile(self, p1: Sequence[float], p2: Sequence[float]) -> CutProfile:
        a = as_vec3(p1)
        b = as_vec3(p2)
        # always cut in the same direction so that swapping the end points
        # gives the exact reverse
        if (b[0], b[1]) < (a[0], a[1]):
            return self._cut(b, a).reversed()
        return self._cut(a, b)

    def _point(
        self,
        a: Vec3,
        b: Vec3,
        t: float,
        kind: IntersectionType,
        z: Optional[float] = None,
        building_id: int = -1,
        wall_id: int = -1,
        ground_z: Optional[float] = None,
    ) -> ProfilePoint:
        pos = lerp(a, b, t)
        gz = self.topography.z(pos[0], pos[1]) if ground_z is None else ground_z
        return ProfilePoint(
            position=(pos[0], pos[1], gz if z is None else z),
            distance=t * dist2d(a, b),
            type=kind,
            ground_z=gz,
            g=self.g_at(pos[0], pos[1]),
            building_id=building_id,
            wall_id=wall_id,
        )

    def _cut(self, a: Vec3, b: Vec3) -> CutProfile:
        length = dist2d(a, b)
        start = self._point(a, b, 0.0, IntersectionType.SOURCE, z=a[2])
        if length < EPSILON:
            return CutProfile([start], [start.g])
        end = replace(
            self._point(b, a, 0.0, IntersectionType.RECEIVER, z=b[2]), distance=length
        )
        line = LineString([a[:2], b[:2]])
        inner: List[ProfilePoint] = []

        for t, z in self.topography.crossings(a, b):
            if EPSILON < t * length < length - EPSILON:
                inner.append(self._point(a, b, t, IntersectionType.TOPOGRAPHY, ground_z=z))

        if self._building_tree is not None:
            for i in self._building_tree.query(line, predicate="intersects"):
                building = self.buildings[int(i)]
                wall_ids = self.building_walls[building.id]
                # walls are numbered along the exterior ring, then each courtyard
                offset = 0
                for ring in [building.polygon.exterior, *building.polygon.interiors]:
                    coords = np.asarray(ring.coords)
                    ts, edges, _ = ring_intersections(a, b, coords)
                    for t, e in zip(ts, edges):
                        inner.append(
                            self._point(
                                a,
                                b,
                                float(t),
                                IntersectionType.BUILDING,
                                z=building.roof_z,
                                building_id=building.id,
                                wall_id=wall_ids[offset + int(e)],
                            )
                        )
                    offset += len(coords) - 1

        if self._wall_tree is not None:
            for i in self._wall_tree.query(line, predicate="intersects"):
                wall = self.walls[int(i)]
                if wall.building_id >= 0:
                    continue
                hit = segment_intersection(a, b, wall.p0, wall.p1)
                if hit is None:
                    continue
                t, u = hit
                inner.append(
                    self._point(a, b, t, IntersectionType.WALL, z=wall.top_z(u), wall_id=wall.id)
                )

        if self._zone_tree is not None:
            for i in self._zone_tree.query(line, predicate="intersects"):
                zone = self.zones[int(i)]
                for ring in [zone.polygon.exterior, *zone.polygon.interiors]:
                    ts, _, _ = ring_intersections(a, b, np.asarray(ring.coords))
                    for t in ts:
                        if EPSILON < t * length < length - EPSILON:
                            inner.append(
                                self._point(a, b, float(t), IntersectionType.GROUND_EFFECT)
                            )

        inner.sort(key=lambda p: (p.distance, _TYPE_ORDER[p.type], p.building_id, p.wall_id))
        points = [start]
        for p in inner:
            last = points[-1]
            if (
                p.type in (IntersectionType.TOPOGRAPHY, IntersectionType.GROUND_EFFECT)
                and last.type == p.type
                and p.distance - last.distance < EPSILON
            ):
                continue
            points.append(p)
        points.append(end)

        run_g: List[Optional[float]] = []
        bounds = _run_bounds(points)
        for p, q in zip(bounds[:-1], bounds[1:]):
            mid = lerp(a, b, 0.5 * (p.distance + q.distance) / length)
            run_g.append(self.g_at(mid[0], mid[1]))

        logger.debug("cut profile of %d points over %.2f m", len(points), length)
        return CutProfile(points, run_g)
