"""Spatial index of the propagation scene.

The index is fed with buildings, walls, topography and ground-effect zones,
then frozen with :meth:`SceneIndex.finish_feeding`.  Once frozen it is
read-only and can be shared by any number of worker threads.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

import numpy as np
from shapely.geometry import LineString, Point, Polygon, box
from shapely.geometry.base import BaseGeometry
from shapely.strtree import STRtree

from ..errors import GeometryError, SceneFrozenError, SceneNotReadyError
from ..geometry import EPSILON, Vec3, as_vec3
from .api import Building, Envelope, GroundEffect, Wall
from .ground import GroundTypeDB, default_ground_types
from .profile import CutProfile, ProfileCutter
from .topography import TopographySurface

logger = logging.getLogger(__name__)

# Angular margin of the default convex-corner window: corners whose
# free-field angle is within WIDE_ANGLE_EPSILON of flat (pi) or of a full
# turn (2 pi) are treated as collinear or degenerate.
WIDE_ANGLE_EPSILON = math.pi / 16
DEFAULT_WIDE_ANGLE_MIN = math.pi + WIDE_ANGLE_EPSILON
DEFAULT_WIDE_ANGLE_MAX = 2 * math.pi - WIDE_ANGLE_EPSILON
# Corners are moved this far outwards so that a path touching them does not
# intersect the building itself.
WIDE_ANGLE_TRANSLATION_EPSILON = 0.01


@dataclass
class RangeResult:
    """Scene objects whose bounds intersect a query envelope."""

    buildings: List[Building] = field(default_factory=list)
    walls: List[Wall] = field(default_factory=list)
    ground_effects: List[GroundEffect] = field(default_factory=list)


def _as_polygon(geom: Any) -> Polygon:
    if isinstance(geom, BaseGeometry):
        if geom.geom_type == "MultiPolygon" and len(geom.geoms) == 1:
            geom = geom.geoms[0]
        if geom.geom_type != "Polygon":
            raise GeometryError(f"expected a polygon, got {geom.geom_type}")
        poly = geom
    else:
        try:
            poly = Polygon(geom)
        except (TypeError, ValueError) as exc:
            raise GeometryError(f"cannot build a polygon from {geom!r}") from exc
    if poly.is_empty or poly.area <= EPSILON:
        raise GeometryError("empty or zero-area polygon")
    if not poly.is_valid:
        raise GeometryError("self-intersecting polygon")
    return poly


def _as_line(geom: Any) -> List[Vec3]:
    if isinstance(geom, BaseGeometry):
        if geom.geom_type != "LineString":
            raise GeometryError(f"expected a line, got {geom.geom_type}")
        coords = list(geom.coords)
    else:
        try:
            coords = [tuple(c) for c in geom]
        except TypeError as exc:
            raise GeometryError(f"cannot build a line from {geom!r}") from exc
        if any(len(c) < 2 for c in coords):
            raise GeometryError("line coordinates need at least x and y")
    pts = [as_vec3(c) for c in coords]
    if len(pts) < 2:
        raise GeometryError("a line needs at least two points")
    return pts


def _clean_ring(coords: Sequence[Sequence[float]], ccw: bool = True) -> List[Tuple[float, float]]:
    """Ring vertices in the requested winding, without repeated vertices nor closure."""
    ring: List[Tuple[float, float]] = []
    for c in list(coords)[:-1]:
        p = (float(c[0]), float(c[1]))
        if ring and math.hypot(p[0] - ring[-1][0], p[1] - ring[-1][1]) < EPSILON:
            continue
        ring.append(p)
    while len(ring) > 1 and math.hypot(ring[0][0] - ring[-1][0], ring[0][1] - ring[-1][1]) < EPSILON:
        ring.pop()
    area = 0.0
    for (x0, y0), (x1, y1) in zip(ring, ring[1:] + ring[:1]):
        area += x0 * y1 - x1 * y0
    if (area < 0) == ccw:
        ring = [ring[0]] + ring[:0:-1]
    return ring


class SceneIndex:
    """Buildings, walls, ground surface and ground-effect zones of a scene.

    Parameters
    ----------
    ground_types : GroundTypeDB, optional
        Ground classes used to resolve G given as a class code.
    """

    def __init__(self, ground_types: Optional[GroundTypeDB] = None) -> None:
        self.ground_types = ground_types or default_ground_types()
        self.warnings: List[str] = []
        self._frozen = False
        self._raw_buildings: List[Tuple[int, Polygon, float, float]] = []
        self._building_ids: Set[int] = set()
        self._next_building_id = 1
        self._raw_walls: List[Tuple[Optional[int], List[Vec3], float, float]] = []
        self._topo_points: List[Vec3] = []
        self._zones: List[GroundEffect] = []
        self.buildings: List[Building] = []
        self.walls: List[Wall] = []
        self._buildings_by_id: Dict[int, Building] = {}
        self._building_walls: Dict[int, List[int]] = {}
        self._envelope: Envelope = (0.0, 0.0, 0.0, 0.0)

    # -- feeding -------------------------------------------------------------
    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_mutable(self) -> None:
        if self._frozen:
            raise SceneFrozenError("scene is frozen, finish_feeding() was already called")

    def _check_frozen(self) -> None:
        if not self._frozen:
            raise SceneNotReadyError("call finish_feeding() before querying the scene")

    def _warn(self, msg: str, *args: Any) -> None:
        self.warnings.append(msg % args)
        logger.warning(msg, *args)

    def add_building(
        self, polygon: Any, height: float, alpha: float = 0.0, id: Optional[int] = None
    ) -> Optional[int]:
        """Add a building footprint extruded to ``height`` above the ground.

        Returns the building id, or ``None`` when the input was skipped.
        Without ``id`` the building gets one more than the largest id used so
        far, starting at 1.
        """
        self._check_mutable()
        try:
            poly = _as_polygon(polygon)
        except GeometryError as exc:
            self._warn("building %s skipped: %s", id, exc)
            return None
        if not math.isfinite(height) or height <= 0.0:
            self._warn("building %s skipped: invalid height %r", id, height)
            return None
        if id is None:
            bid = self._next_building_id
        else:
            bid = int(id)
            if bid in self._building_ids:
                self._warn("building %s skipped: duplicate id", bid)
                return None
        self._building_ids.add(bid)
        self._next_building_id = max(self._next_building_id, bid + 1)
        self._raw_buildings.append((bid, poly, float(height), float(alpha)))
        return bid

    def add_wall(
        self, line: Any, height: float, id: Optional[int] = None, alpha: float = 0.0
    ) -> bool:
        """Add a free-standing wall (noise barrier) of ``height`` above the ground."""
        self._check_mutable()
        try:
            pts = _as_line(line)
        except GeometryError as exc:
            self._warn("wall %s skipped: %s", id, exc)
            return False
        if not math.isfinite(height) or height <= 0.0:
            self._warn("wall %s skipped: invalid height %r", id, height)
            return False
        self._raw_walls.append((id, pts, float(height), float(alpha)))
        return True

    def add_topographic_point(self, point: Sequence[float]) -> bool:
        self._check_mutable()
        if len(point) < 3 or not all(math.isfinite(float(c)) for c in point[:3]):
            self._warn("topographic point %r skipped: x, y and z are required", point)
            return False
        self._topo_points.append(as_vec3(point))
        return True

    def add_topographic_line(self, line: Any) -> bool:
        """Add every vertex of a 3D line to the ground surface."""
        self._check_mutable()
        try:
            pts = _as_line(line)
        except GeometryError as exc:
            self._warn("topographic line skipped: %s", exc)
            return False
        self._topo_points.extend(pts)
        return True

    def add_ground_effect(self, polygon: Any, g: Union[float, str]) -> bool:
        """Add a ground zone; zones added later cover earlier ones."""
        self._check_mutable()
        try:
            poly = _as_polygon(polygon)
            value = self.ground_types.resolve_g(g)
        except (GeometryError, KeyError) as exc:
            self._warn("ground effect skipped: %s", exc)
            return False
        if not 0.0 <= value <= 1.0:
            self._warn("ground effect skipped: G=%r outside [0, 1]", value)
            return False
        self._zones.append(GroundEffect(len(self._zones), poly, value))
        return True

    def finish_feeding(self) -> None:
        """Build the spatial indices and freeze the scene."""
        self._check_mutable()
        self.topography = TopographySurface(self._topo_points)

        for bid, poly, height, alpha in self._raw_buildings:
            ring = _clean_ring(poly.exterior.coords)
            # courtyards wind clockwise so that their open side is on the right
            holes = [_clean_ring(r.coords, ccw=False) for r in poly.interiors]
            holes = [h for h in holes if len(h) >= 3]
            ground = self.topography.z_many(np.asarray(ring))
            roof_z = height + float(np.min(ground))
            shell = Polygon(ring, holes)
            building = Building(bid, shell, height, alpha, roof_z)
            self.buildings.append(building)
            self._buildings_by_id[bid] = building
            wall_ids = []
            for r in [ring, *holes]:
                for p, q in zip(r, r[1:] + r[:1]):
                    wall_ids.append(len(self.walls))
                    self.walls.append(
                        Wall(len(self.walls), (p[0], p[1], roof_z), (q[0], q[1], roof_z), bid, alpha)
                    )
            self._building_walls[bid] = wall_ids

        for origin, pts, height, alpha in self._raw_walls:
            for p, q in zip(pts[:-1], pts[1:]):
                if math.hypot(q[0] - p[0], q[1] - p[1]) < EPSILON:
                    continue
                zp = self.topography.z(p[0], p[1]) + height
                zq = self.topography.z(q[0], q[1]) + height
                self.walls.append(
                    Wall(len(self.walls), (p[0], p[1], zp), (q[0], q[1], zq), -1, alpha, origin)
                )

        self._building_tree = STRtree([b.polygon for b in self.buildings]) if self.buildings else None
        self._wall_lines = [LineString([w.p0[:2], w.p1[:2]]) for w in self.walls]
        self._wall_tree = STRtree(self._wall_lines) if self.walls else None
        self._zone_tree = STRtree([z.polygon for z in self._zones]) if self._zones else None
        self._cutter = ProfileCutter(
            self.buildings,
            self._building_walls,
            self.walls,
            self._zones,
            self.topography,
            self._building_tree,
            self._wall_tree,
            self._zone_tree,
        )

        bounds = [b.polygon.bounds for b in self.buildings]
        bounds += [line.bounds for line in self._wall_lines]
        bounds += [z.polygon.bounds for z in self._zones]
        if len(self.topography.points):
            pts = self.topography.points
            bounds.append((pts[:, 0].min(), pts[:, 1].min(), pts[:, 0].max(), pts[:, 1].max()))
        if bounds:
            arr = np.asarray(bounds, float)
            self._envelope = (
                float(arr[:, 0].min()),
                float(arr[:, 1].min()),
                float(arr[:, 2].max()),
                float(arr[:, 3].max()),
            )
        self._frozen = True
        logger.info(
            "scene frozen: %d buildings, %d walls, %d topographic samples, %d ground zones",
            len(self.buildings),
            len(self.walls),
            len(self.topography.points),
            len(self._zones),
        )

    # -- queries -------------------------------------------------------------
    @property
    def envelope(self) -> Envelope:
        self._check_frozen()
        return self._envelope

    @property
    def ground_effects(self) -> List[GroundEffect]:
        return list(self._zones)

    def get_building(self, building_id: int) -> Building:
        self._check_frozen()
        return self._buildings_by_id[building_id]

    def get_wall(self, wall_id: int) -> Wall:
        self._check_frozen()
        return self.walls[wall_id]

    def building_walls(self, building_id: int) -> List[Wall]:
        self._check_frozen()
        return [self.walls[i] for i in self._building_walls[building_id]]

    def ground_z(self, x: float, y: float) -> float:
        self._check_frozen()
        return self.topography.z(x, y)

    def g_at(self, x: float, y: float) -> Optional[float]:
        """Ground factor of the topmost zone at ``(x, y)``, ``None`` outside zones."""
        self._check_frozen()
        return self._cutter.g_at(x, y)

    def query(self, envelope: Envelope) -> RangeResult:
        """Return the objects intersecting ``(minx, miny, maxx, maxy)``."""
        self._check_frozen()
        area = box(*envelope)
        out = RangeResult()
        if self._building_tree is not None:
            idx = sorted(int(i) for i in self._building_tree.query(area, predicate="intersects"))
            out.buildings = [self.buildings[i] for i in idx]
        if self._wall_tree is not None:
            idx = sorted(int(i) for i in self._wall_tree.query(area, predicate="intersects"))
            out.walls = [self.walls[i] for i in idx]
        if self._zone_tree is not None:
            idx = sorted(int(i) for i in self._zone_tree.query(area, predicate="intersects"))
            out.ground_effects = [self._zones[i] for i in idx]
        return out

    def nearest_building(self, point: Sequence[float]) -> Optional[Building]:
        self._check_frozen()
        if self._building_tree is None:
            return None
        idx = self._building_tree.nearest(Point(point[0], point[1]))
        return None if idx is None else self.buildings[int(idx)]

    def buildings_on_path(self, p1: Sequence[float], p2: Sequence[float]) -> List[Building]:
        self._check_frozen()
        if self._building_tree is None:
            return []
        if math.hypot(p2[0] - p1[0], p2[1] - p1[1]) < EPSILON:
            geom = Point(p1[0], p1[1])
        else:
            geom = LineString([(p1[0], p1[1]), (p2[0], p2[1])])
        idx = sorted(int(i) for i in self._building_tree.query(geom, predicate="intersects"))
        return [self.buildings[i] for i in idx]

    def walls_on_path(self, p1: Sequence[float], p2: Sequence[float]) -> List[Wall]:
        """Building facades and free walls crossed or touched by ``p1 -> p2``."""
        self._check_frozen()
        if self._wall_tree is None:
            return []
        geom = LineString([(p1[0], p1[1]), (p2[0], p2[1])])
        if geom.length < EPSILON:
            geom = Point(p1[0], p1[1])
        idx = self._wall_tree.query(geom, predicate="intersects")
        return [self.walls[i] for i in sorted(int(i) for i in idx)]

    def walls_in_range(self, center: Sequence[float], radius: float) -> List[Wall]:
        self._check_frozen()
        if self._wall_tree is None:
            return []
        idx = self._wall_tree.query(
            Point(center[0], center[1]), predicate="dwithin", distance=radius
        )
        return [self.walls[i] for i in sorted(int(i) for i in idx)]

    def get_wide_angle_points(
        self,
        building_id: int,
        min_angle: float = DEFAULT_WIDE_ANGLE_MIN,
        max_angle: float = DEFAULT_WIDE_ANGLE_MAX,
    ) -> List[Vec3]:
        """Convex corners of a building, in counter-clockwise ring order.

        A corner is kept when its free-field (exterior) angle lies strictly
        within ``(min_angle, max_angle)``.  Each kept corner is moved
        ``WIDE_ANGLE_TRANSLATION_EPSILON`` outwards along its bisector and
        carries the roof elevation.  The first corner is repeated at the end
        to close the ring; an empty list means no corner qualified.
        """
        building = self.get_building(building_id)
        ring = list(building.polygon.exterior.coords)[:-1]
        n = len(ring)
        out: List[Vec3] = []
        for i in range(n):
            px, py = ring[i - 1][:2]
            cx, cy = ring[i][:2]
            nx, ny = ring[(i + 1) % n][:2]
            a_prev = math.atan2(py - cy, px - cx)
            a_next = math.atan2(ny - cy, nx - cx)
            turn = a_next - a_prev
            while turn <= -math.pi:
                turn += 2 * math.pi
            while turn > math.pi:
                turn -= 2 * math.pi
            open_angle = turn if turn >= 0 else 2 * math.pi + turn
            if min_angle < open_angle < max_angle:
                mid = a_prev + open_angle / 2
                out.append(
                    (
                        cx + math.cos(mid) * WIDE_ANGLE_TRANSLATION_EPSILON,
                        cy + math.sin(mid) * WIDE_ANGLE_TRANSLATION_EPSILON,
                        building.roof_z,
                    )
                )
        if out:
            out.append(out[0])
        return out

    def get_profile(self, p1: Sequence[float], p2: Sequence[float]) -> CutProfile:
        """Cut the scene along ``p1 -> p2``.

        Swapping the end points returns the reversed profile.
        """
        self._check_frozen()
        return self._cutter.get_profile(p1, p2)

    def is_free_field(self, p1: Sequence[float], p2: Sequence[float]) -> bool:
        return self.get_profile(p1, p2).is_free_field()
