"""Specular reflection paths by the image receiver method.

The receiver is mirrored across every candidate wall, each image is mirrored
again across the other walls, and so on up to the maximum reflection order.
Images live in a :class:`MirrorArena`; a node refers to its parent by index
so a chain is a plain list walk, and two chains are the same when their
``(position, wall id, building id)`` sequences are.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from shapely.geometry import LineString, Polygon

from .geometry import EPSILON, Vec3, as_vec3, cross2d, dist2d, lerp, mirror_point, segment_intersection
from .paths import PathPoint, PointRole, PropagationPath
from .scene.api import IntersectionType, ObstructionScene, Wall

logger = logging.getLogger(__name__)

# Obstacles closer than this to either end of a leg are the reflecting walls
# themselves.
LEG_END_TOLERANCE = 1e-4

ChainKey = Tuple[Tuple[Vec3, int, int], ...]


@dataclass(frozen=True)
class MirrorNode:
    """Image of the receiver, or of a parent image, across one wall."""

    position: Vec3
    wall_id: int
    building_id: int
    parent: int
    order: int
    type: IntersectionType = IntersectionType.BUILDING


class MirrorArena:
    """Append-only store of mirror nodes addressed by index.

    Adding a chain that already exists returns the index of the existing
    node.
    """

    def __init__(self) -> None:
        self.nodes: List[MirrorNode] = []
        self._keys: List[ChainKey] = []
        self._by_key: Dict[ChainKey, int] = {}

    def __len__(self) -> int:
        return len(self.nodes)

    def __getitem__(self, index: int) -> MirrorNode:
        return self.nodes[index]

    def add(self, position: Vec3, wall: Wall, parent: int = -1) -> int:
        parent_key: ChainKey = self._keys[parent] if parent >= 0 else ()
        key = parent_key + ((position, wall.id, wall.building_id),)
        found = self._by_key.get(key)
        if found is not None:
            return found
        order = self.nodes[parent].order + 1 if parent >= 0 else 1
        kind = IntersectionType.WALL if wall.building_id < 0 else IntersectionType.BUILDING
        self.nodes.append(MirrorNode(position, wall.id, wall.building_id, parent, order, kind))
        self._keys.append(key)
        self._by_key[key] = len(self.nodes) - 1
        return len(self.nodes) - 1

    def key(self, index: int) -> ChainKey:
        """Hashable value of the whole chain ending at ``index``."""
        return self._keys[index]

    def chain(self, index: int) -> List[MirrorNode]:
        """Nodes from the first-order image to ``index``."""
        out = []
        while index >= 0:
            node = self.nodes[index]
            out.append(node)
            index = node.parent
        out.reverse()
        return out

    def wall_ids(self, index: int) -> List[int]:
        return [node.wall_id for node in self.chain(index)]


def _faces(wall: Wall, p: Sequence[float]) -> bool:
    """``True`` when ``p`` is on a reflecting side of ``wall``.

    Building facades reflect on their exterior (right-hand) side only, free
    walls on both sides.
    """
    side = cross2d(wall.p0, wall.p1, p)
    scale = max(1.0, dist2d(wall.p0, wall.p1))
    if wall.building_id >= 0:
        return side < -EPSILON * scale
    return abs(side) > EPSILON * scale


def _visibility_cone(image: Vec3, wall: Wall, reach: float) -> Polygon:
    """Area from which the straight line to ``image`` crosses ``wall``."""
    corners = []
    for p in (wall.p0, wall.p1):
        dx, dy = p[0] - image[0], p[1] - image[1]
        norm = math.hypot(dx, dy)
        corners.append((p[0] + dx / norm * reach, p[1] + dy / norm * reach))
    return Polygon(
        [(wall.p0[0], wall.p0[1]), (wall.p1[0], wall.p1[1]), corners[1], corners[0]]
    )


class ReflectionEnumerator:
    """Enumerate reflection paths between a source and a receiver.

    Parameters
    ----------
    scene : ObstructionScene
        Frozen scene.
    max_order : int
        Maximum number of reflections of one path; 0 disables reflections.
    max_dist : float
        Longest unfolded path, also the radius of the candidate wall search
        around both the source and the receiver.
    """

    def __init__(self, scene: ObstructionScene, max_order: int = 1, max_dist: float = 750.0) -> None:
        if max_order < 0:
            raise ValueError("max_order must be >= 0")
        if max_dist <= 0.0:
            raise ValueError("max_dist must be positive")
        self.scene = scene
        self.max_order = max_order
        self.max_dist = max_dist

    def candidate_walls(self, source: Sequence[float], receiver: Sequence[float]) -> List[Wall]:
        """Walls within ``max_dist`` of both the source and the receiver."""
        near_src = {w.id for w in self.scene.walls_in_range(source, self.max_dist)}
        return [w for w in self.scene.walls_in_range(receiver, self.max_dist) if w.id in near_src]

    def mirror_receivers(
        self, receiver: Sequence[float], walls: Sequence[Wall]
    ) -> MirrorArena:
        """Build every image of ``receiver`` up to ``max_order`` reflections.

        An image is only mirrored across walls that are reflecting toward it
        and that reach into its visibility cone; a wall is used at most once
        along a chain.
        """
        rcv = as_vec3(receiver)
        arena = MirrorArena()
        if self.max_order == 0:
            return arena
        reach = 2.0 * self.max_dist
        cones: Dict[int, Polygon] = {}
        lines = {w.id: LineString([w.p0[:2], w.p1[:2]]) for w in walls}

        level: List[int] = []
        for wall in walls:
            if not _faces(wall, rcv):
                continue
            image = mirror_point(rcv, wall.p0, wall.p1)
            index = arena.add(image, wall)
            if index not in cones:
                cones[index] = _visibility_cone(image, wall, reach)
                level.append(index)

        for _ in range(1, self.max_order):
            following: List[int] = []
            for parent in level:
                used = set(arena.wall_ids(parent))
                cone = cones[parent]
                previous = arena[parent].position
                for wall in walls:
                    if wall.id in used or not _faces(wall, previous):
                        continue
                    if cone.intersection(lines[wall.id]).length <= EPSILON:
                        continue
                    image = mirror_point(previous, wall.p0, wall.p1)
                    if dist2d(image, rcv) > reach:
                        continue
                    index = arena.add(image, wall, parent)
                    if index not in cones:
                        cones[index] = _visibility_cone(image, wall, reach)
                        following.append(index)
            level = following
        logger.debug("%d receiver images over %d walls", len(arena), len(walls))
        return arena

    def _leg_clear(self, a: Vec3, b: Vec3) -> bool:
        profile = self.scene.get_profile(a, b)
        length = profile.length
        for p in profile.obstacles():
            if LEG_END_TOLERANCE < p.distance < length - LEG_END_TOLERANCE:
                if p.position[2] > profile.line_z(p.distance) + EPSILON:
                    return False
        return True

    def unfold(self, source: Sequence[float], arena: MirrorArena, index: int) -> Optional[List[PathPoint]]:
        """Reflection points of the chain ending at ``index``, source side first.

        Returns ``None`` when the line from the source to the image misses a
        wall of the chain, passes over its top or hits it from behind.
        """
        prev = as_vec3(source)
        points: List[PathPoint] = []
        for node in reversed(arena.chain(index)):
            wall = self.scene.get_wall(node.wall_id)
            if not _faces(wall, prev):
                return None
            hit = segment_intersection(prev, node.position, wall.p0, wall.p1)
            if hit is None:
                return None
            t, u = hit
            p = lerp(prev, node.position, t)
            if p[2] > wall.top_z(u) + EPSILON:
                return None
            points.append(PathPoint(p, PointRole.REFLECTION, wall.building_id, wall.id))
            prev = p
        return points

    def enumerate(self, source: Sequence[float], receiver: Sequence[float]) -> List[PropagationPath]:
        """Valid reflection paths from ``source`` to ``receiver``, by chain order."""
        if self.max_order == 0:
            return []
        src = as_vec3(source)
        rcv = as_vec3(receiver)
        walls = self.candidate_walls(src, rcv)
        arena = self.mirror_receivers(rcv, walls)
        paths = []
        for index in range(len(arena)):
            node = arena[index]
            if dist2d(src, node.position) > self.max_dist:
                continue
            reflections = self.unfold(src, arena, index)
            if reflections is None:
                continue
            chain = [src, *(p.position for p in reflections), rcv]
            if all(self._leg_clear(a, b) for a, b in zip(chain, chain[1:])):
                paths.append(
                    PropagationPath(
                        [
                            PathPoint(src, PointRole.SOURCE),
                            *reflections,
                            PathPoint(rcv, PointRole.RECEIVER),
                        ]
                    )
                )
        logger.debug("%d reflection paths of order <= %d", len(paths), self.max_order)
        return paths
