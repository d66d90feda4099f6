from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Protocol, Sequence, Tuple

from shapely.geometry import Polygon

from ..geometry import Vec3, lerp

if TYPE_CHECKING:
    from .profile import CutProfile

Envelope = Tuple[float, float, float, float]


class IntersectionType(Enum):
    """What a profile point or a mirror receiver refers to."""

    SOURCE = "source"
    RECEIVER = "receiver"
    BUILDING = "building"
    WALL = "wall"
    TOPOGRAPHY = "topography"
    GROUND_EFFECT = "ground_effect"


@dataclass(frozen=True)
class Building:
    """Extruded building footprint.

    Parameters
    ----------
    id : int
        Building identifier, unique within a scene.
    polygon : shapely.geometry.Polygon
        Footprint, exterior ring counter-clockwise once the scene is frozen.
    height : float
        Height of the roof above the ground in metres.
    alpha : float, optional
        Absorption coefficient of the facades, carried for the attenuation
        stage.
    roof_z : float, optional
        Absolute roof elevation, filled in by ``finish_feeding``.
    """

    id: int
    polygon: Polygon
    height: float
    alpha: float = 0.0
    roof_z: float = 0.0


@dataclass(frozen=True)
class Wall:
    """Vertical reflecting or diffracting segment.

    ``p0`` and ``p1`` carry the absolute elevation of the wall top as ``z``.
    Building facades have ``building_id`` set; free-standing walls (noise
    barriers) use ``-1`` and keep the caller's id in ``origin_id``.
    """

    id: int
    p0: Vec3
    p1: Vec3
    building_id: int = -1
    alpha: float = 0.0
    origin_id: Optional[int] = None

    @property
    def key(self) -> Tuple[int, Tuple[Tuple[float, float], Tuple[float, float]]]:
        """Identity that does not depend on the wall orientation."""
        a = (self.p0[0], self.p0[1])
        b = (self.p1[0], self.p1[1])
        return (self.building_id, (a, b) if a <= b else (b, a))

    def top_z(self, u: float) -> float:
        """Top elevation at parameter ``u`` along ``p0 -> p1``."""
        return lerp(self.p0, self.p1, u)[2]


@dataclass(frozen=True)
class GroundEffect:
    """Ground absorption zone with coefficient ``g`` in ``[0, 1]``.

    ``index`` is the insertion order; later zones cover earlier ones.
    """

    index: int
    polygon: Polygon
    g: float


@dataclass(frozen=True)
class ProfilePoint:
    """One point of a cut profile.

    ``position[2]`` is the top of the obstacle for building and wall points,
    the ground for topography and ground-effect points and the given height
    for the two end points.  ``g`` is the coefficient of the topmost ground
    zone at the point or ``None`` outside every zone.
    """

    position: Vec3
    distance: float
    type: IntersectionType
    ground_z: float
    g: Optional[float] = None
    building_id: int = -1
    wall_id: int = -1


class ObstructionScene(Protocol):
    """Query interface used by the diffraction and reflection searches.

    All coordinates follow an ENU, right handed, metres, Z-up convention.
    """

    def ground_z(self, x: float, y: float) -> float:
        """Return ground elevation ``z`` at ``(x, y)`` in metres."""

    def get_profile(self, p1: Sequence[float], p2: Sequence[float]) -> "CutProfile":
        """Return the vertical cut of the scene along ``p1 -> p2``."""

    def get_building(self, building_id: int) -> Building:
        """Return the building with ``building_id``."""

    def get_wall(self, wall_id: int) -> Wall:
        """Return the wall with ``wall_id``."""

    def buildings_on_path(self, p1: Sequence[float], p2: Sequence[float]) -> List[Building]:
        """Buildings whose footprint the segment ``p1 -> p2`` crosses."""

    def walls_in_range(self, center: Sequence[float], radius: float) -> List[Wall]:
        """Walls closer than ``radius`` to ``center`` in the plane."""

    def get_wide_angle_points(
        self, building_id: int, min_angle: float, max_angle: float
    ) -> List[Vec3]:
        """Corners of a building whose free-field angle is within the window."""

    def is_free_field(self, p1: Sequence[float], p2: Sequence[float]) -> bool:
        """``True`` when nothing obstructs the straight line ``p1 -> p2``."""

    @property
    def envelope(self) -> Envelope:
        """``(minx, miny, maxx, maxy)`` of all scene content."""
