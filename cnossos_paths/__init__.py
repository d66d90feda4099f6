"""Geometric sound propagation paths for CNOSSOS-EU noise mapping."""

from .diffraction import MAX_RATIO_HULL_DIRECT_PATH, compute_hedge_diffraction, compute_side_hull
from .errors import GeometryError, PathFinderError, SceneFrozenError, SceneNotReadyError
from .geometry import EPSILON, MeanPlane, mean_plane_coefficients, split_line_into_points
from .pathfinder import PathFinder, PathFinderConfig, Receiver, RunReport, Source
from .paths import PathPoint, PointRole, ProgressToken, PropagationPath, QueuePathSink
from .reflection import MirrorArena, ReflectionEnumerator
from .scene import CutProfile, SceneIndex

__all__ = [
    "MAX_RATIO_HULL_DIRECT_PATH",
    "compute_hedge_diffraction",
    "compute_side_hull",
    "GeometryError",
    "PathFinderError",
    "SceneFrozenError",
    "SceneNotReadyError",
    "EPSILON",
    "MeanPlane",
    "mean_plane_coefficients",
    "split_line_into_points",
    "PathFinder",
    "PathFinderConfig",
    "Receiver",
    "RunReport",
    "Source",
    "PathPoint",
    "PointRole",
    "ProgressToken",
    "PropagationPath",
    "QueuePathSink",
    "MirrorArena",
    "ReflectionEnumerator",
    "CutProfile",
    "SceneIndex",
]
