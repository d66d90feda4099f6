"""Scene index, ground surface and profile cutting."""

from .api import Building, GroundEffect, IntersectionType, ObstructionScene, ProfilePoint, Wall
from .ground import GroundType, GroundTypeDB, default_ground_types
from .index import (
    WIDE_ANGLE_EPSILON,
    WIDE_ANGLE_TRANSLATION_EPSILON,
    RangeResult,
    SceneIndex,
)
from .profile import CutProfile
from .topography import TopographySurface

__all__ = [
    "Building",
    "GroundEffect",
    "IntersectionType",
    "ObstructionScene",
    "ProfilePoint",
    "Wall",
    "GroundType",
    "GroundTypeDB",
    "default_ground_types",
    "WIDE_ANGLE_EPSILON",
    "WIDE_ANGLE_TRANSLATION_EPSILON",
    "RangeResult",
    "SceneIndex",
    "CutProfile",
    "TopographySurface",
]
