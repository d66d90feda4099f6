"""Exceptions raised by the path finder."""


class PathFinderError(Exception):
    """Base class of all path finder errors."""


class SceneFrozenError(PathFinderError, RuntimeError):
    """The scene was mutated after :meth:`SceneIndex.finish_feeding`."""


class SceneNotReadyError(PathFinderError, RuntimeError):
    """The scene was queried before :meth:`SceneIndex.finish_feeding`."""


class GeometryError(PathFinderError, ValueError):
    """Input geometry has the wrong type or is degenerate."""
