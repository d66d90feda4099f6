"""Source-receiver path computation and the worker pool driving it.

Typical use::

    from cnossos_paths import SceneIndex, PathFinder, PathFinderConfig, Source, Receiver
    from cnossos_paths import QueuePathSink

    scene = SceneIndex()
    scene.add_building([(10, 10), (20, 10), (20, 20), (10, 20)], height=12.0)
    scene.finish_feeding()

    finder = PathFinder(scene, [Source(1, (0, 15, 0.05))], [Receiver(1, (30, 15, 4.0))])
    sink = QueuePathSink()
    report = finder.run(sink)
    paths = sink.drain()
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from shapely.geometry import LineString, Point
from shapely.geometry.base import BaseGeometry
from shapely.strtree import STRtree

from .diffraction import compute_hedge_diffraction, compute_vedge_diffraction
from .errors import SceneNotReadyError
from .geometry import MeanPlane, Vec3, as_vec3, dist2d, dist3d, nearest_point, split_line_into_points
from .paths import PairFailure, PathPoint, PathSink, PointRole, ProgressToken, PropagationPath
from .reflection import ReflectionEnumerator
from .scene.index import SceneIndex

__all__ = [
    "PathFinderConfig",
    "Source",
    "Receiver",
    "RunReport",
    "PathFinder",
]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Dataclasses describing the problem
# ---------------------------------------------------------------------------


@dataclass
class PathFinderConfig:
    """Path search options.

    Parameters
    ----------
    compute_horizontal_diffraction : bool
        Search paths over roofs and wall tops when the direct line is blocked.
    compute_vertical_diffraction : bool
        Search paths around building corners when the direct line is blocked.
    reflection_order : int
        Maximum number of reflections of one path, 0 disables reflections.
    max_src_dist : float
        Sources farther than this from a receiver are ignored (metres).
    max_ref_dist : float, optional
        Longest unfolded reflection path; defaults to ``max_src_dist``.
    gs : float
        Ground factor outside every ground-effect zone, in ``[0, 1]``.
    thread_count : int
        Number of worker threads.
    """

    compute_horizontal_diffraction: bool = True
    compute_vertical_diffraction: bool = True
    reflection_order: int = 1
    max_src_dist: float = 750.0
    max_ref_dist: Optional[float] = None
    gs: float = 0.0
    thread_count: int = 1

    def __post_init__(self) -> None:
        if self.reflection_order < 0:
            raise ValueError("reflection_order must be >= 0")
        if self.max_src_dist <= 0.0:
            raise ValueError("max_src_dist must be positive")
        if self.max_ref_dist is None:
            self.max_ref_dist = self.max_src_dist
        elif self.max_ref_dist <= 0.0:
            raise ValueError("max_ref_dist must be positive")
        if not 0.0 <= self.gs <= 1.0:
            raise ValueError("gs must be in [0, 1]")
        if self.thread_count < 1:
            raise ValueError("thread_count must be >= 1")


@dataclass
class Source:
    """Point or line source with the emission record of the caller.

    ``geometry`` is a coordinate tuple, a sequence of coordinate tuples
    (line source) or a shapely ``Point``/``LineString``.  A missing or NaN
    ``z`` is replaced by the ground elevation.  ``emission`` is carried
    untouched for the attenuation stage.
    """

    id: int
    geometry: Any
    emission: Any = None

    def __post_init__(self) -> None:
        self.coords = [as_vec3(c, float("nan")) for c in _coords(self.geometry)]
        self.is_line = len(self.coords) > 1
        xy = [c[:2] for c in self.coords]
        self.shape = LineString(xy) if self.is_line else Point(xy[0])


@dataclass
class Receiver:
    id: int
    position: Sequence[float]


@dataclass
class RunReport:
    """Outcome of :meth:`PathFinder.run`."""

    receivers: int = 0
    pairs: int = 0
    failed_pairs: int = 0
    cancelled: bool = False


def _coords(geometry: Any) -> List[Tuple[float, ...]]:
    if isinstance(geometry, BaseGeometry):
        if geometry.geom_type not in ("Point", "LineString"):
            raise ValueError(f"unsupported source geometry {geometry.geom_type}")
        return [tuple(c) for c in geometry.coords]
    if len(geometry) and isinstance(geometry[0], (int, float)):
        return [tuple(float(c) for c in geometry)]
    return [tuple(float(c) for c in p) for p in geometry]


# ---------------------------------------------------------------------------
# Path finder
# ---------------------------------------------------------------------------


class PathFinder:
    """Compute propagation paths for every source-receiver pair in range.

    The scene must be frozen; it is shared read-only by the workers.
    """

    def __init__(
        self,
        scene: SceneIndex,
        sources: Sequence[Source],
        receivers: Sequence[Receiver],
        config: Optional[PathFinderConfig] = None,
    ) -> None:
        if not scene.frozen:
            raise SceneNotReadyError("call finish_feeding() before building a PathFinder")
        self.scene = scene
        self.sources = list(sources)
        self.receivers = list(receivers)
        self.config = config or PathFinderConfig()
        self._source_tree = STRtree([s.shape for s in self.sources]) if self.sources else None
        self._reflections = ReflectionEnumerator(
            scene, self.config.reflection_order, self.config.max_ref_dist
        )

    def _locate(self, p: Sequence[float]) -> Vec3:
        x, y = float(p[0]), float(p[1])
        z = float(p[2]) if len(p) > 2 else float("nan")
        if z != z:
            z = self.scene.ground_z(x, y)
        return (x, y, z)

    def sources_in_range(self, receiver: Sequence[float]) -> List[Source]:
        """Sources closer than ``max_src_dist`` to ``receiver``, in input order."""
        if self._source_tree is None:
            return []
        idx = self._source_tree.query(
            Point(receiver[0], receiver[1]), predicate="dwithin", distance=self.config.max_src_dist
        )
        return [self.sources[i] for i in sorted(int(i) for i in idx)]

    def direct_path(self, src: Vec3, rcv: Vec3) -> PropagationPath:
        return PropagationPath([PathPoint(src, PointRole.SOURCE), PathPoint(rcv, PointRole.RECEIVER)])

    def compute_pair(self, source: Sequence[float], receiver: Sequence[float]) -> List[PropagationPath]:
        """All paths from a point source to a receiver.

        The direct path is returned when the line of sight is free, else the
        enabled diffraction paths; reflection paths are added in both cases.
        Every path carries the mean plane and the ground factor of the direct
        profile.
        """
        src = self._locate(source)
        rcv = self._locate(receiver)
        if dist3d(src, rcv) > self.config.max_src_dist:
            return []
        profile = self.scene.get_profile(src, rcv)
        mean_plane = MeanPlane.fit(profile.ground_points())
        g_path = profile.g_path(self.config.gs)

        paths: List[PropagationPath] = []
        if profile.is_free_field():
            paths.append(self.direct_path(src, rcv))
        else:
            if self.config.compute_horizontal_diffraction:
                path = compute_hedge_diffraction(profile)
                if path is not None:
                    paths.append(path)
            if self.config.compute_vertical_diffraction:
                for clockwise in (True, False):
                    path = compute_vedge_diffraction(clockwise, src, rcv, self.scene)
                    if path is not None:
                        paths.append(path)
        paths.extend(self._reflections.enumerate(src, rcv))
        for path in paths:
            path.mean_plane = mean_plane
            path.g_path = g_path
        return paths

    def compute_source(self, source: Source, receiver: Receiver) -> List[PropagationPath]:
        """Paths from one source, split into pieces when it is a line."""
        rcv = self._locate(receiver.position)
        if source.is_line:
            closest = nearest_point(rcv, source.coords)
            max_len = max(1.0, dist2d(rcv, closest) / 2.0)
            points, weight = split_line_into_points(source.coords, max_len)
        else:
            points, weight = [source.coords[0]], 1.0
        out = []
        for p in points:
            for path in self.compute_pair(p, rcv):
                path.source_id = source.id
                path.receiver_id = receiver.id
                path.source_weight = weight
                out.append(path)
        return out

    def _run_receiver(
        self, receiver: Receiver, sink: PathSink, progress: ProgressToken
    ) -> Optional[Tuple[int, int]]:
        if progress.cancelled:
            return None
        pairs = failed = 0
        for source in self.sources_in_range(receiver.position):
            if progress.cancelled:
                break
            pairs += 1
            try:
                paths = self.compute_source(source, receiver)
            except Exception as exc:
                logger.exception("pair receiver=%s source=%s failed", receiver.id, source.id)
                sink.add_failure(PairFailure(receiver.id, source.id, repr(exc)))
                failed += 1
                continue
            logger.debug(
                "receiver %s source %s: %d paths", receiver.id, source.id, len(paths)
            )
            sink.add_paths(receiver.id, source.id, paths)
        progress.step()
        return pairs, failed

    def run(self, sink: PathSink, progress: Optional[ProgressToken] = None) -> RunReport:
        """Compute every pair on ``thread_count`` workers, one task per receiver.

        A failing pair is recorded in ``sink`` and counted; the others go on.
        Cancelling ``progress`` stops the batch before the next receiver.
        """
        progress = progress or ProgressToken()
        progress.total = len(self.receivers)
        report = RunReport()
        with ThreadPoolExecutor(max_workers=self.config.thread_count) as pool:
            futures = [
                pool.submit(self._run_receiver, receiver, sink, progress)
                for receiver in self.receivers
            ]
            for future in futures:
                result = future.result()
                if result is None:
                    continue
                report.receivers += 1
                report.pairs += result[0]
                report.failed_pairs += result[1]
        report.cancelled = progress.cancelled
        logger.info(
            "computed %d pairs for %d receivers, %d failed%s",
            report.pairs,
            report.receivers,
            report.failed_pairs,
            " (cancelled)" if report.cancelled else "",
        )
        return report
