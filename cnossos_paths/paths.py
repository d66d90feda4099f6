"""Propagation paths and the objects that collect them across workers."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol, Sequence

from .geometry import MeanPlane, Vec3, dist3d


class PointRole(Enum):
    """Role of a point along a propagation path."""

    SOURCE = "SRCE"
    RECEIVER = "RECV"
    DIFFRACTION_H = "DIFH"  # over a horizontal edge (roof or wall top)
    DIFFRACTION_V = "DIFV"  # around a vertical edge (building corner)
    REFLECTION = "REFL"


@dataclass(frozen=True)
class PathPoint:
    position: Vec3
    role: PointRole
    building_id: int = -1
    wall_id: int = -1


@dataclass
class PropagationPath:
    """Geometric skeleton of one propagation path.

    Parameters
    ----------
    points : list of PathPoint
        Source first, receiver last.
    mean_plane : MeanPlane, optional
        Mean ground plane of the direct source-receiver profile.
    g_path : float
        Length weighted ground factor of the direct profile.
    source_id, receiver_id : int
        Caller identifiers of the pair.
    source_weight : float
        Length represented by the source point when it stands for a piece of
        a line source, 1 for point sources.
    """

    points: List[PathPoint]
    mean_plane: Optional[MeanPlane] = None
    g_path: float = 0.0
    source_id: int = -1
    receiver_id: int = -1
    source_weight: float = 1.0

    @property
    def kind(self) -> str:
        roles = {p.role for p in self.points[1:-1]}
        if PointRole.REFLECTION in roles:
            return "reflection"
        if PointRole.DIFFRACTION_V in roles:
            return "vertical_edge"
        if PointRole.DIFFRACTION_H in roles:
            return "horizontal_edge"
        return "direct"

    @property
    def length(self) -> float:
        """3D length of the polyline through every point."""
        return sum(dist3d(a.position, b.position) for a, b in zip(self.points, self.points[1:]))

    def points_with_role(self, role: PointRole) -> List[PathPoint]:
        return [p for p in self.points if p.role == role]


@dataclass(frozen=True)
class PairFailure:
    """A source-receiver pair whose computation raised."""

    receiver_id: int
    source_id: int
    error: str


class PathSink(Protocol):
    """Destination of computed paths, shared by every worker thread."""

    def add_paths(self, receiver_id: int, source_id: int, paths: Sequence[PropagationPath]) -> None:
        """Store ``paths`` computed for one pair; called concurrently."""

    def add_failure(self, failure: PairFailure) -> None:
        """Record a failed pair; called concurrently."""


class QueuePathSink:
    """Thread-safe :class:`PathSink` backed by :class:`queue.Queue`."""

    def __init__(self) -> None:
        self._paths: "queue.Queue[PropagationPath]" = queue.Queue()
        self._failures: "queue.Queue[PairFailure]" = queue.Queue()

    def add_paths(self, receiver_id: int, source_id: int, paths: Sequence[PropagationPath]) -> None:
        for path in paths:
            self._paths.put(path)

    def add_failure(self, failure: PairFailure) -> None:
        self._failures.put(failure)

    @staticmethod
    def _drain(q: "queue.Queue") -> list:
        out = []
        while True:
            try:
                out.append(q.get_nowait())
            except queue.Empty:
                return out

    def drain(self) -> List[PropagationPath]:
        """Remove and return every path stored so far."""
        return self._drain(self._paths)

    def failures(self) -> List[PairFailure]:
        """Remove and return every failure stored so far."""
        return self._drain(self._failures)


@dataclass
class ProgressToken:
    """Shared progress counter and cancellation flag.

    Workers poll :attr:`cancelled` between receivers and call :meth:`step`
    after each one.
    """

    total: int = 0
    _done: int = field(default=0, init=False, repr=False)
    _cancel: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def step(self, n: int = 1) -> None:
        with self._lock:
            self._done += n

    @property
    def done(self) -> int:
        with self._lock:
            return self._done

    @property
    def progress(self) -> float:
        """Completed fraction in ``[0, 1]``."""
        if self.total <= 0:
            return 0.0
        return min(1.0, self.done / self.total)
