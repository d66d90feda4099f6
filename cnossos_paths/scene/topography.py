"""Triangulated ground surface built from topographic samples."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.interpolate import LinearNDInterpolator
from scipy.spatial import Delaunay, QhullError, cKDTree
from shapely.geometry import LineString
from shapely.strtree import STRtree

from ..geometry import EPSILON

logger = logging.getLogger(__name__)


class TopographySurface:
    """Piecewise-linear ground elevation over a Delaunay triangulation.

    Samples sharing the same ``(x, y)`` are merged, the first one wins.
    Outside the triangulated hull, or when the samples cannot be
    triangulated (fewer than three, or all collinear), the elevation of the
    nearest sample is used.  Without any sample the ground is flat at
    ``z = 0``.
    """

    def __init__(self, points: Sequence[Sequence[float]]) -> None:
        pts = np.asarray(points, float).reshape(-1, 3)
        if len(pts):
            _, first = np.unique(pts[:, :2], axis=0, return_index=True)
            pts = pts[np.sort(first)]
        self.points = pts
        self._tree = cKDTree(pts[:, :2]) if len(pts) else None
        self._tri: Optional[Delaunay] = None
        self._interp: Optional[LinearNDInterpolator] = None
        self._edges = np.empty((0, 2), dtype=int)
        self._edge_tree: Optional[STRtree] = None
        if len(pts) >= 3 and np.linalg.matrix_rank(pts[:, :2] - pts[0, :2], tol=EPSILON) == 2:
            try:
                self._tri = Delaunay(pts[:, :2])
            except QhullError as exc:
                logger.warning("topography triangulation failed, using nearest sample: %s", exc)
        if self._tri is not None:
            self._interp = LinearNDInterpolator(self._tri, pts[:, 2])
            simplices = self._tri.simplices
            edges = np.concatenate(
                [simplices[:, [0, 1]], simplices[:, [1, 2]], simplices[:, [2, 0]]]
            )
            self._edges = np.unique(np.sort(edges, axis=1), axis=0)
            self._edge_tree = STRtree(
                [LineString(pts[e, :2]) for e in self._edges]
            )
            logger.debug(
                "triangulated %d topographic samples into %d triangles",
                len(pts),
                len(simplices),
            )

    @property
    def is_empty(self) -> bool:
        return len(self.points) == 0

    def z(self, x: float, y: float) -> float:
        """Return ground elevation at ``(x, y)``."""
        return float(self.z_many(np.array([[x, y]]))[0])

    def z_many(self, xy: np.ndarray) -> np.ndarray:
        xy = np.asarray(xy, float).reshape(-1, 2)
        if self._tree is None:
            return np.zeros(len(xy))
        if self._interp is not None:
            out = np.asarray(self._interp(xy), float).reshape(-1)
        else:
            out = np.full(len(xy), np.nan)
        missing = ~np.isfinite(out)
        if np.any(missing):
            _, idx = self._tree.query(xy[missing])
            out[missing] = self.points[idx, 2]
        return out

    def crossings(self, a: Sequence[float], b: Sequence[float]) -> List[Tuple[float, float]]:
        """Return ``(t, z)`` of every triangle edge crossed by segment ``ab``.

        ``t`` is the parameter along ``ab``; crossings closer than
        ``EPSILON`` metres to each other are merged.
        """
        if self._edge_tree is None:
            return []
        length = float(np.hypot(b[0] - a[0], b[1] - a[1]))
        if length < EPSILON:
            return []
        cand = self._edge_tree.query(LineString([(a[0], a[1]), (b[0], b[1])]))
        if len(cand) == 0:
            return []
        edges = self._edges[np.asarray(cand)]
        p = self.points[edges[:, 0]]
        q = self.points[edges[:, 1]]
        r = np.array([b[0] - a[0], b[1] - a[1]])
        s = q[:, :2] - p[:, :2]
        w = p[:, :2] - np.array([a[0], a[1]])
        denom = r[0] * s[:, 1] - r[1] * s[:, 0]
        ok = np.abs(denom) > EPSILON
        safe = np.where(ok, denom, 1.0)
        t = (w[:, 0] * s[:, 1] - w[:, 1] * s[:, 0]) / safe
        u = (w[:, 0] * r[1] - w[:, 1] * r[0]) / safe
        tol = EPSILON / length
        hit = ok & (t >= -tol) & (t <= 1.0 + tol) & (u >= -EPSILON) & (u <= 1.0 + EPSILON)
        t = np.clip(t[hit], 0.0, 1.0)
        u = np.clip(u[hit], 0.0, 1.0)
        z = p[hit, 2] + u * (q[hit, 2] - p[hit, 2])
        order = np.lexsort((z, t))
        out: List[Tuple[float, float]] = []
        for i in order:
            if out and (t[i] - out[-1][0]) * length < EPSILON:
                continue
            out.append((float(t[i]), float(z[i])))
        return out
