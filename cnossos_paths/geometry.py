"""Plane geometry helpers shared by the scene and the path searches.

All coordinates follow an ENU, right handed, metres, Z-up convention.  The
searches work in the horizontal plane and carry ``z`` along; functions here
therefore take 3-tuples and ignore ``z`` unless stated otherwise.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

Vec3 = Tuple[float, float, float]

# Tolerance of every "on the line" classification.
EPSILON = 1e-7


def as_vec3(p: Sequence[float], z: float = 0.0) -> Vec3:
    """Return ``p`` as a float 3-tuple, using ``z`` when it is 2D or NaN."""
    if len(p) < 2:
        raise ValueError(f"expected at least 2 coordinates, got {p!r}")
    pz = float(p[2]) if len(p) > 2 else z
    if math.isnan(pz):
        pz = z
    return (float(p[0]), float(p[1]), pz)


def dist2d(a: Sequence[float], b: Sequence[float]) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])


def dist3d(a: Sequence[float], b: Sequence[float]) -> float:
    return math.sqrt((b[0] - a[0]) ** 2 + (b[1] - a[1]) ** 2 + (b[2] - a[2]) ** 2)


def cross2d(o: Sequence[float], a: Sequence[float], b: Sequence[float]) -> float:
    """Z component of ``(a - o) x (b - o)``; positive when ``b`` is left of ``o->a``."""
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def lerp(a: Sequence[float], b: Sequence[float], t: float) -> Vec3:
    return (
        a[0] + (b[0] - a[0]) * t,
        a[1] + (b[1] - a[1]) * t,
        a[2] + (b[2] - a[2]) * t,
    )


def segment_intersection(
    a: Sequence[float],
    b: Sequence[float],
    c: Sequence[float],
    d: Sequence[float],
    eps: float = EPSILON,
) -> Optional[Tuple[float, float]]:
    """Intersect segments ``ab`` and ``cd`` in the plane.

    Returns the parameters ``(t, u)`` of the crossing along ``ab`` and ``cd``
    or ``None``.  Parallel segments never intersect.
    """
    rx, ry = b[0] - a[0], b[1] - a[1]
    sx, sy = d[0] - c[0], d[1] - c[1]
    denom = rx * sy - ry * sx
    if abs(denom) < eps * max(1.0, math.hypot(rx, ry) * math.hypot(sx, sy)):
        return None
    qx, qy = c[0] - a[0], c[1] - a[1]
    t = (qx * sy - qy * sx) / denom
    u = (qx * ry - qy * rx) / denom
    len_ab = math.hypot(rx, ry)
    len_cd = math.hypot(sx, sy)
    tol_t = eps / len_ab if len_ab > 0 else eps
    tol_u = eps / len_cd if len_cd > 0 else eps
    if -tol_t <= t <= 1.0 + tol_t and -tol_u <= u <= 1.0 + tol_u:
        return min(max(t, 0.0), 1.0), min(max(u, 0.0), 1.0)
    return None


def ring_intersections(
    a: Sequence[float], b: Sequence[float], ring: np.ndarray, eps: float = EPSILON
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Vectorised intersection of segment ``ab`` with every edge of ``ring``.

    ``ring`` is an ``(n, 2+)`` array of closed-ring vertices (first == last).
    Returns ``(t, edge_index, u)`` arrays for the crossing edges, where ``t``
    runs along ``ab`` and ``u`` along the edge.
    """
    pts = np.asarray(ring, float)[:, :2]
    c = pts[:-1]
    d = pts[1:]
    r = np.array([b[0] - a[0], b[1] - a[1]])
    s = d - c
    q = c - np.array([a[0], a[1]])
    denom = r[0] * s[:, 1] - r[1] * s[:, 0]
    len_r = float(np.hypot(r[0], r[1]))
    len_s = np.hypot(s[:, 0], s[:, 1])
    ok = np.abs(denom) >= eps * np.maximum(1.0, len_r * len_s)
    safe = np.where(ok, denom, 1.0)
    t = (q[:, 0] * s[:, 1] - q[:, 1] * s[:, 0]) / safe
    u = (q[:, 0] * r[1] - q[:, 1] * r[0]) / safe
    tol_t = eps / len_r if len_r > 0 else eps
    tol_u = eps / np.where(len_s > 0, len_s, 1.0)
    hit = ok & (t >= -tol_t) & (t <= 1.0 + tol_t) & (u >= -tol_u) & (u <= 1.0 + tol_u)
    idx = np.nonzero(hit)[0]
    return np.clip(t[idx], 0.0, 1.0), idx, np.clip(u[idx], 0.0, 1.0)


def mirror_point(p: Sequence[float], a: Sequence[float], b: Sequence[float]) -> Vec3:
    """Reflect ``p`` across the vertical plane holding segment ``ab``."""
    dx, dy = b[0] - a[0], b[1] - a[1]
    den = dx * dx + dy * dy
    if den == 0.0:
        return (float(p[0]), float(p[1]), float(p[2]))
    t = ((p[0] - a[0]) * dx + (p[1] - a[1]) * dy) / den
    fx, fy = a[0] + t * dx, a[1] + t * dy
    return (2.0 * fx - p[0], 2.0 * fy - p[1], float(p[2]))


def project_param(p: Sequence[float], a: Sequence[float], b: Sequence[float]) -> float:
    """Parameter of the orthogonal projection of ``p`` on line ``ab``."""
    dx, dy = b[0] - a[0], b[1] - a[1]
    den = dx * dx + dy * dy
    if den == 0.0:
        return 0.0
    return ((p[0] - a[0]) * dx + (p[1] - a[1]) * dy) / den


def line_length(coords: Sequence[Sequence[float]]) -> float:
    pts = np.asarray(coords, float)
    if len(pts) < 2:
        return 0.0
    return float(np.sum(np.hypot(*np.diff(pts[:, :2], axis=0).T)))


def point_at_distance(coords: Sequence[Sequence[float]], distance: float) -> Vec3:
    """Return the point found ``distance`` metres along polyline ``coords``."""
    pts = np.asarray([as_vec3(c) for c in coords], float)
    seg = np.hypot(*np.diff(pts[:, :2], axis=0).T)
    cum = np.concatenate(([0.0], np.cumsum(seg)))
    if distance <= 0.0 or len(pts) == 1:
        return tuple(pts[0])
    if distance >= cum[-1]:
        return tuple(pts[-1])
    i = int(np.searchsorted(cum, distance, side="right")) - 1
    i = min(i, len(seg) - 1)
    t = (distance - cum[i]) / seg[i] if seg[i] > 0 else 0.0
    return lerp(pts[i], pts[i + 1], t)


def nearest_point(p: Sequence[float], coords: Sequence[Sequence[float]]) -> Vec3:
    """Return the point of polyline ``coords`` closest to ``p`` in the plane."""
    pts = [as_vec3(c) for c in coords]
    if len(pts) == 1:
        return pts[0]
    best: Optional[Vec3] = None
    best_d = math.inf
    for a, b in zip(pts[:-1], pts[1:]):
        t = min(max(project_param(p, a, b), 0.0), 1.0)
        c = lerp(a, b, t)
        d = dist2d(p, c)
        if d < best_d:
            best, best_d = c, d
    return best


def split_line_into_points(
    coords: Sequence[Sequence[float]], max_segment_length: float
) -> Tuple[List[Vec3], float]:
    """Split a line source into equal pieces of at most ``max_segment_length``.

    Returns the midpoint of every piece and the common piece length.  A line
    of zero length yields its first vertex and a length of zero.
    """
    pts = [as_vec3(c) for c in coords]
    length = line_length(pts)
    if length < EPSILON or max_segment_length <= 0.0:
        return [pts[0]], length
    n = max(1, int(math.ceil(length / max_segment_length)))
    seg = length / n
    mids = [point_at_distance(pts, (i + 0.5) * seg) for i in range(n)]
    return mids, seg


def mean_plane_coefficients(samples: Iterable[Sequence[float]]) -> Tuple[float, float]:
    """Least-squares mean ground line of a ``(distance, z)`` profile.

    The samples are the vertices of a piecewise-linear ground profile sorted
    by distance.  The fit minimises the integrated squared height difference
    along the whole profile (CNOSSOS-EU mean plane), so two samples give the
    exact line through them.  Returns ``(slope, intercept)``; a profile of
    (nearly) zero horizontal extent gives slope 0 through the mean height.
    """
    pts = np.asarray(list(samples), float)
    if pts.size == 0:
        return 0.0, 0.0
    pts = pts.reshape(len(pts), -1)
    if len(pts) == 1:
        return 0.0, float(pts[0, 1])
    x0 = pts[0, 0]
    x = pts[:, 0] - x0
    z = pts[:, 1]
    length = x[-1]
    if abs(length) < EPSILON:
        return 0.0, float(np.mean(z))
    xa, xb = x[:-1], x[1:]
    za, zb = z[:-1], z[1:]
    dx = xb - xa
    keep = np.abs(dx) > EPSILON
    xa, xb, za, zb, dx = xa[keep], xb[keep], za[keep], zb[keep], dx[keep]
    a_i = (zb - za) / dx
    b_i = za - a_i * xa
    big_a = (2.0 / 3.0) * np.sum(a_i * (xb**3 - xa**3)) + np.sum(b_i * (xb**2 - xa**2))
    big_b = np.sum(a_i * (xb**2 - xa**2)) + 2.0 * np.sum(b_i * dx)
    slope = 3.0 * (2.0 * big_a - big_b * length) / length**3
    intercept = (2.0 * big_b * length - 3.0 * big_a) / length**2
    if not (np.isfinite(slope) and np.isfinite(intercept)):
        return 0.0, float(np.mean(z))
    return float(slope), float(intercept - slope * x0)


@dataclass(frozen=True)
class MeanPlane:
    """Equivalent ground line ``z = slope * d + intercept`` of a profile."""

    slope: float
    intercept: float

    @classmethod
    def fit(cls, samples: Iterable[Sequence[float]]) -> "MeanPlane":
        return cls(*mean_plane_coefficients(samples))

    def z_at(self, d: float) -> float:
        return self.slope * d + self.intercept

    def height_above(self, d: float, z: float) -> float:
        """Orthogonal distance of ``(d, z)`` above the mean plane."""
        return (z - self.z_at(d)) / math.sqrt(1.0 + self.slope**2)

    def project(self, d: float, z: float) -> Tuple[float, float]:
        """Foot of the orthogonal projection of ``(d, z)`` on the mean plane."""
        a, b = self.slope, self.intercept
        dp = (d + a * (z - b)) / (1.0 + a * a)
        return dp, a * dp + b
