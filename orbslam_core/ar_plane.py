"""Planes detected among tracked map points, used to anchor virtual objects.

A map point is any object with a ``world_pos`` (3-vector) attribute and,
optionally, ``observations`` (number of keyframes seeing it) and ``is_bad``.
Plain 3-vectors are accepted too; they count as well observed and never bad.
"""

from __future__ import annotations

import math
import random
from typing import Any, Sequence

import numpy as np

_EPS = 1e-4
_UP = np.array([0.0, 1.0, 0.0])
_MIN_POINTS = 50
_MIN_OBSERVATIONS = 5


def exp_so3(x, y=None, z=None) -> np.ndarray:
    """Rotation matrix of the axis-angle vector (x, y, z).

    ``x`` may also be a whole 3-vector, in which case ``y`` and ``z`` are
    left out.
    """
    if y is None and z is None:
        x, y, z = (float(v) for v in np.asarray(x, dtype=np.float64).reshape(-1)[:3])
    x, y, z = float(x), float(y), float(z)
    identity = np.eye(3)
    d2 = x * x + y * y + z * z
    d = math.sqrt(d2)
    w = np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])
    if d < _EPS:
        return identity + w + 0.5 * (w @ w)
    return identity + w * math.sin(d) / d + (w @ w) * (1.0 - math.cos(d)) / d2


def _world_pos(point: Any) -> np.ndarray:
    position = getattr(point, "world_pos", point)
    return np.asarray(position, dtype=np.float64).reshape(-1)[:3]


def _is_bad(point: Any) -> bool:
    return bool(getattr(point, "is_bad", False))


def _well_observed(point: Any) -> bool:
    observations = getattr(point, "observations", None)
    return observations is None or observations > _MIN_OBSERVATIONS


def _random_rang(rng: random.Random | None = None) -> float:
    draw = (rng or random).random()
    return -3.14 / 2 + draw * 3.14


def _column_major(matrix: np.ndarray) -> np.ndarray:
    gl = np.asarray(matrix, dtype=np.float64).reshape(4, 4).flatten(order="F")
    gl[3] = gl[7] = gl[11] = 0.0
    gl[15] = 1.0
    return gl


def _plane_transform(normal: np.ndarray, origin: np.ndarray, rang: float) -> np.ndarray:
    """Plane-to-world transform: the y axis along the normal, rotated by ``rang``."""
    v = np.cross(_UP, normal)
    sa = float(np.linalg.norm(v))
    ca = float(_UP @ normal)
    angle = math.atan2(sa, ca)
    if sa > 1e-12:
        axis = v * angle / sa
    elif ca > 0:
        axis = np.zeros(3)
    else:
        axis = np.array([math.pi, 0.0, 0.0])
    tpw = np.eye(4)
    tpw[:3, :3] = exp_so3(axis) @ exp_so3(_UP * rang)
    tpw[:3, 3] = origin
    return tpw


class Plane:
    """A plane fitted to map points, with an arbitrary spin about its normal."""

    def __init__(self, points: Sequence[Any], tcw, rang: float | None = None) -> None:
        self.points = list(points)
        self.tcw = np.array(tcw, dtype=np.float64).reshape(4, 4)
        self.rang = _random_rang() if rang is None else float(rang)
        self.xc: np.ndarray | None = None
        self.n = np.zeros(3)
        self.o = np.zeros(3)
        self.tpw = np.eye(4)
        self.recompute()

    @classmethod
    def from_normal(cls, normal, origin, rang: float | None = None) -> "Plane":
        """Plane given directly by its normal and origin."""
        plane = cls.__new__(cls)
        plane.points = []
        plane.tcw = None
        plane.xc = None
        plane.rang = _random_rang() if rang is None else float(rang)
        plane.n = np.asarray(normal, dtype=np.float64).reshape(3).copy()
        plane.o = np.asarray(origin, dtype=np.float64).reshape(3).copy()
        plane.tpw = _plane_transform(plane.n, plane.o, plane.rang)
        return plane

    def recompute(self) -> None:
        """Refit the plane to its map points that are not bad."""
        positions = [_world_pos(p) for p in self.points if not _is_bad(p)]
        if not positions:
            raise ValueError("no valid map points to fit a plane to")
        pts = np.array(positions)
        a_mat = np.column_stack([pts, np.ones(len(pts))])
        _, _, vt = np.linalg.svd(a_mat, full_matrices=True)
        abc = vt[3, :3].copy()

        self.o = pts.mean(axis=0)
        if self.xc is None:
            rotation = self.tcw[:3, :3]
            translation = self.tcw[:3, 3]
            camera_centre = -rotation.T @ translation
            self.xc = camera_centre - self.o

        if float(self.xc @ abc) > 0:
            abc = -abc
        self.n = abc / np.linalg.norm(abc)
        self.tpw = _plane_transform(self.n, self.o, self.rang)

    def gl_matrix(self) -> np.ndarray:
        """Plane-to-world transform as 16 column-major values."""
        return _column_major(self.tpw)


def camera_pose_gl_matrix(tcw) -> np.ndarray | None:
    """Camera pose as 16 column-major values, or ``None`` if there is no pose."""
    if tcw is None:
        return None
    matrix = np.asarray(tcw, dtype=np.float64)
    if matrix.size == 0:
        return None
    return _column_major(matrix)


def detect_plane(
    tcw, points: Sequence[Any], iterations: int = 50, rng: random.Random | None = None
) -> Plane | None:
    """RANSAC plane among well-observed map points, or ``None`` if too few."""
    rng = rng or random.Random()
    candidates = [p for p in points if p is not None and _well_observed(p)]
    n = len(candidates)
    if n < _MIN_POINTS:
        return None
    positions = np.array([_world_pos(p) for p in candidates])
    homogeneous = np.column_stack([positions, np.ones(n)])

    best_dist = 1e10
    best_distances: np.ndarray | None = None
    nth = max(int(0.2 * n), 20)

    for _ in range(iterations):
        chosen = rng.sample(range(n), 3)
        _, _, vt = np.linalg.svd(homogeneous[chosen], full_matrices=True)
        plane = vt[3]
        f = 1.0 / float(np.linalg.norm(plane))
        distances = np.abs(homogeneous @ plane) * f
        median_dist = float(np.sort(distances)[nth])
        if median_dist < best_dist:
            best_dist = median_dist
            best_distances = distances

    if best_distances is None:
        return None
    threshold = 1.4 * best_dist
    inliers = [p for p, d in zip(candidates, best_distances) if d < threshold]
    return Plane(inliers, tcw, _random_rang(rng))


def status_message(status: int, localization_mode: bool) -> tuple[str, tuple[int, int, int]] | None:
    """Overlay text and its RGB colour for a tracking status, if any."""
    red, green = (255, 0, 0), (0, 255, 0)
    if status == 1:
        return "SLAM NOT INITIALIZED", red
    if status == 2:
        return ("LOCALIZATION ON" if localization_mode else "SLAM ON"), green
    if status == 3:
        return ("LOCALIZATION LOST" if localization_mode else "SLAM LOST"), red
    return None