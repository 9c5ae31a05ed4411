"""Two-view geometry: normalisation, homography and fundamental estimation,
triangulation and checking of relative pose hypotheses."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

# Cosine of the parallax under which a point is considered "at infinity".
_COS_PARALLAX_LIMIT = 0.99998


@dataclass(frozen=True)
class KeyPoint:
    """An image keypoint: position and pyramid level."""

    x: float
    y: float
    octave: int = 0


@dataclass
class RTCheck:
    """Outcome of checking one relative pose hypothesis."""

    n_good: int
    points: list[np.ndarray] = field(default_factory=list)
    good: list[bool] = field(default_factory=list)
    parallax: float = 0.0


def normalize(keypoints: Sequence[KeyPoint]) -> tuple[np.ndarray, np.ndarray]:
    """Centre the points and scale them to unit mean absolute deviation.

    Returns the normalised points (N x 2) and the 3x3 transform applied.
    """
    if not keypoints:
        raise ValueError("cannot normalise an empty set of keypoints")
    pts = np.array([(kp.x, kp.y) for kp in keypoints], dtype=np.float64)
    mean = pts.mean(axis=0)
    centred = pts - mean
    mean_dev = np.abs(centred).mean(axis=0)
    with np.errstate(divide="ignore"):
        scale = 1.0 / mean_dev
    normalised = centred * scale

    transform = np.eye(3)
    transform[0, 0] = scale[0]
    transform[1, 1] = scale[1]
    transform[0, 2] = -mean[0] * scale[0]
    transform[1, 2] = -mean[1] * scale[1]
    return normalised, transform


def compute_h21(points1, points2) -> np.ndarray:
    """Direct linear estimate of the homography mapping image 1 to image 2."""
    p1 = np.asarray(points1, dtype=np.float64).reshape(-1, 2)
    p2 = np.asarray(points2, dtype=np.float64).reshape(-1, 2)
    rows = []
    for (u1, v1), (u2, v2) in zip(p1, p2):
        rows.append([0.0, 0.0, 0.0, -u1, -v1, -1.0, v2 * u1, v2 * v1, v2])
        rows.append([u1, v1, 1.0, 0.0, 0.0, 0.0, -u2 * u1, -u2 * v1, -u2])
    a = np.array(rows)
    _, _, vt = np.linalg.svd(a, full_matrices=True)
    return vt[8].reshape(3, 3)


def compute_f21(points1, points2) -> np.ndarray:
    """Eight-point estimate of the fundamental matrix with rank 2 enforced."""
    p1 = np.asarray(points1, dtype=np.float64).reshape(-1, 2)
    p2 = np.asarray(points2, dtype=np.float64).reshape(-1, 2)
    a = np.array(
        [
            [u2 * u1, u2 * v1, u2, v2 * u1, v2 * v1, v2, u1, v1, 1.0]
            for (u1, v1), (u2, v2) in zip(p1, p2)
        ]
    )
    _, _, vt = np.linalg.svd(a, full_matrices=True)
    f_pre = vt[8].reshape(3, 3)

    u, w, vt = np.linalg.svd(f_pre, full_matrices=True)
    w[2] = 0.0
    return u @ np.diag(w) @ vt


def triangulate(kp1: KeyPoint, kp2: KeyPoint, p1, p2) -> np.ndarray:
    """Linear triangulation of a correspondence from two 3x4 projections."""
    p1 = np.asarray(p1, dtype=np.float64)
    p2 = np.asarray(p2, dtype=np.float64)
    a = np.vstack(
        [
            kp1.x * p1[2] - p1[0],
            kp1.y * p1[2] - p1[1],
            kp2.x * p2[2] - p2[0],
            kp2.y * p2[2] - p2[1],
        ]
    )
    _, _, vt = np.linalg.svd(a, full_matrices=True)
    x = vt[3]
    with np.errstate(divide="ignore", invalid="ignore"):
        return x[:3] / x[3]


def decompose_e(essential) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split an essential matrix into two rotations and a unit translation."""
    u, _, vt = np.linalg.svd(np.asarray(essential, dtype=np.float64))
    t = u[:, 2].copy()
    t /= np.linalg.norm(t)

    w = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    r1 = u @ w @ vt
    if np.linalg.det(r1) < 0:
        r1 = -r1
    r2 = u @ w.T @ vt
    if np.linalg.det(r2) < 0:
        r2 = -r2
    return r1, r2, t


def _reprojection_error(point, fx, fy, cx, cy, kp: KeyPoint) -> float:
    with np.errstate(divide="ignore", invalid="ignore"):
        inv_z = 1.0 / point[2]
        x = fx * point[0] * inv_z + cx
        y = fy * point[1] * inv_z + cy
    return float((x - kp.x) ** 2 + (y - kp.y) ** 2)


def check_rt(
    rotation,
    translation,
    keys1: Sequence[KeyPoint],
    keys2: Sequence[KeyPoint],
    matches12: Sequence[tuple[int, int]],
    inliers: Sequence[bool],
    K,
    th2: float,
) -> RTCheck:
    """Triangulate the inlier matches under a pose hypothesis and count the
    points in front of both cameras with small reprojection error."""
    r = np.asarray(rotation, dtype=np.float64).reshape(3, 3)
    t = np.asarray(translation, dtype=np.float64).reshape(3)
    k = np.asarray(K, dtype=np.float64)
    fx, fy, cx, cy = k[0, 0], k[1, 1], k[0, 2], k[1, 2]

    good = [False] * len(keys1)
    points = [np.zeros(3) for _ in keys1]
    cos_parallaxes: list[float] = []

    proj1 = np.zeros((3, 4))
    proj1[:, :3] = k
    proj2 = k @ np.hstack([r, t.reshape(3, 1)])
    origin2 = -r.T @ t

    n_good = 0
    for (i1, i2), is_inlier in zip(matches12, inliers):
        if not is_inlier:
            continue
        kp1, kp2 = keys1[i1], keys2[i2]
        p3d_c1 = triangulate(kp1, kp2, proj1, proj2)

        if not np.all(np.isfinite(p3d_c1)):
            good[i1] = False
            continue

        normal1 = p3d_c1
        normal2 = p3d_c1 - origin2
        with np.errstate(divide="ignore", invalid="ignore"):
            cos_parallax = float(
                normal1 @ normal2 / (np.linalg.norm(normal1) * np.linalg.norm(normal2))
            )

        if p3d_c1[2] <= 0 and cos_parallax < _COS_PARALLAX_LIMIT:
            continue

        p3d_c2 = r @ p3d_c1 + t
        if p3d_c2[2] <= 0 and cos_parallax < _COS_PARALLAX_LIMIT:
            continue

        if _reprojection_error(p3d_c1, fx, fy, cx, cy, kp1) > th2:
            continue
        if _reprojection_error(p3d_c2, fx, fy, cx, cy, kp2) > th2:
            continue

        cos_parallaxes.append(cos_parallax)
        points[i1] = p3d_c1.copy()
        n_good += 1

        if cos_parallax < _COS_PARALLAX_LIMIT:
            good[i1] = True

    if n_good > 0:
        cos_parallaxes.sort()
        idx = min(50, len(cos_parallaxes) - 1)
        cos_value = min(1.0, max(-1.0, cos_parallaxes[idx]))
        parallax = math.degrees(math.acos(cos_value))
    else:
        parallax = 0.0

    return RTCheck(n_good=n_good, points=points, good=good, parallax=parallax)