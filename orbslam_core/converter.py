"""Conversions between rigid-body pose types and plain numpy arrays."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


def _vector3(values) -> np.ndarray:
    if all(hasattr(values, name) for name in ("x", "y", "z")):
        return np.array([values.x, values.y, values.z], dtype=np.float64)
    flat = np.asarray(values, dtype=np.float64).reshape(-1)
    if flat.size < 3:
        raise ValueError("a 3-vector needs at least three elements")
    return flat[:3].copy()


def _quaternion_from_matrix(m: np.ndarray) -> tuple[float, float, float, float]:
    """Quaternion (x, y, z, w) of a 3x3 rotation matrix."""
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    q = [0.0, 0.0, 0.0]
    if trace > 0.0:
        t = math.sqrt(trace + 1.0)
        w = 0.5 * t
        t = 0.5 / t
        q = [(m[2, 1] - m[1, 2]) * t, (m[0, 2] - m[2, 0]) * t, (m[1, 0] - m[0, 1]) * t]
    else:
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        t = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        q[i] = 0.5 * t
        t = 0.5 / t
        w = (m[k, j] - m[j, k]) * t
        q[j] = (m[j, i] + m[i, j]) * t
        q[k] = (m[k, i] + m[i, k]) * t
    return float(q[0]), float(q[1]), float(q[2]), float(w)


@dataclass(frozen=True)
class SE3Quat:
    """Rigid transform given by a rotation matrix and a translation."""

    rotation: np.ndarray
    translation: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "rotation", np.array(self.rotation, dtype=np.float64).reshape(3, 3)
        )
        object.__setattr__(self, "translation", _vector3(self.translation))

    @property
    def quaternion(self) -> tuple[float, float, float, float]:
        """Rotation as (x, y, z, w)."""
        return _quaternion_from_matrix(self.rotation)

    def to_homogeneous_matrix(self) -> np.ndarray:
        """4x4 homogeneous matrix of the transform."""
        matrix = np.eye(4)
        matrix[:3, :3] = self.rotation
        matrix[:3, 3] = self.translation
        return matrix


@dataclass(frozen=True)
class Sim3:
    """Similarity transform: rotation, translation and scale."""

    rotation: np.ndarray
    translation: np.ndarray
    scale: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "rotation", np.array(self.rotation, dtype=np.float64).reshape(3, 3)
        )
        object.__setattr__(self, "translation", _vector3(self.translation))
        object.__setattr__(self, "scale", float(self.scale))


def to_descriptor_vector(descriptors) -> list[np.ndarray]:
    """Split a descriptor matrix into one array per row."""
    return [row.copy() for row in np.asarray(descriptors)]


def to_se3quat(transform) -> SE3Quat:
    """Build an SE3Quat from the top 3x4 block of a 4x4 transform."""
    matrix = np.asarray(transform, dtype=np.float64)
    return SE3Quat(matrix[:3, :3], matrix[:3, 3])


def se3quat_to_matrix(se3: SE3Quat) -> np.ndarray:
    """Single-precision 4x4 matrix of an SE3Quat."""
    return se3.to_homogeneous_matrix().astype(np.float32)


def sim3_to_matrix(sim3: Sim3) -> np.ndarray:
    """Single-precision 4x4 matrix with scaled rotation and translation."""
    return to_cv_se3(sim3.scale * sim3.rotation, sim3.translation)


def to_cv_se3(rotation, translation) -> np.ndarray:
    """Single-precision 4x4 matrix from a 3x3 block and a translation."""
    matrix = np.eye(4, dtype=np.float32)
    matrix[:3, :3] = np.asarray(rotation, dtype=np.float64).reshape(3, 3)
    matrix[:3, 3] = _vector3(translation)
    return matrix


def to_vector3d(vector) -> np.ndarray:
    """Double-precision 3-vector from an array or an object with x, y, z."""
    return _vector3(vector)


def to_matrix3d(matrix) -> np.ndarray:
    """Double-precision copy of the top-left 3x3 block."""
    return np.array(np.asarray(matrix)[:3, :3], dtype=np.float64)


def to_quaternion(matrix) -> list[float]:
    """Quaternion [x, y, z, w] of the rotation in the top-left 3x3 block."""
    x, y, z, w = _quaternion_from_matrix(to_matrix3d(matrix))
    return [float(np.float32(value)) for value in (x, y, z, w)]