"""Loading of RGB-D and stereo image sequences and of stereo rectification
calibration.

Supported layouts:

* TUM RGB-D: an association file whose lines read
  ``rgb_timestamp rgb_file depth_timestamp depth_file``; file names are
  relative to the sequence folder.
* EuRoC stereo: a times file with one nanosecond timestamp per line; each
  line also names ``<left>/<line>.png`` and ``<right>/<line>.png``.
* KITTI stereo: ``<sequence>/times.txt`` with timestamps in seconds and
  images ``image_0/NNNNNN.png`` (left) and ``image_1/NNNNNN.png`` (right).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping

import numpy as np

from .sequences import _leading_float, _non_empty_lines


def load_tum_rgbd(
    association_path: str | os.PathLike,
) -> tuple[list[str], list[str], list[float]]:
    """RGB files, depth files and RGB timestamps of a TUM association file."""
    rgb_files: list[str] = []
    depth_files: list[str] = []
    timestamps: list[float] = []
    for line in _non_empty_lines(association_path):
        timestamps.append(_leading_float(line))
        fields = line.split()
        rgb_files.append(fields[1] if len(fields) > 1 else "")
        depth_files.append(fields[3] if len(fields) > 3 else "")
    return rgb_files, depth_files, timestamps


def load_euroc_stereo(
    left_path: str, right_path: str, times_path: str | os.PathLike
) -> tuple[list[str], list[str], list[float]]:
    """Left files, right files and timestamps (seconds) of an EuRoC stereo pair."""
    left_files: list[str] = []
    right_files: list[str] = []
    timestamps: list[float] = []
    for line in _non_empty_lines(times_path):
        left_files.append(f"{left_path}/{line}.png")
        right_files.append(f"{right_path}/{line}.png")
        timestamps.append(_leading_float(line) / 1e9)
    return left_files, right_files, timestamps


def load_kitti_stereo(sequence_path: str) -> tuple[list[str], list[str], list[float]]:
    """Left files, right files and timestamps of a KITTI odometry sequence."""
    timestamps = [
        _leading_float(line) for line in _non_empty_lines(f"{sequence_path}/times.txt")
    ]
    left_prefix = f"{sequence_path}/image_0/"
    right_prefix = f"{sequence_path}/image_1/"
    names = [f"{i:06d}.png" for i in range(len(timestamps))]
    left_files = [left_prefix + name for name in names]
    right_files = [right_prefix + name for name in names]
    return left_files, right_files, timestamps


def check_rgbd_sequence(rgb_files, depth_files) -> int:
    """Number of RGB-D frames; raises if there are none or the lists differ."""
    if not rgb_files:
        raise ValueError("No images found in provided path.")
    if len(depth_files) != len(rgb_files):
        raise ValueError("Different number of images for rgb and depth.")
    return len(rgb_files)


def check_stereo_sequence(left_files, right_files) -> int:
    """Number of stereo frames; raises if a side is empty or the sides differ."""
    if not left_files or not right_files:
        raise ValueError("No images in provided path.")
    if len(left_files) != len(right_files):
        raise ValueError("Different number of left and right images.")
    return len(left_files)


def _matrix(value: Any) -> np.ndarray:
    if value is None:
        return np.zeros((0, 0))
    return np.asarray(value, dtype=np.float64)


@dataclass
class StereoCalibration:
    """Intrinsics, distortion, rectification and projection of a stereo rig."""

    K_l: Any = None
    K_r: Any = None
    P_l: Any = None
    P_r: Any = None
    R_l: Any = None
    R_r: Any = None
    D_l: Any = None
    D_r: Any = None
    rows_l: int = 0
    cols_l: int = 0
    rows_r: int = 0
    cols_r: int = 0

    def __post_init__(self) -> None:
        for name in ("K_l", "K_r", "P_l", "P_r", "R_l", "R_r", "D_l", "D_r"):
            setattr(self, name, _matrix(getattr(self, name)))
        for name in ("rows_l", "cols_l", "rows_r", "cols_r"):
            setattr(self, name, int(getattr(self, name) or 0))

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "StereoCalibration":
        """Calibration from a settings mapping with ``LEFT.*``/``RIGHT.*`` keys."""
        return cls(
            K_l=settings.get("LEFT.K"),
            K_r=settings.get("RIGHT.K"),
            P_l=settings.get("LEFT.P"),
            P_r=settings.get("RIGHT.P"),
            R_l=settings.get("LEFT.R"),
            R_r=settings.get("RIGHT.R"),
            D_l=settings.get("LEFT.D"),
            D_r=settings.get("RIGHT.D"),
            rows_l=settings.get("LEFT.height", 0),
            cols_l=settings.get("LEFT.width", 0),
            rows_r=settings.get("RIGHT.height", 0),
            cols_r=settings.get("RIGHT.width", 0),
        )

    def validate(self) -> None:
        """Raise if any matrix or image size needed for rectification is missing."""
        matrices = (self.K_l, self.K_r, self.P_l, self.P_r, self.R_l, self.R_r, self.D_l, self.D_r)
        sizes = (self.rows_l, self.rows_r, self.cols_l, self.cols_r)
        if any(m.size == 0 for m in matrices) or any(s == 0 for s in sizes):
            raise ValueError("Calibration parameters to rectify stereo are missing!")