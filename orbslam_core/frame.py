"""A single camera frame: keypoints, descriptors, stereo/depth data, a
spatial grid for fast neighbourhood queries and the camera pose."""

from __future__ import annotations

import copy as _copy
import dataclasses
import itertools
import math
from dataclasses import dataclass
from typing import Any, ClassVar, Protocol, Sequence

import numpy as np

from .twoview import KeyPoint

FRAME_GRID_ROWS = 48
FRAME_GRID_COLS = 64

# Descriptor distance thresholds used by the matcher.
TH_HIGH = 100
TH_LOW = 50

_UNDISTORT_ITERATIONS = 5
_SAD_HALF_WINDOW = 5
_SAD_SEARCH_RANGE = 5


@dataclass(frozen=True)
class ScaleInfo:
    """Scale pyramid description of a feature extractor."""

    levels: int
    scale_factor: float
    scale_factors: tuple[float, ...]
    inv_scale_factors: tuple[float, ...]
    level_sigma2: tuple[float, ...]
    inv_level_sigma2: tuple[float, ...]

    @property
    def log_scale_factor(self) -> float:
        return math.log(self.scale_factor)

    @classmethod
    def from_factor(cls, levels: int, scale_factor: float) -> "ScaleInfo":
        """Pyramid where each level is ``scale_factor`` times the previous."""
        if levels < 1:
            raise ValueError("a pyramid needs at least one level")
        factors = [1.0]
        for _ in range(1, levels):
            factors.append(factors[-1] * scale_factor)
        sigma2 = [f * f for f in factors]
        return cls(
            levels=levels,
            scale_factor=float(scale_factor),
            scale_factors=tuple(factors),
            inv_scale_factors=tuple(1.0 / f for f in factors),
            level_sigma2=tuple(sigma2),
            inv_level_sigma2=tuple(1.0 / s for s in sigma2),
        )


class _Extractor(Protocol):
    scale_info: ScaleInfo
    image_pyramid: Sequence[np.ndarray]

    def __call__(self, image: np.ndarray) -> tuple[Sequence[KeyPoint], Any]: ...


@dataclass(frozen=True)
class _Calibration:
    fx: float
    fy: float
    cx: float
    cy: float
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @property
    def invfx(self) -> float:
        return 1.0 / self.fx

    @property
    def invfy(self) -> float:
        return 1.0 / self.fy

    @property
    def grid_width_inv(self) -> float:
        return FRAME_GRID_COLS / (self.max_x - self.min_x)

    @property
    def grid_height_inv(self) -> float:
        return FRAME_GRID_ROWS / (self.max_y - self.min_y)


def _round(value: float) -> int:
    """Round half away from zero."""
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


def undistort_points(points, K, dist_coef) -> np.ndarray:
    """Remove radial/tangential lens distortion from pixel coordinates.

    ``dist_coef`` holds k1, k2, p1, p2 and optionally k3; the result is
    projected back with the same camera matrix.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    k_mat = np.asarray(K, dtype=np.float64)
    fx, fy, cx, cy = k_mat[0, 0], k_mat[1, 1], k_mat[0, 2], k_mat[1, 2]
    k = np.zeros(8)
    coefs = np.asarray(dist_coef, dtype=np.float64).reshape(-1)[:8]
    k[: coefs.size] = coefs

    x0 = (pts[:, 0] - cx) / fx
    y0 = (pts[:, 1] - cy) / fy
    x, y = x0.copy(), y0.copy()
    for _ in range(_UNDISTORT_ITERATIONS):
        r2 = x * x + y * y
        icdist = (1 + ((k[7] * r2 + k[6]) * r2 + k[5]) * r2) / (
            1 + ((k[4] * r2 + k[1]) * r2 + k[0]) * r2
        )
        delta_x = 2 * k[2] * x * y + k[3] * (r2 + 2 * x * x)
        delta_y = k[2] * (r2 + 2 * y * y) + 2 * k[3] * x * y
        x = (x0 - delta_x) * icdist
        y = (y0 - delta_y) * icdist
    return np.column_stack([fx * x + cx, fy * y + cy])


def descriptor_distance(a, b) -> int:
    """Hamming distance between two binary descriptors."""
    xa = np.asarray(a, dtype=np.uint8).reshape(-1)
    xb = np.asarray(b, dtype=np.uint8).reshape(-1)
    return int(np.unpackbits(np.bitwise_xor(xa, xb)).sum())


class Frame:
    """Keypoints and geometry of one image (monocular, RGB-D or stereo)."""

    _ids: ClassVar[itertools.count] = itertools.count()
    _calibration: ClassVar[_Calibration | None] = None

    def __init__(
        self,
        timestamp: float,
        K,
        dist_coef,
        bf: float,
        th_depth: float,
        extractor_left: _Extractor | None = None,
        extractor_right: _Extractor | None = None,
    ) -> None:
        self.id = -1
        self.timestamp = float(timestamp)
        self.K = np.array(K, dtype=np.float64)
        self.dist_coef = np.array(dist_coef, dtype=np.float64).reshape(-1)
        self.bf = float(bf)
        self.th_depth = float(th_depth)
        self.mb = 0.0
        self.extractor_left = extractor_left
        self.extractor_right = extractor_right
        self.scale: ScaleInfo | None = None
        self.camera: _Calibration | None = None

        self.keys: list[KeyPoint] = []
        self.keys_right: list[KeyPoint] = []
        self.keys_un: list[KeyPoint] = []
        self.descriptors = np.zeros((0, 32), dtype=np.uint8)
        self.descriptors_right = np.zeros((0, 32), dtype=np.uint8)
        self.u_right: list[float] = []
        self.depth: list[float] = []
        self.map_points: list[Any] = []
        self.outliers: list[bool] = []
        self.reference_kf: Any = None
        self.grid: list[list[list[int]]] = self._empty_grid()

        self.tcw: np.ndarray | None = None
        self.rcw: np.ndarray | None = None
        self.rwc: np.ndarray | None = None
        self.t_cw: np.ndarray | None = None
        self.ow: np.ndarray | None = None

    # ------------------------------------------------------------ factories

    @classmethod
    def monocular(cls, image, timestamp, extractor, K, dist_coef, bf, th_depth) -> "Frame":
        """Frame from a single image, without stereo information."""
        frame = cls._create(timestamp, extractor, None, K, dist_coef, bf, th_depth)
        frame.keys, frame.descriptors = frame._extract(extractor, image)
        if not frame.keys:
            return frame
        frame.undistort_key_points()
        n = frame.n
        frame.u_right = [-1.0] * n
        frame.depth = [-1.0] * n
        frame._reset_associations()
        frame._calibrate(image)
        frame.assign_features_to_grid()
        return frame

    @classmethod
    def rgbd(cls, image, depth, timestamp, extractor, K, dist_coef, bf, th_depth) -> "Frame":
        """Frame from an image and a registered depth map."""
        frame = cls._create(timestamp, extractor, None, K, dist_coef, bf, th_depth)
        frame.keys, frame.descriptors = frame._extract(extractor, image)
        if not frame.keys:
            return frame
        frame.undistort_key_points()
        frame.compute_stereo_from_rgbd(depth)
        frame._reset_associations()
        frame._calibrate(image)
        frame.assign_features_to_grid()
        return frame

    @classmethod
    def stereo(
        cls, left, right, timestamp, extractor_left, extractor_right, K, dist_coef, bf, th_depth
    ) -> "Frame":
        """Frame from a rectified stereo pair."""
        frame = cls._create(
            timestamp, extractor_left, extractor_right, K, dist_coef, bf, th_depth
        )
        frame.keys, frame.descriptors = frame._extract(extractor_left, left)
        frame.keys_right, frame.descriptors_right = frame._extract(extractor_right, right)
        if not frame.keys:
            return frame
        frame.undistort_key_points()
        frame._calibrate(left)
        frame.compute_stereo_matches()
        frame._reset_associations()
        frame.assign_features_to_grid()
        return frame

    @classmethod
    def reset_calibration(cls) -> None:
        """Forget the shared calibration; the next frame recomputes it."""
        Frame._calibration = None

    @classmethod
    def _create(cls, timestamp, extractor_left, extractor_right, K, dist_coef, bf, th_depth):
        frame = cls(timestamp, K, dist_coef, bf, th_depth, extractor_left, extractor_right)
        frame.id = next(Frame._ids)
        frame.scale = extractor_left.scale_info
        frame.camera = Frame._calibration
        return frame

    @staticmethod
    def _extract(extractor: _Extractor, image) -> tuple[list[KeyPoint], np.ndarray]:
        keys, descriptors = extractor(image)
        desc = np.asarray(descriptors, dtype=np.uint8)
        if desc.ndim == 1:
            desc = desc.reshape(len(keys), -1) if len(keys) else np.zeros((0, 32), np.uint8)
        return list(keys), desc

    def _reset_associations(self) -> None:
        self.map_points = [None] * self.n
        self.outliers = [False] * self.n

    def _calibrate(self, image) -> None:
        if Frame._calibration is None:
            min_x, max_x, min_y, max_y = self.compute_image_bounds(image)
            Frame._calibration = _Calibration(
                fx=float(self.K[0, 0]),
                fy=float(self.K[1, 1]),
                cx=float(self.K[0, 2]),
                cy=float(self.K[1, 2]),
                min_x=min_x,
                max_x=max_x,
                min_y=min_y,
                max_y=max_y,
            )
        self.camera = Frame._calibration
        self.mb = self.bf / self.camera.fx

    @staticmethod
    def _empty_grid() -> list[list[list[int]]]:
        return [[[] for _ in range(FRAME_GRID_ROWS)] for _ in range(FRAME_GRID_COLS)]

    # ----------------------------------------------------------- properties

    @property
    def n(self) -> int:
        return len(self.keys)

    def _cam(self) -> _Calibration:
        if self.camera is None:
            raise RuntimeError("frame has no calibration")
        return self.camera

    @property
    def fx(self) -> float:
        return self._cam().fx

    @property
    def fy(self) -> float:
        return self._cam().fy

    @property
    def cx(self) -> float:
        return self._cam().cx

    @property
    def cy(self) -> float:
        return self._cam().cy

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """Undistorted image bounds (min_x, max_x, min_y, max_y)."""
        cam = self._cam()
        return cam.min_x, cam.max_x, cam.min_y, cam.max_y

    # -------------------------------------------------------------- methods

    def copy(self) -> "Frame":
        """Independent copy sharing the extractors and reference keyframe."""
        other = _copy.copy(self)
        other.K = self.K.copy()
        other.dist_coef = self.dist_coef.copy()
        other.keys = list(self.keys)
        other.keys_right = list(self.keys_right)
        other.keys_un = list(self.keys_un)
        other.descriptors = self.descriptors.copy()
        other.descriptors_right = self.descriptors_right.copy()
        other.u_right = list(self.u_right)
        other.depth = list(self.depth)
        other.map_points = list(self.map_points)
        other.outliers = list(self.outliers)
        other.grid = [[list(cell) for cell in column] for column in self.grid]
        other.tcw = other.rcw = other.rwc = other.t_cw = other.ow = None
        if self.tcw is not None:
            other.set_pose(self.tcw)
        return other

    def assign_features_to_grid(self) -> None:
        """Bucket the undistorted keypoints into the grid cells."""
        self.grid = self._empty_grid()
        for i, kp in enumerate(self.keys_un):
            pos = self.pos_in_grid(kp)
            if pos is not None:
                self.grid[pos[0]][pos[1]].append(i)

    def set_pose(self, tcw) -> None:
        """Set the world-to-camera transform and derived matrices."""
        self.tcw = np.array(tcw, dtype=np.float64).reshape(4, 4)
        self.rcw = self.tcw[:3, :3].copy()
        self.rwc = self.rcw.T.copy()
        self.t_cw = self.tcw[:3, 3].copy()
        self.ow = -self.rcw.T @ self.t_cw

    def get_features_in_area(
        self, x: float, y: float, r: float, min_level: int = -1, max_level: int = -1
    ) -> list[int]:
        """Indices of keypoints inside the square of half-size ``r`` around (x, y)."""
        cam = self._cam()
        found: list[int] = []

        min_cell_x = max(0, int(math.floor((x - cam.min_x - r) * cam.grid_width_inv)))
        if min_cell_x >= FRAME_GRID_COLS:
            return found
        max_cell_x = min(
            FRAME_GRID_COLS - 1, int(math.ceil((x - cam.min_x + r) * cam.grid_width_inv))
        )
        if max_cell_x < 0:
            return found
        min_cell_y = max(0, int(math.floor((y - cam.min_y - r) * cam.grid_height_inv)))
        if min_cell_y >= FRAME_GRID_ROWS:
            return found
        max_cell_y = min(
            FRAME_GRID_ROWS - 1, int(math.ceil((y - cam.min_y + r) * cam.grid_height_inv))
        )
        if max_cell_y < 0:
            return found

        check_levels = min_level > 0 or max_level >= 0

        for ix in range(min_cell_x, max_cell_x + 1):
            for iy in range(min_cell_y, max_cell_y + 1):
                for idx in self.grid[ix][iy]:
                    kp = self.keys_un[idx]
                    if check_levels:
                        if kp.octave < min_level:
                            continue
                        if max_level >= 0 and kp.octave > max_level:
                            continue
                    if abs(kp.x - x) < r and abs(kp.y - y) < r:
                        found.append(idx)
        return found

    def pos_in_grid(self, keypoint: KeyPoint) -> tuple[int, int] | None:
        """Grid cell of a keypoint, or ``None`` if it falls outside the grid."""
        cam = self._cam()
        pos_x = _round((keypoint.x - cam.min_x) * cam.grid_width_inv)
        pos_y = _round((keypoint.y - cam.min_y) * cam.grid_height_inv)
        if not (0 <= pos_x < FRAME_GRID_COLS and 0 <= pos_y < FRAME_GRID_ROWS):
            return None
        return pos_x, pos_y

    def undistort_key_points(self) -> None:
        """Compute the undistorted keypoints from the raw ones."""
        if self.dist_coef.size == 0 or self.dist_coef[0] == 0.0:
            self.keys_un = list(self.keys)
            return
        if not self.keys:
            self.keys_un = []
            return
        pts = np.array([(kp.x, kp.y) for kp in self.keys])
        undistorted = undistort_points(pts, self.K, self.dist_coef)
        self.keys_un = [
            dataclasses.replace(kp, x=float(u), y=float(v))
            for kp, (u, v) in zip(self.keys, undistorted)
        ]

    def compute_image_bounds(self, image) -> tuple[float, float, float, float]:
        """Bounds (min_x, max_x, min_y, max_y) of the undistorted image."""
        rows, cols = np.asarray(image).shape[:2]
        if self.dist_coef.size and self.dist_coef[0] != 0.0:
            corners = np.array(
                [[0.0, 0.0], [cols, 0.0], [0.0, rows], [cols, rows]], dtype=np.float64
            )
            m = undistort_points(corners, self.K, self.dist_coef)
            return (
                float(min(m[0, 0], m[2, 0])),
                float(max(m[1, 0], m[3, 0])),
                float(min(m[0, 1], m[1, 1])),
                float(max(m[2, 1], m[3, 1])),
            )
        return 0.0, float(cols), 0.0, float(rows)

    def compute_stereo_matches(self) -> None:
        """Match left keypoints along the epipolar rows of the right image,
        refine by block matching and fill ``u_right`` and ``depth``."""
        n = self.n
        self.u_right = [-1.0] * n
        self.depth = [-1.0] * n
        if self.extractor_left is None or self.extractor_right is None or self.scale is None:
            raise RuntimeError("stereo matching needs both extractors")

        th_orb_dist = (TH_HIGH + TH_LOW) // 2
        pyramid_left = self.extractor_left.image_pyramid
        pyramid_right = self.extractor_right.image_pyramid
        n_rows = np.asarray(pyramid_left[0]).shape[0]

        row_indices: list[list[int]] = [[] for _ in range(n_rows)]
        for i_r, kp in enumerate(self.keys_right):
            r = 2.0 * self.scale.scale_factors[kp.octave]
            max_r = math.ceil(kp.y + r)
            min_r = math.floor(kp.y - r)
            for yi in range(max(0, min_r), min(n_rows - 1, max_r) + 1):
                row_indices[yi].append(i_r)

        min_z = self.mb
        min_d = 0.0
        max_d = self.bf / min_z

        w = _SAD_HALF_WINDOW
        span = _SAD_SEARCH_RANGE
        dist_idx: list[tuple[int, int]] = []

        for i_l, kp_l in enumerate(self.keys):
            level_l = kp_l.octave
            u_l, v_l = kp_l.x, kp_l.y
            row = int(v_l)
            if not 0 <= row < n_rows:
                continue
            candidates = row_indices[row]
            if not candidates:
                continue

            min_u = u_l - max_d
            max_u = u_l - min_d
            if max_u < 0:
                continue

            best_dist = TH_HIGH
            best_idx_r = 0
            d_l = self.descriptors[i_l]
            for i_r in candidates:
                kp_r = self.keys_right[i_r]
                if kp_r.octave < level_l - 1 or kp_r.octave > level_l + 1:
                    continue
                if min_u <= kp_r.x <= max_u:
                    dist = descriptor_distance(d_l, self.descriptors_right[i_r])
                    if dist < best_dist:
                        best_dist = dist
                        best_idx_r = i_r

            if best_dist >= th_orb_dist:
                continue

            u_r0 = self.keys_right[best_idx_r].x
            scale_factor = self.scale.inv_scale_factors[level_l]
            scaled_ul = _round(u_l * scale_factor)
            scaled_vl = _round(v_l * scale_factor)
            scaled_ur0 = _round(u_r0 * scale_factor)

            img_l = np.asarray(pyramid_left[level_l])
            img_r = np.asarray(pyramid_right[level_l])
            if (
                scaled_vl - w < 0
                or scaled_vl + w + 1 > img_l.shape[0]
                or scaled_ul - w < 0
                or scaled_ul + w + 1 > img_l.shape[1]
            ):
                continue

            window_l = img_l[scaled_vl - w : scaled_vl + w + 1, scaled_ul - w : scaled_ul + w + 1]
            window_l = window_l.astype(np.float32)
            window_l = window_l - window_l[w, w]

            ini_u = scaled_ur0 + span - w
            end_u = scaled_ur0 + span + w + 1
            if ini_u < 0 or end_u >= img_r.shape[1]:
                continue
            if (
                scaled_ur0 - span - w < 0
                or scaled_ur0 + span + w + 1 > img_r.shape[1]
                or scaled_vl + w + 1 > img_r.shape[0]
            ):
                continue

            best_sad = None
            best_inc_r = 0
            dists = [0.0] * (2 * span + 1)
            for inc_r in range(-span, span + 1):
                start = scaled_ur0 + inc_r - w
                window_r = img_r[scaled_vl - w : scaled_vl + w + 1, start : start + 2 * w + 1]
                window_r = window_r.astype(np.float32)
                window_r = window_r - window_r[w, w]
                dist = float(np.abs(window_l - window_r).sum())
                if best_sad is None or dist < best_sad:
                    best_sad = int(dist)
                    best_inc_r = inc_r
                dists[span + inc_r] = dist

            if best_inc_r in (-span, span):
                continue

            dist1 = dists[span + best_inc_r - 1]
            dist2 = dists[span + best_inc_r]
            dist3 = dists[span + best_inc_r + 1]
            denominator = 2.0 * (dist1 + dist3 - 2.0 * dist2)
            if denominator == 0.0:
                continue
            delta_r = (dist1 - dist3) / denominator
            if delta_r < -1 or delta_r > 1:
                continue

            best_u_r = self.scale.scale_factors[level_l] * (scaled_ur0 + best_inc_r + delta_r)
            disparity = u_l - best_u_r

            if min_d <= disparity < max_d:
                if disparity <= 0:
                    disparity = 0.01
                    best_u_r = u_l - 0.01
                self.depth[i_l] = self.bf / disparity
                self.u_right[i_l] = best_u_r
                dist_idx.append((best_sad, i_l))

        if not dist_idx:
            return
        dist_idx.sort()
        median = dist_idx[len(dist_idx) // 2][0]
        th_dist = 1.5 * 1.4 * median

        for dist, idx in reversed(dist_idx):
            if dist < th_dist:
                break
            self.u_right[idx] = -1.0
            self.depth[idx] = -1.0

    def compute_stereo_from_rgbd(self, depth) -> None:
        """Read keypoint depths from a depth map and derive virtual right coordinates."""
        depth_map = np.asarray(depth)
        n = self.n
        self.u_right = [-1.0] * n
        self.depth = [-1.0] * n
        for i, (kp, kp_un) in enumerate(zip(self.keys, self.keys_un)):
            d = float(depth_map[int(kp.y), int(kp.x)])
            if d > 0:
                self.depth[i] = d
                self.u_right[i] = kp_un.x - self.bf / d

    def unproject_stereo(self, index: int) -> np.ndarray | None:
        """World position of a keypoint with known depth, or ``None``."""
        z = self.depth[index]
        if z <= 0:
            return None
        if self.rwc is None or self.ow is None:
            raise RuntimeError("frame pose is not set")
        cam = self._cam()
        kp = self.keys_un[index]
        x = (kp.x - cam.cx) * z * cam.invfx
        y = (kp.y - cam.cy) * z * cam.invfy
        return self.rwc @ np.array([x, y, z]) + self.ow