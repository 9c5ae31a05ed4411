import math
import random
from dataclasses import dataclass

import numpy as np
import pytest

from orbslam_core.ar_plane import (
    Plane,
    camera_pose_gl_matrix,
    detect_plane,
    exp_so3,
    status_message,
)


@dataclass
class MapPointStub:
    world_pos: np.ndarray
    observations: int = 10
    is_bad: bool = False


def _plane_points(count, z=2.0, noise=0.0, seed=1, observations=10):
    rng = np.random.default_rng(seed)
    pts = []
    for _ in range(count):
        x, y = rng.uniform(-1, 1, 2)
        zz = z + (rng.normal(0, noise) if noise else 0.0)
        pts.append(MapPointStub(np.array([x, y, zz]), observations))
    return pts


def test_exp_so3_zero_is_identity():
    assert np.allclose(exp_so3(0.0, 0.0, 0.0), np.eye(3))


@pytest.mark.parametrize("vec", [(0.3, -0.2, 0.9), (1e-5, 2e-5, 0.0), (2.0, 1.0, -1.5)])
def test_exp_so3_is_rotation(vec):
    r = exp_so3(*vec)
    assert np.allclose(r @ r.T, np.eye(3), atol=1e-8)
    assert np.linalg.det(r) == pytest.approx(1.0, abs=1e-8)
    # the axis is left unchanged
    assert np.allclose(r @ np.array(vec), np.array(vec), atol=1e-8)


def test_exp_so3_quarter_turn_about_z():
    r = exp_so3(0.0, 0.0, math.pi / 2)
    assert np.allclose(r @ np.array([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0], atol=1e-9)


def test_exp_so3_vector_form_matches_scalars():
    assert np.allclose(exp_so3(np.array([0.1, 0.2, 0.3])), exp_so3(0.1, 0.2, 0.3))


@pytest.mark.parametrize("normal", [(0.0, 0.0, 1.0), (0.0, 1.0, 0.0), (0.0, -1.0, 0.0), (0.6, 0.0, 0.8)])
def test_from_normal_maps_up_to_normal(normal):
    plane = Plane.from_normal(normal, (1.0, 2.0, 3.0), rang=0.4)
    rotation = plane.tpw[:3, :3]
    assert np.allclose(rotation @ np.array([0.0, 1.0, 0.0]), normal, atol=1e-9)
    assert np.allclose(plane.tpw[:3, 3], [1.0, 2.0, 3.0])
    assert np.allclose(rotation @ rotation.T, np.eye(3), atol=1e-9)


def test_gl_matrix_is_column_major():
    plane = Plane.from_normal((0.0, 0.0, 1.0), (1.0, 2.0, 3.0), rang=0.2)
    gl = plane.gl_matrix()
    assert np.allclose(gl, plane.tpw.T.reshape(-1))
    assert list(gl[12:15]) == pytest.approx([1.0, 2.0, 3.0])
    assert gl[15] == 1.0


def test_camera_pose_gl_matrix():
    assert camera_pose_gl_matrix(None) is None
    assert camera_pose_gl_matrix(np.zeros((0, 0))) is None
    tcw = np.eye(4)
    tcw[:3, :3] = exp_so3(0.1, 0.2, 0.3)
    tcw[:3, 3] = [4.0, 5.0, 6.0]
    gl = camera_pose_gl_matrix(tcw)
    assert np.allclose(gl, tcw.T.reshape(-1))


def test_plane_fit_normal_points_away_from_camera():
    points = _plane_points(30)
    plane = Plane(points, np.eye(4), rang=0.0)
    assert np.allclose(plane.n, [0.0, 0.0, 1.0], atol=1e-6)
    expected_origin = np.mean([p.world_pos for p in points], axis=0)
    assert np.allclose(plane.o, expected_origin)


def test_recompute_ignores_bad_points():
    points = _plane_points(20)
    outlier = MapPointStub(np.array([0.0, 0.0, 10.0]), is_bad=True)
    plane = Plane(points + [outlier], np.eye(4), rang=0.0)
    assert np.allclose(plane.n, [0.0, 0.0, 1.0], atol=1e-6)
    assert plane.o[2] == pytest.approx(2.0)


def test_recompute_keeps_side_after_points_move():
    points = _plane_points(20)
    plane = Plane(points, np.eye(4), rang=0.0)
    first_xc = plane.xc.copy()
    for p in points:
        p.world_pos = p.world_pos + np.array([0.0, 0.0, 0.5])
    plane.recompute()
    assert np.allclose(plane.xc, first_xc)
    assert plane.o[2] == pytest.approx(2.5)


def test_plane_without_valid_points_raises():
    points = [MapPointStub(np.array([0.0, 0.0, 1.0]), is_bad=True)]
    with pytest.raises(ValueError):
        Plane(points, np.eye(4), rang=0.0)


def test_detect_plane_needs_enough_points():
    assert detect_plane(np.eye(4), _plane_points(49), 50, random.Random(0)) is None


def test_detect_plane_needs_observed_points():
    points = _plane_points(80, observations=5)
    assert detect_plane(np.eye(4), points, 50, random.Random(0)) is None


def test_detect_plane_rejects_outliers():
    plane_points = _plane_points(60, noise=0.001)
    outliers = [MapPointStub(np.array([0.1 * i, 0.0, 5.0 + i])) for i in range(10)]
    points = plane_points + outliers + [None]
    plane = detect_plane(np.eye(4), points, 50, random.Random(3))
    assert plane is not None
    assert all(any(p is q for q in plane_points) for p in plane.points)
    assert len(plane.points) >= 21
    assert np.allclose(plane.n, [0.0, 0.0, 1.0], atol=0.05)


def test_status_message():
    assert status_message(2, False) == ("SLAM ON", (0, 255, 0))
    assert status_message(2, True) == ("LOCALIZATION ON", (0, 255, 0))
    assert status_message(3, True) == ("LOCALIZATION LOST", (255, 0, 0))
    assert status_message(3, False)[0] == "SLAM LOST"
    assert status_message(1, True)[0] == "SLAM NOT INITIALIZED"
    assert status_message(0, False) is None