import numpy as np
import pytest

from orbslam_core.frame import (
    FRAME_GRID_COLS,
    FRAME_GRID_ROWS,
    Frame,
    ScaleInfo,
    descriptor_distance,
    undistort_points,
)
from orbslam_core.twoview import KeyPoint

K = np.array([[500.0, 0.0, 100.0], [0.0, 500.0, 50.0], [0.0, 0.0, 1.0]])
NO_DIST = np.zeros(4)
BF = 50.0


class FakeExtractor:
    def __init__(self, keys, descriptors, pyramid=None, levels=1):
        self.keys = list(keys)
        self.descriptors = np.asarray(descriptors, dtype=np.uint8)
        self.image_pyramid = pyramid if pyramid is not None else []
        self.scale_info = ScaleInfo.from_factor(levels, 1.2)

    def __call__(self, image):
        return list(self.keys), self.descriptors.copy()


@pytest.fixture(autouse=True)
def fresh_calibration():
    Frame.reset_calibration()
    yield
    Frame.reset_calibration()


def _descriptors(n, seed=0):
    return np.random.default_rng(seed).integers(0, 256, size=(n, 32), dtype=np.uint8)


def _mono(keys, K_=K, dist=NO_DIST, image=None):
    image = np.zeros((100, 200), dtype=np.uint8) if image is None else image
    ext = FakeExtractor(keys, _descriptors(len(keys)), levels=2)
    return Frame.monocular(image, 1.5, ext, K_, dist, BF, 40.0)


def test_descriptor_distance_full_and_zero():
    a = np.zeros(32, dtype=np.uint8)
    b = np.full(32, 255, dtype=np.uint8)
    assert descriptor_distance(a, b) == 256
    assert descriptor_distance(b, b) == 0


def test_descriptor_distance_is_symmetric():
    d = _descriptors(2, seed=3)
    assert descriptor_distance(d[0], d[1]) == descriptor_distance(d[1], d[0])


def test_undistort_without_distortion_is_identity():
    pts = np.array([[10.0, 20.0], [150.0, 80.0]])
    out = undistort_points(pts, K, np.zeros(5))
    np.testing.assert_allclose(out, pts)


def test_undistort_inverts_radial_distortion():
    k1 = -0.1
    ideal = np.array([[120.0, 60.0], [40.0, 30.0], [180.0, 90.0]])
    xn = (ideal[:, 0] - K[0, 2]) / K[0, 0]
    yn = (ideal[:, 1] - K[1, 2]) / K[1, 1]
    factor = 1 + k1 * (xn * xn + yn * yn)
    distorted = np.column_stack(
        [K[0, 0] * xn * factor + K[0, 2], K[1, 1] * yn * factor + K[1, 2]]
    )
    out = undistort_points(distorted, K, [k1, 0.0, 0.0, 0.0])
    np.testing.assert_allclose(out, ideal, atol=1e-4)


def test_scale_info_inverse_consistency():
    info = ScaleInfo.from_factor(4, 1.2)
    assert len(info.scale_factors) == 4
    assert info.scale_factors[0] == 1.0
    for f, inv, s2 in zip(info.scale_factors, info.inv_scale_factors, info.level_sigma2):
        assert f * inv == pytest.approx(1.0)
        assert s2 == pytest.approx(f * f)


def test_scale_info_rejects_zero_levels():
    with pytest.raises(ValueError):
        ScaleInfo.from_factor(0, 1.2)


def test_monocular_frame_defaults():
    keys = [KeyPoint(10, 10), KeyPoint(100, 50), KeyPoint(190, 90)]
    frame = _mono(keys)
    assert frame.n == 3
    assert frame.u_right == [-1.0] * 3
    assert frame.depth == [-1.0] * 3
    assert frame.map_points == [None] * 3
    assert frame.outliers == [False] * 3
    assert frame.keys_un == keys
    assert frame.fx == K[0, 0]
    assert frame.mb == pytest.approx(BF / K[0, 0])
    assert frame.bounds == (0.0, 200.0, 0.0, 100.0)


def test_frame_ids_increase():
    a = _mono([KeyPoint(10, 10)])
    b = _mono([KeyPoint(10, 10)])
    assert b.id > a.id


def test_calibration_is_shared_until_reset():
    _mono([KeyPoint(10, 10)])
    other_k = K.copy()
    other_k[0, 0] = 800.0
    second = _mono([KeyPoint(10, 10)], K_=other_k)
    assert second.fx == K[0, 0]
    Frame.reset_calibration()
    third = _mono([KeyPoint(10, 10)], K_=other_k)
    assert third.fx == 800.0


def test_empty_frame():
    frame = _mono([])
    assert frame.n == 0
    assert frame.map_points == []
    assert all(not cell for column in frame.grid for cell in column)


def test_every_key_lands_in_its_grid_cell():
    keys = [KeyPoint(10, 10), KeyPoint(100, 50), KeyPoint(150, 80)]
    frame = _mono(keys)
    assert len(frame.grid) == FRAME_GRID_COLS
    assert len(frame.grid[0]) == FRAME_GRID_ROWS
    for i, kp in enumerate(keys):
        ix, iy = frame.pos_in_grid(kp)
        assert i in frame.grid[ix][iy]
    assert sum(len(cell) for column in frame.grid for cell in column) == len(keys)


def test_pos_in_grid_outside_image():
    frame = _mono([KeyPoint(10, 10)])
    assert frame.pos_in_grid(KeyPoint(-50, 10)) is None
    assert frame.pos_in_grid(KeyPoint(10, 400)) is None


def test_get_features_in_area():
    keys = [KeyPoint(100, 50), KeyPoint(105, 52), KeyPoint(180, 90)]
    frame = _mono(keys)
    assert sorted(frame.get_features_in_area(100, 50, 10)) == [0, 1]
    assert frame.get_features_in_area(180, 90, 3) == [2]
    assert frame.get_features_in_area(20, 20, 5) == []


def test_get_features_in_area_levels():
    keys = [KeyPoint(100, 50, 0), KeyPoint(101, 50, 1)]
    frame = _mono(keys)
    assert frame.get_features_in_area(100, 50, 5, 1, -1) == [1]
    assert frame.get_features_in_area(100, 50, 5, 0, 0) == [0]


def test_distorted_frame_undistorts_keys():
    keys = [KeyPoint(20, 15, 1), KeyPoint(180, 85, 0)]
    frame = _mono(keys, dist=[-0.2, 0.0, 0.0, 0.0])
    assert [kp.octave for kp in frame.keys_un] == [1, 0]
    assert frame.keys_un[0] != keys[0]
    min_x, max_x, min_y, max_y = frame.bounds
    assert min_x < max_x and min_y < max_y


def test_set_pose_camera_center():
    frame = _mono([KeyPoint(10, 10)])
    tcw = np.eye(4)
    tcw[:3, 3] = [1.0, -2.0, 3.0]
    frame.set_pose(tcw)
    np.testing.assert_allclose(frame.ow, [-1.0, 2.0, -3.0])
    np.testing.assert_allclose(frame.rwc, np.eye(3))


def test_unproject_without_depth_is_none():
    frame = _mono([KeyPoint(10, 10)])
    frame.set_pose(np.eye(4))
    assert frame.unproject_stereo(0) is None


def test_rgbd_depth_and_unprojection():
    keys = [KeyPoint(120, 60), KeyPoint(30, 20)]
    image = np.zeros((100, 200), dtype=np.uint8)
    depth = np.full((100, 200), 2.0, dtype=np.float32)
    depth[20, 30] = 0.0
    ext = FakeExtractor(keys, _descriptors(2))
    frame = Frame.rgbd(image, depth, 0.0, ext, K, NO_DIST, BF, 40.0)
    assert frame.depth == [2.0, -1.0]
    assert frame.u_right[0] == pytest.approx(120 - BF / 2.0)
    assert frame.u_right[1] == -1.0

    frame.set_pose(np.eye(4))
    point = frame.unproject_stereo(0)
    projected_u = K[0, 0] * point[0] / point[2] + K[0, 2]
    projected_v = K[1, 1] * point[1] / point[2] + K[1, 2]
    assert point[2] == pytest.approx(2.0)
    assert projected_u == pytest.approx(120)
    assert projected_v == pytest.approx(60)


def test_unproject_needs_pose():
    keys = [KeyPoint(120, 60)]
    depth = np.full((100, 200), 2.0, dtype=np.float32)
    ext = FakeExtractor(keys, _descriptors(1))
    frame = Frame.rgbd(np.zeros((100, 200)), depth, 0.0, ext, K, NO_DIST, BF, 40.0)
    with pytest.raises(RuntimeError):
        frame.unproject_stereo(0)


def test_copy_is_independent():
    frame = _mono([KeyPoint(10, 10), KeyPoint(50, 40)])
    frame.set_pose(np.eye(4))
    clone = frame.copy()
    clone.u_right[0] = 5.0
    clone.grid[0][0].append(99)
    assert frame.u_right[0] == -1.0
    assert 99 not in frame.grid[0][0]
    assert clone.id == frame.id
    np.testing.assert_allclose(clone.tcw, frame.tcw)
    assert clone.tcw is not frame.tcw


def test_stereo_matches_recover_disparity():
    rng = np.random.default_rng(7)
    left = rng.integers(0, 256, size=(100, 200)).astype(np.uint8)
    shift = 10
    noise = rng.integers(0, 3, size=left.shape)
    right = np.clip(np.roll(left, -shift, axis=1).astype(int) + noise, 0, 255).astype(np.uint8)

    left_keys = [KeyPoint(60, 30), KeyPoint(100, 50), KeyPoint(140, 70), KeyPoint(80, 90)]
    right_keys = [KeyPoint(kp.x - shift, kp.y) for kp in left_keys[:3]]
    desc = _descriptors(4, seed=11)

    ext_l = FakeExtractor(left_keys, desc, pyramid=[left])
    ext_r = FakeExtractor(right_keys, desc[:3], pyramid=[right])
    frame = Frame.stereo(left, right, 0.0, ext_l, ext_r, K, NO_DIST, BF, 40.0)

    assert frame.depth[3] == -1.0
    matched = [i for i in range(3) if frame.depth[i] > 0]
    assert matched
    for i in matched:
        u_l = left_keys[i].x
        assert abs(frame.u_right[i] - (u_l - shift)) <= 1.0
        assert frame.depth[i] == pytest.approx(BF / (u_l - frame.u_right[i]))
    assert len(frame.map_points) == 4