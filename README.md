# orbslam_core

Core geometry and data handling for a feature-based visual SLAM pipeline,
built on NumPy.

## What it provides

- `orbslam_core.converter`: conversions between 4x4 homogeneous matrices,
  rigid transforms (`SE3Quat`), similarity transforms (`Sim3`), 3-vectors,
  3x3 matrices and quaternions (`to_se3quat`, `se3quat_to_matrix`,
  `sim3_to_matrix`, `to_cv_se3`, `to_vector3d`, `to_matrix3d`,
  `to_quaternion`, `to_descriptor_vector`).
- `orbslam_core.twoview`: two-view geometry building blocks. It has the
  `KeyPoint` type, point normalization (`normalize`), the eight-point
  homography and fundamental estimators (`compute_h21`, `compute_f21`),
  linear triangulation (`triangulate`), essential-matrix decomposition
  (`decompose_e`) and the cheirality/reprojection check `check_rt`, which
  returns an `RTCheck`.
- `orbslam_core.initializer`: the monocular `Initializer`. It runs RANSAC on
  a homography and on a fundamental matrix over the same minimal sets,
  picks a model by score ratio and reconstructs the relative pose and the
  initial 3D points as a `Reconstruction`. When no reliable solution is
  found, `initialize` returns `None`.
- `orbslam_core.frame`: the `Frame`, with `monocular`, `rgbd` and `stereo`
  constructors that take any feature extractor returning keypoints and
  binary descriptors. It covers keypoint undistortion (`undistort_points`),
  grid-based feature lookup (`get_features_in_area`), stereo matching with
  sub-pixel block-matching refinement (`compute_stereo_matches`), depth from
  an RGB-D depth map, and back-projection (`unproject_stereo`). The
  extractor's pyramid is described by `ScaleInfo`. `descriptor_distance`
  gives the Hamming distance between descriptors.
- `orbslam_core.ar_plane`: RANSAC plane detection over map points
  (`detect_plane`), the `Plane` model with its plane-to-world transform,
  `exp_so3`, overlay messages for tracking states (`status_message`), and
  column-major 4x4 matrices for OpenGL-style consumers (`Plane.gl_matrix`,
  `camera_pose_gl_matrix`).
- `orbslam_core.sequences`: loaders for EuRoC, KITTI and TUM monocular
  sequences (`load_euroc_mono`, `load_kitti_mono`, `load_tum_mono`). It also
  has frame pacing (`frame_wait_time`) and tracking-time statistics
  (`timing_stats`, `TimingStats`).
- `orbslam_core.rgbd_stereo`: loaders for TUM RGB-D, EuRoC stereo and KITTI
  stereo sequences, consistency checks for the file lists, and
  `StereoCalibration`, which reads `LEFT.*`/`RIGHT.*` settings and validates
  them for rectification.

## What it does not do

This is a library of building blocks, not a running SLAM system. It has no
feature extractor, no tracking, mapping or loop-closing threads, no
bundle adjustment, and no command-line program that plays a dataset. It
does not draw frames or status overlays, opens no viewer window, and reads
or writes no images. Image loading and rectification remapping are left to
the caller.

## Installation

```
pip install .
```

For the test suite:

```
pip install .[test]
pytest
```

## Example

```python
import numpy as np
from orbslam_core.converter import to_se3quat, se3quat_to_matrix, to_quaternion

T = np.eye(4, dtype=np.float32)
T[:3, 3] = [1.0, 2.0, 3.0]

pose = to_se3quat(T)
assert np.allclose(se3quat_to_matrix(pose), T)
print(to_quaternion(T[:3, :3]))  # [x, y, z, w] -> [0.0, 0.0, 0.0, 1.0]
```

Loading a KITTI monocular sequence and pacing playback:

```python
from orbslam_core.sequences import load_kitti_mono, frame_wait_time, timing_stats

images, stamps = load_kitti_mono("/data/kitti/sequences/00")
wait = frame_wait_time(stamps, 0, track_time=0.02)
print(timing_stats([0.02, 0.03, 0.025]).report())
```