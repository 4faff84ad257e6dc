# slamkit

Building blocks for visual SLAM in Python and NumPy.

## What is inside

- `slamkit.lie` — rotations (`SO3`) and rigid-body transforms (`SE3`) with
  `exp`/`log`, `inverse`, `matrix`, `adjoint` and composition by `*` (which
  also applies a transform to a 3-vector or an `(N, 3)` array). Free functions:
  `hat`, `vee`, `se3_hat`, `se3_vee`, `quaternion_to_matrix`,
  `matrix_to_quaternion`, `angle_axis_to_matrix` and `euler_angles_zyx`.
  Quaternions are `(w, x, y, z)`; twists are `(rho, phi)`, translation first.
- `slamkit.algorithm` — `triangulation(poses, points)`: linear SVD
  triangulation from normalised-plane observations; returns the world point, or
  `None` when the solution is poorly constrained. `to_vec2` turns a point into a
  2-vector.
- `slamkit.camera` — `Camera`, a pinhole model with an extrinsic `pose`, moving
  points between world, camera and pixel coordinates.
- `slamkit.trajectory` — `parse_trajectory`/`read_trajectory` for
  `time tx ty tz qx qy qz qw` files and `compute_rmse` between two trajectories.
- `slamkit.curve_fitting` — fitting `y = exp(a·x² + b·x + c)`:
  `generate_data`, `residuals`, `jacobian`, `fit_gauss_newton` and
  `fit_levenberg_marquardt`, both returning a `FitResult`.
- `slamkit.imaging` — `PinholeIntrinsics`, `Distortion`, `distort_point`,
  `undistort_image` (radial–tangential, nearest neighbour) and
  `disparity_to_point_cloud`, which turns a given disparity map into
  `(x, y, z, intensity)` points.
- `slamkit.pointcloud` — `parse_poses`, `depth_to_point_cloud` and
  `join_point_clouds` for RGB-D frames (clouds are `(N, 6)` arrays of
  `x, y, z, r, g, b`), plus `statistical_outlier_removal` and
  `voxel_grid_filter`.
- `slamkit.pose_graph` — `Vertex`, `Edge` and `PoseGraph` with
  Levenberg–Marquardt `optimize`; `read_g2o` and `write_g2o` handle
  `VERTEX_SE3:QUAT` and `EDGE_SE3:QUAT` records. When reading, vertex 0 is fixed.
- `slamkit.dense_mapping` — monocular dense depth estimation: epipolar search
  with NCC matching (`epipolar_search`, `ncc`) and Gaussian depth fusion
  (`update_depth_filter`, `update`), with `evaluate_depth` and `read_dataset`.
- Stereo visual-odometry pieces:
  - `slamkit.config` — `Config.set_parameter_file` / `Config.get` over a YAML
    file (a `%YAML:1.0` header and `!!opencv-matrix` nodes are accepted).
  - `slamkit.entities` — `Frame`, `Feature` and `MapPoint`, with id factories
    `Frame.create` and `MapPoint.create`.
  - `slamkit.landmark_map` — `Map`, holding all keyframes and landmarks and a
    sliding window of active ones.
  - `slamkit.dataset` — `Dataset` reading `calib.txt` (`parse_calibration`) and
    `image_0/`, `image_1/` pairs named `000000.png`, … at half size.
  - `slamkit.projection` — `PoseOnlyProjection`, `StereoProjection` and
    `huber_weight`.
  - `slamkit.backend` — `Backend`, a worker thread that bundle-adjusts the
    active window when `update_map()` is called; `optimize` can also be called
    directly and returns the outlier and inlier counts.

## Installing

```
pip install .
```

With the test tools:

```
pip install ".[test]"
```

## Using the library

```python
import numpy as np
from slamkit.lie import SE3, hat, vee
from slamkit.camera import Camera

xi = np.array([1e-4, 0.0, 0.0, 0.0, 0.0, np.pi / 2])
pose = SE3.exp(xi)
print(pose.matrix())            # 4x4 homogeneous matrix
print(pose.log())               # back to the 6-vector
print(vee(hat(np.array([1.0, 2.0, 3.0]))))

camera = Camera(718.856, 718.856, 607.1928, 185.2157, 0.573, SE3())
p_c = camera.pixel_to_camera(np.array([600.0, 200.0]), 10.0)
print(camera.camera_to_pixel(p_c))   # the pixel again
```

## Commands

RMSE between a ground-truth and an estimated trajectory (defaults:
`groundtruth.txt` and `estimated.txt`):

```
slamkit-trajectory-error groundtruth.txt estimated.txt
```

Curve fitting on generated data (`--method gauss-newton|levenberg-marquardt`,
`--seed`, `--points`, `--sigma`):

```
slamkit-curve-fit
```

Pose-graph optimisation of a `.g2o` file (`--output`, default `result.g2o`;
`--iterations`, default 30):

```
slamkit-pose-graph sphere.g2o
```

Monocular dense depth estimation on a dataset directory holding
`first_200_frames_traj_over_table_input_sequence.txt`, `images/` and
`depthmaps/scene_000.depth` (`--output`, default `depth.png`):

```
slamkit-dense-mapping path_to_test_dataset
```

## What it does not do

- There is no front end: no feature detection, optical-flow tracking or
  keyframe selection, and no command that runs a stereo visual odometry over a
  dataset. The config, entity, map, dataset, projection and back-end modules
  are parts to build one from.
- Nothing is drawn on screen: trajectories, point clouds and maps are returned
  as arrays, not displayed.
- Stereo disparity is not computed; `disparity_to_point_cloud` takes a
  disparity map you supply.
- Point clouds are not written to files, and no surface meshing is done.

## Running the tests

```
pytest
```