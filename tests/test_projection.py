import numpy as np
import pytest

from slamkit.camera import Camera
from slamkit.lie import SE3
from slamkit.projection import PoseOnlyProjection, StereoProjection, huber_weight

K = np.array([[500.0, 0.0, 320.0], [0.0, 480.0, 240.0], [0.0, 0.0, 1.0]])


def _pose():
    return SE3.exp(np.array([0.1, -0.2, 0.3, 0.05, -0.02, 0.04]))


def _numeric_pose_jacobian(fn, pose, eps=1e-6):
    cols = []
    for i in range(6):
        d = np.zeros(6)
        d[i] = eps
        plus = fn(SE3.exp(d) * pose)
        minus = fn(SE3.exp(-d) * pose)
        cols.append((plus - minus) / (2 * eps))
    return np.column_stack(cols)


def test_huber_weight_inside_is_one():
    assert huber_weight(4.0, 5.991) == 1.0


def test_huber_weight_outside_scales_down():
    delta = 2.0
    assert huber_weight(4 * delta * delta, delta) == pytest.approx(0.5)


def test_huber_weight_decreases_with_error():
    assert huber_weight(100.0, 3.0) > huber_weight(400.0, 3.0)


def test_huber_weight_rejects_bad_delta():
    with pytest.raises(ValueError):
        huber_weight(1.0, 0.0)


def test_pose_only_error_zero_at_projection():
    point = np.array([0.5, -0.3, 4.0])
    pose = _pose()
    camera = Camera(500.0, 480.0, 320.0, 240.0, 0.0, SE3())
    measurement = camera.world_to_pixel(point, pose)
    model = PoseOnlyProjection(point, K)
    np.testing.assert_allclose(model.error(pose, measurement), np.zeros(2), atol=1e-9)


def test_pose_only_error_is_measurement_minus_projection():
    point = np.array([0.0, 0.0, 2.0])
    model = PoseOnlyProjection(point, K)
    np.testing.assert_allclose(model.error(SE3(), [330.0, 250.0]), [10.0, 10.0])


def test_pose_only_jacobian_matches_numeric():
    point = np.array([0.4, 0.2, 5.0])
    pose = _pose()
    model = PoseOnlyProjection(point, K)
    measurement = np.array([300.0, 200.0])
    numeric = _numeric_pose_jacobian(lambda p: model.error(p, measurement), pose)
    np.testing.assert_allclose(model.jacobian(pose), numeric, rtol=1e-5, atol=1e-4)


def test_pose_only_rejects_bad_shapes():
    with pytest.raises(ValueError):
        PoseOnlyProjection([1.0, 2.0], K)
    with pytest.raises(ValueError):
        PoseOnlyProjection([1.0, 2.0, 3.0], np.eye(2))


def test_stereo_error_zero_at_projection():
    ext = SE3(None, np.array([-0.5, 0.0, 0.0]))
    camera = Camera(500.0, 480.0, 320.0, 240.0, 0.5, ext)
    pose = _pose()
    point = np.array([1.0, 0.5, 6.0])
    model = StereoProjection(K, ext)
    measurement = camera.world_to_pixel(point, pose)
    np.testing.assert_allclose(model.error(pose, point, measurement), np.zeros(2), atol=1e-9)


def test_stereo_pose_jacobian_matches_numeric_with_identity_extrinsic():
    pose = _pose()
    point = np.array([-0.7, 0.3, 5.5])
    model = StereoProjection(K)
    measurement = np.array([310.0, 230.0])
    j_pose, _ = model.jacobians(pose, point)
    numeric = _numeric_pose_jacobian(lambda p: model.error(p, point, measurement), pose)
    np.testing.assert_allclose(j_pose, numeric, rtol=1e-5, atol=1e-4)


def test_stereo_point_jacobian_matches_numeric():
    ext = SE3(None, np.array([-0.5, 0.0, 0.0]))
    pose = _pose()
    point = np.array([0.2, -0.4, 7.0])
    model = StereoProjection(K, ext)
    measurement = np.array([320.0, 240.0])
    _, j_point = model.jacobians(pose, point)
    eps = 1e-6
    cols = []
    for i in range(3):
        d = np.zeros(3)
        d[i] = eps
        cols.append(
            (model.error(pose, point + d, measurement) - model.error(pose, point - d, measurement))
            / (2 * eps)
        )
    np.testing.assert_allclose(j_point, np.column_stack(cols), rtol=1e-5, atol=1e-5)
    assert j_point.shape == (2, 3)