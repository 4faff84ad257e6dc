import numpy as np
import pytest

from slamkit.imaging import (
    Distortion,
    PinholeIntrinsics,
    disparity_to_point_cloud,
    distort_point,
    undistort_image,
)

EUROC = PinholeIntrinsics(fx=458.654, fy=457.296, cx=367.215, cy=248.375)
EUROC_DIST = Distortion(k1=-0.28340811, k2=0.07395907, p1=0.00019359, p2=1.76187114e-05)


def test_distort_point_without_distortion_is_identity():
    u, v = distort_point(100.0, 200.0, EUROC, Distortion())
    assert u == pytest.approx(100.0)
    assert v == pytest.approx(200.0)


def test_principal_point_is_fixed_by_distortion():
    u, v = distort_point(EUROC.cx, EUROC.cy, EUROC, EUROC_DIST)
    assert u == pytest.approx(EUROC.cx)
    assert v == pytest.approx(EUROC.cy)


def test_distort_point_accepts_arrays():
    us = np.array([10.0, 300.0])
    vs = np.array([20.0, 100.0])
    u_d, v_d = distort_point(us, vs, EUROC, EUROC_DIST)
    assert u_d.shape == (2,)
    for i in range(2):
        su, sv = distort_point(us[i], vs[i], EUROC, EUROC_DIST)
        assert u_d[i] == pytest.approx(su)
        assert v_d[i] == pytest.approx(sv)


def test_undistort_without_distortion_returns_same_image():
    rng = np.random.default_rng(0)
    img = rng.integers(0, 256, size=(30, 40), dtype=np.uint8)
    intr = PinholeIntrinsics(50.0, 50.0, 20.0, 15.0)
    out = undistort_image(img, intr, Distortion())
    np.testing.assert_array_equal(out, img)
    assert out.dtype == np.uint8


def test_undistort_blanks_pixels_without_source():
    img = np.full((21, 21), 200, dtype=np.uint8)
    intr = PinholeIntrinsics(10.0, 10.0, 10.0, 10.0)
    out = undistort_image(img, intr, Distortion(k1=5.0))
    assert out[0, 0] == 0
    assert out[10, 10] == 200


def test_undistort_rejects_bad_shape():
    with pytest.raises(ValueError):
        undistort_image(np.zeros(5), EUROC, Distortion())


def test_disparity_point_cloud_filters_and_reprojects():
    intr = PinholeIntrinsics(718.856, 718.856, 4.0, 3.0)
    gray = np.arange(48, dtype=np.uint8).reshape(6, 8)
    disp = np.full((6, 8), 20.0)
    disp[0, 0] = 0.0
    disp[1, 1] = 96.0
    disp[2, 2] = -3.0
    cloud = disparity_to_point_cloud(gray, disp, intr, 0.573)
    assert cloud.shape == (45, 4)
    np.testing.assert_allclose(cloud[:, 2], intr.fx * 0.573 / 20.0)
    u = intr.fx * cloud[:, 0] / cloud[:, 2] + intr.cx
    v = intr.fy * cloud[:, 1] / cloud[:, 2] + intr.cy
    assert np.allclose(u, np.round(u)) and np.allclose(v, np.round(v))
    np.testing.assert_allclose(
        cloud[:, 3], gray[np.round(v).astype(int), np.round(u).astype(int)] / 255.0
    )


def test_disparity_shape_mismatch_raises():
    intr = PinholeIntrinsics(1.0, 1.0, 0.0, 0.0)
    with pytest.raises(ValueError):
        disparity_to_point_cloud(np.zeros((2, 2)), np.zeros((3, 2)), intr, 0.5)
    with pytest.raises(ValueError):
        disparity_to_point_cloud(np.zeros((2, 2)), np.ones((2, 2)), intr, 0.0)