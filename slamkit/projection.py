"""Reprojection error models used in pose estimation and bundle adjustment.

Errors are ``measurement - projection`` in pixels.  Pose Jacobians are
taken with respect to a left-multiplied twist ``(rho, phi)``: translation
first, rotation second.
"""

from __future__ import annotations

import math
from typing import Optional

import numpy as np

from slamkit.lie import SE3

_Z_EPSILON = 1e-18


def _as2(p) -> np.ndarray:
    arr = np.asarray(p, dtype=float).reshape(-1)
    if arr.shape != (2,):
        raise ValueError(f"expected a 2-vector, got {arr.size} elements")
    return arr


def _as3(p) -> np.ndarray:
    arr = np.asarray(p, dtype=float).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"expected a 3-vector, got {arr.size} elements")
    return arr


def _k33(k) -> np.ndarray:
    arr = np.asarray(k, dtype=float)
    if arr.shape != (3, 3):
        raise ValueError(f"intrinsic matrix must be 3x3, got shape {arr.shape}")
    return arr.copy()


def _project(k: np.ndarray, pos_cam: np.ndarray) -> np.ndarray:
    pixel = k @ pos_cam
    return pixel[:2] / pixel[2]


def _pose_jacobian(pos_cam: np.ndarray, k: np.ndarray) -> np.ndarray:
    fx, fy = k[0, 0], k[1, 1]
    x, y, z = pos_cam
    zinv = 1.0 / (z + _Z_EPSILON)
    zinv2 = zinv * zinv
    return np.array(
        [
            [-fx * zinv, 0.0, fx * x * zinv2, fx * x * y * zinv2,
             -fx - fx * x * x * zinv2, fx * y * zinv],
            [0.0, -fy * zinv, fy * y * zinv2, fy + fy * y * y * zinv2,
             -fy * x * y * zinv2, -fy * x * zinv],
        ]
    )


def huber_weight(chi2: float, delta: float) -> float:
    """Weight the Huber kernel gives an edge with squared error ``chi2``.

    It is 1 while ``sqrt(chi2) <= delta`` and ``delta / sqrt(chi2)`` beyond.
    """
    if delta <= 0:
        raise ValueError("delta must be positive")
    if chi2 < 0:
        raise ValueError("chi2 must not be negative")
    error = math.sqrt(chi2)
    if error <= delta:
        return 1.0
    return delta / error


class PoseOnlyProjection:
    """Projection of a fixed world point into a camera whose pose is estimated."""

    def __init__(self, position, k):
        self.position = _as3(position)
        self.k = _k33(k)

    def error(self, pose: SE3, measurement) -> np.ndarray:
        return _as2(measurement) - _project(self.k, pose * self.position)

    def jacobian(self, pose: SE3) -> np.ndarray:
        """2x6 derivative of the error with respect to the pose twist."""
        return _pose_jacobian(pose * self.position, self.k)


class StereoProjection:
    """Projection of an estimated point into one eye of an estimated stereo rig."""

    def __init__(self, k, cam_ext: Optional[SE3] = None):
        self.k = _k33(k)
        self.cam_ext = cam_ext if cam_ext is not None else SE3()

    def error(self, pose: SE3, point, measurement) -> np.ndarray:
        pos_cam = self.cam_ext * (pose * _as3(point))
        return _as2(measurement) - _project(self.k, pos_cam)

    def jacobians(self, pose: SE3, point) -> tuple[np.ndarray, np.ndarray]:
        """Derivatives of the error: 2x6 for the pose, 2x3 for the point."""
        pos_cam = self.cam_ext * (pose * _as3(point))
        j_pose = _pose_jacobian(pos_cam, self.k)
        j_point = j_pose[:, :3] @ self.cam_ext.rotation_matrix() @ pose.rotation_matrix()
        return j_pose, j_point