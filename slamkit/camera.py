"""Pinhole camera model of one eye of a stereo rig."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from slamkit.lie import SE3


def _as3(p) -> np.ndarray:
    arr = np.asarray(p, dtype=float).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"expected a 3-vector, got {arr.size} elements")
    return arr


def _as2(p) -> np.ndarray:
    arr = np.asarray(p, dtype=float).reshape(-1)
    if arr.shape != (2,):
        raise ValueError(f"expected a 2-vector, got {arr.size} elements")
    return arr


@dataclass
class Camera:
    """Intrinsics plus the extrinsic ``pose`` from the rig to this camera."""

    fx: float
    fy: float
    cx: float
    cy: float
    baseline: float = 0.0
    pose: SE3 = field(default_factory=SE3)

    @property
    def pose_inv(self) -> SE3:
        return self.pose.inverse()

    def intrinsic_matrix(self) -> np.ndarray:
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]]
        )

    def world_to_camera(self, p_w, t_c_w: SE3) -> np.ndarray:
        return self.pose * t_c_w * _as3(p_w)

    def camera_to_world(self, p_c, t_c_w: SE3) -> np.ndarray:
        return t_c_w.inverse() * self.pose_inv * _as3(p_c)

    def camera_to_pixel(self, p_c) -> np.ndarray:
        x, y, z = _as3(p_c)
        return np.array([self.fx * x / z + self.cx, self.fy * y / z + self.cy])

    def pixel_to_camera(self, p_p, depth: float = 1.0) -> np.ndarray:
        u, v = _as2(p_p)
        return np.array(
            [(u - self.cx) * depth / self.fx, (v - self.cy) * depth / self.fy, depth]
        )

    def world_to_pixel(self, p_w, t_c_w: SE3) -> np.ndarray:
        return self.camera_to_pixel(self.world_to_camera(p_w, t_c_w))

    def pixel_to_world(self, p_p, t_c_w: SE3, depth: float = 1.0) -> np.ndarray:
        return self.camera_to_world(self.pixel_to_camera(p_p, depth), t_c_w)