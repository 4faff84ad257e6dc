"""Lens undistortion and stereo point-cloud reconstruction."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class PinholeIntrinsics:
    """Focal lengths and principal point, in pixels."""

    fx: float
    fy: float
    cx: float
    cy: float


@dataclass(frozen=True)
class Distortion:
    """Radial (``k1``, ``k2``) and tangential (``p1``, ``p2``) coefficients."""

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0


def _scalar_or_array(value: np.ndarray):
    return float(value) if value.ndim == 0 else value


def distort_point(u, v, intrinsics: PinholeIntrinsics, distortion: Distortion):
    """Pixel in the distorted image that the undistorted pixel ``(u, v)`` comes from.

    Accepts scalars or arrays of equal shape.
    """
    u = np.asarray(u, dtype=float)
    v = np.asarray(v, dtype=float)
    k = intrinsics
    d = distortion
    x = (u - k.cx) / k.fx
    y = (v - k.cy) / k.fy
    r2 = x * x + y * y
    radial = 1.0 + d.k1 * r2 + d.k2 * r2 * r2
    x_d = x * radial + 2.0 * d.p1 * x * y + d.p2 * (r2 + 2.0 * x * x)
    y_d = y * radial + d.p1 * (r2 + 2.0 * y * y) + 2.0 * d.p2 * x * y
    u_d = k.fx * x_d + k.cx
    v_d = k.fy * y_d + k.cy
    return _scalar_or_array(u_d), _scalar_or_array(v_d)


def undistort_image(image, intrinsics: PinholeIntrinsics, distortion: Distortion) -> np.ndarray:
    """Undistorted copy of ``image`` by nearest-neighbour lookup; pixels without a source are 0."""
    img = np.asarray(image)
    if img.ndim not in (2, 3):
        raise ValueError(f"expected a 2D or 3D image array, got {img.ndim} dimensions")
    rows, cols = img.shape[:2]
    v, u = np.mgrid[0:rows, 0:cols].astype(float)
    u_d, v_d = distort_point(u, v, intrinsics, distortion)
    valid = (u_d >= 0) & (v_d >= 0) & (u_d < cols) & (v_d < rows)
    out = np.zeros_like(img)
    out[valid] = img[v_d[valid].astype(np.intp), u_d[valid].astype(np.intp)]
    return out


def disparity_to_point_cloud(
    gray,
    disparity,
    intrinsics: PinholeIntrinsics,
    baseline: float,
    max_disparity: float = 96.0,
) -> np.ndarray:
    """Points ``(x, y, z, intensity)`` for every pixel with ``0 < d < max_disparity``.

    Intensity is the gray value scaled to [0, 1]; rows are in row-major pixel order.
    """
    gray = np.asarray(gray)
    disp = np.asarray(disparity, dtype=float)
    if gray.shape != disp.shape or gray.ndim != 2:
        raise ValueError(
            f"gray image and disparity must be 2D of equal shape, got {gray.shape} and {disp.shape}"
        )
    if baseline <= 0:
        raise ValueError("baseline must be positive")
    mask = (disp > 0.0) & (disp < max_disparity)
    v, u = np.nonzero(mask)
    depth = intrinsics.fx * baseline / disp[v, u]
    x = (u - intrinsics.cx) / intrinsics.fx * depth
    y = (v - intrinsics.cy) / intrinsics.fy * depth
    intensity = gray[v, u].astype(float) / 255.0
    return np.column_stack([x, y, depth, intensity]).reshape(-1, 4)