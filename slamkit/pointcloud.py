"""Building and filtering coloured point clouds from RGB-D frames.

Clouds are (N, 6) arrays of ``x, y, z, r, g, b``; colour images are BGR.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

import numpy as np
from scipy.spatial import cKDTree

from slamkit.imaging import PinholeIntrinsics
from slamkit.lie import SE3


def parse_poses(lines: Iterable[str], count: Optional[int] = 5) -> list[SE3]:
    """Poses from whitespace-separated ``tx ty tz qx qy qz qw`` groups.

    With ``count`` set exactly that many poses are read; ``None`` reads all.
    """
    tokens = [token for line in lines for token in line.split()]
    try:
        values = [float(token) for token in tokens]
    except ValueError as exc:
        raise ValueError(f"invalid pose value: {exc}") from exc
    if count is None:
        if len(values) % 7:
            raise ValueError(f"{len(values)} values do not make whole poses")
        count = len(values) // 7
    if len(values) < 7 * count:
        raise ValueError(f"expected {count} poses, got only {len(values)} values")
    poses = []
    for i in range(count):
        tx, ty, tz, qx, qy, qz, qw = values[7 * i : 7 * i + 7]
        poses.append(SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz)))
    return poses


def depth_to_point_cloud(
    color,
    depth,
    pose: SE3,
    intrinsics: PinholeIntrinsics,
    depth_scale: float = 1000.0,
) -> np.ndarray:
    """World points with colour for every pixel whose depth is non-zero."""
    color = np.asarray(color)
    depth = np.asarray(depth)
    if depth.ndim != 2 or color.shape[:2] != depth.shape or color.ndim != 3 or color.shape[2] < 3:
        raise ValueError(
            f"expected an (H, W, 3) colour image and an (H, W) depth image, "
            f"got {color.shape} and {depth.shape}"
        )
    if depth_scale <= 0:
        raise ValueError("depth_scale must be positive")
    v, u = np.nonzero(depth != 0)
    z = depth[v, u].astype(float) / depth_scale
    x = (u - intrinsics.cx) * z / intrinsics.fx
    y = (v - intrinsics.cy) * z / intrinsics.fy
    if z.size == 0:
        return np.zeros((0, 6))
    world = pose * np.column_stack([x, y, z])
    bgr = color[v, u, :3].astype(float)
    return np.column_stack([world, bgr[:, 2], bgr[:, 1], bgr[:, 0]])


def join_point_clouds(
    colors: Sequence,
    depths: Sequence,
    poses: Sequence[SE3],
    intrinsics: PinholeIntrinsics,
    depth_scale: float = 1000.0,
) -> np.ndarray:
    """Clouds of all frames concatenated in frame order."""
    if not len(colors) == len(depths) == len(poses):
        raise ValueError("colors, depths and poses must have the same length")
    clouds = [
        depth_to_point_cloud(c, d, p, intrinsics, depth_scale)
        for c, d, p in zip(colors, depths, poses)
    ]
    if not clouds:
        return np.zeros((0, 6))
    return np.concatenate(clouds, axis=0)


def _as_cloud(points) -> np.ndarray:
    pts = np.asarray(points, dtype=float)
    if pts.ndim != 2 or pts.shape[1] < 3:
        raise ValueError(f"expected an (N, >=3) array of points, got shape {pts.shape}")
    return pts


def statistical_outlier_removal(points, mean_k: int = 50, stddev_mult: float = 1.0) -> np.ndarray:
    """Drop points whose mean distance to their ``mean_k`` neighbours is unusually large.

    A point is kept when that distance is at most the mean over all points plus
    ``stddev_mult`` sample standard deviations.
    """
    pts = _as_cloud(points)
    if mean_k < 1:
        raise ValueError("mean_k must be at least 1")
    n = len(pts)
    k = min(mean_k, n - 1)
    if k < 1:
        return pts.copy()
    xyz = pts[:, :3]
    distances, _ = cKDTree(xyz).query(xyz, k=k + 1)
    mean_distances = distances[:, 1:].mean(axis=1)
    threshold = mean_distances.mean() + stddev_mult * mean_distances.std(ddof=1)
    return pts[mean_distances <= threshold]


def voxel_grid_filter(points, leaf_size) -> np.ndarray:
    """Replace the points in each voxel by their centroid (all columns averaged)."""
    pts = _as_cloud(points)
    leaf = np.broadcast_to(np.asarray(leaf_size, dtype=float), (3,))
    if np.any(leaf <= 0):
        raise ValueError("leaf size must be positive")
    if len(pts) == 0:
        return pts.copy()
    index = np.floor(pts[:, :3] / leaf).astype(np.int64)
    unique, inverse = np.unique(index, axis=0, return_inverse=True)
    inverse = np.asarray(inverse).reshape(-1)
    sums = np.zeros((len(unique), pts.shape[1]))
    np.add.at(sums, inverse, pts)
    counts = np.bincount(inverse, minlength=len(unique))
    return sums / counts[:, None]