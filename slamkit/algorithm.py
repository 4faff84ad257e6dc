"""Geometric algorithms shared by the visual odometry pipeline."""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from slamkit.lie import SE3

_QUALITY_RATIO = 1e-2


def triangulation(poses: Sequence[SE3], points) -> Optional[np.ndarray]:
    """Linear SVD triangulation of one point seen from several poses.

    ``points`` are the observations on each camera's normalised image plane.
    Returns the world point, or ``None`` when the solution is poorly
    constrained.
    """
    poses = list(poses)
    points = list(points)
    if len(poses) != len(points):
        raise ValueError(f"got {len(poses)} poses but {len(points)} points")
    if len(poses) < 2:
        raise ValueError("triangulation needs at least two views")

    rows = []
    for pose, point in zip(poses, points):
        m = pose.matrix3x4()
        p = np.asarray(point, dtype=float).reshape(-1)
        if p.size < 2:
            raise ValueError("each point needs at least two coordinates")
        rows.append(p[0] * m[2] - m[0])
        rows.append(p[1] * m[2] - m[1])

    _, singular, vt = np.linalg.svd(np.array(rows), full_matrices=False)
    v = vt[3]
    with np.errstate(divide="ignore", invalid="ignore"):
        pt_world = v[:3] / v[3]
        ratio = singular[3] / singular[2]
    if ratio < _QUALITY_RATIO:
        return pt_world
    return None


def to_vec2(point) -> np.ndarray:
    """2-vector of a point given as an object with ``x``/``y`` or a pair."""
    if hasattr(point, "x") and hasattr(point, "y"):
        return np.array([float(point.x), float(point.y)])
    x, y = point
    return np.array([float(x), float(y)])