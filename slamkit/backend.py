"""Sliding-window bundle adjustment running in its own thread.

The frontend calls ``update_map`` whenever the map gains a keyframe; the
worker thread then optimises the active keyframes and landmarks, and marks
observations with large reprojection errors as outliers.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Optional

import numpy as np

from slamkit.camera import Camera
from slamkit.entities import Feature, Frame, MapPoint
from slamkit.landmark_map import Map
from slamkit.lie import SE3
from slamkit.projection import StereoProjection, huber_weight

logger = logging.getLogger(__name__)

CHI2_THRESHOLD = 5.991
OPTIMIZATION_ITERATIONS = 10
_OUTLIER_ROUNDS = 5
_TAU = 1e-5
_MAX_TRIALS = 10


@dataclass
class _Term:
    feature: Feature
    pose_index: int
    landmark_index: int
    model: StereoProjection
    measurement: np.ndarray


def _huber_cost(chi2: float, delta: float) -> float:
    if chi2 <= delta * delta:
        return chi2
    return 2.0 * math.sqrt(chi2) * delta - delta * delta


def _total_cost(poses, points, terms, delta) -> float:
    total = 0.0
    for term in terms:
        e = term.model.error(poses[term.pose_index], points[term.landmark_index], term.measurement)
        total += _huber_cost(float(e @ e), delta)
    return total


def _build_system(poses, points, terms, delta):
    n_p, n_l = len(poses), len(points)
    h_pp = np.zeros((6 * n_p, 6 * n_p))
    b_p = np.zeros(6 * n_p)
    h_ll = np.zeros((n_l, 3, 3))
    b_l = np.zeros((n_l, 3))
    h_pl: dict[int, dict[int, np.ndarray]] = {}
    for term in terms:
        i, j = term.pose_index, term.landmark_index
        pose, point = poses[i], points[j]
        e = term.model.error(pose, point, term.measurement)
        j_pose, j_point = term.model.jacobians(pose, point)
        w = huber_weight(float(e @ e), delta)
        s = slice(6 * i, 6 * i + 6)
        h_pp[s, s] += w * (j_pose.T @ j_pose)
        b_p[s] -= w * (j_pose.T @ e)
        h_ll[j] += w * (j_point.T @ j_point)
        b_l[j] -= w * (j_point.T @ e)
        blocks = h_pl.setdefault(j, {})
        blocks[i] = blocks.get(i, np.zeros((6, 3))) + w * (j_pose.T @ j_point)
    return h_pp, b_p, h_ll, b_l, h_pl


def _schur_solve(h_pp, b_p, h_ll, b_l, h_pl, damping):
    try:
        v_inv = np.linalg.inv(h_ll + damping * np.eye(3))
    except np.linalg.LinAlgError:
        return None
    s_mat = h_pp + damping * np.eye(len(b_p))
    rhs = b_p.copy()
    for j, blocks in h_pl.items():
        for i, w_ij in blocks.items():
            wv = w_ij @ v_inv[j]
            rhs[6 * i : 6 * i + 6] -= wv @ b_l[j]
            for k, w_kj in blocks.items():
                s_mat[6 * i : 6 * i + 6, 6 * k : 6 * k + 6] -= wv @ w_kj.T
    try:
        dp = np.linalg.solve(s_mat, rhs)
    except np.linalg.LinAlgError:
        return None
    dl = np.zeros_like(b_l)
    for j in range(len(b_l)):
        r = b_l[j].copy()
        for i, w_ij in h_pl.get(j, {}).items():
            r -= w_ij.T @ dp[6 * i : 6 * i + 6]
        dl[j] = v_inv[j] @ r
    if not (np.all(np.isfinite(dp)) and np.all(np.isfinite(dl))):
        return None
    return dp, dl


def _levenberg_marquardt(poses, points, terms, delta, iterations):
    poses = list(poses)
    points = [p.copy() for p in points]
    if not terms:
        return poses, points
    cost = _total_cost(poses, points, terms, delta)
    damping: Optional[float] = None
    nu = 2.0
    for _ in range(iterations):
        h_pp, b_p, h_ll, b_l, h_pl = _build_system(poses, points, terms, delta)
        if damping is None:
            diag = [float(np.diag(h_pp).max()) if h_pp.size else 0.0]
            if len(h_ll):
                diag.append(float(np.diagonal(h_ll, axis1=1, axis2=2).max()))
            damping = _TAU * max(max(diag), 1e-12)
        accepted = False
        decrease = 0.0
        for _ in range(_MAX_TRIALS):
            step = _schur_solve(h_pp, b_p, h_ll, b_l, h_pl, damping)
            if step is not None:
                dp, dl = step
                new_poses = [SE3.exp(dp[6 * i : 6 * i + 6]) * pose for i, pose in enumerate(poses)]
                new_points = [point + dl[j] for j, point in enumerate(points)]
                new_cost = _total_cost(new_poses, new_points, terms, delta)
                if math.isfinite(new_cost) and new_cost < cost:
                    decrease = cost - new_cost
                    poses, points, cost = new_poses, new_points, new_cost
                    damping = max(damping / 3.0, 1e-15)
                    nu = 2.0
                    accepted = True
                    break
            damping *= nu
            nu *= 2.0
        logger.debug("bundle adjustment cost= %.6f lambda= %g", cost, damping)
        if not accepted or decrease <= 1e-15 * max(cost, 1e-300):
            break
    return poses, points


class Backend:
    """Optimises the active window of the map whenever it is told the map changed."""

    def __init__(
        self,
        slam_map: Optional[Map] = None,
        left_camera: Optional[Camera] = None,
        right_camera: Optional[Camera] = None,
    ):
        self.map = slam_map
        self.left_camera = left_camera
        self.right_camera = right_camera
        self._condition = threading.Condition()
        self._pending = False
        self._running = True
        self._thread = threading.Thread(target=self._loop, name="backend", daemon=True)
        self._thread.start()

    def update_map(self) -> None:
        """Ask the worker thread to optimise the current active window."""
        with self._condition:
            if not self._running:
                raise RuntimeError("backend has been stopped")
            self._pending = True
            self._condition.notify()

    def stop(self) -> None:
        """Finish any requested optimisation and end the worker thread."""
        with self._condition:
            self._running = False
            self._condition.notify()
        self._thread.join()

    def _loop(self) -> None:
        while True:
            with self._condition:
                while self._running and not self._pending:
                    self._condition.wait()
                if self._pending:
                    self._pending = False
                    try:
                        self._optimize_active()
                    except Exception:
                        logger.exception("backend optimisation failed")
                if not self._running:
                    return

    def _optimize_active(self) -> None:
        if self.map is None or self.left_camera is None or self.right_camera is None:
            logger.warning("backend has no map or cameras; nothing optimised")
            return
        self.optimize(self.map.active_keyframes(), self.map.active_map_points())

    def optimize(
        self, keyframes: dict[int, Frame], landmarks: dict[int, MapPoint]
    ) -> tuple[int, int]:
        """Bundle-adjust ``keyframes`` and ``landmarks`` in place.

        Returns the numbers of outlier and inlier observations.
        """
        if self.left_camera is None or self.right_camera is None:
            raise RuntimeError("backend cameras are not set")
        k = self.left_camera.intrinsic_matrix()
        models = {
            True: StereoProjection(k, self.left_camera.pose),
            False: StereoProjection(k, self.right_camera.pose),
        }

        pose_ids = list(keyframes)
        pose_index = {kid: i for i, kid in enumerate(pose_ids)}
        poses = [keyframes[kid].pose for kid in pose_ids]

        landmark_ids: list[int] = []
        landmark_index: dict[int, int] = {}
        points: list[np.ndarray] = []
        terms: list[_Term] = []
        for lid, mp in landmarks.items():
            if mp.is_outlier:
                continue
            for feat in mp.observations():
                frame = feat.frame
                if feat.is_outlier or frame is None:
                    continue
                i = pose_index.get(frame.keyframe_id)
                if i is None:
                    continue
                if lid not in landmark_index:
                    landmark_index[lid] = len(points)
                    landmark_ids.append(lid)
                    points.append(mp.pos)
                terms.append(
                    _Term(feat, i, landmark_index[lid], models[feat.is_on_left_image],
                          feat.position.copy())
                )

        poses, points = _levenberg_marquardt(
            poses, points, terms, CHI2_THRESHOLD, OPTIMIZATION_ITERATIONS
        )

        chi2s = []
        for term in terms:
            e = term.model.error(poses[term.pose_index], points[term.landmark_index],
                                 term.measurement)
            chi2s.append(float(e @ e))

        threshold = CHI2_THRESHOLD
        cnt_outlier = cnt_inlier = 0
        for _ in range(_OUTLIER_ROUNDS):
            cnt_outlier = sum(1 for c in chi2s if c > threshold)
            cnt_inlier = len(chi2s) - cnt_outlier
            if chi2s and cnt_inlier / len(chi2s) > 0.5:
                break
            threshold *= 2

        for term, chi2 in zip(terms, chi2s):
            if chi2 > threshold:
                term.feature.is_outlier = True
                mp = term.feature.map_point
                if mp is not None:
                    mp.remove_observation(term.feature)
            else:
                term.feature.is_outlier = False

        logger.info("Outlier/Inlier in optimization: %d/%d", cnt_outlier, cnt_inlier)

        for kid, pose in zip(pose_ids, poses):
            keyframes[kid].pose = pose
        for lid, point in zip(landmark_ids, points):
            landmarks[lid].pos = point
        return cnt_outlier, cnt_inlier