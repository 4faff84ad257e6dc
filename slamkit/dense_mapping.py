"""Dense monocular depth estimation along a known camera trajectory.

Every pixel of a reference image carries a Gaussian depth estimate.  For
each new image the match of the pixel is searched along its epipolar line
by zero-mean normalised cross-correlation.  The depth triangulated from the
match is then fused into the estimate.
"""

from __future__ import annotations

import argparse
import math
import os
from typing import Optional, Sequence

import numpy as np
from PIL import Image

from slamkit.lie import SE3

BORDER = 20
WIDTH = 640
HEIGHT = 480
FX = 481.2
FY = -480.0
CX = 319.5
CY = 239.5
NCC_WINDOW_SIZE = 3
NCC_AREA = (2 * NCC_WINDOW_SIZE + 1) ** 2
MIN_COV = 0.1
MAX_COV = 10.0

INIT_DEPTH = 3.0
INIT_COV2 = 3.0

TRAJECTORY_FILE = "first_200_frames_traj_over_table_input_sequence.txt"
REFERENCE_DEPTH_FILE = os.path.join("depthmaps", "scene_000.depth")

_NCC_THRESHOLD = float(np.float32(0.85))
_SEARCH_STEP = 0.7
_MAX_HALF_LENGTH = 100.0
_MIN_DEPTH = 0.1

_window = np.arange(-NCC_WINDOW_SIZE, NCC_WINDOW_SIZE + 1, dtype=float)
_WIN_X, _WIN_Y = (a.reshape(-1) for a in np.meshgrid(_window, _window, indexing="ij"))


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


def _gray(image) -> np.ndarray:
    img = np.asarray(image, dtype=float)
    if img.ndim != 2:
        raise ValueError(f"expected a 2D gray image, got shape {img.shape}")
    return img


def _normalized(v: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(v))
    return v / norm if norm > 0 else v.copy()


def read_dataset(path) -> tuple[list[str], list[SE3], np.ndarray]:
    """Image paths, camera-to-world poses and the reference depth map of a dataset.

    The trajectory holds ``image tx ty tz qx qy qz qw`` records.  The
    reference depth is ``HEIGHT x WIDTH`` values in centimetres, converted
    to metres; values missing at the end of the file read as zero.
    """
    path = os.fspath(path)
    with open(os.path.join(path, TRAJECTORY_FILE), encoding="utf-8") as stream:
        tokens = stream.read().split()
    if len(tokens) % 8:
        raise ValueError(f"trajectory has {len(tokens)} values, not whole records of 8")

    files: list[str] = []
    poses: list[SE3] = []
    for start in range(0, len(tokens), 8):
        name, *fields = tokens[start : start + 8]
        try:
            tx, ty, tz, qx, qy, qz, qw = (float(f) for f in fields)
        except ValueError as exc:
            raise ValueError(f"record {start // 8 + 1}: {exc}") from exc
        files.append(os.path.join(path, "images", name))
        poses.append(SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz)))

    with open(os.path.join(path, REFERENCE_DEPTH_FILE), encoding="utf-8") as stream:
        depth_tokens = stream.read().split()[: HEIGHT * WIDTH]
    try:
        values = np.array([float(t) for t in depth_tokens], dtype=float)
    except ValueError as exc:
        raise ValueError(f"reference depth: {exc}") from exc
    ref_depth = np.zeros(HEIGHT * WIDTH)
    ref_depth[: values.size] = values / 100.0
    return files, poses, ref_depth.reshape(HEIGHT, WIDTH)


def px2cam(px) -> np.ndarray:
    """Point on the normalised plane (z = 1) of a pixel."""
    u, v = _as2(px)
    return np.array([(u - CX) / FX, (v - CY) / FY, 1.0])


def cam2px(p_cam) -> np.ndarray:
    """Pixel of a point in camera coordinates."""
    x, y, z = _as3(p_cam)
    return np.array([x * FX / z + CX, y * FY / z + CY])


def _inside_mask(pts: np.ndarray) -> np.ndarray:
    x, y = pts[:, 0], pts[:, 1]
    return (x >= BORDER) & (y >= BORDER) & (x + BORDER < WIDTH) & (y + BORDER <= HEIGHT)


def inside(pt) -> bool:
    """Whether a pixel lies at least ``BORDER`` away from the image edges."""
    return bool(_inside_mask(_as2(pt).reshape(1, 2))[0])


def _bilinear_many(img: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    x0 = np.trunc(xs).astype(np.intp)
    y0 = np.trunc(ys).astype(np.intp)
    h, w = img.shape
    if np.any((x0 < 0) | (y0 < 0) | (x0 + 1 >= w) | (y0 + 1 >= h)):
        raise ValueError("interpolation point too close to the image edge")
    xx = xs - np.floor(xs)
    yy = ys - np.floor(ys)
    return (
        (1 - xx) * (1 - yy) * img[y0, x0]
        + xx * (1 - yy) * img[y0, x0 + 1]
        + (1 - xx) * yy * img[y0 + 1, x0]
        + xx * yy * img[y0 + 1, x0 + 1]
    ) / 255.0


def bilinear_value(image, pt) -> float:
    """Bilinearly interpolated gray value at ``pt``, scaled to [0, 1]."""
    x, y = _as2(pt)
    return float(_bilinear_many(_gray(image), np.array([x]), np.array([y]))[0])


def _ref_window(ref: np.ndarray, pt_ref: np.ndarray) -> np.ndarray:
    xs = np.trunc(_WIN_X + pt_ref[0]).astype(np.intp)
    ys = np.trunc(_WIN_Y + pt_ref[1]).astype(np.intp)
    h, w = ref.shape
    if np.any((xs < 0) | (ys < 0) | (xs >= w) | (ys >= h)):
        raise ValueError("reference window leaves the image")
    return ref[ys, xs] / 255.0


def _curr_windows(curr: np.ndarray, centres: np.ndarray) -> np.ndarray:
    xs = centres[:, 0:1] + _WIN_X[None, :]
    ys = centres[:, 1:2] + _WIN_Y[None, :]
    return _bilinear_many(curr, xs, ys)


def _ncc_scores(ref_values: np.ndarray, curr_values: np.ndarray) -> np.ndarray:
    r = ref_values - ref_values.sum() / NCC_AREA
    c = curr_values - curr_values.sum(axis=1, keepdims=True) / NCC_AREA
    numerator = c @ r
    denominator1 = float(r @ r)
    denominator2 = (c * c).sum(axis=1)
    return numerator / np.sqrt(denominator1 * denominator2 + 1e-10)


def ncc(ref, curr, pt_ref, pt_curr) -> float:
    """Zero-mean normalised cross-correlation of the windows around two pixels."""
    ref_values = _ref_window(_gray(ref), _as2(pt_ref))
    curr_values = _curr_windows(_gray(curr), _as2(pt_curr).reshape(1, 2))
    return float(_ncc_scores(ref_values, curr_values)[0])


def epipolar_search(
    ref, curr, t_c_r: SE3, pt_ref, depth_mu: float, depth_cov: float
) -> Optional[tuple[np.ndarray, np.ndarray]]:
    """Best match of ``pt_ref`` along its epipolar line in ``curr``.

    ``depth_cov`` is the standard deviation of the depth.  Returns the
    matched pixel and the unit direction of the epipolar line, or ``None``
    when no candidate correlates well enough.
    """
    ref = _gray(ref)
    curr = _gray(curr)
    pt_ref = _as2(pt_ref)

    f_ref = _normalized(px2cam(pt_ref))
    px_mean_curr = cam2px(t_c_r * (f_ref * depth_mu))
    d_min = max(depth_mu - 3 * depth_cov, _MIN_DEPTH)
    d_max = depth_mu + 3 * depth_cov
    with np.errstate(divide="ignore", invalid="ignore"):
        px_min_curr = cam2px(t_c_r * (f_ref * d_min))
        px_max_curr = cam2px(t_c_r * (f_ref * d_max))
        epipolar_line = px_max_curr - px_min_curr
        direction = _normalized(epipolar_line)
    half_length = min(0.5 * float(np.linalg.norm(epipolar_line)), _MAX_HALF_LENGTH)

    offsets = []
    step = -half_length
    while step <= half_length:
        offsets.append(step)
        step += _SEARCH_STEP
    if not offsets:
        return None

    candidates = px_mean_curr + np.outer(offsets, direction)
    candidates = candidates[_inside_mask(candidates)]
    if len(candidates) == 0:
        return None

    scores = _ncc_scores(_ref_window(ref, pt_ref), _curr_windows(curr, candidates))
    best = int(np.argmax(scores))
    if scores[best] < _NCC_THRESHOLD:
        return None
    return candidates[best].copy(), direction


def update_depth_filter(
    pt_ref, pt_curr, t_c_r: SE3, epipolar_direction, depth, depth_cov2
) -> tuple[float, float]:
    """Triangulate a match and fuse it into the depth maps in place.

    Returns the fused mean and variance stored at ``pt_ref``.
    """
    pt_ref = _as2(pt_ref)
    pt_curr = _as2(pt_curr)
    direction = _as2(epipolar_direction)

    with np.errstate(divide="ignore", invalid="ignore"):
        t_r_c = t_c_r.inverse()
        f_ref = _normalized(px2cam(pt_ref))
        f_curr = _normalized(px2cam(pt_curr))

        t = t_r_c.translation
        f2 = t_r_c.so3 * f_curr
        b = np.array([t @ f_ref, t @ f2])
        a00 = f_ref @ f_ref
        a01 = -(f_ref @ f2)
        a10 = -a01
        a11 = -(f2 @ f2)
        det = a00 * a11 - a01 * a10
        inverse = np.array([[a11, -a01], [-a10, a00]]) / det
        ans = inverse @ b
        xm = ans[0] * f_ref
        xn = t + ans[1] * f2
        p_esti = (xm + xn) / 2.0
        depth_estimation = float(np.linalg.norm(p_esti))

        t_norm = float(np.linalg.norm(t))
        alpha = float(np.arccos(f_ref @ t / t_norm))
        f_curr_prime = _normalized(px2cam(pt_curr + direction))
        beta_prime = float(np.arccos(f_curr_prime @ (-t) / t_norm))
        gamma = math.pi - alpha - beta_prime
        p_prime = t_norm * np.sin(beta_prime) / np.sin(gamma)
        d_cov = p_prime - depth_estimation
        d_cov2 = d_cov * d_cov

        x, y = int(pt_ref[0]), int(pt_ref[1])
        mu = depth[y, x]
        sigma2 = depth_cov2[y, x]
        mu_fuse = (d_cov2 * mu + sigma2 * depth_estimation) / (sigma2 + d_cov2)
        sigma_fuse2 = (sigma2 * d_cov2) / (sigma2 + d_cov2)

    depth[y, x] = mu_fuse
    depth_cov2[y, x] = sigma_fuse2
    return float(mu_fuse), float(sigma_fuse2)


def update(ref, curr, t_c_r: SE3, depth, depth_cov2) -> int:
    """Update every unconverged pixel of the depth maps from one new image.

    Pixels whose variance is below ``MIN_COV`` (converged) or above
    ``MAX_COV`` (diverged) are left alone.  Returns the number of pixels
    that were updated.
    """
    ref = _gray(ref)
    curr = _gray(curr)
    if not (ref.shape == curr.shape == depth.shape == depth_cov2.shape):
        raise ValueError("images and depth maps must all have the same shape")
    height, width = depth.shape
    region = np.zeros(depth.shape, dtype=bool)
    region[BORDER : height - BORDER, BORDER : width - BORDER] = True
    active = region & (depth_cov2 >= MIN_COV) & (depth_cov2 <= MAX_COV)

    updated = 0
    for y, x in zip(*np.nonzero(active)):
        pt_ref = np.array([float(x), float(y)])
        match = epipolar_search(
            ref, curr, t_c_r, pt_ref, float(depth[y, x]), math.sqrt(depth_cov2[y, x])
        )
        if match is None:
            continue
        pt_curr, direction = match
        update_depth_filter(pt_ref, pt_curr, t_c_r, direction, depth, depth_cov2)
        updated += 1
    return updated


def evaluate_depth(depth_truth, depth_estimate) -> tuple[float, float]:
    """Mean error and mean squared error inside the border region."""
    truth = np.asarray(depth_truth, dtype=float)
    estimate = np.asarray(depth_estimate, dtype=float)
    if truth.shape != estimate.shape or truth.ndim != 2:
        raise ValueError("depth maps must be 2D arrays of the same shape")
    error = (truth - estimate)[BORDER:-BORDER, BORDER:-BORDER]
    if error.size == 0:
        raise ValueError("depth maps are too small for the border")
    return float(error.mean()), float((error * error).mean())


def _load_gray(path: str) -> Optional[np.ndarray]:
    try:
        with Image.open(path) as img:
            return np.asarray(img.convert("L"), dtype=float)
    except (FileNotFoundError, OSError):
        return None


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="dense-mapping",
        description="Estimate a dense depth map from a monocular image sequence.",
    )
    parser.add_argument("dataset", help="path to the test dataset")
    parser.add_argument("--output", default="depth.png")
    args = parser.parse_args(argv)

    try:
        files, poses_twc, ref_depth = read_dataset(args.dataset)
    except (OSError, ValueError):
        print("Reading image files failed!")
        return 1
    print(f"read total {len(files)} files.")
    if not files:
        print("Reading image files failed!")
        return 1

    ref = _load_gray(files[0])
    if ref is None:
        print("Reading image files failed!")
        return 1
    pose_ref_twc = poses_twc[0]
    depth = np.full(ref.shape, INIT_DEPTH)
    depth_cov2 = np.full(ref.shape, INIT_COV2)

    for index in range(1, len(files)):
        print(f"*** loop {index} ***")
        curr = _load_gray(files[index])
        if curr is None:
            continue
        pose_t_c_r = poses_twc[index].inverse() * pose_ref_twc
        update(ref, curr, pose_t_c_r, depth, depth_cov2)
        if ref_depth.shape == depth.shape:
            mean_error, mean_sq_error = evaluate_depth(ref_depth, depth)
            print(
                f"Average squared error = {mean_sq_error:.6g}, "
                f"average error: {mean_error:.6g}"
            )

    print("estimation returns, saving depth map ...")
    saved = np.clip(np.rint(np.nan_to_num(depth)), 0, 255).astype(np.uint8)
    Image.fromarray(saved).save(args.output)
    print("done.")
    return 0