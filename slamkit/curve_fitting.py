"""Fitting the curve ``y = exp(a x^2 + b x + c)`` to noisy samples.

Two solvers are offered: a plain Gauss-Newton iteration that stops as soon as
the cost stops decreasing, and a damped Levenberg-Marquardt iteration.
"""

from __future__ import annotations

import argparse
import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)

TRUE_PARAMS = (1.0, 2.0, 1.0)
INITIAL_GUESS = (2.0, -1.0, 5.0)


@dataclass(frozen=True)
class FitResult:
    """Estimated ``(a, b, c)``, the final squared-error cost and the steps taken."""

    params: np.ndarray
    cost: float
    iterations: int


def _check_data(x_data, y_data) -> tuple[np.ndarray, np.ndarray]:
    x = np.asarray(x_data, dtype=float).reshape(-1)
    y = np.asarray(y_data, dtype=float).reshape(-1)
    if x.shape != y.shape:
        raise ValueError(f"x and y differ in length: {x.size} vs {y.size}")
    if x.size == 0:
        raise ValueError("no data points")
    return x, y


def _check_params(params) -> np.ndarray:
    p = np.asarray(params, dtype=float).reshape(-1)
    if p.shape != (3,):
        raise ValueError(f"expected 3 parameters, got {p.size}")
    return p


def generate_data(
    n: int = 100,
    a: float = TRUE_PARAMS[0],
    b: float = TRUE_PARAMS[1],
    c: float = TRUE_PARAMS[2],
    sigma: float = 1.0,
    seed: Optional[int] = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Samples at ``x = i / 100`` with Gaussian noise of deviation ``sigma**2``."""
    if n < 0:
        raise ValueError("n must not be negative")
    rng = np.random.default_rng(seed)
    x = np.arange(n) / 100.0
    noise = rng.normal(0.0, sigma * sigma, size=n) if sigma != 0 else np.zeros(n)
    y = np.exp(a * x * x + b * x + c) + noise
    return x, y


def residuals(params, x_data, y_data) -> np.ndarray:
    """``y - exp(a x^2 + b x + c)`` for every sample."""
    a, b, c = _check_params(params)
    x, y = _check_data(x_data, y_data)
    return y - np.exp(a * x * x + b * x + c)


def jacobian(params, x_data) -> np.ndarray:
    """Derivatives of the residuals with respect to ``(a, b, c)``, shape (N, 3)."""
    a, b, c = _check_params(params)
    x = np.asarray(x_data, dtype=float).reshape(-1)
    e = np.exp(a * x * x + b * x + c)
    return np.column_stack([-x * x * e, -x * e, -e])


def fit_gauss_newton(
    x_data,
    y_data,
    initial: Sequence[float] = INITIAL_GUESS,
    iterations: int = 100,
    sigma: float = 1.0,
) -> FitResult:
    """Gauss-Newton; stops when the step is not finite or the cost stops falling."""
    x, y = _check_data(x_data, y_data)
    params = _check_params(initial).copy()
    if sigma <= 0:
        raise ValueError("sigma must be positive")
    weight = 1.0 / (sigma * sigma)

    last_cost = 0.0
    steps = 0
    for iteration in range(iterations):
        r = residuals(params, x, y)
        j = jacobian(params, x)
        cost = float(r @ r)
        h = weight * (j.T @ j)
        g = -weight * (j.T @ r)
        try:
            dx = np.linalg.solve(h, g)
        except np.linalg.LinAlgError:
            dx = np.full(3, np.nan)
        if not np.all(np.isfinite(dx)):
            logger.info("result is nan!")
            break
        if iteration > 0 and cost >= last_cost:
            logger.info("cost: %g >= last cost: %g, break.", cost, last_cost)
            break
        params = params + dx
        last_cost = cost
        steps += 1
        logger.info("total cost: %g, update: %s, estimated params: %s", cost, dx, params)

    r = residuals(params, x, y)
    return FitResult(params, float(r @ r), steps)


def fit_levenberg_marquardt(
    x_data,
    y_data,
    initial: Sequence[float] = INITIAL_GUESS,
    max_iterations: int = 50,
) -> FitResult:
    """Levenberg-Marquardt with diagonal damping, adapted after each step."""
    x, y = _check_data(x_data, y_data)
    params = _check_params(initial).copy()
    if max_iterations < 0:
        raise ValueError("max_iterations must not be negative")

    r = residuals(params, x, y)
    cost = float(r @ r)
    damping: Optional[float] = None
    performed = 0
    for _ in range(max_iterations):
        performed += 1
        j = jacobian(params, x)
        h = j.T @ j
        g = j.T @ r
        if np.linalg.norm(g, np.inf) < 1e-12:
            break
        diag = np.diag(h)
        if damping is None:
            damping = 1e-4 * float(diag.max())
        try:
            dx = np.linalg.solve(h + damping * np.diag(diag), -g)
        except np.linalg.LinAlgError:
            damping *= 10.0
            continue
        candidate = params + dx
        with np.errstate(over="ignore", invalid="ignore"):
            r_new = residuals(candidate, x, y)
            new_cost = float(r_new @ r_new)
        if np.isfinite(new_cost) and new_cost < cost:
            params, r = candidate, r_new
            decrease = cost - new_cost
            cost = new_cost
            damping = max(damping / 3.0, 1e-15)
            if decrease <= 1e-15 * max(cost, 1e-300) or np.linalg.norm(dx) < 1e-12:
                break
        else:
            damping *= 10.0
    return FitResult(params, cost, performed)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="curve-fitting",
        description="Fit y = exp(a x^2 + b x + c) to generated noisy data.",
    )
    parser.add_argument(
        "--method",
        choices=("gauss-newton", "levenberg-marquardt"),
        default="gauss-newton",
    )
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--points", type=int, default=100)
    parser.add_argument("--sigma", type=float, default=1.0)
    args = parser.parse_args(argv)

    x, y = generate_data(args.points, sigma=args.sigma, seed=args.seed)
    start = time.perf_counter()
    if args.method == "gauss-newton":
        result = fit_gauss_newton(x, y, sigma=args.sigma)
    else:
        result = fit_levenberg_marquardt(x, y)
    elapsed = time.perf_counter() - start
    print(f"solve time cost = {elapsed:.6f} seconds. ")
    a, b, c = result.params
    print(f"estimated a,b,c = {a:.6g}, {b:.6g}, {c:.6g}")
    return 0