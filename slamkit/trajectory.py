"""Reading trajectories and measuring the error between two of them.

Each line of a trajectory file holds ``time tx ty tz qx qy qz qw``.
"""

from __future__ import annotations

import argparse
import math
import sys
from typing import Iterable, Sequence

from slamkit.lie import SE3


def parse_trajectory(lines: Iterable[str]) -> list[SE3]:
    """Poses from the lines of a trajectory; blank lines are skipped."""
    poses = []
    for number, line in enumerate(lines, start=1):
        fields = line.split()
        if not fields:
            continue
        if len(fields) != 8:
            raise ValueError(f"line {number}: expected 8 values, got {len(fields)}")
        try:
            values = [float(value) for value in fields]
        except ValueError as exc:
            raise ValueError(f"line {number}: {exc}") from exc
        _, tx, ty, tz, qx, qy, qz, qw = values
        poses.append(SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz)))
    return poses


def read_trajectory(path) -> list[SE3]:
    """Poses from a trajectory file."""
    with open(path, encoding="utf-8") as stream:
        return parse_trajectory(stream)


def compute_rmse(groundtruth: Sequence[SE3], estimated: Sequence[SE3]) -> float:
    """Root mean square of the norm of ``log(gt^-1 * est)`` over all poses."""
    if not groundtruth or not estimated:
        raise ValueError("trajectories must not be empty")
    if len(groundtruth) != len(estimated):
        raise ValueError(
            f"trajectories differ in length: {len(groundtruth)} vs {len(estimated)}"
        )
    total = 0.0
    for truth, estimate in zip(groundtruth, estimated):
        error = math.sqrt(sum(x * x for x in (truth.inverse() * estimate).log()))
        total += error * error
    return math.sqrt(total / len(estimated))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="trajectory-error",
        description="Compute the RMSE between a ground-truth and an estimated trajectory.",
    )
    parser.add_argument("groundtruth", nargs="?", default="groundtruth.txt")
    parser.add_argument("estimated", nargs="?", default="estimated.txt")
    args = parser.parse_args(argv)

    try:
        groundtruth = read_trajectory(args.groundtruth)
        estimated = read_trajectory(args.estimated)
    except FileNotFoundError as exc:
        print(f"trajectory {exc.filename} not found.", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 1

    try:
        rmse = compute_rmse(groundtruth, estimated)
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 1
    print(f"RMSE = {rmse:.6g}")
    return 0