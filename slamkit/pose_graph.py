"""Pose-graph optimisation on SE(3) with poses updated by left multiplication.

Graphs are read from and written to the g2o text format, using the
``VERTEX_SE3:QUAT`` and ``EDGE_SE3:QUAT`` records:

    VERTEX_SE3:QUAT id tx ty tz qx qy qz qw
    EDGE_SE3:QUAT id1 id2 tx ty tz qx qy qz qw <21 upper-triangular information values>
"""

from __future__ import annotations

import argparse
import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, TextIO

import numpy as np
from scipy.sparse import coo_matrix, identity
from scipy.sparse.linalg import spsolve

from slamkit.lie import SE3

logger = logging.getLogger(__name__)

VERTEX_TAG = "VERTEX_SE3:QUAT"
EDGE_TAG = "EDGE_SE3:QUAT"

_DIM = 6
_UPPER = np.triu_indices(_DIM)
_TAU = 1e-5
_MAX_TRIALS = 10
_BLOCK_ROWS = np.repeat(np.arange(_DIM), _DIM)
_BLOCK_COLS = np.tile(np.arange(_DIM), _DIM)


@dataclass
class Vertex:
    """A pose in the graph; fixed vertices are never moved by the optimiser."""

    id: int
    pose: SE3 = field(default_factory=SE3)
    fixed: bool = False


@dataclass
class Edge:
    """A relative-pose measurement from ``vertex_from`` to ``vertex_to``."""

    vertex_from: int
    vertex_to: int
    measurement: SE3 = field(default_factory=SE3)
    information: np.ndarray = field(default_factory=lambda: np.eye(_DIM))
    id: int = 0

    def __post_init__(self) -> None:
        info = np.asarray(self.information, dtype=float)
        if info.shape != (_DIM, _DIM):
            raise ValueError(f"information must be 6x6, got shape {info.shape}")
        self.information = info


class PoseGraph:
    """Vertices keyed by id, and the edges between them."""

    def __init__(self):
        self.vertices: dict[int, Vertex] = {}
        self.edges: list[Edge] = []

    def add_vertex(self, vertex: Vertex) -> None:
        if vertex.id in self.vertices:
            raise ValueError(f"vertex {vertex.id} already exists")
        self.vertices[vertex.id] = vertex

    def add_edge(self, edge: Edge) -> None:
        for vid in (edge.vertex_from, edge.vertex_to):
            if vid not in self.vertices:
                raise ValueError(f"edge {edge.id} refers to unknown vertex {vid}")
        self.edges.append(edge)

    def edge_error(self, edge: Edge) -> np.ndarray:
        """``log(Z^-1 * T_from^-1 * T_to)`` as a twist ``(rho, phi)``."""
        t_from = self.vertices[edge.vertex_from].pose
        t_to = self.vertices[edge.vertex_to].pose
        return (edge.measurement.inverse() * t_from.inverse() * t_to).log()

    def total_chi2(self) -> float:
        """Sum of ``e^T * information * e`` over all edges."""
        total = 0.0
        for edge in self.edges:
            e = self.edge_error(edge)
            total += float(e @ edge.information @ e)
        return total

    def _linearize(self, index: dict[int, int]):
        size = _DIM * len(index)
        rows, cols, data = [], [], []
        b = np.zeros(size)

        def add_block(i: int, j: int, block: np.ndarray) -> None:
            rows.append(_DIM * i + _BLOCK_ROWS)
            cols.append(_DIM * j + _BLOCK_COLS)
            data.append(block.reshape(-1))

        for edge in self.edges:
            e = self.edge_error(edge)
            adj = self.vertices[edge.vertex_to].pose.inverse().adjoint()
            omega = edge.information
            terms = [
                (index.get(edge.vertex_from), -adj),
                (index.get(edge.vertex_to), adj),
            ]
            terms = [(k, j) for k, j in terms if k is not None]
            for k, jk in terms:
                b[_DIM * k : _DIM * k + _DIM] -= jk.T @ omega @ e
                for m, jm in terms:
                    add_block(k, m, jk.T @ omega @ jm)

        if data:
            h = coo_matrix(
                (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
                shape=(size, size),
            ).tocsc()
        else:
            h = coo_matrix((size, size)).tocsc()
        return h, b

    def optimize(self, iterations: int = 30) -> float:
        """Levenberg-Marquardt over the free vertices; returns the final chi2."""
        if iterations < 0:
            raise ValueError("iterations must not be negative")
        free = [v for v in self.vertices.values() if not v.fixed]
        index = {v.id: k for k, v in enumerate(free)}
        chi2 = self.total_chi2()
        if not free or not self.edges:
            return chi2

        size = _DIM * len(free)
        eye = identity(size, format="csc")
        damping = None
        for iteration in range(iterations):
            h, b = self._linearize(index)
            if not np.any(np.abs(b) > 1e-15):
                break
            if damping is None:
                damping = _TAU * max(float(h.diagonal().max()), 1e-12)
            factor = 2.0
            accepted = False
            for _ in range(_MAX_TRIALS):
                backup = {v.id: v.pose for v in free}
                dx = np.atleast_1d(spsolve(h + damping * eye, b))
                new_chi2 = math.inf
                if np.all(np.isfinite(dx)):
                    for v in free:
                        k = index[v.id]
                        v.pose = SE3.exp(dx[_DIM * k : _DIM * k + _DIM]) * v.pose
                    new_chi2 = self.total_chi2()
                denominator = float(dx @ (damping * dx + b))
                rho = (chi2 - new_chi2) / denominator if denominator > 0 else -1.0
                if math.isfinite(new_chi2) and rho > 0:
                    damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                    decrease = chi2 - new_chi2
                    chi2 = new_chi2
                    accepted = True
                    break
                for v in free:
                    v.pose = backup[v.id]
                damping *= factor
                factor *= 2.0
            logger.info(
                "iteration= %d chi2= %.6f lambda= %g accepted= %s",
                iteration,
                chi2,
                damping,
                accepted,
            )
            if not accepted or chi2 < 1e-20 or decrease <= 1e-12 * max(chi2, 1e-300):
                break
        return chi2


def _floats(fields: list[str], number: int) -> list[float]:
    try:
        return [float(f) for f in fields]
    except ValueError as exc:
        raise ValueError(f"line {number}: {exc}") from exc


def _pose_from(values: list[float]) -> SE3:
    tx, ty, tz, qx, qy, qz, qw = values
    return SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz))


def read_g2o(stream: Iterable[str]) -> PoseGraph:
    """Graph from g2o text; vertex 0 is fixed, edges are numbered in order."""
    graph = PoseGraph()
    edge_count = 0
    for number, line in enumerate(stream, start=1):
        fields = line.split()
        if not fields:
            continue
        tag = fields[0]
        if tag == VERTEX_TAG:
            if len(fields) != 9:
                raise ValueError(f"line {number}: vertex needs 8 values, got {len(fields) - 1}")
            try:
                vid = int(fields[1])
            except ValueError as exc:
                raise ValueError(f"line {number}: {exc}") from exc
            pose = _pose_from(_floats(fields[2:], number))
            graph.add_vertex(Vertex(vid, pose, fixed=(vid == 0)))
        elif tag == EDGE_TAG:
            if len(fields) != 31:
                raise ValueError(f"line {number}: edge needs 30 values, got {len(fields) - 1}")
            try:
                id1, id2 = int(fields[1]), int(fields[2])
            except ValueError as exc:
                raise ValueError(f"line {number}: {exc}") from exc
            values = _floats(fields[3:], number)
            info = np.zeros((_DIM, _DIM))
            info[_UPPER] = values[7:]
            info = info + np.triu(info, 1).T
            edge = Edge(id1, id2, _pose_from(values[:7]), info, id=edge_count)
            graph.add_edge(edge)
            edge_count += 1
    return graph


def _fmt(values) -> str:
    return " ".join(repr(float(x)) for x in values)


def _pose_fields(pose: SE3) -> str:
    w, x, y, z = pose.so3.quaternion()
    return f"{_fmt(pose.translation)} {_fmt((x, y, z, w))}"


def write_g2o(graph: PoseGraph, stream: TextIO) -> None:
    """Write all vertices, then all edges, as g2o SE(3) records."""
    for vertex in graph.vertices.values():
        stream.write(f"{VERTEX_TAG} {vertex.id} {_pose_fields(vertex.pose)}\n")
    for edge in graph.edges:
        info = _fmt(edge.information[_UPPER])
        stream.write(
            f"{EDGE_TAG} {edge.vertex_from} {edge.vertex_to} "
            f"{_pose_fields(edge.measurement)} {info}\n"
        )


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="pose-graph",
        description="Optimise an SE(3) pose graph stored in g2o format.",
    )
    parser.add_argument("graph", help="input .g2o file")
    parser.add_argument("--output", default="result.g2o")
    parser.add_argument("--iterations", type=int, default=30)
    args = parser.parse_args(argv)

    try:
        with open(args.graph, encoding="utf-8") as stream:
            graph = read_g2o(stream)
    except FileNotFoundError:
        print(f"file {args.graph} does not exist.")
        return 1
    except ValueError as exc:
        print(exc)
        return 1

    print(f"read total {len(graph.vertices)} vertices, {len(graph.edges)} edges.")
    print("optimizing ...")
    graph.optimize(args.iterations)
    print("saving optimization results ...")
    with open(args.output, "w", encoding="utf-8") as stream:
        write_g2o(graph, stream)
    return 0