"""Rotations and rigid-body transforms together with their Lie-algebra maps.

Quaternions are given and returned as ``(w, x, y, z)``, real part first.
Twists of SE(3) are ``(rho, phi)``: translation part first, rotation last.
"""

from __future__ import annotations

import math

import numpy as np

_EPS = 1e-10


def _vector(values, size: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float).reshape(-1)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have {size} elements, got {arr.size}")
    return arr


def _square(values, size: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.shape != (size, size):
        raise ValueError(f"{name} must be a {size}x{size} matrix, got shape {arr.shape}")
    return arr


def _unit_quaternion(q) -> np.ndarray:
    q = _vector(q, 4, "quaternion")
    norm = np.linalg.norm(q)
    if norm < _EPS:
        raise ValueError("quaternion has (near) zero norm")
    return q / norm


def _quaternion_product(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return np.array(
        [
            aw * bw - ax * bx - ay * by - az * bz,
            aw * bx + ax * bw + ay * bz - az * by,
            aw * by - ax * bz + ay * bw + az * bx,
            aw * bz + ax * by - ay * bx + az * bw,
        ]
    )


def _apply_rotation(r: np.ndarray, points) -> np.ndarray:
    p = np.asarray(points, dtype=float)
    if p.shape == (3,):
        return r @ p
    if p.ndim == 2 and p.shape[1] == 3:
        return p @ r.T
    raise ValueError(f"expected a 3-vector or an (N, 3) array, got shape {p.shape}")


def hat(v) -> np.ndarray:
    """Skew-symmetric matrix of a 3-vector, so that ``hat(v) @ w == v x w``."""
    x, y, z = _vector(v, 3, "vector")
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def vee(m) -> np.ndarray:
    """3-vector of a skew-symmetric matrix; the inverse of :func:`hat`."""
    m = _square(m, 3, "skew matrix")
    return np.array([m[2, 1], m[0, 2], m[1, 0]])


def se3_hat(xi) -> np.ndarray:
    """4x4 matrix of a twist ``(rho, phi)``."""
    xi = _vector(xi, 6, "twist")
    out = np.zeros((4, 4))
    out[:3, :3] = hat(xi[3:])
    out[:3, 3] = xi[:3]
    return out


def se3_vee(m) -> np.ndarray:
    """Twist ``(rho, phi)`` of a 4x4 matrix; the inverse of :func:`se3_hat`."""
    m = _square(m, 4, "twist matrix")
    return np.concatenate([m[:3, 3], vee(m[:3, :3])])


def quaternion_to_matrix(q) -> np.ndarray:
    """Rotation matrix of the normalised quaternion ``(w, x, y, z)``."""
    w, x, y, z = _unit_quaternion(q)
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


def matrix_to_quaternion(r) -> np.ndarray:
    """Quaternion ``(w, x, y, z)`` of a rotation matrix."""
    m = _square(r, 3, "rotation matrix")
    diagonal_sum = float(m[0, 0] + m[1, 1] + m[2, 2])
    if diagonal_sum > 0:
        t = math.sqrt(diagonal_sum + 1.0)
        w = 0.5 * t
        t = 0.5 / t
        return np.array(
            [w, (m[2, 1] - m[1, 2]) * t, (m[0, 2] - m[2, 0]) * t, (m[1, 0] - m[0, 1]) * t]
        )
    i = int(np.argmax(np.diag(m)))
    j = (i + 1) % 3
    k = (j + 1) % 3
    t = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
    v = np.zeros(3)
    v[i] = 0.5 * t
    t = 0.5 / t
    w = (m[k, j] - m[j, k]) * t
    v[j] = (m[j, i] + m[i, j]) * t
    v[k] = (m[k, i] + m[i, k]) * t
    return np.array([w, *v])


def angle_axis_to_matrix(angle: float, axis) -> np.ndarray:
    """Rotation matrix of a rotation by ``angle`` radians about ``axis``."""
    axis = _vector(axis, 3, "axis")
    norm = np.linalg.norm(axis)
    if norm < _EPS:
        raise ValueError("rotation axis has (near) zero length")
    k = hat(axis / norm)
    return np.eye(3) + math.sin(angle) * k + (1.0 - math.cos(angle)) * (k @ k)


def euler_angles_zyx(r) -> np.ndarray:
    """Angles ``(a, b, c)`` with ``r == Rz(a) Ry(b) Rx(c)``, ``a`` in [0, pi]."""
    m = _square(r, 3, "rotation matrix")
    first = math.atan2(m[1, 0], m[0, 0])
    c2 = math.hypot(m[2, 2], m[2, 1])
    if first < 0:
        first += math.pi
        second = math.atan2(-m[2, 0], -c2)
    else:
        second = math.atan2(-m[2, 0], c2)
    s1, c1 = math.sin(first), math.cos(first)
    third = math.atan2(s1 * m[0, 2] - c1 * m[1, 2], c1 * m[1, 1] - s1 * m[0, 1])
    return np.array([first, second, third])


class SO3:
    """A 3D rotation, kept as a unit quaternion."""

    __slots__ = ("_q",)

    def __init__(self, matrix=None):
        if matrix is None:
            self._q = np.array([1.0, 0.0, 0.0, 0.0])
            return
        m = _square(matrix, 3, "rotation matrix")
        if not np.allclose(m @ m.T, np.eye(3), atol=1e-6) or np.linalg.det(m) <= 0:
            raise ValueError("matrix is not a rotation matrix")
        self._q = _unit_quaternion(matrix_to_quaternion(m))

    @classmethod
    def _from_unit(cls, q: np.ndarray) -> SO3:
        obj = cls.__new__(cls)
        obj._q = q
        return obj

    @classmethod
    def from_quaternion(cls, q) -> SO3:
        """Rotation of the quaternion ``(w, x, y, z)``, normalised first."""
        return cls._from_unit(_unit_quaternion(q))

    @classmethod
    def exp(cls, omega) -> SO3:
        """Exponential map of a rotation vector."""
        omega = _vector(omega, 3, "rotation vector")
        theta_sq = float(omega @ omega)
        theta = math.sqrt(theta_sq)
        if theta < _EPS:
            theta_4 = theta_sq * theta_sq
            imag = 0.5 - theta_sq / 48.0 + theta_4 / 3840.0
            real = 1.0 - theta_sq / 8.0 + theta_4 / 384.0
        else:
            half = 0.5 * theta
            imag = math.sin(half) / theta
            real = math.cos(half)
        return cls._from_unit(_unit_quaternion(np.array([real, *(imag * omega)])))

    def log(self) -> np.ndarray:
        """Rotation vector of this rotation."""
        w = self._q[0]
        v = self._q[1:]
        squared_n = float(v @ v)
        if squared_n < _EPS * _EPS:
            two_atan_nbyw_by_n = 2.0 / w - (2.0 / 3.0) * squared_n / (w * w * w)
        else:
            n = math.sqrt(squared_n)
            if abs(w) < _EPS:
                two_atan_nbyw_by_n = (math.pi if w > 0 else -math.pi) / n
            else:
                two_atan_nbyw_by_n = 2.0 * math.atan(n / w) / n
        return two_atan_nbyw_by_n * v

    def matrix(self) -> np.ndarray:
        return quaternion_to_matrix(self._q)

    def quaternion(self) -> np.ndarray:
        """Unit quaternion ``(w, x, y, z)``."""
        return self._q.copy()

    def inverse(self) -> SO3:
        w, x, y, z = self._q
        return SO3._from_unit(np.array([w, -x, -y, -z]))

    def __mul__(self, other):
        if isinstance(other, SO3):
            return SO3._from_unit(_unit_quaternion(_quaternion_product(self._q, other._q)))
        return _apply_rotation(self.matrix(), other)

    def __repr__(self) -> str:
        return f"SO3(quaternion={self._q.tolist()})"


class SE3:
    """A rigid-body transform: rotation followed by translation."""

    __slots__ = ("so3", "translation")

    def __init__(self, rotation=None, translation=None):
        if rotation is None:
            self.so3 = SO3()
        elif isinstance(rotation, SO3):
            self.so3 = rotation
        else:
            self.so3 = SO3(rotation)
        if translation is None:
            self.translation = np.zeros(3)
        else:
            self.translation = _vector(translation, 3, "translation").copy()

    @classmethod
    def exp(cls, xi) -> SE3:
        """Exponential map of a twist ``(rho, phi)``."""
        xi = _vector(xi, 6, "twist")
        rho, omega = xi[:3], xi[3:]
        so3 = SO3.exp(omega)
        theta = float(np.linalg.norm(omega))
        big_omega = hat(omega)
        if theta < _EPS:
            v = so3.matrix()
        else:
            v = (
                np.eye(3)
                + (1.0 - math.cos(theta)) / (theta * theta) * big_omega
                + (theta - math.sin(theta)) / (theta ** 3) * (big_omega @ big_omega)
            )
        return cls(so3, v @ rho)

    @classmethod
    def from_quaternion(cls, q, translation=None) -> SE3:
        """Transform from quaternion ``(w, x, y, z)`` and translation."""
        return cls(SO3.from_quaternion(q), translation)

    def log(self) -> np.ndarray:
        """Twist ``(rho, phi)`` of this transform."""
        omega = self.so3.log()
        theta = float(np.linalg.norm(omega))
        big_omega = hat(omega)
        omega_sq = big_omega @ big_omega
        if theta < _EPS:
            v_inv = np.eye(3) - 0.5 * big_omega + omega_sq / 12.0
        else:
            half = 0.5 * theta
            factor = (1.0 - 0.5 * theta * math.cos(half) / math.sin(half)) / (theta * theta)
            v_inv = np.eye(3) - 0.5 * big_omega + factor * omega_sq
        return np.concatenate([v_inv @ self.translation, omega])

    def inverse(self) -> SE3:
        inv = self.so3.inverse()
        return SE3(inv, -(inv * self.translation))

    def matrix(self) -> np.ndarray:
        out = np.eye(4)
        out[:3, :3] = self.so3.matrix()
        out[:3, 3] = self.translation
        return out

    def matrix3x4(self) -> np.ndarray:
        return self.matrix()[:3, :]

    def rotation_matrix(self) -> np.ndarray:
        return self.so3.matrix()

    def adjoint(self) -> np.ndarray:
        """6x6 adjoint acting on twists ``(rho, phi)``."""
        r = self.rotation_matrix()
        out = np.zeros((6, 6))
        out[:3, :3] = r
        out[:3, 3:] = hat(self.translation) @ r
        out[3:, 3:] = r
        return out

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(self.so3 * other.so3, self.so3 * other.translation + self.translation)
        return _apply_rotation(self.rotation_matrix(), other) + self.translation

    def __repr__(self) -> str:
        return f"SE3(quaternion={self.so3.quaternion().tolist()}, translation={self.translation.tolist()})"