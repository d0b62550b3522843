"""Rigid-body transforms, projections and small numeric helpers."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Union

import numpy as np

_SMALL_ANGLE = 1e-10


def _hat(omega: np.ndarray) -> np.ndarray:
    """Skew-symmetric matrix of a 3-vector."""
    wx, wy, wz = omega
    return np.array(
        [[0.0, -wz, wy],
         [wz, 0.0, -wx],
         [-wy, wx, 0.0]]
    )


class SE3:
    """A rigid transform made of a rotation matrix and a translation vector."""

    __slots__ = ("rotation", "translation")

    def __init__(self, rotation, translation) -> None:
        rotation = np.array(rotation, dtype=float)
        translation = np.array(translation, dtype=float).reshape(-1)
        if rotation.shape != (3, 3):
            raise ValueError(f"rotation must be 3x3, got shape {rotation.shape}")
        if translation.shape != (3,):
            raise ValueError(f"translation must have 3 elements, got {translation.size}")
        self.rotation = rotation
        self.translation = translation

    @classmethod
    def identity(cls) -> "SE3":
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def exp(cls, xi) -> "SE3":
        """Exponential map of a twist ordered as (translation part, rotation part)."""
        xi = np.asarray(xi, dtype=float).reshape(-1)
        if xi.shape != (6,):
            raise ValueError(f"twist must have 6 elements, got {xi.size}")
        upsilon, omega = xi[:3], xi[3:]
        theta = float(np.linalg.norm(omega))
        omega_hat = _hat(omega)
        omega_hat_sq = omega_hat @ omega_hat
        eye = np.eye(3)
        if theta < _SMALL_ANGLE:
            rotation = eye + omega_hat + 0.5 * omega_hat_sq
            v = eye + 0.5 * omega_hat + omega_hat_sq / 6.0
        else:
            sin_t, cos_t = np.sin(theta), np.cos(theta)
            rotation = (
                eye
                + (sin_t / theta) * omega_hat
                + ((1.0 - cos_t) / theta**2) * omega_hat_sq
            )
            v = (
                eye
                + ((1.0 - cos_t) / theta**2) * omega_hat
                + ((theta - sin_t) / theta**3) * omega_hat_sq
            )
        return cls(rotation, v @ upsilon)

    def inverse(self) -> "SE3":
        rot_t = self.rotation.T
        return SE3(rot_t, -rot_t @ self.translation)

    def __mul__(self, other: Union["SE3", np.ndarray, Iterable[float]]):
        if isinstance(other, SE3):
            return SE3(
                self.rotation @ other.rotation,
                self.rotation @ other.translation + self.translation,
            )
        if isinstance(other, (str, bytes)):
            return NotImplemented
        try:
            points = np.asarray(other, dtype=float)
        except (TypeError, ValueError):
            return NotImplemented
        if points.shape == (3,):
            return self.rotation @ points + self.translation
        if points.ndim == 2 and points.shape[1] == 3:
            return points @ self.rotation.T + self.translation
        return NotImplemented

    def __repr__(self) -> str:
        return f"SE3(rotation={self.rotation.tolist()}, translation={self.translation.tolist()})"


def project2d(v) -> np.ndarray:
    """Project a 3-vector onto the plane z = 1."""
    v = np.asarray(v, dtype=float)
    return v[:2] / v[2]


def unproject2d(v) -> np.ndarray:
    """Lift a 2-vector to homogeneous coordinates (x, y, 1)."""
    v = np.asarray(v, dtype=float)
    return np.array([v[0], v[1], 1.0])


def pose_jacobian(xyz_in_f) -> np.ndarray:
    """Jacobian (2x6) of the unit-plane projection with respect to a pose increment."""
    x, y, z = (float(c) for c in np.asarray(xyz_in_f, dtype=float))
    z_inv = 1.0 / z
    z_inv_2 = z_inv * z_inv
    j = np.zeros((2, 6))
    j[0, 0] = -z_inv
    j[0, 1] = 0.0
    j[0, 2] = x * z_inv_2
    j[0, 3] = y * j[0, 2]
    j[0, 4] = -(1.0 + x * j[0, 2])
    j[0, 5] = y * z_inv
    j[1, 0] = 0.0
    j[1, 1] = -z_inv
    j[1, 2] = y * z_inv_2
    j[1, 3] = 1.0 + y * j[1, 2]
    j[1, 4] = -j[0, 3]
    j[1, 5] = -x * z_inv
    return j


def point_jacobian(p_in_f, rotation) -> np.ndarray:
    """Jacobian (2x3) of the unit-plane projection with respect to the world point."""
    p = np.asarray(p_in_f, dtype=float)
    z_inv = 1.0 / p[2]
    z_inv_sq = z_inv * z_inv
    j = np.array(
        [[z_inv, 0.0, -p[0] * z_inv_sq],
         [0.0, z_inv, -p[1] * z_inv_sq]]
    )
    return -j @ np.asarray(rotation, dtype=float)


def norm_max(v) -> float:
    """Largest absolute component of a vector."""
    return float(np.max(np.abs(np.asarray(v, dtype=float))))


def median(values) -> float:
    """Element at index len // 2 of the sorted values."""
    ordered = sorted(values)
    if not ordered:
        raise ValueError("median of an empty sequence")
    return ordered[len(ordered) // 2]