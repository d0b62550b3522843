"""3D map points observed by features."""

from __future__ import annotations

import itertools
from collections import deque
from enum import Enum
from typing import TYPE_CHECKING, Optional

import numpy as np

from .geometry import norm_max, point_jacobian, project2d

if TYPE_CHECKING:
    from .frame import Feature, Frame

_EPS = 0.0000000001
_MIN_COS_ANGLE = 0.5


class PointType(Enum):
    DELETED = 0
    CANDIDATE = 1
    UNKNOWN = 2
    GOOD = 3


class Point3D:
    """A point in world coordinates with the features that observe it."""

    _ids = itertools.count()

    def __init__(self, pos) -> None:
        self.id = next(Point3D._ids)
        self.pos = np.asarray(pos, dtype=float).reshape(3).copy()
        self.obs: deque["Feature"] = deque()
        self.last_published_ts = 0
        self.last_projected_kf_id = -1
        self.n_failed_reproj = 0
        self.n_succeeded_reproj = 0
        self.last_structure_optim = 0
        self.type = PointType.UNKNOWN

    def add_frame_ref(self, ftr: "Feature") -> None:
        """Record an observation; the newest comes first."""
        self.obs.appendleft(ftr)

    def delete_frame_ref(self, frame: "Frame") -> bool:
        """Remove the first observation made in ``frame``; report whether one was found."""
        for ftr in self.obs:
            if ftr.frame is frame:
                self.obs.remove(ftr)
                return True
        return False

    def get_close_view_obs(self, framepos) -> Optional["Feature"]:
        """Observation whose viewing direction is closest to that from ``framepos``.

        Returns None when the best angle exceeds 60 degrees.
        """
        obs_dir = np.asarray(framepos, dtype=float) - self.pos
        obs_dir = obs_dir / np.linalg.norm(obs_dir)
        best: Optional["Feature"] = None
        best_cos = 0.0
        for ftr in self.obs:
            direction = ftr.frame.pos - self.pos
            direction = direction / np.linalg.norm(direction)
            cos_angle = float(obs_dir @ direction)
            if cos_angle > best_cos:
                best_cos = cos_angle
                best = ftr
        if best_cos < _MIN_COS_ANGLE:
            return None
        return best

    def optimize(self, n_iter) -> None:
        """Refine the position by minimising the reprojection error over observations."""
        old_point = self.pos.copy()
        chi2 = 0.0
        for i in range(int(n_iter)):
            a = np.zeros((3, 3))
            b = np.zeros(3)
            new_chi2 = 0.0
            for ftr in self.obs:
                t_f_w = ftr.frame.T_f_w
                p_in_f = t_f_w * self.pos
                jac = point_jacobian(p_in_f, t_f_w.rotation)
                e = project2d(ftr.f) - project2d(p_in_f)
                new_chi2 += float(e @ e)
                a += jac.T @ jac
                b -= jac.T @ e

            try:
                dp = np.linalg.solve(a, b)
            except np.linalg.LinAlgError:
                dp = np.full(3, np.nan)

            if (i > 0 and new_chi2 > chi2) or np.isnan(dp[0]):
                self.pos = old_point
                break

            old_point = self.pos.copy()
            self.pos = self.pos + dp
            chi2 = new_chi2

            if norm_max(dp) <= _EPS:
                break

    def __repr__(self) -> str:
        return f"Point3D(id={self.id}, pos={self.pos.tolist()}, type={self.type.name})"