"""Homography estimation between two views and its decomposition into motions."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .geometry import SE3, project2d, unproject2d

_log = logging.getLogger(__name__)

_RANSAC_MAX_ITERS = 2000
_RANSAC_CONFIDENCE = 0.995
_RANSAC_SEED = 0
_SAMPLE_SIZE = 4
_N_DECOMPOSITIONS = 8
_AMBIGUITY_RATIO = 0.9


@dataclass
class HomographyDecomposition:
    """One candidate motion (rotation, translation, plane) explaining a homography."""

    translation: np.ndarray
    rotation: np.ndarray
    d: float
    n: np.ndarray
    transform: SE3 = field(default_factory=SE3.identity)
    score: int = 0


def _skew(v: np.ndarray) -> np.ndarray:
    x, y, z = v
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def _normalizing_transform(pts: np.ndarray) -> np.ndarray:
    centre = pts.mean(axis=0)
    mean_dist = float(np.sqrt(((pts - centre) ** 2).sum(axis=1)).mean())
    s = math.sqrt(2.0) / mean_dist if mean_dist > 0 else 1.0
    return np.array([[s, 0.0, -s * centre[0]],
                     [0.0, s, -s * centre[1]],
                     [0.0, 0.0, 1.0]])


def _to_homogeneous(pts: np.ndarray) -> np.ndarray:
    return np.column_stack([pts, np.ones(len(pts))])


def _fit_homography(src: np.ndarray, dst: np.ndarray) -> Optional[np.ndarray]:
    """Normalized direct linear transform; None for a degenerate configuration."""
    t_src = _normalizing_transform(src)
    t_dst = _normalizing_transform(dst)
    s = (_to_homogeneous(src) @ t_src.T)[:, :2]
    d = (_to_homogeneous(dst) @ t_dst.T)[:, :2]
    n = len(s)
    a = np.zeros((2 * n, 9))
    x, y = s[:, 0], s[:, 1]
    u, v = d[:, 0], d[:, 1]
    a[0::2, 0] = -x
    a[0::2, 1] = -y
    a[0::2, 2] = -1.0
    a[0::2, 6] = u * x
    a[0::2, 7] = u * y
    a[0::2, 8] = u
    a[1::2, 3] = -x
    a[1::2, 4] = -y
    a[1::2, 5] = -1.0
    a[1::2, 6] = v * x
    a[1::2, 7] = v * y
    a[1::2, 8] = v
    try:
        _, _, vt = np.linalg.svd(a)
        h = np.linalg.inv(t_dst) @ vt[-1].reshape(3, 3) @ t_src
    except np.linalg.LinAlgError:
        return None
    if not np.all(np.isfinite(h)) or abs(h[2, 2]) < 1e-12:
        return None
    return h / h[2, 2]


def _transfer_errors(h: np.ndarray, src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    proj = _to_homogeneous(src) @ h.T
    w = proj[:, 2]
    with np.errstate(divide="ignore", invalid="ignore"):
        err = np.hypot(proj[:, 0] / w - dst[:, 0], proj[:, 1] / w - dst[:, 1])
    return np.where(np.isfinite(err), err, np.inf)


def _ransac_homography(src: np.ndarray, dst: np.ndarray, threshold: float) -> np.ndarray:
    n = len(src)
    rng = np.random.default_rng(_RANSAC_SEED)
    best_mask: Optional[np.ndarray] = None
    best_count = 0
    n_iters = _RANSAC_MAX_ITERS
    iteration = 0
    while iteration < n_iters:
        iteration += 1
        sample = rng.choice(n, _SAMPLE_SIZE, replace=False)
        h = _fit_homography(src[sample], dst[sample])
        if h is None:
            continue
        mask = _transfer_errors(h, src, dst) <= threshold
        count = int(mask.sum())
        if count > best_count:
            best_count = count
            best_mask = mask
            ratio = count / n
            if ratio >= 1.0:
                break
            denom = math.log(1.0 - ratio ** _SAMPLE_SIZE)
            if denom < 0.0:
                n_iters = min(n_iters, math.ceil(math.log(1.0 - _RANSAC_CONFIDENCE) / denom))
    if best_mask is None or best_count < _SAMPLE_SIZE:
        raise ValueError("could not estimate a homography from the matches")
    h = _fit_homography(src[best_mask], dst[best_mask])
    if h is None:
        raise ValueError("could not estimate a homography from the matches")
    return h


def _sampson_error(v_dash: np.ndarray, essential: np.ndarray, v: np.ndarray) -> float:
    a = unproject2d(v_dash)
    b = unproject2d(v)
    err = float(a @ essential @ b)
    fv = essential @ b
    ftv = essential.T @ a
    denom = float(fv[:2] @ fv[:2] + ftv[:2] @ ftv[:2])
    if denom == 0.0:
        return math.inf
    return err * err / denom


class Homography:
    """Homography between matched unit-plane points of two views and the motion behind it."""

    def __init__(self, fts1, fts2, focal_length, thresh_in_px) -> None:
        self.fts_c1 = np.asarray(fts1, dtype=float).reshape(-1, 2)
        self.fts_c2 = np.asarray(fts2, dtype=float).reshape(-1, 2)
        if len(self.fts_c1) != len(self.fts_c2):
            raise ValueError("both views need the same number of features")
        self.thresh = float(thresh_in_px)
        self.focal_length = float(focal_length)
        self.inliers: list[bool] = []
        self.t_c2_from_c1 = SE3.identity()
        self.h_c2_from_c1 = np.eye(3)
        self.decompositions: list[HomographyDecomposition] = []

    def calc_from_plane_params(self, normal, point_on_plane) -> None:
        """Homography induced by a plane under the current transform."""
        n = np.asarray(normal, dtype=float).reshape(3)
        d = float(n @ np.asarray(point_on_plane, dtype=float).reshape(3))
        t = self.t_c2_from_c1
        self.h_c2_from_c1 = t.rotation + np.outer(t.translation, n) / d

    def calc_from_matches(self) -> None:
        """Estimate the homography from the matches with RANSAC."""
        if len(self.fts_c1) < _SAMPLE_SIZE:
            raise ValueError(f"at least {_SAMPLE_SIZE} matches are needed")
        self.h_c2_from_c1 = _ransac_homography(
            self.fts_c1, self.fts_c2, 2.0 / self.focal_length)

    def compute_se3_from_matches(self) -> bool:
        """Estimate the homography and choose the motion that best explains it."""
        self.calc_from_matches()
        if not self.decompose():
            return False
        self.compute_matches_inliers()
        self.find_best_decomposition()
        self.t_c2_from_c1 = self.decompositions[0].transform
        return True

    def decompose(self) -> bool:
        """Produce the eight motion hypotheses; False for degenerate motion."""
        self.decompositions = []
        u, sv, vt = np.linalg.svd(self.h_c2_from_c1)
        v = vt.T
        d1, d2, d3 = (abs(float(x)) for x in sv)
        s = float(np.linalg.det(u) * np.linalg.det(v))

        if not (d1 != d2 and d2 != d3):
            _log.error("homography initialization: this motion case is not "
                       "implemented or is degenerate")
            return False

        x1 = math.sqrt((d1 * d1 - d2 * d2) / (d1 * d1 - d3 * d3))
        x2 = 0.0
        x3 = math.sqrt((d2 * d2 - d3 * d3) / (d1 * d1 - d3 * d3))
        signs = ((1.0, 1.0), (-1.0, 1.0), (1.0, -1.0), (-1.0, -1.0))

        for e1, e3 in signs:
            sin_t = (d1 - d3) * x1 * x3 * e1 * e3 / d2
            cos_t = (d1 * x3 * x3 + d3 * x1 * x1) / d2
            rot = np.array([[cos_t, 0.0, -sin_t], [0.0, 1.0, 0.0], [sin_t, 0.0, cos_t]])
            trans = np.array([(d1 - d3) * x1 * e1, 0.0, (d1 - d3) * -x3 * e3])
            n = v @ np.array([x1 * e1, x2, x3 * e3])
            self.decompositions.append(HomographyDecomposition(trans, rot, s * d2, n))

        for e1, e3 in signs:
            sin_p = (d1 + d3) * x1 * x3 * e1 * e3 / d2
            cos_p = (d3 * x1 * x1 - d1 * x3 * x3) / d2
            rot = np.array([[cos_p, 0.0, sin_p], [0.0, -1.0, 0.0], [sin_p, 0.0, -cos_p]])
            trans = np.array([(d1 + d3) * x1 * e1, 0.0, (d1 + d3) * x3 * e3])
            n = v @ np.array([x1 * e1, x2, x3 * e3])
            self.decompositions.append(HomographyDecomposition(trans, rot, s * -d2, n))

        for decomp in self.decompositions:
            rot = s * u @ decomp.rotation @ v.T
            decomp.transform = SE3(rot, u @ decomp.translation)
        return True

    def compute_matches_inliers(self) -> int:
        """Mark matches that the homography transfers within the threshold; return their count."""
        self.inliers = []
        for p1, p2 in zip(self.fts_c1, self.fts_c2):
            projected = project2d(self.h_c2_from_c1 @ unproject2d(p1))
            e_px = self.focal_length * float(np.linalg.norm(p2 - projected))
            self.inliers.append(e_px < self.thresh)
        return sum(self.inliers)

    def _inlier_points(self):
        return [p for p, ok in zip(self.fts_c1, self.inliers) if ok]

    def find_best_decomposition(self) -> None:
        """Keep the single hypothesis that puts the most points in front of both cameras."""
        if len(self.decompositions) != _N_DECOMPOSITIONS:
            raise ValueError("eight decompositions are needed; call decompose first")
        points = self._inlier_points()
        h_row = self.h_c2_from_c1[2]

        for decomp in self.decompositions:
            positive = sum(
                1 for p in points
                if (h_row[0] * p[0] + h_row[1] * p[1] + h_row[2]) / decomp.d > 0.0)
            decomp.score = -positive
        self.decompositions = sorted(self.decompositions, key=lambda dc: dc.score)[:4]

        for decomp in self.decompositions:
            positive = sum(
                1 for p in points if float(unproject2d(p) @ decomp.n) / decomp.d > 0.0)
            decomp.score = -positive
        self.decompositions = sorted(self.decompositions, key=lambda dc: dc.score)[:2]

        first, second = self.decompositions
        ratio = second.score / first.score if first.score != 0 else math.nan
        if ratio < _AMBIGUITY_RATIO:
            self.decompositions = [first]
            return

        limit = self.thresh * self.thresh * 4
        sampson_scores = []
        for decomp in (first, second):
            t = decomp.transform
            essential = t.rotation @ _skew(t.translation)
            sampson_scores.append(sum(
                min(_sampson_error(p1, essential, p2), limit)
                for p1, p2 in zip(self.fts_c1, self.fts_c2)))
        self.decompositions = [first if sampson_scores[0] <= sampson_scores[1] else second]