"""Patch matching by direct alignment and by search along the epipolar line."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

import numpy as np

from .feature_alignment import align_2d
from .geometry import SE3, project2d, unproject2d
from .patch_score import ZMSSD

if TYPE_CHECKING:
    from .camera import AbstractCamera
    from .frame import Feature, Frame
    from .point3d import Point3D

HALFPATCH_SIZE = 4
PATCH_SIZE = 2 * HALFPATCH_SIZE
_WARP_HALFPATCH = 5
_EPI_STEP = 0.7
_MIN_DET = 0.000001

_log = logging.getLogger(__name__)


@dataclass
class MatcherOptions:
    align_max_iter: int = 10
    max_epi_search_steps: int = 1000
    subpix_refinement: bool = True
    n_pyr_levels: int = 3


def get_warp_matrix_affine(cam_ref: "AbstractCamera", cam_cur: "AbstractCamera",
                           px_ref, f_ref, depth_ref, t_cur_ref: SE3, level_ref) -> np.ndarray:
    """Affine warp (2x2) taking reference patch offsets to current-image offsets."""
    px_ref = np.asarray(px_ref, dtype=float)
    xyz_ref = np.asarray(f_ref, dtype=float) * float(depth_ref)
    step = _WARP_HALFPATCH * (1 << int(level_ref))
    xyz_du = cam_ref.cam2world(px_ref + np.array([step, 0.0]))
    xyz_dv = cam_ref.cam2world(px_ref + np.array([0.0, step]))
    xyz_du = xyz_du * (xyz_ref[2] / xyz_du[2])
    xyz_dv = xyz_dv * (xyz_ref[2] / xyz_dv[2])
    px_cur = cam_cur.world2cam(t_cur_ref * xyz_ref)
    px_du = cam_cur.world2cam(t_cur_ref * xyz_du)
    px_dv = cam_cur.world2cam(t_cur_ref * xyz_dv)
    return np.column_stack([(px_du - px_cur) / _WARP_HALFPATCH,
                            (px_dv - px_cur) / _WARP_HALFPATCH])


def get_best_search_level(a_cur_ref, max_level) -> int:
    """Pyramid level at which the warped patch has about its original size."""
    det = float(np.linalg.det(np.asarray(a_cur_ref, dtype=float)))
    level = 0
    while det > 3.0 and level < max_level:
        level += 1
        det *= 0.25
    return level


def warp_affine(a_cur_ref, img_ref, px_ref, level_ref, search_level,
                halfpatch_size) -> Optional[np.ndarray]:
    """Sample a square patch from ``img_ref`` through the inverse of the affine warp.

    Returns None when the warp cannot be inverted. Pixels falling outside the
    image are set to zero.
    """
    try:
        a_ref_cur = np.linalg.inv(np.asarray(a_cur_ref, dtype=float))
    except np.linalg.LinAlgError:
        return None
    if np.isnan(a_ref_cur).any():
        return None
    img = np.asarray(img_ref)
    rows, cols = img.shape
    patch_size = 2 * int(halfpatch_size)
    px_ref_pyr = np.asarray(px_ref, dtype=float) / (1 << int(level_ref))
    offsets = (np.arange(patch_size) - halfpatch_size) * float(1 << int(search_level))
    xs, ys = np.meshgrid(offsets, offsets)
    u = a_ref_cur[0, 0] * xs + a_ref_cur[0, 1] * ys + px_ref_pyr[0]
    v = a_ref_cur[1, 0] * xs + a_ref_cur[1, 1] * ys + px_ref_pyr[1]
    inside = (u >= 0) & (v >= 0) & (u < cols - 1) & (v < rows - 1)
    patch = np.zeros((patch_size, patch_size), dtype=np.uint8)
    if inside.any():
        uu, vv = u[inside], v[inside]
        x0 = np.floor(uu).astype(int)
        y0 = np.floor(vv).astype(int)
        sx, sy = uu - x0, vv - y0
        src = img.astype(float)
        values = ((1 - sx) * (1 - sy) * src[y0, x0] + sx * (1 - sy) * src[y0, x0 + 1]
                  + (1 - sx) * sy * src[y0 + 1, x0] + sx * sy * src[y0 + 1, x0 + 1])
        patch[inside] = values.astype(np.uint8)
    return patch


def depth_from_triangulation(t_search_ref: SE3, f_ref, f_cur) -> Optional[float]:
    """Depth along ``f_ref`` of the point seen along ``f_cur``; None for parallel rays."""
    a = np.column_stack([t_search_ref.rotation @ np.asarray(f_ref, dtype=float),
                         np.asarray(f_cur, dtype=float)])
    ata = a.T @ a
    if np.linalg.det(ata) < _MIN_DET:
        return None
    depth2 = -np.linalg.inv(ata) @ a.T @ t_search_ref.translation
    return abs(float(depth2[0]))


class Matcher:
    """Finds a reference patch in another image."""

    def __init__(self, options: Optional[MatcherOptions] = None) -> None:
        self.options = options if options is not None else MatcherOptions()
        self.a_cur_ref = np.eye(2)
        self.search_level = 0
        self.px_cur = np.zeros(2)
        self.epi_dir = np.zeros(2)
        self.epi_length = 0.0

    def _reference_patches(self, img_ref, ref_ftr: "Feature"):
        with_border = warp_affine(self.a_cur_ref, img_ref, ref_ftr.px, ref_ftr.level,
                                  self.search_level, HALFPATCH_SIZE + 1)
        if with_border is None:
            _log.warning("affine warp is not invertible, probably the camera has no translation")
            return None
        return with_border, with_border[1:-1, 1:-1].copy()

    def _align(self, cur_frame: "Frame", patches, px) -> Optional[np.ndarray]:
        scale = 1 << self.search_level
        result = align_2d(cur_frame.img_pyr[self.search_level], patches[0], patches[1],
                          self.options.align_max_iter, np.asarray(px, dtype=float) / scale)
        return result.px * scale if result.converged else None

    def find_match_direct(self, pt: "Point3D", cur_frame: "Frame", px_cur) -> Optional[np.ndarray]:
        """Refine the projection ``px_cur`` of ``pt`` in ``cur_frame``; None on failure."""
        ref_ftr = pt.get_close_view_obs(cur_frame.pos)
        if ref_ftr is None:
            return None
        ref_frame = ref_ftr.frame
        scale = 1 << ref_ftr.level
        px_level = (int(int(ref_ftr.px[0]) / scale), int(int(ref_ftr.px[1]) / scale))
        if not ref_frame.cam.is_in_frame(px_level, HALFPATCH_SIZE + 2, ref_ftr.level):
            return None
        self.a_cur_ref = get_warp_matrix_affine(
            ref_frame.cam, cur_frame.cam, ref_ftr.px, ref_ftr.f,
            float(np.linalg.norm(ref_frame.pos - pt.pos)),
            cur_frame.T_f_w * ref_frame.T_f_w.inverse(), ref_ftr.level)
        self.search_level = get_best_search_level(self.a_cur_ref, self.options.n_pyr_levels - 1)
        patches = self._reference_patches(ref_frame.img_pyr[ref_ftr.level], ref_ftr)
        if patches is None:
            return None
        return self._align(cur_frame, patches, px_cur)

    def _triangulated(self, t_cur_ref, ref_ftr, cur_frame, patches) -> Optional[float]:
        refined = self._align(cur_frame, patches, self.px_cur)
        if refined is None:
            return None
        self.px_cur = refined
        return depth_from_triangulation(t_cur_ref, ref_ftr.f, cur_frame.cam.cam2world(refined))

    def find_epipolar_match_direct(self, ref_frame: "Frame", cur_frame: "Frame",
                                   ref_ftr: "Feature", d_estimate, d_min, d_max) -> Optional[float]:
        """Search the epipolar line for ``ref_ftr``; return its depth or None."""
        t_cur_ref = cur_frame.T_f_w * ref_frame.T_f_w.inverse()
        f_ref = np.asarray(ref_ftr.f, dtype=float)
        a = project2d(t_cur_ref * (f_ref * float(d_min)))
        b = project2d(t_cur_ref * (f_ref * float(d_max)))
        self.epi_dir = a - b

        self.a_cur_ref = get_warp_matrix_affine(
            ref_frame.cam, cur_frame.cam, ref_ftr.px, f_ref, d_estimate, t_cur_ref, ref_ftr.level)
        self.search_level = get_best_search_level(self.a_cur_ref, self.options.n_pyr_levels - 1)
        scale = 1 << self.search_level

        cam = cur_frame.cam
        px_a = cam.world2cam(a)
        px_b = cam.world2cam(b)
        self.epi_length = float(np.linalg.norm(px_a - px_b)) / scale

        patches = self._reference_patches(ref_frame.img_pyr[ref_ftr.level], ref_ftr)
        if patches is None:
            return None

        if self.epi_length < 2.0:
            self.px_cur = (px_a + px_b) / 2.0
            return self._triangulated(t_cur_ref, ref_ftr, cur_frame, patches)

        n_steps = int(self.epi_length / _EPI_STEP)
        step = self.epi_dir / n_steps
        if n_steps > self.options.max_epi_search_steps:
            _log.warning(
                "skip epipolar search: %d evaluations, px_length=%f, d_min=%f, d_max=%f",
                n_steps, self.epi_length, d_min, d_max)
            return None

        patch_score = ZMSSD(patches[1])
        img = cur_frame.img_pyr[self.search_level]
        best_score = ZMSSD.threshold()
        uv_best = None
        last_checked = (0, 0)
        for i in range(n_steps + 1):
            uv = b + (i - 1) * step
            px = cam.world2cam(uv)
            pxi = (int(px[0] / scale + 0.5), int(px[1] / scale + 0.5))
            if pxi == last_checked:
                continue
            last_checked = pxi
            if not cam.is_in_frame(pxi, PATCH_SIZE, self.search_level):
                continue
            y0 = pxi[1] - HALFPATCH_SIZE
            x0 = pxi[0] - HALFPATCH_SIZE
            score = patch_score.compute_score(img[y0:y0 + PATCH_SIZE, x0:x0 + PATCH_SIZE])
            if score < best_score:
                best_score = score
                uv_best = uv

        if uv_best is None or best_score >= ZMSSD.threshold():
            return None
        self.px_cur = cam.world2cam(uv_best)
        if self.options.subpix_refinement:
            return self._triangulated(t_cur_ref, ref_ftr, cur_frame, patches)
        f_cur = unproject2d(uv_best)
        return depth_from_triangulation(t_cur_ref, f_ref, f_cur / np.linalg.norm(f_cur))