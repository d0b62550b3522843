"""Sub-pixel alignment of a reference patch against an image by Gauss-Newton."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

HALFPATCH_SIZE = 4
PATCH_SIZE = 2 * HALFPATCH_SIZE
_BORDER_SIZE = PATCH_SIZE + 2
_MIN_UPDATE_SQUARED = 0.03 * 0.03


@dataclass(frozen=True)
class AlignResult:
    """Outcome of an alignment: whether it converged and the refined pixel."""

    converged: bool
    px: np.ndarray


def _as_square(patch, size: int, name: str) -> np.ndarray:
    arr = np.asarray(patch)
    if arr.shape not in ((size * size,), (size, size)):
        raise ValueError(f"{name} must hold {size}x{size} pixels, got shape {arr.shape}")
    return arr.reshape(size, size).astype(float)


def align_2d(cur_img, ref_patch_with_border, ref_patch, n_iter, cur_px_estimate) -> AlignResult:
    """Refine the position of an 8x8 reference patch in ``cur_img``.

    The estimate is the patch centre in pixel coordinates (x, y). The patch with
    border is 10x10 and supplies the reference gradients. A mean intensity offset
    between the patches is estimated along with the position.
    """
    img = np.asarray(cur_img, dtype=float)
    if img.ndim != 2:
        raise ValueError("image must be two-dimensional")
    border = _as_square(ref_patch_with_border, _BORDER_SIZE, "patch with border")
    ref = _as_square(ref_patch, PATCH_SIZE, "patch")
    estimate = np.asarray(cur_px_estimate, dtype=float).reshape(-1)
    if estimate.shape != (2,):
        raise ValueError("pixel estimate must have two elements")

    # Reference gradients, taken at the inner 8x8 pixels of the bordered patch.
    ref_dx = 0.5 * (border[1:-1, 2:] - border[1:-1, :-2])
    ref_dy = 0.5 * (border[2:, 1:-1] - border[:-2, 1:-1])
    jac = np.stack([ref_dx.ravel(), ref_dy.ravel(), np.ones(PATCH_SIZE * PATCH_SIZE)])
    hessian = jac @ jac.T
    try:
        h_inv = np.linalg.inv(hessian)
    except np.linalg.LinAlgError:
        return AlignResult(False, estimate.copy())

    rows, cols = img.shape
    u, v = float(estimate[0]), float(estimate[1])
    mean_diff = 0.0
    converged = False

    for _ in range(int(n_iter)):
        if math.isnan(u) or math.isnan(v):
            return AlignResult(False, estimate.copy())
        u_r = math.floor(u)
        v_r = math.floor(v)
        if (u_r < HALFPATCH_SIZE or v_r < HALFPATCH_SIZE
                or u_r >= cols - HALFPATCH_SIZE or v_r >= rows - HALFPATCH_SIZE):
            break

        subpix_x = u - u_r
        subpix_y = v - v_r
        w_tl = (1.0 - subpix_x) * (1.0 - subpix_y)
        w_tr = subpix_x * (1.0 - subpix_y)
        w_bl = (1.0 - subpix_x) * subpix_y
        w_br = subpix_x * subpix_y

        y0 = v_r - HALFPATCH_SIZE
        x0 = u_r - HALFPATCH_SIZE
        window = img[y0:y0 + PATCH_SIZE + 1, x0:x0 + PATCH_SIZE + 1]
        search = (w_tl * window[:-1, :-1] + w_tr * window[:-1, 1:]
                  + w_bl * window[1:, :-1] + w_br * window[1:, 1:])
        res = search - ref + mean_diff
        j_res = -np.array([
            float(np.sum(res * ref_dx)),
            float(np.sum(res * ref_dy)),
            float(np.sum(res)),
        ])

        update = h_inv @ j_res
        u += float(update[0])
        v += float(update[1])
        mean_diff += float(update[2])

        if update[0] * update[0] + update[1] * update[1] < _MIN_UPDATE_SQUARED:
            converged = True
            break

    return AlignResult(converged, np.array([u, v]))