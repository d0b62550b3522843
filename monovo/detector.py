"""Corner scoring used to rank detected features."""

from __future__ import annotations

import math

import numpy as np

_HALFBOX_SIZE = 4
_BOX_SIZE = 2 * _HALFBOX_SIZE
_BOX_AREA = _BOX_SIZE * _BOX_SIZE


def shi_tomasi_score(img, u, v) -> float:
    """Smaller eigenvalue of the gradient structure tensor in an 8x8 box at (u, v).

    Returns 0 when the box is too close to the image border.
    """
    img = np.asarray(img)
    if img.ndim != 2:
        raise ValueError("image must be two-dimensional")
    rows, cols = img.shape
    u, v = int(u), int(v)
    x_min, x_max = u - _HALFBOX_SIZE, u + _HALFBOX_SIZE
    y_min, y_max = v - _HALFBOX_SIZE, v + _HALFBOX_SIZE
    if x_min < 1 or x_max >= cols - 1 or y_min < 1 or y_max >= rows - 1:
        return 0.0

    src = img.astype(float)
    dx = src[y_min:y_max, x_min + 1:x_max + 1] - src[y_min:y_max, x_min - 1:x_max - 1]
    dy = src[y_min + 1:y_max + 1, x_min:x_max] - src[y_min - 1:y_max - 1, x_min:x_max]

    norm = 2.0 * _BOX_AREA
    d_xx = float(np.sum(dx * dx)) / norm
    d_yy = float(np.sum(dy * dy)) / norm
    d_xy = float(np.sum(dx * dy)) / norm
    trace = d_xx + d_yy
    discriminant = max(trace * trace - 4.0 * (d_xx * d_yy - d_xy * d_xy), 0.0)
    return 0.5 * (trace - math.sqrt(discriminant))