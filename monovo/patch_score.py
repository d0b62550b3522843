"""Zero-mean sum of squared differences between image patches."""

from __future__ import annotations

import numpy as np


class ZMSSD:
    """Zero-mean SSD cost between a fixed 8x8 reference patch and candidate patches."""

    HALF_PATCH_SIZE = 4
    PATCH_SIZE = 2 * HALF_PATCH_SIZE
    PATCH_AREA = PATCH_SIZE * PATCH_SIZE
    THRESHOLD = 2000 * PATCH_AREA

    def __init__(self, ref_patch) -> None:
        self.ref_patch = self._as_patch(ref_patch)
        self.sum_a = int(self.ref_patch.sum())
        self.sum_aa = int((self.ref_patch * self.ref_patch).sum())

    @classmethod
    def threshold(cls) -> int:
        return cls.THRESHOLD

    @classmethod
    def _as_patch(cls, patch) -> np.ndarray:
        arr = np.asarray(patch)
        if arr.size != cls.PATCH_AREA or arr.shape not in (
            (cls.PATCH_AREA,),
            (cls.PATCH_SIZE, cls.PATCH_SIZE),
        ):
            raise ValueError(
                f"patch must hold {cls.PATCH_SIZE}x{cls.PATCH_SIZE} pixels, got shape {arr.shape}"
            )
        return arr.reshape(cls.PATCH_SIZE, cls.PATCH_SIZE).astype(np.int64)

    def compute_score(self, cur_patch) -> int:
        """Score of a candidate patch; lower means more similar."""
        cur = self._as_patch(cur_patch)
        sum_b = int(cur.sum())
        sum_bb = int((cur * cur).sum())
        sum_ab = int((cur * self.ref_patch).sum())
        mean_term = (self.sum_a * self.sum_a - 2 * self.sum_a * sum_b + sum_b * sum_b) // self.PATCH_AREA
        return self.sum_aa - 2 * sum_ab + sum_bb - mean_term