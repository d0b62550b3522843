"""Refinement of the 3D points seen in a frame."""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .frame import Frame


def structure_optimize(frame: "Frame", max_n_pts, max_iter) -> None:
    """Optimize up to ``max_n_pts`` points of ``frame``, least recently optimized first.

    Each optimized point is stamped with the frame id.
    """
    points = [ftr.point for ftr in frame.fts if ftr.point is not None]
    count = min(int(max_n_pts), len(points))
    if count <= 0:
        return
    selected = heapq.nsmallest(count, points, key=lambda p: p.last_structure_optim)
    for point in selected:
        point.optimize(max_iter)
        point.last_structure_optim = frame.id