"""Projection of map points into a new frame, one match per grid cell."""

from __future__ import annotations

import math
import random
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import numpy as np

from .frame import Feature
from .matcher import Matcher, MatcherOptions
from .point3d import PointType

if TYPE_CHECKING:
    from .camera import AbstractCamera
    from .frame import Frame
    from .map import Map
    from .point3d import Point3D

_PROJECTION_BORDER = 8
_CANDIDATE_FAIL_PENALTY = 3
_MAX_CANDIDATE_FAILS = 30
_MAX_UNKNOWN_FAILS = 15
_GOOD_AFTER_SUCCESSES = 10


@dataclass
class ReprojectorOptions:
    max_n_kfs: int = 10
    find_match_direct: bool = True


@dataclass
class Candidate:
    """A map point and the pixel it projects to in the current frame."""

    pt: "Point3D"
    px: np.ndarray


class Reprojector:
    """Projects map points into a frame and keeps at most one match per grid cell.

    Matching only one point per cell spreads the matches evenly over the image
    without having to match every projected point.
    """

    def __init__(self, cam: "AbstractCamera", map_: "Map", grid_size, max_fts,
                 n_pyr_levels, options: Optional[ReprojectorOptions] = None,
                 seed=None) -> None:
        self.map = map_
        self.options = options if options is not None else ReprojectorOptions()
        self.max_fts = int(max_fts)
        self.matcher = Matcher(MatcherOptions(n_pyr_levels=int(n_pyr_levels)))
        self.cell_size = int(grid_size)
        if self.cell_size <= 0:
            raise ValueError("grid size must be positive")
        self.grid_n_cols = math.ceil(cam.width / self.cell_size)
        self.grid_n_rows = math.ceil(cam.height / self.cell_size)
        self.cells: list[deque[Candidate]] = [
            deque() for _ in range(self.grid_n_cols * self.grid_n_rows)
        ]
        self.cell_order = list(range(len(self.cells)))
        random.Random(seed).shuffle(self.cell_order)
        self.n_matches = 0
        self.n_trials = 0

    def _reset_grid(self) -> None:
        self.n_matches = 0
        self.n_trials = 0
        for cell in self.cells:
            cell.clear()

    def reproject_map(self, frame: "Frame") -> list[tuple["Frame", int]]:
        """Project the points of overlapping keyframes and candidates into ``frame``.

        Returns the overlapping keyframes used, each with the number of its points
        that projected into the frame. Matched features are added to ``frame``.
        """
        self._reset_grid()

        close_kfs = sorted(self.map.get_close_keyframes(frame), key=lambda pair: pair[1])

        overlap: list[list] = []
        for ref_frame, _dist in close_kfs[:self.options.max_n_kfs]:
            entry = [ref_frame, 0]
            overlap.append(entry)
            for ftr in ref_frame.fts:
                point = ftr.point
                if point is None:
                    continue
                if point.last_projected_kf_id == frame.id:
                    continue
                point.last_projected_kf_id = frame.id
                if self.reproject_point(frame, point):
                    entry[1] += 1

        candidates = self.map.point_candidates
        with candidates.lock:
            remaining = []
            for candidate in candidates.candidates:
                point = candidate.point
                if not self.reproject_point(frame, point):
                    point.n_failed_reproj += _CANDIDATE_FAIL_PENALTY
                    if point.n_failed_reproj > _MAX_CANDIDATE_FAILS:
                        candidates.delete_candidate(candidate)
                        continue
                remaining.append(candidate)
            candidates.candidates[:] = remaining

        for index in self.cell_order:
            if self.reproject_cell(self.cells[index], frame):
                self.n_matches += 1
            if self.n_matches > self.max_fts:
                break

        return [(kf, count) for kf, count in overlap]

    def reproject_point(self, frame: "Frame", point: "Point3D") -> bool:
        """Put ``point`` into the grid cell it projects to, if it lands in the frame."""
        px = frame.w2c(point.pos)
        pxi = (int(px[0]), int(px[1]))
        if not frame.cam.is_in_frame(pxi, _PROJECTION_BORDER):
            return False
        k = (int(px[1] / self.cell_size) * self.grid_n_cols
             + int(px[0] / self.cell_size))
        self.cells[k].append(Candidate(point, np.asarray(px, dtype=float)))
        return True

    def reproject_cell(self, cell: deque, frame: "Frame") -> bool:
        """Match candidates of a cell in order until one succeeds; report success."""
        while cell:
            candidate = cell[0]
            self.n_trials += 1
            pt = candidate.pt
            if pt.type is PointType.DELETED:
                cell.popleft()
                continue

            found = True
            if self.options.find_match_direct:
                refined = self.matcher.find_match_direct(pt, frame, candidate.px)
                found = refined is not None
                if found:
                    candidate.px = refined

            if not found:
                pt.n_failed_reproj += 1
                if pt.type is PointType.UNKNOWN and pt.n_failed_reproj > _MAX_UNKNOWN_FAILS:
                    self.map.safe_delete_point(pt)
                if pt.type is PointType.CANDIDATE and pt.n_failed_reproj > _MAX_CANDIDATE_FAILS:
                    self.map.point_candidates.delete_candidate_point(pt)
                cell.popleft()
                continue

            pt.n_succeeded_reproj += 1
            if pt.type is PointType.UNKNOWN and pt.n_succeeded_reproj > _GOOD_AFTER_SUCCESSES:
                pt.type = PointType.GOOD
            new_feature = Feature(frame, candidate.px, self.matcher.search_level)
            frame.add_feature(new_feature)
            new_feature.point = pt
            cell.popleft()
            return True
        return False