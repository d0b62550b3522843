"""Keyframe map and the pool of candidate points awaiting a keyframe."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, NamedTuple, Optional

import numpy as np

from .geometry import SE3
from .point3d import PointType

if TYPE_CHECKING:
    from .frame import Feature, Frame
    from .point3d import Point3D


class PointCandidate(NamedTuple):
    """A converged point together with the feature that first observed it."""

    point: "Point3D"
    feature: "Feature"


class MapPointCandidates:
    """Points whose depth has converged but which are not yet in two keyframes."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.candidates: list[PointCandidate] = []
        self.trash_points: list["Point3D"] = []

    def new_candidate_point(self, point: "Point3D", depth_sigma2) -> None:
        """Add a converged point; its newest observation becomes the candidate feature."""
        if not point.obs:
            raise ValueError("a candidate point needs at least one observation")
        point.type = PointType.CANDIDATE
        with self.lock:
            self.candidates.append(PointCandidate(point, point.obs[0]))

    def add_candidate_point_to_frame(self, frame: "Frame") -> None:
        """Move the candidates first seen in ``frame`` into that frame's features."""
        with self.lock:
            remaining = []
            for candidate in self.candidates:
                point = candidate.point
                if point.obs and point.obs[0].frame is frame:
                    point.type = PointType.UNKNOWN
                    point.n_failed_reproj = 0
                    candidate.feature.frame.add_feature(candidate.feature)
                else:
                    remaining.append(candidate)
            self.candidates[:] = remaining

    def delete_candidate_point(self, point: "Point3D") -> bool:
        """Remove the candidate for ``point``; report whether one was found."""
        with self.lock:
            for i, candidate in enumerate(self.candidates):
                if candidate.point is point:
                    self.delete_candidate(candidate)
                    del self.candidates[i]
                    return True
        return False

    def remove_frame_candidates(self, frame: "Frame") -> None:
        """Remove every candidate whose feature belongs to ``frame``."""
        with self.lock:
            remaining = []
            for candidate in self.candidates:
                if candidate.feature.frame is frame:
                    self.delete_candidate(candidate)
                else:
                    remaining.append(candidate)
            self.candidates[:] = remaining

    def reset(self) -> None:
        with self.lock:
            self.candidates.clear()

    def delete_candidate(self, candidate: PointCandidate) -> None:
        """Mark a candidate's point deleted; it stays in the trash until emptied."""
        candidate.point.type = PointType.DELETED
        self.trash_points.append(candidate.point)

    def empty_trash(self) -> None:
        self.trash_points.clear()


class Map:
    """Keyframes with their points, and the candidate points."""

    def __init__(self) -> None:
        self.keyframes: list["Frame"] = []
        self.trash_points: list["Point3D"] = []
        self.point_candidates = MapPointCandidates()

    def reset(self) -> None:
        self.keyframes.clear()
        self.point_candidates.reset()
        self.empty_trash()

    def safe_delete_point(self, pt: "Point3D") -> None:
        """Detach a point from all features observing it and move it to the trash."""
        for ftr in list(pt.obs):
            ftr.point = None
            ftr.frame.remove_key_point(ftr)
        pt.obs.clear()
        self.delete_point(pt)

    def delete_point(self, pt: "Point3D") -> None:
        pt.type = PointType.DELETED
        self.trash_points.append(pt)

    def safe_delete_frame(self, frame: "Frame") -> bool:
        """Remove a keyframe and its point references; report whether it was in the map."""
        found = False
        for i, kf in enumerate(self.keyframes):
            if kf is frame:
                for ftr in list(kf.fts):
                    self.remove_pt_frame_ref(kf, ftr)
                del self.keyframes[i]
                found = True
                break
        self.point_candidates.remove_frame_candidates(frame)
        return found

    def remove_pt_frame_ref(self, frame: "Frame", ftr: "Feature") -> None:
        """Break the link between a feature and its point."""
        pt = ftr.point
        if pt is None:
            return
        ftr.point = None
        if len(pt.obs) <= 2:
            self.safe_delete_point(pt)
            return
        pt.delete_frame_ref(frame)
        frame.remove_key_point(ftr)

    def add_keyframe(self, keyframe: "Frame") -> None:
        self.keyframes.append(keyframe)

    def get_close_keyframes(self, frame: "Frame") -> list[tuple["Frame", float]]:
        """Keyframes with a key point visible from ``frame``, paired with their distance."""
        close = []
        for kf in self.keyframes:
            for keypoint in kf.key_pts:
                if keypoint is None or keypoint.point is None:
                    continue
                if frame.is_visible(keypoint.point.pos):
                    dist = float(np.linalg.norm(frame.T_f_w.translation - kf.T_f_w.translation))
                    close.append((kf, dist))
                    break
        return close

    def get_closest_keyframe(self, frame: "Frame") -> Optional["Frame"]:
        """Nearest keyframe with overlapping view, other than ``frame`` itself."""
        close = sorted(self.get_close_keyframes(frame), key=lambda pair: pair[1])
        if not close:
            return None
        if close[0][0] is not frame:
            return close[0][0]
        return close[1][0] if len(close) > 1 else None

    def get_furthest_keyframe(self, pos) -> Optional["Frame"]:
        pos = np.asarray(pos, dtype=float)
        furthest = None
        max_dist = 0.0
        for kf in self.keyframes:
            dist = float(np.linalg.norm(kf.pos - pos))
            if dist > max_dist:
                max_dist = dist
                furthest = kf
        return furthest

    def get_keyframe_by_id(self, keyframe_id) -> Optional["Frame"]:
        return next((kf for kf in self.keyframes if kf.id == keyframe_id), None)

    def transform(self, rotation, translation, scale) -> None:
        """Apply a similarity transform (rotation, translation, scale) to the whole map."""
        r = np.asarray(rotation, dtype=float)
        t = np.asarray(translation, dtype=float).reshape(3)
        s = float(scale)
        for kf in self.keyframes:
            pos = s * (r @ kf.pos) + t
            rot = r @ np.linalg.inv(kf.T_f_w.rotation)
            kf.T_f_w = SE3(rot, pos).inverse()
            for ftr in kf.fts:
                point = ftr.point
                if point is None or point.last_published_ts == -1000:
                    continue
                point.last_published_ts = -1000
                point.pos = s * (r @ point.pos) + t

    def empty_trash(self) -> None:
        self.trash_points.clear()
        self.point_candidates.empty_trash()

    def last_keyframe(self) -> "Frame":
        """The most recently added keyframe; IndexError when the map is empty."""
        return self.keyframes[-1]

    def __len__(self) -> int:
        return len(self.keyframes)