"""Image frames, their features and key points."""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, NamedTuple, Optional

import numpy as np

from .geometry import SE3, median

if TYPE_CHECKING:
    from .camera import AbstractCamera

PYRAMID_LEVELS = 5
N_KEY_POINTS = 5


@dataclass
class Corner:
    """Temporary corner found during detection."""

    x: int
    y: int
    level: int
    score: float
    angle: float = 0.0


class FeatureType(Enum):
    CORNER = "corner"


class Feature:
    """An observation of a pixel in a frame, possibly linked to a 3D point."""

    def __init__(self, frame, px, level=0, point=None, f=None) -> None:
        self.type = FeatureType.CORNER
        self.frame = frame
        self.px = np.asarray(px, dtype=float).reshape(2).copy()
        self.level = int(level)
        self.f = (
            frame.cam.cam2world(self.px) if f is None
            else np.asarray(f, dtype=float).reshape(3).copy()
        )
        self.point = point

    def __repr__(self) -> str:
        return f"Feature(px={self.px.tolist()}, level={self.level})"


def half_sample(img) -> np.ndarray:
    """Downsample an image by two, averaging each 2x2 block."""
    img = np.asarray(img)
    if img.ndim != 2:
        raise ValueError("image must be two-dimensional")
    h, w = img.shape[0] // 2, img.shape[1] // 2
    src = img[:2 * h, :2 * w].astype(np.uint16)
    total = src[0::2, 0::2] + src[0::2, 1::2] + src[1::2, 0::2] + src[1::2, 1::2]
    return (total // 4).astype(np.uint8)


def create_img_pyramid(img, n_levels) -> list[np.ndarray]:
    """Image pyramid whose level 0 is ``img`` and each level halves the previous."""
    if n_levels < 1:
        raise ValueError("a pyramid needs at least one level")
    pyramid = [np.asarray(img)]
    for _ in range(1, n_levels):
        pyramid.append(half_sample(pyramid[-1]))
    return pyramid


class Frame:
    """A grayscale image with its pose, pyramid and features."""

    _ids = itertools.count()

    def __init__(self, cam: "AbstractCamera", img, timestamp) -> None:
        self.id = next(Frame._ids)
        self.timestamp = float(timestamp)
        self.cam = cam
        self.T_f_w = SE3.identity()
        self.fts: list[Feature] = []
        self.key_pts: list[Optional[Feature]] = [None] * N_KEY_POINTS
        self.is_keyframe = False
        img = np.asarray(img)
        if (img.size == 0 or img.ndim != 2 or img.dtype != np.uint8
                or img.shape != (cam.height, cam.width)):
            raise ValueError(
                "Frame: provided image has not the same size as the camera model "
                "or image is not grayscale"
            )
        self.img_pyr = create_img_pyramid(img, PYRAMID_LEVELS)

    def set_keyframe(self) -> None:
        self.is_keyframe = True
        self.set_key_points()

    def add_feature(self, ftr: Feature) -> None:
        self.fts.append(ftr)

    def set_key_points(self) -> None:
        """Choose five features with 3D points: one central and one per quadrant."""
        self.key_pts = [
            kp if kp is not None and kp.point is not None else None
            for kp in self.key_pts
        ]
        for ftr in self.fts:
            if ftr.point is not None:
                self.check_key_points(ftr)

    def check_key_points(self, ftr: Feature) -> None:
        cu = self.cam.width // 2
        cv = self.cam.height // 2
        x, y = float(ftr.px[0]), float(ftr.px[1])

        centre = self.key_pts[0]
        if centre is None:
            self.key_pts[0] = ftr
        elif max(abs(x - cu), abs(y - cv)) < max(
                abs(centre.px[0] - cu), abs(centre.px[1] - cv)):
            self.key_pts[0] = ftr

        quadrants = (
            (1, x >= cu and y >= cv),
            (2, x >= cu and y < cv),
            (3, x < cu and y < cv),
            (4, x < cu and y >= cv),
        )
        spread = (x - cu) * (y - cv)
        for slot, inside in quadrants:
            if not inside:
                continue
            current = self.key_pts[slot]
            if current is None or spread > (current.px[0] - cu) * (current.px[1] - cv):
                self.key_pts[slot] = ftr

    def remove_key_point(self, ftr: Feature) -> None:
        found = False
        for i, kp in enumerate(self.key_pts):
            if kp is ftr:
                self.key_pts[i] = None
                found = True
        if found:
            self.set_key_points()

    def n_obs(self) -> int:
        return len(self.fts)

    def is_visible(self, xyz_w) -> bool:
        """Whether a world point projects inside the image in front of the camera."""
        xyz_f = self.T_f_w * np.asarray(xyz_w, dtype=float)
        if xyz_f[2] < 0.0:
            return False
        px = self.f2c(xyz_f)
        return 0.0 <= px[0] < self.cam.width and 0.0 <= px[1] < self.cam.height

    @property
    def img(self) -> np.ndarray:
        return self.img_pyr[0]

    def w2c(self, xyz_w) -> np.ndarray:
        return self.cam.world2cam(self.T_f_w * np.asarray(xyz_w, dtype=float))

    def c2f(self, px) -> np.ndarray:
        return self.cam.cam2world(px)

    def w2f(self, xyz_w) -> np.ndarray:
        return self.T_f_w * np.asarray(xyz_w, dtype=float)

    def f2w(self, f) -> np.ndarray:
        return self.T_f_w.inverse() * np.asarray(f, dtype=float)

    def f2c(self, f) -> np.ndarray:
        return self.cam.world2cam(f)

    @property
    def pos(self) -> np.ndarray:
        """Position of the camera centre in world coordinates."""
        return self.T_f_w.inverse().translation

    def __repr__(self) -> str:
        return f"Frame(id={self.id}, n_obs={len(self.fts)}, keyframe={self.is_keyframe})"


class SceneDepth(NamedTuple):
    mean: float
    min: float


def get_scene_depth(frame: Frame) -> Optional[SceneDepth]:
    """Median and minimum depth of the frame's features that have 3D points."""
    depths = [float(frame.w2f(ftr.point.pos)[2]) for ftr in frame.fts if ftr.point is not None]
    if not depths:
        return None
    return SceneDepth(median(depths), min(depths))