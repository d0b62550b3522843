"""Camera models that map between pixels and bearing vectors."""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

_UNDISTORT_ITERATIONS = 5


class AbstractCamera(ABC):
    """A camera with a fixed resolution."""

    def __init__(self, width, height) -> None:
        self.width = int(width)
        self.height = int(height)

    @abstractmethod
    def cam2world(self, px) -> np.ndarray:
        """Unit bearing vector of a pixel."""

    @abstractmethod
    def world2cam(self, point) -> np.ndarray:
        """Pixel of a camera-frame point (3-vector) or unit-plane point (2-vector)."""

    @abstractmethod
    def focal_length(self) -> float:
        """Focal length along x."""

    def is_in_frame(self, obs, boundary=0, level=0) -> bool:
        """Whether an integer pixel lies inside the image at a pyramid level."""
        u, v = int(obs[0]), int(obs[1])
        width = self.width // (1 << level)
        height = self.height // (1 << level)
        return boundary <= u < width - boundary and boundary <= v < height - boundary


class PinholeCamera(AbstractCamera):
    """Pinhole camera with optional radial-tangential distortion (k1, k2, p1, p2, k3)."""

    def __init__(self, width, height, fx, fy, cx, cy,
                 k1=0.0, k2=0.0, p1=0.0, p2=0.0, k3=0.0) -> None:
        super().__init__(width, height)
        self.fx = float(fx)
        self.fy = float(fy)
        self.cx = float(cx)
        self.cy = float(cy)
        self.distortion = (float(k1), float(k2), float(p1), float(p2), float(k3))
        self._distorted = abs(k1) > 0.0000001

    @property
    def has_distortion(self) -> bool:
        return self._distorted

    def _distort(self, x, y):
        k1, k2, p1, p2, k3 = self.distortion
        r2 = x * x + y * y
        r4 = r2 * r2
        r6 = r4 * r2
        a1 = 2 * x * y
        a2 = r2 + 2 * x * x
        a3 = r2 + 2 * y * y
        cdist = 1 + k1 * r2 + k2 * r4 + k3 * r6
        xd = x * cdist + p1 * a1 + p2 * a2
        yd = y * cdist + p1 * a3 + p2 * a1
        return xd, yd

    def _undistort(self, x0, y0):
        k1, k2, p1, p2, k3 = self.distortion
        x, y = x0, y0
        for _ in range(_UNDISTORT_ITERATIONS):
            r2 = x * x + y * y
            icdist = 1.0 / (1 + ((k3 * r2 + k2) * r2 + k1) * r2)
            delta_x = 2 * p1 * x * y + p2 * (r2 + 2 * x * x)
            delta_y = p1 * (r2 + 2 * y * y) + 2 * p2 * x * y
            x = (x0 - delta_x) * icdist
            y = (y0 - delta_y) * icdist
        return x, y

    def cam2world(self, px) -> np.ndarray:
        u, v = (float(c) for c in np.asarray(px, dtype=float).reshape(-1)[:2])
        x = (u - self.cx) / self.fx
        y = (v - self.cy) / self.fy
        if self._distorted:
            x, y = self._undistort(x, y)
        xyz = np.array([x, y, 1.0])
        return xyz / np.linalg.norm(xyz)

    def world2cam(self, point) -> np.ndarray:
        point = np.asarray(point, dtype=float).reshape(-1)
        if point.size == 3:
            uv = point[:2] / point[2]
        elif point.size == 2:
            uv = point
        else:
            raise ValueError(f"expected a 2- or 3-vector, got {point.size} elements")
        x, y = float(uv[0]), float(uv[1])
        if self._distorted:
            x, y = self._distort(x, y)
        return np.array([x * self.fx + self.cx, y * self.fy + self.cy])

    def focal_length(self) -> float:
        return abs(self.fx)

    def undistort_image(self, raw) -> np.ndarray:
        """Rectified copy of an image; a plain copy when the camera has no distortion."""
        raw = np.asarray(raw)
        if not self._distorted:
            return raw.copy()
        if raw.ndim not in (2, 3):
            raise ValueError("image must be two- or three-dimensional")
        h, w = raw.shape[:2]
        v, u = np.mgrid[0:h, 0:w].astype(float)
        xd, yd = self._distort((u - self.cx) / self.fx, (v - self.cy) / self.fy)
        return _remap_bilinear(raw, xd * self.fx + self.cx, yd * self.fy + self.cy)


def _remap_bilinear(img: np.ndarray, map_u: np.ndarray, map_v: np.ndarray) -> np.ndarray:
    """Sample img at (map_u, map_v) bilinearly, treating pixels outside as zero."""
    h, w = img.shape[:2]
    pad = ((1, 1), (1, 1)) + ((0, 0),) * (img.ndim - 2)
    padded = np.pad(img.astype(float), pad)
    x0 = np.floor(map_u).astype(int)
    y0 = np.floor(map_v).astype(int)
    ax = map_u - x0
    ay = map_v - y0
    valid = (x0 >= -1) & (x0 <= w - 1) & (y0 >= -1) & (y0 <= h - 1)
    xi = np.clip(x0, -1, w - 1) + 1
    yi = np.clip(y0, -1, h - 1) + 1
    if img.ndim == 3:
        ax = ax[..., None]
        ay = ay[..., None]
        valid_mask = valid[..., None]
    else:
        valid_mask = valid
    out = (
        (1 - ax) * (1 - ay) * padded[yi, xi]
        + ax * (1 - ay) * padded[yi, xi + 1]
        + (1 - ax) * ay * padded[yi + 1, xi]
        + ax * ay * padded[yi + 1, xi + 1]
    )
    out = np.where(valid_mask, out, 0.0)
    if np.issubdtype(img.dtype, np.integer):
        info = np.iinfo(img.dtype)
        return np.clip(np.rint(out), info.min, info.max).astype(img.dtype)
    return out.astype(img.dtype)