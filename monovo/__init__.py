"""Building blocks for semi-direct monocular visual odometry: geometry, cameras, frames, map points, matching and homography decomposition."""

__version__ = "0.1.0"