# monovo

Building blocks for semi-direct monocular visual odometry, in plain Python
on top of NumPy. Images are 2-D `numpy.uint8` arrays; points and pixel
positions are 1-D `numpy.float64` arrays.

## Modules

- `monovo.geometry`: the rigid transform `SE3` (`identity`, `exp` of a twist
  ordered translation first, `inverse`, and `*` for composing transforms or
  moving one or many 3-D points), `project2d`, `unproject2d`, the projection
  Jacobians `pose_jacobian` (2x6) and `point_jacobian` (2x3), `norm_max`, and
  `median` (the element at index `len // 2` of the sorted values; raises
  `ValueError` when empty).
- `monovo.camera`: `AbstractCamera` with `is_in_frame(obs, boundary, level)`,
  and `PinholeCamera(width, height, fx, fy, cx, cy, k1, k2, p1, p2, k3)`.
  Distortion is applied only when `k1` is non-zero. It offers `cam2world`
  (unit bearing vector), `world2cam` (from a 3-vector or a unit-plane
  2-vector), `focal_length` and `undistort_image`, which bilinearly resamples
  the image or returns a copy when the camera has no distortion.
- `monovo.patch_score`: `ZMSSD`, the zero-mean sum of squared differences
  between 8x8 patches, with `compute_score` and the class-level `threshold()`.
- `monovo.feature_alignment`: `align_2d`, a Gauss-Newton refinement of an 8x8
  patch position (with an intensity offset) using gradients from a 10x10
  bordered patch. It returns an `AlignResult` with `converged` and `px`.
- `monovo.frame`: `Frame` (pose `T_f_w`, five-level image pyramid, features
  and five key points), `Feature`, `Corner`, `half_sample`,
  `create_img_pyramid`, and `get_scene_depth`, which returns a `SceneDepth`
  of median and minimum depth, or `None` when no feature has a point.
  `Frame` raises `ValueError` for an image that is not `uint8`, not 2-D, or
  not the camera's size.
- `monovo.point3d`: `Point3D` and `PointType`; `get_close_view_obs` picks the
  observation with the closest viewing direction, and `optimize` refines the
  position by minimising reprojection error.
- `monovo.map`: `Map` (keyframes, point trash, closest/furthest keyframe
  queries, similarity `transform`) and `MapPointCandidates`, guarded by a lock.
- `monovo.matcher`: `Matcher` with `find_match_direct` and
  `find_epipolar_match_direct`, configured by `MatcherOptions`, plus
  `get_warp_matrix_affine`, `get_best_search_level`, `warp_affine` and
  `depth_from_triangulation`.
- `monovo.reprojector`: `Reprojector`, which projects the points of
  overlapping keyframes and the candidate points into a frame on a grid of
  cells and keeps at most one match per cell. The cell order is shuffled with
  an optional `seed`. Options are in `ReprojectorOptions`.
- `monovo.structure_optimizer`: `structure_optimize`, which refines the
  least recently optimised points seen in a frame.
- `monovo.detector`: `shi_tomasi_score`, the smaller eigenvalue of the
  gradient structure tensor in an 8x8 box (0 near the border).
- `monovo.homography`: `Homography`, which estimates a homography from
  unit-plane matches by RANSAC with a fixed seed, decomposes it into eight
  motion hypotheses and keeps the best one in `t_c2_from_c1`.
- `monovo.frame_handler_base`: `FrameHandlerBase`, the tracking state
  machine, with `Stage`, `TrackingQuality` and `UpdateResult`.

`Matcher`, `Homography` and `FrameHandlerBase` report warnings and progress
through the standard `logging` module.

## Example

```python
import numpy as np
from monovo.camera import PinholeCamera
from monovo.frame import Frame
from monovo.geometry import SE3

cam = PinholeCamera(640, 480, 500.0, 500.0, 320.0, 240.0, 0.0, 0.0, 0.0, 0.0, 0.0)
img = np.zeros((480, 640), dtype=np.uint8)
frame = Frame(cam, img, 0.0)
frame.T_f_w = SE3.identity()

print(frame.w2c(np.array([0.1, 0.0, 2.0])))      # [345. 240.]
print(frame.is_visible(np.array([0.0, 0.0, 1.0])))  # True
```

## What it does not do

The package holds the parts, not a complete tracker. It has no corner
detector beyond `shi_tomasi_score`, no optical-flow initialisation, no depth
filter, no sparse image alignment and no pose optimisation, so there is no
object that takes a stream of images and returns camera poses.
`FrameHandlerBase` supplies only the shared state machine for such a
pipeline. There is no command-line program.

## Installing and testing

```
pip install .
pip install ".[test]"
pytest
```