from types import SimpleNamespace

import numpy as np
import pytest

from monovo.camera import PinholeCamera
from monovo.frame import (
    Feature,
    Frame,
    create_img_pyramid,
    get_scene_depth,
    half_sample,
)
from monovo.geometry import SE3


@pytest.fixture
def cam():
    return PinholeCamera(64, 48, 50.0, 50.0, 32.0, 24.0)


@pytest.fixture
def frame(cam):
    return Frame(cam, np.zeros((48, 64), dtype=np.uint8), 0.0)


def _point(pos=(0.0, 0.0, 1.0)):
    return SimpleNamespace(pos=np.array(pos, dtype=float))


def test_pyramid_has_five_halving_levels(frame):
    shapes = [level.shape for level in frame.img_pyr]
    assert shapes == [(48, 64), (24, 32), (12, 16), (6, 8), (3, 4)]
    assert frame.img is frame.img_pyr[0]


def test_half_sample_averages_blocks():
    img = np.array([[1, 2, 9, 9], [3, 4, 9, 9]], dtype=np.uint8)
    out = half_sample(img)
    assert out.shape == (1, 2)
    assert out[0, 1] == 9
    assert out[0, 0] == 2


def test_half_sample_constant_image_stays_constant():
    img = np.full((10, 7), 77, dtype=np.uint8)
    out = half_sample(img)
    assert out.shape == (5, 3)
    assert np.all(out == 77)


def test_create_img_pyramid_level_count():
    pyr = create_img_pyramid(np.zeros((32, 32), dtype=np.uint8), 3)
    assert [p.shape for p in pyr] == [(32, 32), (16, 16), (8, 8)]
    with pytest.raises(ValueError):
        create_img_pyramid(np.zeros((4, 4), dtype=np.uint8), 0)


@pytest.mark.parametrize("img", [
    np.zeros((48, 63), dtype=np.uint8),
    np.zeros((48, 64), dtype=np.float32),
    np.zeros((48, 64, 3), dtype=np.uint8),
    np.zeros((0, 0), dtype=np.uint8),
])
def test_bad_image_raises(cam, img):
    with pytest.raises(ValueError):
        Frame(cam, img, 0.0)


def test_ids_increase(cam):
    img = np.zeros((48, 64), dtype=np.uint8)
    a = Frame(cam, img, 1.0)
    b = Frame(cam, img, 2.0)
    assert b.id == a.id + 1


def test_pose_helpers(frame):
    assert np.allclose(frame.pos, np.zeros(3))
    frame.T_f_w = SE3.exp([0.3, -0.2, 0.1, 0.05, 0.1, -0.02])
    p = np.array([0.5, -0.3, 4.0])
    np.testing.assert_allclose(frame.f2w(frame.w2f(p)), p, atol=1e-12)
    np.testing.assert_allclose(frame.w2f(frame.pos), np.zeros(3), atol=1e-12)
    bearing = frame.c2f(frame.w2c(p))
    cam_pt = frame.w2f(p)
    np.testing.assert_allclose(bearing, cam_pt / np.linalg.norm(cam_pt), atol=1e-12)


def test_is_visible(frame):
    assert frame.is_visible([0.0, 0.0, 2.0])
    assert not frame.is_visible([0.0, 0.0, -2.0])
    assert not frame.is_visible([10.0, 0.0, 1.0])


def test_feature_default_bearing(frame, cam):
    ftr = Feature(frame, (10.0, 20.0), 1)
    np.testing.assert_allclose(ftr.f, cam.cam2world((10.0, 20.0)))
    assert ftr.point is None
    assert ftr.level == 1


def test_add_feature_counts(frame):
    frame.add_feature(Feature(frame, (1.0, 1.0)))
    frame.add_feature(Feature(frame, (2.0, 2.0)))
    assert frame.n_obs() == 2


def test_key_points_selection(frame):
    centre = Feature(frame, (33.0, 25.0), point=_point())
    q1 = Feature(frame, (60.0, 45.0), point=_point())
    q2 = Feature(frame, (60.0, 20.0), point=_point())
    q3 = Feature(frame, (2.0, 2.0), point=_point())
    q4 = Feature(frame, (2.0, 45.0), point=_point())
    no_point = Feature(frame, (32.0, 24.0))
    for f in (centre, q1, q2, q3, q4, no_point):
        frame.add_feature(f)
    frame.set_keyframe()
    assert frame.is_keyframe
    assert frame.key_pts[0] is centre
    assert frame.key_pts[1] is q1
    assert frame.key_pts[2] is q2
    assert frame.key_pts[3] is q3
    assert frame.key_pts[4] is q4
    assert all(kp is not no_point for kp in frame.key_pts)


def test_first_quadrant_prefers_far_feature(frame):
    near = Feature(frame, (34.0, 26.0), point=_point())
    far = Feature(frame, (60.0, 45.0), point=_point())
    frame.add_feature(near)
    frame.add_feature(far)
    frame.set_key_points()
    assert frame.key_pts[0] is near
    assert frame.key_pts[1] is far


def test_remove_key_point_reselects(frame):
    best = Feature(frame, (32.0, 24.0), point=_point())
    other = Feature(frame, (40.0, 30.0), point=_point())
    frame.add_feature(best)
    frame.add_feature(other)
    frame.set_key_points()
    assert frame.key_pts[0] is best
    best.point = None
    frame.remove_key_point(best)
    assert frame.key_pts[0] is other
    assert best not in frame.key_pts


def test_get_scene_depth(frame):
    assert get_scene_depth(frame) is None
    for z in (6.0, 2.0, 4.0):
        frame.add_feature(Feature(frame, (1.0, 1.0), point=_point((0.0, 0.0, z))))
    frame.add_feature(Feature(frame, (1.0, 1.0)))
    depth = get_scene_depth(frame)
    assert depth.mean == 4.0
    assert depth.min == 2.0