import numpy as np
import pytest

from monovo.camera import PinholeCamera
from monovo.frame import Feature, Frame
from monovo.geometry import SE3
from monovo.map import Map, MapPointCandidates
from monovo.point3d import Point3D, PointType


@pytest.fixture
def cam():
    return PinholeCamera(160, 120, 100.0, 100.0, 80.0, 60.0)


def make_frame(cam, position=(0.0, 0.0, 0.0)):
    frame = Frame(cam, np.zeros((120, 160), dtype=np.uint8), 0.0)
    frame.T_f_w = SE3(np.eye(3), -np.asarray(position, dtype=float))
    return frame


def observe(frame, point, px=(80.0, 60.0)):
    ftr = Feature(frame, px, 0, point=point)
    frame.add_feature(ftr)
    point.add_frame_ref(ftr)
    return ftr


def keyframe_with_point(cam, position=(0.0, 0.0, 0.0)):
    kf = make_frame(cam, position)
    pt = Point3D(np.asarray(position) + np.array([0.0, 0.0, 4.0]))
    observe(kf, pt)
    kf.set_keyframe()
    return kf, pt


def test_add_keyframe_len_and_last(cam):
    m = Map()
    a, b = make_frame(cam), make_frame(cam)
    m.add_keyframe(a)
    m.add_keyframe(b)
    assert len(m) == 2
    assert m.last_keyframe() is b


def test_last_keyframe_empty_raises():
    with pytest.raises(IndexError):
        Map().last_keyframe()


def test_get_keyframe_by_id(cam):
    m = Map()
    a = make_frame(cam)
    m.add_keyframe(a)
    assert m.get_keyframe_by_id(a.id) is a
    assert m.get_keyframe_by_id(a.id + 1000) is None


def test_get_furthest_keyframe(cam):
    m = Map()
    near = make_frame(cam, (1.0, 0.0, 0.0))
    far = make_frame(cam, (5.0, 0.0, 0.0))
    m.add_keyframe(near)
    m.add_keyframe(far)
    assert m.get_furthest_keyframe(np.zeros(3)) is far
    assert Map().get_furthest_keyframe(np.zeros(3)) is None


def test_new_candidate_point_and_add_to_frame(cam):
    cands = MapPointCandidates()
    frame = make_frame(cam)
    pt = Point3D([0.0, 0.0, 4.0])
    ftr = Feature(frame, (80.0, 60.0), 0, point=pt)
    pt.add_frame_ref(ftr)
    cands.new_candidate_point(pt, 0.1)
    assert pt.type is PointType.CANDIDATE
    assert len(cands.candidates) == 1
    pt.n_failed_reproj = 7
    cands.add_candidate_point_to_frame(frame)
    assert cands.candidates == []
    assert frame.fts == [ftr]
    assert pt.type is PointType.UNKNOWN
    assert pt.n_failed_reproj == 0


def test_new_candidate_without_observation_raises():
    with pytest.raises(ValueError):
        MapPointCandidates().new_candidate_point(Point3D([0.0, 0.0, 1.0]), 0.1)


def test_add_candidate_to_other_frame_keeps_candidate(cam):
    cands = MapPointCandidates()
    frame, other = make_frame(cam), make_frame(cam)
    pt = Point3D([0.0, 0.0, 4.0])
    pt.add_frame_ref(Feature(frame, (80.0, 60.0), 0, point=pt))
    cands.new_candidate_point(pt, 0.1)
    cands.add_candidate_point_to_frame(other)
    assert len(cands.candidates) == 1
    assert other.fts == []


def test_delete_candidate_point(cam):
    cands = MapPointCandidates()
    frame = make_frame(cam)
    pt = Point3D([0.0, 0.0, 4.0])
    pt.add_frame_ref(Feature(frame, (80.0, 60.0), 0, point=pt))
    cands.new_candidate_point(pt, 0.1)
    assert cands.delete_candidate_point(pt) is True
    assert pt.type is PointType.DELETED
    assert cands.trash_points == [pt]
    assert cands.delete_candidate_point(pt) is False
    cands.empty_trash()
    assert cands.trash_points == []


def test_remove_frame_candidates(cam):
    cands = MapPointCandidates()
    a, b = make_frame(cam), make_frame(cam)
    pa, pb = Point3D([0.0, 0.0, 4.0]), Point3D([1.0, 0.0, 4.0])
    pa.add_frame_ref(Feature(a, (80.0, 60.0), 0, point=pa))
    pb.add_frame_ref(Feature(b, (80.0, 60.0), 0, point=pb))
    cands.new_candidate_point(pa, 0.1)
    cands.new_candidate_point(pb, 0.1)
    cands.remove_frame_candidates(a)
    assert [c.point for c in cands.candidates] == [pb]
    assert pa.type is PointType.DELETED


def test_safe_delete_point(cam):
    m = Map()
    a, b = make_frame(cam), make_frame(cam)
    pt = Point3D([0.0, 0.0, 4.0])
    fa, fb = observe(a, pt), observe(b, pt)
    m.safe_delete_point(pt)
    assert fa.point is None and fb.point is None
    assert len(pt.obs) == 0
    assert pt.type is PointType.DELETED
    assert m.trash_points == [pt]


def test_remove_pt_frame_ref_with_many_observations(cam):
    m = Map()
    frames = [make_frame(cam) for _ in range(3)]
    pt = Point3D([0.0, 0.0, 4.0])
    ftrs = [observe(f, pt) for f in frames]
    m.remove_pt_frame_ref(frames[0], ftrs[0])
    assert ftrs[0].point is None
    assert len(pt.obs) == 2
    assert all(o.frame is not frames[0] for o in pt.obs)
    assert pt.type is not PointType.DELETED


def test_remove_pt_frame_ref_with_two_observations_deletes_point(cam):
    m = Map()
    a, b = make_frame(cam), make_frame(cam)
    pt = Point3D([0.0, 0.0, 4.0])
    fa, fb = observe(a, pt), observe(b, pt)
    m.remove_pt_frame_ref(a, fa)
    assert pt.type is PointType.DELETED
    assert fb.point is None


def test_safe_delete_frame(cam):
    m = Map()
    kf, pt = keyframe_with_point(cam)
    m.add_keyframe(kf)
    assert m.safe_delete_frame(kf) is True
    assert len(m) == 0
    assert kf.fts[0].point is None
    assert m.safe_delete_frame(kf) is False


def test_get_close_keyframes(cam):
    m = Map()
    kf, _ = keyframe_with_point(cam)
    m.add_keyframe(kf)
    frame = make_frame(cam, (-1.0, 0.0, 0.0))
    close = m.get_close_keyframes(frame)
    assert len(close) == 1
    assert close[0][0] is kf
    assert close[0][1] == pytest.approx(1.0)


def test_get_close_keyframes_point_behind(cam):
    m = Map()
    kf, _ = keyframe_with_point(cam)
    m.add_keyframe(kf)
    frame = make_frame(cam, (0.0, 0.0, 10.0))
    assert m.get_close_keyframes(frame) == []
    assert m.get_closest_keyframe(frame) is None


def test_get_closest_keyframe_skips_self(cam):
    m = Map()
    a, _ = keyframe_with_point(cam)
    b, _ = keyframe_with_point(cam, (0.5, 0.0, 0.0))
    c, _ = keyframe_with_point(cam, (0.2, 0.0, 0.0))
    for kf in (a, b, c):
        m.add_keyframe(kf)
    assert m.get_closest_keyframe(a) is c
    query = make_frame(cam, (0.45, 0.0, 0.0))
    assert m.get_closest_keyframe(query) is b


def test_transform_scales_map_once_per_point(cam):
    m = Map()
    a = make_frame(cam, (1.0, 0.0, 0.0))
    b = make_frame(cam, (2.0, 0.0, 0.0))
    original = np.array([0.5, 0.2, 4.0])
    pt = Point3D(original)
    observe(a, pt)
    observe(b, pt)
    m.add_keyframe(a)
    m.add_keyframe(b)
    m.transform(np.eye(3), np.zeros(3), 2.0)
    np.testing.assert_allclose(pt.pos, 2.0 * original)
    np.testing.assert_allclose(a.pos, [2.0, 0.0, 0.0], atol=1e-12)
    np.testing.assert_allclose(b.pos, [4.0, 0.0, 0.0], atol=1e-12)
    assert pt.last_published_ts == -1000


def test_reset_clears_everything(cam):
    m = Map()
    kf, pt = keyframe_with_point(cam)
    m.add_keyframe(kf)
    m.delete_point(pt)
    m.reset()
    assert len(m) == 0
    assert m.trash_points == []
    assert m.point_candidates.candidates == []