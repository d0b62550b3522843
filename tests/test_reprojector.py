import numpy as np
import pytest

from monovo.camera import PinholeCamera
from monovo.frame import Feature, Frame
from monovo.map import Map
from monovo.point3d import Point3D, PointType
from monovo.reprojector import Reprojector, ReprojectorOptions


@pytest.fixture
def cam():
    return PinholeCamera(64, 48, 50.0, 50.0, 32.0, 24.0)


def make_frame(cam):
    return Frame(cam, np.zeros((48, 64), dtype=np.uint8), 0.0)


def make_keyframe(cam, points):
    kf = make_frame(cam)
    for point in points:
        ftr = Feature(kf, kf.w2c(point.pos), 0, point)
        point.add_frame_ref(ftr)
        kf.add_feature(ftr)
    kf.set_keyframe()
    return kf


def no_direct():
    return ReprojectorOptions(find_match_direct=False)


def test_grid_dimensions_and_order(cam):
    r = Reprojector(cam, Map(), 10, 100, 3, no_direct(), seed=1)
    assert r.grid_n_cols == 7
    assert r.grid_n_rows == 5
    assert len(r.cells) == 35
    assert sorted(r.cell_order) == list(range(35))


def test_seed_gives_same_order(cam):
    a = Reprojector(cam, Map(), 10, 100, 3, no_direct(), seed=7)
    b = Reprojector(cam, Map(), 10, 100, 3, no_direct(), seed=7)
    assert a.cell_order == b.cell_order


def test_invalid_grid_size(cam):
    with pytest.raises(ValueError):
        Reprojector(cam, Map(), 0, 100, 3)


def test_reproject_point_inside_and_outside(cam):
    r = Reprojector(cam, Map(), 10, 100, 3, no_direct(), seed=0)
    frame = make_frame(cam)
    assert r.reproject_point(frame, Point3D([0.0, 0.0, 2.0]))
    assert r.reproject_point(frame, Point3D([10.0, 0.0, 1.0])) is False
    filled = [cell for cell in r.cells if cell]
    assert len(filled) == 1
    np.testing.assert_allclose(filled[0][0].px, [32.0, 24.0])


def test_reproject_map_matches_keyframe_point(cam):
    point = Point3D([0.0, 0.0, 2.0])
    kf = make_keyframe(cam, [point])
    map_ = Map()
    map_.add_keyframe(kf)
    r = Reprojector(cam, map_, 10, 100, 3, no_direct(), seed=0)
    frame = make_frame(cam)
    overlap = r.reproject_map(frame)
    assert overlap == [(kf, 1)]
    assert r.n_matches == 1
    assert frame.n_obs() == 1
    assert frame.fts[0].point is point
    assert point.last_projected_kf_id == frame.id
    assert point.n_succeeded_reproj == 1


def test_shared_point_projected_once(cam):
    point = Point3D([0.0, 0.0, 2.0])
    kf1 = make_keyframe(cam, [point])
    kf2 = make_keyframe(cam, [point])
    map_ = Map()
    map_.add_keyframe(kf1)
    map_.add_keyframe(kf2)
    r = Reprojector(cam, map_, 10, 100, 3, no_direct(), seed=0)
    frame = make_frame(cam)
    overlap = r.reproject_map(frame)
    assert overlap == [(kf1, 1), (kf2, 0)]
    assert frame.n_obs() == 1


def test_max_fts_limits_matches(cam):
    points = [Point3D([x, 0.0, 2.0]) for x in (-0.4, 0.0, 0.4)]
    kf = make_keyframe(cam, points)
    map_ = Map()
    map_.add_keyframe(kf)
    limited = Reprojector(cam, map_, 10, 0, 3, no_direct(), seed=0)
    frame = make_frame(cam)
    limited.reproject_map(frame)
    assert limited.n_matches == 1
    assert frame.n_obs() == 1

    unlimited = Reprojector(cam, map_, 10, 100, 3, no_direct(), seed=0)
    frame2 = make_frame(cam)
    unlimited.reproject_map(frame2)
    assert unlimited.n_matches == 3
    assert frame2.n_obs() == 3


def test_deleted_point_is_dropped(cam):
    r = Reprojector(cam, Map(), 10, 100, 3, no_direct(), seed=0)
    frame = make_frame(cam)
    point = Point3D([0.0, 0.0, 2.0])
    point.type = PointType.DELETED
    assert r.reproject_point(frame, point)
    cell = next(c for c in r.cells if c)
    assert r.reproject_cell(cell, frame) is False
    assert len(cell) == 0
    assert r.n_trials == 1
    assert frame.n_obs() == 0


def test_failed_match_deletes_unknown_point(cam):
    map_ = Map()
    r = Reprojector(cam, map_, 10, 100, 3, ReprojectorOptions(), seed=0)
    frame = make_frame(cam)
    point = Point3D([0.0, 0.0, 2.0])
    point.n_failed_reproj = 15
    r.reproject_point(frame, point)
    cell = next(c for c in r.cells if c)
    assert r.reproject_cell(cell, frame) is False
    assert point.n_failed_reproj == 16
    assert point.type is PointType.DELETED
    assert point in map_.trash_points


def test_candidate_outside_frame_is_removed_after_failures(cam):
    map_ = Map()
    kf = make_frame(cam)
    point = Point3D([10.0, 0.0, 1.0])
    ftr = Feature(kf, [32.0, 24.0], 0, point)
    point.add_frame_ref(ftr)
    map_.point_candidates.new_candidate_point(point, 1.0)
    r = Reprojector(cam, map_, 10, 100, 3, no_direct(), seed=0)
    frame = make_frame(cam)
    for _ in range(10):
        r.reproject_map(frame)
    assert point.n_failed_reproj == 30
    assert len(map_.point_candidates.candidates) == 1
    r.reproject_map(frame)
    assert map_.point_candidates.candidates == []
    assert point.type is PointType.DELETED