import gc

import numpy as np
import pytest

from slamkit.entities import Feature, Frame, MapPoint
from slamkit.lie import SE3


def test_frame_ids_are_consecutive():
    first = Frame.create()
    second = Frame.create()
    assert second.id == first.id + 1
    assert not first.is_keyframe


def test_set_keyframe_assigns_consecutive_ids():
    a = Frame.create()
    b = Frame.create()
    a.set_keyframe()
    b.set_keyframe()
    assert a.is_keyframe and b.is_keyframe
    assert b.keyframe_id == a.keyframe_id + 1


def test_frame_pose_round_trip():
    frame = Frame()
    pose = SE3(None, [1.0, 2.0, 3.0])
    frame.pose = pose
    np.testing.assert_allclose(frame.pose.translation, [1.0, 2.0, 3.0])
    np.testing.assert_allclose(Frame().pose.matrix(), np.eye(4))


def test_feature_holds_frame_weakly():
    frame = Frame()
    feature = Feature(frame, (3.0, 4.0))
    assert feature.frame is frame
    np.testing.assert_array_equal(feature.position, [3.0, 4.0])
    del frame
    gc.collect()
    assert feature.frame is None


def test_feature_defaults():
    feature = Feature()
    assert feature.is_on_left_image is True
    assert feature.is_outlier is False
    assert feature.map_point is None


def test_map_point_ids_are_consecutive():
    a = MapPoint.create()
    b = MapPoint.create()
    assert b.id == a.id + 1


def test_map_point_position_round_trip():
    point = MapPoint(7, [1.0, 2.0, 3.0])
    assert point.id == 7
    np.testing.assert_array_equal(point.pos, [1.0, 2.0, 3.0])
    point.pos = [4.0, 5.0, 6.0]
    np.testing.assert_array_equal(point.pos, [4.0, 5.0, 6.0])
    with pytest.raises(ValueError):
        point.pos = [1.0, 2.0]


def test_add_and_remove_observation():
    point = MapPoint.create()
    f1, f2 = Feature(), Feature()
    for f in (f1, f2):
        f.map_point = point
        point.add_observation(f)
    assert point.observed_times == 2
    assert point.observations() == [f1, f2]

    assert point.remove_observation(f1) is True
    assert point.observed_times == 1
    assert f1.map_point is None
    assert f2.map_point is point
    assert point.observations() == [f2]


def test_remove_unknown_observation_changes_nothing():
    point = MapPoint.create()
    observer = Feature()
    point.add_observation(observer)
    assert point.remove_observation(Feature()) is False
    assert point.observed_times == 1


def test_observations_skip_dead_features():
    point = MapPoint.create()
    kept = Feature()
    dropped = Feature()
    point.add_observation(kept)
    point.add_observation(dropped)
    del dropped
    gc.collect()
    assert point.observations() == [kept]