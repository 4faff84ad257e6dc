import pytest

from slamkit.entities import Feature, Frame, MapPoint
from slamkit.landmark_map import Map
from slamkit.lie import SE3


def _keyframe(translation):
    frame = Frame.create()
    frame.pose = SE3(None, translation)
    frame.set_keyframe()
    return frame


def test_insert_and_query_keyframes():
    slam_map = Map()
    frames = [_keyframe([i, 0.0, 0.0]) for i in range(3)]
    for f in frames:
        slam_map.insert_keyframe(f)
    assert set(slam_map.all_keyframes()) == {f.keyframe_id for f in frames}
    assert slam_map.active_keyframes() == slam_map.all_keyframes()


def test_queries_return_copies():
    slam_map = Map()
    slam_map.insert_keyframe(_keyframe([0.0, 0.0, 0.0]))
    snapshot = slam_map.all_keyframes()
    snapshot.clear()
    assert len(slam_map.all_keyframes()) == 1


def test_reinsert_replaces_frame():
    slam_map = Map()
    frame = _keyframe([0.0, 0.0, 0.0])
    slam_map.insert_keyframe(frame)
    slam_map.insert_keyframe(frame)
    assert len(slam_map.all_keyframes()) == 1


def test_nearest_keyframe_is_retired_when_close():
    slam_map = Map(num_active_keyframes=2)
    f0 = _keyframe([0.0, 0.0, 0.0])
    f1 = _keyframe([5.0, 0.0, 0.0])
    f2 = _keyframe([0.1, 0.0, 0.0])
    for f in (f0, f1, f2):
        slam_map.insert_keyframe(f)
    active = slam_map.active_keyframes()
    assert set(active) == {f1.keyframe_id, f2.keyframe_id}
    assert f0.keyframe_id in slam_map.all_keyframes()


def test_farthest_keyframe_is_retired_otherwise():
    slam_map = Map(num_active_keyframes=2)
    f0 = _keyframe([0.0, 0.0, 0.0])
    f1 = _keyframe([5.0, 0.0, 0.0])
    f2 = _keyframe([1.0, 0.0, 0.0])
    for f in (f0, f1, f2):
        slam_map.insert_keyframe(f)
    assert set(slam_map.active_keyframes()) == {f0.keyframe_id, f2.keyframe_id}


def test_retiring_keyframe_deactivates_unobserved_landmarks():
    slam_map = Map(num_active_keyframes=2)
    f0 = _keyframe([0.0, 0.0, 0.0])
    feature = Feature(f0, (10.0, 20.0))
    f0.features_left.append(feature)
    f0.features_right.append(None)
    point = MapPoint.create()
    point.add_observation(feature)
    feature.map_point = point
    slam_map.insert_map_point(point)
    assert point.id in slam_map.active_map_points()

    slam_map.insert_keyframe(f0)
    slam_map.insert_keyframe(_keyframe([5.0, 0.0, 0.0]))
    slam_map.insert_keyframe(_keyframe([0.1, 0.0, 0.0]))

    assert point.observed_times == 0
    assert feature.map_point is None
    assert point.id not in slam_map.active_map_points()
    assert point.id in slam_map.all_map_points()


def test_clean_map_counts_removed_points():
    slam_map = Map()
    observed = MapPoint.create()
    observed.add_observation(Feature())
    unobserved = MapPoint.create()
    slam_map.insert_map_point(observed)
    slam_map.insert_map_point(unobserved)
    assert slam_map.clean_map() == 1
    assert set(slam_map.active_map_points()) == {observed.id}
    assert slam_map.clean_map() == 0


def test_window_size_must_be_positive():
    with pytest.raises(ValueError):
        Map(num_active_keyframes=0)