"""Frames, 2D features and 3D map points of the visual odometry map.

Features refer to their frame and map point weakly, and map points refer
to the features observing them weakly, so that dropping a frame frees it.
"""

from __future__ import annotations

import itertools
import threading
import weakref
from typing import ClassVar, Optional

import numpy as np

from slamkit.algorithm import to_vec2
from slamkit.lie import SE3


def _ref(obj):
    return weakref.ref(obj) if obj is not None else None


def _deref(ref):
    return ref() if ref is not None else None


class Feature:
    """A 2D keypoint in a frame, linked to a map point once triangulated."""

    def __init__(self, frame: Optional["Frame"] = None, position=(0.0, 0.0), *,
                 is_on_left_image: bool = True):
        self._frame = _ref(frame)
        self._map_point = None
        self.position = to_vec2(position)
        self.is_outlier = False
        self.is_on_left_image = is_on_left_image

    @property
    def frame(self) -> Optional["Frame"]:
        """The frame holding this feature, or ``None`` once it is gone."""
        return _deref(self._frame)

    @frame.setter
    def frame(self, frame: Optional["Frame"]) -> None:
        self._frame = _ref(frame)

    @property
    def map_point(self) -> Optional["MapPoint"]:
        """The associated map point, or ``None``."""
        return _deref(self._map_point)

    @map_point.setter
    def map_point(self, map_point: Optional["MapPoint"]) -> None:
        self._map_point = _ref(map_point)

    def __repr__(self) -> str:
        return f"Feature(position={self.position.tolist()}, outlier={self.is_outlier})"


class Frame:
    """A stereo frame with its world-to-camera pose and extracted features."""

    _ids: ClassVar = itertools.count()
    _keyframe_ids: ClassVar = itertools.count()

    def __init__(self, id: int = 0, time_stamp: float = 0.0, pose: Optional[SE3] = None,
                 left_img=None, right_img=None):
        self.id = id
        self.keyframe_id = 0
        self.is_keyframe = False
        self.time_stamp = time_stamp
        self._pose = pose if pose is not None else SE3()
        self._pose_lock = threading.Lock()
        self.left_img = left_img
        self.right_img = right_img
        self.features_left: list[Feature] = []
        self.features_right: list[Optional[Feature]] = []

    @property
    def pose(self) -> SE3:
        """World-to-camera transform; read and written under a lock."""
        with self._pose_lock:
            return self._pose

    @pose.setter
    def pose(self, pose: SE3) -> None:
        with self._pose_lock:
            self._pose = pose

    @classmethod
    def create(cls) -> "Frame":
        """New frame with the next frame id."""
        return cls(id=next(Frame._ids))

    def set_keyframe(self) -> None:
        """Mark this frame as a keyframe and give it the next keyframe id."""
        self.is_keyframe = True
        self.keyframe_id = next(Frame._keyframe_ids)

    def __repr__(self) -> str:
        return f"Frame(id={self.id}, keyframe_id={self.keyframe_id}, is_keyframe={self.is_keyframe})"


class MapPoint:
    """A landmark in the world, observed by one or more features."""

    _ids: ClassVar = itertools.count()

    def __init__(self, id: int = 0, position=None):
        self.id = id
        self.is_outlier = False
        self._pos = np.zeros(3) if position is None else np.asarray(position, dtype=float).reshape(3).copy()
        self.observed_times = 0
        self._observations: list[weakref.ref] = []
        self._lock = threading.Lock()

    @property
    def pos(self) -> np.ndarray:
        """Position in the world frame."""
        with self._lock:
            return self._pos.copy()

    @pos.setter
    def pos(self, position) -> None:
        value = np.asarray(position, dtype=float).reshape(-1)
        if value.shape != (3,):
            raise ValueError(f"position must have 3 elements, got {value.size}")
        with self._lock:
            self._pos = value.copy()

    @classmethod
    def create(cls) -> "MapPoint":
        """New map point with the next landmark id."""
        return cls(id=next(MapPoint._ids))

    def add_observation(self, feature: Feature) -> None:
        with self._lock:
            self._observations.append(weakref.ref(feature))
            self.observed_times += 1

    def remove_observation(self, feature: Feature) -> bool:
        """Drop ``feature``'s observation and unlink it; ``False`` if it was not observing."""
        with self._lock:
            for index, ref in enumerate(self._observations):
                if ref() is feature:
                    del self._observations[index]
                    feature.map_point = None
                    self.observed_times -= 1
                    return True
        return False

    def observations(self) -> list[Feature]:
        """Features still alive that observe this point."""
        with self._lock:
            return [f for f in (ref() for ref in self._observations) if f is not None]

    def __repr__(self) -> str:
        return f"MapPoint(id={self.id}, pos={self._pos.tolist()}, observed_times={self.observed_times})"