"""Reading a KITTI-style stereo sequence: calibration and image pairs."""

from __future__ import annotations

import logging
import os
from typing import Optional

import numpy as np
from PIL import Image

from slamkit.camera import Camera
from slamkit.entities import Frame
from slamkit.lie import SE3

logger = logging.getLogger(__name__)

CALIBRATION_FILE = "calib.txt"
_NUM_CAMERAS = 4
_SCALE = 0.5


def parse_calibration(text: str) -> list[Camera]:
    """Cameras of the four ``name p0 .. p11`` projection records in ``text``.

    Intrinsics are halved to match the half-size images the dataset yields;
    the extrinsic translation is ``K^-1`` times the last projection column.
    """
    tokens = text.split()
    record = 13
    if len(tokens) < _NUM_CAMERAS * record:
        raise ValueError(
            f"calibration needs {_NUM_CAMERAS} records of 13 fields, got {len(tokens)} fields"
        )
    cameras = []
    for i in range(_NUM_CAMERAS):
        fields = tokens[i * record + 1 : (i + 1) * record]
        try:
            projection = np.array([float(f) for f in fields]).reshape(3, 4)
        except ValueError as exc:
            raise ValueError(f"camera {i}: {exc}") from exc
        k = projection[:, :3]
        t = np.linalg.solve(k, projection[:, 3])
        k = k * _SCALE
        cameras.append(
            Camera(k[0, 0], k[1, 1], k[0, 2], k[1, 2], float(np.linalg.norm(t)), SE3(None, t))
        )
        logger.info("Camera %d extrinsics: %s", i, t)
    return cameras


def _load_gray(path: str) -> Optional[np.ndarray]:
    try:
        with Image.open(path) as img:
            return np.asarray(img.convert("L"))
    except (FileNotFoundError, OSError):
        return None


def _half_size(image: np.ndarray) -> np.ndarray:
    rows = int(round(image.shape[0] * _SCALE))
    cols = int(round(image.shape[1] * _SCALE))
    return image[0 : 2 * rows : 2, 0 : 2 * cols : 2].copy()


class Dataset:
    """A sequence directory holding ``calib.txt`` and ``image_0``/``image_1``."""

    def __init__(self, dataset_path):
        self.dataset_path = os.fspath(dataset_path)
        self.current_image_index = 0
        self.cameras: list[Camera] = []

    def load_calibration(self) -> None:
        """Read the cameras and restart at the first image."""
        path = os.path.join(self.dataset_path, CALIBRATION_FILE)
        try:
            with open(path, encoding="utf-8") as stream:
                text = stream.read()
        except FileNotFoundError:
            logger.error("cannot find %s!", path)
            raise
        self.cameras = parse_calibration(text)
        self.current_image_index = 0

    def _image_path(self, camera: int) -> str:
        return os.path.join(
            self.dataset_path, f"image_{camera}", f"{self.current_image_index:06d}.png"
        )

    def next_frame(self) -> Optional[Frame]:
        """Next half-size stereo pair as a new frame, or ``None`` at the end."""
        left = _load_gray(self._image_path(0))
        right = _load_gray(self._image_path(1))
        if left is None or right is None:
            logger.warning("cannot find images at index %d", self.current_image_index)
            return None
        frame = Frame.create()
        frame.left_img = _half_size(left)
        frame.right_img = _half_size(right)
        self.current_image_index += 1
        return frame

    def camera(self, camera_id: int) -> Camera:
        return self.cameras[camera_id]