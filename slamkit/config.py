"""Process-wide access to the parameters of a YAML configuration file.

Files written in the OpenCV YAML dialect are accepted: the ``%YAML:1.0``
header line is ignored, and ``!!opencv-matrix`` nodes become numpy arrays.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, ClassVar, Optional

import numpy as np
import yaml

logger = logging.getLogger(__name__)


class _ConfigLoader(yaml.SafeLoader):
    """Safe loader that also understands OpenCV matrix nodes."""


def _construct_opencv_matrix(loader: yaml.SafeLoader, node: yaml.Node) -> np.ndarray:
    mapping = loader.construct_mapping(node, deep=True)
    try:
        rows = int(mapping["rows"])
        cols = int(mapping["cols"])
        data = mapping["data"]
    except KeyError as exc:
        raise yaml.constructor.ConstructorError(
            None, None, f"opencv-matrix is missing {exc}", node.start_mark
        ) from exc
    return np.asarray(data, dtype=float).reshape(rows, cols)


_ConfigLoader.add_constructor("tag:yaml.org,2002:opencv-matrix", _construct_opencv_matrix)


def _strip_opencv_header(text: str) -> str:
    lines = text.splitlines()
    if lines and lines[0].startswith("%YAML:"):
        lines = lines[1:]
    return "\n".join(lines)


class Config:
    """Shared configuration: load a file once, then look keys up anywhere."""

    _data: ClassVar[Optional[dict]] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    @classmethod
    def set_parameter_file(cls, filename) -> None:
        """Load ``filename`` as the current configuration.

        Raises ``FileNotFoundError`` when it does not exist and ``ValueError``
        when it is not a mapping of keys to values.
        """
        path = os.fspath(filename)
        with cls._lock:
            cls._data = None
            try:
                with open(path, encoding="utf-8") as stream:
                    text = stream.read()
            except FileNotFoundError:
                logger.error("parameter file %s does not exist.", path)
                raise
            data = yaml.load(_strip_opencv_header(text), Loader=_ConfigLoader)
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ValueError(f"parameter file {path} does not hold a mapping")
            cls._data = data

    @classmethod
    def get(cls, key: str) -> Any:
        """Value of ``key``; ``KeyError`` when absent, ``RuntimeError`` when nothing is loaded."""
        with cls._lock:
            if cls._data is None:
                raise RuntimeError("no parameter file has been loaded")
            return cls._data[key]