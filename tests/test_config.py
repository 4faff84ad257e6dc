import numpy as np
import pytest

from slamkit.config import Config


def _write(tmp_path, text, name="config.yaml"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_reads_opencv_style_file(tmp_path):
    path = _write(
        tmp_path,
        "%YAML:1.0\ndataset_dir: /data/kitti/00\nnum_features: 150\nnum_features_init: 50\n",
    )
    Config.set_parameter_file(path)
    assert Config.get("dataset_dir") == "/data/kitti/00"
    assert Config.get("num_features") == 150
    assert Config.get("num_features_init") == 50


def test_reads_plain_yaml(tmp_path):
    path = _write(tmp_path, "scale: 0.5\nname: left\n")
    Config.set_parameter_file(str(path))
    assert Config.get("scale") == 0.5
    assert Config.get("name") == "left"


def test_opencv_matrix_node(tmp_path):
    path = _write(
        tmp_path,
        "%YAML:1.0\ncamera: !!opencv-matrix\n  rows: 2\n  cols: 2\n  dt: d\n  data: [1, 2, 3, 4]\n",
    )
    Config.set_parameter_file(path)
    matrix = Config.get("camera")
    np.testing.assert_array_equal(matrix, np.array([[1.0, 2.0], [3.0, 4.0]]))


def test_missing_key_raises(tmp_path):
    Config.set_parameter_file(_write(tmp_path, "a: 1\n"))
    with pytest.raises(KeyError):
        Config.get("b")


def test_missing_file_raises_and_unloads(tmp_path):
    Config.set_parameter_file(_write(tmp_path, "a: 1\n"))
    with pytest.raises(FileNotFoundError):
        Config.set_parameter_file(tmp_path / "absent.yaml")
    with pytest.raises(RuntimeError):
        Config.get("a")


def test_non_mapping_rejected(tmp_path):
    with pytest.raises(ValueError):
        Config.set_parameter_file(_write(tmp_path, "- 1\n- 2\n"))


def test_reload_replaces_values(tmp_path):
    Config.set_parameter_file(_write(tmp_path, "a: 1\n", "first.yaml"))
    Config.set_parameter_file(_write(tmp_path, "b: 2\n", "second.yaml"))
    assert Config.get("b") == 2
    with pytest.raises(KeyError):
        Config.get("a")