import numpy as np
import pytest

from slamkit.lie import SE3
from slamkit.trajectory import compute_rmse, main, parse_trajectory, read_trajectory

LINES = [
    "1305031102.1758 1.3405 0.6266 1.6575 0.6574 0.6126 -0.2949 -0.3248\n",
    "\n",
    "1305031102.2159 1.3303 0.6256 1.6464 0.6579 0.6161 -0.2932 -0.3189\n",
]


def test_parse_trajectory_reads_poses_and_skips_blanks():
    poses = parse_trajectory(LINES)
    assert len(poses) == 2
    np.testing.assert_allclose(poses[0].translation, [1.3405, 0.6266, 1.6575])
    q = np.array([-0.3248, 0.6574, 0.6126, -0.2949])
    np.testing.assert_allclose(poses[0].so3.quaternion(), q / np.linalg.norm(q), atol=1e-12)


def test_parse_trajectory_rejects_short_line():
    with pytest.raises(ValueError, match="line 1"):
        parse_trajectory(["1 2 3\n"])


def test_parse_trajectory_rejects_non_numbers():
    with pytest.raises(ValueError, match="line 2"):
        parse_trajectory(["0 0 0 0 0 0 0 1\n", "0 a 0 0 0 0 0 1\n"])


def test_read_trajectory_from_file(tmp_path):
    path = tmp_path / "traj.txt"
    path.write_text("".join(LINES), encoding="utf-8")
    poses = read_trajectory(path)
    assert len(poses) == 2
    np.testing.assert_allclose(poses[1].translation, [1.3303, 0.6256, 1.6464])


def test_rmse_of_identical_trajectories_is_zero():
    poses = parse_trajectory(LINES)
    assert compute_rmse(poses, poses) == pytest.approx(0.0, abs=1e-12)


def test_rmse_of_constant_body_offset():
    groundtruth = parse_trajectory(LINES)
    offset = SE3(None, (0.3, 0.0, -0.4))
    estimated = [pose * offset for pose in groundtruth]
    assert compute_rmse(groundtruth, estimated) == pytest.approx(0.5, abs=1e-9)


def test_rmse_requires_matching_lengths():
    poses = parse_trajectory(LINES)
    with pytest.raises(ValueError):
        compute_rmse(poses, poses[:1])


def test_rmse_requires_nonempty():
    with pytest.raises(ValueError):
        compute_rmse([], [])


def test_main_prints_rmse(tmp_path, capsys):
    gt = tmp_path / "groundtruth.txt"
    est = tmp_path / "estimated.txt"
    gt.write_text("0 0 0 0 0 0 0 1\n1 1 0 0 0 0 0 1\n", encoding="utf-8")
    est.write_text("0 0.5 0 0 0 0 0 1\n1 1.5 0 0 0 0 0 1\n", encoding="utf-8")
    assert main([str(gt), str(est)]) == 0
    out = capsys.readouterr().out.strip()
    assert out.startswith("RMSE = ")
    assert float(out.split("=")[1]) == pytest.approx(0.5, abs=1e-6)


def test_main_reports_missing_file(tmp_path, capsys):
    missing = tmp_path / "absent.txt"
    assert main([str(missing), str(missing)]) == 1
    assert "not found" in capsys.readouterr().err