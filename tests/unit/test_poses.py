"""
Unit tests for pose file formats
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import ConfigurationError
from common.geo import rotation_to_quaternion
from common.types import Pose
from mapper_io.poses import PoseFormat, load_poses, to_format, write_poses
from tests.conftest import NADIR


def _write(tmp_path, name, text):
    p = tmp_path / name
    p.write_text(text)
    return str(p)


class TestFormats:
    """Parsing of each supported layout"""

    def test_standard(self, tmp_path):
        path = _write(tmp_path, "poses.txt", "# x y z qw qx qy qz\n1 2 3 1 0 0 0\n\n4 5 6 0 1 0 0\n")
        ps = load_poses(path, "standard")
        assert len(ps) == 2
        assert ps.image_names == []
        np.testing.assert_allclose(ps.poses[0].t, [1, 2, 3])
        np.testing.assert_allclose(ps.poses[1].R, NADIR, atol=1e-12)

    def test_standard_named(self, tmp_path):
        path = _write(tmp_path, "poses.txt", "img_a.jpg 0 0 20 0 1 0 0\nimg_b.jpg 3 0 20 0 1 0 0\n")
        ps = load_poses(path, PoseFormat.STANDARD_NAMED)
        assert ps.image_names == ["img_a.jpg", "img_b.jpg"]
        np.testing.assert_allclose(ps.poses[1].t, [3, 0, 20])

    def test_colmap_is_inverted_and_sorted(self, tmp_path):
        # camera at C=(2, 1, 20) looking down; COLMAP stores world->camera
        T_G_C = Pose(R=NADIR, t=np.array([2.0, 1.0, 20.0]))
        T_C_G = T_G_C.inverse()
        q = rotation_to_quaternion(T_C_G.R)
        line = " ".join(str(v) for v in (*q, *T_C_G.t))
        text = (
            "# Image list with two lines of data per image:\n"
            f"2 {line} 1 second.jpg\n"
            "10.0 20.0 -1\n"
            f"1 {line} 1 first.jpg\n"
            "\n"
        )
        ps = load_poses(_write(tmp_path, "images.txt", text), "COLMAP")
        assert ps.image_names == ["first.jpg", "second.jpg"]
        np.testing.assert_allclose(ps.poses[0].t, [2.0, 1.0, 20.0], atol=1e-9)
        np.testing.assert_allclose(ps.poses[0].R, NADIR, atol=1e-9)

    def test_pix4d_zero_angles_is_nadir(self, tmp_path):
        text = "imageName X Y Z Omega Phi Kappa\nIMG_1.jpg 10 20 30 0 0 0\n"
        ps = load_poses(_write(tmp_path, "ext.txt", text), "pix4d")
        assert ps.image_names == ["IMG_1.jpg"]
        np.testing.assert_allclose(ps.poses[0].R, NADIR, atol=1e-12)
        np.testing.assert_allclose(ps.poses[0].t, [10, 20, 30])

    def test_roundtrip_through_writer(self, tmp_path):
        poses = [Pose(R=NADIR, t=np.array([float(i), 0.0, 20.0])) for i in range(3)]
        path = str(tmp_path / "out" / "poses.txt")
        write_poses(path, poses, ["a", "b", "c"])
        ps = load_poses(path, "StandardNamed")
        assert ps.image_names == ["a", "b", "c"]
        for p, q in zip(poses, ps.poses):
            np.testing.assert_allclose(p.matrix(), q.matrix(), atol=1e-8)


class TestErrors:
    """Fatal pose-file problems"""

    def test_unknown_format(self):
        with pytest.raises(ConfigurationError, match="Unknown pose format"):
            to_format("kml")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_poses(str(tmp_path / "none.txt"))

    def test_malformed_row_reports_line(self, tmp_path):
        path = _write(tmp_path, "poses.txt", "1 2 3 1 0 0 0\n1 2 3\n")
        with pytest.raises(ConfigurationError, match=":2:"):
            load_poses(path)

    def test_empty_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="no poses"):
            load_poses(_write(tmp_path, "poses.txt", "# nothing\n"))
