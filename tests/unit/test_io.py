"""
Unit tests for image and point-cloud loaders
"""

import os
import sys

import cv2
import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import ConfigurationError
from common.types import PointCloud
from mapper_io.images import build_frames, load_images, load_images_from_prefix, read_image, write_image
from mapper_io.point_cloud import load_point_cloud, save_point_cloud
from tests.conftest import nadir_pose


class TestPointCloud:
    """Point-cloud files"""

    @pytest.mark.parametrize("suffix", [".txt", ".xyz", ".csv", ".ply", ".npy"])
    def test_save_then_load(self, tmp_path, suffix):
        xyz = np.array([[0.5, -1.25, 3.0], [10.0, 20.0, 30.0], [-4.0, 0.0, 1.5]])
        path = str(tmp_path / f"cloud{suffix}")
        save_point_cloud(path, PointCloud(xyz=xyz))
        np.testing.assert_allclose(load_point_cloud(path).xyz, xyz, atol=1e-6)

    def test_text_with_comments_and_extra_columns(self, tmp_path):
        p = tmp_path / "cloud.txt"
        p.write_text("# x y z r g b\n1 2 3 255 0 0\n\n4,5,6\n")
        np.testing.assert_allclose(load_point_cloud(str(p)).xyz, [[1, 2, 3], [4, 5, 6]])

    def test_ply_with_extra_properties(self, tmp_path):
        p = tmp_path / "cloud.ply"
        p.write_text(
            "ply\nformat ascii 1.0\nelement vertex 2\n"
            "property float nx\nproperty float x\nproperty float y\nproperty float z\n"
            "element face 0\nproperty list uchar int vertex_indices\nend_header\n"
            "9 1 2 3\n9 4 5 6\n"
        )
        np.testing.assert_allclose(load_point_cloud(str(p)).xyz, [[1, 2, 3], [4, 5, 6]])

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_point_cloud(str(tmp_path / "none.xyz"))

    def test_unsupported_suffix(self, tmp_path):
        p = tmp_path / "cloud.las"
        p.write_bytes(b"LASF")
        with pytest.raises(ConfigurationError, match="Unsupported"):
            load_point_cloud(str(p))

    def test_malformed_row(self, tmp_path):
        p = tmp_path / "cloud.txt"
        p.write_text("1 2 3\n1 2\n")
        with pytest.raises(ConfigurationError):
            load_point_cloud(str(p))

    def test_binary_ply_rejected(self, tmp_path):
        p = tmp_path / "cloud.ply"
        p.write_text("ply\nformat binary_little_endian 1.0\nelement vertex 0\nend_header\n")
        with pytest.raises(ConfigurationError, match="ASCII"):
            load_point_cloud(str(p))


class TestImages:
    """Image loading and frame assembly"""

    def test_prefix_loading(self, tmp_path):
        for i in range(3):
            write_image(str(tmp_path / f"image_{i}.png"), np.full((8, 10), 10 * i, dtype=np.uint8))
        imgs = load_images_from_prefix(str(tmp_path / "image_"), 3, extension=".png")
        assert [int(im[0, 0]) for im in imgs] == [0, 10, 20]

    def test_named_loading_colored(self, tmp_path):
        write_image(str(tmp_path / "a.png"), np.full((8, 10, 3), (1, 2, 3), dtype=np.uint8))
        (img,) = load_images(str(tmp_path), ["a.png"], colored=True)
        assert img.shape == (8, 10, 3)
        assert tuple(img[0, 0]) == (1, 2, 3)

    def test_missing_image(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            read_image(str(tmp_path / "none.png"))

    def test_undecodable_image(self, tmp_path):
        p = tmp_path / "broken.jpg"
        p.write_bytes(b"not an image")
        with pytest.raises(ConfigurationError, match="decode"):
            read_image(str(p))

    def test_build_frames(self):
        poses = [nadir_pose(float(i)) for i in range(3)]
        images = [np.zeros((4, 4), dtype=np.uint8) for _ in range(3)]
        frames = build_frames(poses, images, names=["a", "b", "c"])
        assert [f.index for f in frames] == [0, 1, 2]
        assert frames[2].name == "c"

    def test_count_mismatch(self):
        poses = [nadir_pose(0.0), nadir_pose(1.0)]
        with pytest.raises(ConfigurationError, match="Mismatched counts"):
            build_frames(poses, [np.zeros((4, 4), dtype=np.uint8)])
