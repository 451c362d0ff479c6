"""
Unit tests for camera rig calibration loading
"""

import os
import sys

import numpy as np
import pytest
import yaml

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import ConfigurationError
from mapper_io.calibration import camera_rig_to_dict, load_camera_rig


RIG_YAML = """
label: test-rig
cameras:
  - camera:
      label: nadir
      image_width: 192
      image_height: 144
      intrinsics: {rows: 4, cols: 1, data: [120.0, 121.0, 96.0, 72.0]}
      distortion:
        type: radial-tangential
        parameters: {rows: 4, cols: 1, data: [-0.1, 0.01, 0.0, 0.0]}
    T_B_C:
      rows: 4
      cols: 4
      data: [1, 0, 0, 0.1,
             0, 1, 0, 0.0,
             0, 0, 1, -0.2,
             0, 0, 0, 1]
"""

FLAT_YAML = """
resolution: {width: 640, height: 480}
fx: 500.0
fy: 500.0
cx: 320.0
cy: 240.0
k1: 0.05
"""


class TestCalibration:
    """YAML rig layouts"""

    def test_rig_layout(self, tmp_path):
        p = tmp_path / "rig.yaml"
        p.write_text(RIG_YAML)
        rig = load_camera_rig(str(p))
        cam = rig.camera(0)
        assert len(rig) == 1
        assert cam.label == "nadir"
        assert cam.shape() == (144, 192)
        assert (cam.fx, cam.fy, cam.cx, cam.cy) == (120.0, 121.0, 96.0, 72.0)
        np.testing.assert_allclose(cam.dist[:4], [-0.1, 0.01, 0.0, 0.0])
        np.testing.assert_allclose(cam.T_B_C.t, [0.1, 0.0, -0.2])
        assert cam.has_distortion

    def test_flat_layout(self, tmp_path):
        p = tmp_path / "cam.yaml"
        p.write_text(FLAT_YAML)
        cam = load_camera_rig(str(p)).camera(0)
        assert (cam.width, cam.height) == (640, 480)
        assert cam.dist[0] == pytest.approx(0.05)

    def test_dict_roundtrip(self, tmp_path, rig):
        p = tmp_path / "rig.yaml"
        p.write_text(yaml.safe_dump(camera_rig_to_dict(rig)))
        again = load_camera_rig(str(p)).camera(0)
        np.testing.assert_allclose(again.K, rig.camera(0).K)
        assert again.shape() == rig.camera(0).shape()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_camera_rig(str(tmp_path / "none.yaml"))

    def test_malformed_entry(self, tmp_path):
        p = tmp_path / "rig.yaml"
        p.write_text("cameras:\n  - camera: {label: x, image_width: 10}\n")
        with pytest.raises(ConfigurationError):
            load_camera_rig(str(p))

    def test_unknown_camera_index(self, rig):
        with pytest.raises(ConfigurationError):
            rig.camera(1)
