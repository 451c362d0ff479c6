"""
Shared fixtures: a nadir pinhole camera flying over a textured ground plane.
"""

import os
import sys

import cv2
import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(project_root)

from common.types import CameraModel, CameraRig, Frame, Pose

# camera x -> east, camera y -> south, optical axis straight down
NADIR = np.diag([1.0, -1.0, -1.0])


class GroundScene:
    """Random-texture horizontal plane rendered by ray casting."""

    def __init__(self, seed=7, texel=0.1, west=-40.0, north=40.0, width_m=120.0, height_m=80.0, ground_z=0.0):
        rng = np.random.default_rng(seed)
        rows, cols = int(height_m / texel), int(width_m / texel)
        tex = cv2.GaussianBlur(rng.random((rows, cols)).astype(np.float32), (0, 0), 3.0)
        self.texture = cv2.normalize(tex, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
        self.texel = texel
        self.west = west
        self.north = north
        self.ground_z = ground_z

    def render(self, camera, pose, colored=False):
        T = camera.world_pose(pose)
        uu, vv = np.meshgrid(np.arange(camera.width, dtype=float), np.arange(camera.height, dtype=float))
        rays = np.stack([(uu - camera.cx) / camera.fx, (vv - camera.cy) / camera.fy, np.ones_like(uu)], axis=-1)
        rays = rays @ T.R.T
        s = (self.ground_z - T.t[2]) / rays[..., 2]
        E = T.t[0] + s * rays[..., 0]
        N = T.t[1] + s * rays[..., 1]
        map_x = ((E - self.west) / self.texel - 0.5).astype(np.float32)
        map_y = ((self.north - N) / self.texel - 0.5).astype(np.float32)
        img = cv2.remap(self.texture, map_x, map_y, cv2.INTER_LINEAR, borderMode=cv2.BORDER_REFLECT)
        if colored:
            img = cv2.merge([img, 255 - img, img // 2])
        return img


def nadir_pose(x, y=0.0, z=20.0):
    return Pose(R=NADIR, t=np.array([x, y, z], dtype=float))


@pytest.fixture
def camera():
    K = np.array([[120.0, 0.0, 96.0], [0.0, 120.0, 72.0], [0.0, 0.0, 1.0]])
    return CameraModel(width=192, height=144, K=K)


@pytest.fixture
def rig(camera):
    return CameraRig(cameras=(camera,))


@pytest.fixture(scope="session")
def scene():
    return GroundScene()


@pytest.fixture
def make_frames(camera, scene):
    """Factory: `count` frames on a west->east line at constant height."""

    def _make(count, spacing=3.0, height=20.0, start_x=0.0, colored=False, first_index=0):
        frames = []
        for i in range(count):
            pose = nadir_pose(start_x + i * spacing, 0.0, height)
            frames.append(Frame(index=first_index + i, pose=pose, image=scene.render(camera, pose, colored)))
        return frames

    return _make
