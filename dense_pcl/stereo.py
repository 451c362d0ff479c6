from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from common.config import StereoSettings
from common.errors import ConfigurationError
from common.logging_setup import get_logger
from common.types import CameraRig, Frame, PointCloud
from mapper_io.point_cloud import load_point_cloud


log = get_logger("dense_pcl")


@dataclass(slots=True)
class RectifiedPair:
    """
    Two views warped into a common rectified camera whose x-axis is the baseline.

    Attributes:
        left, right: rectified grayscale images (reference view is left).
        left_valid, right_valid: pixels that map back inside the source images.
        K: shared rectified intrinsics.
        R: world -> rectified camera rotation (rows = rectified axes in world).
        center: reference camera centre in the world frame.
        baseline: distance between the camera centres [m].
    """
    left: np.ndarray
    right: np.ndarray
    left_valid: np.ndarray
    right_valid: np.ndarray
    K: np.ndarray
    R: np.ndarray
    center: np.ndarray
    baseline: float


def _to_gray(img: np.ndarray) -> np.ndarray:
    if img.ndim == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
    return img


class PointCloudProducer:
    """
    Turns frames into world-frame points.

    Two modes:
      - from_file(path): literal point set stored on disk.
      - reconstruct(frames, previous, offset): dense stereo over consecutive
        pairs of every n-th frame, optionally chained to an earlier frame.
        Each pair is rectified from its known poses (planar rectification,
        common rotation with the baseline as x-axis), matched with the
        configured block matcher ("bm" fixed-window correlation, or "sgbm"
        semi-global) and back-projected through the reference frame's absolute pose.
    """

    def __init__(self, rig: CameraRig, settings: Optional[StereoSettings] = None):
        self.rig = rig
        self.settings = settings or StereoSettings()
        self.settings.validate()

    # -------- public API --------

    def from_file(self, path: str) -> PointCloud:
        cloud = load_point_cloud(path)
        log.info("Loaded point cloud", extra={"extra": {"path": path, "points": len(cloud)}})
        return cloud

    def validate(self, frames: Iterable[Frame]) -> None:
        """Fatal checks on frames vs. calibration, run before any reconstruction."""
        for f in frames:
            cam = self.rig.camera(f.camera_index)
            if (f.height, f.width) != cam.shape():
                raise ConfigurationError(
                    f"frame {f.index}: image {f.width}x{f.height} does not match "
                    f"camera {cam.label} resolution {cam.width}x{cam.height}"
                )

    def select(self, frames: Sequence[Frame], offset: int = 0) -> List[Frame]:
        """Every n-th frame, starting at `offset`."""
        return list(frames)[offset :: self.settings.use_every_nth_image]

    def pairs(
        self, frames: Sequence[Frame], previous: Optional[Frame] = None, offset: int = 0
    ) -> List[Tuple[Frame, Frame]]:
        """
        Consecutive pairs among every n-th frame.

        `previous` is the last selected frame of an earlier chunk of the same
        stream; it is paired with the first frame selected here. `offset` keeps
        the stride phase of the stream across chunks.
        """
        selected = self.select(frames, offset)
        if previous is not None:
            selected.insert(0, previous)
        return list(zip(selected[:-1], selected[1:]))

    def reconstruct(
        self, frames: Sequence[Frame], previous: Optional[Frame] = None, offset: int = 0
    ) -> PointCloud:
        frames = list(frames)
        self.validate(frames)
        pairs = self.pairs(frames, previous, offset)
        if not pairs:
            log.debug("Fewer than two frames selected; no stereo pairs", extra={"extra": {"frames": len(frames)}})
            return PointCloud.empty()

        if self.settings.use_multi_threads and len(pairs) > 1:
            with ThreadPoolExecutor(max_workers=max(1, self.settings.max_workers)) as pool:
                clouds = list(pool.map(lambda p: self.reconstruct_pair(*p), pairs))
        else:
            clouds = [self.reconstruct_pair(a, b) for a, b in pairs]

        cloud = PointCloud.concatenate(clouds)
        log.info(
            "Dense reconstruction done",
            extra={"extra": {"frames": len(frames), "pairs": len(pairs), "points": len(cloud)}},
        )
        return cloud

    def reconstruct_pair(self, reference: Frame, other: Frame) -> PointCloud:
        rect = self.rectify(reference, other)
        if rect is None:
            return PointCloud.empty()
        disparity = self.compute_disparity(rect.left, rect.right)
        xyz = self._back_project(rect, disparity)
        log.debug(
            "Stereo pair reconstructed",
            extra={"extra": {"reference": reference.index, "other": other.index,
                             "baseline_m": round(rect.baseline, 3), "points": int(len(xyz))}},
        )
        return PointCloud(xyz=xyz, source=np.full(len(xyz), reference.index, dtype=np.int64))

    # -------- rectification --------

    def rectify(self, reference: Frame, other: Frame) -> Optional[RectifiedPair]:
        """
        Planar rectification under the known relative pose. Returns None for a
        degenerate pair (baseline too short, or optical axis along the baseline).
        """
        cam1 = self.rig.camera(reference.camera_index)
        cam2 = self.rig.camera(other.camera_index)
        T1 = cam1.world_pose(reference.pose)
        T2 = cam2.world_pose(other.pose)

        b = T2.t - T1.t
        baseline = float(np.linalg.norm(b))
        if baseline < self.settings.min_baseline_m:
            log.warning(
                "Skipping pair: baseline too short",
                extra={"extra": {"reference": reference.index, "other": other.index, "baseline_m": baseline}},
            )
            return None

        r1 = b / baseline
        r2 = np.cross(T1.R[:, 2] + T2.R[:, 2], r1)
        n2 = float(np.linalg.norm(r2))
        if n2 < 1e-6:
            log.warning(
                "Skipping pair: optical axis parallel to baseline",
                extra={"extra": {"reference": reference.index, "other": other.index}},
            )
            return None
        r2 /= n2
        r3 = np.cross(r1, r2)
        R_rect = np.vstack([r1, r2, r3])

        size = int(max(cam1.width, cam1.height, cam2.width, cam2.height))
        f = float(np.mean([cam1.fx, cam1.fy, cam2.fx, cam2.fy]))
        K_rect = np.array([[f, 0.0, size / 2.0], [0.0, f, size / 2.0], [0.0, 0.0, 1.0]])

        left, left_valid = self._warp(reference.image, cam1, T1.R, K_rect, R_rect, size)
        right, right_valid = self._warp(other.image, cam2, T2.R, K_rect, R_rect, size)
        return RectifiedPair(
            left=left, right=right, left_valid=left_valid, right_valid=right_valid,
            K=K_rect, R=R_rect, center=T1.t.copy(), baseline=baseline,
        )

    @staticmethod
    def _warp(image, cam, R_G_C, K_rect, R_rect, size) -> Tuple[np.ndarray, np.ndarray]:
        gray = _to_gray(cam.undistort(image))
        H = K_rect @ R_rect @ R_G_C @ np.linalg.inv(cam.K)
        warped = cv2.warpPerspective(gray, H, (size, size), flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_REPLICATE)
        ones = np.full(gray.shape, 255, dtype=np.uint8)
        valid = cv2.warpPerspective(ones, H, (size, size), flags=cv2.INTER_NEAREST,
                                    borderMode=cv2.BORDER_CONSTANT, borderValue=0) > 0
        return warped, valid

    # -------- matching --------

    def create_matcher(self):
        s = self.settings
        if s.matcher == "bm":
            m = cv2.StereoBM_create(numDisparities=s.num_disparities, blockSize=s.block_size)
            m.setMinDisparity(s.min_disparity)
            m.setUniquenessRatio(s.uniqueness_ratio)
            m.setTextureThreshold(s.texture_threshold)
            return m
        p1 = s.p1 or 8 * s.block_size * s.block_size
        p2 = s.p2 or 32 * s.block_size * s.block_size
        return cv2.StereoSGBM_create(
            minDisparity=s.min_disparity,
            numDisparities=s.num_disparities,
            blockSize=s.block_size,
            P1=p1,
            P2=max(p2, p1 + 1),
            uniquenessRatio=s.uniqueness_ratio,
            mode=cv2.STEREO_SGBM_MODE_SGBM,
        )

    def compute_disparity(self, left: np.ndarray, right: np.ndarray) -> np.ndarray:
        """Disparity in pixels (float32); invalid pixels are <= min_disparity - 1."""
        raw = self.create_matcher().compute(left, right)
        return raw.astype(np.float32) / 16.0

    # -------- back-projection --------

    def _back_project(self, rect: RectifiedPair, disparity: np.ndarray) -> np.ndarray:
        s = self.settings
        h, w = disparity.shape
        vv, uu = np.mgrid[0:h, 0:w]
        valid = (disparity > max(0, s.min_disparity)) & rect.left_valid
        if s.pixel_step > 1:
            valid &= (uu % s.pixel_step == 0) & (vv % s.pixel_step == 0)

        # the match in the right image must come from real image content too
        ur = np.rint(uu - disparity).astype(np.int64)
        in_right = (ur >= 0) & (ur < w)
        valid &= in_right
        valid[valid] = rect.right_valid[vv[valid], ur[valid]]
        if not np.any(valid):
            return np.zeros((0, 3))

        f = rect.K[0, 0]
        cx, cy = rect.K[0, 2], rect.K[1, 2]
        d = disparity[valid].astype(np.float64)
        z = f * rect.baseline / d
        keep = (z >= s.min_depth_m) & (z <= s.max_depth_m)
        z = z[keep]
        u = uu[valid][keep].astype(np.float64)
        v = vv[valid][keep].astype(np.float64)
        X_rect = np.stack([(u - cx) * z / f, (v - cy) * z / f, z], axis=1)
        return X_rect @ rect.R + rect.center
