from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple, Any, Dict, Iterable, Sequence
import cv2
import numpy as np

from common.errors import ConfigurationError
from common.geo import is_rotation, quaternion_to_rotation, rotation_to_quaternion
from common.utils import to_numpy_3x3


@dataclass(frozen=True, slots=True, eq=False)
class Pose:
    """
    Rigid transform placing a child frame into a parent frame (e.g. T_G_B: body
    into the global/world frame).

    Attributes:
        R: 3x3 rotation, child -> parent.
        t: (3,) position of the child origin in the parent frame.
    """
    R: np.ndarray = field(repr=False)
    t: np.ndarray

    def __post_init__(self) -> None:
        R = to_numpy_3x3(self.R)
        t = np.asarray(self.t, dtype=float).reshape(-1).copy()
        if t.shape != (3,):
            raise ValueError("t must have 3 elements")
        if not is_rotation(R):
            raise ValueError("R must be a proper rotation matrix")
        R.setflags(write=False)
        t.setflags(write=False)
        object.__setattr__(self, "R", R)
        object.__setattr__(self, "t", t)

    @classmethod
    def identity(cls) -> "Pose":
        return cls(R=np.eye(3), t=np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> "Pose":
        T = np.asarray(T, dtype=float)
        if T.shape != (4, 4):
            raise ValueError("Expected 4x4 homogeneous transform")
        return cls(R=T[:3, :3], t=T[:3, 3])

    @classmethod
    def from_quaternion(cls, t: Sequence[float], q: Sequence[float]) -> "Pose":
        """q = (w, x, y, z)."""
        return cls(R=quaternion_to_rotation(*[float(v) for v in q]), t=np.asarray(t, dtype=float))

    @property
    def position(self) -> np.ndarray:
        return self.t.copy()

    @property
    def quaternion(self) -> Tuple[float, float, float, float]:
        return rotation_to_quaternion(self.R)

    def matrix(self) -> np.ndarray:
        T = np.eye(4)
        T[:3, :3] = self.R
        T[:3, 3] = self.t
        return T

    def inverse(self) -> "Pose":
        Rt = self.R.T
        return Pose(R=Rt, t=-Rt @ self.t)

    def compose(self, other: "Pose") -> "Pose":
        """self ∘ other, i.e. T_A_C = T_A_B.compose(T_B_C)."""
        return Pose(R=self.R @ other.R, t=self.R @ other.t + self.t)

    def transform(self, points: np.ndarray) -> np.ndarray:
        """Map (N,3) child-frame points into the parent frame."""
        P = np.asarray(points, dtype=float).reshape(-1, 3)
        return P @ self.R.T + self.t


@dataclass(slots=True, eq=False)
class Frame:
    """
    One captured image with the body pose at capture time.

    Attributes:
        index: capture sequence number (defines processing order and tie-breaks).
        pose: T_G_B body pose in the world frame.
        image: np.ndarray (H,W) grayscale or (H,W,3) BGR, dtype uint8.
        camera_index: which camera of the rig captured the image.
        name: optional source filename.
    """
    index: int
    pose: Pose
    image: np.ndarray = field(repr=False)
    camera_index: int = 0
    name: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.image, np.ndarray):
            raise TypeError("image must be a numpy ndarray")
        if self.image.ndim == 3 and self.image.shape[2] == 1:
            self.image = self.image[:, :, 0]
        if self.image.ndim not in (2, 3) or (self.image.ndim == 3 and self.image.shape[2] != 3):
            raise ValueError("image must be 2D (gray) or 3D with 3 channels (BGR)")
        if self.image.dtype != np.uint8:
            self.image = np.clip(self.image, 0, 255).astype(np.uint8)
        if not isinstance(self.pose, Pose):
            raise TypeError("pose must be a Pose")

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def is_color(self) -> bool:
        return self.image.ndim == 3

    def to_meta(self) -> Dict[str, Any]:
        """Metadata without image bytes (safe to log/serialize)."""
        return {
            "index": self.index,
            "name": self.name,
            "width": self.width,
            "height": self.height,
            "channels": 3 if self.is_color else 1,
            "camera_index": self.camera_index,
            "position": [float(v) for v in self.pose.t],
        }


@dataclass(eq=False)
class CameraModel:
    """
    Pinhole camera with radial-tangential distortion and its mounting on the body.

    Attributes:
        width, height: image resolution (pixels).
        K: 3x3 intrinsic matrix.
        dist: distortion coefficients in OpenCV order (k1, k2, p1, p2[, k3]).
        T_B_C: camera pose in the body frame.
        label: free-form camera name.
    """
    width: int
    height: int
    K: np.ndarray
    dist: np.ndarray = field(default_factory=lambda: np.zeros(5))
    T_B_C: Pose = field(default_factory=Pose.identity)
    label: str = "cam0"

    def __post_init__(self) -> None:
        self.K = to_numpy_3x3(self.K)
        self.dist = np.asarray(self.dist, dtype=float).reshape(-1)
        if self.width <= 0 or self.height <= 0:
            raise ConfigurationError(f"camera {self.label}: resolution must be positive")
        if self.K[0, 0] <= 0 or self.K[1, 1] <= 0:
            raise ConfigurationError(f"camera {self.label}: focal lengths must be positive")

    @property
    def fx(self) -> float:
        return float(self.K[0, 0])

    @property
    def fy(self) -> float:
        return float(self.K[1, 1])

    @property
    def cx(self) -> float:
        return float(self.K[0, 2])

    @property
    def cy(self) -> float:
        return float(self.K[1, 2])

    @property
    def has_distortion(self) -> bool:
        return bool(np.any(self.dist != 0.0))

    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    def world_pose(self, T_G_B: Pose) -> Pose:
        """T_G_C for a body pose T_G_B."""
        return T_G_B.compose(self.T_B_C)

    def project(self, points: np.ndarray, T_G_B: Pose) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Project (N,3) world points into the image.

        Returns (u, v, depth); u/v are NaN where depth <= 0.
        """
        T_G_C = self.world_pose(T_G_B)
        P = np.asarray(points, dtype=float).reshape(-1, 3)
        Xc = (P - T_G_C.t) @ T_G_C.R  # == R_G_C^T (P - t)
        depth = Xc[:, 2]
        front = depth > 0
        u = np.full(len(P), np.nan)
        v = np.full(len(P), np.nan)
        if not np.any(front):
            return u, v, depth
        if self.has_distortion:
            R_C_G = T_G_C.R.T
            rvec, _ = cv2.Rodrigues(R_C_G)
            tvec = -R_C_G @ T_G_C.t
            uv, _ = cv2.projectPoints(P[front].reshape(-1, 1, 3), rvec, tvec, self.K, self.dist)
            uv = uv.reshape(-1, 2)
            u[front] = uv[:, 0]
            v[front] = uv[:, 1]
        else:
            x = Xc[front, 0] / depth[front]
            y = Xc[front, 1] / depth[front]
            u[front] = self.K[0, 0] * x + self.K[0, 1] * y + self.K[0, 2]
            v[front] = self.K[1, 1] * y + self.K[1, 2]
        return u, v, depth

    def undistort(self, image: np.ndarray) -> np.ndarray:
        if not self.has_distortion:
            return image
        return cv2.undistort(image, self.K, self.dist)


@dataclass(frozen=True)
class CameraRig:
    """Read-only set of cameras shared by all stages."""
    cameras: Tuple[CameraModel, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "cameras", tuple(self.cameras))
        if not self.cameras:
            raise ConfigurationError("camera rig has no cameras")

    def __len__(self) -> int:
        return len(self.cameras)

    def __getitem__(self, index: int) -> CameraModel:
        return self.camera(index)

    def camera(self, index: int) -> CameraModel:
        if not 0 <= int(index) < len(self.cameras):
            raise ConfigurationError(f"camera index {index} not in rig of {len(self.cameras)} camera(s)")
        return self.cameras[int(index)]


@dataclass(slots=True, eq=False)
class PointCloud:
    """
    World-frame points.

    Attributes:
        xyz: (N,3) float64 coordinates.
        source: (N,) int index of the reference frame that produced each point
            (-1 when loaded from a file).
    """
    xyz: np.ndarray = field(repr=False)
    source: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.xyz = np.asarray(self.xyz, dtype=np.float64).reshape(-1, 3)
        if self.source is None:
            self.source = np.full(len(self.xyz), -1, dtype=np.int64)
        else:
            self.source = np.asarray(self.source, dtype=np.int64).reshape(-1)
        if len(self.source) != len(self.xyz):
            raise ValueError("source must have one entry per point")

    def __len__(self) -> int:
        return int(self.xyz.shape[0])

    @classmethod
    def empty(cls) -> "PointCloud":
        return cls(xyz=np.zeros((0, 3)))

    @classmethod
    def concatenate(cls, clouds: Iterable["PointCloud"]) -> "PointCloud":
        clouds = [c for c in clouds if len(c)]
        if not clouds:
            return cls.empty()
        return cls(
            xyz=np.concatenate([c.xyz for c in clouds], axis=0),
            source=np.concatenate([c.source for c in clouds], axis=0),
        )
