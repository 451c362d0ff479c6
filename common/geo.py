from __future__ import annotations

from typing import Tuple
import math
import numpy as np


# Camera (OpenCV: x right, y down, z forward) from photogrammetric camera
# (x right, y up, z backward).
_CV_FROM_PHOTO = np.diag([1.0, -1.0, -1.0])


# -------------------------
# Elementary rotations
# -------------------------
def rot_x(angle_rad: float) -> np.ndarray:
    c, s = math.cos(angle_rad), math.sin(angle_rad)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]], dtype=float)


def rot_y(angle_rad: float) -> np.ndarray:
    c, s = math.cos(angle_rad), math.sin(angle_rad)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]], dtype=float)


def rot_z(angle_rad: float) -> np.ndarray:
    c, s = math.cos(angle_rad), math.sin(angle_rad)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]], dtype=float)


def is_rotation(R: np.ndarray, tol: float = 1e-6) -> bool:
    """True if R is a proper 3x3 rotation (orthonormal, det=+1)."""
    R = np.asarray(R, dtype=float)
    if R.shape != (3, 3):
        return False
    if not np.allclose(R.T @ R, np.eye(3), atol=tol):
        return False
    return abs(float(np.linalg.det(R)) - 1.0) < tol


# -------------------------
# Quaternions (Hamilton, w first)
# -------------------------
def quaternion_to_rotation(w: float, x: float, y: float, z: float) -> np.ndarray:
    """Unit quaternion (w, x, y, z) to 3x3 rotation. Input is normalised first."""
    n = math.sqrt(w * w + x * x + y * y + z * z)
    if n == 0.0:
        raise ValueError("zero-norm quaternion")
    w, x, y, z = w / n, x / n, y / n, z / n
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
            [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
            [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
        ],
        dtype=float,
    )


def rotation_to_quaternion(R: np.ndarray) -> Tuple[float, float, float, float]:
    """
    3x3 rotation to unit quaternion (w, x, y, z) with w >= 0.
    Shepperd's method (branch on the largest diagonal term).
    """
    R = np.asarray(R, dtype=float)
    tr = R[0, 0] + R[1, 1] + R[2, 2]
    if tr > 0:
        s = 2.0 * math.sqrt(tr + 1.0)
        w = 0.25 * s
        x = (R[2, 1] - R[1, 2]) / s
        y = (R[0, 2] - R[2, 0]) / s
        z = (R[1, 0] - R[0, 1]) / s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * math.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        w = (R[2, 1] - R[1, 2]) / s
        x = 0.25 * s
        y = (R[0, 1] + R[1, 0]) / s
        z = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * math.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        w = (R[0, 2] - R[2, 0]) / s
        x = (R[0, 1] + R[1, 0]) / s
        y = 0.25 * s
        z = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * math.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        w = (R[1, 0] - R[0, 1]) / s
        x = (R[0, 2] + R[2, 0]) / s
        y = (R[1, 2] + R[2, 1]) / s
        z = 0.25 * s
    if w < 0:
        w, x, y, z = -w, -x, -y, -z
    return (float(w), float(x), float(y), float(z))


# -------------------------
# Photogrammetric angles
# -------------------------
def opk_to_rotation(omega_deg: float, phi_deg: float, kappa_deg: float) -> np.ndarray:
    """
    Omega/phi/kappa (degrees, as exported by Pix4D) to R_G_C, the camera->world
    rotation of an OpenCV camera.

    R_opk = Rx(omega) Ry(phi) Rz(kappa) maps photogrammetric camera axes into the
    world frame; the OpenCV camera flips y and z. omega=phi=kappa=0 is a nadir
    camera with image rows pointing south.
    """
    R = rot_x(math.radians(omega_deg)) @ rot_y(math.radians(phi_deg)) @ rot_z(math.radians(kappa_deg))
    return R @ _CV_FROM_PHOTO


# -------------------------
# Viewing geometry
# -------------------------
def incidence_cosine(camera_center: np.ndarray, points: np.ndarray) -> np.ndarray:
    """
    Cosine of the angle between the vertical (+Z) and the ray from each ground
    point to the camera centre. 1.0 = camera straight above the point.

    points: (N,3) world points. Returns (N,) float64; 0 where the ray is degenerate.
    """
    d = np.asarray(camera_center, dtype=float).reshape(1, 3) - np.asarray(points, dtype=float)
    norm = np.linalg.norm(d, axis=1)
    out = np.zeros(len(d), dtype=float)
    ok = norm > 0
    out[ok] = d[ok, 2] / norm[ok]
    return out
