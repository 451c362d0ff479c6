from __future__ import annotations
"""
Camera rig calibration loader.

Two YAML layouts are accepted.

Rig layout (one entry per camera, matrices as {rows, cols, data}):

    label: my-rig
    cameras:
      - camera:
          label: cam0
          image_width: 752
          image_height: 480
          intrinsics: {rows: 4, cols: 1, data: [fu, fv, cu, cv]}
          distortion:
            type: radial-tangential
            parameters: {rows: 4, cols: 1, data: [k1, k2, p1, p2]}
        T_B_C: {rows: 4, cols: 4, data: [16 values, row-major]}

Flat single-camera layout:

    resolution: {width, height}
    fx, fy, cx, cy, skew
    k1, k2, p1, p2, k3
"""

from pathlib import Path
from typing import Any, Dict, List

import numpy as np
import yaml

from common.errors import ConfigurationError
from common.types import CameraModel, CameraRig, Pose


def load_camera_rig(path: str) -> CameraRig:
    """Load a CameraRig from YAML; any problem is a fatal ConfigurationError."""
    if not path or not Path(path).exists():
        raise ConfigurationError(f"Calibration file not found: {path}")
    try:
        with open(path, "r") as f:
            D = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read calibration {path}: {e}") from e
    if not isinstance(D, dict):
        raise ConfigurationError(f"Calibration {path}: expected a mapping at top level")
    try:
        if "cameras" in D:
            cameras = [_camera_from_rig_entry(entry, i) for i, entry in enumerate(D["cameras"] or [])]
        else:
            cameras = [_camera_from_flat(D)]
        return CameraRig(cameras=tuple(cameras))
    except ConfigurationError as e:
        raise ConfigurationError(f"Calibration {path}: {e}") from e
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Calibration {path}: malformed entry ({e!r})") from e


def _matrix(node: Any, rows: int, cols: int, name: str) -> np.ndarray:
    if isinstance(node, dict):
        data = node.get("data")
        r = int(node.get("rows", rows))
        c = int(node.get("cols", cols))
    else:
        data, r, c = node, rows, cols
    arr = np.asarray(data, dtype=float)
    if arr.size != r * c:
        raise ConfigurationError(f"{name}: expected {r}x{c} values, got {arr.size}")
    return arr.reshape(r, c)


def _camera_from_rig_entry(entry: Dict, i: int) -> CameraModel:
    cam = entry["camera"]
    label = str(cam.get("label", f"cam{i}"))
    intr = _matrix(cam["intrinsics"], 4, 1, f"{label}.intrinsics").reshape(-1)
    fu, fv, cu, cv = (float(v) for v in intr[:4])
    K = np.array([[fu, 0.0, cu], [0.0, fv, cv], [0.0, 0.0, 1.0]])

    dist = np.zeros(5)
    dnode = cam.get("distortion")
    if dnode:
        dtype = str(dnode.get("type", "radial-tangential")).lower()
        pnode = dnode.get("parameters", [])
        params = np.asarray(pnode.get("data", []) if isinstance(pnode, dict) else pnode, dtype=float).reshape(-1)
        if dtype in ("none", "no-distortion"):
            params = np.zeros(0)
        elif dtype not in ("radial-tangential", "radtan", "plumb_bob"):
            raise ConfigurationError(f"{label}: unsupported distortion type {dtype!r}")
        dist[: min(5, len(params))] = params[:5]

    T_B_C = Pose.identity()
    if entry.get("T_B_C") is not None:
        T_B_C = Pose.from_matrix(_matrix(entry["T_B_C"], 4, 4, f"{label}.T_B_C"))

    return CameraModel(
        width=int(cam["image_width"]),
        height=int(cam["image_height"]),
        K=K,
        dist=dist,
        T_B_C=T_B_C,
        label=label,
    )


def _camera_from_flat(D: Dict) -> CameraModel:
    W = int(D.get("resolution", {}).get("width", 640))
    H = int(D.get("resolution", {}).get("height", 480))
    fx = float(D["fx"])
    fy = float(D.get("fy", fx))
    cx = float(D.get("cx", W / 2.0))
    cy = float(D.get("cy", H / 2.0))
    skew = float(D.get("skew", 0.0))
    K = np.array([[fx, skew, cx],
                  [0.0, fy, cy],
                  [0.0, 0.0, 1.0]], dtype=float)
    dist = np.array([float(D.get(k, 0.0)) for k in ("k1", "k2", "p1", "p2", "k3")], dtype=float)
    T_B_C = Pose.identity()
    if D.get("T_B_C") is not None:
        T_B_C = Pose.from_matrix(_matrix(D["T_B_C"], 4, 4, "T_B_C"))
    return CameraModel(width=W, height=H, K=K, dist=dist, T_B_C=T_B_C, label=str(D.get("label", "cam0")))


def camera_rig_to_dict(rig: CameraRig) -> Dict[str, List[Dict]]:
    """Inverse of the rig layout (used to write fixtures and configs)."""
    cams = []
    for cam in rig.cameras:
        cams.append({
            "camera": {
                "label": cam.label,
                "image_width": cam.width,
                "image_height": cam.height,
                "intrinsics": {"rows": 4, "cols": 1, "data": [cam.fx, cam.fy, cam.cx, cam.cy]},
                "distortion": {
                    "type": "radial-tangential",
                    "parameters": {"rows": len(cam.dist), "cols": 1, "data": [float(v) for v in cam.dist]},
                },
            },
            "T_B_C": {"rows": 4, "cols": 4, "data": [float(v) for v in cam.T_B_C.matrix().reshape(-1)]},
        })
    return {"cameras": cams}
