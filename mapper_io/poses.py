from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np

from common.errors import ConfigurationError
from common.geo import opk_to_rotation, quaternion_to_rotation
from common.types import Pose


class PoseFormat(str, Enum):
    """
    STANDARD        x y z qw qx qy qz                  (T_G_B, one pose per row)
    STANDARD_NAMED  name x y z qw qx qy qz             (T_G_B plus image filename)
    COLMAP          images.txt: ID QW QX QY QZ TX TY TZ CAMERA_ID NAME + points line
                    (world->camera; converted to camera->world, camera = body)
    PIX4D           calibrated external parameters: name X Y Z omega phi kappa [deg]
    """
    STANDARD = "standard"
    STANDARD_NAMED = "standard_named"
    COLMAP = "colmap"
    PIX4D = "pix4d"


_ALIASES = {
    "standard": PoseFormat.STANDARD,
    "standardnamed": PoseFormat.STANDARD_NAMED,
    "standard_named": PoseFormat.STANDARD_NAMED,
    "colmap": PoseFormat.COLMAP,
    "pix4d": PoseFormat.PIX4D,
}


def to_format(name: str) -> PoseFormat:
    key = str(name).strip().lower().replace("-", "_")
    fmt = _ALIASES.get(key) or _ALIASES.get(key.replace("_", ""))
    if fmt is None:
        raise ConfigurationError(
            f"Unknown pose format {name!r}; expected one of: Standard, StandardNamed, COLMAP, PIX4D"
        )
    return fmt


@dataclass
class PoseSet:
    """Ordered body poses T_G_B and (optionally) the image filename of each pose."""
    poses: List[Pose] = field(default_factory=list)
    image_names: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.poses)


def load_poses(path: str, fmt: "PoseFormat | str" = PoseFormat.STANDARD) -> PoseSet:
    fmt = fmt if isinstance(fmt, PoseFormat) else to_format(fmt)
    p = Path(path)
    if not p.exists():
        raise ConfigurationError(f"Pose file not found: {path}")
    try:
        lines = p.read_text().splitlines()
    except OSError as e:
        raise ConfigurationError(f"Cannot read pose file {path}: {e}") from e

    if fmt is PoseFormat.COLMAP:
        out = _parse_colmap(lines, path)
    else:
        out = PoseSet()
        for lineno, raw in enumerate(lines, start=1):
            line = raw.split("#", 1)[0].strip()
            if not line:
                continue
            tok = line.replace(",", " ").split()
            try:
                if fmt is PoseFormat.STANDARD:
                    out.poses.append(_pose_xyz_quat(tok))
                elif fmt is PoseFormat.STANDARD_NAMED:
                    out.image_names.append(tok[0])
                    out.poses.append(_pose_xyz_quat(tok[1:]))
                else:
                    if not _is_number(tok[1]):
                        continue  # header row
                    out.image_names.append(tok[0])
                    out.poses.append(_pose_opk(tok[1:]))
            except (ValueError, IndexError) as e:
                raise ConfigurationError(f"{path}:{lineno}: malformed {fmt.value} pose ({e})") from e

    if not out.poses:
        raise ConfigurationError(f"Pose file {path} contains no poses")
    return out


def write_poses(path: str, poses: Sequence[Pose], image_names: Optional[Sequence[str]] = None) -> None:
    """Write the STANDARD (or STANDARD_NAMED when names are given) format."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w") as f:
        f.write("# x y z qw qx qy qz\n" if image_names is None else "# name x y z qw qx qy qz\n")
        for i, pose in enumerate(poses):
            vals = " ".join(f"{v:.9f}" for v in (*pose.t, *pose.quaternion))
            f.write(vals + "\n" if image_names is None else f"{image_names[i]} {vals}\n")


def _is_number(s: str) -> bool:
    try:
        float(s)
        return True
    except ValueError:
        return False


def _pose_xyz_quat(tok: Sequence[str]) -> Pose:
    if len(tok) < 7:
        raise ValueError(f"expected 7 values, got {len(tok)}")
    v = [float(x) for x in tok[:7]]
    return Pose.from_quaternion(v[0:3], v[3:7])


def _pose_opk(tok: Sequence[str]) -> Pose:
    if len(tok) < 6:
        raise ValueError(f"expected 6 values, got {len(tok)}")
    x, y, z, omega, phi, kappa = (float(v) for v in tok[:6])
    return Pose(R=opk_to_rotation(omega, phi, kappa), t=np.array([x, y, z]))


def _parse_colmap(lines: List[str], path: str) -> PoseSet:
    rows: List[Tuple[int, Pose, str]] = []
    body = [ln for ln in lines if not ln.lstrip().startswith("#")]
    i = 0
    while i < len(body):
        line = body[i].strip()
        if not line:
            i += 1
            continue
        tok = line.split()
        try:
            image_id = int(tok[0])
            qw, qx, qy, qz, tx, ty, tz = (float(v) for v in tok[1:8])
            name = tok[9]
        except (ValueError, IndexError) as e:
            raise ConfigurationError(f"{path}: malformed COLMAP image line {line!r} ({e})") from e
        R_C_G = quaternion_to_rotation(qw, qx, qy, qz)
        t_C_G = np.array([tx, ty, tz])
        rows.append((image_id, Pose(R=R_C_G, t=t_C_G).inverse(), name))
        i += 2  # skip the POINTS2D line
    rows.sort(key=lambda r: r[0])
    return PoseSet(poses=[r[1] for r in rows], image_names=[r[2] for r in rows])
