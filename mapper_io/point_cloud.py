from __future__ import annotations

from pathlib import Path
from typing import List

import numpy as np

from common.errors import ConfigurationError
from common.types import PointCloud


_TEXT_SUFFIXES = (".txt", ".xyz", ".csv", ".pts")


def load_point_cloud(path: str) -> PointCloud:
    """
    Read a literal point set. Supported:
      - .txt/.xyz/.csv/.pts: one "x y z" per row (whitespace or comma separated,
        extra columns ignored, '#' comments)
      - .ply: ASCII PLY with x/y/z vertex properties
      - .npy: (N,3) array
    """
    p = Path(path)
    if not p.exists():
        raise ConfigurationError(f"Point cloud not found: {path}")
    suffix = p.suffix.lower()
    try:
        if suffix == ".npy":
            xyz = np.load(p)
        elif suffix == ".ply":
            xyz = _read_ply_ascii(p)
        elif suffix in _TEXT_SUFFIXES:
            xyz = _read_text(p)
        else:
            raise ConfigurationError(f"Unsupported point cloud format: {suffix or '<none>'}")
        xyz = np.asarray(xyz, dtype=np.float64)
        if xyz.size == 0:
            xyz = xyz.reshape(0, 3)
        if xyz.ndim != 2 or xyz.shape[1] < 3:
            raise ConfigurationError(f"{path}: expected rows of at least 3 coordinates")
    except ConfigurationError:
        raise
    except (OSError, ValueError, IndexError) as e:
        raise ConfigurationError(f"Cannot parse point cloud {path}: {e}") from e
    return PointCloud(xyz=xyz[:, :3])


def save_point_cloud(path: str, cloud: PointCloud) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    suffix = p.suffix.lower()
    if suffix == ".npy":
        np.save(p, cloud.xyz)
    elif suffix == ".ply":
        with p.open("w") as f:
            f.write("ply\nformat ascii 1.0\n")
            f.write(f"element vertex {len(cloud)}\n")
            f.write("property double x\nproperty double y\nproperty double z\nend_header\n")
            np.savetxt(f, cloud.xyz, fmt="%.6f")
    else:
        delimiter = "," if suffix == ".csv" else " "
        np.savetxt(p, cloud.xyz, fmt="%.6f", delimiter=delimiter)


def _read_text(p: Path) -> np.ndarray:
    rows: List[List[float]] = []
    with p.open("r") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.split("#", 1)[0].strip()
            if not line:
                continue
            parts = line.replace(",", " ").split()
            if len(parts) < 3:
                raise ConfigurationError(f"{p}:{lineno}: expected x y z")
            rows.append([float(parts[0]), float(parts[1]), float(parts[2])])
    return np.array(rows, dtype=np.float64).reshape(-1, 3)


def _read_ply_ascii(p: Path) -> np.ndarray:
    with p.open("r") as f:
        if f.readline().strip() != "ply":
            raise ConfigurationError(f"{p}: not a PLY file")
        n_vertices = 0
        props: List[str] = []
        in_vertex = False
        for line in f:
            tok = line.split()
            if not tok:
                continue
            if tok[0] == "format" and tok[1] != "ascii":
                raise ConfigurationError(f"{p}: only ASCII PLY is supported")
            if tok[0] == "element":
                in_vertex = tok[1] == "vertex"
                if in_vertex:
                    n_vertices = int(tok[2])
            elif tok[0] == "property" and in_vertex:
                props.append(tok[-1])
            elif tok[0] == "end_header":
                break
        try:
            ix, iy, iz = props.index("x"), props.index("y"), props.index("z")
        except ValueError as e:
            raise ConfigurationError(f"{p}: PLY vertex has no x/y/z properties") from e
        out = np.zeros((n_vertices, 3), dtype=np.float64)
        for i in range(n_vertices):
            vals = f.readline().split()
            out[i] = (float(vals[ix]), float(vals[iy]), float(vals[iz]))
    return out
