from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence

import cv2
import numpy as np

from common.errors import ConfigurationError
from common.logging_setup import get_logger
from common.types import Frame, Pose


log = get_logger("mapper_io")


def read_image(path: str, colored: bool = False) -> np.ndarray:
    """Read one image as uint8 gray (H,W) or BGR (H,W,3)."""
    if not Path(path).exists():
        raise ConfigurationError(f"Image not found: {path}")
    img = cv2.imread(str(path), cv2.IMREAD_COLOR if colored else cv2.IMREAD_GRAYSCALE)
    if img is None:
        raise ConfigurationError(f"Cannot decode image: {path}")
    return img


def load_images_from_prefix(prefix: str, count: int, colored: bool = False, extension: str = ".jpg") -> List[np.ndarray]:
    """
    Load `count` images named {prefix}{i}{extension} for i in [0, count).
    E.g. prefix="data/images_" -> data/images_0.jpg, data/images_1.jpg, ...
    """
    images = [read_image(f"{prefix}{i}{extension}", colored) for i in range(int(count))]
    log.info("Loaded images", extra={"extra": {"prefix": prefix, "count": len(images), "colored": colored}})
    return images


def load_images(base_dir: str, names: Sequence[str], colored: bool = False) -> List[np.ndarray]:
    """Load images listed by filename relative to base_dir."""
    base = Path(base_dir) if base_dir else Path(".")
    images = [read_image(str(base / n), colored) for n in names]
    log.info("Loaded images", extra={"extra": {"base_dir": str(base), "count": len(images), "colored": colored}})
    return images


def write_image(path: str, image: np.ndarray) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(p), image):
        raise OSError(f"Failed to write image: {path}")


def build_frames(
    poses: Sequence[Pose],
    images: Sequence[np.ndarray],
    *,
    camera_index: int = 0,
    names: Optional[Sequence[str]] = None,
) -> List[Frame]:
    """Pair poses with images in capture order. Count mismatch is fatal."""
    if len(poses) != len(images):
        raise ConfigurationError(f"Mismatched counts: {len(poses)} poses vs {len(images)} images")
    if names is not None and len(names) != len(poses):
        raise ConfigurationError(f"Mismatched counts: {len(poses)} poses vs {len(names)} image names")
    try:
        return [
            Frame(index=i, pose=pose, image=img, camera_index=camera_index, name=None if names is None else names[i])
            for i, (pose, img) in enumerate(zip(poses, images))
        ]
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid frame data: {e}") from e
