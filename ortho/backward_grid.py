from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from common.config import OrthoSettings
from common.geo import incidence_cosine
from common.logging_setup import get_logger
from common.types import CameraRig, Frame
from common.utils import row_blocks
from grid_map.raster import (
    GeoRaster,
    LAYER_ELEVATION,
    LAYER_OBSERVATION_INDEX,
    LAYER_ORTHO,
    LAYER_ORTHO_VALID,
    LAYER_UPDATED,
)


log = get_logger("ortho")


@dataclass(slots=True)
class CompositeResult:
    frames: int
    cells_updated: int
    cells_valid: int


@dataclass(slots=True)
class _Block:
    """Per-block selection outcome; written back by the caller."""
    start: int
    stop: int
    frame: np.ndarray     # (h,w) int32 winning frame index, -1 none
    value: np.ndarray     # (h,w) or (h,w,3) uint8 sampled pixel


class OrthoCompositor:
    """
    Backward-grid orthomosaic.

    Each cell centre is lifted to 3D (fused DSM height, or a flat elevation) and
    projected into every frame. A frame is a usable source when the point is in
    front of the camera and the nearest pixel is inside the image. The source
    with the smallest incidence angle (most vertical view of the cell) wins;
    ties go to the lowest frame index. Cells without any source keep their
    previous value and are not marked updated.
    """

    def __init__(self, rig: CameraRig, settings: Optional[OrthoSettings] = None):
        self.rig = rig
        self.settings = settings or OrthoSettings()
        self.settings.validate()

    def process(self, frames: Sequence[Frame], raster: GeoRaster) -> CompositeResult:
        frames = sorted(frames, key=lambda f: f.index)
        images = [self._prepare(f.image, raster.colored) for f in frames]
        updated = raster.layer(LAYER_UPDATED)
        updated[...] = False
        if not frames:
            return CompositeResult(0, 0, int(raster.layer(LAYER_ORTHO_VALID).sum()))

        blocks = row_blocks(raster.height, self.settings.rows_per_block)
        if self.settings.use_multi_threads and len(blocks) > 1:
            with ThreadPoolExecutor(max_workers=max(1, self.settings.max_workers)) as pool:
                results = list(pool.map(lambda b: self._select_block(b, frames, images, raster), blocks))
        else:
            results = [self._select_block(b, frames, images, raster) for b in blocks]

        ortho = raster.layer(LAYER_ORTHO)
        valid = raster.layer(LAYER_ORTHO_VALID)
        obs = raster.layer(LAYER_OBSERVATION_INDEX)
        for blk in results:
            hit = blk.frame >= 0
            sl = slice(blk.start, blk.stop)
            ortho[sl][hit] = blk.value[hit]
            obs[sl][hit] = blk.frame[hit]
            valid[sl][hit] = True
            updated[sl][hit] = True

        result = CompositeResult(
            frames=len(frames),
            cells_updated=int(updated.sum()),
            cells_valid=int(valid.sum()),
        )
        log.info(
            "Orthomosaic updated",
            extra={"extra": {"frames": result.frames, "updated": result.cells_updated, "valid": result.cells_valid}},
        )
        return result

    # -------- internals --------

    @staticmethod
    def _prepare(image: np.ndarray, colored: bool) -> np.ndarray:
        if colored and image.ndim == 2:
            return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        if not colored and image.ndim == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        return image

    def _cell_points(self, raster: GeoRaster, start: int, stop: int) -> np.ndarray:
        E, N = raster.cell_centers(start, stop)
        Z = np.full(E.shape, float(self.settings.flat_elevation_m))
        if self.settings.elevation_mode == "dsm":
            elev = raster.layer(LAYER_ELEVATION)[start:stop]
            fused = np.isfinite(elev)
            Z[fused] = elev[fused]
        return np.stack([E.ravel(), N.ravel(), Z.ravel()], axis=1)

    def _select_block(
        self,
        block: Tuple[int, int],
        frames: List[Frame],
        images: List[np.ndarray],
        raster: GeoRaster,
    ) -> _Block:
        start, stop = block
        shape = (stop - start, raster.width)
        P = self._cell_points(raster, start, stop)
        n = len(P)

        best_score = np.full(n, -np.inf)
        best_frame = np.full(n, -1, dtype=np.int32)
        channels = (3,) if raster.colored else ()
        value = np.zeros((n,) + channels, dtype=np.uint8)

        for frame, img in zip(frames, images):
            cam = self.rig.camera(frame.camera_index)
            u, v, depth = cam.project(P, frame.pose)
            h, w = img.shape[:2]
            with np.errstate(invalid="ignore"):
                ui = np.floor(u + 0.5)
                vi = np.floor(v + 0.5)
                ok = (depth > 0) & (ui >= 0) & (ui < w) & (vi >= 0) & (vi < h)
            if not np.any(ok):
                continue
            score = incidence_cosine(cam.world_pose(frame.pose).t, P)
            better = ok & (score > best_score)
            if not np.any(better):
                continue
            best_score[better] = score[better]
            best_frame[better] = frame.index
            value[better] = img[vi[better].astype(np.int64), ui[better].astype(np.int64)]

        return _Block(
            start=start,
            stop=stop,
            frame=best_frame.reshape(shape),
            value=value.reshape(shape + channels),
        )
