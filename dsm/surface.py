from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from common.config import DsmSettings
from common.logging_setup import get_logger
from common.types import PointCloud
from grid_map.raster import GeoRaster, LAYER_ELEVATION


log = get_logger("dsm")


@dataclass(slots=True)
class FusionResult:
    points_in: int
    points_inside: int
    cells_touched: int
    cells_new: int


class SurfaceFuser:
    """
    Folds world points into the raster's elevation layer.

    Rule: highest sample wins (first-return DSM). fmax ignores NaN, so an empty
    cell takes the first sample; the rule is order independent and idempotent,
    which lets each incremental pass supply only its own new points.
    Points outside the raster extent or with non-finite height are dropped.
    """

    def __init__(self, settings: Optional[DsmSettings] = None):
        self.settings = settings or DsmSettings()
        self.settings.validate()

    def process(self, points: PointCloud, raster: GeoRaster) -> FusionResult:
        xyz = points.xyz
        n_in = len(xyz)
        if n_in == 0:
            return FusionResult(0, 0, 0, 0)

        rows, cols, inside = raster.indices(xyz[:, 0], xyz[:, 1])
        inside &= np.isfinite(xyz[:, 2])
        if not np.any(inside):
            log.debug("No points inside the raster extent", extra={"extra": {"points": n_in}})
            return FusionResult(n_in, 0, 0, 0)

        elev = raster.layer(LAYER_ELEVATION)
        flat = np.ravel_multi_index((rows[inside], cols[inside]), elev.shape)
        was_valid = raster.elevation_valid().reshape(-1)[flat]

        elev_flat = elev.reshape(-1)  # view: elevation is C-contiguous
        np.fmax.at(elev_flat, flat, xyz[inside, 2])

        touched = np.unique(flat)
        new_cells = np.unique(flat[~was_valid])
        result = FusionResult(
            points_in=n_in,
            points_inside=int(inside.sum()),
            cells_touched=int(len(touched)),
            cells_new=int(len(new_cells)),
        )
        log.info(
            "Fused points into DSM",
            extra={"extra": {"points": n_in, "inside": result.points_inside,
                             "cells": result.cells_touched, "new_cells": result.cells_new}},
        )
        return result
