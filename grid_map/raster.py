from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import numpy as np

from common.config import GridSettings
from common.errors import ConfigurationError


LAYER_ELEVATION = "elevation"
LAYER_ORTHO = "ortho"
LAYER_ORTHO_VALID = "ortho_valid"
LAYER_OBSERVATION_INDEX = "observation_index"
LAYER_UPDATED = "updated"


class GeoRaster:
    """
    North-up grid anchored at a geographic origin, holding named layers.

        (west, north) ── col ──►
             │
            row      cell (row, col) covers
             │       [west + col*res, west + (col+1)*res) ×
             ▼       [north - (row+1)*res, north - row*res)
        (west, south) = origin

    Origin, resolution and extent are fixed at construction; only cell values
    change. Addressing is half-open: [origin, origin + extent). Everything
    outside is unaddressable; reads return None and writes are no-ops.

    Layers:
        elevation          float64, NaN = no data
        ortho              uint8, (H,W) grayscale or (H,W,3) BGR
        ortho_valid        bool, cell has received a color at least once
        observation_index  int32, frame that colored the cell (-1 none)
        updated            bool, colored during the most recent compositing pass
    """

    def __init__(self, settings: GridSettings, *, colored: bool = False):
        settings.validate()
        self._resolution = float(settings.resolution)
        self._width = int(round(settings.delta_easting / self._resolution))
        self._height = int(round(settings.delta_northing / self._resolution))
        if self._width < 1 or self._height < 1:
            raise ConfigurationError("grid extent is smaller than one cell")
        self._origin = (
            float(settings.center_easting) - 0.5 * self._width * self._resolution,
            float(settings.center_northing) - 0.5 * self._height * self._resolution,
        )
        self._settings = settings
        self._colored = bool(colored)
        self._layers: Dict[str, np.ndarray] = {}
        self.add_layer(LAYER_ELEVATION, np.float64, np.nan)
        self.add_layer(LAYER_ORTHO, np.uint8, 0, channels=3 if colored else None)
        self.add_layer(LAYER_ORTHO_VALID, bool, False)
        self.add_layer(LAYER_OBSERVATION_INDEX, np.int32, -1)
        self.add_layer(LAYER_UPDATED, bool, False)

    # -------- geometry (read-only) --------

    @property
    def settings(self) -> GridSettings:
        return self._settings

    @property
    def origin(self) -> Tuple[float, float]:
        """(easting, northing) of the south-west corner."""
        return self._origin

    @property
    def resolution(self) -> float:
        return self._resolution

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def shape(self) -> Tuple[int, int]:
        return (self._height, self._width)

    @property
    def colored(self) -> bool:
        return self._colored

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(west, south, east, north)"""
        w, s = self._origin
        return (w, s, w + self._width * self._resolution, s + self._height * self._resolution)

    def index(self, easting: float, northing: float) -> Optional[Tuple[int, int]]:
        """(row, col) of the cell containing the point, or None outside the extent."""
        rows, cols, inside = self.indices(np.array([easting], dtype=float), np.array([northing], dtype=float))
        if not inside[0]:
            return None
        return int(rows[0]), int(cols[0])

    def indices(self, easting: np.ndarray, northing: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Vectorised addressing. Returns (rows, cols, inside); rows/cols are only
        meaningful where inside is True (they are set to 0 elsewhere).
        """
        e = np.asarray(easting, dtype=float).reshape(-1)
        n = np.asarray(northing, dtype=float).reshape(-1)
        with np.errstate(invalid="ignore"):
            fc = np.floor((e - self._origin[0]) / self._resolution)
            fr = np.floor((n - self._origin[1]) / self._resolution)
            inside = (
                np.isfinite(fc) & np.isfinite(fr)
                & (fc >= 0) & (fc < self._width)
                & (fr >= 0) & (fr < self._height)
            )
        cols = np.where(inside, fc, 0).astype(np.int64)
        rows = np.where(inside, self._height - 1 - np.where(inside, fr, 0), 0).astype(np.int64)
        return rows, cols, inside

    def cell_center(self, row: int, col: int) -> Tuple[float, float]:
        if not (0 <= row < self._height and 0 <= col < self._width):
            raise IndexError(f"cell ({row}, {col}) outside {self.shape}")
        e = self._origin[0] + (col + 0.5) * self._resolution
        n = self._origin[1] + (self._height - row - 0.5) * self._resolution
        return e, n

    def cell_centers(self, row_start: int = 0, row_stop: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
        """(E, N) grids of cell centres for rows [row_start, row_stop)."""
        row_stop = self._height if row_stop is None else row_stop
        cols = np.arange(self._width, dtype=float)
        rows = np.arange(row_start, row_stop, dtype=float)
        e = self._origin[0] + (cols + 0.5) * self._resolution
        n = self._origin[1] + (self._height - rows - 0.5) * self._resolution
        return np.meshgrid(e, n)

    # -------- layers --------

    def add_layer(self, name: str, dtype: Any, fill: Any, channels: Optional[int] = None) -> np.ndarray:
        shape = self.shape if channels is None else self.shape + (int(channels),)
        arr = np.full(shape, fill, dtype=dtype)
        self._layers[name] = arr
        return arr

    def has_layer(self, name: str) -> bool:
        return name in self._layers

    @property
    def layer_names(self) -> Tuple[str, ...]:
        return tuple(self._layers)

    def layer(self, name: str) -> np.ndarray:
        """Mutable array of a layer."""
        try:
            return self._layers[name]
        except KeyError:
            raise KeyError(f"unknown layer {name!r}; available: {', '.join(self._layers)}") from None

    def value_at(self, name: str, easting: float, northing: float) -> Optional[Any]:
        rc = self.index(easting, northing)
        if rc is None:
            return None
        v = self.layer(name)[rc]
        return v.copy() if isinstance(v, np.ndarray) else v.item()

    def set_value(self, name: str, easting: float, northing: float, value: Any) -> bool:
        rc = self.index(easting, northing)
        if rc is None:
            return False
        self.layer(name)[rc] = value
        return True

    def elevation_valid(self) -> np.ndarray:
        return np.isfinite(self._layers[LAYER_ELEVATION])

    # -------- snapshots --------

    def snapshot(self) -> "GeoRaster":
        """Deep copy sharing no arrays with this raster."""
        other = GeoRaster.__new__(GeoRaster)
        other._resolution = self._resolution
        other._width = self._width
        other._height = self._height
        other._origin = self._origin
        other._settings = self._settings
        other._colored = self._colored
        other._layers = {k: v.copy() for k, v in self._layers.items()}
        return other

    def stats(self) -> Dict[str, Any]:
        elev = self._layers[LAYER_ELEVATION]
        valid = self.elevation_valid()
        return {
            "shape": [self._height, self._width],
            "resolution": self._resolution,
            "bounds": list(self.bounds),
            "elevation_cells": int(valid.sum()),
            "elevation_min": float(elev[valid].min()) if valid.any() else None,
            "elevation_max": float(elev[valid].max()) if valid.any() else None,
            "ortho_cells": int(self._layers[LAYER_ORTHO_VALID].sum()),
            "updated_cells": int(self._layers[LAYER_UPDATED].sum()),
        }
