from __future__ import annotations

from pathlib import Path
from typing import Optional

import cv2
import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.io import MemoryFile
from rasterio.transform import from_bounds

from common.logging_setup import get_logger
from grid_map.raster import GeoRaster, LAYER_ELEVATION, LAYER_ORTHO, LAYER_ORTHO_VALID


log = get_logger("grid_map")


def _parse_crs(crs: Optional[str]) -> Optional[CRS]:
    if crs is None:
        return None
    if isinstance(crs, int) or str(crs).isdigit():
        return CRS.from_epsg(int(crs))
    if str(crs).upper().startswith("EPSG:"):
        return CRS.from_epsg(int(str(crs).split(":")[1]))
    return CRS.from_string(str(crs))


def layer_bands(raster: GeoRaster, layer: str) -> np.ndarray:
    """
    Layer as a (bands, rows, cols) array ready for a GeoTIFF writer.
    Colour orthomosaics are reordered BGR -> RGB.
    """
    arr = raster.layer(layer)
    if arr.dtype == bool:
        arr = arr.astype(np.uint8)
    if arr.ndim == 2:
        return arr[np.newaxis, ...]
    if layer == LAYER_ORTHO and arr.shape[2] == 3:
        arr = arr[:, :, ::-1]
    return np.ascontiguousarray(np.transpose(arr, (2, 0, 1)))


def _profile(raster: GeoRaster, bands: np.ndarray, layer: str, crs: Optional[str]) -> dict:
    west, south, east, north = raster.bounds
    profile = {
        "driver": "GTiff",
        "dtype": str(bands.dtype),
        "width": raster.width,
        "height": raster.height,
        "count": int(bands.shape[0]),
        "transform": from_bounds(west, south, east, north, raster.width, raster.height),
        "compress": "lzw",
    }
    if layer == LAYER_ELEVATION:
        profile["nodata"] = float("nan")
    rcrs = _parse_crs(crs)
    if rcrs is not None:
        profile["crs"] = rcrs
    return profile


def save_geotiff(raster: GeoRaster, layer: str, path: str, crs: Optional[str] = None) -> str:
    """Write one layer as a georeferenced GeoTIFF (north-up, row 0 = north)."""
    bands = layer_bands(raster, layer)
    profile = _profile(raster, bands, layer, crs)
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(bands)
        if bands.shape[0] == 3:
            for i, name in enumerate(("Red", "Green", "Blue"), start=1):
                dst.set_band_description(i, name)
    log.info("GeoTIFF written", extra={"extra": {"path": path, "layer": layer}})
    return path


def geotiff_bytes(raster: GeoRaster, layer: str, crs: Optional[str] = None) -> bytes:
    """Same as save_geotiff but in memory (served over HTTP)."""
    bands = layer_bands(raster, layer)
    with MemoryFile() as mem:
        with mem.open(**_profile(raster, bands, layer, crs)) as dst:
            dst.write(bands)
        return mem.read()


def layer_to_image(raster: GeoRaster, layer: str) -> np.ndarray:
    """
    8-bit image of a layer. Elevation is min/max stretched over valid cells
    (no-data cells black); masks become 0/255; the orthomosaic is returned with
    never-colored cells black.
    """
    arr = raster.layer(layer)
    if layer == LAYER_ORTHO:
        out = arr.copy()
        out[~raster.layer(LAYER_ORTHO_VALID)] = 0
        return out
    if arr.dtype == bool:
        return arr.astype(np.uint8) * 255
    a = arr.astype(np.float64)
    valid = np.isfinite(a)
    if layer != LAYER_ELEVATION:
        valid &= a >= 0
    out = np.zeros(a.shape, dtype=np.uint8)
    if valid.any():
        lo, hi = float(a[valid].min()), float(a[valid].max())
        scale = 254.0 / (hi - lo) if hi > lo else 0.0
        out[valid] = (1 + (a[valid] - lo) * scale).astype(np.uint8)
    return out


def encode_layer_png(raster: GeoRaster, layer: str) -> bytes:
    ok, buf = cv2.imencode(".png", layer_to_image(raster, layer))
    if not ok:
        raise RuntimeError(f"PNG encoding failed for layer {layer}")
    return buf.tobytes()


def save_orthomosaic_image(raster: GeoRaster, path: str) -> str:
    """Orthomosaic as a plain image file (JPEG/PNG by extension)."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(path), layer_to_image(raster, LAYER_ORTHO)):
        raise OSError(f"Failed to write orthomosaic image: {path}")
    log.info("Orthomosaic image written", extra={"extra": {"path": path}})
    return path
