"""
Geo-referenced raster map

- GeoRaster: fixed north-up grid with named layers (elevation, ortho, ...)
- export.py: GeoTIFF (rasterio) / image (OpenCV) products
- RasterPublisher: latest snapshot holder, optional file export, HTTP serving
- server.py: FastAPI app over the latest snapshot
    /health, /stats, /metadata, /layers/{name}.png, /layers/{name}.tif
"""
from .raster import GeoRaster

__all__ = ["GeoRaster"]
