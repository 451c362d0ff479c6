"""
Digital surface model fusion (max-height rule) into GeoRaster.elevation.
"""
from .surface import SurfaceFuser

__all__ = ["SurfaceFuser"]
