"""
Orthomosaic compositing by backward projection of raster cells into frames.
"""
from .backward_grid import OrthoCompositor

__all__ = ["OrthoCompositor"]
