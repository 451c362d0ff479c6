"""
Unit tests for raster products (GeoTIFF / image) and the publisher
"""

import os
import sys

import cv2
import numpy as np
import pytest
import rasterio

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.config import GridSettings, PublishSettings
from grid_map.export import encode_layer_png, layer_to_image, save_geotiff, save_orthomosaic_image
from grid_map.publisher import RasterPublisher
from grid_map.raster import GeoRaster, LAYER_ELEVATION, LAYER_ORTHO, LAYER_ORTHO_VALID


def _raster(colored=False):
    r = GeoRaster(GridSettings(500.0, 1000.0, 20.0, 10.0, 1.0), colored=colored)
    r.set_value(LAYER_ELEVATION, 491.5, 1004.5, 12.0)
    r.set_value(LAYER_ELEVATION, 508.5, 995.5, 2.0)
    return r


class TestGeoTiff:
    """rasterio output"""

    def test_elevation_georeferencing(self, tmp_path):
        path = str(tmp_path / "dsm.tif")
        save_geotiff(_raster(), LAYER_ELEVATION, path, crs="EPSG:32632")
        with rasterio.open(path) as src:
            assert (src.width, src.height, src.count) == (20, 10, 1)
            assert src.crs.to_epsg() == 32632
            b = src.bounds
            assert (b.left, b.bottom, b.right, b.top) == pytest.approx((490.0, 995.0, 510.0, 1005.0))
            data = src.read(1)
        # row 0 is north
        assert data[0, 1] == 12.0
        assert data[9, 18] == 2.0
        assert np.isnan(data[5, 5])

    def test_colored_ortho_band_order(self, tmp_path):
        r = _raster(colored=True)
        r.layer(LAYER_ORTHO)[...] = (10, 20, 30)  # BGR
        path = str(tmp_path / "ortho.tif")
        save_geotiff(r, LAYER_ORTHO, path)
        with rasterio.open(path) as src:
            assert src.count == 3
            assert src.read(1)[0, 0] == 30
            assert src.read(3)[0, 0] == 10


class TestImages:
    """8-bit renderings"""

    def test_elevation_stretch(self):
        img = layer_to_image(_raster(), LAYER_ELEVATION)
        assert img.dtype == np.uint8
        assert img[0, 1] == 255 and img[9, 18] == 1
        assert img[5, 5] == 0

    def test_ortho_masks_never_colored_cells(self):
        r = _raster()
        r.layer(LAYER_ORTHO)[...] = 200
        r.layer(LAYER_ORTHO_VALID)[:5] = True
        img = layer_to_image(r, LAYER_ORTHO)
        assert (img[:5] == 200).all() and (img[5:] == 0).all()

    def test_png_and_file(self, tmp_path):
        data = encode_layer_png(_raster(), LAYER_ELEVATION)
        assert data[:8] == b"\x89PNG\r\n\x1a\n"
        path = str(tmp_path / "sub" / "ortho.png")
        save_orthomosaic_image(_raster(), path)
        assert cv2.imread(path, cv2.IMREAD_UNCHANGED).shape == (10, 20)


class TestPublisher:
    """Snapshot publishing"""

    def test_publish_keeps_latest(self):
        pub = RasterPublisher()
        a, b = _raster(), _raster()
        pub.publish(a)
        pub.publish(b)
        assert pub.count == 2
        assert pub.latest is b
        assert pub.status()["published"] == 2

    def test_auto_export(self, tmp_path):
        settings = PublishSettings(output_directory=str(tmp_path), orthomosaic_filename="ortho.png", save_geotiff=True)
        RasterPublisher(settings).publish(_raster())
        assert (tmp_path / "ortho.png").exists()
        assert (tmp_path / "dsm.tif").exists()
        assert (tmp_path / "ortho.tif").exists()
