"""
Unit tests for the HTTP view of published rasters
"""

import json
import os
import sys

import numpy as np
import pytest
from fastapi.testclient import TestClient

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.config import GridSettings
from grid_map.publisher import RasterPublisher
from grid_map.raster import GeoRaster, LAYER_ELEVATION
from grid_map.server import create_app


@pytest.fixture
def publisher():
    return RasterPublisher()


@pytest.fixture
def client(publisher):
    return TestClient(create_app(publisher))


def _raster():
    r = GeoRaster(GridSettings(0.0, 0.0, 8.0, 6.0, 1.0))
    r.set_value(LAYER_ELEVATION, 0.5, 0.5, 3.0)
    return r


class TestServer:
    """Endpoints"""

    def test_health_before_publish(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"
        assert r.json()["published"] == 0

    def test_nothing_published_is_404(self, client):
        assert client.get("/stats").status_code == 404
        assert client.get("/layers/elevation.png").status_code == 404

    def test_stats_and_metadata(self, client, publisher):
        publisher.publish(_raster())
        stats = client.get("/stats").json()
        assert stats["published"] == 1
        assert stats["raster"]["elevation_cells"] == 1
        meta = client.get("/metadata").json()
        assert (meta["width"], meta["height"]) == (8, 6)
        assert meta["bounds"]["west"] == -4.0
        assert "elevation" in meta["layers"]

    def test_layer_png(self, client, publisher):
        publisher.publish(_raster())
        r = client.get("/layers/elevation.png")
        assert r.status_code == 200
        assert r.headers["content-type"] == "image/png"
        assert json.loads(r.headers["X-Geo-Metadata"])["resolution"] == 1.0

    def test_layer_tif(self, client, publisher):
        publisher.publish(_raster())
        r = client.get("/layers/ortho.tif")
        assert r.status_code == 200
        assert r.content[:2] in (b"II", b"MM")

    def test_unknown_layer(self, client, publisher):
        publisher.publish(_raster())
        assert client.get("/layers/nope.png").status_code == 404
