"""
Unit tests for GeoRaster addressing and layers
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.config import GridSettings
from common.errors import ConfigurationError
from grid_map.raster import (
    GeoRaster,
    LAYER_ELEVATION,
    LAYER_OBSERVATION_INDEX,
    LAYER_ORTHO,
    LAYER_ORTHO_VALID,
    LAYER_UPDATED,
)


def _raster(colored=False):
    # 10 x 10 m around (0, 0) at 0.5 m -> 20 x 20 cells, origin (-5, -5)
    return GeoRaster(GridSettings(0.0, 0.0, 10.0, 10.0, 0.5), colored=colored)


class TestGeometry:
    """Origin, size and addressing"""

    def test_origin_and_shape(self):
        r = _raster()
        assert r.origin == (-5.0, -5.0)
        assert r.shape == (20, 20)
        assert r.bounds == (-5.0, -5.0, 5.0, 5.0)

    def test_row_zero_is_north(self):
        r = _raster()
        assert r.index(-4.9, 4.9) == (0, 0)
        assert r.index(-4.9, -4.9) == (19, 0)
        assert r.index(4.9, -4.9) == (19, 19)

    def test_half_open_extent(self):
        r = _raster()
        assert r.index(-5.0, -5.0) == (19, 0)
        assert r.index(5.0, 0.0) is None
        assert r.index(0.0, 5.0) is None
        assert r.index(-5.0001, 0.0) is None

    def test_vectorised_indices_match_scalar(self):
        r = _raster()
        e = np.array([-4.75, 0.1, 4.99, 7.0, np.nan])
        n = np.array([4.75, -0.1, 0.0, 0.0, 0.0])
        rows, cols, inside = r.indices(e, n)
        assert inside.tolist() == [True, True, True, False, False]
        for k in range(3):
            assert (rows[k], cols[k]) == r.index(e[k], n[k])

    def test_cell_center_roundtrip(self):
        r = _raster()
        for row, col in [(0, 0), (7, 13), (19, 19)]:
            e, n = r.cell_center(row, col)
            assert r.index(e, n) == (row, col)
        with pytest.raises(IndexError):
            r.cell_center(20, 0)

    def test_cell_centers_grid(self):
        r = _raster()
        E, N = r.cell_centers(2, 4)
        assert E.shape == (2, 20)
        assert E[0, 0] == pytest.approx(-4.75)
        assert N[0, 0] == pytest.approx(r.cell_center(2, 0)[1])
        assert N[1, 0] < N[0, 0]

    def test_extent_smaller_than_cell_rejected(self):
        with pytest.raises(ConfigurationError):
            GeoRaster(GridSettings(0.0, 0.0, 0.2, 0.2, 1.0))

    def test_bad_resolution_rejected(self):
        with pytest.raises(ConfigurationError):
            GeoRaster(GridSettings(resolution=0.0))


class TestLayers:
    """Layer storage and out-of-extent behaviour"""

    def test_default_layers(self):
        r = _raster()
        for name in (LAYER_ELEVATION, LAYER_ORTHO, LAYER_ORTHO_VALID, LAYER_OBSERVATION_INDEX, LAYER_UPDATED):
            assert r.has_layer(name)
        assert np.isnan(r.layer(LAYER_ELEVATION)).all()
        assert not r.layer(LAYER_ORTHO_VALID).any()
        assert (r.layer(LAYER_OBSERVATION_INDEX) == -1).all()
        assert r.layer(LAYER_ORTHO).shape == (20, 20)

    def test_colored_ortho_has_three_channels(self):
        assert _raster(colored=True).layer(LAYER_ORTHO).shape == (20, 20, 3)

    def test_set_and_read_value(self):
        r = _raster()
        assert r.set_value(LAYER_ELEVATION, 1.2, 3.4, 7.5)
        assert r.value_at(LAYER_ELEVATION, 1.2, 3.4) == 7.5
        assert r.elevation_valid().sum() == 1

    def test_out_of_extent_is_noop(self):
        r = _raster()
        before = r.layer(LAYER_ELEVATION).copy()
        assert r.set_value(LAYER_ELEVATION, 50.0, 0.0, 1.0) is False
        assert r.value_at(LAYER_ELEVATION, 50.0, 0.0) is None
        np.testing.assert_array_equal(r.layer(LAYER_ELEVATION), before)

    def test_unknown_layer(self):
        with pytest.raises(KeyError, match="unknown layer"):
            _raster().layer("nope")

    def test_snapshot_is_independent(self):
        r = _raster()
        r.set_value(LAYER_ELEVATION, 0.0, 0.0, 3.0)
        snap = r.snapshot()
        r.set_value(LAYER_ELEVATION, 0.0, 0.0, 9.0)
        assert snap.value_at(LAYER_ELEVATION, 0.0, 0.0) == 3.0
        assert snap.origin == r.origin and snap.shape == r.shape

    def test_stats(self):
        r = _raster()
        r.set_value(LAYER_ELEVATION, 0.0, 0.0, 2.0)
        r.set_value(LAYER_ELEVATION, 1.0, 0.0, 4.0)
        s = r.stats()
        assert s["elevation_cells"] == 2
        assert s["elevation_min"] == 2.0
        assert s["elevation_max"] == 4.0
        assert s["ortho_cells"] == 0
