"""
Tests — Pixel Grid & Statistics
================================
Unit tests for :class:`~multiseg.grid.PixelGrid` and the global
statistics helpers.
"""

from __future__ import annotations

import numpy as np
import pytest

from multiseg.exceptions import RasterError
from multiseg.grid import PixelGrid, amplitude_to_intensity, mean_and_variance


# ---------------------------------------------------------------------------
# Unit tests — PixelGrid
# ---------------------------------------------------------------------------


class TestPixelGrid:
    def test_two_dimensional_input_has_one_band(self) -> None:
        grid = PixelGrid(np.ones((3, 4)))
        assert grid.band_count() == 1
        assert grid.dimensions() == (3, 4)

    def test_get_returns_value(self) -> None:
        grid = PixelGrid(np.array([[1.0, 2.0], [3.0, 4.0]]))
        assert grid.get(1, 0) == 3.0

    def test_get_outside_grid_returns_none(self) -> None:
        grid = PixelGrid(np.ones((2, 2)))
        assert grid.get(5, 5) is None
        assert grid.get(0, 0, band=1) is None

    def test_nodata_value_reads_as_none(self) -> None:
        grid = PixelGrid(np.array([[1.0, -9999.0]]), nodata=-9999.0)
        assert grid.get(0, 1) is None
        assert not grid.valid_mask()[0, 0, 1]

    def test_set_reports_success(self) -> None:
        grid = PixelGrid(np.zeros((2, 2)))
        assert grid.set(1, 1, 7.0)
        assert grid.get(1, 1) == 7.0
        assert not grid.set(2, 0, 7.0)

    def test_filled_replaces_nodata(self) -> None:
        grid = PixelGrid(np.array([[np.nan, 2.0]]))
        assert grid.filled(0.0).tolist() == [[[0.0, 2.0]]]

    def test_from_masked(self) -> None:
        array = np.ma.masked_array([[[1, 2], [3, 4]]], mask=[[[False, True], [False, False]]])
        grid = PixelGrid.from_masked(array)
        assert grid.get(0, 1) is None
        assert grid.get(1, 1) == 4.0

    def test_select_bands_keeps_order(self) -> None:
        data = np.stack([np.full((2, 2), v) for v in (1.0, 2.0, 3.0)])
        grid = PixelGrid(data).select_bands([2, 0])
        assert grid.band_count() == 2
        assert grid.get(0, 0, band=0) == 3.0
        assert grid.get(0, 0, band=1) == 1.0

    def test_select_missing_band_raises(self) -> None:
        with pytest.raises(RasterError):
            PixelGrid(np.ones((2, 2))).select_bands([1])

    def test_invalid_dimensions_raise(self) -> None:
        with pytest.raises(RasterError):
            PixelGrid(np.ones(4))


# ---------------------------------------------------------------------------
# Unit tests — statistics helpers
# ---------------------------------------------------------------------------


class TestStatistics:
    def test_mean_and_population_variance(self) -> None:
        means, variances = mean_and_variance(PixelGrid(np.array([[1.0, 2.0], [3.0, 4.0]])))
        assert means[0] == pytest.approx(2.5)
        assert variances[0] == pytest.approx(1.25)

    def test_nodata_is_ignored(self) -> None:
        means, variances = mean_and_variance(PixelGrid(np.array([[np.nan, 4.0], [4.0, 4.0]])))
        assert means[0] == pytest.approx(4.0)
        assert variances[0] == pytest.approx(0.0)

    def test_band_without_valid_pixels_is_zero(self) -> None:
        means, variances = mean_and_variance(PixelGrid(np.full((2, 2), np.nan)))
        assert means[0] == 0.0
        assert variances[0] == 0.0

    def test_amplitude_to_intensity_squares(self) -> None:
        grid = amplitude_to_intensity(PixelGrid(np.array([[2.0, np.nan]])))
        assert grid.get(0, 0) == 4.0
        assert grid.get(0, 1) is None
