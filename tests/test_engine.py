"""
Tests — Segmentation Engine
============================
Unit and integration tests for :class:`~multiseg.engine.MultiSeg`.

All rasters are small synthetic numpy grids so every expected partition
can be worked out by hand.
"""

from __future__ import annotations

import logging

import numpy as np
import pytest
from scipy import stats

from multiseg.config import SegmentationConfig
from multiseg.engine import MultiSeg
from multiseg.enums import ImageModel, ImageType, RadarFormat
from multiseg.exceptions import ConfigurationError, SegmentationCancelled
from multiseg.grid import PixelGrid
from multiseg.mergers import (
    CONFIDENCE_LEVEL,
    VCRITIC_FACTOR,
    EuclideanStrategy,
    image_variance_param,
)
from multiseg.progress import NullProgress


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _optical_config(levels: int = 0, **kwargs: object) -> SegmentationConfig:
    options: dict[str, object] = {
        "image_type": ImageType.OPTICAL,
        "image_model": ImageModel.CARTOON,
        "levels": levels,
        "similarity": 5.0,
        "min_area": 1,
        "cv": 0.3,
        "confidence_level": 0.95,
    }
    options.update(kwargs)
    return SegmentationConfig(**options)  # type: ignore[arg-type]


def _radar_config(levels: int = 0, **kwargs: object) -> SegmentationConfig:
    options: dict[str, object] = {
        "image_type": ImageType.RADAR,
        "image_model": ImageModel.CARTOON,
        "levels": levels,
        "similarity": 3.0,
        "min_area": 1,
        "radar_format": RadarFormat.INTENSITY,
        "enl": 4.0,
        "confidence_level": 0.95,
    }
    options.update(kwargs)
    return SegmentationConfig(**options)  # type: ignore[arg-type]


def _halves(size: int) -> PixelGrid:
    """Left half 10, right half 200."""
    data = np.full((size, size), 10.0)
    data[:, size // 2:] = 200.0
    return PixelGrid(data)


def _checkerboard(size: int, low: float, high: float) -> PixelGrid:
    rows, cols = np.indices((size, size))
    return PixelGrid(np.where((rows + cols) % 2 == 0, low, high))


class _CancelledProgress(NullProgress):
    def cancelled(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Integration tests — full runs
# ---------------------------------------------------------------------------


class TestRun:
    def test_two_flat_halves_single_level(self) -> None:
        engine = MultiSeg(_optical_config(), NullProgress())
        result = engine.run(_halves(4))
        assert result.region_count == 2
        assert len(np.unique(result.labels[:, :2])) == 1
        assert len(np.unique(result.labels[:, 2:])) == 1
        assert result.labels.min() > 0
        engine.regions.check_invariants()

    def test_two_flat_halves_across_levels(self) -> None:
        engine = MultiSeg(_optical_config(levels=1, random_seeds=False), NullProgress())
        result = engine.run(_halves(8))
        assert result.levels == 1
        assert result.region_count == 2
        assert result.labels[0, 0] != result.labels[0, 7]
        assert len(np.unique(result.labels[:, :4])) == 1
        engine.regions.check_invariants()

    def test_region_summaries_and_adjacency(self) -> None:
        result = MultiSeg(_optical_config(), NullProgress()).run(_halves(4))
        left, right = int(result.labels[0, 0]), int(result.labels[0, 3])
        assert result.regions[left].size == 8
        assert result.regions[left].mean == pytest.approx((10.0,))
        assert result.regions[right].bbox == (0, 2, 4, 4)
        assert result.adjacency[left] == (right,)
        assert result.adjacency[right] == (left,)
        assert "2 region(s)" in str(result)

    def test_levels_are_clamped(self, caplog: pytest.LogCaptureFixture) -> None:
        engine = MultiSeg(_optical_config(levels=5), NullProgress())
        with caplog.at_level(logging.WARNING, logger="multiseg.engine"):
            result = engine.run(_halves(4))
        assert result.levels == 1
        assert "overridden to 1" in caplog.text

    def test_nodata_pixel_is_cleaned_up_by_min_area(self) -> None:
        data = np.full((4, 4), 10.0)
        data[0, 0] = np.nan
        engine = MultiSeg(_optical_config(min_area=2), NullProgress())
        result = engine.run(PixelGrid(data))
        assert result.region_count == 1
        assert (result.labels > 0).all()
        (summary,) = result.regions.values()
        assert summary.size == 16

    def test_band_selection(self) -> None:
        data = np.stack([np.zeros((4, 4)), _halves(4).data[0]])
        engine = MultiSeg(_optical_config(bands=[2]), NullProgress())
        result = engine.run(PixelGrid(data))
        assert engine.used_bands == [2]
        assert result.region_count == 2
        assert all(len(s.mean) == 1 for s in result.regions.values())

    def test_invalid_configuration_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            MultiSeg(_optical_config(cv=None), NullProgress()).run(_halves(4))

    def test_cancellation(self) -> None:
        with pytest.raises(SegmentationCancelled):
            MultiSeg(_optical_config(), _CancelledProgress()).run(_halves(4))

    def test_radar_run(self) -> None:
        engine = MultiSeg(_radar_config(levels=1, random_seeds=False), NullProgress())
        result = engine.run(_halves(8))
        assert result.region_count == 2
        engine.regions.check_invariants()


# ---------------------------------------------------------------------------
# Unit tests — preparation and thresholds
# ---------------------------------------------------------------------------


class TestThresholds:
    def test_optical_level_thresholds(self) -> None:
        engine = MultiSeg(_optical_config(levels=1), NullProgress())
        engine.prepare(_halves(8))
        engine.update_thresholds(1)
        assert engine.current_similarity == pytest.approx(5.0 / 4.0 * 2.5)
        assert engine.current_cv == pytest.approx(0.3 / 4.0 * 2.5)
        assert engine.strategy.get_param(image_variance_param(0)) == pytest.approx(9025.0)

    def test_full_resolution_thresholds_are_unchanged(self) -> None:
        engine = MultiSeg(_optical_config(levels=1), NullProgress())
        engine.prepare(_halves(8))
        engine.update_thresholds(0)
        assert engine.current_similarity == pytest.approx(5.0)
        assert engine.current_cv == pytest.approx(0.3)

    def test_radar_similarity_is_converted_from_db(self) -> None:
        engine = MultiSeg(_radar_config(), NullProgress())
        engine.prepare(PixelGrid(np.full((4, 4), 10.0)))
        engine.update_thresholds(0)
        assert engine.current_similarity == pytest.approx(10.0 * (10.0 ** 0.3 - 1.0))

    def test_radar_enl_and_critical_factor(self) -> None:
        engine = MultiSeg(_radar_config(levels=1), NullProgress())
        engine.prepare(_halves(8))
        engine.update_thresholds(1)
        assert engine.current_enl == 6
        expected = stats.gamma.ppf(0.95, 6) / 6
        assert engine.strategy.get_param(VCRITIC_FACTOR) == pytest.approx(expected)

    def test_amplitude_is_squared(self) -> None:
        engine = MultiSeg(_radar_config(radar_format=RadarFormat.AMPLITUDE), NullProgress())
        engine.prepare(PixelGrid(np.full((4, 4), 3.0)))
        assert engine.input_grid is not None
        assert engine.input_grid.get(0, 0) == 9.0

    def test_full_confidence_disables_cv_table(self) -> None:
        engine = MultiSeg(_radar_config(confidence_level=1.0), NullProgress())
        engine.prepare(PixelGrid(np.full((4, 4), 10.0)))
        assert engine.strategy.get_param(CONFIDENCE_LEVEL) == 0.99999
        assert engine.cv_table.empty


# ---------------------------------------------------------------------------
# Unit tests — split
# ---------------------------------------------------------------------------


class TestSplit:
    def _single_region(self, engine: MultiSeg, grid: PixelGrid) -> np.ndarray:
        engine.prepare(grid)
        assert engine.input_grid is not None
        values = engine.input_grid.filled(0.0)
        table = engine.regions
        table.initialize(values)
        merger = EuclideanStrategy()
        for region_id in range(1, 16):
            merger.merge(table.get(0), table.get(region_id))
            table.absorb(0, region_id)
        engine.update_thresholds(0)
        engine.update_region_statistics(values)
        return values

    def test_heterogeneous_region_is_shattered(self) -> None:
        engine = MultiSeg(_radar_config(), NullProgress())
        values = self._single_region(engine, _checkerboard(4, 1.0, 100.0))
        assert engine.regions.get(0).cv[0] == pytest.approx(49.5 / 50.5)

        new_ids = engine.split_regions(values)

        assert new_ids == set(range(16, 32))
        assert len(engine.regions) == 16
        assert 0 not in engine.regions
        assert engine.current_cv == pytest.approx(engine.cv_table.get_cv(4, 16))
        engine.regions.check_invariants()

    def test_homogeneous_region_is_kept(self) -> None:
        engine = MultiSeg(_radar_config(), NullProgress())
        values = self._single_region(engine, PixelGrid(np.full((4, 4), 50.0)))
        assert engine.split_regions(values) == set()
        assert len(engine.regions) == 1


# ---------------------------------------------------------------------------
# Unit tests — border adjustment and statistics
# ---------------------------------------------------------------------------


def _strip(engine: MultiSeg, row: list[float], absorbed: list[tuple[int, int]]) -> np.ndarray:
    """Segment a 1×N strip by hand: each (survivor, absorbed) pair is merged."""
    engine.prepare(PixelGrid(np.array([row], dtype=float)))
    assert engine.input_grid is not None
    values = engine.input_grid.filled(0.0)
    table = engine.regions
    table.initialize(values)
    merger = EuclideanStrategy()
    for survivor_id, absorbed_id in absorbed:
        merger.merge(table.get(survivor_id), table.get(absorbed_id))
        table.absorb(survivor_id, absorbed_id)
    engine.update_thresholds(0)
    engine.update_region_statistics(values)
    return values


class TestBorderAdjustment:
    def test_pixel_moves_to_better_fitting_region(self) -> None:
        engine = MultiSeg(_optical_config(), NullProgress())
        values = _strip(engine, [10.0, 10.0, 10.0, 50.0], [(0, 1), (2, 3)])
        assert engine.regions.get(2).mean[0] == 30.0

        assert engine.adjust_region_borders(values) == 1

        assert engine.regions.labels.tolist() == [[0, 0, 0, 2]]
        engine.update_region_statistics(values)
        assert engine.regions.get(0).size == 3
        assert engine.regions.get(2).size == 1
        assert engine.regions.get(2).mean[0] == 50.0
        engine.regions.check_invariants()

    def test_pixel_stays_when_no_side_wins(self) -> None:
        engine = MultiSeg(_optical_config(), NullProgress())
        values = _strip(engine, [10.0, 10.0, 50.0, 50.0], [(0, 1), (2, 3)])

        assert engine.adjust_region_borders(values) == 0

        assert engine.regions.labels.tolist() == [[0, 0, 2, 2]]
        engine.regions.check_invariants()


class TestStatisticsUpdate:
    def test_region_without_pixels_is_purged_and_neighbours_relinked(self) -> None:
        engine = MultiSeg(_optical_config(), NullProgress())
        values = _strip(engine, [10.0, 20.0, 30.0], [])
        table = engine.regions
        assert table.get(0).neighbours == {1}

        table.labels[0, 1] = 0
        table.get(0).bbox.extend_to(0, 1)
        engine.update_region_statistics(values)

        assert 1 not in table
        assert table.get(0).neighbours == {2}
        assert table.get(2).neighbours == {0}
        assert table.get(0).size == 2
        assert table.get(0).mean[0] == 15.0
        table.check_invariants()

    def test_variance_sample_cap_is_quadrupled_from_the_first_level(self) -> None:
        engine = MultiSeg(_optical_config(max_variance_samples=1), NullProgress())
        _strip(
            engine, [10.0, 30.0, 10.0, 30.0, 100.0], [(0, 1), (0, 2), (0, 3), (0, 4)]
        )
        region = engine.regions.get(0)
        assert region.mean[0] == 36.0
        # first four pixels around the mean of all five
        assert region.variance[0] == pytest.approx((26.0**2 + 6.0**2) / 2.0)
