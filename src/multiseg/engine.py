"""
MultiSeg — Segmentation Engine
===============================
Multi-resolution region growing, from the coarsest pyramid level to
full resolution.

Pipeline of :meth:`MultiSeg.run`:

1. Pre-process the input (band selection, radar amplitude → intensity,
   similarity dB → intensity) and build the pyramid.
2. Coarsest level: one region per pixel, then region growing.
3. Every finer level: resize the label grid, recompute statistics,
   adjust region borders, recompute statistics, split heterogeneous
   regions (not at full resolution unless requested), grow the new
   regions, grow all regions, recompute statistics.
4. Minimum-area cleanup with the Euclidean strategy.
5. Final notification of the outputters.

Usage::

    from multiseg.engine import MultiSeg
    from multiseg.grid import PixelGrid

    engine = MultiSeg(config)
    result = engine.run(PixelGrid(array))
    print(result)
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import numpy.typing as npt
from scipy import stats

from multiseg.config import SegmentationConfig
from multiseg.cv_table import CVTable
from multiseg.enums import ImageType, RadarFormat
from multiseg.exceptions import RasterError, SegmentationCancelled
from multiseg.grid import PixelGrid, amplitude_to_intensity, mean_and_variance
from multiseg.growth import RegionGrower
from multiseg.mergers import (
    CONFIDENCE_LEVEL,
    CV_THRESHOLD,
    ENL,
    THRESHOLD,
    VCRITIC_FACTOR,
    EuclideanStrategy,
    MergeStrategy,
    create_strategy,
    image_variance_param,
)
from multiseg.progress import LoggingProgress, ProgressSink
from multiseg.pyramid import Pyramid, max_levels
from multiseg.region import DUMMY, BoundingBox, Region, RegionTable

if TYPE_CHECKING:
    from multiseg.outputs import Outputter

logger = logging.getLogger("multiseg.engine")

MAX_ENL = 250


# ---------------------------------------------------------------------------
# Result data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegionSummary:
    """Read-only snapshot of one region.

    Attributes:
        label: Value of the region in the exported label grid (id + 1).
        size: Pixel count.
        bbox: ``(row_start, col_start, row_bound, col_bound)``.
        mean: Per-band mean.
        variance: Per-band variance.
        cv: Per-band coefficient of variation.
    """

    label: int
    size: int
    bbox: tuple[int, int, int, int]
    mean: tuple[float, ...]
    variance: tuple[float, ...]
    cv: tuple[float, ...]

    @classmethod
    def from_region(cls, region: Region) -> "RegionSummary":
        return cls(
            label=region.id + 1,
            size=region.size,
            bbox=region.bbox.as_tuple(),
            mean=tuple(float(v) for v in region.mean),
            variance=tuple(float(v) for v in region.variance),
            cv=tuple(float(v) for v in region.cv),
        )


@dataclass(frozen=True)
class SegmentationResult:
    """Final products of a run.

    Attributes:
        labels: ``uint32`` label grid; 0 means no region.
        regions: Label → :class:`RegionSummary`.
        adjacency: Label → sorted labels of the neighbouring regions.
        levels: Number of pyramid levels actually used.
    """

    labels: npt.NDArray[np.uint32]
    regions: dict[int, RegionSummary]
    adjacency: dict[int, tuple[int, ...]]
    levels: int

    @property
    def region_count(self) -> int:
        return len(self.regions)

    def __str__(self) -> str:
        rows, cols = self.labels.shape
        return f"{self.region_count:,} region(s) on a {rows}×{cols} grid ({self.levels} level(s))"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class MultiSeg:
    """Multi-resolution region-growing segmentation engine.

    The region table and label grid are owned by the engine for the
    duration of a run; outputters only read them through the accessors.

    Args:
        config: Validated (or to-be-validated) segmentation options.
        progress: Progress / cancellation sink.  Defaults to
                  :class:`~multiseg.progress.LoggingProgress`.
    """

    def __init__(self, config: SegmentationConfig, progress: ProgressSink | None = None) -> None:
        self.config = config
        self.progress: ProgressSink = progress or LoggingProgress()
        self._outputters: list[Outputter] = []

        self._table = RegionTable()
        self._strategy: MergeStrategy = EuclideanStrategy(config.strict)
        self._grower = RegionGrower(self._table, self._strategy, progress=self.progress)
        self._cv_table = CVTable()
        self._pyramid: Pyramid | None = None
        self._input_grid: PixelGrid | None = None
        self._values: npt.NDArray[np.float64] | None = None

        self._bands: list[int] = []
        self._levels = 0
        self._current_level = 0
        self._similarity = float(config.similarity)
        self._confidence_level = config.confidence_level
        self._current_similarity = self._similarity
        self._current_enl = 0
        self._current_cv = sys.float_info.max
        self._variance_samples = config.max_variance_samples

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def add_outputter(self, outputter: Outputter) -> None:
        self._outputters.append(outputter)

    @property
    def labels(self) -> npt.NDArray[np.uint32]:
        """Exported label grid: region id + 1, 0 for unassigned cells."""
        internal = self._table.labels
        return np.where(internal == DUMMY, 0, internal + 1).astype(np.uint32)

    @property
    def regions(self) -> RegionTable:
        return self._table

    @property
    def input_grid(self) -> PixelGrid | None:
        """Input grid after band selection and radar conversion."""
        return self._input_grid

    @property
    def used_bands(self) -> list[int]:
        """1-based raster bands being segmented."""
        return [b + 1 for b in self._bands]

    @property
    def current_level(self) -> int:
        return self._current_level

    @property
    def levels(self) -> int:
        return self._levels

    @property
    def pyramid(self) -> Pyramid | None:
        return self._pyramid

    @property
    def strategy(self) -> MergeStrategy:
        return self._strategy

    @property
    def cv_table(self) -> CVTable:
        return self._cv_table

    @property
    def current_similarity(self) -> float:
        return self._current_similarity

    @property
    def current_enl(self) -> int:
        return self._current_enl

    @property
    def current_cv(self) -> float:
        return self._current_cv

    def result(self) -> SegmentationResult:
        regions = self._table.values()
        return SegmentationResult(
            labels=self.labels,
            regions={r.id + 1: RegionSummary.from_region(r) for r in regions},
            adjacency={r.id + 1: tuple(sorted(n + 1 for n in r.neighbours)) for r in regions},
            levels=self._levels,
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, grid: PixelGrid) -> SegmentationResult:
        """Segment *grid* and return the final result.

        Raises:
            ConfigurationError: If the configuration is invalid for *grid*.
            CVTableError: If a radar CV table cannot be loaded.
            SegmentationCancelled: If the progress sink asks to stop.
        """
        self.prepare(grid)
        pyramid = self._built_pyramid()
        self.progress.set_steps(self._levels + 2)

        if self.config.output_pyramid:
            for outputter in self._outputters:
                outputter.on_pyramid_built(pyramid)

        coarsest = pyramid.get_level(self._levels)
        self._values = coarsest.filled(0.0)
        self._table.initialize(self._values)
        self.update_thresholds(self._levels)
        self.execute_region_growing(None, consider_region_vs_region=True)
        if self._levels and self.config.notify_intermediate:
            self._notify()
        logger.info("Level %d completed — %d regions", self._current_level, len(self._table))
        self._advance(1, "coarsest level")

        for level in range(self._levels - 1, -1, -1):
            self.refine_level(level)
            self._advance(self._levels - level + 1, f"level {level}")

        merged = self.process_small_regions()
        self.update_region_statistics(self._values)
        logger.debug("Minimum area cleanup merged %d region(s)", merged)

        self._notify()
        self.progress.advance(self._levels + 2)
        logger.info("Segmentation completed — %d regions", len(self._table))
        return self.result()

    def prepare(self, grid: PixelGrid) -> None:
        """Validate the configuration, pre-process *grid* and build the pyramid."""
        config = self.config
        config.validate(grid.band_count())

        if config.bands:
            self._bands = [b - 1 for b in config.bands]
        else:
            self._bands = list(range(grid.band_count()))
        grid = grid.select_bands(self._bands)

        if config.image_type == ImageType.RADAR:
            if config.radar_format == RadarFormat.AMPLITUDE:
                grid = amplitude_to_intensity(grid)
            means, _ = mean_and_variance(grid)
            min_mean = float(means.min())
            self._similarity = min_mean * (10.0 ** (config.similarity / 10.0) - 1.0)
            logger.debug(
                "Similarity %.3g dB → %.6g in intensity (minimum band mean %.6g)",
                config.similarity, self._similarity, min_mean,
            )
        else:
            self._similarity = float(config.similarity)
        self._input_grid = grid

        rows, cols = grid.dimensions()
        limit = max_levels(rows, cols)
        self._levels = config.levels
        if self._levels > limit:
            logger.warning("Number of compression levels overridden to %d.", limit)
            self._levels = limit

        self._strategy = create_strategy(config)
        self._grower = RegionGrower(
            self._table,
            self._strategy,
            np.random.default_rng(config.seed) if config.random_seeds else None,
            mutual_best_fit=config.mutual_best_fit,
            grow_until_stop=config.grow_until_stop,
            progress=self.progress,
        )

        if config.is_radar_cartoon:
            self._confidence_level = config.confidence_level
            if self._confidence_level == 1.0:
                self._confidence_level = 0.99999
            self._strategy.set_param(CONFIDENCE_LEVEL, self._confidence_level)
            if config.cv_tables_dir is not None:
                self._cv_table = CVTable.load(self._confidence_level, config.cv_tables_dir)
            else:
                self._cv_table = CVTable.generate(self._confidence_level)

        self._variance_samples = config.max_variance_samples
        self._pyramid = Pyramid(grid, self._levels)

    def refine_level(self, level: int) -> None:
        """Carry the segmentation from ``level + 1`` down to *level*."""
        pyramid = self._built_pyramid()
        pyramid.release_level(level + 1)
        grid = pyramid.get_level(level)
        self._values = grid.filled(0.0)

        self._table.resize(grid.dimensions(), 2)
        self.update_thresholds(level)
        self.update_region_statistics(self._values)
        self.adjust_region_borders(self._values)
        self.update_region_statistics(self._values)

        if level != 0 or self.config.split_last_level:
            new_ids = self.split_regions(self._values)
            self.execute_region_growing(new_ids, consider_region_vs_region=False)

        self.execute_region_growing(None, consider_region_vs_region=True)
        self.update_region_statistics(self._values)

        if level != 0 and self.config.notify_intermediate:
            self._notify()
        logger.info("Level %d completed — %d regions", level, len(self._table))

    def execute_region_growing(
        self, members: set[int] | None, consider_region_vs_region: bool = True
    ) -> int:
        """Grow *members* (``None`` = every region) at the current threshold."""
        self._grower.consider_region_vs_region = consider_region_vs_region
        merged = self._grower.grow(
            members,
            self._current_similarity,
            annealing_steps=self.config.annealing_steps,
            max_iterations=self.config.max_iterations,
            randomly=self.config.random_seeds,
        )
        logger.debug("Level %d growth merged %d region(s)", self._current_level, merged)
        return merged

    def process_small_regions(self) -> int:
        """Merge regions below the minimum area using the Euclidean strategy."""
        self._strategy = EuclideanStrategy(self.config.strict)
        self._strategy.set_param(THRESHOLD, self._current_similarity)
        self._grower.strategy = self._strategy
        self._grower.consider_region_vs_region = True
        return self._grower.process_small_regions(self.config.min_area)

    # ------------------------------------------------------------------
    # Thresholds
    # ------------------------------------------------------------------

    def update_thresholds(self, level: int) -> None:
        """Derive the level-dependent thresholds and store them in the strategy.

        The three lag terms share one formula ``(2^L - 1) / 2^L × 0.5``;
        correlation coefficients are not modelled.
        """
        self._current_level = level
        lag01 = lag10 = lag11 = ((2.0 ** level - 1.0) / 2.0 ** level) * 0.5
        decay = 1.0 + 2.0 * (lag01 + lag10 + lag11)

        self._current_similarity = (self._similarity / 4.0 ** level) * decay
        self._strategy.set_param(THRESHOLD, self._current_similarity)

        if self.config.enl is not None:
            enl = self.config.enl * 4.0 ** level / decay
            self._current_enl = max(1, min(int(enl), MAX_ENL))

        if self.config.cv is not None:
            self._current_cv = (self.config.cv / 4.0 ** level) * decay
        self._strategy.set_param(CV_THRESHOLD, self._current_cv)

        if self._variance_samples is not None:
            self._variance_samples *= 4

        if self.config.is_radar_cartoon:
            vcritic = float(stats.gamma.ppf(self._confidence_level, self._current_enl))
            self._strategy.set_param(VCRITIC_FACTOR, vcritic / self._current_enl)
            self._strategy.set_param(ENL, self._current_enl)

        if self.config.is_optical_cartoon:
            _, variances = self._built_pyramid().build_stats(level)
            for band, variance in enumerate(variances):
                self._strategy.set_param(image_variance_param(band), float(variance))

        logger.debug(
            "Level %d thresholds: similarity=%.6g enl=%d cv=%.6g",
            level, self._current_similarity, self._current_enl, self._current_cv,
        )

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def update_region_statistics(self, values: npt.NDArray[np.float64]) -> None:
        """Recompute size, mean, variance, CV and extent of every region.

        Regions that no longer own a pixel are purged and their neighbours
        linked together.
        """
        labels = self._table.labels
        purged = 0
        for region_id in self._table.ids():
            region = self._table.get(region_id)
            box = region.bbox
            rows, cols = np.nonzero(labels[box.slices()] == region_id)
            if rows.size == 0:
                self._table.remove(region_id, link_neighbourhood=True)
                purged += 1
                continue

            rows = rows + box.row_start
            cols = cols + box.col_start
            pixels = values[:, rows, cols]
            mean = pixels.mean(axis=1)
            sample = pixels if self._variance_samples is None else pixels[:, : self._variance_samples]
            variance = ((sample - mean[:, np.newaxis]) ** 2).mean(axis=1)
            cv = np.zeros_like(mean)
            np.divide(np.sqrt(variance), mean, out=cv, where=mean != 0.0)

            region.size = int(rows.size)
            region.mean = mean
            region.variance = variance
            region.cv = cv
            region.bbox = BoundingBox(
                int(rows.min()), int(cols.min()), int(rows.max()) + 1, int(cols.max()) + 1
            )
        if purged:
            logger.debug("Purged %d empty region(s)", purged)

    # ------------------------------------------------------------------
    # Border adjustment
    # ------------------------------------------------------------------

    def adjust_region_borders(self, values: npt.NDArray[np.float64]) -> int:
        """Renegotiate boundary pixels between adjacent regions.

        A cross-border pixel moves to this region only when this region
        is strictly the better fit for its own boundary pixel and is at
        least as good a fit for the neighbour pixel.  Both pixels are then
        settled for the rest of the pass, as they are when neither side
        wins.

        Returns:
            Number of reassigned pixels.
        """
        settled: set[tuple[int, int]] = set()
        moved = 0
        for region_id in self._table.ids():
            moved += self._adjust_borders_of(self._table.get(region_id), values, settled)
        logger.debug("Border adjustment moved %d pixel(s)", moved)
        return moved

    def _adjust_borders_of(
        self,
        region: Region,
        values: npt.NDArray[np.float64],
        settled: set[tuple[int, int]],
    ) -> int:
        labels = self._table.labels
        row_start, col_start, row_bound, col_bound = region.bbox.as_tuple()
        moved = 0
        for row in range(row_start, row_bound):
            for col in range(col_start, col_bound):
                if (row, col) in settled or labels[row, col] != region.id:
                    continue
                border = self._border_neighbour(row, col, region.id)
                if border is None:
                    continue
                n_row, n_col, neighbour_id = border
                if (n_row, n_col) in settled:
                    continue

                neighbour = self._table.get(neighbour_id)
                self._table.link(region.id, neighbour_id)

                destiny = self._border_destiny(
                    values[:, row, col], region, values[:, n_row, n_col], neighbour
                )
                if destiny is None:
                    settled.add((row, col))
                    settled.add((n_row, n_col))
                    continue
                if destiny == neighbour_id:
                    continue

                labels[n_row, n_col] = region.id
                settled.add((row, col))
                settled.add((n_row, n_col))
                region.bbox.extend_to(n_row, n_col)
                moved += 1
        return moved

    def _border_neighbour(self, row: int, col: int, region_id: int) -> tuple[int, int, int] | None:
        """First 4-neighbour of ``(row, col)`` in another region (left, right, top, bottom)."""
        labels = self._table.labels
        rows, cols = labels.shape
        for n_row, n_col in ((row, col - 1), (row, col + 1), (row - 1, col), (row + 1, col)):
            if 0 <= n_row < rows and 0 <= n_col < cols:
                label = int(labels[n_row, n_col])
                if label != region_id:
                    return n_row, n_col, label
        return None

    def _border_destiny(
        self,
        pixel_a: npt.NDArray[np.float64],
        region_a: Region,
        pixel_b: npt.NDArray[np.float64],
        region_b: Region,
    ) -> int | None:
        dissimilarity = self._strategy.dissimilarity
        va_a = dissimilarity(pixel_a, region_a)
        vb_a = dissimilarity(pixel_a, region_b)
        vb_b = dissimilarity(pixel_b, region_b)
        va_b = dissimilarity(pixel_b, region_a)

        if va_a < vb_a and vb_b >= va_b:
            return region_a.id
        if va_a > vb_a and vb_b <= va_b:
            return region_b.id
        return None

    # ------------------------------------------------------------------
    # Split
    # ------------------------------------------------------------------

    def split_regions(self, values: npt.NDArray[np.float64]) -> set[int]:
        """Shatter every heterogeneous region into single-pixel regions.

        Radar cartoon runs take the CV threshold from the CV table for the
        current number of looks and the region size.

        Returns:
            Ids of the newly created regions.
        """
        new_ids: set[int] = set()
        split = 0
        for region_id in self._table.ids():
            region = self._table.get(region_id)
            if self.config.is_radar_cartoon:
                self._current_cv = self._cv_table.get_cv(self._current_enl, region.size)
                self._strategy.set_param(CV_THRESHOLD, self._current_cv)
            if self._strategy.is_homogeneous(region):
                continue
            new_ids.update(self._split_region(region, values))
            split += 1
        logger.debug("Split %d heterogeneous region(s) into %d pixel(s)", split, len(new_ids))
        return new_ids

    def _split_region(self, region: Region, values: npt.NDArray[np.float64]) -> list[int]:
        table = self._table
        labels = table.labels
        rows, cols = table.pixels(region.id)
        labels[rows, cols] = DUMMY
        n_rows, n_cols = labels.shape

        created = []
        for row, col in zip(rows.tolist(), cols.tolist()):
            new_id = table.next_id()
            table.add(Region.from_pixel(new_id, values[:, row, col], row, col))
            labels[row, col] = new_id
            for n_row, n_col in ((row - 1, col), (row, col - 1), (row + 1, col), (row, col + 1)):
                if 0 <= n_row < n_rows and 0 <= n_col < n_cols and labels[n_row, n_col] != DUMMY:
                    table.link(new_id, int(labels[n_row, n_col]))
            created.append(new_id)

        table.remove(region.id)
        return created

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _built_pyramid(self) -> Pyramid:
        if self._pyramid is None:
            raise RasterError("The pyramid has not been built; call prepare() first.")
        return self._pyramid

    def _notify(self) -> None:
        for outputter in self._outputters:
            outputter.on_level_result(self, self._current_level)

    def _advance(self, step: int, stage: str) -> None:
        self.progress.advance(step)
        if self.progress.cancelled():
            raise SegmentationCancelled(stage)
