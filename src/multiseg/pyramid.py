"""
MultiSeg — Resolution Pyramid
==============================
Builds successively half-resolution versions of the input grid by
non-overlapping 2×2 box averaging.

Level 0 is the full-resolution grid, level ``n`` the coarsest.  Level
dimensions are ``ceil(rows / 2) × ceil(cols / 2)`` of the level below;
only valid contributing pixels are averaged, and a cell with no valid
contributor is left as no data.

Usage::

    pyramid = Pyramid(grid, n_levels=3)
    coarse = pyramid.get_level(3)
    pyramid.release_level(3)
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import numpy.typing as npt

from multiseg.exceptions import PyramidLevelError
from multiseg.grid import PixelGrid, mean_and_variance

logger = logging.getLogger("multiseg.pyramid")


def max_levels(rows: int, cols: int, minimum_size: int = 2) -> int:
    """Return the largest level count whose smallest side stays >= *minimum_size*.

    Example::

        max_levels(8, 8)       # 2  (4×4, 2×2)
        max_levels(3, 100)     # 0
    """
    levels = 0
    size = min(rows, cols) // 2
    while size >= minimum_size:
        levels += 1
        size //= 2
    return levels


def upsample_labels(
    labels: npt.NDArray[np.int64],
    shape: tuple[int, int],
    scale: int = 2,
) -> npt.NDArray[np.int64]:
    """Nearest-neighbour enlarge a label grid by *scale* and crop it to *shape*."""
    rows, cols = shape
    src_rows, src_cols = labels.shape
    row_index = np.minimum(np.arange(rows) // scale, src_rows - 1)
    col_index = np.minimum(np.arange(cols) // scale, src_cols - 1)
    return labels[np.ix_(row_index, col_index)].copy()


def _downsample(grid: PixelGrid) -> PixelGrid:
    bands, rows, cols = grid.data.shape
    out_rows, out_cols = -(-rows // 2), -(-cols // 2)

    valid = grid.valid_mask()
    sums = np.zeros((bands, out_rows * 2, out_cols * 2), dtype=np.float64)
    counts = np.zeros_like(sums)
    sums[:, :rows, :cols] = np.where(valid, grid.data, 0.0)
    counts[:, :rows, :cols] = valid

    sums = sums.reshape(bands, out_rows, 2, out_cols, 2).sum(axis=(2, 4))
    counts = counts.reshape(bands, out_rows, 2, out_cols, 2).sum(axis=(2, 4))

    averaged = np.full_like(sums, np.nan)
    np.divide(sums, counts, out=averaged, where=counts > 0)

    level = PixelGrid(averaged)
    level.nodata = grid.nodata
    return level


class Pyramid:
    """Ordered list of half-resolution levels built from a base grid.

    Args:
        base: Full-resolution grid.
        n_levels: Number of levels to build above the base.
        bands: 0-based bands kept in every level.  ``None`` keeps all.
    """

    def __init__(
        self,
        base: PixelGrid,
        n_levels: int,
        bands: Sequence[int] | None = None,
    ) -> None:
        if bands is not None:
            base = base.select_bands(bands)
        self._levels: list[PixelGrid | None] = [base]
        level_grid = base
        for i in range(1, n_levels + 1):
            level_grid = _downsample(level_grid)
            self._levels.append(level_grid)
            logger.debug("Pyramid level %d built: %d×%d", i, *level_grid.dimensions())

    @property
    def n_levels(self) -> int:
        """Number of levels above the base (the coarsest level index)."""
        return len(self._levels) - 1

    @staticmethod
    def scale_factor(level: int) -> int:
        return 2 ** level

    def get_level(self, level: int) -> PixelGrid:
        """Return level *level*.

        Raises:
            PyramidLevelError: If the level is out of range or was released.
        """
        if not 0 <= level < len(self._levels):
            raise PyramidLevelError(level, f"valid levels are 0..{self.n_levels}")
        grid = self._levels[level]
        if grid is None:
            raise PyramidLevelError(level, "it has been released")
        return grid

    def release_level(self, level: int) -> None:
        """Free the storage of *level*; later access raises."""
        if not 0 <= level < len(self._levels):
            raise PyramidLevelError(level, f"valid levels are 0..{self.n_levels}")
        self._levels[level] = None

    def build_stats(self, level: int) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Per-band global mean and variance of *level*."""
        return mean_and_variance(self.get_level(level))

    def __len__(self) -> int:
        return len(self._levels)
