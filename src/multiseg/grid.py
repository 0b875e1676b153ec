"""
MultiSeg — Pixel Grid & Statistics
===================================
In-memory multi-band raster accessed pixel by pixel, plus the global
statistics used by the threshold computation.

No-data cells are stored as ``NaN``.  Reading one returns ``None``
rather than raising, so the engine can treat it as value ``0.0``.

Classes / functions:
    PixelGrid                 ``(bands, rows, cols)`` float64 raster.
    mean_and_variance         Per-band global mean and variance.
    amplitude_to_intensity    Square every pixel of a radar amplitude grid.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import numpy.typing as npt

from multiseg.exceptions import RasterError


class PixelGrid:
    """A rectangular multi-band raster held as a float64 numpy array.

    Args:
        data: Array shaped ``(bands, rows, cols)`` or ``(rows, cols)``.
        nodata: Sentinel value marking missing pixels.  Matching cells
                are converted to ``NaN`` on construction.

    Example::

        grid = PixelGrid(np.array([[1.0, 2.0], [3.0, 4.0]]))
        grid.get(1, 0)        # 3.0
        grid.get(5, 5)        # None (outside the grid)
    """

    def __init__(self, data: npt.ArrayLike, nodata: float | None = None) -> None:
        array = np.array(data, dtype=np.float64)
        if array.ndim == 2:
            array = array[np.newaxis, ...]
        if array.ndim != 3:
            raise RasterError(
                f"Pixel grid must be 2-D or 3-D, got an array with {array.ndim} dimension(s)."
            )
        if nodata is not None and not np.isnan(nodata):
            array[array == nodata] = np.nan
        self.data: npt.NDArray[np.float64] = array
        self.nodata: float | None = nodata

    @classmethod
    def from_masked(cls, array: np.ma.MaskedArray, nodata: float | None = None) -> "PixelGrid":
        """Build a grid from a rasterio masked read (masked cells become no data)."""
        return cls(np.ma.filled(array.astype(np.float64), np.nan), nodata=nodata)

    # ------------------------------------------------------------------
    # Pixel access
    # ------------------------------------------------------------------

    def get(self, row: int, col: int, band: int = 0) -> float | None:
        """Return the value at ``(row, col, band)`` or ``None`` for no data."""
        if not self._in_range(row, col, band):
            return None
        value = self.data[band, row, col]
        if np.isnan(value):
            return None
        return float(value)

    def set(self, row: int, col: int, value: float, band: int = 0) -> bool:
        """Write *value* at ``(row, col, band)``; ``False`` when out of range."""
        if not self._in_range(row, col, band):
            return False
        self.data[band, row, col] = value
        return True

    def dimensions(self) -> tuple[int, int]:
        return int(self.data.shape[1]), int(self.data.shape[2])

    def band_count(self) -> int:
        return int(self.data.shape[0])

    # ------------------------------------------------------------------
    # Whole-grid helpers
    # ------------------------------------------------------------------

    def valid_mask(self) -> npt.NDArray[np.bool_]:
        return ~np.isnan(self.data)

    def filled(self, fill: float = 0.0) -> npt.NDArray[np.float64]:
        """Return a copy of the data with every no-data cell set to *fill*."""
        return np.where(np.isnan(self.data), fill, self.data)

    def select_bands(self, indices: Sequence[int]) -> "PixelGrid":
        """Return a new grid holding only the given 0-based bands, in order."""
        for index in indices:
            if not 0 <= index < self.band_count():
                raise RasterError(
                    f"Band {index} is outside the grid (0..{self.band_count() - 1})."
                )
        selected = PixelGrid(self.data[list(indices)].copy())
        selected.nodata = self.nodata
        return selected

    def _in_range(self, row: int, col: int, band: int) -> bool:
        bands, rows, cols = self.data.shape
        return 0 <= band < bands and 0 <= row < rows and 0 <= col < cols

    def __repr__(self) -> str:
        bands, rows, cols = self.data.shape
        return f"PixelGrid(bands={bands}, rows={rows}, cols={cols})"


# ---------------------------------------------------------------------------
# Statistics provider
# ---------------------------------------------------------------------------


def mean_and_variance(
    grid: PixelGrid,
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Compute the per-band mean and population variance of the valid pixels.

    A band without a single valid pixel reports ``0.0`` for both values.

    Returns:
        Two float64 arrays of length ``grid.band_count()``.
    """
    means = np.zeros(grid.band_count(), dtype=np.float64)
    variances = np.zeros(grid.band_count(), dtype=np.float64)
    for band in range(grid.band_count()):
        values = grid.data[band]
        values = values[~np.isnan(values)]
        if values.size == 0:
            continue
        means[band] = float(values.mean())
        variances[band] = float(values.var())
    return means, variances


def amplitude_to_intensity(grid: PixelGrid) -> PixelGrid:
    """Square every pixel of an amplitude grid; no-data cells stay no data."""
    intensity = PixelGrid(grid.data * grid.data)
    intensity.nodata = grid.nodata
    return intensity
