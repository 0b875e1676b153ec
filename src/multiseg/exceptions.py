"""
MultiSeg — Custom Exception Hierarchy
======================================
Every MultiSeg module raises exceptions from this module so callers can
catch them at the right level of granularity.

Hierarchy::

    MultiSegError                        ← catch-all base
    ├── InputValidationError             ← bad files, bad arguments
    │   ├── ConfigurationError           ← missing / out-of-range parameter
    │   └── BandIndexError               ← requested band does not exist
    ├── RasterError                      ← rasterio / numpy raster issues
    │   └── PyramidLevelError            ← level released or out of range
    ├── CVTableError                     ← table of coefficients of variation
    ├── RegionTableError                 ← region graph invariant violated
    ├── SegmentationCancelled            ← progress sink requested a stop
    └── OutputWriteError                 ← cannot write to output path

Usage::

    from multiseg.exceptions import ConfigurationError

    raise ConfigurationError("enl", "must be greater than 0.0")
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class MultiSegError(Exception):
    """Base exception for all MultiSeg errors.

    Catch this to handle any segmentation error without caring about
    the exact subtype.

    Args:
        message: Human-readable description of the error.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(MultiSegError):
    """Raised when inputs fail pre-processing validation.

    This is the parent class for more specific input problems.
    """


class ConfigurationError(InputValidationError):
    """Raised when a segmentation parameter is missing or out of range
    for the selected image type / image model combination.

    Args:
        parameter: Name of the offending parameter (e.g. ``"enl"``).
        reason: Short explanation of what is wrong with it.

    Example::

        raise ConfigurationError("confidence_level", "is required for optical images")
    """

    def __init__(self, parameter: str, reason: str) -> None:
        super().__init__(f"Invalid parameter '{parameter}': {reason}")
        self.parameter: str = parameter
        self.reason: str = reason


class BandIndexError(InputValidationError):
    """Raised when a requested raster band index does not exist.

    Args:
        band_index: The 1-based band number that was requested.
        total_bands: Total number of bands in the raster.

    Example::

        raise BandIndexError(band_index=5, total_bands=4)
    """

    def __init__(self, band_index: int, total_bands: int) -> None:
        super().__init__(
            f"Band {band_index} does not exist. "
            f"This raster has {total_bands} band(s) (1-indexed)."
        )
        self.band_index: int = band_index
        self.total_bands: int = total_bands


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


class RasterError(MultiSegError):
    """Raised for general raster processing failures (rasterio / numpy).

    Subclass this for more specific raster errors.
    """


class PyramidLevelError(RasterError):
    """Raised when a pyramid level is requested after release or out of range.

    Args:
        level: The requested level index.
        reason: Why the level cannot be served.
    """

    def __init__(self, level: int, reason: str) -> None:
        super().__init__(f"Pyramid level {level} is not available: {reason}")
        self.level: int = level
        self.reason: str = reason


# ---------------------------------------------------------------------------
# Coefficient of variation table
# ---------------------------------------------------------------------------


class CVTableError(MultiSegError):
    """Raised when a table of coefficients of variation cannot be used.

    Common causes: unsupported confidence level, missing or malformed
    ``.csv`` file, or a lookup key that is absent from the loaded table.
    """


# ---------------------------------------------------------------------------
# Region graph
# ---------------------------------------------------------------------------


class RegionTableError(MultiSegError):
    """Raised when the region table or the label grid is inconsistent.

    These conditions are programming errors (unknown region id, invalid
    bounding box, broken adjacency symmetry) reported explicitly instead
    of aborting the interpreter.
    """


class SegmentationCancelled(MultiSegError):
    """Raised when the progress sink reports a cancellation request.

    Args:
        stage: Name of the pass that observed the request.
    """

    def __init__(self, stage: str) -> None:
        super().__init__(f"Segmentation cancelled during '{stage}'.")
        self.stage: str = stage


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputWriteError(MultiSegError):
    """Raised when an output file cannot be written to disk.

    Args:
        output_path: String representation of the path that failed.
        reason: Underlying OS or library error message.

    Example::

        raise OutputWriteError("/read-only/dir/labels.tif", "Permission denied")
    """

    def __init__(self, output_path: str, reason: str) -> None:
        super().__init__(
            f"Failed to write output to '{output_path}': {reason}"
        )
        self.output_path: str = output_path
        self.reason: str = reason
