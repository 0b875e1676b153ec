"""
MultiSeg — Input Validators
============================
Static utility methods used to validate preconditions before any
segmentation work begins.

All methods raise an appropriate exception from
:mod:`multiseg.exceptions` rather than returning booleans — this keeps
``validate`` implementations short and readable::

    def validate(self) -> None:
        Validators.assert_positive("similarity", self.similarity)
        Validators.assert_in_range("confidence_level", self.confidence_level, 0.0, 1.0)
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from multiseg.exceptions import (
    BandIndexError,
    ConfigurationError,
    InputValidationError,
    OutputWriteError,
)


class Validators:
    """Collection of static precondition checks.

    All methods are ``@staticmethod`` — this class is never instantiated.
    It exists purely as a logical namespace.
    """

    # ------------------------------------------------------------------
    # File-system checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_file_exists(path: Path) -> None:
        """Assert that *path* points to an existing regular file.

        Raises:
            InputValidationError: If *path* does not exist or is a
                directory rather than a file.
        """
        path = Path(path)
        if not path.exists():
            raise InputValidationError(
                f"Input file not found: '{path}'. "
                "Check that the path is correct and the file exists."
            )
        if path.is_dir():
            raise InputValidationError(
                f"Expected a file but got a directory: '{path}'."
            )

    @staticmethod
    def assert_output_dir_writable(output_dir: Path) -> None:
        """Assert that *output_dir* exists or can be created.

        Args:
            output_dir: Directory that will receive the output files.

        Raises:
            OutputWriteError: If the directory cannot be created.
        """
        try:
            Path(output_dir).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(str(output_dir), str(exc)) from exc

    @staticmethod
    def assert_supported_extension(path: Path, extensions: Sequence[str]) -> None:
        """Assert that *path* has one of the allowed file extensions.

        Args:
            path: File path to check.
            extensions: Allowed extensions, each starting with a dot
                        (e.g. ``[".tif", ".tiff"]``).

        Raises:
            InputValidationError: If the file extension is not in
                *extensions*.
        """
        path = Path(path)
        suffix = path.suffix.lower()
        allowed = [ext.lower() for ext in extensions]
        if suffix not in allowed:
            raise InputValidationError(
                f"Unsupported file extension '{suffix}' for '{path.name}'. "
                f"Accepted extensions: {', '.join(allowed)}"
            )

    # ------------------------------------------------------------------
    # Raster checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_band_index_valid(band_index: int, total_bands: int) -> None:
        """Assert that *band_index* is within the valid range for a raster.

        Args:
            band_index: 1-based band index requested by the user.
            total_bands: Total number of bands in the raster.

        Raises:
            BandIndexError: If *band_index* is less than 1 or exceeds
                *total_bands*.
        """
        if band_index < 1 or band_index > total_bands:
            raise BandIndexError(band_index, total_bands)

    # ------------------------------------------------------------------
    # Parameter checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_present(name: str, value: object, context: str) -> None:
        """Assert that a parameter required by *context* was supplied.

        Raises:
            ConfigurationError: If *value* is ``None``.

        Example::

            Validators.assert_present("enl", config.enl, "radar cartoon images")
        """
        if value is None:
            raise ConfigurationError(name, f"is required for {context}")

    @staticmethod
    def assert_positive(name: str, value: float) -> None:
        """Assert that *value* is strictly greater than zero.

        Raises:
            ConfigurationError: If *value* is zero or negative.
        """
        if value <= 0:
            raise ConfigurationError(name, f"must be greater than 0 (got {value})")

    @staticmethod
    def assert_non_negative(name: str, value: float) -> None:
        """Assert that *value* is zero or greater.

        Raises:
            ConfigurationError: If *value* is negative.
        """
        if value < 0:
            raise ConfigurationError(name, f"must not be negative (got {value})")

    @staticmethod
    def assert_in_range(name: str, value: float, low: float, high: float) -> None:
        """Assert that ``low < value <= high``.

        Raises:
            ConfigurationError: If *value* falls outside the interval.
        """
        if not low < value <= high:
            raise ConfigurationError(
                name, f"must be in the interval ({low}, {high}] (got {value})"
            )
