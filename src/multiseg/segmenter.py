"""
MultiSeg — Raster Segmenter
============================
File-based front end: reads a GeoTIFF with rasterio, runs
:class:`~multiseg.engine.MultiSeg` and writes the results with a
:class:`~multiseg.outputs.FileOutputter`.

Usage::

    from pathlib import Path
    from multiseg.segmenter import RasterSegmenter

    tool = RasterSegmenter(
        input_path=Path("data/scene.tif"),
        output_dir=Path("output/segmentation"),
        config=config,
    )
    tool.run()
    print(tool.result)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import rasterio

from multiseg.base_tool import SegmentationTool
from multiseg.config import SegmentationConfig
from multiseg.engine import MultiSeg, SegmentationResult
from multiseg.exceptions import RasterError
from multiseg.grid import PixelGrid
from multiseg.outputs import FileOutputter, output_file_names
from multiseg.progress import ProgressSink
from multiseg.validators import Validators

logger = logging.getLogger("multiseg.segmenter")


class RasterSegmenter(SegmentationTool):
    """Segment a raster file and write labelled, cartoon and vector outputs.

    Args:
        input_path: Path to the input raster (GeoTIFF recommended).
        output_dir: Directory receiving every output file.
        config: Segmentation options.
        resize_results: Write intermediate results at input resolution.
        progress: Optional progress / cancellation sink.
        verbose: Enable DEBUG-level logging.
    """

    SUPPORTED_EXTENSIONS = [".tif", ".tiff", ".img", ".vrt"]

    def __init__(
        self,
        input_path: Path,
        output_dir: Path,
        config: SegmentationConfig,
        *,
        resize_results: bool = False,
        progress: ProgressSink | None = None,
        verbose: bool = False,
    ) -> None:
        super().__init__(input_path, output_dir, verbose=verbose)
        self.config = config
        self.resize_results = resize_results
        self.progress = progress
        self._result: SegmentationResult | None = None
        self._outputter: FileOutputter | None = None

    @property
    def result(self) -> SegmentationResult | None:
        """Final segmentation result, available after :meth:`run`."""
        return self._result

    @property
    def written_files(self) -> list[Path]:
        return list(self._outputter.written) if self._outputter else []

    # ------------------------------------------------------------------
    # SegmentationTool implementation
    # ------------------------------------------------------------------

    def validate_inputs(self) -> None:
        """Check the input raster, the output directory and the configuration.

        Raises:
            InputValidationError: If the file is missing or unsupported.
            ConfigurationError: If the configuration is invalid.
            BandIndexError: If a requested band does not exist.
            OutputWriteError: If the output directory cannot be created.
        """
        Validators.assert_file_exists(self.input_path)
        Validators.assert_supported_extension(self.input_path, self.SUPPORTED_EXTENSIONS)
        Validators.assert_output_dir_writable(self.output_dir)

        try:
            with rasterio.open(self.input_path) as src:
                band_count = src.count
        except rasterio.errors.RasterioIOError as exc:
            raise RasterError(f"Could not open raster '{self.input_path}': {exc}") from exc

        self.config.validate(band_count)
        logger.debug("Inputs validated.")

    def process(self) -> None:
        """Read the raster, segment it and write the outputs.

        Raises:
            RasterError: If the raster cannot be read.
            OutputWriteError: If an output file cannot be written.
        """
        grid, profile = self._read_grid()
        logger.info(
            "Segmenting %s (%d band(s), %d×%d)",
            self.input_path.name, grid.band_count(), *grid.dimensions(),
        )

        stem = self.input_path.stem
        self._outputter = FileOutputter(
            self.output_dir,
            stem,
            profile,
            names=output_file_names(self.config, stem),
            resize_results=self.resize_results,
        )
        engine = MultiSeg(self.config, self.progress)
        engine.add_outputter(self._outputter)
        self._result = engine.run(grid)

    def summary(self) -> str:
        if self._result is None:
            return super().summary()
        return f"{self._result} in {self.output_dir}"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _read_grid(self) -> tuple[PixelGrid, dict[str, Any]]:
        try:
            with rasterio.open(self.input_path) as src:
                profile = dict(src.profile)
                data = src.read(masked=True)
        except rasterio.errors.RasterioIOError as exc:
            raise RasterError(f"Could not open raster '{self.input_path}': {exc}") from exc
        return PixelGrid.from_masked(data, nodata=profile.get("nodata")), profile
