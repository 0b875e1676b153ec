"""
MultiSeg — Segmentation Configuration
======================================
A single dataclass carries every option recognised by the engine, the
command line and the raster tool.

Which parameters are required depends on the image type / image model
combination:

==================  =========================================
Combination         Required parameters
==================  =========================================
radar + cartoon     ``radar_format``, ``enl``, ``confidence_level``
optical + cartoon   ``cv``, ``confidence_level``
==================  =========================================

``levels``, ``similarity`` and ``min_area`` are always required.  For
radar images ``similarity`` is expressed in decibels.

Usage::

    from multiseg.config import SegmentationConfig
    from multiseg.enums import ImageModel, ImageType

    config = SegmentationConfig(
        image_type=ImageType.OPTICAL,
        image_model=ImageModel.CARTOON,
        levels=2,
        similarity=10.0,
        min_area=20,
        cv=0.3,
        confidence_level=0.95,
    )
    config.validate(band_count=3)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from multiseg.cv_table import SUPPORTED_CONFIDENCE_LEVELS, is_supported_confidence
from multiseg.enums import ImageModel, ImageType, RadarFormat
from multiseg.exceptions import ConfigurationError
from multiseg.validators import Validators


@dataclass
class SegmentationConfig:
    """Configuration for :class:`~multiseg.engine.MultiSeg`.

    Attributes:
        image_type: Radar or optical.
        image_model: Cartoon (texture is recognised but not implemented).
        levels: Number of pyramid levels above full resolution.  Clamped
                to the largest level count the raster supports.
        similarity: Merge distance threshold at full resolution (dB for radar).
        min_area: Regions smaller than this many pixels are merged away
                  at the end of the run.
        radar_format: Amplitude or intensity (dB is recognised but not
                      implemented).  Radar images only.
        bands: 1-based band indices to segment.  ``None`` means all bands.
        enl: Equivalent number of looks.  Radar cartoon images only.
        confidence_level: Confidence level of the statistical tests.
        cv: Coefficient of variation threshold.  Optical images only.
        annealing_steps: Number of threshold increments used while growing.
        max_iterations: Cap on full scans per growth call.
        mutual_best_fit: Only merge pairs that choose each other.
        grow_until_stop: Keep merging the same region until nothing qualifies.
        random_seeds: Visit regions in shuffled order while growing.
        seed: Seed of the shuffling random generator.
        max_variance_samples: Base cap on the pixels sampled per region for
                              the variance estimate.  Every threshold
                              update multiplies it by four, the first one
                              included, so the coarsest level samples
                              ``4 × max_variance_samples`` pixels.  ``None``
                              samples every pixel.
        split_last_level: Also split heterogeneous regions at full resolution.
        strict: Require every band to agree (``False``: any band is enough).
        notify_intermediate: Hand every level's result to the outputters.
        output_pyramid: Hand the built pyramid to the outputters.
        cv_tables_dir: Directory holding the ``tab_*.csv`` files.  ``None``
                       generates the tables analytically.
    """

    image_type: ImageType
    image_model: ImageModel
    levels: int
    similarity: float
    min_area: int
    radar_format: RadarFormat | None = None
    bands: list[int] | None = None
    enl: float | None = None
    confidence_level: float | None = None
    cv: float | None = None
    annealing_steps: int = 0
    max_iterations: int = 100
    mutual_best_fit: bool = True
    grow_until_stop: bool = True
    random_seeds: bool = True
    seed: int = 0
    max_variance_samples: int | None = None
    split_last_level: bool = False
    strict: bool = True
    notify_intermediate: bool = False
    output_pyramid: bool = False
    cv_tables_dir: Path | None = None

    # ------------------------------------------------------------------
    # Derived flags
    # ------------------------------------------------------------------

    @property
    def is_radar_cartoon(self) -> bool:
        return self.image_type == ImageType.RADAR and self.image_model == ImageModel.CARTOON

    @property
    def is_optical_cartoon(self) -> bool:
        return self.image_type == ImageType.OPTICAL and self.image_model == ImageModel.CARTOON

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, band_count: int | None = None) -> None:
        """Check every parameter required by the image type / model combination.

        Args:
            band_count: Number of bands in the input raster.  When given,
                        every entry of :attr:`bands` is checked against it.

        Raises:
            ConfigurationError: If a parameter is missing, out of range, or
                selects an unimplemented mode.
            BandIndexError: If a requested band does not exist.
        """
        if not isinstance(self.image_type, ImageType):
            raise ConfigurationError("image_type", f"unknown image type {self.image_type!r}")
        if not isinstance(self.image_model, ImageModel):
            raise ConfigurationError("image_model", f"unknown image model {self.image_model!r}")
        if self.image_model == ImageModel.TEXTURE:
            raise ConfigurationError("image_model", "the texture model is not implemented")

        Validators.assert_non_negative("levels", self.levels)
        Validators.assert_non_negative("similarity", self.similarity)
        Validators.assert_non_negative("min_area", self.min_area)
        Validators.assert_non_negative("annealing_steps", self.annealing_steps)
        Validators.assert_positive("max_iterations", self.max_iterations)
        if self.max_variance_samples is not None:
            Validators.assert_positive("max_variance_samples", self.max_variance_samples)

        if self.image_type == ImageType.RADAR:
            Validators.assert_present("radar_format", self.radar_format, "radar images")
            if self.radar_format == RadarFormat.DB:
                raise ConfigurationError(
                    "radar_format", "dB to intensity conversion is not implemented"
                )

        if self.is_radar_cartoon:
            Validators.assert_present("enl", self.enl, "radar cartoon images")
            Validators.assert_positive("enl", self.enl)
            Validators.assert_present(
                "confidence_level", self.confidence_level, "radar cartoon images"
            )
            if self.confidence_level != 1.0 and not is_supported_confidence(
                self.confidence_level
            ):
                allowed = ", ".join(str(c) for c in SUPPORTED_CONFIDENCE_LEVELS)
                raise ConfigurationError(
                    "confidence_level", f"must be 1.0 or one of {allowed}"
                )

        if self.image_type == ImageType.OPTICAL:
            Validators.assert_present("cv", self.cv, "optical images")
            Validators.assert_non_negative("cv", self.cv)
            Validators.assert_present("confidence_level", self.confidence_level, "optical images")
            Validators.assert_in_range("confidence_level", self.confidence_level, 0.0, 1.0)

        if self.bands is not None:
            if not self.bands:
                raise ConfigurationError("bands", "must name at least one band")
            for band in self.bands:
                if band_count is not None:
                    Validators.assert_band_index_valid(band, band_count)
                else:
                    Validators.assert_positive("bands", band)
