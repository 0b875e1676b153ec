"""
MultiSeg
========
Multi-resolution region-growing segmentation of radar and optical rasters.

Quick start::

    from multiseg import MultiSeg, PixelGrid, SegmentationConfig
    from multiseg.enums import ImageModel, ImageType

    config = SegmentationConfig(
        image_type=ImageType.OPTICAL,
        image_model=ImageModel.CARTOON,
        levels=2, similarity=10.0, min_area=20, cv=0.3, confidence_level=0.95,
    )
    result = MultiSeg(config).run(PixelGrid(array))
"""

from multiseg.config import SegmentationConfig
from multiseg.cv_table import CVTable
from multiseg.engine import MultiSeg, RegionSummary, SegmentationResult
from multiseg.enums import ImageModel, ImageType, RadarFormat
from multiseg.exceptions import MultiSegError
from multiseg.grid import PixelGrid
from multiseg.pyramid import Pyramid
from multiseg.region import RegionTable

__version__ = "1.0.0"

__all__ = [
    "CVTable",
    "ImageModel",
    "ImageType",
    "MultiSeg",
    "MultiSegError",
    "PixelGrid",
    "Pyramid",
    "RadarFormat",
    "RegionSummary",
    "RegionTable",
    "SegmentationConfig",
    "SegmentationResult",
]
