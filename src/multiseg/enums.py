"""
MultiSeg — Enumerations
========================
String-valued enums for the image description options.  The values are
the spellings accepted on the command line.
"""

from __future__ import annotations

from enum import Enum


class ImageType(str, Enum):
    """Acquisition modality of the input raster."""

    RADAR = "radar"
    OPTICAL = "optical"


class ImageModel(str, Enum):
    """Representation model assumed for the scene."""

    CARTOON = "cartoon"
    TEXTURE = "texture"


class RadarFormat(str, Enum):
    """Pixel format of a radar raster."""

    AMPLITUDE = "amplitude"
    INTENSITY = "intensity"
    DB = "db"
