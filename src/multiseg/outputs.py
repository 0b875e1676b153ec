"""
MultiSeg — Outputters
======================
Collaborators notified by the engine with the pyramid and with every
level result.  They only read the engine through its accessors.

Classes:
    Outputter           Abstract base.
    LevelSnapshot       Immutable in-memory copy of one result.
    SnapshotOutputter   Keeps every result in memory.
    FileOutputter       Writes GeoTIFF files with rasterio and GeoJSON with geopandas.

Files written by :class:`FileOutputter` for each result::

    <labelled>_level_<L>_nreg_<N>.tif    uint32 labels, 0 = no region
    <cartoon>_level_<L>_nreg_<N>.tif     mean, variance, CV per band (-1 = none)
    <vector>_level_<L>_nreg_<N>.geojson  one WGS84 polygon feature per region part
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import geopandas as gpd
import numpy as np
import numpy.typing as npt
import rasterio
from rasterio.crs import CRS
from rasterio.features import shapes
from rasterio.transform import Affine
from shapely.geometry import shape

from multiseg.config import SegmentationConfig
from multiseg.enums import ImageModel, ImageType
from multiseg.exceptions import OutputWriteError
from multiseg.pyramid import Pyramid, upsample_labels

if TYPE_CHECKING:
    from multiseg.engine import MultiSeg, RegionSummary

logger = logging.getLogger("multiseg.outputs")

CARTOON_NODATA = -1.0


# ---------------------------------------------------------------------------
# Outputter ABC
# ---------------------------------------------------------------------------


class Outputter(ABC):
    """Receives the pyramid and the level results of a run."""

    def on_pyramid_built(self, pyramid: Pyramid) -> None:
        """Called once with the freshly built pyramid.  Ignored by default."""

    @abstractmethod
    def on_level_result(self, engine: "MultiSeg", level: int) -> None:
        """Called after a refinement level and once at the end of the run."""


# ---------------------------------------------------------------------------
# In-memory snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LevelSnapshot:
    """Immutable copy of the segmentation at one level.

    Attributes:
        level: Pyramid level of the result.
        labels: Exported ``uint32`` label grid.
        regions: Label → region summary.
    """

    level: int
    labels: npt.NDArray[np.uint32]
    regions: dict[int, "RegionSummary"]

    @property
    def region_count(self) -> int:
        return len(self.regions)


@dataclass
class SnapshotOutputter(Outputter):
    """Keeps every level result (and the pyramid level shapes) in memory."""

    snapshots: list[LevelSnapshot] = field(default_factory=list)
    pyramid_shapes: list[tuple[int, int]] = field(default_factory=list)

    def on_pyramid_built(self, pyramid: Pyramid) -> None:
        self.pyramid_shapes = [pyramid.get_level(i).dimensions() for i in range(len(pyramid))]

    def on_level_result(self, engine: "MultiSeg", level: int) -> None:
        result = engine.result()
        self.snapshots.append(LevelSnapshot(level, result.labels, result.regions))


# ---------------------------------------------------------------------------
# File names
# ---------------------------------------------------------------------------


def output_file_names(
    config: SegmentationConfig, stem: str, separator: str = "_"
) -> dict[str, str]:
    """Build the base names of the labelled, cartoon and vector outputs.

    The names encode the parameters of the run, e.g.
    ``scene_optical_cartoon_2_10_0.3_0.95_20_labelled``.
    """
    parts = [stem, config.image_type.value, config.image_model.value]
    if config.image_type == ImageType.RADAR and config.radar_format is not None:
        parts.append(config.radar_format.value)
    parts.append(str(config.levels))
    parts.append(f"{config.similarity:.3g}")
    if config.is_radar_cartoon:
        parts.append(f"{config.enl:.3g}")
        parts.append(f"{config.confidence_level:.3g}")
    if config.image_type == ImageType.OPTICAL or (
        config.image_type == ImageType.RADAR and config.image_model == ImageModel.TEXTURE
    ):
        parts.append(f"{config.cv:.3g}")
        if config.image_type == ImageType.OPTICAL:
            parts.append(f"{config.confidence_level:.3g}")
    parts.append(str(config.min_area))

    base = separator.join(parts) + separator
    return {
        "labelled": base + "labelled",
        "cartoon": base + "cartoon",
        "vector": base + "vector",
    }


# ---------------------------------------------------------------------------
# File outputter
# ---------------------------------------------------------------------------


class FileOutputter(Outputter):
    """Writes every result to GeoTIFF and GeoJSON files.

    Args:
        output_dir: Directory receiving the files.
        base_name: Stem used for the pyramid files and default names.
        profile: rasterio profile of the input raster; its ``crs`` and
                 ``transform`` georeference the outputs.  Vector layers
                 are re-projected to EPSG:4326.
        names: Base names keyed ``labelled`` / ``cartoon`` / ``vector``.
               Defaults to ``<base_name>_<kind>``.
        resize_results: Upsample coarse results to the input resolution.
        use_region_count_suffix: Append ``_nreg_<N>`` to result names.
    """

    def __init__(
        self,
        output_dir: Path,
        base_name: str,
        profile: dict[str, Any] | None = None,
        names: dict[str, str] | None = None,
        *,
        resize_results: bool = False,
        use_region_count_suffix: bool = True,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.base_name = base_name
        profile = profile or {}
        crs = profile.get("crs")
        self.crs: CRS | None = CRS.from_user_input(crs) if crs else None
        self.transform: Affine = profile.get("transform") or Affine.identity()
        self.names = names or {
            kind: f"{base_name}_{kind}" for kind in ("labelled", "cartoon", "vector")
        }
        self.resize_results = resize_results
        self.use_region_count_suffix = use_region_count_suffix
        self.written: list[Path] = []

    # ------------------------------------------------------------------
    # Outputter interface
    # ------------------------------------------------------------------

    def on_pyramid_built(self, pyramid: Pyramid) -> None:
        for level in range(len(pyramid)):
            grid = pyramid.get_level(level)
            path = self.output_dir / f"{self.base_name}_pyramid_level_{level}.tif"
            data = np.where(np.isnan(grid.data), CARTOON_NODATA, grid.data)
            self._write_raster(path, data, CARTOON_NODATA, self._level_transform(level))

    def on_level_result(self, engine: "MultiSeg", level: int) -> None:
        suffix = f"_level_{level}"
        if self.use_region_count_suffix:
            suffix += f"_nreg_{len(engine.regions)}"

        labels = engine.labels
        cartoon = self._cartoon(engine)
        transform = self._level_transform(level)

        if self.resize_results and level and engine.input_grid is not None:
            shape = engine.input_grid.dimensions()
            scale = Pyramid.scale_factor(level)
            labels = upsample_labels(labels, shape, scale)
            cartoon = np.stack([upsample_labels(band, shape, scale) for band in cartoon])
            transform = self.transform

        self._write_raster(
            self.output_dir / f"{self.names['labelled']}{suffix}.tif", labels[np.newaxis], 0, transform
        )
        self._write_raster(
            self.output_dir / f"{self.names['cartoon']}{suffix}.tif", cartoon, CARTOON_NODATA, transform
        )
        self._write_vector(self.output_dir / f"{self.names['vector']}{suffix}.geojson", labels, transform)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _level_transform(self, level: int) -> Affine:
        return self.transform @ Affine.scale(Pyramid.scale_factor(level))

    @staticmethod
    def _cartoon(engine: "MultiSeg") -> npt.NDArray[np.float64]:
        """Mean, variance and CV of each band painted over the region pixels."""
        table = engine.regions
        rows, cols = table.shape
        n_bands = len(engine.used_bands)
        cartoon = np.full((3 * n_bands, rows, cols), CARTOON_NODATA, dtype=np.float64)
        for region in table.values():
            pixel_rows, pixel_cols = table.pixels(region.id)
            cartoon[:n_bands, pixel_rows, pixel_cols] = region.mean[:, np.newaxis]
            cartoon[n_bands:2 * n_bands, pixel_rows, pixel_cols] = region.variance[:, np.newaxis]
            cartoon[2 * n_bands:, pixel_rows, pixel_cols] = region.cv[:, np.newaxis]
        return cartoon

    def _write_raster(
        self, path: Path, data: npt.NDArray, nodata: float, transform: Affine
    ) -> None:
        count, height, width = data.shape
        try:
            with rasterio.open(
                path, "w",
                driver="GTiff",
                height=height,
                width=width,
                count=count,
                dtype=data.dtype.name,
                crs=self.crs,
                transform=transform,
                nodata=nodata,
            ) as dst:
                dst.write(data)
        except (rasterio.errors.RasterioIOError, OSError) as exc:
            raise OutputWriteError(str(path), str(exc)) from exc
        self.written.append(path)
        logger.info("Written %s", path.name)

    def _write_vector(
        self, path: Path, labels: npt.NDArray[np.uint32], transform: Affine
    ) -> None:
        """Polygonise *labels* and write them as WGS84 GeoJSON.

        Polygons are built in the raster CRS and re-projected to
        EPSG:4326 when the raster is georeferenced.  A result with no
        labelled pixel writes no file.
        """
        records = [
            {"region": int(value), "geometry": shape(geometry)}
            for geometry, value in shapes(
                labels.astype(np.int32), mask=labels > 0, transform=transform
            )
        ]
        if not records:
            logger.info("No region to polygonise, %s skipped", path.name)
            return

        gdf = gpd.GeoDataFrame(records, geometry="geometry")
        if self.crs is not None:
            gdf = gdf.set_crs(self.crs.to_wkt()).to_crs("EPSG:4326")
        try:
            gdf.to_file(str(path), driver="GeoJSON")
        except OSError as exc:
            raise OutputWriteError(str(path), str(exc)) from exc
        self.written.append(path)
        logger.info("Written %s (%d polygon(s))", path.name, len(gdf))
