"""
Tests — Outputters
===================
Unit and integration tests for :mod:`multiseg.outputs`.

Rasters written by :class:`~multiseg.outputs.FileOutputter` are read
back with ``rasterio`` from ``tmp_path``.
"""

from __future__ import annotations

import json
from pathlib import Path

import geopandas as gpd
import numpy as np
import pytest
import rasterio
from rasterio.transform import from_bounds, from_origin

from multiseg.config import SegmentationConfig
from multiseg.engine import MultiSeg
from multiseg.enums import ImageModel, ImageType, RadarFormat
from multiseg.grid import PixelGrid
from multiseg.outputs import FileOutputter, SnapshotOutputter, output_file_names
from multiseg.progress import NullProgress


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _config(**kwargs: object) -> SegmentationConfig:
    options: dict[str, object] = {
        "image_type": ImageType.OPTICAL,
        "image_model": ImageModel.CARTOON,
        "levels": 1,
        "similarity": 5.0,
        "min_area": 1,
        "cv": 0.3,
        "confidence_level": 0.95,
        "random_seeds": False,
    }
    options.update(kwargs)
    return SegmentationConfig(**options)  # type: ignore[arg-type]


def _halves() -> PixelGrid:
    data = np.full((8, 8), 10.0)
    data[:, 4:] = 200.0
    return PixelGrid(data)


def _profile() -> dict[str, object]:
    return {"crs": "EPSG:4326", "transform": from_bounds(0, 0, 1, 1, 8, 8)}


# ---------------------------------------------------------------------------
# Unit tests — file names
# ---------------------------------------------------------------------------


class TestOutputFileNames:
    def test_optical_names(self) -> None:
        config = SegmentationConfig(
            image_type=ImageType.OPTICAL,
            image_model=ImageModel.CARTOON,
            levels=2,
            similarity=10.0,
            min_area=20,
            cv=0.3,
            confidence_level=0.95,
        )
        names = output_file_names(config, "scene")
        assert names["labelled"] == "scene_optical_cartoon_2_10_0.3_0.95_20_labelled"
        assert names["vector"].endswith("_20_vector")

    def test_radar_names(self) -> None:
        config = SegmentationConfig(
            image_type=ImageType.RADAR,
            image_model=ImageModel.CARTOON,
            levels=3,
            similarity=1.5,
            min_area=10,
            radar_format=RadarFormat.INTENSITY,
            enl=4.0,
            confidence_level=0.95,
        )
        names = output_file_names(config, "sar")
        assert names["cartoon"] == "sar_radar_cartoon_intensity_3_1.5_4_0.95_10_cartoon"


# ---------------------------------------------------------------------------
# Integration tests — SnapshotOutputter
# ---------------------------------------------------------------------------


class TestSnapshotOutputter:
    def test_final_result_only_by_default(self) -> None:
        outputter = SnapshotOutputter()
        engine = MultiSeg(_config(), NullProgress())
        engine.add_outputter(outputter)
        engine.run(_halves())
        assert [s.level for s in outputter.snapshots] == [0]
        assert outputter.snapshots[0].region_count == 2
        assert outputter.pyramid_shapes == []

    def test_intermediate_results_and_pyramid(self) -> None:
        outputter = SnapshotOutputter()
        engine = MultiSeg(_config(notify_intermediate=True, output_pyramid=True), NullProgress())
        engine.add_outputter(outputter)
        engine.run(_halves())
        assert [s.level for s in outputter.snapshots] == [1, 0]
        assert outputter.snapshots[0].labels.shape == (4, 4)
        assert outputter.pyramid_shapes == [(8, 8), (4, 4)]


# ---------------------------------------------------------------------------
# Integration tests — FileOutputter
# ---------------------------------------------------------------------------


class TestFileOutputter:
    def test_result_files_are_written(self, tmp_path: Path) -> None:
        outputter = FileOutputter(tmp_path, "scene", _profile())
        engine = MultiSeg(_config(), NullProgress())
        engine.add_outputter(outputter)
        engine.run(_halves())

        labelled = tmp_path / "scene_labelled_level_0_nreg_2.tif"
        assert labelled in outputter.written
        with rasterio.open(labelled) as src:
            labels = src.read(1)
            assert src.crs.to_epsg() == 4326
            assert src.dtypes[0] == "uint32"
        assert len(np.unique(labels)) == 2
        assert labels.min() > 0

    def test_cartoon_holds_mean_variance_and_cv(self, tmp_path: Path) -> None:
        outputter = FileOutputter(tmp_path, "scene", _profile())
        engine = MultiSeg(_config(), NullProgress())
        engine.add_outputter(outputter)
        engine.run(_halves())

        with rasterio.open(tmp_path / "scene_cartoon_level_0_nreg_2.tif") as src:
            assert src.count == 3
            cartoon = src.read()
        assert cartoon[0, 0, 0] == 10.0
        assert cartoon[0, 0, 7] == 200.0
        assert cartoon[1, 0, 0] == 0.0

    def test_vector_has_one_polygon_per_region(self, tmp_path: Path) -> None:
        outputter = FileOutputter(tmp_path, "scene", _profile())
        engine = MultiSeg(_config(), NullProgress())
        engine.add_outputter(outputter)
        engine.run(_halves())

        collection = json.loads((tmp_path / "scene_vector_level_0_nreg_2.geojson").read_text())
        assert collection["type"] == "FeatureCollection"
        assert len(collection["features"]) == 2
        assert {f["geometry"]["type"] for f in collection["features"]} == {"Polygon"}

    def test_projected_vector_is_reprojected_to_wgs84(self, tmp_path: Path) -> None:
        profile = {"crs": "EPSG:32614", "transform": from_origin(500_000, 3_300_000, 10, 10)}
        outputter = FileOutputter(tmp_path, "scene", profile)
        engine = MultiSeg(_config(), NullProgress())
        engine.add_outputter(outputter)
        engine.run(_halves())

        gdf = gpd.read_file(tmp_path / "scene_vector_level_0_nreg_2.geojson")
        assert gdf.crs.to_epsg() == 4326
        assert len(gdf) == 2 and gdf["region"].nunique() == 2
        minx, _, _, maxy = gdf.total_bounds
        assert -99.01 < minx < -98.99
        assert 29.5 < maxy < 30.1

    def test_projected_rasters_keep_their_crs(self, tmp_path: Path) -> None:
        profile = {"crs": "EPSG:32614", "transform": from_origin(500_000, 3_300_000, 10, 10)}
        outputter = FileOutputter(tmp_path, "scene", profile)
        engine = MultiSeg(_config(), NullProgress())
        engine.add_outputter(outputter)
        engine.run(_halves())

        with rasterio.open(tmp_path / "scene_labelled_level_0_nreg_2.tif") as src:
            assert src.crs.to_epsg() == 32614
            assert src.transform.c == 500_000

    def test_pyramid_levels_are_written(self, tmp_path: Path) -> None:
        outputter = FileOutputter(tmp_path, "scene", _profile(), use_region_count_suffix=False)
        engine = MultiSeg(_config(output_pyramid=True), NullProgress())
        engine.add_outputter(outputter)
        engine.run(_halves())

        with rasterio.open(tmp_path / "scene_pyramid_level_1.tif") as src:
            assert (src.height, src.width) == (4, 4)
            assert src.transform.a == 2 * (1 / 8)
        assert (tmp_path / "scene_labelled_level_0.tif").exists()

    @pytest.mark.filterwarnings("error::PendingDeprecationWarning")
    def test_level_transform_scales_pixel_size(self, tmp_path: Path) -> None:
        outputter = FileOutputter(tmp_path, "scene", _profile())
        transform = outputter._level_transform(2)
        assert transform.a == 4 * (1 / 8)
        assert transform.e == -4 * (1 / 8)
        assert (transform.c, transform.f) == (0.0, 1.0)

    def test_intermediate_results_can_be_resized(self, tmp_path: Path) -> None:
        outputter = FileOutputter(tmp_path, "scene", _profile(), resize_results=True)
        engine = MultiSeg(_config(notify_intermediate=True), NullProgress())
        engine.add_outputter(outputter)
        engine.run(_halves())

        with rasterio.open(tmp_path / "scene_labelled_level_1_nreg_2.tif") as src:
            assert (src.height, src.width) == (8, 8)

    def test_custom_names(self, tmp_path: Path) -> None:
        names = output_file_names(_config(), "scene")
        outputter = FileOutputter(tmp_path, "scene", _profile(), names)
        engine = MultiSeg(_config(), NullProgress())
        engine.add_outputter(outputter)
        engine.run(_halves())
        assert (tmp_path / f"{names['labelled']}_level_0_nreg_2.tif").exists()
