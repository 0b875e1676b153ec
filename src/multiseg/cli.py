"""
MultiSeg — CLI Entry Point
===========================
Installed as the ``multiseg`` command via ``pyproject.toml``.

Usage:
    multiseg segment --input data/scene.tif --output-dir output/ \\
        --image-type optical --levels 2 --similarity 10 --min-area 20 \\
        --cv 0.3 --confidence 0.95

    multiseg segment --input data/sar.tif --output-dir output/ \\
        --image-type radar --radar-format amplitude --enl 4 \\
        --confidence 0.95 --levels 3 --similarity 1.5 --min-area 10 \\
        --cv-tables tables/

    multiseg cv-tables --output-dir tables/
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from multiseg.base_tool import configure_logging
from multiseg.config import SegmentationConfig
from multiseg.cv_table import TABLE_FILES, CVTable, write_table
from multiseg.enums import ImageModel, ImageType, RadarFormat
from multiseg.exceptions import MultiSegError
from multiseg.segmenter import RasterSegmenter
from multiseg.validators import Validators


@click.group(help="Multi-resolution region-growing segmentation of radar and optical rasters.")
def main() -> None:
    """CLI entry point — groups the ``segment`` and ``cv-tables`` commands."""


@main.command(
    name="segment",
    help="Segment a raster and write labelled, cartoon and vector outputs.",
)
@click.option(
    "--input", "-i", "input_path",
    required=True,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
    help="Path to the input raster file (GeoTIFF, .img, etc.).",
)
@click.option(
    "--output-dir", "-o", "output_dir",
    required=True,
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    help="Directory receiving the output files.",
)
@click.option(
    "--image-type",
    type=click.Choice([t.value for t in ImageType], case_sensitive=False),
    required=True,
    help="Acquisition modality of the raster.",
)
@click.option(
    "--image-model",
    type=click.Choice([m.value for m in ImageModel], case_sensitive=False),
    default=ImageModel.CARTOON.value,
    show_default=True,
    help="Scene model.",
)
@click.option(
    "--radar-format",
    type=click.Choice([f.value for f in RadarFormat], case_sensitive=False),
    default=None,
    help="Pixel format of a radar raster.",
)
@click.option("--levels", type=int, required=True, help="Number of pyramid levels.")
@click.option(
    "--similarity", type=float, required=True,
    help="Merge distance threshold at full resolution (dB for radar).",
)
@click.option("--min-area", type=int, required=True, help="Minimum region size in pixels.")
@click.option("--enl", type=float, default=None, help="Equivalent number of looks (radar).")
@click.option(
    "--confidence", "confidence_level", type=float, default=None,
    help="Confidence level of the statistical tests.",
)
@click.option("--cv", type=float, default=None, help="Coefficient of variation threshold (optical).")
@click.option(
    "--bands",
    default="",
    help="Comma-separated list of 1-based band indices to segment. "
         "Omit to segment all bands.",
)
@click.option("--annealing-steps", type=int, default=0, show_default=True)
@click.option("--max-iterations", type=int, default=100, show_default=True)
@click.option("--mutual-best-fit/--no-mutual-best-fit", default=True, show_default=True)
@click.option("--grow-until-stop/--no-grow-until-stop", default=True, show_default=True)
@click.option(
    "--random-seeds/--ordered-seeds", default=True, show_default=True,
    help="Visit regions in shuffled order while growing.",
)
@click.option("--seed", type=int, default=0, show_default=True, help="Shuffling seed.")
@click.option(
    "--max-variance-samples", type=int, default=None,
    help="Pixels sampled per region for the variance at the coarsest level.",
)
@click.option("--split-last-level", is_flag=True, default=False, help="Split regions at full resolution too.")
@click.option(
    "--strict/--lenient", default=True, show_default=True,
    help="Require every band (strict) or any band (lenient) to agree.",
)
@click.option("--intermediate", is_flag=True, default=False, help="Write every level's result.")
@click.option("--output-pyramid", is_flag=True, default=False, help="Write every pyramid level.")
@click.option(
    "--resize-results", is_flag=True, default=False,
    help="Write intermediate results at input resolution.",
)
@click.option(
    "--cv-tables", "cv_tables_dir",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Directory holding tab_*.csv files.  Omit to generate the tables.",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def segment(
    input_path: Path,
    output_dir: Path,
    image_type: str,
    image_model: str,
    radar_format: str | None,
    levels: int,
    similarity: float,
    min_area: int,
    enl: float | None,
    confidence_level: float | None,
    cv: float | None,
    bands: str,
    annealing_steps: int,
    max_iterations: int,
    mutual_best_fit: bool,
    grow_until_stop: bool,
    random_seeds: bool,
    seed: int,
    max_variance_samples: int | None,
    split_last_level: bool,
    strict: bool,
    intermediate: bool,
    output_pyramid: bool,
    resize_results: bool,
    cv_tables_dir: Path | None,
    verbose: bool,
) -> None:
    """Wires Click options into :class:`RasterSegmenter`."""
    band_list = [int(b.strip()) for b in bands.split(",") if b.strip()] or None

    config = SegmentationConfig(
        image_type=ImageType(image_type.lower()),
        image_model=ImageModel(image_model.lower()),
        levels=levels,
        similarity=similarity,
        min_area=min_area,
        radar_format=RadarFormat(radar_format.lower()) if radar_format else None,
        bands=band_list,
        enl=enl,
        confidence_level=confidence_level,
        cv=cv,
        annealing_steps=annealing_steps,
        max_iterations=max_iterations,
        mutual_best_fit=mutual_best_fit,
        grow_until_stop=grow_until_stop,
        random_seeds=random_seeds,
        seed=seed,
        max_variance_samples=max_variance_samples,
        split_last_level=split_last_level,
        strict=strict,
        notify_intermediate=intermediate,
        output_pyramid=output_pyramid,
        cv_tables_dir=cv_tables_dir,
    )

    tool = RasterSegmenter(
        input_path, output_dir, config, resize_results=resize_results, verbose=verbose
    )

    try:
        tool.run()
        click.echo(f"\nSegmentation: {tool.result}")
        for path in tool.written_files:
            click.echo(f"  {path}")
    except MultiSegError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)


@main.command(
    name="cv-tables",
    help="Generate the tables of critical coefficients of variation.",
)
@click.option(
    "--output-dir", "-o", "output_dir",
    required=True,
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    help="Directory receiving the tab_*.csv files.",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def cv_tables(output_dir: Path, verbose: bool) -> None:
    """Write one ``tab_*.csv`` file per supported confidence level."""
    configure_logging(verbose)
    try:
        Validators.assert_output_dir_writable(output_dir)
        for confidence_level, name in TABLE_FILES.items():
            table = CVTable.generate(confidence_level)
            write_table(output_dir / name, table.rows)
            click.echo(f"  {output_dir / name} ({len(table)} rows)")
    except MultiSegError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
