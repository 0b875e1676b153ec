"""
MultiSeg — Regions & Region Table
==================================
The mutable adjacency graph of regions and the label grid that maps
every pixel to its region.

Regions are owned by a :class:`RegionTable` keyed by integer id;
neighbour lists are sets of ids resolved through the table.  Ids are
handed out by a monotonically increasing counter and never reused.

The label grid is an ``int64`` array holding live region ids; the
sentinel :data:`DUMMY` marks a cell that is temporarily unassigned
(only while a region is being split).

Classes:
    BoundingBox     Half-open row/col extent of a region.
    Region          Id, size, per-band statistics, extent, neighbours.
    RegionTable     Regions + label grid + id counter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
import numpy.typing as npt

from multiseg.exceptions import RegionTableError
from multiseg.pyramid import upsample_labels

logger = logging.getLogger("multiseg.region")

DUMMY = -1


# ---------------------------------------------------------------------------
# Bounding box
# ---------------------------------------------------------------------------


@dataclass
class BoundingBox:
    """Half-open extent ``[row_start, row_bound) × [col_start, col_bound)``.

    The box always contains every pixel of its region but may be looser
    after a resolution change or a merge.
    """

    row_start: int
    col_start: int
    row_bound: int
    col_bound: int

    @classmethod
    def for_pixel(cls, row: int, col: int) -> "BoundingBox":
        return cls(row, col, row + 1, col + 1)

    def union(self, other: "BoundingBox") -> None:
        """Grow this box to also cover *other*."""
        self.row_start = min(self.row_start, other.row_start)
        self.col_start = min(self.col_start, other.col_start)
        self.row_bound = max(self.row_bound, other.row_bound)
        self.col_bound = max(self.col_bound, other.col_bound)

    def rescale(self, scale: int, max_rows: int, max_cols: int) -> None:
        """Scale to a finer grid, clamped to ``max_rows × max_cols``.

        Non-zero starts are moved one extra cell outwards so boundary
        pixels are not lost by the nearest-neighbour upsampling.
        """
        if self.row_start:
            self.row_start = self.row_start * scale - 1
        if self.col_start:
            self.col_start = self.col_start * scale - 1
        self.row_bound = min(self.row_bound * scale, max_rows)
        self.col_bound = min(self.col_bound * scale, max_cols)

    def extend_to(self, row: int, col: int) -> None:
        """Grow this box to include the pixel ``(row, col)``."""
        self.row_start = min(self.row_start, row)
        self.col_start = min(self.col_start, col)
        self.row_bound = max(self.row_bound, row + 1)
        self.col_bound = max(self.col_bound, col + 1)

    def slices(self) -> tuple[slice, slice]:
        return slice(self.row_start, self.row_bound), slice(self.col_start, self.col_bound)

    def contains(self, row: int, col: int) -> bool:
        return self.row_start <= row < self.row_bound and self.col_start <= col < self.col_bound

    def as_tuple(self) -> tuple[int, int, int, int]:
        return self.row_start, self.col_start, self.row_bound, self.col_bound


# ---------------------------------------------------------------------------
# Region
# ---------------------------------------------------------------------------


@dataclass
class Region:
    """A connected set of pixels sharing one id.

    ``mean``, ``variance`` and ``cv`` hold one value per band and are only
    exact right after a statistics recompute.
    """

    id: int
    size: int
    mean: npt.NDArray[np.float64]
    variance: npt.NDArray[np.float64]
    cv: npt.NDArray[np.float64]
    bbox: BoundingBox
    neighbours: set[int] = field(default_factory=set)

    @classmethod
    def from_pixel(
        cls, region_id: int, pixel: npt.NDArray[np.float64], row: int, col: int
    ) -> "Region":
        """Create a single-pixel region whose mean is the pixel's band values."""
        mean = np.array(pixel, dtype=np.float64)
        return cls(
            id=region_id,
            size=1,
            mean=mean,
            variance=np.zeros_like(mean),
            cv=np.zeros_like(mean),
            bbox=BoundingBox.for_pixel(row, col),
        )

    @property
    def n_bands(self) -> int:
        return int(self.mean.shape[0])

    def __repr__(self) -> str:
        return (
            f"Region(id={self.id}, size={self.size}, "
            f"bbox={self.bbox.as_tuple()}, neighbours={len(self.neighbours)})"
        )


# ---------------------------------------------------------------------------
# Region table
# ---------------------------------------------------------------------------


class RegionTable:
    """Owns every live region, the label grid and the id counter.

    Example::

        table = RegionTable()
        table.initialize(values)          # one region per pixel
        table.absorb(survivor_id, other_id)
        table.check_invariants()
    """

    def __init__(self) -> None:
        self.labels: npt.NDArray[np.int64] = np.full((0, 0), DUMMY, dtype=np.int64)
        self._regions: dict[int, Region] = {}
        self._next_id: int = 0

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def initialize(self, values: npt.NDArray[np.float64]) -> None:
        """Create one region per pixel of a ``(bands, rows, cols)`` array.

        The region at ``(row, col)`` gets id ``row * cols + col`` and is
        linked to its upper and left neighbours.
        """
        _, rows, cols = values.shape
        self._regions = {}
        self.labels = np.arange(rows * cols, dtype=np.int64).reshape(rows, cols)
        for row in range(rows):
            for col in range(cols):
                region_id = row * cols + col
                self._regions[region_id] = Region.from_pixel(region_id, values[:, row, col], row, col)
                if row:
                    self.link(region_id, region_id - cols)
                if col:
                    self.link(region_id, region_id - 1)
        self._next_id = rows * cols
        logger.debug("Initialised %d regions on a %d×%d grid", len(self._regions), rows, cols)

    def add(self, region: Region) -> None:
        if region.id in self._regions:
            raise RegionTableError(f"Region {region.id} already exists.")
        self._regions[region.id] = region
        self._next_id = max(self._next_id, region.id + 1)

    def next_id(self) -> int:
        """Allocate a fresh id beyond every id handed out so far."""
        region_id = self._next_id
        self._next_id += 1
        return region_id

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, region_id: int) -> Region:
        try:
            return self._regions[region_id]
        except KeyError:
            raise RegionTableError(f"Region {region_id} is not in the table.") from None

    def ids(self) -> list[int]:
        """Live region ids in ascending order."""
        return sorted(self._regions)

    def values(self) -> list[Region]:
        return [self._regions[i] for i in self.ids()]

    def __contains__(self, region_id: object) -> bool:
        return region_id in self._regions

    def __len__(self) -> int:
        return len(self._regions)

    @property
    def shape(self) -> tuple[int, int]:
        return int(self.labels.shape[0]), int(self.labels.shape[1])

    def pixels(self, region_id: int) -> tuple[npt.NDArray[np.intp], npt.NDArray[np.intp]]:
        """Row and column indices of the pixels labelled *region_id*.

        Only the region's bounding box is scanned.
        """
        box = self.get(region_id).bbox
        rows, cols = np.nonzero(self.labels[box.slices()] == region_id)
        return rows + box.row_start, cols + box.col_start

    # ------------------------------------------------------------------
    # Graph mutation
    # ------------------------------------------------------------------

    def link(self, a: int, b: int) -> None:
        """Make *a* and *b* neighbours of each other."""
        if a == b:
            return
        self.get(a).neighbours.add(b)
        self.get(b).neighbours.add(a)

    def absorb(self, survivor_id: int, absorbed_id: int) -> None:
        """Remove *absorbed_id* after its statistics were merged into *survivor_id*.

        The absorbed region's neighbours become the survivor's neighbours
        and its pixels are relabelled to the survivor.
        """
        survivor = self.get(survivor_id)
        absorbed = self.get(absorbed_id)
        for neighbour_id in absorbed.neighbours:
            if neighbour_id == survivor_id:
                continue
            neighbour = self.get(neighbour_id)
            neighbour.neighbours.discard(absorbed_id)
            neighbour.neighbours.add(survivor_id)
            survivor.neighbours.add(neighbour_id)
        survivor.neighbours.discard(absorbed_id)

        view = self.labels[absorbed.bbox.slices()]
        view[view == absorbed_id] = survivor_id

        del self._regions[absorbed_id]

    def remove(self, region_id: int, link_neighbourhood: bool = False) -> None:
        """Delete a region and redistribute its adjacency.

        Every former neighbour is detached first.  Then either all of them
        (``link_neighbourhood=True``) or only those left without any
        neighbour are linked to the other former neighbours.  Labels are
        not touched; the caller guarantees the region owns no pixel.
        """
        region = self.get(region_id)
        former = sorted(region.neighbours)
        for neighbour_id in former:
            self.get(neighbour_id).neighbours.discard(region_id)

        relink = [n for n in former if link_neighbourhood or not self.get(n).neighbours]
        for neighbour_id in relink:
            for other_id in former:
                self.link(neighbour_id, other_id)

        del self._regions[region_id]

    def resize(self, shape: tuple[int, int], scale: int = 2) -> None:
        """Upsample the label grid to *shape* and rescale every bounding box."""
        self.labels = upsample_labels(self.labels, shape, scale)
        rows, cols = shape
        for region in self._regions.values():
            region.bbox.rescale(scale, rows, cols)

    # ------------------------------------------------------------------
    # Consistency
    # ------------------------------------------------------------------

    def check_invariants(self) -> None:
        """Verify the table against the label grid.

        Checks neighbour symmetry, that every cell belongs to a live
        region inside its bounding box, and that each region's size equals
        its labelled pixel count.

        Raises:
            RegionTableError: On the first violation found.
        """
        rows, cols = self.shape
        for region in self._regions.values():
            for neighbour_id in region.neighbours:
                if neighbour_id not in self._regions:
                    raise RegionTableError(
                        f"Region {region.id} lists unknown neighbour {neighbour_id}."
                    )
                if region.id not in self._regions[neighbour_id].neighbours:
                    raise RegionTableError(
                        f"Adjacency is not symmetric: {region.id} → {neighbour_id}."
                    )
            box = region.bbox
            if not (0 <= box.row_start < box.row_bound <= rows
                    and 0 <= box.col_start < box.col_bound <= cols):
                raise RegionTableError(f"Region {region.id} has an invalid box {box.as_tuple()}.")

        ids, counts = np.unique(self.labels[self.labels != DUMMY], return_counts=True)
        labelled = dict(zip(ids.tolist(), counts.tolist()))
        for region_id, count in labelled.items():
            if region_id not in self._regions:
                raise RegionTableError(f"Label grid references dead region {region_id}.")
            region = self._regions[region_id]
            inside = int(np.count_nonzero(self.labels[region.bbox.slices()] == region_id))
            if inside != count:
                raise RegionTableError(
                    f"Region {region_id} has {count - inside} pixel(s) outside its box."
                )
            if region.size != count:
                raise RegionTableError(
                    f"Region {region_id} records size {region.size} but labels {count} pixel(s)."
                )
        missing = set(self._regions) - set(labelled)
        if missing:
            raise RegionTableError(f"Region(s) without pixels: {sorted(missing)[:10]}.")
        unassigned = int(np.count_nonzero(self.labels == DUMMY))
        if unassigned:
            raise RegionTableError(f"{unassigned} pixel(s) are not assigned to any region.")
