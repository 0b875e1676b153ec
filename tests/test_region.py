"""
Tests — Regions & Region Table
===============================
Unit tests for :mod:`multiseg.region`.
"""

from __future__ import annotations

import numpy as np
import pytest

from multiseg.exceptions import RegionTableError
from multiseg.mergers import EuclideanStrategy
from multiseg.region import DUMMY, BoundingBox, Region, RegionTable


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _table(rows: int, cols: int) -> RegionTable:
    table = RegionTable()
    table.initialize(np.arange(rows * cols, dtype=np.float64).reshape(1, rows, cols))
    return table


def _merge(table: RegionTable, survivor_id: int, absorbed_id: int) -> None:
    EuclideanStrategy().merge(table.get(survivor_id), table.get(absorbed_id))
    table.absorb(survivor_id, absorbed_id)


# ---------------------------------------------------------------------------
# Unit tests — BoundingBox
# ---------------------------------------------------------------------------


class TestBoundingBox:
    def test_union(self) -> None:
        box = BoundingBox.for_pixel(2, 2)
        box.union(BoundingBox(0, 3, 1, 5))
        assert box.as_tuple() == (0, 2, 3, 5)

    def test_extend_to(self) -> None:
        box = BoundingBox.for_pixel(1, 1)
        box.extend_to(3, 0)
        assert box.as_tuple() == (1, 0, 4, 2)
        assert box.contains(3, 0)
        assert not box.contains(4, 0)

    def test_rescale_adds_fringe_and_clamps(self) -> None:
        box = BoundingBox(1, 0, 2, 2)
        box.rescale(2, 4, 3)
        assert box.as_tuple() == (1, 0, 4, 3)


# ---------------------------------------------------------------------------
# Unit tests — RegionTable
# ---------------------------------------------------------------------------


class TestRegionTable:
    def test_initialize_one_region_per_pixel(self) -> None:
        table = _table(2, 3)
        assert len(table) == 6
        assert table.get(0).neighbours == {1, 3}
        assert table.get(4).neighbours == {1, 3, 5}
        assert table.get(5).mean.tolist() == [5.0]
        table.check_invariants()

    def test_next_id_is_never_reused(self) -> None:
        table = _table(2, 3)
        _merge(table, 0, 1)
        assert table.next_id() == 6
        assert table.next_id() == 7

    def test_unknown_region_raises(self) -> None:
        with pytest.raises(RegionTableError):
            _table(2, 2).get(99)

    def test_duplicate_region_raises(self) -> None:
        table = _table(2, 2)
        with pytest.raises(RegionTableError):
            table.add(Region.from_pixel(0, np.array([0.0]), 0, 0))

    def test_absorb_relabels_and_rewires(self) -> None:
        table = _table(2, 3)
        _merge(table, 0, 1)
        assert 1 not in table
        assert table.labels.tolist() == [[0, 0, 2], [3, 4, 5]]
        assert table.get(0).neighbours == {2, 3, 4}
        assert 0 in table.get(2).neighbours
        assert table.get(0).size == 2
        table.check_invariants()

    def test_pixels(self) -> None:
        table = _table(2, 3)
        _merge(table, 4, 5)
        rows, cols = table.pixels(4)
        assert list(zip(rows.tolist(), cols.tolist())) == [(1, 1), (1, 2)]

    def test_remove_relinks_only_isolated_neighbours(self) -> None:
        table = _table(2, 2)
        table.remove(0)
        assert 2 not in table.get(1).neighbours
        assert table.get(1).neighbours == {3}

    def test_remove_with_neighbourhood_links_everyone(self) -> None:
        table = _table(2, 2)
        table.remove(0, link_neighbourhood=True)
        assert 2 in table.get(1).neighbours
        assert 1 in table.get(2).neighbours

    def test_remove_relinks_isolated_neighbour(self) -> None:
        table = _table(1, 3)
        table.remove(1)
        assert table.get(0).neighbours == {2}
        assert table.get(2).neighbours == {0}

    def test_resize_upsamples_labels(self) -> None:
        table = _table(2, 2)
        table.resize((4, 3))
        assert table.labels.tolist() == [
            [0, 0, 1],
            [0, 0, 1],
            [2, 2, 3],
            [2, 2, 3],
        ]
        assert table.get(3).bbox.as_tuple() == (1, 1, 4, 3)

    def test_asymmetric_adjacency_is_detected(self) -> None:
        table = _table(2, 3)
        table.get(0).neighbours.add(5)
        with pytest.raises(RegionTableError):
            table.check_invariants()

    def test_wrong_size_is_detected(self) -> None:
        table = _table(2, 2)
        table.get(0).size = 3
        with pytest.raises(RegionTableError):
            table.check_invariants()

    def test_unassigned_pixel_is_detected(self) -> None:
        table = _table(2, 2)
        table.labels[0, 0] = DUMMY
        table.remove(0)
        with pytest.raises(RegionTableError):
            table.check_invariants()
