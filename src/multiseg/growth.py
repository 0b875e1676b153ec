"""
MultiSeg — Region Growing
==========================
Greedy graph contraction over a :class:`~multiseg.region.RegionTable`.

Each pass visits the regions being grown; for every region the closest
neighbour passing the strategy's predicate is found (smallest squared
distance between mean vectors) and, when mutual best fit is on, the
merge is only accepted if that neighbour chooses the region back.

:meth:`RegionGrower.grow` repeats passes with threshold annealing: the
threshold starts at ``threshold / (annealing_steps + 1)`` and is raised
by the same increment after every pass without merges, until the pass
count exceeds ``annealing_steps`` or the iteration cap is hit.  The full
threshold is restored on exit.

Ties between equally distant neighbours go to the smallest region id.
"""

from __future__ import annotations

import logging
from typing import Iterable

import numpy as np

from multiseg.exceptions import SegmentationCancelled
from multiseg.mergers import THRESHOLD, MergeStrategy
from multiseg.progress import NullProgress, ProgressSink
from multiseg.region import Region, RegionTable

logger = logging.getLogger("multiseg.growth")


class RegionGrower:
    """Merges neighbouring regions of a table using a merge strategy.

    Args:
        table: The region table to contract.
        strategy: Merge strategy deciding which neighbours qualify.
        rng: Generator used to shuffle visiting order.  ``None`` makes
             every pass deterministic (ascending ids).
        mutual_best_fit: Only merge pairs that choose each other.
        grow_until_stop: Keep merging the same region until nothing
                         qualifies before moving on.
        progress: Sink polled for cancellation between passes.
    """

    def __init__(
        self,
        table: RegionTable,
        strategy: MergeStrategy,
        rng: np.random.Generator | None = None,
        *,
        mutual_best_fit: bool = True,
        grow_until_stop: bool = True,
        progress: ProgressSink | None = None,
    ) -> None:
        self.table = table
        self.strategy = strategy
        self.rng = rng
        self.mutual_best_fit = mutual_best_fit
        self.grow_until_stop = grow_until_stop
        self.progress = progress or NullProgress()
        self.consider_region_vs_region: bool = True

    # ------------------------------------------------------------------
    # Neighbour selection
    # ------------------------------------------------------------------

    def candidates(self, region: Region) -> list[Region]:
        """Neighbours of *region* that pass the strategy predicate.

        With :attr:`consider_region_vs_region` off, neighbours that are
        multi-pixel regions are skipped when *region* is one too.
        """
        found = []
        for neighbour_id in sorted(region.neighbours):
            neighbour = self.table.get(neighbour_id)
            if region.size > 1 and neighbour.size > 1 and not self.consider_region_vs_region:
                continue
            if self.strategy.predicate(region, neighbour):
                found.append(neighbour)
        return found

    def closest_neighbour(self, region: Region, use_all_neighbours: bool = False) -> Region | None:
        """Return the best merge partner of *region*, or ``None``.

        Args:
            region: Region looking for a partner.
            use_all_neighbours: Consider every neighbour instead of only
                                those passing the predicate.
        """
        if use_all_neighbours:
            pool = [self.table.get(n) for n in sorted(region.neighbours)]
        else:
            pool = self.candidates(region)

        if not pool:
            return None
        if len(pool) == 1:
            return pool[0]

        closest = None
        best = float("inf")
        for neighbour in pool:
            distance = self.strategy.squared_distance(region, neighbour)
            if distance < best:
                best = distance
                closest = neighbour
        return closest

    def _partner(self, region: Region) -> Region | None:
        closest = self.closest_neighbour(region)
        if closest is not None and self.mutual_best_fit:
            back = self.closest_neighbour(closest)
            if back is None or back.id != region.id:
                return None
        return closest

    def _merge(self, survivor: Region, absorbed: Region, members: set[int] | None) -> None:
        self.strategy.merge(survivor, absorbed)
        self.table.absorb(survivor.id, absorbed.id)
        if members is not None:
            members.discard(absorbed.id)

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def merge_pass(self, members: set[int] | None = None) -> int:
        """One deterministic scan in ascending id order.

        Args:
            members: Ids of the regions to grow.  ``None`` grows every
                     live region.  Absorbed ids are removed from the set.

        Returns:
            Number of merges performed.
        """
        order = sorted(members) if members is not None else self.table.ids()
        return self._visit(order, members)

    def merge_pass_randomly(self, members: set[int] | None = None) -> int:
        """Like :meth:`merge_pass` but visits the regions in shuffled order."""
        order = sorted(members) if members is not None else self.table.ids()
        if self.rng is not None:
            order = [order[i] for i in self.rng.permutation(len(order))]
        return self._visit(order, members)

    def _visit(self, order: list[int], members: set[int] | None) -> int:
        merged = 0
        for region_id in order:
            if region_id not in self.table:
                continue
            region = self.table.get(region_id)
            while True:
                partner = self._partner(region)
                if partner is None:
                    break
                self._merge(region, partner, members)
                merged += 1
                if not self.grow_until_stop:
                    break
        return merged

    def grow(
        self,
        members: Iterable[int] | None,
        threshold: float,
        annealing_steps: int = 0,
        max_iterations: int = 100,
        randomly: bool = False,
    ) -> int:
        """Repeat merge passes with threshold annealing.

        Args:
            members: Ids of the regions to grow, or ``None`` for all.
            threshold: Target merge distance threshold.
            annealing_steps: Number of threshold increments.
            max_iterations: Maximum number of passes.
            randomly: Use :meth:`merge_pass_randomly`.

        Returns:
            Total number of merges.

        Raises:
            SegmentationCancelled: If the progress sink asks to stop.
        """
        ids = set(members) if members is not None else None
        increment = threshold / (annealing_steps + 1)
        current = increment
        self.strategy.set_param(THRESHOLD, current)

        iteration = 0
        no_merge = 0
        total = 0
        try:
            while True:
                merged = self.merge_pass_randomly(ids) if randomly else self.merge_pass(ids)
                total += merged
                iteration += 1
                logger.debug(
                    "Pass %d: %d merge(s), %d region(s) left", iteration, merged, len(self.table)
                )
                if iteration == max_iterations:
                    break
                if merged == 0:
                    no_merge += 1
                    if no_merge > annealing_steps:
                        break
                    current += increment
                    self.strategy.set_param(THRESHOLD, current)
                    logger.debug("Threshold raised to %.6g", current)
                if self.progress.cancelled():
                    raise SegmentationCancelled("region growing")
        finally:
            self.strategy.set_param(THRESHOLD, threshold)
        return total

    # ------------------------------------------------------------------
    # Minimum area cleanup
    # ------------------------------------------------------------------

    def merge_small_regions(self, min_area: int) -> int:
        """Merge every region smaller than *min_area* into its closest neighbour.

        The closest neighbour is chosen among all neighbours, not only
        those passing the predicate.  The neighbour survives.

        Only regions strictly below *min_area* count as small: a region of
        exactly *min_area* pixels is kept, not merged.
        """
        merged = 0
        for region_id in self.table.ids():
            if region_id not in self.table:
                continue
            region = self.table.get(region_id)
            if region.size >= min_area:
                continue
            closest = self.closest_neighbour(region, use_all_neighbours=True)
            if closest is None:
                continue
            self._merge(closest, region, None)
            merged += 1
        return merged

    def process_small_regions(self, min_area: int) -> int:
        """Repeat :meth:`merge_small_regions` until a pass merges nothing.

        Does nothing when *min_area* is 1 or less.

        Raises:
            SegmentationCancelled: If the progress sink asks to stop.
        """
        total = 0
        if min_area <= 1:
            return total
        while True:
            merged = self.merge_small_regions(min_area)
            total += merged
            logger.debug("Minimum area pass: %d merge(s)", merged)
            if merged == 0:
                break
            if self.progress.cancelled():
                raise SegmentationCancelled("minimum area cleanup")
        return total
