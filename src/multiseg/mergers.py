"""
MultiSeg — Merge Strategies
============================
Band-wise homogeneity, dissimilarity and merge operators.  One strategy
instance drives the whole run; it is selected from the image type and
model by :func:`create_strategy`.

Every band-wise result is aggregated across bands with the ``strict``
flag: strict mode needs every band to agree, non-strict mode is
satisfied by any single band.

Strategies share a flat parameter mapping:

================================  ==============================================
Parameter                         Meaning
================================  ==============================================
``euclidean_distance_threshold``  Maximum band mean difference for a merge.
``cv_threshold``                  Maximum region CV to count as homogeneous.
``confidence_level``              Confidence level of the statistical tests.
``ENL``                           Current equivalent number of looks (radar).
``vcritic_factor``                Gamma quantile / ENL for pixel tests (radar).
``image_variance_<band>``         Global variance of a band (optical).
================================  ==============================================

Classes:
    MergeStrategy            Abstract base.
    EuclideanStrategy        Plain mean distance.
    RadarCartoonStrategy     Multiplicative speckle model.
    OpticalCartoonStrategy   Additive noise with a global variance.
    CompositeStrategy        One sub-strategy per band.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Iterable, Mapping

import numpy as np
import numpy.typing as npt
from scipy import stats

from multiseg.config import SegmentationConfig
from multiseg.exceptions import ConfigurationError
from multiseg.region import Region

THRESHOLD = "euclidean_distance_threshold"
CV_THRESHOLD = "cv_threshold"
CONFIDENCE_LEVEL = "confidence_level"
ENL = "ENL"
VCRITIC_FACTOR = "vcritic_factor"


def image_variance_param(band: int) -> str:
    return f"image_variance_{band}"


# ---------------------------------------------------------------------------
# Strategy ABC
# ---------------------------------------------------------------------------


class MergeStrategy(ABC):
    """Abstract base for all merge strategies.

    Subclasses implement the band-wise methods; the aggregated methods
    (:meth:`predicate`, :meth:`dissimilarity`, :meth:`is_homogeneous`)
    are shared.

    Args:
        strict: Aggregate band results with AND (``True``) or OR.
    """

    def __init__(self, strict: bool = True) -> None:
        self.strict: bool = strict
        self._params: dict[str, float] = {}

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def set_param(self, name: str, value: float) -> None:
        self._params[name] = float(value)

    def set_params(self, params: Mapping[str, float]) -> None:
        self._params = {name: float(value) for name, value in params.items()}

    def get_param(self, name: str) -> float:
        """Return parameter *name*.

        Raises:
            ConfigurationError: If the parameter was never set.
        """
        try:
            return self._params[name]
        except KeyError:
            raise ConfigurationError(name, "merge parameter has not been set") from None

    @property
    def params(self) -> dict[str, float]:
        return dict(self._params)

    # ------------------------------------------------------------------
    # Band-wise interface
    # ------------------------------------------------------------------

    @abstractmethod
    def band_predicate(self, r1: Region, r2: Region, band: int) -> bool:
        """Return ``True`` if *r1* and *r2* may merge as far as *band* is concerned."""

    @abstractmethod
    def band_dissimilarity(self, pixel: npt.NDArray[np.float64], region: Region, band: int) -> float:
        """Non-negative cost of assigning *pixel* to *region* on *band*."""

    @abstractmethod
    def band_is_homogeneous(self, region: Region, band: int) -> bool:
        """Return ``True`` if *region* is internally homogeneous on *band*."""

    @abstractmethod
    def merge(self, r1: Region, r2: Region) -> None:
        """Fold the statistics and extent of *r2* into *r1*.

        The caller relabels pixels and rewires adjacency afterwards.
        """

    # ------------------------------------------------------------------
    # Aggregated interface
    # ------------------------------------------------------------------

    def predicate(self, r1: Region, r2: Region) -> bool:
        return self._aggregate(self.band_predicate(r1, r2, b) for b in range(r1.n_bands))

    def dissimilarity(self, pixel: npt.NDArray[np.float64], region: Region) -> float:
        return sum(self.band_dissimilarity(pixel, region, b) for b in range(len(pixel)))

    def is_homogeneous(self, region: Region) -> bool:
        return self._aggregate(self.band_is_homogeneous(region, b) for b in range(region.n_bands))

    @staticmethod
    def squared_distance(r1: Region, r2: Region) -> float:
        """Squared Euclidean distance between the two mean vectors."""
        diff = r1.mean - r2.mean
        return float(np.dot(diff, diff))

    def _aggregate(self, results: Iterable[bool]) -> bool:
        evaluated = False
        for ok in results:
            evaluated = True
            if ok and not self.strict:
                return True
            if not ok and self.strict:
                return False
        return evaluated and self.strict

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(strict={self.strict})"


# ---------------------------------------------------------------------------
# Concrete strategies
# ---------------------------------------------------------------------------


class EuclideanStrategy(MergeStrategy):
    """Generic strategy based on the absolute difference of band means."""

    def band_predicate(self, r1: Region, r2: Region, band: int) -> bool:
        return abs(r1.mean[band] - r2.mean[band]) <= self.get_param(THRESHOLD)

    def band_dissimilarity(self, pixel: npt.NDArray[np.float64], region: Region, band: int) -> float:
        return abs(float(pixel[band]) - float(region.mean[band]))

    def band_is_homogeneous(self, region: Region, band: int) -> bool:
        return region.cv[band] <= self.get_param(CV_THRESHOLD)

    def merge(self, r1: Region, r2: Region) -> None:
        r1.bbox.union(r2.bbox)
        total = r1.size + r2.size
        r1.mean = (r1.mean * r1.size + r2.mean * r2.size) / float(total)
        r1.size = total


class RadarCartoonStrategy(EuclideanStrategy):
    """Strategy for radar intensity images under a multiplicative speckle model.

    * pixel vs anything: Euclidean threshold.
    * region vs pixel: the pixel may not exceed ``vcritic_factor × mean``.
    * region vs region: two-sample Student-t test with variances
      estimated as ``mean² / ENL``.
    """

    def band_predicate(self, r1: Region, r2: Region, band: int) -> bool:
        if r1.size == 1:
            return super().band_predicate(r1, r2, band)

        mean_a = float(r1.mean[band])
        mean_b = float(r2.mean[band])

        if r2.size == 1:
            return mean_b <= self.get_param(VCRITIC_FACTOR) * mean_a

        enl = self.get_param(ENL)
        variance_a = mean_a * mean_a / enl
        variance_b = mean_b * mean_b / enl
        dof = r1.size + r2.size - 2.0
        pooled = ((r1.size - 1) * variance_a + (r2.size - 1) * variance_b) / dof
        root = math.sqrt(pooled * (1.0 / r1.size + 1.0 / r2.size))
        if root == 0.0:
            return mean_a == mean_b

        t_value = abs(mean_a - mean_b) / root
        p = float(stats.t.sf(t_value, dof))
        return p >= 1.0 - self.get_param(CONFIDENCE_LEVEL)

    def band_dissimilarity(self, pixel: npt.NDArray[np.float64], region: Region, band: int) -> float:
        distance = super().band_dissimilarity(pixel, region, band)
        noise = float(region.mean[band]) / math.sqrt(self.get_param(ENL))
        if noise == 0.0:
            return 0.0 if distance == 0.0 else math.inf
        return distance / noise


class OpticalCartoonStrategy(EuclideanStrategy):
    """Strategy for optical images using each band's global image variance.

    * pixel vs anything: Euclidean threshold.
    * region vs pixel: z-test against the global variance.
    * region vs region: two-sample Student-t test with the global variance.
    """

    def band_predicate(self, r1: Region, r2: Region, band: int) -> bool:
        if r1.size == 1:
            return super().band_predicate(r1, r2, band)

        difference = abs(float(r1.mean[band]) - float(r2.mean[band]))
        variance = self.get_param(image_variance_param(band))
        probability = 1.0 - self.get_param(CONFIDENCE_LEVEL)

        if r2.size == 1:
            if variance == 0.0:
                return difference == 0.0
            p = float(stats.norm.sf(difference / math.sqrt(variance)))
            return p >= probability

        root = math.sqrt(variance * (1.0 / r1.size + 1.0 / r2.size))
        if root == 0.0:
            return difference == 0.0
        dof = r1.size + r2.size - 2.0
        p = float(stats.t.sf(difference / root, dof))
        return p >= probability

    def band_dissimilarity(self, pixel: npt.NDArray[np.float64], region: Region, band: int) -> float:
        distance = super().band_dissimilarity(pixel, region, band)
        variance = self.get_param(image_variance_param(band))
        if variance == 0.0:
            return distance
        return distance / variance


class CompositeStrategy(MergeStrategy):
    """Dispatches every band-wise call to the strategy registered for that band.

    Only sub-strategies added with ``updates_stats=True`` run their
    :meth:`merge`, so shared region statistics are updated once.

    Example::

        composite = CompositeStrategy()
        composite.add(RadarCartoonStrategy(), updates_stats=True)   # band 0
        composite.add(EuclideanStrategy())                          # band 1
    """

    def __init__(self, strict: bool = True) -> None:
        super().__init__(strict)
        self._strategies: list[MergeStrategy] = []
        self._updates_stats: list[bool] = []

    def add(self, strategy: MergeStrategy, updates_stats: bool = False) -> None:
        strategy.set_params(self._params)
        self._strategies.append(strategy)
        self._updates_stats.append(updates_stats)

    def set_param(self, name: str, value: float) -> None:
        super().set_param(name, value)
        for strategy in self._strategies:
            strategy.set_param(name, value)

    def set_params(self, params: Mapping[str, float]) -> None:
        super().set_params(params)
        for strategy in self._strategies:
            strategy.set_params(params)

    def strategy_for(self, band: int) -> MergeStrategy:
        if not 0 <= band < len(self._strategies):
            raise ConfigurationError(
                "strategy", f"no strategy registered for band {band}"
            )
        return self._strategies[band]

    def band_predicate(self, r1: Region, r2: Region, band: int) -> bool:
        return self.strategy_for(band).band_predicate(r1, r2, band)

    def band_dissimilarity(self, pixel: npt.NDArray[np.float64], region: Region, band: int) -> float:
        return self.strategy_for(band).band_dissimilarity(pixel, region, band)

    def band_is_homogeneous(self, region: Region, band: int) -> bool:
        return self.strategy_for(band).band_is_homogeneous(region, band)

    def merge(self, r1: Region, r2: Region) -> None:
        for strategy, updates in zip(self._strategies, self._updates_stats):
            if updates:
                strategy.merge(r1, r2)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_strategy(config: SegmentationConfig) -> MergeStrategy:
    """Select the strategy matching the configured image type and model."""
    if config.is_radar_cartoon:
        strategy: MergeStrategy = RadarCartoonStrategy(config.strict)
    elif config.is_optical_cartoon:
        strategy = OpticalCartoonStrategy(config.strict)
    else:
        strategy = EuclideanStrategy(config.strict)
    if config.confidence_level is not None:
        strategy.set_param(CONFIDENCE_LEVEL, config.confidence_level)
    return strategy
