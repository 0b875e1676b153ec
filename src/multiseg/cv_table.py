"""
MultiSeg — Table of Coefficients of Variation
==============================================
Critical coefficient-of-variation values used to decide whether a radar
region is homogeneous, indexed by (number of looks, sample count).

File format: plain text, one row per number of looks (row 1 = 1 look),
39 semicolon-separated critical values per row, one column per entry of
:data:`SAMPLE_BREAKPOINTS`.  One file per confidence level:

============  ==============
Confidence    File
============  ==============
0.999         ``tab_01.csv``
0.995         ``tab_05.csv``
0.99          ``tab_1.csv``
0.95          ``tab_5.csv``
0.90          ``tab_10.csv``
0.85          ``tab_15.csv``
0.80          ``tab_20.csv``
============  ==============

A confidence level above 0.999 never rejects homogeneity: the table is
empty and every lookup returns the largest float.

Usage::

    table = CVTable.load(0.95, Path("tables"))
    table.get_cv(looks=8, samples=500)

    # or without table files on disk
    table = CVTable.generate(0.95)
"""

from __future__ import annotations

import logging
import math
import sys
from pathlib import Path
from typing import Sequence

from scipy import stats

from multiseg.exceptions import CVTableError, OutputWriteError

logger = logging.getLogger("multiseg.cv_table")

MAX_LOOKS = 250
MAX_SAMPLES = 9000

SUPPORTED_CONFIDENCE_LEVELS: tuple[float, ...] = (
    0.99999, 0.999, 0.995, 0.99, 0.95, 0.90, 0.85, 0.80,
)

TABLE_FILES: dict[float, str] = {
    0.999: "tab_01.csv",
    0.995: "tab_05.csv",
    0.99: "tab_1.csv",
    0.95: "tab_5.csv",
    0.90: "tab_10.csv",
    0.85: "tab_15.csv",
    0.80: "tab_20.csv",
}


def _sample_breakpoints() -> tuple[int, ...]:
    samples = 10
    breakpoints = []
    while samples <= MAX_SAMPLES:
        breakpoints.append(samples)
        if samples < 100:
            samples += 10
        elif samples < 1000:
            samples += 50
        elif samples < 4000:
            samples += 500
        else:
            samples += 1000
    return tuple(breakpoints)


SAMPLE_BREAKPOINTS: tuple[int, ...] = _sample_breakpoints()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def is_supported_confidence(confidence_level: float) -> bool:
    return any(math.isclose(confidence_level, c) for c in SUPPORTED_CONFIDENCE_LEVELS)


def nearest_breakpoint(samples: int) -> int:
    """Round a sample count to the nearest tabulated breakpoint.

    Counts above 9000 are clamped first.  When two breakpoints are
    equally near, the smaller one is returned.
    """
    samples = min(int(samples), MAX_SAMPLES)
    return min(SAMPLE_BREAKPOINTS, key=lambda b: (abs(samples - b), b))


def read_table(path: Path) -> list[list[float]]:
    """Read a ``;``-separated table file into rows of floats.

    Raises:
        CVTableError: If the file cannot be read or a row is malformed.
    """
    try:
        text = Path(path).read_text()
    except OSError as exc:
        raise CVTableError(f"Cannot read table of coefficients of variation '{path}': {exc}") from exc

    rows: list[list[float]] = []
    for line_no, line in enumerate(text.splitlines(), start=1):
        tokens = [t for t in line.strip().split(";") if t.strip()]
        if not tokens:
            continue
        if len(tokens) != len(SAMPLE_BREAKPOINTS):
            raise CVTableError(
                f"{path}:{line_no}: expected {len(SAMPLE_BREAKPOINTS)} values, got {len(tokens)}"
            )
        try:
            rows.append([float(t) for t in tokens])
        except ValueError as exc:
            raise CVTableError(f"{path}:{line_no}: {exc}") from exc
    return rows


def write_table(path: Path, rows: Sequence[Sequence[float]]) -> None:
    """Write *rows* in the ``;``-separated table format.

    Raises:
        OutputWriteError: If the file cannot be written.
    """
    lines = [";".join(repr(float(v)) for v in row) for row in rows]
    try:
        Path(path).write_text("\n".join(lines) + "\n")
    except OSError as exc:
        raise OutputWriteError(str(path), str(exc)) from exc


def _verify_confidence(confidence_level: float) -> None:
    if not is_supported_confidence(confidence_level):
        allowed = ", ".join(str(c) for c in SUPPORTED_CONFIDENCE_LEVELS)
        raise CVTableError(
            f"Invalid confidence level {confidence_level}. The allowed values are: {allowed}."
        )


def _table_file(confidence_level: float) -> str:
    for level, name in TABLE_FILES.items():
        if math.isclose(level, confidence_level):
            return name
    raise CVTableError(f"No table file is defined for confidence level {confidence_level}.")


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------


class CVTable:
    """Immutable (looks, samples) → critical CV mapping.

    Args:
        rows: One row of 39 critical values per number of looks, starting
              at one look.  ``None`` builds the empty "always homogeneous"
              table.
    """

    def __init__(self, rows: Sequence[Sequence[float]] | None = None) -> None:
        self._rows: list[list[float]] = [list(row) for row in rows or []]
        self._table: dict[tuple[int, int], float] = {}
        for looks, row in enumerate(self._rows, start=1):
            if len(row) != len(SAMPLE_BREAKPOINTS):
                raise CVTableError(
                    f"Row for {looks} look(s) has {len(row)} values, "
                    f"expected {len(SAMPLE_BREAKPOINTS)}."
                )
            for samples, value in zip(SAMPLE_BREAKPOINTS, row):
                self._table[(looks, samples)] = float(value)

    @classmethod
    def load(cls, confidence_level: float, tables_dir: Path) -> "CVTable":
        """Load the table file matching *confidence_level* from *tables_dir*.

        Raises:
            CVTableError: For an unsupported confidence level or a missing
                or malformed file.
        """
        _verify_confidence(confidence_level)
        if confidence_level > 0.999 and not math.isclose(confidence_level, 0.999):
            logger.info("Using confidence level = 100%%: every region is homogeneous.")
            return cls()

        path = Path(tables_dir) / _table_file(confidence_level)
        if not path.is_file():
            raise CVTableError(
                f"Table of coefficients of variation not found: '{path}'. "
                "Generate it with 'multiseg cv-tables'."
            )
        logger.info("Loading %s", path)
        return cls(read_table(path))

    @classmethod
    def generate(cls, confidence_level: float, max_looks: int = MAX_LOOKS) -> "CVTable":
        """Build a table from the normal approximation of the sample CV.

        For a Gamma(L) distributed intensity the true CV is ``1/√L`` and
        the sample CV over ``n`` pixels is roughly normal with standard
        deviation ``√((L + 1) / (2 n L²))`` (delta method on ``ln CV``).
        """
        _verify_confidence(confidence_level)
        if confidence_level > 0.999 and not math.isclose(confidence_level, 0.999):
            return cls()

        z = float(stats.norm.ppf(confidence_level))
        rows = []
        for looks in range(1, max_looks + 1):
            rows.append([
                1.0 / math.sqrt(looks) + z * math.sqrt((looks + 1) / (2.0 * n * looks * looks))
                for n in SAMPLE_BREAKPOINTS
            ])
        logger.info(
            "Generated table of critical CVs for confidence %.3f (%d look(s))",
            confidence_level, max_looks,
        )
        return cls(rows)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def rows(self) -> list[list[float]]:
        return [list(row) for row in self._rows]

    @property
    def empty(self) -> bool:
        return not self._table

    def get_cv(self, looks: float, samples: int) -> float:
        """Return the critical CV for *looks* and *samples*.

        Looks are truncated and clamped to ``1..250``; samples are rounded
        with :func:`nearest_breakpoint`.

        Raises:
            CVTableError: If the rounded key is not present in the table.
        """
        if not self._table:
            return sys.float_info.max

        key = (min(max(int(looks), 1), MAX_LOOKS), nearest_breakpoint(samples))
        try:
            return self._table[key]
        except KeyError:
            raise CVTableError(
                f"No critical value tabulated for looks={key[0]}, samples={key[1]}."
            ) from None

    def __len__(self) -> int:
        return len(self._rows)
