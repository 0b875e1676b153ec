"""
MultiSeg — Base Tool
=====================
Abstract base class for the file-based MultiSeg tools, plus the console
logging set-up shared with the CLI.

Design Pattern:
    Template Method — :meth:`SegmentationTool.run` fixes the order
    validate → process → report; subclasses supply ``validate_inputs``
    and ``process`` and may refine the one-line ``summary``.

Usage::

    from multiseg.base_tool import SegmentationTool

    class MyTool(SegmentationTool):
        def validate_inputs(self) -> None:
            ...
        def process(self) -> None:
            ...
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path

# ---------------------------------------------------------------------------
# Package logger; modules log to "multiseg.<module>" children of it.
# ---------------------------------------------------------------------------
logger = logging.getLogger("multiseg")

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s — %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"


def configure_logging(verbose: bool = False) -> None:
    """Attach one console handler to the ``multiseg`` logger.

    Calling it again only changes the level: DEBUG when *verbose*,
    otherwise INFO.
    """
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


class SegmentationTool(ABC):
    """Abstract base class for tools that segment a raster on disk.

    Attributes:
        input_path: Raster to segment.
        output_dir: Directory receiving every output file.
        verbose: Log DEBUG messages (per-pass merge counts, thresholds).
        elapsed: Wall-clock seconds of the last :meth:`run`, ``None``
            before the first run.
    """

    def __init__(
        self,
        input_path: Path,
        output_dir: Path,
        *,
        verbose: bool = False,
    ) -> None:
        self.input_path: Path = Path(input_path)
        self.output_dir: Path = Path(output_dir)
        self.verbose: bool = verbose
        self.elapsed: float | None = None

        configure_logging(verbose)

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    def validate_inputs(self) -> None:
        """Check the raster, the output directory and the options.

        Raises:
            InputValidationError: If anything is missing or invalid.
        """

    @abstractmethod
    def process(self) -> None:
        """Segment the raster.  Only called once validation has passed."""

    def summary(self) -> str:
        """One-line description of what the run produced."""
        return str(self.output_dir)

    # ------------------------------------------------------------------
    # Template method
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Validate, process, then log the elapsed time and :meth:`summary`.

        Exceptions from either step propagate unchanged and no success
        report is logged.
        """
        logger.info("Starting %s on %s", self.__class__.__name__, self.input_path.name)
        start = time.perf_counter()

        self.validate_inputs()
        self.process()

        self.elapsed = time.perf_counter() - start
        logger.info(
            "%s completed in %.2fs → %s",
            self.__class__.__name__,
            self.elapsed,
            self.summary(),
        )

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"input_path={self.input_path!r}, "
            f"output_dir={self.output_dir!r})"
        )
