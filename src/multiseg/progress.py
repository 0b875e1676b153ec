"""
MultiSeg — Progress & Cancellation
===================================
The engine reports step progress to a :class:`ProgressSink` and polls it
for cancellation between iterations.  Cancellation is cooperative: it
is never observed in the middle of a merge.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger("multiseg.progress")


class ProgressSink(ABC):
    """Receives progress updates and answers cancellation polls."""

    @abstractmethod
    def set_steps(self, n: int) -> None:
        """Announce the number of steps of the run."""

    @abstractmethod
    def advance(self, step: int) -> None:
        """Report that *step* steps are done."""

    @abstractmethod
    def cancelled(self) -> bool:
        """Return ``True`` once the run should stop."""


class NullProgress(ProgressSink):
    """Ignores every update and never cancels."""

    def set_steps(self, n: int) -> None:
        pass

    def advance(self, step: int) -> None:
        pass

    def cancelled(self) -> bool:
        return False


class LoggingProgress(ProgressSink):
    """Logs step progress at DEBUG level.

    Call :meth:`cancel` (e.g. from a signal handler) to stop the run at
    the next poll.
    """

    def __init__(self) -> None:
        self._steps = 0
        self._cancelled = False

    def set_steps(self, n: int) -> None:
        self._steps = n
        logger.debug("Segmentation has %d step(s)", n)

    def advance(self, step: int) -> None:
        logger.debug("Step %d/%d done", step, self._steps)

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled
