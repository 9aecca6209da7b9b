"""Baseline convergence: repeat windows until the signal stops drifting."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..stats import WindowStats
from .sampler import Window

logger = logging.getLogger(__name__)


class ConvergenceState(str, enum.Enum):
    FILLING = "filling"
    CONVERGED = "converged"


@dataclass(frozen=True)
class Baseline:
    voltage: float
    stats: WindowStats
    windows: int


class ConvergenceDetector:
    """
    Declares convergence once a window's mean falls strictly inside
    ``[prev.min - epsilon, prev.max + epsilon]`` of the window before it.

    Windows come from *fill*, so the same test serves the initial baseline
    search and the post-pulse tail (where the integrator's fill also
    accumulates area).
    """

    def __init__(self, fill: Callable[[], Window], epsilon: float, *, label: str = "baseline"):
        self._fill = fill
        self.epsilon = epsilon
        self.label = label
        self.state = ConvergenceState.FILLING
        self.windows = 0
        self.previous: Optional[WindowStats] = None

    def run(self, seed: Optional[WindowStats] = None) -> Baseline:
        """
        Loop until convergence. *seed* stands in for the first window when the
        caller already holds one (the last discard window of a pulse).
        """
        self.state = ConvergenceState.FILLING
        self.previous = seed if seed is not None else self._next_stats()
        while True:
            current = self._next_stats()
            low, high = self.previous.band(self.epsilon)
            logger.debug("%s wait range: [%.5e - %.5e]", self.label, low, high)
            if self.previous.admits(current.mean, self.epsilon):
                self.state = ConvergenceState.CONVERGED
                logger.info("%s reached: %.5e V after %d windows", self.label, current.mean, self.windows)
                return Baseline(voltage=current.mean, stats=current, windows=self.windows)
            self.previous = current

    def _next_stats(self) -> WindowStats:
        stats = self._fill().stats()
        self.windows += 1
        logger.debug(
            "%s window %d: mean %.5e V, min %.5e V, max %.5e V, stddev %.3e V",
            self.label,
            self.windows,
            stats.mean,
            stats.minimum,
            stats.maximum,
            stats.stddev,
        )
        return stats
