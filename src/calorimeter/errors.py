"""Error kinds raised by the acquisition engine."""
from __future__ import annotations

from dataclasses import dataclass


class CalorimeterError(Exception):
    """Base class for every calorimeter failure."""


class InvalidInputError(CalorimeterError, ValueError):
    """Configuration or statistics input rejected before sampling starts."""


class HardwareError(CalorimeterError):
    """The measurement instrument failed; the run cannot continue."""


class NonConvergenceError(CalorimeterError):
    """A sampling stage was cancelled or exceeded its timeout."""

    def __init__(self, stage: str, reason: str):
        super().__init__(f"{stage} stage aborted: {reason}")
        self.stage = stage
        self.reason = reason


@dataclass(frozen=True)
class CadenceViolation:
    """A read that took longer than the requested sampling period."""

    stage: str
    elapsed_ms: int
    period_ms: int

    @property
    def overrun_ms(self) -> int:
        return self.elapsed_ms - self.period_ms
