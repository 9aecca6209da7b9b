"""Window statistics used by the convergence tests."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .errors import InvalidInputError


def _as_array(data: Sequence[float] | np.ndarray) -> np.ndarray:
    values = np.asarray(data, dtype=float)
    if values.ndim != 1:
        raise InvalidInputError("statistics input must be a 1-D sequence")
    if values.size == 0:
        raise InvalidInputError("statistics input must not be empty")
    return values


def mean(data: Sequence[float] | np.ndarray) -> float:
    return float(np.mean(_as_array(data)))


def stddev(data: Sequence[float] | np.ndarray) -> float:
    """Population standard deviation (divisor N)."""

    return float(np.std(_as_array(data), ddof=0))


def maximum(data: Sequence[float] | np.ndarray) -> float:
    return float(np.max(_as_array(data)))


def minimum(data: Sequence[float] | np.ndarray) -> float:
    return float(np.min(_as_array(data)))


@dataclass(frozen=True)
class WindowStats:
    """Summary of one filled window."""

    mean: float
    stddev: float
    minimum: float
    maximum: float

    @classmethod
    def from_values(cls, data: Sequence[float] | np.ndarray) -> "WindowStats":
        values = _as_array(data)
        return cls(
            mean=float(np.mean(values)),
            stddev=float(np.std(values, ddof=0)),
            minimum=float(np.min(values)),
            maximum=float(np.max(values)),
        )

    def band(self, epsilon: float) -> tuple[float, float]:
        """Tolerance band the next window's mean is compared against."""

        return self.minimum - epsilon, self.maximum + epsilon

    def admits(self, value: float, epsilon: float) -> bool:
        # boundary values are rejected
        low, high = self.band(epsilon)
        return low < value < high
