from __future__ import annotations

import math

import numpy as np
import pytest

from calorimeter.errors import InvalidInputError
from calorimeter.stats import WindowStats, maximum, mean, minimum, stddev


def test_statistics_match_definitions() -> None:
    data = [1.0, 2.0, 4.0, 9.0]
    assert mean(data) == pytest.approx(4.0)
    expected_std = math.sqrt(((1 - 4) ** 2 + (2 - 4) ** 2 + (4 - 4) ** 2 + (9 - 4) ** 2) / 4)
    assert stddev(data) == pytest.approx(expected_std)
    assert maximum(data) == 9.0
    assert minimum(data) == 1.0


def test_stddev_uses_population_divisor() -> None:
    data = [2.0, 4.0]
    assert stddev(data) == pytest.approx(1.0)
    assert stddev([5.0]) == 0.0


def test_mean_lies_between_extrema() -> None:
    rng = np.random.default_rng(7)
    for _ in range(20):
        data = rng.normal(loc=1e-3, scale=1e-6, size=int(rng.integers(1, 50)))
        assert minimum(data) <= mean(data) <= maximum(data)


@pytest.mark.parametrize("func", [mean, stddev, maximum, minimum, WindowStats.from_values])
def test_empty_input_is_rejected(func) -> None:
    with pytest.raises(InvalidInputError):
        func([])


def test_window_band_is_strict() -> None:
    stats = WindowStats.from_values([1.0, 2.0])
    assert stats.band(0.5) == (0.5, 2.5)
    assert stats.admits(1.5, 0.5)
    assert not stats.admits(0.5, 0.5)
    assert not stats.admits(2.5, 0.5)
    assert not stats.admits(3.0, 0.5)
