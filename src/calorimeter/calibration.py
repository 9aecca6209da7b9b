"""Electrical calibration of the cell with a resistive heater pulse."""
from __future__ import annotations

import logging
import math
import threading
from typing import Optional, Protocol

import numpy as np

from .errors import InvalidInputError
from .pipeline import ExperimentResult

logger = logging.getLogger(__name__)

RESISTANCE_OHM = 324.0
PULSE_SEC = 20.0
MAX_INTENSITY_A = 0.03


class CurrentSource(Protocol):
    def set_intensity(self, amps: float) -> None:
        ...

    def shutdown(self) -> None:
        ...


def heater_energy(intensity_a: float, resistance_ohm: float = RESISTANCE_OHM, pulse_sec: float = PULSE_SEC) -> float:
    """Joule heating I^2 R t delivered by one pulse."""

    return intensity_a**2 * resistance_ohm * pulse_sec


def intensity_for_energy(
    energy_j: float,
    *,
    resistance_ohm: float = RESISTANCE_OHM,
    pulse_sec: float = PULSE_SEC,
    max_intensity_a: float = MAX_INTENSITY_A,
) -> float:
    if energy_j < 0:
        raise InvalidInputError(f"energy must be non-negative, got {energy_j}")
    if resistance_ohm <= 0 or pulse_sec <= 0:
        raise InvalidInputError("heater resistance and pulse duration must be positive")
    intensity = math.sqrt(energy_j / (resistance_ohm * pulse_sec))
    if intensity > max_intensity_a:
        raise InvalidInputError(
            f"{energy_j * 1000:.3f} mJ needs {intensity:.5f} A, above the {max_intensity_a:.5f} A limit"
        )
    return intensity


def calibration_constants(result: ExperimentResult, reference_energy_j: float) -> np.ndarray:
    """Per-pulse constants E / area (J per V*s)."""

    areas = np.array([pulse.area for pulse in result.pulses], dtype=float)
    if areas.size == 0:
        raise InvalidInputError("calibration needs at least one integrated pulse")
    if np.any(areas <= 0):
        raise InvalidInputError("calibration pulses must have a positive area")
    return reference_energy_j / areas


def fit_calibration_constant(result: ExperimentResult, reference_energy_j: float) -> float:
    return float(np.mean(calibration_constants(result, reference_energy_j)))


class HeaterPulse:
    """
    Drive the current source for one pulse. The source is switched off by a
    timer thread so sampling keeps its cadence while the heater runs.
    """

    def __init__(self, source: CurrentSource, intensity_a: float, pulse_sec: float = PULSE_SEC):
        self.source = source
        self.intensity_a = intensity_a
        self.pulse_sec = pulse_sec
        self._timer: Optional[threading.Timer] = None
        self.fired = 0

    def fire(self, injection: int) -> None:
        self.wait()
        logger.info("Heater pulse %d: %.5f A for %.1f s", injection, self.intensity_a, self.pulse_sec)
        self.source.set_intensity(self.intensity_a)
        self._timer = threading.Timer(self.pulse_sec, self.source.shutdown)
        self._timer.daemon = True
        self._timer.start()
        self.fired += 1

    def wait(self) -> None:
        if self._timer is not None:
            self._timer.join()
            self._timer = None

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.source.shutdown()
