"""
Paced voltage acquisition.

`TimedSampler` times every read, sleeps off the rest of the sampling period and
records reads that overran it. `CancelToken` is the escape hatch checked once
per sample by every open-ended loop in the engine.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from ..errors import CadenceViolation, HardwareError, InvalidInputError, NonConvergenceError
from ..stats import WindowStats
from .instruments import Instrument
from .recording import SampleLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Sample:
    voltage: float
    elapsed_ms: int


@dataclass(frozen=True)
class Window:
    samples: Tuple[Sample, ...]

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def voltages(self) -> np.ndarray:
        return np.array([sample.voltage for sample in self.samples], dtype=float)

    def stats(self) -> WindowStats:
        return WindowStats.from_values(self.voltages)


class CancelToken:
    """
    Cooperative cancellation with an optional deadline.

    The event may be shared with another thread (e.g. a signal handler);
    `scoped` derives a token for one stage with its own deadline while keeping
    the shared event.
    """

    def __init__(
        self,
        event: Optional[threading.Event] = None,
        *,
        timeout_sec: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._event = event or threading.Event()
        self._clock = clock
        self.timeout_sec = timeout_sec
        self._deadline = clock() + timeout_sec if timeout_sec is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def scoped(self, timeout_sec: Optional[float]) -> "CancelToken":
        return CancelToken(self._event, timeout_sec=timeout_sec, clock=self._clock)

    def check(self, stage: str) -> None:
        if self._event.is_set():
            raise NonConvergenceError(stage, "cancelled")
        if self._deadline is not None and self._clock() >= self._deadline:
            raise NonConvergenceError(stage, f"no result within {self.timeout_sec:g} s")


class TimedSampler:
    def __init__(
        self,
        instrument: Instrument,
        *,
        sample_log: Optional[SampleLog] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.instrument = instrument
        self.sample_log = sample_log
        self._sleep = sleep
        self._clock = clock
        self._t0: Optional[float] = None
        self.injection = 0
        self.samples_taken = 0
        self.violations: List[CadenceViolation] = []

    def sample(self, stage: str, cancel: Optional[CancelToken] = None) -> Sample:
        """Take one timed reading."""

        if cancel is not None:
            cancel.check(stage)
        start = self._clock()
        try:
            voltage = float(self.instrument.read_voltage())
        except HardwareError:
            raise
        except (OSError, ValueError) as exc:
            raise HardwareError(f"Voltage read failed: {exc}") from exc
        end = self._clock()
        if self._t0 is None:
            self._t0 = start
        sample = Sample(voltage=voltage, elapsed_ms=int((end - start) * 1000))
        self.samples_taken += 1
        logger.debug("Read %.9f V (%d ms)", sample.voltage, sample.elapsed_ms)
        if self.sample_log is not None:
            self.sample_log.append(
                t_s=end - self._t0,
                stage=stage,
                injection=self.injection,
                voltage=sample.voltage,
                elapsed_ms=sample.elapsed_ms,
            )
        return sample

    def pace(self, sample: Sample, period_sec: float, stage: str) -> None:
        """Sleep whatever is left of the period after *sample* was read."""

        period_ms = int(round(period_sec * 1000))
        remaining_ms = period_ms - sample.elapsed_ms
        if remaining_ms < 0:
            violation = CadenceViolation(stage=stage, elapsed_ms=sample.elapsed_ms, period_ms=period_ms)
            self.violations.append(violation)
            logger.warning(
                "Latency too small: query took %d ms, period is %d ms (%s)",
                sample.elapsed_ms,
                period_ms,
                stage,
            )
        if remaining_ms > 0:
            self._sleep(remaining_ms / 1000.0)

    def fill_window(
        self,
        size: int,
        period_sec: float,
        *,
        stage: str,
        cancel: Optional[CancelToken] = None,
        first: Optional[Sample] = None,
    ) -> Window:
        """
        Collect *size* paced samples.

        When *first* is given it occupies slot 0 instead of a fresh read; its
        latency drives the first pacing step.
        """
        if size <= 0:
            raise InvalidInputError(f"window size must be positive, got {size}")
        samples: List[Sample] = []
        for slot in range(size):
            if slot == 0 and first is not None:
                sample = first
            else:
                sample = self.sample(stage, cancel)
            samples.append(sample)
            self.pace(sample, period_sec, stage)
        return Window(tuple(samples))
