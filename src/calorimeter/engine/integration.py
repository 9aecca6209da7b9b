from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..stats import WindowStats
from .config import DISCARD_PASSES
from .convergence import ConvergenceDetector
from .sampler import CancelToken, Sample, TimedSampler, Window

logger = logging.getLogger(__name__)


def sample_area(voltage: float, baseline: float, period_sec: float) -> float:
    """Rectangle-rule contribution of one sample, always non-negative (V*s)."""

    return abs((voltage - baseline) * period_sec)


@dataclass
class PulseRecord:
    """Integrated area for one injection."""

    injection: int
    baseline_before: float
    area: float = 0.0
    discarded_area: float = 0.0
    samples: int = 0
    windows: int = 0
    baseline_after: Optional[float] = None
    finalized: bool = False

    def add(self, contribution: float) -> None:
        if self.finalized:
            raise RuntimeError(f"Pulse {self.injection} is finalized")
        if contribution < 0:
            raise ValueError("area contributions must be non-negative")
        self.area += contribution
        self.samples += 1

    def finalize(self, baseline_after: float) -> None:
        self.baseline_after = baseline_after
        self.finalized = True

    def energy(self, calibration_constant: float) -> float:
        return self.area * calibration_constant


class AreaIntegrator:
    """
    Integrate one thermal pulse from its onset sample.

    The first ``discard_passes`` windows let the transient peak pass; their
    area goes to a scratch figure only. After that every sample is added to
    the record and the convergence test runs per window until the signal
    settles on its new baseline.
    """

    def __init__(
        self,
        sampler: TimedSampler,
        *,
        window_size: int,
        period_sec: float,
        epsilon: float,
        discard_passes: int = DISCARD_PASSES,
    ) -> None:
        self.sampler = sampler
        self.window_size = window_size
        self.period_sec = period_sec
        self.epsilon = epsilon
        self.discard_passes = discard_passes

    def integrate(
        self,
        onset: Sample,
        baseline: float,
        injection: int,
        *,
        cancel: Optional[CancelToken] = None,
    ) -> PulseRecord:
        record = PulseRecord(injection=injection, baseline_before=baseline)
        logger.info("Measuring peak area %d", injection)

        seed: Optional[WindowStats] = None
        pending: Optional[Sample] = onset
        for _ in range(self.discard_passes):
            window = self.sampler.fill_window(
                self.window_size, self.period_sec, stage="discard", cancel=cancel, first=pending
            )
            pending = None
            record.discarded_area += sum(
                sample_area(sample.voltage, baseline, self.period_sec) for sample in window.samples
            )
            seed = window.stats()

        def fill_and_accumulate() -> Window:
            nonlocal pending
            window = self.sampler.fill_window(
                self.window_size, self.period_sec, stage="integration", cancel=cancel, first=pending
            )
            pending = None
            for sample in window.samples:
                record.add(sample_area(sample.voltage, baseline, self.period_sec))
            record.windows += 1
            return window

        detector = ConvergenceDetector(fill_and_accumulate, self.epsilon, label=f"pulse {injection} baseline")
        new_baseline = detector.run(seed)
        record.finalize(new_baseline.voltage)
        logger.info(
            "Pulse %d area: %.9e V*s over %d samples (discarded %.9e V*s)",
            injection,
            record.area,
            record.samples,
            record.discarded_area,
        )
        return record
