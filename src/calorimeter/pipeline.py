"""High level orchestration of a calorimetry run."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import pandas as pd

from .engine.config import CalorimeterConfig
from .engine.convergence import Baseline, ConvergenceDetector
from .engine.injection import await_injection
from .engine.integration import AreaIntegrator, PulseRecord
from .engine.sampler import CancelToken, TimedSampler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExperimentResult:
    initial_baseline: Baseline
    pulses: list[PulseRecord]
    calibration_constant: float
    cadence_violations: int = 0

    @property
    def energies(self) -> list[float]:
        return [pulse.energy(self.calibration_constant) for pulse in self.pulses]

    def pairs(self) -> list[tuple[float, float]]:
        """(area, energy) per injection, in injection order."""

        return [(pulse.area, pulse.energy(self.calibration_constant)) for pulse in self.pulses]

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "injection": pulse.injection,
                "baseline_before_V": pulse.baseline_before,
                "baseline_after_V": pulse.baseline_after,
                "area_Vs": pulse.area,
                "energy_J": pulse.energy(self.calibration_constant),
                "discarded_area_Vs": pulse.discarded_area,
                "samples": pulse.samples,
                "windows": pulse.windows,
            }
            for pulse in self.pulses
        ]
        columns = [
            "injection",
            "baseline_before_V",
            "baseline_after_V",
            "area_Vs",
            "energy_J",
            "discarded_area_Vs",
            "samples",
            "windows",
        ]
        return pd.DataFrame(rows, columns=columns)


def run_experiment(
    config: CalorimeterConfig,
    sampler: TimedSampler,
    *,
    cancel: Optional[CancelToken] = None,
    on_ready: Optional[Callable[[int], None]] = None,
) -> ExperimentResult:
    """
    Establish the baseline, then detect and integrate ``config.injections``
    pulses. *on_ready* is called with the injection number each time the
    engine starts waiting for an injection.

    Any HardwareError or NonConvergenceError propagates; no partial result
    is returned.
    """

    config.validate()
    token = cancel or CancelToken()
    timeout = config.detection.stage_timeout_sec
    period = float(config.sampling.latency_sec)
    size = config.window_size
    epsilon = config.detection.baseline_variation

    logger.info(
        "Waiting to reach baseline (window %d samples every %d s)", size, config.sampling.latency_sec
    )
    sampler.injection = 0
    baseline_cancel = token.scoped(timeout)
    detector = ConvergenceDetector(
        lambda: sampler.fill_window(size, period, stage="baseline", cancel=baseline_cancel),
        epsilon,
    )
    initial = detector.run()
    baseline = initial.voltage

    integrator = AreaIntegrator(
        sampler,
        window_size=size,
        period_sec=period,
        epsilon=epsilon,
        discard_passes=config.detection.discard_passes,
    )
    pulses: list[PulseRecord] = []
    for injection in range(1, config.injections + 1):
        sampler.injection = injection
        if on_ready is not None:
            on_ready(injection)
        logger.info("Ready for injection %d of %d", injection, config.injections)
        onset = await_injection(
            sampler,
            baseline,
            config.detection.injection_threshold,
            period,
            cancel=token.scoped(timeout),
        )
        record = integrator.integrate(onset, baseline, injection, cancel=token.scoped(timeout))
        pulses.append(record)
        assert record.baseline_after is not None
        baseline = record.baseline_after
        logger.info(
            "Injection %d: area %.9e V*s, energy %.9e J",
            injection,
            record.area,
            record.energy(config.calibration_constant),
        )

    return ExperimentResult(
        initial_baseline=initial,
        pulses=pulses,
        calibration_constant=config.calibration_constant,
        cadence_violations=len(sampler.violations),
    )
