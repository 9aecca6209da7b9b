"""Synthetic calorimeter for demos and dry runs."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import numpy as np

from .engine.config import CalorimeterConfig, DetectionConfig, SamplingConfig
from .engine.runner import CalorimeterHost
from .pipeline import ExperimentResult
from .plotting import generate_plots
from .reporting import export_results

logger = logging.getLogger(__name__)


class SimulatedCalorimeter:
    """
    Voltage source with a flat noisy baseline that answers each injection
    request with an exponentially decaying thermal pulse a few reads later.
    """

    def __init__(
        self,
        *,
        baseline: float = 1.0e-3,
        noise: float = 5e-8,
        amplitude: float = 2e-4,
        rise_reads: float = 2.0,
        decay_reads: float = 6.0,
        delay_reads: int = 3,
        seed: int = 42,
    ) -> None:
        self._rng = np.random.default_rng(seed)
        self.baseline = baseline
        self.noise = noise
        self.amplitude = amplitude
        self.rise_reads = rise_reads
        self.decay_reads = decay_reads
        self.delay_reads = delay_reads
        self._armed_at: Optional[int] = None
        self.reads = 0

    def arm(self, injection: int) -> None:
        self._armed_at = self.reads + self.delay_reads
        logger.debug("Simulated injection %d scheduled at read %d", injection, self._armed_at)

    def pulse(self, t: int) -> float:
        return float(self.amplitude * (1.0 - np.exp(-(t + 1) / self.rise_reads)) * np.exp(-t / self.decay_reads))

    def read_voltage(self) -> float:
        value = self.baseline
        if self._armed_at is not None and self.reads >= self._armed_at:
            value += self.pulse(self.reads - self._armed_at)
        self.reads += 1
        return value + float(self._rng.normal(scale=self.noise))


def demo_config(out_dir: Path, injections: int = 2) -> CalorimeterConfig:
    return CalorimeterConfig(
        injections=injections,
        sample_log=out_dir / "samples.csv",
        sampling=SamplingConfig(latency_sec=1, baseline_window_sec=5),
        detection=DetectionConfig(),
    )


def run_demo(out_dir: Path, injections: int = 2, seed: int = 42) -> ExperimentResult:
    out_dir.mkdir(parents=True, exist_ok=True)
    config = demo_config(out_dir, injections)
    simulator = SimulatedCalorimeter(seed=seed)
    host = CalorimeterHost(config, simulator, sleep=lambda _seconds: None)
    host.register_ready_hook(simulator.arm)
    result = host.run()

    figure_path = None
    try:
        assert config.sample_log is not None
        figure_path = generate_plots(config.sample_log, out_dir, result)
    except RuntimeError as exc:
        logger.warning("plotting skipped: %s", exc)

    export_results(
        result,
        out_dir,
        config=config,
        figure_path=figure_path,
        sample_log=config.sample_log,
    )
    return result
