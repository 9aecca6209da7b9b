from __future__ import annotations

import logging
import sys
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

from ..pipeline import ExperimentResult, run_experiment
from .config import CalorimeterConfig
from .instruments import (
    Instrument,
    ReplayInstrument,
    SerialCommandClient,
    SerialNanovoltmeter,
    SerialSettings,
)
from .recording import SampleLog
from .sampler import CancelToken, TimedSampler

logger = logging.getLogger(__name__)


def open_instrument(config: CalorimeterConfig, replay: Optional[Path] = None) -> Instrument:
    """
    Pick the voltage source for a run: a recorded file, stdin (port ``-``)
    or the serial nanovoltmeter.
    """
    if replay is not None:
        return ReplayInstrument.from_file(replay)
    if config.instrument.port == "-":
        return ReplayInstrument.from_stream(sys.stdin)
    settings = SerialSettings(
        port=config.instrument.port,
        baudrate=config.instrument.baudrate,
        timeout=config.instrument.timeout,
    )
    return SerialNanovoltmeter(
        SerialCommandClient(settings),
        read_command=config.instrument.read_command,
        init_commands=config.instrument.init_commands,
    )


class CalorimeterHost:
    """Owns the instrument, sample log and cancel token for one run."""

    def __init__(
        self,
        config: CalorimeterConfig,
        instrument: Instrument,
        *,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.config = config.validate()
        self.instrument = instrument
        self.sample_log = SampleLog(config.sample_log) if config.sample_log else None
        self.sampler = TimedSampler(instrument, sample_log=self.sample_log, sleep=sleep)
        self.cancel = CancelToken(cancel_event)
        self._ready_hooks: List[Callable[[int], None]] = []
        if self.sample_log:
            self.sample_log.note(
                {
                    "latency_sec": str(config.sampling.latency_sec),
                    "window_sec": str(config.sampling.baseline_window_sec),
                    "injections": str(config.injections),
                    "baseline_variation": f"{config.detection.baseline_variation:g}",
                    "injection_threshold": f"{config.detection.injection_threshold:g}",
                    "K": f"{config.calibration_constant:g}",
                }
            )

    def register_ready_hook(self, hook: Callable[[int], None]) -> None:
        self._ready_hooks.append(hook)

    def run(self) -> ExperimentResult:
        started = time.monotonic()
        try:
            result = run_experiment(self.config, self.sampler, cancel=self.cancel, on_ready=self._on_ready)
        finally:
            self.close()
        logger.info(
            "Run finished: %d injections, %d samples, %d cadence violations in %.1f s",
            len(result.pulses),
            self.sampler.samples_taken,
            len(self.sampler.violations),
            time.monotonic() - started,
        )
        return result

    def stop(self) -> None:
        self.cancel.cancel()

    def _on_ready(self, injection: int) -> None:
        if self.sample_log:
            self.sample_log.note({"ready_for_injection": str(injection)})
        for hook in self._ready_hooks:
            hook(injection)

    def close(self) -> None:
        if self.sample_log:
            self.sample_log.close()
        closer = getattr(self.instrument, "close", None)
        if closer is not None:
            try:
                closer()
            except Exception:
                logger.debug("Instrument close failed", exc_info=True)
