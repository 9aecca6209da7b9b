from __future__ import annotations

import logging
from typing import Optional

from .sampler import CancelToken, Sample, TimedSampler

logger = logging.getLogger(__name__)


def await_injection(
    sampler: TimedSampler,
    baseline: float,
    threshold: float,
    period_sec: float,
    *,
    cancel: Optional[CancelToken] = None,
) -> Sample:
    """
    Sample at the paced cadence until a reading sits at least *threshold* away
    from *baseline*, and return that onset sample.

    The onset is returned unpaced; the integrator uses its latency for the
    first sleep of the discard phase.
    """
    logger.info(
        "Waiting for injection outside [%.5e - %.5e]",
        baseline - threshold,
        baseline + threshold,
    )
    while True:
        sample = sampler.sample("injection", cancel)
        if abs(sample.voltage - baseline) >= threshold:
            logger.info("Injection detected: %.9f V (baseline %.9f V)", sample.voltage, baseline)
            return sample
        sampler.pace(sample, period_sec, "injection")
