from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from calorimeter.engine.instruments import ReplayInstrument
from calorimeter.engine.integration import AreaIntegrator, PulseRecord, sample_area
from calorimeter.engine.recording import SampleLog
from calorimeter.engine.sampler import Sample, TimedSampler

K = 7.846


def make_integrator(voltages, *, size, period, discard_passes, sample_log=None):
    sampler = TimedSampler(ReplayInstrument(voltages), sample_log=sample_log, sleep=lambda _s: None)
    integrator = AreaIntegrator(
        sampler,
        window_size=size,
        period_sec=period,
        epsilon=1e-7,
        discard_passes=discard_passes,
    )
    return integrator


def test_rectangle_rule_area_of_accumulate_phase() -> None:
    integrator = make_integrator([0.3, 0.1, 0.1, 0.2, 0.1], size=3, period=1.0, discard_passes=1)
    record = integrator.integrate(Sample(voltage=0.5, elapsed_ms=0), 0.0, 1)
    assert record.finalized
    assert record.area == pytest.approx(0.4)
    assert record.discarded_area == pytest.approx(0.9)
    assert record.samples == 3
    assert record.windows == 1
    assert record.baseline_after == pytest.approx(0.4 / 3)
    assert record.energy(K) == record.area * K
    assert record.energy(K) == pytest.approx(0.4 * K)


def test_discard_windows_excluded_from_area(tmp_path: Path) -> None:
    log = SampleLog(tmp_path / "samples.csv")
    voltages = [4.0, 3.0, 2.0, 1.0, 0.5, 0.2, 0.1, 0.1, 0.1]
    integrator = make_integrator(voltages, size=2, period=2.0, discard_passes=2, sample_log=log)
    record = integrator.integrate(Sample(voltage=5.0, elapsed_ms=0), 0.0, 1)
    log.close()

    assert record.area == pytest.approx(4.0)
    assert record.discarded_area == pytest.approx(28.0)
    assert record.windows == 3
    assert record.samples == 6
    assert record.baseline_after == pytest.approx(0.1)

    df = pd.read_csv(tmp_path / "samples.csv", comment="#")
    tail = df[df["stage"] == "integration"]
    expected = sum(sample_area(v, 0.0, 2.0) for v in tail["voltage_V"])
    assert len(tail) == record.samples
    assert record.area == pytest.approx(expected)
    assert (df["stage"] == "discard").sum() == 3


def test_negative_deviations_add_up() -> None:
    integrator = make_integrator([-0.1, -0.1, -0.1], size=2, period=1.0, discard_passes=0)
    record = integrator.integrate(Sample(voltage=-0.5, elapsed_ms=0), 0.0, 3)
    # onset opens the first accumulated window when nothing is discarded
    assert record.area == pytest.approx(0.5 + 0.1 + 0.1 + 0.1)
    assert record.discarded_area == 0.0
    assert record.injection == 3
    assert record.area >= 0


def test_pulse_record_is_monotonic_and_read_only() -> None:
    record = PulseRecord(injection=1, baseline_before=0.0)
    history = []
    for value in [0.1, 0.0, 0.3]:
        record.add(value)
        history.append(record.area)
    assert history == sorted(history)
    with pytest.raises(ValueError):
        record.add(-0.1)
    record.finalize(0.2)
    with pytest.raises(RuntimeError):
        record.add(0.1)
    assert record.baseline_after == 0.2
