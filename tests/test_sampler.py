from __future__ import annotations

import logging
import threading
from pathlib import Path

import pytest

from calorimeter.engine.instruments import ReplayInstrument
from calorimeter.engine.recording import SampleLog
from calorimeter.engine.sampler import CancelToken, Sample, TimedSampler
from calorimeter.errors import HardwareError, InvalidInputError, NonConvergenceError

from tests.helpers import ClockedInstrument, FakeClock, SleepRecorder


def make_sampler(voltages, read_sec=0.25, sample_log=None):
    clock = FakeClock()
    instrument = ClockedInstrument(clock, voltages, read_sec=read_sec)
    sleeper = SleepRecorder(clock)
    sampler = TimedSampler(instrument, sample_log=sample_log, sleep=sleeper, clock=clock)
    return sampler, instrument, sleeper


def test_sample_measures_latency() -> None:
    sampler, _, _ = make_sampler([1.5], read_sec=0.25)
    sample = sampler.sample("baseline")
    assert sample == Sample(voltage=1.5, elapsed_ms=250)
    assert sampler.samples_taken == 1


def test_fill_window_sleeps_remaining_period() -> None:
    sampler, instrument, sleeper = make_sampler([1.0, 2.0, 3.0], read_sec=0.25)
    window = sampler.fill_window(3, 1.0, stage="baseline")
    assert [s.voltage for s in window.samples] == [1.0, 2.0, 3.0]
    assert sleeper.calls == [0.75, 0.75, 0.75]
    assert instrument.reads == 3
    assert sampler.violations == []


def test_slow_read_logs_cadence_violation(caplog: pytest.LogCaptureFixture) -> None:
    sampler, _, sleeper = make_sampler([1.0, 1.0], read_sec=1.5)
    with caplog.at_level(logging.WARNING):
        sampler.fill_window(2, 1.0, stage="baseline")
    assert sleeper.calls == []
    assert len(sampler.violations) == 2
    violation = sampler.violations[0]
    assert violation.elapsed_ms == 1500
    assert violation.period_ms == 1000
    assert violation.overrun_ms == 500
    assert "Latency too small" in caplog.text


def test_read_exactly_one_period_is_not_a_violation() -> None:
    sampler, _, sleeper = make_sampler([1.0], read_sec=1.0)
    sampler.fill_window(1, 1.0, stage="baseline")
    assert sampler.violations == []
    assert sleeper.calls == []


def test_fill_window_uses_seed_sample() -> None:
    sampler, instrument, sleeper = make_sampler([2.0, 3.0], read_sec=0.25)
    onset = Sample(voltage=9.0, elapsed_ms=500)
    window = sampler.fill_window(3, 1.0, stage="discard", first=onset)
    assert [s.voltage for s in window.samples] == [9.0, 2.0, 3.0]
    assert instrument.reads == 2
    assert sleeper.calls[0] == pytest.approx(0.5)


def test_fill_window_rejects_empty_size() -> None:
    sampler, _, _ = make_sampler([])
    with pytest.raises(InvalidInputError):
        sampler.fill_window(0, 1.0, stage="baseline")


def test_transport_errors_become_hardware_errors() -> None:
    class Broken:
        def read_voltage(self) -> float:
            raise OSError("bus timeout")

    sampler = TimedSampler(Broken(), sleep=lambda _s: None)
    with pytest.raises(HardwareError):
        sampler.sample("baseline")


def test_exhausted_replay_is_hardware_error() -> None:
    sampler = TimedSampler(ReplayInstrument([1.0]), sleep=lambda _s: None)
    sampler.sample("baseline")
    with pytest.raises(HardwareError):
        sampler.sample("baseline")


def test_every_sample_is_logged(tmp_path: Path) -> None:
    log = SampleLog(tmp_path / "samples.csv")
    sampler, _, _ = make_sampler([1.0, 2.0, 3.0], sample_log=log)
    sampler.injection = 2
    sampler.fill_window(3, 1.0, stage="integration")
    log.close()
    lines = (tmp_path / "samples.csv").read_text(encoding="utf-8").splitlines()
    assert lines[0] == "seq,t_s,stage,injection,voltage_V,elapsed_ms"
    assert len(lines) == 4
    assert lines[1].split(",")[2:] == ["integration", "2", "1.000000000", "250"]


def test_log_failure_reported_once(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    log = SampleLog(blocker / "samples.csv")
    sampler, _, _ = make_sampler([1.0, 2.0, 3.0], sample_log=log)
    with caplog.at_level(logging.ERROR):
        window = sampler.fill_window(3, 1.0, stage="baseline")
    assert len(window) == 3
    assert log.failed
    errors = [record for record in caplog.records if record.levelno == logging.ERROR]
    assert len(errors) == 1


def test_cancel_token_aborts_sampling() -> None:
    sampler, _, _ = make_sampler([1.0, 1.0])
    token = CancelToken()
    sampler.sample("baseline", token)
    token.cancel()
    with pytest.raises(NonConvergenceError) as excinfo:
        sampler.sample("baseline", token)
    assert excinfo.value.stage == "baseline"
    assert excinfo.value.reason == "cancelled"


def test_cancel_token_deadline() -> None:
    clock = FakeClock()
    token = CancelToken(timeout_sec=5.0, clock=clock)
    token.check("injection")
    clock.advance(5.0)
    with pytest.raises(NonConvergenceError) as excinfo:
        token.check("injection")
    assert excinfo.value.stage == "injection"


def test_scoped_token_shares_event() -> None:
    event = threading.Event()
    parent = CancelToken(event)
    child = parent.scoped(10.0)
    child.check("baseline")
    parent.cancel()
    assert child.cancelled
    with pytest.raises(NonConvergenceError):
        child.check("baseline")
