"""Command line interface for the calorimeter package."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

import typer

from .calibration import (
    HeaterPulse,
    calibration_constants,
    fit_calibration_constant,
    heater_energy,
    intensity_for_energy,
)
from .demo import run_demo
from .engine.config import CalorimeterConfig, load_config
from .engine.instruments import SerialCommandClient, SerialCurrentSource, SerialSettings
from .engine.runner import CalorimeterHost, open_instrument
from .errors import HardwareError, InvalidInputError, NonConvergenceError
from .pipeline import ExperimentResult
from .plotting import generate_plots
from .reporting import export_results

logger = logging.getLogger(__name__)

app = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]}, add_completion=False)


@app.callback()
def main(
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (DEBUG, INFO, WARNING...)."),
) -> None:
    """Calorimeter acquisition host."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    )


def _build_config(
    config_path: Optional[Path],
    override: Optional[list[str]],
    *,
    injections: Optional[int],
    latency: Optional[int],
    window: Optional[int],
    port: Optional[str],
    sample_log: Optional[Path],
    stage_timeout: Optional[float],
) -> CalorimeterConfig:
    options: list[str] = []
    if injections is not None:
        options.append(f"injections={injections}")
    if latency is not None:
        options.append(f"sampling.latency_sec={latency}")
    if window is not None:
        options.append(f"sampling.baseline_window_sec={window}")
    if port is not None:
        options.append(f"instrument.port={port}")
    if sample_log is not None:
        options.append(f"sample_log={sample_log}")
    if stage_timeout is not None:
        options.append(f"detection.stage_timeout_sec={stage_timeout}")
    try:
        return load_config(config_path, options + (override or []))
    except InvalidInputError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _open(cfg: CalorimeterConfig, replay: Optional[Path]):
    try:
        return open_instrument(cfg, replay)
    except (HardwareError, ImportError) as exc:
        logger.error("Error connecting to nanovoltmeter: %s", exc)
        raise typer.Exit(code=1) from exc


def _execute(host: CalorimeterHost) -> ExperimentResult:
    try:
        return host.run()
    except KeyboardInterrupt:
        logger.info("Stopping run (Ctrl+C)")
        raise typer.Exit(code=130)
    except (HardwareError, NonConvergenceError) as exc:
        logger.error("Run aborted, no results reported: %s", exc)
        raise typer.Exit(code=1) from exc


def _finish(
    result: ExperimentResult,
    config: CalorimeterConfig,
    report_dir: Optional[Path],
    plot: bool,
    calibration: Optional[dict[str, float]] = None,
) -> None:
    for pulse, energy in zip(result.pulses, result.energies):
        typer.echo(f"Area {pulse.injection}: {pulse.area:.9e} V*s")
        typer.echo(f"Energy {pulse.injection}: {energy:.9e} J")
    if report_dir is None:
        return
    figure_path = None
    if plot and config.sample_log is not None:
        try:
            figure_path = generate_plots(config.sample_log, report_dir, result)
        except RuntimeError as exc:
            typer.echo(f"[warning] plotting skipped: {exc}")
    export_results(
        result,
        report_dir,
        config=config,
        figure_path=figure_path,
        sample_log=config.sample_log,
        calibration=calibration,
    )
    typer.echo(f"Report written to {report_dir}")


@app.command()
def run(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON run configuration."),
    injections: Optional[int] = typer.Option(None, "--injections", "-n", help="Number of injections."),
    latency: Optional[int] = typer.Option(None, "--latency", help="Sampling latency (s)."),
    window: Optional[int] = typer.Option(None, "--window", help="Baseline window (s), a multiple of latency."),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Nanovoltmeter serial port. Use '-' for stdin."),
    replay: Optional[Path] = typer.Option(None, "--replay", help="Replay readings from a recorded log.", exists=True),
    sample_log: Optional[Path] = typer.Option(None, "--log", help="CSV file receiving every reading."),
    stage_timeout: Optional[float] = typer.Option(None, "--stage-timeout", help="Abort a stage after N seconds."),
    report_dir: Optional[Path] = typer.Option(None, "--report", help="Output directory for reports."),
    plot: bool = typer.Option(False, "--plot", help="Add a signal plot to the report."),
    override: Optional[list[str]] = typer.Option(
        None,
        "--set",
        help="Override config keys, e.g. --set detection.discard_passes=3",
    ),
) -> None:
    """Establish the baseline, then measure each injection's area and energy."""

    cfg = _build_config(
        config_path,
        override,
        injections=injections,
        latency=latency,
        window=window,
        port=port,
        sample_log=sample_log,
        stage_timeout=stage_timeout,
    )
    instrument = _open(cfg, replay)
    recorded = replay is not None or cfg.instrument.port == "-"
    host = CalorimeterHost(cfg, instrument, sleep=_no_sleep if recorded else time.sleep)
    host.register_ready_hook(lambda n: typer.echo(f"\aYou can start injection {n}..."))
    result = _execute(host)
    _finish(result, cfg, report_dir, plot)


@app.command()
def calibrate(
    energy_mj: float = typer.Option(..., "--energy", help="Heater energy per pulse (mJ)."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON run configuration."),
    injections: Optional[int] = typer.Option(None, "--injections", "-n", help="Number of heater pulses."),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Nanovoltmeter serial port. Use '-' for stdin."),
    replay: Optional[Path] = typer.Option(None, "--replay", help="Replay readings from a recorded log.", exists=True),
    source_port: Optional[str] = typer.Option(None, "--source-port", help="Current source serial port."),
    sample_log: Optional[Path] = typer.Option(None, "--log", help="CSV file receiving every reading."),
    stage_timeout: Optional[float] = typer.Option(None, "--stage-timeout", help="Abort a stage after N seconds."),
    report_dir: Optional[Path] = typer.Option(None, "--report", help="Output directory for reports."),
    override: Optional[list[str]] = typer.Option(None, "--set", help="Override config keys."),
) -> None:
    """Fire heater pulses of known energy and fit the calibration constant."""

    cfg = _build_config(
        config_path,
        override,
        injections=injections,
        latency=None,
        window=None,
        port=port,
        sample_log=sample_log,
        stage_timeout=stage_timeout,
    )
    heater = cfg.heater
    energy_j = energy_mj / 1000.0
    try:
        intensity = intensity_for_energy(
            energy_j,
            resistance_ohm=heater.resistance_ohm,
            pulse_sec=heater.pulse_sec,
            max_intensity_a=heater.max_intensity_a,
        )
    except InvalidInputError as exc:
        raise typer.BadParameter(str(exc), param_hint="--energy") from exc
    target_port = source_port or heater.port
    if target_port is None:
        raise typer.BadParameter("A current source port is required", param_hint="--source-port")

    try:
        source = SerialCurrentSource(
            SerialCommandClient(SerialSettings(port=target_port, baudrate=heater.baudrate))
        )
    except (HardwareError, ImportError) as exc:
        logger.error("Error connecting to current source: %s", exc)
        raise typer.Exit(code=1) from exc
    pulse = HeaterPulse(source, intensity, heater.pulse_sec)
    try:
        recorded = replay is not None or cfg.instrument.port == "-"
        host = CalorimeterHost(cfg, _open(cfg, replay), sleep=_no_sleep if recorded else time.sleep)
        host.register_ready_hook(pulse.fire)
        result = _execute(host)
    finally:
        pulse.cancel()
        source.close()

    delivered = heater_energy(intensity, heater.resistance_ohm, heater.pulse_sec)
    try:
        constants = calibration_constants(result, delivered)
        fitted = fit_calibration_constant(result, delivered)
    except InvalidInputError as exc:
        logger.error("Calibration failed: %s", exc)
        raise typer.Exit(code=1) from exc
    typer.echo(f"Heater: {intensity:.5f} A x {heater.pulse_sec:g} s -> {delivered:.6e} J per pulse")
    for index, value in enumerate(constants, start=1):
        typer.echo(f"Constant {index}: {value:.6g} J/(V*s)")
    typer.echo(f"Fitted calibration constant: {fitted:.6g} J/(V*s)")
    _finish(
        result,
        cfg,
        report_dir,
        plot=False,
        calibration={
            "heater_intensity_A": intensity,
            "pulse_energy_J": delivered,
            "fitted_constant": fitted,
        },
    )


@app.command()
def demo(
    out_dir: Path = typer.Option(Path("demo_output"), "--out", help="Target directory for demo report."),
    injections: int = typer.Option(2, "--injections", "-n", help="Number of simulated injections."),
    seed: int = typer.Option(42, "--seed", help="Noise seed."),
) -> None:
    """Run the engine against a simulated calorimeter."""

    if injections <= 0:
        raise typer.BadParameter("must be positive", param_hint="--injections")
    result = run_demo(out_dir, injections=injections, seed=seed)
    for pulse, energy in zip(result.pulses, result.energies):
        typer.echo(f"Injection {pulse.injection}: area {pulse.area:.6e} V*s, energy {energy:.6e} J")
    typer.echo(f"Demo sample log and report written to {out_dir}")


@app.command()
def plot(
    sample_log: Path = typer.Option(..., "--log", help="Sample log CSV.", exists=True, readable=True),
    out_dir: Path = typer.Option(Path("."), "--out", help="Directory for signal.png."),
) -> None:
    """Plot a recorded sample log."""

    try:
        path = generate_plots(sample_log, out_dir)
    except RuntimeError as exc:
        typer.echo(f"Plotting failed: {exc}")
        raise typer.Exit(code=1) from exc
    typer.echo(f"Plot written to {path}")


def _no_sleep(_seconds: float) -> None:
    """Recorded readings are replayed back to back."""


def run_cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run_cli()
