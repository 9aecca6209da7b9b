"""Report writers for calorimetry runs."""
from __future__ import annotations

from pathlib import Path

from .engine.config import CalorimeterConfig
from .pipeline import ExperimentResult


def export_results(
    result: ExperimentResult,
    output_dir: Path,
    *,
    config: CalorimeterConfig | None = None,
    figure_path: Path | None = None,
    sample_log: Path | None = None,
    calibration: dict[str, float] | None = None,
) -> None:
    """Persist the pulse table and markdown report to *output_dir*."""

    output_dir.mkdir(parents=True, exist_ok=True)
    _write_pulses_csv(result, output_dir)
    _write_report_md(
        result,
        output_dir,
        config=config,
        figure_path=figure_path,
        sample_log=sample_log,
        calibration=calibration,
    )


def _write_pulses_csv(result: ExperimentResult, output_dir: Path) -> None:
    result.to_frame().to_csv(output_dir / "pulses.csv", index=False, float_format="%.9e")


def _write_report_md(
    result: ExperimentResult,
    output_dir: Path,
    *,
    config: CalorimeterConfig | None,
    figure_path: Path | None,
    sample_log: Path | None,
    calibration: dict[str, float] | None,
) -> None:
    lines: list[str] = []
    lines.append("# Calorimetry Report")
    if sample_log is not None:
        lines.append(f"*Sample log:* `{sample_log}`  ")
    if config is not None:
        lines.append(
            f"*Sampling:* every {config.sampling.latency_sec} s, "
            f"window {config.sampling.baseline_window_sec} s ({config.window_size} samples)  "
        )
        lines.append(
            f"*Thresholds:* baseline variation {config.detection.baseline_variation:.3g} V, "
            f"injection {config.detection.injection_threshold:.3g} V, "
            f"{config.detection.discard_passes} discard windows  "
        )
    lines.append(f"*Calibration constant:* {result.calibration_constant:.6g} J/(V*s)  ")
    lines.append(
        f"*Initial baseline:* {result.initial_baseline.voltage:.9e} V "
        f"({result.initial_baseline.windows} windows)  "
    )
    lines.append(f"*Cadence violations:* {result.cadence_violations}  ")
    lines.append("")

    lines.append("## Injections")
    lines.append("| # | Baseline before (V) | Baseline after (V) | Area (V*s) | Energy (J) |")
    lines.append("| ---: | ---: | ---: | ---: | ---: |")
    for pulse, energy in zip(result.pulses, result.energies):
        after = f"{pulse.baseline_after:.9e}" if pulse.baseline_after is not None else "n/a"
        lines.append(
            f"| {pulse.injection} | {pulse.baseline_before:.9e} | {after} "
            f"| {pulse.area:.9e} | {energy:.9e} |"
        )
    lines.append("")

    if calibration:
        lines.append("## Electrical calibration")
        lines.append("| Quantity | Value |")
        lines.append("| --- | ---: |")
        for key, value in calibration.items():
            lines.append(f"| {key} | {value:.6g} |")
        lines.append("")

    if figure_path is not None:
        lines.append(f"![Signal trace]({figure_path.name})")
        lines.append("")

    lines.append("### Notes")
    lines.append("- Area is the rectangle-rule sum of |V - baseline| * latency after the discard windows.")
    lines.append("- Energy is area multiplied by the calibration constant.")

    (output_dir / "report.md").write_text("\n".join(lines), encoding="utf-8")
