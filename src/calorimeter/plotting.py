"""Plotting helpers for recorded sample logs."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import pandas as pd

from .pipeline import ExperimentResult

STAGE_STYLE = {
    "baseline": "tab:blue",
    "injection": "tab:green",
    "discard": "tab:gray",
    "integration": "tab:orange",
}


def load_sample_log(path: Path) -> pd.DataFrame:
    return pd.read_csv(path, comment="#")


def generate_plots(sample_log: Path, output_dir: Path, result: ExperimentResult | None = None) -> Path:
    df = load_sample_log(sample_log)
    if df.empty:
        raise RuntimeError(f"sample log {sample_log} holds no readings")
    plt = _require_matplotlib()
    output_dir.mkdir(parents=True, exist_ok=True)
    fig, ax = plt.subplots(figsize=(12, 5))

    for stage, group in df.groupby("stage", sort=False):
        ax.scatter(
            group["t_s"],
            group["voltage_V"],
            s=6,
            color=STAGE_STYLE.get(str(stage), "black"),
            label=str(stage),
        )

    if result is not None:
        ax.axhline(result.initial_baseline.voltage, color="black", linewidth=0.8, linestyle="--")
        for pulse in result.pulses:
            if pulse.baseline_after is not None:
                ax.axhline(pulse.baseline_after, color="tab:red", linewidth=0.6, linestyle=":")

    ax.set_title("Calorimeter signal")
    ax.set_xlabel("Time (s)")
    ax.set_ylabel("Voltage (V)")
    ax.legend(loc="best")

    fig.tight_layout()
    out_path = output_dir / "signal.png"
    fig.savefig(out_path, dpi=150)
    plt.close(fig)
    return out_path


def _require_matplotlib() -> Any:
    try:
        import matplotlib
        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt  # type: ignore
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("matplotlib is required for plotting; install calorimeter[plot]") from exc
    except Exception as exc:  # pragma: no cover - environment issues
        raise RuntimeError(f"matplotlib initialisation failed: {exc}") from exc
    return plt
