from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..errors import InvalidInputError

# Acceptable electrical drift between consecutive baseline windows (V).
BASELINE_VARIATION = 1e-7
# Deviation from baseline that marks the start of an injection (V).
INJECTION_VARIATION = 1e-5
# Windows skipped after onset so the transient first peak is not read as the tail.
DISCARD_PASSES = 2
# Energy per unit area (J / V*s) for the reference cell.
CALIBRATION_CONSTANT = 7.846

DEFAULT_INIT_COMMANDS = [
    "*RST",
    ":SENS:FUNC 'VOLT'",
    ":SENS:CHAN 1",
    ":SENS:VOLT:CHAN1:RANG:AUTO ON",
]


@dataclass
class SamplingConfig:
    latency_sec: int = 1
    baseline_window_sec: int = 10


@dataclass
class DetectionConfig:
    baseline_variation: float = BASELINE_VARIATION
    injection_threshold: float = INJECTION_VARIATION
    discard_passes: int = DISCARD_PASSES
    stage_timeout_sec: Optional[float] = None


@dataclass
class InstrumentConfig:
    port: str = "/dev/ttyUSB0"
    baudrate: int = 9600
    timeout: float = 10.0
    read_command: str = ":READ?"
    init_commands: List[str] = field(default_factory=lambda: list(DEFAULT_INIT_COMMANDS))


@dataclass
class HeaterConfig:
    port: Optional[str] = None
    baudrate: int = 9600
    resistance_ohm: float = 324.0
    pulse_sec: float = 20.0
    max_intensity_a: float = 0.03


@dataclass
class CalorimeterConfig:
    injections: int = 1
    calibration_constant: float = CALIBRATION_CONSTANT
    sample_log: Path | None = None
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    instrument: InstrumentConfig = field(default_factory=InstrumentConfig)
    heater: HeaterConfig = field(default_factory=HeaterConfig)

    @property
    def window_size(self) -> int:
        latency = self.sampling.latency_sec
        span = self.sampling.baseline_window_sec
        if latency <= 0 or span % latency != 0:
            raise InvalidInputError(
                f"baseline window ({span} s) must be a positive multiple of latency ({latency} s)"
            )
        return span // latency

    def validate(self) -> "CalorimeterConfig":
        """Reject any configuration the engine cannot run with."""

        _require_int("injections", self.injections, minimum=1)
        _require_int("sampling.latency_sec", self.sampling.latency_sec, minimum=1)
        _require_int("sampling.baseline_window_sec", self.sampling.baseline_window_sec, minimum=1)
        if self.sampling.baseline_window_sec % self.sampling.latency_sec != 0:
            raise InvalidInputError(
                "sampling.baseline_window_sec must be an exact multiple of sampling.latency_sec "
                f"(got {self.sampling.baseline_window_sec} and {self.sampling.latency_sec})"
            )
        _require_positive("detection.baseline_variation", self.detection.baseline_variation)
        _require_positive("detection.injection_threshold", self.detection.injection_threshold)
        _require_int("detection.discard_passes", self.detection.discard_passes, minimum=0)
        if self.detection.stage_timeout_sec is not None:
            _require_positive("detection.stage_timeout_sec", self.detection.stage_timeout_sec)
        _require_positive("calibration_constant", self.calibration_constant)
        return self


def _require_int(name: str, value: Any, *, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise InvalidInputError(f"{name} must be >= {minimum}, got {value}")


def _require_positive(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not value > 0:
        raise InvalidInputError(f"{name} must be a positive number, got {value!r}")


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> CalorimeterConfig:
    """
    Load a run configuration from JSON and apply CLI-style overrides.

    Overrides are expressed as dotted `key=value` pairs, e.g.:
        ["sampling.latency_sec=2", "detection.discard_passes=3"]
    The result is validated before it is returned.
    """
    data: Dict[str, Any] = _load_json(Path(path)) if path is not None else {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)
    return config_from_mapping(merged).validate()


def config_from_mapping(merged: Dict[str, Any]) -> CalorimeterConfig:
    sampling = merged.get("sampling") or {}
    detection = merged.get("detection") or {}
    instrument = merged.get("instrument") or {}
    heater = merged.get("heater") or {}
    timeout = detection.get("stage_timeout_sec")
    try:
        return CalorimeterConfig(
            injections=_as_int(merged.get("injections", 1)),
            calibration_constant=float(merged.get("calibration_constant", CALIBRATION_CONSTANT)),
            sample_log=Path(str(merged["sample_log"])) if merged.get("sample_log") is not None else None,
            sampling=SamplingConfig(
                latency_sec=_as_int(sampling.get("latency_sec", 1)),
                baseline_window_sec=_as_int(sampling.get("baseline_window_sec", 10)),
            ),
            detection=DetectionConfig(
                baseline_variation=float(detection.get("baseline_variation", BASELINE_VARIATION)),
                injection_threshold=float(detection.get("injection_threshold", INJECTION_VARIATION)),
                discard_passes=_as_int(detection.get("discard_passes", DISCARD_PASSES)),
                stage_timeout_sec=float(timeout) if timeout is not None else None,
            ),
            instrument=InstrumentConfig(
                port=str(instrument.get("port", "/dev/ttyUSB0")),
                baudrate=int(instrument.get("baudrate", 9600)),
                timeout=float(instrument.get("timeout", 10.0)),
                read_command=str(instrument.get("read_command", ":READ?")),
                init_commands=[str(cmd) for cmd in instrument.get("init_commands", DEFAULT_INIT_COMMANDS)],
            ),
            heater=HeaterConfig(
                port=str(heater["port"]) if heater.get("port") is not None else None,
                baudrate=int(heater.get("baudrate", 9600)),
                resistance_ohm=float(heater.get("resistance_ohm", 324.0)),
                pulse_sec=float(heater.get("pulse_sec", 20.0)),
                max_intensity_a=float(heater.get("max_intensity_a", 0.03)),
            ),
        )
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"Invalid configuration value: {exc}") from exc


def _as_int(value: Any) -> Any:
    # Integral floats (e.g. 10.0 from JSON) are accepted; anything else is left for validate().
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise InvalidInputError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise InvalidInputError("Override key may not be empty")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    if raw.lower() in {"null", "none"}:
        return None
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if raw.startswith("[") and raw.endswith("]"):
        return json.loads(raw)
    if raw.startswith("{") and raw.endswith("}"):
        return json.loads(raw)
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
