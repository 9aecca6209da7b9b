from __future__ import annotations

import csv
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Protocol, Sequence, TextIO

import pandas as pd

try:
    import serial  # type: ignore[import]
except ImportError:  # pragma: no cover - handled when a serial instrument is opened
    serial = None  # type: ignore[assignment]

from ..errors import HardwareError

logger = logging.getLogger(__name__)


class Instrument(Protocol):
    def read_voltage(self) -> float:
        ...


@dataclass
class SerialSettings:
    port: str
    baudrate: int = 9600
    timeout: float = 10.0


class SerialCommandClient:
    """Line-oriented SCPI exchange over a serial port."""

    def __init__(self, settings: SerialSettings):
        if serial is None:
            raise ImportError("pyserial is required but not installed. Install extra 'instrument'.")
        try:
            self._serial = serial.Serial(
                port=settings.port,
                baudrate=settings.baudrate,
                timeout=settings.timeout,
            )
        except serial.SerialException as exc:  # type: ignore[attr-defined]
            raise HardwareError(f"Error connecting to {settings.port}: {exc}") from exc
        self.settings = settings

    def write(self, command: str) -> None:
        payload = (command.strip() + "\n").encode("ascii", errors="ignore")
        try:
            self._serial.write(payload)
            self._serial.flush()
        except serial.SerialException as exc:  # type: ignore[union-attr]
            raise HardwareError(f"Write '{command}' to {self.settings.port} failed: {exc}") from exc

    def query(self, command: str, timeout: Optional[float] = None) -> str:
        deadline = time.monotonic() + (timeout or self.settings.timeout)
        self._serial.reset_input_buffer()
        self.write(command)
        while time.monotonic() < deadline:
            try:
                raw = self._serial.readline()
            except serial.SerialException as exc:  # type: ignore[union-attr]
                raise HardwareError(f"Read from {self.settings.port} failed: {exc}") from exc
            decoded = raw.decode("ascii", errors="ignore").strip()
            if decoded:
                return decoded
        raise HardwareError(f"Timeout waiting for '{command}' response on {self.settings.port}")

    def close(self) -> None:
        try:
            self._serial.close()
        except Exception:
            pass


class SerialNanovoltmeter:
    """Nanovoltmeter reached through a SCPI serial link."""

    def __init__(
        self,
        client: SerialCommandClient,
        *,
        read_command: str = ":READ?",
        init_commands: Sequence[str] = (),
    ) -> None:
        self.client = client
        self.read_command = read_command
        for command in init_commands:
            client.write(command)
        logger.info("Nanovoltmeter ready on %s", client.settings.port)

    def read_voltage(self) -> float:
        reply = self.client.query(self.read_command)
        try:
            return float(reply.split(",")[0])
        except ValueError as exc:
            raise HardwareError(f"Unparseable reading {reply!r}") from exc

    def close(self) -> None:
        self.client.close()


class SerialCurrentSource:
    """Current source driving the calibration heater."""

    def __init__(self, client: SerialCommandClient) -> None:
        self.client = client
        self._active = False
        client.write("SOUR:CLE")
        client.write("SOUR:CURR:RANG:AUTO ON")

    def set_intensity(self, amps: float) -> None:
        if amps <= 0.0:
            logger.debug("Ignoring non-positive intensity %.6f A", amps)
            return
        self.client.write(f"SOUR:CURR {amps:f}")
        if not self._active:
            self.client.write("OUTP ON")
            self._active = True

    def shutdown(self) -> None:
        self.client.write("OUTP OFF")
        self._active = False

    def close(self) -> None:
        self.client.close()


class ReplayInstrument:
    """Feeds previously recorded voltages back through the engine."""

    def __init__(self, voltages: Iterable[float], *, source: str = "memory") -> None:
        self._values: Iterator[float] = iter(voltages)
        self.source = source
        self.reads = 0

    def read_voltage(self) -> float:
        try:
            value = next(self._values)
        except StopIteration:
            raise HardwareError(f"Replay source {self.source} exhausted after {self.reads} reads") from None
        self.reads += 1
        return float(value)

    @classmethod
    def from_file(cls, path: Path) -> "ReplayInstrument":
        """
        Accept either a sample log CSV (``voltage_V`` column) or a plain text
        log with one reading per line; non-numeric lines are skipped.
        """
        with path.open("r", encoding="utf-8") as fh:
            head = next(iterate_text_stream(fh), None)
        if head is not None and "voltage_V" in head:
            frame = pd.read_csv(path, comment="#")
            voltages = frame["voltage_V"].to_numpy(dtype=float).tolist()
        else:
            with path.open("r", encoding="utf-8") as fh:
                voltages = parse_voltage_lines(fh)
        logger.info("Loaded %d recorded readings from %s", len(voltages), path)
        return cls(voltages, source=str(path))

    @classmethod
    def from_stream(cls, handle: TextIO) -> "ReplayInstrument":
        return cls(_lazy_voltages(handle), source="stdin")


def iterate_text_stream(handle: Iterable[str]) -> Iterator[str]:
    for line in handle:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        yield line


def parse_voltage_lines(lines: Iterable[str]) -> List[float]:
    return list(_lazy_voltages(lines))


def _lazy_voltages(lines: Iterable[str]) -> Iterator[float]:
    # A sample log header switches to its voltage_V column.
    column = 0
    for line in iterate_text_stream(lines):
        fields = next(csv.reader([line]))
        if "voltage_V" in fields:
            column = fields.index("voltage_V")
            continue
        try:
            yield float(fields[column])
        except (IndexError, ValueError):
            continue
