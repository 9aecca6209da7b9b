from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Dict, List, Optional, TextIO

logger = logging.getLogger(__name__)

FIELDNAMES = ["seq", "t_s", "stage", "injection", "voltage_V", "elapsed_ms"]


class SampleLog:
    """
    Durable record of every voltage reading taken during a run.

    The CSV file is created lazily when the first row arrives so dry runs and
    tests never touch the filesystem. A write failure is reported once and the
    log then goes quiet; acquisition carries on without it.
    """

    def __init__(self, path: Path):
        self.path = path
        self._writer: Optional[csv.DictWriter[str]] = None
        self._file_handle: Optional[TextIO] = None
        self._pending_metadata: List[str] = []
        self._seq = 0
        self.failed = False

    def append(
        self,
        *,
        t_s: float,
        stage: str,
        injection: int,
        voltage: float,
        elapsed_ms: int,
    ) -> None:
        if self.failed:
            return
        try:
            self._ensure_open()
            assert self._writer is not None
            self._writer.writerow(
                {
                    "seq": self._seq,
                    "t_s": f"{t_s:.3f}",
                    "stage": stage,
                    "injection": injection,
                    "voltage_V": f"{voltage:.9f}",
                    "elapsed_ms": elapsed_ms,
                }
            )
            if self._file_handle is not None:
                self._file_handle.flush()
        except OSError as exc:
            self._fail(exc)
            return
        self._seq += 1

    def note(self, metadata: Dict[str, str]) -> None:
        """Write a `# key=value ...` comment line (buffered until the file exists)."""

        if not metadata or self.failed:
            return
        line = "# " + " ".join(f"{key}={value}" for key, value in metadata.items())
        if self._writer is None:
            self._pending_metadata.append(line)
            return
        try:
            assert self._file_handle is not None
            self._file_handle.write(line + "\n")
            self._file_handle.flush()
        except OSError as exc:
            self._fail(exc)

    @property
    def rows_written(self) -> int:
        return self._seq

    def _ensure_open(self) -> None:
        if self._writer is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file_handle = self.path.open("w", newline="", encoding="utf-8")
        for line in self._pending_metadata:
            self._file_handle.write(line + "\n")
        self._pending_metadata.clear()
        self._writer = csv.DictWriter(self._file_handle, fieldnames=FIELDNAMES)
        self._writer.writeheader()

    def _fail(self, exc: OSError) -> None:
        self.failed = True
        logger.error("Sample log %s disabled after write failure: %s", self.path, exc)
        self.close()

    def close(self) -> None:
        if self._file_handle:
            try:
                self._file_handle.close()
            except OSError:
                logger.debug("Error closing sample log %s", self.path, exc_info=True)
            self._file_handle = None
            self._writer = None
