"""Shared test doubles: fake clock, scripted instrument, sleep recorder, fake serial."""
from __future__ import annotations

from typing import Iterable, List


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ClockedInstrument:
    """Scripted voltages; each read costs *read_sec* on the fake clock."""

    def __init__(self, clock: FakeClock, voltages: Iterable[float], read_sec: float = 0.25):
        self.clock = clock
        self._values = list(voltages)
        self.read_sec = read_sec
        self.reads = 0

    def read_voltage(self) -> float:
        self.clock.advance(self.read_sec)
        value = self._values[self.reads]
        self.reads += 1
        return value


class SleepRecorder:
    def __init__(self, clock: FakeClock | None = None):
        self.calls: List[float] = []
        self.clock = clock

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class FakeSerialInstance:
    def __init__(self, replies: List[bytes]):
        self.replies = replies
        self.written: List[str] = []
        self.closed = False

    def write(self, payload: bytes) -> None:
        self.written.append(payload.decode("ascii").strip())

    def flush(self) -> None:
        pass

    def reset_input_buffer(self) -> None:
        pass

    def readline(self) -> bytes:
        if self.replies:
            return self.replies.pop(0)
        return b""

    def close(self) -> None:
        self.closed = True


class FakeSerialModule:
    """Stands in for the ``serial`` module; every port shares one instance."""

    def __init__(self, replies: List[bytes] | None = None, fail: bool = False):
        self.SerialException = RuntimeError
        self.instance = FakeSerialInstance(list(replies or []))
        self.fail = fail

    def Serial(self, *args, **kwargs):
        if self.fail:
            raise self.SerialException("no such port")
        return self.instance
