import threading
from typing import Iterable, List, Optional

import numpy as np
import pytest

from monitor.decider import DeviceMode
from monitor.source import AudioBlock, DeviceBusy, EndOfStream, InterruptedRead
from monitor.telemetry import TelemetryReport

SAMPLE_RATE = 44100
BLOCK_SIZE = 1024


def block_for_db(db: float, size: int = BLOCK_SIZE) -> AudioBlock:
    """Constant-amplitude block whose loudness is within a hair of ``db``."""
    amplitude = int(round(10 ** (db / 20.0)))
    samples = np.full(size, amplitude, dtype=np.int16)
    samples[1::2] *= -1
    return AudioBlock(samples=samples, sample_rate=SAMPLE_RATE)


class ScriptedSource:
    """Serves a fixed list of blocks (None entries simulate empty reads)."""

    def __init__(self, blocks: Iterable[Optional[AudioBlock]], busy: bool = False) -> None:
        self.blocks: List[Optional[AudioBlock]] = list(blocks)
        self.sample_rate = SAMPLE_RATE
        self.busy = busy
        self.opened = 0
        self.closed = 0
        self._open = False
        self._interrupted = threading.Event()
        self._index = 0

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        if self.busy:
            raise DeviceBusy("microphone in use")
        self.opened += 1
        self._open = True
        self._interrupted.clear()

    def read_block(self) -> Optional[AudioBlock]:
        if self._interrupted.is_set():
            raise InterruptedRead()
        if self._index >= len(self.blocks):
            raise EndOfStream()
        block = self.blocks[self._index]
        self._index += 1
        return block

    def interrupt(self) -> None:
        self._interrupted.set()

    def close(self) -> None:
        if self._open:
            self.closed += 1
        self._open = False


class BlockingSource(ScriptedSource):
    """Delivers blocks until exhausted, then blocks in read until interrupted."""

    def __init__(self, blocks: Iterable[Optional[AudioBlock]] = ()) -> None:
        super().__init__(blocks)
        self.reading = threading.Event()

    def read_block(self) -> Optional[AudioBlock]:
        if self._index < len(self.blocks):
            return super().read_block()
        self.reading.set()
        self._interrupted.wait()
        raise InterruptedRead()


class RecordingSink:
    def __init__(self) -> None:
        self.reports: List[TelemetryReport] = []

    def publish(self, report: TelemetryReport) -> None:
        self.reports.append(report)


class RecordingBackend:
    """Ringer backend that logs every call in order."""

    def __init__(self, mode: DeviceMode = DeviceMode.NORMAL, granted: bool = True) -> None:
        self.mode = mode
        self.granted = granted
        self.calls: List[str] = []

    def has_policy_access(self) -> bool:
        self.calls.append("check")
        return self.granted

    def get_ringer_mode(self) -> Optional[DeviceMode]:
        return self.mode

    def set_ringer_mode(self, mode: DeviceMode) -> None:
        self.calls.append(f"set:{mode.value}")
        self.mode = mode

    def confirm_pulse(self) -> None:
        self.calls.append("pulse")


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def backend():
    return RecordingBackend()
