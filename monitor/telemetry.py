"""Telemetry snapshots and non-blocking delivery to observers."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Protocol

from loguru import logger

from .decider import DeviceMode


@dataclass(frozen=True)
class TelemetryReport:
    loudness: float
    mode: DeviceMode
    tick: int
    timestamp: float

    def as_payload(self) -> dict:
        return {
            "loudness_db": float(round(self.loudness, 2)),
            "mode": self.mode.value,
            "tick": self.tick,
            "ts": int(self.timestamp),
        }


class TelemetrySink(Protocol):
    def publish(self, report: TelemetryReport) -> None:
        ...


TelemetryTarget = Callable[[TelemetryReport], None]


class LoggingTelemetryTarget:
    """Writes each report to the debug log."""

    def __call__(self, report: TelemetryReport) -> None:
        logger.debug(
            "Tick {} loudness={:.1f} dB mode={}",
            report.tick,
            report.loudness,
            report.mode.value,
        )


class BufferedTelemetrySink:
    """
    Hands reports to slow targets without blocking the sampler.

    Reports go into a bounded queue drained by a dispatcher thread. When the
    queue is full the oldest report is dropped in favour of the newest.
    """

    def __init__(self, targets: Iterable[TelemetryTarget], maxsize: int = 32) -> None:
        self._targets: List[TelemetryTarget] = list(targets)
        self._queue: "queue.Queue[Optional[TelemetryReport]]" = queue.Queue(maxsize=maxsize)
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.dropped = 0

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(
                target=self._dispatch, name="telemetry-dispatch", daemon=True
            )
            self._thread.start()

    def publish(self, report: TelemetryReport) -> None:
        try:
            self._queue.put_nowait(report)
        except queue.Full:
            # Drop oldest report to keep the sampler moving.
            try:
                self._queue.get_nowait()
                self.dropped += 1
            except queue.Empty:
                pass
            try:
                self._queue.put_nowait(report)
            except queue.Full:
                self.dropped += 1

    def close(self, timeout: float = 2.0) -> None:
        """Deliver what is queued, then stop the dispatcher."""
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return
        while True:
            try:
                self._queue.put(None, timeout=timeout)
                break
            except queue.Full:
                # Dispatcher stalled; make room for the sentinel.
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass
        thread.join(timeout=timeout)

    def _dispatch(self) -> None:
        while True:
            report = self._queue.get()
            if report is None:
                return
            for target in self._targets:
                try:
                    target(report)
                except Exception as exc:
                    logger.error("Telemetry target {} failed: {}", target, exc)
