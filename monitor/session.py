"""Start/stop control over one monitoring session."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from .actuator import ModeActuator
from .decider import DeviceMode, ModeDecider, ThresholdConfig
from .loudness import LoudnessEstimator
from .sampling import LoopSummary, SamplingLoop
from .source import AudioSource
from .telemetry import TelemetryReport, TelemetrySink


@dataclass(frozen=True)
class SessionStatus:
    running: bool
    config: Optional[ThresholdConfig]
    mode: DeviceMode
    last_report: Optional[TelemetryReport] = None


class _SnapshotSink:
    """Keeps the newest report for status queries and forwards it on."""

    def __init__(self, inner: TelemetrySink) -> None:
        self.inner = inner
        self.latest: Optional[TelemetryReport] = None

    def publish(self, report: TelemetryReport) -> None:
        self.latest = report
        self.inner.publish(report)


class MonitorSession:
    """
    Owns the audio handle and the sampling worker for one session at a time.

    Only the worker thread touches the decider and, through the actuator,
    the device mode. Callers observe the session through frozen
    ``SessionStatus`` and ``TelemetryReport`` snapshots.
    """

    def __init__(
        self,
        source: AudioSource,
        actuator: ModeActuator,
        sink: TelemetrySink,
        period_seconds: float = 0.25,
        join_timeout: float = 5.0,
    ) -> None:
        self.source = source
        self.actuator = actuator
        self._sink = _SnapshotSink(sink)
        self._loop = SamplingLoop(period_seconds=period_seconds)
        self._join_timeout = join_timeout
        self._estimator = LoudnessEstimator()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._config: Optional[ThresholdConfig] = None
        self.last_summary: Optional[LoopSummary] = None

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def status(self) -> SessionStatus:
        return SessionStatus(
            running=self.is_running,
            config=self._config,
            mode=self.actuator.mode,
            last_report=self._sink.latest,
        )

    def start(self, threshold: int, persistence_ticks: int) -> SessionStatus:
        """
        Open the audio source and launch the sampling worker.

        Raises InvalidConfig for out-of-range settings and DeviceBusy when
        the microphone cannot be acquired; in both cases nothing is left
        running. Calling start on a running session changes nothing.
        """
        with self._lock:
            if self.is_running:
                logger.info("Monitoring session already running; ignoring start")
                return self.status()

            config = ThresholdConfig(threshold=threshold, persistence_ticks=persistence_ticks)
            self._reap()
            self.source.open()

            self._config = config
            self._stop_event = threading.Event()
            mode = self.actuator.sync()
            self._sink.publish(
                TelemetryReport(loudness=0.0, mode=mode, tick=0, timestamp=time.time())
            )

            decider = ModeDecider(config)
            self._thread = threading.Thread(
                target=self._worker,
                args=(decider, self._stop_event),
                name="sampling-worker",
                daemon=True,
            )
            self._thread.start()
            logger.info(
                "Monitoring started (threshold={} dB, persistence={} ticks, mode={})",
                config.threshold,
                config.persistence_ticks,
                mode.value,
            )
            return self.status()

    def stop(self) -> SessionStatus:
        """Stop the worker and release the audio handle before returning."""
        with self._lock:
            thread = self._thread
            if thread is None:
                return self.status()

            self._stop_event.set()
            self.source.interrupt()
            thread.join(timeout=self._join_timeout)
            if thread.is_alive():
                # Keep the thread registered so start() stays a no-op until
                # the old worker is gone.
                logger.error("Sampling worker did not exit within {}s", self._join_timeout)
            else:
                self._thread = None
            self.source.close()
            logger.info("Monitoring stopped")
            return self.status()

    start_session = start
    stop_session = stop

    def _reap(self) -> None:
        # A worker that ended on its own (end of stream, fatal error) still
        # holds a thread object and possibly the handle.
        if self._thread is not None and not self._thread.is_alive():
            self._thread = None
            self.source.close()

    def _worker(self, decider: ModeDecider, stop_event: threading.Event) -> None:
        try:
            self.last_summary = self._loop.run(
                self.source,
                self._estimator,
                decider,
                self.actuator,
                self._sink,
                stop_event,
            )
            logger.info(
                "Sampling loop finished: ticks={} skipped={} commands={} denied={}",
                self.last_summary.ticks,
                self.last_summary.skipped,
                self.last_summary.commands,
                self.last_summary.denied,
            )
        except Exception:
            logger.exception("Sampling worker crashed")
