"""Fixed-cadence sampling loop driving estimation, decisions and actuation."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from .actuator import ModeActuator
from .decider import ModeDecider
from .source import AudioBlock, AudioSource, EndOfStream, InterruptedRead
from .telemetry import TelemetryReport, TelemetrySink


@dataclass
class LoopSummary:
    ticks: int = 0
    skipped: int = 0
    commands: int = 0
    denied: int = 0


class SamplingLoop:
    """
    Reads one block per tick and pushes it through the decision chain.

    Ticks sit on a fixed grid of ``period_seconds`` measured from the start
    of the run, so block duration and processing time do not drift the
    cadence. A period of 0 disables pacing.
    """

    def __init__(
        self,
        period_seconds: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.period_seconds = period_seconds
        self._clock = clock

    def run(
        self,
        source: AudioSource,
        estimator: Callable[[AudioBlock], float],
        decider: ModeDecider,
        actuator: ModeActuator,
        sink: TelemetrySink,
        stop_event: threading.Event,
    ) -> LoopSummary:
        summary = LoopSummary()
        next_deadline = self._clock()

        while not stop_event.is_set():
            try:
                block: Optional[AudioBlock] = source.read_block()
            except InterruptedRead:
                logger.debug("Audio read interrupted; stopping sampling loop")
                break
            except EndOfStream:
                logger.info("Audio source exhausted after {} ticks", summary.ticks)
                break

            if stop_event.is_set():
                break

            if block is None or len(block) == 0:
                summary.skipped += 1
            else:
                self._process(block, estimator, decider, actuator, sink, summary)

            if self.period_seconds > 0:
                next_deadline += self.period_seconds
                now = self._clock()
                if next_deadline < now:
                    # Fell behind; realign instead of bursting to catch up.
                    next_deadline = now
                if stop_event.wait(next_deadline - now):
                    break

        return summary

    def _process(
        self,
        block: AudioBlock,
        estimator: Callable[[AudioBlock], float],
        decider: ModeDecider,
        actuator: ModeActuator,
        sink: TelemetrySink,
        summary: LoopSummary,
    ) -> None:
        db = estimator(block)
        summary.ticks += 1

        command = decider.update(db, actuator.mode)
        if command is not None:
            summary.commands += 1
            logger.info(
                "Loudness trend held for {} ticks; issuing {}",
                decider.config.persistence_ticks,
                command.value,
            )
            result = actuator.apply(command)
            if result.denied:
                summary.denied += 1

        sink.publish(
            TelemetryReport(
                loudness=db,
                mode=actuator.mode,
                tick=summary.ticks,
                timestamp=time.time(),
            )
        )
