"""Ambient level survey used to pick a starting threshold."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np
from loguru import logger

from .loudness import InvalidInput, estimate
from .source import AudioSource, EndOfStream, InterruptedRead


@dataclass(frozen=True)
class CalibrationResult:
    mean_db: float
    peak_db: float
    readings: int
    suggested_threshold: int


def calibrate(source: AudioSource, ticks: int, margin_db: float = 6.0) -> CalibrationResult:
    """
    Sample an already open source and suggest a threshold.

    Run this in the quiet setting that should silence the ringer; the
    suggestion sits ``margin_db`` above its mean level.
    """
    readings: List[float] = []
    for _ in range(max(0, ticks)):
        try:
            block = source.read_block()
        except (EndOfStream, InterruptedRead):
            break
        if block is None or len(block) == 0:
            continue
        readings.append(estimate(block))

    if not readings:
        raise InvalidInput("No audio was captured during calibration")

    values = np.asarray(readings, dtype=np.float64)
    mean_db = float(np.mean(values))
    peak_db = float(np.max(values))
    suggested = int(np.clip(round(mean_db + margin_db), 0, 100))
    logger.info(
        "Calibration over {} blocks: mean={:.1f} dB peak={:.1f} dB suggested threshold={}",
        len(readings),
        mean_db,
        peak_db,
        suggested,
    )
    return CalibrationResult(
        mean_db=mean_db,
        peak_db=peak_db,
        readings=len(readings),
        suggested_threshold=suggested,
    )
