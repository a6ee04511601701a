"""Replay recorded 16-bit PCM through the monitor."""

from __future__ import annotations

import threading
import wave
from pathlib import Path
from typing import Optional

import numpy as np
from loguru import logger

from .decider import InvalidConfig
from .source import AudioBlock, EndOfStream, InterruptedRead


class ReplaySource:
    """
    Serves a WAV file or headerless little-endian s16 file block by block.

    Multi-channel WAV input is averaged down to mono. A trailing partial
    block is dropped so every block has the same length.
    """

    def __init__(
        self,
        path: Path,
        block_size: int = 2048,
        sample_rate: int = 44100,
    ) -> None:
        self.path = Path(path)
        self.block_size = block_size
        self.sample_rate = sample_rate
        self._samples: Optional[np.ndarray] = None
        self._position = 0
        self._interrupted = threading.Event()

    @property
    def is_open(self) -> bool:
        return self._samples is not None

    def open(self) -> None:
        if self.block_size <= 0:
            raise InvalidConfig(f"block_size must be positive, got {self.block_size}")
        if not self.path.exists():
            raise InvalidConfig(f"Replay file not found: {self.path}")

        if self.path.suffix.lower() == ".wav":
            samples = self._load_wav()
        else:
            samples = np.fromfile(self.path, dtype="<i2").astype(np.int16)

        self._samples = samples
        self._position = 0
        self._interrupted.clear()
        logger.info(
            "Replaying {} ({:.1f}s at {} Hz)",
            self.path,
            samples.size / float(self.sample_rate),
            self.sample_rate,
        )

    def read_block(self) -> Optional[AudioBlock]:
        if self._interrupted.is_set():
            raise InterruptedRead()
        if self._samples is None:
            raise EndOfStream()

        end = self._position + self.block_size
        if end > self._samples.size:
            raise EndOfStream()
        block = self._samples[self._position:end]
        self._position = end
        return AudioBlock(samples=block, sample_rate=self.sample_rate)

    def interrupt(self) -> None:
        self._interrupted.set()

    def close(self) -> None:
        self._samples = None
        self._position = 0

    def _load_wav(self) -> np.ndarray:
        with wave.open(str(self.path), "rb") as wf:
            if wf.getsampwidth() != 2:
                raise InvalidConfig(
                    f"{self.path} is {wf.getsampwidth() * 8}-bit; only 16-bit PCM is supported"
                )
            self.sample_rate = wf.getframerate()
            channels = wf.getnchannels()
            audio = np.frombuffer(wf.readframes(wf.getnframes()), dtype="<i2")

        if channels > 1:
            usable = audio.size - audio.size % channels
            audio = audio[:usable].reshape(-1, channels).mean(axis=1)
        return audio.astype(np.int16)
