"""Microphone capture delivering fixed-size 16-bit blocks."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import sounddevice as sd
from loguru import logger

from .decider import InvalidConfig
from .source import AudioBlock, DeviceBusy, InterruptedRead


@dataclass
class AudioSourceConfig:
    """Configuration for the microphone stream."""

    sample_rate: int = 44100
    block_size: int = 2048
    mic_device_index: Optional[int] = None
    read_timeout: float = 1.0
    queue_size: int = 8


class MicrophoneSource:
    """
    Exclusive handle on one input device.

    The PortAudio callback pushes blocks into a bounded queue, dropping the
    oldest when full. ``read_block`` hands back the newest block so each tick
    measures current sound rather than whatever queued up during the sleep.
    """

    channels = 1
    dtype = "int16"

    def __init__(self, config: AudioSourceConfig) -> None:
        self.config = config
        self.sample_rate = config.sample_rate
        self._stream: Optional[sd.InputStream] = None
        self._queue: "queue.Queue[np.ndarray]" = queue.Queue(maxsize=config.queue_size)
        self._interrupted = threading.Event()
        self._lock = threading.Lock()

    @staticmethod
    def list_input_devices() -> List[Tuple[int, str, float, int]]:
        """Return a list of available input devices."""
        devices = sd.query_devices()
        result: List[Tuple[int, str, float, int]] = []
        for idx, info in enumerate(devices):
            if info.get("max_input_channels", 0) > 0:
                result.append(
                    (
                        idx,
                        info.get("name", f"Device {idx}"),
                        float(info.get("default_samplerate", 0) or 0),
                        int(info.get("max_input_channels", 0)),
                    )
                )
        return result

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self) -> None:
        """Acquire the device. Raises InvalidConfig or DeviceBusy."""
        with self._lock:
            if self._stream is not None:
                return
            if self.config.sample_rate <= 0 or self.config.block_size <= 0:
                raise InvalidConfig(
                    f"sample_rate and block_size must be positive "
                    f"(got {self.config.sample_rate}, {self.config.block_size})"
                )

            device = self.config.mic_device_index
            try:
                sd.check_input_settings(
                    device=device,
                    channels=self.channels,
                    dtype=self.dtype,
                    samplerate=self.config.sample_rate,
                )
            except (sd.PortAudioError, ValueError) as exc:
                raise InvalidConfig(f"Unsupported input settings: {exc}") from exc

            self._drain()
            self._interrupted.clear()
            try:
                stream = sd.InputStream(
                    device=device,
                    samplerate=self.config.sample_rate,
                    blocksize=self.config.block_size,
                    channels=self.channels,
                    dtype=self.dtype,
                    callback=self._make_callback(self._queue),
                )
            except sd.PortAudioError as exc:
                raise DeviceBusy(f"Unable to open microphone: {exc}") from exc
            try:
                stream.start()
            except sd.PortAudioError as exc:
                stream.close()
                raise DeviceBusy(f"Unable to start microphone: {exc}") from exc

            self._stream = stream
            logger.info(
                "Audio stream started at {} Hz, {} samples per block, device {}",
                self.config.sample_rate,
                self.config.block_size,
                device if device is not None else "default",
            )

    def read_block(self) -> Optional[AudioBlock]:
        """
        Wait up to ``read_timeout`` for audio.

        Returns None when nothing arrived in time and raises InterruptedRead
        once ``interrupt`` has been called.
        """
        deadline_slices = max(1, int(self.config.read_timeout / 0.05))
        chunk: Optional[np.ndarray] = None
        for _ in range(deadline_slices):
            if self._interrupted.is_set():
                raise InterruptedRead()
            try:
                chunk = self._queue.get(timeout=0.05)
                break
            except queue.Empty:
                continue

        if self._interrupted.is_set():
            raise InterruptedRead()
        if chunk is None:
            return None

        # Keep only the freshest block.
        while True:
            try:
                chunk = self._queue.get_nowait()
            except queue.Empty:
                break

        samples = np.squeeze(chunk).astype(np.int16, copy=False).reshape(-1)
        if samples.size == 0:
            return None
        return AudioBlock(samples=samples, sample_rate=self.sample_rate)

    def interrupt(self) -> None:
        """Wake a blocked ``read_block``."""
        self._interrupted.set()

    def close(self) -> None:
        """Stop and release the device. Safe to call more than once."""
        with self._lock:
            stream = self._stream
            self._stream = None
            if stream is None:
                return
            try:
                stream.stop()
            except sd.PortAudioError as exc:
                logger.warning("Error stopping audio stream: {}", exc)
            finally:
                stream.close()
            self._drain()
            logger.info("Audio stream released")

    def _drain(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    @staticmethod
    def _make_callback(
        queue_: "queue.Queue[np.ndarray]",
    ) -> "sd.CallbackType":
        def callback(indata, frames, time_info, status):  # type: ignore[override]
            if status:
                logger.warning("Audio callback status: {}", status)
            try:
                queue_.put_nowait(indata.copy())
            except queue.Full:
                # Drop oldest block to avoid blocking callback.
                try:
                    queue_.get_nowait()
                    queue_.put_nowait(indata.copy())
                except (queue.Empty, queue.Full):
                    pass

        return callback
