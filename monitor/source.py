"""Audio source contract shared by the microphone and replay sources."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np


class DeviceBusy(Exception):
    """Raised when the audio hardware cannot be acquired."""


class EndOfStream(Exception):
    """Raised when a source has no more audio to deliver."""


class InterruptedRead(Exception):
    """Raised when a blocked read is woken by a stop request."""


@dataclass(frozen=True)
class AudioBlock:
    """One block of mono signed 16-bit samples."""

    samples: np.ndarray
    sample_rate: int

    def __len__(self) -> int:
        return int(self.samples.size)


class AudioSource(Protocol):
    sample_rate: int

    def open(self) -> None:
        ...

    def read_block(self) -> Optional[AudioBlock]:
        ...

    def interrupt(self) -> None:
        ...

    def close(self) -> None:
        ...

    @property
    def is_open(self) -> bool:
        ...
