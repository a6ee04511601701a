"""Debounced ringer mode decisions from a stream of loudness readings."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class InvalidConfig(ValueError):
    """Raised when thresholds or audio settings are out of range."""


class DeviceMode(str, Enum):
    NORMAL = "normal"
    SILENCED = "silenced"


class ModeCommand(str, Enum):
    SILENCE = "silence"
    UNSILENCE = "unsilence"

    @property
    def target_mode(self) -> DeviceMode:
        if self is ModeCommand.SILENCE:
            return DeviceMode.SILENCED
        return DeviceMode.NORMAL


@dataclass(frozen=True)
class ThresholdConfig:
    """Loudness threshold and persistence window, fixed for one session."""

    threshold: int = 60
    persistence_ticks: int = 40

    def __post_init__(self) -> None:
        if isinstance(self.threshold, bool) or not isinstance(self.threshold, int):
            raise InvalidConfig(f"threshold must be an integer, got {self.threshold!r}")
        if not 0 <= self.threshold <= 100:
            raise InvalidConfig(f"threshold must be within 0-100, got {self.threshold}")
        if isinstance(self.persistence_ticks, bool) or not isinstance(self.persistence_ticks, int):
            raise InvalidConfig(
                f"persistence_ticks must be an integer, got {self.persistence_ticks!r}"
            )
        if self.persistence_ticks < 1:
            raise InvalidConfig(
                f"persistence_ticks must be at least 1, got {self.persistence_ticks}"
            )


@dataclass(frozen=True)
class DebounceState:
    quiet_streak: int = 0
    loud_streak: int = 0


@dataclass
class ModeDecider:
    """
    Two-counter debounce with hysteresis.

    A reading counts toward a flip only while the device sits in the "wrong"
    mode for it. Readings exactly on the threshold are neutral. Both
    counters reset whenever the trend breaks or a command fires, so the
    opposite flip needs its own full window.
    """

    config: ThresholdConfig
    _quiet_streak: int = 0
    _loud_streak: int = 0
    _tracking: Optional[DeviceMode] = field(default=None)

    @property
    def state(self) -> DebounceState:
        return DebounceState(self._quiet_streak, self._loud_streak)

    def update(self, db: float, mode: DeviceMode) -> Optional[ModeCommand]:
        """Feed one reading; return a command when a window is satisfied."""
        if mode is not self._tracking:
            self.reset()
            self._tracking = mode

        threshold = self.config.threshold
        needed = self.config.persistence_ticks

        if mode is DeviceMode.NORMAL and db < threshold:
            self._quiet_streak += 1
            self._loud_streak = 0
            if self._quiet_streak >= needed:
                self.reset()
                self._tracking = DeviceMode.SILENCED
                return ModeCommand.SILENCE
        elif mode is DeviceMode.SILENCED and db > threshold:
            self._loud_streak += 1
            self._quiet_streak = 0
            if self._loud_streak >= needed:
                self.reset()
                self._tracking = DeviceMode.NORMAL
                return ModeCommand.UNSILENCE
        else:
            self.reset()
        return None

    def reset(self) -> None:
        """Clear both streak counters."""
        self._quiet_streak = 0
        self._loud_streak = 0
