"""Ringer mode actuation with a per-call capability check."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import List, Optional, Protocol

from loguru import logger

from .decider import DeviceMode, ModeCommand


class PermissionDenied(Exception):
    """Raised when the process may not change the ringer policy."""


class RingerBackend(Protocol):
    def has_policy_access(self) -> bool:
        ...

    def get_ringer_mode(self) -> Optional[DeviceMode]:
        ...

    def set_ringer_mode(self, mode: DeviceMode) -> None:
        ...

    def confirm_pulse(self) -> None:
        ...


@dataclass(frozen=True)
class ApplyResult:
    applied: bool
    mode: DeviceMode
    reason: Optional[str] = None

    @property
    def denied(self) -> bool:
        return not self.applied


class MemoryRingerBackend:
    """In-process ringer used for dry runs and replays."""

    def __init__(
        self,
        mode: DeviceMode = DeviceMode.NORMAL,
        policy_access: bool = True,
    ) -> None:
        self._mode = mode
        self._policy_access = policy_access
        self._lock = threading.Lock()
        self.pulses = 0
        self.history: List[DeviceMode] = []

    def grant(self, granted: bool = True) -> None:
        with self._lock:
            self._policy_access = granted

    def has_policy_access(self) -> bool:
        with self._lock:
            return self._policy_access

    def get_ringer_mode(self) -> Optional[DeviceMode]:
        with self._lock:
            return self._mode

    def set_ringer_mode(self, mode: DeviceMode) -> None:
        with self._lock:
            if not self._policy_access:
                raise PermissionDenied("ringer policy access revoked")
            self._mode = mode
            self.history.append(mode)
        logger.info("Ringer mode set to {} (dry run)", mode.value)

    def confirm_pulse(self) -> None:
        with self._lock:
            self.pulses += 1


class ModeActuator:
    """Commits mode commands to a ringer backend and tracks the believed mode."""

    def __init__(
        self,
        backend: RingerBackend,
        settle_seconds: float = 0.1,
        mode: DeviceMode = DeviceMode.NORMAL,
    ) -> None:
        self.backend = backend
        self.settle_seconds = settle_seconds
        self._mode = mode

    @property
    def mode(self) -> DeviceMode:
        return self._mode

    def sync(self) -> DeviceMode:
        """Adopt the host's current ringer mode, if the backend can report it."""
        try:
            current = self.backend.get_ringer_mode()
        except Exception as exc:  # pragma: no cover - backend dependent
            logger.warning("Unable to read current ringer mode: {}", exc)
            current = None
        if current is not None:
            self._mode = current
        return self._mode

    def apply(self, command: ModeCommand) -> ApplyResult:
        """
        Switch the ringer to the command's target mode.

        Authorization is checked on every call since it can be revoked at
        any time. On success the tracked mode is updated first, then after
        the settle delay a confirmation pulse is sent. Every successful call
        pulses, including one that targets the mode already in effect.
        """
        target = command.target_mode

        if not self.backend.has_policy_access():
            logger.warning(
                "Cannot apply {}: ringer policy access not granted", command.value
            )
            return ApplyResult(applied=False, mode=self._mode, reason="permission denied")

        try:
            self.backend.set_ringer_mode(target)
        except PermissionDenied as exc:
            logger.warning("Ringer backend refused {}: {}", command.value, exc)
            return ApplyResult(applied=False, mode=self._mode, reason="permission denied")
        except Exception as exc:
            logger.error("Ringer backend failed to apply {}: {}", command.value, exc)
            return ApplyResult(applied=False, mode=self._mode, reason=str(exc))

        self._mode = target
        logger.info("Ringer mode is now {}", target.value)

        if self.settle_seconds > 0:
            time.sleep(self.settle_seconds)

        try:
            self.backend.confirm_pulse()
        except Exception as exc:
            logger.error("Confirmation pulse failed: {}", exc)

        return ApplyResult(applied=True, mode=target)
