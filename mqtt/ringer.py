"""Ringer control and status reporting for a phone bridged over MQTT."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from monitor.actuator import PermissionDenied
from monitor.decider import DeviceMode, InvalidConfig
from monitor.telemetry import TelemetryReport

from .mqtt_client import MQTTPublisher

# Two pulses, 50 ms each, 100 ms apart.
PULSE_PATTERN_MS = (0, 50, 100, 50)

_HOST_MODES = {"normal": DeviceMode.NORMAL, "vibrate": DeviceMode.SILENCED, "silent": DeviceMode.SILENCED}


@dataclass
class RingerTopics:
    command_topic: str
    pulse_topic: str
    policy_topic: str | None = None
    state_topic: str | None = None
    silenced_as: str = "vibrate"
    assume_policy_access: bool = False


class MQTTRingerBackend:
    """
    Sends ringer commands to a phone-side bridge (e.g. the Home Assistant
    companion app's ``command_ringer_mode``).

    The phone reports whether do-not-disturb policy access is granted on a
    retained topic; the latest value is read on every check. ``silenced_as``
    decides whether SILENCED means ``vibrate`` or ``silent`` on the host.
    """

    def __init__(self, publisher: MQTTPublisher, topics: RingerTopics) -> None:
        if topics.silenced_as not in ("vibrate", "silent"):
            raise InvalidConfig(
                f"silenced_as must be 'vibrate' or 'silent', got {topics.silenced_as!r}"
            )
        self.publisher = publisher
        self.topics = topics
        self._lock = threading.Lock()
        self._policy_access = topics.assume_policy_access
        self._reported_mode: Optional[DeviceMode] = None

        if topics.policy_topic:
            publisher.subscribe(topics.policy_topic, self._on_policy)
        if topics.state_topic:
            publisher.subscribe(topics.state_topic, self._on_state)

    def has_policy_access(self) -> bool:
        with self._lock:
            return self._policy_access

    def get_ringer_mode(self) -> Optional[DeviceMode]:
        with self._lock:
            return self._reported_mode

    def set_ringer_mode(self, mode: DeviceMode) -> None:
        # Re-check right before sending; the phone may have revoked access.
        if not self.has_policy_access():
            raise PermissionDenied("phone reports ringer policy access is not granted")
        host_mode = self.topics.silenced_as if mode is DeviceMode.SILENCED else "normal"
        payload = {"command": "command_ringer_mode", "mode": host_mode}
        if not self.publisher.publish(payload, topic=self.topics.command_topic, qos=1, wait=0.5):
            raise ConnectionError(
                f"ringer command not delivered to {self.topics.command_topic}"
            )

    def confirm_pulse(self) -> None:
        self.publisher.publish(
            {"command": "vibrate", "pattern": list(PULSE_PATTERN_MS)},
            topic=self.topics.pulse_topic,
            wait=0.5,
        )

    def _on_policy(self, payload: str) -> None:
        granted = payload.lower() in ("granted", "true", "on", "1")
        with self._lock:
            changed = granted != self._policy_access
            self._policy_access = granted
        if changed:
            logger.info("Ringer policy access {}", "granted" if granted else "revoked")

    def _on_state(self, payload: str) -> None:
        mode = _HOST_MODES.get(payload.lower())
        if mode is None:
            logger.warning("Ignoring unknown ringer state {!r}", payload)
            return
        with self._lock:
            self._reported_mode = mode


class MQTTTelemetryTarget:
    """Publishes telemetry reports to the status topic."""

    def __init__(self, publisher: MQTTPublisher, device_id: str) -> None:
        self.publisher = publisher
        self.device_id = device_id

    def __call__(self, report: TelemetryReport) -> None:
        payload = report.as_payload()
        payload["device_id"] = self.device_id
        self.publisher.publish(payload)
