"""MQTT transport for ringer commands and telemetry."""

from .mqtt_client import MQTTConfig, MQTTPublisher
from .ringer import MQTTRingerBackend, MQTTTelemetryTarget, RingerTopics
