"""Ambient noise monitoring and ringer control components."""

from .actuator import ApplyResult, MemoryRingerBackend, ModeActuator, PermissionDenied
from .decider import DeviceMode, InvalidConfig, ModeCommand, ModeDecider, ThresholdConfig
from .loudness import InvalidInput, estimate
from .session import MonitorSession, SessionStatus
from .source import AudioBlock, DeviceBusy, EndOfStream, InterruptedRead
from .telemetry import BufferedTelemetrySink, TelemetryReport
