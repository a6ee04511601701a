"""Entry point for the ambient noise ringer silencer."""

from __future__ import annotations

import argparse
import math
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger

from monitor.actuator import MemoryRingerBackend, ModeActuator, RingerBackend
from monitor.calibration import calibrate
from monitor.decider import InvalidConfig
from monitor.loudness import InvalidInput
from monitor.replay import ReplaySource
from monitor.session import MonitorSession
from monitor.source import AudioSource, DeviceBusy
from monitor.telemetry import BufferedTelemetrySink, LoggingTelemetryTarget, TelemetryTarget
from mqtt.mqtt_client import MQTTConfig, MQTTPublisher
from mqtt.ringer import MQTTRingerBackend, MQTTTelemetryTarget, RingerTopics


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ambient noise ringer silencer")
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="Path to configuration file (default: config/config.yaml)",
    )
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List available audio input devices and exit",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use the in-memory ringer and skip MQTT entirely",
    )
    parser.add_argument(
        "--replay",
        type=Path,
        help="Feed a 16-bit WAV or raw s16le file instead of the microphone",
    )
    parser.add_argument("--threshold", type=int, help="Override the loudness threshold (0-100)")
    parser.add_argument("--persistence", type=int, help="Override the persistence tick count")
    parser.add_argument(
        "--calibrate",
        type=float,
        metavar="SECONDS",
        help="Measure ambient level for SECONDS and suggest a threshold",
    )
    return parser.parse_args(argv)


def load_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        config = yaml.safe_load(handle)
    if not isinstance(config, dict):
        raise ValueError("Configuration file must define a mapping")
    return config


def setup_logging(log_config: Dict[str, Any]) -> None:
    level = log_config.get("level", "INFO")
    logger.remove()
    logger.add(sys.stderr, level=level)

    file_path = log_config.get("file_path")
    if not file_path:
        return
    file_path = Path(file_path)
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(file_path),
            level=level,
            rotation="5 MB",
            retention=5,
            enqueue=True,
            backtrace=False,
            diagnose=False,
        )
    except PermissionError as exc:
        logger.warning(
            "Unable to write log file at {} ({}). Continuing with console logging only.",
            file_path,
            exc,
        )


def list_devices() -> None:
    from monitor.audio import MicrophoneSource

    devices = MicrophoneSource.list_input_devices()
    if not devices:
        print("No audio input devices detected.")
        return
    print("Available audio input devices:")
    for idx, name, default_rate, channels in devices:
        print(
            f"[{idx}] {name} - default_samplerate={default_rate:.0f}Hz, max_input_channels={channels}"
        )


def build_source(config: Dict[str, Any], replay: Optional[Path]) -> AudioSource:
    audio_cfg = config.get("audio", {})
    sample_rate = int(audio_cfg.get("sample_rate", 44100))
    block_size = int(audio_cfg.get("block_size", 2048))

    if replay is not None:
        return ReplaySource(replay, block_size=block_size, sample_rate=sample_rate)

    # Imported lazily: sounddevice needs PortAudio at import time.
    from monitor.audio import AudioSourceConfig, MicrophoneSource

    return MicrophoneSource(
        AudioSourceConfig(
            sample_rate=sample_rate,
            block_size=block_size,
            mic_device_index=audio_cfg.get("mic_device_index"),
        )
    )


def build_mqtt(config: Dict[str, Any], dry_run: bool) -> Optional[MQTTPublisher]:
    mqtt_cfg = config.get("mqtt", {})
    ringer_cfg = config.get("ringer", {})
    if dry_run:
        logger.info("Dry run enabled; MQTT publishing is disabled")
        return None
    if not mqtt_cfg.get("enabled", False) and ringer_cfg.get("backend", "memory") != "mqtt":
        return None

    publisher = MQTTPublisher(
        MQTTConfig(
            host=mqtt_cfg.get("host", "localhost"),
            port=int(mqtt_cfg.get("port", 1883)),
            status_topic=mqtt_cfg.get("status_topic", "home/sensors/ambient_noise"),
            username=(mqtt_cfg.get("username") or None),
            password=(mqtt_cfg.get("password") or None),
        ),
        client_id=mqtt_cfg.get("client_id"),
    )
    return publisher


def build_backend(
    config: Dict[str, Any], publisher: Optional[MQTTPublisher], dry_run: bool
) -> RingerBackend:
    ringer_cfg = config.get("ringer", {})
    backend_name = str(ringer_cfg.get("backend", "memory")).lower()

    if dry_run or backend_name == "memory":
        return MemoryRingerBackend()
    if backend_name != "mqtt":
        raise InvalidConfig(f"Unknown ringer backend '{backend_name}'")
    if publisher is None:
        raise InvalidConfig("The mqtt ringer backend needs the mqtt section configured")

    return MQTTRingerBackend(
        publisher,
        RingerTopics(
            command_topic=ringer_cfg.get("command_topic", "home/phone/ringer/set"),
            pulse_topic=ringer_cfg.get("pulse_topic", "home/phone/haptics/set"),
            policy_topic=ringer_cfg.get("policy_topic"),
            state_topic=ringer_cfg.get("state_topic"),
            silenced_as=str(ringer_cfg.get("silenced_as", "vibrate")).lower(),
            assume_policy_access=bool(ringer_cfg.get("assume_policy_access", False)),
        ),
    )


def build_sink(
    config: Dict[str, Any], publisher: Optional[MQTTPublisher]
) -> BufferedTelemetrySink:
    targets: List[TelemetryTarget] = [LoggingTelemetryTarget()]
    if publisher is not None and config.get("mqtt", {}).get("enabled", False):
        targets.append(MQTTTelemetryTarget(publisher, config.get("device_id", "phone-silencer-01")))
    return BufferedTelemetrySink(targets)


def run_calibration(source: AudioSource, seconds: float, block_size: int) -> int:
    source.open()
    ticks = max(1, int(math.ceil(seconds * source.sample_rate / float(block_size))))
    try:
        result = calibrate(source, ticks)
    except InvalidInput as exc:
        logger.error("Calibration failed: {}", exc)
        return 1
    finally:
        source.close()
    print(
        f"Ambient mean {result.mean_db:.1f} dB, peak {result.peak_db:.1f} dB over "
        f"{result.readings} blocks. Suggested threshold: {result.suggested_threshold}"
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config_path = Path(args.config)

    if args.list_devices:
        list_devices()
        return 0

    config = load_config(config_path)
    setup_logging(config.get("logging", {}))

    monitor_cfg = config.get("monitor", {})
    threshold = args.threshold if args.threshold is not None else int(monitor_cfg.get("threshold", 60))
    persistence = (
        args.persistence
        if args.persistence is not None
        else int(monitor_cfg.get("persistence_ticks", 40))
    )
    period = float(monitor_cfg.get("period_seconds", 0.25))
    if args.replay is not None and "replay_period_seconds" in monitor_cfg:
        period = float(monitor_cfg["replay_period_seconds"])

    source = build_source(config, args.replay)

    if args.calibrate is not None:
        try:
            return run_calibration(
                source, args.calibrate, int(config.get("audio", {}).get("block_size", 2048))
            )
        except (DeviceBusy, InvalidConfig) as exc:
            logger.error("Cannot open audio source: {}", exc)
            return 1

    publisher = build_mqtt(config, args.dry_run)
    try:
        backend = build_backend(config, publisher, args.dry_run)
    except InvalidConfig as exc:
        logger.error("Invalid ringer configuration: {}", exc)
        return 1

    if publisher is not None:
        publisher.start()
    sink = build_sink(config, publisher)
    sink.start()

    actuator = ModeActuator(backend, settle_seconds=float(monitor_cfg.get("settle_seconds", 0.1)))
    session = MonitorSession(source, actuator, sink, period_seconds=period)

    exit_code = 0
    try:
        session.start_session(threshold, persistence)
        while session.is_running:
            time.sleep(0.5)
    except (DeviceBusy, InvalidConfig) as exc:
        logger.error("Monitoring could not start: {}", exc)
        exit_code = 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user, shutting down")
    finally:
        status = session.stop_session()
        sink.close()
        if publisher is not None:
            publisher.stop()
        logger.info("Final ringer mode: {}", status.mode.value)

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
