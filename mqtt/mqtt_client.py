"""MQTT publishing helper."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from loguru import logger
from paho.mqtt import client as mqtt


@dataclass
class MQTTConfig:
    host: str
    port: int
    status_topic: str
    username: str | None = None
    password: str | None = None


MessageHandler = Callable[[str], None]


class MQTTPublisher:
    """Publish JSON to MQTT with automatic reconnection and topic subscriptions."""

    def __init__(self, config: MQTTConfig, client_id: Optional[str] = None) -> None:
        self.config = config
        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id or "",
            clean_session=True,
        )
        if config.username:
            self.client.username_pw_set(config.username, config.password or "")
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message
        self._connected = threading.Event()
        self._handlers: Dict[str, MessageHandler] = {}
        self._handlers_lock = threading.Lock()
        self.client.reconnect_delay_set(min_delay=1, max_delay=30)

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def start(self) -> None:
        """Connect to the broker and start the network loop."""
        try:
            self.client.connect(self.config.host, int(self.config.port))
        except Exception as exc:  # pragma: no cover - network dependent
            logger.error("Initial MQTT connection failed: {}", exc)
        self.client.loop_start()

    def stop(self) -> None:
        """Stop the loop and disconnect."""
        self.client.loop_stop()
        try:
            self.client.disconnect()
        except Exception as exc:  # pragma: no cover - network dependent
            logger.debug("MQTT disconnect raised: {}", exc)

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        """Route decoded payloads on ``topic`` to ``handler``; survives reconnects."""
        with self._handlers_lock:
            self._handlers[topic] = handler
        if self._connected.is_set():
            self.client.subscribe(topic)

    def publish(
        self,
        payload: dict,
        topic: Optional[str] = None,
        qos: int = 0,
        retain: bool = False,
        wait: float = 2.0,
    ) -> bool:
        """Publish a JSON payload, to the status topic unless told otherwise."""
        data = json.dumps(payload)
        if wait > 0 and not self._connected.wait(timeout=wait):
            logger.warning("MQTT client not connected; attempting publish anyway")
        result = self.client.publish(topic or self.config.status_topic, data, qos=qos, retain=retain)
        if result.rc not in (mqtt.MQTT_ERR_SUCCESS, mqtt.MQTT_ERR_NO_CONN):
            logger.error("MQTT publish failed with code {}", result.rc)
            return False
        return result.rc == mqtt.MQTT_ERR_SUCCESS

    # Callbacks -------------------------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):  # type: ignore[override]
        if reason_code.is_failure:
            logger.error("MQTT connection refused ({})", reason_code)
            return
        logger.info("Connected to MQTT broker at {}:{}", self.config.host, self.config.port)
        with self._handlers_lock:
            topics = list(self._handlers)
        for topic in topics:
            client.subscribe(topic)
        self._connected.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):  # type: ignore[override]
        if reason_code.is_failure:
            logger.warning("Unexpected MQTT disconnection ({}), retrying", reason_code)
        self._connected.clear()

    def _on_message(self, client, userdata, message):  # type: ignore[override]
        with self._handlers_lock:
            handler = self._handlers.get(message.topic)
        if handler is None:
            return
        try:
            handler(message.payload.decode("utf-8", errors="replace").strip())
        except Exception as exc:
            logger.error("Handler for {} failed: {}", message.topic, exc)
